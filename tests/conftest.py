import pytest
from PySide6.QtCore import QCoreApplication

from mileage_tracker.config.settings import Settings
from mileage_tracker.services.location_service import MockLocationProvider
from mileage_tracker.services.mileage_log_service import MileageLogService
from mileage_tracker.services.trip_manager import TripManager
from mileage_tracker.services.trip_persistence import TripStateStore


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


@pytest.fixture(scope="session", autouse=True)
def qapp():
    """QObjects and QTimers need an application instance."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def settings():
    # Long cadence so the timer never fires during a test
    return Settings(snapshot_interval_sec=3600, snapshot_batch_size=5, location_timeout_sec=1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    s = TripStateStore(tmp_path)
    assert s.initialize()
    yield s
    s.close()


@pytest.fixture
def provider():
    return MockLocationProvider(seed=1)


@pytest.fixture
def manager(provider, store, settings, clock):
    return TripManager(provider, store, settings, clock=clock)


@pytest.fixture
def mileage_log(tmp_path):
    log = MileageLogService(tmp_path / "mileage.db")
    assert log.initialize()
    yield log
    log.close()
