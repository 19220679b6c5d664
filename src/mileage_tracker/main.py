import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QCoreApplication, QObject, QThread, QTimer, Slot

from mileage_tracker.config.settings import Settings
from mileage_tracker.models.data_records import Coordinate, DestinationSource, ResolvedDestination, TripResult
from mileage_tracker.models.trip_record import TripRecord
from mileage_tracker.services.errors import TripTrackingError
from mileage_tracker.services.location_service import GpsdLocationProvider, MockLocationProvider
from mileage_tracker.services.mileage_log_service import MileageLogService, get_data_dir
from mileage_tracker.services.routing_service import NominatimGeocoder, OsrmRoutingProvider
from mileage_tracker.services.trip_capture import RouteBasedCapture, manual_trip
from mileage_tracker.services.trip_manager import TripManager
from mileage_tracker.services.trip_persistence import TripStateStore
from mileage_tracker.services.trip_records import record_from_trip_result
from mileage_tracker.services.trip_recovery import RecoveryAction, TripRecoveryService

logger = logging.getLogger("mileage_tracker")

RECOVERY_CHOICES = {
    "resume": RecoveryAction.RESUME,
    "save": RecoveryAction.FINALIZE,
    "discard": RecoveryAction.DISCARD,
}


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Track vehicle trips for the mileage log")
    p.add_argument("--mock", action="store_true", help="Use simulated GPS instead of gpsd")
    p.add_argument("--purpose", default="", help="Business purpose of the trip")
    p.add_argument("--from", dest="start_name", default="", help="Name of the start location")
    p.add_argument("--duration", type=float, default=0, help="Stop tracking after N seconds (0 = until Ctrl+C)")
    p.add_argument(
        "--recover",
        choices=["resume", "save", "discard", "later"],
        default="later",
        help="What to do with a trip interrupted in a previous run",
    )
    p.add_argument("--manual", type=float, metavar="KM", help="Log a manually entered distance and exit")
    p.add_argument(
        "--route-to", metavar="LAT,LON|ADDRESS", help="Log a route-based trip to a destination and exit"
    )
    p.add_argument("--summary", type=int, metavar="YEAR", help="Print the mileage summary for a year and exit")
    p.add_argument("--data-dir", type=Path, help="Where trip data is stored")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def parse_coordinate(text: str) -> Coordinate:
    try:
        lat, lon = (float(part) for part in text.split(","))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Expected LAT,LON, got {text!r}") from e
    return Coordinate(latitude=lat, longitude=lon)


def print_record(record: TripRecord) -> None:
    print(
        f"{record.display_date}  {record.tracking_mode.label:<16} "
        f"{record.effective_distance_km:8.1f} km  {record.location_string}"
    )


def print_logged_trip(log: MileageLogService, settings: Settings, record: TripRecord) -> None:
    print_record(record)
    amount = log.get_trip_deduction(
        record, settings.first_tier_limit_km, settings.first_tier_rate, settings.second_tier_rate
    )
    print(f"  deduction: ${amount:,.2f}")


def print_summary(log: MileageLogService, settings: Settings, year: int) -> None:
    summary = log.get_yearly_summary(
        year, settings.first_tier_limit_km, settings.first_tier_rate, settings.second_tier_rate
    )
    print(f"{year}: {summary.total_trips} trips, {summary.total_km:.1f} km")
    print(f"  average trip:        {summary.average_trip_km:.1f} km")
    print(f"  estimated deduction: ${summary.estimated_deduction:,.2f}")


class TripRunner(QObject):
    """
    Headless tracking session: resolves recovery, tracks one trip, logs it.

    Owns the provider thread and timers the same way the dashboard window
    does, without any widgets.
    """

    def __init__(self, args: argparse.Namespace, settings: Settings, data_dir: Path):
        super().__init__()
        self.args = args
        self.settings = settings

        self.mileage_log = MileageLogService(data_dir / "mileage.db")
        self.state_store = TripStateStore(data_dir)
        self.gps_thread: Optional[QThread] = None
        self.mock_timer: Optional[QTimer] = None
        self.exit_code = 0
        self._purpose = args.purpose
        self._start_location = args.start_name

        if args.mock:
            self.provider = MockLocationProvider()
        else:
            self.provider = GpsdLocationProvider()

        self.trip_manager = TripManager(self.provider, self.state_store, settings)
        self.trip_manager.trip_ended.connect(self._on_trip_ended)
        self.trip_manager.error_occurred.connect(self._on_error)
        self.mileage_log.error_occurred.connect(self._on_error)

        self.recovery = TripRecoveryService(self.state_store, self.trip_manager, settings)
        self.recovery.error_occurred.connect(self._on_error)

    def initialize(self) -> bool:
        return self.mileage_log.initialize() and self.state_store.initialize()

    def start_provider(self) -> None:
        if isinstance(self.provider, MockLocationProvider):
            self.mock_timer = QTimer(self)
            self.mock_timer.timeout.connect(self.provider.mock_tick)
            self.mock_timer.start(900)
        else:
            # Real GPS service in thread
            self.gps_thread = QThread()
            self.provider.moveToThread(self.gps_thread)
            self.provider.connection_status.connect(self._on_gps_status)
            self.gps_thread.started.connect(self.provider.start)
            self.gps_thread.start()

    def shutdown(self) -> None:
        if self.mock_timer:
            self.mock_timer.stop()
        if self.gps_thread:
            self.provider.stop()
            self.gps_thread.quit()
            self.gps_thread.wait(1000)
        self.state_store.close()
        self.mileage_log.close()

    def resolve_recovery(self) -> bool:
        """
        Deal with a trip left over from a previous run.

        Returns:
            False when the trip was left pending and nothing new may start
        """
        snapshot = self.recovery.check_for_incomplete_trip()
        if snapshot is None:
            return True

        stale = " (stale)" if self.recovery.is_stale() else ""
        print(
            f"Incomplete {snapshot.tracking_mode.label} trip from "
            f"{datetime.fromtimestamp(snapshot.start_time):%Y-%m-%d %H:%M}{stale}: "
            f"{self.recovery.persisted_distance_km():.1f} km, {snapshot.formatted_duration()}"
        )

        choice = self.args.recover
        if choice == "resume" and not self.recovery.can_resume():
            print("Only tracked trips can be resumed; use --recover save or --recover discard")
            self.recovery.defer()
            return False
        if choice == "later":
            print("Left pending; run again with --recover resume|save|discard")
            self.recovery.defer()
            return False

        record = self.recovery.resolve(RECOVERY_CHOICES[choice], self.mileage_log.insert_trip)
        if record is not None:
            print_record(record)
        return True

    def run_tracking(self) -> None:
        """Start (or keep) tracking and schedule the stop."""
        if not self.trip_manager.is_tracking:
            self.trip_manager.start(purpose=self.args.purpose, start_location_name=self.args.start_name)
        # A resumed trip keeps its original purpose and start
        session = self.trip_manager.session
        self._purpose = session.purpose
        self._start_location = session.start_location_name or ""
        print("Tracking... press Ctrl+C to stop")

        if self.args.duration > 0:
            QTimer.singleShot(int(self.args.duration * 1000), self.finish)

    @Slot()
    def finish(self) -> None:
        """Stop the trip (if any) and quit the event loop."""
        if self.trip_manager.is_tracking:
            self.trip_manager.stop()
        QCoreApplication.quit()

    @Slot(object)
    def _on_trip_ended(self, result: TripResult) -> None:
        record = record_from_trip_result(result, purpose=self._purpose, start_location=self._start_location)
        if not self.mileage_log.insert_trip(record):
            self.exit_code = 1
            print_record(record)
            return
        print_logged_trip(self.mileage_log, self.settings, record)

    @Slot(bool, str)
    def _on_gps_status(self, connected: bool, message: str) -> None:
        if connected:
            logger.info(message)
        else:
            logger.warning(message)

    @Slot(str)
    def _on_error(self, message: str) -> None:
        logger.error(message)


async def resolve_destination(text: str, geocoder: NominatimGeocoder) -> ResolvedDestination:
    """A typed LAT,LON pair, or else an address looked up with the geocoder."""
    try:
        coordinate = parse_coordinate(text)
    except argparse.ArgumentTypeError:
        return await geocoder.geocode(text)
    return ResolvedDestination(
        name=f"{coordinate.latitude:.5f}, {coordinate.longitude:.5f}",
        coordinate=coordinate,
        source=DestinationSource.manual(),
    )


def log_route_trip(runner: TripRunner, destination_text: str) -> None:
    settings = runner.settings
    capture = RouteBasedCapture(
        runner.trip_manager.capture_single_location,
        OsrmRoutingProvider(settings.routing_base_url, settings.http_timeout_sec),
        runner.state_store,
    )
    geocoder = NominatimGeocoder(settings.geocoding_base_url, settings.http_timeout_sec)

    async def run() -> TripRecord:
        destination = await resolve_destination(destination_text, geocoder)
        await capture.capture_start(runner.args.start_name)
        capture.set_destination(destination)
        return await capture.build_record(purpose=runner.args.purpose)

    record = asyncio.run(run())
    if runner.mileage_log.insert_trip(record):
        print_logged_trip(runner.mileage_log, settings, record)
    else:
        runner.exit_code = 1
        print_record(record)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.load()
    data_dir = args.data_dir or get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)

    app = QCoreApplication(sys.argv[:1])
    runner = TripRunner(args, settings, data_dir)
    if not runner.initialize():
        return 1

    try:
        if args.summary is not None:
            print_summary(runner.mileage_log, settings, args.summary)
            return 0

        if args.manual is not None:
            record = manual_trip(args.manual, purpose=args.purpose, start_location=args.start_name)
            if not runner.mileage_log.insert_trip(record):
                return 1
            print_logged_trip(runner.mileage_log, settings, record)
            return 0

        if args.route_to:
            log_route_trip(runner, args.route_to)
            return runner.exit_code

        if not runner.resolve_recovery():
            return 2

        runner.start_provider()
        runner.run_tracking()

        # Let Ctrl+C stop the trip cleanly; the timer gives Python a chance to run the handler
        signal.signal(signal.SIGINT, lambda *_: runner.finish())
        heartbeat = QTimer()
        heartbeat.timeout.connect(lambda: None)
        heartbeat.start(250)

        app.exec()
        return runner.exit_code
    except (TripTrackingError, ValueError, argparse.ArgumentTypeError) as e:
        logger.error("%s", e)
        return 1
    finally:
        runner.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
