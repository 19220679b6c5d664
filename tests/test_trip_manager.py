"""
Trip Manager Tests
==================

Tracking lifecycle, sample handling, snapshots and single-fix capture.
"""

import asyncio

import pytest

from mileage_tracker.models.data_records import GeoSample
from mileage_tracker.models.trip_record import TrackingMode
from mileage_tracker.services.errors import (
    AlreadyTrackingError,
    LocationDeniedError,
    LocationUnavailableError,
    NotTrackingError,
    PersistenceError,
    RecoveryPendingError,
)
from mileage_tracker.services.route_accumulator import AcceptResult
from mileage_tracker.services.trip_manager import TripManager, TripState
from mileage_tracker.utils.geo import path_length_meters


def sample(lat, lon, t, accuracy=5.0):
    return GeoSample(latitude=lat, longitude=lon, timestamp=t, horizontal_accuracy=accuracy)


def drive(manager, n, t0=1_700_000_000.0, lat0=53.5):
    """Feed n good samples about 20 m apart, 2 s apart."""
    for i in range(n):
        manager.on_sample(sample(lat0 + i * 0.00018, -113.5, t0 + i * 2))


class TestLifecycle:
    """Tests for start/stop/discard transitions."""

    def test_initial_state(self, manager):
        assert manager.state is TripState.IDLE
        assert manager.session is None
        assert not manager.is_tracking

    def test_start_begins_tracking(self, manager, provider, store):
        started = []
        manager.trip_started.connect(started.append)

        session = manager.start(purpose="Client meeting")

        assert manager.state is TripState.TRACKING
        assert session.purpose == "Client meeting"
        assert session.tracking_mode is TrackingMode.ACTIVE_TRACKING
        assert started == [session.trip_id]
        # Initial snapshot written right away
        assert store.load().trip_id == session.trip_id

    def test_start_location_name_is_snapshotted(self, manager, store):
        session = manager.start(purpose="Delivery", start_location_name="Shop")
        assert session.start_location_name == "Shop"
        assert store.load().start_location_name == "Shop"

    def test_start_while_tracking_raises(self, manager):
        manager.start()
        with pytest.raises(AlreadyTrackingError):
            manager.start()

    def test_stop_without_start_raises(self, manager):
        with pytest.raises(NotTrackingError):
            manager.stop()

    def test_discard_without_start_raises(self, manager):
        with pytest.raises(NotTrackingError):
            manager.discard()

    def test_start_refused_when_location_denied(self, manager, provider):
        provider.denied = True
        with pytest.raises(LocationDeniedError):
            manager.start()
        assert manager.state is TripState.IDLE

    def test_start_refused_while_recovery_pending(self, manager, provider, store):
        manager.start()
        # Simulate a crash: a fresh manager finds the old snapshot
        other = TripManager(provider, store)
        with pytest.raises(RecoveryPendingError):
            other.start()

    def test_stop_returns_result_and_clears_state(self, manager, store, clock):
        ended = []
        manager.trip_ended.connect(ended.append)
        manager.start()
        drive(manager, 10)
        clock.advance(120)

        result = manager.stop()

        assert manager.state is TripState.FINALIZED
        assert len(result.route_points) == 10
        assert result.total_distance_m == pytest.approx(path_length_meters(result.route_points))
        assert result.duration_secs == pytest.approx(120)
        assert ended == [result]
        assert store.load() is None
        assert manager.session is None

    def test_stop_with_no_samples(self, manager):
        manager.start()
        result = manager.stop()
        assert result.total_distance_m == 0.0
        assert result.route_points == ()
        assert result.start_point is None

    def test_discard_clears_without_result(self, manager, store):
        discarded = []
        manager.trip_discarded.connect(discarded.append)
        session = manager.start()
        drive(manager, 3)

        manager.discard()

        assert manager.state is TripState.DISCARDED
        assert discarded == [session.trip_id]
        assert store.load() is None
        assert store.load_route_points(session.trip_id) == []

    def test_can_start_again_after_stop(self, manager):
        first = manager.start()
        manager.stop()
        second = manager.start()
        assert second.trip_id != first.trip_id

    def test_state_changed_signal(self, manager):
        states = []
        manager.state_changed.connect(states.append)
        manager.start()
        manager.stop()
        assert states == ["tracking", "finalized"]


class TestSamples:
    """Tests for on_sample."""

    def test_samples_ignored_when_not_tracking(self, manager):
        assert manager.on_sample(sample(53.5, -113.5, 1.0)) is None

    def test_late_sample_after_stop_ignored(self, manager):
        manager.start()
        drive(manager, 2)
        result = manager.stop()
        assert manager.on_sample(sample(53.6, -113.5, 2_000_000_000.0)) is None
        assert len(result.route_points) == 2

    def test_rejected_sample_reported(self, manager):
        manager.start()
        assert manager.on_sample(sample(53.5, -113.5, 1.0, accuracy=500)) is AcceptResult.LOW_ACCURACY
        assert manager.session.point_count == 0

    def test_provider_signal_feeds_manager(self, manager, provider):
        manager.start()
        for _ in range(5):
            provider.mock_tick()
        assert manager.session.point_count == 5

    def test_provider_disconnected_after_stop(self, manager, provider):
        manager.start()
        provider.mock_tick()
        manager.stop()
        provider.mock_tick()
        assert manager.state is TripState.FINALIZED

    def test_trip_tick_emitted_per_accepted_sample(self, manager):
        ticks = []
        manager.trip_tick.connect(ticks.append)
        manager.start()
        drive(manager, 3)
        assert len(ticks) == 3


class TestSnapshots:
    """Tests for snapshot cadence and failure handling."""

    def test_batch_size_triggers_flush(self, manager, store, settings):
        session = manager.start()
        drive(manager, settings.snapshot_batch_size)
        assert manager.pending_point_count == 0
        assert len(store.load_route_points(session.trip_id)) == settings.snapshot_batch_size
        assert store.load().route_point_count == settings.snapshot_batch_size

    def test_points_below_batch_stay_pending(self, manager, store):
        session = manager.start()
        drive(manager, 2)
        assert manager.pending_point_count == 2
        assert store.load_route_points(session.trip_id) == []

    def test_timer_flush_writes_pending_points(self, manager, store):
        session = manager.start()
        drive(manager, 3)
        assert manager.save_snapshot()
        assert len(store.load_route_points(session.trip_id)) == 3
        assert store.load().distance_m == pytest.approx(session.distance_m)

    def test_snapshot_failure_does_not_stop_tracking(self, manager, store, monkeypatch):
        errors = []
        manager.error_occurred.connect(errors.append)
        session = manager.start()
        drive(manager, 3)

        def fail(*args, **kwargs):
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "append_route_points", fail)
        assert not manager.save_snapshot()
        assert errors == ["disk full"]
        assert manager.is_tracking
        assert manager.pending_point_count == 3

        # Retried on the next write once storage recovers
        monkeypatch.undo()
        assert manager.save_snapshot()
        assert manager.pending_point_count == 0
        assert len(store.load_route_points(session.trip_id)) == 3

    def test_snapshot_not_written_when_idle(self, manager, store):
        assert not manager.save_snapshot()
        assert store.load() is None


class TestSingleCapture:
    """Tests for capture_single_location."""

    @pytest.mark.asyncio
    async def test_returns_coordinate(self, manager):
        coord = await manager.capture_single_location()
        assert coord.latitude == pytest.approx(53.5461)

    @pytest.mark.asyncio
    async def test_denied(self, manager, provider):
        provider.denied = True
        with pytest.raises(LocationDeniedError):
            await manager.capture_single_location()

    @pytest.mark.asyncio
    async def test_unavailable(self, manager, provider):
        provider.available = False
        with pytest.raises(LocationUnavailableError):
            await manager.capture_single_location()

    @pytest.mark.asyncio
    async def test_timeout(self, manager, provider):
        provider.fix_delay = 5.0
        with pytest.raises(LocationUnavailableError):
            await manager.capture_single_location(timeout=0.05)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, manager, provider):
        provider.fix_delay = 5.0
        task = asyncio.ensure_future(manager.capture_single_location(timeout=10))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_does_not_affect_tracking(self, manager):
        manager.start()
        await manager.capture_single_location()
        assert manager.is_tracking
        assert manager.session.point_count == 0
