"""Continuous trip tracking lifecycle with crash-safe snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from mileage_tracker.config.settings import Settings
from mileage_tracker.models.data_records import (
    Coordinate,
    DestinationSource,
    GeoSample,
    ResolvedDestination,
    RoutePoint,
    TripResult,
)
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.models.trip_record import TrackingMode
from mileage_tracker.services.errors import (
    AlreadyTrackingError,
    LocationDeniedError,
    LocationUnavailableError,
    NotTrackingError,
    PersistenceError,
    RecoveryPendingError,
    ResumeNotAllowedError,
)
from mileage_tracker.services.location_service import LocationProvider
from mileage_tracker.services.route_accumulator import AcceptResult, RouteAccumulator
from mileage_tracker.services.trip_persistence import TripStateStore

logger = logging.getLogger(__name__)


class TripState(Enum):
    """Trip state machine states."""

    IDLE = "idle"  # No session yet
    TRACKING = "tracking"  # Session accepting samples
    FINALIZED = "finalized"  # Last session stopped and returned a result
    DISCARDED = "discarded"  # Last session thrown away


@dataclass
class ActiveTripSession:
    """The one in-progress trip owned by a TripManager."""

    start_time: float
    accumulator: RouteAccumulator
    trip_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tracking_mode: TrackingMode = TrackingMode.ACTIVE_TRACKING
    purpose: str = ""
    destination: Optional[ResolvedDestination] = None
    start_location_name: Optional[str] = None
    client_id: Optional[str] = None
    job_id: Optional[str] = None

    @property
    def distance_m(self) -> float:
        return self.accumulator.distance_m

    @property
    def point_count(self) -> int:
        return self.accumulator.point_count

    def route(self) -> Tuple[RoutePoint, ...]:
        return self.accumulator.current_route()

    def elapsed_secs(self, now: Optional[float] = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.start_time)

    def to_snapshot(self) -> PersistedTripSnapshot:
        """Project the session into its durable form."""
        snapshot = PersistedTripSnapshot(
            trip_id=self.trip_id,
            start_time=self.start_time,
            tracking_mode=self.tracking_mode,
            purpose=self.purpose,
            start_location_name=self.start_location_name,
            route_point_count=self.point_count,
            distance_m=self.distance_m,
            client_id=self.client_id,
            job_id=self.job_id,
        )

        first = self.accumulator.current_route()[:1]
        if first:
            snapshot.start_latitude = first[0].latitude
            snapshot.start_longitude = first[0].longitude

        if self.destination is not None:
            snapshot.destination_latitude = self.destination.coordinate.latitude
            snapshot.destination_longitude = self.destination.coordinate.longitude
            snapshot.destination_name = self.destination.name
            snapshot.destination_source_raw = self.destination.source.to_raw()

        return snapshot


class TripManager(QObject):
    """
    Drives a continuous GPS tracking session.

    State machine:
        IDLE/FINALIZED/DISCARDED ──start()──> TRACKING
        TRACKING ──stop()──> FINALIZED (emit trip_ended)
        TRACKING ──discard()──> DISCARDED
        any non-TRACKING ──resume_session()──> TRACKING (startup recovery)

    Samples reach ``on_sample`` through the provider's ``sample_received``
    signal, so transitions and sample handling are serialized by the
    Qt event loop of the thread this object lives in.

    While tracking, accepted points are queued and flushed to the state
    store together with a fresh snapshot: right after start, on every
    timer tick, and whenever the queue reaches the batch size.
    """

    # Signals
    trip_started = Signal(str)  # trip_id
    trip_tick = Signal(object)  # ActiveTripSession (after each accepted sample)
    trip_ended = Signal(object)  # TripResult
    trip_discarded = Signal(str)  # trip_id
    state_changed = Signal(str)  # TripState value
    error_occurred = Signal(str)  # persistence failures (tracking continues)

    def __init__(
        self,
        location_provider: LocationProvider,
        state_store: TripStateStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self._provider = location_provider
        self._store = state_store
        self._settings = settings or Settings()
        self._clock = clock

        self._state = TripState.IDLE
        self._session: Optional[ActiveTripSession] = None
        self._subscribed = False

        # Snapshot cadence
        self._pending_points: List[RoutePoint] = []
        self._snapshot_in_flight = False
        self._snapshot_timer = QTimer(self)
        self._snapshot_timer.setInterval(self._settings.snapshot_interval_ms)
        self._snapshot_timer.timeout.connect(self.save_snapshot)

    @property
    def state(self) -> TripState:
        """Current trip state."""
        return self._state

    @property
    def session(self) -> Optional[ActiveTripSession]:
        """The active session (None unless tracking)."""
        return self._session

    @property
    def is_tracking(self) -> bool:
        return self._state == TripState.TRACKING

    @property
    def pending_point_count(self) -> int:
        """Accepted points not yet written to the route log."""
        return len(self._pending_points)

    def _new_accumulator(self) -> RouteAccumulator:
        return RouteAccumulator(
            max_accuracy_m=self._settings.max_horizontal_accuracy_m,
            max_speed_mps=self._settings.max_plausible_speed_mps,
            min_movement_m=self._settings.min_movement_m,
        )

    # ---------- Lifecycle ----------

    def start(
        self,
        purpose: str = "",
        destination: Optional[ResolvedDestination] = None,
        client_id: Optional[str] = None,
        job_id: Optional[str] = None,
        start_location_name: Optional[str] = None,
    ) -> ActiveTripSession:
        """
        Start a new tracking session.

        Raises:
            AlreadyTrackingError: a session is already tracking
            RecoveryPendingError: an interrupted trip has not been resolved
            LocationDeniedError: the provider refused authorization
        """
        if self._state == TripState.TRACKING:
            raise AlreadyTrackingError()
        if self._store.has_snapshot():
            raise RecoveryPendingError()
        if not self._provider.request_authorization():
            raise LocationDeniedError()

        session = ActiveTripSession(
            start_time=self._clock(),
            accumulator=self._new_accumulator(),
            purpose=purpose,
            destination=destination,
            start_location_name=start_location_name or None,
            client_id=client_id,
            job_id=job_id,
        )
        self._begin_tracking(session)
        logger.info("Trip %s started", session.trip_id)
        self.trip_started.emit(session.trip_id)
        return session

    def resume_session(
        self, snapshot: PersistedTripSnapshot, route_points: Sequence[RoutePoint]
    ) -> ActiveTripSession:
        """
        Continue an interrupted continuous-tracking trip.

        The route and distance are restored from the persisted log, so the
        resumed session keeps accumulating from where it stopped.

        Raises:
            AlreadyTrackingError: a session is already tracking
            ResumeNotAllowedError: the snapshot is not a continuous-tracking trip
        """
        if self._state == TripState.TRACKING:
            raise AlreadyTrackingError()
        if snapshot.tracking_mode is not TrackingMode.ACTIVE_TRACKING:
            raise ResumeNotAllowedError(
                f"Cannot resume a {snapshot.tracking_mode.label} trip; save or discard it"
            )

        accumulator = self._new_accumulator()
        accumulator.restore(route_points, snapshot.distance_m)

        destination = None
        if snapshot.has_destination:
            destination = ResolvedDestination(
                name=snapshot.destination_name or "",
                coordinate=Coordinate(snapshot.destination_latitude, snapshot.destination_longitude),
                source=DestinationSource.from_raw(snapshot.destination_source_raw)
                or DestinationSource.manual(),
            )

        session = ActiveTripSession(
            trip_id=snapshot.trip_id,
            start_time=snapshot.start_time,
            accumulator=accumulator,
            purpose=snapshot.purpose,
            destination=destination,
            start_location_name=snapshot.start_location_name,
            client_id=snapshot.client_id,
            job_id=snapshot.job_id,
        )
        self._begin_tracking(session)
        logger.info(
            "Trip %s resumed with %d points, %.0f m", session.trip_id, session.point_count, session.distance_m
        )
        self.trip_started.emit(session.trip_id)
        return session

    def stop(self) -> TripResult:
        """
        Stop tracking and return the finished trip.

        Raises:
            NotTrackingError: no session is tracking
        """
        if self._state != TripState.TRACKING or self._session is None:
            raise NotTrackingError()

        session = self._session
        end_time = self._clock()
        self._end_tracking()

        result = TripResult(
            start_time=session.start_time,
            end_time=end_time,
            total_distance_m=session.distance_m,
            route_points=session.route(),
        )

        self._session = None
        self._transition_to(TripState.FINALIZED)
        self._clear_persisted_state()

        logger.info(
            "Trip %s stopped: %.0f m, %d points, %.0f s",
            session.trip_id,
            result.total_distance_m,
            len(result.route_points),
            result.duration_secs,
        )
        self.trip_ended.emit(result)
        return result

    def discard(self) -> None:
        """
        Throw away the current session without producing a result.

        Raises:
            NotTrackingError: no session is tracking
        """
        if self._state != TripState.TRACKING or self._session is None:
            raise NotTrackingError()

        session = self._session
        self._end_tracking()
        session.accumulator.reset()

        self._session = None
        self._transition_to(TripState.DISCARDED)
        self._clear_persisted_state()

        logger.info("Trip %s discarded", session.trip_id)
        self.trip_discarded.emit(session.trip_id)

    def _begin_tracking(self, session: ActiveTripSession) -> None:
        self._session = session
        self._pending_points = []
        self._transition_to(TripState.TRACKING)

        if not self._subscribed:
            self._provider.sample_received.connect(self.on_sample)
            self._subscribed = True
        self._provider.start_updates()

        self.save_snapshot()
        self._snapshot_timer.start()

    def _end_tracking(self) -> None:
        self._snapshot_timer.stop()
        self._provider.stop_updates()
        if self._subscribed:
            self._provider.sample_received.disconnect(self.on_sample)
            self._subscribed = False
        self._pending_points = []

    def _transition_to(self, new_state: TripState) -> None:
        """Transition to a new state."""
        if new_state != self._state:
            self._state = new_state
            self.state_changed.emit(new_state.value)

    # ---------- Samples ----------

    @Slot(object)
    def on_sample(self, sample: GeoSample) -> Optional[AcceptResult]:
        """
        Process a location sample.

        Args:
            sample: Sample from the location provider

        Returns:
            How the route accumulator treated the sample (None when not tracking)
        """
        if self._state != TripState.TRACKING or self._session is None:
            # Late delivery after stop/discard
            return None

        result = self._session.accumulator.accept(sample)
        if not result.accepted:
            logger.debug("Sample rejected: %s", result.value)
            return result

        self._pending_points.append(self._session.accumulator.last_point)
        self.trip_tick.emit(self._session)

        if len(self._pending_points) >= self._settings.snapshot_batch_size:
            self.save_snapshot()
        return result

    # ---------- Persistence ----------

    @Slot()
    def save_snapshot(self) -> bool:
        """
        Flush queued route points and write a fresh snapshot.

        Failures are logged and reported through ``error_occurred``; queued
        points that did not reach the log are retried on the next call.

        Returns:
            True if both the route log and the snapshot were written
        """
        if self._state != TripState.TRACKING or self._session is None:
            return False
        if self._snapshot_in_flight:
            return False

        self._snapshot_in_flight = True
        try:
            batch = list(self._pending_points)
            self._store.append_route_points(self._session.trip_id, batch)
            del self._pending_points[: len(batch)]
            self._store.save(self._session.to_snapshot())
            return True
        except PersistenceError as e:
            logger.warning("Snapshot write failed, will retry: %s", e)
            self.error_occurred.emit(str(e))
            return False
        finally:
            self._snapshot_in_flight = False

    def _clear_persisted_state(self) -> None:
        try:
            self._store.clear()
        except PersistenceError as e:
            logger.error("Failed to clear trip state: %s", e)
            self.error_occurred.emit(str(e))

    # ---------- Single capture ----------

    async def capture_single_location(self, timeout: Optional[float] = None) -> Coordinate:
        """
        Get one fresh location fix, independent of any tracking session.

        Args:
            timeout: Seconds to wait (defaults to settings.location_timeout_sec)

        Raises:
            LocationDeniedError: authorization refused
            LocationUnavailableError: timeout or provider failure
            asyncio.CancelledError: the caller abandoned the request
        """
        if timeout is None:
            timeout = self._settings.location_timeout_sec

        if not self._provider.request_authorization():
            raise LocationDeniedError()

        try:
            sample = await asyncio.wait_for(self._provider.current_sample(), timeout)
        except asyncio.TimeoutError as e:
            raise LocationUnavailableError("Location request timed out.") from e

        return sample.coordinate
