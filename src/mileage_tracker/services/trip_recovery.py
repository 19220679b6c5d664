"""Startup recovery of trips interrupted before they were finalized."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal

from mileage_tracker.config.settings import Settings
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.services.errors import (
    NoIncompleteTripError,
    PersistenceError,
    ResumeNotAllowedError,
)
from mileage_tracker.services.trip_manager import ActiveTripSession, TripManager
from mileage_tracker.services import trip_persistence
from mileage_tracker.services.trip_persistence import TripStateStore
from mileage_tracker.services.trip_records import record_from_snapshot
from mileage_tracker.utils.geo import meters_to_km

logger = logging.getLogger(__name__)


class RecoveryAction(Enum):
    """The ways an interrupted trip can be resolved."""

    RESUME = "resume"  # Continue tracking (continuous tracking only)
    FINALIZE = "finalize"  # Save as-is, ending at the last snapshot
    DISCARD = "discard"  # Drop without saving


class TripRecoveryService(QObject):
    """
    Resolves an unfinished trip left behind by a previous run.

    Call ``check_for_incomplete_trip`` once at startup. If it returns a
    snapshot, apply exactly one of ``resume``, ``finalize_as_is`` or
    ``discard``; until then ``TripManager.start`` refuses to begin a new
    trip. ``defer`` postpones the decision without touching the snapshot.
    """

    # Signals
    incomplete_trip_found = Signal(object)  # PersistedTripSnapshot
    recovery_completed = Signal(str)  # RecoveryAction value
    error_occurred = Signal(str)  # error message

    def __init__(
        self,
        state_store: TripStateStore,
        trip_manager: TripManager,
        settings: Optional[Settings] = None,
    ):
        super().__init__()
        self._store = state_store
        self._manager = trip_manager
        self._settings = settings or Settings()
        self._snapshot: Optional[PersistedTripSnapshot] = None

    @property
    def incomplete_trip(self) -> Optional[PersistedTripSnapshot]:
        """The snapshot awaiting a decision, if any."""
        return self._snapshot

    @property
    def has_incomplete_trip(self) -> bool:
        return self._snapshot is not None

    def check_for_incomplete_trip(self) -> Optional[PersistedTripSnapshot]:
        """
        Look for a snapshot from a previous run.

        Unreadable snapshots are treated as absent.
        """
        self._snapshot = self._store.load()
        if self._snapshot is not None:
            logger.info(
                "Incomplete %s trip %s found (%d points)",
                self._snapshot.tracking_mode.value,
                self._snapshot.trip_id,
                self._snapshot.route_point_count,
            )
            self.incomplete_trip_found.emit(self._snapshot)
        return self._snapshot

    # ---------- Display helpers ----------

    def is_stale(self, now: Optional[float] = None) -> bool:
        """True when the pending snapshot is older than the stale threshold."""
        if self._snapshot is None:
            return False
        return trip_persistence.is_stale(self._snapshot, now, self._settings.stale_after_secs)

    def can_resume(self) -> bool:
        return (
            self._snapshot is not None
            and self._snapshot.tracking_mode is TrackingMode.ACTIVE_TRACKING
        )

    def persisted_distance_km(self) -> float:
        """Distance covered so far according to the route log."""
        if self._snapshot is None:
            return 0.0
        return meters_to_km(self._store.persisted_distance_m(self._snapshot.trip_id))

    # ---------- Actions ----------

    def resume(self) -> ActiveTripSession:
        """
        Put the trip manager back into tracking with the persisted route.

        Raises:
            NoIncompleteTripError: nothing to resume
            ResumeNotAllowedError: not a continuous-tracking trip
            AlreadyTrackingError: the manager is already tracking
        """
        snapshot = self._require_snapshot()
        if snapshot.tracking_mode is not TrackingMode.ACTIVE_TRACKING:
            raise ResumeNotAllowedError(
                f"Cannot resume a {snapshot.tracking_mode.label} trip; save or discard it"
            )

        points = self._store.load_route_points(snapshot.trip_id)
        session = self._manager.resume_session(snapshot, points)
        self._snapshot = None
        self.recovery_completed.emit(RecoveryAction.RESUME.value)
        return session

    def finalize_as_is(
        self, on_record: Optional[Callable[[TripRecord], object]] = None
    ) -> TripRecord:
        """
        Save the interrupted trip, ending it at its last snapshot.

        The snapshot is cleared after the record is handed to ``on_record``,
        even when that callback raises, so the same trip is never offered
        for recovery twice. The callback's exception is re-raised.

        Args:
            on_record: Receives the built record (e.g. MileageLogService.insert_trip)
        """
        snapshot = self._require_snapshot()
        try:
            points = self._store.load_route_points(snapshot.trip_id)
            record = record_from_snapshot(snapshot, points)
            if on_record is not None:
                on_record(record)
        finally:
            self._clear()

        logger.info("Recovered trip %s saved: %.1f km", snapshot.trip_id, record.distance_km)
        self.recovery_completed.emit(RecoveryAction.FINALIZE.value)
        return record

    def discard(self) -> None:
        """Drop the interrupted trip and its route log. No-op when nothing is stored."""
        snapshot = self._snapshot or self._store.load()
        self._clear()
        if snapshot is None:
            return
        logger.info("Recovered trip %s discarded", snapshot.trip_id)
        self.recovery_completed.emit(RecoveryAction.DISCARD.value)

    def defer(self) -> None:
        """Postpone the decision; the snapshot stays and keeps blocking new trips."""
        self._snapshot = None

    def resolve(
        self,
        action: RecoveryAction,
        on_record: Optional[Callable[[TripRecord], object]] = None,
    ) -> Optional[TripRecord]:
        """Apply a recovery action. Returns the record for FINALIZE."""
        if action is RecoveryAction.RESUME:
            self.resume()
            return None
        if action is RecoveryAction.FINALIZE:
            return self.finalize_as_is(on_record)
        self.discard()
        return None

    def _require_snapshot(self) -> PersistedTripSnapshot:
        if self._snapshot is None:
            self._snapshot = self._store.load()
        if self._snapshot is None:
            raise NoIncompleteTripError()
        return self._snapshot

    def _clear(self) -> None:
        self._snapshot = None
        try:
            self._store.clear()
        except PersistenceError as e:
            logger.error("Failed to clear recovered trip state: %s", e)
            self.error_occurred.emit(str(e))
