"""Single-shot trip capture: manual entry, point-to-point and route-based."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

import httpx

from mileage_tracker.models.data_records import Coordinate, ResolvedDestination, RouteEstimate
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.services.errors import PersistenceError, RouteUnavailableError
from mileage_tracker.services.routing_service import RoutingProvider, straight_line_estimate
from mileage_tracker.services.trip_persistence import TripStateStore
from mileage_tracker.utils.geo import distance_meters, meters_to_km

logger = logging.getLogger(__name__)

# Usually TripManager.capture_single_location
LocationSource = Callable[[], Awaitable[Coordinate]]


def manual_trip(
    distance_km: float,
    date: Optional[float] = None,
    purpose: str = "",
    start_location: str = "",
    end_location: str = "",
    is_round_trip: bool = False,
    notes: str = "",
    client_id: Optional[str] = None,
    job_id: Optional[str] = None,
) -> TripRecord:
    """
    Build a record from a distance the user typed in.

    Raises:
        ValueError: negative distance
    """
    if distance_km < 0:
        raise ValueError(f"Distance cannot be negative: {distance_km}")

    return TripRecord(
        date=date if date is not None else time.time(),
        tracking_mode=TrackingMode.MANUAL,
        distance_km=distance_km,
        is_round_trip=is_round_trip,
        purpose=purpose,
        notes=notes,
        start_location=start_location,
        end_location=end_location,
        client_id=client_id,
        job_id=job_id,
    )


class PointToPointCapture:
    """Capture a start fix, later an end fix; distance is the straight line between them."""

    def __init__(self, locate: LocationSource, clock: Callable[[], float] = time.time):
        self._locate = locate
        self._clock = clock
        self.start: Optional[Coordinate] = None
        self.end: Optional[Coordinate] = None
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    async def capture_start(self) -> Coordinate:
        self.start = await self._locate()
        self.start_time = self._clock()
        logger.info("Start captured at %.5f, %.5f", self.start.latitude, self.start.longitude)
        return self.start

    async def capture_end(self) -> Coordinate:
        self.end = await self._locate()
        self.end_time = self._clock()
        logger.info("End captured at %.5f, %.5f", self.end.latitude, self.end.longitude)
        return self.end

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def distance_km(self) -> Optional[float]:
        if not self.is_complete:
            return None
        return meters_to_km(distance_meters(self.start, self.end))

    def build_record(
        self,
        purpose: str = "",
        start_location: str = "",
        end_location: str = "",
        is_round_trip: bool = False,
        client_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> TripRecord:
        """
        Raises:
            ValueError: start or end has not been captured
        """
        if self.start is None:
            raise ValueError("Start location has not been captured")
        if self.end is None:
            raise ValueError("End location has not been captured")

        record = TripRecord(
            date=self.start_time,
            tracking_mode=TrackingMode.POINT_TO_POINT,
            distance_km=self.distance_km,
            is_round_trip=is_round_trip,
            purpose=purpose,
            start_location=start_location,
            end_location=end_location,
            start_latitude=self.start.latitude,
            start_longitude=self.start.longitude,
            end_latitude=self.end.latitude,
            end_longitude=self.end.longitude,
            trip_start_time=self.start_time,
            trip_end_time=self.end_time,
            client_id=client_id,
            job_id=job_id,
        )
        if self.start_time is not None and self.end_time is not None:
            record.duration_secs = max(0.0, self.end_time - self.start_time)
        return record


class RouteBasedCapture:
    """
    Capture a start fix, pick a destination, and record the driving route distance.

    When the routing provider fails the straight-line distance is used
    instead, with zero travel time, and the record is marked as not
    route-calculated.

    With a state store, a ``route_based`` snapshot is written once the
    route is known so an interrupted capture can still be saved on the
    next start. The snapshot is cleared once the record is built.
    """

    def __init__(
        self,
        locate: LocationSource,
        routing: RoutingProvider,
        state_store: Optional[TripStateStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._locate = locate
        self._routing = routing
        self._store = state_store
        self._clock = clock

        self.trip_id = str(uuid.uuid4())
        self.start: Optional[Coordinate] = None
        self.start_time: Optional[float] = None
        self.start_location_name: Optional[str] = None
        self.destination: Optional[ResolvedDestination] = None
        self.estimate: Optional[RouteEstimate] = None
        self._snapshot_written = False

    async def capture_start(self, location_name: Optional[str] = None) -> Coordinate:
        self.start = await self._locate()
        self.start_time = self._clock()
        self.start_location_name = location_name or None
        self.estimate = None
        return self.start

    def set_destination(self, destination: ResolvedDestination) -> None:
        if destination != self.destination:
            self.estimate = None
        self.destination = destination

    @property
    def route_was_calculated(self) -> bool:
        return self.estimate is not None and self.estimate.was_calculated

    async def calculate_route(self) -> RouteEstimate:
        """
        Estimate the route from the captured start to the destination.

        Raises:
            ValueError: start or destination missing
        """
        if self.start is None:
            raise ValueError("Start location has not been captured")
        if self.destination is None:
            raise ValueError("No destination selected")

        end = self.destination.coordinate
        try:
            self.estimate = await self._routing.route(self.start, end)
        except (RouteUnavailableError, httpx.HTTPError, ValueError) as e:
            logger.warning("Route calculation failed, using straight line: %s", e)
            self.estimate = straight_line_estimate(self.start, end)

        logger.info(
            "Route to %s: %.1f km (%s)",
            self.destination.name,
            self.estimate.distance_km,
            "calculated" if self.estimate.was_calculated else "straight line",
        )
        self._write_snapshot()
        return self.estimate

    async def build_record(
        self,
        purpose: str = "",
        start_location: str = "",
        is_round_trip: bool = False,
        notes: str = "",
        client_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> TripRecord:
        """
        Build the trip record, calculating the route first if needed.

        Raises:
            ValueError: start or destination missing
        """
        if self.estimate is None:
            await self.calculate_route()

        estimate = self.estimate
        destination = self.destination
        record = TripRecord(
            date=self.start_time if self.start_time is not None else self._clock(),
            tracking_mode=TrackingMode.ROUTE_BASED,
            distance_km=estimate.distance_km,
            is_round_trip=is_round_trip,
            purpose=purpose,
            notes=notes,
            start_location=start_location or self.start_location_name or "",
            end_location=destination.name,
            start_latitude=self.start.latitude,
            start_longitude=self.start.longitude,
            end_latitude=destination.coordinate.latitude,
            end_longitude=destination.coordinate.longitude,
            client_id=client_id,
            job_id=job_id,
            was_route_calculated=estimate.was_calculated,
            destination_name=destination.name,
            destination_latitude=destination.coordinate.latitude,
            destination_longitude=destination.coordinate.longitude,
            destination_source_raw=destination.source.to_raw(),
        )
        if estimate.was_calculated:
            record.calculated_distance_km = estimate.distance_km
            record.expected_travel_time = estimate.travel_time_secs

        self._clear_snapshot()
        return record

    # ---------- Snapshot ----------

    def to_snapshot(self) -> PersistedTripSnapshot:
        snapshot = PersistedTripSnapshot(
            tracking_mode=TrackingMode.ROUTE_BASED,
            trip_id=self.trip_id,
            start_time=self.start_time if self.start_time is not None else self._clock(),
        )
        if self.start is not None:
            snapshot.start_latitude = self.start.latitude
            snapshot.start_longitude = self.start.longitude
            snapshot.start_location_name = self.start_location_name
        if self.destination is not None:
            snapshot.destination_latitude = self.destination.coordinate.latitude
            snapshot.destination_longitude = self.destination.coordinate.longitude
            snapshot.destination_name = self.destination.name
            snapshot.destination_source_raw = self.destination.source.to_raw()
        if self.estimate is not None and self.estimate.was_calculated:
            snapshot.calculated_distance_m = self.estimate.distance_m
            snapshot.expected_travel_time = self.estimate.travel_time_secs
        return snapshot

    def _write_snapshot(self) -> None:
        if self._store is None:
            return

        # Never overwrite another trip's snapshot (e.g. a running continuous trip)
        existing = self._store.load()
        if existing is not None and existing.trip_id != self.trip_id:
            logger.debug("Active trip slot in use by %s, not snapshotting", existing.trip_id)
            return

        try:
            self._store.save(self.to_snapshot())
            self._snapshot_written = True
        except PersistenceError as e:
            logger.warning("Could not save route-based snapshot: %s", e)

    def _clear_snapshot(self) -> None:
        if self._store is None or not self._snapshot_written:
            return
        try:
            self._store.clear()
            self._snapshot_written = False
        except PersistenceError as e:
            logger.error("Failed to clear route-based snapshot: %s", e)
