"""Integrates location samples into a filtered route and running distance."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence, Tuple

from mileage_tracker.models.data_records import GeoSample, RoutePoint
from mileage_tracker.utils.geo import haversine_meters, path_length_meters


class AcceptResult(Enum):
    """Outcome of offering a sample to the accumulator."""

    ACCEPTED = "accepted"
    LOW_ACCURACY = "low_accuracy"  # accuracy invalid or above threshold
    OUT_OF_ORDER = "out_of_order"  # not strictly after the last accepted sample
    IMPLAUSIBLE_SPEED = "implausible_speed"  # GPS jump
    BELOW_MIN_MOVEMENT = "below_min_movement"  # jitter

    @property
    def accepted(self) -> bool:
        return self is AcceptResult.ACCEPTED


class RouteAccumulator:
    """
    Turns a stream of GeoSamples into a clean route.

    Filters, in order:
        accuracy  -> rejects invalid (< 0) or coarse fixes
        ordering  -> timestamp must be strictly increasing
        speed     -> implied speed from the previous point must be plausible
        movement  -> optional jitter filter (disabled when min_movement_m == 0)

    Distance only grows when a sample is accepted, so the running total
    is monotonically non-decreasing.
    """

    def __init__(
        self,
        max_accuracy_m: float = 100.0,
        max_speed_mps: float = 70.0,
        min_movement_m: float = 0.0,
    ):
        self.max_accuracy_m = max_accuracy_m
        self.max_speed_mps = max_speed_mps
        self.min_movement_m = min_movement_m
        self._points: List[RoutePoint] = []
        self._distance_m = 0.0
        self._rejected = 0

    @property
    def distance_m(self) -> float:
        """Running route length in meters."""
        return self._distance_m

    @property
    def point_count(self) -> int:
        return len(self._points)

    @property
    def rejected_count(self) -> int:
        return self._rejected

    @property
    def last_point(self) -> Optional[RoutePoint]:
        return self._points[-1] if self._points else None

    def accept(self, sample: GeoSample) -> AcceptResult:
        """
        Offer a sample to the route.

        Args:
            sample: Location observation from the provider

        Returns:
            ACCEPTED if the sample was appended, otherwise the rejection reason
        """
        result = self._check(sample)
        if not result.accepted:
            self._rejected += 1
            return result

        last = self.last_point
        if last is not None:
            self._distance_m += haversine_meters(
                last.latitude, last.longitude, sample.latitude, sample.longitude
            )
        self._points.append(sample.to_route_point())
        return result

    def _check(self, sample: GeoSample) -> AcceptResult:
        if sample.horizontal_accuracy < 0 or sample.horizontal_accuracy > self.max_accuracy_m:
            return AcceptResult.LOW_ACCURACY

        last = self.last_point
        if last is None:
            return AcceptResult.ACCEPTED

        dt = sample.timestamp - last.timestamp
        if dt <= 0:
            return AcceptResult.OUT_OF_ORDER

        delta_m = haversine_meters(last.latitude, last.longitude, sample.latitude, sample.longitude)
        if delta_m / dt > self.max_speed_mps:
            return AcceptResult.IMPLAUSIBLE_SPEED

        if self.min_movement_m > 0 and delta_m < self.min_movement_m:
            return AcceptResult.BELOW_MIN_MOVEMENT

        return AcceptResult.ACCEPTED

    def current_route(self) -> Tuple[RoutePoint, ...]:
        """Point-in-time copy of the route; later samples do not change it."""
        return tuple(self._points)

    def reset(self) -> None:
        """Clear route and distance."""
        self._points = []
        self._distance_m = 0.0
        self._rejected = 0

    def restore(self, points: Sequence[RoutePoint], distance_m: Optional[float] = None) -> None:
        """
        Seed the accumulator with a previously persisted route.

        Args:
            points: Route points in timestamp order
            distance_m: Last known cumulative distance. The larger of this and
                the path length of ``points`` is kept so a resumed trip never
                loses distance.
        """
        self._points = sorted(points, key=lambda p: p.timestamp)
        self._rejected = 0
        path_m = path_length_meters(self._points)
        self._distance_m = max(path_m, distance_m or 0.0)
