"""Durable projection of an in-progress trip, used for crash recovery."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from mileage_tracker.models.data_records import Coordinate
from mileage_tracker.models.trip_record import TrackingMode


@dataclass
class PersistedTripSnapshot:
    """
    Serializable state of an unfinished trip.

    The route itself lives in the store's route-point log; only the
    count is kept here.
    """

    tracking_mode: TrackingMode
    start_time: float = field(default_factory=time.time)
    trip_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    purpose: str = ""

    # Start location
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    start_location_name: Optional[str] = None

    # Destination (route-based)
    destination_latitude: Optional[float] = None
    destination_longitude: Optional[float] = None
    destination_name: Optional[str] = None
    destination_source_raw: Optional[str] = None

    # Calculated route info (route-based)
    calculated_distance_m: Optional[float] = None
    expected_travel_time: Optional[float] = None

    route_point_count: int = 0
    distance_m: float = 0.0  # Last known cumulative distance

    client_id: Optional[str] = None
    job_id: Optional[str] = None

    last_saved_at: float = field(default_factory=time.time)

    @property
    def has_start_location(self) -> bool:
        return self.start_latitude is not None and self.start_longitude is not None

    @property
    def has_destination(self) -> bool:
        return self.destination_latitude is not None and self.destination_longitude is not None

    @property
    def start_coordinate(self) -> Optional[Coordinate]:
        if not self.has_start_location:
            return None
        return Coordinate(self.start_latitude, self.start_longitude)

    @property
    def destination_coordinate(self) -> Optional[Coordinate]:
        if not self.has_destination:
            return None
        return Coordinate(self.destination_latitude, self.destination_longitude)

    def age_secs(self, now: Optional[float] = None) -> float:
        """Seconds since the snapshot was last written."""
        return (now if now is not None else time.time()) - self.last_saved_at

    def formatted_duration(self, now: Optional[float] = None) -> str:
        """Elapsed time since trip start as 'Xh Ym' or 'X min'."""
        duration = int((now if now is not None else time.time()) - self.start_time)
        hours = duration // 3600
        minutes = (duration % 3600) // 60
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes} min"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tracking_mode"] = self.tracking_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PersistedTripSnapshot:
        """
        Build a snapshot from its JSON form.

        Raises:
            KeyError, ValueError, TypeError: if required fields are missing
                or malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"snapshot must be an object, got {type(data).__name__}")

        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        filtered["tracking_mode"] = TrackingMode(filtered["tracking_mode"])
        snapshot = cls(**filtered)

        for name in _NUMBER_FIELDS:
            value = getattr(snapshot, name)
            if not _is_number(value):
                raise TypeError(f"{name} must be a number")
        for name in _OPTIONAL_NUMBER_FIELDS:
            value = getattr(snapshot, name)
            if value is not None and not _is_number(value):
                raise TypeError(f"{name} must be a number")
        if not isinstance(snapshot.route_point_count, int) or isinstance(snapshot.route_point_count, bool):
            raise TypeError("route_point_count must be an integer")
        return snapshot


_NUMBER_FIELDS = ("start_time", "last_saved_at", "distance_m")
_OPTIONAL_NUMBER_FIELDS = (
    "start_latitude",
    "start_longitude",
    "destination_latitude",
    "destination_longitude",
    "calculated_distance_m",
    "expected_travel_time",
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
