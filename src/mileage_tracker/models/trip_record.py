"""Finalized trip record handed to the mileage log."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from mileage_tracker.models.data_records import DestinationSource, RoutePoint


class TrackingMode(Enum):
    """How a trip's distance was produced."""

    MANUAL = "manual"
    POINT_TO_POINT = "point_to_point"
    ACTIVE_TRACKING = "active_tracking"
    ROUTE_BASED = "route_based"

    @property
    def label(self) -> str:
        return {
            TrackingMode.MANUAL: "Manual",
            TrackingMode.POINT_TO_POINT: "Point to Point",
            TrackingMode.ACTIVE_TRACKING: "GPS Tracking",
            TrackingMode.ROUTE_BASED: "Route Based",
        }[self]


@dataclass
class TripRecord:
    """
    A logged trip for mileage deduction purposes.

    ``distance_km`` is one-way. Round trips double it, except for
    continuous-tracking trips, where the route length already covers
    the whole drive.
    """

    date: float  # Unix timestamp of the trip day
    tracking_mode: TrackingMode
    distance_km: float = 0.0
    is_round_trip: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Endpoints
    start_location: str = ""
    end_location: str = ""
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None

    # Continuous tracking
    route_points: List[RoutePoint] = field(default_factory=list)
    trip_start_time: Optional[float] = None
    trip_end_time: Optional[float] = None
    duration_secs: Optional[float] = None

    purpose: str = ""
    notes: str = ""

    # Links to external entities
    client_id: Optional[str] = None
    job_id: Optional[str] = None

    # Route-based capture
    was_route_calculated: bool = False
    calculated_distance_km: Optional[float] = None
    expected_travel_time: Optional[float] = None  # seconds
    destination_name: Optional[str] = None
    destination_latitude: Optional[float] = None
    destination_longitude: Optional[float] = None
    destination_source_raw: Optional[str] = None

    created_at: float = field(default_factory=time.time)

    @property
    def effective_distance_km(self) -> float:
        if self.tracking_mode is TrackingMode.ACTIVE_TRACKING:
            return self.distance_km
        return self.distance_km * 2 if self.is_round_trip else self.distance_km

    @property
    def has_gps_data(self) -> bool:
        return bool(self.route_points) or (
            self.start_latitude is not None and self.end_latitude is not None
        )

    @property
    def destination_source(self) -> Optional[DestinationSource]:
        return DestinationSource.from_raw(self.destination_source_raw)

    @property
    def location_string(self) -> str:
        if not self.start_location and not self.end_location:
            return ""
        if not self.start_location:
            return self.end_location
        if not self.end_location:
            return self.start_location
        return f"{self.start_location} → {self.end_location}"

    @property
    def display_date(self) -> str:
        return datetime.fromtimestamp(self.date).strftime("%d %b %Y")
