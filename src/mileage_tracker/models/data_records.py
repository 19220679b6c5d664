"""Data transfer objects for location samples, routes, and destinations."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Coordinate:
    """A latitude/longitude pair in degrees."""

    latitude: float
    longitude: float


@dataclass
class GeoSample:
    """A single location observation from a location provider."""

    latitude: float
    longitude: float
    altitude: Optional[float] = None  # Altitude (meters)
    speed: float = -1.0  # Speed (m/s), negative if unknown
    course: float = -1.0  # Heading (degrees, 0-359), negative if unknown
    horizontal_accuracy: float = -1.0  # Accuracy radius (meters), negative if invalid
    timestamp: float = field(default_factory=time.time)  # Unix timestamp

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def to_route_point(self) -> RoutePoint:
        """Convert to a route point, dropping unknown speed/course."""
        return RoutePoint(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=self.timestamp,
            speed=self.speed if self.speed >= 0 else None,
            course=self.course if self.course >= 0 else None,
            altitude=self.altitude,
        )


@dataclass(frozen=True)
class RoutePoint:
    """A location retained as part of a trip's route."""

    latitude: float
    longitude: float
    timestamp: float  # Unix timestamp
    speed: Optional[float] = None  # m/s
    course: Optional[float] = None  # degrees
    altitude: Optional[float] = None  # meters

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass
class TripResult:
    """Outcome of a continuous tracking session, returned on stop."""

    start_time: float
    end_time: float
    total_distance_m: float
    route_points: Tuple[RoutePoint, ...] = ()

    @property
    def duration_secs(self) -> float:
        return max(0.0, self.end_time - self.start_time)

    @property
    def start_point(self) -> Optional[RoutePoint]:
        return self.route_points[0] if self.route_points else None

    @property
    def end_point(self) -> Optional[RoutePoint]:
        return self.route_points[-1] if self.route_points else None


class DestinationKind(Enum):
    """Where a destination came from."""

    ADDRESS_SEARCH = "address_search"
    JOB = "job"
    CLIENT = "client"
    CURRENT_LOCATION = "current_location"
    MANUAL = "manual"


@dataclass(frozen=True)
class DestinationSource:
    """
    Identity of a resolved destination.

    Stored on trip records and snapshots as a compact JSON tag
    (see ``to_raw``/``from_raw``).
    """

    kind: DestinationKind
    query: Optional[str] = None  # Address search text
    entity_id: Optional[str] = None  # Linked job/client id
    label: Optional[str] = None  # Pad name or company name

    @classmethod
    def address_search(cls, query: str) -> DestinationSource:
        return cls(DestinationKind.ADDRESS_SEARCH, query=query)

    @classmethod
    def job(cls, job_id: str, pad_name: str) -> DestinationSource:
        return cls(DestinationKind.JOB, entity_id=job_id, label=pad_name)

    @classmethod
    def client(cls, client_id: str, company_name: str) -> DestinationSource:
        return cls(DestinationKind.CLIENT, entity_id=client_id, label=company_name)

    @classmethod
    def current_location(cls) -> DestinationSource:
        return cls(DestinationKind.CURRENT_LOCATION)

    @classmethod
    def manual(cls) -> DestinationSource:
        return cls(DestinationKind.MANUAL)

    @property
    def display_name(self) -> str:
        if self.kind is DestinationKind.ADDRESS_SEARCH:
            return f"Search: {self.query}"
        if self.kind is DestinationKind.JOB:
            return f"Job: {self.label}"
        if self.kind is DestinationKind.CLIENT:
            return f"Client: {self.label}"
        if self.kind is DestinationKind.CURRENT_LOCATION:
            return "Current Location"
        return "Manual Entry"

    def to_raw(self) -> str:
        data = {"kind": self.kind.value}
        for key in ("query", "entity_id", "label"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> Optional[DestinationSource]:
        """Parse a stored tag. Returns None for missing or malformed tags."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return cls(
                kind=DestinationKind(data["kind"]),
                query=data.get("query"),
                entity_id=data.get("entity_id"),
                label=data.get("label"),
            )
        except (ValueError, KeyError, TypeError):
            return None


@dataclass(frozen=True)
class ResolvedDestination:
    """A destination with coordinates, ready for route calculation."""

    name: str
    coordinate: Coordinate
    source: DestinationSource
    address: Optional[str] = None

    @property
    def subtitle(self) -> str:
        return self.address or self.source.display_name


@dataclass
class RouteEstimate:
    """Distance and travel time between two coordinates."""

    distance_m: float
    travel_time_secs: float
    start: Coordinate
    end: Coordinate
    polyline: List[Coordinate] = field(default_factory=list)
    was_calculated: bool = True  # False for straight-line fallbacks

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000

    @property
    def travel_time_formatted(self) -> str:
        """Format travel time as 'Xh Ym' or 'X min'."""
        hours = int(self.travel_time_secs) // 3600
        minutes = (int(self.travel_time_secs) % 3600) // 60
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes} min"
