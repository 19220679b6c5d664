# Mileage Tracker - Data models
from mileage_tracker.models.data_records import (
    Coordinate,
    GeoSample,
    RoutePoint,
    TripResult,
    DestinationKind,
    DestinationSource,
    ResolvedDestination,
    RouteEstimate,
)
from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.models.snapshot import PersistedTripSnapshot

__all__ = [
    "Coordinate",
    "GeoSample",
    "RoutePoint",
    "TripResult",
    "DestinationKind",
    "DestinationSource",
    "ResolvedDestination",
    "RouteEstimate",
    "TrackingMode",
    "TripRecord",
    "PersistedTripSnapshot",
]
