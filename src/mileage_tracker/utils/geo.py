"""Geographic utility functions for distance and unit conversions."""

from __future__ import annotations

import math
from typing import Iterable

from mileage_tracker.models.data_records import Coordinate

# Earth radius
EARTH_RADIUS_M = 6371000  # meters

# Conversion constants
METERS_PER_KM = 1000.0
MPS_TO_KPH = 3.6


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points in meters.

    Args:
        lat1: Latitude of first point (degrees)
        lon1: Longitude of first point (degrees)
        lat2: Latitude of second point (degrees)
        lon2: Longitude of second point (degrees)

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push a fraction past 1.0 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_M * c


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""
    if a == b:
        return 0.0
    return haversine_meters(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_meters(points: Iterable) -> float:
    """
    Sum of leg distances along an ordered sequence of points.

    Accepts anything with ``latitude``/``longitude`` attributes.
    """
    total = 0.0
    prev = None
    for point in points:
        if prev is not None:
            total += haversine_meters(prev.latitude, prev.longitude, point.latitude, point.longitude)
        prev = point
    return total


def meters_to_km(meters: float) -> float:
    """Convert meters to kilometers."""
    return meters / METERS_PER_KM


def km_to_meters(km: float) -> float:
    """Convert kilometers to meters."""
    return km * METERS_PER_KM


def mps_to_kph(mps: float) -> float:
    """Convert meters per second to kilometers per hour."""
    return mps * MPS_TO_KPH


def kph_to_mps(kph: float) -> float:
    """Convert kilometers per hour to meters per second."""
    return kph / MPS_TO_KPH
