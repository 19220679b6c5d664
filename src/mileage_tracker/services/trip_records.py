"""Builders that turn tracking results and snapshots into TripRecords."""

from __future__ import annotations

from typing import Optional, Sequence

from mileage_tracker.models.data_records import RoutePoint, TripResult
from mileage_tracker.models.snapshot import PersistedTripSnapshot
from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.utils.geo import distance_meters, meters_to_km, path_length_meters


def record_from_trip_result(
    result: TripResult,
    purpose: str = "",
    client_id: Optional[str] = None,
    job_id: Optional[str] = None,
    start_location: str = "",
    end_location: str = "",
) -> TripRecord:
    """Build a continuous-tracking record from a stopped session."""
    record = TripRecord(
        date=result.start_time,
        tracking_mode=TrackingMode.ACTIVE_TRACKING,
        distance_km=meters_to_km(result.total_distance_m),
        purpose=purpose,
        client_id=client_id,
        job_id=job_id,
        start_location=start_location,
        end_location=end_location,
        route_points=list(result.route_points),
        trip_start_time=result.start_time,
        trip_end_time=result.end_time,
        duration_secs=result.duration_secs,
    )

    if result.start_point is not None:
        record.start_latitude = result.start_point.latitude
        record.start_longitude = result.start_point.longitude
    if result.end_point is not None:
        record.end_latitude = result.end_point.latitude
        record.end_longitude = result.end_point.longitude

    return record


def record_from_snapshot(
    snapshot: PersistedTripSnapshot,
    route_points: Sequence[RoutePoint] = (),
) -> TripRecord:
    """
    Build a record from an interrupted trip, ending it at ``last_saved_at``.

    Distance, in order of preference:
        1. the route estimate stored by a route-based capture
        2. the length of the persisted route log
        3. the straight line between the known start and end
    Degenerate input (no points, no coordinates) yields a zero-distance trip.
    """
    points = sorted(route_points, key=lambda p: p.timestamp)

    record = TripRecord(
        date=snapshot.start_time,
        tracking_mode=snapshot.tracking_mode,
        purpose=snapshot.purpose,
        client_id=snapshot.client_id,
        job_id=snapshot.job_id,
        start_location=snapshot.start_location_name or "",
        trip_start_time=snapshot.start_time,
        trip_end_time=snapshot.last_saved_at,
        duration_secs=max(0.0, snapshot.last_saved_at - snapshot.start_time),
    )

    # Start location
    start = snapshot.start_coordinate or (points[0].coordinate if points else None)
    if start is not None:
        record.start_latitude = start.latitude
        record.start_longitude = start.longitude

    # End location (destination, else last route point)
    end = snapshot.destination_coordinate or (points[-1].coordinate if points else None)
    if end is not None:
        record.end_latitude = end.latitude
        record.end_longitude = end.longitude
    if snapshot.destination_name:
        record.end_location = snapshot.destination_name

    # Distance
    if snapshot.calculated_distance_m is not None:
        record.distance_km = meters_to_km(snapshot.calculated_distance_m)
        record.was_route_calculated = True
        record.calculated_distance_km = record.distance_km
    elif len(points) > 1:
        record.distance_km = meters_to_km(max(path_length_meters(points), snapshot.distance_m))
    elif start is not None and end is not None:
        record.distance_km = meters_to_km(max(distance_meters(start, end), snapshot.distance_m))
    else:
        record.distance_km = meters_to_km(snapshot.distance_m)

    record.expected_travel_time = snapshot.expected_travel_time
    record.destination_name = snapshot.destination_name
    record.destination_latitude = snapshot.destination_latitude
    record.destination_longitude = snapshot.destination_longitude
    record.destination_source_raw = snapshot.destination_source_raw
    record.route_points = points

    return record
