"""
Route Accumulator Tests
=======================

Sample filtering and running distance.
"""

import pytest

from mileage_tracker.models.data_records import GeoSample, RoutePoint
from mileage_tracker.services.route_accumulator import AcceptResult, RouteAccumulator
from mileage_tracker.utils.geo import haversine_meters


def sample(lat, lon, t, accuracy=5.0, speed=-1.0):
    return GeoSample(latitude=lat, longitude=lon, timestamp=t, horizontal_accuracy=accuracy, speed=speed)


class TestFiltering:
    """Tests for accept() rejection reasons."""

    def test_first_sample_accepted_with_zero_distance(self):
        acc = RouteAccumulator()
        assert acc.accept(sample(53.0, -113.0, 0)) is AcceptResult.ACCEPTED
        assert acc.distance_m == 0.0
        assert acc.point_count == 1

    def test_low_accuracy_rejected(self):
        acc = RouteAccumulator(max_accuracy_m=100)
        assert acc.accept(sample(53.0, -113.0, 0, accuracy=150)) is AcceptResult.LOW_ACCURACY
        assert acc.point_count == 0
        assert acc.rejected_count == 1

    def test_invalid_accuracy_rejected(self):
        acc = RouteAccumulator()
        assert acc.accept(sample(53.0, -113.0, 0, accuracy=-1)) is AcceptResult.LOW_ACCURACY

    def test_accuracy_at_threshold_accepted(self):
        acc = RouteAccumulator(max_accuracy_m=100)
        assert acc.accept(sample(53.0, -113.0, 0, accuracy=100)).accepted

    def test_same_or_older_timestamp_rejected(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 10))
        assert acc.accept(sample(53.0001, -113.0, 10)) is AcceptResult.OUT_OF_ORDER
        assert acc.accept(sample(53.0001, -113.0, 5)) is AcceptResult.OUT_OF_ORDER
        assert acc.point_count == 1

    def test_gps_jump_rejected(self):
        """~11 km in one second is not a car."""
        acc = RouteAccumulator(max_speed_mps=70)
        acc.accept(sample(53.0, -113.0, 0))
        assert acc.accept(sample(53.1, -113.0, 1)) is AcceptResult.IMPLAUSIBLE_SPEED
        assert acc.distance_m == 0.0

    def test_jitter_filter(self):
        acc = RouteAccumulator(min_movement_m=10)
        acc.accept(sample(53.0, -113.0, 0))
        # ~1 m
        assert acc.accept(sample(53.00001, -113.0, 1)) is AcceptResult.BELOW_MIN_MOVEMENT

    def test_jitter_filter_disabled_by_default(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 0))
        assert acc.accept(sample(53.00001, -113.0, 1)).accepted


class TestDistance:
    """Tests for distance accumulation."""

    def test_cumulative_distance(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 0))
        acc.accept(sample(53.001, -113.0, 10))
        acc.accept(sample(53.001, -113.001, 20))

        expected = haversine_meters(53.0, -113.0, 53.001, -113.0) + haversine_meters(
            53.001, -113.0, 53.001, -113.001
        )
        assert acc.distance_m == pytest.approx(expected)

    def test_distance_never_decreases(self):
        acc = RouteAccumulator()
        previous = 0.0
        samples = [
            sample(53.0, -113.0, 0),
            sample(53.0005, -113.0, 5),
            sample(53.2, -113.0, 6),  # jump, rejected
            sample(53.0004, -113.0, 4),  # out of order
            sample(53.001, -113.0, 10, accuracy=500),  # coarse
            sample(53.001, -113.0, 12),
        ]
        for s in samples:
            acc.accept(s)
            assert acc.distance_m >= previous
            previous = acc.distance_m

    def test_current_route_is_a_snapshot(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 0))
        route = acc.current_route()
        acc.accept(sample(53.001, -113.0, 10))
        assert len(route) == 1
        assert len(acc.current_route()) == 2

    def test_route_points_drop_invalid_speed(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 0, speed=-1.0))
        assert acc.last_point.speed is None

    def test_reset(self):
        acc = RouteAccumulator()
        acc.accept(sample(53.0, -113.0, 0))
        acc.accept(sample(53.001, -113.0, 10))
        acc.reset()
        assert acc.distance_m == 0.0
        assert acc.point_count == 0
        assert acc.last_point is None


class TestRestore:
    """Tests for restore()."""

    def test_restore_sorts_and_measures(self):
        points = [RoutePoint(53.001, -113.0, 10.0), RoutePoint(53.0, -113.0, 0.0)]
        acc = RouteAccumulator()
        acc.restore(points)
        assert [p.timestamp for p in acc.current_route()] == [0.0, 10.0]
        assert acc.distance_m == pytest.approx(haversine_meters(53.0, -113.0, 53.001, -113.0))

    def test_restore_keeps_larger_known_distance(self):
        acc = RouteAccumulator()
        acc.restore([RoutePoint(53.0, -113.0, 0.0)], distance_m=500.0)
        assert acc.distance_m == 500.0

    def test_accepting_after_restore_continues(self):
        acc = RouteAccumulator()
        acc.restore([RoutePoint(53.0, -113.0, 0.0)])
        assert acc.accept(sample(53.0, -113.0, 0)) is AcceptResult.OUT_OF_ORDER
        assert acc.accept(sample(53.001, -113.0, 10)).accepted
        assert acc.point_count == 2
