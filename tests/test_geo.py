"""
Geo Utility Tests
=================

Great-circle distance and unit conversions.
"""

import pytest

from mileage_tracker.models.data_records import Coordinate, RoutePoint
from mileage_tracker.utils.geo import (
    distance_meters,
    haversine_meters,
    kph_to_mps,
    meters_to_km,
    mps_to_kph,
    path_length_meters,
)


class TestHaversine:
    """Tests for haversine_meters / distance_meters."""

    def test_one_degree_of_latitude(self):
        """One degree of latitude is about 111.2 km."""
        d = haversine_meters(53.0, -113.0, 54.0, -113.0)
        assert d == pytest.approx(111_195, rel=1e-3)

    def test_identical_coordinates_are_zero(self):
        c = Coordinate(53.5461, -113.4938)
        assert distance_meters(c, c) == 0.0

    def test_symmetric(self):
        a = Coordinate(53.5461, -113.4938)
        b = Coordinate(51.0447, -114.0719)
        assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))

    def test_edmonton_to_calgary(self):
        """Roughly 280 km as the crow flies."""
        a = Coordinate(53.5461, -113.4938)
        b = Coordinate(51.0447, -114.0719)
        assert 270_000 < distance_meters(a, b) < 290_000

    def test_antipodal_points_do_not_fail(self):
        d = haversine_meters(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(3.14159265 * 6371000, rel=1e-6)

    @pytest.mark.parametrize(
        "a, b, c",
        [
            ((53.5461, -113.4938), (52.2681, -113.8112), (51.0447, -114.0719)),
            ((53.5, -113.5), (53.5001, -113.5), (53.5002, -113.5)),
            ((10.0, 179.9), (10.0, -179.9), (10.5, -179.5)),
            ((-33.8688, 151.2093), (0.0, 0.0), (51.5074, -0.1278)),
            ((89.9, 0.0), (89.9, 180.0), (0.0, 90.0)),
        ],
    )
    def test_triangle_inequality(self, a, b, c):
        a, b, c = Coordinate(*a), Coordinate(*b), Coordinate(*c)
        assert distance_meters(a, c) <= distance_meters(a, b) + distance_meters(b, c) + 1e-6
        assert distance_meters(a, b) <= distance_meters(a, c) + distance_meters(c, b) + 1e-6


class TestPathLength:
    """Tests for path_length_meters."""

    def test_empty_and_single_point(self):
        assert path_length_meters([]) == 0.0
        assert path_length_meters([RoutePoint(53.0, -113.0, 0.0)]) == 0.0

    def test_sum_of_legs(self):
        points = [
            RoutePoint(53.0, -113.0, 0.0),
            RoutePoint(53.001, -113.0, 10.0),
            RoutePoint(53.001, -113.001, 20.0),
        ]
        expected = haversine_meters(53.0, -113.0, 53.001, -113.0) + haversine_meters(
            53.001, -113.0, 53.001, -113.001
        )
        assert path_length_meters(points) == pytest.approx(expected)


def test_unit_conversions():
    assert meters_to_km(1500) == 1.5
    assert mps_to_kph(10) == pytest.approx(36.0)
    assert kph_to_mps(36) == pytest.approx(10.0)
