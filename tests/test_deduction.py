"""
Deduction Tests
===============

Tiered per-kilometre deduction and yearly summaries.
"""

from datetime import datetime

import pytest

from mileage_tracker.models.trip_record import TrackingMode, TripRecord
from mileage_tracker.services.deduction import (
    calculate_deduction,
    summarize,
    trip_deduction,
)


def _ts(year, month=6, day=1):
    return datetime(year, month, day, 12, 0).timestamp()


class TestCalculateDeduction:
    """Tests for calculate_deduction."""

    def test_zero_distance(self):
        assert calculate_deduction(0) == 0.0

    def test_exactly_first_tier(self):
        assert calculate_deduction(5000) == pytest.approx(3500.0)

    def test_crosses_tier_boundary(self):
        # 5000 * 0.70 + 1000 * 0.64
        assert calculate_deduction(6000) == pytest.approx(4140.0)

    def test_small_trip(self):
        assert calculate_deduction(100) == pytest.approx(70.0)

    def test_negative_distance_is_zero(self):
        assert calculate_deduction(-10) == 0.0

    def test_custom_rates(self):
        assert calculate_deduction(200, first_tier_limit_km=100, first_tier_rate=1.0, second_tier_rate=0.5) == 150.0

    def test_year_to_date_uses_up_first_tier(self):
        # 100 km left in the first tier, 200 km beyond it
        assert calculate_deduction(300, year_to_date_km=4900) == pytest.approx(100 * 0.70 + 200 * 0.64)

    def test_year_to_date_past_first_tier(self):
        assert calculate_deduction(100, year_to_date_km=8000) == pytest.approx(64.0)


class TestSummaries:
    """Tests for summarize / trip_deduction."""

    def test_tiers_apply_to_cumulative_total(self):
        """Two 3000 km trips must not both be priced at the first-tier rate."""
        records = [
            TripRecord(date=_ts(2025, 3), tracking_mode=TrackingMode.MANUAL, distance_km=3000),
            TripRecord(date=_ts(2025, 4), tracking_mode=TrackingMode.MANUAL, distance_km=3000),
        ]
        summary = summarize(records)
        assert summary.total_km == 6000
        assert summary.total_trips == 2
        assert summary.estimated_deduction == pytest.approx(4140.0)
        assert summary.average_trip_km == 3000

    def test_round_trip_doubles_distance(self):
        records = [
            TripRecord(date=_ts(2025), tracking_mode=TrackingMode.POINT_TO_POINT, distance_km=10, is_round_trip=True)
        ]
        assert summarize(records).total_km == 20

    def test_round_trip_flag_ignored_for_tracked_trips(self):
        record = TripRecord(
            date=_ts(2025), tracking_mode=TrackingMode.ACTIVE_TRACKING, distance_km=10, is_round_trip=True
        )
        assert record.effective_distance_km == 10

    def test_empty_summary(self):
        summary = summarize([])
        assert summary.total_km == 0
        assert summary.estimated_deduction == 0
        assert summary.average_trip_km == 0

    def test_trip_deduction_is_marginal(self):
        record = TripRecord(date=_ts(2025), tracking_mode=TrackingMode.MANUAL, distance_km=100)
        assert trip_deduction(record) == pytest.approx(70.0)
        assert trip_deduction(record, year_to_date_km=5000) == pytest.approx(64.0)
