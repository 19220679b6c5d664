"""Tiered CRA mileage deduction and yearly summaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from mileage_tracker.models.trip_record import TripRecord

FIRST_TIER_LIMIT_KM = 5000.0
FIRST_TIER_RATE = 0.70
SECOND_TIER_RATE = 0.64


def calculate_deduction(
    total_km: float,
    first_tier_limit_km: float = FIRST_TIER_LIMIT_KM,
    first_tier_rate: float = FIRST_TIER_RATE,
    second_tier_rate: float = SECOND_TIER_RATE,
    year_to_date_km: float = 0.0,
) -> float:
    """
    Calculate the tiered deduction for a distance.

    The first-tier band is shared across a tax year: kilometres already
    logged (``year_to_date_km``) use up the band before ``total_km`` is
    priced.

    Args:
        total_km: Distance to price (kilometres)
        first_tier_limit_km: Kilometres per year reimbursed at the first rate
        first_tier_rate: Rate per km inside the first tier
        second_tier_rate: Rate per km beyond the first tier
        year_to_date_km: Kilometres already logged earlier in the same year

    Returns:
        Deduction amount in dollars (never negative)
    """
    total_km = max(0.0, total_km)
    remaining_first_tier = max(0.0, first_tier_limit_km - max(0.0, year_to_date_km))
    km_at_first_rate = min(total_km, remaining_first_tier)
    km_at_second_rate = max(0.0, total_km - km_at_first_rate)
    return km_at_first_rate * first_tier_rate + km_at_second_rate * second_tier_rate


@dataclass
class MileageSummary:
    """Aggregated mileage for a set of trips (normally one tax year)."""

    total_km: float
    total_trips: int
    estimated_deduction: float

    @property
    def average_trip_km(self) -> float:
        if self.total_trips == 0:
            return 0.0
        return self.total_km / self.total_trips


def summarize(
    records: Iterable[TripRecord],
    first_tier_limit_km: float = FIRST_TIER_LIMIT_KM,
    first_tier_rate: float = FIRST_TIER_RATE,
    second_tier_rate: float = SECOND_TIER_RATE,
) -> MileageSummary:
    """
    Summarize trips, pricing the cumulative effective distance once.

    Callers pass the trips of a single tax year; pricing each trip on its
    own would grant the first-tier rate to every trip.
    """
    records = list(records)
    total_km = sum(r.effective_distance_km for r in records)
    return MileageSummary(
        total_km=total_km,
        total_trips=len(records),
        estimated_deduction=calculate_deduction(
            total_km, first_tier_limit_km, first_tier_rate, second_tier_rate
        ),
    )


def trip_deduction(
    record: TripRecord,
    year_to_date_km: float = 0.0,
    first_tier_limit_km: float = FIRST_TIER_LIMIT_KM,
    first_tier_rate: float = FIRST_TIER_RATE,
    second_tier_rate: float = SECOND_TIER_RATE,
) -> float:
    """Marginal deduction of one trip given kilometres logged earlier that year."""
    return calculate_deduction(
        record.effective_distance_km,
        first_tier_limit_km,
        first_tier_rate,
        second_tier_rate,
        year_to_date_km=year_to_date_km,
    )
