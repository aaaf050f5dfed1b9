"""
Temporal Distributor — annual total → period-bound count → weekly buckets.

Algorithm:
  1. For every calendar month overlapping [start_date, end_date] (inclusive):
       month_volume = total_events × month_pct / 100 × overlap_days / days_in_month
  2. calculated_events = round_half_up(Σ month_volume)
  3. Split calculated_events over the ISO weeks touching the period with an
     equal real-valued share per week; the integer remainder goes to the
     earliest weeks (largest remainder), so Σ weekly quota == calculated_events.

Seasonality is looked up per calendar year; a missing year falls back to the
start year's curve, then to a uniform 100/12 curve.
"""

from __future__ import annotations

import calendar
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

import structlog

from allocation.apportion import largest_remainder, round_half_up
from allocation.errors import InvalidPeriod, InvalidVolume
from allocation.snapshot import week_start

logger = structlog.get_logger()

UNIFORM_SEASONALITY: tuple[float, ...] = tuple([100.0 / 12] * 12)


@dataclass(frozen=True)
class MonthShare:
    year: int
    month: int
    pct: float
    overlap_days: int
    days_in_month: int
    volume: Decimal


@dataclass(frozen=True)
class WeekBucket:
    index: int
    week_start: date  # Monday
    days: tuple[date, ...]  # days of this week inside the period
    quota: int

    @property
    def iso_label(self) -> str:
        iso_year, iso_week, _ = self.week_start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"


@dataclass(frozen=True)
class TemporalDistribution:
    exact_events: Decimal
    calculated_events: int
    months: list[MonthShare]
    weeks: list[WeekBucket]


def validate_request(total_events: int, start_date: date, end_date: date) -> None:
    if start_date >= end_date:
        raise InvalidPeriod(f"start_date {start_date} must be before end_date {end_date}")
    if total_events < 0:
        raise InvalidVolume(f"total_events must be non-negative, got {total_events}")


def curve_for_year(
    year: int,
    seasonality: Mapping[int, Sequence[float]],
    fallback_year: int,
) -> Sequence[float]:
    if year in seasonality:
        return seasonality[year]
    if fallback_year in seasonality:
        return seasonality[fallback_year]
    return UNIFORM_SEASONALITY


def month_shares(
    total_events: int,
    seasonality: Mapping[int, Sequence[float]],
    start_date: date,
    end_date: date,
) -> list[MonthShare]:
    shares = []
    year, month = start_date.year, start_date.month
    while (year, month) <= (end_date.year, end_date.month):
        days_in_month = calendar.monthrange(year, month)[1]
        first = max(start_date, date(year, month, 1))
        last = min(end_date, date(year, month, days_in_month))
        overlap = (last - first).days + 1
        pct = float(curve_for_year(year, seasonality, start_date.year)[month - 1] or 0.0)
        volume = Decimal(total_events) * Decimal(str(pct)) / 100 * Decimal(overlap) / Decimal(days_in_month)
        shares.append(MonthShare(year, month, pct, overlap, days_in_month, volume))

        month += 1
        if month > 12:
            year, month = year + 1, 1
    return shares


def period_weeks(start_date: date, end_date: date) -> list[tuple[date, tuple[date, ...]]]:
    """ISO weeks touching the period, each with its in-period days."""
    weeks = []
    monday = week_start(start_date)
    while monday <= end_date:
        days = tuple(
            monday + timedelta(days=offset)
            for offset in range(7)
            if start_date <= monday + timedelta(days=offset) <= end_date
        )
        weeks.append((monday, days))
        monday += timedelta(days=7)
    return weeks


def distribute(
    total_events: int,
    seasonality: Mapping[int, Sequence[float]],
    start_date: date,
    end_date: date,
) -> TemporalDistribution:
    """Convert an annual total into per-ISO-week integer quotas for the period."""
    validate_request(total_events, start_date, end_date)

    months = month_shares(total_events, seasonality, start_date, end_date)
    exact = sum((m.volume for m in months), Decimal(0))
    calculated = round_half_up(exact)

    weeks = period_weeks(start_date, end_date)
    quotas = largest_remainder(calculated, [1] * len(weeks))
    buckets = [
        WeekBucket(index=i, week_start=monday, days=days, quota=quota)
        for i, ((monday, days), quota) in enumerate(zip(weeks, quotas))
    ]

    logger.info(
        "allocation.temporal_distributed",
        total_events=total_events,
        calculated_events=calculated,
        months=len(months),
        weeks=len(buckets),
    )
    return TemporalDistribution(exact_events=exact, calculated_events=calculated, months=months, weeks=buckets)
