"""Cross-year baseline selection and cost-delta estimate for billing records."""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date
from statistics import mean
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from portal_errors import DataError
from run_logging import log_event
from usage_records import UsageRecord


@dataclass(frozen=True)
class AlignedBaseline:
    """A prior year's record chosen as the comparison point for the current bill."""

    year: int
    record: UsageRecord


@dataclass(frozen=True)
class CostEstimate:
    average_baseline: float
    current_usage: float
    difference: float
    price_per_unit: float
    additional_cost: float


@dataclass(frozen=True)
class UsageComparison:
    current: UsageRecord
    baselines: Tuple[AlignedBaseline, ...]
    estimate: CostEstimate


def day_distance(candidate: date, year: int, month: int, day: int) -> int:
    """Absolute day count between ``candidate`` and ``year-month-day``.

    A Feb 29 target in a non-leap year is measured as if the year had that day,
    so Feb 28 and Mar 1 are both one day away and neither is preferred.
    """
    if (month, day) == (2, 29) and not calendar.isleap(year):
        feb_28 = date(year, 2, 28)
        if candidate <= feb_28:
            return (feb_28 - candidate).days + 1
        return (candidate - date(year, 3, 1)).days + 1
    return abs((candidate - date(year, month, day)).days)


def closest_record(
    candidates: Iterable[UsageRecord],
    year: int,
    month: int,
    day: int,
) -> Optional[UsageRecord]:
    """Nearest bill date to the target; the first candidate in input order wins ties."""
    best: Optional[UsageRecord] = None
    best_distance: Optional[int] = None
    for record in candidates:
        distance = day_distance(record.bill_date, year, month, day)
        if best_distance is None or distance < best_distance:
            best = record
            best_distance = distance
    return best


def align_baselines(records: Sequence[UsageRecord], latest_date: date) -> Dict[int, AlignedBaseline]:
    """Pick, for every year before ``latest_date``'s, the bill closest to its month/day.

    Years come out in order of first appearance in ``records``; years with no
    bills are absent.
    """
    by_year: Dict[int, List[UsageRecord]] = {}
    for record in records:
        year = record.bill_date.year
        if year < latest_date.year:
            by_year.setdefault(year, []).append(record)

    baselines: Dict[int, AlignedBaseline] = {}
    for year, candidates in by_year.items():
        match = closest_record(candidates, year, latest_date.month, latest_date.day)
        if match is None:
            continue
        baselines[year] = AlignedBaseline(year=year, record=match)
        log_event(
            "BASELINE_MATCH",
            year=year,
            bill_date=match.bill_date.strftime("%m-%d-%Y"),
            usage=match.total_usage,
        )
    return baselines


def average_usage(baselines: Union[Mapping[int, AlignedBaseline], Iterable[AlignedBaseline]]) -> float:
    items = list(baselines.values()) if isinstance(baselines, Mapping) else list(baselines)
    if not items:
        return 0.0
    return mean(item.record.total_usage for item in items)


def estimate_cost(
    current_usage: float,
    current_bill_amount: Optional[float],
    average_baseline: float,
) -> CostEstimate:
    if current_bill_amount is None:
        raise DataError("Current bill has no Bill Amount; price per CCF is undefined.")
    inputs = (current_usage, current_bill_amount, average_baseline)
    if not all(math.isfinite(value) for value in inputs):
        raise DataError(f"Non-finite input to cost estimate: {inputs}")
    if current_usage == 0:
        raise DataError("Current usage is 0 CCF; price per CCF is undefined.")
    difference = current_usage - average_baseline
    price_per_unit = current_bill_amount / current_usage
    additional_cost = difference * price_per_unit
    if not (math.isfinite(price_per_unit) and math.isfinite(additional_cost)):
        raise DataError("Cost estimate overflowed; check Total Usage and Bill Amount values.")
    return CostEstimate(
        average_baseline=average_baseline,
        current_usage=current_usage,
        difference=difference,
        price_per_unit=price_per_unit,
        additional_cost=additional_cost,
    )


def compare_latest_bill(records: Sequence[UsageRecord]) -> UsageComparison:
    """Compare the latest bill (``records[0]``) with its aligned prior-year bills."""
    if not records:
        raise DataError("Usage dataset is empty.")
    current = records[0]
    baselines = align_baselines(records, current.bill_date)
    estimate = estimate_cost(current.total_usage, current.bill_amount, average_usage(baselines))
    return UsageComparison(current=current, baselines=tuple(baselines.values()), estimate=estimate)


def same_month_records(records: Iterable[UsageRecord], month: int, year: int) -> List[UsageRecord]:
    return [r for r in records if r.bill_date.month == month and r.bill_date.year != year]


def current_month_record(records: Iterable[UsageRecord], month: int, year: int) -> Optional[UsageRecord]:
    for record in records:
        if record.bill_date.month == month and record.bill_date.year == year:
            return record
    return None


def compare_month_over_years(records: Sequence[UsageRecord], month: int, year: int) -> UsageComparison:
    """Compare the bill dated in ``year-month`` with every other year's bills in that month."""
    if not records:
        raise DataError("Usage dataset is empty.")
    current = current_month_record(records, month, year)
    if current is None:
        raise DataError(f"No bill found for {year:04d}-{month:02d}.")
    baselines = tuple(
        AlignedBaseline(year=record.bill_date.year, record=record)
        for record in same_month_records(records, month, year)
    )
    estimate = estimate_cost(current.total_usage, current.bill_amount, average_usage(baselines))
    return UsageComparison(current=current, baselines=baselines, estimate=estimate)


def format_cost_report(comparison: UsageComparison, period_label: Optional[str] = None) -> List[str]:
    label = period_label or comparison.current.bill_date.strftime("%B")
    estimate = comparison.estimate
    return [
        f"Average CCF for previous years' {label}: {estimate.average_baseline:g}",
        f"Total CCF for the current {label}: {estimate.current_usage:g}",
        f"Difference in CCF: {estimate.difference:g}",
        f"Price per CCF for the current month: ${estimate.price_per_unit:.2f}",
        f"Additional cost based on the difference: ${estimate.additional_cost:.2f}",
    ]
