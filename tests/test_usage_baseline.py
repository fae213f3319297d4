from datetime import date

import pytest

from portal_errors import DataError
from usage_baseline import (
    AlignedBaseline,
    align_baselines,
    average_usage,
    closest_record,
    compare_latest_bill,
    compare_month_over_years,
    day_distance,
    estimate_cost,
    format_cost_report,
    same_month_records,
)
from usage_records import UsageRecord


def _record(year, month, day, usage, amount=None):
    return UsageRecord(bill_date=date(year, month, day), total_usage=usage, bill_amount=amount)


@pytest.fixture(name="history")
def fixture_history():
    return [
        _record(2024, 1, 16, 15.0, 30.0),
        _record(2023, 1, 16, 11.0),
        _record(2022, 1, 17, 12.0),
        _record(2021, 1, 15, 10.0),
    ]


class TestAlignBaselines:
    """Tests for per-year nearest-date matching."""

    def test_worked_example(self, history):
        baselines = align_baselines(history, date(2024, 1, 16))

        assert {year: b.record.total_usage for year, b in baselines.items()} == {
            2023: 11.0,
            2022: 12.0,
            2021: 10.0,
        }
        assert list(baselines) == [2023, 2022, 2021]

    def test_picks_nearest_of_several_bills_in_a_year(self):
        records = [
            _record(2024, 6, 10, 20.0),
            _record(2023, 7, 12, 18.0),
            _record(2023, 6, 9, 17.0),
            _record(2023, 5, 11, 16.0),
        ]

        baselines = align_baselines(records, date(2024, 6, 10))

        assert baselines[2023].record.bill_date == date(2023, 6, 9)

    def test_never_returns_latest_or_later_years(self):
        records = [
            _record(2024, 3, 1, 9.0),
            _record(2024, 2, 1, 8.0),
            _record(2025, 3, 1, 7.0),
            _record(2022, 3, 2, 6.0),
        ]

        baselines = align_baselines(records, date(2024, 3, 1))

        assert list(baselines) == [2022]
        assert all(b.year < 2024 for b in baselines.values())

    def test_years_without_bills_are_absent(self):
        records = [_record(2024, 1, 5, 9.0), _record(2021, 1, 7, 6.0)]

        baselines = align_baselines(records, date(2024, 1, 5))

        assert 2022 not in baselines
        assert 2023 not in baselines
        assert baselines[2021] == AlignedBaseline(year=2021, record=records[1])

    def test_equal_distance_first_candidate_wins(self):
        earlier = _record(2023, 1, 15, 1.0)
        later = _record(2023, 1, 17, 2.0)

        assert align_baselines([_record(2024, 1, 16, 5.0), earlier, later], date(2024, 1, 16))[2023].record is earlier
        assert align_baselines([_record(2024, 1, 16, 5.0), later, earlier], date(2024, 1, 16))[2023].record is later


class TestLeapDay:
    """Feb 29 targets get the plain nearest-day rule."""

    def test_feb_28_and_mar_1_are_equidistant_in_common_year(self):
        assert day_distance(date(2023, 2, 28), 2023, 2, 29) == 1
        assert day_distance(date(2023, 3, 1), 2023, 2, 29) == 1
        assert day_distance(date(2023, 2, 20), 2023, 2, 29) == 9
        assert day_distance(date(2023, 3, 5), 2023, 2, 29) == 5

    def test_leap_year_target_uses_real_date(self):
        assert day_distance(date(2020, 2, 29), 2020, 2, 29) == 0
        assert day_distance(date(2020, 3, 1), 2020, 2, 29) == 1

    def test_choice_is_deterministic_for_fixed_order(self):
        latest = _record(2024, 2, 29, 14.0, 28.0)
        feb_28 = _record(2023, 2, 28, 10.0)
        mar_1 = _record(2023, 3, 1, 12.0)
        records = [latest, feb_28, mar_1]

        first = align_baselines(records, latest.bill_date)[2023].record
        second = align_baselines(records, latest.bill_date)[2023].record

        assert first is second
        assert first in (feb_28, mar_1)

    def test_candidate_order_decides_the_tie(self):
        feb_28 = _record(2023, 2, 28, 10.0)
        mar_1 = _record(2023, 3, 1, 12.0)

        assert closest_record([feb_28, mar_1], 2023, 2, 29) is feb_28
        assert closest_record([mar_1, feb_28], 2023, 2, 29) is mar_1

    def test_closer_date_still_beats_the_neighbours(self):
        assert closest_record([_record(2023, 3, 4, 1.0), _record(2023, 2, 27, 2.0)], 2023, 2, 29).bill_date == date(
            2023, 2, 27
        )


class TestAggregation:
    """Tests for average_usage and estimate_cost."""

    def test_average_of_nothing_is_zero(self):
        assert average_usage([]) == 0
        assert average_usage({}) == 0

    def test_average(self):
        baselines = [
            AlignedBaseline(2023, _record(2023, 1, 1, 10.0)),
            AlignedBaseline(2022, _record(2022, 1, 1, 20.0)),
        ]
        assert average_usage(baselines) == 15
        assert average_usage({b.year: b for b in baselines}) == 15

    def test_estimate_cost_worked_example(self):
        estimate = estimate_cost(15.0, 30.0, 11.0)

        assert estimate.difference == 4.0
        assert estimate.price_per_unit == 2.0
        assert estimate.additional_cost == 8.0

    def test_estimate_cost_below_baseline_is_negative(self):
        estimate = estimate_cost(10.0, 25.0, 12.0)

        assert estimate.difference == -2.0
        assert estimate.additional_cost == pytest.approx(-5.0)

    def test_zero_usage_is_data_error(self):
        with pytest.raises(DataError, match="0 CCF"):
            estimate_cost(0, 30.0, 11.0)

    def test_missing_bill_amount_is_data_error(self):
        with pytest.raises(DataError, match="Bill Amount"):
            estimate_cost(15.0, None, 11.0)

    @pytest.mark.parametrize(
        "usage, amount, average",
        [
            (float("nan"), 30.0, 11.0),
            (15.0, float("inf"), 11.0),
            (15.0, 30.0, float("-inf")),
        ],
    )
    def test_non_finite_input_is_data_error(self, usage, amount, average):
        with pytest.raises(DataError, match="Non-finite"):
            estimate_cost(usage, amount, average)

    def test_overflowing_price_is_data_error(self):
        with pytest.raises(DataError, match="overflowed"):
            estimate_cost(1e-320, 1e300, 0.0)


class TestCompareLatestBill:
    """End-to-end reconciliation from parsed records."""

    def test_worked_example(self, history):
        comparison = compare_latest_bill(history)

        assert comparison.current is history[0]
        assert [b.year for b in comparison.baselines] == [2023, 2022, 2021]
        assert comparison.estimate.average_baseline == 11.0
        assert comparison.estimate.additional_cost == 8.0

    def test_empty_dataset(self):
        with pytest.raises(DataError, match="empty"):
            compare_latest_bill([])

    def test_without_prior_years_baseline_is_zero(self):
        comparison = compare_latest_bill([_record(2024, 1, 16, 15.0, 30.0)])

        assert comparison.baselines == ()
        assert comparison.estimate.difference == 15.0

    def test_report_lines(self, history):
        lines = format_cost_report(compare_latest_bill(history))

        assert lines == [
            "Average CCF for previous years' January: 11",
            "Total CCF for the current January: 15",
            "Difference in CCF: 4",
            "Price per CCF for the current month: $2.00",
            "Additional cost based on the difference: $8.00",
        ]


class TestMonthOverYears:
    """Tests for the same-calendar-month comparison."""

    def test_uses_every_other_year_in_that_month(self):
        records = [
            _record(2024, 1, 20, 16.0, 40.0),
            _record(2023, 12, 20, 30.0, 60.0),
            _record(2023, 1, 18, 10.0, 20.0),
            _record(2022, 1, 19, 14.0, 25.0),
        ]

        comparison = compare_month_over_years(records, 1, 2024)

        assert comparison.current is records[0]
        assert [b.record for b in comparison.baselines] == [records[2], records[3]]
        assert comparison.estimate.average_baseline == 12.0
        assert comparison.estimate.price_per_unit == 2.5
        assert comparison.estimate.additional_cost == 10.0

    def test_same_month_records_excludes_target_year(self):
        records = [_record(2024, 1, 20, 1.0), _record(2023, 1, 18, 2.0)]
        assert same_month_records(records, 1, 2024) == [records[1]]

    def test_missing_current_month(self):
        with pytest.raises(DataError, match="2024-02"):
            compare_month_over_years([_record(2024, 1, 20, 16.0, 40.0)], 2, 2024)
