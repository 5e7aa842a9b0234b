"""
Tests for filing_kernel.domain.periods.

Validates period computation for quarterly and annual cadences, the
successor chain, filing months and registry year-end derivation.
"""

from datetime import date

import pytest

from filing_kernel.domain.periods import (
    DEFAULT_FILING_MONTHS,
    CadenceGroup,
    QuarterGroup,
    accounts_due_date,
    compute_period,
    compute_year_end,
    days_until,
    filing_months,
    is_filing_month,
    is_overdue,
    next_annual_period_end,
    next_period,
    period_label,
)
from filing_kernel.exceptions import InvalidCadenceGroupError


JAN_GROUP = CadenceGroup.quarterly("1_4_7_10")
MAR_GROUP = CadenceGroup.quarterly(QuarterGroup.MAR_JUN_SEP_DEC)


# =============================================================================
# Cadence groups
# =============================================================================


class TestCadenceGroup:
    def test_quarterly_code(self):
        assert JAN_GROUP.code == "1_4_7_10"
        assert JAN_GROUP.is_quarterly

    def test_annual_code_round_trip(self):
        cadence = CadenceGroup.parse("annual:06-30")
        assert cadence.anchor_month == 6
        assert cadence.anchor_day == 30
        assert cadence.code == "annual:06-30"
        assert not cadence.is_quarterly

    def test_leap_day_anchor_accepted(self):
        assert CadenceGroup.annual(2, 29).code == "annual:02-29"

    @pytest.mark.parametrize("code", ["1_2_3", "", "annual:13-01", "annual:04-31", "annual:june"])
    def test_invalid_codes_rejected(self, code):
        with pytest.raises(InvalidCadenceGroupError):
            CadenceGroup.parse(code)

    def test_period_end_months(self):
        assert QuarterGroup.FEB_MAY_AUG_NOV.period_end_months == (2, 5, 8, 11)


# =============================================================================
# Quarterly periods
# =============================================================================


class TestQuarterlyPeriod:
    def test_reference_inside_quarter(self):
        period = compute_period(JAN_GROUP, date(2024, 1, 15))
        assert period.period_start == date(2023, 11, 1)
        assert period.period_end == date(2024, 1, 31)

    def test_due_date_is_end_of_following_month(self):
        period = compute_period(JAN_GROUP, date(2024, 1, 15))
        assert period.statutory_due_date == date(2024, 2, 29)

    def test_reference_on_period_end(self):
        period = compute_period(MAR_GROUP, date(2024, 12, 31))
        assert period.period_start == date(2024, 10, 1)
        assert period.period_end == date(2024, 12, 31)
        assert period.statutory_due_date == date(2025, 1, 31)

    def test_wraps_into_next_year(self):
        period = compute_period(JAN_GROUP, date(2024, 11, 10))
        assert period.period_start == date(2024, 11, 1)
        assert period.period_end == date(2025, 1, 31)
        assert period.statutory_due_date == date(2025, 2, 28)

    def test_deterministic(self):
        first = compute_period(JAN_GROUP, date(2024, 5, 3))
        second = compute_period(JAN_GROUP, date(2024, 5, 3))
        assert first == second

    def test_contains_reference_date(self):
        ref = date(2024, 8, 20)
        for group in QuarterGroup:
            period = compute_period(CadenceGroup.quarterly(group), ref)
            assert period.contains(ref)

    def test_next_period_follows_immediately(self):
        following = next_period(JAN_GROUP, date(2024, 1, 31))
        assert following.period_start == date(2024, 2, 1)
        assert following.period_end == date(2024, 4, 30)
        assert following.statutory_due_date == date(2024, 5, 31)

    def test_successor_chain_has_no_gaps_or_overlaps(self):
        period = compute_period(JAN_GROUP, date(2024, 1, 1))
        for _ in range(8):
            following = next_period(JAN_GROUP, period.period_end)
            assert following.period_start == date.fromordinal(period.period_end.toordinal() + 1)
            assert following.period_end > following.period_start
            period = following

    def test_label(self):
        period = compute_period(JAN_GROUP, date(2024, 1, 15))
        assert period.label == "2023-11-01_to_2024-01-31"
        assert period_label(period.period_start, period.period_end) == period.label


# =============================================================================
# Annual periods
# =============================================================================


class TestAnnualPeriod:
    def test_period_ending_later_this_year(self):
        period = compute_period(CadenceGroup.annual(6, 30), date(2024, 3, 1))
        assert period.period_start == date(2023, 7, 1)
        assert period.period_end == date(2024, 6, 30)

    def test_accounts_due_month_end_aligned(self):
        period = compute_period(CadenceGroup.annual(6, 30), date(2024, 3, 1))
        assert period.statutory_due_date == date(2025, 3, 31)

    def test_accounts_due_months_configurable(self):
        period = compute_period(
            CadenceGroup.annual(6, 30), date(2024, 3, 1), accounts_due_months=6
        )
        assert period.statutory_due_date == date(2024, 12, 31)

    def test_leap_day_anchor_clamps_in_common_years(self):
        period = compute_period(CadenceGroup.annual(2, 29), date(2024, 3, 1))
        assert period.period_start == date(2024, 3, 1)
        assert period.period_end == date(2025, 2, 28)

    def test_leap_day_anchor_successor(self):
        cadence = CadenceGroup.annual(2, 29)
        following = next_period(cadence, date(2024, 2, 29))
        assert following.period_start == date(2024, 3, 1)
        assert following.period_end == date(2025, 2, 28)

        after = next_period(cadence, following.period_end)
        assert after.period_start == date(2025, 3, 1)
        assert after.period_end == date(2026, 2, 28)

    def test_mid_month_period_end_not_pushed_to_month_end(self):
        assert accounts_due_date(date(2024, 6, 15), 9) == date(2025, 3, 15)

    @pytest.mark.parametrize(
        "period_end, expected",
        [
            (date(2024, 6, 30), date(2025, 6, 30)),
            (date(2025, 12, 31), date(2026, 12, 31)),
            (date(2027, 2, 28), date(2028, 2, 29)),
            (date(2024, 2, 29), date(2025, 2, 28)),
            (date(2025, 4, 5), date(2026, 4, 5)),
        ],
    )
    def test_next_annual_period_end(self, period_end, expected):
        assert next_annual_period_end(period_end) == expected

    def test_next_annual_period_end_ignores_anchor(self):
        # Year end moved off the 30 June anchor stays where it was moved to
        moved = next_annual_period_end(date(2025, 12, 31))
        assert moved != next_period(CadenceGroup.annual(6, 30), date(2025, 12, 31)).period_end


# =============================================================================
# Filing months
# =============================================================================


class TestFilingMonths:
    @pytest.mark.parametrize(
        "group, expected",
        [
            ("1_4_7_10", {2, 5, 8, 11}),
            ("2_5_8_11", {3, 6, 9, 12}),
            ("3_6_9_12", {4, 7, 10, 1}),
        ],
    )
    def test_default_table(self, group, expected):
        assert filing_months(CadenceGroup.quarterly(group)) == frozenset(expected)

    def test_groups_partition_the_year(self):
        months = [m for ms in DEFAULT_FILING_MONTHS.values() for m in ms]
        assert sorted(months) == list(range(1, 13))

    def test_custom_table(self):
        table = {"1_4_7_10": (3,)}
        assert filing_months(JAN_GROUP, table) == frozenset({3})

    def test_group_missing_from_table(self):
        with pytest.raises(InvalidCadenceGroupError):
            filing_months(MAR_GROUP, {"1_4_7_10": (2,)})

    def test_annual_files_month_after_anchor(self):
        assert filing_months(CadenceGroup.annual(6, 30)) == frozenset({7})
        assert filing_months(CadenceGroup.annual(12, 31)) == frozenset({1})

    def test_is_filing_month(self):
        assert is_filing_month(JAN_GROUP, date(2024, 2, 1))
        assert not is_filing_month(JAN_GROUP, date(2024, 3, 1))


# =============================================================================
# Deadline helpers
# =============================================================================


class TestDeadlineHelpers:
    def test_overdue_only_after_due_date(self):
        due = date(2024, 2, 29)
        assert not is_overdue(due, due)
        assert is_overdue(due, date(2024, 3, 1))

    def test_days_until_goes_negative(self):
        due = date(2024, 2, 29)
        assert days_until(due, date(2024, 2, 19)) == 10
        assert days_until(due, date(2024, 3, 2)) == -2


class TestComputeYearEnd:
    def test_from_last_accounts(self):
        assert compute_year_end(
            3, 31, today=date(2024, 5, 1), last_accounts_made_up_to=date(2023, 3, 31)
        ) == date(2024, 3, 31)

    def test_next_reference_date_after_today(self):
        assert compute_year_end(3, 31, today=date(2024, 5, 1)) == date(2025, 3, 31)
        assert compute_year_end(3, 31, today=date(2024, 3, 1)) == date(2024, 3, 31)

    def test_first_time_filer_pushed_when_too_close(self):
        assert compute_year_end(
            1, 31, today=date(2023, 2, 1), incorporation_date=date(2023, 1, 10)
        ) == date(2024, 1, 31)

    def test_first_time_filer_same_year(self):
        assert compute_year_end(
            12, 31, today=date(2023, 2, 1), incorporation_date=date(2023, 1, 10)
        ) == date(2023, 12, 31)

    def test_nothing_to_compute_from(self):
        assert compute_year_end(None, None, today=date(2024, 1, 1)) is None
