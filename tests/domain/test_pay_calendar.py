"""
Tests for the pay calendar (``stipend_kernel.domain.calendar``).

Covers:
- PeriodKey ordering and display
- Period dates from the configured anchor, across years with no anchor
- next/previous across the year boundary
- Inclusive ranges, including ranges spanning two years
- Date -> period lookup (property-based: every date maps back into its period)
"""

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stipend_kernel.domain.calendar import PayCalendar, PeriodKey
from stipend_kernel.exceptions import ValidationError


@pytest.fixture
def calendar() -> PayCalendar:
    return PayCalendar({2025: date(2025, 1, 3)})


_CALENDAR = PayCalendar({2025: date(2025, 1, 3)})


class TestPeriodKey:

    def test_display(self):
        assert str(PeriodKey(2025, 5)) == "PP5'2025"

    def test_orders_by_year_then_number(self):
        keys = [PeriodKey(2026, 1), PeriodKey(2025, 26), PeriodKey(2025, 3)]
        assert sorted(keys) == [PeriodKey(2025, 3), PeriodKey(2025, 26), PeriodKey(2026, 1)]

    def test_is_hashable_and_frozen(self):
        key = PeriodKey(2025, 1)
        assert {key: "x"}[PeriodKey(2025, 1)] == "x"
        with pytest.raises(AttributeError):
            key.number = 2


class TestPeriodDates:

    def test_first_period_starts_on_anchor(self, calendar):
        assert calendar.period_dates(PeriodKey(2025, 1)) == (date(2025, 1, 3), date(2025, 1, 16))

    def test_fifth_period(self, calendar):
        start, end = calendar.period_dates(PeriodKey(2025, 5))
        assert start == date(2025, 2, 28)
        assert end == date(2025, 3, 13)

    def test_next_year_continues_cadence(self, calendar):
        last_start, last_end = calendar.period_dates(PeriodKey(2025, 26))
        first_start, _ = calendar.period_dates(PeriodKey(2026, 1))
        assert first_start == last_end + timedelta(days=1)
        assert first_start == date(2025, 1, 3) + timedelta(days=364)

    def test_explicit_anchor_wins(self):
        cal = PayCalendar({2025: date(2025, 1, 3), 2026: date(2026, 1, 9)})
        assert cal.year_start(2026) == date(2026, 1, 9)

    def test_out_of_range_number_rejected(self, calendar):
        with pytest.raises(ValidationError):
            calendar.period_dates(PeriodKey(2025, 27))
        with pytest.raises(ValidationError):
            calendar.period_dates(PeriodKey(2025, 0))

    def test_year_past_date_range_rejected(self, calendar):
        with pytest.raises(ValidationError, match="10100"):
            calendar.year_start(10100)
        with pytest.raises(ValidationError, match="10100"):
            calendar.period_dates(PeriodKey(10100, 3))

    def test_needs_an_anchor(self):
        with pytest.raises(ValueError):
            PayCalendar({})


class TestNavigation:

    def test_next_within_year(self, calendar):
        assert calendar.next(PeriodKey(2025, 5)) == PeriodKey(2025, 6)

    def test_next_wraps_to_next_year(self, calendar):
        assert calendar.next(PeriodKey(2025, 26)) == PeriodKey(2026, 1)

    def test_previous_wraps_to_prior_year(self, calendar):
        assert calendar.previous(PeriodKey(2026, 1)) == PeriodKey(2025, 26)

    def test_range_within_year(self, calendar):
        keys = calendar.keys_in_range(PeriodKey(2025, 6), PeriodKey(2025, 9))
        assert keys == tuple(PeriodKey(2025, n) for n in (6, 7, 8, 9))

    def test_range_across_year_boundary(self, calendar):
        keys = calendar.keys_in_range(PeriodKey(2025, 25), PeriodKey(2026, 2))
        assert keys == (
            PeriodKey(2025, 25),
            PeriodKey(2025, 26),
            PeriodKey(2026, 1),
            PeriodKey(2026, 2),
        )

    def test_single_period_range(self, calendar):
        assert calendar.keys_in_range(PeriodKey(2025, 7), PeriodKey(2025, 7)) == (
            PeriodKey(2025, 7),
        )

    def test_reversed_range_rejected(self, calendar):
        with pytest.raises(ValidationError):
            calendar.keys_in_range(PeriodKey(2025, 9), PeriodKey(2025, 6))

    def test_remaining_periods_includes_current(self, calendar):
        assert calendar.remaining_periods(PeriodKey(2025, 5)) == 22
        assert calendar.remaining_periods(PeriodKey(2025, 26)) == 1

    def test_keys_for_year(self, calendar):
        keys = calendar.keys_for_year(2025)
        assert len(keys) == 26
        assert keys[0] == PeriodKey(2025, 1)
        assert keys[-1] == PeriodKey(2025, 26)


class TestKeyForDate:

    def test_anchor_day(self, calendar):
        assert calendar.key_for_date(date(2025, 1, 3)) == PeriodKey(2025, 1)

    def test_last_day_of_period(self, calendar):
        assert calendar.key_for_date(date(2025, 1, 16)) == PeriodKey(2025, 1)
        assert calendar.key_for_date(date(2025, 1, 17)) == PeriodKey(2025, 2)

    def test_civil_new_year_before_pay_year(self, calendar):
        # 2026-01-01 is still inside the 2025 pay year
        assert calendar.key_for_date(date(2026, 1, 1)) == PeriodKey(2025, 26)

    @settings(max_examples=200, deadline=None)
    @given(st.dates(min_value=date(2025, 1, 3), max_value=date(2030, 12, 1)))
    def test_date_falls_inside_its_period(self, d):
        key = _CALENDAR.key_for_date(d)
        start, end = _CALENDAR.period_dates(key)
        assert start <= d <= end

    @settings(max_examples=200, deadline=None)
    @given(
        st.integers(min_value=2025, max_value=2035),
        st.integers(min_value=1, max_value=26),
    )
    def test_next_then_previous_is_identity(self, year, number):
        key = PeriodKey(year, number)
        assert _CALENDAR.previous(_CALENDAR.next(key)) == key
        assert _CALENDAR.next(key) > key
