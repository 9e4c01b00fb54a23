"""
Tests for the pay period registry (``PayPeriodService``).

Covers:
- ensure_year creates 26 contiguous periods, idempotently
- Years before the first supported year are rejected
- Exactly one current period; set_current and advance (across the year end)
- Range lookups, including missing periods
- Remeasurement completion flag
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.exceptions import (
    NoCurrentPayPeriodError,
    PayPeriodNotFoundError,
    ValidationError,
)


class TestEnsureYear:

    def test_creates_contiguous_periods(self, pay_period_service, admin_actor):
        periods = pay_period_service.ensure_year(2025, admin_actor.id)

        assert len(periods) == 26
        assert periods[0].start_date == date(2025, 1, 3)
        for earlier, later in zip(periods, periods[1:]):
            assert later.start_date == earlier.end_date + timedelta(days=1)
            assert (earlier.end_date - earlier.start_date).days == 13

    def test_idempotent(self, pay_period_service, admin_actor):
        pay_period_service.ensure_year(2025, admin_actor.id)
        again = pay_period_service.ensure_year(2025, admin_actor.id)
        assert len(again) == 26
        assert len(pay_period_service.list_periods(2025)) == 26

    def test_following_year_continues(self, pay_period_service, admin_actor):
        last = pay_period_service.ensure_year(2025, admin_actor.id)[-1]
        first = pay_period_service.ensure_year(2026, admin_actor.id)[0]
        assert first.start_date == last.end_date + timedelta(days=1)

    def test_year_before_minimum_rejected(self, pay_period_service, admin_actor):
        with pytest.raises(ValidationError, match="2024"):
            pay_period_service.ensure_year(2024, admin_actor.id)

    def test_logs_created_count(self, pay_period_service, admin_actor, captured_logs):
        pay_period_service.ensure_year(2025, admin_actor.id)
        pay_period_service.ensure_year(2025, admin_actor.id)
        [record] = [r for r in captured_logs() if r["message"] == "pay_periods_created"]
        assert record["year"] == 2025
        assert record["periods_created"] == 26

    def test_year_past_calendar_creates_nothing(self, pay_period_service, admin_actor):
        with pytest.raises(ValidationError, match="10100"):
            pay_period_service.ensure_year(10100, admin_actor.id)
        assert pay_period_service.list_periods(10100) == []


class TestCurrentPeriod:

    def test_none_marked(self, pay_period_service, admin_actor):
        pay_period_service.ensure_year(2025, admin_actor.id)
        with pytest.raises(NoCurrentPayPeriodError):
            pay_period_service.current_period()

    def test_set_current(self, pay_period_service, current_period):
        assert current_period.key == PeriodKey(2025, 5)
        assert current_period.is_current
        assert pay_period_service.current_period().id == current_period.id

    def test_only_one_current(self, pay_period_service, current_period, admin_actor):
        other = pay_period_service.get_by_key(PeriodKey(2025, 9))
        pay_period_service.set_current(other.id, admin_actor.id)

        current = [p for p in pay_period_service.list_periods(2025) if p.is_current]
        assert [p.key for p in current] == [PeriodKey(2025, 9)]

    def test_advance(self, pay_period_service, current_period, admin_actor):
        assert pay_period_service.advance(admin_actor.id).key == PeriodKey(2025, 6)

    def test_advance_across_year_end(self, pay_period_service, current_period, admin_actor):
        last = pay_period_service.get_by_key(PeriodKey(2025, 26))
        pay_period_service.set_current(last.id, admin_actor.id)

        advanced = pay_period_service.advance(admin_actor.id)

        assert advanced.key == PeriodKey(2026, 1)
        assert len(pay_period_service.list_periods(2026)) == 26

    def test_set_current_logs(self, pay_period_service, current_period, admin_actor, captured_logs):
        other = pay_period_service.get_by_key(PeriodKey(2025, 6))
        pay_period_service.set_current(other.id, admin_actor.id)
        records = [r for r in captured_logs() if r["message"] == "current_period_set"]
        assert records[-1]["pay_period"] == "PP6'2025"
        assert records[-1]["previous"] == ["PP5'2025"]

    def test_unknown_period(self, pay_period_service, admin_actor):
        with pytest.raises(PayPeriodNotFoundError):
            pay_period_service.set_current(uuid4(), admin_actor.id)


class TestLookups:

    def test_period_for_date(self, pay_period_service, current_period):
        assert pay_period_service.period_for_date(date(2025, 3, 1)).key == PeriodKey(2025, 5)

    def test_periods_in_range(self, pay_period_service, admin_actor):
        pay_period_service.ensure_year(2025, admin_actor.id)
        pay_period_service.ensure_year(2026, admin_actor.id)
        periods = pay_period_service.periods_in_range(25, 2025, 2, 2026)
        assert [p.key for p in periods] == [
            PeriodKey(2025, 25),
            PeriodKey(2025, 26),
            PeriodKey(2026, 1),
            PeriodKey(2026, 2),
        ]

    def test_periods_in_range_missing(self, pay_period_service, admin_actor):
        pay_period_service.ensure_year(2025, admin_actor.id)
        with pytest.raises(PayPeriodNotFoundError):
            pay_period_service.periods_in_range(26, 2025, 1, 2026)

    def test_get_by_key_missing(self, pay_period_service, db_tables):
        with pytest.raises(PayPeriodNotFoundError):
            pay_period_service.get_by_key(PeriodKey(2030, 1))


class TestRemeasurementFlag:

    def test_mark_completed(self, pay_period_service, current_period, admin_actor):
        assert not current_period.remeasurement_completed
        updated = pay_period_service.mark_remeasurement_completed(current_period.id, admin_actor.id)
        assert updated.remeasurement_completed
