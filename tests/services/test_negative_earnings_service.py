"""
Tests for negative earnings cap requests (``NegativeEarningsService``).

Requests are filed against the current pay period, decided at a single
Finance gate, and never touch the stipend ledger.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stipend_kernel.domain.dtos import MetricsRow
from stipend_kernel.exceptions import (
    InvalidStateTransitionError,
    NegativeEarningsRequestNotFoundError,
    PayPeriodNotFoundError,
    ValidationError,
)
from stipend_kernel.selectors import BalanceSelector
from stipend_kernel.services import NotificationEvent


@pytest.fixture
def clinic(create_practice, remeasurement_service, finance_actor, current_period):
    practice = create_practice("Clinic A")
    remeasurement_service.apply_metrics(
        [
            MetricsRow(
                practice_key="Clinic A",
                pay_period=5,
                year=2025,
                stipend_cap=Decimal("10000"),
                negative_earnings_cap=Decimal("2500"),
                row_index=1,
            )
        ],
        finance_actor,
    )
    return practice


@pytest.fixture
def submitted(negative_earnings_service, clinic, lead_psm_actor):
    return negative_earnings_service.submit(
        lead_psm_actor, clinic.id, "1000", "Hygienist overtime during flu season"
    )


class TestSubmit:

    def test_filed_for_current_period(self, submitted, lead_psm_actor, notifier):
        assert submitted.status == "pending_finance"
        assert (submitted.year, submitted.pay_period) == (2025, 5)
        assert submitted.requested_amount == Decimal("1000")
        assert submitted.approved_amount is None
        assert submitted.requestor_id == lead_psm_actor.id
        assert len(notifier.of_type(NotificationEvent.NEGATIVE_EARNINGS_SUBMITTED)) == 1

    def test_short_justification(self, negative_earnings_service, clinic, psm_actor):
        with pytest.raises(ValidationError, match="Justification"):
            negative_earnings_service.submit(psm_actor, clinic.id, "100", "too short")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, negative_earnings_service, clinic, psm_actor, amount):
        with pytest.raises(ValidationError, match="greater than zero"):
            negative_earnings_service.submit(
                psm_actor, clinic.id, amount, "Hygienist overtime during flu season"
            )

    def test_no_stipend_ledger_effect(self, session, config, submitted, clinic):
        snap = BalanceSelector(session, config).compute_balance(clinic.id)
        assert snap.available_balance == Decimal("10000")


class TestDecide:

    def test_approve_defaults_to_requested(
        self, negative_earnings_service, submitted, finance_actor, notifier
    ):
        decided = negative_earnings_service.approve(submitted.id, finance_actor)

        assert decided.status == "approved"
        assert decided.approved_amount == Decimal("1000")
        assert decided.decided_by_id == finance_actor.id
        assert decided.decided_at is not None
        assert len(notifier.of_type(NotificationEvent.NEGATIVE_EARNINGS_DECIDED)) == 1

    def test_approve_different_amount(self, negative_earnings_service, submitted, finance_actor):
        decided = negative_earnings_service.approve(
            submitted.id, finance_actor, approved_amount="750", notes="Partial"
        )
        assert decided.approved_amount == Decimal("750")
        assert decided.notes == "Partial"

    def test_only_finance_decides(self, negative_earnings_service, submitted, lead_psm_actor):
        with pytest.raises(InvalidStateTransitionError):
            negative_earnings_service.approve(submitted.id, lead_psm_actor)

    def test_reject_needs_notes(self, negative_earnings_service, submitted, finance_actor):
        with pytest.raises(ValidationError):
            negative_earnings_service.reject(submitted.id, finance_actor, "  ")

    def test_reject(self, negative_earnings_service, submitted, finance_actor):
        decided = negative_earnings_service.reject(submitted.id, finance_actor, "No overtime approved")
        assert decided.status == "rejected"
        assert decided.notes == "No overtime approved"
        assert decided.approved_amount is None

    def test_decided_is_terminal(self, negative_earnings_service, submitted, finance_actor):
        negative_earnings_service.reject(submitted.id, finance_actor, "No overtime approved")
        with pytest.raises(InvalidStateTransitionError):
            negative_earnings_service.approve(submitted.id, finance_actor)

    def test_unknown_request(self, negative_earnings_service, finance_actor, db_tables):
        with pytest.raises(NegativeEarningsRequestNotFoundError):
            negative_earnings_service.approve(uuid4(), finance_actor)

    def test_list_by_status(self, negative_earnings_service, submitted, finance_actor):
        assert [r.id for r in negative_earnings_service.list_requests("pending_finance")] == [
            submitted.id
        ]
        negative_earnings_service.approve(submitted.id, finance_actor)
        assert negative_earnings_service.list_requests("pending_finance") == []


class TestSummary:

    def test_cap_usage_and_headroom(self, negative_earnings_service, submitted, finance_actor, clinic):
        negative_earnings_service.approve(submitted.id, finance_actor, approved_amount="600")

        [row] = negative_earnings_service.summary()

        assert row.practice_id == clinic.id
        assert row.practice_key == "Clinic A"
        assert row.practice_name == "Clinic A Dental"
        assert row.negative_earnings_cap == Decimal("2500")
        assert row.utilized == Decimal("600")
        assert row.available == Decimal("1900")

    def test_pending_and_rejected_not_counted(
        self, negative_earnings_service, submitted, finance_actor
    ):
        [row] = negative_earnings_service.summary()
        assert row.utilized == Decimal("0")

    def test_explicit_period(self, negative_earnings_service, clinic, current_period):
        rows = negative_earnings_service.summary(current_period.id)
        assert [r.practice_key for r in rows] == ["Clinic A"]

    def test_unknown_period(self, negative_earnings_service, clinic):
        with pytest.raises(PayPeriodNotFoundError):
            negative_earnings_service.summary(uuid4())
