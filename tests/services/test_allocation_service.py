"""
Tests for balanced transfers (``AllocationService``).

Covers:
- Practice-to-practice allocation moves available balance and sums to zero
- Donor balance, positivity, matching totals and overlap are checked
  before anything is written
- Inter-portfolio allocations land in the recipient portfolio's suspense
- Suspense distribution is limited to the portfolio's Lead PSM or
  Finance/Admin, to the portfolio's own practices, and to the suspense
  balance
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stipend_kernel.domain.dtos import AllocationLeg
from stipend_kernel.domain.roles import Actor, Role
from stipend_kernel.exceptions import (
    ActorNotPermittedError,
    AllocationNotFoundError,
    InsufficientBalanceError,
    ValidationError,
)
from stipend_kernel.selectors import BalanceSelector, LedgerSelector
from stipend_kernel.services import NotificationEvent


@pytest.fixture
def clinics(create_practice, seed_caps):
    """Three G1 practices with caps 10000 / 5000 / 0."""
    practices = {
        key: create_practice(key) for key in ("Clinic A", "Clinic B", "Clinic C")
    }
    seed_caps({"Clinic A": 10000, "Clinic B": 5000, "Clinic C": 0})
    return practices


@pytest.fixture
def available(session, config):
    def _available(practice_id):
        return BalanceSelector(session, config).compute_balance(practice_id).available_balance

    return _available


@pytest.fixture
def suspense(session, config):
    def _suspense(portfolio_id):
        return BalanceSelector(session, config).suspense_balance(portfolio_id)

    return _suspense


class TestPracticeToPractice:

    def test_moves_balance(self, allocation_service, clinics, psm_actor, available):
        a, b = clinics["Clinic A"], clinics["Clinic B"]

        result = allocation_service.allocate_practice_to_practice(
            psm_actor, [(a.id, "2000")], [(b.id, "2000")], comment="Cover event"
        )

        assert result.status == "completed"
        assert result.total_amount == Decimal("2000")
        assert result.comment == "Cover event"
        assert available(a.id) == Decimal("8000")
        assert available(b.id) == Decimal("7000")

    def test_entries_sum_to_zero(self, session, config, allocation_service, clinics, psm_actor):
        a, b, c = (clinics[k] for k in ("Clinic A", "Clinic B", "Clinic C"))

        result = allocation_service.allocate_practice_to_practice(
            psm_actor,
            [AllocationLeg(a.id, Decimal("1000.005")), (b.id, "500")],
            [(c.id, "1500.01")],
        )

        entries = LedgerSelector(session, config).entries_for_allocation(result.id)
        assert len(entries) == 3
        assert sum(e.amount for e in entries) == 0
        assert len(result.donors) == 2
        assert len(result.recipients) == 1

    def test_insufficient_donor_balance(
        self, allocation_service, clinics, psm_actor, available, session, config
    ):
        b, c = clinics["Clinic B"], clinics["Clinic C"]
        with pytest.raises(InsufficientBalanceError) as exc_info:
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(b.id, "5000.01")], [(c.id, "5000.01")]
            )
        assert exc_info.value.requested == "5000.01"
        assert available(b.id) == Decimal("5000")

    def test_zero_balance_donor(self, allocation_service, clinics, psm_actor):
        c, a = clinics["Clinic C"], clinics["Clinic A"]
        with pytest.raises(InsufficientBalanceError):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(c.id, "1")], [(a.id, "1")]
            )

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_donor_amount_must_be_positive(self, allocation_service, clinics, psm_actor, amount):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        with pytest.raises(ValidationError, match="greater than zero"):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(a.id, amount)], [(b.id, "10")]
            )

    def test_no_donors(self, allocation_service, clinics, psm_actor):
        with pytest.raises(ValidationError, match="At least one donor"):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [], [(clinics["Clinic B"].id, "10")]
            )

    def test_donor_balance_checked_before_recipients(self, allocation_service, clinics, psm_actor):
        b, c = clinics["Clinic B"], clinics["Clinic C"]
        with pytest.raises(InsufficientBalanceError):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(b.id, "9000")], [(c.id, "-1")]
            )

    def test_totals_must_match(self, allocation_service, clinics, psm_actor):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        with pytest.raises(ValidationError, match="does not match"):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(a.id, "100")], [(b.id, "99.99")]
            )

    def test_practice_on_both_sides(self, allocation_service, clinics, psm_actor):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        with pytest.raises(ValidationError, match="both donor and recipient"):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(a.id, "100")], [(a.id, "50"), (b.id, "50")]
            )

    def test_duplicate_donor(self, allocation_service, clinics, psm_actor):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        with pytest.raises(ValidationError, match="appears twice"):
            allocation_service.allocate_practice_to_practice(
                psm_actor, [(a.id, "50"), (a.id, "50")], [(b.id, "100")]
            )

    def test_psm_from_other_portfolio(self, allocation_service, clinics, other_portfolio):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        outsider = Actor(id=uuid4(), role=Role.PSM, portfolio_id=other_portfolio.id)
        with pytest.raises(ActorNotPermittedError):
            allocation_service.allocate_practice_to_practice(
                outsider, [(a.id, "100")], [(b.id, "100")]
            )

    def test_notifies_and_logs(self, allocation_service, clinics, psm_actor, notifier, captured_logs):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        allocation_service.allocate_practice_to_practice(psm_actor, [(a.id, "10")], [(b.id, "10")])

        assert len(notifier.of_type(NotificationEvent.ALLOCATION_COMPLETED)) == 1
        completed = [r for r in captured_logs() if r["message"] == "allocation_completed"]
        assert completed[0]["kind"] == "practice_to_practice"


class TestInterPortfolio:

    @pytest.fixture
    def g2_clinic(self, create_practice, other_portfolio):
        return create_practice("Clinic South", portfolio_id=other_portfolio.id)

    def test_donors_fund_suspense(
        self, allocation_service, clinics, other_portfolio, psm_actor, available, suspense
    ):
        a, b = clinics["Clinic A"], clinics["Clinic B"]

        result = allocation_service.allocate_to_portfolio(
            psm_actor, [(a.id, "1000"), (b.id, "500")], other_portfolio.id
        )

        assert result.kind == "inter_portfolio"
        assert result.recipient_portfolio_id == other_portfolio.id
        assert result.recipients[0].portfolio_id == other_portfolio.id
        assert result.recipients[0].amount == Decimal("1500")
        assert suspense(other_portfolio.id) == Decimal("1500")
        assert available(a.id) == Decimal("9000")

    def test_donor_already_in_portfolio(self, allocation_service, clinics, portfolio, psm_actor):
        with pytest.raises(ValidationError, match="already belongs to portfolio G1"):
            allocation_service.allocate_to_portfolio(
                psm_actor, [(clinics["Clinic A"].id, "100")], portfolio.id
            )

    def test_inactive_recipient_portfolio(
        self, allocation_service, practice_service, clinics, other_portfolio, psm_actor, admin_actor
    ):
        practice_service.deactivate_portfolio(other_portfolio.id, admin_actor)
        with pytest.raises(ValidationError, match="inactive"):
            allocation_service.allocate_to_portfolio(
                psm_actor, [(clinics["Clinic A"].id, "100")], other_portfolio.id
            )

    def test_distribution_empties_suspense(
        self, allocation_service, clinics, other_portfolio, g2_clinic, psm_actor,
        available, suspense, notifier,
    ):
        allocation_service.allocate_to_portfolio(
            psm_actor, [(clinics["Clinic A"].id, "1200")], other_portfolio.id
        )
        g2_lead = Actor(id=uuid4(), role=Role.LEAD_PSM, portfolio_id=other_portfolio.id)

        result = allocation_service.distribute_suspense(
            g2_lead, other_portfolio.id, [(g2_clinic.id, "1200")]
        )

        assert result.kind == "suspense_distribution"
        assert result.source_portfolio_id == other_portfolio.id
        assert suspense(other_portfolio.id) == Decimal("0")
        assert available(g2_clinic.id) == Decimal("1200")
        assert len(notifier.of_type(NotificationEvent.SUSPENSE_DISTRIBUTED)) == 1

    def test_partial_distribution(
        self, allocation_service, clinics, other_portfolio, g2_clinic, psm_actor, finance_actor,
        suspense,
    ):
        allocation_service.allocate_to_portfolio(
            psm_actor, [(clinics["Clinic A"].id, "1000")], other_portfolio.id
        )
        allocation_service.distribute_suspense(
            finance_actor, other_portfolio.id, [(g2_clinic.id, "400")]
        )
        assert suspense(other_portfolio.id) == Decimal("600")

    def test_distribution_over_suspense(
        self, allocation_service, clinics, other_portfolio, g2_clinic, psm_actor, finance_actor
    ):
        allocation_service.allocate_to_portfolio(
            psm_actor, [(clinics["Clinic A"].id, "100")], other_portfolio.id
        )
        with pytest.raises(InsufficientBalanceError):
            allocation_service.distribute_suspense(
                finance_actor, other_portfolio.id, [(g2_clinic.id, "100.01")]
            )

    def test_recipient_outside_portfolio(
        self, allocation_service, clinics, other_portfolio, g2_clinic, psm_actor, finance_actor
    ):
        allocation_service.allocate_to_portfolio(
            psm_actor, [(clinics["Clinic A"].id, "100")], other_portfolio.id
        )
        with pytest.raises(ValidationError, match="not in portfolio G2"):
            allocation_service.distribute_suspense(
                finance_actor, other_portfolio.id, [(clinics["Clinic B"].id, "50")]
            )

    @pytest.mark.parametrize("role", [Role.PSM, Role.LEAD_PSM])
    def test_distribution_permission(
        self, allocation_service, other_portfolio, portfolio, g2_clinic, role
    ):
        # Lead PSM of a different portfolio, or any PSM
        actor = Actor(id=uuid4(), role=role, portfolio_id=portfolio.id)
        with pytest.raises(ActorNotPermittedError):
            allocation_service.distribute_suspense(
                actor, other_portfolio.id, [(g2_clinic.id, "1")]
            )


class TestLookup:

    def test_get_allocation(self, allocation_service, clinics, psm_actor):
        a, b = clinics["Clinic A"], clinics["Clinic B"]
        created = allocation_service.allocate_practice_to_practice(
            psm_actor, [(a.id, "10")], [(b.id, "10")]
        )
        fetched = allocation_service.get_allocation(created.id)
        assert fetched.id == created.id
        assert fetched.total_amount == Decimal("10")
        assert [line.side for line in fetched.lines] == ["donor", "recipient"]

    def test_unknown_allocation(self, allocation_service, db_tables):
        with pytest.raises(AllocationNotFoundError):
            allocation_service.get_allocation(uuid4())
