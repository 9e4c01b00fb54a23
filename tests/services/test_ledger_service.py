"""
Tests for the append-only ledger (``LedgerService``, ``SequenceService``,
``db.immutability``).

Covers:
- append validation: zero amount, unknown period, unknown owner
- Monotonic seq ordering of entries
- Portfolio suspense owners
- Updates and deletes of ledger entries are blocked at the ORM layer
- Structured log line per append
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stipend_kernel.domain.ledger import LedgerOwner, NewLedgerEntry, TransactionType
from stipend_kernel.exceptions import ImmutabilityViolationError, ValidationError
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.services import SequenceService


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _entry(owner, amount="100", kind=TransactionType.ALLOCATION_IN, period=5, year=2025):
    return NewLedgerEntry(
        owner=owner,
        pay_period=period,
        year=year,
        transaction_type=kind,
        amount=Decimal(amount),
        description="test entry",
    )


@pytest.fixture
def practice(create_practice, current_period):
    return create_practice("Clinic A")


class TestAppend:

    def test_returns_id_and_persists(self, ledger_service, practice, admin_actor):
        owner = LedgerOwner.practice(practice.id)
        entry_id = ledger_service.append(_entry(owner), admin_actor.id)

        entries = ledger_service.entries_for(owner)
        assert [e.id for e in entries] == [entry_id]
        assert entries[0].amount == Decimal("100")
        assert entries[0].transaction_type == TransactionType.ALLOCATION_IN
        assert entries[0].owner == owner

    def test_zero_amount_rejected(self, ledger_service, practice, admin_actor):
        with pytest.raises(ValidationError, match="zero"):
            ledger_service.append(
                _entry(LedgerOwner.practice(practice.id), amount="0"), admin_actor.id
            )

    def test_unknown_period_rejected(self, ledger_service, practice, admin_actor):
        with pytest.raises(ValidationError, match="pay period"):
            ledger_service.append(
                _entry(LedgerOwner.practice(practice.id), year=2027), admin_actor.id
            )

    def test_unknown_owner_rejected(self, ledger_service, current_period, admin_actor):
        with pytest.raises(ValidationError, match="owner"):
            ledger_service.append(_entry(LedgerOwner.practice(uuid4())), admin_actor.id)

    def test_portfolio_owner(self, ledger_service, portfolio, current_period, admin_actor):
        owner = LedgerOwner.portfolio(portfolio.id)
        ledger_service.append(_entry(owner, amount="250"), admin_actor.id)
        assert [e.amount for e in ledger_service.entries_for(owner)] == [Decimal("250")]

    def test_entries_ordered_by_seq(self, ledger_service, practice, admin_actor):
        owner = LedgerOwner.practice(practice.id)
        for amount in ("1", "2", "3"):
            ledger_service.append(_entry(owner, amount=amount), admin_actor.id)

        entries = ledger_service.entries_for(owner)
        seqs = [e.seq for e in entries]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 3
        assert [e.amount for e in entries] == [Decimal("1"), Decimal("2"), Decimal("3")]

    def test_year_filter(self, ledger_service, pay_period_service, practice, admin_actor):
        pay_period_service.ensure_year(2026, admin_actor.id)
        owner = LedgerOwner.practice(practice.id)
        ledger_service.append(_entry(owner, amount="10"), admin_actor.id)
        ledger_service.append(_entry(owner, amount="20", period=1, year=2026), admin_actor.id)

        assert [e.amount for e in ledger_service.entries_for(owner, year=2026)] == [Decimal("20")]

    def test_logs_append(self, ledger_service, practice, admin_actor, captured_logs):
        ledger_service.append(_entry(LedgerOwner.practice(practice.id)), admin_actor.id)
        records = [r for r in captured_logs() if r["message"] == "ledger_entry_appended"]
        assert len(records) == 1
        assert records[0]["transaction_type"] == "allocation_in"
        assert records[0]["amount"] == "100"


class TestSequenceService:

    def test_monotonic(self, session, db_tables):
        seq = SequenceService(session)
        first = seq.next_value("test_counter")
        second = seq.next_value("test_counter")
        assert second == first + 1
        assert seq.current_value("test_counter") == second

    def test_unused_counter(self, session, db_tables):
        assert SequenceService(session).current_value("never_used") is None


class TestImmutability:

    def _appended(self, session, ledger_service, practice, admin_actor) -> LedgerEntry:
        entry_id = ledger_service.append(
            _entry(LedgerOwner.practice(practice.id)), admin_actor.id
        )
        return session.get(LedgerEntry, entry_id)

    def test_update_blocked(self, session, ledger_service, practice, admin_actor):
        row = self._appended(session, ledger_service, practice, admin_actor)
        row.amount = Decimal("999")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, session, ledger_service, practice, admin_actor):
        row = self._appended(session, ledger_service, practice, admin_actor)
        session.delete(row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
