"""
LedgerService -- the only writer of ledger entries.

Responsibility:
    Validates and appends signed ledger entries for practices and
    portfolio suspense accounts, and reads them back in insertion order.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the remeasurement,
    stipend request and allocation services and by the opening balance
    import.  Never called from selectors.

Invariants enforced:
    - Append-only: there is no update or delete path.  Reversal is a new
      ``cancelled`` entry (db/immutability.py blocks the rest).
    - Every entry has a non-zero amount, a known pay period and a known
      owner; nothing is written when any check fails.
    - ``seq`` comes from SequenceService, so ``entries_for`` order equals
      insertion order even when timestamps collide.

Failure modes:
    - ValidationError: zero amount, unknown pay period, unknown owner.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO
from stipend_kernel.domain.ledger import (
    LedgerEntryDTO,
    LedgerOwner,
    NewLedgerEntry,
    OwnerKind,
)
from stipend_kernel.exceptions import ValidationError
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.models.pay_period import PayPeriod
from stipend_kernel.models.practice import Portfolio, Practice
from stipend_kernel.selectors.ledger_selector import LedgerSelector
from stipend_kernel.services.base import BaseService
from stipend_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService(BaseService):
    """
    Append and read ledger entries.

    Contract:
        ``append`` flushes a single new LedgerEntry and returns its id.
        Callers group several appends in one transaction to make a
        multi-entry operation all-or-nothing.
    """

    def _selector(self) -> LedgerSelector:
        return LedgerSelector(self.session, self._config)

    def _resolve_period(self, pay_period: int, year: int) -> PayPeriod:
        period = self.session.execute(
            select(PayPeriod).where(
                PayPeriod.year == year,
                PayPeriod.number == pay_period,
            )
        ).scalar_one_or_none()
        if period is None:
            raise ValidationError(
                f"Unknown pay period PP{pay_period}'{year}", field="pay_period"
            )
        return period

    def _check_owner(self, owner: LedgerOwner) -> None:
        model = Practice if owner.kind == OwnerKind.PRACTICE else Portfolio
        if self.session.get(model, owner.id) is None:
            raise ValidationError(f"Unknown ledger owner {owner}", field="owner")

    def append(self, entry: NewLedgerEntry, actor_id: UUID) -> UUID:
        """
        Validate and append one entry.

        Raises:
            ValidationError: If the amount is zero, the period is unknown or
                the owner does not exist.
        """
        amount = Decimal(entry.amount)
        if amount == ZERO:
            raise ValidationError("Ledger entry amount cannot be zero", field="amount")
        period = self._resolve_period(entry.pay_period, entry.year)
        self._check_owner(entry.owner)

        seq = SequenceService(self.session).next_value(SequenceService.LEDGER_ENTRY)
        row = LedgerEntry(
            seq=seq,
            practice_id=entry.owner.id if entry.owner.kind == OwnerKind.PRACTICE else None,
            portfolio_id=entry.owner.id if entry.owner.kind == OwnerKind.PORTFOLIO else None,
            pay_period_id=period.id,
            pay_period=entry.pay_period,
            year=entry.year,
            transaction_type=entry.transaction_type.value,
            amount=amount,
            description=entry.description,
            related_request_id=entry.related_request_id,
            related_allocation_id=entry.related_allocation_id,
            reverses_entry_id=entry.reverses_entry_id,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "entry_id": str(row.id),
                "seq": seq,
                "owner": str(entry.owner),
                "transaction_type": entry.transaction_type.value,
                "amount": str(amount),
                "pay_period": entry.pay_period,
                "year": entry.year,
            },
        )
        return row.id

    def entries_for(
        self, owner: LedgerOwner, year: int | None = None
    ) -> tuple[LedgerEntryDTO, ...]:
        """Entries for ``owner`` ordered by creation (``seq``) ascending."""
        return self._selector().entries_for(owner, year)

    def entries_for_request(
        self, request_id: UUID, year: int | None = None, pay_period: int | None = None
    ) -> tuple[LedgerEntryDTO, ...]:
        return self._selector().entries_for_request(request_id, year, pay_period)

    def entries_for_allocation(self, allocation_id: UUID) -> tuple[LedgerEntryDTO, ...]:
        return self._selector().entries_for_allocation(allocation_id)
