"""
Module: stipend_kernel.selectors.ledger_selector
Responsibility: Read access to raw ledger entries by owner, request and
    allocation, always in ``seq`` (insertion) order.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Results are materialized tuples: finite, restartable, and unaffected
      by later appends.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from stipend_kernel.domain.ledger import LedgerEntryDTO, LedgerOwner, OwnerKind
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector):
    """Query ledger entries; never writes."""

    def _owner_clause(self, owner: LedgerOwner):
        if owner.kind == OwnerKind.PRACTICE:
            return LedgerEntry.practice_id == owner.id
        return LedgerEntry.portfolio_id == owner.id

    def entries_for(
        self, owner: LedgerOwner, year: int | None = None
    ) -> tuple[LedgerEntryDTO, ...]:
        """All entries for ``owner`` (optionally one year), oldest first."""
        query = select(LedgerEntry).where(self._owner_clause(owner))
        if year is not None:
            query = query.where(LedgerEntry.year == year)
        rows = self.session.execute(query.order_by(LedgerEntry.seq)).scalars()
        return tuple(row.to_dto() for row in rows)

    def entries_for_request(
        self,
        request_id: UUID,
        year: int | None = None,
        pay_period: int | None = None,
    ) -> tuple[LedgerEntryDTO, ...]:
        query = select(LedgerEntry).where(LedgerEntry.related_request_id == request_id)
        if year is not None:
            query = query.where(LedgerEntry.year == year)
        if pay_period is not None:
            query = query.where(LedgerEntry.pay_period == pay_period)
        rows = self.session.execute(query.order_by(LedgerEntry.seq)).scalars()
        return tuple(row.to_dto() for row in rows)

    def entries_for_allocation(self, allocation_id: UUID) -> tuple[LedgerEntryDTO, ...]:
        rows = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.related_allocation_id == allocation_id)
            .order_by(LedgerEntry.seq)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def all_entries(self, year: int | None = None) -> tuple[LedgerEntryDTO, ...]:
        query = select(LedgerEntry)
        if year is not None:
            query = query.where(LedgerEntry.year == year)
        rows = self.session.execute(query.order_by(LedgerEntry.seq)).scalars()
        return tuple(row.to_dto() for row in rows)
