"""
Module: stipend_kernel.models.ledger
Responsibility: ORM persistence for the append-only practice ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are blocked by ORM listeners
      (db/immutability.py).  Reversal is a new ``cancelled`` entry.
    - Exactly one owner: a practice, or a portfolio (suspense).
    - Non-zero amount.
    - ``seq`` is unique and strictly increasing in insertion order.
    - related_request_id / related_allocation_id are weak references with no
      foreign key, so deleting a request never cascades into ledger history.

Audit relevance:
    Every balance figure the system reports is a replay of these rows.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.ledger import (
    LedgerEntryDTO,
    LedgerOwner,
    TransactionType,
)

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in TransactionType)


class LedgerEntry(TrackedBase):
    """
    One signed monetary movement for a practice or a portfolio's suspense.

    Contract:
        Created only through LedgerService.append.  Never mutated.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_entry_seq"),
        CheckConstraint(
            "(practice_id IS NULL) <> (portfolio_id IS NULL)",
            name="ck_ledger_entry_single_owner",
        ),
        CheckConstraint("amount <> 0", name="ck_ledger_entry_nonzero"),
        CheckConstraint(
            f"transaction_type IN ({_TYPE_VALUES})",
            name="ck_ledger_entry_type",
        ),
        Index("idx_ledger_practice_year", "practice_id", "year"),
        Index("idx_ledger_portfolio_year", "portfolio_id", "year"),
        Index("idx_ledger_request_period", "related_request_id", "year", "pay_period"),
        Index("idx_ledger_allocation", "related_allocation_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    practice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("practices.id"),
        nullable=True,
    )

    # Set only for suspense entries
    portfolio_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("portfolios.id"),
        nullable=True,
    )

    pay_period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("pay_periods.id"),
        nullable=False,
    )

    # Denormalized from pay_period_id for year-window scans
    pay_period: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Positive = credit, negative = debit
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    related_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    related_allocation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reverses_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_entries.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.seq} {self.transaction_type} {self.amount} "
            f"PP{self.pay_period}'{self.year}>"
        )

    @property
    def owner(self) -> LedgerOwner:
        if self.practice_id is not None:
            return LedgerOwner.practice(self.practice_id)
        return LedgerOwner.portfolio(self.portfolio_id)

    def to_dto(self) -> LedgerEntryDTO:
        return LedgerEntryDTO(
            id=self.id,
            seq=self.seq,
            owner=self.owner,
            pay_period=self.pay_period,
            year=self.year,
            transaction_type=TransactionType(self.transaction_type),
            amount=Decimal(self.amount),
            description=self.description,
            related_request_id=self.related_request_id,
            related_allocation_id=self.related_allocation_id,
            reverses_entry_id=self.reverses_entry_id,
            created_at=self.created_at,
        )
