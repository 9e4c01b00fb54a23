"""
Module: stipend_kernel.models.allocation
Responsibility: ORM persistence for allocations (balanced fund transfers)
    and their donor / recipient lines.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Kind and status are limited to known values (check constraints).
    - Each line has exactly one party: a practice or a portfolio.
    - Status reaches ``completed`` in the same transaction that writes the
      allocation's ledger entries (AllocationService).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.dtos import AllocationDTO, AllocationLineDTO


class AllocationKind(str, Enum):
    PRACTICE_TO_PRACTICE = "practice_to_practice"
    INTER_PORTFOLIO = "inter_portfolio"
    SUSPENSE_DISTRIBUTION = "suspense_distribution"


class AllocationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class AllocationSide(str, Enum):
    DONOR = "donor"
    RECIPIENT = "recipient"


class Allocation(TrackedBase):
    """A multi-party transfer; its ledger entries share its id."""

    __tablename__ = "allocations"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('practice_to_practice', 'inter_portfolio', 'suspense_distribution')",
            name="ck_allocation_kind",
        ),
        CheckConstraint("status IN ('pending', 'completed')", name="ck_allocation_status"),
        CheckConstraint("total_amount > 0", name="ck_allocation_positive_total"),
        Index("idx_allocation_recipient_portfolio", "recipient_portfolio_id"),
    )

    kind: Mapped[str] = mapped_column(String(30), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AllocationStatus.PENDING.value
    )

    donor_actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # Period every entry of this allocation is dated to
    pay_period: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # inter_portfolio: the portfolio whose suspense is credited
    recipient_portfolio_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("portfolios.id"), nullable=True
    )

    # suspense_distribution: the portfolio whose suspense is drawn down
    source_portfolio_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("portfolios.id"), nullable=True
    )

    comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list[AllocationLine]] = relationship(
        back_populates="allocation",
        cascade="all, delete-orphan",
        order_by="AllocationLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<Allocation {self.kind} {self.total_amount} {self.status}>"

    def to_dto(self) -> AllocationDTO:
        return AllocationDTO(
            id=self.id,
            kind=self.kind,
            status=self.status,
            donor_actor_id=self.donor_actor_id,
            total_amount=Decimal(self.total_amount),
            pay_period=self.pay_period,
            year=self.year,
            recipient_portfolio_id=self.recipient_portfolio_id,
            source_portfolio_id=self.source_portfolio_id,
            comment=self.comment,
            completed_at=self.completed_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )


class AllocationLine(TrackedBase):
    """One donor or recipient leg of an allocation."""

    __tablename__ = "allocation_lines"

    __table_args__ = (
        CheckConstraint("side IN ('donor', 'recipient')", name="ck_allocation_line_side"),
        CheckConstraint("amount > 0", name="ck_allocation_line_positive"),
        CheckConstraint(
            "(practice_id IS NULL) <> (portfolio_id IS NULL)",
            name="ck_allocation_line_single_party",
        ),
        Index("idx_allocation_line_allocation", "allocation_id"),
    )

    allocation_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("allocations.id"), nullable=False
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    side: Mapped[str] = mapped_column(String(20), nullable=False)

    practice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("practices.id"), nullable=True
    )

    portfolio_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("portfolios.id"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    allocation: Mapped[Allocation] = relationship(back_populates="lines")

    def to_dto(self) -> AllocationLineDTO:
        return AllocationLineDTO(
            side=self.side,
            amount=Decimal(self.amount),
            practice_id=self.practice_id,
            portfolio_id=self.portfolio_id,
        )
