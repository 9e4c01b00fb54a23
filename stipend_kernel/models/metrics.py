"""
Module: stipend_kernel.models.metrics
Responsibility: ORM persistence for imported practice metrics and for
    negative earnings cap requests.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One metrics row per (practice_key, year, pay_period); a re-import of the
      same key overwrites the cached figures.  Metrics are an import cache,
      the ledger remains the source of truth for balances.
    - practice_id is nullable: rows for keys unknown to the registry are kept.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.dtos import NegativeEarningsRequestDTO, PracticeMetricsDTO


def _dec(value) -> Decimal | None:
    return Decimal(value) if value is not None else None


class PracticeMetrics(TrackedBase):
    """Per-period metrics for a practice, as last imported."""

    __tablename__ = "practice_metrics"

    __table_args__ = (
        UniqueConstraint("practice_key", "year", "pay_period", name="uq_practice_metrics_period"),
        Index("idx_practice_metrics_period", "year", "pay_period"),
    )

    practice_key: Mapped[str] = mapped_column(String(100), nullable=False)

    practice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("practices.id"), nullable=True
    )

    pay_period: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    stipend_cap: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    negative_earnings_cap: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    negative_earnings_utilized: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True
    )

    def to_dto(self) -> PracticeMetricsDTO:
        return PracticeMetricsDTO(
            id=self.id,
            practice_key=self.practice_key,
            practice_id=self.practice_id,
            pay_period=self.pay_period,
            year=self.year,
            stipend_cap=_dec(self.stipend_cap),
            negative_earnings_cap=_dec(self.negative_earnings_cap),
            negative_earnings_utilized=_dec(self.negative_earnings_utilized),
        )


class NegativeEarningsCapRequest(TrackedBase):
    """A request to draw on a practice's negative earnings cap for one period."""

    __tablename__ = "negative_earnings_cap_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_finance', 'approved', 'rejected')",
            name="ck_negative_earnings_status",
        ),
        CheckConstraint("requested_amount > 0", name="ck_negative_earnings_positive"),
        Index("idx_negative_earnings_period", "year", "pay_period", "status"),
    )

    practice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("practices.id"), nullable=False
    )

    requestor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    pay_period: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    requested_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    justification: Mapped[str] = mapped_column(String(4000), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending_finance")

    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def to_dto(self) -> NegativeEarningsRequestDTO:
        return NegativeEarningsRequestDTO(
            id=self.id,
            practice_id=self.practice_id,
            requestor_id=self.requestor_id,
            pay_period=self.pay_period,
            year=self.year,
            requested_amount=Decimal(self.requested_amount),
            approved_amount=_dec(self.approved_amount),
            justification=self.justification,
            status=self.status,
            decided_by_id=self.decided_by_id,
            decided_at=self.decided_at,
            notes=self.notes,
        )
