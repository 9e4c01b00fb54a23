"""
Module: stipend_kernel.models.practice
Responsibility: ORM persistence for the practice registry: portfolios,
    practices and the practice reassignment audit trail.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Portfolio.code and Practice.key are unique external keys.
    - PracticeReassignment rows are append-only (db/immutability.py).
    - Reassigning a practice never touches its ledger history; ledger
      entries reference the practice, not its portfolio.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.dtos import PortfolioDTO, PracticeDTO, PracticeReassignmentDTO


class Portfolio(TrackedBase):
    """
    A named grouping of practices managed by one PSM.

    Its suspense balance is not stored; it is the sum of ledger entries owned
    by the portfolio.
    """

    __tablename__ = "portfolios"

    __table_args__ = (
        UniqueConstraint("code", name="uq_portfolio_code"),
    )

    # External key (e.g. "G1")
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    practices: Mapped[list[Practice]] = relationship(back_populates="portfolio")

    def __repr__(self) -> str:
        return f"<Portfolio {self.code}>"

    def to_dto(self) -> PortfolioDTO:
        return PortfolioDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            is_active=self.is_active,
        )


class Practice(TrackedBase):
    """
    The funded unit against which stipends are requested.

    Contract:
        Practice rows double as the per-practice lock target: services take
        ``SELECT ... FOR UPDATE`` on them before any balance-predicated write.
    """

    __tablename__ = "practices"

    __table_args__ = (
        UniqueConstraint("key", name="uq_practice_key"),
        Index("idx_practice_portfolio", "portfolio_id"),
    )

    # Stable external key (the clinic name used by metric imports)
    key: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    portfolio_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("portfolios.id"),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    portfolio: Mapped[Portfolio] = relationship(back_populates="practices")

    def __repr__(self) -> str:
        return f"<Practice {self.key}>"

    def to_dto(self) -> PracticeDTO:
        return PracticeDTO(
            id=self.id,
            key=self.key,
            name=self.name,
            portfolio_id=self.portfolio_id,
            is_active=self.is_active,
        )


class PracticeReassignment(TrackedBase):
    """Append-only record of a practice moving between portfolios."""

    __tablename__ = "practice_reassignments"

    __table_args__ = (
        Index("idx_reassignment_practice", "practice_id"),
    )

    practice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("practices.id"),
        nullable=False,
    )

    from_portfolio_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("portfolios.id"),
        nullable=False,
    )

    to_portfolio_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("portfolios.id"),
        nullable=False,
    )

    effective_period: Mapped[int] = mapped_column(Integer, nullable=False)

    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Clock-injected; created_at is server time and may lag
    reassigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> PracticeReassignmentDTO:
        return PracticeReassignmentDTO(
            id=self.id,
            practice_id=self.practice_id,
            from_portfolio_id=self.from_portfolio_id,
            to_portfolio_id=self.to_portfolio_id,
            effective_period=self.effective_period,
            effective_year=self.effective_year,
            reassigned_by_id=self.created_by_id,
            reassigned_at=self.reassigned_at,
        )
