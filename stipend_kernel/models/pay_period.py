"""
Module: stipend_kernel.models.pay_period
Responsibility: ORM persistence for pay periods and the single-row registry
    that owns the "current period" pointer.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - (year, number) is unique.
    - At most one period is current.  PayPeriodService changes the flag only
      while holding a FOR UPDATE lock on the single PayPeriodRegistry row,
      which serializes every writer system-wide.  A partial unique index
      backs this up at the database level.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import PayPeriodDTO


class PayPeriod(TrackedBase):
    """A fixed-length pay period, numbered within its year."""

    __tablename__ = "pay_periods"

    __table_args__ = (
        UniqueConstraint("year", "number", name="uq_pay_period_year_number"),
        Index("idx_pay_period_dates", "start_date", "end_date"),
        Index(
            "uq_pay_period_single_current",
            "is_current",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # 1..periods_per_year
    number: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    remeasurement_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    def __repr__(self) -> str:
        return f"<PayPeriod PP{self.number}'{self.year}{' current' if self.is_current else ''}>"

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(self.year, self.number)

    def to_dto(self) -> PayPeriodDTO:
        return PayPeriodDTO(
            id=self.id,
            year=self.year,
            number=self.number,
            start_date=self.start_date,
            end_date=self.end_date,
            is_current=self.is_current,
            remeasurement_completed=self.remeasurement_completed,
        )


class PayPeriodRegistry(TrackedBase):
    """
    Single-row registry holding the current period pointer.

    Contract:
        Exactly one row, name ``"default"``.  Its row lock is the
        single-writer gate for ``PayPeriodService.set_current``.
    """

    __tablename__ = "pay_period_registry"

    __table_args__ = (
        UniqueConstraint("name", name="uq_pay_period_registry_name"),
    )

    name: Mapped[str] = mapped_column(String(20), nullable=False, default="default")

    current_period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("pay_periods.id"),
        nullable=True,
    )
