"""
PayPeriodService -- the Pay Period Registry.

Responsibility:
    Creates pay periods from the configured calendar, tracks the single
    current period and answers period lookups and ranges.

Architecture position:
    Kernel > Services -- imperative shell.  Period arithmetic lives in
    domain/calendar.py; this service persists and looks up its results.

Invariants enforced:
    - At most one current period.  ``set_current`` locks the single
      PayPeriodRegistry row FOR UPDATE before touching any flag, so writers
      are serialized system-wide, and it unmarks then marks inside one
      transaction, so no committed state has zero or two current periods.
    - Periods are contiguous fixed-length windows numbered 1..N per year.

Failure modes:
    - NoCurrentPayPeriodError: ``current_period`` with nothing marked current.
      A fatal setup problem, never defaulted.
    - PayPeriodNotFoundError: unknown id, or a range naming a period that
      has not been created.
    - ValidationError: period number out of range, year before min_year or
      past the last date the calendar can represent.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import PayPeriodDTO
from stipend_kernel.exceptions import (
    PayPeriodNotFoundError,
    ValidationError,
)
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.pay_period import PayPeriod, PayPeriodRegistry
from stipend_kernel.services.base import BaseService, translates_lock_failures

logger = get_logger("services.pay_period")

REGISTRY_NAME = "default"


class PayPeriodService(BaseService):
    """
    Pay period lifecycle and lookups.

    Non-goals:
        - Does NOT decide when to advance; an operator or scheduler calls
          ``advance`` / ``set_current``.
    """

    # -- lookups ---------------------------------------------------------

    def _get_orm(self, period_id: UUID) -> PayPeriod:
        period = self.session.get(PayPeriod, period_id)
        if period is None:
            raise PayPeriodNotFoundError(str(period_id))
        return period

    def _by_key(self, key: PeriodKey) -> PayPeriod | None:
        return self.session.execute(
            select(PayPeriod).where(
                PayPeriod.year == key.year,
                PayPeriod.number == key.number,
            )
        ).scalar_one_or_none()

    def _validate_year(self, year: int) -> None:
        if year < self._config.calendar.min_year:
            raise ValidationError(
                f"Year {year} is before the first supported year "
                f"{self._config.calendar.min_year}",
                field="year",
            )

    def get_period(self, period_id: UUID) -> PayPeriodDTO:
        return self._get_orm(period_id).to_dto()

    def get_by_key(self, key: PeriodKey) -> PayPeriodDTO:
        self.calendar.validate(key)
        period = self._by_key(key)
        if period is None:
            raise PayPeriodNotFoundError(str(key))
        return period.to_dto()

    def current_period(self) -> PayPeriodDTO:
        """
        The period marked current.

        Raises:
            NoCurrentPayPeriodError: Nothing is marked current.
        """
        return self._current_period().to_dto()

    def period_for_date(self, d: date) -> PayPeriodDTO:
        return self.get_by_key(self.calendar.key_for_date(d))

    def list_periods(self, year: int | None = None) -> list[PayPeriodDTO]:
        query = select(PayPeriod)
        if year is not None:
            query = query.where(PayPeriod.year == year)
        rows = self.session.execute(
            query.order_by(PayPeriod.year, PayPeriod.number)
        ).scalars()
        return [row.to_dto() for row in rows]

    def periods_in_range(
        self,
        start_period: int,
        start_year: int,
        end_period: int,
        end_year: int,
    ) -> tuple[PayPeriodDTO, ...]:
        """
        Every period from start through end inclusive, in order.

        Raises:
            ValidationError: Out-of-range numbers or end before start.
            PayPeriodNotFoundError: A period in the range was never created.
        """
        keys = self.calendar.keys_in_range(
            PeriodKey(start_year, start_period), PeriodKey(end_year, end_period)
        )
        rows = {
            p.key: p
            for p in self.session.execute(
                select(PayPeriod).where(PayPeriod.year.between(start_year, end_year))
            ).scalars()
        }
        missing = [str(k) for k in keys if k not in rows]
        if missing:
            raise PayPeriodNotFoundError(", ".join(missing))
        return tuple(rows[k].to_dto() for k in keys)

    # -- writes ----------------------------------------------------------

    def ensure_year(self, year: int, actor_id: UUID) -> list[PayPeriodDTO]:
        """Create any missing periods of ``year``.  Idempotent."""
        self._validate_year(year)
        existing = {
            p.number
            for p in self.session.execute(
                select(PayPeriod).where(PayPeriod.year == year)
            ).scalars()
        }
        # Dates first, so a year past the calendar's range adds nothing
        missing = [
            (key, self.calendar.period_dates(key))
            for key in self.calendar.keys_for_year(year)
            if key.number not in existing
        ]
        created = 0
        for key, (start, end) in missing:
            self.session.add(
                PayPeriod(
                    year=key.year,
                    number=key.number,
                    start_date=start,
                    end_date=end,
                    is_current=False,
                    remeasurement_completed=False,
                    created_by_id=actor_id,
                )
            )
            created += 1
        self.session.flush()
        if created:
            logger.info(
                "pay_periods_created", extra={"year": year, "periods_created": created}
            )
        return self.list_periods(year)

    def _lock_registry(self, actor_id: UUID) -> PayPeriodRegistry:
        query = (
            select(PayPeriodRegistry)
            .where(PayPeriodRegistry.name == REGISTRY_NAME)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        registry = self.session.execute(query).scalar_one_or_none()
        if registry is not None:
            return registry

        savepoint = self.session.begin_nested()
        try:
            registry = PayPeriodRegistry(name=REGISTRY_NAME, created_by_id=actor_id)
            self.session.add(registry)
            self.session.flush()
            savepoint.commit()
            return registry
        except IntegrityError:
            savepoint.rollback()
            return self.session.execute(query).scalar_one()

    @translates_lock_failures("set_current_period")
    def set_current(self, period_id: UUID, actor_id: UUID) -> PayPeriodDTO:
        """
        Make ``period_id`` the one current period.

        Raises:
            PayPeriodNotFoundError: Unknown period.
        """
        registry = self._lock_registry(actor_id)
        target = self._get_orm(period_id)

        previous = self.session.execute(
            select(PayPeriod)
            .where(PayPeriod.is_current.is_(True))
            .with_for_update()
        ).scalars().all()
        for period in previous:
            if period.id != target.id:
                period.is_current = False
                period.updated_by_id = actor_id
        # The partial unique index sees the unmark before the mark.
        self.session.flush()

        target.is_current = True
        target.updated_by_id = actor_id
        registry.current_period_id = target.id
        registry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "current_period_set",
            extra={
                "pay_period": str(target.key),
                "previous": [str(p.key) for p in previous if p.id != target.id],
            },
        )
        return target.to_dto()

    def advance(self, actor_id: UUID) -> PayPeriodDTO:
        """Move current to the next period, creating next year's periods if needed."""
        nxt = self.calendar.next(self._current_period().key)
        target = self._by_key(nxt)
        if target is None:
            self.ensure_year(nxt.year, actor_id)
            target = self._by_key(nxt)
        return self.set_current(target.id, actor_id)

    def mark_remeasurement_completed(self, period_id: UUID, actor_id: UUID) -> PayPeriodDTO:
        period = self._get_orm(period_id)
        if not period.remeasurement_completed:
            period.remeasurement_completed = True
            period.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "remeasurement_marked_completed",
                extra={"pay_period": str(period.key)},
            )
        return period.to_dto()
