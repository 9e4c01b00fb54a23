"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor (session, configuration, clock) and the shared
    locking helpers every balance-predicated write goes through.

Architecture position:
    Kernel > Services -- imperative shell.  Every write service extends
    this class.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back.  The caller
      (``session_scope()``, ``run_with_retry`` or the test harness) owns
      commit/rollback, which is what makes multi-entry operations
      all-or-nothing.
    - Lock ordering: practice rows are locked in ascending id order, so two
      operations touching the same practices can never deadlock on each
      other.
    - Lock failures (deadlock, lock timeout, serialization failure) surface
      as ConcurrencyConflictError, the one retryable error.
"""

from __future__ import annotations

import functools
from abc import ABC
from typing import Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from stipend_config import StipendConfig, get_active_config
from stipend_kernel.domain.calendar import PayCalendar
from stipend_kernel.domain.clock import Clock, SystemClock
from stipend_kernel.exceptions import (
    ConcurrencyConflictError,
    NoCurrentPayPeriodError,
    PortfolioNotFoundError,
    PracticeNotFoundError,
)
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.pay_period import PayPeriod
from stipend_kernel.models.practice import Portfolio, Practice

logger = get_logger("services.base")

F = TypeVar("F", bound=Callable)

# deadlock_detected, serialization_failure, lock_not_available
_RETRYABLE_PGCODES = frozenset({"40P01", "40001", "55P03"})


def is_lock_failure(exc: OperationalError) -> bool:
    """True for lock/serialization failures that are safe to retry."""
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(exc.orig).lower()


def translates_lock_failures(operation: str) -> Callable[[F], F]:
    """Decorator: re-raise lock/serialization failures as ConcurrencyConflictError."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except OperationalError as exc:
                if not is_lock_failure(exc):
                    raise
                logger.warning(
                    "concurrency_conflict",
                    extra={"operation": operation, "detail": str(exc.orig)},
                )
                raise ConcurrencyConflictError(operation, str(exc.orig)) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only projections; those live in selectors/.
    """

    def __init__(
        self,
        session: Session,
        config: StipendConfig | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> StipendConfig:
        return self._config

    @functools.cached_property
    def calendar(self) -> PayCalendar:
        return PayCalendar.from_settings(self._config.calendar)

    def _get_practice(self, practice_id: UUID) -> Practice:
        practice = self.session.get(Practice, practice_id)
        if practice is None:
            raise PracticeNotFoundError(str(practice_id))
        return practice

    def _get_portfolio(self, portfolio_id: UUID) -> Portfolio:
        portfolio = self.session.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(str(portfolio_id))
        return portfolio

    def _lock_practices(self, practice_ids: Iterable[UUID]) -> dict[UUID, Practice]:
        """
        Lock practice rows FOR UPDATE in ascending id order.

        Raises:
            PracticeNotFoundError: If any id is unknown.
        """
        ordered = sorted(set(practice_ids), key=str)
        locked: dict[UUID, Practice] = {}
        for practice_id in ordered:
            practice = self.session.execute(
                select(Practice)
                .where(Practice.id == practice_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if practice is None:
                raise PracticeNotFoundError(str(practice_id))
            locked[practice_id] = practice
        if locked:
            logger.debug(
                "practices_locked",
                extra={"practice_ids": [str(p) for p in ordered]},
            )
        return locked

    def _lock_portfolio(self, portfolio_id: UUID) -> Portfolio:
        portfolio = self.session.execute(
            select(Portfolio)
            .where(Portfolio.id == portfolio_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if portfolio is None:
            raise PortfolioNotFoundError(str(portfolio_id))
        return portfolio

    def _current_period(self) -> PayPeriod:
        """
        The period marked current.

        Raises:
            NoCurrentPayPeriodError: Nothing is marked current.
        """
        period = self.session.execute(
            select(PayPeriod).where(PayPeriod.is_current.is_(True))
        ).scalar_one_or_none()
        if period is None:
            raise NoCurrentPayPeriodError()
        return period
