"""
Module: stipend_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM rows.
    - No stored balances: every figure is derived from LedgerEntry rows.
"""

from __future__ import annotations

from abc import ABC

from sqlalchemy import select
from sqlalchemy.orm import Session

from stipend_config import StipendConfig, get_active_config
from stipend_kernel.domain.calendar import PayCalendar, PeriodKey
from stipend_kernel.exceptions import NoCurrentPayPeriodError
from stipend_kernel.models.pay_period import PayPeriod


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries
        and return DTOs or computed results.
    """

    def __init__(self, session: Session, config: StipendConfig | None = None):
        self.session = session
        self._config = config or get_active_config()

    @property
    def calendar(self) -> PayCalendar:
        return PayCalendar.from_settings(self._config.calendar)

    def _current_key(self) -> PeriodKey:
        period = self.session.execute(
            select(PayPeriod).where(PayPeriod.is_current.is_(True))
        ).scalar_one_or_none()
        if period is None:
            raise NoCurrentPayPeriodError()
        return period.key
