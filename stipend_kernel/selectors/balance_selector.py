"""
Module: stipend_kernel.selectors.balance_selector
Responsibility: Replay the ledger from the database into balance figures
    for practices, portfolio suspense accounts and portfolio roll-ups.
Architecture position: Kernel > Selectors.  All arithmetic is delegated to
    domain/balance.py; this module only loads entries.

Invariants enforced:
    - One balance function: every figure goes through compute_balance, so
      no caller sums partial buckets on its own.
    - Idempotent: the same ledger snapshot always yields equal results.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO, round_money
from stipend_kernel.domain.balance import BalanceSnapshot, compute_balance, ledger_total
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import PortfolioSummary
from stipend_kernel.domain.ledger import LedgerOwner
from stipend_kernel.exceptions import PortfolioNotFoundError, PracticeNotFoundError
from stipend_kernel.models.practice import Portfolio, Practice
from stipend_kernel.selectors.base import BaseSelector
from stipend_kernel.selectors.ledger_selector import LedgerSelector


class BalanceSelector(BaseSelector):
    """Derived balances.  Never writes."""

    def compute_balance(
        self, practice_id: UUID, as_of: PeriodKey | None = None
    ) -> BalanceSnapshot:
        """
        Balance of a practice for the fiscal year of ``as_of``.

        ``as_of`` defaults to the current pay period.

        Raises:
            PracticeNotFoundError: Unknown practice.
            NoCurrentPayPeriodError: ``as_of`` omitted and no current period.
        """
        if self.session.get(Practice, practice_id) is None:
            raise PracticeNotFoundError(str(practice_id))
        key = self.calendar.validate(as_of or self._current_key())
        entries = LedgerSelector(self.session, self._config).entries_for(
            LedgerOwner.practice(practice_id), year=key.year
        )
        return compute_balance(
            entries,
            year=key.year,
            as_of_period=key.number,
            periods_per_year=self.calendar.periods_per_year,
        )

    def suspense_balance(self, portfolio_id: UUID, year: int | None = None):
        """Signed total of the portfolio's suspense entries for ``year``."""
        if self.session.get(Portfolio, portfolio_id) is None:
            raise PortfolioNotFoundError(str(portfolio_id))
        if year is None:
            year = self._current_key().year
        entries = LedgerSelector(self.session, self._config).entries_for(
            LedgerOwner.portfolio(portfolio_id), year=year
        )
        return ledger_total(entries, year)

    def portfolio_summary(
        self, portfolio_id: UUID, as_of: PeriodKey | None = None
    ) -> PortfolioSummary:
        portfolio = self.session.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(str(portfolio_id))
        return self._summarize(portfolio, as_of or self._current_key())

    def portfolio_summaries(self, as_of: PeriodKey | None = None) -> list[PortfolioSummary]:
        key = as_of or self._current_key()
        portfolios = self.session.execute(
            select(Portfolio).order_by(Portfolio.code)
        ).scalars()
        return [self._summarize(p, key) for p in portfolios]

    def _summarize(self, portfolio: Portfolio, key: PeriodKey) -> PortfolioSummary:
        practice_ids = self.session.execute(
            select(Practice.id)
            .where(Practice.portfolio_id == portfolio.id)
            .order_by(Practice.key)
        ).scalars().all()

        cap = paid = committed = available = ZERO
        for practice_id in practice_ids:
            snap = self.compute_balance(practice_id, key)
            cap += snap.stipend_cap
            paid += snap.stipend_paid
            committed += snap.stipend_committed
            available += snap.available_balance

        remaining = self.calendar.remaining_periods(key)
        utilization = ZERO if cap == ZERO else round_money((paid + committed) / cap * 100)
        return PortfolioSummary(
            portfolio_id=portfolio.id,
            code=portfolio.code,
            name=portfolio.name,
            practice_count=len(practice_ids),
            total_cap=cap,
            stipend_paid=paid,
            stipend_committed=committed,
            available_balance=available,
            available_per_pp=round_money(available / remaining),
            utilization_percent=utilization,
            suspense_balance=self.suspense_balance(portfolio.id, key.year),
        )
