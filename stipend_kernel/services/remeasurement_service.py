"""
RemeasurementService -- turns imported practice metrics into cap entries.

Responsibility:
    For each metrics row of the current pay period, stores the metrics and
    posts the ledger entry that moves the practice's recorded cap to the
    imported cap: an ``opening_balance`` on the first row of the year,
    otherwise a ``remeasurement_increase`` / ``remeasurement_decrease`` for
    the delta.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    stipend_ingestion.ImportService after CSV parsing.

Invariants enforced:
    - Idempotent: the prior cap is the running cap of the year through the
      current period, so re-importing identical rows posts nothing.
    - Deltas within the money tolerance post nothing.
    - Baselines are year-scoped: nothing carries over from the prior year.
    - Rows are independent: a bad row is reported in ``failures`` and the
      rest of the batch still applies (unless ``strict``).
    - Practice rows are locked in id order before their caps are read.

Failure modes:
    - NoCurrentPayPeriodError: the registry has no current period.
    - ActorNotPermittedError: caller is not Finance or Admin.
    - ValidationError: ``strict=True`` and at least one row failed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO
from stipend_kernel.domain.balance import running_cap
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import MetricsRow, RemeasurementResult, RowFailure
from stipend_kernel.domain.ledger import LedgerOwner, NewLedgerEntry, TransactionType
from stipend_kernel.domain.roles import Actor
from stipend_kernel.exceptions import ActorNotPermittedError, ValidationError
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.metrics import PracticeMetrics
from stipend_kernel.models.practice import Practice
from stipend_kernel.services.base import BaseService, translates_lock_failures
from stipend_kernel.services.ledger_service import LedgerService
from stipend_kernel.services.notifications import (
    NotificationEvent,
    NotificationSink,
    notify_safely,
)
from stipend_kernel.services.pay_period_service import PayPeriodService

logger = get_logger("services.remeasurement")


class RemeasurementService(BaseService):
    """Apply a batch of metrics rows to the ledger."""

    def __init__(self, session, config=None, clock=None, notifier: NotificationSink | None = None):
        super().__init__(session, config, clock)
        self._notifier = notifier
        self._ledger = LedgerService(session, self._config, self._clock)

    def _screen(
        self, rows: Iterable[MetricsRow], current: PeriodKey
    ) -> tuple[list[MetricsRow], list[RowFailure]]:
        accepted: list[MetricsRow] = []
        failures: list[RowFailure] = []
        seen: set[str] = set()
        for row in rows:
            key = (row.practice_key or "").strip()
            reason = None
            if not key:
                reason = "practice key is blank"
            elif PeriodKey(row.year, row.pay_period) != current:
                reason = f"row is for PP{row.pay_period}'{row.year}, current period is {current}"
            elif key in seen:
                reason = "practice appears more than once in this import"
            elif row.stipend_cap is not None and row.stipend_cap < ZERO:
                reason = "stipend cap cannot be negative"
            if reason:
                failures.append(RowFailure(row.row_index, key, reason))
                continue
            seen.add(key)
            accepted.append(row)
        return accepted, failures

    def _store_metrics(self, row: MetricsRow, practice: Practice | None, actor_id: UUID) -> None:
        existing = self.session.execute(
            select(PracticeMetrics).where(
                PracticeMetrics.practice_key == row.practice_key.strip(),
                PracticeMetrics.year == row.year,
                PracticeMetrics.pay_period == row.pay_period,
            )
        ).scalar_one_or_none()
        if existing is None:
            existing = PracticeMetrics(
                practice_key=row.practice_key.strip(),
                pay_period=row.pay_period,
                year=row.year,
                created_by_id=actor_id,
            )
            self.session.add(existing)
        else:
            existing.updated_by_id = actor_id
        existing.practice_id = practice.id if practice else None
        existing.stipend_cap = row.stipend_cap
        existing.negative_earnings_cap = row.negative_earnings_cap
        existing.negative_earnings_utilized = row.negative_earnings_utilized

    def _post_cap(
        self, practice: Practice, new_cap: Decimal, current: PeriodKey, actor_id: UUID
    ) -> str | None:
        """Post the entry moving the recorded cap to ``new_cap``; returns its kind."""
        tolerance = self._config.money.tolerance
        owner = LedgerOwner.practice(practice.id)
        prior = running_cap(
            self._ledger.entries_for(owner, year=current.year), current.year, current.number
        )

        if prior is None:
            if new_cap <= tolerance:
                return None
            self._ledger.append(
                NewLedgerEntry(
                    owner=owner,
                    pay_period=current.number,
                    year=current.year,
                    transaction_type=TransactionType.OPENING_BALANCE,
                    amount=new_cap,
                    description=f"Opening balance {current}",
                ),
                actor_id,
            )
            return "opening_balance"

        delta = new_cap - prior
        if abs(delta) <= tolerance:
            return None
        kind = (
            TransactionType.REMEASUREMENT_INCREASE
            if delta > ZERO
            else TransactionType.REMEASUREMENT_DECREASE
        )
        self._ledger.append(
            NewLedgerEntry(
                owner=owner,
                pay_period=current.number,
                year=current.year,
                transaction_type=kind,
                amount=delta,
                description=f"Remeasurement {current}: {prior} -> {new_cap}",
            ),
            actor_id,
        )
        return "remeasurement"

    def _disappeared(self, current: PeriodKey, imported_keys: set[str]) -> tuple[str, ...]:
        previous = self.calendar.previous(current)
        prior_keys = self.session.execute(
            select(PracticeMetrics.practice_key).where(
                PracticeMetrics.year == previous.year,
                PracticeMetrics.pay_period == previous.number,
                PracticeMetrics.practice_id.is_not(None),
                PracticeMetrics.stipend_cap.is_not(None),
            )
        ).scalars()
        return tuple(sorted(set(prior_keys) - imported_keys))

    @translates_lock_failures("apply_metrics")
    def apply_metrics(
        self, rows: Iterable[MetricsRow], actor: Actor, strict: bool = False
    ) -> RemeasurementResult:
        """
        Apply metrics rows for the current pay period.

        Rows for other periods, duplicate keys, blank keys and negative caps
        are reported in ``failures``.  With ``strict=True`` any failure
        raises ValidationError before anything is written.
        """
        if not actor.is_administrator:
            raise ActorNotPermittedError(
                str(actor.id), "apply_metrics", "only Finance or Admin may import metrics"
            )
        current_period = self._current_period()
        current = current_period.key

        accepted, failures = self._screen(rows, current)
        if strict and failures:
            raise ValidationError(
                [f"row {f.row_index}: {f.reason}" for f in failures], field="rows"
            )

        keys = {row.practice_key.strip() for row in accepted}
        practices: dict[str, Practice] = {}
        if keys:
            for p in self.session.execute(select(Practice).where(Practice.key.in_(keys))).scalars():
                practices[p.key] = p
        self._lock_practices(p.id for p in practices.values())

        opening = remeasured = skipped_null = 0
        not_in_registry: list[str] = []
        for row in accepted:
            key = row.practice_key.strip()
            practice = practices.get(key)
            self._store_metrics(row, practice, actor.id)
            if practice is None:
                not_in_registry.append(key)
                continue
            if row.stipend_cap is None:
                skipped_null += 1
                continue
            posted = self._post_cap(practice, row.stipend_cap, current, actor.id)
            if posted == "opening_balance":
                opening += 1
            elif posted == "remeasurement":
                remeasured += 1
        self.session.flush()

        PayPeriodService(self.session, self._config, self._clock).mark_remeasurement_completed(
            current_period.id, actor.id
        )

        result = RemeasurementResult(
            imported=len(accepted),
            opening_balances=opening,
            remeasurements=remeasured,
            practices_not_in_registry=tuple(sorted(not_in_registry)),
            disappeared_practices=self._disappeared(current, keys),
            skipped_null_cap=skipped_null,
            failures=tuple(failures),
        )
        logger.info(
            "remeasurement_applied",
            extra={
                "pay_period": str(current),
                "imported": result.imported,
                "opening_balances": opening,
                "remeasurements": remeasured,
                "not_in_registry": len(not_in_registry),
                "disappeared": len(result.disappeared_practices),
                "failures": len(failures),
            },
        )
        if failures:
            logger.warning(
                "remeasurement_rows_rejected",
                extra={"rows": [f.row_index for f in failures]},
            )
        notify_safely(
            self._notifier,
            NotificationEvent.REMEASUREMENT_COMPLETED,
            f"Remeasurement for {current}: {opening} opening balances, {remeasured} changes",
            result.to_dict(),
        )
        return result
