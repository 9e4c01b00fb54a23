"""
Import service: read -> map -> apply.

Orchestrates the source adapters, record mapping and the kernel services:

    parse_and_apply_metrics_import       metrics export -> RemeasurementService
    parse_and_apply_opening_balance_import
                                         historical consumption -> LedgerService

A source is a ``Path`` (``.xlsx`` read with openpyxl, anything else as CSV),
a ``str`` of delimited text, or an iterable of already-parsed record dicts.
Like the kernel services, ImportService flushes and never commits.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from stipend_config import StipendConfig, get_active_config
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.clock import Clock, SystemClock
from stipend_kernel.domain.dtos import MetricsRow, RemeasurementResult, RowFailure
from stipend_kernel.domain.ledger import LedgerOwner, NewLedgerEntry, TransactionType
from stipend_kernel.domain.roles import Actor
from stipend_kernel.exceptions import ActorNotPermittedError, ValidationError
from stipend_kernel.logging_config import LogContext, get_logger
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.models.practice import Practice
from stipend_kernel.services import (
    LedgerService,
    NotificationSink,
    PayPeriodService,
    RemeasurementService,
)
from stipend_kernel.services.base import BaseService

from stipend_ingestion.adapters.base import is_workbook
from stipend_ingestion.adapters.csv_adapter import CsvSourceAdapter
from stipend_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter
from stipend_ingestion.mapping import (
    PRACTICE_KEY_ALIASES,
    OpeningBalanceRow,
    map_metrics_record,
    map_opening_balance_record,
    normalize_header,
)

logger = get_logger("ingestion.import_service")

ImportSource = Union[str, Path, Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class OpeningBalanceImportResult:
    """Outcome of a historical backfill import."""

    created: int
    skipped: int
    failures: tuple[RowFailure, ...] = ()

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failures": [
                {"row": f.row_index, "practice_key": f.practice_key, "reason": f.reason}
                for f in self.failures
            ],
        }


def read_records(source: ImportSource, options: dict[str, Any] | None = None) -> list[dict]:
    """Materialize a source into record dicts."""
    options = options or {}
    if isinstance(source, Path):
        if is_workbook(source):
            return list(XlsxSourceAdapter().read(source, options))
        return list(CsvSourceAdapter().read(source, options))
    if isinstance(source, str):
        return list(CsvSourceAdapter().read_text(source, options))
    return [dict(record) for record in source]


def _as_validation_error(failures: Iterable[RowFailure]) -> ValidationError:
    return ValidationError([f"row {f.row_index}: {f.reason}" for f in failures], field="rows")


class ImportService(BaseService):
    """Parse external files and apply them through the kernel services."""

    def __init__(
        self,
        session: Session,
        config: StipendConfig | None = None,
        clock: Clock | None = None,
        notifier: NotificationSink | None = None,
    ):
        config = config or get_active_config()
        clock = clock or SystemClock()
        super().__init__(session, config, clock)
        self._notifier = notifier
        self._periods = PayPeriodService(session, config, clock)
        self._ledger = LedgerService(session, config, clock)

    def _require_admin(self, actor: Actor, operation: str) -> None:
        if not actor.is_administrator:
            raise ActorNotPermittedError(
                str(actor.id), operation, "only Finance or Admin may import data"
            )

    # -- metrics -----------------------------------------------------------

    def parse_and_apply_metrics_import(
        self,
        source: ImportSource,
        actor: Actor,
        strict: bool = False,
        options: dict[str, Any] | None = None,
    ) -> RemeasurementResult:
        """
        Import a metrics export for the current pay period.

        Records without a pay period or year default to the current period.
        Unparseable records are reported in ``failures`` next to the rows the
        remeasurement processor rejects; with ``strict=True`` any failure
        raises ValidationError and nothing is written.
        """
        self._require_admin(actor, "import_metrics")
        current = self._periods.current_period()
        default = PeriodKey(current.year, current.number)

        with LogContext.bind(actor_id=actor.id):
            records = read_records(source, options)
            rows: list[MetricsRow] = []
            failures: list[RowFailure] = []
            for index, record in enumerate(records, start=1):
                mapped = map_metrics_record(record, index, default)
                if mapped.success:
                    rows.append(mapped.row)
                else:
                    failures.append(RowFailure(index, _raw_key(record), mapped.error))

            logger.info(
                "metrics_import_parsed",
                extra={
                    "records": len(records),
                    "mapped": len(rows),
                    "unparseable": len(failures),
                    "pay_period": str(default),
                },
            )
            if strict and failures:
                raise _as_validation_error(failures)

            result = RemeasurementService(
                self.session, self._config, self._clock, self._notifier
            ).apply_metrics(rows, actor, strict=strict)

        if not failures:
            return result
        merged = sorted(failures + list(result.failures), key=lambda f: f.row_index or 0)
        return dataclasses.replace(result, failures=tuple(merged))

    # -- historical backfill -----------------------------------------------

    def _has_backfill(self, practice_id, row: OpeningBalanceRow) -> bool:
        found = self.session.execute(
            select(LedgerEntry.id)
            .where(
                LedgerEntry.practice_id == practice_id,
                LedgerEntry.year == row.year,
                LedgerEntry.pay_period == row.pay_period,
                LedgerEntry.transaction_type == TransactionType.PAID.value,
                LedgerEntry.related_request_id.is_(None),
                LedgerEntry.related_allocation_id.is_(None),
            )
            .limit(1)
        ).first()
        return found is not None

    def _prepare_years(
        self, rows: list[OpeningBalanceRow], actor: Actor
    ) -> tuple[list[OpeningBalanceRow], list[RowFailure]]:
        """Create the pay periods the rows need; reject rows that cannot have one."""
        failures: list[RowFailure] = []
        bad_years: dict[int, str] = {}
        for year in sorted({row.year for row in rows}):
            try:
                self._periods.ensure_year(year, actor.id)
            except ValidationError as exc:
                bad_years[year] = str(exc)

        kept: list[OpeningBalanceRow] = []
        for row in rows:
            if row.year in bad_years:
                failures.append(RowFailure(row.row_index, row.practice_key, bad_years[row.year]))
                continue
            try:
                self.calendar.validate(PeriodKey(row.year, row.pay_period))
            except ValidationError as exc:
                failures.append(RowFailure(row.row_index, row.practice_key, str(exc)))
                continue
            kept.append(row)
        return kept, failures

    def parse_and_apply_opening_balance_import(
        self,
        source: ImportSource,
        actor: Actor,
        options: dict[str, Any] | None = None,
    ) -> OpeningBalanceImportResult:
        """
        Backfill historical consumption.

        Each row appends a ``paid`` entry of -amount with no request or
        allocation reference.  A row whose practice already has such an
        entry for the same period and year is skipped.
        """
        self._require_admin(actor, "import_opening_balances")

        with LogContext.bind(actor_id=actor.id):
            records = read_records(source, options)
            rows: list[OpeningBalanceRow] = []
            failures: list[RowFailure] = []
            for index, record in enumerate(records, start=1):
                mapped = map_opening_balance_record(record, index)
                if mapped.success:
                    rows.append(mapped.row)
                else:
                    failures.append(RowFailure(index, _raw_key(record), mapped.error))

            rows, period_failures = self._prepare_years(rows, actor)
            failures.extend(period_failures)

            keys = {row.practice_key for row in rows}
            practices: dict[str, Practice] = {}
            if keys:
                for p in self.session.execute(
                    select(Practice).where(Practice.key.in_(keys))
                ).scalars():
                    practices[p.key] = p
            self._lock_practices(p.id for p in practices.values())

            created = skipped = 0
            for row in rows:
                practice = practices.get(row.practice_key)
                if practice is None:
                    failures.append(
                        RowFailure(row.row_index, row.practice_key, "practice not in registry")
                    )
                    continue
                if self._has_backfill(practice.id, row):
                    skipped += 1
                    continue
                self._ledger.append(
                    NewLedgerEntry(
                        owner=LedgerOwner.practice(practice.id),
                        pay_period=row.pay_period,
                        year=row.year,
                        transaction_type=TransactionType.PAID,
                        amount=-row.amount,
                        description=f"Historical consumption PP{row.pay_period}'{row.year}",
                    ),
                    actor.id,
                )
                created += 1

            result = OpeningBalanceImportResult(
                created=created,
                skipped=skipped,
                failures=tuple(sorted(failures, key=lambda f: f.row_index or 0)),
            )
            logger.info(
                "opening_balance_import_applied",
                extra={
                    "records": len(records),
                    "entries_created": created,
                    "skipped": skipped,
                    "failures": len(result.failures),
                },
            )
        return result


def _raw_key(record: Mapping[str, Any]) -> str:
    for k, v in record.items():
        if normalize_header(k) in PRACTICE_KEY_ALIASES and v is not None:
            return str(v).strip()
    return ""
