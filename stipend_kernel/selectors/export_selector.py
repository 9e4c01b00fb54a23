"""
Module: stipend_kernel.selectors.export_selector
Responsibility: Read-only projections of ledger entries and stipend
    requests to delimited text.  There is no write path back.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

import csv
import io

from stipend_kernel.db.types import round_money
from stipend_kernel.domain.ledger import LedgerOwner
from stipend_kernel.selectors.base import BaseSelector
from stipend_kernel.selectors.ledger_selector import LedgerSelector
from stipend_kernel.selectors.request_selector import StipendRequestSelector

LEDGER_COLUMNS = (
    "seq",
    "entry_id",
    "owner",
    "year",
    "pay_period",
    "transaction_type",
    "amount",
    "description",
    "related_request_id",
    "related_allocation_id",
    "reverses_entry_id",
)

REQUEST_COLUMNS = (
    "request_id",
    "practice_id",
    "status",
    "request_type",
    "category",
    "amount",
    "effective_period",
    "end_period",
    "requestor_id",
    "description",
)


def _text(value) -> str:
    return "" if value is None else str(value)


class ExportSelector(BaseSelector):

    def _write(self, header, rows, delimiter: str) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)
        return buffer.getvalue()

    def ledger_csv(
        self, owner: LedgerOwner, year: int | None = None, delimiter: str = ","
    ) -> str:
        entries = LedgerSelector(self.session, self._config).entries_for(owner, year)
        rows = (
            (
                e.seq,
                e.id,
                e.owner,
                e.year,
                e.pay_period,
                e.transaction_type.value,
                round_money(e.amount),
                e.description,
                _text(e.related_request_id),
                _text(e.related_allocation_id),
                _text(e.reverses_entry_id),
            )
            for e in entries
        )
        return self._write(LEDGER_COLUMNS, rows, delimiter)

    def requests_csv(self, status: str | None = None, delimiter: str = ",") -> str:
        requests = StipendRequestSelector(self.session, self._config).list_requests(status=status)
        rows = (
            (
                r.id,
                r.practice_id,
                r.status,
                r.request_type,
                r.category,
                round_money(r.amount),
                r.start_key,
                r.end_key if r.end_period is not None else "",
                r.requestor_id,
                r.description,
            )
            for r in requests
        )
        return self._write(REQUEST_COLUMNS, rows, delimiter)
