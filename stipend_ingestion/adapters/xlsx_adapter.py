"""
XLSX source adapter for metrics exports saved from a spreadsheet.

Supports flexible layout:
  - sheet by index (0-based) or name
  - header row by index or auto-detect (scans the first rows for metrics column names)
  - skip_rows before header
  - normalizes cell values (strip, blank -> empty string, whole floats -> int)
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterator

import openpyxl

from stipend_ingestion.adapters.base import SourceProbe

# Normalized (lower, alphanumerics only); a row with >= 2 matches is a header candidate
_HEADER_KEYWORDS = frozenset({
    "clinicname", "practicekey", "practice",
    "payperiod", "currentpayperiodnumber", "year",
    "stipendcap", "stipendcapavgfinal",
    "negativeearningscap", "negativeearningsutilized",
    "amount",
})

_MAX_SCAN_ROWS = 100_000
_PROBE_ROWS = 500


def _normalize_header_cell(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _keyword(value: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value).lower())


def _cell_value(row: tuple, col_idx: int) -> Any:
    """Value of a cell in an openpyxl row (0-based column index)."""
    if col_idx >= len(row) or row[col_idx] is None:
        return ""
    v = row[col_idx].value
    if v is None:
        return ""
    if isinstance(v, float) and v == int(v):
        return int(v)
    if isinstance(v, str):
        return v.strip()
    return v


def _detect_header_row(rows: list, max_search: int = 15, min_keywords: int = 2) -> int:
    """0-based index of the first row that looks like a metrics header."""
    for i, row in enumerate(rows[:max_search]):
        found = {_keyword(_cell_value(row, c)) for c in range(len(row))}
        if len(found & _HEADER_KEYWORDS) >= min_keywords:
            return i
    return 0


def _headers(row: tuple) -> list[str]:
    headers: list[str] = []
    last = 0
    for c in range(len(row)):
        if _cell_value(row, c) != "":
            last = c + 1
    for c in range(max(last, 1)):
        key = _normalize_header_cell(_cell_value(row, c)) or f"Column_{c + 1}"
        base, n = key, 0
        while key in headers:
            n += 1
            key = f"{base}_{n}"
        headers.append(key)
    return headers


class XlsxSourceAdapter:
    """
    Read .xlsx files as one dict per row.

    source_options:
      sheet: 0-based sheet index (int) or sheet name (str). Default: active sheet.
      skip_rows: rows to skip at the top of the sheet. Default: 0.
      header_row: 0-based row index (after skip_rows) of the header; used
        when auto_detect_header is false.
      auto_detect_header: scan the first 15 rows for a row naming at least two
        metrics columns (ClinicName, PayPeriod, StipendCap, ...). Default: true.
    """

    def _get_sheet(self, wb: Any, options: dict[str, Any]) -> Any:
        sheet_ref = options.get("sheet")
        if sheet_ref is None:
            return wb.active
        if isinstance(sheet_ref, int):
            return wb.worksheets[sheet_ref]
        return wb[sheet_ref]

    def _header_index(self, rows: list, options: dict[str, Any]) -> int:
        if options.get("auto_detect_header", True):
            return _detect_header_row(rows)
        return int(options.get("header_row") or 0)

    def _rows(self, source_path: Path, options: dict[str, Any], limit: int) -> Iterator[dict]:
        wb = openpyxl.load_workbook(source_path, read_only=True, data_only=True)
        try:
            sheet = self._get_sheet(wb, options)
            skip_rows = int(options.get("skip_rows", 0))
            rows = list(sheet.iter_rows(min_row=1 + skip_rows, max_row=limit))
            if not rows:
                return
            hi = self._header_index(rows, options)
            headers = _headers(rows[hi])
            for row in rows[hi + 1:]:
                values = [_cell_value(row, c) for c in range(len(headers))]
                if all(v == "" for v in values):
                    continue
                yield dict(zip(headers, values))
        finally:
            wb.close()

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        yield from self._rows(Path(source_path), options, _MAX_SCAN_ROWS)

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        return SourceProbe.from_rows(self._rows(Path(source_path), options, _PROBE_ROWS))
