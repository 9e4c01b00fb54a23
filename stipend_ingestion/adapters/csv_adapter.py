"""
CSV source adapter.

Uses csv.DictReader. Configurable: delimiter, encoding, has_header, quoting,
skip_rows. Handles BOM via utf-8-sig when encoding is utf-8. Streams rows.

Metrics exports usually arrive as pasted text rather than a file, so
``read_text`` parses an in-memory string with the same options.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Iterable, Iterator, TextIO

from stipend_ingestion.adapters.base import SourceProbe

_QUOTING = {
    "minimal": csv.QUOTE_MINIMAL,
    "all": csv.QUOTE_ALL,
    "nonnumeric": csv.QUOTE_NONNUMERIC,
    "none": csv.QUOTE_NONE,
}


def _get_encoding(options: dict[str, Any]) -> str:
    enc = options.get("encoding", "utf-8")
    if enc.lower() == "utf-8":
        return "utf-8-sig"  # Strip BOM if present
    return enc


def _get_quoting(options: dict[str, Any]) -> int:
    q = options.get("quoting", "minimal")
    if isinstance(q, int):
        return q
    return _QUOTING.get(str(q).lower(), csv.QUOTE_MINIMAL)


def _non_blank(lines: Iterable[str]) -> Iterator[str]:
    """Drop whitespace-only lines (trailing newlines in pasted exports)."""
    for line in lines:
        if line.strip():
            yield line


def _records(handle: TextIO, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
    delimiter = options.get("delimiter", ",")
    has_header = options.get("has_header", True)
    skip_rows = int(options.get("skip_rows", 0))
    quoting = _get_quoting(options)

    for _ in range(skip_rows):
        next(handle, None)
    lines = _non_blank(handle)
    if has_header:
        reader = csv.DictReader(lines, delimiter=delimiter, quoting=quoting)
        for row in reader:
            # Short rows come back with None values; long rows under a None key
            yield {k: v for k, v in row.items() if k is not None}
        return

    columns = options.get("columns")
    reader = csv.reader(lines, delimiter=delimiter, quoting=quoting)
    for row in reader:
        if columns is None:
            columns = [f"field_{i}" for i in range(len(row))]
        yield dict(zip(columns, row))


def _probe(handle: TextIO, options: dict[str, Any], encoding: str | None) -> SourceProbe:
    return SourceProbe.from_rows(
        _records(handle, options),
        encoding=encoding,
        detected_delimiter=options.get("delimiter", ","),
    )


class CsvSourceAdapter:
    """Read CSV files or text as one dict per row. Streams; does not load entire file."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        with Path(source_path).open("r", encoding=_get_encoding(options), newline="") as f:
            yield from _records(f, options)

    def read_text(self, text: str, options: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Parse delimited text already in memory (BOM stripped)."""
        yield from _records(io.StringIO(text.lstrip("\ufeff"), newline=""), options or {})

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        encoding = _get_encoding(options)
        with Path(source_path).open("r", encoding=encoding, newline="") as f:
            return _probe(f, options, encoding)
