"""
Shared shapes for the metrics-export readers.

A reader turns one export into dicts keyed by header text, one per row, and
can summarize an export without importing it.  File I/O only: nothing here
reaches the kernel or the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol, runtime_checkable

# Anything else is treated as delimited text
WORKBOOK_SUFFIXES = frozenset({".xlsx", ".xlsm"})

SAMPLE_SIZE = 5


def is_workbook(source_path: Path) -> bool:
    return Path(source_path).suffix.lower() in WORKBOOK_SUFFIXES


@dataclass(frozen=True)
class SourceProbe:
    """Row count, header and leading rows of an export."""

    row_count: int
    columns: tuple[str, ...]
    sample_rows: tuple[dict[str, Any], ...]
    encoding: str | None = None
    detected_delimiter: str | None = None

    @classmethod
    def from_rows(cls, rows: Iterable[dict[str, Any]], **details: Any) -> SourceProbe:
        """Count ``rows``, keeping the first few as the sample."""
        sample: list[dict[str, Any]] = []
        count = 0
        for row in rows:
            if len(sample) < SAMPLE_SIZE:
                sample.append(row)
            count += 1
        return cls(
            row_count=count,
            columns=tuple(sample[0]) if sample else (),
            sample_rows=tuple(sample),
            **details,
        )


@runtime_checkable
class SourceAdapter(Protocol):
    """What the import service needs from a reader."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        ...

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        ...
