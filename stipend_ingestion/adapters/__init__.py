"""Source adapters for metrics and backfill imports (file I/O only, no DB)."""

from stipend_ingestion.adapters.base import SourceAdapter, SourceProbe, is_workbook
from stipend_ingestion.adapters.csv_adapter import CsvSourceAdapter
from stipend_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter

__all__ = [
    "SourceAdapter",
    "SourceProbe",
    "is_workbook",
    "CsvSourceAdapter",
    "XlsxSourceAdapter",
]
