"""
stipend_ingestion -- file imports feeding the stipend ledger.

Reads delimited text or Excel workbooks, maps each record onto the kernel's
row types and hands the batch to the kernel services: metrics imports go to
the remeasurement processor, historical backfills to the ledger.

Architecture:
    stipend_ingestion/ is a top-level package above the kernel.  Nothing in
    stipend_kernel/ imports from ingestion.
"""

from stipend_ingestion.mapping import (
    MappingResult,
    OpeningBalanceRow,
    map_metrics_record,
    map_opening_balance_record,
)
from stipend_ingestion.service import ImportService, OpeningBalanceImportResult, read_records

__all__ = [
    "ImportService",
    "MappingResult",
    "OpeningBalanceImportResult",
    "OpeningBalanceRow",
    "map_metrics_record",
    "map_opening_balance_record",
    "read_records",
]
