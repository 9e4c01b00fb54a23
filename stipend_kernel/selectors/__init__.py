"""Read-only selectors: every balance and projection is derived from the ledger."""

from stipend_kernel.selectors.allocation_selector import AllocationSelector
from stipend_kernel.selectors.balance_selector import BalanceSelector
from stipend_kernel.selectors.export_selector import ExportSelector
from stipend_kernel.selectors.ledger_selector import LedgerSelector
from stipend_kernel.selectors.request_selector import StipendRequestSelector

__all__ = [
    "AllocationSelector",
    "BalanceSelector",
    "ExportSelector",
    "LedgerSelector",
    "StipendRequestSelector",
]
