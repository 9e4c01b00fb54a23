"""ORM models for the stipend kernel."""

from stipend_kernel.models.allocation import (
    Allocation,
    AllocationKind,
    AllocationLine,
    AllocationSide,
    AllocationStatus,
)
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.models.metrics import NegativeEarningsCapRequest, PracticeMetrics
from stipend_kernel.models.pay_period import PayPeriod, PayPeriodRegistry
from stipend_kernel.models.practice import Portfolio, Practice, PracticeReassignment
from stipend_kernel.models.sequence import SequenceCounter
from stipend_kernel.models.stipend_request import StipendRequest

__all__ = [
    "Allocation",
    "AllocationKind",
    "AllocationLine",
    "AllocationSide",
    "AllocationStatus",
    "LedgerEntry",
    "NegativeEarningsCapRequest",
    "PayPeriod",
    "PayPeriodRegistry",
    "Portfolio",
    "Practice",
    "PracticeMetrics",
    "PracticeReassignment",
    "SequenceCounter",
    "StipendRequest",
]
