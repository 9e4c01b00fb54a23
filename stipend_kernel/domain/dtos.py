"""
Data transfer objects returned by kernel services and selectors.

Frozen dataclasses; ORM rows never leave the service boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from stipend_kernel.domain.calendar import PeriodKey


@dataclass(frozen=True)
class PortfolioDTO:
    id: UUID
    code: str
    name: str
    is_active: bool


@dataclass(frozen=True)
class PracticeDTO:
    id: UUID
    key: str
    name: str
    portfolio_id: UUID
    is_active: bool


@dataclass(frozen=True)
class PracticeReassignmentDTO:
    id: UUID
    practice_id: UUID
    from_portfolio_id: UUID
    to_portfolio_id: UUID
    effective_period: int
    effective_year: int
    reassigned_by_id: UUID
    reassigned_at: datetime


@dataclass(frozen=True)
class PayPeriodDTO:
    id: UUID
    year: int
    number: int
    start_date: date
    end_date: date
    is_current: bool
    remeasurement_completed: bool

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(self.year, self.number)


@dataclass(frozen=True)
class ApprovalStamp:
    """Who passed a gate, when, and with what comment."""

    approver_id: UUID
    approved_at: datetime
    comment: str | None = None


@dataclass(frozen=True)
class StipendRequestDTO:
    id: UUID
    practice_id: UUID
    requestor_id: UUID
    amount: Decimal
    request_type: str
    category: str
    description: str
    justification: str
    effective_period: int
    effective_year: int
    end_period: int | None
    end_year: int | None
    status: str
    staff_emails: str | None = None
    psm_approval: ApprovalStamp | None = None
    lead_psm_approval: ApprovalStamp | None = None
    finance_approval: ApprovalStamp | None = None
    rejected_by_id: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def start_key(self) -> PeriodKey:
        return PeriodKey(self.effective_year, self.effective_period)

    @property
    def end_key(self) -> PeriodKey:
        if self.end_period is None or self.end_year is None:
            return self.start_key
        return PeriodKey(self.end_year, self.end_period)


@dataclass(frozen=True)
class PeriodBreakdownRow:
    """One covered period of a request and its derived status."""

    pay_period: int
    year: int
    amount: Decimal
    status: str
    ledger_entry_id: UUID | None = None


@dataclass(frozen=True)
class AllocationLineDTO:
    side: str
    amount: Decimal
    practice_id: UUID | None = None
    portfolio_id: UUID | None = None


@dataclass(frozen=True)
class AllocationDTO:
    id: UUID
    kind: str
    status: str
    donor_actor_id: UUID
    total_amount: Decimal
    pay_period: int
    year: int
    recipient_portfolio_id: UUID | None = None
    source_portfolio_id: UUID | None = None
    comment: str | None = None
    completed_at: datetime | None = None
    lines: tuple[AllocationLineDTO, ...] = field(default_factory=tuple)

    @property
    def donors(self) -> tuple[AllocationLineDTO, ...]:
        return tuple(line for line in self.lines if line.side == "donor")

    @property
    def recipients(self) -> tuple[AllocationLineDTO, ...]:
        return tuple(line for line in self.lines if line.side == "recipient")


@dataclass(frozen=True)
class PracticeMetricsDTO:
    id: UUID
    practice_key: str
    practice_id: UUID | None
    pay_period: int
    year: int
    stipend_cap: Decimal | None
    negative_earnings_cap: Decimal | None
    negative_earnings_utilized: Decimal | None


@dataclass(frozen=True)
class NegativeEarningsRequestDTO:
    id: UUID
    practice_id: UUID
    requestor_id: UUID
    pay_period: int
    year: int
    requested_amount: Decimal
    approved_amount: Decimal | None
    justification: str
    status: str
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NegativeEarningsSummaryRow:
    practice_id: UUID
    practice_key: str
    practice_name: str
    portfolio_id: UUID
    negative_earnings_cap: Decimal
    utilized: Decimal
    available: Decimal


@dataclass(frozen=True)
class PortfolioSummary:
    portfolio_id: UUID
    code: str
    name: str
    practice_count: int
    total_cap: Decimal
    stipend_paid: Decimal
    stipend_committed: Decimal
    available_balance: Decimal
    available_per_pp: Decimal
    utilization_percent: Decimal
    suspense_balance: Decimal


@dataclass(frozen=True)
class MetricsRow:
    """One imported metrics row, already typed.  ``row_index`` is 1-based."""

    practice_key: str
    pay_period: int
    year: int
    stipend_cap: Decimal | None
    negative_earnings_cap: Decimal | None = None
    negative_earnings_utilized: Decimal | None = None
    row_index: int | None = None


@dataclass(frozen=True)
class RowFailure:
    row_index: int | None
    practice_key: str
    reason: str


@dataclass(frozen=True)
class RemeasurementResult:
    imported: int
    opening_balances: int
    remeasurements: int
    practices_not_in_registry: tuple[str, ...] = ()
    disappeared_practices: tuple[str, ...] = ()
    skipped_null_cap: int = 0
    failures: tuple[RowFailure, ...] = ()

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "opening_balances": self.opening_balances,
            "remeasurements": self.remeasurements,
            "practices_not_in_registry": list(self.practices_not_in_registry),
            "disappeared_practices": list(self.disappeared_practices),
            "skipped_null_cap": self.skipped_null_cap,
            "failures": [
                {"row": f.row_index, "practice_key": f.practice_key, "reason": f.reason}
                for f in self.failures
            ],
        }


@dataclass(frozen=True)
class AllocationLeg:
    """A (practice, amount) pair handed to the allocation engine."""

    practice_id: UUID
    amount: Decimal
