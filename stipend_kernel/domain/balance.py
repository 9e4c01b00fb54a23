"""
Balance math (``stipend_kernel.domain.balance``).

Responsibility
--------------
The one place balances are computed.  ``compute_balance`` replays a
practice's ledger entries for a single fiscal year and derives cap, paid,
committed, allocation totals, available balance, available per remaining
period and utilization.  ``derive_period_status`` classifies the entries
of one (request, period) pair.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  Selectors load the
entries; this module never touches the database.

Invariants enforced
-------------------
* Determinism: the result depends only on the entries passed in, their
  year and the as-of period.  Calling twice on the same snapshot returns
  equal results.
* Year scoping: entries from other years are ignored.
* The cap is the running total of opening balance and remeasurement
  entries up to and including the as-of period.  Paid, committed and
  allocation buckets take every entry of the year.
* A ``cancelled`` entry counts against the bucket of the entry it reverses.

Formulas
--------
    available       = cap - paid - committed + allocated_in - allocated_out
    available_per_pp = available / remaining_periods
    utilization     = (paid + committed) / cap * 100   (0 when cap == 0)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from stipend_kernel.db.types import ZERO, round_money
from stipend_kernel.domain.ledger import (
    CAP_TRANSACTION_TYPES,
    LedgerEntryDTO,
    TransactionType,
)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Derived balance figures for one owner, year and as-of period."""

    year: int
    as_of_period: int
    stipend_cap: Decimal
    stipend_paid: Decimal
    stipend_committed: Decimal
    allocated_in: Decimal
    allocated_out: Decimal
    available_balance: Decimal
    available_per_pp: Decimal
    utilization_percent: Decimal
    remaining_periods: int

    @property
    def utilized(self) -> Decimal:
        return self.stipend_paid + self.stipend_committed


def _effective_type(
    entry: LedgerEntryDTO, by_id: dict[UUID, LedgerEntryDTO]
) -> TransactionType:
    """Bucket a cancellation with the entry it reverses."""
    if entry.transaction_type != TransactionType.CANCELLED:
        return entry.transaction_type
    original = by_id.get(entry.reverses_entry_id) if entry.reverses_entry_id else None
    if original is None:
        return TransactionType.COMMITTED
    return _effective_type(original, by_id)


def running_cap(
    entries: Iterable[LedgerEntryDTO], year: int, through_period: int
) -> Decimal | None:
    """
    Running cap for ``year`` through ``through_period``.

    Returns None when the year has no cap entries yet (first sighting).
    """
    total = ZERO
    seen = False
    for entry in entries:
        if (
            entry.year == year
            and entry.pay_period <= through_period
            and entry.transaction_type in CAP_TRANSACTION_TYPES
        ):
            total += entry.amount
            seen = True
    return total if seen else None


def compute_balance(
    entries: Iterable[LedgerEntryDTO],
    year: int,
    as_of_period: int,
    periods_per_year: int = 26,
) -> BalanceSnapshot:
    """Replay ledger entries into a BalanceSnapshot."""
    year_entries = [e for e in entries if e.year == year]
    by_id = {e.id: e for e in year_entries}

    cap = paid_net = committed_net = alloc_in = alloc_out = ZERO
    for entry in year_entries:
        kind = _effective_type(entry, by_id)
        if kind in CAP_TRANSACTION_TYPES:
            if entry.pay_period <= as_of_period:
                cap += entry.amount
        elif kind == TransactionType.PAID:
            paid_net += entry.amount
        elif kind == TransactionType.COMMITTED:
            committed_net += entry.amount
        elif kind == TransactionType.ALLOCATION_IN:
            alloc_in += entry.amount
        elif kind == TransactionType.ALLOCATION_OUT:
            alloc_out += entry.amount

    # Consumption entries are debits; report them as magnitudes.
    paid = -paid_net
    committed = -committed_net
    allocated_out = -alloc_out

    available = cap - paid - committed + alloc_in - allocated_out
    remaining = max(periods_per_year - as_of_period + 1, 1)
    per_pp = round_money(available / remaining)
    if cap == ZERO:
        utilization = ZERO
    else:
        utilization = round_money((paid + committed) / cap * 100)

    return BalanceSnapshot(
        year=year,
        as_of_period=as_of_period,
        stipend_cap=cap,
        stipend_paid=paid,
        stipend_committed=committed,
        allocated_in=alloc_in,
        allocated_out=allocated_out,
        available_balance=available,
        available_per_pp=per_pp,
        utilization_percent=utilization,
        remaining_periods=remaining,
    )


def ledger_total(entries: Iterable[LedgerEntryDTO], year: int | None = None) -> Decimal:
    """Signed sum of entries, optionally for one year (suspense balances)."""
    return sum(
        (e.amount for e in entries if year is None or e.year == year),
        ZERO,
    )


class PeriodStatus(str, Enum):
    """Derived status of one period of an approved request."""

    PENDING = "pending"
    COMMITTED = "committed"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PeriodState:
    """Classification of one (request, period) plus the entry carrying it."""

    status: PeriodStatus
    live_entry_id: UUID | None
    amount: Decimal


def derive_period_status(entries: Iterable[LedgerEntryDTO]) -> PeriodState:
    """
    Classify the ledger entries of one request for one period.

    cancelled  -- any cancellation exists
    paid       -- the latest paid entry is a live debit
    committed  -- net commitment is a debit
    pending    -- nothing materialized
    """
    ordered = sorted(entries, key=lambda e: e.seq)
    if any(e.transaction_type == TransactionType.CANCELLED for e in ordered):
        cancelled = [e for e in ordered if e.transaction_type == TransactionType.CANCELLED]
        return PeriodState(PeriodStatus.CANCELLED, None, cancelled[-1].amount)

    paid = [e for e in ordered if e.transaction_type == TransactionType.PAID]
    if paid and sum((e.amount for e in paid), ZERO) < ZERO:
        return PeriodState(PeriodStatus.PAID, paid[-1].id, -paid[-1].amount)

    committed = [e for e in ordered if e.transaction_type == TransactionType.COMMITTED]
    net = sum((e.amount for e in committed), ZERO)
    if net < ZERO:
        debits = [e for e in committed if e.amount < ZERO]
        return PeriodState(PeriodStatus.COMMITTED, debits[-1].id, -net)

    return PeriodState(PeriodStatus.PENDING, None, ZERO)
