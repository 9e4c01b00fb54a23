"""
Ledger value objects (``stipend_kernel.domain.ledger``).

Responsibility
--------------
Transaction types, ledger ownership (practice or portfolio suspense) and
the immutable DTO the balance math replays.

Sign convention
---------------
Positive amounts increase the owner's balance (credits), negative amounts
decrease it (debits):

    opening_balance          +cap on first sighting
    remeasurement_increase   +delta
    remeasurement_decrease   -delta
    committed                -amount on final approval; +amount when a
                             commitment is released into ``paid``
    paid                     -amount
    cancelled                opposite sign of the entry it reverses
    allocation_in            +amount
    allocation_out           -amount
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class TransactionType(str, Enum):
    OPENING_BALANCE = "opening_balance"
    REMEASUREMENT_INCREASE = "remeasurement_increase"
    REMEASUREMENT_DECREASE = "remeasurement_decrease"
    COMMITTED = "committed"
    PAID = "paid"
    CANCELLED = "cancelled"
    ALLOCATION_IN = "allocation_in"
    ALLOCATION_OUT = "allocation_out"


CAP_TRANSACTION_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.OPENING_BALANCE,
    TransactionType.REMEASUREMENT_INCREASE,
    TransactionType.REMEASUREMENT_DECREASE,
})


class OwnerKind(str, Enum):
    PRACTICE = "practice"
    PORTFOLIO = "portfolio"


@dataclass(frozen=True)
class LedgerOwner:
    """Who a ledger entry belongs to: a practice, or a portfolio's suspense account."""

    kind: OwnerKind
    id: UUID

    @classmethod
    def practice(cls, practice_id: UUID) -> LedgerOwner:
        return cls(OwnerKind.PRACTICE, practice_id)

    @classmethod
    def portfolio(cls, portfolio_id: UUID) -> LedgerOwner:
        return cls(OwnerKind.PORTFOLIO, portfolio_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class LedgerEntryDTO:
    """Immutable snapshot of one ledger entry."""

    id: UUID
    seq: int
    owner: LedgerOwner
    pay_period: int
    year: int
    transaction_type: TransactionType
    amount: Decimal
    description: str
    related_request_id: UUID | None = None
    related_allocation_id: UUID | None = None
    reverses_entry_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class NewLedgerEntry:
    """What a caller hands to ``LedgerService.append``."""

    owner: LedgerOwner
    pay_period: int
    year: int
    transaction_type: TransactionType
    amount: Decimal
    description: str = ""
    related_request_id: UUID | None = None
    related_allocation_id: UUID | None = None
    reverses_entry_id: UUID | None = None
