"""
Record mapping: raw source dict -> typed kernel row.  ZERO I/O.

Column headers are matched loosely (case, spaces and punctuation ignored)
against the aliases the metrics export and the backfill template use:

    practice key      ClinicName, PracticeKey, Practice
    pay period        PayPeriod, CurrentPayPeriod_Number, PP
    year              Year, PayPeriodYear
    stipend cap       StipendCap, StipendCapAvgFinal
    NE cap            NegativeEarningsCap
    NE utilized       NegativeEarningsUtilized
    amount            Amount, PaidAmount

A missing period or year falls back to the caller's default (the current
pay period for metrics imports).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from stipend_kernel.db.types import money_from_str
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import MetricsRow

PRACTICE_KEY_ALIASES = ("clinicname", "practicekey", "practice")
PAY_PERIOD_ALIASES = ("payperiod", "currentpayperiodnumber", "pp")
YEAR_ALIASES = ("year", "payperiodyear")
STIPEND_CAP_ALIASES = ("stipendcap", "stipendcapavgfinal")
NE_CAP_ALIASES = ("negativeearningscap",)
NE_UTILIZED_ALIASES = ("negativeearningsutilized",)
AMOUNT_ALIASES = ("amount", "paidamount")

_BLANKS = frozenset({"", "null", "none", "n/a", "na"})


@dataclass(frozen=True)
class OpeningBalanceRow:
    """One historical consumption row for the backfill import."""

    practice_key: str
    pay_period: int
    year: int
    amount: Decimal
    row_index: int | None = None


@dataclass(frozen=True)
class MappingResult:
    """Result of mapping one raw record."""

    success: bool
    row: Any = None
    error: str | None = None


def normalize_header(name: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name or "").lower())


def _lookup(record: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    normalized = {normalize_header(k): v for k, v in record.items()}
    for alias in aliases:
        if alias in normalized:
            value = normalized[alias]
            if isinstance(value, str):
                value = value.strip()
            return value
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.lower() in _BLANKS)


def _parse_int(value: Any, label: str) -> int:
    text = str(value).strip().upper()
    if text.startswith("PP"):
        text = text[2:]
    try:
        number = Decimal(text)
    except ArithmeticError:
        raise ValueError(f"{label} is not a number: {value!r}") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"{label} is not a whole number: {value!r}")
    return int(number)


def _parse_money(value: Any, label: str) -> Decimal | None:
    if _is_blank(value):
        return None
    try:
        return money_from_str(value)
    except ValueError:
        raise ValueError(f"{label} is not a monetary amount: {value!r}") from None


def _period(record: Mapping[str, Any], default: PeriodKey | None) -> PeriodKey:
    raw_period = _lookup(record, PAY_PERIOD_ALIASES)
    raw_year = _lookup(record, YEAR_ALIASES)
    if _is_blank(raw_period) and default is None:
        raise ValueError("missing pay period")
    if _is_blank(raw_year) and default is None:
        raise ValueError("missing year")
    number = default.number if _is_blank(raw_period) else _parse_int(raw_period, "pay period")
    year = default.year if _is_blank(raw_year) else _parse_int(raw_year, "year")
    return PeriodKey(year, number)


def map_metrics_record(
    record: Mapping[str, Any], row_index: int, default: PeriodKey
) -> MappingResult:
    """Map one metrics export record onto a MetricsRow."""
    key = _lookup(record, PRACTICE_KEY_ALIASES)
    if _is_blank(key):
        return MappingResult(success=False, error="missing ClinicName")
    try:
        period = _period(record, default)
        row = MetricsRow(
            practice_key=str(key),
            pay_period=period.number,
            year=period.year,
            stipend_cap=_parse_money(_lookup(record, STIPEND_CAP_ALIASES), "stipend cap"),
            negative_earnings_cap=_parse_money(
                _lookup(record, NE_CAP_ALIASES), "negative earnings cap"
            ),
            negative_earnings_utilized=_parse_money(
                _lookup(record, NE_UTILIZED_ALIASES), "negative earnings utilized"
            ),
            row_index=row_index,
        )
    except ValueError as exc:
        return MappingResult(success=False, error=str(exc))
    return MappingResult(success=True, row=row)


def map_opening_balance_record(record: Mapping[str, Any], row_index: int) -> MappingResult:
    """Map one backfill record; period, year and amount are all required."""
    key = _lookup(record, PRACTICE_KEY_ALIASES)
    if _is_blank(key):
        return MappingResult(success=False, error="missing practice key")
    try:
        period = _period(record, None)
        amount = _parse_money(_lookup(record, AMOUNT_ALIASES), "amount")
    except ValueError as exc:
        return MappingResult(success=False, error=str(exc))
    if amount is None:
        return MappingResult(success=False, error="missing amount")
    if amount <= 0:
        return MappingResult(success=False, error="amount must be greater than zero")
    return MappingResult(
        success=True,
        row=OpeningBalanceRow(
            practice_key=str(key),
            pay_period=period.number,
            year=period.year,
            amount=amount,
            row_index=row_index,
        ),
    )
