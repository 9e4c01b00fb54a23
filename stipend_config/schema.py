"""
Configuration schema (``stipend_config.schema``).

Frozen dataclasses; every field has a validated value after
``__post_init__``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class CalendarConfig:
    year_anchors: dict[int, date]
    period_length_days: int = 14
    periods_per_year: int = 26
    min_year: int = 2025

    def __post_init__(self) -> None:
        if self.period_length_days < 1:
            raise ValueError("period_length_days must be positive")
        if self.periods_per_year < 1:
            raise ValueError("periods_per_year must be positive")
        if not self.year_anchors:
            raise ValueError("calendar.year_anchors must name at least one year")


@dataclass(frozen=True)
class MoneyConfig:
    tolerance: Decimal = Decimal("0.01")
    decimal_places: int = 2

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError("money.tolerance cannot be negative")


@dataclass(frozen=True)
class ValidationConfig:
    justification_min_length: int = 10
    description_min_length: int = 5
    staff_emails_min_length: int = 5
    approval_comment_min_length: int = 5
    practice_name_min_length: int = 3
    portfolio_code_pattern: str = r"^G[1-5]$"

    def __post_init__(self) -> None:
        re.compile(self.portfolio_code_pattern)


@dataclass(frozen=True)
class WorkflowConfig:
    deletable_statuses: frozenset[str] = frozenset({"pending_psm", "pending_lead_psm"})


@dataclass(frozen=True)
class StipendConfig:
    """Root configuration object handed to every service."""

    calendar: CalendarConfig
    money: MoneyConfig = field(default_factory=MoneyConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    source: str = "<defaults>"
