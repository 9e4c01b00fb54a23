"""
Configuration loader (``stipend_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into the frozen ``StipendConfig``
dataclasses.  Missing sections fall back to dataclass defaults; present
but invalid values raise ``ValueError``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ValueError``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from stipend_config.schema import (
    CalendarConfig,
    MoneyConfig,
    StipendConfig,
    ValidationConfig,
    WorkflowConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot parse decimal from {value!r}") from None


def parse_calendar(data: dict[str, Any]) -> CalendarConfig:
    anchors = {int(year): parse_date(d) for year, d in (data.get("year_anchors") or {}).items()}
    return CalendarConfig(
        year_anchors=anchors,
        period_length_days=int(data.get("period_length_days", 14)),
        periods_per_year=int(data.get("periods_per_year", 26)),
        min_year=int(data.get("min_year", 2025)),
    )


def parse_money(data: dict[str, Any]) -> MoneyConfig:
    return MoneyConfig(
        tolerance=parse_decimal(data.get("tolerance", "0.01")),
        decimal_places=int(data.get("decimal_places", 2)),
    )


def parse_validation(data: dict[str, Any]) -> ValidationConfig:
    defaults = ValidationConfig()
    return ValidationConfig(
        justification_min_length=int(
            data.get("justification_min_length", defaults.justification_min_length)
        ),
        description_min_length=int(
            data.get("description_min_length", defaults.description_min_length)
        ),
        staff_emails_min_length=int(
            data.get("staff_emails_min_length", defaults.staff_emails_min_length)
        ),
        approval_comment_min_length=int(
            data.get("approval_comment_min_length", defaults.approval_comment_min_length)
        ),
        practice_name_min_length=int(
            data.get("practice_name_min_length", defaults.practice_name_min_length)
        ),
        portfolio_code_pattern=str(
            data.get("portfolio_code_pattern", defaults.portfolio_code_pattern)
        ),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowConfig:
    statuses = data.get("deletable_statuses")
    if statuses is None:
        return WorkflowConfig()
    return WorkflowConfig(deletable_statuses=frozenset(str(s) for s in statuses))


def parse_config(data: dict[str, Any], source: str = "<dict>") -> StipendConfig:
    """Build a StipendConfig from an already-parsed YAML mapping."""
    if "calendar" not in data:
        raise ValueError(f"{source}: missing required section 'calendar'")
    return StipendConfig(
        calendar=parse_calendar(data["calendar"] or {}),
        money=parse_money(data.get("money") or {}),
        validation=parse_validation(data.get("validation") or {}),
        workflow=parse_workflow(data.get("workflow") or {}),
        source=source,
    )


def load_config(path: Path) -> StipendConfig:
    return parse_config(load_yaml_file(path), source=str(path))
