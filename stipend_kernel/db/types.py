"""
Module: stipend_kernel.db.types
Responsibility: Money helpers every layer shares: parsing and rounding.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Amounts are Decimal end to end.
    - round_money() is the only rounding function for monetary values.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def money_from_str(value: Any) -> Decimal:
    """
    Parse a monetary amount from user or file input.

    Accepts Decimal, int, or a string optionally carrying a leading ``$`` and
    thousands separators.  Floats are converted through ``str`` so the
    decimal digits the caller sees are the digits stored.

    Raises:
        ValueError: If value is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "").replace("$", "")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to ``decimal_places`` (half-up by default)."""
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
