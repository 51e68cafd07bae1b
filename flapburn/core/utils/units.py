from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from flapburn.core.constants.base import MANTISSA


def _to_decimal(value: str | int | float | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    return Decimal(str(value).strip())


def parse_token_amount(text: str | None, decimals: int = 18) -> int:
    """Parse a user-entered amount; malformed or negative input reads as 0."""
    if text is None or not str(text).strip():
        return 0
    try:
        amt = _to_decimal(text)
    except InvalidOperation:
        return 0
    if not amt.is_finite() or amt < 0:
        return 0
    scale = Decimal(10) ** int(decimals)
    return int((amt * scale).to_integral_value(rounding=ROUND_DOWN))


def parse_wei_string(value: Any) -> int:
    """Decode a decimal-string integer from an external service.

    Total: never raises. Missing, malformed, fractional or negative values all
    decode to 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value >= 0 else 0
    text = str(value).strip()
    if not text or not text.isascii() or not text.isdigit():
        return 0
    return int(text)


def format_native(value: int | None, digits: int = 4) -> str:
    """Render a wei amount as a trimmed decimal string (``"0.0123"``).

    Values below 0.01 get 6 decimals so small balances stay visible.
    """
    if value is None or int(value) == 0:
        return "0"
    amount = Decimal(int(value)) / Decimal(MANTISSA)
    actual_digits = digits
    if 0 < abs(amount) < Decimal("0.01"):
        actual_digits = 6
    quantum = Decimal(1).scaleb(-actual_digits)
    fixed = format(amount.quantize(quantum, rounding=ROUND_DOWN), "f")
    if "." in fixed:
        fixed = fixed.rstrip("0").rstrip(".")
    return fixed or "0"


def format_whole_tokens(value: int, decimals: int = 18) -> str:
    return str(int(value) // 10 ** int(decimals))
