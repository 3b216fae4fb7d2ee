"""Lenient numeric and timestamp parsing shared by the valuation and rebalancing core."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Optional, Union

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

NumericInput = Union[Decimal, int, float, str, None]

# beyond this a float would be infinite, so the value is treated as unparseable
MAX_DECIMAL_EXPONENT = 308

_NUMERIC_PREFIX = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")


def _finite(value: Decimal) -> Optional[Decimal]:
    if not value.is_finite() or value.adjusted() > MAX_DECIMAL_EXPONENT:
        return None
    return value


def _coerce(raw: NumericInput) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return _finite(raw)
    if isinstance(raw, int):
        return _finite(Decimal(raw))
    if isinstance(raw, float):
        return _finite(Decimal(str(raw)))
    match = _NUMERIC_PREFIX.match(str(raw))
    if match is None:
        return None
    try:
        value = Decimal(match.group(1))
    except (ArithmeticError, ValueError, InvalidOperation):
        return None
    return _finite(value)


def parse_decimal(raw: NumericInput) -> Decimal:
    """Parse ledger numerics, degrading anything unparseable to zero.

    Numeric prefixes are honoured (``"12abc"`` is 12); blanks, ``None``,
    NaN and infinities all become ``Decimal("0")``.
    """

    value = _coerce(raw)
    return value if value is not None else ZERO


def parse_with_default(
    raw: NumericInput,
    default: Decimal,
    *,
    minimum: Optional[Decimal] = None,
    maximum: Optional[Decimal] = None,
) -> Decimal:
    """Parse a setting value, falling back to ``default`` and clamping into range."""

    value = _coerce(raw)
    if value is None:
        value = default
    if minimum is not None and value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


def _quantize(value: Decimal, exponent: Decimal) -> Decimal:
    # quantize fails once the result needs more digits than the context precision
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() - exponent.as_tuple().exponent + 2)
        return value.quantize(exponent, rounding=ROUND_HALF_UP)


def round2(value: Decimal) -> Decimal:
    return _quantize(value, CENT)


def round_int(value: Decimal) -> int:
    return int(_quantize(value, ONE))


def safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator


def normalize_symbol(symbol: Optional[str]) -> str:
    return (symbol or "").strip().upper()


def normalize_coingecko_id(value: Optional[str]) -> Optional[str]:
    normalized = (value or "").strip().lower()
    return normalized or None


def as_float(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """ISO-8601 text to an aware datetime; naive values are taken as UTC."""

    text = (raw or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "ZERO",
    "HUNDRED",
    "NumericInput",
    "parse_decimal",
    "parse_with_default",
    "round2",
    "round_int",
    "safe_div",
    "normalize_symbol",
    "normalize_coingecko_id",
    "as_float",
    "parse_timestamp",
]
