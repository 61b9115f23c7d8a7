"""
Decimal helpers shared by the tax engine, aggregator, diff engine and
payload builder. Money never goes through float.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Optional

from . import recon_config as cfg

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal(cfg.AMOUNT_PLACES)
QUANTITY_QUANTUM = Decimal(cfg.QUANTITY_PLACES)
MAX_MAGNITUDE = Decimal(cfg.MAX_MAGNITUDE)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a user or API value into a finite Decimal.

    Accepts numbers and strings (commas, rupee sign and surrounding
    whitespace are ignored). Returns None for blanks, anything that does
    not parse, and magnitudes of MAX_MAGNITUDE or more.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
    else:
        cleaned = str(value).replace(",", "").replace("₹", "").strip()
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite() or abs(result) >= MAX_MAGNITUDE:
        return None
    return result


def safe_decimal(value: Any) -> Decimal:
    """Convert a value to Decimal, returning 0 on failure."""
    parsed = parse_decimal(value)
    return ZERO if parsed is None else parsed


def quantize(value: Decimal, quantum: Decimal) -> Decimal:
    """Round to ``quantum`` with enough precision for any finite value."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() - quantum.adjusted() + 2)
        return value.quantize(quantum, rounding=cfg.ROUNDING_MODE)


def round_amount(value: Decimal) -> Decimal:
    return quantize(value, AMOUNT_QUANTUM)


def format_amount(value: Decimal) -> str:
    """Fixed 2-decimal string, e.g. Decimal('18') -> '18.00'."""
    return f"{round_amount(value):.2f}"


def format_quantity(value: Decimal) -> str:
    """Fixed 4-decimal string used on the wire for quantity and rate."""
    return f"{quantize(value, QUANTITY_QUANTUM):.4f}"


def tidy_number(value: Any) -> str:
    """Display form without trailing zeros: '2.0000' -> '2', '2.50' -> '2.5'.

    Values that do not parse are returned trimmed and unchanged.
    """
    parsed = parse_decimal(value)
    if parsed is None:
        return "" if value is None else str(value).strip()
    if parsed == parsed.to_integral_value():
        return str(quantize(parsed, Decimal("1")))
    return format(parsed.normalize(), "f")
