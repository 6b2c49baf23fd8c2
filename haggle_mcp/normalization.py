"""Numeric and text normalization shared by the extractors and the price engines."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_CENT = Decimal("0.01")


def clean_numeric_string(raw: str) -> str:
    """Keep only digits, ``'.'``, and ``'-'``: ``"$52,995.00"`` -> ``"52995.00"``."""
    return "".join(c for c in raw if c.isdigit() or c in {".", "-"})


def parse_price(value: Any) -> float | None:
    """Best-effort price from a number or a formatted string; ``None`` when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = clean_numeric_string(value.strip())
    try:
        return float(cleaned) if cleaned else None
    except ValueError:
        return None


def round_currency(value: float | int | None) -> float | None:
    """Round to cents, half away from zero, so 0.125 becomes 0.13 rather than 0.12."""
    if value is None:
        return None
    try:
        return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return None


def capitalize_first(value: str) -> str:
    """Upper-case the first character only: ``"tundra"`` -> ``"Tundra"``."""
    if not value:
        return value
    return value[0].upper() + value[1:]
