"""
core/values.py - Numeric coercion helpers.

Entity records arrive from user input and backend JSON, so numbers may be
strings with thousands separators, booleans, or missing entirely.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


def _parse_numeric_string(value: str) -> Optional[float]:
    text = value.replace(",", "").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def confirm_number(value: Any, default: float = 0) -> float:
    """
    Coerce a value to a finite number.

    Args:
        value: Raw value (number, numeric string, boolean, None, ...)
        default: Returned when the value has no numeric reading

    Returns:
        The numeric value, 1/0 for booleans, or default
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return 1
        if lowered == "false":
            return 0
        number = _parse_numeric_string(value)
        return default if number is None else number
    return default


def is_number(value: Any) -> bool:
    """True when the value is a finite number or a numeric string."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        return _parse_numeric_string(value) is not None
    return False


def round_to(value: float, places: int = 0) -> float:
    """Round half away from zero, avoiding binary float artifacts."""
    try:
        quantized = Decimal(str(value)).quantize(
            Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP
        )
    except InvalidOperation:
        return value
    return float(quantized)
