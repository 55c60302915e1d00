"""
Coercion helpers for untrusted client payloads.

Admin consoles send loosely typed JSON; these helpers turn individual fields
into plain Python values without ever raising.
"""

import math
from typing import Any, Optional


def as_text(value: Any) -> str:
    """Return strings and integers as text, anything else as an empty string."""
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return ""


def as_entity_id(value: Any) -> Optional[str]:
    """Return a non-empty catalog id, or None."""
    text = as_text(value)
    return text or None


def as_finite_float(value: Any) -> Optional[float]:
    """Parse numbers and numeric strings; None when missing, malformed or not finite."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip() or 0.0
    elif not isinstance(value, (bool, int, float)):
        return None

    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None

    if not math.isfinite(number):
        return None
    return number
