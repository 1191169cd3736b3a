"""Normalization helpers.

Centralizes lenient parsing of service values.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def millis_to_seconds(value: int | float) -> int:
    """Convert an epoch timestamp in milliseconds to whole seconds (floor)."""
    return int(value // 1000)
