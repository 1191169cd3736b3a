"""Deterministic convergence policy.

This module contains *no* payload parsing.  The model boundary is
responsible for producing typed twin documents; these predicates only
compare values.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Final


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()
"""Marker for a field absent from one side of the twin document."""


def values_match(left: Any, right: Any) -> bool:
    """JSON-style equality: absent never matches, and ``True`` is not ``1``."""
    if left is MISSING or right is MISSING:
        return False
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return bool(left == right)


def has_converged(*, target: Any, desired: Any, reported: Any) -> bool:
    """Convergence for a pending command is keyed by its target value.

    A stale ``desired`` from a superseded command that happens to match
    ``reported`` does not settle a newer command with a different target.
    """
    return values_match(desired, target) and values_match(reported, target)


def is_in_sync(desired: Any, reported: Any) -> bool:
    return values_match(desired, reported)


def is_expired(now: datetime, issued_at: datetime, timeout: timedelta) -> bool:
    return now - issued_at > timeout
