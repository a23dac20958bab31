"""
Numeric helpers shared by the evidence, aggregation and batch paths.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

MUST_HAVE_WEIGHT = 1.5
DEFAULT_WEIGHT = 1.0


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def clamp_confidence(value: Any) -> int:
    """Coerce anything into an integer confidence in [0, 100]; NaN and junk become 0."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(num) or num < 0:
        return 0
    if num > 100:
        return 100
    return round_half_up(num)


def weighted_fit(entries: Iterable[tuple[float, bool]]) -> int:
    """
    Weighted mean of (confidence, must_have) pairs.

    Must-have entries weigh 1.5, everything else 1.0; an empty input is 0.
    """
    total = 0.0
    weight = 0.0
    for confidence, must_have in entries:
        w = MUST_HAVE_WEIGHT if must_have else DEFAULT_WEIGHT
        total += clamp_confidence(confidence) * w
        weight += w
    if not weight:
        return 0
    return clamp_confidence(total / weight)
