"""
Verdict scales and confidence arithmetic shared by both reasoning paths.
"""

from __future__ import annotations

from typing import Iterable

from jd_coach.models.enums import EvidenceStatus, Verdict
from jd_coach.utils.scoring import clamp_confidence

# Ordered from strongly negative to strongly positive
VERDICT_STRENGTH: dict[str, int] = {
    "strongly-aligned": 4,
    "strong_yes": 4,
    "strong-yes": 4,
    "strong": 3,
    "satisfied": 3,
    "yes": 3,
    "likely": 2,
    "promising": 2,
    "possible": 1,
    "unknown": 0,
    "unclear": -1,
    "needs_more": -1,
    "concern": -2,
    "risk": -2,
    "no": -3,
    "strong_no": -4,
    "strongly-negative": -4,
}

INCREASE_RATIO = 0.6
DECREASE_RATIO = 0.7
REVERSAL_RATIO = 0.2


def normalize_verdict(value: object) -> str:
    if value is None:
        return Verdict.UNKNOWN.value
    text = str(value).strip().lower().replace(" ", "_")
    return text or Verdict.UNKNOWN.value


def verdict_strength(verdict: str | None) -> int:
    if not verdict:
        return 0
    return VERDICT_STRENGTH.get(normalize_verdict(verdict), 0)


# ── Requirement-level (evidence) path ────────────────────


def evidence_status(confidence: int) -> EvidenceStatus:
    if confidence >= 70:
        return EvidenceStatus.CONFIRMED
    if confidence >= 30:
        return EvidenceStatus.LIKELY
    if confidence > 0:
        return EvidenceStatus.POSSIBLE
    return EvidenceStatus.UNKNOWN


def derive_requirement_verdict(
    confidence: int,
    status: EvidenceStatus,
    observations: int,
    top_score: float,
) -> Verdict:
    # Repeated weak evidence is a negative signal, not just "no evidence yet"
    if observations >= 3 and confidence < 25 and top_score < 0.2:
        return Verdict.RISK
    if status == EvidenceStatus.CONFIRMED or confidence >= 75:
        return Verdict.SATISFIED
    if status == EvidenceStatus.LIKELY or confidence >= 55:
        return Verdict.LIKELY
    if confidence > 0:
        return Verdict.NEEDS_MORE
    return Verdict.UNKNOWN


# ── Group-level (batch) path ─────────────────────────────


def score_to_verdict(score: float) -> Verdict:
    if score >= 0.45:
        return Verdict.SATISFIED
    if score >= 0.25:
        return Verdict.LIKELY
    if score > 0:
        return Verdict.NEEDS_MORE
    return Verdict.UNKNOWN


def blend_confidence(previous: int, incoming: int, trend: str) -> int:
    """
    Move *previous* toward *incoming*: 60% of the gap on an increase,
    70% on a decrease. When the verdict trend disagrees with the raw
    confidence direction the value still moves the trend's way, by 20%
    of the gap, and never past *previous* in the wrong direction.
    """
    if trend == "increase":
        result = previous + (incoming - previous) * INCREASE_RATIO
        if result < previous:
            result = previous + abs(incoming - previous) * REVERSAL_RATIO
        result = max(result, previous)
    elif trend == "decrease":
        result = previous - (previous - incoming) * DECREASE_RATIO
        if result > previous:
            result = previous - abs(incoming - previous) * REVERSAL_RATIO
        result = min(result, previous)
    else:
        result = previous
    return clamp_confidence(result)


def confidence_scale(values: Iterable[float]) -> float:
    """
    Multiplier that maps a payload's confidences onto 0-100.

    The scale is inferred from the largest value seen: ≤1 is a 0-1 scale,
    ≤5 a 0-5 scale, anything else is already 0-100.
    """
    observed = [v for v in values if v is not None]
    if not observed:
        return 1.0
    peak = max(observed)
    if peak <= 0:
        return 1.0
    if peak <= 1:
        return 100.0
    if peak <= 5:
        return 20.0
    return 1.0
