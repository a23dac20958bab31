"""
Group verdict merge — reconciles an incoming evaluation with the live state.

Trust ordering:
  - authoritative (external evaluator) updates replace verdict, confidence
    and rationale outright;
  - heuristic updates never override an authoritative verdict or
    confidence, they may only backfill an empty rationale;
  - heuristic-on-heuristic updates move with hysteresis (see
    ``blend_confidence``).
"""

from __future__ import annotations

from jd_coach.models.enums import VerdictSource
from jd_coach.models.schemas import (
    GroupEvaluation,
    GroupVerdictState,
    VerdictTransition,
)
from jd_coach.reasoning.verdicts import blend_confidence, normalize_verdict, verdict_strength
from jd_coach.utils.scoring import clamp_confidence

MAX_QUOTES = 5
MAX_HISTORY = 10


def merge_group(
    existing: GroupVerdictState,
    update: GroupEvaluation,
    source: VerdictSource,
    at: str,
) -> GroupVerdictState | None:
    """
    Return the merged group, or ``None`` when the update is refused
    (heuristic over authoritative with nothing to backfill). *existing* is
    never mutated.
    """
    merged = existing.model_copy(deep=True)

    if source == VerdictSource.HEURISTIC and existing.is_authoritative:
        if not merged.rationale and update.rationale:
            merged.rationale = update.rationale
            merged.last_updated = at
            return merged
        return None

    incoming_verdict = normalize_verdict(update.verdict or merged.verdict)
    incoming_confidence = clamp_confidence(
        update.confidence if update.confidence is not None else merged.confidence
    )

    if source == VerdictSource.HEURISTIC:
        if merged.source is None:
            # First signal for this group seeds the state directly
            merged.verdict = incoming_verdict
            merged.confidence = incoming_confidence
            merged.source = VerdictSource.HEURISTIC
        else:
            trend = _trend(merged.verdict, merged.confidence, incoming_verdict, incoming_confidence)
            if trend != "neutral":
                merged.verdict = incoming_verdict
                merged.confidence = blend_confidence(merged.confidence, incoming_confidence, trend)
        if not merged.rationale and update.rationale:
            merged.rationale = update.rationale
    else:
        merged.verdict = incoming_verdict
        merged.confidence = incoming_confidence
        merged.rationale = update.rationale or merged.rationale
        merged.source = VerdictSource.CLAUDE

    if update.follow_up_question:
        merged.follow_up_question = update.follow_up_question

    if update.notable_quotes:
        quotes = [q for q in update.notable_quotes if q] + merged.notable_quotes
        merged.notable_quotes = list(dict.fromkeys(quotes))[:MAX_QUOTES]

    if update.conflicts is not None:
        merged.conflicts = [c.model_copy() for c in update.conflicts]

    if merged.verdict != existing.verdict:
        merged.history.insert(0, VerdictTransition(at=at, from_=existing.verdict, to=merged.verdict))
        del merged.history[MAX_HISTORY:]

    merged.last_updated = at
    return merged


def _trend(prev_verdict: str, prev_confidence: int, verdict: str, confidence: int) -> str:
    prev_strength = verdict_strength(prev_verdict)
    strength = verdict_strength(verdict)
    if strength > prev_strength:
        return "increase"
    if strength < prev_strength:
        return "decrease"
    if confidence > prev_confidence:
        return "increase"
    if confidence < prev_confidence:
        return "decrease"
    return "neutral"
