"""
Evidence tracker — per-session, per-requirement rolling confidence.

Runs on the hot path for every fragment: no I/O, no awaits. Confidence is
an exponentially weighted blend (60% fresh score, 40% previous) so single
fragments cannot spike a requirement to "confirmed". Silence never decays
confidence.
"""

from __future__ import annotations

import logging
from typing import Any

from jd_coach.matching.evidence_matcher import EvidenceMatcher
from jd_coach.models.schemas import (
    EvidenceEntry,
    RequirementEvidenceState,
    TranscriptFragment,
    utc_now_iso,
)
from jd_coach.reasoning.verdicts import evidence_status
from jd_coach.utils.scoring import clamp_confidence, round_half_up

logger = logging.getLogger(__name__)

FRESH_WEIGHT = 0.6
PREVIOUS_WEIGHT = 0.4


class EvidenceTracker:
    def __init__(self, matcher: EvidenceMatcher, top_n: int = 5, buffer_size: int = 6):
        self.matcher = matcher
        self.top_n = top_n
        self.buffer_size = buffer_size
        self._sessions: dict[str, dict[str, RequirementEvidenceState]] = {}

    def record_fragment(self, session_id: str, fragment: TranscriptFragment) -> list[str]:
        """
        Fold one fragment into the session's evidence and return the ids of
        the requirements it touched. Missing session id / text, or zero
        matches, is a no-op.
        """
        if not session_id or not fragment.text or not fragment.text.strip():
            return []

        matches = self.matcher.top(fragment.text, self.top_n)
        if not matches:
            logger.debug(f"[evidence] {session_id}: no requirement matched {fragment.chunk_id or '<chunk>'}")
            return []

        states = self._sessions.setdefault(session_id, {})
        now = utc_now_iso()
        touched: list[str] = []

        for match in matches:
            state = states.get(match.id)
            if state is None:
                state = RequirementEvidenceState(id=match.id)
                states[match.id] = state

            state.evidence.append(
                EvidenceEntry(
                    chunk_id=fragment.chunk_id,
                    text=fragment.text,
                    score=round(match.score, 4),
                    source=fragment.source,
                    timestamp=fragment.timestamp,
                )
            )
            if len(state.evidence) > self.buffer_size:
                del state.evidence[: len(state.evidence) - self.buffer_size]

            state.observations += 1
            state.top_score = max(state.top_score, match.score)
            blended = FRESH_WEIGHT * (match.score * 100) + PREVIOUS_WEIGHT * state.confidence
            state.confidence = clamp_confidence(round_half_up(min(100.0, blended)))
            state.status = evidence_status(state.confidence)
            state.last_updated = now
            touched.append(match.id)

        logger.debug(
            f"[evidence] {session_id}: {fragment.chunk_id or '<chunk>'} touched "
            + ", ".join(f"{s}={states[s].confidence}" for s in touched)
        )
        return touched

    # ── Accessors ────────────────────────────────────────

    def get(self, session_id: str, requirement_id: str) -> RequirementEvidenceState | None:
        return self._sessions.get(session_id, {}).get(requirement_id)

    def snapshot(self, session_id: str, ids: list[str] | None = None) -> dict[str, RequirementEvidenceState]:
        """Deep copies, so callers cannot write confidence outside this object."""
        states = self._sessions.get(session_id, {})
        keys = ids if ids is not None else list(states)
        return {k: states[k].model_copy(deep=True) for k in keys if k in states}

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ── Lifecycle ────────────────────────────────────────

    def reset(self) -> None:
        """Forget all evidence (a new requirement set invalidates it)."""
        self._sessions.clear()

    def export(self, session_id: str) -> dict[str, Any]:
        return {k: v.to_payload() for k, v in self._sessions.get(session_id, {}).items()}

    def restore(self, session_id: str, data: dict[str, Any] | None) -> None:
        if not data:
            return
        restored: dict[str, RequirementEvidenceState] = {}
        for key, value in data.items():
            try:
                restored[key] = RequirementEvidenceState.model_validate(value)
            except ValueError as exc:
                logger.warning(f"[evidence] {session_id}: dropping unreadable state for {key}: {exc}")
        self._sessions[session_id] = restored
