"""
Reasoning aggregator — the local, requirement-level reasoning path.

Turns evidence snapshots into per-requirement verdicts, an overall fit
score and cooldown-gated follow-up prompts. This is also the only
reasoning path a session has when no evaluation plan could be generated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from jd_coach.models.enums import EventName, Verdict, VerdictSource
from jd_coach.models.schemas import (
    GroupVerdictState,
    GuidancePrompt,
    Requirement,
    RequirementEvidenceState,
    RequirementSummary,
    VerdictTransition,
    utc_now_iso,
)
from jd_coach.models.state import SessionState
from jd_coach.reasoning.verdicts import derive_requirement_verdict
from jd_coach.services.event_bus import EventBus
from jd_coach.utils.scoring import weighted_fit

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 180.0
MAX_HISTORY = 10
MAX_SNIPPETS = 5


@dataclass
class _AggregatorSession:
    summaries: dict[str, RequirementSummary] = field(default_factory=dict)
    cooldowns: dict[str, float] = field(default_factory=dict)
    revision: int = 0
    updated_at: str | None = None


class ReasoningAggregator:
    def __init__(
        self,
        bus: EventBus | None = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bus = bus
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._requirements: dict[str, Requirement] = {}
        self._sessions: dict[str, _AggregatorSession] = {}

    # ── Plan ─────────────────────────────────────────────

    def handle_plan_update(self, requirements: list[Requirement]) -> None:
        """Track a new requirement set; drops all verdicts and cooldowns."""
        self._requirements = {req.id: req for req in requirements}
        self._sessions.clear()
        logger.info(f"[aggregator] Tracking {len(self._requirements)} requirements")

    @property
    def requirements(self) -> list[Requirement]:
        return list(self._requirements.values())

    def clear_cooldowns(self) -> None:
        """Let every requirement prompt again (a new plan reframes the interview)."""
        for session in self._sessions.values():
            session.cooldowns.clear()

    # ── Evidence ─────────────────────────────────────────

    def handle_evidence_update(
        self,
        session_id: str,
        snapshot: dict[str, RequirementEvidenceState],
    ) -> list[RequirementSummary]:
        """
        Re-derive verdicts for the requirements in *snapshot* and return the
        summaries of every tracked requirement, in requirement order.
        """
        session = self._session(session_id)
        now = utc_now_iso()
        changed = False

        for req_id, evidence in snapshot.items():
            requirement = self._requirements.get(req_id)
            if requirement is None:
                continue
            previous = session.summaries[req_id]
            summary = self._summarize(requirement, evidence, previous, now)
            if summary.model_dump(exclude={"last_updated"}) != previous.model_dump(exclude={"last_updated"}):
                changed = True
            session.summaries[req_id] = summary

            if summary.verdict == Verdict.NEEDS_MORE and summary.follow_up_question:
                self._maybe_prompt(session_id, session, requirement, summary.follow_up_question, now)

        if changed:
            session.revision += 1
            session.updated_at = now
            self._emit_state(session_id, session)

        return list(session.summaries.values())

    def summaries(self, session_id: str) -> list[RequirementSummary]:
        return list(self._session(session_id).summaries.values())

    def overall_fit(self, session_id: str) -> int:
        return weighted_fit(
            (s.confidence, s.must_have) for s in self._session(session_id).summaries.values()
        )

    def revision(self, session_id: str) -> int:
        return self._session(session_id).revision

    # ── Projection / persistence ─────────────────────────

    def to_session_state(self, session_id: str) -> SessionState:
        """Requirement verdicts in the group-state shape the report consumes."""
        session = self._session(session_id)
        groups: dict[str, GroupVerdictState] = {}
        for req_id, summary in session.summaries.items():
            groups[req_id] = GroupVerdictState(
                id=req_id,
                title=summary.title,
                verdict=summary.verdict.value,
                confidence=summary.confidence,
                rationale=summary.rationale or None,
                follow_up_question=summary.follow_up_question,
                notable_quotes=summary.evidence[:MAX_SNIPPETS],
                last_updated=summary.last_updated,
                source=VerdictSource.HEURISTIC if summary.observations else None,
                history=summary.history,
            )
        return SessionState(
            session_id=session_id,
            revision=session.revision,
            updated_at=session.updated_at,
            overall_fit=self.overall_fit(session_id),
            groups=groups,
        )

    def export(self, session_id: str) -> dict[str, Any]:
        session = self._session(session_id)
        return {
            "revision": session.revision,
            "updatedAt": session.updated_at,
            "summaries": {k: v.to_payload() for k, v in session.summaries.items()},
        }

    def restore(self, session_id: str, data: dict[str, Any] | None) -> None:
        if not data:
            return
        session = self._session(session_id)
        session.revision = int(data.get("revision", 0))
        session.updated_at = data.get("updatedAt")
        for req_id, raw in (data.get("summaries") or {}).items():
            if req_id not in self._requirements:
                continue
            try:
                session.summaries[req_id] = RequirementSummary.model_validate(raw)
            except ValueError as exc:
                logger.warning(f"[aggregator] {session_id}: dropping unreadable summary {req_id}: {exc}")

    # ── Internals ────────────────────────────────────────

    def _session(self, session_id: str) -> _AggregatorSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = _AggregatorSession(
                summaries={
                    req.id: RequirementSummary(id=req.id, title=req.title, must_have=req.must_have)
                    for req in self._requirements.values()
                }
            )
            self._sessions[session_id] = session
        return session

    @staticmethod
    def _summarize(
        requirement: Requirement,
        evidence: RequirementEvidenceState,
        previous: RequirementSummary,
        now: str,
    ) -> RequirementSummary:
        verdict = derive_requirement_verdict(
            evidence.confidence, evidence.status, evidence.observations, evidence.top_score
        )
        follow_up = None
        if verdict == Verdict.NEEDS_MORE and requirement.probing_questions:
            follow_up = requirement.probing_questions[0]

        history = list(previous.history)
        if verdict != previous.verdict:
            history.insert(0, VerdictTransition(at=now, from_=previous.verdict.value, to=verdict.value))
            del history[MAX_HISTORY:]

        snippets = [entry.text for entry in reversed(evidence.evidence)]
        rationale = (
            f"{evidence.status.value}: {evidence.observations} observation(s), "
            f"best match {evidence.top_score:.2f}"
        )
        return RequirementSummary(
            id=requirement.id,
            title=requirement.title,
            verdict=verdict,
            confidence=evidence.confidence,
            status=evidence.status,
            observations=evidence.observations,
            top_score=evidence.top_score,
            must_have=requirement.must_have,
            rationale=rationale,
            follow_up_question=follow_up,
            evidence=list(dict.fromkeys(snippets))[:MAX_SNIPPETS],
            history=history,
            last_updated=evidence.last_updated or now,
        )

    def _maybe_prompt(
        self,
        session_id: str,
        session: _AggregatorSession,
        requirement: Requirement,
        question: str,
        now: str,
    ) -> None:
        tick = self.clock()
        last = session.cooldowns.get(requirement.id)
        if last is not None and tick - last < self.cooldown_seconds:
            logger.debug(f"[aggregator] {session_id}: guidance for {requirement.id} cooling down")
            return
        session.cooldowns[requirement.id] = tick

        prompt = GuidancePrompt(
            session_id=session_id,
            requirement_id=requirement.id,
            requirement_title=requirement.title,
            question=question,
            priority="high" if requirement.must_have else "medium",
            must_have=requirement.must_have,
            source="aggregator",
            created_at=now,
        )
        logger.info(f"[aggregator] {session_id}: guidance for {requirement.id} → {question}")
        if self.bus is not None:
            self.bus.emit(EventName.GUIDANCE, prompt.to_payload())

    def _emit_state(self, session_id: str, session: _AggregatorSession) -> None:
        if self.bus is None:
            return
        self.bus.emit(
            EventName.STATE_CHANGED,
            {
                "sessionId": session_id,
                "revision": session.revision,
                "updatedAt": session.updated_at,
                "overallFit": self.overall_fit(session_id),
                "requirements": [s.to_payload() for s in session.summaries.values()],
            },
        )
