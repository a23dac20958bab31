"""
Reasoning Service Client — the authoritative external evaluator.

Request:  { sessionId, plan, currentState, newChunks[], recentContext[] }
Response: { overallFit, groups: [...], guidance?: [...], conflicts?: [...] }

Replies vary (groups as a list or a map, ``groupId`` or ``id``, confidence
on 0-1 / 0-5 / 0-100, follow-ups as a string or a list), so they are
normalized into ``ReasoningResponse`` here and nowhere else.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from pydantic import Field

from jd_coach.models.schemas import (
    CamelModel,
    ConflictDetail,
    EvaluationPlan,
    GroupEvaluation,
    ReasoningResponse,
    TranscriptFragment,
)
from jd_coach.models.state import SessionState
from jd_coach.reasoning.verdicts import confidence_scale, normalize_verdict
from jd_coach.services.llm_service import LLMService, extract_json
from jd_coach.utils.scoring import clamp_confidence

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a hiring copilot evaluating a candidate live based on grouped requirements. "
    "Return strict minified JSON with groups[]. Each group entry must include groupId, verdict, "
    "confidence (0-100), rationale, optional followUpQuestions[], notableQuotes[], conflicts[] "
    "(each conflict: summary, evidence[], recommendedAction). Return JSON only."
)


class ReasoningServiceError(RuntimeError):
    """Transport failure, timeout or non-success reply from the evaluator."""


class ReasoningRequest(CamelModel):
    session_id: str
    plan: Optional[EvaluationPlan] = None
    current_state: SessionState
    new_chunks: list[TranscriptFragment] = Field(default_factory=list)
    recent_context: list[dict[str, Any]] = Field(default_factory=list)


class ReasoningServiceClient:
    def __init__(self, llm: LLMService, timeout_seconds: float = 15.0):
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return self.llm.is_configured

    async def evaluate(self, request: ReasoningRequest) -> ReasoningResponse | None:
        """
        Send one batch for evaluation. Returns ``None`` for an empty or
        malformed reply; raises ``ReasoningServiceError`` on transport
        failure or timeout.
        """
        prompt = json.dumps(request.to_payload(), indent=2)
        try:
            raw = await self.llm.text_call(SYSTEM_PROMPT, prompt, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ReasoningServiceError(f"evaluation timed out after {self.timeout_seconds}s") from exc
        except Exception as exc:
            raise ReasoningServiceError(str(exc)) from exc
        return normalize_response(extract_json(raw))


# ── Normalization ────────────────────────────────────────


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
        elif isinstance(item, dict):
            text = item.get("quote") or item.get("text")
            if isinstance(text, str) and text.strip():
                out.append(text.strip())
    return out


def _conflicts(value: Any) -> list[ConflictDetail]:
    conflicts: list[ConflictDetail] = []
    for item in value if isinstance(value, list) else []:
        if isinstance(item, str):
            conflicts.append(ConflictDetail(summary=item))
        elif isinstance(item, dict):
            evidence = item.get("evidence")
            conflicts.append(
                ConflictDetail(
                    summary=str(item.get("summary") or ""),
                    evidence=evidence if isinstance(evidence, list) else [],
                    recommended_action=item.get("recommendedAction") or None,
                )
            )
    return conflicts


def _group_items(raw: Any) -> list[dict[str, Any]]:
    if isinstance(raw, list):
        return [g for g in raw if isinstance(g, dict)]
    if isinstance(raw, dict):
        items = []
        for key, value in raw.items():
            if isinstance(value, dict):
                items.append({"groupId": key, **value})
        return items
    return []


def normalize_response(data: Any) -> ReasoningResponse | None:
    """Canonicalize a decoded evaluator reply; ``None`` when it has no usable groups."""
    if not isinstance(data, dict):
        return None

    items = _group_items(data.get("groups"))
    scale = confidence_scale(
        n for n in (_number(item.get("confidence")) for item in items) if n is not None
    )

    groups: dict[str, GroupEvaluation] = {}
    for item in items:
        group_id = item.get("groupId") or item.get("id")
        if not group_id:
            continue
        confidence = _number(item.get("confidence"))
        follow_up = item.get("followUpQuestion")
        if not isinstance(follow_up, str) or not follow_up.strip():
            questions = _strings(item.get("followUpQuestions"))
            follow_up = questions[0] if questions else None
        verdict = item.get("verdict") or item.get("status")
        groups[str(group_id)] = GroupEvaluation(
            group_id=str(group_id),
            verdict=normalize_verdict(verdict) if verdict else None,
            confidence=clamp_confidence(confidence * scale) if confidence is not None else None,
            rationale=item.get("rationale") or None,
            follow_up_question=follow_up.strip() if follow_up else None,
            notable_quotes=_strings(item.get("notableQuotes")),
            conflicts=_conflicts(item["conflicts"]) if "conflicts" in item else None,
        )

    if not groups:
        return None

    # Fold top-level conflicts and guidance into the groups they name
    for item in data.get("conflicts") or []:
        if not isinstance(item, dict):
            continue
        target = groups.get(str(item.get("groupId") or ""))
        if target is None:
            logger.debug(f"[reasoning] Dropping conflict for unknown group {item.get('groupId')!r}")
            continue
        target.conflicts = (target.conflicts or []) + _conflicts([item])

    for item in data.get("guidance") or []:
        if not isinstance(item, dict):
            continue
        target = groups.get(str(item.get("groupId") or item.get("requirementId") or ""))
        question = item.get("question")
        if target is not None and not target.follow_up_question and isinstance(question, str) and question.strip():
            target.follow_up_question = question.strip()

    overall = _number(data.get("overallFit"))
    return ReasoningResponse(
        overall_fit=clamp_confidence(overall * confidence_scale([overall])) if overall is not None else None,
        groups=list(groups.values()),
    )
