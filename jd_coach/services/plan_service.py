"""
Evaluation Plan Service — turns a job description into evaluation groups.

The plan is optional: when generation fails the caller keeps the session
on the requirement-level path only.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from jd_coach.models.schemas import EvaluationGroup, EvaluationPlan
from jd_coach.services.llm_service import LLMService, extract_json

logger = logging.getLogger(__name__)

PLAN_SYSTEM_PROMPT = (
    "You are a hiring copilot. Read the job description and output strict JSON with "
    "properties sessionId and groups[]. Each group must include id, title, importance "
    "(must-have|nice-to-have), criteria array, successSignals, riskSignals, conflictSignals, "
    "probingQuestions, successSummary, riskSummary. Return only minified JSON without "
    "additional commentary."
)


class PlanGenerationError(RuntimeError):
    """The evaluation plan could not be produced."""


class EvaluationPlanService:
    def __init__(self, llm: LLMService, timeout_seconds: float = 45.0):
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    @property
    def is_enabled(self) -> bool:
        return self.llm.is_configured

    async def generate_plan(self, jd_text: str, session_id: str | None = None) -> EvaluationPlan:
        if not jd_text or not jd_text.strip():
            raise PlanGenerationError("JD text is required")
        if not self.is_enabled:
            raise PlanGenerationError("LLM API key is not configured")

        prompt = f"Session: {session_id or 'unknown'}\n\nJob Description:\n{jd_text}"
        try:
            raw = await self.llm.text_call(PLAN_SYSTEM_PROMPT, prompt, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise PlanGenerationError(f"plan generation timed out after {self.timeout_seconds}s") from exc
        except Exception as exc:
            raise PlanGenerationError(f"plan generation failed: {exc}") from exc

        return self.parse_plan(extract_json(raw), session_id)

    @staticmethod
    def parse_plan(data: object, session_id: str | None = None) -> EvaluationPlan:
        if not isinstance(data, dict) or not data.get("groups"):
            raise PlanGenerationError("model returned no evaluation groups")

        groups: list[EvaluationGroup] = []
        for index, raw in enumerate(data["groups"], start=1):
            if not isinstance(raw, dict) or not raw.get("title"):
                continue
            try:
                groups.append(EvaluationGroup.model_validate({**raw, "id": str(raw.get("id") or f"group-{index}")}))
            except ValidationError as exc:
                logger.warning(f"[plan] Skipping malformed group {index}: {exc}")

        plan = EvaluationPlan(session_id=session_id or data.get("sessionId"), groups=groups)
        if not plan.groups:
            raise PlanGenerationError("model returned no evaluation groups")
        logger.info(f"[plan] Generated {len(plan.groups)} evaluation groups")
        return plan
