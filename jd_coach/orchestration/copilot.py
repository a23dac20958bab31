"""
Copilot Service — the one service object a process owns.

Wires the requirement-level path (index → matcher → evidence tracker →
aggregator) and the group-level path (batch orchestrator) behind a small
async surface. Every public entry point logs and degrades instead of
raising into the caller that delivers transcript fragments.

    copilot = build_copilot(get_settings())
    await copilot.set_job_description(jd_text)
    await copilot.ingest(TranscriptFragment(session_id="s1", text="..."))
    print(await copilot.render_report("s1"))
    await copilot.flush_all()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from jd_coach.config import Settings, get_settings
from jd_coach.matching.evidence_matcher import EvidenceMatcher
from jd_coach.matching.requirement_index import RequirementIndex
from jd_coach.models.enums import EventName, StateKind
from jd_coach.models.schemas import (
    EvaluationPlan,
    Requirement,
    SessionReport,
    TranscriptFragment,
)
from jd_coach.models.state import SessionState
from jd_coach.orchestration.batch_orchestrator import BatchEvaluationOrchestrator
from jd_coach.persistence.debounce import DebouncedWriter
from jd_coach.persistence.state_repository import StateRepository, build_state_repository
from jd_coach.reasoning.aggregator import ReasoningAggregator
from jd_coach.reasoning.evidence_state import EvidenceTracker
from jd_coach.services.audit_service import AuditService
from jd_coach.services.event_bus import EventBus
from jd_coach.services.llm_service import LLMService
from jd_coach.services.plan_service import EvaluationPlanService, PlanGenerationError
from jd_coach.services.reasoning_client import ReasoningServiceClient
from jd_coach.services.report_projector import SessionReportProjector
from jd_coach.services.requirement_extraction_service import RequirementExtractionService
from jd_coach.utils.hashing import fragment_id, sha256_hash
from jd_coach.utils.identifiers import InvalidSessionId, sanitize_session_id

logger = logging.getLogger(__name__)


class JobDescriptionTooLong(ValueError):
    """JD text exceeds the configured character limit."""


class CopilotService:
    def __init__(
        self,
        *,
        repository: StateRepository,
        bus: EventBus | None = None,
        extraction: RequirementExtractionService | None = None,
        planner: EvaluationPlanService | None = None,
        reasoning_client: ReasoningServiceClient | None = None,
        max_jd_chars: int = 50_000,
        match_top_n: int = 5,
        evidence_buffer_size: int = 6,
        guidance_cooldown_seconds: float = 180.0,
        batch_window_seconds: float = 5.0,
        context_window: int = 20,
        reasoning_timeout_seconds: float = 15.0,
        persist_debounce_seconds: float = 1.0,
    ):
        self.bus = bus or EventBus()
        self.repository = repository
        self.extraction = extraction or RequirementExtractionService()
        self.planner = planner
        self.max_jd_chars = max_jd_chars

        self.index = RequirementIndex()
        self.tracker = EvidenceTracker(EvidenceMatcher(self.index), match_top_n, evidence_buffer_size)
        self.aggregator = ReasoningAggregator(self.bus, guidance_cooldown_seconds)
        self.audit = AuditService(repository)
        self.writer = DebouncedWriter(repository, persist_debounce_seconds)
        self.orchestrator = BatchEvaluationOrchestrator(
            reasoning_client,
            bus=self.bus,
            repository=repository,
            writer=self.writer,
            audit=self.audit,
            batch_window_seconds=batch_window_seconds,
            context_window=context_window,
            timeout_seconds=reasoning_timeout_seconds,
        )
        self.projector = SessionReportProjector()

        self.plan: EvaluationPlan | None = None
        self._requirements_version = ""
        self._evidence_loading: dict[str, asyncio.Task] = {}

    # ── Job description ──────────────────────────────────

    async def set_job_description(self, text: str) -> dict[str, Any]:
        """
        Extract requirements (LLM, else heuristic) and, when the LLM is
        available, an evaluation plan. Raises ``ValueError`` for empty
        text and ``JobDescriptionTooLong`` past the length limit.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Job description text is empty")
        if len(text) > self.max_jd_chars:
            raise JobDescriptionTooLong(
                f"Job description is {len(text)} characters; the limit is {self.max_jd_chars}"
            )

        requirements, origin = await self.extraction.extract(text)
        self.set_requirements(requirements, notify=False)

        plan: EvaluationPlan | None = None
        if self.planner is not None and self.planner.is_enabled:
            try:
                plan = await self.planner.generate_plan(text)
            except PlanGenerationError as exc:
                logger.warning(f"[copilot] No evaluation plan, staying at requirement level: {exc}")
        await self.set_plan(plan)

        return {
            "origin": origin,
            "requirements": [r.to_payload() for r in requirements],
            "plan": plan.to_payload() if plan else None,
        }

    def set_requirements(self, requirements: list[Requirement], notify: bool = True) -> None:
        """Install a new requirement set; all requirement-level evidence is dropped."""
        self.index.index(requirements)
        self.tracker.reset()
        self.aggregator.handle_plan_update(requirements)
        self._evidence_loading.clear()
        self._requirements_version = sha256_hash(
            "\n".join(f"{r.id}|{r.title}" for r in requirements)
        )[:16]
        logger.info(f"[copilot] {len(requirements)} requirements indexed")
        if notify:
            self._emit_jd_updated()

    async def set_plan(self, plan: EvaluationPlan | None) -> None:
        """Swap the evaluation plan; group state resets and every guidance cooldown is cleared."""
        self.plan = plan
        await self.orchestrator.set_active_plan(plan)
        self.aggregator.clear_cooldowns()
        self._emit_jd_updated()

    @property
    def requirements(self) -> list[Requirement]:
        return self.index.requirements

    # ── Ingest ───────────────────────────────────────────

    async def ingest(self, fragment: TranscriptFragment) -> list[str]:
        """Fold one fragment into both paths; returns the touched requirement ids."""
        try:
            session_id = sanitize_session_id(fragment.session_id)
        except InvalidSessionId as exc:
            logger.debug(f"[copilot] Dropping fragment: {exc}")
            return []
        if not fragment.text or not fragment.text.strip():
            return []

        fragment = fragment.model_copy(
            update={
                "session_id": session_id,
                "chunk_id": fragment.chunk_id or fragment_id(session_id, fragment.text, fragment.timestamp),
            }
        )

        touched: list[str] = []
        try:
            await self._ensure_evidence(session_id)
            touched = self.tracker.record_fragment(session_id, fragment)
            if touched:
                self.aggregator.handle_evidence_update(session_id, self.tracker.snapshot(session_id, touched))
                self._schedule_evidence(session_id)
            await self.orchestrator.enqueue_chunk(session_id, fragment)
        except Exception:
            logger.exception(f"[copilot] {session_id}: failed to ingest {fragment.chunk_id}")
        return touched

    # ── Read side ────────────────────────────────────────

    async def get_state(self, session_id: str) -> dict[str, Any]:
        session_id = sanitize_session_id(session_id)
        await self._ensure_evidence(session_id)
        groups: SessionState | None = None
        if self.orchestrator.is_active:
            groups = await self.orchestrator.get_state(session_id)
        return {
            "sessionId": session_id,
            "revision": self.aggregator.revision(session_id),
            "overallFit": self.aggregator.overall_fit(session_id),
            "requirements": [s.to_payload() for s in self.aggregator.summaries(session_id)],
            "reasoning": groups.to_payload() if groups else None,
        }

    async def report(self, session_id: str) -> SessionReport:
        """Group-level report when a plan is active, requirement-level otherwise."""
        session_id = sanitize_session_id(session_id)
        if self.orchestrator.is_active:
            state = await self.orchestrator.get_state(session_id)
            return self.projector.project(state, self.plan)
        await self._ensure_evidence(session_id)
        return self.projector.project(self.aggregator.to_session_state(session_id))

    async def render_report(self, session_id: str) -> str:
        return self.projector.render_text(await self.report(session_id))

    # ── Forced flush ─────────────────────────────────────

    async def flush(self, session_id: str) -> None:
        session_id = sanitize_session_id(session_id)
        try:
            await self.orchestrator.flush(session_id)
            if self.tracker.has_session(session_id):
                self._schedule_evidence(session_id)
            await self.writer.flush(session_id)
        except Exception:
            logger.exception(f"[copilot] {session_id}: forced flush failed")

    async def flush_all(self) -> None:
        try:
            await self.orchestrator.flush_all()
            for session_id in list(self._evidence_loading):
                if self.tracker.has_session(session_id):
                    self._schedule_evidence(session_id)
            await self.writer.flush()
        except Exception:
            logger.exception("[copilot] flush_all failed")

    # ── Internals ────────────────────────────────────────

    async def _ensure_evidence(self, session_id: str) -> None:
        """Restore persisted evidence once per session (same requirement set only)."""
        task = self._evidence_loading.get(session_id)
        if task is None:
            task = asyncio.ensure_future(self._load_evidence(session_id))
            self._evidence_loading[session_id] = task
        await asyncio.shield(task)

    async def _load_evidence(self, session_id: str) -> None:
        try:
            data = await self.repository.load(session_id, StateKind.EVIDENCE.value)
        except Exception as exc:
            logger.warning(f"[copilot] {session_id}: ignoring unreadable evidence: {exc}")
            return
        if not data or data.get("requirementsVersion") != self._requirements_version:
            return
        self.tracker.restore(session_id, data.get("evidence"))
        self.aggregator.restore(session_id, data.get("aggregator"))
        logger.info(f"[copilot] {session_id}: restored requirement-level evidence")

    def _schedule_evidence(self, session_id: str) -> None:
        self.writer.schedule(session_id, StateKind.EVIDENCE.value, lambda: self._evidence_snapshot(session_id))

    def _evidence_snapshot(self, session_id: str) -> dict[str, Any]:
        return {
            "requirementsVersion": self._requirements_version,
            "evidence": self.tracker.export(session_id),
            "aggregator": self.aggregator.export(session_id),
        }

    def _emit_jd_updated(self) -> None:
        self.bus.emit(
            EventName.JD_UPDATED,
            {
                "requirements": [r.to_payload() for r in self.requirements],
                "plan": self.plan.to_payload() if self.plan else None,
                "planVersion": self.plan.generated_at if self.plan else None,
            },
        )


def build_copilot(settings: Settings | None = None, bus: EventBus | None = None) -> CopilotService:
    """Construct the service graph from settings."""
    settings = settings or get_settings()
    llm = LLMService(settings)
    return CopilotService(
        repository=build_state_repository(settings),
        bus=bus,
        extraction=RequirementExtractionService(llm, settings.plan_timeout_seconds),
        planner=EvaluationPlanService(llm, settings.plan_timeout_seconds),
        reasoning_client=ReasoningServiceClient(llm, settings.reasoning_timeout_seconds),
        max_jd_chars=settings.max_jd_chars,
        match_top_n=settings.match_top_n,
        evidence_buffer_size=settings.evidence_buffer_size,
        guidance_cooldown_seconds=settings.guidance_cooldown_seconds,
        batch_window_seconds=settings.batch_window_seconds,
        context_window=settings.context_window,
        reasoning_timeout_seconds=settings.reasoning_timeout_seconds,
        persist_debounce_seconds=settings.persist_debounce_seconds,
    )
