"""
Batch Evaluation Orchestrator — the group-level reasoning path.

Fragments are buffered per session into fixed windows (the first fragment
after a flush arms the timer). On flush the batch, the plan, the current
group state and a rolling context window go to the external evaluator;
an empty/malformed reply, a transport error or a timeout degrades to the
heuristic evaluator. Results are merged under the trust ordering in
``jd_coach.reasoning.merge``.

Emits:
    update    after every applied batch and on plan resets
    conflict  once per conflict carried by an applied batch
    guidance  when a group's follow-up question changes
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from jd_coach.models.enums import BatchPhase, EventName, Importance, StateKind, VerdictSource
from jd_coach.models.schemas import (
    ConflictRecord,
    EvaluationPlan,
    GroupVerdictState,
    GuidancePrompt,
    ReasoningResponse,
    TranscriptFragment,
    utc_now_iso,
)
from jd_coach.models.state import SessionState, placeholder_groups
from jd_coach.orchestration.session import EvaluationSession
from jd_coach.persistence.debounce import DebouncedWriter
from jd_coach.persistence.state_repository import StateRepository
from jd_coach.reasoning.heuristic import HeuristicEvaluator
from jd_coach.reasoning.merge import merge_group
from jd_coach.services.audit_service import AuditService
from jd_coach.services.event_bus import EventBus
from jd_coach.services.reasoning_client import ReasoningRequest, ReasoningServiceClient
from jd_coach.utils.identifiers import sanitize_session_id

logger = logging.getLogger(__name__)


class BatchEvaluationOrchestrator:
    def __init__(
        self,
        client: ReasoningServiceClient | None = None,
        *,
        bus: EventBus | None = None,
        repository: StateRepository | None = None,
        writer: DebouncedWriter | None = None,
        audit: AuditService | None = None,
        heuristic: HeuristicEvaluator | None = None,
        batch_window_seconds: float = 5.0,
        context_window: int = 20,
        timeout_seconds: float = 15.0,
    ):
        self.client = client
        self.bus = bus
        self.repository = repository
        self.writer = writer
        self.audit = audit
        self.heuristic = heuristic or HeuristicEvaluator()
        self.batch_window_seconds = batch_window_seconds
        self.context_window = context_window
        self.timeout_seconds = timeout_seconds

        self.plan: EvaluationPlan | None = None
        self.sessions: dict[str, EvaluationSession] = {}
        self._loading: dict[str, asyncio.Task] = {}

    # ── Plan ─────────────────────────────────────────────

    async def set_active_plan(self, plan: EvaluationPlan | None) -> None:
        """
        Replace the plan: every session's groups go back to placeholders and
        guidance trackers are cleared. Without a plan queued fragments are
        dropped, since there is nothing to evaluate them against.
        """
        self.plan = plan
        self.heuristic.set_plan(plan)
        now = utc_now_iso()

        for session in self.sessions.values():
            session.state.reset_groups(plan)
            session.guidance_history.clear()
            if plan is None:
                session.cancel_timer()
                session.queue.clear()
                if session.phase == BatchPhase.QUEUEING:
                    session.phase = BatchPhase.IDLE
            session.state.touch(now)
            self._schedule_persist(session)
            self._emit_update(session)

        logger.info(
            f"[batch] Active plan set: {len(plan.groups) if plan else 0} groups, "
            f"{len(self.sessions)} session(s) reset"
        )

    @property
    def is_active(self) -> bool:
        return self.plan is not None and bool(self.plan.groups)

    # ── Ingest ───────────────────────────────────────────

    async def enqueue_chunk(self, session_id: str, fragment: TranscriptFragment) -> bool:
        """Queue a fragment for the next batch; returns False when it was dropped."""
        if not self.is_active or not session_id or not fragment.text or not fragment.text.strip():
            return False
        try:
            session = await self._get_session(sanitize_session_id(session_id))
        except Exception as exc:
            logger.warning(f"[batch] Dropping fragment for {session_id!r}: {exc}")
            return False

        session.queue.append(fragment)
        session.context.append(fragment)

        if session.timer is None:
            loop = asyncio.get_running_loop()
            session.timer = loop.call_later(self.batch_window_seconds, self._on_timer, session)
            if session.phase == BatchPhase.IDLE:
                session.phase = BatchPhase.QUEUEING
            logger.debug(f"[batch] {session.session_id}: window armed ({self.batch_window_seconds}s)")
        return True

    # ── Flush ────────────────────────────────────────────

    async def flush(self, session_id: str) -> SessionState | None:
        """
        Forced flush: cancel the pending timer, evaluate whatever is queued
        (persisting existing state even when nothing is), and wait for the
        write to land.
        """
        session = self.sessions.get(sanitize_session_id(session_id))
        if session is None:
            return None
        session.cancel_timer()
        task = self._chain_flush(session, force=True)
        await task
        if self.writer is not None:
            await self.writer.flush(session.session_id)
        return session.state

    async def flush_all(self) -> None:
        tasks = []
        for session in list(self.sessions.values()):
            session.cancel_timer()
            tasks.append(self._chain_flush(session, force=True))
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"[batch] Forced flush failed: {result}")
        if self.writer is not None:
            await self.writer.flush()

    async def get_state(self, session_id: str) -> SessionState:
        session = await self._get_session(sanitize_session_id(session_id))
        return session.state.model_copy(deep=True)

    # ── Internals: session lifecycle ─────────────────────

    async def _get_session(self, session_id: str) -> EvaluationSession:
        session = self.sessions.get(session_id)
        if session is not None:
            return session
        task = self._loading.get(session_id)
        if task is None:
            task = asyncio.ensure_future(self._bootstrap(session_id))
            self._loading[session_id] = task
            task.add_done_callback(lambda _t, sid=session_id: self._loading.pop(sid, None))
        return await asyncio.shield(task)

    async def _bootstrap(self, session_id: str) -> EvaluationSession:
        state: SessionState | None = None
        if self.repository is not None:
            try:
                data = await self.repository.load(session_id, StateKind.REASONING.value)
                if data:
                    state = SessionState.model_validate(data)
                    logger.info(f"[batch] {session_id}: restored state at revision {state.revision}")
            except (OSError, ValueError, ValidationError) as exc:
                logger.warning(f"[batch] {session_id}: ignoring unreadable persisted state: {exc}")
        if state is None:
            state = SessionState(session_id=session_id)
        state.session_id = session_id

        if self.plan is not None and not state.groups:
            state.groups = placeholder_groups(self.plan)
            state.plan_version = self.plan.generated_at

        session = EvaluationSession(session_id=session_id, state=state, context_size=self.context_window)
        # Another coroutine may have created it while the load was in flight
        return self.sessions.setdefault(session_id, session)

    def _on_timer(self, session: EvaluationSession) -> None:
        session.timer = None
        self._chain_flush(session, force=False)

    def _chain_flush(self, session: EvaluationSession, force: bool) -> asyncio.Task:
        """Start a flush that runs after any in-flight one, so batches never overlap."""
        previous = session.flush_task
        task = asyncio.get_running_loop().create_task(self._flush_after(session, previous, force))
        session.flush_task = task
        return task

    async def _flush_after(
        self,
        session: EvaluationSession,
        previous: asyncio.Task | None,
        force: bool,
    ) -> None:
        if previous is not None and not previous.done():
            try:
                await asyncio.shield(previous)
            except Exception as exc:
                logger.error(f"[batch] {session.session_id}: previous flush failed: {exc}")
        await self._flush_session(session, force=force)

    # ── Internals: evaluation ────────────────────────────

    async def _flush_session(self, session: EvaluationSession, force: bool = False) -> None:
        if not self.is_active:
            session.queue.clear()
            return

        batch = session.take_batch()
        if not batch and not force:
            return

        session.phase = BatchPhase.FLUSHING
        try:
            if not batch:
                # Forced flush with nothing queued: only persist what exists
                self._schedule_persist(session)
                return

            plan = self.plan
            result, reason = await self._evaluate(session, batch)
            if self.plan is not plan:
                # Evaluated against a superseded JD; its groups mean something else now
                logger.debug(
                    f"[batch] {session.session_id}: plan replaced mid-flush, "
                    f"discarding batch of {len(batch)} fragment(s)"
                )
                return

            if result is not None:
                if await self._apply_result(session, result, batch, VerdictSource.CLAUDE):
                    return
                reason = "no group in the reply matched the active plan"
            logger.warning(f"[batch] {session.session_id}: heuristic fallback ({reason})")
            fallback = self.heuristic.evaluate(batch, session.state.groups)
            await self._apply_result(session, fallback, batch, VerdictSource.HEURISTIC)
        except Exception:
            logger.exception(f"[batch] {session.session_id}: flush failed")
        finally:
            session.phase = BatchPhase.QUEUEING if session.timer is not None else BatchPhase.IDLE

    async def _evaluate(
        self,
        session: EvaluationSession,
        batch: list[TranscriptFragment],
    ) -> tuple[ReasoningResponse | None, str]:
        if self.client is None or not self.client.is_configured:
            return None, "disabled"

        request = ReasoningRequest(
            session_id=session.session_id,
            plan=self.plan,
            current_state=session.state.model_copy(deep=True),
            new_chunks=batch,
            recent_context=session.recent_context(),
        )
        try:
            result = await asyncio.wait_for(self.client.evaluate(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return None, f"timeout after {self.timeout_seconds}s"
        except Exception as exc:
            return None, f"error: {exc}"

        if result is None or not result.groups:
            return None, "empty-response"
        return result, ""

    async def _apply_result(
        self,
        session: EvaluationSession,
        result: ReasoningResponse,
        batch: list[TranscriptFragment],
        source: VerdictSource,
    ) -> bool:
        now = utc_now_iso()
        applied: list[dict[str, Any]] = []

        for update in result.groups:
            existing = session.state.groups.get(update.group_id) or self._placeholder(update.group_id)
            if existing is None:
                logger.debug(f"[batch] {session.session_id}: ignoring unknown group {update.group_id}")
                continue

            merged = merge_group(existing, update, source, now)
            if merged is None:
                continue
            session.state.groups[update.group_id] = merged
            applied.append(update.to_payload())

            for conflict in update.conflicts or []:
                record = ConflictRecord(
                    at=now,
                    session_id=session.session_id,
                    group_id=update.group_id,
                    group_title=merged.title,
                    summary=conflict.summary,
                    evidence=conflict.evidence,
                    recommended_action=conflict.recommended_action,
                )
                if self.audit is not None:
                    await self.audit.record_conflict(record)
                self._emit(EventName.CONFLICT, record.to_payload())

            await self._track_guidance(session, merged, now)

        if not applied:
            return False

        if result.overall_fit is not None:
            logger.debug(f"[batch] {session.session_id}: evaluator overallFit={result.overall_fit} (recomputed locally)")
        session.state.recompute_overall_fit(self._importance_of)
        revision = session.state.touch(now)

        if self.audit is not None:
            await self.audit.record_evaluation(session.session_id, source.value, applied, batch)
        self._schedule_persist(session)
        self._emit_update(session)
        logger.info(
            f"[batch] {session.session_id}: applied {source.value} batch of {len(batch)} fragment(s) "
            f"→ rev {revision}, overallFit={session.state.overall_fit}"
        )
        return True

    async def _track_guidance(self, session: EvaluationSession, group: GroupVerdictState, now: str) -> None:
        question = group.follow_up_question
        if not question:
            session.guidance_history.pop(group.id, None)
            return
        if session.guidance_history.get(group.id) == question:
            return
        session.guidance_history[group.id] = question

        must_have = self._importance_of(group.id) == Importance.MUST_HAVE
        prompt = GuidancePrompt(
            session_id=session.session_id,
            requirement_id=group.id,
            requirement_title=group.title,
            question=question,
            priority="high" if must_have else "medium",
            must_have=must_have,
            source="batch",
            created_at=now,
        )
        if self.audit is not None:
            await self.audit.record_guidance(prompt)
        self._emit(EventName.GUIDANCE, prompt.to_payload())

    def _placeholder(self, group_id: str) -> GroupVerdictState | None:
        if self.plan is None or self.plan.group(group_id) is None:
            return None
        return placeholder_groups(self.plan).get(group_id)

    def _importance_of(self, group_id: str) -> Importance:
        group = self.plan.group(group_id) if self.plan else None
        return group.importance if group is not None else Importance.MUST_HAVE

    # ── Internals: output ────────────────────────────────

    def _schedule_persist(self, session: EvaluationSession) -> None:
        if self.writer is None:
            return
        state = session.state
        self.writer.schedule(session.session_id, StateKind.REASONING.value, lambda: state.to_payload())

    def _emit_update(self, session: EvaluationSession) -> None:
        state = session.state
        self._emit(
            EventName.UPDATE,
            {
                "sessionId": state.session_id,
                "revision": state.revision,
                "updatedAt": state.updated_at,
                "overallFit": state.overall_fit,
                "groups": [group.to_payload() for group in state.groups.values()],
            },
        )

    def _emit(self, name: EventName, payload: dict[str, Any]) -> None:
        if self.bus is not None:
            self.bus.emit(name, payload)
