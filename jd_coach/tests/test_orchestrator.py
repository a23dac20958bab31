"""
Tests: batch windows, authoritative/heuristic reconciliation, plan resets
and forced-flush durability of the group-level path.

Async behaviour is driven with asyncio.run from plain tests.

Run with:
    pytest jd_coach/tests/test_orchestrator.py -v
"""

import asyncio

import pytest

from jd_coach.models.enums import BatchPhase, EventName, StateKind, VerdictSource
from jd_coach.models.schemas import (
    ConflictDetail,
    EvaluationGroup,
    EvaluationPlan,
    GroupEvaluation,
    ReasoningResponse,
    TranscriptFragment,
)
from jd_coach.orchestration.batch_orchestrator import BatchEvaluationOrchestrator
from jd_coach.persistence.debounce import DebouncedWriter
from jd_coach.persistence.state_repository import FileStateRepository
from jd_coach.services.audit_service import AuditService
from jd_coach.services.event_bus import EventBus, EventRecorder
from jd_coach.services.reasoning_client import ReasoningServiceError


class FakeReasoningClient:
    """Stands in for the external evaluator; replays canned responses."""

    is_configured = True

    def __init__(self, responses=None, error=None, delay=0.0):
        self.responses = list(responses or [])
        self.error = error
        self.delay = delay
        self.requests = []

    async def evaluate(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else None


def _fragment(text):
    return TranscriptFragment(session_id="s1", text=text)


def _authoritative(verdict="satisfied", confidence=90, follow_up=None, conflicts=None):
    return ReasoningResponse(
        overall_fit=12,
        groups=[
            GroupEvaluation(
                group_id="g1",
                verdict=verdict,
                confidence=confidence,
                rationale="Strong SQL depth",
                follow_up_question=follow_up,
                notable_quotes=["I used SQL daily"],
                conflicts=conflicts,
            )
        ],
    )


def _orchestrator(client=None, bus=None, **kwargs):
    return BatchEvaluationOrchestrator(client, bus=bus or EventBus(), **kwargs)


class TestHeuristicFallback:
    def test_service_failure_scenario(self, sql_plan):
        client = FakeReasoningClient(error=ReasoningServiceError("connection refused"))
        orch = _orchestrator(client)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            for text in ("I used SQL daily", "mostly joins and indexes", "no NoSQL experience"):
                await orch.enqueue_chunk("s1", _fragment(text))
            await orch.flush("s1")
            return await orch.get_state("s1")

        state = asyncio.run(scenario())
        group = state.groups["g1"]
        assert group.verdict in {"likely", "satisfied"}
        assert "I used SQL daily" in group.notable_quotes
        assert group.source == VerdictSource.HEURISTIC
        assert len(client.requests) == 1

    def test_empty_response_falls_back(self, sql_plan):
        orch = _orchestrator(FakeReasoningClient(responses=[None]))

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL every day"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        assert asyncio.run(scenario()).groups["g1"].source == VerdictSource.HEURISTIC

    def test_timeout_falls_back(self, sql_plan):
        client = FakeReasoningClient(responses=[_authoritative()], delay=1.0)
        orch = _orchestrator(client, timeout_seconds=0.05)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL every day"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        group = asyncio.run(scenario()).groups["g1"]
        assert group.source == VerdictSource.HEURISTIC
        assert group.notable_quotes == ["SQL every day"]
        # the placeholder rationale is not empty, so the heuristic one does not replace it
        assert group.rationale == "Comfortable writing and tuning SQL"

    def test_unconfigured_client_goes_straight_to_heuristic(self, sql_plan):
        orch = _orchestrator(None)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL every day"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        assert asyncio.run(scenario()).groups["g1"].verdict == "satisfied"


class TestAuthoritativeMerge:
    def test_replaces_and_emits_events(self, sql_plan):
        bus = EventBus()
        recorder = EventRecorder(bus)
        conflict = ConflictDetail(summary="Claims both 2 and 5 years", evidence=["2 years"], recommended_action="Clarify")
        client = FakeReasoningClient(responses=[_authoritative(follow_up="Which indexes?", conflicts=[conflict])])
        orch = _orchestrator(client, bus)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("I used SQL daily"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        state = asyncio.run(scenario())
        group = state.groups["g1"]
        assert (group.verdict, group.confidence, group.source) == ("satisfied", 90, VerdictSource.CLAUDE)
        # overall fit is recomputed locally, not copied from the response
        assert state.overall_fit == 90

        conflicts = recorder.of(EventName.CONFLICT)
        assert len(conflicts) == 1
        assert conflicts[0]["groupId"] == "g1"
        assert conflicts[0]["recommendedAction"] == "Clarify"

        guidance = recorder.of(EventName.GUIDANCE)
        assert [g["question"] for g in guidance] == ["Which indexes?"]
        assert guidance[0]["priority"] == "high"

        updates = recorder.of(EventName.UPDATE)
        assert updates[-1]["revision"] == state.revision
        assert updates[-1]["groups"][0]["source"] == "claude"

    def test_request_carries_plan_state_and_context(self, sql_plan):
        client = FakeReasoningClient(responses=[_authoritative()])
        orch = _orchestrator(client)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("first"))
            await orch.enqueue_chunk("s1", _fragment("second"))
            await orch.flush("s1")

        asyncio.run(scenario())
        payload = client.requests[0].to_payload()
        assert payload["sessionId"] == "s1"
        assert payload["plan"]["groups"][0]["id"] == "g1"
        assert [c["text"] for c in payload["newChunks"]] == ["first", "second"]
        assert [c["text"] for c in payload["recentContext"]] == ["first", "second"]
        assert payload["currentState"]["groups"]["g1"]["verdict"] == "unknown"

    def test_heuristic_never_downgrades_authoritative(self, sql_plan):
        client = FakeReasoningClient(responses=[_authoritative()])
        orch = _orchestrator(client)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("I used SQL daily"))
            await orch.flush("s1")
            client.error = ReasoningServiceError("down")
            await orch.enqueue_chunk("s1", _fragment("I never touched databases"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        group = asyncio.run(scenario()).groups["g1"]
        assert (group.verdict, group.confidence, group.source) == ("satisfied", 90, VerdictSource.CLAUDE)

    def test_repeated_follow_up_is_not_re_emitted(self, sql_plan):
        bus = EventBus()
        recorder = EventRecorder(bus)
        client = FakeReasoningClient(responses=[
            _authoritative(follow_up="Which indexes?"),
            _authoritative(follow_up="Which indexes?"),
            _authoritative(follow_up="How large were the tables?"),
        ])
        orch = _orchestrator(client, bus)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            for text in ("one", "two", "three"):
                await orch.enqueue_chunk("s1", _fragment(text))
                await orch.flush("s1")

        asyncio.run(scenario())
        assert [g["question"] for g in recorder.of(EventName.GUIDANCE)] == [
            "Which indexes?",
            "How large were the tables?",
        ]

    def test_reply_without_plan_groups_falls_back_to_heuristic(self, sql_plan):
        response = ReasoningResponse(groups=[GroupEvaluation(group_id="ghost", verdict="satisfied", confidence=99)])
        orch = _orchestrator(FakeReasoningClient(responses=[response]))

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        state = asyncio.run(scenario())
        assert set(state.groups) == {"g1"}
        group = state.groups["g1"]
        assert (group.verdict, group.source) == ("satisfied", VerdictSource.HEURISTIC)
        assert group.notable_quotes == ["SQL"]
        assert state.revision == 1

    def test_overall_fit_weights_group_importance(self, two_group_plan):
        response = ReasoningResponse(
            overall_fit=10,
            groups=[
                GroupEvaluation(group_id="g1", verdict="likely", confidence=80),
                GroupEvaluation(group_id="g2", verdict="needs_more", confidence=40),
            ],
        )
        orch = _orchestrator(FakeReasoningClient(responses=[response]))

        async def scenario():
            await orch.set_active_plan(two_group_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL and some Kubernetes"))
            await orch.flush("s1")
            return await orch.get_state("s1")

        # (80 * 1.5 + 40 * 1.0) / 2.5
        assert asyncio.run(scenario()).overall_fit == 64


class TestBatching:
    def test_window_timer_flushes_one_batch(self, sql_plan):
        client = FakeReasoningClient(responses=[_authoritative()])
        orch = _orchestrator(client, batch_window_seconds=0.05)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            for text in ("a SQL story", "more SQL", "even more"):
                await orch.enqueue_chunk("s1", _fragment(text))
            assert orch.sessions["s1"].phase == BatchPhase.QUEUEING
            await asyncio.sleep(0.3)
            return orch.sessions["s1"]

        session = asyncio.run(scenario())
        assert len(client.requests) == 1
        assert len(client.requests[0].new_chunks) == 3
        assert session.phase == BatchPhase.IDLE
        assert session.state.groups["g1"].source == VerdictSource.CLAUDE

    def test_fragments_during_flight_start_a_new_batch(self, sql_plan):
        client = FakeReasoningClient(delay=0.1)
        orch = _orchestrator(client)

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("first"))
            in_flight = asyncio.create_task(orch.flush("s1"))
            await asyncio.sleep(0.02)
            assert orch.sessions["s1"].phase == BatchPhase.FLUSHING
            await orch.enqueue_chunk("s1", _fragment("second"))
            await in_flight
            await orch.flush("s1")

        asyncio.run(scenario())
        assert [[c.text for c in r.new_chunks] for r in client.requests] == [["first"], ["second"]]

    def test_no_plan_drops_fragments(self):
        orch = _orchestrator(FakeReasoningClient())

        async def scenario():
            return await orch.enqueue_chunk("s1", _fragment("SQL"))

        assert asyncio.run(scenario()) is False
        assert orch.sessions == {}

    def test_empty_text_is_dropped(self, sql_plan):
        orch = _orchestrator(FakeReasoningClient())

        async def scenario():
            await orch.set_active_plan(sql_plan)
            return await orch.enqueue_chunk("s1", _fragment("   "))

        assert asyncio.run(scenario()) is False


class TestPlanReplacement:
    def test_reset_to_placeholders_and_guidance_cleared(self, sql_plan):
        bus = EventBus()
        recorder = EventRecorder(bus)
        client = FakeReasoningClient(responses=[
            _authoritative(follow_up="Which indexes?"),
            _authoritative(follow_up="Which indexes?"),
        ])
        orch = _orchestrator(client, bus)
        new_plan = EvaluationPlan(groups=[EvaluationGroup(id="g1", title="SQL", criteria=["Writes SQL"])])

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("SQL"))
            await orch.flush("s1")
            await orch.set_active_plan(new_plan)
            reset = await orch.get_state("s1")
            await orch.enqueue_chunk("s1", _fragment("SQL again"))
            await orch.flush("s1")
            return reset

        reset = asyncio.run(scenario())
        group = reset.groups["g1"]
        assert (group.verdict, group.confidence, group.source) == ("unknown", 0, None)
        assert group.rationale == "Writes SQL"
        assert reset.overall_fit == 0
        assert len(recorder.of(EventName.GUIDANCE)) == 2

    def test_reply_for_replaced_plan_is_discarded(self, sql_plan):
        client = FakeReasoningClient(responses=[_authoritative(confidence=95)], delay=0.1)
        orch = _orchestrator(client)
        new_plan = EvaluationPlan(groups=[EvaluationGroup(id="g1", title="Kubernetes")])

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("s1", _fragment("I used SQL daily"))
            in_flight = asyncio.create_task(orch.flush("s1"))
            await asyncio.sleep(0.02)
            await orch.set_active_plan(new_plan)
            await in_flight
            return await orch.get_state("s1")

        state = asyncio.run(scenario())
        assert len(client.requests) == 1
        group = state.groups["g1"]
        assert group.title == "Kubernetes"
        assert (group.verdict, group.confidence, group.source) == ("unknown", 0, None)
        assert group.notable_quotes == []


class TestPersistence:
    def test_forced_flush_round_trip(self, sql_plan, tmp_path):
        repo = FileStateRepository(tmp_path)

        def build():
            return _orchestrator(
                FakeReasoningClient(responses=[_authoritative()]),
                repository=repo,
                writer=DebouncedWriter(repo, delay_seconds=30),
                audit=AuditService(repo),
            )

        first = build()

        async def write():
            await first.set_active_plan(sql_plan)
            await first.enqueue_chunk("s1", _fragment("I used SQL daily"))
            await first.flush("s1")
            return await first.get_state("s1")

        saved = asyncio.run(write())
        assert (tmp_path / "s1" / f"{StateKind.REASONING.value}.json").exists()
        assert len(asyncio.run(repo.read_log("s1", "events"))) == 1

        second = build()

        async def read():
            await second.set_active_plan(sql_plan)
            return await second.get_state("s1")

        loaded = asyncio.run(read())
        assert loaded.revision == saved.revision
        assert loaded.overall_fit == saved.overall_fit
        assert loaded.groups["g1"].verdict == saved.groups["g1"].verdict
        assert loaded.groups["g1"].confidence == saved.groups["g1"].confidence

    def test_forced_flush_with_empty_queue_persists_existing_state(self, sql_plan, tmp_path):
        repo = FileStateRepository(tmp_path)
        client = FakeReasoningClient()
        orch = _orchestrator(client, repository=repo, writer=DebouncedWriter(repo, delay_seconds=30))

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.get_state("s1")
            await orch.flush("s1")

        asyncio.run(scenario())
        assert client.requests == []
        data = asyncio.run(repo.load("s1", StateKind.REASONING.value))
        assert data["groups"]["g1"]["verdict"] == "unknown"

    def test_flush_all_covers_every_session(self, sql_plan, tmp_path):
        repo = FileStateRepository(tmp_path)
        orch = _orchestrator(None, repository=repo, writer=DebouncedWriter(repo, delay_seconds=30))

        async def scenario():
            await orch.set_active_plan(sql_plan)
            await orch.enqueue_chunk("a", TranscriptFragment(session_id="a", text="SQL"))
            await orch.enqueue_chunk("b", TranscriptFragment(session_id="b", text="SQL"))
            await orch.flush_all()

        asyncio.run(scenario())
        for session_id in ("a", "b"):
            data = asyncio.run(repo.load(session_id, StateKind.REASONING.value))
            assert data["groups"]["g1"]["source"] == "heuristic"
