"""
Tests: verdict scales, group merge trust ordering and the heuristic evaluator.

Run with:
    pytest jd_coach/tests/test_reasoning.py -v
"""

import pytest

from jd_coach.models.enums import VerdictSource
from jd_coach.models.schemas import (
    ConflictDetail,
    GroupEvaluation,
    GroupVerdictState,
    TranscriptFragment,
)
from jd_coach.reasoning.heuristic import HeuristicEvaluator, extract_keywords
from jd_coach.reasoning.merge import merge_group
from jd_coach.reasoning.verdicts import (
    blend_confidence,
    confidence_scale,
    normalize_verdict,
    score_to_verdict,
    verdict_strength,
)

AT = "2024-05-01T10:00:00+00:00"


def _group(verdict="unknown", confidence=0, source=None, rationale=None, **extra):
    return GroupVerdictState(
        id="g1", title="SQL", verdict=verdict, confidence=confidence,
        source=source, rationale=rationale, **extra,
    )


def _chunks(*texts):
    return [TranscriptFragment(session_id="s1", chunk_id=f"c{i}", text=t) for i, t in enumerate(texts)]


class TestVerdictScale:
    def test_normalize(self):
        assert normalize_verdict("Needs More") == "needs_more"
        assert normalize_verdict(None) == "unknown"
        assert normalize_verdict("  ") == "unknown"

    def test_strength_ordering(self):
        assert verdict_strength("strong_yes") > verdict_strength("satisfied") > verdict_strength("likely")
        assert verdict_strength("unknown") > verdict_strength("needs_more") > verdict_strength("risk")
        assert verdict_strength("something-new") == 0

    @pytest.mark.parametrize(
        "score,expected",
        [(0.45, "satisfied"), (0.3, "likely"), (0.1, "needs_more"), (0.0, "unknown")],
    )
    def test_score_to_verdict(self, score, expected):
        assert score_to_verdict(score).value == expected

    @pytest.mark.parametrize(
        "values,expected",
        [([0.2, 0.8], 100.0), ([3, 4.5], 20.0), ([12, 85], 1.0), ([], 1.0), ([0], 1.0)],
    )
    def test_confidence_scale(self, values, expected):
        assert confidence_scale(values) == expected

    def test_blend_rises_cautiously_and_falls_readily(self):
        assert blend_confidence(40, 80, "increase") == 64
        assert blend_confidence(60, 20, "decrease") == 32

    def test_blend_never_moves_against_trend(self):
        # verdict strengthened but the raw confidence dropped
        assert blend_confidence(50, 30, "increase") == 54
        assert blend_confidence(50, 70, "decrease") == 46


class TestMergeGroup:
    def test_heuristic_seeds_empty_group(self):
        merged = merge_group(_group(), GroupEvaluation(group_id="g1", verdict="likely", confidence=40),
                             VerdictSource.HEURISTIC, AT)
        assert (merged.verdict, merged.confidence, merged.source) == ("likely", 40, VerdictSource.HEURISTIC)
        assert merged.history[0].from_ == "unknown"
        assert merged.last_updated == AT

    def test_heuristic_on_heuristic_uses_hysteresis(self):
        existing = _group("likely", 40, VerdictSource.HEURISTIC)
        merged = merge_group(existing, GroupEvaluation(group_id="g1", verdict="satisfied", confidence=80),
                             VerdictSource.HEURISTIC, AT)
        assert merged.verdict == "satisfied"
        assert merged.confidence == 64

    def test_heuristic_cannot_override_authoritative(self):
        existing = _group("likely", 70, VerdictSource.CLAUDE, rationale="From the evaluator")
        update = GroupEvaluation(group_id="g1", verdict="satisfied", confidence=100, rationale="keywords")
        assert merge_group(existing, update, VerdictSource.HEURISTIC, AT) is None

    def test_heuristic_backfills_missing_rationale_only(self):
        existing = _group("likely", 70, VerdictSource.CLAUDE)
        update = GroupEvaluation(group_id="g1", verdict="risk", confidence=5, rationale="keywords")
        merged = merge_group(existing, update, VerdictSource.HEURISTIC, AT)
        assert (merged.verdict, merged.confidence, merged.source) == ("likely", 70, VerdictSource.CLAUDE)
        assert merged.rationale == "keywords"

    def test_authoritative_replaces_even_lower_confidence(self):
        existing = _group("satisfied", 90, VerdictSource.CLAUDE, rationale="old")
        update = GroupEvaluation(group_id="g1", verdict="needs_more", confidence=20, rationale="correction")
        merged = merge_group(existing, update, VerdictSource.CLAUDE, AT)
        assert (merged.verdict, merged.confidence, merged.rationale) == ("needs_more", 20, "correction")

    def test_conflicts_replaced_not_appended(self):
        existing = _group(conflicts=[ConflictDetail(summary="old")])
        kept = merge_group(existing, GroupEvaluation(group_id="g1"), VerdictSource.CLAUDE, AT)
        assert [c.summary for c in kept.conflicts] == ["old"]
        cleared = merge_group(existing, GroupEvaluation(group_id="g1", conflicts=[]), VerdictSource.CLAUDE, AT)
        assert cleared.conflicts == []

    def test_quotes_newest_first_deduped_and_capped(self):
        existing = _group(notable_quotes=["q1", "q2", "q3"])
        update = GroupEvaluation(group_id="g1", notable_quotes=["q4", "q1", "q5", "q6"])
        merged = merge_group(existing, update, VerdictSource.CLAUDE, AT)
        assert merged.notable_quotes == ["q4", "q1", "q5", "q6", "q2"]

    def test_history_is_bounded(self):
        state = _group()
        for i in range(12):
            verdict = "likely" if i % 2 == 0 else "risk"
            state = merge_group(state, GroupEvaluation(group_id="g1", verdict=verdict, confidence=50),
                                VerdictSource.CLAUDE, AT)
        assert len(state.history) == 10
        assert state.history[0].to == "risk"

    def test_existing_is_not_mutated(self):
        existing = _group("likely", 40, VerdictSource.HEURISTIC)
        merge_group(existing, GroupEvaluation(group_id="g1", verdict="satisfied", confidence=90),
                    VerdictSource.CLAUDE, AT)
        assert (existing.verdict, existing.confidence) == ("likely", 40)


class TestHeuristicEvaluator:
    def test_keywords_drop_stop_words(self):
        assert extract_keywords("The design of SQL and the SQL schema") == ["design", "sql", "schema"]

    def test_sql_batch_scenario(self, sql_plan):
        evaluator = HeuristicEvaluator(sql_plan)
        result = evaluator.evaluate(_chunks("I used SQL daily", "mostly joins and indexes", "no NoSQL experience"))
        group = result.groups[0]
        assert group.group_id == "g1"
        assert group.verdict in {"likely", "satisfied"}
        assert "I used SQL daily" in group.notable_quotes
        assert group.rationale == 'Candidate mentioned: "I used SQL daily"'
        assert group.conflicts == []

    def test_silence_gives_unknown_with_follow_up(self, sql_plan):
        group = HeuristicEvaluator(sql_plan).evaluate(_chunks("Let me think")).groups[0]
        assert group.verdict == "unknown"
        assert group.confidence == 0
        assert group.follow_up_question == "Which SQL databases have you tuned?"
        assert group.rationale == "Comfortable writing and tuning SQL"

    def test_skips_authoritative_groups(self, two_group_plan):
        current = {"g1": GroupVerdictState(id="g1", title="SQL", source=VerdictSource.CLAUDE)}
        result = HeuristicEvaluator(two_group_plan).evaluate(_chunks("SQL and Kubernetes"), current)
        assert [g.group_id for g in result.groups] == ["g2"]

    def test_no_plan_evaluates_nothing(self):
        assert HeuristicEvaluator().evaluate(_chunks("SQL")).groups == []
