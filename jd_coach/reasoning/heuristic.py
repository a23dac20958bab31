"""
Heuristic group evaluator — the fallback used when the external evaluator
is unavailable, times out, or returns nothing usable.

Each group's keyword set comes from its title, criteria and success/risk
signals (stop words removed). A batch scores a group by the best single
fragment's unique keyword hits over the keyword count.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from jd_coach.models.enums import Importance
from jd_coach.models.schemas import (
    EvaluationPlan,
    GroupEvaluation,
    GroupVerdictState,
    ReasoningResponse,
    TranscriptFragment,
)
from jd_coach.reasoning.verdicts import score_to_verdict
from jd_coach.utils.scoring import clamp_confidence

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "and", "a", "an", "or", "of", "in", "on", "for", "to", "with", "we", "our",
    "their", "that", "this", "these", "those", "by", "from", "at", "as", "be", "is",
    "are", "was", "were", "will", "can", "may", "might", "should", "could", "have",
    "has", "had", "into", "about", "across", "within", "without", "over", "under",
    "after", "before", "while", "when", "where", "who", "whom", "which", "what", "why",
    "how", "i", "me", "my", "you", "your", "they", "them", "it", "its", "us",
})

_SPLIT = re.compile(r"[^a-z0-9+#.]+")
_FOLLOW_UP_BELOW = 60


def _words(text: str | None) -> list[str]:
    if not text:
        return []
    return [w for w in (t.strip(".") for t in _SPLIT.split(text.lower())) if w]


def extract_keywords(text: str | None) -> list[str]:
    """Unique keywords (len > 2, no stop words) in first-seen order."""
    return list(dict.fromkeys(w for w in _words(text) if len(w) > 2 and w not in STOP_WORDS))


@dataclass
class GroupMeta:
    id: str
    title: str
    importance: Importance
    keywords: list[str]
    probing_questions: list[str] = field(default_factory=list)
    fallback_rationale: str = ""


@dataclass
class GroupScore:
    score: float = 0.0
    best_chunk: TranscriptFragment | None = None


def prepare_plan(plan: EvaluationPlan | None) -> dict[str, GroupMeta]:
    metas: dict[str, GroupMeta] = {}
    if plan is None:
        return metas
    for group in plan.groups:
        corpus = " ".join([group.title, *group.criteria, *group.success_signals, *group.risk_signals])
        metas[group.id] = GroupMeta(
            id=group.id,
            title=group.title,
            importance=group.importance,
            keywords=extract_keywords(corpus),
            probing_questions=list(group.probing_questions),
            fallback_rationale=group.fallback_rationale,
        )
    return metas


class HeuristicEvaluator:
    """Lexical-overlap evaluation seeded from the active plan."""

    def __init__(self, plan: EvaluationPlan | None = None):
        self.metas: dict[str, GroupMeta] = prepare_plan(plan)

    def set_plan(self, plan: EvaluationPlan | None) -> None:
        self.metas = prepare_plan(plan)

    def score_group(self, meta: GroupMeta, batch: list[TranscriptFragment]) -> GroupScore:
        if not meta.keywords:
            return GroupScore()
        keywords = set(meta.keywords)
        best = GroupScore()
        for chunk in batch:
            hits = {w for w in _words(chunk.text) if w in keywords}
            score = len(hits) / len(meta.keywords)
            if score > best.score:
                best = GroupScore(score=score, best_chunk=chunk)
        return best

    def evaluate(
        self,
        batch: list[TranscriptFragment],
        current: dict[str, GroupVerdictState] | None = None,
    ) -> ReasoningResponse:
        """
        Evaluate every plan group against *batch*. Groups already carrying
        an authoritative verdict in *current* are left out.
        """
        current = current or {}
        groups: list[GroupEvaluation] = []

        for group_id, meta in self.metas.items():
            existing = current.get(group_id)
            if existing is not None and existing.is_authoritative:
                continue

            result = self.score_group(meta, batch)
            confidence = clamp_confidence(max(0.0, min(1.0, result.score)) * 100)
            if result.best_chunk is not None:
                rationale = f'Candidate mentioned: "{result.best_chunk.text}"'
            else:
                rationale = meta.fallback_rationale
            follow_up = meta.probing_questions[0] if confidence < _FOLLOW_UP_BELOW and meta.probing_questions else None

            groups.append(
                GroupEvaluation(
                    group_id=group_id,
                    verdict=score_to_verdict(result.score).value,
                    confidence=confidence,
                    rationale=rationale,
                    follow_up_question=follow_up,
                    notable_quotes=[result.best_chunk.text] if result.best_chunk else [],
                    conflicts=[],
                )
            )

        logger.debug(
            "[heuristic] " + ", ".join(f"{g.group_id}={g.verdict}/{g.confidence}" for g in groups)
        )
        return ReasoningResponse(groups=groups)
