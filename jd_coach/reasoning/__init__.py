"""Reasoning — evidence tracking, verdict derivation, merge and heuristics."""

from jd_coach.reasoning.evidence_state import EvidenceTracker
from jd_coach.reasoning.aggregator import ReasoningAggregator
from jd_coach.reasoning.heuristic import HeuristicEvaluator
from jd_coach.reasoning.merge import merge_group

__all__ = ["EvidenceTracker", "ReasoningAggregator", "HeuristicEvaluator", "merge_group"]
