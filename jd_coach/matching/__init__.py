"""Matching — RequirementIndex, EvidenceMatcher."""

from jd_coach.matching.requirement_index import RequirementIndex, tokenize
from jd_coach.matching.evidence_matcher import EvidenceMatcher

__all__ = ["RequirementIndex", "EvidenceMatcher", "tokenize"]
