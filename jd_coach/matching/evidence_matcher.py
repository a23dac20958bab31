"""
Evidence matcher — scores a transcript fragment against every indexed
requirement by token recall.

score = |requirement tokens ∩ fragment tokens| / |requirement tokens|

Recall against the requirement's own vocabulary (not Jaccard) means short,
specific requirements are not penalized for brevity.
"""

from __future__ import annotations

from jd_coach.matching.requirement_index import RequirementIndex, tokenize
from jd_coach.models.schemas import RequirementMatch

MAX_MATCHED_TOKENS = 5


class EvidenceMatcher:
    def __init__(self, index: RequirementIndex):
        self.index = index

    def match(self, text: str | None) -> list[RequirementMatch]:
        """Return non-zero matches, best first; ties keep requirement order."""
        fragment_tokens = set(tokenize(text))
        if not fragment_tokens:
            return []

        matches: list[RequirementMatch] = []
        for entry in self.index:
            hits = [token for token in entry.tokens if token in fragment_tokens]
            if not hits:
                continue
            matches.append(
                RequirementMatch(
                    id=entry.requirement.id,
                    score=len(hits) / len(entry.tokens),
                    matched_tokens=hits[:MAX_MATCHED_TOKENS],
                )
            )

        # sorted() is stable, and entries are iterated in requirement order
        return sorted(matches, key=lambda m: m.score, reverse=True)

    def top(self, text: str | None, limit: int = 5) -> list[RequirementMatch]:
        return self.match(text)[:limit]
