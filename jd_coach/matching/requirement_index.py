"""
Requirement index — tokenizes job-description requirements once so every
transcript fragment can be scored against them with set lookups.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from jd_coach.models.schemas import Requirement

logger = logging.getLogger(__name__)

_SPLIT = re.compile(r"[^a-z0-9+#.\-]+")
_MIN_TOKEN_LENGTH = 2


def tokenize(text: str | None) -> list[str]:
    """
    Lower-case *text* and split it into tokens of ``[a-z0-9+#.-]``.

    Sentence punctuation hanging off a token (``"sql."``) is trimmed so
    that it still matches ``"sql"``; inner dots and hyphens survive
    (``"node.js"``, ``"ci-cd"``). Tokens shorter than 2 chars are dropped.
    """
    if not text:
        return []
    tokens: list[str] = []
    for raw in _SPLIT.split(text.lower()):
        token = raw.strip(".-")
        if len(token) >= _MIN_TOKEN_LENGTH:
            tokens.append(token)
    return tokens


@dataclass(frozen=True)
class IndexedRequirement:
    requirement: Requirement
    position: int
    tokens: tuple[str, ...]  # unique, in first-seen order
    token_set: frozenset[str]


class RequirementIndex:
    """Token index over the active requirement set."""

    def __init__(self) -> None:
        self._entries: list[IndexedRequirement] = []
        self._by_id: dict[str, IndexedRequirement] = {}

    def index(self, requirements: list[Requirement]) -> None:
        """Replace the indexed set wholesale (a new JD supersedes the old one)."""
        entries: list[IndexedRequirement] = []
        by_id: dict[str, IndexedRequirement] = {}
        for position, req in enumerate(requirements):
            corpus = " ".join([req.title, req.description, *req.competencies])
            unique = tuple(dict.fromkeys(tokenize(corpus)))
            if not unique:
                logger.warning(f"[index] Requirement {req.id} has no indexable tokens — skipped")
                continue
            entry = IndexedRequirement(
                requirement=req,
                position=position,
                tokens=unique,
                token_set=frozenset(unique),
            )
            entries.append(entry)
            by_id[req.id] = entry

        self._entries = entries
        self._by_id = by_id
        logger.info(f"[index] Indexed {len(entries)} of {len(requirements)} requirements")

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def get(self, requirement_id: str) -> Requirement | None:
        entry = self._by_id.get(requirement_id)
        return entry.requirement if entry else None

    @property
    def requirements(self) -> list[Requirement]:
        return [entry.requirement for entry in self._entries]
