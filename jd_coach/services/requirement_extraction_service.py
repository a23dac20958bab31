"""
Requirement Extraction Service — job description text → Requirement list.

The LLM extraction is preferred; any failure (no key, timeout, unusable
reply) falls back to a line-based heuristic so a JD always yields a
best-effort requirement set. Both origins produce the same model.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from pydantic import ValidationError

from jd_coach.models.enums import Priority
from jd_coach.models.schemas import Requirement
from jd_coach.services.llm_service import LLMService, extract_json

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You extract hiring requirements from a job description. Output strict JSON "
    '{"requirements": [...]} where each requirement has id, title, description, '
    "priority (low|medium|high), competencies[], mustHave, niceToHave and "
    "probingQuestions[] (one or two interview questions that would confirm it). "
    "Return JSON only."
)

MAX_REQUIREMENTS = 40
MAX_COMPETENCIES = 8
MIN_LINE_LENGTH = 12
TITLE_LENGTH = 80

_BULLET = re.compile(r"^\s*(?:[-*•▪◦‣·]|\d{1,2}[.)]|[a-zA-Z][.)])\s+")
_SENTENCE_END = re.compile(r"(?<=[.!?;])\s+")
_MUST = re.compile(r"\b(must|required|requires|requirement|need|needs|essential|mandatory)\b", re.I)
_NICE = re.compile(r"\b(preferred|plus|bonus|nice[\s-]to[\s-]have|desirable|ideally)\b", re.I)
_WORD = re.compile(r"[A-Za-z][A-Za-z0-9+#./-]*")
_TECHNICAL = re.compile(r"[0-9+#]|\.[a-z]|[a-z][A-Z]")

_COMMON_CAPITALISED = frozenset({
    "a", "an", "the", "and", "or", "you", "we", "our", "your", "must", "should",
    "strong", "experience", "ability", "knowledge", "familiarity", "proven",
    "excellent", "good", "solid", "deep", "bonus", "plus", "nice", "preferred",
    "required", "requirements", "responsibilities", "qualifications", "years",
})


class RequirementExtractionError(RuntimeError):
    """The LLM could not produce a usable requirement list."""


class RequirementExtractionService:
    def __init__(self, llm: LLMService | None = None, timeout_seconds: float = 45.0):
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    async def extract(self, jd_text: str) -> tuple[list[Requirement], str]:
        """Return ``(requirements, origin)`` where origin is "llm" or "heuristic"."""
        try:
            return await self.extract_with_llm(jd_text), "llm"
        except RequirementExtractionError as exc:
            logger.warning(f"[extract] Falling back to heuristic extraction: {exc}")
        requirements = heuristic_requirements(jd_text)
        logger.info(f"[extract] Heuristic extraction produced {len(requirements)} requirements")
        return requirements, "heuristic"

    async def extract_with_llm(self, jd_text: str) -> list[Requirement]:
        if not jd_text or not jd_text.strip():
            raise RequirementExtractionError("JD text is required")
        if self.llm is None or not self.llm.is_configured:
            raise RequirementExtractionError("LLM API key is not configured")

        try:
            raw = await self.llm.text_call(
                EXTRACTION_SYSTEM_PROMPT, f"Job Description:\n{jd_text}", timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise RequirementExtractionError("extraction timed out") from exc
        except Exception as exc:
            raise RequirementExtractionError(str(exc)) from exc

        data = extract_json(raw)
        if isinstance(data, dict):
            data = data.get("requirements")
        if not isinstance(data, list):
            raise RequirementExtractionError("model reply carried no requirements array")

        requirements = parse_requirements(data)
        if not requirements:
            raise RequirementExtractionError("model returned no requirements")
        logger.info(f"[extract] LLM extracted {len(requirements)} requirements")
        return requirements


def parse_requirements(items: list[Any]) -> list[Requirement]:
    """Validate raw requirement dicts, assigning ``REQ-###`` ids where missing."""
    requirements: list[Requirement] = []
    seen: set[str] = set()
    for raw in items:
        if not isinstance(raw, dict) or not (raw.get("title") or raw.get("description")):
            continue
        req_id = str(raw.get("id") or "")
        number = len(requirements) + 1
        while not req_id or req_id in seen:
            req_id = _requirement_id(number)
            number += 1
        data = {**raw, "id": req_id, "title": raw.get("title") or _title(raw["description"])}
        try:
            requirements.append(Requirement.model_validate(data))
        except ValidationError as exc:
            logger.debug(f"[extract] Skipping malformed requirement {req_id}: {exc}")
            continue
        seen.add(req_id)
    return requirements[:MAX_REQUIREMENTS]


# ── Heuristic extraction ─────────────────────────────────


def heuristic_requirements(jd_text: str) -> list[Requirement]:
    """
    Bullet / numbered lines become requirements; when the text has no
    bullets at all, sentences are used instead. Header-like lines (short,
    or ending in a colon) are skipped.
    """
    lines = [line for line in (jd_text or "").splitlines() if line.strip()]
    bulleted = [_BULLET.sub("", line).strip() for line in lines if _BULLET.match(line)]
    if bulleted:
        candidates = bulleted
    else:
        candidates = [s.strip() for line in lines for s in _SENTENCE_END.split(line.strip())]

    requirements: list[Requirement] = []
    seen: set[str] = set()
    for text in candidates:
        text = text.strip().rstrip(";")
        if len(text) < MIN_LINE_LENGTH or text.endswith(":"):
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)

        nice = bool(_NICE.search(text))
        must = not nice and bool(_MUST.search(text))
        priority = Priority.HIGH if must else Priority.LOW if nice else Priority.MEDIUM
        title = _title(text)
        requirements.append(
            Requirement(
                id=_requirement_id(len(requirements) + 1),
                title=title,
                description=text,
                priority=priority,
                competencies=_competencies(text),
                must_have=must,
                nice_to_have=nice,
                probing_questions=[f"Can you walk me through a recent example of: {title.rstrip('.')}?"],
            )
        )
        if len(requirements) >= MAX_REQUIREMENTS:
            break
    return requirements


def _requirement_id(number: int) -> str:
    return f"REQ-{number:03d}"


def _title(text: str) -> str:
    text = " ".join(str(text).split())
    if len(text) <= TITLE_LENGTH:
        return text
    cut = text[:TITLE_LENGTH].rsplit(" ", 1)[0]
    return cut.rstrip(",;:") + "…"


def _competencies(text: str) -> list[str]:
    """Technical-looking or capitalised tokens (not at the start of the line)."""
    found: list[str] = []
    for position, match in enumerate(_WORD.finditer(text)):
        word = match.group().rstrip(".,/-")
        if len(word) < 2 or word.lower() in _COMMON_CAPITALISED:
            continue
        technical = bool(_TECHNICAL.search(word)) or (word.isupper() and len(word) > 1)
        capitalised = position > 0 and word[0].isupper()
        if technical or capitalised:
            found.append(word)
    return list(dict.fromkeys(found))[:MAX_COMPETENCIES]
