"""
Data schemas shared by the matcher, the reasoning paths and the report.

Every model serializes with camelCase aliases (``model_dump(by_alias=True)``)
because that is the shape the UI, the persisted files and the external
reasoning service exchange. Python code uses the snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import (
    AudioSource,
    EvidenceStatus,
    Importance,
    Priority,
    Verdict,
    VerdictSource,
)
from jd_coach.utils.scoring import clamp_confidence


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ── Job description ──────────────────────────────────────


class Requirement(CamelModel):
    """An atomic hiring criterion extracted from a job description."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    competencies: list[str] = Field(default_factory=list)
    must_have: bool = False
    nice_to_have: bool = False
    probing_questions: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _lenient_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            v = value.strip().lower()
            return v if v in {p.value for p in Priority} else Priority.MEDIUM
        return value


class EvaluationGroup(CamelModel):
    """A plan-level group of requirements with its signal vocabulary."""
    id: str
    title: str
    importance: Importance = Importance.MUST_HAVE
    criteria: list[str] = Field(default_factory=list)
    success_signals: list[str] = Field(default_factory=list)
    risk_signals: list[str] = Field(default_factory=list)
    conflict_signals: list[str] = Field(default_factory=list)
    probing_questions: list[str] = Field(default_factory=list)
    success_summary: str = ""
    risk_summary: str = ""

    @field_validator("importance", mode="before")
    @classmethod
    def _default_must_have(cls, value: Any) -> Any:
        # Anything that is not explicitly nice-to-have is treated as must-have
        if isinstance(value, str) and value.strip().lower() == Importance.NICE_TO_HAVE.value:
            return Importance.NICE_TO_HAVE
        if isinstance(value, Importance):
            return value
        return Importance.MUST_HAVE

    @property
    def is_must_have(self) -> bool:
        return self.importance == Importance.MUST_HAVE

    @property
    def fallback_rationale(self) -> str:
        return self.success_summary or (self.criteria[0] if self.criteria else "") or self.title


class EvaluationPlan(CamelModel):
    session_id: Optional[str] = None
    generated_at: str = Field(default_factory=utc_now_iso)
    groups: list[EvaluationGroup] = Field(default_factory=list)

    def group(self, group_id: str) -> Optional[EvaluationGroup]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None


# ── Transcript ───────────────────────────────────────────


class TranscriptFragment(CamelModel):
    """One timestamped unit of transcribed speech."""
    chunk_id: str = ""
    session_id: str = ""
    source: AudioSource = AudioSource.MICROPHONE
    text: str = ""
    timestamp: str = Field(default_factory=utc_now_iso)
    latency_ms: Optional[float] = None

    @field_validator("source", mode="before")
    @classmethod
    def _normalize_source(cls, value: Any) -> Any:
        if isinstance(value, str):
            v = value.strip().lower()
            if v in ("speaker", "system", "system-audio", "system_audio", "loopback"):
                return AudioSource.SPEAKER
            return AudioSource.MICROPHONE
        return value

    @field_validator("session_id", "text", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


# ── Requirement-level evidence ───────────────────────────


class RequirementMatch(CamelModel):
    id: str
    score: float
    matched_tokens: list[str] = Field(default_factory=list)


class EvidenceEntry(CamelModel):
    chunk_id: str = ""
    text: str
    score: float
    source: AudioSource = AudioSource.MICROPHONE
    timestamp: str = ""


class RequirementEvidenceState(CamelModel):
    id: str
    confidence: int = 0
    status: EvidenceStatus = EvidenceStatus.UNKNOWN
    evidence: list[EvidenceEntry] = Field(default_factory=list)
    observations: int = 0
    top_score: float = 0.0
    last_updated: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_confidence(value)


class VerdictTransition(CamelModel):
    at: str
    from_: str = Field(alias="from")
    to: str


class RequirementSummary(CamelModel):
    """Aggregator output for one requirement."""
    id: str
    title: str
    verdict: Verdict = Verdict.UNKNOWN
    confidence: int = 0
    status: EvidenceStatus = EvidenceStatus.UNKNOWN
    observations: int = 0
    top_score: float = 0.0
    must_have: bool = False
    rationale: str = ""
    follow_up_question: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)
    history: list[VerdictTransition] = Field(default_factory=list)
    last_updated: Optional[str] = None


# ── Group-level verdicts ─────────────────────────────────


class ConflictDetail(CamelModel):
    summary: str = ""
    evidence: list[Any] = Field(default_factory=list)
    recommended_action: Optional[str] = None


class GroupVerdictState(CamelModel):
    id: str
    title: str
    verdict: str = Verdict.UNKNOWN.value
    confidence: int = 0
    rationale: Optional[str] = None
    follow_up_question: Optional[str] = None
    notable_quotes: list[str] = Field(default_factory=list)
    conflicts: list[ConflictDetail] = Field(default_factory=list)
    last_updated: Optional[str] = None
    source: Optional[VerdictSource] = None
    history: list[VerdictTransition] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_confidence(value)

    @property
    def is_authoritative(self) -> bool:
        return self.source is not None and self.source != VerdictSource.HEURISTIC


class GroupEvaluation(CamelModel):
    """
    One group entry of a normalized evaluation result.

    ``None`` means "not provided" so the merge keeps the existing value;
    an empty ``conflicts`` list still replaces the live conflicts.
    """
    group_id: str
    verdict: Optional[str] = None
    confidence: Optional[int] = None
    rationale: Optional[str] = None
    follow_up_question: Optional[str] = None
    notable_quotes: list[str] = Field(default_factory=list)
    conflicts: Optional[list[ConflictDetail]] = None


class ReasoningResponse(CamelModel):
    overall_fit: Optional[int] = None
    groups: list[GroupEvaluation] = Field(default_factory=list)


# ── Append-only event records ────────────────────────────


class ConflictRecord(CamelModel):
    model_config = ConfigDict(frozen=True)

    at: str = Field(default_factory=utc_now_iso)
    session_id: str
    group_id: str
    group_title: str = ""
    summary: str = ""
    evidence: list[Any] = Field(default_factory=list)
    recommended_action: Optional[str] = None


class GuidancePrompt(CamelModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    requirement_id: str
    requirement_title: str = ""
    question: str
    priority: str = "medium"  # "high" | "medium"
    must_have: bool = False
    source: str = "batch"  # "aggregator" | "batch"
    created_at: str = Field(default_factory=utc_now_iso)


# ── Report ───────────────────────────────────────────────


class GroupReport(CamelModel):
    id: str
    title: str
    verdict: str
    confidence: int
    rationale: str = ""
    follow_up_question: Optional[str] = None
    evidence_snippets: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)


class SessionReport(CamelModel):
    session_id: str
    overall_fit: int = 0
    fit_band: str = "low"
    updated_at: Optional[str] = None
    groups: list[GroupReport] = Field(default_factory=list)
