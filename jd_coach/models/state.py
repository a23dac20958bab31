"""
Session state — the single object a session owns for the group-level path.

Design rules:
  1. Exactly one SessionState per (sanitized) session id.
  2. Every state-changing update goes through touch(), so ``revision``
     strictly increases.
  3. ``groups[*].conflicts`` hold the latest batch only; the conflict
     history lives in the append-only conflicts log.
"""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import Field

from .enums import Importance, Verdict
from .schemas import CamelModel, EvaluationPlan, GroupVerdictState, utc_now_iso
from jd_coach.utils.scoring import weighted_fit


class SessionState(CamelModel):
    session_id: str
    revision: int = 0
    updated_at: Optional[str] = None
    overall_fit: int = 0
    plan_version: Optional[str] = None
    groups: dict[str, GroupVerdictState] = Field(default_factory=dict)

    # ── Helpers ──────────────────────────────────────────

    def touch(self, at: str | None = None) -> int:
        """Record a state change and return the new revision."""
        self.revision += 1
        self.updated_at = at or utc_now_iso()
        return self.revision

    def recompute_overall_fit(self, importance_of: Callable[[str], Importance]) -> int:
        self.overall_fit = weighted_fit(
            (group.confidence, importance_of(group_id) == Importance.MUST_HAVE)
            for group_id, group in self.groups.items()
        )
        return self.overall_fit

    def reset_groups(self, plan: EvaluationPlan | None) -> None:
        """Replace every group with its placeholder for *plan*."""
        self.groups = placeholder_groups(plan)
        self.plan_version = plan.generated_at if plan else None
        self.overall_fit = 0


def placeholder_groups(plan: EvaluationPlan | None) -> dict[str, GroupVerdictState]:
    groups: dict[str, GroupVerdictState] = {}
    if plan is None:
        return groups
    for group in plan.groups:
        groups[group.id] = GroupVerdictState(
            id=group.id,
            title=group.title,
            verdict=Verdict.UNKNOWN.value,
            confidence=0,
            rationale=group.fallback_rationale or None,
        )
    return groups
