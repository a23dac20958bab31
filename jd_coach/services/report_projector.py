"""
Session Report Projector — flattens reconciled session state into the
exportable report and its plain-text rendering.

Pure transforms: no merge logic, no I/O.
"""

from __future__ import annotations

from jd_coach.models.schemas import EvaluationPlan, GroupReport, SessionReport
from jd_coach.models.state import SessionState

MAX_SNIPPETS = 5
TEXT_QUOTES = 2


def fit_band(overall_fit: int) -> str:
    if overall_fit >= 70:
        return "strong"
    if overall_fit >= 40:
        return "moderate"
    return "low"


class SessionReportProjector:
    def project(self, state: SessionState, plan: EvaluationPlan | None = None) -> SessionReport:
        """Groups follow plan order; groups the plan does not know keep insertion order after them."""
        order = {group.id: position for position, group in enumerate(plan.groups)} if plan else {}
        ranked = sorted(
            enumerate(state.groups.values()),
            key=lambda item: (order.get(item[1].id, len(order)), item[0]),
        )

        groups = [
            GroupReport(
                id=group.id,
                title=group.title or group.id,
                verdict=group.verdict or "unknown",
                confidence=group.confidence,
                rationale=group.rationale or "",
                follow_up_question=group.follow_up_question,
                evidence_snippets=group.notable_quotes[:MAX_SNIPPETS],
                conflicts=[c.summary or "Conflict detected" for c in group.conflicts],
            )
            for _, group in ranked
        ]
        return SessionReport(
            session_id=state.session_id,
            overall_fit=state.overall_fit,
            fit_band=fit_band(state.overall_fit),
            updated_at=state.updated_at,
            groups=groups,
        )

    def render_text(self, report: SessionReport) -> str:
        lines = [
            f"Session: {report.session_id or 'N/A'}",
            f"Overall Fit: {report.overall_fit}%",
            f"Fit Band: {report.fit_band}",
            f"Updated: {report.updated_at or 'N/A'}",
            "",
        ]
        if not report.groups:
            lines.append("No evaluation data yet.")
            lines.append("")

        for group in report.groups:
            lines.append(f"- [{group.verdict.upper()}] {group.title} — {group.confidence}%")
            if group.rationale:
                lines.append(f"  Rationale: {group.rationale}")
            if group.follow_up_question:
                lines.append(f"  Follow-up: {group.follow_up_question}")
            if group.conflicts:
                lines.append(f"  Conflict: {group.conflicts[0]}")
            if group.evidence_snippets:
                lines.append("  Quotes:")
                for quote in group.evidence_snippets[:TEXT_QUOTES]:
                    lines.append(f"    • {quote}")
            lines.append("")

        return "\n".join(lines)
