"""Orchestration — evaluation sessions, batch orchestrator, CopilotService."""

from jd_coach.orchestration.session import EvaluationSession
from jd_coach.orchestration.batch_orchestrator import BatchEvaluationOrchestrator
from jd_coach.orchestration.copilot import CopilotService, JobDescriptionTooLong, build_copilot

__all__ = [
    "EvaluationSession",
    "BatchEvaluationOrchestrator",
    "CopilotService",
    "JobDescriptionTooLong",
    "build_copilot",
]
