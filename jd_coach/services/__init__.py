"""Services — LLM access, external evaluators, events, audit and reporting."""

from jd_coach.services.event_bus import EventBus
from jd_coach.services.audit_service import AuditService
from jd_coach.services.llm_service import LLMService
from jd_coach.services.reasoning_client import ReasoningServiceClient, ReasoningServiceError
from jd_coach.services.plan_service import EvaluationPlanService, PlanGenerationError
from jd_coach.services.requirement_extraction_service import (
    RequirementExtractionService,
    RequirementExtractionError,
)
from jd_coach.services.report_projector import SessionReportProjector

__all__ = [
    "EventBus",
    "AuditService",
    "LLMService",
    "ReasoningServiceClient",
    "ReasoningServiceError",
    "EvaluationPlanService",
    "PlanGenerationError",
    "RequirementExtractionService",
    "RequirementExtractionError",
    "SessionReportProjector",
]
