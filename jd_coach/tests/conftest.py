"""Shared fixtures: a small requirement set and a one-group SQL plan."""

import pytest

from jd_coach.models.schemas import EvaluationGroup, EvaluationPlan, Requirement


@pytest.fixture
def requirements():
    return [
        Requirement(
            id="REQ-001",
            title="SQL",
            must_have=True,
            probing_questions=["Tell me about the hardest SQL query you wrote."],
        ),
        Requirement(
            id="REQ-002",
            title="Python APIs",
            nice_to_have=True,
            probing_questions=["Which Python web frameworks have you used?"],
        ),
        Requirement(id="REQ-003", title="SQL reporting"),
    ]


@pytest.fixture
def sql_plan():
    return EvaluationPlan(
        groups=[
            EvaluationGroup(
                id="g1",
                title="SQL",
                importance="must-have",
                probing_questions=["Which SQL databases have you tuned?"],
                success_summary="Comfortable writing and tuning SQL",
            )
        ]
    )


@pytest.fixture
def two_group_plan():
    return EvaluationPlan(
        groups=[
            EvaluationGroup(id="g1", title="SQL", importance="must-have", criteria=["Writes SQL daily"]),
            EvaluationGroup(id="g2", title="Kubernetes", importance="nice-to-have"),
        ]
    )
