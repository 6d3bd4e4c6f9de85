"""Incident intake: trigger evaluation with optional auto-execution."""

from __future__ import annotations

from fastapi import APIRouter, Request

from response_engine.models.api import EvaluateRequest, EvaluateResponse, TriggerMatch
from response_engine.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/evaluate", response_model=EvaluateResponse, summary="Evaluate incident triggers")
async def evaluate_incident(body: EvaluateRequest, request: Request) -> EvaluateResponse:
    """Score the incident against every active workflow.

    With ``autoExecute`` the best-ranked match is started immediately.
    """
    coordinator = request.app.state.engine.coordinator
    incident = body.incident
    matches = coordinator.evaluate(incident)

    response = EvaluateResponse(
        incident_id=incident.id,
        matches=[
            TriggerMatch(
                workflow_id=workflow.id,
                name=workflow.name,
                priority=workflow.priority.value,
                score=score.score,
                max_score=score.max_score,
                ratio=round(score.ratio, 4),
            )
            for workflow, score in matches
        ],
    )
    if body.auto_execute and matches:
        best, _ = matches[0]
        execution = await coordinator.start(incident.id, best.id, body.executed_by, incident=incident)
        response.execution_id = execution.id
        logger.info(
            "incident_auto_executed",
            incident_id=incident.id,
            workflow_id=best.id,
            execution_id=execution.id,
        )
    return response
