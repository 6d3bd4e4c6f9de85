"""Workflow and execution endpoints."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Request, status

from response_engine.models.api import (
    ApprovalRequest,
    ApprovalResponse,
    CancelRequest,
    ExecuteRequest,
    ExecuteResponse,
)
from response_engine.models.execution import Execution
from response_engine.models.workflow import Workflow
from response_engine.services.coordinator import ExecutionCoordinator
from response_engine.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _coordinator(request: Request) -> ExecutionCoordinator:
    return request.app.state.engine.coordinator


# ---------------------------------------------------------------------------
# Executions. Declared before the /{workflow_id} routes so "executions"
# is never read as a workflow id.
# ---------------------------------------------------------------------------


@router.get("/executions/{execution_id}", response_model=Execution, summary="Execution snapshot")
async def get_execution(execution_id: str, request: Request) -> Execution:
    """Current status, step index, step results and metrics of an execution."""
    return _coordinator(request).get(execution_id)


@router.post(
    "/executions/{execution_id}/cancel", response_model=Execution, summary="Cancel execution"
)
async def cancel_execution(execution_id: str, body: CancelRequest, request: Request) -> Execution:
    return await _coordinator(request).cancel(execution_id, body.reason)


@router.post(
    "/executions/{execution_id}/steps/{step_id}/approve",
    response_model=ApprovalResponse,
    summary="Approve a pending step",
)
async def approve_step(
    execution_id: str, step_id: str, body: ApprovalRequest, request: Request
) -> ApprovalResponse:
    released = _coordinator(request).approve(execution_id, step_id, body.approver)
    return ApprovalResponse(
        execution_id=execution_id, step_id=step_id, approved=True, released=released
    )


@router.post(
    "/executions/{execution_id}/steps/{step_id}/deny",
    response_model=ApprovalResponse,
    summary="Deny a pending step",
)
async def deny_step(
    execution_id: str, step_id: str, body: ApprovalRequest, request: Request
) -> ApprovalResponse:
    released = _coordinator(request).deny(execution_id, step_id, body.approver)
    return ApprovalResponse(
        execution_id=execution_id, step_id=step_id, approved=False, released=released
    )


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


@router.get("", response_model=List[Workflow], summary="List active workflows")
async def list_workflows(request: Request) -> List[Workflow]:
    return request.app.state.engine.registry.list_active()


@router.post(
    "", response_model=Workflow, status_code=status.HTTP_201_CREATED, summary="Register workflow"
)
async def register_workflow(payload: Dict[str, Any], request: Request) -> Workflow:
    """Validate and publish a workflow definition (422 with every problem on rejection)."""
    return request.app.state.engine.registry.register(payload)


@router.get("/{workflow_id}", response_model=Workflow, summary="Get workflow")
async def get_workflow(workflow_id: str, request: Request) -> Workflow:
    return request.app.state.engine.registry.get(workflow_id)


@router.post("/{workflow_id}/deactivate", response_model=Workflow, summary="Deactivate workflow")
async def deactivate_workflow(workflow_id: str, request: Request) -> Workflow:
    return request.app.state.engine.registry.deactivate(workflow_id)


@router.post(
    "/{workflow_id}/execute",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start an execution",
)
async def execute_workflow(
    workflow_id: str, body: ExecuteRequest, request: Request
) -> Dict[str, str]:
    """Start running *workflow_id* for an incident.

    The steps run in a background task; poll ``/executions/{id}`` for progress.
    """
    execution = await _coordinator(request).start(body.incident_id, workflow_id, body.executed_by)
    logger.info("execution_requested", workflow_id=workflow_id, execution_id=execution.id)
    return ExecuteResponse(execution_id=execution.id).model_dump(by_alias=True)
