"""Interfaces of the collaborators the engine consumes.

The engine never performs an isolation, sends a mail or opens a ticket
itself; it only talks to these protocols.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from response_engine.models.execution import Execution
from response_engine.models.incident import Incident
from response_engine.models.workflow import Workflow


class ActionResult(BaseModel):
    output: Any = None
    success: bool = True
    error: Optional[str] = None


class StepContext(BaseModel):
    """What an action sees about the execution it runs in."""

    execution_id: str
    incident_id: str
    workflow_id: str
    executed_by: str = "system"
    incident: Optional[Incident] = None
    # Outputs of earlier steps, keyed by step id
    outputs: Dict[str, Any] = Field(default_factory=dict)


class ApprovalDecision(BaseModel):
    approved: bool
    approver: Optional[str] = None


class ActionRegistry(Protocol):
    async def execute(
        self, action_id: str, parameters: Dict[str, Any], context: StepContext
    ) -> ActionResult:
        ...


class NotificationService(Protocol):
    async def notify(self, target: str, message: str) -> bool:
        ...


class ApprovalService(Protocol):
    async def wait_for_approval(
        self, execution_id: str, step_id: str, timeout: float
    ) -> ApprovalDecision:
        ...


class WorkflowRepository(Protocol):
    def get(self, workflow_id: str) -> Optional[Workflow]:
        ...

    def put(self, workflow: Workflow) -> None:
        ...

    def list(self) -> List[Workflow]:
        ...


class ExecutionRepository(Protocol):
    def get(self, execution_id: str) -> Optional[Execution]:
        ...

    def put(self, execution: Execution) -> None:
        ...

    def list(self) -> List[Execution]:
        ...
