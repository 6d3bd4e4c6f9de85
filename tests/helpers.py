"""Builders and fake collaborators used by the test modules."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from response_engine.models.collaborators import ActionResult, StepContext
from response_engine.models.execution import Execution, StepResult, StepStatus
from response_engine.models.workflow import Workflow, WorkflowStep
from response_engine.persistence.memory import InMemoryExecutionRepository
from response_engine.services.actions import InMemoryActionRegistry
from response_engine.services.approvals import ApprovalGate
from response_engine.services.coordinator import ExecutionCoordinator
from response_engine.services.registry import WorkflowRegistry


class RecordingActions:
    """Handlers for the test workflows; every call is appended to ``calls``."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def registry(self) -> InMemoryActionRegistry:
        registry = InMemoryActionRegistry()
        for action_id in ("ok", "fail", "raise", "slow", "undo_a", "undo_b"):
            registry.register(action_id, getattr(self, f"_{action_id}"))
        return registry

    async def _ok(self, parameters: Dict[str, Any], context: StepContext) -> dict:
        self.calls.append(parameters.get("tag", "ok"))
        return {"ok": True, "tag": parameters.get("tag")}

    async def _fail(self, parameters: Dict[str, Any], context: StepContext) -> ActionResult:
        self.calls.append(parameters.get("tag", "fail"))
        return ActionResult(success=False, error="boom")

    async def _raise(self, parameters: Dict[str, Any], context: StepContext) -> None:
        self.calls.append(parameters.get("tag", "raise"))
        raise RuntimeError("handler exploded")

    async def _slow(self, parameters: Dict[str, Any], context: StepContext) -> dict:
        self.calls.append(parameters.get("tag", "slow"))
        await asyncio.sleep(parameters.get("delay", 0.2))
        return {"slept": parameters.get("delay", 0.2)}

    async def _undo_a(self, parameters: Dict[str, Any], context: StepContext) -> dict:
        self.calls.append("undo_a")
        return {"undone": "a"}

    async def _undo_b(self, parameters: Dict[str, Any], context: StepContext) -> dict:
        self.calls.append("undo_b")
        return {"undone": "b"}


def make_step(step_id: str, action: str = "ok", **kwargs) -> WorkflowStep:
    params = dict(kwargs.pop("parameters", {}))
    params.setdefault("tag", step_id)
    return WorkflowStep(
        id=step_id,
        name=step_id.replace("_", " ").title(),
        action=action,
        parameters=params,
        **kwargs,
    )


def make_workflow(workflow_id: str = "wf_test", steps: Optional[list] = None, **kwargs) -> Workflow:
    kwargs.setdefault(
        "trigger_conditions",
        [{"type": "category", "operator": "equals", "value": "malware", "weight": 1.0}],
    )
    return Workflow(
        id=workflow_id,
        name=workflow_id.replace("_", " ").title(),
        steps=steps if steps is not None else [make_step("step_1")],
        **kwargs,
    )


def finished_result(
    step_id: str,
    seconds: float,
    status: StepStatus = StepStatus.COMPLETED,
    phase: Optional[str] = None,
    approval_required: bool = False,
    start: Optional[datetime] = None,
) -> StepResult:
    start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    result = StepResult(
        step_id=step_id, started_at=start, phase=phase, approval_required=approval_required
    )
    return result.finish(status, start + timedelta(seconds=seconds))


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until it is true; fail the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@dataclass
class Harness:
    coordinator: ExecutionCoordinator
    registry: WorkflowRegistry
    actions: RecordingActions
    approvals: ApprovalGate
    notifier: Any
    executions: InMemoryExecutionRepository

    def run(self, workflow: Workflow, incident_id: str = "INC-1") -> Execution:
        """Register *workflow*, run it to the end and return the final snapshot."""
        self.registry.register(workflow)

        async def _go():
            execution = await self.coordinator.start(incident_id, workflow.id, "tester")
            return await self.coordinator.wait(execution.id)

        return asyncio.run(_go())
