"""Workflow registry. Validates, stores and publishes workflow definitions."""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

import pydantic

from response_engine.errors import ValidationError, WorkflowNotFoundError
from response_engine.models.collaborators import WorkflowRepository
from response_engine.models.workflow import Workflow
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)


def validate_workflow(workflow: Workflow) -> List[str]:
    """Return every semantic problem with *workflow*; empty means valid."""
    problems: List[str] = []

    if not workflow.id:
        problems.append("workflow id must not be empty")

    if not workflow.trigger_conditions:
        problems.append("workflow must have at least one trigger condition")
    for i, cond in enumerate(workflow.trigger_conditions):
        if not 0.0 <= cond.weight <= 1.0:
            problems.append(f"trigger_conditions[{i}].weight must be in [0, 1], got {cond.weight}")
    if workflow.trigger_conditions and not any(c.weight > 0 for c in workflow.trigger_conditions):
        problems.append("at least one trigger condition must have weight > 0")

    if not workflow.steps:
        problems.append("workflow must have at least one step")
    seen: set = set()
    for i, step in enumerate(workflow.steps):
        if step.id in seen:
            problems.append(f"steps[{i}].id '{step.id}' is duplicated")
        seen.add(step.id)
        if step.timeout <= 0:
            problems.append(f"steps[{i}] ({step.id}) timeout must be > 0, got {step.timeout}")
        if step.retry_count < 0:
            problems.append(
                f"steps[{i}] ({step.id}) retry_count must be >= 0, got {step.retry_count}"
            )
        if not step.action:
            problems.append(f"steps[{i}] ({step.id}) action must not be empty")

    return problems


class WorkflowRegistry:
    """Read-mostly store of published workflows.

    Readers get an immutable snapshot mapping; writers build a new mapping
    under ``_write_lock`` and swap it in with a single assignment, so
    ``get``/``list_active`` never observe a half-registered workflow.
    """

    def __init__(self, repository: Optional[WorkflowRepository] = None) -> None:
        self._repository = repository
        self._write_lock = threading.Lock()
        self._snapshot: Mapping[str, Workflow] = MappingProxyType({})
        if repository is not None:
            loaded = {wf.id: wf for wf in repository.list()}
            # Keep registration order stable across restarts
            ordered = sorted(loaded.values(), key=lambda wf: (wf.created_at, wf.id))
            self._snapshot = MappingProxyType({wf.id: wf for wf in ordered})
            if ordered:
                logger.info("registry_loaded", workflow_count=len(ordered))

    def register(self, workflow: Union[Workflow, Mapping[str, Any]]) -> Workflow:
        """Validate and publish *workflow*.

        Raises:
            ValidationError: When the definition is malformed, or when the id is
                already published with a different definition.
        """
        if not isinstance(workflow, Workflow):
            try:
                workflow = Workflow.model_validate(workflow)
            except pydantic.ValidationError as exc:
                problems = [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
                ]
                raise ValidationError("Malformed workflow definition", problems) from exc

        problems = validate_workflow(workflow)
        if problems:
            logger.warning("workflow_rejected", workflow_id=workflow.id, problems=problems)
            raise ValidationError(f"Workflow '{workflow.id}' is invalid: {problems[0]}", problems)

        with self._write_lock:
            existing = self._snapshot.get(workflow.id)
            if existing is not None:
                if existing.definition() == workflow.definition():
                    return existing
                raise ValidationError(
                    f"Workflow '{workflow.id}' is already published; "
                    "register the change under a new id"
                )
            if self._repository is not None:
                self._repository.put(workflow)
            updated: Dict[str, Workflow] = dict(self._snapshot)
            updated[workflow.id] = workflow
            self._snapshot = MappingProxyType(updated)

        logger.info(
            "workflow_registered",
            workflow_id=workflow.id,
            steps=len(workflow.steps),
            conditions=len(workflow.trigger_conditions),
        )
        return workflow

    def get(self, workflow_id: str) -> Workflow:
        workflow = self._snapshot.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def list_active(self) -> List[Workflow]:
        """Active workflows in registration order."""
        return [wf for wf in self._snapshot.values() if wf.active]

    def list_all(self) -> List[Workflow]:
        return list(self._snapshot.values())

    def deactivate(self, workflow_id: str) -> Workflow:
        """Stop *workflow_id* from triggering. Deactivating twice is a no-op."""
        with self._write_lock:
            current = self._snapshot.get(workflow_id)
            if current is None:
                raise WorkflowNotFoundError(workflow_id)
            if not current.active:
                return current
            deactivated = current.model_copy(update={"active": False})
            if self._repository is not None:
                self._repository.put(deactivated)
            updated = dict(self._snapshot)
            updated[workflow_id] = deactivated
            self._snapshot = MappingProxyType(updated)

        logger.info("workflow_deactivated", workflow_id=workflow_id)
        return deactivated

    def __len__(self) -> int:
        return len(self._snapshot)
