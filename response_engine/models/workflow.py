"""Pydantic v2 models for workflow definitions.

Shape is checked here; semantic rules (weights in range, positive timeouts,
at least one step, ...) are enforced by ``WorkflowRegistry.register`` so a
bad definition can be built, inspected and then rejected with a
``ValidationError`` listing every problem.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class ConditionType(str, Enum):
    """Built-in trigger condition types.

    ``TriggerCondition.type`` is a plain string so that new types can be
    registered with the predicate registry without touching this enum.
    """

    SEVERITY = "severity"
    CATEGORY = "category"
    SOURCE = "source"
    KEYWORD = "keyword"
    CORRELATION = "correlation"
    TIME_BASED = "time_based"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    MATCHES_REGEX = "matches_regex"


class StepType(str, Enum):
    NOTIFICATION = "notification"
    INVESTIGATION = "investigation"
    CONTAINMENT = "containment"
    ERADICATION = "eradication"
    RECOVERY = "recovery"
    DOCUMENTATION = "documentation"
    CUSTOM = "custom"


class FailurePolicy(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"
    ESCALATE = "escalate"
    ROLLBACK = "rollback"


class TriggerCondition(BaseModel):
    """A single weighted predicate evaluated against an incident."""

    model_config = ConfigDict(frozen=True)

    type: str
    operator: ConditionOperator
    value: Union[str, float]
    weight: float = 1.0


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: StepType = StepType.CUSTOM
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    # Guards of the form "<step_id>.<status>", e.g. "isolate_host.completed"
    conditions: Tuple[str, ...] = ()
    timeout: float = 300.0  # seconds
    retry_count: int = 0
    on_failure: FailurePolicy = FailurePolicy.STOP
    requires_approval: bool = False
    assigned_role: str = ""
    # Optional explicit incident-response phase ("containment", "recovery", ...)
    phase: Optional[str] = None


class Workflow(BaseModel):
    """A reusable, ordered incident-response procedure.

    Frozen: publishing a change means registering a new id.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    trigger_conditions: Tuple[TriggerCondition, ...] = ()
    steps: Tuple[WorkflowStep, ...] = ()
    priority: Priority = Priority.MEDIUM
    estimated_duration: float = 60.0  # minutes
    success_criteria: Tuple[str, ...] = ()
    # Action ids undone last-first when a step fails under the rollback policy
    rollback_procedure: Tuple[str, ...] = ()
    active: bool = True
    created_by: str = "system"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def definition(self) -> Dict[str, Any]:
        """Behaviour-defining fields, used to detect conflicting re-registration."""
        return self.model_dump(mode="json", exclude={"active", "created_at", "created_by"})
