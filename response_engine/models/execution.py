"""Pydantic v2 models for workflow executions and their results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    step_id: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration: float = 0.0  # seconds, completed_at - started_at
    attempts: int = 0
    output: Any = None
    error: Optional[str] = None
    phase: Optional[str] = None

    approval_required: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    def finish(self, status: StepStatus, completed_at: datetime) -> "StepResult":
        self.status = status
        self.completed_at = completed_at
        self.duration = max((completed_at - self.started_at).total_seconds(), 0.0)
        return self


class Metrics(BaseModel):
    """Per-execution metrics. Durations are in seconds."""

    total_duration: float = 0.0
    steps_executed: int = 0
    steps_failed: int = 0
    automation_percentage: float = 0.0
    time_to_respond: float = 0.0
    time_to_contain: float = 0.0
    time_to_recover: float = 0.0
    # "estimated" when contain/recover are the fixed-fraction heuristic
    phase_timing: str = "estimated"


class EscalationRecord(BaseModel):
    execution_id: str
    step_id: str
    attempt: int
    target: str
    message: str
    notified: bool
    escalated_at: datetime
    error: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.execution_id, self.step_id, self.attempt)


class Execution(BaseModel):
    """One run of a workflow against one incident."""

    id: str
    incident_id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step: int = 0
    # Failed step results before this index have had their failure policy handled
    policy_applied_through: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    executed_by: str = "system"
    step_results: List[StepResult] = Field(default_factory=list)
    rollback_results: List[StepResult] = Field(default_factory=list)
    escalations: List[EscalationRecord] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)

    @property
    def failed_step(self) -> Optional[StepResult]:
        """The first failed step, if any."""
        for result in self.step_results:
            if result.status == StepStatus.FAILED:
                return result
        return None

    def result_for(self, step_id: str) -> Optional[StepResult]:
        for result in reversed(self.step_results):
            if result.step_id == step_id:
                return result
        return None
