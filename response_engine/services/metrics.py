"""
Execution metrics.

Per-execution
-------------
``compute`` derives durations (seconds) and counts from the step results.
Containment and recovery times are only *measured* when steps carry an
explicit ``phase`` tag; otherwise they fall back to fixed fractions of the
total duration (``CONTAIN_FRACTION`` / ``RECOVER_FRACTION``).  The fallback
is an estimate with no phase-boundary data behind it and is flagged as
``phase_timing="estimated"``.

Fleet
-----
``aggregate`` summarises executions started within a window.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from response_engine.models.execution import (
    Execution,
    ExecutionStatus,
    Metrics,
    StepResult,
    StepStatus,
)

CONTAIN_FRACTION: float = 0.3
RECOVER_FRACTION: float = 0.6

CONTAINMENT_PHASE = "containment"
RECOVERY_PHASE = "recovery"

WINDOWS: Dict[str, timedelta] = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class WorkflowPerformance(BaseModel):
    workflow_id: str
    execution_count: int
    success_rate: float
    average_duration: float


class FleetMetrics(BaseModel):
    window: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    automation_percentage: float = 0.0
    workflow_performance: List[WorkflowPerformance] = Field(default_factory=list)


def _cumulative_through_phase(results: List[StepResult], phase: str) -> Optional[float]:
    last = None
    for index, result in enumerate(results):
        if result.phase == phase:
            last = index
    if last is None:
        return None
    return sum(r.duration for r in results[: last + 1])


def _parse_window(window: Union[str, timedelta, None]) -> tuple:
    if window is None:
        return "all", None
    if isinstance(window, timedelta):
        return f"{int(window.total_seconds())}s", window
    if window not in WINDOWS:
        raise ValueError(f"Unknown window '{window}', expected one of {sorted(WINDOWS)}")
    return window, WINDOWS[window]


class MetricsAggregator:
    """Pure functions over executions; holds no state."""

    def compute(self, execution: Execution) -> Metrics:
        results = execution.step_results
        total = sum(r.duration for r in results)
        automated = sum(1 for r in results if not r.approval_required)

        contain = _cumulative_through_phase(results, CONTAINMENT_PHASE)
        recover = _cumulative_through_phase(results, RECOVERY_PHASE)
        measured = contain is not None or recover is not None

        return Metrics(
            total_duration=total,
            steps_executed=sum(1 for r in results if r.status == StepStatus.COMPLETED),
            steps_failed=sum(1 for r in results if r.status == StepStatus.FAILED),
            automation_percentage=automated / len(results) if results else 0.0,
            time_to_respond=results[0].duration if results else 0.0,
            time_to_contain=contain if contain is not None else total * CONTAIN_FRACTION,
            time_to_recover=recover if recover is not None else total * RECOVER_FRACTION,
            phase_timing="measured" if measured else "estimated",
        )

    def aggregate(
        self,
        executions: Iterable[Execution],
        window: Union[str, timedelta, None] = "30d",
        now: Optional[datetime] = None,
    ) -> FleetMetrics:
        label, span = _parse_window(window)
        now = now or datetime.now(timezone.utc)
        selected = [e for e in executions if span is None or e.started_at > now - span]

        total = len(selected)
        completed = [e for e in selected if e.status == ExecutionStatus.COMPLETED]
        failed = [e for e in selected if e.status == ExecutionStatus.FAILED]

        by_workflow: Dict[str, List[Execution]] = defaultdict(list)
        for execution in selected:
            by_workflow[execution.workflow_id].append(execution)

        performance = [
            WorkflowPerformance(
                workflow_id=workflow_id,
                execution_count=len(group),
                success_rate=sum(1 for e in group if e.status == ExecutionStatus.COMPLETED)
                / len(group),
                average_duration=sum(e.metrics.total_duration for e in group) / len(group),
            )
            for workflow_id, group in by_workflow.items()
        ]
        performance.sort(key=lambda p: (-p.execution_count, p.workflow_id))

        return FleetMetrics(
            window=label,
            total_executions=total,
            successful_executions=len(completed),
            failed_executions=len(failed),
            success_rate=len(completed) / total if total else 0.0,
            average_duration=sum(e.metrics.total_duration for e in selected) / total if total else 0.0,
            automation_percentage=(
                sum(e.metrics.automation_percentage for e in selected) / total if total else 0.0
            ),
            workflow_performance=performance,
        )
