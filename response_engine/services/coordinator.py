"""Owns the execution lifecycle: trigger → steps → failure policy → metrics.

State machine
-------------
in_progress → completed   all steps done, none failed
in_progress → failed      a step failed (stop / rollback / escalation abort,
                          or any failed step under continue/escalate)
in_progress → cancelled   ``cancel`` before the run reached a terminal state

The execution is persisted after every transition, so a crash leaves a
snapshot whose ``current_step`` tells ``resume`` where to pick up.

Mutations of one execution are serialized by a per-execution
``asyncio.Lock``.  The lock is *not* held while a step runs, which is what
lets ``cancel`` land while a step (or its approval wait) is in flight.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from response_engine.errors import ExecutionNotFoundError, ExecutionStateError
from response_engine.models.collaborators import ExecutionRepository, StepContext
from response_engine.models.execution import (
    EscalationRecord,
    Execution,
    ExecutionStatus,
    StepResult,
    StepStatus,
)
from response_engine.models.incident import Incident
from response_engine.models.workflow import FailurePolicy, Workflow, WorkflowStep
from response_engine.persistence.memory import InMemoryExecutionRepository
from response_engine.services.approvals import ApprovalGate
from response_engine.services.escalation import EscalationManager
from response_engine.services.metrics import MetricsAggregator
from response_engine.services.registry import WorkflowRegistry
from response_engine.services.step_executor import StepExecutor, utc_now
from response_engine.services.triggers import TriggerEvaluator
from response_engine.utils.logger import bind_execution, clear_execution, get_logger

logger = get_logger(__name__)

ROLLBACK_STEP_TIMEOUT: float = 60.0


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


def parse_guard(condition: str) -> Tuple[str, StepStatus]:
    """Split a step guard into ``(step_id, status)``.

    ``"scan.host.failed"`` guards step ``scan.host``; a guard without a known
    status suffix means the named step must have completed.
    """
    for status in StepStatus:
        suffix = f".{status.value}"
        if condition.endswith(suffix) and len(condition) > len(suffix):
            return condition[: -len(suffix)], status
    return condition, StepStatus.COMPLETED


class ExecutionCoordinator:
    """Creates, runs, cancels and resumes workflow executions."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        step_executor: StepExecutor,
        escalations: EscalationManager,
        executions: Optional[ExecutionRepository] = None,
        approvals: Optional[ApprovalGate] = None,
        evaluator: Optional[TriggerEvaluator] = None,
        metrics: Optional[MetricsAggregator] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_execution_id,
    ) -> None:
        self.registry = registry
        self.executions = executions or InMemoryExecutionRepository()
        self.approvals = approvals
        self.evaluator = evaluator or TriggerEvaluator()
        self.metrics = metrics or MetricsAggregator()
        self._step_executor = step_executor
        self._escalations = escalations
        self._clock = clock
        self._new_id = id_factory

        self._locks: Dict[str, asyncio.Lock] = {}
        self._live: Dict[str, Execution] = {}
        self._running: set = set()
        self._tasks: Dict[str, asyncio.Task] = {}

        self._started_count: int = 0
        self._completed_count: int = 0
        self._failed_count: int = 0
        self._cancelled_count: int = 0

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, incident_id: str, workflow_id: str, actor_id: str = "system") -> Execution:
        """Create and persist a new in-progress execution.

        Raises:
            WorkflowNotFoundError: When *workflow_id* is not registered.
        """
        self.registry.get(workflow_id)
        execution = Execution(
            id=self._new_id(),
            incident_id=incident_id,
            workflow_id=workflow_id,
            status=ExecutionStatus.IN_PROGRESS,
            current_step=0,
            started_at=self._clock(),
            executed_by=actor_id,
        )
        self._persist(execution)
        self._started_count += 1
        logger.info(
            "execution_created",
            execution_id=execution.id,
            incident_id=incident_id,
            workflow_id=workflow_id,
            executed_by=actor_id,
        )
        return execution

    def evaluate(self, incident: Incident) -> List[tuple]:
        """(workflow, score) pairs for every active workflow the incident triggers, best first."""
        return self.evaluator.evaluate_scored(incident, self.registry.list_active())

    async def start(
        self,
        incident_id: str,
        workflow_id: str,
        actor_id: str = "system",
        incident: Optional[Incident] = None,
    ) -> Execution:
        """Create an execution and run it in a background task."""
        execution = self.create(incident_id, workflow_id, actor_id)
        # Visible to cancel/get before the background task gets scheduled
        self._live[execution.id] = execution
        self._spawn(execution, incident)
        return execution.model_copy(deep=True)

    async def handle_incident(
        self, incident: Incident, actor_id: str = "system"
    ) -> Optional[Execution]:
        """Start the best-ranked workflow the incident triggers, if any."""
        matches = self.evaluate(incident)
        if not matches:
            logger.info("incident_no_workflow_triggered", incident_id=incident.id)
            return None
        workflow, score = matches[0]
        logger.info(
            "incident_workflow_selected",
            incident_id=incident.id,
            workflow_id=workflow.id,
            score=score.score,
            max_score=score.max_score,
        )
        return await self.start(incident.id, workflow.id, actor_id, incident=incident)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(self, execution: Execution, incident: Optional[Incident] = None) -> Execution:
        """Run the remaining steps of *execution* in order.

        Starts at ``execution.current_step``, so the same call resumes a
        persisted snapshot.  Step failures never propagate out of here.
        """
        workflow = self.registry.get(execution.workflow_id)
        if execution.id in self._running:
            raise ExecutionStateError(f"Execution '{execution.id}' is already running")
        self._running.add(execution.id)
        execution = self._live.setdefault(execution.id, execution)
        lock = self._lock_for(execution.id)
        bind_execution(execution.id, workflow_id=workflow.id)

        try:
            async with lock:
                if execution.status.is_terminal:
                    return execution
                if execution.status == ExecutionStatus.PENDING:
                    execution.status = ExecutionStatus.IN_PROGRESS
                    self._persist(execution)

            aborted = await self._run_steps(workflow, execution, incident)

            async with lock:
                self._finalize(execution, aborted)
            return execution
        finally:
            self._running.discard(execution.id)
            self._live.pop(execution.id, None)
            if self.approvals is not None:
                self.approvals.discard(execution.id)
            if execution.status.is_terminal:
                self._release(execution.id)
            clear_execution()

    async def _run_steps(
        self, workflow: Workflow, execution: Execution, incident: Optional[Incident]
    ) -> bool:
        """Drive the step loop. Returns True when a failure policy aborted the run."""
        lock = self._lock_for(execution.id)
        outputs: Dict[str, Any] = {
            r.step_id: r.output for r in execution.step_results if r.status == StepStatus.COMPLETED
        }

        # A snapshot persisted right after a failed step still owes that step's policy
        unhandled = self._unhandled_failure(workflow, execution)
        if unhandled is not None:
            step, result = unhandled
            logger.info("failure_policy_replayed", step_id=step.id, policy=step.on_failure.value)
            context = self._context(workflow, execution, incident, outputs)
            if await self._handle_failure(workflow, execution, step, result, context):
                return True

        for index in range(execution.current_step, len(workflow.steps)):
            step = workflow.steps[index]
            async with lock:
                if execution.status.is_terminal:
                    logger.info("execution_halted", step_id=step.id, status=execution.status.value)
                    return False

            context = self._context(workflow, execution, incident, outputs)
            if self._conditions_met(step, execution):
                result = await self._step_executor.execute(step, context)
            else:
                result = self._skipped(step)

            async with lock:
                execution.step_results.append(result)
                execution.current_step = index + 1
                self._persist(execution)
                if execution.status.is_terminal:
                    # Cancelled while the step was in flight: keep its result, run nothing more
                    return False

            if result.status == StepStatus.COMPLETED:
                outputs[step.id] = result.output
            if result.status != StepStatus.FAILED:
                continue

            if await self._handle_failure(workflow, execution, step, result, context):
                return True

        return False

    @staticmethod
    def _unhandled_failure(workflow: Workflow, execution: Execution) -> Optional[tuple]:
        if not execution.step_results:
            return None
        last = execution.step_results[-1]
        if last.status != StepStatus.FAILED:
            return None
        if execution.policy_applied_through >= len(execution.step_results):
            return None
        step = workflow.step(last.step_id)
        if step is None:
            return None
        return step, last

    async def _handle_failure(
        self,
        workflow: Workflow,
        execution: Execution,
        step: WorkflowStep,
        result: StepResult,
        context: StepContext,
    ) -> bool:
        """Apply the step's failure policy; mark it handled when the run goes on.

        Aborting policies leave the marker alone: replaying them after a
        crash is idempotent (escalations are deduplicated, rollback picks up
        where it stopped) and the run ends right after.
        """
        if await self._apply_failure_policy(workflow, execution, step, result, context):
            return True
        async with self._lock_for(execution.id):
            execution.policy_applied_through = len(execution.step_results)
            self._persist(execution)
        return False

    async def _apply_failure_policy(
        self,
        workflow: Workflow,
        execution: Execution,
        step: WorkflowStep,
        result: StepResult,
        context: StepContext,
    ) -> bool:
        policy = step.on_failure
        logger.info("failure_policy_applied", step_id=step.id, policy=policy.value)

        if policy == FailurePolicy.CONTINUE:
            return False
        if policy == FailurePolicy.STOP:
            return True
        if policy == FailurePolicy.ESCALATE:
            key = (execution.id, step.id, result.attempts)
            if any(r.key == key and r.notified for r in execution.escalations):
                logger.info("escalation_already_recorded", step_id=step.id, attempt=result.attempts)
            else:
                record = await self._escalations.escalate(execution, step, result)
                async with self._lock_for(execution.id):
                    self._record_escalation(execution, record)
                    self._persist(execution)
            return self._escalations.should_abort(step)

        await self._rollback(workflow, execution, context)
        return True

    async def _rollback(self, workflow: Workflow, execution: Execution, context: StepContext) -> None:
        """Run the rollback procedure last-first. Failures are recorded, never raised.

        Actions that already have a recorded result are not run again.
        """
        lock = self._lock_for(execution.id)
        remaining = list(reversed(workflow.rollback_procedure))[len(execution.rollback_results) :]
        logger.warning(
            "rollback_started", actions=remaining, already_done=len(execution.rollback_results)
        )
        for action_id in remaining:
            rollback_step = WorkflowStep(
                id=f"rollback:{action_id}",
                name=f"Rollback {action_id}",
                action=action_id,
                timeout=ROLLBACK_STEP_TIMEOUT,
                on_failure=FailurePolicy.CONTINUE,
            )
            result = await self._step_executor.execute(rollback_step, context)
            async with lock:
                execution.rollback_results.append(result)
                self._persist(execution)
        failed = [r.step_id for r in execution.rollback_results if r.status == StepStatus.FAILED]
        if failed:
            logger.error("rollback_incomplete", failed=failed)
        else:
            logger.info("rollback_completed")

    def _finalize(self, execution: Execution, aborted: bool) -> None:
        if execution.status == ExecutionStatus.CANCELLED:
            execution.metrics = self.metrics.compute(execution)
            self._persist(execution)
            return

        any_failed = any(r.status == StepStatus.FAILED for r in execution.step_results)
        execution.status = (
            ExecutionStatus.FAILED if aborted or any_failed else ExecutionStatus.COMPLETED
        )
        execution.completed_at = self._clock()
        execution.metrics = self.metrics.compute(execution)
        self._persist(execution)

        if execution.status == ExecutionStatus.COMPLETED:
            self._completed_count += 1
        else:
            self._failed_count += 1
        failing = execution.failed_step
        logger.info(
            "execution_finished",
            status=execution.status.value,
            steps=len(execution.step_results),
            failed_step=failing.step_id if failing else None,
            total_duration=round(execution.metrics.total_duration, 3),
        )

    # ------------------------------------------------------------------
    # Background runs
    # ------------------------------------------------------------------

    def _spawn(self, execution: Execution, incident: Optional[Incident]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._run_guarded(execution, incident))
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _t, eid=execution.id: self._tasks.pop(eid, None))
        return task

    async def _run_guarded(self, execution: Execution, incident: Optional[Incident]) -> Execution:
        try:
            return await self.run(execution, incident)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("execution_run_crashed", execution_id=execution.id, error=str(exc))
            async with self._lock_for(execution.id):
                if not execution.status.is_terminal:
                    execution.status = ExecutionStatus.FAILED
                    execution.completed_at = self._clock()
                    execution.metrics = self.metrics.compute(execution)
                    self._persist(execution)
                    self._failed_count += 1
            self._release(execution.id)
            return execution

    async def wait(self, execution_id: str) -> Execution:
        """Wait for a background run started by ``start`` and return the final snapshot."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get(execution_id)

    async def resume(self, execution_id: str, incident: Optional[Incident] = None) -> Execution:
        """Continue a persisted in-progress execution from its ``current_step``."""
        if execution_id in self._running:
            raise ExecutionStateError(f"Execution '{execution_id}' is already running")
        execution = self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        if execution.status.is_terminal:
            raise ExecutionStateError(
                f"Execution '{execution_id}' is {execution.status.value}; nothing to resume"
            )
        logger.info("execution_resumed", execution_id=execution_id, from_step=execution.current_step)
        return await self.run(execution, incident)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def cancel(self, execution_id: str, reason: str = "") -> Execution:
        """Stop an execution before its next step.

        A step already in flight is allowed to finish; its result is kept.

        Raises:
            ExecutionNotFoundError: Unknown id.
            ExecutionStateError: The execution already reached a terminal status.
        """
        # Unknown and finished ids are rejected before a lock is ever created for them
        self._active(execution_id)
        async with self._lock_for(execution_id):
            execution = self._active(execution_id)
            now = self._clock()
            execution.status = ExecutionStatus.CANCELLED
            execution.cancelled_at = now
            execution.completed_at = now
            execution.cancel_reason = reason or None
            if execution_id not in self._running:
                execution.metrics = self.metrics.compute(execution)
            self._persist(execution)
            self._cancelled_count += 1

        if execution_id not in self._running:
            self._release(execution_id)
        logger.warning("execution_cancelled", execution_id=execution_id, reason=reason)
        return execution.model_copy(deep=True)

    def approve(self, execution_id: str, step_id: str, approver_id: str) -> bool:
        """Approve a step of an in-progress execution.

        Raises:
            ExecutionNotFoundError: Unknown id.
            ExecutionStateError: The execution already finished.
        """
        self._require_approvals()
        self._active(execution_id)
        return self.approvals.approve(execution_id, step_id, approver_id)

    def deny(self, execution_id: str, step_id: str, approver_id: str) -> bool:
        self._require_approvals()
        self._active(execution_id)
        return self.approvals.deny(execution_id, step_id, approver_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, execution_id: str) -> Execution:
        """Latest snapshot of an execution as a copy."""
        live = self._live.get(execution_id)
        if live is not None:
            return live.model_copy(deep=True)
        execution = self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def list(
        self, incident_id: Optional[str] = None, status: Optional[ExecutionStatus] = None
    ) -> List[Execution]:
        executions = [
            e
            for e in self.executions.list()
            if (incident_id is None or e.incident_id == incident_id)
            and (status is None or e.status == status)
        ]
        executions.sort(key=lambda e: (e.started_at, e.id))
        return executions

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of coordinator activity, used by the health endpoint."""
        return {
            "active_executions": len(self._tasks),
            "pending_approvals": len(self.approvals.pending()) if self.approvals else 0,
            "registered_workflows": len(self.registry),
            "started": self._started_count,
            "completed": self._completed_count,
            "failed": self._failed_count,
            "cancelled": self._cancelled_count,
        }

    async def close(self) -> None:
        """Cancel background runs; their last persisted snapshot stays resumable."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, execution_id: str) -> asyncio.Lock:
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = self._locks[execution_id] = asyncio.Lock()
        return lock

    def _release(self, execution_id: str) -> None:
        """Drop per-execution bookkeeping once the execution is terminal."""
        self._locks.pop(execution_id, None)
        self._escalations.forget(execution_id)

    def _active(self, execution_id: str) -> Execution:
        execution = self._live.get(execution_id) or self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        if execution.status.is_terminal:
            raise ExecutionStateError(
                f"Execution '{execution_id}' is already {execution.status.value}"
            )
        return execution

    def _persist(self, execution: Execution) -> None:
        self.executions.put(execution)

    @staticmethod
    def _context(
        workflow: Workflow,
        execution: Execution,
        incident: Optional[Incident],
        outputs: Dict[str, Any],
    ) -> StepContext:
        return StepContext(
            execution_id=execution.id,
            incident_id=execution.incident_id,
            workflow_id=workflow.id,
            executed_by=execution.executed_by,
            incident=incident,
            outputs=dict(outputs),
        )

    def _require_approvals(self) -> None:
        if self.approvals is None:
            raise ExecutionStateError("No approval service is configured")

    def _skipped(self, step: WorkflowStep) -> StepResult:
        now = self._clock()
        result = StepResult(
            step_id=step.id,
            started_at=now,
            phase=step.phase,
            approval_required=step.requires_approval,
            error="conditions not met",
        )
        logger.info("step_skipped", step_id=step.id, conditions=step.conditions)
        return result.finish(StepStatus.SKIPPED, now)

    @staticmethod
    def _conditions_met(step: WorkflowStep, execution: Execution) -> bool:
        """Every "<step_id>.<status>" guard must match that step's latest result."""
        for condition in step.conditions:
            step_id, expected = parse_guard(condition)
            result = execution.result_for(step_id)
            if result is None or result.status != expected:
                return False
        return True

    @staticmethod
    def _record_escalation(execution: Execution, record: EscalationRecord) -> None:
        for i, existing in enumerate(execution.escalations):
            if existing.key == record.key:
                execution.escalations[i] = record
                return
        execution.escalations.append(record)
