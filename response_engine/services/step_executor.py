"""Runs a single workflow step to completion.

Every step gets one deadline, ``step.timeout`` seconds from the moment it
starts.  The approval wait, every action attempt and the backoff between
attempts all share that deadline, so an execution can never outlive
the sum of its step timeouts.

Outcomes are always returned as a ``StepResult``; step-level errors
(unknown action, timeout, denied approval, exhausted retries) are recorded
on it and never raised to the caller.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from response_engine.errors import (
    ActionFailedError,
    ApprovalDeniedError,
    StepError,
    StepTimeoutError,
)
from response_engine.models.collaborators import ActionRegistry, ApprovalService, StepContext
from response_engine.models.execution import StepResult, StepStatus
from response_engine.models.workflow import WorkflowStep
from response_engine.utils.logger import get_logger
from response_engine.utils.retry import backoff_delay

logger = get_logger(__name__)

# Timer callbacks may fire a hair before their due time
_DEADLINE_SLACK: float = 0.005


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepExecutor:
    """Executes steps against an action registry under timeout/retry/approval rules."""

    def __init__(
        self,
        actions: ActionRegistry,
        approvals: Optional[ApprovalService] = None,
        retry_backoff_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._actions = actions
        self._approvals = approvals
        self._backoff = retry_backoff_seconds
        self._clock = clock

    async def execute(self, step: WorkflowStep, context: StepContext) -> StepResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + step.timeout
        result = StepResult(
            step_id=step.id,
            status=StepStatus.IN_PROGRESS,
            started_at=self._clock(),
            phase=step.phase,
            approval_required=step.requires_approval,
        )
        logger.info(
            "step_started",
            execution_id=context.execution_id,
            step_id=step.id,
            action=step.action,
            timeout=step.timeout,
        )

        try:
            if step.requires_approval:
                await self._await_approval(step, context, result, deadline)
            result.status = StepStatus.IN_PROGRESS
            result.output = await self._run_attempts(step, context, result, deadline)
        except StepError as exc:
            result.error = str(exc)
            result.finish(StepStatus.FAILED, self._clock())
            logger.warning(
                "step_failed",
                execution_id=context.execution_id,
                step_id=step.id,
                error=result.error,
                error_type=type(exc).__name__,
                attempts=result.attempts,
            )
            return result

        result.finish(StepStatus.COMPLETED, self._clock())
        logger.info(
            "step_completed",
            execution_id=context.execution_id,
            step_id=step.id,
            attempts=result.attempts,
            duration_seconds=round(result.duration, 3),
        )
        return result

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def _await_approval(
        self, step: WorkflowStep, context: StepContext, result: StepResult, deadline: float
    ) -> None:
        if self._approvals is None:
            raise ApprovalDeniedError(step.id, approver=None)

        # Pending-approval sub-state; visible in snapshots taken while waiting
        result.status = StepStatus.PENDING
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            decision = await self._approvals.wait_for_approval(
                context.execution_id, step.id, max(remaining, 0.0)
            )
        except asyncio.TimeoutError as exc:
            raise StepTimeoutError("approval timeout") from exc

        if not decision.approved:
            raise ApprovalDeniedError(step.id, decision.approver)
        result.approved_by = decision.approver
        result.approved_at = self._clock()

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _run_attempts(
        self, step: WorkflowStep, context: StepContext, result: StepResult, deadline: float
    ) -> Any:
        loop = asyncio.get_running_loop()
        max_attempts = step.retry_count + 1

        for attempt in range(1, max_attempts + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StepTimeoutError()
            result.attempts = attempt

            try:
                outcome = await asyncio.wait_for(
                    self._actions.execute(step.action, dict(step.parameters), context),
                    timeout=remaining,
                )
            except StepError as exc:
                # UnknownActionError and friends are permanent
                if not exc.retryable:
                    raise
                error: StepError = exc
            except asyncio.TimeoutError as exc:
                if deadline - loop.time() <= _DEADLINE_SLACK:
                    logger.warning(
                        "step_attempt_timeout",
                        execution_id=context.execution_id,
                        step_id=step.id,
                        attempt=attempt,
                    )
                    raise StepTimeoutError() from exc
                error = ActionFailedError(str(exc) or "action timed out")
            except Exception as exc:
                error = ActionFailedError(str(exc) or type(exc).__name__)
            else:
                if outcome.success:
                    return outcome.output
                result.output = outcome.output
                error = ActionFailedError(outcome.error or "action reported failure")

            if attempt == max_attempts:
                logger.warning(
                    "step_retries_exhausted",
                    execution_id=context.execution_id,
                    step_id=step.id,
                    attempts=max_attempts,
                    error=str(error),
                )
                raise error

            logger.warning(
                "step_attempt_failed",
                execution_id=context.execution_id,
                step_id=step.id,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(error),
            )
            delay = backoff_delay(attempt, self._backoff)
            await asyncio.sleep(min(delay, max(deadline - loop.time(), 0.0)))
