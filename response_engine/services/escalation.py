"""Escalation on step failure.

An escalation is keyed by ``(execution_id, step_id, attempt)``.  Once a
notification for a key has been delivered, escalating the same key again
returns the recorded event without contacting the notification service a
second time.  A failed delivery is recorded too but does not block a later
retry of the same key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from response_engine.errors import EscalationError
from response_engine.models.collaborators import NotificationService
from response_engine.models.execution import EscalationRecord, Execution, StepResult
from response_engine.models.workflow import WorkflowStep
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

_Key = Tuple[str, str, int]


class EscalationManager:
    def __init__(self, notifier: NotificationService, default_target: str = "security_team") -> None:
        self._notifier = notifier
        self._default_target = default_target
        self._records: Dict[_Key, EscalationRecord] = {}

    def target_for(self, step: WorkflowStep) -> str:
        return str(step.parameters.get("escalate_to") or self._default_target)

    @staticmethod
    def should_abort(step: WorkflowStep) -> bool:
        """Whether the execution stops after escalating this step's failure."""
        return bool(step.parameters.get("abort_on_escalation", False))

    async def escalate(
        self,
        execution: Execution,
        failed_step: WorkflowStep,
        result: Optional[StepResult] = None,
    ) -> EscalationRecord:
        """Notify the step's escalation target about its failure.

        Never raises: delivery problems are logged and recorded with
        ``notified=False``.
        """
        attempt = result.attempts if result is not None else 1
        key: _Key = (execution.id, failed_step.id, attempt)

        existing = self._records.get(key)
        if existing is not None and existing.notified:
            logger.info(
                "escalation_deduplicated",
                execution_id=execution.id,
                step_id=failed_step.id,
                attempt=attempt,
            )
            return existing

        target = self.target_for(failed_step)
        error = result.error if result is not None and result.error else "step failed"
        message = (
            f"Incident {execution.incident_id}: step '{failed_step.name}' ({failed_step.id}) "
            f"of workflow {execution.workflow_id} failed: {error}. "
            f"Execution {execution.id} requires attention from {failed_step.assigned_role or target}."
        )

        record = EscalationRecord(
            execution_id=execution.id,
            step_id=failed_step.id,
            attempt=attempt,
            target=target,
            message=message,
            notified=False,
            escalated_at=datetime.now(timezone.utc),
        )
        try:
            await self._deliver(target, message)
            record.notified = True
            logger.warning(
                "incident_escalated",
                execution_id=execution.id,
                incident_id=execution.incident_id,
                step_id=failed_step.id,
                target=target,
            )
        except EscalationError as exc:
            record.error = str(exc)
            logger.error(
                "escalation_failed",
                execution_id=execution.id,
                step_id=failed_step.id,
                target=target,
                error=str(exc),
            )

        self._records[key] = record
        return record

    async def _deliver(self, target: str, message: str) -> None:
        try:
            delivered = await self._notifier.notify(target, message)
        except Exception as exc:
            raise EscalationError(f"Notification to {target} failed: {exc}") from exc
        if not delivered:
            raise EscalationError(f"Notification to {target} was not delivered")

    def forget(self, execution_id: str) -> None:
        """Drop the records of a finished execution; they live on ``Execution.escalations``."""
        for key in [k for k in self._records if k[0] == execution_id]:
            del self._records[key]

    def records(self, execution_id: Optional[str] = None) -> List[EscalationRecord]:
        return [
            r for r in self._records.values() if execution_id is None or r.execution_id == execution_id
        ]
