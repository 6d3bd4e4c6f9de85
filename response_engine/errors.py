"""Exception taxonomy for the response engine.

Only ``ValidationError`` and the not-found/state errors ever reach a caller.
Step-level errors are caught by the step executor and recorded on the
``StepResult``; ``EscalationError`` is logged and swallowed by the
escalation manager.
"""

from __future__ import annotations

from typing import List, Optional


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(EngineError):
    """A workflow definition is malformed and was rejected at registration."""

    def __init__(self, message: str, problems: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.problems = problems or [message]


class WorkflowNotFoundError(EngineError, LookupError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow '{workflow_id}' not found")
        self.workflow_id = workflow_id


class ExecutionNotFoundError(EngineError, LookupError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' not found")
        self.execution_id = execution_id


class ExecutionStateError(EngineError):
    """The requested transition is not allowed from the execution's current status."""


# ---------------------------------------------------------------------------
# Step-level errors (captured as StepResult.error)
# ---------------------------------------------------------------------------


class StepError(EngineError):
    """Base class for failures that end a single step."""

    retryable = False


class UnknownActionError(StepError, LookupError):
    def __init__(self, action_id: str) -> None:
        super().__init__(f"Unknown action '{action_id}'")
        self.action_id = action_id


class StepTimeoutError(StepError, TimeoutError):
    """The step did not finish (or was not approved) before its timeout."""

    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message)


class ApprovalDeniedError(StepError):
    def __init__(self, step_id: str, approver: Optional[str] = None) -> None:
        who = f" by {approver}" if approver else ""
        super().__init__(f"Approval for step '{step_id}' denied{who}")
        self.step_id = step_id
        self.approver = approver


class ActionFailedError(StepError):
    """An action reported ``success=False`` or raised; eligible for retry."""

    retryable = True


class EscalationError(EngineError):
    """The notification collaborator could not deliver an escalation."""
