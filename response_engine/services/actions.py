"""Action registry: resolves a step's ``action`` id to an async handler.

Handlers have the signature::

    async def handler(parameters: dict, context: StepContext) -> ActionResult | Any

A handler may return an ``ActionResult`` or any plain value (wrapped as a
successful result).  Raising is treated as a failed attempt.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

from response_engine.errors import UnknownActionError
from response_engine.models.collaborators import ActionResult, NotificationService, StepContext
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

ActionHandler = Callable[[Dict[str, Any], StepContext], Awaitable[Any]]


class InMemoryActionRegistry:
    """Action registry backed by a dict of handlers."""

    def __init__(self, handlers: Dict[str, ActionHandler] | None = None) -> None:
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})

    def register(self, action_id: str, handler: ActionHandler) -> None:
        if action_id in self._handlers:
            logger.info("action_handler_replaced", action_id=action_id)
        self._handlers[action_id] = handler

    def action_ids(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, action_id: str) -> bool:
        return action_id in self._handlers

    async def execute(
        self, action_id: str, parameters: Dict[str, Any], context: StepContext
    ) -> ActionResult:
        """Run the handler registered for *action_id*.

        Raises:
            UnknownActionError: When nothing is registered under *action_id*.
        """
        handler = self._handlers.get(action_id)
        if handler is None:
            raise UnknownActionError(action_id)
        result = await handler(parameters, context)
        if isinstance(result, ActionResult):
            return result
        return ActionResult(output=result, success=True)


def make_notify_action(notifier: NotificationService, default_target: str) -> ActionHandler:
    """Build the built-in ``notify`` action used by notification-type steps.

    Parameters: ``recipients`` (list, falls back to *default_target*) and
    ``message`` (defaults to a short incident alert line).
    """

    async def notify(parameters: Dict[str, Any], context: StepContext) -> ActionResult:
        recipients = parameters.get("recipients") or [default_target]
        message = parameters.get("message") or (
            f"Incident {context.incident_id}: workflow {context.workflow_id} "
            f"requires attention"
        )
        delivered = []
        failed = []
        for recipient in recipients:
            if await notifier.notify(recipient, message):
                delivered.append(recipient)
            else:
                failed.append(recipient)
        output = {"delivered": delivered, "failed": failed}
        if failed:
            return ActionResult(
                output=output,
                success=False,
                error=f"Notification failed for {len(failed)} recipient(s)",
            )
        return ActionResult(output=output, success=True)

    return notify
