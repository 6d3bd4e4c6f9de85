"""In-process approval gate.

A step that requires approval awaits a future keyed by
``(execution_id, step_id)``; ``approve``/``deny`` resolve it from any other
task (an API request, an operator CLI...).  Waiting is a plain ``await`` so
a pending approval never ties up the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Tuple

from response_engine.models.collaborators import ApprovalDecision
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

_Key = Tuple[str, str]


class ApprovalGate:
    def __init__(self) -> None:
        self._waiters: Dict[_Key, asyncio.Future] = {}
        # Decisions that arrived before the step started waiting
        self._early: Dict[_Key, ApprovalDecision] = {}

    def pending(self) -> List[_Key]:
        return [key for key, fut in self._waiters.items() if not fut.done()]

    def is_pending(self, execution_id: str, step_id: str) -> bool:
        fut = self._waiters.get((execution_id, step_id))
        return fut is not None and not fut.done()

    async def wait_for_approval(
        self, execution_id: str, step_id: str, timeout: float
    ) -> ApprovalDecision:
        """Wait up to *timeout* seconds for a decision.

        Raises:
            asyncio.TimeoutError: When nobody decided in time.
        """
        key = (execution_id, step_id)
        early = self._early.pop(key, None)
        if early is not None:
            return early

        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        self._waiters[key] = fut
        logger.info("approval_requested", execution_id=execution_id, step_id=step_id)
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        finally:
            self._waiters.pop(key, None)

    def _resolve(self, execution_id: str, step_id: str, decision: ApprovalDecision) -> bool:
        key = (execution_id, step_id)
        fut = self._waiters.get(key)
        if fut is None or fut.done():
            self._early[key] = decision
            return False
        fut.set_result(decision)
        return True

    def approve(self, execution_id: str, step_id: str, approver_id: str) -> bool:
        """Approve a step. Returns True when a waiting step was released."""
        released = self._resolve(
            execution_id, step_id, ApprovalDecision(approved=True, approver=approver_id)
        )
        logger.info(
            "approval_granted",
            execution_id=execution_id,
            step_id=step_id,
            approver=approver_id,
            released=released,
        )
        return released

    def deny(self, execution_id: str, step_id: str, approver_id: str) -> bool:
        released = self._resolve(
            execution_id, step_id, ApprovalDecision(approved=False, approver=approver_id)
        )
        logger.info(
            "approval_denied",
            execution_id=execution_id,
            step_id=step_id,
            approver=approver_id,
            released=released,
        )
        return released

    def discard(self, execution_id: str) -> None:
        """Drop early decisions for a finished execution."""
        for key in [k for k in self._early if k[0] == execution_id]:
            del self._early[key]
