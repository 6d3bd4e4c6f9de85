"""Notification service adapters.

``WebhookNotifier`` posts to an HTTP endpoint (Slack-style incoming webhook
or any JSON receiver); ``LoggingNotifier`` is used when no webhook is
configured and in tests.  Both return ``True`` only when the message was
delivered; callers decide what a failed delivery means.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List

import httpx

from response_engine.utils.logger import get_logger
from response_engine.utils.retry import retry_with_backoff

logger = get_logger(__name__)


class LoggingNotifier:
    """Records every message and writes it to the log."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []

    async def notify(self, target: str, message: str) -> bool:
        self.sent.append(
            {
                "target": target,
                "message": message,
                "sent_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        logger.info("notification_sent", target=target, message=message)
        return True

    async def close(self) -> None:
        return None


class WebhookNotifier:
    """Async client delivering notifications to a JSON webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not webhook_url:
            raise ValueError("webhook_url must not be empty")
        self._url = webhook_url
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._http = http or httpx.AsyncClient(timeout=timeout)

    @retry_with_backoff(
        max_retries=3,
        backoff_seconds=1.0,
        exceptions=(httpx.HTTPError,),
        max_retries_attr="max_retries",
        backoff_seconds_attr="backoff_seconds",
    )
    async def _post(self, payload: Dict[str, str]) -> None:
        resp = await self._http.post(self._url, json=payload)
        resp.raise_for_status()

    async def notify(self, target: str, message: str) -> bool:
        payload = {"target": target, "message": message, "text": f"[{target}] {message}"}
        try:
            await self._post(payload)
        except httpx.HTTPError as exc:
            logger.error("notification_failed", target=target, error=str(exc))
            return False
        logger.info("notification_sent", target=target)
        return True

    async def close(self) -> None:
        """Release the underlying httpx client."""
        await self._http.aclose()
