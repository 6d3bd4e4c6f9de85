"""
Configuration management for the incident response engine.

Loads settings from environment variables or a .env file.  The webhook
URL may embed a token, so it is never logged.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env from the working directory if present
load_dotenv()

_TRUTHY = ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    """Immutable runtime configuration."""

    log_level: str = "INFO"

    # A workflow triggers when score >= trigger_threshold * max_score
    trigger_threshold: float = 0.5

    # Escalations go here unless the failing step names its own target
    escalation_target: str = "security_team"

    # Notification delivery; an empty URL means log-only notifications
    notification_webhook_url: str = ""
    notification_timeout: float = 10.0
    notification_max_retries: int = 3

    # Base delay between step attempts; doubles on every retry
    retry_backoff_seconds: float = 1.0

    # Empty store_dir keeps workflows and executions in memory
    store_dir: str = ""

    seed_default_workflows: bool = True
    simulated_actions: bool = True


def _flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in _TRUTHY


def load_config(**overrides) -> Config:
    """
    Build a Config instance from environment variables.

    Any keyword argument passed in overrides the corresponding env var
    (used by the CLI and by tests).

    Raises:
        ValueError: If a numeric setting is malformed or out of range.
    """

    def _get(key: str, env: str, default: object) -> object:
        if key in overrides and overrides[key] is not None:
            return overrides[key]
        return os.getenv(env, default)

    threshold = float(_get("trigger_threshold", "TRIGGER_THRESHOLD", 0.5))
    if not 0.0 < threshold <= 1.0:
        raise ValueError(
            f"TRIGGER_THRESHOLD must be in (0, 1], got {threshold}. "
            "Fix it in your .env file or environment."
        )

    backoff = float(_get("retry_backoff_seconds", "RETRY_BACKOFF_SECONDS", 1.0))
    if backoff < 0:
        raise ValueError(f"RETRY_BACKOFF_SECONDS must be >= 0, got {backoff}")

    max_retries = int(_get("notification_max_retries", "NOTIFICATION_MAX_RETRIES", 3))
    if max_retries < 0:
        raise ValueError(f"NOTIFICATION_MAX_RETRIES must be >= 0, got {max_retries}")

    return Config(
        log_level=str(_get("log_level", "LOG_LEVEL", "INFO")),
        trigger_threshold=threshold,
        escalation_target=str(_get("escalation_target", "ESCALATION_TARGET", "security_team")),
        notification_webhook_url=str(
            _get("notification_webhook_url", "NOTIFICATION_WEBHOOK_URL", "")
        ),
        notification_timeout=float(_get("notification_timeout", "NOTIFICATION_TIMEOUT", 10.0)),
        notification_max_retries=max_retries,
        retry_backoff_seconds=backoff,
        store_dir=str(_get("store_dir", "STORE_DIR", "")),
        seed_default_workflows=_flag(
            _get("seed_default_workflows", "SEED_DEFAULT_WORKFLOWS", "true")
        ),
        simulated_actions=_flag(_get("simulated_actions", "SIMULATED_ACTIONS", "true")),
    )
