"""Structured JSON logging configuration for the response engine."""

import logging
import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging for the application.

    structlog is routed through the stdlib logging backend so that
    ``add_logger_name`` can read ``logger.name`` and so that pytest's
    ``caplog`` sees every event.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format="%(message)s",  # structlog renders the full JSON line
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to *name*.

    Log calls take an event name plus keyword fields::

        logger.info("step_completed", execution_id=execution.id, step_id=step.id)
    """
    return structlog.get_logger(name)


def bind_execution(execution_id: str, **extra: Any) -> None:
    """Attach *execution_id* (and any extra fields) to every log line of the current task."""
    structlog.contextvars.bind_contextvars(execution_id=execution_id, **extra)


def clear_execution() -> None:
    structlog.contextvars.clear_contextvars()
