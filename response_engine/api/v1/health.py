"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from response_engine import __version__

router = APIRouter()


@router.get("/health", summary="Health check")
async def health(request: Request) -> Dict[str, Any]:
    """Return application health and coordinator activity."""
    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "healthy" if engine is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "engine": engine.coordinator.get_status() if engine is not None else {},
    }
