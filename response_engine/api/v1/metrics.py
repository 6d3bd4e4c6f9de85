"""Fleet metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from response_engine.services.metrics import WINDOWS, FleetMetrics

router = APIRouter()


@router.get("", response_model=FleetMetrics, summary="Fleet response metrics")
async def fleet_metrics(request: Request, window: str = Query(default="30d")) -> FleetMetrics:
    """Success rate, durations and per-workflow performance over *window* (24h, 7d, 30d)."""
    if window not in WINDOWS:
        raise HTTPException(status_code=422, detail=f"window must be one of {sorted(WINDOWS)}")
    coordinator = request.app.state.engine.coordinator
    return coordinator.metrics.aggregate(coordinator.list(), window)
