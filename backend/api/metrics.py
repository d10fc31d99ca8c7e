"""
Metrics API
Endpoints for reporting metrics and inspecting what the detector sees.

Endpoints:
    POST /api/metrics/{agent_id}/report      → Ingest one report, run detection
    GET  /api/metrics/{agent_id}/window      → Metric window at a resolution
    GET  /api/metrics/{agent_id}/indicators  → Computed indicators + signals
    GET  /api/metrics/{agent_id}/latest      → Latest report
    PUT  /api/metrics/{agent_id}/resolution  → Set/clear resolution override
    GET  /api/metrics/resolutions            → Available resolutions
    GET  /api/metrics/stats                  → Ingestion statistics
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query
from pydantic import BaseModel

from alerts import get_detector
from core import MetricType, Resolution, get_engine, to_metric_report
from db import get_storage, get_window_source

router = APIRouter(prefix="/metrics", tags=["Metrics"])


# =============================================================================
# Request Models
# =============================================================================

class ResolutionRequest(BaseModel):
    """None clears the override and falls back to the default"""
    resolution: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {"resolution": "15min"}
        }


def _metric_type(value: str) -> MetricType:
    try:
        return MetricType(value.lower())
    except ValueError:
        raise HTTPException(400, f"Invalid metric_type: {value}. Use: cpu, memory, disk")


def _resolution(value: Optional[str]) -> Optional[Resolution]:
    if value is None:
        return None
    try:
        return Resolution(value)
    except ValueError:
        options = ", ".join(r.value for r in Resolution)
        raise HTTPException(400, f"Invalid resolution: {value}. Use: {options}")


# =============================================================================
# Reporting
# =============================================================================

@router.post("/{agent_id}/report")
async def report_metrics(agent_id: str, payload: Dict[str, Any] = Body(...)):
    """
    Ingest one metric report and evaluate confluence alerts for the agent.

    Accepts cpu_percent / cpu_usage style keys and collected_at / timestamp.
    """
    try:
        report = to_metric_report(payload, agent_id=agent_id)
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(400, f"Invalid metric report: {exc}")

    engine = get_engine()
    completed = await asyncio.to_thread(engine.ingest, report)

    detector = get_detector()
    alerts = await detector.detect_and_create_alerts(agent_id, report.snapshot())

    return {
        "agent_id": agent_id,
        "timestamp": report.ts.isoformat(),
        "candles_completed": len(completed),
        "alert_count": len(alerts),
        "alerts": [a.to_dict() for a in alerts]
    }


@router.get("/resolutions")
async def list_resolutions():
    """Available metric resolutions and the configured default"""
    return get_window_source().provider.resolution_info()


@router.get("/stats")
async def get_stats():
    engine = get_engine()
    return {
        **engine.stats(),
        "storage": get_storage().get_stats()
    }


# =============================================================================
# Inspection
# =============================================================================

@router.get("/{agent_id}/latest")
async def get_latest(agent_id: str):
    engine = get_engine()
    report = engine.get_latest(agent_id)

    if report is None:
        raise HTTPException(404, f"No metrics for agent {agent_id}")

    return {
        "agent_id": agent_id,
        **report.snapshot().to_dict()
    }


@router.get("/{agent_id}/window")
async def get_window(
    agent_id: str,
    metric_type: str = Query(default="cpu"),
    resolution: Optional[str] = Query(default=None, description="Defaults to the agent's effective resolution"),
    lookback: int = Query(default=50, ge=1, le=1000)
):
    source = get_window_source()
    res = _resolution(resolution) or await source.get_effective_resolution(agent_id)
    window = await source.get_window(agent_id, res, lookback, _metric_type(metric_type))

    return {
        "agent_id": agent_id,
        "metric_type": window.metric_type.value,
        "resolution": window.resolution.value,
        "count": len(window),
        "data": [
            {"timestamp": s.ts.isoformat(), "value": s.value}
            for s in window.samples
        ]
    }


@router.get("/{agent_id}/indicators")
async def get_indicators(
    agent_id: str,
    metric_type: str = Query(default="cpu"),
    resolution: Optional[str] = Query(default=None)
):
    """Indicators and signals exactly as the detector would compute them"""
    detector = get_detector()
    indicators = await detector.calculate_indicators(
        agent_id, _metric_type(metric_type), _resolution(resolution)
    )

    if indicators is None:
        raise HTTPException(404, f"Insufficient data for {agent_id}: at least 14 points required")

    return {
        "agent_id": agent_id,
        "indicators": indicators.to_dict()
    }


@router.put("/{agent_id}/resolution")
async def set_resolution(agent_id: str, request: ResolutionRequest):
    source = get_window_source()
    override = _resolution(request.resolution)
    effective = await source.set_agent_resolution(agent_id, override)

    return {
        "agent_id": agent_id,
        "override": override.value if override else None,
        "resolution": effective.value,
        "message": f"Resolution set to {effective.value}"
    }
