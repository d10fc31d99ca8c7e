"""
Alerts API
Endpoints for alert configurations, alert history, and streaming events.

Endpoints:
    GET    /api/alerts/configurations         → List configurations
    POST   /api/alerts/configurations         → Create configuration
    GET    /api/alerts/configurations/{id}    → Get configuration
    PUT    /api/alerts/configurations/{id}    → Partial update
    DELETE /api/alerts/configurations/{id}    → Soft delete (disable)
    GET    /api/alerts/history                → Filtered alert history
    GET    /api/alerts/history/{id}           → Single alert
    POST   /api/alerts/history/{id}/acknowledge
    POST   /api/alerts/history/{id}/resolve
    GET    /api/alerts/active                 → Unresolved alerts
    GET    /api/alerts/recent                 → Alerts emitted by this process
    GET    /api/alerts/stats                  → History + detector statistics
    GET    /api/alerts/stream                 → SSE stream for real-time alerts
    POST   /api/alerts/test                   → Evaluate a value series
"""

import asyncio
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from alerts import (
    AlertConfiguration,
    AlertType,
    Severity,
    analyze_confluence,
    get_detector,
)
from analytics import indicators as indicator_calc
from core import MetricSample, MetricType, MetricWindow, Resolution
from core.config import get_settings
from core.errors import ConfigurationError
from core.models import utc_now
from db import get_alert_history, get_configuration_source

router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class ConfigurationRequest(BaseModel):
    """Request body for creating a configuration"""
    alert_name: str
    alert_type: str  # high_utilization, low_utilization, rising_trend, declining_trend, volatility_spike
    enabled: bool = True
    metric_type: str = "cpu"
    min_indicator_count: int = 2
    require_extreme_for_single: bool = True
    rsi_thresholds: Optional[Dict[str, Any]] = None
    stochastic_thresholds: Optional[Dict[str, Any]] = None
    williams_r_thresholds: Optional[Dict[str, Any]] = None
    macd_settings: Optional[Dict[str, Any]] = None
    roc_settings: Optional[Dict[str, Any]] = None
    atr_settings: Optional[Dict[str, Any]] = None
    notify_email: bool = False
    notify_dashboard: bool = True
    notify_websocket: bool = True
    description: str = ""
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "alert_name": "High CPU confluence",
                "alert_type": "high_utilization",
                "metric_type": "cpu",
                "min_indicator_count": 2,
                "rsi_thresholds": {"enabled": True},
                "stochastic_thresholds": {"enabled": True},
                "williams_r_thresholds": {"enabled": True}
            }
        }


class ConfigurationUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value"""
    alert_name: Optional[str] = None
    alert_type: Optional[str] = None
    enabled: Optional[bool] = None
    metric_type: Optional[str] = None
    min_indicator_count: Optional[int] = None
    require_extreme_for_single: Optional[bool] = None
    rsi_thresholds: Optional[Dict[str, Any]] = None
    stochastic_thresholds: Optional[Dict[str, Any]] = None
    williams_r_thresholds: Optional[Dict[str, Any]] = None
    macd_settings: Optional[Dict[str, Any]] = None
    roc_settings: Optional[Dict[str, Any]] = None
    atr_settings: Optional[Dict[str, Any]] = None
    notify_email: Optional[bool] = None
    notify_dashboard: Optional[bool] = None
    notify_websocket: Optional[bool] = None
    description: Optional[str] = None
    updated_by: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    acknowledged_by: Optional[str] = None


class ResolveRequest(BaseModel):
    resolved_by: Optional[str] = None
    notes: Optional[str] = None


class TestAlertRequest(BaseModel):
    """Request body for evaluating a value series without persisting"""
    values: List[float] = Field(..., min_length=1)
    metric_type: str = "cpu"
    resolution: str = "raw"
    configuration_ids: Optional[List[int]] = None


def _parse_enum(enum: Type[Enum], value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return enum(value)
    except ValueError:
        options = ", ".join(e.value for e in enum)
        raise HTTPException(400, f"Invalid {name}: {value}. Use: {options}")


# =============================================================================
# Configuration Management
# =============================================================================

@router.get("/configurations")
async def list_configurations(enabled_only: bool = Query(default=False)):
    source = get_configuration_source()
    configs = await source.list_configurations(enabled_only)

    return {
        "count": len(configs),
        "configurations": [c.to_dict() for c in configs]
    }


@router.post("/configurations")
async def create_configuration(request: ConfigurationRequest):
    """
    Create a confluence configuration.

    Indicators without settings (or with enabled=false) do not take part.
    """
    data = request.model_dump()
    created_by = data.pop("created_by")

    try:
        config = AlertConfiguration.from_dict({**data, "id": None})
    except ConfigurationError as exc:
        raise HTTPException(400, str(exc))

    source = get_configuration_source()
    created = await source.create_configuration(config, created_by)

    return {
        "message": "Alert configuration created",
        "configuration": created.to_dict()
    }


@router.get("/configurations/{config_id}")
async def get_configuration(config_id: int):
    source = get_configuration_source()
    config = await source.get_configuration(config_id)

    if not config:
        raise HTTPException(404, f"Configuration not found: {config_id}")

    return {"configuration": config.to_dict()}


@router.put("/configurations/{config_id}")
async def update_configuration(config_id: int, request: ConfigurationUpdate):
    updates = request.model_dump(exclude_unset=True)
    updated_by = updates.pop("updated_by", None)

    if not updates:
        raise HTTPException(400, "No fields to update")

    source = get_configuration_source()
    try:
        config = await source.update_configuration(config_id, updates, updated_by)
    except ConfigurationError as exc:
        raise HTTPException(400, str(exc))

    if not config:
        raise HTTPException(404, f"Configuration not found: {config_id}")

    return {
        "message": "Alert configuration updated",
        "configuration": config.to_dict()
    }


@router.delete("/configurations/{config_id}")
async def delete_configuration(config_id: int, updated_by: Optional[str] = Query(default=None)):
    """Disable a configuration; its history stays intact"""
    source = get_configuration_source()
    config = await source.delete_configuration(config_id, updated_by)

    if not config:
        raise HTTPException(404, f"Configuration not found: {config_id}")

    return {"message": f"Configuration {config_id} disabled"}


# =============================================================================
# Alert History
# =============================================================================

@router.get("/history")
async def get_history(
    agent_id: Optional[str] = Query(default=None),
    metric_type: Optional[str] = Query(default=None),
    alert_type: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    configuration_id: Optional[int] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    acknowledged: Optional[bool] = Query(default=None),
    resolved: Optional[bool] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0)
):
    """Alert history, newest first"""
    metric = _parse_enum(MetricType, metric_type, "metric_type")
    kind = _parse_enum(AlertType, alert_type, "alert_type")
    level = _parse_enum(Severity, severity, "severity")

    history = get_alert_history()
    alerts = await history.get_alert_history(
        agent_id=agent_id,
        metric_type=metric.value if metric else None,
        alert_type=kind.value if kind else None,
        severity=level.value if level else None,
        configuration_id=configuration_id,
        start=start,
        end=end,
        acknowledged=acknowledged,
        resolved=resolved,
        limit=limit,
        offset=offset,
    )

    return {
        "count": len(alerts),
        "alerts": [a.to_dict() for a in alerts]
    }


@router.get("/history/{alert_id}")
async def get_alert(alert_id: int):
    history = get_alert_history()
    alert = await history.get_alert(alert_id)

    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {"alert": alert.to_dict()}


@router.post("/history/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: int, request: Optional[AcknowledgeRequest] = None):
    history = get_alert_history()
    alert = await history.acknowledge_alert(alert_id, request.acknowledged_by if request else None)

    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {
        "message": "Alert acknowledged",
        "alert": alert.to_dict()
    }


@router.post("/history/{alert_id}/resolve")
async def resolve_alert(alert_id: int, request: Optional[ResolveRequest] = None):
    request = request or ResolveRequest()
    history = get_alert_history()
    alert = await history.resolve_alert(alert_id, request.resolved_by, request.notes)

    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {
        "message": "Alert resolved",
        "alert": alert.to_dict()
    }


@router.get("/active")
async def get_active(
    agent_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500)
):
    """Unresolved alerts"""
    history = get_alert_history()
    alerts = await history.get_active_alerts(agent_id, limit)

    return {
        "count": len(alerts),
        "alerts": [a.to_dict() for a in alerts]
    }


@router.get("/recent")
async def get_recent(limit: int = Query(default=50, le=100)):
    """Alerts emitted since this process started"""
    detector = get_detector()
    recent = detector.get_history(limit)

    return {
        "count": len(recent),
        "alerts": [a.to_dict() for a in recent]
    }


@router.get("/stats")
async def get_stats(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None)
):
    history = get_alert_history()
    return {
        "history": await history.get_alert_stats(start=start, end=end),
        "detector": get_detector().stats()
    }


# =============================================================================
# SSE Stream
# =============================================================================

@router.get("/stream")
async def stream_alerts():
    """
    Server-Sent Events stream for real-time alerts.

    Only alerts whose configuration has notify_websocket are pushed.

    Connect via EventSource in browser:
        const es = new EventSource('/api/alerts/stream');
        es.onmessage = (e) => console.log(JSON.parse(e.data));
    """
    detector = get_detector()

    async def event_generator():
        # Send initial connection message
        yield f"data: {json.dumps({'type': 'connected', 'message': 'Alert stream connected'})}\n\n"

        while True:
            try:
                # Wait for event with timeout (for keepalive)
                event = await detector.get_event(timeout=30.0)

                if event:
                    yield f"data: {json.dumps(event.to_dict())}\n\n"
                else:
                    # Keepalive ping
                    yield ": keepalive\n\n"

            except asyncio.CancelledError:
                break

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )


# =============================================================================
# Testing
# =============================================================================

@router.post("/test")
async def test_alerts(request: TestAlertRequest):
    """
    Evaluate a value series against configurations.

    Nothing is persisted and no cooldown applies. Useful for tuning
    configurations without live data.
    """
    metric_type = _parse_enum(MetricType, request.metric_type, "metric_type")
    resolution = _parse_enum(Resolution, request.resolution, "resolution")

    now = utc_now()
    window = MetricWindow(
        agent_id="test",
        metric_type=metric_type,
        resolution=resolution,
        samples=tuple(
            MetricSample(agent_id="test", metric_type=metric_type, ts=now, value=v)
            for v in request.values
        ),
    )

    settings = get_settings()
    indicators = indicator_calc.calculate(
        window,
        stochastic_d_mode=settings.stochastic_d_mode,
        macd_signal_mode=settings.macd_signal_mode,
    )
    if indicators is None:
        raise HTTPException(400, f"At least {indicator_calc.MIN_WINDOW} values required, got {len(request.values)}")

    source = get_configuration_source()
    configs = await source.list_configurations(enabled_only=True)
    if request.configuration_ids is not None:
        configs = [c for c in configs if c.id in request.configuration_ids]

    candidates = analyze_confluence(indicators, configs)

    return {
        "input_count": len(request.values),
        "configurations_evaluated": len(configs),
        "indicators": indicators.to_dict(),
        "triggered_count": len(candidates),
        "triggered": [c.to_dict() for c in candidates]
    }
