from fastapi import APIRouter, HTTPException, UploadFile, File, Query
import pandas as pd
from io import StringIO
import asyncio
import json
import logging
from typing import Any, Dict, List

from core import MetricReport, IngestionResult, to_metric_report, get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["Upload"])

TIMESTAMP_COLUMNS = ['collected_at', 'timestamp', 'ts', 'time', 'datetime', 'date']
METRIC_COLUMNS = [
    'cpu_percent', 'memory_percent', 'disk_percent',
    'cpu_usage', 'memory_usage', 'disk_usage',
    'cpu', 'memory', 'disk',
]


@router.post("/csv", response_model=IngestionResult)
async def upload_csv(
    file: UploadFile = File(...),
    agent_id: str = Query(..., description="Agent the history belongs to")
):
    content = await file.read()
    try:
        df = pd.read_csv(StringIO(content.decode('utf-8')))
    except (UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise HTTPException(400, f"Unreadable CSV: {exc}")
    df.columns = df.columns.str.lower().str.strip()

    reports, errors = _parse_metric_csv(df, agent_id)
    if not reports:
        raise HTTPException(400, "No valid rows in file")

    engine = get_engine()
    result = await asyncio.to_thread(engine.backfill, agent_id, reports)
    result.errors += errors

    return result


def _parse_metric_csv(df: pd.DataFrame, agent_id: str):
    ts_col = next((c for c in TIMESTAMP_COLUMNS if c in df.columns), None)
    if not ts_col:
        raise HTTPException(400, "CSV must have a timestamp column (collected_at, timestamp, ts)")
    if not any(c in df.columns for c in METRIC_COLUMNS):
        raise HTTPException(400, "CSV must have at least one of cpu_percent, memory_percent, disk_percent")

    reports: List[MetricReport] = []
    errors = 0
    for _, row in df.iterrows():
        ts = row[ts_col]
        if pd.isna(ts):
            errors += 1
            continue
        # Numeric columns hold Unix seconds/milliseconds
        ts = ts.item() if hasattr(ts, "item") else ts
        data = {c: row[c] for c in METRIC_COLUMNS if c in df.columns and pd.notna(row[c])}
        data["collected_at"] = ts if isinstance(ts, (int, float)) else str(ts)
        try:
            reports.append(to_metric_report(data, agent_id=agent_id))
        except (TypeError, ValueError):
            errors += 1

    if errors:
        logger.info("Skipped %d invalid CSV rows for agent %s", errors, agent_id)
    return reports, errors


@router.post("/ndjson", response_model=IngestionResult)
async def upload_ndjson(
    file: UploadFile = File(...),
    agent_id: str = Query(..., description="Agent the history belongs to")
):
    content = await file.read()
    lines = content.decode('utf-8').strip().split('\n')

    reports = []
    errors = 0

    for line in lines:
        if not line.strip():
            continue
        try:
            reports.append(to_metric_report(json.loads(line), agent_id=agent_id))
        except (TypeError, ValueError):
            errors += 1

    if not reports:
        raise HTTPException(400, "No valid records in file")

    engine = get_engine()
    result = await asyncio.to_thread(engine.backfill, agent_id, reports)
    result.errors += errors

    return result


@router.post("/reports", response_model=IngestionResult)
async def upload_report_batch(
    payload: List[Dict[str, Any]],
    agent_id: str = Query(..., description="Agent the history belongs to")
):
    reports = []
    errors = 0

    for data in payload:
        try:
            reports.append(to_metric_report(data, agent_id=agent_id))
        except (TypeError, ValueError):
            errors += 1

    if not reports:
        raise HTTPException(400, "No valid reports")

    engine = get_engine()
    result = await asyncio.to_thread(engine.backfill, agent_id, reports)
    result.errors += errors

    return result
