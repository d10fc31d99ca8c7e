"""
Ingestion Engine
Single entry point for metric reports, live or backfilled.

Flow:
1. Report → buffer + agent_metrics
2. Report → one streaming resampler per candle resolution
3. Completed candles → metric_candles (upsert)
4. on_report callbacks
"""

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .buffer import MetricBuffer
from .config import get_settings
from .models import IngestionResult, MetricCandle, MetricReport, Resolution
from .resampler import CandleResampler, resample_reports

logger = logging.getLogger(__name__)

OnReportCallback = Callable[[MetricReport], None]

CANDLE_RESOLUTIONS = [r for r in Resolution if r.is_candle]


class IngestionEngine:
    def __init__(
        self,
        storage=None,
        buffer_size: int = 1000,
        resolutions: List[Resolution] = None
    ):
        self._storage = storage
        self._buffer = MetricBuffer(maxlen=buffer_size)
        self._resolutions = [Resolution(r) for r in (resolutions or CANDLE_RESOLUTIONS)]
        self._resamplers: Dict[Resolution, CandleResampler] = {
            r: CandleResampler(r) for r in self._resolutions
        }
        self._on_report: List[OnReportCallback] = []
        # guards resamplers and buffer across worker threads
        self._lock = threading.RLock()
        self._stats = {
            "reports_ingested": 0,
            "reports_backfilled": 0,
            "candles_created": 0,
            "errors": 0,
            "start_time": datetime.now()
        }

    def ingest(self, report: MetricReport) -> List[MetricCandle]:
        """Process one live report. Returns candles it completed."""
        with self._lock:
            self._buffer.append(report)
            if self._storage:
                self._storage.save_reports([report])
            self._stats["reports_ingested"] += 1

            completed = []
            for resampler in self._resamplers.values():
                candle = resampler.process(report)
                if candle:
                    completed.append(candle)

            if completed:
                self._stats["candles_created"] += len(completed)
                if self._storage:
                    self._storage.save_candles(completed, merge=True)

        for callback in self._on_report:
            try:
                callback(report)
            except Exception:
                logger.exception("on_report callback failed for agent %s", report.agent_id)

        return completed

    def ingest_batch(self, reports: List[MetricReport]) -> IngestionResult:
        """Replay reports through the live path, oldest first"""
        if not reports:
            return IngestionResult(success=True, count=0, message="No reports")

        errors = 0
        candles = 0
        for report in sorted(reports, key=lambda r: r.ts):
            try:
                candles += len(self.ingest(report))
            except sqlite3.Error:
                errors += 1
                self._stats["errors"] += 1
                logger.exception("Failed to ingest report for agent %s", report.agent_id)

        agents = sorted(set(r.agent_id for r in reports))
        return IngestionResult(
            success=errors == 0,
            count=len(reports) - errors,
            errors=errors,
            agents=agents,
            candles=candles,
            message=f"Ingested {len(reports) - errors} reports"
        )

    def backfill(self, agent_id: str, reports: List[MetricReport]) -> IngestionResult:
        """
        Store historical reports and their candles in bulk.

        Candles are rebuilt with pandas and upserted, so re-uploading the
        same history is harmless. Live resamplers are left alone.
        """
        reports = sorted((r for r in reports if r.agent_id == agent_id), key=lambda r: r.ts)
        if not reports:
            return IngestionResult(success=True, count=0, agents=[agent_id], message="No reports")

        candles: List[MetricCandle] = []
        for resolution in self._resolutions:
            candles.extend(resample_reports(reports, resolution))

        with self._lock:
            if self._storage:
                self._storage.save_reports(reports)
                self._storage.save_candles(candles)

            self._buffer.extend(reports)
            self._stats["reports_backfilled"] += len(reports)
            self._stats["candles_created"] += len(candles)
        logger.info("Backfilled %d reports and %d candles for agent %s", len(reports), len(candles), agent_id)

        return IngestionResult(
            success=True,
            count=len(reports),
            agents=[agent_id],
            candles=len(candles),
            message=f"Backfilled {len(reports)} reports"
        )

    def get_latest(self, agent_id: str) -> Optional[MetricReport]:
        latest = self._buffer.get_latest(agent_id)
        if latest is None and self._storage:
            latest = self._storage.get_latest_report(agent_id)
        return latest

    def flush(self, agent_id: str = None) -> int:
        """Force-complete building candles and persist them"""
        with self._lock:
            candles = []
            for resampler in self._resamplers.values():
                candles.extend(resampler.flush(agent_id))
            if candles and self._storage:
                self._storage.save_candles(candles, merge=True)
            self._stats["candles_created"] += len(candles)
            return len(candles)

    def on_report(self, callback: OnReportCallback) -> None:
        self._on_report.append(callback)

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        return {
            **self._stats,
            "start_time": self._stats["start_time"].isoformat(),
            "uptime_seconds": uptime,
            "buffer": self._buffer.stats(),
            "resolutions": [r.value for r in self._resolutions],
        }


_engine: Optional[IngestionEngine] = None


def get_engine() -> IngestionEngine:
    global _engine
    if _engine is None:
        # db imports core.models; resolved lazily to keep core importable on its own
        from db import get_storage

        _engine = IngestionEngine(
            storage=get_storage(),
            buffer_size=get_settings().buffer_size,
        )
    return _engine
