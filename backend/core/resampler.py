"""
Candle Resampler
Converts the metric report stream to OHLC candles in real-time.

Flow:
1. Report arrives
2. Find correct time bucket
3. Update building candle (open/high/low/close per metric)
4. If time boundary crossed → emit completed candle
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pandas as pd

from .models import MetricCandle, MetricReport, MetricType, OHLCValues, Resolution


# =============================================================================
# Resampler
# =============================================================================

class CandleResampler:
    """
    Real-time candle builder from metric reports.

    Maintains current "building" candle per agent.
    Emits completed candles when time boundary is crossed.

    Usage:
        resampler = CandleResampler(Resolution.MIN_15)

        for report in reports:
            completed = resampler.process(report)
            if completed:
                storage.save_candles([completed], merge=True)
    """

    def __init__(self, resolution: Resolution = Resolution.MIN_15):
        resolution = Resolution(resolution)
        if not resolution.is_candle:
            raise ValueError("Raw resolution has no candles")
        self.resolution = resolution
        self.interval = resolution.minutes * 60

        # Current building candles: agent_id -> MetricCandle
        self._building: Dict[str, MetricCandle] = {}

    def bucket_start(self, ts: datetime) -> datetime:
        """
        Get candle open time for a given timestamp.

        Example (15min candles):
            10:07:23 → 10:00:00
            10:15:00 → 10:15:00
        """
        epoch = ts.timestamp()
        bucket_epoch = (epoch // self.interval) * self.interval
        return datetime.fromtimestamp(bucket_epoch, tz=timezone.utc)

    def process(self, report: MetricReport) -> Optional[MetricCandle]:
        """
        Process a single report.

        Returns:
            - Completed candle if time boundary crossed
            - None if candle still building
        """
        start = self.bucket_start(report.ts)
        current = self._building.get(report.agent_id)

        if current is not None and current.ts == start:
            current.update(report)
            return None

        # Late reports for an older bucket are folded into the open candle
        # rather than reopening a completed one.
        if current is not None and start < current.ts:
            current.update(report)
            return None

        candle = MetricCandle(
            agent_id=report.agent_id,
            resolution=self.resolution,
            ts=start,
            ts_end=start + timedelta(seconds=self.interval),
        )
        candle.update(report)
        self._building[report.agent_id] = candle
        return current

    def process_batch(self, reports: List[MetricReport]) -> List[MetricCandle]:
        """
        Process batch of reports.
        Returns all completed candles.
        """
        completed = []
        for report in reports:
            candle = self.process(report)
            if candle:
                completed.append(candle)
        return completed

    def get_building(self, agent_id: str) -> Optional[MetricCandle]:
        """Get current building candle (incomplete)"""
        return self._building.get(agent_id)

    def flush(self, agent_id: str = None) -> List[MetricCandle]:
        """
        Force-complete building candles.

        Returns flushed candles.
        """
        if agent_id:
            candle = self._building.pop(agent_id, None)
            return [candle] if candle else []

        candles = list(self._building.values())
        self._building.clear()
        return candles


# =============================================================================
# Batch Resampling (for backfill uploads)
# =============================================================================

_PANDAS_FREQ = {
    Resolution.MIN_15: "15min",
    Resolution.MIN_30: "30min",
    Resolution.HOUR_1: "1h",
    Resolution.HOUR_4: "4h",
    Resolution.DAY_1: "1D",
}


def resample_reports(
    reports: List[MetricReport],
    resolution: Resolution
) -> List[MetricCandle]:
    """
    Batch resample one agent's reports to candles.

    Stateless utility for historical backfill; buckets line up with the
    streaming resampler (epoch-aligned, UTC). Empty buckets are dropped.
    """
    resolution = Resolution(resolution)
    if not reports or not resolution.is_candle:
        return []

    agent_id = reports[0].agent_id
    df = pd.DataFrame([
        {
            "ts": r.ts,
            **{m.value: r.value(m) for m in MetricType},
        }
        for r in reports
    ])
    df["ts"] = pd.to_datetime(df["ts"], utc=True)
    for metric in MetricType:
        df[metric.value] = pd.to_numeric(df[metric.value], errors="coerce")
    df = df.sort_values("ts").set_index("ts")

    resampled = df.resample(_PANDAS_FREQ[resolution], origin="epoch")
    counts = resampled.size()
    ohlc = {m.value: resampled[m.value].agg(["first", "max", "min", "last"]) for m in MetricType}

    interval = timedelta(minutes=resolution.minutes)
    candles = []
    for start, count in counts.items():
        if count == 0:
            continue
        values = {}
        for metric in MetricType:
            row = ohlc[metric.value].loc[start]
            if pd.isna(row["first"]):
                continue
            values[metric.value] = OHLCValues(
                open=float(row["first"]),
                high=float(row["max"]),
                low=float(row["min"]),
                close=float(row["last"]),
            )
        start_dt = start.to_pydatetime()
        candles.append(MetricCandle(
            agent_id=agent_id,
            resolution=resolution,
            ts=start_dt,
            ts_end=start_dt + interval,
            data_points=int(count),
            **values,
        ))
    return candles
