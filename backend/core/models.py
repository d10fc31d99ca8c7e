"""
Domain Models
The SINGLE SOURCE OF TRUTH for metric data formats.

After normalization, the system only sees these types.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enumerations
# =============================================================================

class MetricType(str, Enum):
    """Health metrics reported by agents"""
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"


class Resolution(str, Enum):
    """Time aggregation applied before indicators are computed"""
    RAW = "raw"
    MIN_15 = "15min"
    MIN_30 = "30min"
    HOUR_1 = "1hour"
    HOUR_4 = "4hour"
    DAY_1 = "1day"

    @property
    def minutes(self) -> int:
        return RESOLUTION_MINUTES[self]

    @property
    def is_candle(self) -> bool:
        return self is not Resolution.RAW


# Raw samples arrive roughly every 5 minutes; the figure is informational only.
RESOLUTION_MINUTES = {
    Resolution.RAW: 5,
    Resolution.MIN_15: 15,
    Resolution.MIN_30: 30,
    Resolution.HOUR_1: 60,
    Resolution.HOUR_4: 240,
    Resolution.DAY_1: 1440,
}

RESOLUTION_DESCRIPTIONS = {
    Resolution.RAW: "Raw data points - most sensitive, most false alarms",
    Resolution.MIN_15: "Very sensitive - fewer false alarms than raw, but still responsive",
    Resolution.MIN_30: "Balanced - good compromise between responsiveness and reliability",
    Resolution.HOUR_1: "Conservative - fewer alerts, higher confidence",
    Resolution.HOUR_4: "Very conservative - minimal false alarms, delayed notifications",
    Resolution.DAY_1: "Daily trends - best for long-term monitoring",
}


def parse_timestamp(v: Any) -> Any:
    """
    Handle various timestamp formats.

    Naive datetimes are taken to be UTC so that every stored timestamp
    compares correctly against every other.
    """
    if isinstance(v, str):
        v = datetime.fromisoformat(v.strip().replace('Z', '+00:00'))
    elif isinstance(v, (int, float)) and not isinstance(v, bool):
        # Unix timestamp (seconds or milliseconds)
        v = datetime.fromtimestamp(v / 1000 if v > 1e12 else v, tz=timezone.utc)
    if isinstance(v, datetime) and v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    return v


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# MetricReport: The Core Data Contract
# =============================================================================

class MetricReport(BaseModel):
    """
    One health report from an agent.

    The engine never sees request payloads or CSV rows, only MetricReports.

    Fields:
        agent_id: Monitored agent identifier
        ts: When the agent collected the values
        cpu_percent / memory_percent / disk_percent: Utilization, 0-100
    """
    agent_id: str = Field(..., min_length=1, max_length=64)
    ts: datetime
    cpu_percent: Optional[float] = Field(default=None, ge=0, le=100)
    memory_percent: Optional[float] = Field(default=None, ge=0, le=100)
    disk_percent: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator('agent_id', mode='before')
    @classmethod
    def strip_agent_id(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('ts', mode='before')
    @classmethod
    def parse_ts(cls, v):
        return parse_timestamp(v)

    def value(self, metric_type: MetricType) -> Optional[float]:
        return getattr(self, f"{MetricType(metric_type).value}_percent")

    def snapshot(self) -> "MetricSnapshot":
        return MetricSnapshot(
            cpu_percent=self.cpu_percent,
            memory_percent=self.memory_percent,
            disk_percent=self.disk_percent,
            collected_at=self.ts,
        )


class MetricSnapshot(BaseModel):
    """
    Latest cpu/memory/disk reading for an agent.

    Only used to enrich persisted alerts; never enters indicator math.
    """
    cpu_percent: Optional[float] = None
    memory_percent: Optional[float] = None
    disk_percent: Optional[float] = None
    collected_at: datetime = Field(default_factory=utc_now)

    @field_validator('collected_at', mode='before')
    @classmethod
    def parse_collected_at(cls, v):
        return utc_now() if v is None else parse_timestamp(v)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_percent": self.cpu_percent,
            "memory_percent": self.memory_percent,
            "disk_percent": self.disk_percent,
            "timestamp": self.collected_at.isoformat(),
        }


# =============================================================================
# MetricCandle: Aggregated Metric Data
# =============================================================================

class OHLCValues(BaseModel):
    """Open/high/low/close of one metric inside one candle"""
    open: float
    high: float
    low: float
    close: float

    @classmethod
    def start(cls, value: float) -> "OHLCValues":
        return cls(open=value, high=value, low=value, close=value)

    def update(self, value: float) -> None:
        self.high = max(self.high, value)
        self.low = min(self.low, value)
        self.close = value


class MetricCandle(BaseModel):
    """
    A single time-aggregated candle for one agent.

    Either:
    - Built by resampling metric reports
    - Backfilled in bulk from uploaded history
    """
    agent_id: str
    resolution: Resolution
    ts: datetime  # Candle open time
    ts_end: datetime
    cpu: Optional[OHLCValues] = None
    memory: Optional[OHLCValues] = None
    disk: Optional[OHLCValues] = None
    data_points: int = 0

    @field_validator('ts', 'ts_end', mode='before')
    @classmethod
    def parse_bounds(cls, v):
        return parse_timestamp(v)

    def update(self, report: MetricReport) -> None:
        """Fold a report into the candle (mutates in place)"""
        for metric in MetricType:
            value = report.value(metric)
            if value is None:
                continue
            current = getattr(self, metric.value)
            if current is None:
                setattr(self, metric.value, OHLCValues.start(value))
            else:
                current.update(value)
        self.data_points += 1

    def close_value(self, metric_type: MetricType) -> Optional[float]:
        ohlc = getattr(self, MetricType(metric_type).value)
        return ohlc.close if ohlc is not None else None


# =============================================================================
# Window Types: what the indicator math consumes
# =============================================================================

@dataclass(frozen=True)
class MetricSample:
    """One value of one metric type at one timestamp for one agent"""
    agent_id: str
    metric_type: MetricType
    ts: datetime
    value: float


@dataclass(frozen=True)
class MetricWindow:
    """
    Ordered (oldest → newest) history of a single metric for one agent.

    Fewer than 14 samples means no indicator can be computed; that is
    reported as "no result", never as an error.
    """
    agent_id: str
    metric_type: MetricType
    resolution: Resolution
    samples: Tuple[MetricSample, ...] = ()

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def values(self) -> np.ndarray:
        return np.array([s.value for s in self.samples], dtype=float)

    @property
    def latest(self) -> Optional[MetricSample]:
        return self.samples[-1] if self.samples else None


# =============================================================================
# API Response Models
# =============================================================================

class IngestionResult(BaseModel):
    """Result of metric ingestion"""
    success: bool = True
    count: int = 0
    errors: int = 0
    agents: List[str] = []
    candles: int = 0
    message: str = ""


# =============================================================================
# Converters: External → Internal
# =============================================================================

def _first_present(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def to_metric_report(data: dict, agent_id: Optional[str] = None) -> MetricReport:
    """
    Convert an external metric payload to MetricReport.

    This is the NORMALIZATION POINT.
    All external formats go through here.

    Handles:
    - timestamp/collected_at/ts field variants
    - *_percent / *_usage / bare metric name variants
    - type coercion
    """
    ts = _first_present(data, 'collected_at', 'timestamp', 'ts', 'time')

    values = {}
    for metric in MetricType:
        raw = _first_present(data, f"{metric.value}_percent", f"{metric.value}_usage", metric.value)
        values[f"{metric.value}_percent"] = float(raw) if raw is not None else None

    return MetricReport(
        agent_id=agent_id or str(data['agent_id']),
        ts=ts if ts is not None else utc_now(),
        **values,
    )
