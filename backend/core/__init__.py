"""
Core Module
Metric data model, ingestion and windowing.

Exports:
    Models: MetricReport, MetricCandle, MetricWindow, MetricType, Resolution
    Engine: get_engine, IngestionEngine
    Buffer: MetricBuffer
    Window: MetricWindowProvider
    Converters: to_metric_report
"""

from .models import (
    IngestionResult,
    MetricCandle,
    MetricReport,
    MetricSample,
    MetricSnapshot,
    MetricType,
    MetricWindow,
    Resolution,
    to_metric_report,
)

from .engine import get_engine, IngestionEngine
from .buffer import MetricBuffer
from .resampler import CandleResampler, resample_reports
from .window import MetricWindowProvider

__all__ = [
    # Models
    "IngestionResult",
    "MetricCandle",
    "MetricReport",
    "MetricSample",
    "MetricSnapshot",
    "MetricType",
    "MetricWindow",
    "Resolution",
    "to_metric_report",
    # Engine
    "get_engine",
    "IngestionEngine",
    # Buffer
    "MetricBuffer",
    # Resampler
    "CandleResampler",
    "resample_reports",
    # Window
    "MetricWindowProvider",
]
