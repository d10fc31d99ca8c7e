"""
Metric Window Provider
Turns stored history into the oldest-first series indicators consume.

Resolution resolution order:
1. Per-agent override (agent_settings)
2. Configured default
3. raw
"""

from typing import Any, Dict, List, Optional

import pandas as pd

from .models import (
    MetricSample,
    MetricType,
    MetricWindow,
    Resolution,
    RESOLUTION_DESCRIPTIONS,
)


class MetricWindowProvider:
    """
    Reads metric windows from storage.

    Raw resolution uses the reported values; every other resolution uses
    the close of completed candles.

    Usage:
        provider = MetricWindowProvider(storage)
        resolution = provider.get_effective_resolution("agent-1")
        window = provider.get_window("agent-1", resolution, 50, MetricType.CPU)
    """

    def __init__(self, storage, default_resolution: Optional[Resolution] = Resolution.RAW):
        self.storage = storage
        self.default_resolution = Resolution(default_resolution) if default_resolution else None

    def get_effective_resolution(self, agent_id: str) -> Resolution:
        override = self.storage.get_agent_resolution(agent_id)
        if override is not None:
            return override
        return self.default_resolution or Resolution.RAW

    def get_window(
        self,
        agent_id: str,
        resolution: Optional[Resolution] = None,
        lookback: int = 50,
        metric_type: MetricType = MetricType.CPU
    ) -> MetricWindow:
        """
        Up to `lookback` most recent samples, oldest first.

        Periods where the metric was not reported are skipped.
        """
        metric_type = MetricType(metric_type)
        resolution = Resolution(resolution) if resolution else self.get_effective_resolution(agent_id)

        if resolution.is_candle:
            df = self.storage.get_candles_df(agent_id, resolution, lookback)
            ts_column, value_column = "candle_start", f"{metric_type.value}_close"
        else:
            df = self.storage.get_metrics_df(agent_id, lookback)
            ts_column, value_column = "collected_at", f"{metric_type.value}_percent"

        samples = ()
        if not df.empty:
            series = df[[ts_column, value_column]].dropna()
            samples = tuple(
                MetricSample(
                    agent_id=agent_id,
                    metric_type=metric_type,
                    ts=pd.Timestamp(ts).to_pydatetime(),
                    value=float(value),
                )
                for ts, value in zip(series[ts_column], series[value_column])
            )

        return MetricWindow(
            agent_id=agent_id,
            metric_type=metric_type,
            resolution=resolution,
            samples=samples,
        )

    def set_agent_resolution(self, agent_id: str, resolution: Optional[Resolution]) -> Resolution:
        """Set the agent's override, or clear it with None. Returns the effective resolution."""
        self.storage.set_agent_resolution(agent_id, Resolution(resolution) if resolution else None)
        return self.get_effective_resolution(agent_id)

    def resolution_info(self) -> Dict[str, Any]:
        """Available resolutions for operators picking a sensitivity"""
        resolutions: List[Dict[str, Any]] = [
            {
                "value": r.value,
                "minutes": r.minutes,
                "description": RESOLUTION_DESCRIPTIONS[r],
            }
            for r in Resolution
        ]
        return {
            "resolutions": resolutions,
            "default": (self.default_resolution or Resolution.RAW).value,
        }
