"""
Confluence Detector
Runs the full pipeline for one agent and emits the resulting alerts.

Flow:
1. Fetch enabled configurations (cached upstream)
2. Resolve the agent's effective resolution
3. Per metric type under watch: window → indicators → confluence
4. Debounce each candidate against alert history
5. Persisted alerts → listeners, SSE queue, summary list

Any store failure or timeout aborts the whole call and returns [];
the next metric report retries.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from analytics import indicators as indicator_calc
from analytics.models import IndicatorSet
from core.config import Settings, get_settings
from core.errors import StoreUnavailableError
from core.models import MetricSnapshot, MetricType, Resolution

from . import confluence
from .debounce import DebounceGate
from .models import AlertCandidate, AlertConfiguration, AlertRecord, AlertSummary
from .stores import AlertHistoryStore, ConfigurationSource, WindowSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConfluenceDetector:
    """
    Multi-indicator alert detector.

    Holds no per-agent state between calls; the cooldown lives in alert
    history. Only counters and a bounded event history are kept here.

    Usage:
        detector = ConfluenceDetector(windows, configurations, history)
        summaries = await detector.detect_and_create_alerts("agent-1", snapshot)
    """

    def __init__(
        self,
        windows: WindowSource,
        configurations: ConfigurationSource,
        history: AlertHistoryStore,
        settings: Optional[Settings] = None,
        history_size: int = 100
    ):
        self.settings = settings or Settings()
        self.windows = windows
        self.configurations = configurations
        self.gate = DebounceGate(history, self.settings.cooldown_minutes)

        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=history_size)
        self._history: deque = deque(maxlen=history_size)
        self._callbacks: List[Callable[[AlertRecord], None]] = []
        self._stats = {
            "evaluations": 0,
            "triggers": 0,
            "suppressed": 0,
            "insufficient_data": 0,
            "store_failures": 0,
            "events_dropped": 0,
            "start_time": datetime.now()
        }

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        timeout = self.settings.io_timeout_sec
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(f"{what} timed out after {timeout}s") from exc

    # =========================================================================
    # Pipeline Steps
    # =========================================================================

    async def calculate_indicators(
        self,
        agent_id: str,
        metric_type: MetricType = MetricType.CPU,
        resolution: Optional[Resolution] = None
    ) -> Optional[IndicatorSet]:
        """
        Compute indicators from the agent's history at its effective resolution.

        Returns:
            IndicatorSet, or None when fewer than 14 samples exist

        Raises:
            StoreUnavailableError: Window or resolution lookup failed
        """
        metric_type = MetricType(metric_type)
        if resolution is None:
            resolution = await self._call(
                self.windows.get_effective_resolution(agent_id), "resolution lookup"
            )

        window = await self._call(
            self.windows.get_window(agent_id, resolution, self.settings.lookback_periods, metric_type),
            "window fetch",
        )

        result = indicator_calc.calculate(
            window,
            stochastic_d_mode=self.settings.stochastic_d_mode,
            macd_signal_mode=self.settings.macd_signal_mode,
        )
        if result is None:
            logger.info(
                "Insufficient %s data for agent %s at %s: %d/%d points",
                metric_type.value, agent_id, resolution.value, len(window), indicator_calc.MIN_WINDOW,
            )
        return result

    def analyze_confluence(
        self,
        indicators: Optional[IndicatorSet],
        configurations: Iterable[AlertConfiguration]
    ) -> List[AlertCandidate]:
        return confluence.analyze_confluence(indicators, configurations)

    async def detect_and_create_alerts(
        self,
        agent_id: str,
        snapshot: Optional[MetricSnapshot] = None
    ) -> List[AlertSummary]:
        """
        Full detection for one agent.

        Never raises; returns [] when there is nothing to alert on or a
        store is unavailable.
        """
        self._stats["evaluations"] += 1

        try:
            configurations = await self._call(
                self.configurations.get_enabled_configurations(), "configuration fetch"
            )
            if not configurations:
                return []

            resolution = await self._call(
                self.windows.get_effective_resolution(agent_id), "resolution lookup"
            )

            summaries = []
            for metric_type in _metric_types(configurations):
                indicator_set = await self.calculate_indicators(agent_id, metric_type, resolution)
                if indicator_set is None:
                    self._stats["insufficient_data"] += 1
                    continue

                for candidate in self.analyze_confluence(indicator_set, configurations):
                    record = await self._call(
                        self.gate.admit(agent_id, candidate, snapshot), "alert history write"
                    )
                    if record is None:
                        self._stats["suppressed"] += 1
                        continue
                    self._emit(record)
                    summaries.append(record.to_summary())

            return summaries

        except StoreUnavailableError:
            self._stats["store_failures"] += 1
            logger.exception("Confluence detection aborted for agent %s", agent_id)
            return []

    def _emit(self, record: AlertRecord) -> None:
        self._history.append(record)
        self._stats["triggers"] += 1
        logger.warning(
            "Confluence alert %r for agent %s: severity=%s indicators=%d",
            record.alert_name, record.agent_id, record.severity.value, record.indicator_count,
        )

        if record.notify_websocket:
            try:
                self._event_queue.put_nowait(record)
            except asyncio.QueueFull:
                # no subscriber is draining; the oldest event gives way
                self._event_queue.get_nowait()
                self._event_queue.put_nowait(record)
                self._stats["events_dropped"] += 1

        for callback in self._callbacks:
            try:
                callback(record)
            except Exception:
                logger.exception("Alert callback failed for alert %s", record.id)

    # =========================================================================
    # Listeners & Introspection
    # =========================================================================

    async def get_event(self, timeout: float = None) -> Optional[AlertRecord]:
        """Next streamed alert. None waits forever; 0 polls without waiting."""
        if timeout is None:
            return await self._event_queue.get()
        if timeout <= 0:
            try:
                return self._event_queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._event_queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def get_history(self, limit: int = 50) -> List[AlertRecord]:
        history = list(self._history)
        history.reverse()
        return history[:limit]

    def on_alert(self, callback: Callable[[AlertRecord], None]) -> None:
        self._callbacks.append(callback)

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        return {
            **self._stats,
            "start_time": self._stats["start_time"].isoformat(),
            "uptime_seconds": round(uptime, 2),
            "cooldown_minutes": self.gate.cooldown_minutes,
            "history_size": len(self._history),
            "queue_size": self._event_queue.qsize()
        }


def _metric_types(configurations: Iterable[AlertConfiguration]) -> List[MetricType]:
    seen = []
    for config in configurations:
        if config.enabled and config.metric_type not in seen:
            seen.append(config.metric_type)
    return seen


_detector: Optional[ConfluenceDetector] = None


def get_detector() -> ConfluenceDetector:
    """Get singleton detector wired to the SQLite stores"""
    global _detector
    if _detector is None:
        # db depends on alerts.models, so the wiring is resolved lazily
        from db.stores import get_alert_history, get_configuration_source, get_window_source

        _detector = ConfluenceDetector(
            windows=get_window_source(),
            configurations=get_configuration_source(),
            history=get_alert_history(),
            settings=get_settings(),
        )
    return _detector
