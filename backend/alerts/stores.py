"""
Collaborator Protocols
What the detector needs from the outside world.

The SQLite-backed implementations live in db.stores; tests use fakes.
"""

from typing import List, Optional, Protocol

from core.models import MetricType, MetricWindow, Resolution

from .models import AlertConfiguration, AlertRecord


class WindowSource(Protocol):
    async def get_effective_resolution(self, agent_id: str) -> Resolution:
        ...

    async def get_window(
        self,
        agent_id: str,
        resolution: Resolution,
        lookback: int,
        metric_type: MetricType
    ) -> MetricWindow:
        ...


class ConfigurationSource(Protocol):
    async def get_enabled_configurations(self) -> List[AlertConfiguration]:
        ...


class AlertHistoryStore(Protocol):
    async def has_recent_similar_alert(
        self,
        agent_id: str,
        configuration_id: Optional[int],
        window_minutes: int
    ) -> bool:
        ...

    async def save_alert(self, record: AlertRecord) -> AlertRecord:
        ...

    async def save_alert_if_absent(
        self,
        record: AlertRecord,
        window_minutes: int
    ) -> Optional[AlertRecord]:
        """Insert unless a similar unresolved alert exists; atomic."""
        ...
