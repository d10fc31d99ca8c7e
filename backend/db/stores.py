"""
Async Store Adapters
SQLiteStorage behind the detector's collaborator protocols.

Blocking SQLite calls run in worker threads (asyncio.to_thread). Driver
errors surface as StoreUnavailableError so the detector can fail closed.
"""

import asyncio
import logging
import sqlite3
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import pandas as pd

from alerts.models import AlertConfiguration, AlertRecord
from core.config import Settings, get_settings
from core.errors import StoreUnavailableError
from core.models import MetricType, MetricWindow, Resolution
from core.window import MetricWindowProvider

from .sqlite import SQLiteStorage, get_storage

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except (sqlite3.Error, pd.errors.DatabaseError) as exc:
        raise StoreUnavailableError(f"{fn.__name__} failed: {exc}") from exc


# =============================================================================
# Windows
# =============================================================================

class StorageWindowSource:
    """WindowSource over stored samples and candles"""

    def __init__(self, storage: SQLiteStorage, settings: Optional[Settings] = None):
        settings = settings or Settings()
        self.provider = MetricWindowProvider(storage, settings.default_resolution)

    async def get_effective_resolution(self, agent_id: str) -> Resolution:
        return await _run(self.provider.get_effective_resolution, agent_id)

    async def get_window(
        self,
        agent_id: str,
        resolution: Resolution,
        lookback: int,
        metric_type: MetricType
    ) -> MetricWindow:
        return await _run(self.provider.get_window, agent_id, resolution, lookback, metric_type)

    async def set_agent_resolution(self, agent_id: str, resolution: Optional[Resolution]) -> Resolution:
        return await _run(self.provider.set_agent_resolution, agent_id, resolution)


# =============================================================================
# Configurations
# =============================================================================

class StorageConfigurationSource:
    """
    ConfigurationSource with a time-based cache of enabled configurations.

    Every write through this class drops the cache.
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        ttl_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.storage = storage
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._cache: Optional[List[AlertConfiguration]] = None
        self._loaded_at: Optional[float] = None

    def invalidate(self) -> None:
        self._cache = None
        self._loaded_at = None

    def _is_fresh(self) -> bool:
        return self._cache is not None and self._clock() - self._loaded_at <= self.ttl_sec

    async def get_enabled_configurations(self) -> List[AlertConfiguration]:
        if not self._is_fresh():
            self._cache = await _run(self.storage.get_enabled_configurations)
            self._loaded_at = self._clock()
            logger.debug("Loaded %d enabled alert configurations", len(self._cache))
        return list(self._cache)

    async def list_configurations(self, enabled_only: bool = False) -> List[AlertConfiguration]:
        return await _run(self.storage.list_configurations, enabled_only)

    async def get_configuration(self, config_id: int) -> Optional[AlertConfiguration]:
        return await _run(self.storage.get_configuration, config_id)

    async def create_configuration(
        self,
        config: AlertConfiguration,
        created_by: Optional[str] = None
    ) -> AlertConfiguration:
        created = await _run(self.storage.create_configuration, config, created_by)
        self.invalidate()
        return created

    async def update_configuration(
        self,
        config_id: int,
        updates: Dict[str, Any],
        updated_by: Optional[str] = None
    ) -> Optional[AlertConfiguration]:
        updated = await _run(self.storage.update_configuration, config_id, updates, updated_by)
        self.invalidate()
        return updated

    async def delete_configuration(self, config_id: int, updated_by: Optional[str] = None) -> Optional[AlertConfiguration]:
        deleted = await _run(self.storage.delete_configuration, config_id, updated_by)
        self.invalidate()
        return deleted


# =============================================================================
# Alert History
# =============================================================================

class StorageAlertHistory:
    """AlertHistoryStore plus the lifecycle operations the API needs"""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    async def has_recent_similar_alert(
        self,
        agent_id: str,
        configuration_id: Optional[int],
        window_minutes: int
    ) -> bool:
        return await _run(self.storage.has_recent_similar_alert, agent_id, configuration_id, window_minutes)

    async def save_alert(self, record: AlertRecord) -> AlertRecord:
        return await _run(self.storage.save_alert, record)

    async def save_alert_if_absent(self, record: AlertRecord, window_minutes: int) -> Optional[AlertRecord]:
        return await _run(self.storage.save_alert_if_absent, record, window_minutes)

    async def get_alert(self, alert_id: int) -> Optional[AlertRecord]:
        return await _run(self.storage.get_alert, alert_id)

    async def get_alert_history(self, **filters: Any) -> List[AlertRecord]:
        return await _run(self.storage.get_alert_history, **filters)

    async def get_active_alerts(self, agent_id: Optional[str] = None, limit: int = 100) -> List[AlertRecord]:
        return await _run(self.storage.get_active_alerts, agent_id, limit)

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: Optional[str] = None) -> Optional[AlertRecord]:
        return await _run(self.storage.acknowledge_alert, alert_id, acknowledged_by)

    async def resolve_alert(
        self,
        alert_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Optional[AlertRecord]:
        return await _run(self.storage.resolve_alert, alert_id, resolved_by, notes)

    async def get_alert_stats(self, **filters: Any) -> Dict[str, Any]:
        return await _run(self.storage.get_alert_stats, **filters)


# =============================================================================
# Singletons
# =============================================================================

_window_source: Optional[StorageWindowSource] = None
_configuration_source: Optional[StorageConfigurationSource] = None
_alert_history: Optional[StorageAlertHistory] = None


def get_window_source() -> StorageWindowSource:
    global _window_source
    if _window_source is None:
        _window_source = StorageWindowSource(get_storage(), get_settings())
    return _window_source


def get_configuration_source() -> StorageConfigurationSource:
    global _configuration_source
    if _configuration_source is None:
        _configuration_source = StorageConfigurationSource(get_storage(), get_settings().config_cache_ttl_sec)
    return _configuration_source


def get_alert_history() -> StorageAlertHistory:
    global _alert_history
    if _alert_history is None:
        _alert_history = StorageAlertHistory(get_storage())
    return _alert_history
