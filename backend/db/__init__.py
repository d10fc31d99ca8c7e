"""
Database Layer
Persistence and storage operations.
"""

from .sqlite import SQLiteStorage, get_storage
from .stores import (
    StorageAlertHistory,
    StorageConfigurationSource,
    StorageWindowSource,
    get_alert_history,
    get_configuration_source,
    get_window_source,
)

__all__ = [
    "SQLiteStorage",
    "get_storage",
    "StorageAlertHistory",
    "StorageConfigurationSource",
    "StorageWindowSource",
    "get_alert_history",
    "get_configuration_source",
    "get_window_source",
]
