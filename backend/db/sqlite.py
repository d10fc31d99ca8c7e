"""
SQLite Storage
Persistent storage layer.

Responsibilities:
- Write metric reports and candles
- Read metric history (as DataFrames for windows)
- Agent resolution overrides
- Alert configurations and alert history
- Handle schema

NOT responsible for:
- Validation of reports (done upstream)
- Indicator math (done in analytics)
- Deciding when to alert (done in alerts)
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd

from alerts.models import AlertConfiguration, AlertRecord, INDICATOR_SETTING_KEYS
from core.config import get_settings
from core.errors import ConfigurationError
from core.models import MetricCandle, MetricReport, MetricType, Resolution, utc_now

logger = logging.getLogger(__name__)

# Alert history columns stored as JSON text
_JSON_COLUMNS = ("contributing_indicators", "metric_values")
_CONFIG_JSON_COLUMNS = tuple(INDICATOR_SETTING_KEYS.values())
_BOOL_COLUMNS = (
    "enabled", "require_extreme_for_single",
    "notify_email", "notify_dashboard", "notify_websocket",
)

_CANDLE_INSERT = """INSERT INTO metric_candles
       (agent_id, resolution, candle_start, candle_end,
        cpu_open, cpu_high, cpu_low, cpu_close,
        memory_open, memory_high, memory_low, memory_close,
        disk_open, disk_high, disk_low, disk_close,
        data_points)
       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""

_CANDLE_REPLACE_SQL = _CANDLE_INSERT.replace("INSERT INTO", "INSERT OR REPLACE INTO", 1)

# SQLite's scalar MAX/MIN return NULL if any argument is NULL
_CANDLE_MERGE_SQL = _CANDLE_INSERT + """
   ON CONFLICT(agent_id, resolution, candle_start) DO UPDATE SET
       candle_end = MAX(candle_end, excluded.candle_end),
       {columns},
       data_points = data_points + excluded.data_points""".format(columns=",\n       ".join(
    f"{m}_open = COALESCE({m}_open, excluded.{m}_open), "
    f"{m}_high = MAX(COALESCE({m}_high, excluded.{m}_high), COALESCE(excluded.{m}_high, {m}_high)), "
    f"{m}_low = MIN(COALESCE({m}_low, excluded.{m}_low), COALESCE(excluded.{m}_low, {m}_low)), "
    f"{m}_close = COALESCE(excluded.{m}_close, {m}_close)"
    for m in ("cpu", "memory", "disk")
))


def _iso(ts: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string so text comparison orders correctly"""
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteStorage:
    """
    SQLite persistence for metrics and alerts.

    Tables:
        - agent_metrics: Raw metric reports
        - metric_candles: OHLC candles per resolution
        - agent_settings: Per-agent resolution override
        - alert_configurations: Confluence rules
        - alert_history: Emitted alerts and their lifecycle
    """

    def __init__(self, db_path: str = "data/confluence.db", busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # Autocommit mode: transactions are opened explicitly in _transaction
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _init_schema(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS agent_metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    collected_at TEXT NOT NULL,
                    cpu_percent REAL,
                    memory_percent REAL,
                    disk_percent REAL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_agent_metrics_agent_ts
                ON agent_metrics(agent_id, collected_at);

                CREATE TABLE IF NOT EXISTS metric_candles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    resolution TEXT NOT NULL,
                    candle_start TEXT NOT NULL,
                    candle_end TEXT NOT NULL,
                    cpu_open REAL, cpu_high REAL, cpu_low REAL, cpu_close REAL,
                    memory_open REAL, memory_high REAL, memory_low REAL, memory_close REAL,
                    disk_open REAL, disk_high REAL, disk_low REAL, disk_close REAL,
                    data_points INTEGER DEFAULT 0,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(agent_id, resolution, candle_start)
                );

                CREATE INDEX IF NOT EXISTS idx_metric_candles_agent_res_ts
                ON metric_candles(agent_id, resolution, candle_start);

                CREATE TABLE IF NOT EXISTS agent_settings (
                    agent_id TEXT PRIMARY KEY,
                    metric_resolution TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS alert_configurations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    alert_name TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    metric_type TEXT NOT NULL DEFAULT 'cpu',
                    min_indicator_count INTEGER NOT NULL DEFAULT 2,
                    require_extreme_for_single INTEGER NOT NULL DEFAULT 1,
                    rsi_thresholds TEXT,
                    stochastic_thresholds TEXT,
                    williams_r_thresholds TEXT,
                    macd_settings TEXT,
                    roc_settings TEXT,
                    atr_settings TEXT,
                    notify_email INTEGER NOT NULL DEFAULT 0,
                    notify_dashboard INTEGER NOT NULL DEFAULT 1,
                    notify_websocket INTEGER NOT NULL DEFAULT 1,
                    description TEXT,
                    created_by TEXT,
                    updated_by TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS alert_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    configuration_id INTEGER,
                    alert_name TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    metric_type TEXT NOT NULL DEFAULT 'cpu',
                    severity TEXT NOT NULL,
                    indicator_count INTEGER NOT NULL,
                    contributing_indicators TEXT,
                    metric_values TEXT,
                    notify_email INTEGER NOT NULL DEFAULT 0,
                    notify_dashboard INTEGER NOT NULL DEFAULT 1,
                    notify_websocket INTEGER NOT NULL DEFAULT 1,
                    triggered_at TEXT NOT NULL,
                    acknowledged_at TEXT,
                    acknowledged_by TEXT,
                    resolved_at TEXT,
                    resolved_by TEXT,
                    notes TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_alert_history_agent
                ON alert_history(agent_id);

                CREATE INDEX IF NOT EXISTS idx_alert_history_configuration
                ON alert_history(configuration_id);

                CREATE INDEX IF NOT EXISTS idx_alert_history_triggered
                ON alert_history(triggered_at);
            """)

    # =========================================================================
    # Metrics
    # =========================================================================

    def save_reports(self, reports: List[MetricReport]) -> int:
        """Save raw metric reports"""
        if not reports:
            return 0

        with self._transaction() as conn:
            conn.executemany(
                """INSERT INTO agent_metrics
                   (agent_id, collected_at, cpu_percent, memory_percent, disk_percent)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (r.agent_id, _iso(r.ts), r.cpu_percent, r.memory_percent, r.disk_percent)
                    for r in reports
                ]
            )
        return len(reports)

    def save_candles(self, candles: List[MetricCandle], merge: bool = False) -> int:
        """
        Save candles with upsert on (agent, resolution, start).

        merge=False replaces a stored candle (bulk rebuilds from history).
        merge=True folds the new candle into a stored one: the stored open is
        kept, highs and lows widen, the close moves forward and data points add up.
        """
        if not candles:
            return 0

        rows = []
        for c in candles:
            ohlc = []
            for metric in MetricType:
                values = getattr(c, metric.value)
                ohlc.extend(
                    [values.open, values.high, values.low, values.close]
                    if values is not None else [None] * 4
                )
            rows.append((c.agent_id, c.resolution.value, _iso(c.ts), _iso(c.ts_end), *ohlc, c.data_points))

        with self._transaction() as conn:
            conn.executemany(_CANDLE_MERGE_SQL if merge else _CANDLE_REPLACE_SQL, rows)
        return len(candles)

    def get_metrics_df(self, agent_id: str, limit: int = 50) -> pd.DataFrame:
        """Read the most recent raw reports as DataFrame, oldest first"""
        with self._connect() as conn:
            df = pd.read_sql_query(
                """SELECT collected_at, cpu_percent, memory_percent, disk_percent
                   FROM agent_metrics
                   WHERE agent_id = ?
                   ORDER BY collected_at DESC, id DESC LIMIT ?""",
                conn,
                params=[agent_id, limit]
            )

        if not df.empty:
            df['collected_at'] = pd.to_datetime(df['collected_at'], utc=True, format='ISO8601')
            df = df.iloc[::-1].reset_index(drop=True)

        return df

    def get_candles_df(self, agent_id: str, resolution: Resolution, limit: int = 50) -> pd.DataFrame:
        """Read the most recent candles as DataFrame, oldest first"""
        with self._connect() as conn:
            df = pd.read_sql_query(
                """SELECT candle_start, candle_end,
                          cpu_open, cpu_high, cpu_low, cpu_close,
                          memory_open, memory_high, memory_low, memory_close,
                          disk_open, disk_high, disk_low, disk_close,
                          data_points
                   FROM metric_candles
                   WHERE agent_id = ? AND resolution = ?
                   ORDER BY candle_start DESC LIMIT ?""",
                conn,
                params=[agent_id, Resolution(resolution).value, limit]
            )

        if not df.empty:
            for column in ('candle_start', 'candle_end'):
                df[column] = pd.to_datetime(df[column], utc=True, format='ISO8601')
            df = df.iloc[::-1].reset_index(drop=True)

        return df

    def get_latest_report(self, agent_id: str) -> Optional[MetricReport]:
        """Most recent raw report for an agent"""
        with self._connect() as conn:
            row = conn.execute(
                """SELECT * FROM agent_metrics
                   WHERE agent_id = ?
                   ORDER BY collected_at DESC, id DESC LIMIT 1""",
                [agent_id]
            ).fetchone()

        if row is None:
            return None
        return MetricReport(
            agent_id=row["agent_id"],
            ts=row["collected_at"],
            cpu_percent=row["cpu_percent"],
            memory_percent=row["memory_percent"],
            disk_percent=row["disk_percent"],
        )

    def get_agents(self) -> List[str]:
        """Get all agents with data"""
        with self._connect() as conn:
            cursor = conn.execute(
                """SELECT DISTINCT agent_id FROM agent_metrics
                   UNION
                   SELECT DISTINCT agent_id FROM metric_candles
                   ORDER BY agent_id"""
            )
            return [row[0] for row in cursor.fetchall()]

    # =========================================================================
    # Agent Settings
    # =========================================================================

    def get_agent_resolution(self, agent_id: str) -> Optional[Resolution]:
        """Per-agent override, or None when the agent uses the default"""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT metric_resolution FROM agent_settings WHERE agent_id = ?",
                [agent_id]
            ).fetchone()

        if row is None or not row["metric_resolution"]:
            return None
        try:
            return Resolution(row["metric_resolution"])
        except ValueError:
            logger.warning("Ignoring unknown resolution %r for agent %s", row["metric_resolution"], agent_id)
            return None

    def set_agent_resolution(self, agent_id: str, resolution: Optional[Resolution]) -> None:
        """Set or clear (None) an agent's resolution override"""
        value = Resolution(resolution).value if resolution is not None else None
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO agent_settings (agent_id, metric_resolution, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(agent_id) DO UPDATE SET
                       metric_resolution = excluded.metric_resolution,
                       updated_at = excluded.updated_at""",
                [agent_id, value, _iso(utc_now())]
            )

    # =========================================================================
    # Alert Configurations
    # =========================================================================

    @staticmethod
    def _config_from_row(row: sqlite3.Row) -> AlertConfiguration:
        data = dict(row)
        for column in _CONFIG_JSON_COLUMNS:
            if data.get(column):
                try:
                    data[column] = json.loads(data[column])
                except ValueError as exc:
                    raise ConfigurationError(f"{column} is not valid JSON: {exc}")
        for column in _BOOL_COLUMNS:
            data[column] = bool(data[column])
        return AlertConfiguration.from_dict(data)

    def _config_params(self, config: AlertConfiguration) -> Dict[str, Any]:
        data = config.to_dict()
        params = {
            "alert_name": config.alert_name,
            "alert_type": config.alert_type.value,
            "enabled": int(config.enabled),
            "metric_type": config.metric_type.value,
            "min_indicator_count": config.min_indicator_count,
            "require_extreme_for_single": int(config.require_extreme_for_single),
            "notify_email": int(config.notify_email),
            "notify_dashboard": int(config.notify_dashboard),
            "notify_websocket": int(config.notify_websocket),
            "description": config.description,
        }
        for column in _CONFIG_JSON_COLUMNS:
            params[column] = json.dumps(data[column])
        return params

    def list_configurations(self, enabled_only: bool = False) -> List[AlertConfiguration]:
        """
        Read configurations.

        Rows that fail validation are logged and skipped.
        """
        query = "SELECT * FROM alert_configurations"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY alert_type, alert_name"

        with self._connect() as conn:
            rows = conn.execute(query).fetchall()

        configs = []
        for row in rows:
            try:
                configs.append(self._config_from_row(row))
            except ConfigurationError as exc:
                logger.warning("Skipping malformed alert configuration %s: %s", row["id"], exc)
        return configs

    def get_enabled_configurations(self) -> List[AlertConfiguration]:
        return self.list_configurations(enabled_only=True)

    def get_configuration(self, config_id: int) -> Optional[AlertConfiguration]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM alert_configurations WHERE id = ?", [config_id]).fetchone()
        return self._config_from_row(row) if row is not None else None

    def create_configuration(self, config: AlertConfiguration, created_by: Optional[str] = None) -> AlertConfiguration:
        params = self._config_params(config)
        now = _iso(utc_now())
        params.update(created_by=created_by, updated_by=created_by, created_at=now, updated_at=now)

        columns = ", ".join(params)
        placeholders = ", ".join(f":{k}" for k in params)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO alert_configurations ({columns}) VALUES ({placeholders})",
                params
            )
            config_id = cursor.lastrowid
        return self.get_configuration(config_id)

    def update_configuration(
        self,
        config_id: int,
        updates: Dict[str, Any],
        updated_by: Optional[str] = None
    ) -> Optional[AlertConfiguration]:
        """
        Apply a partial update.

        Returns None if the configuration does not exist.

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        current = self.get_configuration(config_id)
        if current is None:
            return None

        merged = {**current.to_dict(), **updates, "id": config_id}
        config = AlertConfiguration.from_dict(merged)

        params = self._config_params(config)
        params.update(updated_by=updated_by, updated_at=_iso(utc_now()))
        assignments = ", ".join(f"{k} = :{k}" for k in params)
        params["id"] = config_id

        with self._transaction() as conn:
            conn.execute(f"UPDATE alert_configurations SET {assignments} WHERE id = :id", params)
        return self.get_configuration(config_id)

    def delete_configuration(self, config_id: int, updated_by: Optional[str] = None) -> Optional[AlertConfiguration]:
        """Soft delete: the configuration is disabled, history keeps its reference"""
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE alert_configurations
                   SET enabled = 0, updated_at = ?, updated_by = ?
                   WHERE id = ?""",
                [_iso(utc_now()), updated_by, config_id]
            )
            if cursor.rowcount == 0:
                return None
        return self.get_configuration(config_id)

    # =========================================================================
    # Alert History
    # =========================================================================

    @staticmethod
    def _alert_from_row(row: sqlite3.Row) -> AlertRecord:
        data = dict(row)
        for column in _JSON_COLUMNS:
            data[column] = json.loads(data[column]) if data.get(column) else {}
        return AlertRecord.from_dict(data)

    @staticmethod
    def _insert_alert(conn: sqlite3.Connection, record: AlertRecord) -> int:
        cursor = conn.execute(
            """INSERT INTO alert_history
               (agent_id, configuration_id, alert_name, alert_type, metric_type,
                severity, indicator_count, contributing_indicators, metric_values,
                notify_email, notify_dashboard, notify_websocket, triggered_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                record.agent_id, record.configuration_id, record.alert_name,
                record.alert_type.value, record.metric_type.value,
                record.severity.value, record.indicator_count,
                json.dumps(record.contributing_indicators), json.dumps(record.metric_values),
                int(record.notify_email), int(record.notify_dashboard), int(record.notify_websocket),
                _iso(record.triggered_at),
            ]
        )
        return cursor.lastrowid

    @staticmethod
    def _recent_similar(
        conn: sqlite3.Connection,
        agent_id: str,
        configuration_id: Optional[int],
        window_minutes: int,
        now: datetime
    ) -> bool:
        since = _iso(now - timedelta(minutes=window_minutes))
        row = conn.execute(
            """SELECT 1 FROM alert_history
               WHERE agent_id = ?
                 AND configuration_id IS ?
                 AND triggered_at > ?
                 AND resolved_at IS NULL
               LIMIT 1""",
            [agent_id, configuration_id, since]
        ).fetchone()
        return row is not None

    def save_alert(self, record: AlertRecord) -> AlertRecord:
        """Insert unconditionally; returns the stored record with its id"""
        with self._transaction() as conn:
            alert_id = self._insert_alert(conn, record)
        return self.get_alert(alert_id)

    def save_alert_if_absent(self, record: AlertRecord, window_minutes: int = 15) -> Optional[AlertRecord]:
        """
        Insert unless an unresolved alert for the same agent and
        configuration was triggered within the window.

        Check and insert share one IMMEDIATE transaction, so two writers
        cannot both pass the check.

        Returns:
            Stored record, or None if suppressed
        """
        with self._transaction(immediate=True) as conn:
            if self._recent_similar(conn, record.agent_id, record.configuration_id,
                                    window_minutes, record.triggered_at):
                return None
            alert_id = self._insert_alert(conn, record)
        return self.get_alert(alert_id)

    def has_recent_similar_alert(
        self,
        agent_id: str,
        configuration_id: Optional[int],
        window_minutes: int = 15
    ) -> bool:
        with self._connect() as conn:
            return self._recent_similar(conn, agent_id, configuration_id, window_minutes, utc_now())

    def get_alert(self, alert_id: int) -> Optional[AlertRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM alert_history WHERE id = ?", [alert_id]).fetchone()
        return self._alert_from_row(row) if row is not None else None

    def get_alert_history(
        self,
        agent_id: Optional[str] = None,
        metric_type: Optional[str] = None,
        alert_type: Optional[str] = None,
        severity: Optional[str] = None,
        configuration_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        acknowledged: Optional[bool] = None,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[AlertRecord]:
        """Filtered history, newest first"""
        conditions = []
        params: List[Any] = []

        for column, value in (
            ("agent_id", agent_id),
            ("metric_type", metric_type),
            ("alert_type", alert_type),
            ("severity", severity),
            ("configuration_id", configuration_id),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)

        if start is not None:
            conditions.append("triggered_at >= ?")
            params.append(_iso(start))
        if end is not None:
            conditions.append("triggered_at <= ?")
            params.append(_iso(end))
        if acknowledged is not None:
            conditions.append(f"acknowledged_at IS {'NOT ' if acknowledged else ''}NULL")
        if resolved is not None:
            conditions.append(f"resolved_at IS {'NOT ' if resolved else ''}NULL")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"""SELECT * FROM alert_history {where}
                    ORDER BY triggered_at DESC, id DESC
                    LIMIT ? OFFSET ?""",
                [*params, limit, offset]
            ).fetchall()

        return [self._alert_from_row(row) for row in rows]

    def get_active_alerts(self, agent_id: Optional[str] = None, limit: int = 100) -> List[AlertRecord]:
        """Unresolved alerts, newest first"""
        return self.get_alert_history(agent_id=agent_id, resolved=False, limit=limit)

    def acknowledge_alert(self, alert_id: int, acknowledged_by: Optional[str] = None) -> Optional[AlertRecord]:
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE alert_history
                   SET acknowledged_at = ?, acknowledged_by = ?
                   WHERE id = ?""",
                [_iso(utc_now()), acknowledged_by, alert_id]
            )
            if cursor.rowcount == 0:
                return None
        return self.get_alert(alert_id)

    def resolve_alert(
        self,
        alert_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Optional[AlertRecord]:
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE alert_history
                   SET resolved_at = ?, resolved_by = ?, notes = COALESCE(?, notes)
                   WHERE id = ?""",
                [_iso(utc_now()), resolved_by, notes, alert_id]
            )
            if cursor.rowcount == 0:
                return None
        return self.get_alert(alert_id)

    def get_alert_stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Counts by severity plus acknowledge/resolve timings.

        Open alerts count against "now" in the average times.
        """
        conditions, params = [], []
        if start is not None:
            conditions.append("triggered_at >= ?")
            params.append(_iso(start))
        if end is not None:
            conditions.append("triggered_at <= ?")
            params.append(_iso(end))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._connect() as conn:
            df = pd.read_sql_query(
                f"SELECT severity, triggered_at, acknowledged_at, resolved_at FROM alert_history {where}",
                conn,
                params=params
            )

        stats = {
            "total_alerts": int(len(df)),
            **{f"{s}_count": int((df["severity"] == s).sum()) for s in ("critical", "high", "medium", "low")},
            "acknowledged_count": int(df["acknowledged_at"].notna().sum()),
            "resolved_count": int(df["resolved_at"].notna().sum()),
            "avg_acknowledge_time_seconds": None,
            "avg_resolution_time_seconds": None,
        }
        if df.empty:
            return stats

        now = pd.Timestamp(utc_now())
        triggered = pd.to_datetime(df["triggered_at"], utc=True, format='ISO8601')
        for column, key in (
            ("acknowledged_at", "avg_acknowledge_time_seconds"),
            ("resolved_at", "avg_resolution_time_seconds"),
        ):
            closed = pd.to_datetime(df[column], utc=True, format='ISO8601').fillna(now)
            stats[key] = round(float((closed - triggered).dt.total_seconds().mean()), 2)
        return stats

    # =========================================================================
    # Management
    # =========================================================================

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with self._connect() as conn:
            metric_count = conn.execute("SELECT COUNT(*) FROM agent_metrics").fetchone()[0]
            candle_count = conn.execute("SELECT COUNT(*) FROM metric_candles").fetchone()[0]
            alert_count = conn.execute("SELECT COUNT(*) FROM alert_history").fetchone()[0]

        return {
            "metric_count": metric_count,
            "candle_count": candle_count,
            "alert_count": alert_count,
            "agents": self.get_agents(),
            "db_path": self.db_path
        }


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage() -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        settings = get_settings()
        _storage = SQLiteStorage(settings.db_path, busy_timeout=settings.io_timeout_sec)
    return _storage
