"""
Alert Models
Data structures for alert configurations, candidates, and emitted alerts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from analytics.models import IndicatorName, Signal
from core.errors import ConfigurationError
from core.models import MetricSnapshot, MetricType, parse_timestamp, utc_now


class AlertType(str, Enum):
    """What kind of confluence a configuration looks for"""
    HIGH_UTILIZATION = "high_utilization"
    LOW_UTILIZATION = "low_utilization"
    RISING_TREND = "rising_trend"
    DECLINING_TREND = "declining_trend"
    VOLATILITY_SPIKE = "volatility_spike"


class Severity(str, Enum):
    """Alert severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Column / payload key holding each indicator's settings
INDICATOR_SETTING_KEYS = {
    IndicatorName.RSI: "rsi_thresholds",
    IndicatorName.STOCHASTIC: "stochastic_thresholds",
    IndicatorName.WILLIAMS_R: "williams_r_thresholds",
    IndicatorName.MACD: "macd_settings",
    IndicatorName.ROC: "roc_settings",
    IndicatorName.ATR: "atr_settings",
}

DEFAULT_MIN_INDICATOR_COUNT = 2


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class IndicatorSettings:
    """
    Per-indicator switch plus whatever extra keys the operator stored.

    Extra keys (threshold overrides, multipliers) are carried through
    unchanged; the classifier thresholds are fixed.
    """
    enabled: bool = False
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any, key: str = "") -> "IndicatorSettings":
        if raw is None:
            return cls(enabled=False)
        if isinstance(raw, bool):
            return cls(enabled=raw)
        if isinstance(raw, Mapping):
            params = {k: v for k, v in raw.items() if k != "enabled"}
            return cls(enabled=bool(raw.get("enabled", False)), params=params)
        raise ConfigurationError(f"{key or 'indicator settings'} must be an object, got {type(raw).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        return {**self.params, "enabled": self.enabled}


@dataclass
class AlertConfiguration:
    """
    Operator-defined confluence rule.

    Example:
        "Alert on high CPU when at least 2 of RSI / Stochastic / Williams %R
        agree, or when one of them is extreme"
    """
    id: Optional[int]
    alert_name: str
    alert_type: AlertType
    enabled: bool = True
    metric_type: MetricType = MetricType.CPU
    min_indicator_count: int = DEFAULT_MIN_INDICATOR_COUNT
    require_extreme_for_single: bool = True
    indicators: Dict[IndicatorName, IndicatorSettings] = field(default_factory=dict)
    notify_email: bool = False
    notify_dashboard: bool = True
    notify_websocket: bool = True
    description: str = ""
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def settings_for(self, name: IndicatorName) -> IndicatorSettings:
        return self.indicators.get(IndicatorName(name), IndicatorSettings())

    def is_indicator_enabled(self, name: IndicatorName) -> bool:
        return self.settings_for(name).enabled

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "alert_name": self.alert_name,
            "alert_type": self.alert_type.value,
            "enabled": self.enabled,
            "metric_type": self.metric_type.value,
            "min_indicator_count": self.min_indicator_count,
            "require_extreme_for_single": self.require_extreme_for_single,
            "notify_email": self.notify_email,
            "notify_dashboard": self.notify_dashboard,
            "notify_websocket": self.notify_websocket,
            "description": self.description,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        for name, key in INDICATOR_SETTING_KEYS.items():
            data[key] = self.settings_for(name).to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertConfiguration":
        """
        Build and validate a configuration.

        Raises:
            ConfigurationError: Missing name, unknown type, bad count or
                non-object indicator settings
        """
        name = data.get("alert_name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("alert_name is required")

        try:
            alert_type = AlertType(data.get("alert_type"))
        except ValueError:
            raise ConfigurationError(f"Invalid alert_type: {data.get('alert_type')!r}")

        try:
            metric_type = MetricType(data.get("metric_type") or MetricType.CPU)
        except ValueError:
            raise ConfigurationError(f"Invalid metric_type: {data.get('metric_type')!r}")

        count = data.get("min_indicator_count")
        if count is None or count == 0:
            count = DEFAULT_MIN_INDICATOR_COUNT
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ConfigurationError(f"min_indicator_count must be a positive integer, got {count!r}")

        indicators = {
            indicator: IndicatorSettings.parse(data.get(key), key)
            for indicator, key in INDICATOR_SETTING_KEYS.items()
        }

        try:
            created_at = parse_timestamp(data["created_at"]) if data.get("created_at") else None
            updated_at = parse_timestamp(data["updated_at"]) if data.get("updated_at") else None
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid timestamp: {exc}")

        return cls(
            id=data.get("id"),
            alert_name=name.strip(),
            alert_type=alert_type,
            enabled=bool(data.get("enabled", True)),
            metric_type=metric_type,
            min_indicator_count=count,
            require_extreme_for_single=bool(data.get("require_extreme_for_single", True)),
            indicators=indicators,
            notify_email=bool(data.get("notify_email", False)),
            notify_dashboard=bool(data.get("notify_dashboard", True)),
            notify_websocket=bool(data.get("notify_websocket", True)),
            description=data.get("description") or "",
            created_by=data.get("created_by"),
            updated_by=data.get("updated_by"),
            created_at=created_at,
            updated_at=updated_at,
        )


# =============================================================================
# Candidates (transient)
# =============================================================================

@dataclass(frozen=True)
class ContributingIndicator:
    """One indicator whose signal matched a configuration"""
    name: IndicatorName
    value: Optional[float]
    signal: Signal
    is_extreme: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": round(self.value, 4) if self.value is not None else None,
            "signal": self.signal.value,
            "is_extreme": self.is_extreme,
        }


@dataclass
class AlertCandidate:
    """
    A configuration that reached confluence, before debouncing.

    Never persisted as-is; becomes an AlertRecord if admitted.
    """
    configuration_id: Optional[int]
    alert_name: str
    alert_type: AlertType
    metric_type: MetricType
    severity: Severity
    indicators: List[ContributingIndicator]
    notify_email: bool = False
    notify_dashboard: bool = True
    notify_websocket: bool = True

    @property
    def indicator_count(self) -> int:
        return len(self.indicators)

    def contributing_map(self) -> Dict[str, Dict[str, Any]]:
        return {i.name.value: i.to_dict() for i in self.indicators}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configuration_id": self.configuration_id,
            "alert_name": self.alert_name,
            "alert_type": self.alert_type.value,
            "metric_type": self.metric_type.value,
            "severity": self.severity.value,
            "indicator_count": self.indicator_count,
            "contributing_indicators": self.contributing_map(),
        }


# =============================================================================
# Emitted Alerts
# =============================================================================

@dataclass(frozen=True)
class AlertSummary:
    """Compact view returned to whoever reported the metrics"""
    id: Optional[int]
    alert_name: str
    alert_type: AlertType
    severity: Severity
    indicator_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_name": self.alert_name,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "indicator_count": self.indicator_count,
        }


@dataclass
class AlertRecord:
    """
    A persisted alert.

    This is what gets stored in alert history and streamed to listeners.
    """
    id: Optional[int]
    agent_id: str
    configuration_id: Optional[int]
    alert_name: str
    alert_type: AlertType
    metric_type: MetricType
    severity: Severity
    indicator_count: int
    contributing_indicators: Dict[str, Dict[str, Any]]
    metric_values: Dict[str, Any]
    notify_email: bool = False
    notify_dashboard: bool = True
    notify_websocket: bool = True
    triggered_at: datetime = field(default_factory=utc_now)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    @classmethod
    def from_candidate(
        cls,
        agent_id: str,
        candidate: AlertCandidate,
        snapshot: Optional[MetricSnapshot] = None
    ) -> "AlertRecord":
        """Create an unsaved record from a candidate and the latest metrics"""
        snapshot = snapshot or MetricSnapshot()
        return cls(
            id=None,
            agent_id=agent_id,
            configuration_id=candidate.configuration_id,
            alert_name=candidate.alert_name,
            alert_type=candidate.alert_type,
            metric_type=candidate.metric_type,
            severity=candidate.severity,
            indicator_count=candidate.indicator_count,
            contributing_indicators=candidate.contributing_map(),
            metric_values=snapshot.to_dict(),
            notify_email=candidate.notify_email,
            notify_dashboard=candidate.notify_dashboard,
            notify_websocket=candidate.notify_websocket,
        )

    def to_summary(self) -> AlertSummary:
        return AlertSummary(
            id=self.id,
            alert_name=self.alert_name,
            alert_type=self.alert_type,
            severity=self.severity,
            indicator_count=self.indicator_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "configuration_id": self.configuration_id,
            "alert_name": self.alert_name,
            "alert_type": self.alert_type.value,
            "metric_type": self.metric_type.value,
            "severity": self.severity.value,
            "indicator_count": self.indicator_count,
            "contributing_indicators": self.contributing_indicators,
            "metric_values": self.metric_values,
            "notify_email": self.notify_email,
            "notify_dashboard": self.notify_dashboard,
            "notify_websocket": self.notify_websocket,
            "triggered_at": _iso(self.triggered_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertRecord":
        def ts(key):
            return parse_timestamp(data[key]) if data.get(key) else None

        return cls(
            id=data.get("id"),
            agent_id=data["agent_id"],
            configuration_id=data.get("configuration_id"),
            alert_name=data["alert_name"],
            alert_type=AlertType(data["alert_type"]),
            metric_type=MetricType(data.get("metric_type") or MetricType.CPU),
            severity=Severity(data["severity"]),
            indicator_count=int(data["indicator_count"]),
            contributing_indicators=dict(data.get("contributing_indicators") or {}),
            metric_values=dict(data.get("metric_values") or {}),
            notify_email=bool(data.get("notify_email", False)),
            notify_dashboard=bool(data.get("notify_dashboard", True)),
            notify_websocket=bool(data.get("notify_websocket", True)),
            triggered_at=ts("triggered_at") or utc_now(),
            acknowledged_at=ts("acknowledged_at"),
            acknowledged_by=data.get("acknowledged_by"),
            resolved_at=ts("resolved_at"),
            resolved_by=data.get("resolved_by"),
            notes=data.get("notes"),
        )
