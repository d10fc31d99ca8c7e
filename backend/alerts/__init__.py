"""
Alert System
Confluence alerts raised from technical indicators over host metrics.

Structure:
    alerts/
    ├── models.py      → AlertConfiguration, AlertCandidate, AlertRecord
    ├── confluence.py  → Rule matching + severity (pure)
    ├── debounce.py    → Cooldown gate over alert history
    ├── stores.py      → Collaborator protocols
    └── engine.py      → ConfluenceDetector (pipeline + emission)

Usage:
    from alerts import get_detector

    detector = get_detector()
    summaries = await detector.detect_and_create_alerts("agent-1", report.snapshot())

    # Listen for emitted alerts
    detector.on_alert(lambda record: print(record.alert_name))
"""

from .models import (
    AlertCandidate,
    AlertConfiguration,
    AlertRecord,
    AlertSummary,
    AlertType,
    ContributingIndicator,
    IndicatorSettings,
    INDICATOR_SETTING_KEYS,
    Severity,
)

from .confluence import analyze_confluence, severity_for
from .debounce import DebounceGate

from .engine import (
    ConfluenceDetector,
    get_detector,
)

__all__ = [
    # Models
    "AlertCandidate",
    "AlertConfiguration",
    "AlertRecord",
    "AlertSummary",
    "AlertType",
    "ContributingIndicator",
    "IndicatorSettings",
    "INDICATOR_SETTING_KEYS",
    "Severity",
    # Evaluation
    "analyze_confluence",
    "severity_for",
    "DebounceGate",
    # Engine
    "ConfluenceDetector",
    "get_detector",
]
