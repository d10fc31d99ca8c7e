"""
Confluence Evaluator
Matches classified indicator signals against alert configurations.

Flow (per enabled configuration):
1. Collect indicators that are enabled AND whose signal fits the alert type
2. Enough of them (or a single extreme one) → candidate
3. Severity from how many agreed
"""

import logging
from typing import Iterable, List, Optional

from analytics.models import IndicatorName, IndicatorSet, Signal
from core.errors import ConfigurationError

from .models import (
    AlertCandidate,
    AlertConfiguration,
    AlertType,
    ContributingIndicator,
    DEFAULT_MIN_INDICATOR_COUNT,
    Severity,
)

logger = logging.getLogger(__name__)


def severity_for(indicator_count: int) -> Severity:
    """Step function on the number of agreeing indicators"""
    if indicator_count >= 5:
        return Severity.CRITICAL
    if indicator_count >= 4:
        return Severity.HIGH
    if indicator_count >= 3:
        return Severity.MEDIUM
    return Severity.LOW


def match_signal(alert_type: AlertType, signal: Optional[Signal]) -> Optional[bool]:
    """
    Does a signal support an alert type?

    Returns:
        None if it does not match, otherwise whether the match is extreme
    """
    if signal is None or signal is Signal.NEUTRAL:
        return None

    if alert_type is AlertType.HIGH_UTILIZATION and signal.value.startswith("high_"):
        return signal is Signal.HIGH_EXTREME
    if alert_type is AlertType.LOW_UTILIZATION and signal.value.startswith("low_"):
        return signal is Signal.LOW_EXTREME
    if alert_type is AlertType.RISING_TREND and signal.value.startswith("rising_"):
        return False
    if alert_type is AlertType.DECLINING_TREND and signal.value.startswith("declining_"):
        return False
    if alert_type is AlertType.VOLATILITY_SPIKE and signal is Signal.VOLATILITY_SPIKE:
        return True
    return None


def evaluate_configuration(
    indicators: IndicatorSet,
    config: AlertConfiguration
) -> Optional[AlertCandidate]:
    """
    Evaluate one configuration against one indicator set.

    Returns:
        AlertCandidate if confluence is reached, else None

    Raises:
        ConfigurationError: If the configuration cannot be evaluated
    """
    if not isinstance(config.alert_type, AlertType):
        raise ConfigurationError(f"Invalid alert_type: {config.alert_type!r}")

    min_count = config.min_indicator_count or DEFAULT_MIN_INDICATOR_COUNT
    if min_count < 1:
        raise ConfigurationError(f"min_indicator_count must be positive, got {min_count}")

    contributing = []
    for name in IndicatorName:
        if not config.is_indicator_enabled(name):
            continue

        result = indicators.get(name)
        is_extreme = match_signal(config.alert_type, result.signal)
        if is_extreme is None:
            continue

        contributing.append(ContributingIndicator(
            name=name,
            value=result.value,
            signal=result.signal,
            is_extreme=is_extreme,
        ))

    if not contributing:
        return None

    count = len(contributing)
    has_extreme = any(c.is_extreme for c in contributing)
    should_alert = (
        count >= min_count
        or (count == 1 and config.require_extreme_for_single and has_extreme)
    )
    if not should_alert:
        return None

    return AlertCandidate(
        configuration_id=config.id,
        alert_name=config.alert_name,
        alert_type=config.alert_type,
        metric_type=config.metric_type,
        severity=severity_for(count),
        indicators=contributing,
        notify_email=config.notify_email,
        notify_dashboard=config.notify_dashboard,
        notify_websocket=config.notify_websocket,
    )


def analyze_confluence(
    indicators: Optional[IndicatorSet],
    configurations: Iterable[AlertConfiguration]
) -> List[AlertCandidate]:
    """
    Evaluate every enabled configuration for the indicator set's metric.

    A malformed configuration is logged and skipped; the rest still run.
    """
    if indicators is None:
        return []

    candidates = []
    for config in configurations:
        if not config.enabled or config.metric_type != indicators.metric_type:
            continue
        try:
            candidate = evaluate_configuration(indicators, config)
        except (ConfigurationError, AttributeError, TypeError) as exc:
            logger.warning("Skipping configuration %s (%s): %s", config.id, config.alert_name, exc)
            continue
        if candidate is not None:
            candidates.append(candidate)
    return candidates
