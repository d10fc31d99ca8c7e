"""
Indicator Output Types
Dataclasses for indicator results and their qualitative signals.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.models import MetricType, Resolution, utc_now


class Signal(str, Enum):
    """Qualitative reading of one indicator"""
    HIGH_EXTREME = "high_extreme"
    HIGH_MODERATE = "high_moderate"
    LOW_EXTREME = "low_extreme"
    LOW_MODERATE = "low_moderate"
    RISING_CROSSOVER = "rising_crossover"
    DECLINING_CROSSOVER = "declining_crossover"
    RISING_MOMENTUM = "rising_momentum"
    DECLINING_MOMENTUM = "declining_momentum"
    VOLATILITY_SPIKE = "volatility_spike"
    NEUTRAL = "neutral"


class IndicatorName(str, Enum):
    """Display names, also used as keys of contributing indicators"""
    RSI = "RSI"
    STOCHASTIC = "Stochastic"
    WILLIAMS_R = "Williams %R"
    MACD = "MACD"
    ROC = "ROC"
    ATR = "ATR"


def _round(value: Optional[float], digits: int = 4) -> Optional[float]:
    return round(value, digits) if value is not None else None


def _signal_value(signal: Optional[Signal]) -> Optional[str]:
    return signal.value if signal is not None else None


# =============================================================================
# PER-INDICATOR RESULTS
# =============================================================================

@dataclass(frozen=True)
class ValueIndicator:
    """Single-valued indicator (RSI, Williams %R, ROC, ATR-proxy)."""
    value: Optional[float]
    signal: Optional[Signal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"value": _round(self.value), "signal": _signal_value(self.signal)}


@dataclass(frozen=True)
class StochasticResult:
    """
    Stochastic oscillator.

    %D equals %K unless 3-period smoothing is switched on.
    """
    k: Optional[float]
    d: Optional[float]
    signal: Optional[Signal] = None

    @property
    def value(self) -> Optional[float]:
        return self.k

    def to_dict(self) -> Dict[str, Any]:
        return {"k": _round(self.k), "d": _round(self.d), "signal": _signal_value(self.signal)}


@dataclass(frozen=True)
class MACDResult:
    """
    MACD line, signal line and histogram.

    histogram = macd_line - signal_line
    """
    macd_line: Optional[float]
    signal_line: Optional[float]
    histogram: Optional[float]
    signal: Optional[Signal] = None

    @property
    def value(self) -> Optional[float]:
        return self.histogram

    def to_dict(self) -> Dict[str, Any]:
        return {
            "macd_line": _round(self.macd_line, 6),
            "signal_line": _round(self.signal_line, 6),
            "histogram": _round(self.histogram, 6),
            "signal": _signal_value(self.signal),
        }


# =============================================================================
# FULL BUNDLE
# =============================================================================

@dataclass(frozen=True)
class IndicatorSet:
    """
    Everything computed for one evaluation.

    Created once per detection call, never mutated, never persisted.
    """
    rsi: ValueIndicator
    stochastic: StochasticResult
    williams_r: ValueIndicator
    macd: MACDResult
    roc: ValueIndicator
    atr: ValueIndicator
    raw_metric: float
    metric_type: MetricType
    resolution: Resolution
    data_points_used: int
    computed_at: datetime = field(default_factory=utc_now)

    def get(self, name: IndicatorName):
        return {
            IndicatorName.RSI: self.rsi,
            IndicatorName.STOCHASTIC: self.stochastic,
            IndicatorName.WILLIAMS_R: self.williams_r,
            IndicatorName.MACD: self.macd,
            IndicatorName.ROC: self.roc,
            IndicatorName.ATR: self.atr,
        }[IndicatorName(name)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rsi": self.rsi.to_dict(),
            "stochastic": self.stochastic.to_dict(),
            "williams_r": self.williams_r.to_dict(),
            "macd": self.macd.to_dict(),
            "roc": self.roc.to_dict(),
            "atr": self.atr.to_dict(),
            "raw_metric": self.raw_metric,
            "metric_type": self.metric_type.value,
            "resolution": self.resolution.value,
            "data_points_used": self.data_points_used,
            "computed_at": self.computed_at.isoformat(),
        }
