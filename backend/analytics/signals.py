"""
Signal Classifier
Maps raw indicator values to discrete signals.

Pure functions, no side effects. A None value always classifies as None,
and a None signal never matches an alert rule.
"""

from typing import Optional

from .models import Signal


# =============================================================================
# THRESHOLDS
# =============================================================================

RSI_HIGH_EXTREME = 80
RSI_HIGH_MODERATE = 70
RSI_LOW_EXTREME = 20
RSI_LOW_MODERATE = 30

STOCH_HIGH_EXTREME = 90
STOCH_HIGH_MODERATE = 80
STOCH_LOW_EXTREME = 10
STOCH_LOW_MODERATE = 20

WILLIAMS_HIGH_EXTREME = -10
WILLIAMS_HIGH_MODERATE = -20
WILLIAMS_LOW_EXTREME = -90
WILLIAMS_LOW_MODERATE = -80

# |histogram| must exceed this share of |macd_line| to count as momentum
MACD_MOMENTUM_RATIO = 0.5

ROC_CHANGE_MULTIPLIER = 2.0
ATR_CHANGE_MULTIPLIER = 1.5


def _band(
    value: float,
    high_extreme: float,
    high_moderate: float,
    low_extreme: float,
    low_moderate: float
) -> Optional[Signal]:
    if value >= high_extreme:
        return Signal.HIGH_EXTREME
    if value >= high_moderate:
        return Signal.HIGH_MODERATE
    if value <= low_extreme:
        return Signal.LOW_EXTREME
    if value <= low_moderate:
        return Signal.LOW_MODERATE
    return None


# =============================================================================
# CLASSIFIERS
# =============================================================================

def rsi_signal(rsi: Optional[float]) -> Optional[Signal]:
    if rsi is None:
        return None
    return _band(rsi, RSI_HIGH_EXTREME, RSI_HIGH_MODERATE, RSI_LOW_EXTREME, RSI_LOW_MODERATE) or Signal.NEUTRAL


def stochastic_signal(k: Optional[float], d: Optional[float]) -> Optional[Signal]:
    """
    Band first, then %K/%D crossover inside the mid range.

    With %D = %K (the default) the crossover branches cannot fire.
    """
    if k is None:
        return None
    band = _band(k, STOCH_HIGH_EXTREME, STOCH_HIGH_MODERATE, STOCH_LOW_EXTREME, STOCH_LOW_MODERATE)
    if band is not None:
        return band
    if d is not None and k > d and k < STOCH_HIGH_MODERATE:
        return Signal.RISING_CROSSOVER
    if d is not None and k < d and k > STOCH_LOW_MODERATE:
        return Signal.DECLINING_CROSSOVER
    return Signal.NEUTRAL


def williams_r_signal(williams_r: Optional[float]) -> Optional[Signal]:
    if williams_r is None:
        return None
    band = _band(
        williams_r,
        WILLIAMS_HIGH_EXTREME,
        WILLIAMS_HIGH_MODERATE,
        WILLIAMS_LOW_EXTREME,
        WILLIAMS_LOW_MODERATE,
    )
    return band or Signal.NEUTRAL


def macd_signal(
    macd_line: Optional[float],
    signal_line: Optional[float],
    histogram: Optional[float]
) -> Optional[Signal]:
    """
    Momentum when the histogram is large relative to the line,
    otherwise a crossover by the sign of line - signal.
    """
    if macd_line is None:
        return None
    if histogram > 0 and abs(histogram) > abs(macd_line) * MACD_MOMENTUM_RATIO:
        return Signal.RISING_MOMENTUM
    if histogram < 0 and abs(histogram) > abs(macd_line) * MACD_MOMENTUM_RATIO:
        return Signal.DECLINING_MOMENTUM
    if macd_line > signal_line:
        return Signal.RISING_CROSSOVER
    if macd_line < signal_line:
        return Signal.DECLINING_CROSSOVER
    return Signal.NEUTRAL


def roc_signal(roc: Optional[float], avg_change: float) -> Optional[Signal]:
    """Momentum when |roc| exceeds twice the recent mean absolute step."""
    if roc is None:
        return None
    if abs(roc) > avg_change * ROC_CHANGE_MULTIPLIER:
        return Signal.RISING_MOMENTUM if roc > 0 else Signal.DECLINING_MOMENTUM
    return Signal.NEUTRAL


def atr_signal(atr: Optional[float], avg_change: float) -> Optional[Signal]:
    """Spike when dispersion exceeds 1.5x the recent mean absolute step."""
    if atr is None:
        return None
    if atr > avg_change * ATR_CHANGE_MULTIPLIER:
        return Signal.VOLATILITY_SPIKE
    return Signal.NEUTRAL
