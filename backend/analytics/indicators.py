"""
Indicator Calculator
Technical indicators over a single metric's history.

Update: Once per metric report, per metric type under watch
Use: Confluence alerting, indicator inspection endpoint

Every function takes values ordered oldest → newest. A series shorter
than an indicator's own minimum gives None for that indicator; nothing
here raises on short input.
"""

from typing import Optional

import numpy as np

from core.models import MetricWindow

from . import signals
from .models import IndicatorSet, MACDResult, StochasticResult, ValueIndicator


# Below this many samples no indicator set is produced at all.
MIN_WINDOW = 14

RSI_PERIOD = 14
STOCHASTIC_PERIOD = 14
WILLIAMS_R_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
ROC_PERIOD = 10
ATR_PERIOD = 14
CHANGE_LOOKBACK = 20

# Reference MACD signal line: a fixed fraction of the MACD line.
MACD_SIGNAL_FACTOR = 0.9


# =============================================================================
# OSCILLATORS
# =============================================================================

def rsi(values: np.ndarray, period: int = RSI_PERIOD) -> Optional[float]:
    """
    Relative Strength Index with Wilder smoothing.

    Average gain/loss are seeded from the first `period` deltas, then
    smoothed: avg = (avg * (period - 1) + current) / period.

    Returns:
        RSI in [0, 100]; 100 when there were no losses; None if fewer
        than period + 1 values
    """
    values = np.asarray(values, dtype=float)
    if len(values) < period + 1:
        return None

    deltas = np.diff(values)
    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)

    avg_gain = float(gains[:period].sum() / period)
    avg_loss = float(losses[:period].sum() / period)

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))


def _percent_k(window: np.ndarray) -> float:
    highest = float(np.max(window))
    lowest = float(np.min(window))
    if highest == lowest:
        return 50.0
    return (float(window[-1]) - lowest) / (highest - lowest) * 100


def stochastic(
    values: np.ndarray,
    period: int = STOCHASTIC_PERIOD,
    d_mode: str = "k"
) -> StochasticResult:
    """
    Stochastic oscillator over the last `period` values.

    %K = (last - lowest) / (highest - lowest) * 100, or 50 on a flat window.

    d_mode:
        "k"    → %D is %K (default; crossovers never fire)
        "sma3" → %D is the mean of %K at the last three positions

    Returns:
        StochasticResult with k, d (signal left unset)
    """
    values = np.asarray(values, dtype=float)
    if len(values) < period:
        return StochasticResult(k=None, d=None)

    k = _percent_k(values[-period:])

    if d_mode == "sma3" and len(values) >= period + 2:
        ks = [_percent_k(values[len(values) - period - offset:len(values) - offset]) for offset in (2, 1, 0)]
        d = float(np.mean(ks))
    else:
        d = k

    return StochasticResult(k=k, d=d)


def williams_r(values: np.ndarray, period: int = WILLIAMS_R_PERIOD) -> Optional[float]:
    """
    Williams %R over the last `period` values.

    %R = ((highest - last) / (highest - lowest)) * -100, -50 on a flat window.
    """
    values = np.asarray(values, dtype=float)
    if len(values) < period:
        return None

    recent = values[-period:]
    highest = float(np.max(recent))
    lowest = float(np.min(recent))

    if highest == lowest:
        return -50.0

    return (highest - float(recent[-1])) / (highest - lowest) * -100


# =============================================================================
# TREND / MOMENTUM
# =============================================================================

def ema_series(values: np.ndarray, period: int) -> np.ndarray:
    """
    Exponential moving average at every position.

    k = 2 / (period + 1), seeded with the first value (not an SMA seed).
    """
    values = np.asarray(values, dtype=float)
    k = 2 / (period + 1)
    out = np.empty(len(values))
    if len(values) == 0:
        return out

    current = values[0]
    out[0] = current
    for i in range(1, len(values)):
        current = values[i] * k + current * (1 - k)
        out[i] = current
    return out


def ema(values: np.ndarray, period: int) -> Optional[float]:
    """Latest EMA value, or None if fewer than `period` values."""
    if len(values) < period:
        return None
    return float(ema_series(values, period)[-1])


def macd(
    values: np.ndarray,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal_period: int = MACD_SIGNAL,
    signal_mode: str = "scaled"
) -> MACDResult:
    """
    Moving Average Convergence Divergence.

    macd_line = EMA(fast) - EMA(slow)

    signal_mode:
        "scaled" → signal_line = macd_line * 0.9 (default)
        "ema"    → signal_line = EMA(signal_period) of the MACD line series

    Returns:
        MACDResult; all fields None if fewer than `slow` values
    """
    values = np.asarray(values, dtype=float)
    if len(values) < slow:
        return MACDResult(macd_line=None, signal_line=None, histogram=None)

    if signal_mode == "ema":
        line_series = ema_series(values, fast) - ema_series(values, slow)
        macd_line = float(line_series[-1])
        signal_line = float(ema_series(line_series, signal_period)[-1])
    else:
        macd_line = ema(values, fast) - ema(values, slow)
        signal_line = macd_line * MACD_SIGNAL_FACTOR

    return MACDResult(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=macd_line - signal_line,
    )


def roc(values: np.ndarray, period: int = ROC_PERIOD) -> Optional[float]:
    """
    Rate of Change in percent.

    Compares the latest value with the oldest of the last `period` values;
    0 when that past value is 0.
    """
    values = np.asarray(values, dtype=float)
    if len(values) < period:
        return None

    current = float(values[-1])
    past = float(values[-period])

    if past == 0:
        return 0.0

    return (current - past) / past * 100


# =============================================================================
# VOLATILITY
# =============================================================================

def atr_proxy(values: np.ndarray, period: int = ATR_PERIOD) -> Optional[float]:
    """
    Volatility stand-in for Average True Range.

    A scalar metric stream has no high/low/close triple, so dispersion is
    used: population standard deviation of the last `period` values.
    """
    values = np.asarray(values, dtype=float)
    if len(values) < period:
        return None
    return float(np.std(values[-period:]))


def mean_abs_change(values: np.ndarray, lookback: int = CHANGE_LOOKBACK) -> float:
    """
    Mean absolute step over the last `lookback` samples.

    The divisor is always lookback - 1, also when fewer samples exist.
    """
    recent = np.asarray(values, dtype=float)[-lookback:]
    if len(recent) < 2:
        return 0.0
    return float(np.abs(np.diff(recent)).sum() / (lookback - 1))


# =============================================================================
# FULL CALCULATION
# =============================================================================

def calculate(
    window: MetricWindow,
    stochastic_d_mode: str = "k",
    macd_signal_mode: str = "scaled"
) -> Optional[IndicatorSet]:
    """
    Compute and classify all six indicators for a metric window.

    Args:
        window: Oldest-first history of one metric
        stochastic_d_mode: "k" or "sma3"
        macd_signal_mode: "scaled" or "ema"

    Returns:
        IndicatorSet, or None when the window has fewer than 14 samples
    """
    if len(window) < MIN_WINDOW:
        return None

    values = window.values

    rsi_value = rsi(values)
    stoch = stochastic(values, d_mode=stochastic_d_mode)
    wr_value = williams_r(values)
    macd_result = macd(values, signal_mode=macd_signal_mode)
    roc_value = roc(values)
    atr_value = atr_proxy(values)
    avg_change = mean_abs_change(values)

    return IndicatorSet(
        rsi=ValueIndicator(rsi_value, signals.rsi_signal(rsi_value)),
        stochastic=StochasticResult(stoch.k, stoch.d, signals.stochastic_signal(stoch.k, stoch.d)),
        williams_r=ValueIndicator(wr_value, signals.williams_r_signal(wr_value)),
        macd=MACDResult(
            macd_result.macd_line,
            macd_result.signal_line,
            macd_result.histogram,
            signals.macd_signal(macd_result.macd_line, macd_result.signal_line, macd_result.histogram),
        ),
        roc=ValueIndicator(roc_value, signals.roc_signal(roc_value, avg_change)),
        atr=ValueIndicator(atr_value, signals.atr_signal(atr_value, avg_change)),
        raw_metric=float(values[-1]),
        metric_type=window.metric_type,
        resolution=window.resolution,
        data_points_used=len(values),
    )
