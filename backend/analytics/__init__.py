"""
Analytics Module
Technical indicators over host metric histories, and their signals.

Structure:
    analytics/
    ├── models.py      → Output types (dataclasses)
    ├── indicators.py  → Indicator math + full calculation
    └── signals.py     → Threshold classification

Usage:
    from analytics import indicators

    value = indicators.rsi(values)
    result = indicators.calculate(window)

Design Principles:
    ✓ ALL functions are PURE (inputs → computation → outputs)
    ✓ NO database access
    ✓ NO state management
"""

from . import indicators
from . import signals

from .models import (
    IndicatorName,
    IndicatorSet,
    MACDResult,
    Signal,
    StochasticResult,
    ValueIndicator,
)

__all__ = [
    # Modules
    "indicators",
    "signals",
    # Types
    "IndicatorName",
    "IndicatorSet",
    "MACDResult",
    "Signal",
    "StochasticResult",
    "ValueIndicator",
]
