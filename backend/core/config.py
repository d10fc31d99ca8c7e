"""
Runtime Settings
Process-wide configuration read from the environment.

Every knob has a default so the service starts with no environment at all.
Variables use the CONFLUENCE_ prefix, e.g. CONFLUENCE_COOLDOWN_MINUTES=30.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from .models import Resolution

ENV_PREFIX = "CONFLUENCE_"

STOCHASTIC_D_MODES = ("k", "sma3")
MACD_SIGNAL_MODES = ("scaled", "ema")

T = TypeVar("T")


def _read(env: Mapping[str, str], name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Top level configuration for the alerting service."""

    db_path: str = "data/confluence.db"
    lookback_periods: int = 50
    cooldown_minutes: int = 15
    io_timeout_sec: float = 5.0
    default_resolution: Resolution = Resolution.RAW
    config_cache_ttl_sec: float = 300.0
    buffer_size: int = 1000
    stochastic_d_mode: str = "k"
    macd_signal_mode: str = "scaled"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.lookback_periods < 14:
            raise ValueError("lookback_periods must be at least 14")
        if self.cooldown_minutes < 0:
            raise ValueError("cooldown_minutes must be non-negative")
        if self.io_timeout_sec <= 0:
            raise ValueError("io_timeout_sec must be positive")
        if self.config_cache_ttl_sec < 0:
            raise ValueError("config_cache_ttl_sec must be non-negative")
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be positive")
        if self.stochastic_d_mode not in STOCHASTIC_D_MODES:
            raise ValueError(f"stochastic_d_mode must be one of {STOCHASTIC_D_MODES}")
        if self.macd_signal_mode not in MACD_SIGNAL_MODES:
            raise ValueError(f"macd_signal_mode must be one of {MACD_SIGNAL_MODES}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            db_path=_read(env, "DB_PATH", defaults.db_path, str),
            lookback_periods=_read(env, "LOOKBACK_PERIODS", defaults.lookback_periods, int),
            cooldown_minutes=_read(env, "COOLDOWN_MINUTES", defaults.cooldown_minutes, int),
            io_timeout_sec=_read(env, "IO_TIMEOUT_SEC", defaults.io_timeout_sec, float),
            default_resolution=_read(env, "DEFAULT_RESOLUTION", defaults.default_resolution, Resolution),
            config_cache_ttl_sec=_read(env, "CONFIG_CACHE_TTL_SEC", defaults.config_cache_ttl_sec, float),
            buffer_size=_read(env, "BUFFER_SIZE", defaults.buffer_size, int),
            stochastic_d_mode=_read(env, "STOCHASTIC_D_MODE", defaults.stochastic_d_mode, str.lower),
            macd_signal_mode=_read(env, "MACD_SIGNAL_MODE", defaults.macd_signal_mode, str.lower),
            log_level=_read(env, "LOG_LEVEL", defaults.log_level, str.upper),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
