"""
Configuration Module for the Technical Analysis Engine

This module centralizes the enumerations, default indicator parameters,
regime thresholds and validation rules used throughout the engine.

All "magic numbers" live here so that:
1. Every indicator reads its parameters from one immutable object
2. Defaults are documented next to the value they set
3. Invalid parameters fail fast, before any price data is touched

Configuration objects are frozen dataclasses. An AnalysisConfig is built
once per analyze() call and handed down read-only to every indicator.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ConfigurationError(ValueError):
    """Raised when the caller supplies invalid indicator or regime parameters."""


# =============================================================================
# CONSTANTS
# =============================================================================

# Package version, also read by pyproject.toml
VERSION = "1.0.0"

# Trading calendar
TRADING_DAYS_YEAR: int = 252

# RSI parameters
RSI_PERIOD: int = 14
RSI_OVERBOUGHT: float = 70.0
RSI_OVERSOLD: float = 30.0
RSI_EXTREME_OB: float = 80.0
RSI_EXTREME_OS: float = 20.0

# MACD parameters
MACD_FAST: int = 12
MACD_SLOW: int = 26
MACD_SIGNAL: int = 9

# Bollinger Bands parameters
BB_PERIOD: int = 20
BB_STD_DEV: float = 2.0
BB_SQUEEZE_THRESHOLD: float = 0.10

# Stochastic parameters
STOCH_K_PERIOD: int = 14
STOCH_D_PERIOD: int = 3
STOCH_OVERBOUGHT: float = 80.0
STOCH_OVERSOLD: float = 20.0
STOCH_EXTREME_OB: float = 90.0
STOCH_EXTREME_OS: float = 10.0

# Williams %R parameters
WILLIAMS_PERIOD: int = 14
WILLIAMS_OVERBOUGHT: float = -20.0
WILLIAMS_OVERSOLD: float = -80.0
WILLIAMS_EXTREME_OB: float = -10.0
WILLIAMS_EXTREME_OS: float = -90.0

# ADX parameters
ADX_PERIOD: int = 14
ADX_STRONG_TREND: float = 25.0
ADX_WEAK_TREND: float = 20.0

# OBV parameters
OBV_LOOKBACK: int = 20
OBV_MIN_POINTS: int = 10
OBV_TREND_THRESHOLD: float = 0.2

# Moving average parameters
SMA_PERIODS: Tuple[int, ...] = (20, 50, 200)
EMA_PERIODS: Tuple[int, ...] = (12, 26)

# Signal aggregation
CONFLICT_MIN_STRENGTH: float = 0.5
BULLISH_RATIO: float = 0.6
BEARISH_RATIO: float = 0.4
STRONG_SIGNAL_STRENGTH: float = 0.7


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Signal(Enum):
    """Directional call produced by a single indicator."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"

    @property
    def opposite(self) -> 'Signal':
        if self is Signal.BUY:
            return Signal.SELL
        if self is Signal.SELL:
            return Signal.BUY
        return Signal.HOLD


class Sentiment(Enum):
    """Overall read across all indicators."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class TrendDirection(Enum):
    UP = "up"
    DOWN = "down"
    SIDEWAYS = "sideways"


class MomentumState(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class MarketCondition(Enum):
    """Market regime under which signals are interpreted."""
    BULL = "bull"
    BEAR = "bear"
    SIDEWAYS = "sideways"


class VolatilityLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MarketCapSize(Enum):
    SMALL = "small"
    MID = "mid"
    LARGE = "large"


class RiskLevel(Enum):
    """Risk classification attached to an explanation."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> 'RiskLevel':
        rank = max(0, min(len(_RISK_ORDER) - 1, rank))
        return _RISK_ORDER[rank]


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH)


class IndicatorName(Enum):
    """
    Closed set of indicators the engine knows how to compute and explain.

    UNKNOWN collects any name that is not recognised so that explanation
    generation can fall back to generic prose instead of failing.
    """
    RSI = "RSI"
    MACD = "MACD"
    BOLLINGER_BANDS = "BOLLINGER_BANDS"
    STOCHASTIC = "STOCHASTIC"
    WILLIAMS_R = "WILLIAMS %R"
    ADX = "ADX"
    OBV = "OBV"
    MOVING_AVERAGES = "MOVING_AVERAGES"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, name: Any) -> 'IndicatorName':
        """Map a free-form indicator label onto the enum (UNKNOWN if unmatched)."""
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            return cls.UNKNOWN
        key = " ".join(name.strip().upper().replace("-", " ").replace("_", " ").split())
        return _INDICATOR_ALIASES.get(key, cls.UNKNOWN)

    @property
    def is_directional(self) -> bool:
        """Indicators whose calls gain or lose credibility with trend strength."""
        return self in (
            IndicatorName.MACD,
            IndicatorName.MOVING_AVERAGES,
            IndicatorName.OBV,
        )


_INDICATOR_ALIASES: Dict[str, IndicatorName] = {
    "RSI": IndicatorName.RSI,
    "RELATIVE STRENGTH INDEX": IndicatorName.RSI,
    "MACD": IndicatorName.MACD,
    "BOLLINGER BANDS": IndicatorName.BOLLINGER_BANDS,
    "BOLLINGER": IndicatorName.BOLLINGER_BANDS,
    "BB": IndicatorName.BOLLINGER_BANDS,
    "STOCHASTIC": IndicatorName.STOCHASTIC,
    "STOCH": IndicatorName.STOCHASTIC,
    "WILLIAMS %R": IndicatorName.WILLIAMS_R,
    "WILLIAMS R": IndicatorName.WILLIAMS_R,
    "WILLIAMSR": IndicatorName.WILLIAMS_R,
    "%R": IndicatorName.WILLIAMS_R,
    "ADX": IndicatorName.ADX,
    "OBV": IndicatorName.OBV,
    "ON BALANCE VOLUME": IndicatorName.OBV,
    "MOVING AVERAGES": IndicatorName.MOVING_AVERAGES,
    "MOVING AVERAGE": IndicatorName.MOVING_AVERAGES,
    "MA": IndicatorName.MOVING_AVERAGES,
    "SMA": IndicatorName.MOVING_AVERAGES,
    "EMA": IndicatorName.MOVING_AVERAGES,
    "GOLDEN CROSS": IndicatorName.MOVING_AVERAGES,
    "DEATH CROSS": IndicatorName.MOVING_AVERAGES,
}

# Canonical computation order; signals and indicator histories follow it
COMPUTED_INDICATORS: Tuple[IndicatorName, ...] = (
    IndicatorName.RSI,
    IndicatorName.MACD,
    IndicatorName.BOLLINGER_BANDS,
    IndicatorName.STOCHASTIC,
    IndicatorName.WILLIAMS_R,
    IndicatorName.ADX,
    IndicatorName.OBV,
    IndicatorName.MOVING_AVERAGES,
)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _require_period(owner: str, name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{owner}.{name} must be an integer, got {value!r}")
    if value <= 0:
        raise ConfigurationError(f"{owner}.{name} must be positive, got {value}")


def _require_finite(owner: str, name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigurationError(f"{owner}.{name} must be a finite number, got {value!r}")


def _require_order(owner: str, low_name: str, low: float, high_name: str, high: float) -> None:
    if low >= high:
        raise ConfigurationError(
            f"{owner}.{low_name} ({low}) must be below {owner}.{high_name} ({high})"
        )


# =============================================================================
# INDICATOR PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class RSIConfig:
    """Relative Strength Index parameters."""
    period: int = RSI_PERIOD
    overbought: float = RSI_OVERBOUGHT
    oversold: float = RSI_OVERSOLD

    def __post_init__(self):
        _require_period("rsi", "period", self.period)
        _require_finite("rsi", "overbought", self.overbought)
        _require_finite("rsi", "oversold", self.oversold)
        if not 0.0 < self.oversold < self.overbought < 100.0:
            raise ConfigurationError(
                f"rsi thresholds must satisfy 0 < oversold < overbought < 100, "
                f"got {self.oversold}/{self.overbought}"
            )


@dataclass(frozen=True)
class MACDConfig:
    """Moving Average Convergence Divergence parameters."""
    fast: int = MACD_FAST
    slow: int = MACD_SLOW
    signal: int = MACD_SIGNAL

    def __post_init__(self):
        for name in ("fast", "slow", "signal"):
            _require_period("macd", name, getattr(self, name))
        _require_order("macd", "fast", self.fast, "slow", self.slow)


@dataclass(frozen=True)
class BollingerConfig:
    """Bollinger Bands parameters."""
    period: int = BB_PERIOD
    std_dev: float = BB_STD_DEV
    squeeze_threshold: float = BB_SQUEEZE_THRESHOLD

    def __post_init__(self):
        _require_period("bollinger", "period", self.period)
        _require_finite("bollinger", "std_dev", self.std_dev)
        _require_finite("bollinger", "squeeze_threshold", self.squeeze_threshold)
        if self.std_dev <= 0:
            raise ConfigurationError(f"bollinger.std_dev must be positive, got {self.std_dev}")
        if self.squeeze_threshold < 0:
            raise ConfigurationError("bollinger.squeeze_threshold must not be negative")


@dataclass(frozen=True)
class StochasticConfig:
    """Stochastic Oscillator parameters."""
    k_period: int = STOCH_K_PERIOD
    d_period: int = STOCH_D_PERIOD
    overbought: float = STOCH_OVERBOUGHT
    oversold: float = STOCH_OVERSOLD

    def __post_init__(self):
        _require_period("stochastic", "k_period", self.k_period)
        _require_period("stochastic", "d_period", self.d_period)
        _require_finite("stochastic", "overbought", self.overbought)
        _require_finite("stochastic", "oversold", self.oversold)
        if not 0.0 <= self.oversold < self.overbought <= 100.0:
            raise ConfigurationError(
                f"stochastic thresholds must satisfy 0 <= oversold < overbought <= 100, "
                f"got {self.oversold}/{self.overbought}"
            )


@dataclass(frozen=True)
class WilliamsRConfig:
    """Williams %R parameters (readings live in [-100, 0])."""
    period: int = WILLIAMS_PERIOD
    overbought: float = WILLIAMS_OVERBOUGHT
    oversold: float = WILLIAMS_OVERSOLD

    def __post_init__(self):
        _require_period("williams_r", "period", self.period)
        _require_finite("williams_r", "overbought", self.overbought)
        _require_finite("williams_r", "oversold", self.oversold)
        if not -100.0 <= self.oversold < self.overbought <= 0.0:
            raise ConfigurationError(
                f"williams_r thresholds must satisfy -100 <= oversold < overbought <= 0, "
                f"got {self.oversold}/{self.overbought}"
            )


@dataclass(frozen=True)
class ADXConfig:
    """Average Directional Index parameters."""
    period: int = ADX_PERIOD
    strong_trend: float = ADX_STRONG_TREND
    weak_trend: float = ADX_WEAK_TREND

    def __post_init__(self):
        _require_period("adx", "period", self.period)
        _require_finite("adx", "strong_trend", self.strong_trend)
        _require_finite("adx", "weak_trend", self.weak_trend)
        if not 0.0 < self.weak_trend <= self.strong_trend < 100.0:
            raise ConfigurationError(
                f"adx thresholds must satisfy 0 < weak_trend <= strong_trend < 100, "
                f"got {self.weak_trend}/{self.strong_trend}"
            )


@dataclass(frozen=True)
class OBVConfig:
    """On-Balance Volume trend and divergence parameters."""
    lookback: int = OBV_LOOKBACK
    min_points: int = OBV_MIN_POINTS
    trend_threshold: float = OBV_TREND_THRESHOLD

    def __post_init__(self):
        _require_period("obv", "lookback", self.lookback)
        _require_period("obv", "min_points", self.min_points)
        _require_finite("obv", "trend_threshold", self.trend_threshold)
        if self.min_points < 3:
            raise ConfigurationError("obv.min_points must be at least 3 to fit a trend")
        if self.min_points > self.lookback:
            raise ConfigurationError(
                f"obv.min_points ({self.min_points}) cannot exceed obv.lookback ({self.lookback})"
            )
        if not 0.0 < self.trend_threshold <= 1.0:
            raise ConfigurationError("obv.trend_threshold must lie in (0, 1]")


@dataclass(frozen=True)
class MovingAverageConfig:
    """Simple and exponential moving average periods (ascending)."""
    sma_periods: Tuple[int, ...] = SMA_PERIODS
    ema_periods: Tuple[int, ...] = EMA_PERIODS

    def __post_init__(self):
        for name in ("sma_periods", "ema_periods"):
            periods = tuple(getattr(self, name))
            if not periods:
                raise ConfigurationError(f"moving_averages.{name} must not be empty")
            for period in periods:
                _require_period("moving_averages", name, period)
            if list(periods) != sorted(set(periods)):
                raise ConfigurationError(
                    f"moving_averages.{name} must be strictly ascending, got {periods}"
                )
            object.__setattr__(self, name, periods)


# =============================================================================
# REGIME THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class RegimeThresholds:
    """
    Tuning parameters for market context inference.

    These values are empirical. They are exposed so callers can recalibrate
    the bull/bear/sideways and volatility buckets for other asset classes.
    """

    # Condition
    min_points: int = 10                 # Below this the regime is sideways
    sideways_change: float = 0.05        # |net change| under 5% is range-bound
    max_reversal_rate: float = 0.60      # Share of sign flips tolerated in a trend

    # Volatility (annualised std of simple returns)
    low_volatility: float = 0.15
    high_volatility: float = 0.30

    # Market capitalisation (USD)
    small_cap: float = 2e9
    large_cap: float = 1e10

    def __post_init__(self):
        _require_period("regime", "min_points", self.min_points)
        for name in ("sideways_change", "max_reversal_rate", "low_volatility",
                     "high_volatility", "small_cap", "large_cap"):
            _require_finite("regime", name, getattr(self, name))
        if self.min_points < 3:
            raise ConfigurationError("regime.min_points must be at least 3")
        if self.sideways_change < 0:
            raise ConfigurationError("regime.sideways_change must not be negative")
        if not 0.0 < self.max_reversal_rate <= 1.0:
            raise ConfigurationError("regime.max_reversal_rate must lie in (0, 1]")
        if self.low_volatility <= 0:
            raise ConfigurationError("regime.low_volatility must be positive")
        _require_order("regime", "low_volatility", self.low_volatility,
                       "high_volatility", self.high_volatility)
        if self.small_cap <= 0:
            raise ConfigurationError("regime.small_cap must be positive")
        _require_order("regime", "small_cap", self.small_cap, "large_cap", self.large_cap)


# =============================================================================
# ANALYSIS CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class AnalysisConfig:
    """
    Complete, immutable parameter set for one analyze() call.

    Attributes
    ----------
    rsi, macd, bollinger, stochastic, williams_r, adx, obv, moving_averages
        Per-indicator parameters (documented defaults)
    regime : RegimeThresholds
        Thresholds for the volatility read in the summary
    enabled_indicators : Tuple[IndicatorName, ...]
        Indicators to compute, in canonical order
    """
    rsi: RSIConfig = field(default_factory=RSIConfig)
    macd: MACDConfig = field(default_factory=MACDConfig)
    bollinger: BollingerConfig = field(default_factory=BollingerConfig)
    stochastic: StochasticConfig = field(default_factory=StochasticConfig)
    williams_r: WilliamsRConfig = field(default_factory=WilliamsRConfig)
    adx: ADXConfig = field(default_factory=ADXConfig)
    obv: OBVConfig = field(default_factory=OBVConfig)
    moving_averages: MovingAverageConfig = field(default_factory=MovingAverageConfig)
    regime: RegimeThresholds = field(default_factory=RegimeThresholds)
    enabled_indicators: Tuple[IndicatorName, ...] = COMPUTED_INDICATORS

    def __post_init__(self):
        sections = {
            "rsi": RSIConfig, "macd": MACDConfig, "bollinger": BollingerConfig,
            "stochastic": StochasticConfig, "williams_r": WilliamsRConfig,
            "adx": ADXConfig, "obv": OBVConfig,
            "moving_averages": MovingAverageConfig, "regime": RegimeThresholds,
        }
        for name, expected in sections.items():
            if not isinstance(getattr(self, name), expected):
                raise ConfigurationError(
                    f"{name} must be a {expected.__name__}, got {type(getattr(self, name)).__name__}"
                )

        enabled = []
        for item in self.enabled_indicators:
            indicator = IndicatorName.parse(item)
            if indicator not in COMPUTED_INDICATORS:
                raise ConfigurationError(f"Unknown indicator in enabled_indicators: {item!r}")
            if indicator not in enabled:
                enabled.append(indicator)
        # Canonical order regardless of how the caller listed them
        ordered = tuple(ind for ind in COMPUTED_INDICATORS if ind in enabled)
        object.__setattr__(self, "enabled_indicators", ordered)

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Any]] = None) -> 'AnalysisConfig':
        """
        Build a config from a partial nested mapping.

        Example: ``AnalysisConfig.from_overrides({"rsi": {"period": 10}})``.
        Unknown sections or fields raise ConfigurationError.
        """
        base = cls()
        if not overrides:
            return base
        if not isinstance(overrides, Mapping):
            raise ConfigurationError(f"Config overrides must be a mapping, got {type(overrides).__name__}")

        known = {f.name for f in fields(cls)}
        changes: Dict[str, Any] = {}
        for section, values in overrides.items():
            if section not in known:
                raise ConfigurationError(f"Unknown configuration section: {section!r}")
            if section == "enabled_indicators":
                changes[section] = tuple(values)
                continue
            current = getattr(base, section)
            if isinstance(values, type(current)):
                changes[section] = values
                continue
            if not isinstance(values, Mapping):
                raise ConfigurationError(f"Overrides for {section!r} must be a mapping")
            allowed = {f.name for f in fields(current)}
            unknown = set(values) - allowed
            if unknown:
                raise ConfigurationError(f"Unknown {section} parameters: {sorted(unknown)}")
            changes[section] = replace(current, **values)
        return replace(base, **changes)


DEFAULT_CONFIG = AnalysisConfig()
