"""
Market Context Inference
========================

Derives the regime under which indicator signals are interpreted:

    condition   bull | bear | sideways   (net change + path smoothness)
    volatility  low | medium | high      (annualised std of returns)
    market_cap  small | mid | large      (static metadata buckets)
    sector      pass-through metadata

CLASSIFICATION RULES
--------------------
Condition:
    net_change    = (last close - first close) / first close
    reversal_rate = share of consecutive non-zero returns that flip sign

    |net_change| < sideways_change        -> sideways
    reversal_rate > max_reversal_rate     -> sideways (choppy path)
    otherwise                             -> bull if net_change > 0 else bear

Volatility:
    sigma = population std of simple returns * sqrt(252)
    sigma < low_volatility -> low, sigma > high_volatility -> high

All thresholds live in config.RegimeThresholds and are tuning parameters,
not fixed constants of the method.

FAILURE SEMANTICS
-----------------
Inference never raises for data problems. Fewer than ``min_points`` closes,
malformed input or degenerate prices fall back to sideways / medium.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from technical_analysis.config import (
    MarketCapSize,
    MarketCondition,
    RegimeThresholds,
    TRADING_DAYS_YEAR,
    VolatilityLevel,
)
from technical_analysis.price_data import PriceDataError, PriceInput, to_price_frame
from technical_analysis.technical_indicators import safe_divide, safe_float

logger = logging.getLogger(__name__)


UNKNOWN_SECTOR = "unknown"

DEFAULT_THRESHOLDS = RegimeThresholds()


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class MarketContext:
    """
    Regime description consumed by the explanation generator.

    String values are accepted for every enum field ('bull', 'high', ...);
    unrecognised values fall back to the neutral default with a warning.
    """
    condition: MarketCondition = MarketCondition.SIDEWAYS
    volatility: VolatilityLevel = VolatilityLevel.MEDIUM
    sector: str = UNKNOWN_SECTOR
    market_cap: MarketCapSize = MarketCapSize.MID

    def __post_init__(self):
        object.__setattr__(self, 'condition', _coerce(MarketCondition, self.condition, MarketCondition.SIDEWAYS))
        object.__setattr__(self, 'volatility', _coerce(VolatilityLevel, self.volatility, VolatilityLevel.MEDIUM))
        object.__setattr__(self, 'market_cap', _coerce(MarketCapSize, self.market_cap, MarketCapSize.MID))
        sector = str(self.sector).strip() if self.sector is not None else ""
        object.__setattr__(self, 'sector', sector or UNKNOWN_SECTOR)

    @property
    def has_sector(self) -> bool:
        return self.sector.lower() != UNKNOWN_SECTOR

    def to_dict(self) -> Dict[str, str]:
        return {
            'condition': self.condition.value,
            'volatility': self.volatility.value,
            'sector': self.sector,
            'market_cap': self.market_cap.value,
        }


def _coerce(enum_cls, value: Any, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        logger.warning(f"Unrecognised {enum_cls.__name__} {value!r}; using {default.value}")
        return default


# =============================================================================
# SECTION 2: UTILITY FUNCTIONS
# =============================================================================

def compute_returns(close: pd.Series) -> np.ndarray:
    """
    Simple period-over-period returns with non-finite values removed.

    Args:
        close: Close prices in chronological order

    Returns:
        Return array (length <= n-1)
    """
    prices = np.asarray(close, dtype=float)
    if len(prices) < 2:
        return np.array([], dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        returns = np.diff(prices) / prices[:-1]
    return returns[np.isfinite(returns)]


def annualize_volatility(daily_vol: float) -> float:
    """Annualize daily volatility using square-root of time rule."""
    return daily_vol * np.sqrt(TRADING_DAYS_YEAR)


def classify_volatility(
    returns: np.ndarray,
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
) -> VolatilityLevel:
    """Bucket annualised return dispersion; fewer than 2 returns is medium."""
    if len(returns) < 2:
        return VolatilityLevel.MEDIUM
    sigma = annualize_volatility(float(np.std(returns)))
    if sigma < thresholds.low_volatility:
        return VolatilityLevel.LOW
    if sigma > thresholds.high_volatility:
        return VolatilityLevel.HIGH
    return VolatilityLevel.MEDIUM


def reversal_rate(returns: np.ndarray) -> float:
    """Share of consecutive non-zero returns whose sign flips."""
    signs = np.sign(returns)
    signs = signs[signs != 0]
    if len(signs) < 2:
        return 0.0
    return float(np.mean(signs[1:] != signs[:-1]))


def classify_condition(
    close: pd.Series,
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
) -> MarketCondition:
    """Bull/bear/sideways from net change and reversal frequency."""
    prices = np.asarray(close, dtype=float)
    if len(prices) < thresholds.min_points:
        return MarketCondition.SIDEWAYS

    net_change = safe_divide(prices[-1] - prices[0], abs(prices[0]))
    flips = reversal_rate(compute_returns(close))

    if abs(net_change) < thresholds.sideways_change:
        return MarketCondition.SIDEWAYS
    if flips > thresholds.max_reversal_rate:
        return MarketCondition.SIDEWAYS
    return MarketCondition.BULL if net_change > 0 else MarketCondition.BEAR


def classify_market_cap(
    market_cap: Optional[float],
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
) -> MarketCapSize:
    """
    Bucket a market capitalisation figure.

    Above ``large_cap`` is large, above ``small_cap`` is mid, otherwise
    small. Missing or non-finite figures are treated as mid.
    """
    value = safe_float(market_cap, default=float('nan'))
    if np.isnan(value):
        return MarketCapSize.MID
    if value > thresholds.large_cap:
        return MarketCapSize.LARGE
    if value > thresholds.small_cap:
        return MarketCapSize.MID
    return MarketCapSize.SMALL


# =============================================================================
# SECTION 3: INFERENCE
# =============================================================================

def infer_market_context(
    symbol: str,
    sector: Optional[str],
    market_cap: Optional[float],
    price_series: PriceInput,
    thresholds: Optional[RegimeThresholds] = None
) -> MarketContext:
    """
    Infer the market context for a symbol.

    Args:
        symbol: Ticker (used for logging only)
        sector: Free-text sector, passed through
        market_cap: Market capitalisation in USD
        price_series: OHLCV DataFrame or PricePoint sequence (not modified)
        thresholds: Optional tuning overrides

    Returns:
        Fully populated MarketContext
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS

    try:
        frame = to_price_frame(price_series)
        close = frame['close'].dropna()
    except PriceDataError as e:
        logger.warning(f"{symbol}: unusable price data for context inference ({e})")
        close = pd.Series(dtype=float)

    cap_size = classify_market_cap(market_cap, thresholds)

    if len(close) < thresholds.min_points:
        logger.debug(f"{symbol}: {len(close)} closes, defaulting to sideways/medium")
        return MarketContext(
            condition=MarketCondition.SIDEWAYS,
            volatility=VolatilityLevel.MEDIUM,
            sector=sector,
            market_cap=cap_size,
        )

    returns = compute_returns(close)
    condition = classify_condition(close, thresholds)
    volatility = classify_volatility(returns, thresholds)

    logger.debug(
        f"{symbol}: condition={condition.value}, volatility={volatility.value}, "
        f"cap={cap_size.value}, reversal_rate={reversal_rate(returns):.2f}"
    )

    return MarketContext(
        condition=condition,
        volatility=volatility,
        sector=sector,
        market_cap=cap_size,
    )
