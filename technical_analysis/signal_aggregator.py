"""
Signal Aggregation and Conflict Detection

Reduces the per-indicator TechnicalSignals for one symbol at one point in
time into a single overall read:

1. Trend filter: a strong ADX amplifies signals aligned with the trend and
   damps oscillator calls against it; a weak ADX damps trend-following calls.
2. Weighted sentiment: buy and sell signals are weighted by strength.
   bullish_ratio = buy / (buy + sell); > 0.6 bullish, < 0.4 bearish.
3. Market read from closes: trend direction, momentum, volatility.
4. Pairwise conflicts between opposing signals of material strength.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from technical_analysis.config import (
    ADXConfig,
    BEARISH_RATIO,
    BULLISH_RATIO,
    CONFLICT_MIN_STRENGTH,
    IndicatorName,
    MomentumState,
    RegimeThresholds,
    Sentiment,
    Signal,
    TrendDirection,
    VolatilityLevel,
)
from technical_analysis.market_context import classify_volatility, compute_returns
from technical_analysis.technical_indicators import TechnicalSignal, safe_divide

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Trend filter
TREND_ALIGNED_BOOST: float = 1.2
COUNTER_TREND_DAMPING: float = 0.4
WEAK_TREND_DAMPING: float = 0.8

OSCILLATORS = frozenset({
    IndicatorName.RSI,
    IndicatorName.STOCHASTIC,
    IndicatorName.WILLIAMS_R,
    IndicatorName.BOLLINGER_BANDS,
})
TREND_FOLLOWERS = frozenset({
    IndicatorName.MACD,
    IndicatorName.MOVING_AVERAGES,
    IndicatorName.OBV,
})

# Market read windows
TREND_WINDOW: int = 20
TREND_MIN_POINTS: int = 10
TREND_THRESHOLD: float = 0.02
MOMENTUM_WINDOW: int = 5
MOMENTUM_THRESHOLD: float = 0.20


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class AnalysisSummary:
    """Overall read across all indicator signals."""
    overall: Sentiment = Sentiment.NEUTRAL
    strength: float = 0.0
    confidence: float = 0.0
    trend_direction: TrendDirection = TrendDirection.SIDEWAYS
    momentum: MomentumState = MomentumState.STABLE
    volatility: VolatilityLevel = VolatilityLevel.MEDIUM
    signal_count: int = 0
    indicator_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    hold_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('overall', 'trend_direction', 'momentum', 'volatility'):
            data[key] = getattr(self, key).value
        return data


# =============================================================================
# TREND FILTER
# =============================================================================

def apply_trend_filter(
    signals: Sequence[TechnicalSignal],
    adx: Optional[float],
    plus_di: Optional[float],
    minus_di: Optional[float],
    adx_config: ADXConfig = ADXConfig()
) -> List[TechnicalSignal]:
    """
    Adjust signal strengths for the prevailing trend strength.

    ADX >= strong threshold:
        signals agreeing with the dominant DI are amplified,
        oscillator signals against it are damped (overbought/oversold
        readings persist in strong trends).
    ADX < weak threshold:
        trend-following buy/sell signals are damped.

    The ADX signal itself and hold signals pass through unchanged.
    """
    if adx is None or not np.isfinite(adx):
        return list(signals)

    strong = adx >= adx_config.strong_trend and plus_di is not None and minus_di is not None \
        and plus_di != minus_di
    weak = adx < adx_config.weak_trend
    trend = None
    if strong:
        trend = Signal.BUY if plus_di > minus_di else Signal.SELL

    adjusted = []
    for sig in signals:
        name = IndicatorName.parse(sig.indicator)
        if name is IndicatorName.ADX or sig.signal is Signal.HOLD:
            adjusted.append(sig)
            continue

        if trend is not None and sig.signal is trend:
            sig = replace(
                sig,
                strength=sig.strength * TREND_ALIGNED_BOOST,
                description=f"{sig.description}; confirmed by strong trend",
            )
        elif trend is not None and name in OSCILLATORS:
            sig = replace(
                sig,
                strength=sig.strength * COUNTER_TREND_DAMPING,
                description=f"{sig.description}; counter-trend while ADX is strong",
            )
        elif weak and name in TREND_FOLLOWERS:
            sig = replace(
                sig,
                strength=sig.strength * WEAK_TREND_DAMPING,
                description=f"{sig.description}; weak trend",
            )
        adjusted.append(sig)

    return adjusted


# =============================================================================
# SENTIMENT
# =============================================================================

def directional_mass(signals: Iterable[TechnicalSignal]) -> Tuple[float, float]:
    """Strength-weighted (buy, sell) totals."""
    buy = sell = 0.0
    for sig in signals:
        if sig.signal is Signal.BUY:
            buy += sig.strength
        elif sig.signal is Signal.SELL:
            sell += sig.strength
    return buy, sell


def weighted_sentiment(signals: Sequence[TechnicalSignal]) -> Tuple[Sentiment, float]:
    """
    Overall sentiment and its strength.

    Returns
    -------
    Tuple[Sentiment, float]
        Sentiment and strength in [0.5, 0.9]; strength is 0 without signals
    """
    if not signals:
        return Sentiment.NEUTRAL, 0.0

    buy, sell = directional_mass(signals)
    ratio = safe_divide(buy, buy + sell, default=0.5)

    if ratio > BULLISH_RATIO:
        sentiment = Sentiment.BULLISH
    elif ratio < BEARISH_RATIO:
        sentiment = Sentiment.BEARISH
    else:
        sentiment = Sentiment.NEUTRAL

    strength = min(0.9, 0.5 + abs(ratio - 0.5) * 0.8)
    return sentiment, strength


def signal_confidence(signal_count: int) -> float:
    """More corroborating indicators, more confidence (capped at 0.9)."""
    if signal_count <= 0:
        return 0.0
    return min(0.9, max(0.1, signal_count / 10.0))


# =============================================================================
# MARKET READ
# =============================================================================

def classify_trend_direction(close: pd.Series) -> TrendDirection:
    """Second half of the last 20 closes versus the first half, +-2%."""
    recent = np.asarray(close, dtype=float)[-TREND_WINDOW:]
    if len(recent) < TREND_MIN_POINTS:
        return TrendDirection.SIDEWAYS
    half = len(recent) // 2
    first, second = float(np.mean(recent[:half])), float(np.mean(recent[half:]))
    change = safe_divide(second - first, abs(first))
    if change > TREND_THRESHOLD:
        return TrendDirection.UP
    if change < -TREND_THRESHOLD:
        return TrendDirection.DOWN
    return TrendDirection.SIDEWAYS


def classify_momentum(close: pd.Series) -> MomentumState:
    """Mean absolute return of the last 5 bars versus the 5 before, +-20%."""
    returns = compute_returns(close)
    if len(returns) < 2 * MOMENTUM_WINDOW:
        return MomentumState.STABLE
    recent = float(np.mean(np.abs(returns[-MOMENTUM_WINDOW:])))
    previous = float(np.mean(np.abs(returns[-2 * MOMENTUM_WINDOW:-MOMENTUM_WINDOW])))
    if previous == 0.0:
        return MomentumState.INCREASING if recent > 0.0 else MomentumState.STABLE
    change = (recent - previous) / previous
    if change > MOMENTUM_THRESHOLD:
        return MomentumState.INCREASING
    if change < -MOMENTUM_THRESHOLD:
        return MomentumState.DECREASING
    return MomentumState.STABLE


def summarize_signals(
    signals: Sequence[TechnicalSignal],
    close: Optional[pd.Series] = None,
    thresholds: RegimeThresholds = RegimeThresholds()
) -> AnalysisSummary:
    """
    Build the AnalysisSummary for a set of simultaneous signals.

    Parameters
    ----------
    signals : Sequence[TechnicalSignal]
        Latest signal per indicator
    close : pd.Series, optional
        Close prices for the trend/momentum/volatility read
    thresholds : RegimeThresholds
        Volatility buckets
    """
    sentiment, strength = weighted_sentiment(signals)
    counts = {s: sum(1 for sig in signals if sig.signal is s) for s in Signal}

    if close is None:
        close = pd.Series(dtype=float)

    summary = AnalysisSummary(
        overall=sentiment,
        strength=strength,
        confidence=signal_confidence(len(signals)),
        trend_direction=classify_trend_direction(close),
        momentum=classify_momentum(close),
        volatility=classify_volatility(compute_returns(close), thresholds),
        signal_count=len(signals),
        indicator_count=len({sig.indicator for sig in signals}),
        buy_count=counts[Signal.BUY],
        sell_count=counts[Signal.SELL],
        hold_count=counts[Signal.HOLD],
    )
    logger.debug(
        f"Summary: {summary.overall.value} (strength {summary.strength:.2f}, "
        f"{summary.buy_count} buy / {summary.sell_count} sell / {summary.hold_count} hold)"
    )
    return summary


# =============================================================================
# CONFLICTS
# =============================================================================

def format_conflict(a: TechnicalSignal, b: TechnicalSignal) -> str:
    """Describe an opposing pair; the buy side is always named first."""
    buy, sell = (a, b) if a.signal is Signal.BUY else (b, a)
    return (
        f"Mixed signals detected: {buy.indicator} suggests buy "
        f"(strength {buy.strength:.2f}) while {sell.indicator} suggests sell "
        f"(strength {sell.strength:.2f}). Consider waiting for confirmation "
        f"or reducing position size."
    )


def detect_conflicts(
    signals: Sequence[TechnicalSignal],
    min_strength: float = CONFLICT_MIN_STRENGTH
) -> List[str]:
    """
    Report every pair of opposing signals with material strength.

    A pair conflicts when one signal is buy, the other sell, and both have
    strength >= ``min_strength``. Each pair is reported once.
    """
    signals = list(signals)
    conflicts = []
    for i, first in enumerate(signals):
        if first.signal is Signal.HOLD or first.strength < min_strength:
            continue
        for second in signals[i + 1:]:
            if second.signal is first.signal.opposite and second.strength >= min_strength:
                conflicts.append(format_conflict(first, second))
    return conflicts
