"""
Indicator Explanation Generator

Turns a TechnicalSignal plus its MarketContext into plain-English prose:

    explanation         what the indicator reading means for the symbol
    actionable_insight  what a trader might do about it
    risk_level          low | medium | high
    confidence          signal strength, adjusted for trend strength
    timeframe           qualitative holding window for the call

NARRATIVE BUILDERS
    Every IndicatorName variant has exactly one builder function returning a
    Narrative (zone, base prose, base risk, timeframe). Builders are pure
    string formatters over (signal, symbol, price). The registry is checked
    against the enum at import time, so adding an indicator without a
    builder fails immediately.

CONTEXT CLAUSES
    Market condition, volatility, sector and market-cap clauses are appended
    to the base prose. Clauses are additive: every applicable one is added.

This module never raises on unusual input; unknown indicators, empty signal
lists and odd values degrade to generic prose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from technical_analysis.config import (
    ADX_STRONG_TREND,
    ADX_WEAK_TREND,
    IndicatorName,
    MarketCapSize,
    MarketCondition,
    RiskLevel,
    RSI_EXTREME_OB,
    RSI_EXTREME_OS,
    STOCH_EXTREME_OB,
    STOCH_EXTREME_OS,
    Sentiment,
    Signal,
    VolatilityLevel,
    WILLIAMS_EXTREME_OB,
    WILLIAMS_EXTREME_OS,
)
from technical_analysis.market_context import MarketContext
from technical_analysis.signal_aggregator import detect_conflicts, weighted_sentiment
from technical_analysis.technical_indicators import TechnicalSignal, clamp, safe_float

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

LOW_STRENGTH: float = 0.4
WELL_SUPPORTED_STRENGTH: float = 0.7
TREND_CONFIDENCE_ADJUSTMENT: float = 0.1

MONITORING = "ongoing monitoring"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class IndicatorExplanation:
    """Narrative output for one signal."""
    indicator: str
    value: float
    explanation: str
    actionable_insight: str
    risk_level: RiskLevel
    confidence: float
    timeframe: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'indicator': self.indicator,
            'value': self.value,
            'explanation': self.explanation,
            'actionable_insight': self.actionable_insight,
            'risk_level': self.risk_level.value,
            'confidence': round(self.confidence, 4),
            'timeframe': self.timeframe,
        }


@dataclass(frozen=True)
class MultiIndicatorExplanation:
    """Batch output: one explanation per signal plus the combined read."""
    explanations: Tuple[IndicatorExplanation, ...]
    overall_sentiment: Sentiment
    conflicts: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'explanations': [e.to_dict() for e in self.explanations],
            'overall_sentiment': self.overall_sentiment.value,
            'conflicts': list(self.conflicts),
        }


@dataclass(frozen=True)
class Narrative:
    """Indicator-specific prose before market context is applied."""
    zone: str
    explanation: str
    insight: str
    risk: RiskLevel
    timeframe: str
    extreme: bool = False


def _money(price: float) -> str:
    return f"${price:,.2f}"


# =============================================================================
# NARRATIVE BUILDERS
# =============================================================================

def _rsi_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    v = signal.value
    head = f"{symbol}'s RSI of {v:.1f}"
    extreme = v < RSI_EXTREME_OS or v > RSI_EXTREME_OB
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="oversold",
            explanation=(
                f"{head} shows oversold conditions at {_money(price)}, which historically "
                f"has led to short-term bounces as selling pressure exhausts."
            ),
            insight="Consider scaling into a position near current levels with a stop-loss below recent support.",
            risk=RiskLevel.LOW,
            timeframe="2-3 trading days",
            extreme=extreme,
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="overbought",
            explanation=(
                f"{head} shows overbought conditions at {_money(price)}, suggesting the "
                f"recent rally is stretched and vulnerable to a pullback."
            ),
            insight="Consider taking partial profits or tightening trailing stops rather than adding to positions.",
            risk=RiskLevel.MEDIUM,
            timeframe="1-2 weeks",
            extreme=extreme,
        )
    return Narrative(
        zone="neutral",
        explanation=(
            f"{head} sits in neutral territory at {_money(price)}, indicating balanced "
            f"buying and selling pressure."
        ),
        insight="No RSI-driven action is needed; watch for a move into oversold or overbought territory.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
        extreme=extreme,
    )


def _macd_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="bullish",
            explanation=(
                f"{symbol}'s MACD shows a bullish signal at current price of {_money(price)}, "
                f"suggesting upward momentum is building (MACD {signal.value:.2f})."
            ),
            insight="Consider entering long positions on pullbacks while the histogram stays positive.",
            risk=RiskLevel.MEDIUM,
            timeframe="2-3 trading days",
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="bearish",
            explanation=(
                f"{symbol}'s MACD shows a bearish signal at current price of {_money(price)}, "
                f"suggesting downward momentum is gaining (MACD {signal.value:.2f})."
            ),
            insight="Consider reducing exposure or protecting gains with stop-losses.",
            risk=RiskLevel.HIGH,
            timeframe="1-2 weeks",
        )
    return Narrative(
        zone="neutral",
        explanation=(
            f"{symbol}'s MACD is neutral at current price of {_money(price)}, with momentum "
            f"balanced between buyers and sellers."
        ),
        insight="Wait for a clear MACD crossover before acting on momentum.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
    )


def _bollinger_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="lower_band",
            explanation=(
                f"{symbol} is trading at the lower Bollinger Band at {_money(price)}, a "
                f"statistically stretched level from which prices often revert toward the average."
            ),
            insight="Consider a mean-reversion entry with a stop below the lower band, confirmed by momentum.",
            risk=RiskLevel.MEDIUM,
            timeframe="1-2 weeks",
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="upper_band",
            explanation=(
                f"{symbol} is trading at the upper Bollinger Band at {_money(price)}, where "
                f"rallies often pause or revert toward the average."
            ),
            insight="Consider taking profits into strength or waiting for a pullback toward the middle band.",
            risk=RiskLevel.MEDIUM,
            timeframe="1-2 weeks",
        )
    return Narrative(
        zone="middle_range",
        explanation=(
            f"{symbol} is trading inside its Bollinger Bands at {_money(price)}, with no "
            f"statistical extreme in play."
        ),
        insight="No band-driven action is needed; a move to either band would be the next cue.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
    )


def _stochastic_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    v = signal.value
    head = f"{symbol}'s Stochastic %K of {v:.1f}"
    extreme = v < STOCH_EXTREME_OS or v > STOCH_EXTREME_OB
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="oversold",
            explanation=f"{head} is in oversold territory at {_money(price)}, close to the bottom of its recent range.",
            insight="Look for %K to cross above %D as confirmation before buying.",
            risk=RiskLevel.LOW,
            timeframe="3-5 trading days",
            extreme=extreme,
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="overbought",
            explanation=f"{head} is in overbought territory at {_money(price)}, close to the top of its recent range.",
            insight="Look for %K to cross below %D as confirmation before selling or trimming.",
            risk=RiskLevel.MEDIUM,
            timeframe="3-5 trading days",
            extreme=extreme,
        )
    return Narrative(
        zone="neutral",
        explanation=f"{head} is outside its signal zones at {_money(price)}, with no momentum signal in play.",
        insight="No stochastic-driven action is needed at this level.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
        extreme=extreme,
    )


def _williams_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    v = signal.value
    head = f"{symbol}'s Williams %R of {v:.1f}"
    extreme = v < WILLIAMS_EXTREME_OS or v > WILLIAMS_EXTREME_OB
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="oversold",
            explanation=f"{head} signals oversold conditions at {_money(price)}, near the low of the lookback range.",
            insight="Consider buying as %R climbs back out of oversold territory, with a stop below the recent low.",
            risk=RiskLevel.LOW,
            timeframe="2-4 trading days",
            extreme=extreme,
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="overbought",
            explanation=f"{head} signals overbought conditions at {_money(price)}, near the high of the lookback range.",
            insight="Consider trimming as %R falls back out of overbought territory rather than chasing strength.",
            risk=RiskLevel.MEDIUM,
            timeframe="2-4 trading days",
            extreme=extreme,
        )
    return Narrative(
        zone="neutral",
        explanation=f"{head} is in neutral territory at {_money(price)}.",
        insight="No Williams %R action is needed at this level.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
        extreme=extreme,
    )


def _adx_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    v = signal.value
    head = f"{symbol}'s ADX of {v:.1f}"
    if v >= ADX_STRONG_TREND:
        if signal.signal is Signal.SELL:
            insight = "Favor trend-following strategies on the short side, such as selling rallies into resistance."
        elif signal.signal is Signal.BUY:
            insight = "Favor trend-following strategies, such as buying pullbacks toward rising moving averages."
        else:
            insight = "Favor trend-following strategies and let the dominant direction guide entries."
        return Narrative(
            zone="strong_trend",
            explanation=f"{head} signals a strong trend at {_money(price)}, so directional signals carry extra weight.",
            insight=insight,
            risk=RiskLevel.MEDIUM,
            timeframe="2-6 weeks",
        )
    if v >= ADX_WEAK_TREND:
        return Narrative(
            zone="developing_trend",
            explanation=f"{head} points to a developing trend at {_money(price)} that has not yet proven itself.",
            insight="Wait for ADX to rise above 25 before committing to trend-following positions.",
            risk=RiskLevel.MEDIUM,
            timeframe="1-3 weeks",
        )
    return Narrative(
        zone="no_trend",
        explanation=f"{head} indicates a weak or no trend environment at {_money(price)}.",
        insight=(
            "Avoid trend-following strategies; range-trading approaches such as buying "
            "support and selling resistance are better suited."
        ),
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
    )


def _obv_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    volume = f"{signal.value:,.0f}"
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="accumulation",
            explanation=(
                f"{symbol}'s On-Balance Volume ({volume}) is rising with price at {_money(price)}, "
                f"showing accumulation that confirms the move."
            ),
            insight="Volume supports the advance; consider holding or adding on pullbacks.",
            risk=RiskLevel.LOW,
            timeframe="1-3 weeks",
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="distribution",
            explanation=(
                f"{symbol}'s On-Balance Volume ({volume}) is falling at {_money(price)}, "
                f"showing distribution that confirms selling pressure."
            ),
            insight="Volume supports the decline; consider reducing exposure.",
            risk=RiskLevel.MEDIUM,
            timeframe="1-3 weeks",
        )
    if "flat" in signal.description.lower():
        return Narrative(
            zone="flat",
            explanation=f"{symbol}'s On-Balance Volume ({volume}) is flat at {_money(price)}, offering no volume confirmation.",
            insight="Wait for volume to confirm a direction before acting.",
            risk=RiskLevel.LOW,
            timeframe=MONITORING,
        )
    return Narrative(
        zone="divergence",
        explanation=(
            f"{symbol}'s On-Balance Volume ({volume}) shows a divergence from price at "
            f"{_money(price)}: volume flow is not confirming the price trend."
        ),
        insight="Divergences are important warning signals; wait for price to confirm the volume trend before acting.",
        risk=RiskLevel.MEDIUM,
        timeframe="1-3 weeks",
    )


def _moving_average_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    spread = f"{abs(signal.value):.1f}%"
    if signal.signal is Signal.BUY:
        return Narrative(
            zone="golden_cross",
            explanation=(
                f"{symbol} shows a Golden Cross at {_money(price)}: the short-term moving average "
                f"sits {spread} above the long-term average, a classic sign of an uptrend."
            ),
            insight="Consider positioning with the uptrend and using the long-term average as a trailing stop.",
            risk=RiskLevel.LOW,
            timeframe="4-8 weeks",
        )
    if signal.signal is Signal.SELL:
        return Narrative(
            zone="death_cross",
            explanation=(
                f"{symbol} shows a Death Cross at {_money(price)}: the short-term moving average "
                f"sits {spread} below the long-term average, a classic sign of a downtrend."
            ),
            insight="Consider reducing long exposure until the short-term average recovers.",
            risk=RiskLevel.MEDIUM,
            timeframe="4-8 weeks",
        )
    return Narrative(
        zone="converged",
        explanation=f"{symbol}'s moving averages have converged at {_money(price)}, with no cross in effect.",
        insight="Watch for the next crossover to define the trend.",
        risk=RiskLevel.LOW,
        timeframe=MONITORING,
    )


def _fallback_narrative(signal: TechnicalSignal, symbol: str, price: float) -> Narrative:
    action = {
        Signal.BUY: "Consider a measured entry and confirm with other indicators.",
        Signal.SELL: "Consider reducing exposure and confirm with other indicators.",
        Signal.HOLD: "No action suggested; keep monitoring.",
    }[signal.signal]
    return Narrative(
        zone=signal.signal.value,
        explanation=(
            f"{symbol}'s {signal.indicator} reading of {signal.value:.2f} suggests a "
            f"{signal.signal.value} signal at {_money(price)}."
        ),
        insight=action,
        risk=RiskLevel.MEDIUM,
        timeframe="1-2 weeks",
    )


NarrativeBuilder = Callable[[TechnicalSignal, str, float], Narrative]

NARRATIVE_BUILDERS: Dict[IndicatorName, NarrativeBuilder] = {
    IndicatorName.RSI: _rsi_narrative,
    IndicatorName.MACD: _macd_narrative,
    IndicatorName.BOLLINGER_BANDS: _bollinger_narrative,
    IndicatorName.STOCHASTIC: _stochastic_narrative,
    IndicatorName.WILLIAMS_R: _williams_narrative,
    IndicatorName.ADX: _adx_narrative,
    IndicatorName.OBV: _obv_narrative,
    IndicatorName.MOVING_AVERAGES: _moving_average_narrative,
    IndicatorName.UNKNOWN: _fallback_narrative,
}

_missing = set(IndicatorName) - set(NARRATIVE_BUILDERS)
if _missing:
    raise RuntimeError(f"No narrative builder for: {sorted(m.value for m in _missing)}")


# =============================================================================
# CONTEXT CLAUSES
# =============================================================================

def condition_clauses(signal: Signal, context: MarketContext) -> Tuple[str, str]:
    """(explanation clause, insight clause) for the market condition."""
    if context.condition is MarketCondition.BULL:
        if signal is Signal.SELL:
            return (
                " In the current bull market environment, sell signals often mark "
                "short-lived pullbacks rather than reversals.",
                "",
            )
        return (
            " In the current bull market environment, this signal may have increased "
            "reliability for upward moves.",
            "",
        )

    if context.condition is MarketCondition.BEAR:
        insight = " Bear market conditions suggest using tighter stop-losses."
        if signal is Signal.BUY:
            insight += " Buying in bear markets is riskier - use tighter stop-losses and smaller positions."
        elif signal is Signal.SELL:
            insight += " Sell signals tend to be more reliable in bear markets."
        return (
            " Given the current bear market conditions, exercise extra caution and "
            "consider shorter timeframes.",
            insight,
        )

    return (
        " In the current sideways market, this signal may indicate range-bound trading opportunities.",
        " Sideways markets favor range-trading strategies: buy near support and sell near resistance.",
    )


def volatility_clause(context: MarketContext) -> str:
    if context.volatility is VolatilityLevel.HIGH:
        return " High market volatility suggests using smaller position sizes and wider stop-losses."
    if context.volatility is VolatilityLevel.LOW:
        return " Low volatility environment may lead to more reliable technical signals."
    return ""


def sector_clause(context: MarketContext) -> str:
    if not context.has_sector:
        return ""
    return f" As a {context.sector} stock, consider sector-specific factors that may influence this signal."


def market_cap_clause(context: MarketContext) -> str:
    if context.market_cap is MarketCapSize.SMALL:
        return (
            " Small-cap stocks tend to be more volatile - consider this in position sizing "
            "and use limit orders to control entry prices."
        )
    if context.market_cap is MarketCapSize.MID:
        return " Mid-cap stocks offer a balance of growth potential and stability."
    return " Large-cap stocks typically show more stable technical patterns and relatively lower risk."


# =============================================================================
# RISK, CONFIDENCE
# =============================================================================

def classify_risk(narrative: Narrative, signal: TechnicalSignal, context: MarketContext) -> RiskLevel:
    """
    Adjust the narrative's base risk.

    +1 high volatility, +1 weak signal, +1 extreme reading,
    +1 buying in a bear market, -1 strong signal in low volatility.
    """
    rank = narrative.risk.rank
    if context.volatility is VolatilityLevel.HIGH:
        rank += 1
    elif context.volatility is VolatilityLevel.LOW and signal.strength >= WELL_SUPPORTED_STRENGTH:
        rank -= 1
    if signal.strength < LOW_STRENGTH:
        rank += 1
    if narrative.extreme:
        rank += 1
    if context.condition is MarketCondition.BEAR and signal.signal is Signal.BUY:
        rank += 1
    return RiskLevel.from_rank(rank)


def adjust_confidence(
    signal: TechnicalSignal,
    indicator: IndicatorName,
    trend_strength: Optional[float] = None
) -> float:
    """
    Signal strength, nudged by ADX for directional indicators.

    ADX at or above the strong threshold adds 0.1; below the weak threshold
    subtracts 0.1. Hold signals and non-directional indicators are unchanged.
    """
    confidence = signal.strength
    adx = safe_float(trend_strength, default=float('nan'))
    if adx == adx and indicator.is_directional and signal.signal is not Signal.HOLD:
        if adx >= ADX_STRONG_TREND:
            confidence += TREND_CONFIDENCE_ADJUSTMENT
        elif adx < ADX_WEAK_TREND:
            confidence -= TREND_CONFIDENCE_ADJUSTMENT
    return clamp(confidence, 0.0, 1.0)


# =============================================================================
# PUBLIC API
# =============================================================================

def generate_technical_indicator_explanation(
    signal: TechnicalSignal,
    symbol: str,
    current_price: float,
    context: Optional[MarketContext] = None,
    trend_strength: Optional[float] = None
) -> IndicatorExplanation:
    """
    Explain one signal in its market context.

    Args:
        signal: Indicator signal to explain
        symbol: Ticker used in the prose
        current_price: Latest price used in the prose
        context: Market context (neutral default when omitted)
        trend_strength: Optional ADX reading for confidence adjustment

    Returns:
        IndicatorExplanation
    """
    context = context or MarketContext()
    price = safe_float(current_price)
    indicator = IndicatorName.parse(signal.indicator)
    if indicator is IndicatorName.UNKNOWN:
        logger.debug(f"No dedicated template for {signal.indicator!r}; using generic prose")

    narrative = NARRATIVE_BUILDERS[indicator](signal, symbol, price)
    condition_text, condition_action = condition_clauses(signal.signal, context)

    explanation = narrative.explanation + condition_text + sector_clause(context)
    insight = (
        narrative.insight
        + condition_action
        + volatility_clause(context)
        + market_cap_clause(context)
    )

    return IndicatorExplanation(
        indicator=signal.indicator,
        value=signal.value,
        explanation=explanation,
        actionable_insight=insight,
        risk_level=classify_risk(narrative, signal, context),
        confidence=adjust_confidence(signal, indicator, trend_strength),
        timeframe=narrative.timeframe,
    )


def _adx_reading(signals: Sequence[TechnicalSignal]) -> Optional[float]:
    for sig in signals:
        if IndicatorName.parse(sig.indicator) is IndicatorName.ADX:
            return sig.value
    return None


def generate_multiple_indicator_explanations(
    signals: Sequence[TechnicalSignal],
    symbol: str,
    current_price: float,
    context: Optional[MarketContext] = None
) -> MultiIndicatorExplanation:
    """
    Explain a batch of simultaneous signals.

    Each signal gets its own explanation; an ADX signal in the batch feeds
    confidence for the directional indicators. Overall sentiment uses the
    strength-weighted aggregate and every opposing pair of material strength
    is reported as a conflict.
    """
    signals = list(signals or [])
    trend_strength = _adx_reading(signals)

    explanations: List[IndicatorExplanation] = [
        generate_technical_indicator_explanation(sig, symbol, current_price, context, trend_strength)
        for sig in signals
    ]
    sentiment, _ = weighted_sentiment(signals)
    conflicts = detect_conflicts(signals)

    if conflicts:
        logger.info(f"{symbol}: {len(conflicts)} conflicting signal pair(s)")

    return MultiIndicatorExplanation(
        explanations=tuple(explanations),
        overall_sentiment=sentiment,
        conflicts=tuple(conflicts),
    )
