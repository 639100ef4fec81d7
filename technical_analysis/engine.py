"""
Technical Analysis Engine
=========================

Runs every enabled indicator over a price series and reduces the latest
readings into one AnalysisResult.

PIPELINE
--------
1. Normalise input to the canonical OHLCV frame (PriceDataError on
   structural problems); drop rows without a close.
2. For each enabled indicator, in canonical order:
       fewer points than its lookback -> empty history, no signal
       otherwise                      -> full history + latest signal
3. Apply the ADX trend filter to the latest signals.
4. Summarise (sentiment, trend direction, momentum, volatility) and detect
   conflicting pairs.

The engine holds only its immutable configuration and ``analyze`` reads no
clock, so identical input and configuration give identical results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from technical_analysis.config import (
    AnalysisConfig,
    DEFAULT_CONFIG,
    IndicatorName,
    STRONG_SIGNAL_STRENGTH,
    Signal,
)
from technical_analysis.price_data import PriceInput, to_price_frame
from technical_analysis.signal_aggregator import (
    AnalysisSummary,
    apply_trend_filter,
    detect_conflicts,
    summarize_signals,
)
from technical_analysis.technical_indicators import (
    MomentumIndicators,
    TechnicalSignal,
    TrendIndicators,
    VolatilityIndicators,
    VolumeIndicators,
    format_timestamp,
    indicator_lookback,
)

logger = logging.getLogger(__name__)

ConfigInput = Union[AnalysisConfig, Mapping[str, Any], None]
IndicatorRun = Tuple[pd.DataFrame, Optional[TechnicalSignal]]


# =============================================================================
# RESULT
# =============================================================================

@dataclass(frozen=True, eq=False)
class AnalysisResult:
    """
    Output of one ``analyze`` call.

    Attributes:
        symbol: Ticker the analysis was run for
        timestamp: Date of the last price point (None for empty input)
        summary: Overall read across the signals
        signals: Latest signal per indicator, canonical order
        indicators: Indicator name -> full history (no NaN warm-up rows)
        conflicts: Opposing signal pairs of material strength
        last_close: Close of the last price point (None for empty input)
    """
    symbol: str
    timestamp: Any
    summary: AnalysisSummary
    signals: Tuple[TechnicalSignal, ...] = ()
    indicators: Dict[str, pd.DataFrame] = field(default_factory=dict)
    conflicts: Tuple[str, ...] = ()
    last_close: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe rendering; histories become lists of row records."""
        return {
            'symbol': self.symbol,
            'timestamp': format_timestamp(self.timestamp),
            'last_close': self.last_close,
            'summary': self.summary.to_dict(),
            'signals': [s.to_dict() for s in self.signals],
            'conflicts': list(self.conflicts),
            'indicators': {
                name: _history_records(history)
                for name, history in self.indicators.items()
            },
        }


def _history_records(history: pd.DataFrame) -> List[Dict[str, Any]]:
    records = []
    for index, row in history.iterrows():
        record = {'date': format_timestamp(index)}
        for column, value in row.items():
            if isinstance(value, str):
                record[column] = value
            else:
                number = float(value)
                record[column] = number if np.isfinite(number) else None
        records.append(record)
    return records


# =============================================================================
# ENGINE
# =============================================================================

def resolve_config(config: ConfigInput) -> AnalysisConfig:
    """Accept an AnalysisConfig, a partial override mapping, or None."""
    if config is None:
        return DEFAULT_CONFIG
    if isinstance(config, AnalysisConfig):
        return config
    return AnalysisConfig.from_overrides(config)


class TechnicalAnalysisEngine:
    """
    Stateless analysis pipeline bound to one configuration.

    Example:
        engine = TechnicalAnalysisEngine({'rsi': {'period': 10}})
        result = engine.analyze(prices, 'AAPL')
    """

    def __init__(self, config: ConfigInput = None):
        self.config = resolve_config(config)

        momentum = MomentumIndicators(self.config)
        trend = TrendIndicators(self.config)
        volatility = VolatilityIndicators(self.config)
        volume = VolumeIndicators(self.config)

        self._runners: Dict[IndicatorName, Callable[[pd.DataFrame], IndicatorRun]] = {
            IndicatorName.RSI: momentum.analyze_rsi,
            IndicatorName.MACD: trend.analyze_macd,
            IndicatorName.BOLLINGER_BANDS: volatility.analyze_bollinger,
            IndicatorName.STOCHASTIC: momentum.analyze_stochastic,
            IndicatorName.WILLIAMS_R: momentum.analyze_williams_r,
            IndicatorName.ADX: trend.analyze_adx,
            IndicatorName.OBV: volume.analyze_obv,
            IndicatorName.MOVING_AVERAGES: trend.analyze_moving_averages,
        }

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def prepare(self, price_series: PriceInput) -> pd.DataFrame:
        """Canonical frame with rows lacking a close removed."""
        frame = to_price_frame(price_series)
        missing = frame['close'].isna()
        if missing.any():
            logger.warning(f"Dropping {int(missing.sum())} rows without a close price")
            frame = frame[~missing]
        return frame

    def run_indicator(self, indicator: IndicatorName, frame: pd.DataFrame) -> IndicatorRun:
        """History and latest signal for one indicator, gated on its lookback."""
        lookback = indicator_lookback(indicator, self.config)
        if len(frame) < lookback:
            logger.debug(f"{indicator.value}: {len(frame)} points < lookback {lookback}, skipped")
            return pd.DataFrame(index=frame.index[:0]), None
        return self._runners[indicator](frame)

    def analyze(self, price_series: PriceInput, symbol: str) -> AnalysisResult:
        """
        Analyze one symbol.

        Args:
            price_series: OHLCV DataFrame, PricePoint sequence or record list
            symbol: Ticker label carried into the result

        Returns:
            AnalysisResult

        Raises:
            PriceDataError: if the price input is structurally malformed
        """
        frame = self.prepare(price_series)
        logger.info(f"Analyzing {symbol}: {len(frame)} price points")

        indicators: Dict[str, pd.DataFrame] = {}
        raw_signals: List[TechnicalSignal] = []
        for indicator in self.config.enabled_indicators:
            history, signal = self.run_indicator(indicator, frame)
            indicators[indicator.value] = history
            if signal is not None:
                raw_signals.append(signal)

        signals = self._filter_for_trend(raw_signals, indicators.get(IndicatorName.ADX.value))
        summary = summarize_signals(signals, frame['close'], self.config.regime)
        conflicts = detect_conflicts(signals)

        logger.info(
            f"{symbol}: {summary.overall.value} (strength {summary.strength:.2f}), "
            f"{len(signals)} signals, {len(conflicts)} conflicts"
        )

        return AnalysisResult(
            symbol=symbol,
            timestamp=frame.index[-1] if len(frame) else None,
            summary=summary,
            signals=tuple(signals),
            indicators=indicators,
            conflicts=tuple(conflicts),
            last_close=float(frame['close'].iloc[-1]) if len(frame) else None,
        )

    def _filter_for_trend(
        self,
        signals: List[TechnicalSignal],
        adx_history: Optional[pd.DataFrame]
    ) -> List[TechnicalSignal]:
        if adx_history is None or adx_history.empty:
            return signals
        last = adx_history.iloc[-1]
        return apply_trend_filter(
            signals,
            float(last['adx']),
            float(last['plus_di']),
            float(last['minus_di']),
            self.config.adx,
        )


def analyze(
    price_series: PriceInput,
    symbol: str,
    config: ConfigInput = None
) -> AnalysisResult:
    """Run a one-off analysis with the given (or default) configuration."""
    return TechnicalAnalysisEngine(config).analyze(price_series, symbol)


# =============================================================================
# SIGNAL QUERIES
# =============================================================================

def get_strong_signals(
    signals: Sequence[TechnicalSignal],
    min_strength: float = STRONG_SIGNAL_STRENGTH
) -> List[TechnicalSignal]:
    return [s for s in signals if s.strength >= min_strength]


def get_signals_by_indicator(
    signals: Sequence[TechnicalSignal],
    indicator: Union[str, IndicatorName]
) -> List[TechnicalSignal]:
    """Signals for one indicator; names are matched through their aliases."""
    wanted = IndicatorName.parse(indicator)
    if wanted is IndicatorName.UNKNOWN:
        return [s for s in signals if s.indicator == str(indicator)]
    return [s for s in signals if IndicatorName.parse(s.indicator) is wanted]


def get_consensus_signals(
    signals: Sequence[TechnicalSignal],
    min_agreement: int = 2
) -> List[TechnicalSignal]:
    """
    Combine buy or sell signals that agree at the same timestamp.

    Each group of at least ``min_agreement`` agreeing indicators yields one
    signal named ``Consensus (A, B, ...)`` carrying their mean strength.
    Hold signals never form a consensus.
    """
    groups: Dict[Tuple[Signal, Optional[str]], List[TechnicalSignal]] = {}
    for sig in signals:
        if sig.signal is Signal.HOLD:
            continue
        groups.setdefault((sig.signal, format_timestamp(sig.timestamp)), []).append(sig)

    consensus = []
    for members in groups.values():
        if len(members) < min_agreement:
            continue
        first = members[0]
        consensus.append(TechnicalSignal(
            indicator=f"Consensus ({', '.join(m.indicator for m in members)})",
            signal=first.signal,
            strength=sum(m.strength for m in members) / len(members),
            value=float(len(members)),
            timestamp=first.timestamp,
            description=f"Multiple indicators agree: {first.description}",
        ))
    return consensus
