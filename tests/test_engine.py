"""Tests for the analysis engine and its query helpers, plus end-to-end scenarios."""

import numpy as np
import pandas as pd
import pytest

from technical_analysis.config import (
    AnalysisConfig,
    COMPUTED_INDICATORS,
    ConfigurationError,
    IndicatorName,
    MarketCondition,
    Sentiment,
    Signal,
)
from technical_analysis.engine import (
    AnalysisResult,
    TechnicalAnalysisEngine,
    analyze,
    get_consensus_signals,
    get_signals_by_indicator,
    get_strong_signals,
)
from technical_analysis.explanations import (
    generate_multiple_indicator_explanations,
    generate_technical_indicator_explanation,
)
from technical_analysis.market_context import MarketContext, infer_market_context
from technical_analysis.price_data import PriceDataError, linear_price_series, price_points_from_frame


@pytest.mark.unit
class TestAnalyze:
    """Shape and determinism of AnalysisResult."""

    def test_full_result(self, bull_market_prices):
        result = analyze(bull_market_prices, "TEST")
        assert isinstance(result, AnalysisResult)
        assert result.symbol == "TEST"
        assert result.timestamp == bull_market_prices.index[-1]
        assert result.last_close == pytest.approx(bull_market_prices["close"].iloc[-1])
        assert [s.indicator for s in result.signals] == [i.value for i in COMPUTED_INDICATORS]
        assert list(result.indicators) == [i.value for i in COMPUTED_INDICATORS]
        assert result.summary.signal_count == len(result.signals)

    def test_histories_have_no_nan_warmup(self, bull_market_prices):
        result = analyze(bull_market_prices, "TEST")
        for name, history in result.indicators.items():
            if name == IndicatorName.MOVING_AVERAGES.value:
                continue
            assert not history.isna().any().any(), name

    def test_idempotent(self, bull_market_prices):
        first = analyze(bull_market_prices, "TEST")
        second = analyze(bull_market_prices, "TEST")
        assert first.signals == second.signals
        assert first.summary == second.summary
        assert first.to_dict() == second.to_dict()

    def test_timestamp_is_last_bar_not_wall_clock(self):
        prices = linear_price_series(40, start_date="2020-03-02")
        result = analyze(prices, "OLD")
        assert result.timestamp == pd.Timestamp(prices.index[-1])
        assert result.timestamp.year == 2020

    def test_price_point_input(self, uptrend_prices):
        from_frame = analyze(uptrend_prices, "X")
        from_points = analyze(price_points_from_frame(uptrend_prices), "X")
        assert from_frame.signals == from_points.signals

    def test_empty_input(self):
        result = analyze([], "EMPTY")
        assert result.signals == ()
        assert result.timestamp is None
        assert result.last_close is None
        assert result.summary.overall is Sentiment.NEUTRAL
        assert result.summary.strength == 0.0
        assert all(history.empty for history in result.indicators.values())

    def test_short_input_is_partial(self):
        result = analyze(linear_price_series(18), "SHORT")
        names = {s.indicator for s in result.signals}
        assert IndicatorName.RSI.value in names
        assert IndicatorName.MACD.value not in names
        assert result.indicators[IndicatorName.MACD.value].empty

    def test_rows_without_close_are_dropped(self, uptrend_prices):
        gappy = uptrend_prices.copy()
        gappy.iloc[10, gappy.columns.get_loc("close")] = float("nan")
        result = analyze(gappy, "GAP")
        assert len(result.indicators[IndicatorName.OBV.value]) == len(uptrend_prices) - 1

    def test_malformed_input_raises(self):
        with pytest.raises(PriceDataError):
            analyze(pd.DataFrame({"close": [1.0, 2.0]}), "BAD")

    def test_to_dict_is_json_safe(self, uptrend_prices):
        import json
        data = analyze(uptrend_prices, "X").to_dict()
        json.dumps(data, allow_nan=False)
        assert data["summary"]["overall"] == "bullish"


@pytest.mark.unit
class TestConfiguration:

    def test_override_mapping(self, uptrend_prices):
        result = analyze(uptrend_prices, "X", {"enabled_indicators": ["RSI", "OBV"]})
        assert [s.indicator for s in result.signals] == ["RSI", "OBV"]

    def test_invalid_override_raises(self, uptrend_prices):
        with pytest.raises(ConfigurationError):
            analyze(uptrend_prices, "X", {"rsi": {"period": 0}})

    def test_engine_keeps_config(self):
        config = AnalysisConfig.from_overrides({"rsi": {"period": 9}})
        assert TechnicalAnalysisEngine(config).config is config

    def test_custom_period_changes_history_length(self, uptrend_prices):
        result = analyze(uptrend_prices, "X", {"rsi": {"period": 5}})
        assert len(result.indicators["RSI"]) == len(uptrend_prices) - 5

    def test_configured_rsi_thresholds_drive_the_explanation(self):
        # +1 / -3 steps hold RSI between roughly 23.6 and 26.4
        close = 200.0 + np.cumsum([1.0 if i % 2 == 0 else -3.0 for i in range(60)])
        frame = pd.DataFrame(
            {"open": close, "high": close + 0.5, "low": close - 0.5, "close": close, "volume": 1e6},
            index=pd.date_range("2024-01-01", periods=60, freq="B"),
        )

        default = get_signals_by_indicator(analyze(frame, "X").signals, IndicatorName.RSI)[0]
        assert default.signal is Signal.BUY

        result = analyze(frame, "X", {"rsi": {"oversold": 20, "overbought": 80}})
        rsi = get_signals_by_indicator(result.signals, IndicatorName.RSI)[0]
        assert rsi.signal is Signal.HOLD
        assert 20.0 < rsi.value < 30.0

        explanation = generate_technical_indicator_explanation(rsi, "X", result.last_close, MarketContext())
        assert "neutral territory" in explanation.explanation
        assert "oversold" not in explanation.explanation
        assert explanation.timeframe == "ongoing monitoring"


@pytest.mark.unit
class TestQueries:

    def test_strong_signals(self, make_signal):
        signals = [make_signal("RSI", Signal.BUY, 0.8), make_signal("MACD", Signal.SELL, 0.5)]
        assert get_strong_signals(signals) == [signals[0]]
        assert get_strong_signals(signals, min_strength=0.4) == signals

    def test_signals_by_indicator_uses_aliases(self, make_signal):
        signals = [make_signal("Bollinger Bands"), make_signal("RSI")]
        assert get_signals_by_indicator(signals, "BOLLINGER_BANDS") == [signals[0]]
        assert get_signals_by_indicator(signals, IndicatorName.RSI) == [signals[1]]

    def test_consensus(self, make_signal):
        signals = [
            make_signal("RSI", Signal.BUY, 0.6, description="RSI oversold"),
            make_signal("MACD", Signal.BUY, 0.8),
            make_signal("OBV", Signal.SELL, 0.9),
            make_signal("ADX", Signal.HOLD, 0.3),
            make_signal("Stochastic", Signal.HOLD, 0.3),
        ]
        consensus = get_consensus_signals(signals)
        assert len(consensus) == 1
        combined = consensus[0]
        assert combined.indicator == "Consensus (RSI, MACD)"
        assert combined.signal is Signal.BUY
        assert combined.strength == pytest.approx(0.7)
        assert combined.description == "Multiple indicators agree: RSI oversold"

    def test_consensus_threshold(self, make_signal):
        signals = [make_signal("RSI", Signal.BUY, 0.6), make_signal("MACD", Signal.BUY, 0.8)]
        assert get_consensus_signals(signals, min_agreement=3) == []


# =============================================================================
# END-TO-END SCENARIOS
# =============================================================================

@pytest.mark.integration
class TestScenarios:

    def test_steady_uptrend_large_cap_technology(self, uptrend_prices):
        context = infer_market_context("AAPL", "Technology", 2.5e12, uptrend_prices)
        assert context.condition is MarketCondition.BULL

        result = analyze(uptrend_prices, "AAPL")
        assert result.summary.overall is Sentiment.BULLISH

        rsi = get_signals_by_indicator(result.signals, IndicatorName.RSI)[0]
        explanation = generate_technical_indicator_explanation(rsi, "AAPL", result.last_close, context)
        assert "bull market" in explanation.explanation
        assert "bear market" not in explanation.explanation.lower()
        assert "Bear market conditions" not in explanation.actionable_insight

    def test_oversold_rsi_in_bear_market(self, make_signal):
        context = MarketContext(condition="bear")
        sig = make_signal("RSI", Signal.BUY, 0.7, 28.0)
        explanation = generate_technical_indicator_explanation(sig, "XOM", 100.0, context)
        assert "Bear market conditions suggest using tighter stop-losses." in explanation.actionable_insight
        assert "riskier" in explanation.actionable_insight
        assert "tighter stop-losses and smaller positions" in explanation.actionable_insight

    def test_rsi_buy_against_macd_sell(self, make_signal):
        signals = [make_signal("RSI", Signal.BUY, 0.6, 29.0), make_signal("MACD", Signal.SELL, 0.75, -0.4)]
        result = generate_multiple_indicator_explanations(signals, "MSFT", 400.0, MarketContext())
        assert len(result.conflicts) == 1
        assert "RSI" in result.conflicts[0] and "MACD" in result.conflicts[0]

    def test_downtrend_pipeline(self, downtrend_prices):
        context = infer_market_context("XYZ", None, 5e8, downtrend_prices)
        result = analyze(downtrend_prices, "XYZ")
        batch = generate_multiple_indicator_explanations(result.signals, "XYZ", result.last_close, context)
        assert context.condition is MarketCondition.BEAR
        assert result.summary.overall is Sentiment.BEARISH
        assert len(batch.explanations) == len(result.signals)
        assert all("tighter stop-losses" in e.actionable_insight for e in batch.explanations)
