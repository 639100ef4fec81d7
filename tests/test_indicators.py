"""Tests for the indicator library: formulas, edge cases and signals."""

import numpy as np
import pandas as pd
import pytest

from technical_analysis.config import AnalysisConfig, COMPUTED_INDICATORS, IndicatorName, Signal
from technical_analysis.price_data import linear_price_series
from technical_analysis.technical_indicators import (
    MomentumIndicators,
    TechnicalSignal,
    TrendIndicators,
    VolatilityIndicators,
    VolumeIndicators,
    correlation,
    detect_band_walking,
    detect_crossovers,
    ema,
    indicator_lookback,
    safe_divide,
    sma,
)


@pytest.fixture()
def momentum():
    return MomentumIndicators()


@pytest.fixture()
def trend():
    return TrendIndicators()


@pytest.fixture()
def volatility():
    return VolatilityIndicators()


@pytest.fixture()
def volume():
    return VolumeIndicators()


# =============================================================================
# HELPERS
# =============================================================================

@pytest.mark.unit
class TestHelpers:

    def test_safe_divide(self):
        assert safe_divide(1.0, 0.0) == 0.0
        assert safe_divide(1.0, 0.0, default=7.0) == 7.0
        assert safe_divide(6.0, 3.0) == 2.0

    def test_sma(self):
        s = pd.Series([1.0, 2.0, 3.0, 4.0])
        result = sma(s, 2)
        assert np.isnan(result.iloc[0])
        assert result.iloc[1:].tolist() == [1.5, 2.5, 3.5]

    def test_ema_is_sma_seeded(self):
        s = pd.Series([2.0, 4.0, 6.0, 8.0])
        result = ema(s, 3)
        assert result.iloc[:2].isna().all()
        assert result.iloc[2] == pytest.approx(4.0)
        assert result.iloc[3] == pytest.approx(4.0 + 0.5 * (8.0 - 4.0))

    def test_detect_crossovers(self):
        fast = pd.Series([1.0, 2.0, 3.0, 2.0, 1.0])
        slow = pd.Series([2.0, 2.5, 2.5, 2.5, 2.5])
        assert detect_crossovers(fast, slow).tolist() == [0, 0, 1, -1, 0]

    def test_correlation_falls_back_to_zero(self):
        assert correlation([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)
        assert correlation([1.0, 2.0, 3.0], [3.0, 2.0, 1.0]) == pytest.approx(-1.0)
        assert correlation([1.0, 2.0, 3.0], [5.0, 5.0, 5.0]) == 0.0
        assert correlation([1.0, 2.0], [1.0]) == 0.0

    def test_detect_band_walking(self):
        bands = pd.DataFrame({"upper": [10.0] * 5, "lower": [8.0] * 5})
        assert detect_band_walking(pd.Series([9.0, 9.0, 9.9, 9.85, 10.1]), bands) == "upper"
        assert detect_band_walking(pd.Series([9.0, 9.0, 8.1, 8.0, 7.9]), bands) == "lower"
        assert detect_band_walking(pd.Series([9.9, 9.9, 9.0, 9.9, 9.9]), bands) is None

    def test_collapsed_bands_never_walk(self):
        bands = pd.DataFrame({"upper": [5.0] * 4, "lower": [5.0] * 4})
        assert detect_band_walking(pd.Series([5.0] * 4), bands) is None


@pytest.mark.unit
class TestTechnicalSignal:

    def test_strength_is_clamped(self):
        assert TechnicalSignal("RSI", Signal.BUY, 1.7, 25.0).strength == 1.0
        assert TechnicalSignal("RSI", Signal.BUY, -0.2, 25.0).strength == 0.0

    def test_string_signal_is_coerced(self):
        assert TechnicalSignal("RSI", "SELL", 0.5, 75.0).signal is Signal.SELL
        assert TechnicalSignal("RSI", "maybe", 0.5, 75.0).signal is Signal.HOLD

    def test_non_finite_value_becomes_zero(self):
        assert TechnicalSignal("RSI", Signal.HOLD, 0.5, float("nan")).value == 0.0


# =============================================================================
# MOMENTUM
# =============================================================================

@pytest.mark.unit
class TestRSI:
    """RSI bounds and degenerate inputs."""

    def test_bounds(self, bull_market_prices, volatile_prices):
        for prices in (bull_market_prices, volatile_prices):
            rsi = MomentumIndicators.calculate_rsi(prices["close"]).dropna()
            assert ((rsi >= 0.0) & (rsi <= 100.0)).all()

    def test_rising_series_reaches_100(self, uptrend_prices):
        rsi = MomentumIndicators.calculate_rsi(uptrend_prices["close"]).dropna()
        assert rsi.iloc[-1] == pytest.approx(100.0)

    def test_falling_series_reaches_0(self, downtrend_prices):
        rsi = MomentumIndicators.calculate_rsi(downtrend_prices["close"]).dropna()
        assert rsi.iloc[-1] == pytest.approx(0.0)

    def test_flat_series_has_no_nan(self, flat_prices):
        rsi = MomentumIndicators.calculate_rsi(flat_prices["close"]).dropna()
        assert len(rsi) == len(flat_prices) - 14
        assert (rsi == 100.0).all()

    def test_oversold_gives_buy(self, momentum, downtrend_prices):
        _, signal = momentum.analyze_rsi(downtrend_prices)
        assert signal.signal is Signal.BUY
        assert signal.indicator == IndicatorName.RSI.value
        assert signal.strength >= 0.6

    def test_overbought_gives_sell(self, momentum, uptrend_prices):
        history, signal = momentum.analyze_rsi(uptrend_prices)
        assert signal.signal is Signal.SELL
        assert set(history.columns) == {"rsi", "signal", "strength"}


@pytest.mark.unit
class TestStochasticAndWilliams:

    def test_stochastic_bounds(self, volatile_prices):
        stoch = MomentumIndicators.calculate_stochastic(
            volatile_prices["high"], volatile_prices["low"], volatile_prices["close"]
        ).dropna()
        assert ((stoch >= 0.0) & (stoch <= 100.0)).all().all()

    def test_flat_range_gives_midpoint(self, flat_prices):
        stoch = MomentumIndicators.calculate_stochastic(
            flat_prices["high"], flat_prices["low"], flat_prices["close"]
        ).dropna()
        williams = MomentumIndicators.calculate_williams_r(
            flat_prices["high"], flat_prices["low"], flat_prices["close"]
        ).dropna()
        assert (stoch["k"] == 50.0).all()
        assert (williams == -50.0).all()

    def test_williams_bounds(self, bull_market_prices):
        williams = MomentumIndicators.calculate_williams_r(
            bull_market_prices["high"], bull_market_prices["low"], bull_market_prices["close"]
        ).dropna()
        assert ((williams >= -100.0) & (williams <= 0.0)).all()

    def test_uptrend_is_overbought(self, momentum, uptrend_prices):
        _, stoch_signal = momentum.analyze_stochastic(uptrend_prices)
        _, williams_signal = momentum.analyze_williams_r(uptrend_prices)
        assert stoch_signal.signal is Signal.SELL
        assert williams_signal.signal is Signal.SELL

    def test_downtrend_is_oversold(self, momentum, downtrend_prices):
        _, stoch_signal = momentum.analyze_stochastic(downtrend_prices)
        _, williams_signal = momentum.analyze_williams_r(downtrend_prices)
        assert stoch_signal.signal is Signal.BUY
        assert williams_signal.signal is Signal.BUY


# =============================================================================
# TREND
# =============================================================================

@pytest.mark.unit
class TestMACD:

    def test_histogram_identity(self, bull_market_prices):
        macd = TrendIndicators.calculate_macd(bull_market_prices["close"]).dropna()
        assert (macd["histogram"] == macd["macd"] - macd["signal_line"]).all()

    def test_flat_series_holds(self, trend, flat_prices):
        history, signal = trend.analyze_macd(flat_prices)
        assert (history["macd"].abs() < 1e-9).all()
        assert signal.signal is Signal.HOLD

    def test_fresh_bullish_crossover(self, trend):
        # Decline, then a sharp recovery pushes the histogram through zero
        close = np.concatenate([np.linspace(120, 100, 50), np.linspace(100, 104, 3)])
        frame = pd.DataFrame({
            "open": close, "high": close + 0.5, "low": close - 0.5, "close": close,
            "volume": np.full(len(close), 1e6),
        })
        history = TrendIndicators.calculate_macd(frame["close"]).dropna()
        signal = trend.generate_macd_signal(history, frame["close"])
        crossed = history["histogram"].iloc[-2] <= 0 < history["histogram"].iloc[-1]
        if crossed:
            assert signal.signal is Signal.BUY
            assert signal.description.startswith("MACD bullish crossover")
        else:
            assert signal.signal in (Signal.BUY, Signal.HOLD)

    @staticmethod
    def _divergent_history(second_peak_macd):
        # Swing highs at bars 3 and 8; price makes the higher high
        index = pd.date_range("2024-01-01", periods=12, freq="B")
        close = pd.Series([10, 11, 12, 14, 12, 11, 12, 13, 16, 13, 12, 11], index=index, dtype=float)
        macd = [0.1, 0.3, 0.6, 1.0, 0.8, 0.6, 0.5, 0.6, second_peak_macd, 0.5, 0.3, 0.2]
        histogram = [0.0] * 10 + [0.5, -0.5]
        history = pd.DataFrame({
            "macd": macd,
            "signal_line": [m - h for m, h in zip(macd, histogram)],
            "histogram": histogram,
        }, index=index)
        return history, close

    def test_bearish_divergence_reinforces_sell(self, trend):
        history, close = self._divergent_history(second_peak_macd=0.7)
        signal = trend.generate_macd_signal(history, close)
        assert signal.signal is Signal.SELL
        assert "bearish MACD divergence" in signal.description
        assert signal.strength == pytest.approx(0.745)

    def test_confirmed_high_has_no_divergence(self, trend):
        history, close = self._divergent_history(second_peak_macd=1.2)
        signal = trend.generate_macd_signal(history, close)
        assert signal.signal is Signal.SELL
        assert "divergence" not in signal.description
        assert signal.strength == pytest.approx(0.645)


@pytest.mark.unit
class TestADX:

    def test_strong_uptrend(self, trend, uptrend_prices):
        history, signal = trend.analyze_adx(uptrend_prices)
        last = history.iloc[-1]
        assert last["adx"] > 25
        assert last["plus_di"] > last["minus_di"]
        assert signal.signal is Signal.BUY
        assert signal.strength == pytest.approx(0.8)

    def test_flat_series_is_weak_trend(self, trend, flat_prices):
        history, signal = trend.analyze_adx(flat_prices)
        assert (history["adx"] == 0.0).all()
        assert signal.signal is Signal.HOLD
        assert "Weak or no trend" in signal.description


@pytest.mark.unit
class TestMovingAverages:

    def test_uptrend_golden_cross(self, trend, uptrend_prices):
        history, signal = trend.analyze_moving_averages(uptrend_prices)
        assert "sma_200" not in history.columns
        assert signal.signal is Signal.BUY
        assert "Golden Cross" in signal.description

    def test_downtrend_death_cross(self, trend, downtrend_prices):
        _, signal = trend.analyze_moving_averages(downtrend_prices)
        assert signal.signal is Signal.SELL
        assert "Death Cross" in signal.description

    def test_flat_series_converged(self, trend, flat_prices):
        _, signal = trend.analyze_moving_averages(flat_prices)
        assert signal.signal is Signal.HOLD


# =============================================================================
# VOLATILITY
# =============================================================================

@pytest.mark.unit
class TestBollinger:

    def test_band_ordering(self, volatile_prices):
        bands = VolatilityIndicators.calculate_bollinger_bands(volatile_prices["close"]).dropna()
        assert (bands["lower"] <= bands["middle"]).all()
        assert (bands["middle"] <= bands["upper"]).all()

    def test_flat_series_bands_coincide(self, volatility, flat_prices):
        history, signal = volatility.analyze_bollinger(flat_prices)
        assert (history["upper"] == history["middle"]).all()
        assert (history["lower"] == history["middle"]).all()
        assert (history["percent_b"] == 0.5).all()
        assert signal.signal is Signal.HOLD

    def test_break_below_lower_band_buys(self, volatility):
        close = np.concatenate([100 + np.sin(np.arange(30)), [90.0]])
        frame = pd.DataFrame({
            "open": close, "high": close + 0.5, "low": close - 0.5, "close": close,
            "volume": np.full(len(close), 1e6),
        })
        _, signal = volatility.analyze_bollinger(frame)
        assert signal.signal is Signal.BUY
        assert signal.value < 0.0

    @staticmethod
    def _bands(bandwidths, close):
        index = pd.date_range("2024-01-01", periods=len(close), freq="B")
        middle = pd.Series(100.0, index=index)
        half = middle * pd.Series(bandwidths, index=index) / 2
        history = pd.DataFrame({
            "upper": middle + half,
            "middle": middle,
            "lower": middle - half,
            "percent_b": 0.5,
            "bandwidth": bandwidths,
        }, index=index)
        return history, pd.Series(close, index=index, dtype=float)

    def test_squeeze_ending_lifts_hold(self, volatility):
        history, close = self._bands([0.05, 0.05, 0.15], [100.0, 100.0, 100.0])
        signal = volatility.generate_bollinger_signal(history, close)
        assert signal.signal is Signal.HOLD
        assert signal.strength == pytest.approx(0.6)
        assert "squeeze ending" in signal.description

    def test_ongoing_squeeze_is_not_ending(self, volatility):
        history, close = self._bands([0.05, 0.05, 0.05], [100.0, 100.0, 100.0])
        signal = volatility.generate_bollinger_signal(history, close)
        assert signal.strength == pytest.approx(0.3)
        assert "squeeze ending" not in signal.description
        assert "band squeeze" in signal.description

    def test_walking_upper_band_is_described(self, volatility):
        # Upper band at 110; closes within 2% but below it
        history, close = self._bands([0.2] * 4, [100.0, 108.5, 109.0, 109.5])
        signal = volatility.generate_bollinger_signal(history, close)
        assert signal.signal is Signal.HOLD
        assert "walking the upper band" in signal.description


# =============================================================================
# VOLUME
# =============================================================================

@pytest.mark.unit
class TestOBV:

    def test_obv_accumulates_signed_volume(self):
        close = pd.Series([10.0, 11.0, 10.5, 10.5, 12.0])
        vol = pd.Series([100.0, 200.0, 300.0, 400.0, 500.0])
        assert VolumeIndicators.calculate_obv(close, vol).tolist() == [0.0, 200.0, -100.0, -100.0, 400.0]

    def test_zero_volume(self, volume, uptrend_prices):
        frame = uptrend_prices.assign(volume=0.0)
        history, signal = volume.analyze_obv(frame)
        assert (history["obv"] == 0.0).all()
        assert signal.signal is Signal.HOLD

    def test_rising_volume_confirms_uptrend(self, volume, uptrend_prices):
        _, signal = volume.analyze_obv(uptrend_prices)
        assert signal.signal is Signal.BUY
        assert signal.strength == pytest.approx(0.8)

    def test_too_few_points_gives_no_signal(self, volume):
        frame = linear_price_series(5)
        history, signal = volume.analyze_obv(frame)
        assert len(history) == 5
        assert signal is None

    def test_vpt_weights_by_percentage_change(self):
        close = pd.Series([10.0, 11.0, 11.0])
        vol = pd.Series([100.0, 100.0, 100.0])
        assert VolumeIndicators.calculate_vpt(close, vol).tolist() == pytest.approx([0.0, 10.0, 10.0])

    def test_ad_line_skips_bars_without_range(self):
        high = pd.Series([12.0, 10.0])
        low = pd.Series([10.0, 10.0])
        close = pd.Series([12.0, 10.0])
        vol = pd.Series([100.0, 50.0])
        assert VolumeIndicators.calculate_ad_line(high, low, close, vol).tolist() == [100.0, 100.0]

    def test_history_carries_supplementary_lines(self, volume, uptrend_prices):
        history, _ = volume.analyze_obv(uptrend_prices)
        assert list(history.columns) == ["obv", "vpt", "ad_line"]


@pytest.mark.unit
class TestFamilies:
    """Each family computes its own indicators in one call."""

    def test_compute_all(self, bull_market_prices):
        config = AnalysisConfig()
        families = [
            MomentumIndicators(config),
            TrendIndicators(config),
            VolatilityIndicators(config),
            VolumeIndicators(config),
        ]
        combined = {}
        for family in families:
            combined.update(family.compute_all(bull_market_prices))
        assert set(combined) == set(COMPUTED_INDICATORS)
        for name, (history, signal) in combined.items():
            assert not history.empty, name
            assert signal is not None, name


# =============================================================================
# LOOKBACK GATING
# =============================================================================

RUNNERS = {
    IndicatorName.RSI: lambda c, df: MomentumIndicators(c).analyze_rsi(df),
    IndicatorName.MACD: lambda c, df: TrendIndicators(c).analyze_macd(df),
    IndicatorName.BOLLINGER_BANDS: lambda c, df: VolatilityIndicators(c).analyze_bollinger(df),
    IndicatorName.STOCHASTIC: lambda c, df: MomentumIndicators(c).analyze_stochastic(df),
    IndicatorName.WILLIAMS_R: lambda c, df: MomentumIndicators(c).analyze_williams_r(df),
    IndicatorName.ADX: lambda c, df: TrendIndicators(c).analyze_adx(df),
    IndicatorName.OBV: lambda c, df: VolumeIndicators(c).analyze_obv(df),
    IndicatorName.MOVING_AVERAGES: lambda c, df: TrendIndicators(c).analyze_moving_averages(df),
}


@pytest.mark.unit
class TestLookbackGating:
    """N >= L points give exactly N - L + 1 history rows."""

    @pytest.mark.parametrize("indicator", COMPUTED_INDICATORS, ids=lambda i: i.name)
    def test_row_count(self, indicator):
        config = AnalysisConfig()
        lookback = indicator_lookback(indicator, config)
        n = lookback + 17
        frame = linear_price_series(n, step=0.25)
        history, _ = RUNNERS[indicator](config, frame)
        assert len(history) == n - lookback + 1

    @pytest.mark.parametrize("indicator", COMPUTED_INDICATORS, ids=lambda i: i.name)
    def test_exactly_lookback_points(self, indicator):
        config = AnalysisConfig()
        lookback = indicator_lookback(indicator, config)
        frame = linear_price_series(lookback, step=0.25)
        history, _ = RUNNERS[indicator](config, frame)
        assert len(history) == 1

    def test_short_series_has_no_history(self):
        config = AnalysisConfig()
        frame = linear_price_series(indicator_lookback(IndicatorName.RSI, config) - 1)
        history, signal = RUNNERS[IndicatorName.RSI](config, frame)
        assert history.empty
        assert signal is None

    def test_custom_periods_change_lookback(self):
        config = AnalysisConfig.from_overrides({"rsi": {"period": 5}, "macd": {"fast": 3, "slow": 6, "signal": 2}})
        assert indicator_lookback(IndicatorName.RSI, config) == 6
        assert indicator_lookback(IndicatorName.MACD, config) == 7
