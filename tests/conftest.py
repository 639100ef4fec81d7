"""Shared fixtures for the technical analysis test suite."""

import pytest

from technical_analysis.config import AnalysisConfig, Signal
from technical_analysis.market_context import MarketContext
from technical_analysis.price_data import generate_sample_price_data, linear_price_series
from technical_analysis.technical_indicators import TechnicalSignal


@pytest.fixture()
def default_config() -> AnalysisConfig:
    return AnalysisConfig()


@pytest.fixture()
def uptrend_prices():
    """90 noise-free bars rising 0.5 per day from 100."""
    return linear_price_series(90, start_price=100.0, step=0.5)


@pytest.fixture()
def downtrend_prices():
    """90 noise-free bars falling 0.5 per day from 100."""
    return linear_price_series(90, start_price=100.0, step=-0.5)


@pytest.fixture()
def flat_prices():
    return linear_price_series(60, start_price=50.0, step=0.0)


@pytest.fixture()
def bull_market_prices():
    return generate_sample_price_data(days=250, trend="bull", seed=7)


@pytest.fixture()
def volatile_prices():
    return generate_sample_price_data(days=120, trend="volatile", seed=3)


@pytest.fixture()
def make_signal():
    """Factory for hand-built signals."""
    def _make(indicator="RSI", signal=Signal.HOLD, strength=0.5, value=50.0, description=""):
        return TechnicalSignal(
            indicator=indicator,
            signal=signal,
            strength=strength,
            value=value,
            description=description,
        )
    return _make


@pytest.fixture()
def bear_context() -> MarketContext:
    return MarketContext(condition="bear", volatility="medium", sector="Energy", market_cap="large")


@pytest.fixture()
def bull_context() -> MarketContext:
    return MarketContext(condition="bull", volatility="low", sector="Technology", market_cap="large")
