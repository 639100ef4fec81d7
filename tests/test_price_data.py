"""Tests for price input normalisation and synthetic data generation."""

import numpy as np
import pandas as pd
import pytest

from technical_analysis.price_data import (
    OHLCV_COLUMNS,
    PriceDataError,
    PricePoint,
    generate_sample_price_data,
    linear_price_series,
    load_price_csv,
    price_points_from_frame,
    to_price_frame,
    validate_price_frame,
)


@pytest.mark.unit
class TestToPriceFrame:
    """Conversion of supported inputs to the canonical OHLCV frame."""

    def test_none_and_empty_give_empty_frame(self):
        for data in (None, [], pd.DataFrame()):
            frame = to_price_frame(data)
            assert frame.empty
            assert list(frame.columns) == OHLCV_COLUMNS

    def test_price_points_round_trip(self, uptrend_prices):
        points = price_points_from_frame(uptrend_prices)
        assert all(isinstance(p, PricePoint) for p in points)
        frame = to_price_frame(points)
        assert len(frame) == len(uptrend_prices)
        np.testing.assert_allclose(frame["close"].to_numpy(), uptrend_prices["close"].to_numpy())

    def test_column_names_are_case_insensitive(self):
        raw = pd.DataFrame({
            "Date": ["2024-01-02", "2024-01-03"],
            "Open": [1, 2], "High": [2, 3], "Low": [0.5, 1.5], "Close": [1.5, 2.5], "Volume": [10, 20],
        })
        frame = to_price_frame(raw)
        assert list(frame.columns) == OHLCV_COLUMNS
        assert isinstance(frame.index, pd.DatetimeIndex)

    def test_input_is_not_modified(self, uptrend_prices):
        before = uptrend_prices.copy()
        to_price_frame(uptrend_prices)
        pd.testing.assert_frame_equal(uptrend_prices, before)

    def test_missing_column_raises(self):
        raw = pd.DataFrame({"open": [1.0], "high": [1.0], "low": [1.0], "close": [1.0]})
        with pytest.raises(PriceDataError, match="volume"):
            to_price_frame(raw)

    def test_non_numeric_raises(self):
        raw = pd.DataFrame({
            "open": ["a"], "high": [1.0], "low": [1.0], "close": [1.0], "volume": [1.0],
        })
        with pytest.raises(PriceDataError):
            to_price_frame(raw)

    @pytest.mark.parametrize("rows", [
        [("2024-01-02", 1.0, 2.0, 0.5, 1.5, 100.0)] * 3,
        ["2024-01-02,1,2,0.5,1.5,100"],
        [42],
    ], ids=["tuples", "strings", "numbers"])
    def test_non_mapping_rows_raise_price_data_error(self, rows):
        with pytest.raises(PriceDataError, match="mappings"):
            to_price_frame(rows)

    def test_unsorted_input_is_sorted(self, uptrend_prices):
        shuffled = uptrend_prices.iloc[::-1]
        frame = to_price_frame(shuffled)
        assert frame.index.is_monotonic_increasing

    def test_duplicate_dates_keep_last(self, uptrend_prices):
        doubled = pd.concat([uptrend_prices.iloc[:3], uptrend_prices.iloc[2:3].assign(close=999.0)])
        frame = to_price_frame(doubled)
        assert len(frame) == 3
        assert frame["close"].iloc[-1] == 999.0


@pytest.mark.unit
class TestValidation:

    def test_consistent_series_has_no_issues(self, bull_market_prices):
        assert validate_price_frame(bull_market_prices) == []

    def test_reports_high_below_low(self, uptrend_prices):
        broken = uptrend_prices.copy()
        broken.iloc[5, broken.columns.get_loc("high")] = 0.0
        issues = validate_price_frame(broken)
        assert any("High < Low" in issue for issue in issues)


@pytest.mark.unit
class TestSyntheticData:
    """Reproducible sample series."""

    def test_same_seed_same_data(self):
        a = generate_sample_price_data(days=60, trend="bear", seed=11)
        b = generate_sample_price_data(days=60, trend="bear", seed=11)
        pd.testing.assert_frame_equal(a, b)

    @pytest.mark.parametrize("trend", ["bull", "bear", "sideways", "volatile"])
    def test_ohlc_invariant_holds(self, trend):
        frame = generate_sample_price_data(days=80, trend=trend, seed=5)
        assert len(frame) == 80
        assert validate_price_frame(frame) == []

    def test_unknown_trend_rejected(self):
        with pytest.raises(ValueError):
            generate_sample_price_data(trend="crash")

    def test_linear_series(self):
        frame = linear_price_series(5, start_price=10.0, step=1.0)
        assert frame["close"].tolist() == [10.0, 11.0, 12.0, 13.0, 14.0]
        assert validate_price_frame(frame) == []

    def test_flat_series(self, flat_prices):
        assert frame_is_flat(flat_prices)


def frame_is_flat(frame: pd.DataFrame) -> bool:
    return bool((frame[["open", "high", "low", "close"]] == frame["close"].iloc[0]).all().all())


@pytest.mark.unit
def test_load_price_csv(tmp_path, uptrend_prices):
    path = tmp_path / "prices.csv"
    uptrend_prices.reset_index().to_csv(path, index=False)
    frame = load_price_csv(path)
    assert len(frame) == len(uptrend_prices)
    assert frame.index[0] == uptrend_prices.index[0]
