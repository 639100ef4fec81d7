"""
Price Data Handling for the Technical Analysis Engine

Normalises caller-supplied OHLCV data into the canonical frame every other
module consumes:

    - DatetimeIndex named ``date`` (ascending, unique)
    - float columns ``open``, ``high``, ``low``, ``close``, ``volume``

Accepted inputs are a pandas DataFrame (any column case, date either as a
column or as the index), a sequence of PricePoint objects, or a sequence of
mappings with the same keys.

Also provides a deterministic synthetic series generator used by the demo
and by the test-suite.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


OHLCV_COLUMNS: List[str] = ['open', 'high', 'low', 'close', 'volume']

SAMPLE_TRENDS = ('bull', 'bear', 'sideways', 'volatile')


class PriceDataError(ValueError):
    """Raised when price input is structurally unusable (missing or non-numeric columns)."""


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class PricePoint:
    """One trading period of OHLCV data."""
    date: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


PriceInput = Union[pd.DataFrame, Sequence[PricePoint], Sequence[Mapping[str, Any]]]


# =============================================================================
# NORMALISATION
# =============================================================================

def to_price_frame(data: PriceInput) -> pd.DataFrame:
    """
    Convert any supported price input into the canonical OHLCV frame.

    The input is never modified; a new frame is always returned.

    Args:
        data: DataFrame, PricePoint sequence, or sequence of mappings

    Returns:
        Canonical OHLCV DataFrame (possibly empty)

    Raises:
        PriceDataError: if OHLCV columns are missing or not numeric
    """
    if data is None:
        return _empty_frame()

    if isinstance(data, pd.DataFrame):
        df = data.copy()
    else:
        try:
            records = [p.to_dict() if isinstance(p, PricePoint) else dict(p) for p in data]
        except (TypeError, ValueError) as e:
            raise PriceDataError(f"Price rows must be PricePoints or mappings: {e}") from e
        if not records:
            return _empty_frame()
        df = pd.DataFrame.from_records(records)

    if df.empty and len(df.columns) == 0:
        return _empty_frame()

    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in OHLCV_COLUMNS if c not in df.columns]
    if missing:
        raise PriceDataError(f"Missing required columns: {missing}")

    if 'date' in df.columns:
        try:
            df.index = pd.DatetimeIndex(pd.to_datetime(df['date']))
        except (TypeError, ValueError) as e:
            raise PriceDataError(f"Unparseable date column: {e}") from e
    elif not isinstance(df.index, pd.DatetimeIndex):
        logger.debug("Price data has no date column; indicators run positionally")

    df = df[OHLCV_COLUMNS]
    try:
        df = df.apply(pd.to_numeric, errors='raise').astype(float)
    except (TypeError, ValueError) as e:
        raise PriceDataError(f"Non-numeric OHLCV data: {e}") from e

    df.index.name = 'date'

    if not df.index.is_monotonic_increasing:
        logger.warning("Price data not in chronological order; sorting ascending")
        df = df.sort_index(kind='mergesort')

    duplicated = df.index.duplicated(keep='last')
    if duplicated.any():
        logger.warning(f"Dropping {int(duplicated.sum())} duplicate dates")
        df = df[~duplicated]

    return df


def _empty_frame() -> pd.DataFrame:
    frame = pd.DataFrame({c: pd.Series(dtype=float) for c in OHLCV_COLUMNS})
    frame.index = pd.DatetimeIndex([], name='date')
    return frame


def price_points_from_frame(df: pd.DataFrame) -> List[PricePoint]:
    """Convert a canonical frame back into PricePoint objects."""
    frame = to_price_frame(df)
    return [
        PricePoint(
            date=idx.to_pydatetime() if isinstance(idx, pd.Timestamp) else idx,
            open=row.open, high=row.high, low=row.low,
            close=row.close, volume=row.volume,
        )
        for idx, row in zip(frame.index, frame.itertuples(index=False))
    ]


def validate_price_frame(df: pd.DataFrame) -> List[str]:
    """
    Check OHLC consistency without raising.

    Returns a list of human-readable issues. An empty list means the
    series satisfies ``low <= min(open, close) <= max(open, close) <= high``
    with non-negative prices and volume and no missing values.
    """
    issues: List[str] = []
    if df.empty:
        return issues

    missing = int(df[OHLCV_COLUMNS].isna().sum().sum())
    if missing:
        issues.append(f"Missing values: {missing}")

    invalid_hl = int((df['high'] < df['low']).sum())
    if invalid_hl:
        issues.append(f"High < Low: {invalid_hl} rows")

    invalid_high = int((df['high'] < df[['open', 'close']].max(axis=1)).sum())
    if invalid_high:
        issues.append(f"High < max(O,C): {invalid_high} rows")

    invalid_low = int((df['low'] > df[['open', 'close']].min(axis=1)).sum())
    if invalid_low:
        issues.append(f"Low > min(O,C): {invalid_low} rows")

    negative = int((df[['open', 'high', 'low', 'close']] < 0).any(axis=1).sum())
    if negative:
        issues.append(f"Negative prices: {negative} rows")

    negative_volume = int((df['volume'] < 0).sum())
    if negative_volume:
        issues.append(f"Negative volume: {negative_volume} rows")

    return issues


def load_price_csv(path: Union[str, Path]) -> pd.DataFrame:
    """Read a plain OHLCV CSV (date, open, high, low, close, volume)."""
    path = Path(path)
    logger.info(f"Loading price data from {path}")
    return to_price_frame(pd.read_csv(path))


# =============================================================================
# SYNTHETIC DATA
# =============================================================================

def generate_sample_price_data(
    days: int = 120,
    start_price: float = 100.0,
    trend: str = 'bull',
    seed: int = 42,
    start_date: str = '2024-01-02',
    base_volume: float = 1_000_000.0
) -> pd.DataFrame:
    """
    Generate a reproducible OHLCV series with a given market character.

    Args:
        days: Number of trading days
        start_price: First close
        trend: 'bull', 'bear', 'sideways' or 'volatile'
        seed: Seed for numpy's Generator
        start_date: First business day
        base_volume: Mean daily volume

    Returns:
        Canonical OHLCV DataFrame
    """
    if trend not in SAMPLE_TRENDS:
        raise ValueError(f"trend must be one of {SAMPLE_TRENDS}, got {trend!r}")
    if days <= 0:
        return _empty_frame()

    rng = np.random.default_rng(seed)
    steps = np.arange(days)

    if trend == 'sideways':
        # Oscillates +-3% around the start price
        close = start_price * (1.0 + 0.03 * np.sin(2.0 * np.pi * steps / 20.0)
                               + rng.normal(0.0, 0.002, days))
        returns = np.concatenate([[0.0], np.diff(close) / close[:-1]])
    else:
        if trend == 'bull':
            returns = 0.004 + rng.normal(0.0, 0.006, days)
        elif trend == 'bear':
            returns = -0.004 + rng.normal(0.0, 0.006, days)
        else:
            returns = np.where(steps % 2 == 0, 1.0, -1.0) * (0.04 + rng.uniform(0.0, 0.03, days))
        returns[0] = 0.0
        close = start_price * np.cumprod(1.0 + returns)

    open_ = np.concatenate([[start_price], close[:-1]])
    spread = np.abs(rng.normal(0.0, 0.004, days)) * close
    high = np.maximum(open_, close) + spread
    low = np.maximum(np.minimum(open_, close) - spread, 0.0)
    volume = np.round(base_volume * (1.0 + 0.5 * np.abs(returns) / 0.01) * rng.uniform(0.8, 1.2, days))

    index = pd.bdate_range(start=start_date, periods=days, name='date')
    return pd.DataFrame(
        {'open': open_, 'high': high, 'low': low, 'close': close, 'volume': volume},
        index=index,
    )


def linear_price_series(
    days: int,
    start_price: float = 100.0,
    step: float = 0.5,
    start_date: str = '2024-01-02',
    volume: float = 1_000_000.0
) -> pd.DataFrame:
    """Noise-free series moving ``step`` per day (flat when step is 0)."""
    if days <= 0:
        return _empty_frame()
    close = start_price + step * np.arange(days, dtype=float)
    open_ = close - step / 2.0
    high = np.maximum(open_, close) + abs(step) / 4.0
    low = np.minimum(open_, close) - abs(step) / 4.0
    index = pd.bdate_range(start=start_date, periods=days, name='date')
    return pd.DataFrame(
        {'open': open_, 'high': high, 'low': low, 'close': close,
         'volume': np.full(days, float(volume))},
        index=index,
    )
