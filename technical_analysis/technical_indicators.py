"""
Technical Indicator Library

Stateless indicator calculations and latest-point signal generation over a
canonical OHLCV frame (see price_data.to_price_frame).

INDICATOR ARCHITECTURE
    Indicators are organised into four families, each a small class holding
    the immutable AnalysisConfig it reads parameters from:

    Family 1 - MOMENTUM OSCILLATORS
        - RSI: Wilder's Relative Strength Index [0-100]
        - Stochastic Oscillator: Lane's %K/%D [0-100]
        - Williams %R: inverted stochastic [-100, 0]

    Family 2 - TREND INDICATORS
        - MACD: fast/slow EMA spread, signal line and histogram
        - ADX: Average Directional Index with +DI/-DI
        - Moving averages: SMA/EMA with Golden Cross / Death Cross

    Family 3 - VOLATILITY SYSTEMS
        - Bollinger Bands: SMA +- k population standard deviations

    Family 4 - VOLUME ANALYSIS
        - OBV: On-Balance Volume with price/volume divergence
        - VPT: Volume Price Trend
        - A/D line: Accumulation/Distribution

CALCULATION CONTRACT
    Every ``calculate_*`` method returns values aligned to the input index
    with NaN for the warm-up prefix. Insufficient history is a normal
    condition: it yields an all-NaN (or empty) result, never an exception.

    Every ``generate_*_signal`` method reads the most recent complete row and
    returns a TechnicalSignal, or None when no complete row exists.

LOOKBACK (points needed before the first value)
    RSI(p) = p + 1        MACD(f, s, g) = s + g - 1    Bollinger(p) = p
    Stochastic(k, d) = k + d - 1    Williams %R(p) = p    ADX(p) = 2p
    OBV = 1               SMA(p) / EMA(p) = p
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from scipy.signal import argrelextrema

from technical_analysis.config import (
    AnalysisConfig,
    DEFAULT_CONFIG,
    IndicatorName,
    Signal,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Fixed strengths for calls without a graded formula
HOLD_STRENGTH: float = 0.3
OSCILLATOR_STRENGTH: float = 0.6
CROSS_STRENGTH: float = 0.7

# Divergence detection
DIVERGENCE_LOOKBACK: int = 20
DIVERGENCE_ORDER: int = 2
DIVERGENCE_BONUS: float = 0.1

# Bollinger band walking: consecutive closes within 2% of a band
BAND_WALK_BARS: int = 3
BAND_WALK_TOLERANCE: float = 0.02

# Bandwidth growth over the previous bar that marks a squeeze ending
SQUEEZE_EXPANSION: float = 1.2

# Moving average cross recency (bars)
RECENT_CROSS_BARS: int = 5

# OBV: price must move at least 1% over the window to count as trending
OBV_PRICE_TREND_THRESHOLD: float = 0.01

# Relative tolerance under which a histogram/spread reading is treated as zero
ZERO_TOLERANCE: float = 1e-9


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class TechnicalSignal:
    """
    Output of one indicator at one point in time.

    ``indicator`` is a free string so that signals from outside this library
    can be explained too; the engine always uses IndicatorName values.
    ``strength`` is clamped into [0, 1].
    """
    indicator: str
    signal: Signal
    strength: float
    value: float
    timestamp: Any = None
    description: str = ""

    def __post_init__(self):
        sig = self.signal
        if not isinstance(sig, Signal):
            try:
                sig = Signal(str(sig).strip().lower())
            except ValueError:
                logger.warning(f"Unrecognised signal {self.signal!r} for {self.indicator}; using hold")
                sig = Signal.HOLD
        object.__setattr__(self, 'signal', sig)
        object.__setattr__(self, 'strength', clamp(safe_float(self.strength), 0.0, 1.0))
        object.__setattr__(self, 'value', safe_float(self.value))
        object.__setattr__(self, 'indicator', str(self.indicator))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['signal'] = self.signal.value
        data['timestamp'] = format_timestamp(self.timestamp)
        return data


def format_timestamp(timestamp: Any) -> Optional[str]:
    if timestamp is None:
        return None
    if hasattr(timestamp, 'isoformat'):
        return timestamp.isoformat()
    return str(timestamp)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def safe_float(value: Any, default: float = 0.0) -> float:
    """Convert to a finite float, falling back to ``default``."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if np.isfinite(result) else default


def safe_divide(a: float, b: float, default: float = 0.0) -> float:
    """Safe division handling zero and invalid values."""
    try:
        if b == 0 or not np.isfinite(b):
            return default
        result = a / b
        return default if not np.isfinite(result) else result
    except (ZeroDivisionError, TypeError, ValueError):
        return default


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _ratio(numerator: pd.Series, denominator: pd.Series, fill: float) -> pd.Series:
    """
    Element-wise ratio with a fixed fallback where the denominator is zero.

    Warm-up NaNs in either operand stay NaN.
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        out = numerator / denominator
    out = out.where(denominator != 0, fill)
    return out.where(numerator.notna() & denominator.notna())


def _seeded_ewm(series: pd.Series, period: int, alpha: float) -> pd.Series:
    """
    Exponential smoothing seeded with the simple mean of the first
    ``period`` valid values.

    The first output sits ``period - 1`` rows after the first valid input.
    """
    result = pd.Series(np.nan, index=series.index, dtype=float)
    values = series.to_numpy(dtype=float)
    valid = np.flatnonzero(~np.isnan(values))
    if len(valid) == 0:
        return result

    start = int(valid[0])
    seed_pos = start + period - 1
    if seed_pos >= len(values):
        return result

    tail = series.iloc[seed_pos:].astype(float).copy()
    tail.iloc[0] = float(np.mean(values[start:seed_pos + 1]))
    smoothed = tail.ewm(alpha=alpha, adjust=False).mean()
    result.iloc[seed_pos:] = smoothed.to_numpy()
    return result


def sma(series: pd.Series, period: int) -> pd.Series:
    """Simple moving average; NaN until ``period`` values exist."""
    return series.rolling(window=period, min_periods=period).mean()


def ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average (alpha = 2 / (period + 1)), SMA-seeded."""
    return _seeded_ewm(series, period, 2.0 / (period + 1))


def wilder_smooth(series: pd.Series, period: int) -> pd.Series:
    """Wilder's smoothing (alpha = 1 / period), SMA-seeded."""
    return _seeded_ewm(series, period, 1.0 / period)


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation; 0.0 when either side has no variance."""
    a = np.asarray(x, dtype=float)
    b = np.asarray(y, dtype=float)
    if len(a) != len(b) or len(a) < 2:
        return 0.0
    a = a - a.mean()
    b = b - b.mean()
    denominator = np.sqrt((a * a).sum() * (b * b).sum())
    return clamp(safe_divide(float((a * b).sum()), float(denominator)), -1.0, 1.0)


def detect_crossovers(fast: pd.Series, slow: pd.Series) -> pd.Series:
    """
    Mark crossover bars between two aligned series.

    Returns +1 where ``fast`` crosses above ``slow``, -1 where it crosses
    below, and 0 elsewhere (including warm-up rows).
    """
    spread = (fast - slow).to_numpy(dtype=float)
    side = np.sign(spread)
    prev_side = np.concatenate([[np.nan], side[:-1]])
    crosses = np.zeros(len(spread), dtype=int)
    crosses[(prev_side <= 0) & (side > 0)] = 1
    crosses[(prev_side >= 0) & (side < 0)] = -1
    return pd.Series(crosses, index=fast.index)


def detect_divergence(
    price: pd.Series,
    indicator: pd.Series,
    lookback: int = DIVERGENCE_LOOKBACK,
    order: int = DIVERGENCE_ORDER
) -> Optional[str]:
    """
    Detect regular divergence between price and an indicator.

    Compares the last two swing highs (and lows) inside the lookback window:
    price higher high with indicator lower high is ``'bearish'``; price lower
    low with indicator higher low is ``'bullish'``.

    Returns
    -------
    Optional[str]
        'bullish', 'bearish' or None
    """
    frame = pd.concat([price, indicator], axis=1).dropna().iloc[-lookback:]
    if len(frame) < 2 * order + 3:
        return None

    p = frame.iloc[:, 0].to_numpy(dtype=float)
    ind = frame.iloc[:, 1].to_numpy(dtype=float)

    highs = argrelextrema(p, np.greater, order=order)[0]
    if len(highs) >= 2:
        a, b = highs[-2], highs[-1]
        if p[b] > p[a] and ind[b] < ind[a]:
            return 'bearish'

    lows = argrelextrema(p, np.less, order=order)[0]
    if len(lows) >= 2:
        a, b = lows[-2], lows[-1]
        if p[b] < p[a] and ind[b] > ind[a]:
            return 'bullish'

    return None


def detect_band_walking(
    close: pd.Series,
    bands: pd.DataFrame,
    bars: int = BAND_WALK_BARS,
    tolerance: float = BAND_WALK_TOLERANCE
) -> Optional[str]:
    """
    Detect price riding a Bollinger Band.

    Returns ``'upper'`` when each of the last ``bars`` closes sits within
    ``tolerance`` of (or beyond) the upper band, ``'lower'`` for the mirror
    case, and None otherwise. Bars with collapsed bands never count.
    """
    frame = pd.concat([close.rename('close'), bands[['upper', 'lower']]], axis=1).dropna()
    if len(frame) < bars:
        return None

    window = frame.iloc[-bars:]
    if not (window['upper'] > window['lower']).all():
        return None
    if (window['close'] >= window['upper'] * (1.0 - tolerance)).all():
        return 'upper'
    if (window['close'] <= window['lower'] * (1.0 + tolerance)).all():
        return 'lower'
    return None


def _threshold_signals(
    values: pd.Series,
    lower: float,
    upper: float,
    buy_strength: Callable[[np.ndarray], np.ndarray],
    sell_strength: Callable[[np.ndarray], np.ndarray],
    hold_strength: Callable[[np.ndarray], np.ndarray]
) -> pd.DataFrame:
    """Per-row buy/sell/hold labels and strengths for an oscillator."""
    v = values.to_numpy(dtype=float)
    with np.errstate(invalid='ignore'):
        is_buy = v < lower
        is_sell = v > upper
    labels = np.select([is_buy, is_sell], [Signal.BUY.value, Signal.SELL.value], Signal.HOLD.value)
    strength = np.select(
        [is_buy, is_sell],
        [buy_strength(v), sell_strength(v)],
        hold_strength(v),
    )
    strength = np.clip(strength, 0.0, 1.0)
    frame = pd.DataFrame({'signal': labels, 'strength': strength}, index=values.index)
    return frame[values.notna().to_numpy()]


def _last_row(frame: pd.DataFrame) -> Optional[pd.Series]:
    complete = frame.dropna()
    if complete.empty:
        return None
    return complete.iloc[-1]


# =============================================================================
# FAMILY 1: MOMENTUM OSCILLATORS
# =============================================================================

class MomentumIndicators:
    """
    Momentum oscillator calculations and signal generation.

    Indicators implemented:
    - RSI (Relative Strength Index): Wilder, 1978
    - Stochastic Oscillator: Lane, 1950s
    - Williams %R: Williams, 1966
    """

    def __init__(self, config: AnalysisConfig = DEFAULT_CONFIG):
        self.config = config

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int = 14) -> pd.Series:
        """
        Calculate Relative Strength Index using Wilder's smoothing.

        RSI = 100 - (100 / (1 + RS)),  RS = Average Gain / Average Loss

        An average loss of zero yields RSI = 100.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Smoothing period (default: 14)

        Returns
        -------
        pd.Series
            RSI values in [0, 100], NaN for the first ``period`` rows
        """
        delta = close.diff()
        gains = delta.clip(lower=0.0)
        losses = (-delta).clip(lower=0.0)

        avg_gain = wilder_smooth(gains, period)
        avg_loss = wilder_smooth(losses, period)

        with np.errstate(divide='ignore', invalid='ignore'):
            rs = avg_gain / avg_loss
            rsi = 100.0 - (100.0 / (1.0 + rs))

        rsi = rsi.where(avg_loss != 0, 100.0)
        return rsi.where(avg_gain.notna() & avg_loss.notna()).rename('rsi')

    @staticmethod
    def calculate_stochastic(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        k_period: int = 14,
        d_period: int = 3
    ) -> pd.DataFrame:
        """
        Calculate the Stochastic Oscillator.

        %K = 100 * (Close - Lowest Low) / (Highest High - Lowest Low)
        %D = SMA(%K, d_period)

        A zero high/low range gives %K = 50.

        Returns
        -------
        pd.DataFrame
            Columns ``k`` and ``d``
        """
        lowest_low = low.rolling(window=k_period, min_periods=k_period).min()
        highest_high = high.rolling(window=k_period, min_periods=k_period).max()

        k = 100.0 * _ratio(close - lowest_low, highest_high - lowest_low, fill=0.5)
        d = sma(k, d_period)
        return pd.DataFrame({'k': k, 'd': d}, index=close.index)

    @staticmethod
    def calculate_williams_r(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int = 14
    ) -> pd.Series:
        """
        Calculate Williams %R.

        %R = -100 * (Highest High - Close) / (Highest High - Lowest Low)

        A zero range gives -50.
        """
        highest_high = high.rolling(window=period, min_periods=period).max()
        lowest_low = low.rolling(window=period, min_periods=period).min()
        williams = -100.0 * _ratio(highest_high - close, highest_high - lowest_low, fill=0.5)
        return williams.rename('williams_r')

    # -------------------------------------------------------------------------
    # Per-row signal classification
    # -------------------------------------------------------------------------

    def rsi_row_signals(self, rsi: pd.Series) -> pd.DataFrame:
        """Buy/sell/hold label and strength for every RSI reading."""
        ob, os_ = self.config.rsi.overbought, self.config.rsi.oversold
        return _threshold_signals(
            rsi, os_, ob,
            buy_strength=lambda v: np.maximum(0.6, (os_ - v) / os_ + 0.5),
            sell_strength=lambda v: np.maximum(0.6, (v - ob) / (100.0 - ob) + 0.5),
            hold_strength=lambda v: 0.3 + np.abs(v - 50.0) / 50.0 * 0.4,
        )

    def williams_row_signals(self, williams: pd.Series) -> pd.DataFrame:
        ob, os_ = self.config.williams_r.overbought, self.config.williams_r.oversold
        return _threshold_signals(
            williams, os_, ob,
            buy_strength=lambda v: np.minimum(0.9, 0.6 + np.abs(v - os_) / 20.0),
            sell_strength=lambda v: np.minimum(0.9, 0.6 + np.abs(v - ob) / 20.0),
            hold_strength=lambda v: np.full(len(v), HOLD_STRENGTH),
        )

    def stochastic_row_signals(self, k: pd.Series) -> pd.DataFrame:
        cfg = self.config.stochastic
        return _threshold_signals(
            k, cfg.oversold, cfg.overbought,
            buy_strength=lambda v: np.full(len(v), OSCILLATOR_STRENGTH),
            sell_strength=lambda v: np.full(len(v), OSCILLATOR_STRENGTH),
            hold_strength=lambda v: np.full(len(v), HOLD_STRENGTH),
        )

    # -------------------------------------------------------------------------
    # Latest-point signals
    # -------------------------------------------------------------------------

    def analyze_rsi(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        """RSI history (value, signal, strength) and the latest signal."""
        rsi = self.calculate_rsi(df['close'], self.config.rsi.period)
        history = pd.concat([rsi, self.rsi_row_signals(rsi)], axis=1).dropna()
        return history, self.generate_rsi_signal(history, df['close'], rsi)

    def generate_rsi_signal(
        self,
        history: pd.DataFrame,
        close: pd.Series,
        rsi: pd.Series
    ) -> Optional[TechnicalSignal]:
        if history.empty:
            return None

        row = history.iloc[-1]
        value = float(row['rsi'])
        signal = Signal(row['signal'])
        strength = float(row['strength'])

        if signal is Signal.BUY:
            description = f"RSI oversold ({value:.1f})"
        elif signal is Signal.SELL:
            description = f"RSI overbought ({value:.1f})"
        else:
            description = f"RSI neutral ({value:.1f})"

        divergence = detect_divergence(close, rsi)
        if divergence is not None:
            description += f"; {divergence} RSI divergence"
            if (divergence == 'bullish' and signal is Signal.BUY) or \
               (divergence == 'bearish' and signal is Signal.SELL):
                strength += DIVERGENCE_BONUS

        return TechnicalSignal(
            indicator=IndicatorName.RSI.value,
            signal=signal,
            strength=strength,
            value=value,
            timestamp=history.index[-1],
            description=description,
        )

    def analyze_stochastic(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        cfg = self.config.stochastic
        stoch = self.calculate_stochastic(df['high'], df['low'], df['close'], cfg.k_period, cfg.d_period)
        history = pd.concat([stoch, self.stochastic_row_signals(stoch['k'])], axis=1).dropna()
        return history, self.generate_stochastic_signal(history)

    def generate_stochastic_signal(self, history: pd.DataFrame) -> Optional[TechnicalSignal]:
        """
        Stochastic signal: buy below oversold, sell above overbought.

        A %K/%D turn in the direction of the call (%K above %D when oversold,
        below when overbought) raises strength to the crossover level.
        """
        if history.empty:
            return None

        row = history.iloc[-1]
        k, d = float(row['k']), float(row['d'])
        signal = Signal(row['signal'])
        strength = float(row['strength'])

        if signal is Signal.BUY:
            description = f"Stochastic oversold (%K {k:.1f}, %D {d:.1f})"
            if k > d:
                strength = CROSS_STRENGTH
                description += ", %K turning up"
        elif signal is Signal.SELL:
            description = f"Stochastic overbought (%K {k:.1f}, %D {d:.1f})"
            if k < d:
                strength = CROSS_STRENGTH
                description += ", %K turning down"
        else:
            description = f"Stochastic neutral (%K {k:.1f})"

        return TechnicalSignal(
            indicator=IndicatorName.STOCHASTIC.value,
            signal=signal,
            strength=strength,
            value=k,
            timestamp=history.index[-1],
            description=description,
        )

    def analyze_williams_r(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        williams = self.calculate_williams_r(df['high'], df['low'], df['close'], self.config.williams_r.period)
        history = pd.concat([williams, self.williams_row_signals(williams)], axis=1).dropna()
        return history, self.generate_williams_signal(history)

    def generate_williams_signal(self, history: pd.DataFrame) -> Optional[TechnicalSignal]:
        if history.empty:
            return None

        row = history.iloc[-1]
        value = float(row['williams_r'])
        signal = Signal(row['signal'])
        zone = {Signal.BUY: "oversold", Signal.SELL: "overbought"}.get(signal, "neutral")

        return TechnicalSignal(
            indicator=IndicatorName.WILLIAMS_R.value,
            signal=signal,
            strength=float(row['strength']),
            value=value,
            timestamp=history.index[-1],
            description=f"Williams %R {zone} ({value:.1f})",
        )

    def compute_all(self, df: pd.DataFrame) -> Dict[IndicatorName, Tuple[pd.DataFrame, Optional[TechnicalSignal]]]:
        return {
            IndicatorName.RSI: self.analyze_rsi(df),
            IndicatorName.STOCHASTIC: self.analyze_stochastic(df),
            IndicatorName.WILLIAMS_R: self.analyze_williams_r(df),
        }


# =============================================================================
# FAMILY 2: TREND INDICATORS
# =============================================================================

class TrendIndicators:
    """
    Trend-following indicator calculations.

    Indicators implemented:
    - MACD: Appel, 1970s
    - ADX/DMI: Wilder, 1978
    - Simple and exponential moving averages with cross detection
    """

    def __init__(self, config: AnalysisConfig = DEFAULT_CONFIG):
        self.config = config

    @staticmethod
    def calculate_macd(
        close: pd.Series,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9
    ) -> pd.DataFrame:
        """
        Calculate MACD line, signal line and histogram.

        MACD Line = EMA(fast) - EMA(slow)
        Signal Line = EMA(MACD Line, signal)
        Histogram = MACD Line - Signal Line

        Returns
        -------
        pd.DataFrame
            Columns ``macd``, ``signal_line``, ``histogram``
        """
        macd_line = ema(close, fast) - ema(close, slow)
        signal_line = ema(macd_line, signal)
        histogram = macd_line - signal_line
        return pd.DataFrame(
            {'macd': macd_line, 'signal_line': signal_line, 'histogram': histogram},
            index=close.index,
        )

    @staticmethod
    def calculate_adx(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int = 14
    ) -> pd.DataFrame:
        """
        Calculate ADX with +DI and -DI.

        Process:
        1. True Range and directional movement from bar 1 onward
        2. Wilder-smooth TR, +DM, -DM -> +DI, -DI
        3. DX = 100 * |+DI - -DI| / (+DI + -DI)
        4. ADX = Wilder average of DX

        Zero true range gives DI = 0, and DI sum of zero gives DX = 0.

        Returns
        -------
        pd.DataFrame
            Columns ``adx``, ``plus_di``, ``minus_di``
        """
        prev_close = close.shift(1)
        true_range = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
            axis=1,
        ).max(axis=1)
        true_range.iloc[:1] = np.nan

        up_move = high.diff()
        down_move = -low.diff()
        plus_dm = pd.Series(
            np.where((up_move > down_move) & (up_move > 0), up_move, 0.0), index=close.index
        ).where(up_move.notna())
        minus_dm = pd.Series(
            np.where((down_move > up_move) & (down_move > 0), down_move, 0.0), index=close.index
        ).where(down_move.notna())

        atr = wilder_smooth(true_range, period)
        plus_di = 100.0 * _ratio(wilder_smooth(plus_dm, period), atr, fill=0.0)
        minus_di = 100.0 * _ratio(wilder_smooth(minus_dm, period), atr, fill=0.0)

        dx = 100.0 * _ratio((plus_di - minus_di).abs(), plus_di + minus_di, fill=0.0)
        adx = wilder_smooth(dx, period)

        return pd.DataFrame(
            {'adx': adx, 'plus_di': plus_di, 'minus_di': minus_di},
            index=close.index,
        )

    @staticmethod
    def calculate_sma(close: pd.Series, period: int) -> pd.Series:
        return sma(close, period).rename(f'sma_{period}')

    @staticmethod
    def calculate_ema(close: pd.Series, period: int) -> pd.Series:
        return ema(close, period).rename(f'ema_{period}')

    def calculate_moving_averages(self, close: pd.Series) -> pd.DataFrame:
        """All configured SMAs and EMAs as ``sma_<p>`` / ``ema_<p>`` columns."""
        cfg = self.config.moving_averages
        columns = [self.calculate_sma(close, p) for p in cfg.sma_periods]
        columns += [self.calculate_ema(close, p) for p in cfg.ema_periods]
        return pd.concat(columns, axis=1)

    # -------------------------------------------------------------------------
    # Latest-point signals
    # -------------------------------------------------------------------------

    def analyze_macd(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        cfg = self.config.macd
        history = self.calculate_macd(df['close'], cfg.fast, cfg.slow, cfg.signal).dropna()
        return history, self.generate_macd_signal(history, df['close'])

    def generate_macd_signal(self, history: pd.DataFrame, close: pd.Series) -> Optional[TechnicalSignal]:
        """
        MACD signal from the histogram.

        - histogram crosses from <= 0 to > 0: bullish crossover (buy)
        - histogram positive and rising: bullish momentum (buy, weaker)
        - mirror conditions: sell
        - anything else: hold

        Price/MACD divergence is noted in the description and adds
        strength when it agrees with the call.
        """
        if history.empty:
            return None

        row = history.iloc[-1]
        macd_value = float(row['macd'])
        # Readings this close to zero are rounding noise from the EMA recursion
        tolerance = ZERO_TOLERANCE * max(1.0, abs(float(close.iloc[-1])))
        hist = float(row['histogram'])
        hist = 0.0 if abs(hist) <= tolerance else hist
        prev_hist = hist
        if len(history) >= 2:
            prev_hist = float(history['histogram'].iloc[-2])
            prev_hist = 0.0 if abs(prev_hist) <= tolerance else prev_hist

        def crossover_strength(same_side: bool) -> float:
            strength = 0.6 + min(0.2, abs(macd_value) * 0.1) + min(0.2, abs(hist) * 0.05)
            return strength + (0.1 if same_side else 0.0)

        if len(history) >= 2 and prev_hist <= 0.0 < hist:
            signal = Signal.BUY
            strength = crossover_strength(macd_value > 0)
            description = "MACD bullish crossover"
        elif len(history) >= 2 and prev_hist >= 0.0 > hist:
            signal = Signal.SELL
            strength = crossover_strength(macd_value < 0)
            description = "MACD bearish crossover"
        elif hist > 0.0 and hist > prev_hist:
            signal = Signal.BUY
            strength = 0.4 + min(0.2, abs(hist) * 0.1)
            description = "MACD bullish momentum building"
        elif hist < 0.0 and hist < prev_hist:
            signal = Signal.SELL
            strength = 0.4 + min(0.2, abs(hist) * 0.1)
            description = "MACD bearish momentum building"
        else:
            signal = Signal.HOLD
            strength = HOLD_STRENGTH
            description = "MACD neutral"

        divergence = detect_divergence(close, history['macd'])
        if divergence is not None:
            description += f"; {divergence} MACD divergence"
            if (divergence == 'bullish' and signal is Signal.BUY) or \
               (divergence == 'bearish' and signal is Signal.SELL):
                strength += DIVERGENCE_BONUS

        return TechnicalSignal(
            indicator=IndicatorName.MACD.value,
            signal=signal,
            strength=strength,
            value=macd_value,
            timestamp=history.index[-1],
            description=description,
        )

    def analyze_adx(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        history = self.calculate_adx(df['high'], df['low'], df['close'], self.config.adx.period).dropna()
        return history, self.generate_adx_signal(history)

    def generate_adx_signal(self, history: pd.DataFrame) -> Optional[TechnicalSignal]:
        """
        ADX signal: directional only when the trend is strong.

        ADX >= strong threshold: direction from the dominant DI.
        Weak threshold <= ADX < strong: developing trend, hold.
        ADX < weak threshold: no actionable trend, hold.
        """
        row = _last_row(history)
        if row is None:
            return None

        cfg = self.config.adx
        adx = float(row['adx'])
        plus_di, minus_di = float(row['plus_di']), float(row['minus_di'])

        if adx >= cfg.strong_trend and plus_di != minus_di:
            signal = Signal.BUY if plus_di > minus_di else Signal.SELL
            strength = min(0.8, 0.5 + (adx - cfg.strong_trend) / 50.0)
            side = "+DI" if signal is Signal.BUY else "-DI"
            description = f"Strong trend (ADX {adx:.1f}), {side} dominant"
        elif adx >= cfg.weak_trend:
            signal = Signal.HOLD
            strength = 0.4
            description = f"Developing trend (ADX {adx:.1f})"
        else:
            signal = Signal.HOLD
            strength = HOLD_STRENGTH
            description = f"Weak or no trend (ADX {adx:.1f})"

        return TechnicalSignal(
            indicator=IndicatorName.ADX.value,
            signal=signal,
            strength=strength,
            value=adx,
            timestamp=history.index[-1],
            description=description,
        )

    def analyze_moving_averages(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        """
        Moving average history and cross signal.

        Rows before the shortest period are dropped; columns whose period
        exceeds the series length are omitted.
        """
        averages = self.calculate_moving_averages(df['close'])
        history = averages.dropna(axis=1, how='all')
        if history.columns.empty:
            history = averages.iloc[0:0]
        else:
            history = history.dropna(axis=0, how='all')
        return history, self.generate_moving_average_signal(averages)

    def _cross_pairs(self) -> Sequence[Tuple[str, str]]:
        cfg = self.config.moving_averages
        pairs = []
        for prefix, periods in (('sma', cfg.sma_periods), ('ema', cfg.ema_periods)):
            for short, long in reversed(list(zip(periods[:-1], periods[1:]))):
                pairs.append((f'{prefix}_{short}', f'{prefix}_{long}'))
        return pairs

    def generate_moving_average_signal(self, averages: pd.DataFrame) -> Optional[TechnicalSignal]:
        """
        Golden Cross / Death Cross signal from the longest usable MA pair.

        Pair priority: longest SMA pair with data (50/200 before 20/50),
        then the EMA pair. Short above long is a Golden Cross (buy), below
        is a Death Cross (sell).
        """
        if averages.empty:
            return None

        for short_col, long_col in self._cross_pairs():
            short, long = averages[short_col], averages[long_col]
            if pd.isna(short.iloc[-1]) or pd.isna(long.iloc[-1]):
                continue

            short_value, long_value = float(short.iloc[-1]), float(long.iloc[-1])
            spread = safe_divide(short_value - long_value, abs(long_value))
            label = f"{short_col.replace('_', ' ').upper()} vs {long_col.replace('_', ' ').upper()}"

            if abs(spread) <= ZERO_TOLERANCE:
                return TechnicalSignal(
                    indicator=IndicatorName.MOVING_AVERAGES.value,
                    signal=Signal.HOLD,
                    strength=HOLD_STRENGTH,
                    value=0.0,
                    timestamp=averages.index[-1],
                    description=f"Moving averages converged ({label})",
                )

            crosses = detect_crossovers(short, long)
            recent = crosses.iloc[-RECENT_CROSS_BARS:]
            fresh = bool((recent != 0).any())

            signal = Signal.BUY if spread > 0 else Signal.SELL
            name = "Golden Cross" if signal is Signal.BUY else "Death Cross"
            if fresh:
                strength = CROSS_STRENGTH
                description = f"{name} formed ({label})"
            else:
                strength = 0.5 + min(0.2, abs(spread) * 2.0)
                description = f"{name} in place ({label}, spread {spread:+.1%})"

            return TechnicalSignal(
                indicator=IndicatorName.MOVING_AVERAGES.value,
                signal=signal,
                strength=strength,
                value=spread * 100.0,
                timestamp=averages.index[-1],
                description=description,
            )

        return None

    def compute_all(self, df: pd.DataFrame) -> Dict[IndicatorName, Tuple[pd.DataFrame, Optional[TechnicalSignal]]]:
        return {
            IndicatorName.MACD: self.analyze_macd(df),
            IndicatorName.ADX: self.analyze_adx(df),
            IndicatorName.MOVING_AVERAGES: self.analyze_moving_averages(df),
        }


# =============================================================================
# FAMILY 3: VOLATILITY SYSTEMS
# =============================================================================

class VolatilityIndicators:
    """Bollinger Bands (Bollinger, 1980s)."""

    def __init__(self, config: AnalysisConfig = DEFAULT_CONFIG):
        self.config = config

    @staticmethod
    def calculate_bollinger_bands(
        close: pd.Series,
        period: int = 20,
        std_dev: float = 2.0
    ) -> pd.DataFrame:
        """
        Calculate Bollinger Bands.

        Middle Band = SMA(period)
        Upper/Lower Band = Middle +- std_dev * population std

        %B = (Close - Lower) / (Upper - Lower), 0.5 when the bands collapse
        Bandwidth = (Upper - Lower) / Middle, 0 when Middle is 0

        Returns
        -------
        pd.DataFrame
            Columns ``upper``, ``middle``, ``lower``, ``percent_b``, ``bandwidth``
        """
        middle = sma(close, period)
        std = close.rolling(window=period, min_periods=period).std(ddof=0)
        # Rolling std of a constant window can come back as tiny float noise
        std = std.where(std > ZERO_TOLERANCE * middle.abs().clip(lower=1.0), 0.0).where(std.notna())

        upper = middle + std_dev * std
        lower = middle - std_dev * std

        percent_b = _ratio(close - lower, upper - lower, fill=0.5)
        bandwidth = _ratio(upper - lower, middle, fill=0.0)

        return pd.DataFrame({
            'upper': upper,
            'middle': middle,
            'lower': lower,
            'percent_b': percent_b,
            'bandwidth': bandwidth,
        }, index=close.index)

    def analyze_bollinger(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        cfg = self.config.bollinger
        history = self.calculate_bollinger_bands(df['close'], cfg.period, cfg.std_dev).dropna()
        return history, self.generate_bollinger_signal(history, df['close'])

    def generate_bollinger_signal(self, history: pd.DataFrame, close: pd.Series) -> Optional[TechnicalSignal]:
        """
        Band-touch signal: buy at/below the lower band, sell at/above the upper.

        Collapsed bands (flat prices) always give hold. A squeeze that ends
        this bar (bandwidth back above the threshold and expanding) lifts a
        hold to oscillator strength. Band walking is reported in the
        description.
        """
        if history.empty:
            return None

        row = history.iloc[-1]
        price = float(close.iloc[-1])
        upper, lower = float(row['upper']), float(row['lower'])
        percent_b = float(row['percent_b'])
        bandwidth = float(row['bandwidth'])
        threshold = self.config.bollinger.squeeze_threshold
        squeeze = bandwidth < threshold
        squeeze_ending = False
        if len(history) >= 2:
            prev_bandwidth = float(history['bandwidth'].iloc[-2])
            squeeze_ending = (
                prev_bandwidth < threshold
                and not squeeze
                and bandwidth > prev_bandwidth * SQUEEZE_EXPANSION
            )

        if upper == lower:
            signal, strength = Signal.HOLD, HOLD_STRENGTH
            description = "Bollinger Bands collapsed (no volatility)"
        elif price <= lower:
            signal = Signal.BUY
            strength = OSCILLATOR_STRENGTH + (0.2 if percent_b < 0 else 0.0) + (0.1 if squeeze else 0.0)
            description = "Price at or below lower Bollinger Band"
        elif price >= upper:
            signal = Signal.SELL
            strength = OSCILLATOR_STRENGTH + (0.2 if percent_b > 1 else 0.0) + (0.1 if squeeze else 0.0)
            description = "Price at or above upper Bollinger Band"
        else:
            signal, strength = Signal.HOLD, HOLD_STRENGTH
            description = f"Price inside Bollinger Bands (%B {percent_b:.2f})"

        if squeeze and upper != lower:
            description += "; band squeeze"
        if squeeze_ending:
            description += "; squeeze ending, volatility expansion expected"
            if signal is Signal.HOLD:
                strength = OSCILLATOR_STRENGTH

        walking = detect_band_walking(close, history)
        if walking is not None:
            description += f"; walking the {walking} band"

        return TechnicalSignal(
            indicator=IndicatorName.BOLLINGER_BANDS.value,
            signal=signal,
            strength=strength,
            value=percent_b,
            timestamp=history.index[-1],
            description=description,
        )

    def compute_all(self, df: pd.DataFrame) -> Dict[IndicatorName, Tuple[pd.DataFrame, Optional[TechnicalSignal]]]:
        return {IndicatorName.BOLLINGER_BANDS: self.analyze_bollinger(df)}


# =============================================================================
# FAMILY 4: VOLUME ANALYSIS
# =============================================================================

class VolumeIndicators:
    """
    Volume-based indicators.

    Indicators implemented:
    - OBV (On-Balance Volume): Granville, 1963
    - VPT (Volume Price Trend)
    - A/D line (Accumulation/Distribution): Williams, Chaikin
    """

    def __init__(self, config: AnalysisConfig = DEFAULT_CONFIG):
        self.config = config

    @staticmethod
    def calculate_obv(close: pd.Series, volume: pd.Series) -> pd.Series:
        """
        On-Balance Volume.

        OBV starts at 0 and adds (subtracts) the bar's volume when the close
        rises (falls); unchanged closes and zero volume add nothing.
        """
        direction = np.sign(close.diff()).fillna(0.0)
        return (direction * volume.fillna(0.0)).cumsum().rename('obv')

    @staticmethod
    def calculate_vpt(close: pd.Series, volume: pd.Series) -> pd.Series:
        """Volume Price Trend: cumulative volume weighted by percentage change."""
        prev_close = close.shift(1)
        change = _ratio(close - prev_close, prev_close, fill=0.0).fillna(0.0)
        return (change * volume.fillna(0.0)).cumsum().rename('vpt')

    @staticmethod
    def calculate_ad_line(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        volume: pd.Series
    ) -> pd.Series:
        """Accumulation/Distribution line; bars with no range contribute 0."""
        multiplier = _ratio((close - low) - (high - close), high - low, fill=0.0).fillna(0.0)
        return (multiplier * volume.fillna(0.0)).cumsum().rename('ad_line')

    def analyze_obv(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[TechnicalSignal]]:
        history = pd.concat([
            self.calculate_obv(df['close'], df['volume']),
            self.calculate_vpt(df['close'], df['volume']),
            self.calculate_ad_line(df['high'], df['low'], df['close'], df['volume']),
        ], axis=1)
        return history, self.generate_obv_signal(history['obv'], df['close'], df['volume'])

    def generate_obv_signal(
        self,
        obv: pd.Series,
        close: pd.Series,
        volume: pd.Series
    ) -> Optional[TechnicalSignal]:
        """
        Compare OBV trend with price trend over the lookback window.

        Both trends are linear-regression slopes scaled to the window:
        price as a fraction of its mean, OBV as a fraction of the volume
        traded in the window.

        - opposite trends: divergence warning (hold)
        - OBV rising with price not falling: buy
        - OBV falling with price not rising: sell
        - flat OBV: hold
        """
        cfg = self.config.obv
        n = min(cfg.lookback, len(obv))
        if n < cfg.min_points:
            return None

        window_obv = obv.iloc[-n:].to_numpy(dtype=float)
        window_close = close.iloc[-n:].to_numpy(dtype=float)
        window_volume = float(volume.iloc[-n:].fillna(0.0).abs().sum())
        x = np.arange(n, dtype=float)

        price_slope = stats.linregress(x, window_close).slope
        obv_slope = stats.linregress(x, window_obv).slope
        price_trend = safe_divide(price_slope * n, float(np.mean(np.abs(window_close))))
        obv_trend = safe_divide(obv_slope * n, window_volume)

        price_dir = int(np.sign(price_trend)) if abs(price_trend) >= OBV_PRICE_TREND_THRESHOLD else 0
        obv_dir = int(np.sign(obv_trend)) if abs(obv_trend) >= cfg.trend_threshold else 0
        corr = correlation(window_close, window_obv)

        if price_dir != 0 and obv_dir != 0 and price_dir != obv_dir:
            signal = Signal.HOLD
            strength = min(0.8, 0.5 + abs(obv_trend) * 0.3)
            kind = "bearish" if price_dir > 0 else "bullish"
            description = f"OBV {kind} divergence: price and volume trends disagree"
        elif obv_dir > 0:
            signal = Signal.BUY
            strength = min(0.8, 0.5 + abs(corr) * 0.3)
            description = "OBV rising, volume confirms price"
        elif obv_dir < 0:
            signal = Signal.SELL
            strength = min(0.8, 0.5 + abs(corr) * 0.3)
            description = "OBV falling, volume confirms price"
        else:
            signal = Signal.HOLD
            strength = HOLD_STRENGTH
            description = "OBV flat, no volume confirmation"

        return TechnicalSignal(
            indicator=IndicatorName.OBV.value,
            signal=signal,
            strength=strength,
            value=float(obv.iloc[-1]),
            timestamp=obv.index[-1],
            description=description,
        )

    def compute_all(self, df: pd.DataFrame) -> Dict[IndicatorName, Tuple[pd.DataFrame, Optional[TechnicalSignal]]]:
        return {IndicatorName.OBV: self.analyze_obv(df)}


# =============================================================================
# LOOKBACK TABLE
# =============================================================================

def indicator_lookback(indicator: IndicatorName, config: AnalysisConfig = DEFAULT_CONFIG) -> int:
    """Points required before ``indicator`` produces its first value."""
    lookbacks = {
        IndicatorName.RSI: config.rsi.period + 1,
        IndicatorName.MACD: config.macd.slow + config.macd.signal - 1,
        IndicatorName.BOLLINGER_BANDS: config.bollinger.period,
        IndicatorName.STOCHASTIC: config.stochastic.k_period + config.stochastic.d_period - 1,
        IndicatorName.WILLIAMS_R: config.williams_r.period,
        IndicatorName.ADX: 2 * config.adx.period,
        IndicatorName.OBV: 1,
        IndicatorName.MOVING_AVERAGES: min(config.moving_averages.sma_periods + config.moving_averages.ema_periods),
    }
    if indicator not in lookbacks:
        raise KeyError(f"No lookback defined for {indicator}")
    return lookbacks[indicator]
