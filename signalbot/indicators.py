"""Technical indicators computed from candle sequences.

Series returned here are unpadded: a series built with a warmup of ``w``
candles has ``len(candles) - w`` values and its first value belongs to the
candle at position ``w``. Insufficient history yields an empty list or
``None``; only :func:`rsi` and :func:`rsi_series` raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientDataError
from .models import Candle, VolumeData


@dataclass(frozen=True)
class MACDSeries:
    macd_line: List[float]
    signal_line: List[float]
    histogram: List[float]
    offset: int  # candle position of macd_line[0]
    signal_offset: int  # candle position of signal_line[0] / histogram[0]


@dataclass(frozen=True)
class BollingerBands:
    upper: List[float]
    middle: List[float]
    lower: List[float]
    offset: int


def closes(candles: Sequence[Candle]) -> List[float]:
    return [candle.close for candle in candles]


def volumes(candles: Sequence[Candle]) -> List[float]:
    return [candle.volume for candle in candles]


def sma(values: Sequence[float], period: int) -> List[float]:
    if period <= 0 or len(values) < period:
        return []
    window_sum = sum(values[:period])
    result = [window_sum / period]
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        result.append(window_sum / period)
    return result


def ema(values: Sequence[float], period: int) -> List[float]:
    """EMA seeded with the simple average of the first ``period`` values."""
    if period <= 0 or len(values) < period:
        return []
    multiplier = 2 / (period + 1)
    current = sum(values[:period]) / period
    result = [current]
    for value in values[period:]:
        current = value * multiplier + current * (1 - multiplier)
        result.append(current)
    return result


def _rsi_from(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def rsi_series(prices: Sequence[float], period: int = 14) -> List[float]:
    """Wilder RSI for every position from ``period`` onwards."""
    if len(prices) < period + 1:
        raise InsufficientDataError("RSI", period + 1, len(prices))

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [delta if delta > 0 else 0.0 for delta in deltas]
    losses = [-delta if delta < 0 else 0.0 for delta in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    result = [_rsi_from(avg_gain, avg_loss)]
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result.append(_rsi_from(avg_gain, avg_loss))
    return result


def rsi(candles: Sequence[Candle], period: int = 14) -> float:
    """Latest RSI value of the candle closes."""
    return rsi_series(closes(candles), period)[-1]


def rsi_zone(value: float) -> str:
    if value >= 70:
        return "OVERBOUGHT"
    if value <= 30:
        return "OVERSOLD"
    if value >= 60:
        return "BULLISH"
    if value <= 40:
        return "BEARISH"
    return "NEUTRAL"


def macd(prices: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MACDSeries]:
    if len(prices) < slow:
        return None
    fast_ema = ema(prices, fast)
    slow_ema = ema(prices, slow)
    # fast_ema starts at fast - 1, slow_ema at slow - 1
    shift = slow - fast
    macd_line = [fast_ema[i + shift] - slow_ema[i] for i in range(len(slow_ema))]
    signal_line = ema(macd_line, signal)
    histogram = [macd_line[i + signal - 1] - signal_line[i] for i in range(len(signal_line))]
    return MACDSeries(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=histogram,
        offset=slow - 1,
        signal_offset=slow + signal - 2,
    )


def macd_trend(series: Optional[MACDSeries]) -> str:
    if series is None or not series.histogram:
        return "NEUTRAL"
    line = series.macd_line[-1]
    signal_value = series.signal_line[-1]
    histogram = series.histogram[-1]
    if line > signal_value and histogram > 0:
        return "BULLISH"
    if line < signal_value and histogram < 0:
        return "BEARISH"
    return "NEUTRAL"


def stochastic(candles: Sequence[Candle], k_period: int = 14, d_period: int = 3) -> Tuple[List[float], List[float]]:
    """%K from position ``k_period - 1``, %D (SMA of %K) from ``k_period + d_period - 2``."""
    if len(candles) < k_period:
        return [], []
    k_values: List[float] = []
    for i in range(k_period - 1, len(candles)):
        window = candles[i - k_period + 1:i + 1]
        highest = max(candle.high for candle in window)
        lowest = min(candle.low for candle in window)
        if highest == lowest:
            k_values.append(50.0)
        else:
            k_values.append((candles[i].close - lowest) / (highest - lowest) * 100)
    return k_values, sma(k_values, d_period)


def bollinger_bands(prices: Sequence[float], period: int = 20, std_multiplier: float = 2.0) -> Optional[BollingerBands]:
    if len(prices) < period:
        return None
    upper: List[float] = []
    middle: List[float] = []
    lower: List[float] = []
    for i in range(period - 1, len(prices)):
        window = np.asarray(prices[i - period + 1:i + 1], dtype=float)
        mean = float(window.mean())
        deviation = float(window.std())
        middle.append(mean)
        upper.append(mean + std_multiplier * deviation)
        lower.append(mean - std_multiplier * deviation)
    return BollingerBands(upper=upper, middle=middle, lower=lower, offset=period - 1)


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    ranges: List[float] = []
    for previous, current in zip(candles, candles[1:]):
        ranges.append(max(
            current.high - current.low,
            abs(current.high - previous.close),
            abs(current.low - previous.close),
        ))
    return ranges


def atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Simple mean of the last ``period`` true ranges, 0.0 without enough data."""
    if len(candles) < period + 1:
        return 0.0
    recent = true_ranges(candles)[-period:]
    return sum(recent) / len(recent)


def vwap(candles: Sequence[Candle], period: int = 20) -> Optional[float]:
    if len(candles) < period:
        return None
    total_volume = 0.0
    total_value = 0.0
    for candle in candles[-period:]:
        total_value += candle.typical_price * candle.volume
        total_volume += candle.volume
    return total_value / total_volume if total_volume > 0 else None


def volume_trend(candles: Sequence[Candle], period: int = 5) -> str:
    """Least-squares slope of the recent volumes."""
    if len(candles) < period + 1:
        return "STABLE"
    recent = volumes(candles)[-period:]
    slope = float(np.polyfit(np.arange(len(recent)), np.asarray(recent, dtype=float), 1)[0])
    if slope > 0.1:
        return "INCREASING"
    if slope < -0.1:
        return "DECREASING"
    return "STABLE"


def volume_profile(candles: Sequence[Candle]) -> Dict[str, float]:
    if not candles:
        return {"total": 0.0, "average": 0.0, "max": 0.0, "min": 0.0, "volatility": 0.0}
    values = np.asarray(volumes(candles), dtype=float)
    return {
        "total": float(values.sum()),
        "average": float(values.mean()),
        "max": float(values.max()),
        "min": float(values.min()),
        "volatility": float(values.std()),
    }


def calculate_volume_data(candles: Sequence[Candle], period: int = 20) -> Optional[VolumeData]:
    """Current volume against the mean of the ``period`` candles before it."""
    if len(candles) < period + 1:
        return None
    current_volume = candles[-1].volume
    previous = volumes(candles[-period - 1:-1])
    average_volume = sum(previous) / len(previous)
    ratio = current_volume / average_volume if average_volume > 0 else 1.0
    vwap_value = vwap(candles, period)
    return VolumeData(
        current_volume=current_volume,
        average_volume=average_volume,
        volume_ratio=ratio,
        volume_trend=volume_trend(candles),
        vwap=vwap_value,
        price_above_vwap=bool(vwap_value) and candles[-1].close > vwap_value,
        profile=volume_profile(candles[-period:]),
    )


def step_trend(values: Sequence[float]) -> str:
    """Majority direction of consecutive steps."""
    up = 0
    down = 0
    for previous, current in zip(values, values[1:]):
        if current > previous:
            up += 1
        elif current < previous:
            down += 1
    if up > down:
        return "INCREASING"
    if down > up:
        return "DECREASING"
    return "STABLE"


def support_resistance(candles: Sequence[Candle], lookback: int = 20) -> Tuple[float, float]:
    """(lowest low, highest high) over the lookback, zeros without enough data."""
    if len(candles) < lookback:
        return 0.0, 0.0
    recent = candles[-lookback:]
    return min(candle.low for candle in recent), max(candle.high for candle in recent)


def fibonacci_levels(high: float, low: float) -> Dict[str, float]:
    diff = high - low
    return {
        "0.236": high - diff * 0.236,
        "0.382": high - diff * 0.382,
        "0.5": high - diff * 0.5,
        "0.618": high - diff * 0.618,
    }
