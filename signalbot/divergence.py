"""RSI, MACD and volume divergence detection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .config import DivergenceConfig, MACDConfig
from .errors import InsufficientDataError
from .indicators import closes, macd, rsi_series, step_trend, volumes
from .logger import get_logger
from .models import Candle, Direction, DivergenceSignal, PivotPoint, VolumeDivergenceSignal
from .pivots import last_two, pivot_highs, pivot_lows

logger = get_logger(__name__)

VOLUME_DIVERGENCE_TP_PERCENT = 2.2
VOLUME_DIVERGENCE_SL_PERCENT = 1.1


@dataclass(frozen=True)
class DivergenceMatch:
    direction: Direction
    price: PivotPoint
    previous_price: PivotPoint
    indicator: PivotPoint
    previous_indicator: PivotPoint

    @property
    def indicator_change(self) -> float:
        return abs(self.indicator.value - self.previous_indicator.value)


def percent_levels(price: float, bullish: bool, tp_percent: float, sl_percent: float) -> tuple:
    """(take_profit, stop_loss) a fixed percentage away from ``price``."""
    if bullish:
        return price * (1 + tp_percent / 100), price * (1 - sl_percent / 100)
    return price * (1 - tp_percent / 100), price * (1 + sl_percent / 100)


def classify_pivot_divergence(
    prices: Sequence[float],
    indicator: Sequence[float],
    *,
    offset: int = 0,
    pivot_length: int = 2,
    bull_diff: float = 0.0,
    bear_diff: float = 0.0,
    bull_level: Optional[float] = None,
    bear_level: Optional[float] = None,
    timestamps: Optional[Sequence[int]] = None,
) -> Optional[DivergenceMatch]:
    """Compare the two latest price pivots with the two latest indicator pivots.

    ``indicator[0]`` belongs to ``prices[offset]``. Bullish needs a lower
    price low with an indicator low more than ``bull_diff`` higher and at or
    below ``bull_level``; bearish is the mirror on highs. Bullish is checked
    first.
    """
    price_lows = last_two(pivot_lows(prices, pivot_length, timestamps=timestamps))
    indicator_lows = last_two(pivot_lows(indicator, pivot_length, offset=offset, timestamps=timestamps))
    if price_lows and indicator_lows:
        prev_price, cur_price = price_lows
        prev_ind, cur_ind = indicator_lows
        if (
            cur_price.value < prev_price.value
            and cur_ind.value > prev_ind.value + bull_diff
            and (bull_level is None or cur_ind.value <= bull_level)
        ):
            return DivergenceMatch("BULLISH", cur_price, prev_price, cur_ind, prev_ind)

    price_highs = last_two(pivot_highs(prices, pivot_length, timestamps=timestamps))
    indicator_highs = last_two(pivot_highs(indicator, pivot_length, offset=offset, timestamps=timestamps))
    if price_highs and indicator_highs:
        prev_price, cur_price = price_highs
        prev_ind, cur_ind = indicator_highs
        if (
            cur_price.value > prev_price.value
            and cur_ind.value < prev_ind.value - bear_diff
            and (bear_level is None or cur_ind.value >= bear_level)
        ):
            return DivergenceMatch("BEARISH", cur_price, prev_price, cur_ind, prev_ind)

    return None


def _build_signal(
    indicator_name: str,
    match: DivergenceMatch,
    confidence: float,
    tp_percent: float,
    sl_percent: float,
    timestamp: Optional[int],
) -> DivergenceSignal:
    take_profit, stop_loss = percent_levels(
        match.price.value, match.direction == "BULLISH", tp_percent, sl_percent
    )
    return DivergenceSignal(
        indicator=indicator_name,
        direction=match.direction,
        reference_price=match.price.value,
        reference_indicator_value=match.indicator.value,
        previous_price=match.previous_price.value,
        previous_indicator_value=match.previous_indicator.value,
        confidence=confidence,
        take_profit=take_profit,
        stop_loss=stop_loss,
        timestamp=timestamp,
        index=match.price.index,
    )


def detect_rsi_divergence(candles: Sequence[Candle], config: DivergenceConfig = DivergenceConfig()) -> Optional[DivergenceSignal]:
    """Pivot based RSI divergence over closed candles."""
    if len(candles) < config.min_candles:
        return None

    prices = closes(candles)
    try:
        rsi_values = rsi_series(prices, config.rsi_period)
    except InsufficientDataError as exc:
        logger.debug(f"RSI divergence skipped: {exc}")
        return None

    match = classify_pivot_divergence(
        prices,
        rsi_values,
        offset=config.rsi_period,
        pivot_length=config.pivot_length,
        bull_diff=config.bull_divergence_diff,
        bear_diff=config.bear_divergence_diff,
        bull_level=config.bull_rsi_level,
        bear_level=config.bear_rsi_level,
        timestamps=[candle.open_time for candle in candles],
    )
    if match is None:
        return None

    confidence = min(100.0, match.indicator_change * 10)
    return _build_signal("RSI", match, confidence, config.tp_percent, config.sl_percent, candles[-1].close_time)


def detect_macd_divergence(candles: Sequence[Candle], config: MACDConfig = MACDConfig()) -> Optional[DivergenceSignal]:
    """Pivot based divergence between closes and the MACD line."""
    if len(candles) < config.min_candles:
        return None

    prices = closes(candles)
    series = macd(prices, config.fast_period, config.slow_period, config.signal_period)
    if series is None:
        return None

    match = classify_pivot_divergence(
        prices,
        series.macd_line,
        offset=series.offset,
        pivot_length=config.pivot_length,
        timestamps=[candle.open_time for candle in candles],
    )
    if match is None:
        return None

    confidence = min(100.0, match.indicator_change * 1000)
    return _build_signal("MACD", match, confidence, config.tp_percent, config.sl_percent, candles[-1].close_time)


def _relative_changes(prices: Sequence[float], vols: Sequence[float]) -> tuple:
    price_change = abs(prices[-1] - prices[0]) / prices[0] if prices[0] else 0.0
    volume_change = abs(vols[-1] - vols[0]) / vols[0] if vols[0] else 0.0
    return price_change, volume_change


def reversal_probability(price_change: float, volume_change: float) -> str:
    strength = volume_change / (price_change + 0.001)
    if strength > 2.0:
        return "HIGH"
    if strength > 1.5:
        return "MEDIUM"
    return "LOW"


def volume_divergence_confidence(price_change: float, volume_change: float, direction: Direction) -> float:
    confidence = min(100.0, volume_change / (price_change + 0.001) * 30)
    confidence *= 1.2 if direction == "BEARISH" else 1.1
    return min(100.0, confidence)


def detect_volume_divergence(
    candles: Sequence[Candle],
    lookback: int = 3,
    tp_percent: float = VOLUME_DIVERGENCE_TP_PERCENT,
    sl_percent: float = VOLUME_DIVERGENCE_SL_PERCENT,
) -> Optional[VolumeDivergenceSignal]:
    """Price trend against volume trend over the last ``lookback`` steps.

    BEARISH: price rising while volume falls. BULLISH: both falling with the
    relative volume drop larger than 1.5x the relative price drop.
    """
    if len(candles) < lookback + 1:
        return None

    recent = candles[-lookback - 1:]
    prices = closes(recent)
    vols = volumes(recent)
    price_trend = step_trend(prices)
    vol_trend = step_trend(vols)
    price_change, volume_change = _relative_changes(prices, vols)

    direction: Optional[Direction] = None
    if price_trend == "INCREASING" and vol_trend == "DECREASING":
        direction = "BEARISH"
    elif price_trend == "DECREASING" and vol_trend == "DECREASING":
        if volume_change > price_change * 1.5:
            direction = "BULLISH"
    if direction is None:
        return None

    price = prices[-1]
    take_profit, stop_loss = percent_levels(price, direction == "BULLISH", tp_percent, sl_percent)
    return VolumeDivergenceSignal(
        direction=direction,
        price_trend=price_trend,
        volume_trend=vol_trend,
        price_change=price_change,
        volume_change=volume_change,
        reversal_probability=reversal_probability(price_change, volume_change),
        confidence=volume_divergence_confidence(price_change, volume_change, direction),
        price=price,
        take_profit=take_profit,
        stop_loss=stop_loss,
        timestamp=recent[-1].close_time,
    )


def signal_strength(confidence: float) -> str:
    if confidence >= 80:
        return "STRONG"
    if confidence >= 60:
        return "MEDIUM"
    if confidence >= 40:
        return "WEAK"
    return "VERY WEAK"


def is_actionable(signal) -> bool:
    """Whether a divergence signal clears its minimum confidence."""
    if isinstance(signal, VolumeDivergenceSignal):
        return signal.confidence >= 60 and signal.reversal_probability in ("MEDIUM", "HIGH")
    return signal.confidence >= 50
