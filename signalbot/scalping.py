"""Short timeframe scalping triggers.

Each check works on one candle snapshot (the latest candle may be open) and
returns at most one signal. Checks below ``min_confidence`` are dropped.
The shared per symbol/timeframe cooldown lives in the tracker.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .config import ScalpingConfig
from .indicators import bollinger_bands, closes, ema, stochastic, volumes
from .models import Candle, ScalpingSignal

Verdict = Tuple[str, float]

BOLLINGER_BREAKOUT_CONFIDENCE = 80.0
BOLLINGER_TOUCH_CONFIDENCE = 75.0
BOLLINGER_TOUCH_TOLERANCE = 0.001


def classify_ema_cross(prev_fast: float, prev_slow: float, fast: float, slow: float) -> Optional[Verdict]:
    if prev_fast <= prev_slow and fast > slow:
        return "BUY", min(90.0, 60 + (fast - slow) / slow * 1000)
    if prev_fast >= prev_slow and fast < slow:
        return "SELL", min(90.0, 60 + (slow - fast) / fast * 1000)
    return None


def classify_stochastic_cross(
    prev_k: float,
    prev_d: float,
    k: float,
    d: float,
    oversold: float = 20.0,
    overbought: float = 80.0,
) -> Optional[Verdict]:
    """%K crossing %D within 10 points of an extreme zone."""
    if prev_k <= prev_d and k > d and k < oversold + 10:
        return "BUY", min(85.0, 50 + (oversold - k) * 0.5)
    if prev_k >= prev_d and k < d and k > overbought - 10:
        return "SELL", min(85.0, 50 + (k - overbought) * 0.5)
    return None


def classify_bollinger(price: float, upper: float, lower: float) -> Optional[Verdict]:
    if price < lower:
        return "BUY", BOLLINGER_BREAKOUT_CONFIDENCE
    if price > upper:
        return "SELL", BOLLINGER_BREAKOUT_CONFIDENCE
    if price <= lower * (1 + BOLLINGER_TOUCH_TOLERANCE):
        return "BUY", BOLLINGER_TOUCH_CONFIDENCE
    if price >= upper * (1 - BOLLINGER_TOUCH_TOLERANCE):
        return "SELL", BOLLINGER_TOUCH_CONFIDENCE
    return None


def classify_volume_spike(current_volume: float, average_volume: float, threshold: float = 1.5) -> Optional[Verdict]:
    if average_volume <= 0:
        return None
    ratio = current_volume / average_volume
    if ratio >= threshold:
        return "BUY", min(90.0, 60 + (ratio - 1) * 10)
    return None


def _signal(kind, verdict: Optional[Verdict], price, reason, details, config, timestamp) -> Optional[ScalpingSignal]:
    if verdict is None:
        return None
    action, confidence = verdict
    if confidence < config.min_confidence:
        return None
    return ScalpingSignal(
        kind=kind,
        action=action,
        price=price,
        confidence=confidence,
        reason=reason,
        details=details,
        timestamp=timestamp,
    )


def detect_ema_crossover(candles: Sequence[Candle], price: float, config: ScalpingConfig = ScalpingConfig()) -> Optional[ScalpingSignal]:
    prices = closes(candles)
    fast = ema(prices, config.ema_fast_period)
    slow = ema(prices, config.ema_slow_period)
    if len(fast) < 2 or len(slow) < 2:
        return None
    verdict = classify_ema_cross(fast[-2], slow[-2], fast[-1], slow[-1])
    reason = f"EMA{config.ema_fast_period} crossed EMA{config.ema_slow_period}"
    details = {"ema_fast": fast[-1], "ema_slow": slow[-1]}
    return _signal("EMA_CROSS", verdict, price, reason, details, config, candles[-1].open_time)


def detect_stochastic_signal(candles: Sequence[Candle], price: float, config: ScalpingConfig = ScalpingConfig()) -> Optional[ScalpingSignal]:
    k_values, d_values = stochastic(candles, config.stochastic_k_period, config.stochastic_d_period)
    if len(k_values) < 2 or len(d_values) < 2:
        return None
    verdict = classify_stochastic_cross(
        k_values[-2], d_values[-2], k_values[-1], d_values[-1],
        config.stochastic_oversold, config.stochastic_overbought,
    )
    details = {"k": k_values[-1], "d": d_values[-1]}
    return _signal("STOCHASTIC", verdict, price, "%K crossed %D near an extreme zone", details, config, candles[-1].open_time)


def detect_bollinger_signal(candles: Sequence[Candle], price: float, config: ScalpingConfig = ScalpingConfig()) -> Optional[ScalpingSignal]:
    bands = bollinger_bands(closes(candles), config.bollinger_period, config.bollinger_std_dev)
    if bands is None:
        return None
    upper, middle, lower = bands.upper[-1], bands.middle[-1], bands.lower[-1]
    verdict = classify_bollinger(price, upper, lower)
    details = {"upper": upper, "middle": middle, "lower": lower}
    return _signal("BOLLINGER", verdict, price, "Price at or beyond a Bollinger band", details, config, candles[-1].open_time)


def detect_volume_spike(candles: Sequence[Candle], price: float, config: ScalpingConfig = ScalpingConfig()) -> Optional[ScalpingSignal]:
    """Latest volume against the mean of the ``volume_period`` candles before it."""
    if len(candles) < config.volume_period + 1:
        return None
    previous = volumes(candles[-config.volume_period - 1:-1])
    average = sum(previous) / len(previous)
    current = candles[-1].volume
    verdict = classify_volume_spike(current, average, config.volume_spike_threshold)
    details = {"volume": current, "average_volume": average}
    return _signal("VOLUME_SPIKE", verdict, price, "Volume spike momentum", details, config, candles[-1].open_time)


DETECTORS = (detect_ema_crossover, detect_stochastic_signal, detect_bollinger_signal, detect_volume_spike)


def scan(candles: Sequence[Candle], config: ScalpingConfig = ScalpingConfig(), price: Optional[float] = None) -> List[ScalpingSignal]:
    """Run every scalping check once; several may fire in the same tick."""
    if not candles:
        return []
    if price is None:
        price = candles[-1].close
    signals = []
    for detector in DETECTORS:
        signal = detector(candles, price, config)
        if signal is not None:
            signals.append(signal)
    return signals
