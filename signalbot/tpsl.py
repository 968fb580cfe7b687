"""Take profit / stop loss levels for emitted signals."""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

from .config import TPSLConfig, TPSLRule
from .indicators import atr as average_true_range
from .indicators import fibonacci_levels, support_resistance
from .logger import get_logger
from .models import (
    MACD_DIVERGENCE,
    MARKET_STRUCTURE,
    RSI_DIVERGENCE,
    VOLUME_DIVERGENCE,
    VOLUME_SPIKE,
    Candle,
    TPSLResult,
)

logger = get_logger(__name__)

CONFIDENCE_FACTORS = {
    RSI_DIVERGENCE: 50,
    MACD_DIVERGENCE: 45,
    MARKET_STRUCTURE: 60,
    VOLUME_SPIKE: 40,
    VOLUME_DIVERGENCE: 55,
}

REVERSAL_MULTIPLIERS = {
    "HIGH": (1.3, 0.6),
    "MEDIUM": (1.1, 0.8),
    "LOW": (0.9, 1.1),
}


def risk_reward_ratio(entry: float, take_profit: float, stop_loss: float) -> float:
    risk = abs(entry - stop_loss)
    reward = abs(take_profit - entry)
    return reward / risk if risk > 0 else 0.0


def validate_levels(entry: float, take_profit: float, stop_loss: float, ratio: float) -> Tuple[str, ...]:
    """Advisory warnings for a level set; an empty tuple means it looks sane."""
    warnings = []
    if ratio < 1:
        warnings.append("Risk/reward below 1: risk exceeds reward")
    if ratio > 5:
        warnings.append("Risk/reward above 5: target may be unrealistic")
    if entry and abs(stop_loss - entry) / entry < 0.005:
        warnings.append("Stop loss closer than 0.5% to entry")
    if entry and abs(take_profit - entry) / entry > 0.1:
        warnings.append("Take profit farther than 10% from entry")
    return tuple(warnings)


def risk_level(ratio: float) -> str:
    if ratio >= 3:
        return "LOW"
    if ratio >= 2:
        return "MEDIUM"
    if ratio >= 1.5:
        return "HIGH"
    return "VERY_HIGH"


def position_size(balance: float, risk_percent: float, entry: float, stop_loss: float) -> float:
    risk_per_unit = abs(entry - stop_loss)
    if risk_per_unit == 0:
        return 0.0
    return balance * (risk_percent / 100) / risk_per_unit


def volume_multipliers(volume_ratio: float) -> Tuple[float, float]:
    if volume_ratio > 3:
        return 1.5, 0.7
    if volume_ratio > 2:
        return 1.2, 0.8
    return 0.8, 1.2


def _clip_stop(entry: float, bullish: bool, percent_stop: float, level: float) -> float:
    """Keep the tighter of the percentage stop and ``level``, on the losing side of entry."""
    if bullish:
        stop = max(percent_stop, level)
        return stop if stop < entry else percent_stop
    stop = min(percent_stop, level)
    return stop if stop > entry else percent_stop


class TPSLCalculator:
    """Prices signals with percentage targets adjusted by ATR, structure or strength."""

    def __init__(self, config: TPSLConfig = TPSLConfig()) -> None:
        self.config = config

    def _atr(self, candles: Sequence[Candle]) -> float:
        return average_true_range(candles, self.config.atr_period)

    def _levels(
        self,
        entry: float,
        bullish: bool,
        tp_percent: float,
        sl_percent: float,
        atr_distance: float,
    ) -> Tuple[float, float]:
        if bullish:
            take_profit = entry * (1 + tp_percent / 100)
            stop_loss = entry * (1 - sl_percent / 100)
            if atr_distance > 0:
                stop_loss = _clip_stop(entry, True, stop_loss, entry - atr_distance)
        else:
            take_profit = entry * (1 - tp_percent / 100)
            stop_loss = entry * (1 + sl_percent / 100)
            if atr_distance > 0:
                stop_loss = _clip_stop(entry, False, stop_loss, entry + atr_distance)
        return take_profit, stop_loss

    def _result(
        self,
        signal_type: str,
        bullish: bool,
        entry: float,
        take_profit: float,
        stop_loss: float,
        tp_percent: float,
        sl_percent: float,
        atr_value: float,
        method: str,
    ) -> TPSLResult:
        ratio = risk_reward_ratio(entry, take_profit, stop_loss)
        return TPSLResult(
            signal_type=signal_type,
            direction="BULLISH" if bullish else "BEARISH",
            entry_price=entry,
            take_profit=take_profit,
            stop_loss=stop_loss,
            tp_percent=tp_percent,
            sl_percent=sl_percent,
            risk_reward_ratio=ratio,
            atr=atr_value,
            confidence=min(100.0, ratio * CONFIDENCE_FACTORS[signal_type]),
            risk_level=risk_level(ratio),
            method=method,
            warnings=validate_levels(entry, take_profit, stop_loss, ratio),
        )

    def _atr_based(self, signal_type: str, rule: TPSLRule, entry: float, bullish: bool, candles: Sequence[Candle]) -> TPSLResult:
        atr_value = self._atr(candles)
        take_profit, stop_loss = self._levels(entry, bullish, rule.tp_percent, rule.sl_percent, atr_value * rule.atr_multiplier)
        return self._result(signal_type, bullish, entry, take_profit, stop_loss,
                            rule.tp_percent, rule.sl_percent, atr_value, f"{signal_type}_ATR")

    def rsi_divergence(self, entry: float, bullish: bool, candles: Sequence[Candle]) -> TPSLResult:
        return self._atr_based(RSI_DIVERGENCE, self.config.rsi_divergence, entry, bullish, candles)

    def macd_divergence(self, entry: float, bullish: bool, candles: Sequence[Candle]) -> TPSLResult:
        return self._atr_based(MACD_DIVERGENCE, self.config.macd_divergence, entry, bullish, candles)

    def market_structure(self, entry: float, structure_type: str, candles: Sequence[Candle]) -> TPSLResult:
        rule = self.config.market_structure
        bullish = structure_type in ("HH", "HL")
        atr_value = self._atr(candles)
        if not rule.adaptive:
            take_profit, stop_loss = self._levels(entry, bullish, rule.tp_percent, rule.sl_percent, atr_value * rule.atr_multiplier)
            return self._result(MARKET_STRUCTURE, bullish, entry, take_profit, stop_loss,
                                rule.tp_percent, rule.sl_percent, atr_value, "MARKET_STRUCTURE_BASIC")

        support, resistance = support_resistance(candles, self.config.support_lookback)
        take_profit, stop_loss = self._levels(entry, bullish, rule.tp_percent, rule.sl_percent, 0.0)
        if bullish:
            if support > 0:
                stop_loss = _clip_stop(entry, True, stop_loss, support - atr_value * 0.5)
            method = "MARKET_STRUCTURE_SUPPORT"
        else:
            if resistance > 0:
                stop_loss = _clip_stop(entry, False, stop_loss, resistance + atr_value * 0.5)
            method = "MARKET_STRUCTURE_RESISTANCE"
        return self._result(MARKET_STRUCTURE, bullish, entry, take_profit, stop_loss,
                            rule.tp_percent, rule.sl_percent, atr_value, method)

    def volume_spike(self, entry: float, volume_ratio: float, candles: Sequence[Candle]) -> TPSLResult:
        rule = self.config.volume_spike
        tp_mult, sl_mult = volume_multipliers(volume_ratio) if rule.adaptive else (1.0, 1.0)
        atr_value = self._atr(candles)
        tp_percent = rule.tp_percent * tp_mult
        sl_percent = rule.sl_percent * sl_mult
        take_profit, stop_loss = self._levels(entry, True, tp_percent, sl_percent, atr_value * rule.atr_multiplier * sl_mult)
        return self._result(VOLUME_SPIKE, True, entry, take_profit, stop_loss,
                            tp_percent, sl_percent, atr_value, "VOLUME_SPIKE_DYNAMIC")

    def volume_divergence(self, entry: float, reversal_probability: str, bullish: bool, candles: Sequence[Candle]) -> TPSLResult:
        rule = self.config.volume_divergence
        tp_mult, sl_mult = REVERSAL_MULTIPLIERS.get(reversal_probability, (1.0, 1.0)) if rule.adaptive else (1.0, 1.0)
        atr_value = self._atr(candles)
        tp_percent = rule.tp_percent * tp_mult
        sl_percent = rule.sl_percent * sl_mult
        take_profit, stop_loss = self._levels(entry, bullish, tp_percent, sl_percent, atr_value * rule.atr_multiplier * sl_mult)
        return self._result(VOLUME_DIVERGENCE, bullish, entry, take_profit, stop_loss,
                            tp_percent, sl_percent, atr_value, "VOLUME_DIVERGENCE_REVERSAL")

    def for_signal(self, signal, entry: float, candles: Sequence[Candle]) -> Optional[TPSLResult]:
        """Dispatch on the signal's type; scalping signals are not priced."""
        signal_type = getattr(signal, "signal_type", None)
        bullish = getattr(signal, "direction", "BULLISH") == "BULLISH"
        if signal_type == RSI_DIVERGENCE:
            return self.rsi_divergence(entry, bullish, candles)
        if signal_type == MACD_DIVERGENCE:
            return self.macd_divergence(entry, bullish, candles)
        if signal_type == MARKET_STRUCTURE:
            return self.market_structure(entry, signal.structure_type, candles)
        if signal_type == VOLUME_SPIKE:
            return self.volume_spike(entry, signal.volume_ratio, candles)
        if signal_type == VOLUME_DIVERGENCE:
            return self.volume_divergence(entry, signal.reversal_probability, bullish, candles)
        logger.debug(f"No TP/SL rule for {signal_type}")
        return None

    def fibonacci_targets(self, candles: Sequence[Candle]) -> Dict[str, float]:
        support, resistance = support_resistance(candles, self.config.support_lookback)
        if not resistance:
            return {}
        return fibonacci_levels(resistance, support)
