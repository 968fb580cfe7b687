"""Keyed tracker state, alert gating and the signal registry."""

from __future__ import annotations

import random
import string
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Tuple

from .config import EngineConfig, GatePolicy, TrackingConfig
from .divergence import detect_rsi_divergence
from .logger import get_logger
from .models import (
    RSI_DIVERGENCE,
    Candle,
    DivergenceSignal,
    GateMark,
    SignalRecord,
    StructureSignal,
    TrackerState,
    VolumeSpike,
)

logger = get_logger(__name__)


class StateStore:
    """TrackerState per symbol then timeframe, created lazily."""

    def __init__(self, states: Optional[Dict[str, Dict[str, TrackerState]]] = None) -> None:
        self._states: Dict[str, Dict[str, TrackerState]] = states or {}

    def get(self, symbol: str, timeframe: str) -> TrackerState:
        by_timeframe = self._states.setdefault(symbol, {})
        if timeframe not in by_timeframe:
            by_timeframe[timeframe] = TrackerState()
        return by_timeframe[timeframe]

    def put(self, symbol: str, timeframe: str, state: TrackerState) -> None:
        self._states.setdefault(symbol, {})[timeframe] = state

    def __contains__(self, key: Tuple[str, str]) -> bool:
        symbol, timeframe = key
        return timeframe in self._states.get(symbol, {})

    def __iter__(self) -> Iterator[Tuple[str, str, TrackerState]]:
        for symbol, by_timeframe in self._states.items():
            for timeframe, state in by_timeframe.items():
                yield symbol, timeframe, state

    def __len__(self) -> int:
        return sum(len(by_timeframe) for by_timeframe in self._states.values())

    def to_dict(self) -> Dict[str, Dict[str, dict]]:
        return {
            symbol: {timeframe: state.to_dict() for timeframe, state in by_timeframe.items()}
            for symbol, by_timeframe in self._states.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, dict]]) -> "StateStore":
        return cls({
            symbol: {timeframe: TrackerState.from_dict(state) for timeframe, state in by_timeframe.items()}
            for symbol, by_timeframe in data.items()
        })


def gate_fields(signal) -> Tuple[str, str, float, float, float]:
    """(direction, sub_type, price, confidence, ratio) used to compare alerts."""
    if isinstance(signal, DivergenceSignal):
        return signal.direction, "", signal.reference_price, signal.confidence, 0.0
    if isinstance(signal, StructureSignal):
        return signal.direction, signal.structure_type, signal.price, signal.confidence, 0.0
    if isinstance(signal, VolumeSpike):
        return signal.direction, signal.severity, signal.price, 0.0, signal.volume_ratio
    return signal.direction, "", signal.price, signal.confidence, 0.0


def gate_allows(state: TrackerState, signal_type: str, signal, policy: GatePolicy, now_ms: int) -> bool:
    """Cooldown plus change-significance check against the last emitted alert."""
    mark = state.gates.get(signal_type)
    if mark is None:
        return True
    if now_ms - mark.timestamp < policy.cooldown_ms:
        return False

    direction, sub_type, price, confidence, ratio = gate_fields(signal)
    if direction != mark.direction or sub_type != mark.sub_type:
        return True

    checks = []
    if policy.price_change is not None:
        checks.append(bool(price) and abs(price - mark.price) / price > policy.price_change)
    if policy.confidence_change is not None:
        checks.append(abs(confidence - mark.confidence) > policy.confidence_change)
    if policy.ratio_change is not None:
        checks.append(abs(ratio - mark.ratio) > policy.ratio_change)
    return any(checks) if checks else True


def mark_gate(state: TrackerState, signal_type: str, signal, now_ms: int) -> TrackerState:
    direction, sub_type, price, confidence, ratio = gate_fields(signal)
    gates = dict(state.gates)
    gates[signal_type] = GateMark(
        timestamp=now_ms,
        direction=direction,
        sub_type=sub_type,
        price=price,
        confidence=confidence,
        ratio=ratio,
    )
    return replace(state, gates=gates)


def scalping_allowed(state: TrackerState, now_ms: int, cooldown_ms: int) -> bool:
    return state.last_alert_ms is None or now_ms - state.last_alert_ms >= cooldown_ms


def mark_scalping(state: TrackerState, now_ms: int) -> TrackerState:
    return replace(state, last_alert_ms=now_ms)


def append_candle(state: TrackerState, candle: Candle, history_size: int) -> TrackerState:
    """Add a closed candle to the bounded history; stale or repeated candles are ignored."""
    last_open = state.last_open_time
    if last_open is not None and candle.open_time <= last_open:
        return state
    return replace(state, candles=(state.candles + (candle,))[-history_size:])


def apply_candle(
    state: TrackerState,
    candle: Candle,
    config: EngineConfig,
    now_ms: Optional[int] = None,
) -> Tuple[TrackerState, Optional[DivergenceSignal]]:
    """Fold one closed candle into ``state`` and run RSI divergence over the history.

    Returns the new state and the divergence signal if it passed the gate.
    The input state is never modified.
    """
    updated = append_candle(state, candle, config.history_size)
    if updated is state:
        return state, None

    signal = detect_rsi_divergence(updated.candles, config.divergence)
    if signal is None:
        return updated, None

    now_ms = candle.close_time if now_ms is None else now_ms
    if not gate_allows(updated, RSI_DIVERGENCE, signal, config.cooldowns.rsi_divergence, now_ms):
        logger.debug(f"RSI divergence suppressed by cooldown at {now_ms}")
        return updated, None
    return mark_gate(updated, RSI_DIVERGENCE, signal, now_ms), signal


def _generate_signal_id(now_ms: int) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"SIG_{now_ms}_{suffix}"


class SignalRegistry:
    """Emitted signals and their ACTIVE -> TP_HIT | SL_HIT | EXPIRED lifecycle."""

    def __init__(self, config: TrackingConfig = TrackingConfig(), records: Optional[List[SignalRecord]] = None) -> None:
        self.config = config
        self._records: Dict[str, SignalRecord] = {record.id: record for record in records or []}

    @property
    def records(self) -> List[SignalRecord]:
        return list(self._records.values())

    def get(self, signal_id: str) -> Optional[SignalRecord]:
        return self._records.get(signal_id)

    def active(self) -> List[SignalRecord]:
        return [record for record in self._records.values() if record.is_active]

    def recent(self, limit: int = 10) -> List[SignalRecord]:
        return sorted(self._records.values(), key=lambda record: record.entry_time, reverse=True)[:limit]

    def record(
        self,
        symbol: str,
        timeframe: str,
        signal_type: str,
        sub_type: str,
        direction: str,
        entry_price: float,
        take_profit: float,
        stop_loss: float,
        confidence: float,
        now_ms: int,
    ) -> Optional[SignalRecord]:
        """Register a new ACTIVE signal, or None once ``max_active_signals`` is reached."""
        if len(self.active()) >= self.config.max_active_signals:
            logger.warning(f"Active signal limit reached; {signal_type} for {symbol} not tracked")
            return None

        risk = abs(entry_price - stop_loss)
        record = SignalRecord(
            id=_generate_signal_id(now_ms),
            symbol=symbol,
            timeframe=timeframe,
            signal_type=signal_type,
            sub_type=sub_type,
            direction=direction,
            entry_price=entry_price,
            take_profit=take_profit,
            stop_loss=stop_loss,
            entry_time=now_ms,
            confidence=confidence,
            risk_reward_ratio=abs(take_profit - entry_price) / risk if risk > 0 else 0.0,
        )
        while record.id in self._records:
            record = replace(record, id=_generate_signal_id(now_ms))
        self._records[record.id] = record
        logger.info(f"Recorded {signal_type} signal {record.id} for {symbol} {timeframe}")
        return record

    def _evaluate(self, record: SignalRecord, price: float, now_ms: int) -> Optional[SignalRecord]:
        expiry_ms = self.config.signal_expiry_hours * 60 * 60 * 1000
        if now_ms - record.entry_time > expiry_ms:
            return record.close("EXPIRED", price, now_ms)
        if record.direction == "BULLISH":
            if price >= record.take_profit:
                return record.close("TP_HIT", record.take_profit, now_ms)
            if price <= record.stop_loss:
                return record.close("SL_HIT", record.stop_loss, now_ms)
        else:
            if price <= record.take_profit:
                return record.close("TP_HIT", record.take_profit, now_ms)
            if price >= record.stop_loss:
                return record.close("SL_HIT", record.stop_loss, now_ms)
        return None

    def observe_price(self, symbol: str, price: float, now_ms: int) -> List[SignalRecord]:
        """Move ACTIVE records of ``symbol`` to a terminal state; returns the closed records."""
        closed: List[SignalRecord] = []
        for record in self.active():
            if record.symbol != symbol:
                continue
            updated = self._evaluate(record, price, now_ms)
            if updated is not None:
                self._records[record.id] = updated
                closed.append(updated)
        if closed:
            counts = {status: sum(1 for r in closed if r.status == status) for status in ("TP_HIT", "SL_HIT", "EXPIRED")}
            logger.info(
                f"Updated {len(closed)} {symbol} signals: {counts['TP_HIT']} TP, "
                f"{counts['SL_HIT']} SL, {counts['EXPIRED']} expired"
            )
        return closed

    def cleanup(self, now_ms: int, days_to_keep: int = 30) -> int:
        """Drop records entered before the retention window."""
        cutoff = now_ms - days_to_keep * 24 * 60 * 60 * 1000
        stale = [signal_id for signal_id, record in self._records.items() if record.entry_time <= cutoff]
        for signal_id in stale:
            del self._records[signal_id]
        if stale:
            logger.info(f"Cleaned up {len(stale)} old signals")
        return len(stale)
