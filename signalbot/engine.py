"""Per-tick orchestration of detectors, gating, pricing and notification."""

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from . import scalping
from .config import EngineConfig
from .datastore import SQLiteDataStore
from .divergence import detect_macd_divergence, detect_volume_divergence, signal_strength
from .errors import ComputationSkipped
from .indicators import rsi_zone
from .logger import get_logger
from .models import (
    MACD_DIVERGENCE,
    MARKET_STRUCTURE,
    SCALPING,
    VOLUME_DIVERGENCE,
    VOLUME_SPIKE,
    Alert,
    Candle,
    ScalpingSignal,
    SignalRecord,
    StructureSignal,
    TrackerState,
    VolumeSpike,
)
from .scheduler import due_timeframes
from .statistics import compute_statistics
from .structure import detect_market_structure
from .tpsl import TPSLCalculator
from .tracker import (
    SignalRegistry,
    StateStore,
    append_candle,
    apply_candle,
    gate_allows,
    mark_gate,
    mark_scalping,
    scalping_allowed,
)
from .utils import closed_candles, timeframe_to_ms
from .volume import detect_volume_spike

logger = get_logger(__name__)

Fetcher = Callable[[str, str], Sequence[Candle]]
Notifier = Callable[[Alert], None]

PERSISTENCE_ERRORS = (sqlite3.Error, OSError, ValueError)
SIGNAL_RETENTION_DAYS = 30


@dataclass
class PairResult:
    symbol: str
    timeframe: str
    state: TrackerState
    candles: List[Candle]
    signals: List[Tuple[str, object]] = field(default_factory=list)

    @property
    def price(self) -> Optional[float]:
        return self.candles[-1].close if self.candles else None


class LoggingNotifier:
    """Default notification sink: one INFO line per alert."""

    def __call__(self, alert: Alert) -> None:
        signal = alert.signal
        direction = getattr(signal, "action", None) or getattr(signal, "direction", "")
        confidence = getattr(signal, "confidence", None)
        summary = f"{alert.kind} {direction} {alert.symbol} {alert.timeframe}"
        if confidence is not None:
            summary += f" confidence={confidence:.1f} ({signal_strength(confidence)})"
        if getattr(signal, "indicator", None) == "RSI":
            summary += f" rsi={signal.reference_indicator_value:.1f} ({rsi_zone(signal.reference_indicator_value)})"
        if alert.tpsl is not None:
            summary += (
                f" entry={alert.tpsl.entry_price:.6g} tp={alert.tpsl.take_profit:.6g}"
                f" sl={alert.tpsl.stop_loss:.6g} rr={alert.tpsl.risk_reward_ratio:.2f}"
            )
        logger.info(summary)


def sub_type_of(signal) -> str:
    if isinstance(signal, StructureSignal):
        return signal.structure_type
    if isinstance(signal, VolumeSpike):
        return signal.severity
    if isinstance(signal, ScalpingSignal):
        return signal.kind
    return signal.direction


def _isolated(check: str, symbol: str, timeframe: str, fn, *args):
    """Run one detector; a failure only costs that detector's signal."""
    try:
        return fn(*args)
    except ComputationSkipped:
        return None
    except Exception as e:
        logger.error(f"{check} failed for {symbol} {timeframe}: {e}", exc_info=True)
        return None


class SignalEngine:
    def __init__(
        self,
        config: EngineConfig,
        store: Optional[StateStore] = None,
        registry: Optional[SignalRegistry] = None,
        datastore: Optional[SQLiteDataStore] = None,
        notifier: Optional[Notifier] = None,
        calculator: Optional[TPSLCalculator] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else StateStore()
        self.registry = registry if registry is not None else SignalRegistry(config.tracking)
        self.datastore = datastore
        self.notifier = notifier or LoggingNotifier()
        self.calculator = calculator or TPSLCalculator(config.tpsl)

    @classmethod
    def from_datastore(cls, config: EngineConfig, datastore: SQLiteDataStore, notifier: Optional[Notifier] = None) -> "SignalEngine":
        """Restore tracker state and signals; unreadable storage starts empty."""
        store = StateStore()
        records: List[SignalRecord] = []
        try:
            datastore.initialize()
            store = StateStore.from_dict(datastore.fetch_tracker_states())
            records = datastore.fetch_signals()
            logger.info(f"Loaded {len(store)} tracker states and {len(records)} signals")
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to load persisted state, starting empty: {e}")
        except (KeyError, TypeError) as e:
            logger.error(f"Persisted state has an unexpected shape, starting empty: {e}")
        return cls(
            config,
            store=store,
            registry=SignalRegistry(config.tracking, records),
            datastore=datastore,
            notifier=notifier,
        )

    # worker side

    def evaluate_pair(
        self,
        symbol: str,
        timeframe: str,
        state: TrackerState,
        candles: Sequence[Candle],
        now_ms: int,
        include_scalping: bool = False,
    ) -> PairResult:
        """Run every detector for one pair against one candle snapshot.

        Only reads ``state``; the returned result carries the new state.
        """
        config = self.config
        candles = list(candles)
        signals: List[Tuple[str, object]] = []

        closed = closed_candles(candles, now_ms)
        last_open = state.last_open_time
        fresh = [c for c in closed if last_open is None or c.open_time > last_open]
        for candle in fresh[:-1]:
            state = append_candle(state, candle, config.history_size)
        if fresh:
            applied = _isolated("RSI divergence", symbol, timeframe, apply_candle, state, fresh[-1], config, now_ms)
            if applied is None:
                state = append_candle(state, fresh[-1], config.history_size)
            else:
                state, rsi_signal = applied
                if rsi_signal is not None:
                    signals.append((rsi_signal.signal_type, rsi_signal))

        history = list(state.candles)
        current_price = candles[-1].close if candles else None
        checks = [
            (MACD_DIVERGENCE, "MACD divergence", detect_macd_divergence, (history, config.macd)),
            (MARKET_STRUCTURE, "Market structure", detect_market_structure, (history, current_price, config.structure)),
            (VOLUME_DIVERGENCE, "Volume divergence", detect_volume_divergence, (history, config.volume.divergence_lookback)),
            (VOLUME_SPIKE, "Volume spike", detect_volume_spike, (candles, config.volume)),
        ]
        for signal_type, check, fn, args in checks:
            signal = _isolated(check, symbol, timeframe, fn, *args)
            if signal is None:
                continue
            if not gate_allows(state, signal_type, signal, config.cooldowns.policy_for(signal_type), now_ms):
                logger.debug(f"{check} for {symbol} {timeframe} suppressed by cooldown")
                continue
            state = mark_gate(state, signal_type, signal, now_ms)
            signals.append((signal_type, signal))

        if include_scalping and candles:
            if scalping_allowed(state, now_ms, config.scalping.alert_cooldown_ms):
                fired = []
                for detector in scalping.DETECTORS:
                    signal = _isolated(f"Scalping {detector.__name__}", symbol, timeframe,
                                       detector, candles, current_price, config.scalping)
                    if signal is not None:
                        fired.append((SCALPING, signal))
                if fired:
                    state = mark_scalping(state, now_ms)
                    signals.extend(fired)
            else:
                logger.debug(f"Scalping for {symbol} {timeframe} in cooldown")

        return PairResult(symbol, timeframe, state, candles or history, signals)

    def _fetch_and_evaluate(self, fetch: Fetcher, symbol: str, timeframe: str, state: TrackerState,
                            now_ms: int, include_scalping: bool) -> PairResult:
        candles = fetch(symbol, timeframe)
        return self.evaluate_pair(symbol, timeframe, state, candles, now_ms, include_scalping)

    # main thread side

    def _emit(self, result: PairResult, signal_type: str, signal, now_ms: int) -> Alert:
        tpsl = None
        record_id = None
        if signal_type != SCALPING and result.price:
            tpsl = _isolated("TP/SL", result.symbol, result.timeframe,
                             self.calculator.for_signal, signal, result.price, result.candles)
            if tpsl is not None:
                record = self.registry.record(
                    symbol=result.symbol,
                    timeframe=result.timeframe,
                    signal_type=signal_type,
                    sub_type=sub_type_of(signal),
                    direction=tpsl.direction,
                    entry_price=tpsl.entry_price,
                    take_profit=tpsl.take_profit,
                    stop_loss=tpsl.stop_loss,
                    confidence=getattr(signal, "confidence", 0.0),
                    now_ms=now_ms,
                )
                record_id = record.id if record is not None else None

        alert = Alert(
            kind=signal_type,
            symbol=result.symbol,
            timeframe=result.timeframe,
            signal=signal,
            timestamp=now_ms,
            tpsl=tpsl,
            record_id=record_id,
        )
        _isolated("Notification", result.symbol, result.timeframe, self.notifier, alert)
        return alert

    def run_tick(self, fetch: Fetcher, now_ms: int, timeframes: Optional[Iterable[str]] = None) -> List[Alert]:
        """Evaluate every configured pair for ``timeframes`` (default all) concurrently."""
        config = self.config
        timeframes = list(timeframes) if timeframes is not None else list(config.timeframes)
        scalping_timeframe = config.smallest_timeframe

        jobs = []
        for symbol in config.pairs:
            for timeframe in timeframes:
                jobs.append((symbol, timeframe, self.store.get(symbol, timeframe)))

        results: List[PairResult] = []
        with ThreadPoolExecutor(config.max_threads) as executor:
            futures = []
            for symbol, timeframe, state in jobs:
                futures.append((
                    symbol,
                    timeframe,
                    executor.submit(
                        self._fetch_and_evaluate,
                        fetch,
                        symbol,
                        timeframe,
                        state,
                        now_ms,
                        timeframe == scalping_timeframe,
                    ),
                ))

            for symbol, timeframe, future in futures:
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Error processing {symbol} {timeframe}: {e}")

        alerts: List[Alert] = []
        # latest price per symbol comes from its shortest evaluated timeframe
        latest_prices: Dict[str, Tuple[int, float]] = {}
        for result in results:
            self.store.put(result.symbol, result.timeframe, result.state)
            for signal_type, signal in result.signals:
                alerts.append(self._emit(result, signal_type, signal, now_ms))
            if result.price is not None:
                step = timeframe_to_ms(result.timeframe)
                if result.symbol not in latest_prices or step < latest_prices[result.symbol][0]:
                    latest_prices[result.symbol] = (step, result.price)

        for symbol, (_, price) in latest_prices.items():
            self.registry.observe_price(symbol, price, now_ms)
        self.registry.cleanup(now_ms, SIGNAL_RETENTION_DAYS)

        self.save(now_ms)
        logger.info(f"Tick {now_ms}: {len(results)} pairs evaluated, {len(alerts)} alerts")
        return alerts

    def process_market(self, market: Dict[Tuple[str, str], Sequence[Candle]], now_ms: int) -> List[Alert]:
        """Run a tick over already-fetched candles keyed by (symbol, timeframe)."""
        timeframes = sorted({timeframe for _, timeframe in market}, key=timeframe_to_ms)
        return self.run_tick(lambda symbol, timeframe: market.get((symbol, timeframe), []), now_ms, timeframes)

    def on_tick(self, client, tick_ms: int) -> List[Alert]:
        """Scheduler callback: evaluate the timeframes whose candle just closed."""
        timeframes = due_timeframes(self.config.timeframes, tick_ms)
        if not timeframes:
            return []
        return self.run_tick(lambda symbol, timeframe: client.get_candles(symbol, timeframe), tick_ms, timeframes)

    def save(self, now_ms: Optional[int] = None) -> bool:
        if self.datastore is None:
            return False
        try:
            self.datastore.upsert_tracker_states(self.store.to_dict())
            self.datastore.upsert_signals(self.registry.records)
            if now_ms is not None:
                self.datastore.delete_signals_before(now_ms - SIGNAL_RETENTION_DAYS * 24 * 60 * 60 * 1000)
            return True
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to persist engine state: {e}")
            return False

    def statistics(self) -> dict:
        return compute_statistics(self.registry.records)
