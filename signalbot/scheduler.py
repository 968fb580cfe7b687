"""Candle-close aligned scheduling."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .errors import InvalidConfigurationError
from .logger import get_logger
from .utils import SUPPORTED_TIMEFRAMES, TIMEFRAME_UNITS_MS, timeframe_to_ms

logger = get_logger(__name__)

# 1970-01-01 was a Thursday; weekly candles open on Monday
WEEK_OFFSET_MS = 4 * TIMEFRAME_UNITS_MS["d"]


def _origin(timeframe: str) -> int:
    return WEEK_OFFSET_MS if timeframe.strip().endswith("w") else 0


def candle_open(timeframe: str, now_ms: int) -> int:
    """Open time of the candle containing ``now_ms``."""
    step = timeframe_to_ms(timeframe)
    origin = _origin(timeframe)
    return now_ms - (now_ms - origin) % step


def next_candle_open(timeframe: str, now_ms: int) -> int:
    return candle_open(timeframe, now_ms) + timeframe_to_ms(timeframe)


def seconds_until_next_candle(timeframe: str, now_ms: int) -> int:
    return max(0, round((next_candle_open(timeframe, now_ms) - now_ms) / 1000))


def current_candle_info(timeframe: str, now_ms: int) -> Dict[str, object]:
    step = timeframe_to_ms(timeframe)
    start = candle_open(timeframe, now_ms)
    progress = (now_ms - start) / step * 100
    return {
        "start": start,
        "end": start + step,
        "next_start": start + step,
        "progress_percent": min(100.0, max(0.0, progress)),
    }


def smallest_timeframe(timeframes: Sequence[str]) -> str:
    if not timeframes:
        raise InvalidConfigurationError("No timeframes configured")
    return min(timeframes, key=timeframe_to_ms)


def due_timeframes(timeframes: Sequence[str], tick_ms: int) -> List[str]:
    """Timeframes whose candle boundary coincides with ``tick_ms``."""
    return [tf for tf in timeframes if candle_open(tf, tick_ms) == tick_ms]


def is_supported(timeframe: str) -> bool:
    return timeframe in SUPPORTED_TIMEFRAMES


def _now_ms() -> int:
    return int(time.time() * 1000)


class CandleSyncScheduler:
    """Invokes a callback at every candle open of one timeframe."""

    def __init__(
        self,
        timeframe: str,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        timeframe_to_ms(timeframe)
        if not is_supported(timeframe):
            logger.warning(f"Timeframe {timeframe} is not a standard exchange interval")
        self.timeframe = timeframe
        self.clock = clock
        self.sleep = sleep
        self.running = False

    def stop(self) -> None:
        self.running = False

    def run(self, callback: Callable[[int], None], max_ticks: Optional[int] = None) -> int:
        """Sleep to each boundary and call ``callback(tick_ms)``; returns ticks executed.

        Errors raised by the callback are logged and the loop continues.
        """
        self.running = True
        ticks = 0
        last_tick: Optional[int] = None
        while self.running and (max_ticks is None or ticks < max_ticks):
            now = self.clock()
            tick = next_candle_open(self.timeframe, now)
            if last_tick is not None and tick <= last_tick:
                tick = last_tick + timeframe_to_ms(self.timeframe)
            last_tick = tick
            opened = datetime.fromtimestamp(tick / 1000, tz=timezone.utc).isoformat()
            logger.info(f"Next {self.timeframe} candle opens at {opened}, waiting {(tick - now) / 1000:.0f}s")
            self.sleep(max(0.0, (tick - now) / 1000))
            if not self.running:
                break
            try:
                callback(tick)
            except Exception as e:
                logger.error(f"Error in candle sync execution: {e}")
            ticks += 1
        self.running = False
        return ticks
