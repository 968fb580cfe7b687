from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Iterable, List, Sequence

import pandas as pd

from .errors import InvalidConfigurationError
from .models import Candle

TIMEFRAME_UNITS_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
}
SUPPORTED_TIMEFRAMES = ("1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d", "3d", "1w")

_TIMEFRAME_PATTERN = re.compile(r"^(\d+)([a-zA-Z])$")
CANDLE_COLUMNS = ["open", "high", "low", "close", "volume", "close_time"]


def to_milliseconds(value: Any) -> int | None:
    """Normalize assorted timestamp-like inputs to epoch milliseconds."""

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, pd.Timestamp):
        return int(value.value // 1_000_000)

    if isinstance(value, datetime):
        ts = value.timestamp()
        return int(ts * 1000) if ts > 0 else None

    try:
        numeric = float(value)
    except (TypeError, ValueError):
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        ts = dt.timestamp()
        return int(ts * 1000) if ts > 0 else None

    if numeric <= 0:
        return None
    if numeric >= 1_000_000_000_000:
        return int(numeric)
    return int(numeric * 1000)


def timeframe_to_ms(timeframe: str) -> int:
    """Convert '5m', '1h', '1d', '1w' style intervals to milliseconds."""
    match = _TIMEFRAME_PATTERN.match(str(timeframe).strip())
    if not match:
        raise InvalidConfigurationError(f"Invalid timeframe: {timeframe}")
    amount, unit = int(match.group(1)), match.group(2)
    if unit not in TIMEFRAME_UNITS_MS:
        raise InvalidConfigurationError(f"Unsupported timeframe unit: {unit}")
    if amount <= 0:
        raise InvalidConfigurationError(f"Invalid timeframe: {timeframe}")
    return amount * TIMEFRAME_UNITS_MS[unit]


def is_number(value: Any) -> bool:
    """True for finite ints/floats (bools and NaN excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def closed_candles(candles: Sequence[Candle], now_ms: int) -> List[Candle]:
    """Drop the trailing candles that have not closed yet at ``now_ms``."""
    result = list(candles)
    while result and not result[-1].is_closed(now_ms):
        result.pop()
    return result


def candles_from_frame(df: pd.DataFrame) -> List[Candle]:
    """Convert a timestamp-indexed OHLCV frame into Candle objects."""

    if df is None or df.empty:
        return []
    if not set(CANDLE_COLUMNS[:5]).issubset(df.columns):
        return []

    df = df.sort_index()
    candles: List[Candle] = []
    for open_time, row in df.iterrows():
        close_time = row["close_time"] if "close_time" in df.columns else None
        if close_time is None or pd.isna(close_time):
            close_time = int(open_time)
        candles.append(
            Candle(
                open_time=int(open_time),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
                close_time=int(close_time),
            )
        )
    return candles


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    rows = [candle.to_dict() for candle in candles]
    if not rows:
        return pd.DataFrame(columns=CANDLE_COLUMNS)
    return pd.DataFrame(rows).set_index("open_time")


def percent_change(old: float, new: float) -> float:
    if not old:
        return 0.0
    return (new - old) / old * 100
