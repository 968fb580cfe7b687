"""Market structure (swing point) classification."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .config import StructureConfig
from .divergence import percent_levels
from .errors import ComputationSkipped
from .models import Candle, StructurePoint, StructureSignal
from .pivots import pivot_highs, pivot_lows

BREAK_TYPES = ("HH", "LL")
BULLISH_TYPES = ("HH", "HL")


def detect_structure_points(candles: Sequence[Candle], pivot_length: int = 2) -> List[StructurePoint]:
    """Swing highs from candle highs and swing lows from candle lows, ordered by index."""
    timestamps = [candle.open_time for candle in candles]
    highs = pivot_highs([candle.high for candle in candles], pivot_length, timestamps=timestamps)
    lows = pivot_lows([candle.low for candle in candles], pivot_length, timestamps=timestamps)

    points = [StructurePoint(price=p.value, index=p.index, kind="HIGH", timestamp=p.timestamp) for p in highs]
    points += [StructurePoint(price=p.value, index=p.index, kind="LOW", timestamp=p.timestamp) for p in lows]
    points.sort(key=lambda point: point.index)
    return points


def is_alternating(points: Sequence[StructurePoint]) -> bool:
    return all(a.kind != b.kind for a, b in zip(points, points[1:]))


def classify_structure(points: Sequence[StructurePoint]) -> Optional[str]:
    """Label the latest four swing points HH, HL, LL or LH.

    Windows that do not alternate between highs and lows are not classified.
    """
    if len(points) < 4:
        return None
    fourth, third, second, last = points[-4:]
    if not is_alternating((fourth, third, second, last)):
        return None

    if last.kind == "HIGH" and last.price > third.price and second.price > fourth.price:
        return "HH"
    if last.kind == "LOW" and last.price > third.price:
        return "HL"
    if last.kind == "LOW" and last.price < third.price and second.price < fourth.price:
        return "LL"
    if last.kind == "HIGH" and last.price < third.price:
        return "LH"
    return None


def structure_confidence(current: float, previous: float, structure_type: str) -> float:
    if not previous:
        return 0.0
    percent = abs(current - previous) / previous * 100
    confidence = min(100.0, percent * 20)
    if structure_type in BREAK_TYPES:
        confidence *= 1.2
    return min(100.0, confidence)


def market_trend(points: Sequence[StructurePoint]) -> str:
    """BULLISH / BEARISH / SIDEWAYS from the last four swing points.

    Every point is compared with the previous point of the same kind.
    """
    if len(points) < 4:
        return "SIDEWAYS"
    recent = points[-4:]
    bullish = 0
    bearish = 0
    for i, point in enumerate(recent):
        previous = next((p for p in reversed(recent[:i]) if p.kind == point.kind), None)
        if previous is None:
            continue
        if point.price > previous.price:
            bullish += 1
        else:
            bearish += 1
    if bullish > bearish:
        return "BULLISH"
    if bearish > bullish:
        return "BEARISH"
    return "SIDEWAYS"


def _within(a: float, b: float, percent: float) -> bool:
    average = (a + b) / 2
    if not average:
        return False
    return abs(a - b) / average * 100 < percent


def analyze_patterns(points: Sequence[StructurePoint]) -> Dict[str, bool]:
    patterns = {
        "DOUBLE_TOP": False,
        "DOUBLE_BOTTOM": False,
        "ASCENDING_TRIANGLE": False,
        "DESCENDING_TRIANGLE": False,
    }
    if len(points) < 6:
        return patterns

    recent = points[-6:]
    highs = [p.price for p in recent if p.kind == "HIGH"]
    lows = [p.price for p in recent if p.kind == "LOW"]
    if len(highs) >= 2:
        patterns["DOUBLE_TOP"] = _within(highs[-1], highs[-2], 2)
    if len(lows) >= 2:
        patterns["DOUBLE_BOTTOM"] = _within(lows[-1], lows[-2], 2)
    if len(highs) >= 2 and len(lows) >= 2:
        patterns["ASCENDING_TRIANGLE"] = _within(highs[-1], highs[-2], 1) and lows[-1] > lows[-2]
        patterns["DESCENDING_TRIANGLE"] = _within(lows[-1], lows[-2], 1) and highs[-1] < highs[-2]
    return patterns


def signal_priority(structure_type: str) -> str:
    return "HIGH" if structure_type in BREAK_TYPES else "MEDIUM"


def is_actionable(signal: StructureSignal) -> bool:
    return signal.confidence >= 60


def analyze_market_structure(
    points: Sequence[StructurePoint],
    current_price: float,
    config: StructureConfig = StructureConfig(),
    timestamp: Optional[int] = None,
) -> Optional[StructureSignal]:
    structure_type = classify_structure(points)
    if structure_type is None:
        return None

    last, third = points[-1], points[-3]
    bullish = structure_type in BULLISH_TYPES
    take_profit, stop_loss = percent_levels(current_price, bullish, config.tp_percent, config.sl_percent)
    pattern = next((name for name, found in analyze_patterns(points).items() if found), None)
    return StructureSignal(
        direction="BULLISH" if bullish else "BEARISH",
        structure_type=structure_type,
        kind="BREAK" if structure_type in BREAK_TYPES else "CONTINUATION",
        price=current_price,
        level=last.price,
        previous_level=third.price,
        change_percent=(last.price - third.price) / third.price * 100 if third.price else 0.0,
        confidence=structure_confidence(last.price, third.price, structure_type),
        trend=market_trend(points),
        priority=signal_priority(structure_type),
        take_profit=take_profit,
        stop_loss=stop_loss,
        pattern=pattern,
        timestamp=timestamp,
    )


def detect_market_structure(
    candles: Sequence[Candle],
    current_price: Optional[float] = None,
    config: StructureConfig = StructureConfig(),
) -> Optional[StructureSignal]:
    """Structure signal over closed candles, priced at ``current_price``.

    Raises ComputationSkipped when the candles hold fewer than four swing points.
    """
    if len(candles) < config.min_candles:
        return None
    if current_price is None:
        current_price = candles[-1].close
    points = detect_structure_points(candles, config.pivot_length)
    if len(points) < 4:
        raise ComputationSkipped(f"only {len(points)} structure points")
    return analyze_market_structure(points, current_price, config, timestamp=candles[-1].close_time)
