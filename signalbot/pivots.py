"""Pivot (fractal) detection over arbitrary numeric series."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .models import PivotPoint
from .utils import is_number


def find_pivots(
    values: Sequence[Optional[float]],
    left_bars: int = 2,
    right_bars: Optional[int] = None,
    *,
    timestamps: Optional[Sequence[int]] = None,
    offset: int = 0,
) -> List[PivotPoint]:
    """Return the ordered pivot highs and lows of ``values``.

    An index is a pivot high when every numeric value within ``left_bars``
    before and ``right_bars`` after it is strictly lower, and a pivot low
    when every such value is strictly higher. Missing neighbours are ignored.
    ``offset`` shifts the reported indices, so a series that starts after a
    warmup period can report pivots in candle positions. ``timestamps`` is
    indexed with the shifted position.
    """
    if right_bars is None:
        right_bars = left_bars
    if left_bars < 0 or right_bars < 0:
        raise ValueError("left_bars and right_bars must not be negative")

    pivots: List[PivotPoint] = []
    n = len(values)
    for i in range(left_bars, n - right_bars):
        candidate = values[i]
        if not is_number(candidate):
            continue

        is_high = True
        is_low = True
        compared = 0
        for j in range(i - left_bars, i + right_bars + 1):
            if j == i:
                continue
            neighbor = values[j]
            if not is_number(neighbor):
                continue
            compared += 1
            if neighbor >= candidate:
                is_high = False
            if neighbor <= candidate:
                is_low = False
            if not is_high and not is_low:
                break

        if compared == 0:
            continue

        position = i + offset
        timestamp = None
        if timestamps is not None and 0 <= position < len(timestamps):
            timestamp = timestamps[position]
        if is_high:
            pivots.append(PivotPoint(value=float(candidate), index=position, kind="HIGH", timestamp=timestamp))
        elif is_low:
            pivots.append(PivotPoint(value=float(candidate), index=position, kind="LOW", timestamp=timestamp))

    return pivots


def pivot_highs(values: Sequence[Optional[float]], left_bars: int = 2, right_bars: Optional[int] = None, **kwargs) -> List[PivotPoint]:
    return [p for p in find_pivots(values, left_bars, right_bars, **kwargs) if p.kind == "HIGH"]


def pivot_lows(values: Sequence[Optional[float]], left_bars: int = 2, right_bars: Optional[int] = None, **kwargs) -> List[PivotPoint]:
    return [p for p in find_pivots(values, left_bars, right_bars, **kwargs) if p.kind == "LOW"]


def last_two(pivots: Sequence[PivotPoint]) -> Optional[tuple]:
    """(previous, current) pair of the latest two pivots, or None."""
    if len(pivots) < 2:
        return None
    return pivots[-2], pivots[-1]
