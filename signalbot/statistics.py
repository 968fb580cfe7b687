"""Derived performance views over tracked signals. Nothing here is stored."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import pandas as pd

from .models import SIGNAL_TYPES, SCALPING, SignalRecord

TRACKED_TYPES = tuple(t for t in SIGNAL_TYPES if t != SCALPING)


def records_frame(records: Iterable[SignalRecord]) -> pd.DataFrame:
    rows = [record.to_dict() for record in records]
    if not rows:
        return pd.DataFrame(columns=list(SignalRecord.__dataclass_fields__))
    return pd.DataFrame(rows)


def _win_rate(frame: pd.DataFrame) -> float:
    completed = frame[frame["status"] != "ACTIVE"]
    if completed.empty:
        return 0.0
    return float((completed["status"] == "TP_HIT").sum() / len(completed) * 100)


def _trade(frame: pd.DataFrame, position: Any) -> Optional[Dict[str, Any]]:
    row = frame.loc[position]
    return {key: (None if pd.isna(value) else value) for key, value in row.to_dict().items()}


def compute_statistics(records: Iterable[SignalRecord]) -> Dict[str, Any]:
    frame = records_frame(records)
    completed = frame[frame["status"] != "ACTIVE"]
    pnl = pd.to_numeric(completed["pnl"], errors="coerce").fillna(0.0)
    pnl_percent = pd.to_numeric(completed["pnl_percent"], errors="coerce").fillna(0.0)
    duration = pd.to_numeric(completed["duration_minutes"], errors="coerce").fillna(0.0)

    stats: Dict[str, Any] = {
        "total_signals": int(len(frame)),
        "active_signals": int((frame["status"] == "ACTIVE").sum()),
        "completed_signals": int(len(completed)),
        "tp_hit": int((frame["status"] == "TP_HIT").sum()),
        "sl_hit": int((frame["status"] == "SL_HIT").sum()),
        "expired": int((frame["status"] == "EXPIRED").sum()),
        "win_rate": _win_rate(frame),
        "total_pnl": float(pnl.sum()),
        "total_pnl_percent": float(pnl_percent.sum()),
        "average_pnl": float(pnl.mean()) if len(completed) else 0.0,
        "average_pnl_percent": float(pnl_percent.mean()) if len(completed) else 0.0,
        "average_duration": float(duration.mean()) if len(completed) else 0.0,
        "best_trade": _trade(completed, pnl.idxmax()) if len(completed) else None,
        "worst_trade": _trade(completed, pnl.idxmin()) if len(completed) else None,
    }

    by_type: Dict[str, Dict[str, float]] = {}
    for signal_type in TRACKED_TYPES:
        subset = frame[frame["signal_type"] == signal_type]
        done = subset[subset["status"] != "ACTIVE"]
        type_pnl = float(pd.to_numeric(done["pnl"], errors="coerce").fillna(0.0).sum())
        by_type[signal_type] = {
            "count": int(len(subset)),
            "win_rate": _win_rate(subset),
            "total_pnl": type_pnl,
            "average_pnl": type_pnl / len(done) if len(done) else 0.0,
        }
    stats["by_type"] = by_type

    if frame.empty:
        stats["hourly"] = {}
        stats["daily"] = {}
    else:
        entry = pd.to_datetime(frame["entry_time"].astype("int64"), unit="ms", utc=True)
        stats["hourly"] = {str(hour): int(count) for hour, count in entry.dt.hour.value_counts().sort_index().items()}
        stats["daily"] = {str(day): int(count) for day, count in entry.dt.strftime("%Y-%m-%d").value_counts().sort_index().items()}
    return stats
