"""SQLite persistence for tracker state, signal records and log rows.

The engine reads everything once on start and writes back after each tick
that changed state. Errors are raised to the caller.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .models import SignalRecord, TrackerState


def _ensure_parent(path: Path) -> None:
    """Create the parent directory for the database file if required."""

    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


class SQLiteDataStore:
    """Very small wrapper around sqlite3 connections."""

    def __init__(self, db_path: str | Path = Path("data/signalbot.db")) -> None:
        self.db_path = Path(db_path)
        _ensure_parent(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        """Return a live sqlite3 connection."""

        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def initialize(self) -> None:
        """Create base tables if they do not already exist."""
        schema = """
        CREATE TABLE IF NOT EXISTS tracker_state (
            symbol TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            state_json TEXT NOT NULL,  -- TrackerState.to_dict() as JSON
            PRIMARY KEY (symbol, timeframe)
        );

        CREATE TABLE IF NOT EXISTS signals (
            id TEXT PRIMARY KEY,
            symbol TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            signal_type TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('ACTIVE', 'TP_HIT', 'SL_HIT', 'EXPIRED')),
            entry_time INTEGER NOT NULL,
            record_json TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS logs (
            timestamp INTEGER NOT NULL,
            level TEXT NOT NULL,
            module TEXT NOT NULL,
            message TEXT NOT NULL
        );
        """

        with self._connect() as conn:
            conn.executescript(schema)

    def fetch_tracker_states(self) -> Dict[str, Dict[str, dict]]:
        """Return {symbol: {timeframe: state dict}} for every stored pair."""

        with self._connect() as conn:
            rows = conn.execute("SELECT symbol, timeframe, state_json FROM tracker_state").fetchall()

        states: Dict[str, Dict[str, dict]] = {}
        for symbol, timeframe, state_json in rows:
            states.setdefault(str(symbol), {})[str(timeframe)] = json.loads(state_json)
        return states

    def upsert_tracker_states(self, states: Dict[str, Dict[str, dict]]) -> int:
        sql = (
            "INSERT INTO tracker_state (symbol, timeframe, state_json) VALUES (?, ?, ?) "
            "ON CONFLICT(symbol, timeframe) DO UPDATE SET state_json=excluded.state_json"
        )
        written = 0
        with self._connect() as conn:
            for symbol, by_timeframe in states.items():
                for timeframe, state in by_timeframe.items():
                    conn.execute(sql, (symbol, timeframe, json.dumps(state)))
                    written += 1
        return written

    def save_tracker_state(self, symbol: str, timeframe: str, state: TrackerState) -> None:
        self.upsert_tracker_states({symbol: {timeframe: state.to_dict()}})

    def fetch_signals(self, *, status: Optional[str] = None, limit: Optional[int] = None) -> List[SignalRecord]:
        """Return stored signal records ordered by entry time."""

        query_parts = ["SELECT record_json FROM signals"]
        params: List[object] = []
        if status is not None:
            query_parts.append("WHERE status = ?")
            params.append(status)
        query_parts.append("ORDER BY entry_time ASC")
        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(" ".join(query_parts), params).fetchall()

        return [SignalRecord.from_dict(json.loads(row[0])) for row in rows]

    def upsert_signals(self, records: Iterable[SignalRecord]) -> int:
        sql = (
            "INSERT INTO signals (id, symbol, timeframe, signal_type, status, entry_time, record_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET "
            "status = excluded.status, "
            "record_json = excluded.record_json"
        )
        written = 0
        with self._connect() as conn:
            for record in records:
                conn.execute(
                    sql,
                    (
                        record.id,
                        record.symbol,
                        record.timeframe,
                        record.signal_type,
                        record.status,
                        record.entry_time,
                        json.dumps(record.to_dict()),
                    ),
                )
                written += 1
        return written

    def delete_signals_before(self, cutoff_ms: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM signals WHERE entry_time <= ?", (cutoff_ms,))
            return cursor.rowcount

    def insert_log(self, timestamp_ms: int, level: str, module: str, message: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO logs (timestamp, level, module, message) VALUES (?, ?, ?, ?)",
                (timestamp_ms, level, module, message),
            )

    def fetch_logs(self, *, level: Optional[str] = None, limit: int = 100) -> List[tuple]:
        query = "SELECT timestamp, level, module, message FROM logs"
        params: List[object] = []
        if level is not None:
            query += " WHERE level = ?"
            params.append(level)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(int(limit))
        with self._connect() as conn:
            return conn.execute(query, params).fetchall()
