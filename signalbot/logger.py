import logging
import os
import sqlite3
from typing import Optional

from .config import DB_PATH, LOG_LEVEL, LOG_LEVELS
from .datastore import SQLiteDataStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DatabaseHandler(logging.Handler):
    """
    Logging handler that stores each record in the `logs` table of the signal database.

    The record's own creation time is stored, so rows keep the order they were
    emitted in even when several pair workers log at once. Tracebacks from
    `exc_info` are appended to the message.
    """
    def __init__(self, db_path: str, level: int = logging.NOTSET):
        super().__init__(level)
        self.db_store = SQLiteDataStore(db_path)
        self.db_store.initialize()

    def emit(self, record: logging.LogRecord):
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{logging.Formatter().formatException(record.exc_info)}"
        try:
            self.db_store.insert_log(
                timestamp_ms=int(record.created * 1000),
                level=record.levelname,
                module=record.name,
                message=message,
            )
        except sqlite3.Error:
            self.handleError(record)


def _configure_root(db_path: str) -> logging.Logger:
    root = logging.getLogger("signalbot")
    level = os.getenv("LOG_LEVEL", LOG_LEVEL).strip().upper()
    # unknown names are rejected later by load_settings
    root.setLevel(level if level in LOG_LEVELS else LOG_LEVEL)
    # keep alerts out of the root logger
    root.propagate = False

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console_handler)

    if not any(isinstance(h, DatabaseHandler) for h in root.handlers):
        root.addHandler(DatabaseHandler(db_path))
    return root


_root: Optional[logging.Logger] = None


def get_logger(name: str, db_path: Optional[str] = None) -> logging.Logger:
    """Return a child of the `signalbot` logger, setting up its handlers on first use."""
    global _root
    if _root is None:
        _root = _configure_root(db_path or os.getenv("DB_PATH") or DB_PATH)
    if name == "signalbot" or name.startswith("signalbot."):
        return logging.getLogger(name)
    return _root.getChild(name)


def set_level(level: str) -> None:
    """Apply a validated level name to every signalbot logger."""
    logging.getLogger("signalbot").setLevel(level)
