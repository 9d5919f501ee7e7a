"""Logging setup: one log file under the app directory plus a ring of recent records."""
from __future__ import annotations

import logging
import re
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, Dict, List, Optional

from offline_core import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
RECENT_LOG_LIMIT = 500
_LOG_LINE = re.compile(
    r"^(?P<timestamp>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2},\d{3}) "
    r"\[(?P<level>[A-Z]+)\] (?P<context>[^:]+): (?P<message>.*)$"
)

_LOG_PATH: Optional[Path] = None


class RecentLogHandler(logging.Handler):
    """Keep the most recent log records in memory for an in-app log viewer."""

    def __init__(self, capacity: int = RECENT_LOG_LIMIT, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._entries: Deque[Dict[str, str]] = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed record arguments
            self.handleError(record)
            return
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .replace(microsecond=0)
            .isoformat(),
            "level": record.levelname.lower(),
            "context": record.name,
            "message": message,
        }
        with self._entries_lock:
            self._entries.appendleft(entry)

    def entries(self, limit: Optional[int] = None, *, level: Optional[str] = None) -> List[Dict[str, str]]:
        with self._entries_lock:
            items = list(self._entries)
        if level:
            items = [item for item in items if item["level"] == level.lower()]
        if limit is not None:
            items = items[:limit]
        return items

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()


RECENT_LOGS = RecentLogHandler()


def configure_logging(level: int = logging.INFO, *, log_path: Optional[Path] = None) -> Path:
    """Configure logging to write to the application log file.

    Parameters
    ----------
    level:
        The minimum logging level for the root logger. ``logging.INFO`` is used
        by default which captures sync passes and conflicts without being
        overly verbose.
    log_path:
        Override for the log file location, mainly useful in tests.

    Returns
    -------
    pathlib.Path
        The path to the log file.
    """

    global _LOG_PATH

    if _LOG_PATH is not None and log_path is None:
        return _LOG_PATH

    target = log_path or app_paths.logs_path("smartsheet_offline.log")
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        target.touch(exist_ok=True)
    except OSError:
        pass

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.setLevel(level)
    else:
        root_logger.setLevel(min(root_logger.level, level))

    already_configured = any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(target)
        for handler in root_logger.handlers
    )
    if not already_configured:
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    if RECENT_LOGS not in root_logger.handlers:
        root_logger.addHandler(RECENT_LOGS)

    _LOG_PATH = target
    root_logger.debug("Logging configured. Writing to %s", target)
    return target


def get_log_path() -> Path:
    """Return the path to the log file, configuring logging if needed."""

    if _LOG_PATH is None:
        return configure_logging()
    return _LOG_PATH


def recent_logs(limit: int = 50, *, level: Optional[str] = None) -> List[Dict[str, str]]:
    """Return the most recent log entries, newest first."""

    return RECENT_LOGS.entries(limit, level=level)


def read_log_file(
    path: Optional[Path] = None, limit: int = 50, *, level: Optional[str] = None
) -> List[Dict[str, str]]:
    """Return entries parsed from the log file, newest first.

    Unlike :func:`recent_logs` this also covers earlier runs of the
    application.  Lines that do not start a record, such as traceback
    lines, are appended to the message of the record before them.
    """

    target = path or get_log_path()
    try:
        handle = open(target, encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []

    entries: List[Dict[str, str]] = []
    with handle:
        for line in handle:
            line = line.rstrip("\n")
            match = _LOG_LINE.match(line)
            if match:
                entries.append(
                    {
                        "timestamp": match.group("timestamp"),
                        "level": match.group("level").lower(),
                        "context": match.group("context"),
                        "message": match.group("message"),
                    }
                )
            elif entries and line:
                entries[-1]["message"] += "\n" + line

    if level:
        entries = [entry for entry in entries if entry["level"] == level.lower()]
    entries.reverse()
    return entries[:limit]


__all__ = [
    "RecentLogHandler",
    "RECENT_LOGS",
    "configure_logging",
    "get_log_path",
    "read_log_file",
    "recent_logs",
]
