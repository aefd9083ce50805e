#!/usr/bin/env python3
"""capture log records for the Logs tab"""

import collections
import contextlib
import datetime
import logging
from dataclasses import dataclass

MAX_ENTRIES = 1000
MAX_MESSAGE_LENGTH = 200


@dataclass(frozen=True)
class LogEntry:
    """one captured record"""

    time: datetime.datetime
    level: str
    message: str


class RingLogHandler(logging.Handler):
    """keeps the newest records in a bounded ring"""

    def __init__(self, capacity: int = MAX_ENTRIES, level: int = logging.DEBUG):
        super().__init__(level=level)
        self.entries: collections.deque[LogEntry] = collections.deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage().replace("\r", " ").replace("\n", " ")
            if len(message) > MAX_MESSAGE_LENGTH:
                message = message[:MAX_MESSAGE_LENGTH] + "..."
            self.entries.append(
                LogEntry(
                    time=datetime.datetime.fromtimestamp(record.created),
                    level=record.levelname.upper(),
                    message=message,
                )
            )
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)

    def snapshot(self) -> list[LogEntry]:
        """oldest first"""
        with self.lock:
            return list(self.entries)


@contextlib.contextmanager
def capture_logs(handler: RingLogHandler, level: int = logging.INFO):
    """
    route root logging into the ring while the screen is owned by curses

    Console handlers are detached for the duration; file handlers keep
    working.
    """
    root = logging.getLogger()
    detached = [
        existing
        for existing in root.handlers
        if isinstance(existing, logging.StreamHandler)
        and not isinstance(existing, logging.FileHandler)
    ]
    for existing in detached:
        root.removeHandler(existing)
    previous_level = root.level
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)
    root.addHandler(handler)
    try:
        yield handler
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
        for existing in detached:
            root.addHandler(existing)
