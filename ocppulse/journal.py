import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List

from .config import LOG_MAX_ENTRIES


@dataclass
class LogEntry:
    timestamp: str
    level: str
    message: str


class ConnectionLog:
    """Append-only record of commands and frames, newest entry first."""

    def __init__(self, max_entries: int = LOG_MAX_ENTRIES):
        self._entries: deque = deque(maxlen=max_entries)

    def add(self, message: str, level: int = logging.INFO) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=logging.getLevelName(level),
            message=message,
        )
        self._entries.appendleft(entry)
        logging.log(level, message)
        return entry

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def messages(self) -> List[str]:
        return [e.message for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
