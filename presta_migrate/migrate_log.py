# presta_migrate/migrate_log.py
# Per-run event log. Passed by reference into the runner, mapper, resolvers
# and source adapters; nothing here is module-global.
# Only the most recent entries are kept; everything still goes to the logger.
from collections import deque
from typing import Deque, List, Dict, Any
import logging
import time

logger = logging.getLogger("uvicorn.error")

MAX_ENTRIES = 2000


class MigrationLog:
    def __init__(self, name: str = "presta_migrate", brand_debug: bool = False,
                 max_entries: int = MAX_ENTRIES):
        self._logger = logging.getLogger(name) if name else logger
        self.brand_debug = brand_debug
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self.dropped = 0

    def _add(self, level: int, message: str, *args: Any) -> None:
        text = message % args if args else message
        if len(self._entries) == self._entries.maxlen:
            self.dropped += 1
        self._entries.append({
            "time": time.strftime("%Y-%m-%d %H:%M:%S"),
            "level": logging.getLevelName(level),
            "message": text,
        })
        self._logger.log(level, text)

    def info(self, message: str, *args: Any) -> None:
        self._add(logging.INFO, message, *args)

    def warning(self, message: str, *args: Any) -> None:
        self._add(logging.WARNING, message, *args)

    def error(self, message: str, *args: Any) -> None:
        self._add(logging.ERROR, message, *args)

    def brand(self, message: str, *args: Any) -> None:
        """Brand detail; only recorded when BRAND_DEBUG is on."""
        if self.brand_debug:
            self._add(logging.INFO, "[BRAND] " + message, *args)

    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def messages(self) -> List[str]:
        return [e["message"] for e in self._entries]
