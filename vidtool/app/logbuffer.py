"""
Captured Log Buffer

Append-only ring buffer of recent log entries, fed by a logging.Handler and
exposed to operators through the admin console-logs endpoints.

Entries expire after a fixed retention window and the buffer keeps at most
max_entries of them, dropping the oldest first.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional


# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_RECORD_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


class LogBuffer:
    """
    Thread-safe TTL ring buffer of log entries.

    Entry ids increase monotonically until clear() resets the counter.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: int = 7200,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._counter = 0

    def _prune(self, now: float) -> None:
        while self._entries and self._entries[0]["_expires_at"] <= now:
            self._entries.popleft()

    def append(
        self,
        level: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        logger_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record an entry and return its public form."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._counter += 1
            entry = {
                "id": self._counter,
                "timestamp": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                "type": level.lower(),
                "logger": logger_name,
                "message": message,
                "data": data or None,
                "sessionId": (data or {}).get("session_id"),
                "_created": now,
                "_expires_at": now + self._ttl_seconds,
            }
            self._entries.append(entry)
            return _public(entry)

    def entries(
        self,
        level: Optional[str] = None,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return live entries, most recent first.

        Args:
            level: Only entries of this level (info, warning, error, debug, ...)
            session_id: Only entries logged with extra={"session_id": ...}
            since: Only entries at or after this timestamp
            limit: Maximum number of entries
        """
        with self._lock:
            self._prune(self._clock())
            selected = list(reversed(self._entries))

        if level:
            selected = [e for e in selected if e["type"] == level.lower()]
        if session_id:
            selected = [e for e in selected if e["sessionId"] == session_id]
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            threshold = since.timestamp()
            selected = [e for e in selected if e["_created"] >= threshold]
        if limit is not None:
            selected = selected[:max(limit, 0)]

        return [_public(e) for e in selected]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._counter = 0

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._entries)


def _public(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if not k.startswith("_")}


def _plain(value: Any) -> Any:
    # Keep entries JSON-serializable
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return repr(value)


class BufferHandler(logging.Handler):
    """logging.Handler that copies records into a LogBuffer."""

    def __init__(self, buffer: LogBuffer, level: int = logging.NOTSET):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            data = {
                key: _plain(value) for key, value in record.__dict__.items()
                if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
            }
            if record.exc_info:
                data["exception"] = logging.Formatter().formatException(record.exc_info)
            self.buffer.append(
                level=record.levelname,
                message=record.getMessage(),
                data=data,
                logger_name=record.name,
            )
        except Exception:
            self.handleError(record)
