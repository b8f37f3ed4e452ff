"""
Issuance Request Store

In-memory TTL store for issuance tracking records, keyed by request ID.

Every put (insert or overwrite) restarts the entry's retention window. Expired
entries are unreachable through get/list_all immediately and are physically
removed lazily on access or by the periodic sweep started in main.py.
Nothing survives a process restart.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..models import IssuanceRecord

logger = logging.getLogger(__name__)


class RequestStore:
    """
    Async TTL key-value store for IssuanceRecord entries.

    Records are copied on the way in and out so that a caller can only change
    stored state through put().
    """

    def __init__(
        self,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl_seconds: Retention window measured from the last put
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self._entries: Dict[str, Tuple[IssuanceRecord, float]] = {}
        self._lock = asyncio.Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def _is_live(self, expires_at: float, now: float) -> bool:
        return now < expires_at

    def _evict_expired(self, now: float) -> int:
        expired = [
            key for key, (_, expires_at) in self._entries.items()
            if not self._is_live(expires_at, now)
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired issuance records")
        return len(expired)

    async def put(self, request_id: str, record: IssuanceRecord) -> None:
        """Insert or overwrite a record and restart its retention window."""
        async with self._lock:
            expires_at = self._clock() + self._ttl_seconds
            self._entries[request_id] = (record.model_copy(deep=True), expires_at)

    async def get(self, request_id: str) -> Optional[IssuanceRecord]:
        """Return a copy of the record, or None when unknown or expired."""
        async with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                return None

            record, expires_at = entry
            if not self._is_live(expires_at, self._clock()):
                del self._entries[request_id]
                return None

            return record.model_copy(deep=True)

    async def delete(self, request_id: str) -> bool:
        async with self._lock:
            return self._entries.pop(request_id, None) is not None

    async def list_all(self) -> List[IssuanceRecord]:
        """Return copies of every live record (unordered)."""
        async with self._lock:
            self._evict_expired(self._clock())
            return [record.model_copy(deep=True) for record, _ in self._entries.values()]

    async def keys(self) -> List[str]:
        async with self._lock:
            self._evict_expired(self._clock())
            return list(self._entries.keys())

    async def delete_older_than(self, cutoff: datetime) -> int:
        """
        Delete every live record created strictly before the cutoff.

        Args:
            cutoff: Timezone-aware creation timestamp threshold

        Returns:
            Number of records deleted
        """
        async with self._lock:
            self._evict_expired(self._clock())
            stale = [
                key for key, (record, _) in self._entries.items()
                if record.createdAt < cutoff
            ]
            for key in stale:
                del self._entries[key]

        logger.info(
            "Deleted issuance records older than cutoff",
            extra={"cutoff": cutoff.isoformat(), "deleted_count": len(stale)}
        )
        return len(stale)

    async def sweep(self) -> int:
        """Physically remove expired entries; returns how many were removed."""
        async with self._lock:
            return self._evict_expired(self._clock())

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
