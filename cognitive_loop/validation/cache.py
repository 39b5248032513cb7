"""Thread-safe TTL cache of ValidationRecords keyed by URL."""

import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from cognitive_loop.models.validation import ValidationRecord


class ValidationCache:
    """Expired entries are misses and are evicted on access, never served."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[ValidationRecord, float]] = {}
        self._lock = Lock()

    def get(self, url: str) -> Optional[ValidationRecord]:
        """Get a record if it is still within its TTL."""
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            record, stored_at = entry
            if self._clock() - stored_at < self.ttl_seconds:
                return record
            del self._entries[url]
            return None

    def set(self, url: str, record: ValidationRecord) -> None:
        with self._lock:
            self._entries[url] = (record, self._clock())

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                url for url, (_, stored_at) in self._entries.items()
                if now - stored_at >= self.ttl_seconds
            ]
            for url in expired:
                del self._entries[url]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
