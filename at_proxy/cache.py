from collections import OrderedDict
from dataclasses import dataclass
import threading
from typing import Optional


@dataclass
class CacheEntry:
    key: str
    body: bytes
    expires_at: float
    stored_at: float


class CacheStore:
    """In-memory body cache with a fixed TTL per resource class.

    Only successful upstream bodies are ever stored. Entries are kept past
    expiry for ``retain_sec`` so a stale copy can still be served as a
    fallback; ``max_entries`` bounds memory under request spikes.
    """

    def __init__(
        self,
        ttl_sec: float,
        *,
        retain_sec: float = 0,
        max_entries: int = 2000,
        lock: Optional[threading.Lock] = None,
    ) -> None:
        self.ttl_sec = ttl_sec
        self.retain_sec = max(0.0, retain_sec)
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = lock or threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, now: float) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now < entry.expires_at:
                return entry.body
        return None

    def get_stale(self, key: str, now: float, max_age: float) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry.stored_at <= max_age:
                return entry.body
        return None

    def set(self, key: str, body: bytes, now: float) -> CacheEntry:
        entry = CacheEntry(key=key, body=body, expires_at=now + self.ttl_sec, stored_at=now)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._prune_locked(now)
        return entry

    def _prune_locked(self, now: float) -> None:
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at + self.retain_sec <= now
        ]
        for key in expired:
            self._entries.pop(key, None)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
