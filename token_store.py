"""
Short-lived key/value state (revoked tokens).

`TokenStore` is the seam: the in-memory implementation only holds for a
single process and can be replaced with an external cache.
"""
import threading
import time
from abc import ABC, abstractmethod


class TokenStore(ABC):
    @abstractmethod
    def set(self, key: str, value, ttl_seconds: float) -> None:
        pass

    @abstractmethod
    def get(self, key: str, default=None):
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def contains(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryTokenStore(TokenStore):
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def _purge_locked(self, now) -> int:
        expired = [k for k, (_, expires) in self._entries.items() if now >= expires]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def set(self, key, value, ttl_seconds):
        if ttl_seconds <= 0:
            return
        with self._lock:
            now = self._clock()
            # Expired keys are otherwise only dropped when read again
            self._purge_locked(now)
            self._entries[key] = (value, now + ttl_seconds)

    def get(self, key, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires = entry
            if self._clock() >= expires:
                del self._entries[key]
                return default
            return value

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def __len__(self):
        with self._lock:
            return len(self._entries)
