# ===============================================================
# utils/cache.py
# ===============================================================
"""
Small in-process TTL cache.

Used for per-user quiz listings. Writers (wallet deductions, quiz
submissions, evaluations) invalidate the affected keys. Process-local only:
with several server instances, clients fall back on ETag revalidation.
"""
import time
import threading
from typing import Any, Callable, Dict, Optional, Tuple

_MISSING = object()


class TTLCache:
    def __init__(
        self,
        ttl_seconds: float,
        maxsize: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.ttl = ttl_seconds
        self.maxsize = maxsize
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            item = self._data.get(key, _MISSING)
            if item is _MISSING:
                return default
            expires_at, value = item
            if self._clock() >= expires_at:
                del self._data[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            now = self._clock()
            self._data.pop(key, None)
            if len(self._data) >= self.maxsize:
                self._evict(now)
            self._data[key] = (now + (ttl or self.ttl), value)

    def _evict(self, now: float) -> None:
        """Drop expired entries; if still full, drop the oldest insertions."""
        for k in [k for k, (exp, _) in self._data.items() if now >= exp]:
            del self._data[k]
        while len(self._data) >= self.maxsize:
            del self._data[next(iter(self._data))]

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            doomed = [k for k, (exp, _) in self._data.items() if now >= exp]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
