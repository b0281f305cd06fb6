"""
Small in-process caches injected into the classifier and the fingerprint store.
"""
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, Hashable, Optional
import time

_MISSING = object()

class TTLCache:
    """LRU cache with an optional time-to-live. Safe to share between scoring threads."""

    def __init__(self, maxsize: int = 1024, ttl: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self.ttl = ttl
        self._clock = clock
        self._data: "OrderedDict[Hashable, tuple[float, Any]]" = OrderedDict()
        self._lock = Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key, _MISSING)
            if entry is _MISSING:
                return default
            stored_at, value = entry
            if self.ttl is not None and self._clock() - stored_at >= self.ttl:
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._clock(), value)
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

class NullCache:
    """Cache that stores nothing."""

    def get(self, key, default=None):
        return default

    def set(self, key, value):
        pass

    def invalidate(self, key):
        pass

    def clear(self):
        pass

    def __len__(self):
        return 0

    def __contains__(self, key):
        return False
