import pytest
from autohunt.services.cache import TTLCache, NullCache

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

def test_lru_eviction_drops_least_recently_used():
    cache = TTLCache(maxsize=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1  # touch a, b becomes oldest
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2

def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(maxsize=10, ttl=60, clock=clock)
    cache.set("fp", "shape")
    clock.now = 59
    assert cache.get("fp") == "shape"
    clock.now = 60
    assert cache.get("fp", "missing") == "missing"
    assert "fp" not in cache

def test_invalidate_and_clear():
    cache = TTLCache(maxsize=10)
    cache.set(1, "x")
    cache.set(2, "y")
    cache.invalidate(1)
    assert 1 not in cache and 2 in cache
    cache.clear()
    assert len(cache) == 0

def test_maxsize_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(maxsize=0)

def test_null_cache_stores_nothing():
    cache = NullCache()
    cache.set("k", "v")
    assert cache.get("k") is None
    assert len(cache) == 0
