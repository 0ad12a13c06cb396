import time

from cache_manager import CacheManager


def test_memory_cache_round_trip_and_expiry():
    cache = CacheManager(redis_url="", default_ttl=60)
    assert cache.redis_client is None

    cache.set("books:search:a", {"total": 1})
    assert cache.get("books:search:a") == {"total": 1}

    cache.set("short", "value", ttl_seconds=0)
    time.sleep(0.01)
    assert cache.get("short") is None

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["redis_available"] is False


def test_invalidate_pattern_and_clear():
    cache = CacheManager(redis_url="")
    cache.set("books:search:x", 1)
    cache.set("books:detail:y", 2)
    cache.set("other", 3)

    assert cache.invalidate_pattern("books:*") == 2
    assert cache.get("books:search:x") is None
    assert cache.get("other") == 3

    assert cache.delete("other") is True
    assert cache.delete("other") is False

    cache.set("again", 4)
    cache.clear()
    assert cache.get("again") is None


def test_unreachable_redis_falls_back_to_memory():
    cache = CacheManager(redis_url="redis://127.0.0.1:1/0")
    assert cache.redis_client is None
    cache.set("k", "v")
    assert cache.get("k") == "v"
