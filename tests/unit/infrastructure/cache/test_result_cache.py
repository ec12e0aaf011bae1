import threading
from unittest.mock import MagicMock

import pytest

from callguard.infrastructure.cache.result_cache import ResultCache


def test_set_then_get_returns_value(result_cache: ResultCache):
    result_cache.set("events:cal-1", [{"id": 1}])

    assert result_cache.get("events:cal-1") == [{"id": 1}]
    stats = result_cache.stats()
    assert stats["hits"] == 1
    assert stats["sets"] == 1


def test_missing_key_returns_default(result_cache: ResultCache):
    assert result_cache.get("absent") is None
    assert result_cache.get("absent", default="fallback") == "fallback"
    assert result_cache.stats()["misses"] == 2


def test_falsy_values_are_cached(result_cache: ResultCache):
    result_cache.set("empty-list", [])
    result_cache.set("zero", 0)

    assert result_cache.get("empty-list", default="miss") == []
    assert result_cache.get("zero", default="miss") == 0
    assert result_cache.stats()["hits"] == 2


def test_entry_expires_at_ttl_boundary(result_cache: ResultCache, clock):
    result_cache.set("k", "v", ttl=300)

    clock.now = 299.5
    assert result_cache.get("k") == "v"

    clock.now = 300.0
    assert result_cache.get("k") is None
    stats = result_cache.stats()
    assert stats["misses"] == 1
    assert stats["deletes"] == 1
    assert len(result_cache) == 0


def test_default_ttl_applies_when_none_given(clock):
    cache = ResultCache(default_ttl=60, max_entries=5, clock=clock)
    cache.set("k", "v")

    clock.now = 59.0
    assert "k" in cache
    clock.now = 60.0
    assert "k" not in cache


def test_full_cache_evicts_entries_nearest_to_expiry(result_cache: ResultCache):
    for i in range(10):
        result_cache.set(f"k{i}", i, ttl=i + 1)

    result_cache.set("new", "value", ttl=100)

    assert len(result_cache) == 10
    assert result_cache.get("k0") is None
    assert result_cache.get("k1") == 1
    assert result_cache.get("new") == "value"
    assert result_cache.stats()["evictions"] == 1
    assert result_cache.stats()["deletes"] == 1


def test_eviction_removes_ten_percent(clock):
    cache = ResultCache(default_ttl=300, max_entries=20, clock=clock)
    for i in range(20):
        cache.set(f"k{i}", i, ttl=i + 1)

    cache.set("extra", "x")

    assert len(cache) == 19
    assert cache.stats()["evictions"] == 2
    assert cache.stats()["deletes"] == 2
    assert "k0" not in cache and "k1" not in cache
    assert "k2" in cache


def test_overwriting_existing_key_at_capacity_does_not_evict(result_cache: ResultCache):
    for i in range(10):
        result_cache.set(f"k{i}", i)

    result_cache.set("k5", "updated")

    assert len(result_cache) == 10
    assert result_cache.stats()["evictions"] == 0
    assert result_cache.get("k5") == "updated"


def test_delete(result_cache: ResultCache):
    result_cache.set("k", "v")

    assert result_cache.delete("k") is True
    assert result_cache.delete("k") is False
    assert result_cache.stats()["deletes"] == 1


def test_invalidate_by_token_removes_matching_keys(result_cache: ResultCache):
    result_cache.set("events:B1:2024-05", "a")
    result_cache.set("freebusy:B1", "b")
    result_cache.set("events:A7:2024-05", "c")
    result_cache.set("events:B12:2024-05", "d")

    removed = result_cache.invalidate_by_token("B1")

    # Substring match: B12 contains B1 as well
    assert removed == 3
    assert result_cache.get("events:A7:2024-05") == "c"
    assert "events:B1:2024-05" not in result_cache
    assert "events:B12:2024-05" not in result_cache
    assert result_cache.stats()["deletes"] == 3


def test_invalidate_without_matches_returns_zero(result_cache: ResultCache):
    result_cache.set("events:A7", "c")
    assert result_cache.invalidate_by_token("Z9") == 0
    assert len(result_cache) == 1


def test_hit_rate_formatting(result_cache: ResultCache):
    assert result_cache.stats()["hit_rate"] == "0%"

    result_cache.set("k", "v")
    result_cache.get("k")
    result_cache.get("other")

    stats = result_cache.stats()
    assert stats["hit_rate"] == "50.00%"
    assert stats["hit_rate_value"] == 50.0
    assert stats["total"] == 2
    assert stats["max_size"] == 10


def test_health_check_counts_expired_without_removing(result_cache: ResultCache, clock):
    result_cache.set("short", 1, ttl=10)
    result_cache.set("long", 2, ttl=1000)
    clock.now = 50.0

    health = result_cache.health_check()

    assert health["total_items"] == 2
    assert health["expired_items"] == 1
    assert health["valid_items"] == 1
    assert len(result_cache) == 2
    assert health["stats"]["current_size"] == 2


def test_clear_keeps_stats_and_reset_zeroes_them(result_cache: ResultCache):
    result_cache.set("k", "v")
    result_cache.get("k")

    result_cache.clear()
    assert len(result_cache) == 0
    assert result_cache.stats()["hits"] == 1

    result_cache.reset()
    stats = result_cache.stats()
    assert stats["hits"] == 0
    assert stats["sets"] == 0


def test_generate_key_joins_parts():
    assert ResultCache.generate_key("calendarEvents", "cal-1", "2024-05-01") == "calendarEvents:cal-1:2024-05-01"
    assert ResultCache.generate_key("stats") == "stats"
    assert ResultCache.generate_key("page", 3, None) == "page:3:None"


@pytest.mark.parametrize("kwargs", [{"default_ttl": 0}, {"max_entries": 0}])
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        ResultCache(**kwargs)


def test_invalid_ttl_and_token_are_rejected(result_cache: ResultCache):
    with pytest.raises(ValueError):
        result_cache.set("k", "v", ttl=0)
    with pytest.raises(ValueError):
        result_cache.invalidate_by_token("")
    assert len(result_cache) == 0


def test_concurrent_writers_respect_capacity():
    cache = ResultCache(default_ttl=300, max_entries=50)

    def writer(offset: int):
        for i in range(200):
            cache.set(f"w{offset}:{i}", i)
            cache.get(f"w{offset}:{i // 2}")

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = cache.stats()
    assert len(cache) <= 50
    assert stats["sets"] == 800
    assert stats["hits"] + stats["misses"] == 800


def test_size_and_membership_checks_take_the_lock(result_cache: ResultCache):
    result_cache.set("k", "v")
    lock = MagicMock()
    result_cache._lock = lock

    assert len(result_cache) == 1
    assert "k" in result_cache

    assert lock.__enter__.call_count == 2
    assert lock.__exit__.call_count == 2
