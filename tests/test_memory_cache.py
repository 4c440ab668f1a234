"""Tests for the in-process TTL cache backend."""

from oidcsession.storage.memory import MemoryCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemoryCache:
    async def test_set_then_get_returns_value(self):
        cache = MemoryCache()
        await cache.set("k", {"a": 1})
        assert await cache.get("k") == {"a": 1}

    async def test_missing_key_returns_none(self):
        cache = MemoryCache()
        assert await cache.get("absent") is None

    async def test_values_are_copied(self):
        """Mutating a returned value does not change the stored one."""
        cache = MemoryCache()
        original = {"claims": {"sub": "u"}}
        await cache.set("k", original)
        original["claims"]["sub"] = "changed"

        fetched = await cache.get("k")
        assert fetched == {"claims": {"sub": "u"}}
        fetched["claims"]["sub"] = "again"
        assert await cache.get("k") == {"claims": {"sub": "u"}}

    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", "v", ttl=10)

        clock.now += 9
        assert await cache.get("k") == "v"
        clock.now += 1
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_default_ttl_applies_when_none_given(self):
        clock = FakeClock()
        cache = MemoryCache(5, clock=clock)
        await cache.set("k", "v")
        clock.now += 6
        assert await cache.get("k") is None

    async def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = MemoryCache(5, clock=clock)
        await cache.set("k", "v", ttl=0)
        clock.now += 10_000
        assert await cache.get("k") == "v"

    async def test_drop_removes_entry(self):
        cache = MemoryCache()
        await cache.set("k", "v")
        await cache.drop("k")
        assert await cache.get("k") is None
        # dropping again is harmless
        await cache.drop("k")

    async def test_segments_do_not_collide(self):
        cache = MemoryCache(segment="idm")
        await cache.set("k", "v")
        assert "idm:k" in cache._entries

    async def test_set_reclaims_expired_entries_never_read_again(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        for n in range(1000):
            await cache.set(f"abandoned-{n}", {"n": n}, ttl=10)

        clock.now = 10_000
        await cache.set("fresh", "v", ttl=10)

        assert len(cache) == 1
        assert await cache.get("fresh") == "v"

    async def test_sweep_is_amortised(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock, sweep_interval_seconds=60)
        await cache.set("a", "v", ttl=5)
        clock.now += 61
        await cache.set("b", "v", ttl=5)
        # "b" expired, but the next sweep is not due yet
        clock.now += 10
        await cache.set("c", "v", ttl=5)

        assert len(cache) == 2

    def test_cleanup_expired_counts_evictions(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        cache._entries["a"] = ("v", clock.now + 1)
        cache._entries["b"] = ("v", None)
        clock.now += 2

        assert cache.cleanup_expired() == 1
        assert len(cache) == 1
