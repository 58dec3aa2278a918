"""
Unit tests for the expiring and loading caches.
"""

import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from shared.cache import ExpiringCache, LoadingCache


class TestExpiringCache:
    """Test cases for ExpiringCache."""

    @pytest.fixture
    def cache(self, clock):
        return ExpiringCache(lambda entry: entry["expires_at"], clock, name="test")

    def test_get_live_entry(self, cache, clock):
        entry = {"expires_at": clock.now() + timedelta(seconds=10)}
        cache.put("k", entry)

        assert cache.get("k") is entry
        assert "k" in cache
        assert cache.get("missing") is None

    def test_expired_entry_is_evicted_on_read(self, cache, clock):
        """Test that an entry is removed once read at or after its expiration."""
        cache.put("k", {"expires_at": clock.now() + timedelta(seconds=10)})

        clock.advance(10)

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_entry_without_expiration_never_expires(self, cache, clock):
        cache.put("k", {"expires_at": None})

        clock.advance(10 ** 9)

        assert cache.get("k") is not None

    def test_purge_expired(self, cache, clock):
        cache.put("short", {"expires_at": clock.now() + timedelta(seconds=1)})
        cache.put("long", {"expires_at": clock.now() + timedelta(seconds=100)})
        clock.advance(5)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_invalidate_and_clear(self, cache):
        cache.put("a", {"expires_at": None})
        cache.put("b", {"expires_at": None})

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False

        cache.clear()
        assert len(cache) == 0


class TestLoadingCache:
    """Test cases for LoadingCache."""

    @pytest.mark.asyncio
    async def test_loads_once_then_serves_cached(self, clock):
        loader = AsyncMock(return_value="value")
        cache = LoadingCache(loader, clock=clock)

        assert await cache.get("k") == "value"
        assert await cache.get("k") == "value"

        loader.assert_awaited_once_with("k")
        assert cache.get_if_present("k") == "value"

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, clock):
        loader = AsyncMock(side_effect=[None, "value"])
        cache = LoadingCache(loader, clock=clock)

        assert await cache.get("k") is None
        assert cache.get_if_present("k") is None
        assert await cache.get("k") == "value"
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_exception_is_not_cached(self, clock):
        loader = AsyncMock(side_effect=[ValueError("boom"), "value"])
        cache = LoadingCache(loader, clock=clock)

        with pytest.raises(ValueError):
            await cache.get("k")

        assert cache.in_flight == 0
        assert await cache.get("k") == "value"

    @pytest.mark.asyncio
    async def test_ttl(self, clock):
        loader = AsyncMock(side_effect=["first", "second"])
        cache = LoadingCache(loader, ttl_seconds=30, clock=clock)

        assert await cache.get("k") == "first"
        clock.advance(30)
        assert await cache.get("k") == "second"

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, clock):
        loader = AsyncMock(side_effect=["first", "second"])
        cache = LoadingCache(loader, clock=clock)

        await cache.get("k")
        assert cache.invalidate("k") is True

        assert await cache.get("k") == "second"

    @pytest.mark.asyncio
    async def test_different_keys_load_independently(self, clock):
        release = asyncio.Event()

        async def _load(key):
            await release.wait()
            return key.upper()

        loader = AsyncMock(side_effect=_load)
        cache = LoadingCache(loader, clock=clock)

        tasks = [asyncio.create_task(cache.get(key)) for key in ("a", "b", "a")]
        await asyncio.sleep(0)
        assert cache.in_flight == 2

        release.set()

        assert await asyncio.gather(*tasks) == ["A", "B", "A"]
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_loader_hands_over_to_waiter(self, clock):
        """Test that a waiter takes over when the loading task is cancelled."""
        release = asyncio.Event()

        async def _load(key):
            await release.wait()
            return "value"

        loader = AsyncMock(side_effect=_load)
        cache = LoadingCache(loader, clock=clock)

        loading = asyncio.create_task(cache.get("k"))
        await asyncio.sleep(0)
        waiting = asyncio.create_task(cache.get("k"))
        await asyncio.sleep(0)

        loading.cancel()
        with pytest.raises(asyncio.CancelledError):
            await loading

        # Nothing was written by the cancelled load
        assert cache.get_if_present("k") is None

        release.set()

        assert await waiting == "value"
        assert loader.await_count == 2
        assert cache.get_if_present("k") == "value"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_load(self, clock):
        """Test that cancelling a waiter leaves the shared load running."""
        release = asyncio.Event()

        async def _load(key):
            await release.wait()
            return "value"

        loader = AsyncMock(side_effect=_load)
        cache = LoadingCache(loader, clock=clock)

        loading = asyncio.create_task(cache.get("k"))
        await asyncio.sleep(0)
        waiting = asyncio.create_task(cache.get("k"))
        await asyncio.sleep(0)

        waiting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting

        release.set()

        assert await loading == "value"
        assert loader.await_count == 1
        assert cache.get_if_present("k") == "value"
