"""Integration tests for the local cache.

This test suite validates end-to-end behavior across store reopenings:
persistence, schema version bumps, concurrent first use and the typical
application refresh flow.
"""

import asyncio

import aiosqlite
import pytest

from scoutcache import CacheConfig, ScoutCache
from scoutcache.storage import backend
from scoutcache.utils import HERD_MODULES


def herd(herd_id, name):
    return {"herd": {"id": herd_id, "name": name}, "devices": [{"id": herd_id * 10}]}


class TestCachingIntegration:
    """Integration tests for ScoutCache against a real SQLite file."""

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        """Test that cached data is visible to a new cache instance."""
        config = CacheConfig(cache_dir=tmp_path)
        items = [herd(1, "Alpha"), herd(2, "Bravo")]

        async with ScoutCache(config) as first:
            await first.set(HERD_MODULES, items, 60_000)

        async with ScoutCache(config) as second:
            result = await second.get(HERD_MODULES)

        assert result.data == items
        assert result.is_stale is False
        assert 0 <= result.age < 60_000

    @pytest.mark.asyncio
    async def test_version_bump_destroys_cached_data(self, tmp_path):
        """Test that reopening at a newer schema version hides old records."""
        async with ScoutCache(CacheConfig(cache_dir=tmp_path, schema_version=1)) as v1:
            await v1.set(HERD_MODULES, [herd(1, "Alpha")])
            assert (await v1.get(HERD_MODULES)).data == [herd(1, "Alpha")]

        async with ScoutCache(CacheConfig(cache_dir=tmp_path, schema_version=2)) as v2:
            result = await v2.get(HERD_MODULES)
            assert result.data is None
            assert result.is_stale is True
            assert await v2.store.stored_schema_version() == 2

            await v2.set(HERD_MODULES, [herd(3, "Charlie")])
            assert (await v2.get(HERD_MODULES)).data == [herd(3, "Charlie")]

    @pytest.mark.asyncio
    async def test_concurrent_first_use_opens_once(self, tmp_path, monkeypatch):
        """Test that concurrent operations on a cold cache share one open."""
        calls = []
        real_connect = aiosqlite.connect

        def counting_connect(*args, **kwargs):
            calls.append(args)
            return real_connect(*args, **kwargs)

        monkeypatch.setattr(backend.aiosqlite, "connect", counting_connect)

        async with ScoutCache(CacheConfig(cache_dir=tmp_path)) as cache:
            pass
        calls.clear()

        cache = ScoutCache(CacheConfig(cache_dir=tmp_path))
        try:
            results = await asyncio.gather(
                cache.get(HERD_MODULES),
                cache.should_refresh(),
                cache.get_stats(),
                cache.set("providers", [{"id": 1, "name": "Iridium"}]),
            )
        finally:
            await cache.aclose()

        assert len(calls) == 1
        assert results[0].data is None

    @pytest.mark.asyncio
    async def test_concurrent_sets_to_different_collections(self, tmp_path):
        async with ScoutCache(CacheConfig(cache_dir=tmp_path)) as cache:
            await asyncio.gather(
                cache.set(HERD_MODULES, [herd(1, "Alpha")]),
                cache.set("providers", [{"id": 7, "name": "Starlink"}]),
            )

            assert (await cache.get(HERD_MODULES)).data == [herd(1, "Alpha")]
            assert (await cache.get("providers")).data == [{"id": 7, "name": "Starlink"}]

    @pytest.mark.asyncio
    async def test_refresh_flow(self, tmp_path):
        """Test the read, decide, refetch, write cycle used by the application."""
        remote = [herd(2, "Bravo"), herd(1, "Alpha")]
        fetches = []

        async def load_herd_modules():
            fetches.append(1)
            return remote

        async with ScoutCache(CacheConfig(cache_dir=tmp_path)) as cache:
            decision = await cache.should_refresh()
            assert decision.should_refresh is True

            await cache.spawn_preload(load_herd_modules, ttl_ms=60_000)

            decision = await cache.should_refresh()
            assert decision.should_refresh is False
            assert len(fetches) == 1

            stats = await cache.get_stats()
            assert stats.size == 2
            assert stats.total_hits == 2
            assert stats.total_misses == 1

    @pytest.mark.asyncio
    async def test_second_instance_keeps_first_writes(self, tmp_path):
        """Test that opening a second cache on the same store loses no data."""
        config = CacheConfig(cache_dir=tmp_path)
        first = ScoutCache(config)
        second = ScoutCache(config)
        try:
            opening = asyncio.ensure_future(second.open())
            await first.open()
            await first.set(HERD_MODULES, [herd(1, "Alpha")])
            await opening

            assert (await first.get(HERD_MODULES)).data == [herd(1, "Alpha")]
            assert (await second.get(HERD_MODULES)).data == [herd(1, "Alpha")]
        finally:
            await first.aclose()
            await second.aclose()

    @pytest.mark.asyncio
    async def test_reset_waits_for_other_instance(self, tmp_path, caplog):
        """Test that a reset from one cache does not break another open cache."""
        config = CacheConfig(cache_dir=tmp_path)
        live = ScoutCache(config)
        resetter = ScoutCache(config)

        await live.set(HERD_MODULES, [herd(1, "Alpha")])
        await resetter.reset_database()
        assert "blocked" in caplog.text

        await live.set(HERD_MODULES, [herd(2, "Bravo")])
        assert (await live.get(HERD_MODULES)).data == [herd(2, "Bravo")]

        await live.aclose()
        await resetter.aclose()
        assert not config.db_path.exists()

        async with ScoutCache(config) as fresh:
            assert (await fresh.get(HERD_MODULES)).data is None
