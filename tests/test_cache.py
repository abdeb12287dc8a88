"""Tests for the session-scoped data cache."""

from __future__ import annotations

import asyncio

import pytest

from orgwatch.auth.cache import DataCache


class TestDataCache:
    """Get/set/invalidate keyed on the session scope."""

    def test_set_get_contains(self) -> None:
        cache = DataCache()
        cache.set("users", ["ada"])

        assert cache.get("users") == ["ada"]
        assert "users" in cache
        assert "logins" not in cache
        assert cache.get("logins", "missing") == "missing"
        assert len(cache) == 1

    def test_invalidate_one_and_all(self) -> None:
        cache = DataCache()
        cache.set("users", 1)
        cache.set("logins", 2)

        cache.invalidate("users")
        assert "users" not in cache
        assert cache.get("logins") == 2

        cache.invalidate()
        assert len(cache) == 0

    def test_rescope_drops_previous_scope(self) -> None:
        cache = DataCache(authenticated=True, refresh_key=3)
        cache.set("users", ["ada"])

        assert cache.rescope(True, 3) is False
        assert cache.get("users") == ["ada"]

        assert cache.rescope(True, 4) is True
        assert cache.scope == (True, 4)
        assert cache.get("users") is None
        assert len(cache) == 0

    def test_logout_scope_never_sees_authenticated_data(self) -> None:
        cache = DataCache(authenticated=True)
        cache.set("users", ["ada"])
        cache.rescope(False, 0)
        cache.rescope(True, 0)

        assert cache.get("users") is None


class TestGetOrFetch:
    """Fetch-through behaviour."""

    @pytest.mark.asyncio
    async def test_caches_result(self) -> None:
        cache = DataCache()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return {"total": 42}

        assert await cache.get_or_fetch("summary", fetch) == {"total": 42}
        assert await cache.get_or_fetch("summary", fetch) == {"total": 42}
        assert calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self) -> None:
        cache = DataCache()
        calls = 0
        release = asyncio.Event()

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return "data"

        tasks = [asyncio.create_task(cache.get_or_fetch("users", fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(*tasks) == ["data", "data", "data"]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_result_discarded_when_scope_changes_mid_fetch(self) -> None:
        cache = DataCache(authenticated=True)
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            return "stale"

        task = asyncio.create_task(cache.get_or_fetch("users", fetch))
        await asyncio.sleep(0)
        cache.rescope(False, 0)
        release.set()

        assert await task == "stale"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self) -> None:
        cache = DataCache()
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("upstream 503")
            return "ok"

        with pytest.raises(RuntimeError, match="upstream 503"):
            await cache.get_or_fetch("users", flaky)
        assert await cache.get_or_fetch("users", flaky) == "ok"
        assert attempts == 2
