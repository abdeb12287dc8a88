"""Session-scoped cache for dashboard data fetchers.

Entries are keyed by ``(authenticated, refresh_key, name)``. When the
session flips or ``SessionState.trigger_refresh`` bumps the refresh key,
the cache is re-scoped and every entry from the old scope is dropped, so
no fetcher can serve data belonging to a previous session.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar


T = TypeVar("T")

_MISSING = object()

CacheScope = tuple[bool, int]


class DataCache:
    """Cache owned by a single ``SessionState``.

    Parameters
    ----------
    authenticated : bool
        Initial session flag.
    refresh_key : int
        Initial refresh key.
    """

    def __init__(self, authenticated: bool = False, refresh_key: int = 0) -> None:
        self._scope: CacheScope = (authenticated, refresh_key)
        self._entries: dict[tuple[bool, int, str], Any] = {}
        self._inflight: dict[tuple[bool, int, str], asyncio.Future[Any]] = {}

    @property
    def scope(self) -> CacheScope:
        """The ``(authenticated, refresh_key)`` pair entries are currently keyed on."""
        return self._scope

    def rescope(self, authenticated: bool, refresh_key: int) -> bool:
        """Move to a new scope, discarding entries from the old one.

        Returns
        -------
        bool
            True if the scope changed.
        """
        new_scope = (authenticated, refresh_key)
        if new_scope == self._scope:
            return False
        self._scope = new_scope
        self._entries = {k: v for k, v in self._entries.items() if k[:2] == new_scope}
        return True

    def _key(self, name: str) -> tuple[bool, int, str]:
        return (*self._scope, name)

    def get(self, name: str, default: Any = None) -> Any:
        """Return the cached value for ``name`` in the current scope."""
        return self._entries.get(self._key(name), default)

    def set(self, name: str, value: Any) -> None:
        """Cache ``value`` under ``name`` in the current scope."""
        self._entries[self._key(name)] = value

    def invalidate(self, name: str | None = None) -> None:
        """Drop one entry, or every entry when ``name`` is None."""
        if name is None:
            self._entries.clear()
            return
        self._entries.pop(self._key(name), None)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_fetch(self, name: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value or await ``fetch`` and cache its result.

        Concurrent callers for the same key share a single fetch. A result
        is only stored if the scope did not change while fetching.
        """
        key = self._key(name)
        value = self._entries.get(key, _MISSING)
        if value is not _MISSING:
            return value

        inflight = self._inflight.get(key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved; nobody may be waiting on the shared future
            future.exception()
            raise
        finally:
            self._inflight.pop(key, None)

        if key[:2] == self._scope:
            self._entries[key] = result
        future.set_result(result)
        return result
