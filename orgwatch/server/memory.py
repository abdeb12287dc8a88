"""In-memory store implementations.

Default backend for single-process deployments. All operations are
serialised through an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio

from dataclasses import replace
from typing import TYPE_CHECKING

from .base import OAuthStateLedger, SessionStore
from .types import default_clock


if TYPE_CHECKING:
    from .types import Clock, OAuthStateRecord, OAuthTokenSet, SessionRecord


class MemoryOAuthStateLedger(OAuthStateLedger):
    """Bounded in-memory ledger of pending OAuth states.

    Parameters
    ----------
    max_age : float
        Seconds after which a record can no longer be consumed.
    max_pending : int
        Capacity. When full, the oldest record is evicted on insert.
    clock : Clock, optional
        Time source.
    """

    def __init__(
        self,
        max_age: float = 600.0,
        max_pending: int = 1000,
        clock: Clock | None = None,
    ) -> None:
        self._records: dict[str, OAuthStateRecord] = {}
        self._lock = asyncio.Lock()
        self._max_age = max_age
        self._max_pending = max_pending
        self._clock = clock or default_clock

    async def put(self, record: OAuthStateRecord) -> None:
        async with self._lock:
            if record.state not in self._records and len(self._records) >= self._max_pending:
                oldest = min(self._records, key=lambda k: self._records[k].created_at)
                del self._records[oldest]
            self._records[record.state] = record

    async def consume(self, state: str) -> OAuthStateRecord | None:
        async with self._lock:
            record = self._records.pop(state, None)
        if record is None:
            return None
        if self._clock() - record.created_at > self._max_age:
            return None
        return record

    async def delete_expired(self, cutoff: float) -> int:
        async with self._lock:
            expired = [k for k, v in self._records.items() if v.created_at < cutoff]
            for k in expired:
                del self._records[k]
            return len(expired)

    async def count(self) -> int:
        async with self._lock:
            return len(self._records)


class MemorySessionStore(SessionStore):
    """In-memory session store.

    Parameters
    ----------
    clock : Clock, optional
        Time source for ``last_seen_at`` updates.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or default_clock

    async def create(self, record: SessionRecord) -> None:
        async with self._lock:
            self._sessions[record.session_id] = record

    async def get(self, session_id: str) -> SessionRecord | None:
        async with self._lock:
            record = self._sessions.get(session_id)
            return replace(record) if record is not None else None

    async def touch(self, session_id: str) -> bool:
        async with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return False
            record.last_seen_at = self._clock()
            return True

    async def update_tokens(self, session_id: str, tokens: OAuthTokenSet) -> bool:
        async with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return False
            record.access_token = tokens.access_token
            if tokens.refresh_token:
                record.refresh_token = tokens.refresh_token
            if tokens.instance_url:
                record.instance_url = tokens.instance_url
            record.last_seen_at = self._clock()
            return True

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def delete_idle(self, cutoff: float) -> int:
        async with self._lock:
            idle = [k for k, v in self._sessions.items() if v.last_seen_at < cutoff]
            for k in idle:
                del self._sessions[k]
            return len(idle)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)
