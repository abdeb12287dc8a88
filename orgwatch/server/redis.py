"""Redis store implementations.

Backend for multi-worker deployments. Each record is a JSON string with
its own TTL; a sorted set per store indexes records by timestamp so the
expiry janitor can sweep by age without scanning the keyspace.
"""

from __future__ import annotations

import json

from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis as RedisClient

from .base import OAuthStateLedger, SessionStore
from .types import OAuthStateRecord, SessionRecord, default_clock


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .types import Clock, OAuthTokenSet


class _RedisBacked:
    """Shared connection handling for the Redis stores."""

    def __init__(
        self,
        redis_url: str,
        prefix: str,
        redis_client: Redis | None,
        clock: Clock | None,
    ) -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self._client = redis_client
        self._owns_client = redis_client is None
        self._clock = clock or default_clock

    async def _redis(self) -> Any:
        """Get the Redis client, creating it on first use."""
        if self._client is None:
            self._client = RedisClient.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def close(self) -> None:
        """Close a client this store created. Injected clients are left open."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _sweep(self, index_key: str, cutoff: float, record_key: Any) -> int:
        """Delete index members scored strictly below ``cutoff`` and their records."""
        r = await self._redis()
        members = await r.zrangebyscore(index_key, "-inf", f"({cutoff}")
        if not members:
            return 0
        # ZREM reports only the members this call removed, so concurrent
        # sweeps never double count.
        removed = await r.zrem(index_key, *members)
        await r.delete(*(record_key(m) for m in members))
        return int(removed)


class RedisOAuthStateLedger(_RedisBacked, OAuthStateLedger):
    """Redis-backed OAuth state ledger.

    Consumption uses ``GETDEL`` so only one callback can ever receive a
    given record.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for all Redis keys.
    max_age : int
        Record TTL in seconds.
    redis_client : Redis, optional
        Pre-configured Redis client (for testing with fakeredis).
    clock : Clock, optional
        Time source.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "orgwatch",
        max_age: int = 600,
        *,
        redis_client: Redis | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(redis_url, prefix, redis_client, clock)
        self._max_age = max_age

    def _state_key(self, state: str) -> str:
        return f"{self._prefix}:oauth_state:{state}"

    def _index_key(self) -> str:
        return f"{self._prefix}:oauth_states:created"

    async def put(self, record: OAuthStateRecord) -> None:
        r = await self._redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(self._state_key(record.state), json.dumps(record.to_dict()), ex=self._max_age)
            pipe.zadd(self._index_key(), {record.state: record.created_at})
            await pipe.execute()

    async def consume(self, state: str) -> OAuthStateRecord | None:
        r = await self._redis()
        raw = await r.getdel(self._state_key(state))
        await r.zrem(self._index_key(), state)
        if raw is None:
            return None
        record = OAuthStateRecord.from_dict(json.loads(raw))
        if self._clock() - record.created_at > self._max_age:
            return None
        return record

    async def delete_expired(self, cutoff: float) -> int:
        return await self._sweep(self._index_key(), cutoff, self._state_key)

    async def count(self) -> int:
        r = await self._redis()
        return int(await r.zcard(self._index_key()))


class RedisSessionStore(_RedisBacked, SessionStore):
    """Redis-backed session store.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for all Redis keys.
    idle_ttl : int
        Seconds a session may go unseen before Redis drops it. Every
        touch renews the TTL.
    redis_client : Redis, optional
        Pre-configured Redis client (for testing with fakeredis).
    clock : Clock, optional
        Time source.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "orgwatch",
        idle_ttl: int = 14400,
        *,
        redis_client: Redis | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(redis_url, prefix, redis_client, clock)
        self._idle_ttl = idle_ttl

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    def _index_key(self) -> str:
        return f"{self._prefix}:sessions:last_seen"

    async def _save(self, record: SessionRecord, *, existing: bool = False) -> bool:
        """Write the record and its index entry in one transaction.

        With ``existing`` both writes are conditional (``XX``), so a
        session deleted after it was read is not written back.
        """
        r = await self._redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(
                self._session_key(record.session_id),
                json.dumps(record.to_dict()),
                ex=self._idle_ttl,
                xx=existing,
            )
            pipe.zadd(
                self._index_key(), {record.session_id: record.last_seen_at}, xx=existing
            )
            written, _ = await pipe.execute()
        return bool(written)

    async def create(self, record: SessionRecord) -> None:
        await self._save(record)

    async def get(self, session_id: str) -> SessionRecord | None:
        r = await self._redis()
        raw = await r.get(self._session_key(session_id))
        if raw is None:
            return None
        return SessionRecord.from_dict(json.loads(raw))

    async def touch(self, session_id: str) -> bool:
        record = await self.get(session_id)
        if record is None:
            return False
        record.last_seen_at = self._clock()
        return await self._save(record, existing=True)

    async def update_tokens(self, session_id: str, tokens: OAuthTokenSet) -> bool:
        record = await self.get(session_id)
        if record is None:
            return False
        record.access_token = tokens.access_token
        if tokens.refresh_token:
            record.refresh_token = tokens.refresh_token
        if tokens.instance_url:
            record.instance_url = tokens.instance_url
        record.last_seen_at = self._clock()
        return await self._save(record, existing=True)

    async def delete(self, session_id: str) -> bool:
        r = await self._redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.delete(self._session_key(session_id))
            pipe.zrem(self._index_key(), session_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def delete_idle(self, cutoff: float) -> int:
        return await self._sweep(self._index_key(), cutoff, self._session_key)

    async def count(self) -> int:
        r = await self._redis()
        return int(await r.zcard(self._index_key()))
