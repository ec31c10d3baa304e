"""
Session and counter stores.

The memory stores serve single-process deployments and tests. Deployments with
more than one serving instance use the Redis stores so that a token minted by
one instance verifies on any other.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable

from redis.asyncio import from_url
from redis.exceptions import RedisError, WatchError

from vodguard.common.exceptions import TransientError
from vodguard.common.models import SessionFilter, VideoSession, ViewRecord

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "vodguard"


class MemorySessionStore:
    """Process-local session store."""

    def __init__(self) -> None:
        self.sessions: dict[str, VideoSession] = {}
        self.views: list[ViewRecord] = []

    async def create_session(self, session: VideoSession) -> None:
        self.sessions[session.session_id] = session.model_copy()

    async def get_session(self, session_id: str) -> VideoSession | None:
        session = self.sessions.get(session_id)
        return session.model_copy() if session else None

    async def find_sessions(
        self, user_id: str, active_only: bool = True  # noqa: FBT001, FBT002
    ) -> list[VideoSession]:
        return [
            s.model_copy()
            for s in self.sessions.values()
            if s.user_id == user_id and (s.active or not active_only)
        ]

    async def find_active_sessions_by_address(
        self, client_address: str
    ) -> list[VideoSession]:
        return [
            s.model_copy()
            for s in self.sessions.values()
            if s.active and s.client_address == client_address
        ]

    async def update_session(self, session_id: str, changes: dict[str, Any]) -> bool:
        session = self.sessions.get(session_id)
        if session is None or not session.active:
            return False
        self.sessions[session_id] = session.model_copy(update=changes)
        return True

    async def batch_update_sessions(
        self, session_filter: SessionFilter, changes: dict[str, Any]
    ) -> int:
        matched = [
            sid
            for sid, s in self.sessions.items()
            if s.active and session_filter.matches(s)
        ]
        for sid in matched:
            self.sessions[sid] = self.sessions[sid].model_copy(update=changes)
        return len(matched)

    async def append_view(self, record: ViewRecord) -> None:
        self.views.append(record.model_copy())

    async def count_views(self, user_id: str, since: int, until: int) -> int:
        return sum(
            1 for v in self.views if v.user_id == user_id and since <= v.viewed_at <= until
        )


class MemoryCounterStore:
    """Process-local fixed-window counters."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.counters: dict[str, tuple[int, float]] = {}

    async def increment(self, key: str, window_ms: int) -> int:
        now = self.clock()
        self._evict(now)
        count, expires_at = self.counters.get(key, (0, now + window_ms / 1000))
        count += 1
        self.counters[key] = (count, expires_at)
        return count

    def _evict(self, now: float) -> None:
        lapsed = [k for k, (_, expires_at) in self.counters.items() if expires_at <= now]
        for key in lapsed:
            del self.counters[key]


def _session_key(session_id: str) -> str:
    return f"{KEY_PREFIX}:session:{session_id}"


def _user_sessions_key(user_id: str) -> str:
    # set of session ids
    return f"{KEY_PREFIX}:user:{user_id}:sessions"


def _address_sessions_key(client_address: str) -> str:
    # set of session ids
    return f"{KEY_PREFIX}:address:{client_address}:sessions"


def _active_sessions_key() -> str:
    # zset (session_id -> expires_at)
    return f"{KEY_PREFIX}:sessions:active"


def _user_views_key(user_id: str) -> str:
    # zset ("<nonce>:<view json>" -> viewed_at)
    return f"{KEY_PREFIX}:user:{user_id}:views"


class RedisSessionStore:
    """Session store shared across serving instances.

    Each session is a JSON document under its own key. Secondary indexes keep
    per-user and per-address id sets plus a sorted set of active sessions scored
    by expiry, which is what the sweep reads.
    """

    def __init__(self, client: Redis) -> None:
        self.client = client

    async def _load(self, session_ids: list[str]) -> list[VideoSession]:
        if not session_ids:
            return []
        raw_values = await self.client.mget([_session_key(sid) for sid in session_ids])
        return [
            VideoSession.model_validate_json(raw) for raw in raw_values if raw is not None
        ]

    async def _update_where(
        self,
        session_id: str,
        changes: dict[str, Any],
        session_filter: SessionFilter | None = None,
    ) -> bool:
        """Optimistic WATCH/MULTI update of one active session.

        The stored document is re-read under WATCH and the write is retried when
        another writer changes it first, so a concurrent terminate or sweep is
        never overwritten.
        """
        key = _session_key(session_id)
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return False
                    session = VideoSession.model_validate_json(raw)
                    if not session.active:
                        return False
                    if session_filter is not None and not session_filter.matches(
                        session
                    ):
                        return False

                    updated = session.model_copy(update=changes)
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    if updated.active:
                        pipe.zadd(
                            _active_sessions_key(),
                            {session_id: updated.expires_at},
                        )
                    else:
                        pipe.zrem(_active_sessions_key(), session_id)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Session %s changed during update; retrying", session_id)

    async def create_session(self, session: VideoSession) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.set(_session_key(session.session_id), session.model_dump_json())
            pipe.sadd(_user_sessions_key(session.user_id), session.session_id)
            pipe.sadd(_address_sessions_key(session.client_address), session.session_id)
            if session.active:
                pipe.zadd(
                    _active_sessions_key(), {session.session_id: session.expires_at}
                )
            await pipe.execute()
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err

    async def get_session(self, session_id: str) -> VideoSession | None:
        try:
            raw = await self.client.get(_session_key(session_id))
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err
        return VideoSession.model_validate_json(raw) if raw is not None else None

    async def find_sessions(
        self, user_id: str, active_only: bool = True  # noqa: FBT001, FBT002
    ) -> list[VideoSession]:
        try:
            session_ids = await self.client.smembers(_user_sessions_key(user_id))
            sessions = await self._load(sorted(session_ids))
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err
        return [s for s in sessions if s.active or not active_only]

    async def find_active_sessions_by_address(
        self, client_address: str
    ) -> list[VideoSession]:
        try:
            session_ids = await self.client.smembers(
                _address_sessions_key(client_address)
            )
            sessions = await self._load(sorted(session_ids))
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err
        return [s for s in sessions if s.active]

    async def update_session(self, session_id: str, changes: dict[str, Any]) -> bool:
        try:
            return await self._update_where(session_id, changes)
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err

    async def batch_update_sessions(
        self, session_filter: SessionFilter, changes: dict[str, Any]
    ) -> int:
        try:
            if session_filter.active:
                upper = (
                    f"({session_filter.expires_before}"
                    if session_filter.expires_before is not None
                    else "+inf"
                )
                candidate_ids = await self.client.zrangebyscore(
                    _active_sessions_key(), "-inf", upper
                )
            elif session_filter.user_id is not None:
                candidate_ids = await self.client.smembers(
                    _user_sessions_key(session_filter.user_id)
                )
            else:
                candidate_ids = [
                    key.rsplit(":", 1)[-1]
                    async for key in self.client.scan_iter(
                        match=f"{KEY_PREFIX}:session:*"
                    )
                ]

            affected = 0
            for session_id in sorted(candidate_ids):
                if await self._update_where(session_id, changes, session_filter):
                    affected += 1
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err
        return affected

    async def append_view(self, record: ViewRecord) -> None:
        try:
            await self.client.zadd(
                _user_views_key(record.user_id),
                {f"{uuid.uuid4().hex}:{record.model_dump_json()}": record.viewed_at},
            )
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err

    async def count_views(self, user_id: str, since: int, until: int) -> int:
        try:
            return int(await self.client.zcount(_user_views_key(user_id), since, until))
        except RedisError as err:
            msg = "session store unavailable"
            raise TransientError(msg) from err


class RedisCounterStore:
    """Fixed-window counters on Redis INCR with a TTL set by the first hit."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    async def increment(self, key: str, window_ms: int) -> int:
        counter_key = f"{KEY_PREFIX}:counter:{key}"
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(counter_key)
            pipe.pttl(counter_key)
            count, ttl = await pipe.execute()
            if ttl is None or int(ttl) < 0:
                await self.client.pexpire(counter_key, window_ms)
        except RedisError as err:
            msg = "counter store unavailable"
            raise TransientError(msg) from err
        return int(count)


def create_redis_client(redis_url: str) -> Redis:
    """Build an asyncio Redis client with decoded string responses."""
    logger.info("Using Redis session store at %s", redis_url)
    return from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


__all__ = [
    "MemoryCounterStore",
    "MemorySessionStore",
    "RedisCounterStore",
    "RedisSessionStore",
    "create_redis_client",
]
