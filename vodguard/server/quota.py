"""
Concurrency, daily-quota and issuance-rate accounting.

The checks here are advisory reads: a request reads the count, decides, and
the issuer writes the new session afterwards. Two simultaneous issuances for
the same user can both pass and exceed a limit by one.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from vodguard.common.config import Config
from vodguard.common.exceptions import (
    ConcurrencyLimitExceeded,
    DailyQuotaExceeded,
    RateLimitError,
)
from vodguard.common.mixins import Configurable

if TYPE_CHECKING:
    from vodguard.common.interfaces import ICounterStore, ISessionStore

logger = logging.getLogger(__name__)

TOKEN_REQUEST_WINDOW_MS = 60_000


def start_of_day(now: float) -> int:
    """Local midnight at or before ``now``, as epoch seconds."""
    midnight = datetime.fromtimestamp(now).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return int(midnight.timestamp())


class RateLimiter:
    """Counts hits per key in fixed windows on a shared counter store."""

    def __init__(self, counter_store: ICounterStore) -> None:
        self.counter_store = counter_store

    async def hit(self, key: str, window_ms: int) -> int:
        return await self.counter_store.increment(key, window_ms)

    async def allow(self, key: str, limit: int, window_ms: int) -> bool:
        return await self.hit(key, window_ms) <= limit


class QuotaEnforcer(Configurable):
    """Per-user concurrency and daily view limits."""

    max_concurrent_sessions: int
    max_daily_views: int
    max_token_requests_per_minute: int

    def __init__(
        self,
        session_store: ISessionStore,
        rate_limiter: RateLimiter | None = None,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
        **overrides: Any,
    ) -> None:
        self.config = config or Config()
        self.apply_overrides(
            overrides,
            self.config,
            [
                "max_concurrent_sessions",
                "max_daily_views",
                "max_token_requests_per_minute",
            ],
        )
        self.session_store = session_store
        self.rate_limiter = rate_limiter
        self.clock = clock

    async def active_session_count(self, user_id: str) -> int:
        """Sessions that are active and not yet past their expiry."""
        now = self.clock()
        sessions = await self.session_store.find_sessions(user_id, active_only=True)
        return sum(1 for s in sessions if s.is_live(now))

    async def daily_view_count(self, user_id: str) -> int:
        """View records since local midnight."""
        now = self.clock()
        return await self.session_store.count_views(
            user_id, start_of_day(now), int(now)
        )

    async def check_token_request_rate(self, user_id: str) -> None:
        if self.rate_limiter is None:
            return
        allowed = await self.rate_limiter.allow(
            f"token-requests:{user_id}",
            self.max_token_requests_per_minute,
            TOKEN_REQUEST_WINDOW_MS,
        )
        if not allowed:
            msg = "too many token requests"
            raise RateLimitError(msg)

    async def enforce(self, user_id: str) -> None:
        """Raise when the user is out of concurrency or daily headroom.

        Both counts are read before deciding. An exhausted daily quota is
        reported even when concurrency is exhausted as well, since waiting for
        a session to end will not help that user today.
        """
        active = await self.active_session_count(user_id)
        views = await self.daily_view_count(user_id)

        if views >= self.max_daily_views:
            logger.info(
                "User %s at daily view limit (%s/%s)",
                user_id,
                views,
                self.max_daily_views,
            )
            msg = "daily view limit exceeded"
            raise DailyQuotaExceeded(msg)

        if active >= self.max_concurrent_sessions:
            logger.info(
                "User %s at concurrency limit (%s/%s)",
                user_id,
                active,
                self.max_concurrent_sessions,
            )
            msg = "maximum concurrent sessions exceeded"
            raise ConcurrencyLimitExceeded(msg)
