from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from conftest import BATCH, USER, VIDEO, FakeClock

from vodguard.common.exceptions import (
    ConcurrencyLimitExceeded,
    DailyQuotaExceeded,
    RateLimitError,
)
from vodguard.common.models import VideoSession, ViewRecord
from vodguard.server.persistence import MemoryCounterStore, MemorySessionStore
from vodguard.server.quota import QuotaEnforcer, RateLimiter, start_of_day


def _active_session(session_id: str, now: float, **changes) -> VideoSession:
    data = {
        "session_id": session_id,
        "user_id": USER,
        "video_id": VIDEO,
        "batch_id": BATCH,
        "token": "tok",
        "created_at": int(now),
        "expires_at": int(now) + 7200,
        "device_fingerprint": "f" * 64,
        "issued_hour_bucket": 0,
    }
    data.update(changes)
    return VideoSession(**data)


def _view(viewed_at: int, user_id: str = USER) -> ViewRecord:
    return ViewRecord(
        user_id=user_id,
        video_id=VIDEO,
        batch_id=BATCH,
        session_id="s",
        viewed_at=viewed_at,
    )


@pytest.fixture
def quota(session_store: MemorySessionStore, clock: FakeClock) -> QuotaEnforcer:
    return QuotaEnforcer(
        session_store,
        RateLimiter(MemoryCounterStore(clock=clock)),
        clock=clock,
    )


def test_start_of_day() -> None:
    now = datetime(2024, 3, 5, 17, 45, 12).timestamp()
    assert start_of_day(now) == int(datetime(2024, 3, 5).timestamp())


def test_enforce_allows_headroom(quota: QuotaEnforcer) -> None:
    asyncio.run(quota.enforce(USER))


def test_concurrency_limit(
    quota: QuotaEnforcer, session_store: MemorySessionStore, clock: FakeClock
) -> None:
    for i in range(3):
        asyncio.run(session_store.create_session(_active_session(f"s-{i}", clock.now)))

    with pytest.raises(ConcurrencyLimitExceeded) as excinfo:
        asyncio.run(quota.enforce(USER))
    assert excinfo.value.status_code == 403
    assert excinfo.value.code == "CONCURRENCY_LIMIT_EXCEEDED"


def test_inactive_and_lapsed_sessions_do_not_count(
    quota: QuotaEnforcer, session_store: MemorySessionStore, clock: FakeClock
) -> None:
    asyncio.run(session_store.create_session(_active_session("s-0", clock.now)))
    asyncio.run(
        session_store.create_session(
            _active_session("s-1", clock.now, active=False)
        )
    )
    asyncio.run(
        session_store.create_session(
            _active_session("s-2", clock.now, expires_at=int(clock.now) - 1)
        )
    )
    assert asyncio.run(quota.active_session_count(USER)) == 1


def test_daily_quota(
    quota: QuotaEnforcer, session_store: MemorySessionStore, clock: FakeClock
) -> None:
    for _ in range(50):
        asyncio.run(session_store.append_view(_view(int(clock.now))))

    with pytest.raises(DailyQuotaExceeded) as excinfo:
        asyncio.run(quota.enforce(USER))
    assert excinfo.value.code == "DAILY_QUOTA_EXCEEDED"


def test_daily_quota_counts_only_today(
    quota: QuotaEnforcer, session_store: MemorySessionStore, clock: FakeClock
) -> None:
    midnight = start_of_day(clock.now)
    for _ in range(50):
        asyncio.run(session_store.append_view(_view(midnight - 1)))
    asyncio.run(session_store.append_view(_view(midnight, user_id="other")))

    assert asyncio.run(quota.daily_view_count(USER)) == 0
    asyncio.run(quota.enforce(USER))


def test_quota_reported_before_concurrency(
    quota: QuotaEnforcer, session_store: MemorySessionStore, clock: FakeClock
) -> None:
    for i in range(3):
        asyncio.run(session_store.create_session(_active_session(f"s-{i}", clock.now)))
    for _ in range(50):
        asyncio.run(session_store.append_view(_view(int(clock.now))))

    with pytest.raises(DailyQuotaExceeded):
        asyncio.run(quota.enforce(USER))


def test_overrides(session_store: MemorySessionStore, clock: FakeClock) -> None:
    quota = QuotaEnforcer(session_store, clock=clock, max_daily_views=1)
    assert quota.max_daily_views == 1
    assert quota.max_concurrent_sessions == 3

    asyncio.run(session_store.append_view(_view(int(clock.now))))
    with pytest.raises(DailyQuotaExceeded):
        asyncio.run(quota.enforce(USER))


def test_token_request_rate(quota: QuotaEnforcer, clock: FakeClock) -> None:
    for _ in range(10):
        asyncio.run(quota.check_token_request_rate(USER))
    with pytest.raises(RateLimitError):
        asyncio.run(quota.check_token_request_rate(USER))

    # Separate bucket per user
    asyncio.run(quota.check_token_request_rate("user-2"))

    clock.advance(60)
    asyncio.run(quota.check_token_request_rate(USER))


def test_rate_limiter_windows(clock: FakeClock) -> None:
    limiter = RateLimiter(MemoryCounterStore(clock=clock))
    assert asyncio.run(limiter.allow("k", 2, 1000))
    assert asyncio.run(limiter.allow("k", 2, 1000))
    assert not asyncio.run(limiter.allow("k", 2, 1000))

    clock.advance(1)
    assert asyncio.run(limiter.hit("k", 1000)) == 1
