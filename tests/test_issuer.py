from __future__ import annotations

import asyncio

import pytest
from conftest import BATCH, USER, VIDEO, FakeClock

from vodguard.common.crypto import CryptoUtils
from vodguard.common.exceptions import (
    ConcurrencyLimitExceeded,
    EnrollmentRequired,
    RateLimitError,
    TransientError,
)
from vodguard.common.models import RequestContext
from vodguard.server.audit import AuditEvent, MemoryAuditSink
from vodguard.server.persistence import MemorySessionStore
from vodguard.server.services import VideoAccessService


def test_issue_creates_session_and_token(
    service: VideoAccessService,
    session_store: MemorySessionStore,
    context: RequestContext,
    clock: FakeClock,
) -> None:
    issued = asyncio.run(service.issue(context, USER, VIDEO, BATCH))

    assert issued.expires_in == 7200
    assert issued.watermark_enabled is True

    session = session_store.sessions[issued.session_id]
    assert session.active
    assert session.user_id == USER
    assert session.token == issued.token
    assert session.created_at == int(clock.now)
    assert session.expires_at == int(clock.now) + 7200
    assert session.client_address == context.client_address
    assert session.issued_hour_bucket == CryptoUtils.hour_bucket(clock.now)
    assert session.device_fingerprint == CryptoUtils.device_fingerprint(
        context, session.issued_hour_bucket
    )
    assert len(session_store.views) == 1
    assert session_store.views[0].session_id == issued.session_id


def test_failed_view_write_leaves_no_session(
    service: VideoAccessService,
    session_store: MemorySessionStore,
    context: RequestContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def unavailable(record: object) -> None:
        msg = "session store unavailable"
        raise TransientError(msg)

    monkeypatch.setattr(session_store, "append_view", unavailable)

    with pytest.raises(TransientError):
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))
    assert session_store.sessions == {}


def test_issued_token_claims(
    service: VideoAccessService, context: RequestContext, clock: FakeClock
) -> None:
    issued = asyncio.run(service.issue(context, USER, VIDEO, BATCH))
    claims = service.codec.decode(issued.token, clock.now)

    assert claims.user_id == USER
    assert claims.video_id == VIDEO
    assert claims.batch_id == BATCH
    assert claims.session_id == issued.session_id
    assert claims.iss == "edtech-platform"
    assert claims.aud == "video-player"
    assert claims.exp - claims.iat == 7200
    assert claims.watermark.user_id == USER
    assert claims.watermark.issued_at_millis == int(clock.now * 1000)
    assert claims.watermark.position == "bottom-right"


def test_issue_records_audit_event(
    service: VideoAccessService,
    audit_sink: MemoryAuditSink,
    context: RequestContext,
) -> None:
    issued = asyncio.run(service.issue(context, USER, VIDEO, BATCH))
    [event] = audit_sink.events(AuditEvent.VIDEO_ACCESS)
    assert event["risk_level"] == "LOW"
    assert event["context"]["session_id"] == issued.session_id


def test_issue_requires_enrollment(
    service: VideoAccessService,
    session_store: MemorySessionStore,
    audit_sink: MemoryAuditSink,
    context: RequestContext,
) -> None:
    with pytest.raises(EnrollmentRequired) as excinfo:
        asyncio.run(service.issue(context, USER, VIDEO, "other-batch"))

    assert excinfo.value.status_code == 403
    assert session_store.sessions == {}
    [event] = audit_sink.events(AuditEvent.UNAUTHORIZED_ACCESS)
    assert event["risk_level"] == "MEDIUM"


def test_issue_enforces_concurrency_limit(
    service: VideoAccessService,
    session_store: MemorySessionStore,
    context: RequestContext,
) -> None:
    for _ in range(3):
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))

    with pytest.raises(ConcurrencyLimitExceeded):
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))
    assert len(session_store.sessions) == 3


def test_expired_sessions_free_concurrency(
    service: VideoAccessService, context: RequestContext, clock: FakeClock
) -> None:
    for _ in range(3):
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))

    # Not yet swept, but past expiry
    clock.advance(7200)
    asyncio.run(service.issue(context, USER, VIDEO, BATCH))


def test_issue_rate_limit(
    service: VideoAccessService,
    audit_sink: MemoryAuditSink,
    context: RequestContext,
    clock: FakeClock,
) -> None:
    service.quota.max_concurrent_sessions = 100
    for _ in range(10):
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))

    with pytest.raises(RateLimitError) as excinfo:
        asyncio.run(service.issue(context, USER, VIDEO, BATCH))
    assert excinfo.value.status_code == 429
    assert excinfo.value.code == "RATE_LIMIT_EXCEEDED"
    assert audit_sink.events(AuditEvent.RATE_LIMIT_EXCEEDED)

    clock.advance(60)
    asyncio.run(service.issue(context, USER, VIDEO, BATCH))


def test_extra_claims_cannot_override_reserved(
    service: VideoAccessService, context: RequestContext, clock: FakeClock
) -> None:
    issued = asyncio.run(
        service.issue(
            context,
            USER,
            VIDEO,
            BATCH,
            extra_claims={"userId": "someone-else", "courseTitle": "Algebra"},
        )
    )
    claims = service.codec.decode(issued.token, clock.now)
    assert claims.user_id == USER
    assert claims.model_extra == {"courseTitle": "Algebra"}


def test_active_count_never_exceeds_limit(
    service: VideoAccessService, context: RequestContext
) -> None:
    service.quota.max_token_requests_per_minute = 100
    for _ in range(6):
        try:
            asyncio.run(service.issue(context, USER, VIDEO, BATCH))
        except ConcurrencyLimitExceeded:
            pass
        count = asyncio.run(service.quota.active_session_count(USER))
        assert count <= service.quota.max_concurrent_sessions
