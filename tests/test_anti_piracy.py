from __future__ import annotations

import asyncio

import pytest
from conftest import BATCH, VIDEO, FakeClock

from vodguard.common.exceptions import SuspiciousActivity
from vodguard.common.models import DetectionResult, RequestContext, VideoSession
from vodguard.server.anti_piracy import (
    AntiPiracyDetector,
    MultipleSessionsRule,
    RapidRequestRule,
    SuspiciousUserAgentRule,
)
from vodguard.server.audit import AuditEvent, MemoryAuditSink
from vodguard.server.persistence import MemoryCounterStore, MemorySessionStore
from vodguard.server.quota import RateLimiter


def _session(
    session_id: str, user_id: str, client_address: str, expires_at: int = 10**10
) -> VideoSession:
    return VideoSession(
        session_id=session_id,
        user_id=user_id,
        video_id=VIDEO,
        batch_id=BATCH,
        token="tok",
        created_at=0,
        expires_at=expires_at,
        device_fingerprint="f" * 64,
        issued_hour_bucket=0,
        client_address=client_address,
    )


@pytest.fixture
def rate_limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(MemoryCounterStore(clock=clock))


def test_rapid_requests_detected_above_threshold(
    rate_limiter: RateLimiter, context: RequestContext, clock: FakeClock
) -> None:
    rule = RapidRequestRule(rate_limiter, threshold=10, window_ms=60_000)
    results = [asyncio.run(rule.detect(context)) for _ in range(10)]
    assert results == [None] * 10

    result = asyncio.run(rule.detect(context))
    assert result is not None
    assert result.rule == "RAPID_REQUESTS"
    assert not result.blocking
    assert result.details["count"] == 11

    clock.advance(60)
    assert asyncio.run(rule.detect(context)) is None


@pytest.mark.parametrize(
    "user_agent",
    ["Googlebot/2.1", "MyCrawler", "Web-Scraper 1.0", "YouTube Downloader"],
)
def test_suspicious_user_agents(context: RequestContext, user_agent: str) -> None:
    rule = SuspiciousUserAgentRule(["bot", "crawler", "scraper", "downloader"])
    result = asyncio.run(
        rule.detect(context.model_copy(update={"user_agent": user_agent}))
    )
    assert result is not None
    assert not result.blocking


def test_normal_user_agent_passes(context: RequestContext) -> None:
    rule = SuspiciousUserAgentRule(["bot", "crawler", "scraper", "downloader"])
    assert asyncio.run(rule.detect(context)) is None


def test_multiple_sessions_per_address(
    session_store: MemorySessionStore, context: RequestContext
) -> None:
    rule = MultipleSessionsRule(session_store, threshold=5)
    for i in range(4):
        asyncio.run(
            session_store.create_session(
                _session(f"s-{i}", f"user-{i}", context.client_address)
            )
        )
    asyncio.run(session_store.create_session(_session("far", "user-9", "192.0.2.1")))
    assert asyncio.run(rule.detect(context)) is None

    asyncio.run(
        session_store.create_session(_session("s-4", "user-4", context.client_address))
    )
    result = asyncio.run(rule.detect(context))
    assert result is not None
    assert result.blocking
    assert result.details["active_sessions"] == 5


def test_multiple_sessions_ignores_lapsed_sessions(
    session_store: MemorySessionStore, context: RequestContext, clock: FakeClock
) -> None:
    rule = MultipleSessionsRule(session_store, threshold=5, clock=clock)
    # Past expiry but not yet swept
    for i in range(5):
        asyncio.run(
            session_store.create_session(
                _session(
                    f"s-{i}",
                    f"user-{i}",
                    context.client_address,
                    expires_at=int(clock.now) - 60,
                )
            )
        )
    assert all(s.active for s in session_store.sessions.values())
    assert asyncio.run(rule.detect(context)) is None

    asyncio.run(
        session_store.create_session(
            _session("live", "user-9", context.client_address)
        )
    )
    assert asyncio.run(rule.detect(context)) is None


def test_detector_passes_its_clock_to_session_rule(
    audit_sink: MemoryAuditSink,
    session_store: MemorySessionStore,
    context: RequestContext,
    clock: FakeClock,
) -> None:
    detector = AntiPiracyDetector(
        audit_sink,
        session_store=session_store,
        clock=clock,
        multiple_sessions_threshold=2,
    )
    for i in range(2):
        asyncio.run(
            session_store.create_session(
                _session(
                    f"s-{i}", f"user-{i}", context.client_address, int(clock.now) + 60
                )
            )
        )
    with pytest.raises(SuspiciousActivity):
        asyncio.run(detector.evaluate(context))

    clock.advance(60)
    assert asyncio.run(detector.evaluate(context)) == []


def test_detector_observes_non_blocking_rules(
    audit_sink: MemoryAuditSink, context: RequestContext
) -> None:
    detector = AntiPiracyDetector(audit_sink)
    bot = context.model_copy(update={"user_agent": "scraperbot"})

    detections = asyncio.run(detector.evaluate(bot))

    assert [d.rule for d in detections] == ["SUSPICIOUS_USER_AGENT"]
    [event] = audit_sink.events(AuditEvent.SUSPICIOUS_ACTIVITY)
    assert event["risk_level"] == "HIGH"
    assert event["context"]["pattern"] == "SUSPICIOUS_USER_AGENT"


def test_detector_blocks_on_blocking_rule(
    audit_sink: MemoryAuditSink,
    session_store: MemorySessionStore,
    context: RequestContext,
) -> None:
    detector = AntiPiracyDetector(
        audit_sink, session_store=session_store, multiple_sessions_threshold=2
    )
    for i in range(2):
        asyncio.run(
            session_store.create_session(
                _session(f"s-{i}", f"user-{i}", context.client_address)
            )
        )

    with pytest.raises(SuspiciousActivity) as excinfo:
        asyncio.run(detector.evaluate(context))
    assert excinfo.value.status_code == 403
    assert excinfo.value.code == "SUSPICIOUS_ACTIVITY_DETECTED"
    assert audit_sink.security_alerts


def test_default_rules(
    audit_sink: MemoryAuditSink,
    session_store: MemorySessionStore,
    rate_limiter: RateLimiter,
) -> None:
    detector = AntiPiracyDetector(
        audit_sink, session_store=session_store, rate_limiter=rate_limiter
    )
    assert [r.name for r in detector.rules] == [
        "RAPID_REQUESTS",
        "SUSPICIOUS_USER_AGENT",
        "MULTIPLE_SESSIONS",
    ]


class _BrokenRule:
    name = "BROKEN"
    blocking = True

    async def detect(self, context: RequestContext) -> DetectionResult | None:
        msg = "rule crashed"
        raise RuntimeError(msg)


class _AlwaysRule:
    name = "ALWAYS"
    blocking = False

    async def detect(self, context: RequestContext) -> DetectionResult | None:
        return DetectionResult(rule=self.name, blocking=self.blocking)


def test_broken_rule_is_skipped(
    audit_sink: MemoryAuditSink, context: RequestContext
) -> None:
    detector = AntiPiracyDetector(audit_sink, rules=[_BrokenRule(), _AlwaysRule()])
    detections = asyncio.run(detector.evaluate(context))
    assert [d.rule for d in detections] == ["ALWAYS"]
