from __future__ import annotations

import logging
from pathlib import Path

import pytest

from vodguard.common.config import Config, SigningKeys
from vodguard.common.models import RequestContext
from vodguard.server.audit import MemoryAuditSink
from vodguard.server.enrollment import StaticEnrollmentLookup
from vodguard.server.keygen import KeyGenerator
from vodguard.server.persistence import MemoryCounterStore, MemorySessionStore
from vodguard.server.quota import start_of_day
from vodguard.server.services import VideoAccessService

USER = "user-1"
BATCH = "batch-1"
VIDEO = "video-1"


class FakeClock:
    """Mutable clock returning epoch seconds."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    # Mid-morning local time so nearby advances stay on the same calendar day
    return FakeClock(start_of_day(1_700_000_000) + 10 * 3600 + 60)


@pytest.fixture
def temp_keys_dir(tmp_path: Path) -> Path:
    """Create temporary keys directory with signing keys."""
    keys_dir = tmp_path / "keys"
    KeyGenerator(keys_dir).generate_keys()
    return keys_dir


@pytest.fixture
def signing_keys() -> SigningKeys:
    return SigningKeys.generate()


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(
        user_agent="Mozilla/5.0 (X11; Linux x86_64)",
        accept_language="en-US",
        client_address="203.0.113.7",
        method="GET",
        path=f"/video/stream/{VIDEO}",
        user_id=USER,
    )


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def enrollment() -> StaticEnrollmentLookup:
    return StaticEnrollmentLookup([(USER, BATCH)])


@pytest.fixture
def service(
    signing_keys: SigningKeys,
    session_store: MemorySessionStore,
    enrollment: StaticEnrollmentLookup,
    audit_sink: MemoryAuditSink,
    clock: FakeClock,
) -> VideoAccessService:
    config = Config()
    return VideoAccessService(
        config=config,
        signing_keys=signing_keys,
        session_store=session_store,
        counter_store=MemoryCounterStore(clock=clock),
        enrollment=enrollment,
        audit_sink=audit_sink,
        video_token_expiry=config.VIDEO_TOKEN_EXPIRY,
        max_concurrent_sessions=config.MAX_CONCURRENT_SESSIONS,
        max_daily_views=config.MAX_DAILY_VIEWS,
        max_token_requests_per_minute=config.MAX_TOKEN_REQUESTS_PER_MINUTE,
        watermark_enabled=config.WATERMARK_ENABLED,
        logger=logging.getLogger("tests"),
        clock=clock,
    )


def with_token(context: RequestContext, token: str) -> RequestContext:
    """Copy of the context carrying the token in the dedicated header."""
    return context.model_copy(update={"headers": {"x-video-token": token}})
