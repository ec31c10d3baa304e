"""Business logic services for the video access server.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable

from vodguard.common.exceptions import AuthorizationError, SessionNotFound
from vodguard.common.models import SessionSummary
from vodguard.server.anti_piracy import AntiPiracyDetector
from vodguard.server.audit import AuditEvent, RiskLevel, safe_log_event
from vodguard.server.domain.issue_handler import IssueHandler
from vodguard.server.domain.verify_handler import VerifyHandler
from vodguard.server.quota import QuotaEnforcer, RateLimiter
from vodguard.server.session_manager import SessionLifecycleManager
from vodguard.server.tokens import VideoTokenCodec

if TYPE_CHECKING:
    import logging

    from vodguard.common.config import Config, SigningKeys
    from vodguard.common.interfaces import (
        IAuditSink,
        ICounterStore,
        IEnrollmentLookup,
        ISessionStore,
    )
    from vodguard.common.models import (
        IssuedToken,
        RequestContext,
        VideoAccessClaims,
    )


class VideoAccessService:
    """Wires the access-control components and exposes route-level operations."""

    def __init__(  # noqa: PLR0913
        self,
        config: Config,
        signing_keys: SigningKeys,
        session_store: ISessionStore,
        counter_store: ICounterStore,
        enrollment: IEnrollmentLookup,
        audit_sink: IAuditSink,
        video_token_expiry: int,
        max_concurrent_sessions: int,
        max_daily_views: int,
        max_token_requests_per_minute: int,
        watermark_enabled: bool,  # noqa: FBT001
        logger: logging.Logger,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.session_store = session_store
        self.counter_store = counter_store
        self.audit_sink = audit_sink
        self.max_concurrent_sessions = max_concurrent_sessions
        self.clock = clock
        self.logger = logger

        self.codec = VideoTokenCodec(config, signing_keys)
        self.rate_limiter = RateLimiter(counter_store)
        self.quota = QuotaEnforcer(
            session_store,
            self.rate_limiter,
            config=config,
            clock=clock,
            max_concurrent_sessions=max_concurrent_sessions,
            max_daily_views=max_daily_views,
            max_token_requests_per_minute=max_token_requests_per_minute,
        )
        self.lifecycle = SessionLifecycleManager(session_store, clock=clock)
        self.detector = AntiPiracyDetector(
            audit_sink,
            session_store=session_store,
            rate_limiter=self.rate_limiter,
            config=config,
            clock=clock,
        )

        # Initialize handlers
        self.issue_handler = IssueHandler(
            config=config,
            session_store=session_store,
            enrollment=enrollment,
            quota=self.quota,
            codec=self.codec,
            audit_sink=audit_sink,
            video_token_expiry=video_token_expiry,
            watermark_enabled=watermark_enabled,
            clock=clock,
        )
        self.verify_handler = VerifyHandler(
            config=config,
            session_store=session_store,
            codec=self.codec,
            audit_sink=audit_sink,
            clock=clock,
        )

    def health(self) -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "timestamp": int(self.clock())}

    async def issue(
        self,
        context: RequestContext,
        user_id: str,
        video_id: str,
        batch_id: str,
        extra_claims: dict[str, Any] | None = None,
    ) -> IssuedToken:
        return await self.issue_handler.handle_issue(
            context, user_id, video_id, batch_id, extra_claims
        )

    async def authorize_playback(
        self, context: RequestContext, video_id: str | None = None
    ) -> VideoAccessClaims:
        """Anti-piracy rules first, then token verification."""
        await self.detector.evaluate(context)
        claims = await self.verify_handler.handle_verify(context)
        if video_id is not None and claims.video_id != video_id:
            msg = "token was issued for a different video"
            raise AuthorizationError(msg, code="VIDEO_MISMATCH")
        return claims

    async def record_stream(
        self, context: RequestContext, claims: VideoAccessClaims
    ) -> None:
        await safe_log_event(
            self.audit_sink,
            AuditEvent.VIDEO_VIEW,
            context.audit_context(
                video_id=claims.video_id,
                batch_id=claims.batch_id,
                session_id=claims.session_id,
            ),
            RiskLevel.LOW,
        )

    async def terminate(self, context: RequestContext, session_id: str) -> None:
        """End one of the caller's own sessions."""
        session = await self.session_store.get_session(session_id)
        if session is None or session.user_id != context.user_id:
            msg = "video session not found"
            raise SessionNotFound(msg)

        await self.lifecycle.terminate(session_id)
        self.logger.info("Session %s terminated by user %s", session_id, session.user_id)
        await safe_log_event(
            self.audit_sink,
            AuditEvent.VIDEO_SESSION_END,
            context.audit_context(session_id=session_id, terminated_by="user"),
            RiskLevel.LOW,
        )

    async def list_sessions(self, user_id: str) -> dict[str, Any]:
        sessions = await self.lifecycle.list_active_sessions(user_id)
        return {
            "sessions": [
                SessionSummary.from_session(s).model_dump(by_alias=True)
                for s in sessions
            ],
            "count": len(sessions),
            "maxAllowed": self.max_concurrent_sessions,
        }

    async def sweep(self) -> int:
        return await self.lifecycle.sweep_expired()
