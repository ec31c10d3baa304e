"""Token issuance handler.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from vodguard.common.crypto import CryptoUtils
from vodguard.common.exceptions import EnrollmentRequired, RateLimitError
from vodguard.common.models import (
    RESERVED_CLAIMS,
    IssuedToken,
    RequestContext,
    VideoSession,
    ViewRecord,
    Watermark,
)
from vodguard.server.audit import AuditEvent, RiskLevel, safe_log_event

if TYPE_CHECKING:
    from vodguard.common.config import Config
    from vodguard.common.interfaces import (
        IAuditSink,
        IEnrollmentLookup,
        ISessionStore,
    )
    from vodguard.server.quota import QuotaEnforcer
    from vodguard.server.tokens import VideoTokenCodec


class IssueHandler:
    """Validates a token request, records the session and mints the token."""

    def __init__(  # noqa: PLR0913
        self,
        config: Config,
        session_store: ISessionStore,
        enrollment: IEnrollmentLookup,
        quota: QuotaEnforcer,
        codec: VideoTokenCodec,
        audit_sink: IAuditSink,
        video_token_expiry: int,
        watermark_enabled: bool,  # noqa: FBT001
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.session_store = session_store
        self.enrollment = enrollment
        self.quota = quota
        self.codec = codec
        self.audit_sink = audit_sink
        self.video_token_expiry = video_token_expiry
        self.watermark_enabled = watermark_enabled
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def handle_issue(  # noqa: PLR0913
        self,
        context: RequestContext,
        user_id: str,
        video_id: str,
        batch_id: str,
        extra_claims: dict[str, Any] | None = None,
    ) -> IssuedToken:
        """Issue a device-bound video token for an enrolled user."""
        await self._check_request_rate(context, user_id)
        await self._require_enrollment(context, user_id, video_id, batch_id)
        await self.quota.enforce(user_id)

        now = self.clock()
        session, token = self._mint(
            context, user_id, video_id, batch_id, now, extra_claims or {}
        )

        # The view is recorded first so a failed write never leaves an active
        # session outside the daily quota. The session must exist before the
        # token leaves this method so that an immediate verification finds it.
        await self.session_store.append_view(
            ViewRecord(
                user_id=user_id,
                video_id=video_id,
                batch_id=batch_id,
                session_id=session.session_id,
                viewed_at=int(now),
            )
        )
        await self.session_store.create_session(session)

        self.logger.info(
            "Issued video token for user %s video %s session %s",
            user_id,
            video_id,
            session.session_id,
        )
        await safe_log_event(
            self.audit_sink,
            AuditEvent.VIDEO_ACCESS,
            context.audit_context(
                video_id=video_id, batch_id=batch_id, session_id=session.session_id
            ),
            RiskLevel.LOW,
        )

        return IssuedToken(
            token=token,
            session_id=session.session_id,
            expires_in=self.video_token_expiry,
            watermark_enabled=self.watermark_enabled,
        )

    async def _check_request_rate(self, context: RequestContext, user_id: str) -> None:
        try:
            await self.quota.check_token_request_rate(user_id)
        except RateLimitError:
            await safe_log_event(
                self.audit_sink,
                AuditEvent.RATE_LIMIT_EXCEEDED,
                context.audit_context(reason="token request rate"),
                RiskLevel.MEDIUM,
            )
            raise

    async def _require_enrollment(
        self, context: RequestContext, user_id: str, video_id: str, batch_id: str
    ) -> None:
        if await self.enrollment.is_enrolled(user_id, batch_id):
            return
        await safe_log_event(
            self.audit_sink,
            AuditEvent.UNAUTHORIZED_ACCESS,
            context.audit_context(
                reason="User not enrolled in batch",
                video_id=video_id,
                batch_id=batch_id,
            ),
            RiskLevel.MEDIUM,
        )
        msg = "user is not enrolled in this batch"
        raise EnrollmentRequired(msg)

    def _build_claims(  # noqa: PLR0913
        self,
        user_id: str,
        video_id: str,
        batch_id: str,
        session_id: str,
        fingerprint: str,
        hour_bucket: int,
        now: float,
        extra_claims: dict[str, Any],
    ) -> dict[str, Any]:
        claims: dict[str, Any] = {}
        for name, value in extra_claims.items():
            if name in RESERVED_CLAIMS:
                self.logger.warning("Ignoring extra claim %s: reserved name", name)
                continue
            claims[name] = value

        watermark = Watermark(
            user_id=user_id,
            issued_at_millis=int(now * 1000),
            position=self.config.WATERMARK_POSITION,
        )
        claims.update(
            {
                "userId": user_id,
                "videoId": video_id,
                "batchId": batch_id,
                "sessionId": session_id,
                "deviceFingerprint": fingerprint,
                "issuedHourBucket": hour_bucket,
                "watermarkData": watermark.model_dump(by_alias=True),
                "iat": int(now),
                "exp": int(now) + self.video_token_expiry,
                "iss": self.codec.issuer,
                "aud": self.codec.audience,
            }
        )
        return claims

    def _mint(  # noqa: PLR0913
        self,
        context: RequestContext,
        user_id: str,
        video_id: str,
        batch_id: str,
        now: float,
        extra_claims: dict[str, Any],
    ) -> tuple[VideoSession, str]:
        """Compute fingerprint and session id, sign the token, build the session."""
        hour_bucket = CryptoUtils.hour_bucket(now)
        fingerprint = CryptoUtils.device_fingerprint(context, hour_bucket)
        session_id = CryptoUtils.new_session_id()

        claims = self._build_claims(
            user_id,
            video_id,
            batch_id,
            session_id,
            fingerprint,
            hour_bucket,
            now,
            extra_claims,
        )
        token = self.codec.sign(claims)

        session = VideoSession(
            session_id=session_id,
            user_id=user_id,
            video_id=video_id,
            batch_id=batch_id,
            token=token,
            created_at=int(now),
            expires_at=claims["exp"],
            active=True,
            device_fingerprint=fingerprint,
            issued_hour_bucket=hour_bucket,
            client_address=context.client_address,
        )
        return session, token
