"""Token verification handler.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from vodguard.common.crypto import CryptoUtils
from vodguard.common.exceptions import (
    DeviceMismatch,
    InvalidSession,
    InvalidToken,
    MissingToken,
)
from vodguard.common.models import SessionState
from vodguard.server.audit import AuditEvent, RiskLevel, safe_log_event

if TYPE_CHECKING:
    from vodguard.common.config import Config
    from vodguard.common.interfaces import IAuditSink, ISessionStore
    from vodguard.common.models import RequestContext, VideoAccessClaims, VideoSession
    from vodguard.server.tokens import VideoTokenCodec


class VerifyHandler:
    """Gates every playback request on a valid token, live session and same device."""

    def __init__(
        self,
        config: Config,
        session_store: ISessionStore,
        codec: VideoTokenCodec,
        audit_sink: IAuditSink,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.session_store = session_store
        self.codec = codec
        self.audit_sink = audit_sink
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def handle_verify(
        self, context: RequestContext, token: str | None = None
    ) -> VideoAccessClaims:
        """Return the token's claims or raise the first failing check."""
        token = token or self.extract_token(context)
        now = self.clock()
        claims = await self._decode(context, token, now)
        session = await self._load_active_session(context, claims, now)
        await self._check_device(context, claims, session)

        await self.session_store.update_session(
            session.session_id, {"last_access_at": int(now)}
        )
        return claims

    def extract_token(self, context: RequestContext) -> str:
        """Read the token from the dedicated header, falling back to the query."""
        token = context.headers.get(self.config.TOKEN_HEADER) or context.query_params.get(
            self.config.TOKEN_QUERY_PARAM
        )
        if not token:
            msg = "video access token is required"
            raise MissingToken(msg)
        return token

    async def _decode(
        self, context: RequestContext, token: str, now: float
    ) -> VideoAccessClaims:
        try:
            return self.codec.decode(token, now)
        except InvalidToken as err:
            await safe_log_event(
                self.audit_sink,
                AuditEvent.UNAUTHORIZED_ACCESS,
                context.audit_context(reason=str(err)),
                RiskLevel.MEDIUM,
            )
            raise

    async def _load_active_session(
        self, context: RequestContext, claims: VideoAccessClaims, now: float
    ) -> VideoSession:
        session = await self.session_store.get_session(claims.session_id)

        if session is not None and session.active and session.expires_at <= now:
            # Expiry observed before the sweep got to it
            await self.session_store.update_session(
                session.session_id,
                {
                    "active": False,
                    "terminated_at": int(now),
                    "end_reason": SessionState.EXPIRED,
                },
            )
            session = None

        if session is None or not session.active or session.user_id != claims.user_id:
            self.logger.info("Rejected inactive video session %s", claims.session_id)
            await safe_log_event(
                self.audit_sink,
                AuditEvent.UNAUTHORIZED_ACCESS,
                context.audit_context(
                    reason="Invalid or expired video session",
                    video_id=claims.video_id,
                    session_id=claims.session_id,
                ),
                RiskLevel.MEDIUM,
            )
            msg = "video session is invalid or expired"
            raise InvalidSession(msg)
        return session

    async def _check_device(
        self,
        context: RequestContext,
        claims: VideoAccessClaims,
        session: VideoSession,
    ) -> None:
        # The issuance hour is used, not the current one, so a token stays
        # valid across hour boundaries.
        current = CryptoUtils.device_fingerprint(context, claims.issued_hour_bucket)
        if CryptoUtils.fingerprints_match(
            claims.device_fingerprint, current
        ) and CryptoUtils.fingerprints_match(session.device_fingerprint, current):
            return

        self.logger.warning(
            "Device fingerprint mismatch for session %s", claims.session_id
        )
        await safe_log_event(
            self.audit_sink,
            AuditEvent.SUSPICIOUS_ACTIVITY,
            context.audit_context(
                reason="Device fingerprint mismatch",
                video_id=claims.video_id,
                session_id=claims.session_id,
            ),
            RiskLevel.CRITICAL,
        )
        msg = "device verification failed"
        raise DeviceMismatch(msg)
