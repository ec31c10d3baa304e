"""
Pydantic models for request/response validation and persisted records.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN = "unknown"


class CamelModel(BaseModel):
    """Model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(populate_by_name=True)


class RequestContext(BaseModel):
    """Request attributes the access-control components look at."""

    user_agent: str = UNKNOWN
    accept_language: str = UNKNOWN
    client_address: str = UNKNOWN
    method: str = "GET"
    path: str = "/"
    user_id: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    query_params: dict[str, str] = Field(default_factory=dict)

    def audit_context(self, **details: Any) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "action": f"{self.method} {self.path}",
            "ip_address": self.client_address,
            "user_agent": self.user_agent,
            **details,
        }


class Watermark(CamelModel):
    user_id: str = Field(alias="userId")
    issued_at_millis: int = Field(alias="issuedAtMillis")
    position: str


class VideoAccessClaims(CamelModel):
    """Claims carried by a signed video access token."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str = Field(alias="userId")
    video_id: str = Field(alias="videoId")
    batch_id: str = Field(alias="batchId")
    session_id: str = Field(alias="sessionId")
    device_fingerprint: str = Field(alias="deviceFingerprint")
    issued_hour_bucket: int = Field(alias="issuedHourBucket")
    watermark: Watermark = Field(alias="watermarkData")
    iat: int
    exp: int
    iss: str
    aud: str


RESERVED_CLAIMS = frozenset(
    field.alias or name for name, field in VideoAccessClaims.model_fields.items()
)


class SessionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class VideoSession(BaseModel):
    """Persisted record binding a token's session id to a user and validity window."""

    session_id: str
    user_id: str
    video_id: str
    batch_id: str
    token: str
    created_at: int
    expires_at: int
    last_access_at: int | None = None
    active: bool = True
    device_fingerprint: str
    issued_hour_bucket: int
    client_address: str = UNKNOWN
    terminated_at: int | None = None
    end_reason: SessionState | None = None

    @property
    def state(self) -> SessionState:
        if self.active:
            return SessionState.ACTIVE
        return self.end_reason or SessionState.TERMINATED

    def is_live(self, now: float) -> bool:
        return self.active and self.expires_at > now


class ViewRecord(BaseModel):
    """Append-only record of one granted access event."""

    user_id: str
    video_id: str
    batch_id: str
    session_id: str
    viewed_at: int


class SessionFilter(BaseModel):
    """Selects sessions for batch updates; unset fields match anything."""

    user_id: str | None = None
    active: bool | None = None
    expires_before: int | None = None
    client_address: str | None = None

    def matches(self, session: VideoSession) -> bool:
        if self.user_id is not None and session.user_id != self.user_id:
            return False
        if self.active is not None and session.active != self.active:
            return False
        if self.expires_before is not None and not (
            session.expires_at < self.expires_before
        ):
            return False
        return self.client_address is None or (
            session.client_address == self.client_address
        )


class DetectionResult(BaseModel):
    rule: str
    blocking: bool
    details: dict[str, Any] = Field(default_factory=dict)


# HTTP payloads


class TokenRequest(CamelModel):
    video_id: str = Field(alias="videoId", min_length=1)
    batch_id: str = Field(alias="batchId", min_length=1)


class IssuedToken(CamelModel):
    token: str
    session_id: str = Field(alias="sessionId")
    expires_in: int = Field(alias="expiresIn")
    watermark_enabled: bool = Field(alias="watermarkEnabled")


class TerminateRequest(CamelModel):
    session_id: str = Field(alias="sessionId", min_length=1)


class SessionSummary(CamelModel):
    session_id: str = Field(alias="sessionId")
    video_id: str = Field(alias="videoId")
    batch_id: str = Field(alias="batchId")
    created_at: int = Field(alias="createdAt")
    last_access_at: int | None = Field(default=None, alias="lastAccessAt")
    expires_at: int = Field(alias="expiresAt")

    @classmethod
    def from_session(cls, session: VideoSession) -> SessionSummary:
        return cls(
            session_id=session.session_id,
            video_id=session.video_id,
            batch_id=session.batch_id,
            created_at=session.created_at,
            last_access_at=session.last_access_at,
            expires_at=session.expires_at,
        )
