"""
Custom exceptions for the video access subsystem.

Every failure surfaced to a caller carries a stable ``code`` so that players can
tell "log in again" apart from "too many devices" apart from "blocked".
"""

from __future__ import annotations


class VideoAccessError(Exception):
    """Base exception for video access failures."""

    code: str = "VIDEO_ACCESS_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or broken."""


# Validation


class ValidationError(VideoAccessError):
    """Exception for missing or malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class MissingToken(ValidationError):
    code = "MISSING_VIDEO_TOKEN"
    status_code = 401


class InvalidToken(ValidationError):
    code = "INVALID_VIDEO_TOKEN"
    status_code = 401


class ExpiredToken(InvalidToken):
    code = "EXPIRED_VIDEO_TOKEN"


# Authorization


class AuthorizationError(VideoAccessError):
    code = "ACCESS_DENIED"
    status_code = 403


class EnrollmentRequired(AuthorizationError):
    code = "ENROLLMENT_REQUIRED"


class ConcurrencyLimitExceeded(AuthorizationError):
    code = "CONCURRENCY_LIMIT_EXCEEDED"


class DailyQuotaExceeded(AuthorizationError):
    code = "DAILY_QUOTA_EXCEEDED"


class RateLimitError(AuthorizationError):
    """Exception for rate limiting."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


# Security


class SecurityError(VideoAccessError):
    code = "SECURITY_ERROR"
    status_code = 403


class DeviceMismatch(SecurityError):
    code = "DEVICE_MISMATCH"


class SuspiciousActivity(SecurityError):
    code = "SUSPICIOUS_ACTIVITY_DETECTED"


# Lookup


class NotFoundError(VideoAccessError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidSession(NotFoundError):
    code = "INVALID_VIDEO_SESSION"
    status_code = 401


class SessionNotFound(NotFoundError):
    code = "SESSION_NOT_FOUND"


class TransientError(VideoAccessError):
    """Store or signing backend unavailable; the request may be retried later."""

    code = "TRANSIENT_ERROR"
    status_code = 503
