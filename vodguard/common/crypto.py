"""Common cryptographic utilities.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vodguard.common.models import RequestContext

MILLIS_PER_HOUR = 60 * 60 * 1000


class CryptoUtils:
    """Utility class for fingerprinting and identifiers."""

    @staticmethod
    def hour_bucket(now: float) -> int:
        """Coarse time bucket: whole hours since the epoch."""
        return int(now * 1000) // MILLIS_PER_HOUR

    @staticmethod
    def device_fingerprint(context: RequestContext, hour_bucket: int) -> str:
        """Derive the SHA-256 hex digest of device attributes and an hour bucket.

        Deterministic for equal inputs; carries no secret, so it detects token
        sharing rather than authenticating the device.
        """
        material = (
            f"{context.user_agent}:{context.accept_language}:"
            f"{context.client_address}:{hour_bucket}"
        )
        return hashlib.sha256(material.encode()).hexdigest()

    @staticmethod
    def fingerprints_match(expected: str, actual: str) -> bool:
        return hmac.compare_digest(expected.encode(), actual.encode())

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())
