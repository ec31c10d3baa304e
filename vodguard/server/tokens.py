"""
Signing and decoding of video access tokens (EdDSA JWTs).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import jwt
from pydantic import ValidationError as PydanticValidationError

from vodguard.common.exceptions import ExpiredToken, InvalidToken, TransientError
from vodguard.common.models import VideoAccessClaims

if TYPE_CHECKING:
    from vodguard.common.config import Config, SigningKeys

logger = logging.getLogger(__name__)


class VideoTokenCodec:
    """Mints and checks tokens bound to one issuer/audience pair."""

    def __init__(self, config: Config, signing_keys: SigningKeys) -> None:
        self.config = config
        self.signing_keys = signing_keys
        self.issuer = config.TOKEN_ISSUER
        self.audience = config.TOKEN_AUDIENCE
        self.algorithm = config.TOKEN_ALGORITHM

    def sign(self, claims: dict[str, Any]) -> str:
        try:
            return jwt.encode(
                claims, self.signing_keys.private_key, algorithm=self.algorithm
            )
        except (jwt.PyJWTError, ValueError, TypeError) as err:
            logger.exception("Failed to sign video token")
            msg = "token signing unavailable"
            raise TransientError(msg) from err

    def decode(self, token: str, now: float) -> VideoAccessClaims:
        """Verify signature, issuer, audience and expiry against ``now``."""
        try:
            payload = jwt.decode(
                token,
                self.signing_keys.public_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": ["exp", "iat", "iss", "aud"],
                    # Time claims are checked against the injected clock below
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.PyJWTError as err:
            msg = "video access token is invalid"
            raise InvalidToken(msg) from err

        try:
            claims = VideoAccessClaims.model_validate(payload)
        except PydanticValidationError as err:
            msg = "video access token is missing claims"
            raise InvalidToken(msg) from err

        if claims.exp <= now:
            msg = "video access token has expired"
            raise ExpiredToken(msg)
        return claims
