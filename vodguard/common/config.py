"""
Configuration settings for the video access subsystem.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PRIVATE_KEY_FILENAME = "signing_private.key"
PUBLIC_KEY_FILENAME = "signing_public.key"


def _env_bool(name: str, default: bool) -> bool:  # noqa: FBT001
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Token and session settings
        self.VIDEO_TOKEN_EXPIRY: int = int(
            os.getenv("VODGUARD_TOKEN_EXPIRY", str(2 * 60 * 60))
        )  # Seconds a video token (and its session) stays valid
        self.MAX_CONCURRENT_SESSIONS: int = int(
            os.getenv("VODGUARD_MAX_CONCURRENT_SESSIONS", "3")
        )
        self.MAX_DAILY_VIEWS: int = int(os.getenv("VODGUARD_MAX_DAILY_VIEWS", "50"))
        self.MAX_TOKEN_REQUESTS_PER_MINUTE: int = int(
            os.getenv("VODGUARD_MAX_TOKEN_REQUESTS_PER_MINUTE", "10")
        )
        self.WATERMARK_ENABLED: bool = _env_bool("VODGUARD_WATERMARK_ENABLED", True)
        self.WATERMARK_POSITION: str = "bottom-right"
        self.SWEEP_INTERVAL: int = int(
            os.getenv("VODGUARD_SWEEP_INTERVAL", str(60 * 60))
        )

        # Token claims binding
        self.TOKEN_ISSUER: str = "edtech-platform"
        self.TOKEN_AUDIENCE: str = "video-player"
        self.TOKEN_ALGORITHM: str = "EdDSA"

        # Token transport
        self.TOKEN_HEADER: str = "x-video-token"
        self.TOKEN_QUERY_PARAM: str = "token"
        self.USER_ID_HEADER: str = "x-user-id"
        self.ADMIN_TOKEN_HEADER: str = "x-admin-token"

        # Anti-piracy rule thresholds
        self.RAPID_REQUEST_THRESHOLD: int = 10  # Requests allowed per window
        self.RAPID_REQUEST_WINDOW_MS: int = 60_000
        self.SUSPICIOUS_USER_AGENT_KEYWORDS: list[str] = [
            "bot",
            "crawler",
            "scraper",
            "downloader",
        ]
        self.MULTIPLE_SESSIONS_THRESHOLD: int = 5  # Active sessions per address

        # Server settings
        self.ADMIN_TOKEN: str | None = os.getenv("VODGUARD_ADMIN_TOKEN")
        self.SERVER_HOST: str = os.getenv("VODGUARD_SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT: int = int(os.getenv("VODGUARD_SERVER_PORT", "8000"))
        self.SERVER_URL: str = f"http://{self.SERVER_HOST}:{self.SERVER_PORT}"
        self.REDIS_URL: str | None = os.getenv("VODGUARD_REDIS_URL") or None
        # JSON or CSV of user/batch enrollment pairs
        self.ENROLLMENTS_FILE: Path | None = (
            Path(os.environ["VODGUARD_ENROLLMENTS_FILE"])
            if os.getenv("VODGUARD_ENROLLMENTS_FILE")
            else None
        )

        # File paths
        self.BASE_DIR: Path = Path(__file__).parent.parent
        self.SERVER_KEYS_DIR: Path = Path(
            os.getenv("VODGUARD_KEYS_DIR", str(self.BASE_DIR / "keys"))
        )
        self.SIGNING_PRIVATE_KEY_PATH: Path = (
            self.SERVER_KEYS_DIR / PRIVATE_KEY_FILENAME
        )
        self.SIGNING_PUBLIC_KEY_PATH: Path = self.SERVER_KEYS_DIR / PUBLIC_KEY_FILENAME

        # Logging
        self.LOG_LEVEL: int = logging.INFO
        self.AUDIT_LOG_LEVEL: int = logging.INFO  # vodguard.audit logger


@dataclass(frozen=True)
class SigningKeys:
    """Ed25519 key pair used to mint and verify video tokens."""

    private_key: Ed25519PrivateKey
    public_key: Ed25519PublicKey

    @classmethod
    def generate(cls) -> SigningKeys:
        private_key = Ed25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())


@dataclass(frozen=True)
class SigningKeysResult:
    """Outcome of loading signing keys at startup."""

    keys: SigningKeys | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.keys is not None and self.error is None


def load_signing_keys(
    config: Config, keys_dir: Path | None = None
) -> SigningKeysResult:
    """Load the signing key pair eagerly; never raises."""
    keys_dir = keys_dir or config.SERVER_KEYS_DIR
    private_path = keys_dir / PRIVATE_KEY_FILENAME
    public_path = keys_dir / PUBLIC_KEY_FILENAME
    try:
        with private_path.open("rb") as f:
            private_key = serialization.load_pem_private_key(f.read(), None)
        with public_path.open("rb") as f:
            public_key = serialization.load_pem_public_key(f.read())
    except FileNotFoundError:
        return SigningKeysResult(
            error=(
                f"Signing keys not found at {private_path} and {public_path}. "
                "Run 'vodguard keygen' to generate them."
            )
        )
    except ValueError as err:
        return SigningKeysResult(error=f"Signing keys in {keys_dir} are unreadable: {err}")

    if not isinstance(private_key, Ed25519PrivateKey) or not isinstance(
        public_key, Ed25519PublicKey
    ):
        return SigningKeysResult(error=f"Signing keys in {keys_dir} are not Ed25519 keys")

    return SigningKeysResult(
        keys=SigningKeys(
            private_key=cast("Ed25519PrivateKey", private_key),
            public_key=cast("Ed25519PublicKey", public_key),
        )
    )
