"""
Creates the Ed25519 key pair that signs video tokens.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cryptography.hazmat.primitives import serialization

from vodguard.common.config import (
    PRIVATE_KEY_FILENAME,
    PUBLIC_KEY_FILENAME,
    Config,
    SigningKeys,
)

logger = logging.getLogger(__name__)


class KeyGenerator:
    """Writes a signing key pair as PEM files into one directory."""

    def __init__(self, keys_dir: Path | None = None):
        self.keys_dir = keys_dir or Config().SERVER_KEYS_DIR
        self.private_path = self.keys_dir / PRIVATE_KEY_FILENAME
        self.public_path = self.keys_dir / PUBLIC_KEY_FILENAME

    def exists(self) -> bool:
        return self.private_path.exists() or self.public_path.exists()

    def generate_keys(self, *, overwrite: bool = False) -> tuple[Path, Path]:
        """Write a fresh pair and return ``(private_path, public_path)``.

        Existing keys are kept unless ``overwrite`` is set; replacing them
        invalidates every token already issued.
        """
        if self.exists() and not overwrite:
            msg = f"Signing keys already exist in {self.keys_dir}"
            raise FileExistsError(msg)

        keys = SigningKeys.generate()
        self.keys_dir.mkdir(parents=True, exist_ok=True)

        self.private_path.write_bytes(
            keys.private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        self.private_path.chmod(0o600)
        self.public_path.write_bytes(
            keys.public_key.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

        logger.info("Video token signing keys written to %s", self.keys_dir)
        if overwrite:
            logger.warning("Previous signing keys replaced; issued tokens are void")
        return self.private_path, self.public_path
