"""API key secret generation, hashing, and comparison primitives."""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from hashlib import sha256

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
_SECRET_LENGTH = 32
_DISPLAY_LENGTH = 4


@dataclass(frozen=True)
class DerivedKeyMaterial:
    """Storable form of a secret: digest plus display fragments."""

    hash: str
    prefix: str
    suffix: str


class KeyMaterialGenerator:
    """Produce API key secrets and their persisted derivatives.

    Secrets look like ``mcp_`` followed by 32 symbols from a 64-symbol
    URL-safe alphabet, which gives 192 bits of entropy. Only the SHA-256
    digest and the first/last four characters are ever stored.
    """

    def __init__(self, prefix: str = "mcp_") -> None:
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def generate(self) -> str:
        """Generate a new plaintext secret using the OS randomness source."""
        body = "".join(secrets.choice(_ALPHABET) for _ in range(_SECRET_LENGTH))
        return f"{self._prefix}{body}"

    def hash_key(self, secret: str) -> str:
        """Hash a plaintext secret using SHA-256 hex digest."""
        return sha256(secret.encode("utf-8")).hexdigest()

    def derive(self, secret: str) -> DerivedKeyMaterial:
        """Return the digest and display fragments for a plaintext secret."""
        return DerivedKeyMaterial(
            hash=self.hash_key(secret),
            prefix=secret[:_DISPLAY_LENGTH],
            suffix=secret[-_DISPLAY_LENGTH:],
        )

    def is_valid_format(self, secret: str) -> bool:
        """Validate secret prefix and length before any lookup."""
        if len(secret) != len(self._prefix) + _SECRET_LENGTH:
            return False
        return hmac.compare_digest(secret[: len(self._prefix)], self._prefix)
