"""Unit tests for API key secret generation and hashing."""

from __future__ import annotations

from hashlib import sha256

from airesume.core.key_material import KeyMaterialGenerator


def test_generated_secret_has_prefix_and_fixed_length() -> None:
    """Secrets are the prefix plus 32 URL-safe symbols."""
    generator = KeyMaterialGenerator()
    secret = generator.generate()

    assert secret.startswith("mcp_")
    assert len(secret) == 36
    assert generator.is_valid_format(secret) is True
    body = secret[len("mcp_") :]
    assert all(char.isalnum() or char in "_-" for char in body)


def test_generated_secrets_do_not_repeat() -> None:
    """A batch of generated secrets contains no duplicates."""
    generator = KeyMaterialGenerator()
    secrets = {generator.generate() for _ in range(500)}
    assert len(secrets) == 500


def test_derive_returns_digest_and_display_fragments() -> None:
    """Stored material is the SHA-256 hex digest with first and last four characters."""
    generator = KeyMaterialGenerator()
    secret = "mcp_" + "a" * 28 + "WXYZ"
    material = generator.derive(secret)

    assert material.hash == sha256(secret.encode("utf-8")).hexdigest()
    assert material.prefix == "mcp_"
    assert material.suffix == "WXYZ"
    assert secret not in (material.hash, material.prefix, material.suffix)


def test_format_check_rejects_wrong_prefix_and_length() -> None:
    """Malformed secrets are rejected before any lookup."""
    generator = KeyMaterialGenerator()
    assert generator.is_valid_format("sk_" + "a" * 33) is False
    assert generator.is_valid_format("mcp_short") is False
    assert generator.is_valid_format("mcp_" + "a" * 33) is False


def test_custom_prefix_is_honoured() -> None:
    """Configured prefix drives both generation and format checks."""
    generator = KeyMaterialGenerator(prefix="rk_")
    secret = generator.generate()
    assert secret.startswith("rk_")
    assert generator.prefix == "rk_"
    assert generator.is_valid_format(secret) is True
