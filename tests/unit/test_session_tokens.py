"""Unit tests for hosted auth session token verification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from jose import jwt

from airesume.core.auth import SessionTokenVerifier, TokenValidationError

SECRET = "test-session-secret-with-enough-length"


def _token(**overrides: object) -> str:
    claims: dict[str, object] = {
        "sub": str(uuid4()),
        "aud": "authenticated",
        "exp": datetime.now(UTC) + timedelta(minutes=5),
    }
    claims.update(overrides)
    algorithm = str(claims.pop("_alg", "HS256"))
    secret = str(claims.pop("_secret", SECRET))
    payload = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(payload, secret, algorithm=algorithm)


def test_valid_token_resolves_user_id() -> None:
    """The subject claim becomes the caller's user id."""
    user_id = uuid4()
    verifier = SessionTokenVerifier(secret=SECRET)
    assert verifier.current_user_id(_token(sub=str(user_id))) == user_id


def test_expired_token_is_rejected_with_token_expired() -> None:
    """Expiry maps to the token_expired code."""
    verifier = SessionTokenVerifier(secret=SECRET)
    with pytest.raises(TokenValidationError) as exc_info:
        verifier.verify(_token(exp=datetime.now(UTC) - timedelta(minutes=1)))
    assert exc_info.value.code == "token_expired"


@pytest.mark.parametrize(
    "token_overrides",
    [
        {"_secret": "another-secret-entirely-different"},
        {"aud": "anon"},
        {"_alg": "HS512"},
        {"sub": "not-a-uuid"},
    ],
)
def test_invalid_tokens_are_rejected(token_overrides: dict[str, object]) -> None:
    """Wrong signature, audience, algorithm, or subject are invalid_token."""
    verifier = SessionTokenVerifier(secret=SECRET)
    with pytest.raises(TokenValidationError) as exc_info:
        verifier.current_user_id(_token(**token_overrides))
    assert exc_info.value.code == "invalid_token"


def test_garbage_token_is_rejected() -> None:
    """Non-JWT strings fail before signature checks."""
    with pytest.raises(TokenValidationError):
        SessionTokenVerifier(secret=SECRET).verify("definitely.not.a-jwt")
