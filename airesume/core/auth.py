"""Verification of hosted auth provider session tokens."""

from __future__ import annotations

import hmac
from functools import lru_cache
from typing import Any
from uuid import UUID

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from airesume.config import get_settings


class TokenValidationError(Exception):
    """Raised when a session token fails verification."""

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


class SessionTokenVerifier:
    """Verify HMAC-signed session JWTs issued by the hosted auth provider."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: str = "authenticated",
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    def verify(self, token: str) -> dict[str, Any]:
        """Verify signature, audience, and expiry and return claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenValidationError("Invalid token.", "invalid_token") from exc
        algorithm = str(header.get("alg", ""))
        if not hmac.compare_digest(algorithm, self._algorithm):
            raise TokenValidationError("Invalid token algorithm.", "invalid_token")

        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                options={"require_exp": True, "require_sub": True},
            )
        except ExpiredSignatureError as exc:
            raise TokenValidationError("Token has expired.", "token_expired") from exc
        except JWTError as exc:
            raise TokenValidationError("Invalid token.", "invalid_token") from exc

    def current_user_id(self, token: str) -> UUID:
        """Resolve the authenticated user id from a session token."""
        claims = self.verify(token)
        try:
            return UUID(str(claims["sub"]))
        except (KeyError, ValueError) as exc:
            raise TokenValidationError("Invalid token subject.", "invalid_token") from exc


@lru_cache
def get_session_token_verifier() -> SessionTokenVerifier:
    """Build and cache the session token verifier from application settings."""
    settings = get_settings()
    return SessionTokenVerifier(
        secret=settings.auth.jwt_secret.get_secret_value(),
        algorithm=settings.auth.algorithm,
        audience=settings.auth.audience,
    )
