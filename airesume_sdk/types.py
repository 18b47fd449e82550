"""SDK data contract types."""

from __future__ import annotations

from typing import Literal, TypedDict

ErrorCode = Literal[
    "unauthenticated",
    "unauthorized",
    "not_found",
    "validation_error",
    "rotation_conflict",
    "store_error",
    "invalid_api_key",
    "revoked_api_key",
    "expired_api_key",
    "exhausted_api_key",
    "forbidden_origin",
    "insufficient_scope",
    "rate_limited",
    "invalid_token",
    "token_expired",
]

TERMINAL_KEY_ERRORS: frozenset[str] = frozenset(
    {"invalid_api_key", "revoked_api_key", "expired_api_key", "exhausted_api_key"}
)


class TagPayload(TypedDict, total=False):
    """Resume tag as sent over the wire."""

    id: str
    text: str
    class_name: str | None


class ResumeSnapshot(TypedDict, total=False):
    """Resume header fields persisted by auto-save."""

    title: str
    role: str
    display_name: str
    tags: list[TagPayload]
    body_content: str | None


class APIKeyIdentity(TypedDict):
    """Authenticated tool-client identity injected by the API key middleware."""

    type: Literal["api_key"]
    key_id: str
    user_id: str
    resume_id: str | None
    is_admin: bool
    permissions: list[str]


class APIKeyVerification(TypedDict, total=False):
    """Successful verification payload."""

    valid: Literal[True]
    key_id: str
    user_id: str
    resume_id: str | None
    is_admin: bool
    permissions: list[str]
    granted_by: list[str]
    expires_at: str | None


class IssuedAPIKey(TypedDict, total=False):
    """Create or rotate payload; ``api_key`` is shown to the user once."""

    key_id: str
    api_key: str
    name: str
    key_prefix: str
    key_suffix: str
    key_version: int
    permissions: list[str]
    expires_at: str | None
