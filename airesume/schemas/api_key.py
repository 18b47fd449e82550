"""API key request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from airesume.services.backends import APIKeyRecord

RotationPolicyName = Literal["never", "monthly", "quarterly", "yearly"]


class APIKeyCreateRequest(BaseModel):
    """Create API key request payload."""

    name: str = Field(min_length=1, max_length=128)
    permissions: list[str] = Field(default_factory=lambda: ["read"])
    resume_id: UUID | None = None
    is_admin: bool = False
    expires_at: datetime | None = None
    max_uses: int | None = None
    rate_limit: int | None = None
    notes: str | None = None
    ip_whitelist: list[str] | None = None
    user_agent_pattern: str | None = None
    rotation_policy: RotationPolicyName = "never"


class APIKeyUpdateRequest(BaseModel):
    """Partial update payload; only fields present in the body are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=128)
    notes: str | None = None
    permissions: list[str] | None = None
    rate_limit: int | None = None
    expires_at: datetime | None = None
    max_uses: int | None = None
    ip_whitelist: list[str] | None = None
    user_agent_pattern: str | None = None
    rotation_policy: RotationPolicyName | None = None


class APIKeyResponse(BaseModel):
    """API key record without secret material."""

    key_id: UUID
    name: str
    key_prefix: str
    key_suffix: str
    resume_id: UUID | None
    resume_title: str | None
    is_admin: bool
    permissions: list[str]
    notes: str | None
    expires_at: datetime | None
    max_uses: int | None
    rate_limit: int
    use_count: int
    unique_ips: int
    first_used_at: datetime | None
    last_used_at: datetime | None
    is_revoked: bool
    is_active: bool
    rotation_policy: str
    next_rotation_date: datetime | None
    last_rotated_at: datetime | None
    rotation_due: bool
    key_version: int
    ip_whitelist: list[str] | None
    user_agent_pattern: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: APIKeyRecord) -> APIKeyResponse:
        return cls(
            key_id=record.id,
            name=record.name,
            key_prefix=record.key_prefix,
            key_suffix=record.key_suffix,
            resume_id=record.resume_id,
            resume_title=record.resume_title,
            is_admin=record.is_admin,
            permissions=list(record.permissions),
            notes=record.notes,
            expires_at=record.expires_at,
            max_uses=record.max_uses,
            rate_limit=record.rate_limit,
            use_count=record.use_count,
            unique_ips=record.unique_ips,
            first_used_at=record.first_used_at,
            last_used_at=record.last_used_at,
            is_revoked=record.is_revoked,
            is_active=record.is_active(),
            rotation_policy=record.rotation_policy,
            next_rotation_date=record.next_rotation_date,
            last_rotated_at=record.last_rotated_at,
            rotation_due=record.rotation_due(),
            key_version=record.key_version,
            ip_whitelist=list(record.ip_whitelist) if record.ip_whitelist is not None else None,
            user_agent_pattern=record.user_agent_pattern,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class APIKeySecretResponse(APIKeyResponse):
    """Create or rotate response containing the raw key one time."""

    api_key: str


class APIKeyReasonRequest(BaseModel):
    """Optional operator note recorded with a revoke or rotate audit event."""

    reason: str | None = Field(default=None, max_length=500)


class APIKeyVerifyRequest(BaseModel):
    """Verify a presented API key for one tool call."""

    api_key: str = Field(min_length=4)
    verb: Literal["read", "write", "delete"] | None = None
    category: str | None = None


class APIKeyVerifyResponse(BaseModel):
    """Successful verification payload."""

    valid: Literal[True] = True
    key_id: UUID
    user_id: UUID
    resume_id: UUID | None
    is_admin: bool
    permissions: list[str]
    granted_by: list[str]
    expires_at: datetime | None
