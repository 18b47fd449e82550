"""API key ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from airesume.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from airesume.models.resume import Resume
    from airesume.models.user import User


class APIKey(Base, TimestampMixin):
    """Hashed API key record granting scoped access to resume data."""

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("ix_api_keys_user_id_created_at", "user_id", "created_at"),
        CheckConstraint(
            "(is_admin AND resume_id IS NULL) OR (NOT is_admin AND resume_id IS NOT NULL)",
            name="admin_scope",
        ),
        CheckConstraint("NOT is_admin OR expires_at IS NOT NULL", name="admin_expiry"),
        CheckConstraint("rate_limit > 0", name="rate_limit_positive"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    resume_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("resumes.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    key_prefix: Mapped[str] = mapped_column(String(4), nullable=False)
    key_suffix: Mapped[str] = mapped_column(String(4), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    permissions: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    first_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    use_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_ips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seen_ips: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rotation_policy: Mapped[str] = mapped_column(String(16), nullable=False, default="never")
    next_rotation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ip_whitelist: Mapped[list[str] | None] = mapped_column(JSONB, nullable=True)
    user_agent_pattern: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(back_populates="api_keys")
    resume: Mapped[Resume | None] = relationship(back_populates="api_keys")
