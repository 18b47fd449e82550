"""Resume snapshot schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from airesume.services.backends import ResumeRecord


class TagPayload(BaseModel):
    """One resume tag chip."""

    id: str = Field(min_length=1)
    text: str
    class_name: str | None = None


class ResumeSnapshotRequest(BaseModel):
    """Editor snapshot; omitted fields are left unchanged."""

    title: str | None = Field(default=None, max_length=256)
    role: str | None = None
    display_name: str | None = None
    tags: list[TagPayload] | None = None
    body_content: str | None = None

    @field_validator("title", "role", "display_name")
    @classmethod
    def reject_null(cls, value: str | None) -> str:
        """Header text fields may be omitted but not cleared with null."""
        if value is None:
            raise ValueError("Field cannot be null.")
        return value


class ResumeResponse(BaseModel):
    """Persisted resume header fields."""

    id: UUID
    title: str
    slug: str
    role: str
    display_name: str
    tags: list[TagPayload]
    body_content: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_record(cls, record: ResumeRecord) -> ResumeResponse:
        return cls(
            id=record.id,
            title=record.title,
            slug=record.slug,
            role=record.role,
            display_name=record.display_name,
            tags=[TagPayload.model_validate(tag) for tag in record.tags],
            body_content=record.body_content,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
