"""Local mirror of hosted auth provider users."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from airesume.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from airesume.models.api_key import APIKey
    from airesume.models.resume import Resume


class User(Base, TimestampMixin):
    """User row keyed by the hosted auth provider subject id."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)

    resumes: Mapped[list[Resume]] = relationship(back_populates="user")
    api_keys: Mapped[list[APIKey]] = relationship(back_populates="user")
