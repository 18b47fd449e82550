"""Resume snapshot persistence for the editor auto-save path."""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any
from uuid import UUID

import structlog

from airesume.core.results import ErrorKind, ServiceResult
from airesume.services.backends import ResumeBackend, ResumeRecord

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "Untitled Resume"
_SNAPSHOT_FIELDS = frozenset({"title", "role", "display_name", "tags", "body_content"})
_NOT_NULL_FIELDS = ("title", "role", "display_name")
_NON_WORD = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")


def generate_slug(title: str) -> str:
    """Build a URL-friendly slug from a resume title."""
    slug = _NON_WORD.sub("", title.lower().strip())
    slug = _SEPARATORS.sub("-", slug)
    return slug.strip("-")


class ResumeServiceError(Exception):
    """Raised for expected snapshot persistence failures."""

    def __init__(self, detail: str, kind: ErrorKind) -> None:
        super().__init__(detail)
        self.detail = detail
        self.kind = kind


def _clean_snapshot(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - _SNAPSHOT_FIELDS
    if unknown:
        raise ResumeServiceError(
            f"Unknown resume fields: {', '.join(sorted(unknown))}.", ErrorKind.VALIDATION_ERROR
        )
    values = dict(fields)
    cleared = [name for name in _NOT_NULL_FIELDS if name in values and values[name] is None]
    if cleared:
        raise ResumeServiceError(
            f"Resume fields cannot be null: {', '.join(cleared)}.", ErrorKind.VALIDATION_ERROR
        )
    if "tags" in values:
        values["tags"] = [dict(tag) for tag in values["tags"] or []]
    return values


class ResumeService:
    """Upsert resume header fields on behalf of their owner."""

    async def persist_snapshot(
        self,
        backend: ResumeBackend,
        owner_id: UUID | None,
        resume_id: UUID,
        fields: Mapping[str, Any],
    ) -> ServiceResult[ResumeRecord]:
        """Write the editor's snapshot, creating the resume on first save."""
        try:
            return ServiceResult.success(
                await self._persist(backend, owner_id, resume_id, fields)
            )
        except ResumeServiceError as exc:
            return ServiceResult.failure(exc.kind, exc.detail)
        except Exception as exc:
            logger.error("resume_snapshot_store_failure", resume_id=str(resume_id), error=str(exc))
            return ServiceResult.failure(ErrorKind.STORE_ERROR, str(exc) or "Store request failed.")

    async def _persist(
        self,
        backend: ResumeBackend,
        owner_id: UUID | None,
        resume_id: UUID,
        fields: Mapping[str, Any],
    ) -> ResumeRecord:
        if owner_id is None:
            raise ResumeServiceError("User not authenticated.", ErrorKind.UNAUTHENTICATED)
        values = _clean_snapshot(fields)

        existing = await backend.get_resume(resume_id)
        if existing is None:
            title = values.get("title") or DEFAULT_TITLE
            created = await backend.insert_resume(
                {
                    "id": resume_id,
                    "user_id": owner_id,
                    "title": title,
                    "slug": generate_slug(title),
                    "role": values.get("role") or "",
                    "display_name": values.get("display_name") or "",
                    "tags": values.get("tags") or [],
                    "body_content": values.get("body_content"),
                }
            )
            logger.info("resume_created", resume_id=str(resume_id))
            return created

        if existing.user_id != owner_id:
            raise ResumeServiceError("Resume is not owned by caller.", ErrorKind.UNAUTHORIZED)
        if values.get("title"):
            values["slug"] = generate_slug(values["title"])
        if not values:
            return existing
        updated = await backend.update_resume(resume_id, values)
        if updated is None:
            raise ResumeServiceError("Resume not found.", ErrorKind.NOT_FOUND)
        return updated


@lru_cache
def get_resume_service() -> ResumeService:
    """Create and cache resume service dependency."""
    return ResumeService()
