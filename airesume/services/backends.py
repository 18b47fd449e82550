"""Persistence collaborators for key, resume, and audit records.

Services talk to storage only through the protocols below. Production code
uses ``SQLAlchemyStore``; tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from airesume.core.rotation import is_rotation_due
from airesume.models import APIKey, AuditEvent, Resume, User


@dataclass(frozen=True)
class APIKeyRecord:
    """Persisted API key as seen by services; never carries the hash."""

    id: UUID
    user_id: UUID
    resume_id: UUID | None
    name: str
    key_prefix: str
    key_suffix: str
    is_admin: bool
    permissions: tuple[str, ...]
    rate_limit: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    max_uses: int | None = None
    notes: str | None = None
    resume_title: str | None = None
    first_used_at: datetime | None = None
    last_used_at: datetime | None = None
    use_count: int = 0
    unique_ips: int = 0
    is_revoked: bool = False
    rotation_policy: str = "never"
    next_rotation_date: datetime | None = None
    last_rotated_at: datetime | None = None
    key_version: int = 1
    ip_whitelist: tuple[str, ...] | None = None
    user_agent_pattern: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or datetime.now(UTC))

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.use_count >= self.max_uses

    def is_active(self, now: datetime | None = None) -> bool:
        """Not revoked, not expired, and not over its use budget."""
        return not self.is_revoked and not self.is_expired(now) and not self.is_exhausted()

    def rotation_due(self, now: datetime | None = None) -> bool:
        """Scheduled rotation date has passed; independent of ``is_active``."""
        return is_rotation_due(self.next_rotation_date, now)


@dataclass(frozen=True)
class ResumeRecord:
    """Persisted resume header fields."""

    id: UUID
    user_id: UUID
    title: str
    slug: str
    role: str
    display_name: str
    tags: list[dict[str, Any]] = field(default_factory=list)
    body_content: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class KeyUnusableError(Exception):
    """The key stopped being usable between lookup and the usage write."""

    def __init__(self, record: APIKeyRecord) -> None:
        super().__init__(f"API key {record.id} is no longer usable.")
        self.record = record


class APIKeyBackend(Protocol):
    """Storage operations used by the API key service."""

    async def insert_key(self, values: dict[str, Any]) -> APIKeyRecord:
        """Insert a key row and return the stored record."""

    async def get_key(self, key_id: UUID) -> APIKeyRecord | None:
        """Fetch a key by id."""

    async def get_key_by_hash(self, key_hash: str) -> APIKeyRecord | None:
        """Fetch a key by secret digest."""

    async def list_keys(self, owner_id: UUID) -> list[APIKeyRecord]:
        """List an owner's keys joined with resume titles, newest first."""

    async def update_key(
        self,
        key_id: UUID,
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> APIKeyRecord | None:
        """Apply one row update; None when no row matched."""

    async def delete_key(self, key_id: UUID) -> bool:
        """Remove a key row; False when no row matched."""

    async def record_usage(
        self,
        key_id: UUID,
        ip_address: str | None,
        used_at: datetime,
        key_version: int | None = None,
    ) -> APIKeyRecord | None:
        """Bump usage counters for one authenticated call under a row lock.

        Raises ``KeyUnusableError`` when the locked row is revoked, expired,
        exhausted, or no longer at ``key_version``.
        """

    async def list_rotation_due(self, now: datetime) -> list[APIKeyRecord]:
        """List unrevoked keys whose scheduled rotation date has passed."""

    async def get_resume_owner(self, resume_id: UUID) -> UUID | None:
        """Return the owning user of a resume, or None when missing."""


class ResumeBackend(Protocol):
    """Storage operations used by the resume service."""

    async def get_resume(self, resume_id: UUID) -> ResumeRecord | None:
        """Fetch a resume by id."""

    async def insert_resume(self, values: dict[str, Any]) -> ResumeRecord:
        """Insert a resume row."""

    async def update_resume(self, resume_id: UUID, values: dict[str, Any]) -> ResumeRecord | None:
        """Update a resume row; None when no row matched."""


class AuditBackend(Protocol):
    """Storage operation used by the audit service."""

    async def add_audit_event(self, values: dict[str, Any]) -> None:
        """Append one audit row."""


def _key_record(row: APIKey, resume_title: str | None = None) -> APIKeyRecord:
    """Convert an ORM row to a service record."""
    return APIKeyRecord(
        id=row.id,
        user_id=row.user_id,
        resume_id=row.resume_id,
        resume_title=resume_title,
        name=row.name,
        notes=row.notes,
        key_prefix=row.key_prefix,
        key_suffix=row.key_suffix,
        is_admin=row.is_admin,
        permissions=tuple(row.permissions or ()),
        expires_at=row.expires_at,
        max_uses=row.max_uses,
        rate_limit=row.rate_limit,
        created_at=row.created_at,
        updated_at=row.updated_at,
        first_used_at=row.first_used_at,
        last_used_at=row.last_used_at,
        use_count=row.use_count,
        unique_ips=row.unique_ips,
        is_revoked=row.is_revoked,
        rotation_policy=row.rotation_policy,
        next_rotation_date=row.next_rotation_date,
        last_rotated_at=row.last_rotated_at,
        key_version=row.key_version,
        ip_whitelist=tuple(row.ip_whitelist) if row.ip_whitelist is not None else None,
        user_agent_pattern=row.user_agent_pattern,
    )


def _resume_record(row: Resume) -> ResumeRecord:
    """Convert an ORM row to a service record."""
    return ResumeRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        slug=row.slug,
        role=row.role,
        display_name=row.display_name,
        tags=list(row.tags or []),
        body_content=row.body_content,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SQLAlchemyStore:
    """PostgreSQL-backed implementation of every storage protocol."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def insert_key(self, values: dict[str, Any]) -> APIKeyRecord:
        await self._ensure_user(values["user_id"])
        row = APIKey(**values)
        await self._write(lambda: self._db.add(row))
        await self._db.refresh(row)
        return _key_record(row)

    async def get_key(self, key_id: UUID) -> APIKeyRecord | None:
        statement = (
            select(APIKey, Resume.title)
            .outerjoin(Resume, APIKey.resume_id == Resume.id)
            .where(APIKey.id == key_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(statement)
        found = result.one_or_none()
        if found is None:
            return None
        row, title = found
        return _key_record(row, title)

    async def get_key_by_hash(self, key_hash: str) -> APIKeyRecord | None:
        statement = (
            select(APIKey)
            .where(APIKey.key_hash == key_hash)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(statement)
        row = result.scalar_one_or_none()
        return _key_record(row) if row is not None else None

    async def list_keys(self, owner_id: UUID) -> list[APIKeyRecord]:
        statement = (
            select(APIKey, Resume.title)
            .outerjoin(Resume, APIKey.resume_id == Resume.id)
            .where(APIKey.user_id == owner_id)
            .order_by(APIKey.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(statement)
        return [_key_record(row, title) for row, title in result.all()]

    async def update_key(
        self,
        key_id: UUID,
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> APIKeyRecord | None:
        statement = update(APIKey).where(APIKey.id == key_id)
        if expected_version is not None:
            statement = statement.where(APIKey.key_version == expected_version)
        statement = statement.values(**values, updated_at=func.now()).returning(APIKey.id)

        updated_id = await self._write_scalar(statement)
        if updated_id is None:
            return None
        return await self.get_key(key_id)

    async def delete_key(self, key_id: UUID) -> bool:
        statement = delete(APIKey).where(APIKey.id == key_id).returning(APIKey.id)
        return await self._write_scalar(statement) is not None

    async def record_usage(
        self,
        key_id: UUID,
        ip_address: str | None,
        used_at: datetime,
        key_version: int | None = None,
    ) -> APIKeyRecord | None:
        statement = (
            select(APIKey)
            .where(APIKey.id == key_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(statement)
        row = result.scalar_one_or_none()
        if row is None:
            await self._db.rollback()
            return None

        current = _key_record(row)
        if not current.is_active(used_at) or (
            key_version is not None and row.key_version != key_version
        ):
            await self._db.rollback()
            raise KeyUnusableError(current)

        row.use_count += 1
        row.last_used_at = used_at
        if row.first_used_at is None:
            row.first_used_at = used_at
        if ip_address and ip_address not in (row.seen_ips or []):
            row.seen_ips = [*(row.seen_ips or []), ip_address]
            row.unique_ips = len(row.seen_ips)
        await self._write(lambda: None)
        return _key_record(row)

    async def list_rotation_due(self, now: datetime) -> list[APIKeyRecord]:
        statement = (
            select(APIKey)
            .where(
                APIKey.is_revoked.is_(False),
                APIKey.next_rotation_date.is_not(None),
                APIKey.next_rotation_date <= now,
            )
            .order_by(APIKey.next_rotation_date.asc())
        )
        result = await self._db.execute(statement)
        return [_key_record(row) for row in result.scalars().all()]

    async def get_resume_owner(self, resume_id: UUID) -> UUID | None:
        result = await self._db.execute(select(Resume.user_id).where(Resume.id == resume_id))
        return result.scalar_one_or_none()

    async def get_resume(self, resume_id: UUID) -> ResumeRecord | None:
        statement = (
            select(Resume).where(Resume.id == resume_id).execution_options(populate_existing=True)
        )
        result = await self._db.execute(statement)
        row = result.scalar_one_or_none()
        return _resume_record(row) if row is not None else None

    async def insert_resume(self, values: dict[str, Any]) -> ResumeRecord:
        await self._ensure_user(values["user_id"])
        row = Resume(**values)
        await self._write(lambda: self._db.add(row))
        await self._db.refresh(row)
        return _resume_record(row)

    async def update_resume(self, resume_id: UUID, values: dict[str, Any]) -> ResumeRecord | None:
        statement = (
            update(Resume)
            .where(Resume.id == resume_id)
            .values(**values, updated_at=func.now())
            .returning(Resume.id)
        )
        if await self._write_scalar(statement) is None:
            return None
        return await self.get_resume(resume_id)

    async def add_audit_event(self, values: dict[str, Any]) -> None:
        event = AuditEvent(**values)
        await self._write(lambda: self._db.add(event))

    async def _ensure_user(self, user_id: UUID) -> None:
        """Mirror a hosted auth provider user on first write."""
        statement = insert(User).values(id=user_id).on_conflict_do_nothing(index_elements=["id"])
        await self._db.execute(statement)

    async def _write(self, stage) -> None:
        """Stage a change, flush, and commit; roll back on failure."""
        try:
            stage()
            await self._db.flush()
        except Exception:
            await self._db.rollback()
            raise
        await self._db.commit()

    async def _write_scalar(self, statement) -> Any:
        """Execute a returning DML statement inside its own commit."""
        try:
            result = await self._db.execute(statement)
            value = result.scalar_one_or_none()
        except Exception:
            await self._db.rollback()
            raise
        await self._db.commit()
        return value
