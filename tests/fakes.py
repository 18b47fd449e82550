"""In-memory collaborators shared by unit and router tests."""

from __future__ import annotations

from dataclasses import fields
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from airesume.services.backends import APIKeyRecord, KeyUnusableError, ResumeRecord

_KEY_FIELDS = {item.name for item in fields(APIKeyRecord)}
_KEY_DEFAULTS: dict[str, Any] = {
    "notes": None,
    "expires_at": None,
    "max_uses": None,
    "first_used_at": None,
    "last_used_at": None,
    "use_count": 0,
    "unique_ips": 0,
    "seen_ips": [],
    "is_revoked": False,
    "rotation_policy": "never",
    "next_rotation_date": None,
    "last_rotated_at": None,
    "key_version": 1,
    "ip_whitelist": None,
    "user_agent_pattern": None,
}


class StoreUnavailable(Exception):
    """Raised by the fake store when a failure is injected."""


class InMemoryStore:
    """Implements every storage protocol over dictionaries."""

    def __init__(self) -> None:
        self.keys: dict[UUID, dict[str, Any]] = {}
        self.resumes: dict[UUID, dict[str, Any]] = {}
        self.audit_events: list[dict[str, Any]] = []
        self.fail_operations: set[str] = set()
        self.calls: list[str] = []

    def add_resume(self, owner_id: UUID, title: str = "Backend Engineer") -> UUID:
        resume_id = uuid4()
        now = datetime.now(UTC)
        self.resumes[resume_id] = {
            "id": resume_id,
            "user_id": owner_id,
            "title": title,
            "slug": title.lower().replace(" ", "-"),
            "role": "",
            "display_name": "",
            "tags": [],
            "body_content": None,
            "created_at": now,
            "updated_at": now,
        }
        return resume_id

    def hash_of(self, key_id: UUID) -> str:
        return self.keys[key_id]["key_hash"]

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_operations:
            raise StoreUnavailable(f"{operation} failed: connection reset")

    def _key_record(self, row: dict[str, Any]) -> APIKeyRecord:
        values = {name: value for name, value in row.items() if name in _KEY_FIELDS}
        values["permissions"] = tuple(row["permissions"])
        if row.get("ip_whitelist") is not None:
            values["ip_whitelist"] = tuple(row["ip_whitelist"])
        resume = self.resumes.get(row["resume_id"]) if row.get("resume_id") else None
        values["resume_title"] = resume["title"] if resume else None
        return APIKeyRecord(**values)

    async def insert_key(self, values: dict[str, Any]) -> APIKeyRecord:
        self._enter("insert_key")
        created_at = values.get("created_at") or datetime.now(UTC)
        row = {**_KEY_DEFAULTS, **values, "id": uuid4(), "created_at": created_at}
        row["updated_at"] = created_at
        row["seen_ips"] = list(row["seen_ips"])
        self.keys[row["id"]] = row
        return self._key_record(row)

    async def get_key(self, key_id: UUID) -> APIKeyRecord | None:
        self._enter("get_key")
        row = self.keys.get(key_id)
        return self._key_record(row) if row is not None else None

    async def get_key_by_hash(self, key_hash: str) -> APIKeyRecord | None:
        self._enter("get_key_by_hash")
        for row in self.keys.values():
            if row["key_hash"] == key_hash:
                return self._key_record(row)
        return None

    async def list_keys(self, owner_id: UUID) -> list[APIKeyRecord]:
        self._enter("list_keys")
        rows = [row for row in self.keys.values() if row["user_id"] == owner_id]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [self._key_record(row) for row in rows]

    async def update_key(
        self,
        key_id: UUID,
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> APIKeyRecord | None:
        self._enter("update_key")
        row = self.keys.get(key_id)
        if row is None:
            return None
        if expected_version is not None and row["key_version"] != expected_version:
            return None
        row.update(values)
        row["updated_at"] = datetime.now(UTC)
        return self._key_record(row)

    async def delete_key(self, key_id: UUID) -> bool:
        self._enter("delete_key")
        return self.keys.pop(key_id, None) is not None

    async def record_usage(
        self,
        key_id: UUID,
        ip_address: str | None,
        used_at: datetime,
        key_version: int | None = None,
    ) -> APIKeyRecord | None:
        self._enter("record_usage")
        row = self.keys.get(key_id)
        if row is None:
            return None
        current = self._key_record(row)
        if not current.is_active(used_at) or (
            key_version is not None and row["key_version"] != key_version
        ):
            raise KeyUnusableError(current)
        row["use_count"] += 1
        row["last_used_at"] = used_at
        row["first_used_at"] = row["first_used_at"] or used_at
        if ip_address and ip_address not in row["seen_ips"]:
            row["seen_ips"].append(ip_address)
            row["unique_ips"] = len(row["seen_ips"])
        return self._key_record(row)

    async def list_rotation_due(self, now: datetime) -> list[APIKeyRecord]:
        self._enter("list_rotation_due")
        due = [
            row
            for row in self.keys.values()
            if not row["is_revoked"]
            and row["next_rotation_date"] is not None
            and row["next_rotation_date"] <= now
        ]
        due.sort(key=lambda row: row["next_rotation_date"])
        return [self._key_record(row) for row in due]

    async def get_resume_owner(self, resume_id: UUID) -> UUID | None:
        self._enter("get_resume_owner")
        resume = self.resumes.get(resume_id)
        return resume["user_id"] if resume else None

    async def get_resume(self, resume_id: UUID) -> ResumeRecord | None:
        self._enter("get_resume")
        resume = self.resumes.get(resume_id)
        return ResumeRecord(**resume) if resume else None

    async def insert_resume(self, values: dict[str, Any]) -> ResumeRecord:
        self._enter("insert_resume")
        now = datetime.now(UTC)
        row = {**values, "created_at": now, "updated_at": now}
        self.resumes[row["id"]] = row
        return ResumeRecord(**row)

    async def update_resume(self, resume_id: UUID, values: dict[str, Any]) -> ResumeRecord | None:
        self._enter("update_resume")
        resume = self.resumes.get(resume_id)
        if resume is None:
            return None
        resume.update(values)
        resume["updated_at"] = datetime.now(UTC)
        return ResumeRecord(**resume)

    async def add_audit_event(self, values: dict[str, Any]) -> None:
        self._enter("add_audit_event")
        self.audit_events.append(values)


class FakeRedis:
    """Sorted-set subset used by the sliding-window rate limiter."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sets: dict[str, dict[str, int]] = {}
        self.ttls: dict[str, int] = {}

    def _check(self) -> None:
        if self.fail:
            from redis.exceptions import ConnectionError

            raise ConnectionError("redis down")

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        self._check()
        members = self.sets.setdefault(key, {})
        stale = [member for member, score in members.items() if score <= max]
        for member in stale:
            del members[member]
        return len(stale)

    async def zcard(self, key: str) -> int:
        self._check()
        return len(self.sets.get(key, {}))

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        self._check()
        self.sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        self._check()
        self.ttls[key] = ttl_seconds
        return True

    async def ping(self) -> bool:
        self._check()
        return True
