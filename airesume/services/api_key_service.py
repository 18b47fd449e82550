"""API key lifecycle, rotation, and verification service."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, TypeVar
from uuid import UUID

import structlog

from airesume.config import get_settings
from airesume.core.key_material import KeyMaterialGenerator
from airesume.core.permissions import (
    InvalidPermissionsError,
    granted_by,
    is_authorized,
    normalize_permissions,
)
from airesume.core.results import ErrorKind, ServiceResult
from airesume.core.rotation import RotationPolicy, add_months, next_rotation_date
from airesume.services.backends import APIKeyBackend, APIKeyRecord, KeyUnusableError
from airesume.services.rate_limiter import KeyRateLimiter

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_NAME_MAX_LENGTH = 128
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "notes",
        "permissions",
        "rate_limit",
        "expires_at",
        "max_uses",
        "ip_whitelist",
        "user_agent_pattern",
        "rotation_policy",
    }
)


@dataclass(frozen=True)
class APIKeyDraft:
    """Requested shape of a new API key."""

    name: str
    permissions: list[str] = field(default_factory=lambda: ["read"])
    resume_id: UUID | None = None
    is_admin: bool = False
    expires_at: datetime | None = None
    max_uses: int | None = None
    rate_limit: int | None = None
    notes: str | None = None
    ip_whitelist: list[str] | None = None
    user_agent_pattern: str | None = None
    rotation_policy: str = RotationPolicy.NEVER.value


@dataclass(frozen=True)
class CreatedAPIKey:
    """Creation result; ``api_key`` is the only copy of the plaintext secret."""

    record: APIKeyRecord
    api_key: str


@dataclass(frozen=True)
class RotatedAPIKey:
    """Rotation result; ``api_key`` is the only copy of the new plaintext secret."""

    record: APIKeyRecord
    api_key: str

    @property
    def key_version(self) -> int:
        return self.record.key_version


@dataclass(frozen=True)
class VerifiedAPIKey:
    """Successful verification of a presented secret."""

    record: APIKeyRecord
    granted_by: list[str] = field(default_factory=list)


class APIKeyServiceError(Exception):
    """Raised inside the service for expected failures; converted at the boundary."""

    def __init__(self, detail: str, kind: ErrorKind) -> None:
        super().__init__(detail)
        self.detail = detail
        self.kind = kind

    @property
    def code(self) -> str:
        return self.kind.value


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _validation(detail: str) -> APIKeyServiceError:
    return APIKeyServiceError(detail, ErrorKind.VALIDATION_ERROR)


def _validate_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise _validation("Name is required.")
    if len(cleaned) > _NAME_MAX_LENGTH:
        raise _validation(f"Name must be at most {_NAME_MAX_LENGTH} characters.")
    return cleaned


def _validate_permissions(permissions: Iterable[str]) -> list[str]:
    try:
        return normalize_permissions(permissions)
    except InvalidPermissionsError as exc:
        raise _validation(exc.detail) from exc


def _validate_positive(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise _validation(f"{label} must be a positive integer.")
    return value


def _validate_ip_whitelist(entries: Iterable[str] | None) -> list[str] | None:
    if entries is None:
        return None
    networks: list[str] = []
    for entry in entries:
        try:
            network = ipaddress.ip_network(entry.strip(), strict=False)
        except ValueError as exc:
            raise _validation(f"Invalid IP address or CIDR range: {entry!r}.") from exc
        if str(network) not in networks:
            networks.append(str(network))
    return networks or None


def _validate_user_agent_pattern(pattern: str | None) -> str | None:
    if pattern is None or not pattern.strip():
        return None
    try:
        re.compile(pattern)
    except re.error as exc:
        raise _validation(f"Invalid user agent pattern: {exc}.") from exc
    return pattern


def _require_usable(record: APIKeyRecord) -> None:
    if record.is_revoked:
        raise APIKeyServiceError("API key revoked.", ErrorKind.REVOKED_API_KEY)
    if record.is_expired():
        raise APIKeyServiceError("API key expired.", ErrorKind.EXPIRED_API_KEY)
    if record.is_exhausted():
        raise APIKeyServiceError("API key usage limit reached.", ErrorKind.EXHAUSTED_API_KEY)


def _validate_rotation_policy(policy: str) -> RotationPolicy:
    try:
        return RotationPolicy(policy)
    except ValueError as exc:
        raise _validation(f"Unknown rotation policy: {policy!r}.") from exc


def ip_allowed(whitelist: Iterable[str] | None, ip_address: str | None) -> bool:
    """Return True when no whitelist is set or the address falls inside it."""
    if whitelist is None:
        return True
    if not ip_address:
        return False
    try:
        address = ipaddress.ip_address(ip_address.strip())
    except ValueError:
        return False
    for entry in whitelist:
        network = ipaddress.ip_network(entry, strict=False)
        if address.version == network.version and address in network:
            return True
    return False


def user_agent_allowed(pattern: str | None, user_agent: str | None) -> bool:
    """Return True when no pattern is set or the user agent matches it."""
    if pattern is None:
        return True
    if not user_agent:
        return False
    return re.search(pattern, user_agent) is not None


class APIKeyService:
    """CRUD, rotation, and verification over API key records.

    Every public coroutine returns a ``ServiceResult``. Expected failures are
    raised internally as ``APIKeyServiceError`` and converted at the operation
    boundary; anything else raised by the backend becomes a store error.
    """

    def __init__(
        self,
        generator: KeyMaterialGenerator,
        admin_max_expiry_months: int = 3,
        default_rate_limit: int = 1000,
    ) -> None:
        self._generator = generator
        self._admin_max_expiry_months = admin_max_expiry_months
        self._default_rate_limit = default_rate_limit
        self._rotating: set[UUID] = set()

    async def create_key(
        self,
        backend: APIKeyBackend,
        owner_id: UUID | None,
        draft: APIKeyDraft,
    ) -> ServiceResult[CreatedAPIKey]:
        """Create a key and return its plaintext secret exactly once."""
        return await self._boundary("create", self._create_key(backend, owner_id, draft))

    async def list_keys(
        self, backend: APIKeyBackend, owner_id: UUID | None
    ) -> ServiceResult[list[APIKeyRecord]]:
        """List the caller's keys, newest first."""
        return await self._boundary("list", self._list_keys(backend, owner_id))

    async def get_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> ServiceResult[APIKeyRecord]:
        """Fetch one of the caller's keys."""
        return await self._boundary("get", self._owned_key(backend, owner_id, key_id))

    async def update_key(
        self,
        backend: APIKeyBackend,
        owner_id: UUID | None,
        key_id: UUID,
        patch: Mapping[str, Any],
    ) -> ServiceResult[APIKeyRecord]:
        """Apply a validated partial update to one of the caller's keys."""
        return await self._boundary("update", self._update_key(backend, owner_id, key_id, patch))

    async def revoke_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> ServiceResult[APIKeyRecord]:
        """Irreversibly deactivate a key without deleting it."""
        return await self._boundary("revoke", self._revoke_key(backend, owner_id, key_id))

    async def delete_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> ServiceResult[APIKeyRecord]:
        """Remove a key record entirely."""
        return await self._boundary("delete", self._delete_key(backend, owner_id, key_id))

    async def rotate_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> ServiceResult[RotatedAPIKey]:
        """Replace a key's secret in one guarded row update."""
        return await self._boundary("rotate", self._rotate_key(backend, owner_id, key_id))

    async def verify_key(
        self,
        backend: APIKeyBackend,
        raw_key: str,
        verb: str | None = None,
        category: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        rate_limiter: KeyRateLimiter | None = None,
    ) -> ServiceResult[VerifiedAPIKey]:
        """Authenticate a presented secret for one tool call and count the use."""
        return await self._boundary(
            "verify",
            self._verify_key(
                backend, raw_key, verb, category, ip_address, user_agent, rate_limiter
            ),
        )

    async def list_rotation_due(
        self, backend: APIKeyBackend, now: datetime | None = None
    ) -> ServiceResult[list[APIKeyRecord]]:
        """List keys whose scheduled rotation date has passed."""
        return await self._boundary(
            "rotation_due", backend.list_rotation_due(now or datetime.now(UTC))
        )

    async def _boundary(self, operation: str, call: Awaitable[T]) -> ServiceResult[T]:
        """Convert raised failures into results."""
        try:
            return ServiceResult.success(await call)
        except APIKeyServiceError as exc:
            logger.info("api_key_operation_rejected", operation=operation, code=exc.code)
            return ServiceResult.failure(exc.kind, exc.detail)
        except Exception as exc:
            logger.error("api_key_store_failure", operation=operation, error=str(exc))
            return ServiceResult.failure(ErrorKind.STORE_ERROR, str(exc) or "Store request failed.")

    async def _create_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, draft: APIKeyDraft
    ) -> CreatedAPIKey:
        owner = self._require_owner(owner_id)
        now = datetime.now(UTC)
        name = _validate_name(draft.name)
        permissions = _validate_permissions(draft.permissions)
        rate_limit = _validate_positive(
            draft.rate_limit if draft.rate_limit is not None else self._default_rate_limit,
            "Rate limit",
        )
        max_uses = (
            _validate_positive(draft.max_uses, "Max uses") if draft.max_uses is not None else None
        )
        policy = _validate_rotation_policy(draft.rotation_policy)

        resume_id: UUID | None
        if draft.is_admin:
            resume_id = None
            expires_at = self._admin_expiry(draft.expires_at, created_at=now)
        else:
            if draft.resume_id is None:
                raise _validation("A resume is required for non-admin keys.")
            await self._require_resume_owner(backend, owner, draft.resume_id)
            resume_id = draft.resume_id
            expires_at = self._future_expiry(draft.expires_at, now)

        secret = self._generator.generate()
        material = self._generator.derive(secret)
        record = await backend.insert_key(
            {
                "user_id": owner,
                "resume_id": resume_id,
                "name": name,
                "notes": draft.notes,
                "key_hash": material.hash,
                "key_prefix": material.prefix,
                "key_suffix": material.suffix,
                "is_admin": draft.is_admin,
                "permissions": permissions,
                "expires_at": expires_at,
                "max_uses": max_uses,
                "rate_limit": rate_limit,
                "use_count": 0,
                "unique_ips": 0,
                "seen_ips": [],
                "is_revoked": False,
                "rotation_policy": policy.value,
                "next_rotation_date": next_rotation_date(policy, now),
                "key_version": 1,
                "ip_whitelist": _validate_ip_whitelist(draft.ip_whitelist),
                "user_agent_pattern": _validate_user_agent_pattern(draft.user_agent_pattern),
                "created_at": now,
            }
        )
        logger.info(
            "api_key_created",
            key_id=str(record.id),
            user_id=str(owner),
            is_admin=record.is_admin,
            key_prefix=record.key_prefix,
        )
        return CreatedAPIKey(record=record, api_key=secret)

    async def _list_keys(self, backend: APIKeyBackend, owner_id: UUID | None) -> list[APIKeyRecord]:
        owner = self._require_owner(owner_id)
        return await backend.list_keys(owner)

    async def _update_key(
        self,
        backend: APIKeyBackend,
        owner_id: UUID | None,
        key_id: UUID,
        patch: Mapping[str, Any],
    ) -> APIKeyRecord:
        record = await self._owned_key(backend, owner_id, key_id)
        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise _validation(f"Fields cannot be updated: {', '.join(sorted(unknown))}.")

        values: dict[str, Any] = {}
        if "name" in patch:
            values["name"] = _validate_name(patch["name"] or "")
        if "notes" in patch:
            values["notes"] = patch["notes"]
        if "permissions" in patch:
            values["permissions"] = _validate_permissions(patch["permissions"] or [])
        if "rate_limit" in patch:
            values["rate_limit"] = _validate_positive(patch["rate_limit"], "Rate limit")
        if "max_uses" in patch:
            max_uses = patch["max_uses"]
            values["max_uses"] = (
                _validate_positive(max_uses, "Max uses") if max_uses is not None else None
            )
        if "ip_whitelist" in patch:
            values["ip_whitelist"] = _validate_ip_whitelist(patch["ip_whitelist"])
        if "user_agent_pattern" in patch:
            values["user_agent_pattern"] = _validate_user_agent_pattern(
                patch["user_agent_pattern"]
            )
        if "expires_at" in patch:
            if record.is_admin:
                values["expires_at"] = self._admin_expiry(
                    patch["expires_at"], created_at=record.created_at
                )
            else:
                values["expires_at"] = self._future_expiry(
                    patch["expires_at"], datetime.now(UTC)
                )
        if "rotation_policy" in patch:
            policy = _validate_rotation_policy(patch["rotation_policy"])
            values["rotation_policy"] = policy.value
            values["next_rotation_date"] = next_rotation_date(
                policy, record.last_rotated_at or record.created_at
            )

        if not values:
            return record
        updated = await backend.update_key(key_id, values)
        if updated is None:
            raise APIKeyServiceError("API key not found.", ErrorKind.NOT_FOUND)
        logger.info("api_key_updated", key_id=str(key_id), fields=sorted(values))
        return updated

    async def _revoke_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> APIKeyRecord:
        record = await self._owned_key(backend, owner_id, key_id)
        if record.is_revoked:
            return record
        updated = await backend.update_key(key_id, {"is_revoked": True})
        if updated is None:
            raise APIKeyServiceError("API key not found.", ErrorKind.NOT_FOUND)
        logger.info("api_key_revoked", key_id=str(key_id))
        return updated

    async def _delete_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> APIKeyRecord:
        record = await self._owned_key(backend, owner_id, key_id)
        if not await backend.delete_key(key_id):
            raise APIKeyServiceError("API key not found.", ErrorKind.NOT_FOUND)
        logger.info("api_key_deleted", key_id=str(key_id))
        return record

    async def _rotate_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> RotatedAPIKey:
        if key_id in self._rotating:
            raise APIKeyServiceError("API key is already rotating.", ErrorKind.ROTATION_CONFLICT)
        self._rotating.add(key_id)
        try:
            record = await self._owned_key(backend, owner_id, key_id)
            if record.is_revoked:
                raise _validation("Cannot rotate a revoked API key.")

            now = datetime.now(UTC)
            secret = self._generator.generate()
            material = self._generator.derive(secret)
            updated = await backend.update_key(
                key_id,
                {
                    "key_hash": material.hash,
                    "key_prefix": material.prefix,
                    "key_suffix": material.suffix,
                    "key_version": record.key_version + 1,
                    "last_rotated_at": now,
                    "next_rotation_date": next_rotation_date(record.rotation_policy, now),
                },
                expected_version=record.key_version,
            )
            if updated is None:
                raise APIKeyServiceError(
                    "API key changed during rotation.", ErrorKind.ROTATION_CONFLICT
                )
        finally:
            self._rotating.discard(key_id)

        logger.info("api_key_rotated", key_id=str(key_id), key_version=updated.key_version)
        return RotatedAPIKey(record=updated, api_key=secret)

    async def _verify_key(
        self,
        backend: APIKeyBackend,
        raw_key: str,
        verb: str | None,
        category: str | None,
        ip_address: str | None,
        user_agent: str | None,
        rate_limiter: KeyRateLimiter | None,
    ) -> VerifiedAPIKey:
        if not self._generator.is_valid_format(raw_key):
            raise APIKeyServiceError("Invalid API key.", ErrorKind.INVALID_API_KEY)
        record = await backend.get_key_by_hash(self._generator.hash_key(raw_key))
        if record is None:
            raise APIKeyServiceError("Invalid API key.", ErrorKind.INVALID_API_KEY)
        _require_usable(record)
        if not ip_allowed(record.ip_whitelist, ip_address):
            raise APIKeyServiceError("Client address not allowed.", ErrorKind.FORBIDDEN_ORIGIN)
        if not user_agent_allowed(record.user_agent_pattern, user_agent):
            raise APIKeyServiceError("Client user agent not allowed.", ErrorKind.FORBIDDEN_ORIGIN)

        grants: list[str] = []
        if verb is not None:
            try:
                allowed = is_authorized(record.permissions, record.is_admin, verb, category)
                grants = granted_by(record.permissions, record.is_admin, verb, category)
            except InvalidPermissionsError as exc:
                raise _validation(exc.detail) from exc
            if not allowed:
                scope = f"{category}:{verb}" if category else verb
                raise APIKeyServiceError(
                    f"Insufficient permissions for {scope}.", ErrorKind.INSUFFICIENT_SCOPE
                )

        if rate_limiter is not None and not await rate_limiter.allow(record.id, record.rate_limit):
            raise APIKeyServiceError("Rate limit exceeded.", ErrorKind.RATE_LIMITED)

        try:
            used = await backend.record_usage(
                record.id, ip_address, datetime.now(UTC), key_version=record.key_version
            )
        except KeyUnusableError as exc:
            logger.info("api_key_usage_refused", key_id=str(record.id))
            _require_usable(exc.record)
            raise APIKeyServiceError("Invalid API key.", ErrorKind.INVALID_API_KEY) from exc
        if used is None:
            raise APIKeyServiceError("Invalid API key.", ErrorKind.INVALID_API_KEY)
        return VerifiedAPIKey(record=used, granted_by=grants)

    def _admin_expiry(self, requested: datetime | None, created_at: datetime) -> datetime:
        """Clamp an admin key expiry to the maximum window after creation."""
        cap = add_months(created_at, self._admin_max_expiry_months)
        requested = _as_utc(requested)
        if requested is None or requested > cap:
            return cap
        if requested <= datetime.now(UTC):
            raise _validation("Expiration must be in the future.")
        return requested

    @staticmethod
    def _future_expiry(requested: datetime | None, now: datetime) -> datetime | None:
        requested = _as_utc(requested)
        if requested is not None and requested <= now:
            raise _validation("Expiration must be in the future.")
        return requested

    @staticmethod
    def _require_owner(owner_id: UUID | None) -> UUID:
        if owner_id is None:
            raise APIKeyServiceError("User not authenticated.", ErrorKind.UNAUTHENTICATED)
        return owner_id

    async def _require_resume_owner(
        self, backend: APIKeyBackend, owner_id: UUID, resume_id: UUID
    ) -> None:
        resume_owner = await backend.get_resume_owner(resume_id)
        if resume_owner is None:
            raise APIKeyServiceError("Resume not found.", ErrorKind.NOT_FOUND)
        if resume_owner != owner_id:
            raise APIKeyServiceError("Resume is not owned by caller.", ErrorKind.UNAUTHORIZED)

    async def _owned_key(
        self, backend: APIKeyBackend, owner_id: UUID | None, key_id: UUID
    ) -> APIKeyRecord:
        owner = self._require_owner(owner_id)
        record = await backend.get_key(key_id)
        if record is None:
            raise APIKeyServiceError("API key not found.", ErrorKind.NOT_FOUND)
        if record.user_id != owner:
            raise APIKeyServiceError("API key is not owned by caller.", ErrorKind.UNAUTHORIZED)
        return record


@lru_cache
def get_api_key_service() -> APIKeyService:
    """Create and cache API key service dependency."""
    settings = get_settings()
    return APIKeyService(
        generator=KeyMaterialGenerator(prefix=settings.api_keys.secret_prefix),
        admin_max_expiry_months=settings.api_keys.admin_max_expiry_months,
        default_rate_limit=settings.api_keys.default_rate_limit,
    )
