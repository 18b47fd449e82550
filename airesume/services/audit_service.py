"""Audit service backed by immutable database events."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any
from uuid import UUID

import structlog

from airesume.services.backends import AuditBackend

logger = structlog.get_logger(__name__)

_REDACTED = "***REDACTED***"
_SENSITIVE_KEY_PARTS = (
    "api_key",
    "apikey",
    "authorization",
    "key_hash",
    "secret",
    "token",
)
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_sensitive_key(key: str) -> bool:
    """Return True when metadata key likely contains credential material."""
    normalized = key.strip().lower().replace("-", "_")
    return any(part in normalized for part in _SENSITIVE_KEY_PARTS)


def _sanitize_metadata_value(value: Any) -> Any:
    """Coerce metadata values to JSON-safe primitives with PII redaction."""
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        return _REDACTED if _EMAIL_PATTERN.match(value.strip()) else value
    if isinstance(value, dict):
        return _sanitize_metadata(value)
    if isinstance(value, list | tuple):
        return [_sanitize_metadata_value(item) for item in value]
    return str(value)


def _sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Redact credential-bearing keys and email-like values."""
    if metadata is None:
        return None
    sanitized: dict[str, Any] = {}
    for key, value in metadata.items():
        if _is_sensitive_key(key):
            sanitized[key] = _REDACTED
            continue
        sanitized[key] = _sanitize_metadata_value(value)
    return sanitized or None


def _current_correlation_id() -> str | None:
    value = structlog.contextvars.get_contextvars().get("correlation_id")
    return str(value)[:64] if value else None


class AuditService:
    """Persist immutable audit events without affecting key lifecycle outcomes."""

    async def record(
        self,
        backend: AuditBackend,
        event_type: str,
        success: bool,
        actor_id: UUID | None = None,
        target_id: UUID | None = None,
        failure_reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Write one append-only audit row and swallow write failures."""
        values = {
            "event_type": event_type.strip(),
            "actor_id": actor_id,
            "target_id": target_id,
            "correlation_id": _current_correlation_id(),
            "success": success,
            "failure_reason": failure_reason.strip() if failure_reason else None,
            "event_metadata": _sanitize_metadata(metadata),
        }
        try:
            await backend.add_audit_event(values)
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                event_type=event_type,
                success=success,
                error=str(exc),
            )


@lru_cache
def get_audit_service() -> AuditService:
    """Create and cache audit service dependency."""
    return AuditService()
