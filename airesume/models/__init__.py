"""ORM model exports."""

from airesume.models.api_key import APIKey
from airesume.models.audit_event import AuditEvent
from airesume.models.resume import Resume
from airesume.models.user import User

__all__ = ["APIKey", "AuditEvent", "Resume", "User"]
