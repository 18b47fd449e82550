"""Unit tests for ORM table definitions."""

from __future__ import annotations

from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from airesume.db.base import Base
from airesume.models import APIKey, AuditEvent, Resume, User


def _ddl(model: type[Base]) -> str:
    return str(CreateTable(model.__table__).compile(dialect=postgresql.dialect()))


def test_metadata_registers_every_table() -> None:
    """All four tables share the declarative metadata."""
    assert {"users", "resumes", "api_keys", "audit_events"} <= set(Base.metadata.tables)
    assert AuditEvent.__tablename__ == "audit_events"


def test_api_key_table_enforces_scope_and_expiry_constraints() -> None:
    """Admin keys have no resume and must expire; narrow keys need a resume."""
    ddl = _ddl(APIKey)

    assert "ck_api_keys_admin_scope" in ddl
    assert "ck_api_keys_admin_expiry" in ddl
    assert "ck_api_keys_rate_limit_positive" in ddl
    assert "UNIQUE (key_hash)" in ddl
    assert "ON DELETE CASCADE" in ddl


def test_api_key_table_stores_only_hash_and_display_fragments() -> None:
    """No column can hold the full secret."""
    columns = APIKey.__table__.columns

    assert columns["key_hash"].type.length == 64
    assert columns["key_prefix"].type.length == 4
    assert columns["key_suffix"].type.length == 4
    assert "secret" not in columns


def test_resume_and_user_tables_carry_timestamps() -> None:
    """Timestamp mixin columns are server defaulted."""
    for model in (Resume, User):
        columns = model.__table__.columns
        assert columns["created_at"].server_default is not None
        assert columns["updated_at"].server_default is not None
    assert Resume.__table__.columns["title"].default.arg == "Untitled Resume"
