"""CLI entrypoints for API key operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime

from airesume.config import configure_structlog, get_settings
from airesume.db.session import dispose_engine, session_scope
from airesume.services.api_key_service import get_api_key_service
from airesume.services.backends import SQLAlchemyStore


def _isoformat(value: datetime | None) -> str | None:
    return value.astimezone(UTC).isoformat() if value is not None else None


async def _run_rotation_due(as_of: datetime | None) -> int:
    """Print keys whose scheduled rotation date has passed, one JSON object per line."""
    configure_structlog(get_settings())
    api_key_service = get_api_key_service()
    try:
        async with session_scope() as db_session:
            result = await api_key_service.list_rotation_due(SQLAlchemyStore(db_session), as_of)
    finally:
        await dispose_engine()

    if result.error is not None:
        print(json.dumps({"detail": result.error.detail, "code": result.error.code}))
        return 1
    for record in result.value or []:
        print(
            json.dumps(
                {
                    "key_id": str(record.id),
                    "user_id": str(record.user_id),
                    "name": record.name,
                    "key_prefix": record.key_prefix,
                    "rotation_policy": record.rotation_policy,
                    "next_rotation_date": _isoformat(record.next_rotation_date),
                    "last_rotated_at": _isoformat(record.last_rotated_at),
                    "key_version": record.key_version,
                }
            )
        )
    return 0


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m airesume.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    due_parser = subcommands.add_parser("rotation-due")
    due_parser.add_argument(
        "--as-of",
        type=_parse_timestamp,
        default=None,
        help="ISO-8601 timestamp to evaluate schedules against; defaults to now.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "rotation-due":
        return asyncio.run(_run_rotation_due(as_of=args.as_of))
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
