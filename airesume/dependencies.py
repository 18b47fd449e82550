"""Shared FastAPI dependency helpers."""

from collections.abc import AsyncGenerator, Sequence
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from airesume.config import get_settings
from airesume.core.auth import (
    SessionTokenVerifier,
    TokenValidationError,
    get_session_token_verifier,
)
from airesume.core.client_ip import IPNetwork, parse_trusted_proxies, resolve_client_ip
from airesume.db.session import get_db_session
from airesume.services.backends import SQLAlchemyStore


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async for session in get_db_session():
        yield session


def get_store(
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
) -> SQLAlchemyStore:
    """Wrap the request session in the storage collaborator."""
    return SQLAlchemyStore(db_session)


def _extract_bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization", "").strip()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_user_id(
    request: Request,
    verifier: Annotated[SessionTokenVerifier, Depends(get_session_token_verifier)],
) -> UUID | None:
    """Resolve the signed-in user; None when no session token was sent."""
    token = _extract_bearer_token(request)
    if token is None:
        return None
    try:
        user_id = verifier.current_user_id(token)
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=401, detail={"detail": exc.detail, "code": exc.code}
        ) from exc
    request.state.user = {"type": "user", "user_id": str(user_id)}
    return user_id


@lru_cache
def get_trusted_proxies() -> tuple[IPNetwork, ...]:
    """Networks allowed to report the client address through X-Forwarded-For."""
    return parse_trusted_proxies(get_settings().app.trusted_proxies)


def request_client_ip(request: Request, trusted_proxies: Sequence[IPNetwork]) -> str | None:
    """Resolve the client address, trusting forwarding headers only from known proxies."""
    client = request.client
    return resolve_client_ip(
        client.host if client else None,
        request.headers.get("x-forwarded-for"),
        trusted_proxies,
    )


def get_client_ip(
    request: Request,
    trusted_proxies: Annotated[tuple[IPNetwork, ...], Depends(get_trusted_proxies)],
) -> str | None:
    """Expose the resolved client address as a dependency."""
    return request_client_ip(request, trusted_proxies)
