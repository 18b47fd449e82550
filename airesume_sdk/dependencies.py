"""FastAPI dependencies for scope checks on tool server routes."""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from airesume.core.permissions import InvalidScopeError, is_authorized
from airesume_sdk.types import APIKeyIdentity


def get_api_key_identity(request: Request) -> APIKeyIdentity:
    """Return the key identity set by ``APIKeyAuthMiddleware``."""
    identity = getattr(request.state, "api_key", None)
    if not isinstance(identity, dict) or identity.get("type") != "api_key":
        raise HTTPException(status_code=401, detail="Invalid API key.")
    return identity  # type: ignore[return-value]


def require_permission(
    verb: str, category: str | None = None
) -> Callable[[APIKeyIdentity], APIKeyIdentity]:
    """Require that the calling key may perform ``verb`` on ``category``."""
    try:
        is_authorized([], False, verb, category)
    except InvalidScopeError as exc:
        raise ValueError(exc.detail) from exc

    def checker(
        identity: Annotated[APIKeyIdentity, Depends(get_api_key_identity)],
    ) -> APIKeyIdentity:
        if not is_authorized(identity["permissions"], identity["is_admin"], verb, category):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return checker
