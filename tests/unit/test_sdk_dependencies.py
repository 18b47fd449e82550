"""Unit tests for SDK FastAPI permission dependencies."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from airesume_sdk.dependencies import get_api_key_identity, require_permission


def _build_app(identity: dict[str, object]) -> FastAPI:
    """Create app with the key identity overridden by a fixed payload."""
    app = FastAPI()
    app.dependency_overrides[get_api_key_identity] = lambda: identity
    write_resume = Depends(require_permission("write", "resume"))

    @app.post("/resume")
    async def update_resume(key=write_resume):  # type: ignore[no-untyped-def]
        return {"key_id": key["key_id"]}

    return app


def _identity(permissions: list[str], is_admin: bool = False) -> dict[str, object]:
    return {
        "type": "api_key",
        "key_id": "k-1",
        "user_id": "u-1",
        "resume_id": None if is_admin else "r-1",
        "is_admin": is_admin,
        "permissions": permissions,
    }


@pytest.mark.parametrize(
    ("permissions", "is_admin", "status_code"),
    [
        (["resume:write"], False, 200),
        (["write:all"], False, 200),
        (["write"], False, 200),
        ([], True, 200),
        (["resume:read", "skills:write"], False, 403),
        ([], False, 403),
    ],
)
async def test_require_permission(permissions: list[str], is_admin: bool, status_code: int) -> None:
    """Permission dependency follows the key's grants."""
    app = _build_app(_identity(permissions, is_admin))
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.post("/resume")

    assert response.status_code == status_code
    if status_code == 403:
        assert response.json()["detail"] == "Insufficient permissions"


async def test_missing_identity_is_unauthenticated() -> None:
    """Routes reached without the middleware's identity are refused."""
    app = FastAPI()

    @app.get("/whoami")
    async def whoami(key=Depends(get_api_key_identity)):  # type: ignore[no-untyped-def]
        return key

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/whoami")

    assert response.status_code == 401


def test_require_permission_rejects_unknown_scope_at_definition() -> None:
    """Typos in route declarations fail at import time."""
    with pytest.raises(ValueError):
        require_permission("execute")
    with pytest.raises(ValueError):
        require_permission("read", "billing")
