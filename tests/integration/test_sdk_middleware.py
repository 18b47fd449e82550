"""Integration tests for the SDK API key middleware in front of a tool server."""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

import httpx
import pytest
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from airesume_sdk.client import ResumeKeysClient
from airesume_sdk.dependencies import require_permission
from airesume_sdk.middleware import APIKeyAuthMiddleware
from tests.fakes import InMemoryStore


def _tool_server(keys_client: ResumeKeysClient) -> FastAPI:
    """Tool server protected by the middleware with one scoped route."""
    app = FastAPI()
    app.add_middleware(
        APIKeyAuthMiddleware,
        service_base_url="http://keys.local",
        client=keys_client,
    )
    write_resume = Depends(require_permission("write", "resume"))

    @app.get("/tools/whoami")
    async def whoami(request: Request) -> dict[str, object]:
        return {"identity": request.state.api_key}

    @app.post("/tools/resume")
    async def edit_resume(key=write_resume):  # type: ignore[no-untyped-def]
        return {"key_id": key["key_id"]}

    return app


def _counting_handler(
    status_code: int, payload: dict[str, object], calls: list[httpx.Request]
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code, json=payload)

    return handler


async def test_valid_key_reaches_route_and_every_call_is_verified(
    app: FastAPI,
    client: AsyncClient,
    store: InMemoryStore,
    owner_id: UUID,
    session_headers: Callable[[UUID], dict[str, str]],
) -> None:
    """Successful verifications are never cached so each call is counted."""
    resume_id = store.add_resume(owner_id)
    created = await client.post(
        "/apikeys",
        json={"name": "Claude", "resume_id": str(resume_id), "permissions": ["resume:read"]},
        headers=session_headers(owner_id),
    )
    raw_key = created.json()["api_key"]

    async with httpx.AsyncClient(
        transport=ASGITransport(app=app), base_url="http://keys.local"
    ) as keys_http:
        keys_client = ResumeKeysClient("http://keys.local", http_client=keys_http)
        async with AsyncClient(
            transport=ASGITransport(app=_tool_server(keys_client)), base_url="http://tools"
        ) as tools:
            first = await tools.get("/tools/whoami", headers={"X-API-Key": raw_key})
            second = await tools.get(
                "/tools/whoami", headers={"Authorization": f"Bearer {raw_key}"}
            )
            forbidden = await tools.post("/tools/resume", headers={"X-API-Key": raw_key})

    assert first.status_code == 200
    assert second.status_code == 200
    identity = first.json()["identity"]
    assert identity["type"] == "api_key"
    assert identity["resume_id"] == str(resume_id)
    assert identity["permissions"] == ["resume:read"]
    assert forbidden.status_code == 403
    assert store.keys[UUID(created.json()["key_id"])]["use_count"] == 3


async def test_terminal_failure_is_cached_briefly() -> None:
    """Dead secrets are rejected from cache without calling the service again."""
    calls: list[httpx.Request] = []
    handler = _counting_handler(
        401, {"detail": "API key revoked.", "code": "revoked_api_key"}, calls
    )
    keys_http = httpx.AsyncClient(
        base_url="http://keys.local", transport=httpx.MockTransport(handler)
    )
    keys_client = ResumeKeysClient("http://keys.local", http_client=keys_http)

    async with AsyncClient(
        transport=ASGITransport(app=_tool_server(keys_client)), base_url="http://tools"
    ) as tools:
        first = await tools.get("/tools/whoami", headers={"X-API-Key": "mcp_revoked"})
        second = await tools.get("/tools/whoami", headers={"X-API-Key": "mcp_revoked"})

    await keys_http.aclose()
    assert first.status_code == 401
    assert second.json() == {"detail": "API key revoked.", "code": "revoked_api_key"}
    assert len(calls) == 1


@pytest.mark.parametrize(
    ("status_code", "payload", "expected_status", "expected_code"),
    [
        (429, {"detail": "Rate limit exceeded.", "code": "rate_limited"}, 429, "rate_limited"),
        (403, {"detail": "nope", "code": "forbidden_origin"}, 403, "forbidden_origin"),
        (503, {"detail": "down"}, 503, "service_unavailable"),
    ],
)
async def test_non_terminal_failures_are_not_cached(
    status_code: int, payload: dict[str, object], expected_status: int, expected_code: str
) -> None:
    """Transient and origin failures pass through and are retried on the next call."""
    calls: list[httpx.Request] = []
    keys_http = httpx.AsyncClient(
        base_url="http://keys.local",
        transport=httpx.MockTransport(_counting_handler(status_code, payload, calls)),
    )
    keys_client = ResumeKeysClient("http://keys.local", http_client=keys_http)

    async with AsyncClient(
        transport=ASGITransport(app=_tool_server(keys_client)), base_url="http://tools"
    ) as tools:
        responses = [
            await tools.get("/tools/whoami", headers={"X-API-Key": "mcp_some_key"})
            for _ in range(2)
        ]

    await keys_http.aclose()
    assert [response.status_code for response in responses] == [expected_status] * 2
    assert responses[0].json()["code"] == expected_code
    assert len(calls) == 2


async def test_missing_key_is_rejected_without_service_call() -> None:
    """Requests without a key never reach the key service."""
    calls: list[httpx.Request] = []
    keys_http = httpx.AsyncClient(
        base_url="http://keys.local",
        transport=httpx.MockTransport(_counting_handler(200, {}, calls)),
    )
    keys_client = ResumeKeysClient("http://keys.local", http_client=keys_http)

    async with AsyncClient(
        transport=ASGITransport(app=_tool_server(keys_client)), base_url="http://tools"
    ) as tools:
        response = await tools.get("/tools/whoami")

    await keys_http.aclose()
    assert response.status_code == 401
    assert response.json()["code"] == "invalid_api_key"
    assert calls == []
