"""Unit tests for request logging and correlation ID middleware."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from airesume.middleware import logging as logging_module
from airesume.middleware.correlation_id import (
    CORRELATION_ID_HEADER,
    CorrelationIdMiddleware,
    resolve_correlation_id,
)
from airesume.middleware.logging import REDACTED, LoggingMiddleware, redact_params


class _CaptureLogger:
    """Capture request log calls."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append(("warning", event, kwargs))

    def exception(self, event: str, **kwargs: object) -> None:
        self.events.append(("exception", event, kwargs))


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/ok")
    async def ok(request: Request) -> dict[str, str]:
        request.state.user = {"type": "user", "user_id": "u-1"}
        return {"correlation_id": request.state.correlation_id}

    @app.get("/missing")
    async def missing() -> dict[str, str]:
        from fastapi import HTTPException

        raise HTTPException(status_code=404, detail="nope")

    return app


def test_redact_params_masks_credentials_recursively() -> None:
    """Credential-bearing keys are masked at any depth."""
    redacted = redact_params(
        {"api_key": "mcp_x", "page": "2", "nested": {"X-Api-Key": "mcp_y", "sort": "asc"}}
    )
    assert redacted == {
        "api_key": REDACTED,
        "page": "2",
        "nested": {"X-Api-Key": REDACTED, "sort": "asc"},
    }


def test_resolve_correlation_id_accepts_safe_values_only() -> None:
    """Well-formed inbound IDs are reused; anything else is replaced."""
    assert resolve_correlation_id("req-123:abc") == "req-123:abc"
    replaced = resolve_correlation_id("bad id with spaces")
    assert replaced != "bad id with spaces"
    assert len(replaced) == 36
    assert resolve_correlation_id("x" * 65) != "x" * 65
    assert resolve_correlation_id(None)


@pytest.mark.asyncio
async def test_request_log_redacts_query_and_carries_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """One info log per request with redacted query parameters and user id."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get(
            "/ok?token=abc&page=1",
            headers={CORRELATION_ID_HEADER: "trace-42", "User-Agent": "pytest"},
        )

    assert response.status_code == 200
    assert response.headers[CORRELATION_ID_HEADER] == "trace-42"
    assert response.json() == {"correlation_id": "trace-42"}
    level, event, fields = capture.events[-1]
    assert (level, event) == ("info", "request_completed")
    assert fields["query_params"] == {"token": REDACTED, "page": "1"}
    assert fields["user_id"] == "u-1"
    assert fields["user_agent"] == "pytest"
    assert fields["status_code"] == 200


@pytest.mark.asyncio
async def test_client_errors_log_at_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    """Responses with status 400 or above are logged as warnings."""
    capture = _CaptureLogger()
    monkeypatch.setattr(logging_module, "logger", capture)

    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/missing")

    assert response.status_code == 404
    assert CORRELATION_ID_HEADER in response.headers
    assert capture.events[-1][0] == "warning"
    assert capture.events[-1][2]["status_code"] == 404
