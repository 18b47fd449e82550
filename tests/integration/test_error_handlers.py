"""Tests for the global error response contract."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient

from airesume import error_handlers as error_handlers_module
from airesume.error_handlers import register_exception_handlers


class _CaptureLogger:
    """Capture handler log calls."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append(("warning", event, kwargs))

    def error(self, event: str, **kwargs: object) -> None:
        self.events.append(("error", event, kwargs))


def _app(environment: str) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app, environment=environment)

    @app.get("/apikeys/boom")
    async def boom() -> None:
        raise RuntimeError("database password leaked in message")

    @app.get("/apikeys/teapot")
    async def teapot() -> None:
        raise HTTPException(status_code=429, detail="slow down")

    @app.get("/apikeys/custom")
    async def custom() -> None:
        raise HTTPException(status_code=409, detail={"detail": "busy", "code": "made_up"})

    return app


async def _get(app: FastAPI, path: str):  # type: ignore[no-untyped-def]
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.get(path)


async def test_unexpected_errors_are_masked_outside_development(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Internal messages never reach production clients."""
    capture = _CaptureLogger()
    monkeypatch.setattr(error_handlers_module, "logger", capture)

    response = await _get(_app("production"), "/apikeys/boom")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error.", "code": "internal_error"}
    assert capture.events[-1][:2] == ("error", "unhandled_exception")


async def test_unexpected_errors_show_detail_in_development() -> None:
    """Development keeps the original message for debugging."""
    response = await _get(_app("development"), "/apikeys/boom")
    assert response.json()["detail"] == "database password leaked in message"


async def test_http_exceptions_get_default_codes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plain and unknown codes fall back to the status default and are logged."""
    capture = _CaptureLogger()
    monkeypatch.setattr(error_handlers_module, "logger", capture)
    app = _app("production")

    limited = await _get(app, "/apikeys/teapot")
    assert limited.json() == {"detail": "slow down", "code": "rate_limited"}
    conflict = await _get(app, "/apikeys/custom")
    assert conflict.json() == {"detail": "busy", "code": "rotation_conflict"}
    missing = await _get(app, "/nowhere")
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"

    rejected = [
        fields["code"] for _, event, fields in capture.events if event == "request_rejected"
    ]
    assert rejected == ["rate_limited", "rotation_conflict"]
