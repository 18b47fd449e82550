"""Structured request logging middleware with credential redaction."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from time import perf_counter
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from airesume.core.client_ip import IPNetwork, parse_trusted_proxies
from airesume.dependencies import request_client_ip

REDACTED = "***REDACTED***"
_SENSITIVE_PARTS = ("token", "secret", "api_key", "apikey", "authorization", "key_hash")

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    return any(part in normalized for part in _SENSITIVE_PARTS)


def redact_params(values: dict[str, Any]) -> dict[str, Any]:
    """Redact credential-bearing values from a flat or nested mapping."""
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if _is_sensitive_key(key):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_params(value)
        else:
            redacted[key] = value
    return redacted


def _request_fields(request: Request, trusted_proxies: Sequence[IPNetwork]) -> dict[str, Any]:
    user_state = getattr(request.state, "user", None)
    return {
        "method": request.method,
        "path": request.url.path,
        "query_params": redact_params(dict(request.query_params)),
        "client_ip": request_client_ip(request, trusted_proxies) or "unknown",
        "user_agent": request.headers.get("user-agent", ""),
        "user_id": user_state.get("user_id") if isinstance(user_state, dict) else None,
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured log per request with redacted metadata."""

    def __init__(self, app: ASGIApp, trusted_proxies: Iterable[str] = ()) -> None:
        super().__init__(app)
        self._trusted_proxies = parse_trusted_proxies(trusted_proxies)

    async def dispatch(self, request: Request, call_next) -> Response:
        start = perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **_request_fields(request, self._trusted_proxies),
            )
            raise

        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            **_request_fields(request, self._trusted_proxies),
        )
        return response
