"""API key authentication middleware for tool servers."""

from __future__ import annotations

import hmac
from collections.abc import Iterable
from hashlib import sha256

from cachetools import TTLCache
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from airesume.core.client_ip import parse_trusted_proxies, resolve_client_ip
from airesume_sdk.client import ResumeKeysClient
from airesume_sdk.exceptions import ServiceResponseError, ServiceUnavailableError
from airesume_sdk.types import TERMINAL_KEY_ERRORS, APIKeyIdentity

_TERMINAL_DETAILS = {
    "invalid_api_key": "Invalid API key.",
    "revoked_api_key": "API key revoked.",
    "expired_api_key": "API key expired.",
    "exhausted_api_key": "API key usage limit reached.",
}


def _error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build SDK auth error response payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _extract_api_key(request: Request) -> str | None:
    """Extract API key from X-API-Key or a Bearer header carrying a key."""
    direct_key = request.headers.get("x-api-key", "").strip()
    if direct_key:
        return direct_key

    authorization = request.headers.get("authorization", "").strip()
    scheme, _, value = authorization.partition(" ")
    if hmac.compare_digest(scheme.lower(), "bearer") or hmac.compare_digest(
        scheme.lower(), "apikey"
    ):
        return value.strip() or None
    return None


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Verify every call's API key with the key service and fail closed.

    Successful verifications are never cached so that each call is counted
    and rate limited. Dead secrets are remembered for a short TTL.
    """

    def __init__(
        self,
        app,
        service_base_url: str,
        client: ResumeKeysClient | None = None,
        cache_maxsize: int = 10000,
        invalid_ttl_seconds: int = 10,
        trusted_proxies: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self._trusted_proxies = parse_trusted_proxies(trusted_proxies)
        self._client = client or ResumeKeysClient(base_url=service_base_url)
        self._invalid_cache: TTLCache[str, str] = TTLCache(
            maxsize=cache_maxsize, ttl=invalid_ttl_seconds
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        raw_key = _extract_api_key(request)
        if raw_key is None:
            return _error_response(401, _TERMINAL_DETAILS["invalid_api_key"], "invalid_api_key")

        key_hash = sha256(raw_key.encode("utf-8")).hexdigest()
        cached_code = self._invalid_cache.get(key_hash)
        if cached_code is not None:
            return _error_response(401, _TERMINAL_DETAILS[cached_code], cached_code)

        try:
            verification = await self._client.verify_api_key(
                raw_key,
                client_ip=resolve_client_ip(
                    request.client.host if request.client else None,
                    request.headers.get("x-forwarded-for"),
                    self._trusted_proxies,
                ),
                user_agent=request.headers.get("user-agent"),
            )
        except ServiceUnavailableError:
            return _error_response(503, "Key service unavailable.", "service_unavailable")
        except ServiceResponseError as exc:
            code = exc.code or "invalid_api_key"
            if code in TERMINAL_KEY_ERRORS:
                self._invalid_cache[key_hash] = code
                return _error_response(401, _TERMINAL_DETAILS[code], code)
            status_code = exc.status_code if exc.status_code and exc.status_code < 500 else 503
            return _error_response(status_code, exc.detail, code)
        finally:
            raw_key = ""
            del raw_key

        identity: APIKeyIdentity = {
            "type": "api_key",
            "key_id": str(verification["key_id"]),
            "user_id": str(verification.get("user_id", "")),
            "resume_id": (
                str(verification["resume_id"]) if verification.get("resume_id") else None
            ),
            "is_admin": bool(verification.get("is_admin", False)),
            "permissions": [str(scope) for scope in verification.get("permissions", [])],
        }
        request.state.api_key = identity
        return await call_next(request)
