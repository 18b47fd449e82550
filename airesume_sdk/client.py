"""Async HTTP client for the resume key service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx

from airesume.core.results import ErrorKind, ServiceResult
from airesume.core.rotation import RotatedSecret, Rotator
from airesume_sdk.exceptions import ServiceResponseError, ServiceUnavailableError
from airesume_sdk.types import APIKeyVerification, IssuedAPIKey, ResumeSnapshot

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0)


@dataclass
class _IssuedSecret:
    api_key: str
    key_version: int


def _reason_body(reason: str | None) -> dict[str, str] | None:
    return {"reason": reason} if reason else None


def _error_kind(code: str | None) -> ErrorKind:
    try:
        return ErrorKind(code)
    except ValueError:
        return ErrorKind.STORE_ERROR


class ResumeKeysClient:
    """Async client for key management, key verification, and snapshot saves."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create client with sane defaults and optional injected transport."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or DEFAULT_TIMEOUT,
        )
        self._access_token = access_token

    async def persist_snapshot(
        self, resume_id: UUID | str, snapshot: ResumeSnapshot
    ) -> dict[str, Any]:
        """Upsert the resume's header fields."""
        response = await self._request("PUT", f"/resumes/{resume_id}", json=dict(snapshot))
        return self._json_object(response)

    async def create_key(self, **fields: Any) -> IssuedAPIKey:
        """Create a key; the returned ``api_key`` is never retrievable again."""
        response = await self._request("POST", "/apikeys", json=fields)
        return self._json_object(response)  # type: ignore[return-value]

    async def list_keys(self) -> list[dict[str, Any]]:
        """List the signed-in user's keys, newest first."""
        response = await self._request("GET", "/apikeys")
        payload = self._json(response)
        if not isinstance(payload, list):
            raise ServiceResponseError("Invalid key list payload.", response.status_code)
        return payload

    async def update_key(self, key_id: UUID | str, **fields: Any) -> dict[str, Any]:
        """Apply a partial update to a key."""
        response = await self._request("PATCH", f"/apikeys/{key_id}", json=fields)
        return self._json_object(response)

    async def revoke_key(self, key_id: UUID | str, reason: str | None = None) -> dict[str, Any]:
        """Irreversibly deactivate a key; ``reason`` is kept in the audit log."""
        response = await self._request(
            "POST", f"/apikeys/{key_id}/revoke", json=_reason_body(reason)
        )
        return self._json_object(response)

    async def delete_key(self, key_id: UUID | str) -> None:
        """Remove a key record."""
        await self._request("DELETE", f"/apikeys/{key_id}")

    async def rotate_key(self, key_id: UUID | str, reason: str | None = None) -> IssuedAPIKey:
        """Replace a key's secret; the previous secret stops working immediately."""
        response = await self._request(
            "POST", f"/apikeys/{key_id}/rotate", json=_reason_body(reason)
        )
        payload = self._json_object(response)
        if not isinstance(payload.get("api_key"), str):
            raise ServiceResponseError("Invalid rotation payload.", response.status_code)
        return payload  # type: ignore[return-value]

    def rotator(self, key_id: UUID | str, reason: str | None = None) -> Rotator:
        """Adapt ``rotate_key`` to the rotation controller's result contract."""

        async def rotate() -> ServiceResult[RotatedSecret]:
            try:
                payload = await self.rotate_key(key_id, reason)
            except ServiceResponseError as exc:
                return ServiceResult.failure(_error_kind(exc.code), exc.detail)
            except ServiceUnavailableError as exc:
                # The request may have reached the service before the failure.
                return ServiceResult.failure(ErrorKind.ROTATION_OUTCOME_UNKNOWN, str(exc))
            return ServiceResult.success(_IssuedSecret(payload["api_key"], payload["key_version"]))

        return rotate

    async def verify_api_key(
        self,
        raw_api_key: str,
        verb: str | None = None,
        category: str | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> APIKeyVerification:
        """Verify a tool client's key on its behalf and count the call."""
        headers: dict[str, str] = {}
        if client_ip:
            headers["X-Forwarded-For"] = client_ip
        if user_agent:
            headers["User-Agent"] = user_agent
        body: dict[str, Any] = {"api_key": raw_api_key}
        if verb is not None:
            body["verb"] = verb
        if category is not None:
            body["category"] = category
        response = await self._request("POST", "/apikeys/verify", json=body, headers=headers)
        payload = self._json_object(response)
        if payload.get("valid") is not True or not payload.get("key_id"):
            raise ServiceResponseError("Invalid verification payload.", response.status_code)
        return payload  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ResumeKeysClient:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        del exc_type, exc, tb
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Execute request and normalize upstream failures."""
        request_headers = dict(headers or {})
        if self._access_token:
            request_headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            response = await self._client.request(method, path, headers=request_headers, **kwargs)
        except httpx.RequestError as exc:
            raise ServiceUnavailableError("Key service unavailable.") from exc

        if response.status_code >= 500 and response.status_code != 502:
            raise ServiceUnavailableError("Key service unavailable.")
        if response.status_code >= 400:
            detail, code = self._error_payload(response)
            raise ServiceResponseError(detail, response.status_code, code)
        return response

    @staticmethod
    def _error_payload(response: httpx.Response) -> tuple[str, str | None]:
        fallback = f"Key service request failed with status {response.status_code}."
        try:
            payload = response.json()
        except ValueError:
            return fallback, None
        if not isinstance(payload, dict):
            return fallback, None
        code = payload.get("code")
        return str(payload.get("detail", fallback)), str(code) if code is not None else None

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceResponseError(
                "Key service returned invalid JSON.", response.status_code
            ) from exc

    @classmethod
    def _json_object(cls, response: httpx.Response) -> dict[str, Any]:
        """Return response JSON as object."""
        payload = cls._json(response)
        if not isinstance(payload, dict):
            raise ServiceResponseError(
                "Key service returned invalid JSON object.", response.status_code
            )
        return payload
