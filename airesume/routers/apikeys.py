"""API key management and verification routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from airesume.core.results import ServiceError
from airesume.dependencies import get_client_ip, get_current_user_id, get_store
from airesume.schemas.api_key import (
    APIKeyCreateRequest,
    APIKeyReasonRequest,
    APIKeyResponse,
    APIKeySecretResponse,
    APIKeyUpdateRequest,
    APIKeyVerifyRequest,
    APIKeyVerifyResponse,
)
from airesume.services.api_key_service import (
    APIKeyDraft,
    APIKeyService,
    get_api_key_service,
)
from airesume.services.audit_service import AuditService, get_audit_service
from airesume.services.backends import SQLAlchemyStore
from airesume.services.rate_limiter import KeyRateLimiter, get_key_rate_limiter

router = APIRouter(prefix="/apikeys", tags=["apikeys"])

CurrentUser = Annotated[UUID | None, Depends(get_current_user_id)]
Store = Annotated[SQLAlchemyStore, Depends(get_store)]
KeyService = Annotated[APIKeyService, Depends(get_api_key_service)]
Audit = Annotated[AuditService, Depends(get_audit_service)]


def _error_response(error: ServiceError) -> JSONResponse:
    """Build standardized API error response payload."""
    return JSONResponse(
        status_code=error.status_code, content={"detail": error.detail, "code": error.code}
    )


async def _audit(
    audit_service: AuditService,
    store: SQLAlchemyStore,
    event_type: str,
    user_id: UUID | None,
    key_id: UUID | None,
    error: ServiceError | None,
    **metadata: object,
) -> None:
    await audit_service.record(
        store,
        event_type=event_type,
        success=error is None,
        actor_id=user_id,
        target_id=key_id,
        failure_reason=error.code if error is not None else None,
        metadata={key: value for key, value in metadata.items() if value is not None} or None,
    )


@router.post("", response_model=APIKeySecretResponse, status_code=201)
async def create_api_key(
    payload: APIKeyCreateRequest,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
    audit_service: Audit,
) -> APIKeySecretResponse | JSONResponse:
    """Create API key and return raw key exactly once."""
    result = await api_key_service.create_key(
        store, user_id, APIKeyDraft(**payload.model_dump())
    )
    created = result.value
    await _audit(
        audit_service,
        store,
        "api_key_create",
        user_id,
        created.record.id if created is not None else None,
        result.error,
        is_admin=payload.is_admin,
        resume_id=payload.resume_id,
    )
    if created is None or result.error is not None:
        return _error_response(result.error)
    return APIKeySecretResponse(
        **APIKeyResponse.from_record(created.record).model_dump(), api_key=created.api_key
    )


@router.get("", response_model=list[APIKeyResponse])
async def list_api_keys(
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
) -> list[APIKeyResponse] | JSONResponse:
    """List the caller's API keys without exposing key material."""
    result = await api_key_service.list_keys(store, user_id)
    if result.error is not None:
        return _error_response(result.error)
    return [APIKeyResponse.from_record(record) for record in result.value or []]


@router.post("/verify", response_model=APIKeyVerifyResponse)
async def verify_api_key(
    request: Request,
    payload: APIKeyVerifyRequest,
    store: Store,
    api_key_service: KeyService,
    rate_limiter: Annotated[KeyRateLimiter, Depends(get_key_rate_limiter)],
    client_ip: Annotated[str | None, Depends(get_client_ip)],
) -> APIKeyVerifyResponse | JSONResponse:
    """Authenticate a tool client's API key and count the call."""
    result = await api_key_service.verify_key(
        store,
        payload.api_key,
        verb=payload.verb,
        category=payload.category,
        ip_address=client_ip,
        user_agent=request.headers.get("user-agent"),
        rate_limiter=rate_limiter,
    )
    if result.error is not None or result.value is None:
        return _error_response(result.error)
    record = result.value.record
    return APIKeyVerifyResponse(
        key_id=record.id,
        user_id=record.user_id,
        resume_id=record.resume_id,
        is_admin=record.is_admin,
        permissions=list(record.permissions),
        granted_by=result.value.granted_by,
        expires_at=record.expires_at,
    )


@router.get("/{key_id}", response_model=APIKeyResponse)
async def get_api_key(
    key_id: UUID,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
) -> APIKeyResponse | JSONResponse:
    """Fetch one of the caller's API keys."""
    result = await api_key_service.get_key(store, user_id, key_id)
    if result.error is not None or result.value is None:
        return _error_response(result.error)
    return APIKeyResponse.from_record(result.value)


@router.patch("/{key_id}", response_model=APIKeyResponse)
async def update_api_key(
    key_id: UUID,
    payload: APIKeyUpdateRequest,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
    audit_service: Audit,
) -> APIKeyResponse | JSONResponse:
    """Apply a partial update to one of the caller's API keys."""
    patch = payload.model_dump(exclude_unset=True)
    result = await api_key_service.update_key(store, user_id, key_id, patch)
    await _audit(
        audit_service, store, "api_key_update", user_id, key_id, result.error, fields=sorted(patch)
    )
    if result.error is not None or result.value is None:
        return _error_response(result.error)
    return APIKeyResponse.from_record(result.value)


@router.post("/{key_id}/revoke", response_model=APIKeyResponse)
async def revoke_api_key(
    key_id: UUID,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
    audit_service: Audit,
    payload: APIKeyReasonRequest | None = None,
) -> APIKeyResponse | JSONResponse:
    """Revoke API key by key ID."""
    result = await api_key_service.revoke_key(store, user_id, key_id)
    await _audit(
        audit_service,
        store,
        "api_key_revoke",
        user_id,
        key_id,
        result.error,
        reason=payload.reason if payload is not None else None,
    )
    if result.error is not None or result.value is None:
        return _error_response(result.error)
    return APIKeyResponse.from_record(result.value)


@router.post("/{key_id}/rotate", response_model=APIKeySecretResponse)
async def rotate_api_key(
    key_id: UUID,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
    audit_service: Audit,
    payload: APIKeyReasonRequest | None = None,
) -> APIKeySecretResponse | JSONResponse:
    """Replace the key's secret and return the new raw key exactly once."""
    result = await api_key_service.rotate_key(store, user_id, key_id)
    rotated = result.value
    await _audit(
        audit_service,
        store,
        "api_key_rotate",
        user_id,
        key_id,
        result.error,
        key_version=rotated.key_version if rotated is not None else None,
        reason=payload.reason if payload is not None else None,
    )
    if rotated is None or result.error is not None:
        return _error_response(result.error)
    return APIKeySecretResponse(
        **APIKeyResponse.from_record(rotated.record).model_dump(), api_key=rotated.api_key
    )


@router.delete("/{key_id}")
async def delete_api_key(
    key_id: UUID,
    user_id: CurrentUser,
    store: Store,
    api_key_service: KeyService,
    audit_service: Audit,
) -> JSONResponse:
    """Delete API key record entirely."""
    result = await api_key_service.delete_key(store, user_id, key_id)
    await _audit(audit_service, store, "api_key_delete", user_id, key_id, result.error)
    if result.error is not None:
        return _error_response(result.error)
    return JSONResponse(
        status_code=200, content={"detail": "API key deleted.", "key_id": str(key_id)}
    )
