"""Shared fixtures for router tests running against in-memory collaborators."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt

from airesume.core.auth import SessionTokenVerifier, get_session_token_verifier
from airesume.core.key_material import KeyMaterialGenerator
from airesume.dependencies import get_store, get_trusted_proxies
from airesume.error_handlers import register_exception_handlers
from airesume.middleware import CorrelationIdMiddleware, LoggingMiddleware
from airesume.routers import apikeys, health, resumes
from airesume.services.api_key_service import APIKeyService, get_api_key_service
from airesume.services.audit_service import AuditService, get_audit_service
from airesume.services.rate_limiter import KeyRateLimiter, get_key_rate_limiter
from airesume.services.resume_service import ResumeService, get_resume_service
from tests.fakes import FakeRedis, InMemoryStore

SESSION_SECRET = "integration-session-secret-value"


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory store per test."""
    return InMemoryStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Fresh sorted-set backend per test."""
    return FakeRedis()


@pytest.fixture
def api_key_service() -> APIKeyService:
    """Service instance isolated from the process-wide cached one."""
    return APIKeyService(generator=KeyMaterialGenerator())


@pytest.fixture
def app(store: InMemoryStore, fake_redis: FakeRedis, api_key_service: APIKeyService) -> FastAPI:
    """Application wired like production with storage collaborators overridden."""
    application = FastAPI()
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(application, environment="production")
    application.include_router(apikeys.router)
    application.include_router(resumes.router)
    application.include_router(health.router)

    application.dependency_overrides[get_store] = lambda: store
    application.dependency_overrides[get_trusted_proxies] = lambda: ()
    application.dependency_overrides[get_session_token_verifier] = lambda: SessionTokenVerifier(
        secret=SESSION_SECRET
    )
    application.dependency_overrides[get_api_key_service] = lambda: api_key_service
    application.dependency_overrides[get_key_rate_limiter] = lambda: KeyRateLimiter(fake_redis)
    application.dependency_overrides[get_audit_service] = lambda: AuditService()
    application.dependency_overrides[get_resume_service] = lambda: ResumeService()
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """HTTP client bound to the test application."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


@pytest.fixture
def session_headers() -> Callable[[UUID], dict[str, str]]:
    """Build Authorization headers carrying a signed session token."""

    def build(user_id: UUID) -> dict[str, str]:
        token = jwt.encode(
            {
                "sub": str(user_id),
                "aud": "authenticated",
                "exp": datetime.now(UTC) + timedelta(minutes=5),
            },
            SESSION_SECRET,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def owner_id() -> UUID:
    """Signed-in user for the test."""
    return uuid4()
