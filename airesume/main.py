"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from airesume.config import configure_structlog, get_settings
from airesume.db.session import dispose_engine
from airesume.error_handlers import register_exception_handlers
from airesume.middleware import CorrelationIdMiddleware, LoggingMiddleware
from airesume.routers import apikeys, health, resumes


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    app.add_middleware(LoggingMiddleware, trusted_proxies=settings.app.trusted_proxies)
    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app, settings.app.environment)

    app.include_router(apikeys.router)
    app.include_router(resumes.router)
    app.include_router(health.router)
    return app


app = create_app()
