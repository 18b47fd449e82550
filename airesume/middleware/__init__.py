"""Middleware package exports."""

from airesume.middleware.correlation_id import CorrelationIdMiddleware
from airesume.middleware.logging import LoggingMiddleware

__all__ = ["CorrelationIdMiddleware", "LoggingMiddleware"]
