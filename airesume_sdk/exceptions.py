"""SDK exception hierarchy."""

from __future__ import annotations


class SDKError(Exception):
    """Base class for all SDK-specific exceptions."""


class ServiceUnavailableError(SDKError):
    """Raised when the key service is temporarily unreachable."""


class ServiceResponseError(SDKError):
    """Raised when the key service rejects a request or returns unexpected data."""

    def __init__(
        self, detail: str, status_code: int | None = None, code: str | None = None
    ) -> None:
        """Initialize with optional HTTP status and machine-readable code."""
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.code = code


class AutoSaveClosedError(SDKError):
    """Raised when an editing session is used after it was closed."""
