"""Public SDK exports."""

from airesume_sdk.autosave import AutoSaveCoordinator, SaveStatus
from airesume_sdk.client import ResumeKeysClient
from airesume_sdk.dependencies import get_api_key_identity, require_permission
from airesume_sdk.editing import EditingSession, ResumeFormData, Tag
from airesume_sdk.middleware import APIKeyAuthMiddleware

__all__ = [
    "APIKeyAuthMiddleware",
    "AutoSaveCoordinator",
    "EditingSession",
    "ResumeFormData",
    "ResumeKeysClient",
    "SaveStatus",
    "Tag",
    "get_api_key_identity",
    "require_permission",
]
