"""Debounced, single-flight auto-save for editor snapshots.

Edits arrive synchronously through ``on_data_change``. A trailing debounce
coalesces bursts of edits, at most one save is in flight at a time, and only
the newest snapshot held at the moment the timer fires is ever sent.
"""

from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from airesume_sdk.exceptions import AutoSaveClosedError

logger = structlog.get_logger(__name__)

Persist = Callable[[dict[str, Any]], Awaitable[Any]]
StatusListener = Callable[["SaveStatus"], None]


class SaveStatus(str, Enum):
    """Save indicator states."""

    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


def serialize_snapshot(snapshot: dict[str, Any]) -> str:
    """Canonical JSON used to decide whether a snapshot was already persisted."""
    return json.dumps(snapshot, sort_keys=True, separators=(",", ":"), default=str)


class AutoSaveCoordinator:
    """Turn a stream of local edits into debounced, status-tracked persistence.

    ``persist`` is awaited with the snapshot and signals failure by raising.
    A failed save leaves the coordinator in ERROR; later edits are still
    captured, but only ``manual_save`` attempts persistence again.
    """

    def __init__(
        self,
        persist: Persist,
        debounce_seconds: float = 1.5,
        saved_display_seconds: float = 2.0,
        on_status: StatusListener | None = None,
        last_saved: dict[str, Any] | None = None,
    ) -> None:
        self._persist = persist
        self._debounce_seconds = debounce_seconds
        self._saved_display_seconds = saved_display_seconds
        self._on_status = on_status

        self._status = SaveStatus.IDLE
        self._error: Exception | None = None
        self._latest: dict[str, Any] | None = None
        self._last_saved = serialize_snapshot(last_saved) if last_saved is not None else None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._status_handle: asyncio.TimerHandle | None = None
        self._save_task: asyncio.Task[bool] | None = None
        self._refire_after_save = False
        self._closed = False

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def is_saving(self) -> bool:
        return self._save_task is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_persisted(self) -> bool:
        return self._last_saved is not None

    def is_persisted(self, snapshot: dict[str, Any]) -> bool:
        """True when ``snapshot`` matches the last successfully saved one."""
        return self._last_saved is not None and serialize_snapshot(snapshot) == self._last_saved

    def on_data_change(self, snapshot: dict[str, Any]) -> None:
        """Record the newest snapshot and restart the debounce window."""
        self._ensure_open()
        self._latest = copy.deepcopy(snapshot)
        if self._status is SaveStatus.ERROR:
            return
        self._arm_debounce()

    async def manual_save(self) -> bool:
        """Save immediately, bypassing the debounce; returns True when persisted."""
        self._ensure_open()
        self._cancel_debounce()
        self._refire_after_save = False
        while self._save_task is not None:
            await asyncio.shield(self._save_task)
            self._ensure_open()
        if self._latest is None:
            return True
        if self.is_persisted(self._latest):
            if self._status is SaveStatus.ERROR:
                self._error = None
                self._set_status(SaveStatus.IDLE)
            return True
        task = self._start_save()
        return await asyncio.shield(task)

    def discard_pending(self) -> None:
        """Forget the unsaved snapshot and cancel its pending save."""
        self._cancel_debounce()
        self._refire_after_save = False
        self._latest = None

    async def wait_idle(self) -> None:
        """Wait for the in-flight save, if any, to resolve."""
        while self._save_task is not None:
            await asyncio.shield(self._save_task)

    def close(self) -> None:
        """Cancel pending timers; an in-flight save finishes but its result is ignored."""
        self._closed = True
        self._cancel_debounce()
        if self._status_handle is not None:
            self._status_handle.cancel()
            self._status_handle = None
        self._refire_after_save = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise AutoSaveClosedError("Auto-save coordinator is closed.")

    def _arm_debounce(self) -> None:
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self._debounce_seconds, self._on_debounce)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        if self._closed or self._status is SaveStatus.ERROR or self._latest is None:
            return
        if self._save_task is not None:
            self._refire_after_save = True
            return
        if self.is_persisted(self._latest):
            return
        self._start_save()

    def _start_save(self) -> asyncio.Task[bool]:
        assert self._latest is not None
        snapshot = copy.deepcopy(self._latest)
        if self._status_handle is not None:
            self._status_handle.cancel()
            self._status_handle = None
        self._set_status(SaveStatus.SAVING)
        self._save_task = asyncio.get_running_loop().create_task(self._save(snapshot))
        return self._save_task

    async def _save(self, snapshot: dict[str, Any]) -> bool:
        serialized = serialize_snapshot(snapshot)
        try:
            await self._persist(snapshot)
        except Exception as exc:
            self._save_task = None
            if self._closed:
                return False
            logger.warning("autosave_failed", error=str(exc))
            self._error = exc
            self._refire_after_save = False
            self._set_status(SaveStatus.ERROR)
            return False

        self._save_task = None
        if self._closed:
            return False
        self._last_saved = serialized
        self._error = None
        self._set_status(SaveStatus.SAVED)
        loop = asyncio.get_running_loop()
        self._status_handle = loop.call_later(self._saved_display_seconds, self._on_saved_elapsed)
        if self._refire_after_save:
            self._refire_after_save = False
            self._arm_debounce()
        return True

    def _on_saved_elapsed(self) -> None:
        self._status_handle = None
        if self._status is SaveStatus.SAVED:
            self._set_status(SaveStatus.IDLE)

    def _set_status(self, status: SaveStatus) -> None:
        self._status = status
        if self._on_status is not None:
            self._on_status(status)
