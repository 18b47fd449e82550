"""Owned editing session for one open resume editor."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any
from uuid import UUID, uuid4

from airesume_sdk.autosave import AutoSaveCoordinator, SaveStatus, StatusListener
from airesume_sdk.client import ResumeKeysClient
from airesume_sdk.exceptions import AutoSaveClosedError

DEFAULT_TITLE = "Untitled Resume"


@dataclass(frozen=True)
class Tag:
    """One tag chip shown under the resume title."""

    id: str
    text: str
    class_name: str | None = None


@dataclass(frozen=True)
class ResumeFormData:
    """Editor-side resume header fields."""

    title: str = DEFAULT_TITLE
    role: str = ""
    display_name: str = ""
    tags: tuple[Tag, ...] = ()
    body_content: str | None = None
    id: UUID | None = None

    def snapshot(self) -> dict[str, Any]:
        """Fields persisted by auto-save, in wire form."""
        return {
            "title": self.title,
            "role": self.role,
            "display_name": self.display_name,
            "tags": [asdict(tag) for tag in self.tags],
            "body_content": self.body_content,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ResumeFormData:
        """Build form data from a persisted resume payload."""
        return cls(
            id=UUID(str(record["id"])) if record.get("id") else None,
            title=record.get("title") or DEFAULT_TITLE,
            role=record.get("role") or "",
            display_name=record.get("display_name") or "",
            tags=tuple(
                Tag(id=str(tag["id"]), text=str(tag["text"]), class_name=tag.get("class_name"))
                for tag in record.get("tags") or []
            ),
            body_content=record.get("body_content"),
        )


@dataclass
class EditingSession:
    """Form state scoped from "editor opened" to "editor closed".

    Every mutation hands the new snapshot to the session's auto-save
    coordinator. A new resume gets its id when the session opens, so the first
    save creates the row and later saves update it.
    """

    coordinator: AutoSaveCoordinator
    data: ResumeFormData = field(default_factory=ResumeFormData)
    _initial: ResumeFormData = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.data.id is None:
            self.data = replace(self.data, id=uuid4())
        self._initial = self.data

    @classmethod
    def open(
        cls,
        client: ResumeKeysClient,
        existing: ResumeFormData | None = None,
        debounce_seconds: float = 1.5,
        saved_display_seconds: float = 2.0,
        on_status: StatusListener | None = None,
    ) -> EditingSession:
        """Open a session that persists through ``client``."""
        data = existing or ResumeFormData()
        resume_id = data.id or uuid4()
        data = replace(data, id=resume_id)

        async def persist(snapshot: dict[str, Any]) -> Any:
            return await client.persist_snapshot(resume_id, snapshot)  # type: ignore[arg-type]

        coordinator = AutoSaveCoordinator(
            persist,
            debounce_seconds=debounce_seconds,
            saved_display_seconds=saved_display_seconds,
            on_status=on_status,
            last_saved=data.snapshot() if existing is not None else None,
        )
        return cls(coordinator=coordinator, data=data)

    @property
    def resume_id(self) -> UUID:
        assert self.data.id is not None
        return self.data.id

    @property
    def status(self) -> SaveStatus:
        return self.coordinator.status

    @property
    def is_new(self) -> bool:
        """True until the resume has been persisted at least once."""
        return not self.coordinator.has_persisted

    @property
    def has_unsaved_changes(self) -> bool:
        if self.coordinator.is_persisted(self.data.snapshot()):
            return False
        return self.data != self._initial or self.coordinator.status is SaveStatus.ERROR

    def set_title(self, title: str) -> None:
        self._apply(title=title)

    def set_role(self, role: str) -> None:
        self._apply(role=role)

    def set_display_name(self, display_name: str) -> None:
        self._apply(display_name=display_name)

    def set_body_content(self, body_content: str) -> None:
        self._apply(body_content=body_content)

    def set_tags(self, tags: list[Tag]) -> None:
        self._apply(tags=tuple(tags))

    def add_tag(self, text: str, class_name: str | None = None) -> Tag:
        """Append a tag with a fresh id."""
        tag = Tag(id=uuid4().hex, text=text, class_name=class_name)
        self._apply(tags=(*self.data.tags, tag))
        return tag

    def remove_tag(self, tag_id: str) -> None:
        self._apply(tags=tuple(tag for tag in self.data.tags if tag.id != tag_id))

    def move_tag(self, from_index: int, to_index: int) -> None:
        """Reorder tags; indexes refer to the current order."""
        tags = list(self.data.tags)
        tags.insert(to_index, tags.pop(from_index))
        self._apply(tags=tuple(tags))

    async def save(self) -> bool:
        """Manual save; the only way out of a failed auto-save."""
        return await self.coordinator.manual_save()

    def reset(self) -> None:
        """Discard local edits back to the state the session opened with.

        A resume that was never saved drops its pending save; an existing one
        saves its opening state again unless that is what was last persisted.
        """
        self._ensure_open()
        self.data = self._initial
        if self.is_new:
            self.coordinator.discard_pending()
        else:
            self.coordinator.on_data_change(self.data.snapshot())

    def close(self) -> None:
        self.coordinator.close()

    def _apply(self, **changes: Any) -> None:
        self._ensure_open()
        self.data = replace(self.data, **changes)
        self.coordinator.on_data_change(self.data.snapshot())

    def _ensure_open(self) -> None:
        if self.coordinator.closed:
            raise AutoSaveClosedError("Editing session is closed.")
