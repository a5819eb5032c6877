"""Action executors — each one performs a single domain mutation from a JSON payload."""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict

from silenttray.calendar import CalendarClient, DraftCalendarClient
from silenttray.errors import NotFoundError, ValidationError
from silenttray.models import NoteSource, TaskPriority
from silenttray.store import EntityStore


class Executor(Protocol):
    def execute(self, payload: dict[str, Any]) -> dict[str, Any]: ...


class ExecutorKind(str, Enum):
    CREATE_TASK = "create_task"
    UPDATE_NOTE = "update_note"
    CREATE_NOTE = "create_note"
    CREATE_CALENDAR_EVENT = "create_calendar_event"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateTaskPayload(_Payload):
    workspace_id: str
    title: str
    assignee_id: str
    description: str | None = None
    priority: TaskPriority | None = None
    due_at: datetime | None = None
    linked_note_id: str | None = None


class UpdateNotePayload(_Payload):
    note_id: str
    summary_text: str | None = None
    entities: dict[str, Any] | None = None
    content_md: str | None = None


class CreateNotePayload(_Payload):
    workspace_id: str
    title: str
    created_by: str
    source: NoteSource = NoteSource.MANUAL
    content_md: str | None = None
    transcript_text: str | None = None


class CreateCalendarEventPayload(_Payload):
    title: str
    start: datetime
    end: datetime
    attendees: list[str] | None = None


P = TypeVar("P", bound=_Payload)


def parse_payload(model: type[P], payload: Any) -> P:
    """Validate an untyped payload into ``model``, raising ValidationError on failure."""
    if not isinstance(payload, Mapping):
        raise ValidationError(
            f"{model.__name__} expects a JSON object, got {type(payload).__name__}"
        )
    try:
        return model.model_validate(dict(payload))
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<payload>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {problems}") from e


class CreateTaskExecutor:
    """TaskAgent/create_task — inserts a task in status 'todo'."""

    def __init__(self, store: EntityStore):
        self.store = store

    def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = parse_payload(CreateTaskPayload, payload)
        task = self.store.create_task(
            workspace_id=data.workspace_id,
            title=data.title,
            assignee_id=data.assignee_id,
            description=data.description,
            priority=data.priority or TaskPriority.MED,
            due_at=data.due_at,
            linked_note_id=data.linked_note_id,
        )
        return {"task_id": task.id, "message": "Task created successfully"}


class UpdateNoteExecutor:
    """NoteAgent/update_note — partial update of summary, entities, and content.

    Only keys present in the payload are written; an explicit null clears
    the column.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = parse_payload(UpdateNotePayload, payload)
        changes = data.model_dump(exclude_unset=True, exclude={"note_id"})
        try:
            note = self.store.update_note(data.note_id, changes)
        except NotFoundError:
            raise NotFoundError(f"Note not found: {data.note_id}") from None
        return {"note_id": note.id, "message": "Note updated successfully"}


class CreateNoteExecutor:
    """NoteTakingAgent/create_note."""

    def __init__(self, store: EntityStore):
        self.store = store

    def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = parse_payload(CreateNotePayload, payload)
        note = self.store.create_note(
            workspace_id=data.workspace_id,
            title=data.title,
            source=data.source,
            created_by=data.created_by,
            content_md=data.content_md,
            transcript_text=data.transcript_text,
        )
        return {"note_id": note.id, "message": "Note created successfully"}


class CreateCalendarEventExecutor:
    """SchedulerAgent/create_calendar_event — hands the request to a CalendarClient."""

    def __init__(self, calendar: CalendarClient):
        self.calendar = calendar

    def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = parse_payload(CreateCalendarEventPayload, payload)
        draft = self.calendar.create_event(
            title=data.title, start=data.start, end=data.end,
            attendees=data.attendees,
        )
        return {
            "calendar_event_id": draft.id,
            "message": "Calendar event drafted successfully",
        }


def build_executor(kind: ExecutorKind, store: EntityStore,
                   calendar: CalendarClient | None = None) -> Executor:
    """Instantiate the executor variant for ``kind``."""
    if kind is ExecutorKind.CREATE_TASK:
        return CreateTaskExecutor(store)
    if kind is ExecutorKind.UPDATE_NOTE:
        return UpdateNoteExecutor(store)
    if kind is ExecutorKind.CREATE_NOTE:
        return CreateNoteExecutor(store)
    if kind is ExecutorKind.CREATE_CALENDAR_EVENT:
        return CreateCalendarEventExecutor(calendar or DraftCalendarClient())
    raise ValueError(f"Unknown executor kind: {kind}")
