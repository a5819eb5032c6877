"""Data models for workspaces, notes, tasks, reminders, and agent events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentEventStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTED = "executed"
    ERROR = "error"


class NoteSource(str, Enum):
    MANUAL = "manual"
    MEETING = "meeting"
    IMPORT = "import"


class TaskStatus(str, Enum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MED = "med"
    HIGH = "high"


class ReminderMethod(str, Enum):
    APP_PUSH = "app_push"
    EMAIL = "email"
    CALENDAR = "calendar"


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    CANCELLED = "cancelled"


@dataclass
class User:
    id: str
    email: str
    display_name: str
    timezone: str = "Australia/Adelaide"
    llm_provider: str = "openai"
    llm_model: str = "gpt-4.1"
    created_at: str = ""


@dataclass
class Workspace:
    id: str
    owner_id: str
    name: str
    settings: dict[str, Any] | None = None
    created_at: str = ""


@dataclass
class Note:
    id: str
    workspace_id: str
    title: str
    source: NoteSource
    created_by: str
    content_md: str | None = None
    transcript_text: str | None = None
    summary_text: str | None = None
    entities: dict[str, Any] | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Task:
    id: str
    workspace_id: str
    title: str
    assignee_id: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MED
    due_at: str | None = None
    linked_note_id: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Reminder:
    id: str
    task_id: str
    remind_at: str
    method: ReminderMethod = ReminderMethod.APP_PUSH
    status: ReminderStatus = ReminderStatus.SCHEDULED
    created_at: str = ""


@dataclass
class AgentEvent:
    """A staged mutation proposed by an agent, waiting for (or past) approval.

    ``input`` is what the executor will receive; ``output`` stays None until
    the event is confirmed, then holds the executor result or ``{"error": ...}``.
    """
    id: str
    workspace_id: str
    agent: str
    action: str
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    status: AgentEventStatus = AgentEventStatus.DRAFT
    created_at: str = ""


@dataclass
class CalendarEventDraft:
    id: str
    title: str
    start: str
    end: str
    attendees: list[str] | None = None
    status: str = "draft"


@dataclass
class MeetingSummary:
    summary_text: str
    entities: dict[str, Any] = field(default_factory=dict)


@dataclass
class TranscriptionResult:
    partial_transcript: str
    note_id: str | None = None
