"""Output formatters for agent events and workspace entities."""

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

from silenttray.models import AgentEvent, Note, Task


def _short_timestamp(ts: str | None) -> str:
    """Convert ISO timestamp to compact form: '2026-02-23 14:30'."""
    if not ts:
        return "-"
    return ts[:16].replace("T", " ")


def _plain(value: Any) -> Any:
    """Recursively turn dataclasses and enums into JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def to_json(value: Any) -> str:
    """JSON output for any model, list of models, or plain data."""
    return json.dumps(_plain(value), indent=2)


def _payload_str(payload: dict[str, Any] | None, limit: int = 80) -> str:
    if payload is None:
        return "null"
    text = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text


def format_agent_event_compact(event: AgentEvent) -> str:
    """Single-line compact format for one agent event."""
    ts = _short_timestamp(event.created_at)
    line = (
        f"[{ts}] [{event.status.value}] {event.id} "
        f"{event.agent}/{event.action} input={_payload_str(event.input)}"
    )
    if event.output is not None:
        line += f" output={_payload_str(event.output)}"
    return line


def format_agent_events_compact(events: list[AgentEvent]) -> str:
    """Compact multi-line output for a list of agent events."""
    if not events:
        return "(no agent events)"
    return "\n".join(format_agent_event_compact(e) for e in events)


def format_task_compact(task: Task) -> str:
    due = f" due {_short_timestamp(task.due_at)}" if task.due_at else ""
    return (
        f"[{task.status.value}] [{task.priority.value}] {task.id} "
        f"{task.title} -> {task.assignee_id}{due}"
    )


def format_tasks_compact(tasks: list[Task]) -> str:
    if not tasks:
        return "(no tasks)"
    return "\n".join(format_task_compact(t) for t in tasks)


def format_note_compact(note: Note) -> str:
    summary = " (summarized)" if note.summary_text else ""
    return (
        f"[{_short_timestamp(note.created_at)}] [{note.source.value}] "
        f"{note.id} {note.title}{summary}"
    )


def format_notes_compact(notes: list[Note]) -> str:
    if not notes:
        return "(no notes)"
    return "\n".join(format_note_compact(n) for n in notes)
