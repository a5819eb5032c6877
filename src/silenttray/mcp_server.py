"""SilentTray MCP server — exposes workspace, task, note, and agent proposal tools."""

import json
from datetime import datetime, timezone
from typing import Any

from mcp.server.fastmcp import FastMCP

from silenttray.agent_events import AgentEventMachine
from silenttray.calendar import DraftCalendarClient
from silenttray.config import load_settings
from silenttray.errors import SilentTrayError, ValidationError
from silenttray.formatting import format_agent_events_compact, to_json
from silenttray.meetings import MeetingService
from silenttray.observability import setup_logging
from silenttray.router import build_router
from silenttray.store import NOTE_NULLABLE, TASK_NULLABLE, EntityStore

mcp = FastMCP("silenttray", instructions=(
    "SilentTray stores workspaces, notes, tasks, and reminders, and stages "
    "agent proposals for human approval. Agents call 'propose'; nothing is "
    "executed until a person moves the event to awaiting_confirmation and "
    "calls 'confirm'."
))


def _get_store() -> EntityStore:
    """Get EntityStore for the configured project directory."""
    settings = load_settings()
    if not settings.db_path.exists():
        raise FileNotFoundError(
            f"SilentTray not initialized in {settings.project_dir}. "
            f"Run 'silenttray init' in the project directory first."
        )
    return EntityStore(settings.db_path, timeout=settings.busy_timeout)


def _machine(store: EntityStore) -> AgentEventMachine:
    return AgentEventMachine(store, build_router(store, calendar=DraftCalendarClient()))


def _error(e: Exception) -> str:
    return f"Error: {e}"


def _changes(values: dict[str, Any], clear: list[str] | None,
             nullable: frozenset[str]) -> dict[str, Any]:
    """Supplied values plus explicit nulls for the fields named in ``clear``."""
    changes = {key: value for key, value in values.items() if value is not None}
    for key in clear or ():
        if key not in nullable:
            raise ValidationError(
                f"Field cannot be cleared: {key} (clearable: {', '.join(sorted(nullable))})"
            )
        if key in changes:
            raise ValidationError(f"Field is both set and cleared: {key}")
        changes[key] = None
    return changes


# --- agent proposals ---

@mcp.tool()
def propose(agent: str, input_json: dict[str, Any], workspace_id: str) -> str:
    """Stage an agent proposal as a draft event awaiting human review.

    The action is derived from the agent name (TaskAgent -> create_task,
    NoteTakingAgent -> create_note, SchedulerAgent -> create_calendar_event,
    KnowledgeAgent -> extract_knowledge, anything else -> propose_action).

    Args:
        agent: Name of the proposing agent
        input_json: Parameters the action will run with once confirmed
        workspace_id: Workspace the proposal belongs to
    """
    store = _get_store()
    try:
        return to_json(_machine(store).propose(agent, input_json, workspace_id))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def confirm(agent_event_id: str) -> str:
    """Execute a proposal that is awaiting confirmation.

    On success the event becomes 'executed' with the action result as output.
    On failure it becomes 'error' with {"error": message} and the error is returned.

    Args:
        agent_event_id: ID of the agent event (aev-...)
    """
    store = _get_store()
    try:
        return to_json(_machine(store).confirm(agent_event_id))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def create_agent_event(
    workspace_id: str,
    agent: str,
    action: str,
    input: dict[str, Any] | None = None,
    output: dict[str, Any] | None = None,
    status: str = "draft",
) -> str:
    """Create an agent event with an explicit action.

    Args:
        workspace_id: Owning workspace
        agent: Agent name
        action: Canonical action name
        input: Parameters for the action
        output: Pre-set output (manual entry)
        status: draft, awaiting_confirmation, executed, or error (default: draft)
    """
    store = _get_store()
    try:
        event = _machine(store).create_draft(
            workspace_id, agent, action, input=input, output=output, status=status,
        )
        return to_json(event)
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def update_agent_event(
    id: str,
    status: str | None = None,
    output: dict[str, Any] | None = None,
    clear_output: bool = False,
) -> str:
    """Overwrite an agent event's status and/or output.

    Used to move a draft to awaiting_confirmation. No transition rules are
    enforced here.

    Args:
        id: Agent event ID
        status: New status
        output: New output object
        clear_output: Set output to null
    """
    store = _get_store()
    try:
        kwargs: dict[str, Any] = {}
        if status is not None:
            kwargs["status"] = status
        if clear_output:
            kwargs["output"] = None
        elif output is not None:
            kwargs["output"] = output
        return to_json(_machine(store).patch(id, **kwargs))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def get_agent_events(
    workspace_id: str,
    status: str | None = None,
    format: str = "json",
) -> str:
    """List agent events for a workspace, newest first.

    Args:
        workspace_id: Workspace to list
        status: Optional status filter
        format: Output format: "json" or "compact"
    """
    store = _get_store()
    try:
        events = _machine(store).list(workspace_id, status)
        if format == "compact":
            return format_agent_events_compact(events)
        return to_json(events)
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


# --- users & workspaces ---

@mcp.tool()
def create_user(
    email: str,
    display_name: str,
    timezone: str = "Australia/Adelaide",
    llm_provider: str = "openai",
    llm_model: str = "gpt-4.1",
) -> str:
    """Create a user account."""
    store = _get_store()
    try:
        return to_json(store.create_user(
            email, display_name, timezone=timezone,
            llm_provider=llm_provider, llm_model=llm_model,
        ))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def create_workspace(owner_id: str, name: str,
                     settings: dict[str, Any] | None = None) -> str:
    """Create a workspace owned by a user."""
    store = _get_store()
    try:
        return to_json(store.create_workspace(owner_id, name, settings=settings))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def get_user_workspaces(user_id: str) -> str:
    """List workspaces owned by a user."""
    store = _get_store()
    try:
        return to_json(store.list_workspaces(user_id))
    finally:
        store.close()


# --- notes ---

@mcp.tool()
def create_note(
    workspace_id: str,
    title: str,
    source: str,
    created_by: str,
    content_md: str | None = None,
    transcript_text: str | None = None,
) -> str:
    """Create a note.

    Args:
        workspace_id: Owning workspace
        title: Note title
        source: manual, meeting, or import
        created_by: Author user ID
        content_md: Markdown body
        transcript_text: Initial meeting transcript
    """
    store = _get_store()
    try:
        return to_json(store.create_note(
            workspace_id, title, source, created_by,
            content_md=content_md, transcript_text=transcript_text,
        ))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def update_note(
    id: str,
    title: str | None = None,
    content_md: str | None = None,
    transcript_text: str | None = None,
    summary_text: str | None = None,
    entities: dict[str, Any] | None = None,
    clear: list[str] | None = None,
) -> str:
    """Update the given fields of a note. Omitted fields are left unchanged.

    Args:
        clear: Fields to set to null (content_md, transcript_text, summary_text, entities)
    """
    store = _get_store()
    try:
        changes = _changes({
            "title": title,
            "content_md": content_md,
            "transcript_text": transcript_text,
            "summary_text": summary_text,
            "entities": entities,
        }, clear, NOTE_NULLABLE)
        return to_json(store.update_note(id, changes))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def get_notes(workspace_id: str) -> str:
    """List notes in a workspace, newest first."""
    store = _get_store()
    try:
        return to_json(store.list_notes(workspace_id))
    finally:
        store.close()


# --- tasks & reminders ---

@mcp.tool()
def create_task(
    workspace_id: str,
    title: str,
    assignee_id: str,
    description: str | None = None,
    priority: str = "med",
    due_at: str | None = None,
    linked_note_id: str | None = None,
) -> str:
    """Create a task in status 'todo'.

    Args:
        workspace_id: Owning workspace
        title: Task title
        assignee_id: Assigned user ID
        description: Longer description
        priority: low, med, or high (default: med)
        due_at: ISO timestamp
        linked_note_id: Note in the same workspace this task came from
    """
    store = _get_store()
    try:
        return to_json(store.create_task(
            workspace_id, title, assignee_id, description=description,
            priority=priority, due_at=due_at, linked_note_id=linked_note_id,
        ))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def update_task(
    id: str,
    title: str | None = None,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    due_at: str | None = None,
    assignee_id: str | None = None,
    linked_note_id: str | None = None,
    clear: list[str] | None = None,
) -> str:
    """Update the given fields of a task. Omitted fields are left unchanged.

    Args:
        clear: Fields to set to null (description, due_at, linked_note_id)
    """
    store = _get_store()
    try:
        changes = _changes({
            "title": title,
            "description": description,
            "status": status,
            "priority": priority,
            "due_at": due_at,
            "assignee_id": assignee_id,
            "linked_note_id": linked_note_id,
        }, clear, TASK_NULLABLE)
        return to_json(store.update_task(id, changes))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def get_tasks(workspace_id: str, status: str | None = None) -> str:
    """List tasks in a workspace, optionally filtered by status (todo, doing, done)."""
    store = _get_store()
    try:
        return to_json(store.list_tasks(workspace_id, status))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def create_reminder(task_id: str, remind_at: str, method: str = "app_push") -> str:
    """Record a reminder for a task. Reminders are stored, not delivered.

    Args:
        task_id: Task to remind about
        remind_at: ISO timestamp
        method: app_push, email, or calendar (default: app_push)
    """
    store = _get_store()
    try:
        return to_json(store.create_reminder(task_id, remind_at, method=method))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def get_reminders(task_id: str | None = None) -> str:
    """List reminders, optionally for a single task."""
    store = _get_store()
    try:
        return to_json(store.list_reminders(task_id))
    finally:
        store.close()


# --- meetings & calendar ---

@mcp.tool()
def transcribe_meeting(audio_chunk: str, note_id: str | None = None) -> str:
    """Transcribe a base64 audio chunk, appending it to a meeting note if given."""
    store = _get_store()
    try:
        return to_json(MeetingService(store).transcribe(audio_chunk, note_id=note_id))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def finalize_meeting(note_id: str) -> str:
    """Summarize a meeting note's transcript and extract entities onto the note."""
    store = _get_store()
    try:
        return to_json(MeetingService(store).finalize(note_id))
    except (SilentTrayError, ValueError) as e:
        return _error(e)
    finally:
        store.close()


@mcp.tool()
def create_calendar_event(title: str, start: str, end: str,
                          attendees: list[str] | None = None) -> str:
    """Draft a calendar event. Nothing is sent to a calendar provider."""
    try:
        return to_json(DraftCalendarClient().create_event(title, start, end, attendees))
    except (SilentTrayError, ValueError) as e:
        return _error(e)


@mcp.tool()
def healthcheck() -> str:
    """Report server liveness."""
    return json.dumps({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@mcp.tool()
def status() -> str:
    """Get SilentTray status: row counts per table and database size."""
    settings = load_settings()
    store = _get_store()
    try:
        return json.dumps({
            "project_name": store.get_meta("project_name") or "unknown",
            "initialized_at": store.get_meta("initialized_at") or "unknown",
            "users": store.count("users"),
            "workspaces": store.count("workspaces"),
            "notes": store.count("notes"),
            "tasks": store.count("tasks"),
            "agent_events": store.count("agent_events"),
            "db_size_bytes": settings.db_path.stat().st_size,
        }, indent=2)
    finally:
        store.close()


def main():
    """Entry point for silenttray-mcp console script."""
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_format)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
