"""SilentTray CLI — workspace records and human approval of agent proposals."""

import json
import sys
from datetime import datetime, timezone

import click

from silenttray.agent_events import AgentEventMachine
from silenttray.calendar import DraftCalendarClient
from silenttray.config import Settings, load_settings
from silenttray.errors import SilentTrayError
from silenttray.formatting import (
    format_agent_event_compact, format_agent_events_compact,
    format_note_compact, format_notes_compact,
    format_task_compact, format_tasks_compact, to_json,
)
from silenttray.models import AgentEventStatus, NoteSource, TaskPriority, TaskStatus
from silenttray.observability import setup_logging
from silenttray.router import build_router
from silenttray.store import EntityStore

FORMAT_OPTION = click.option("--format", "-f", "fmt", default="compact",
                             type=click.Choice(["compact", "json"]))
EVENT_STATUSES = [s.value for s in AgentEventStatus]


def _get_store(settings: Settings) -> EntityStore:
    """Get an initialized EntityStore for the project."""
    if not settings.db_path.exists():
        click.echo(f"Error: SilentTray not initialized in {settings.project_dir}", err=True)
        click.echo("Run 'silenttray init' first.", err=True)
        sys.exit(1)
    return EntityStore(settings.db_path, timeout=settings.busy_timeout)


def _machine(store: EntityStore) -> AgentEventMachine:
    return AgentEventMachine(store, build_router(store, calendar=DraftCalendarClient()))


def _fail(e: Exception):
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


def _parse_json_object(raw: str | None, option: str) -> dict | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON ({e.msg})", param_hint=option)
    if not isinstance(value, dict):
        raise click.BadParameter("must be a JSON object", param_hint=option)
    return value


@click.group()
@click.option("--project", "-p", default=None, help="Project directory (default: $SILENTTRAY_PROJECT_DIR or .)")
@click.pass_context
def cli(ctx, project):
    """SilentTray — workspaces, tasks, and agent proposals that wait for approval."""
    ctx.ensure_object(dict)
    settings = load_settings(project)
    setup_logging(settings.log_level, settings.log_format)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--name", default=None, help="Project name (default: directory name)")
@click.pass_context
def init(ctx, name):
    """Initialize SilentTray in this project."""
    settings = ctx.obj["settings"]

    if settings.data_dir.exists():
        click.echo(f"SilentTray already initialized in {settings.project_dir}")
        return

    settings.data_dir.mkdir(parents=True)
    store = EntityStore(settings.db_path, timeout=settings.busy_timeout)
    try:
        store.initialize()
        project_name = name or settings.project_dir.name
        store.set_meta("project_name", project_name)
        store.set_meta("initialized_at", datetime.now(timezone.utc).isoformat())
    finally:
        store.close()

    click.echo(f"SilentTray initialized for '{project_name}'.")


@cli.command()
@FORMAT_OPTION
@click.pass_context
def status(ctx, fmt):
    """Show SilentTray status."""
    settings = ctx.obj["settings"]
    store = _get_store(settings)

    try:
        info = {
            "project_name": store.get_meta("project_name") or "unknown",
            "initialized_at": store.get_meta("initialized_at") or "unknown",
            "schema_version": store.get_meta("schema_version"),
            "users": store.count("users"),
            "workspaces": store.count("workspaces"),
            "notes": store.count("notes"),
            "tasks": store.count("tasks"),
            "agent_events": store.count("agent_events"),
            "db_size_bytes": settings.db_path.stat().st_size,
        }
    finally:
        store.close()

    if fmt == "json":
        click.echo(json.dumps(info, indent=2))
    else:
        click.echo(f"Project:      {info['project_name']}")
        click.echo(f"Initialized:  {info['initialized_at']}")
        click.echo(f"Users:        {info['users']}")
        click.echo(f"Workspaces:   {info['workspaces']}")
        click.echo(f"Notes:        {info['notes']}")
        click.echo(f"Tasks:        {info['tasks']}")
        click.echo(f"Agent events: {info['agent_events']}")
        click.echo(f"DB size:      {info['db_size_bytes']:,} bytes")


# --- Users & workspaces ---

@cli.group()
def users():
    """Manage users."""


@users.command("add")
@click.argument("email")
@click.option("--name", "display_name", required=True, help="Display name")
@click.option("--timezone", "tz", default="Australia/Adelaide", help="IANA timezone")
@click.pass_context
def users_add(ctx, email, display_name, tz):
    """Create a user."""
    store = _get_store(ctx.obj["settings"])
    try:
        user = store.create_user(email, display_name, timezone=tz)
        click.echo(user.id)
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@cli.group()
def workspaces():
    """Manage workspaces."""


@workspaces.command("add")
@click.argument("name")
@click.option("--owner", "owner_id", required=True, help="Owner user ID")
@click.pass_context
def workspaces_add(ctx, name, owner_id):
    """Create a workspace owned by a user."""
    store = _get_store(ctx.obj["settings"])
    try:
        workspace = store.create_workspace(owner_id, name)
        click.echo(workspace.id)
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@workspaces.command("ls")
@click.option("--owner", "owner_id", required=True, help="Owner user ID")
@click.pass_context
def workspaces_ls(ctx, owner_id):
    """List a user's workspaces."""
    store = _get_store(ctx.obj["settings"])
    try:
        found = store.list_workspaces(owner_id)
    finally:
        store.close()

    if not found:
        click.echo("(no workspaces)")
    for ws in found:
        click.echo(f"{ws.id} {ws.name}")


# --- Notes & tasks ---

@cli.group()
def notes():
    """Manage notes."""


@notes.command("add")
@click.argument("title")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--by", "created_by", required=True, help="Author user ID")
@click.option("--source", default="manual", type=click.Choice([s.value for s in NoteSource]))
@click.option("--content", "-c", "content_md", default=None, help="Markdown body")
@FORMAT_OPTION
@click.pass_context
def notes_add(ctx, title, workspace_id, created_by, source, content_md, fmt):
    """Create a note."""
    store = _get_store(ctx.obj["settings"])
    try:
        note = store.create_note(workspace_id, title, source, created_by, content_md=content_md)
        click.echo(to_json(note) if fmt == "json" else format_note_compact(note))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@notes.command("ls")
@click.option("--workspace", "-w", "workspace_id", required=True)
@FORMAT_OPTION
@click.pass_context
def notes_ls(ctx, workspace_id, fmt):
    """List notes in a workspace, newest first."""
    store = _get_store(ctx.obj["settings"])
    try:
        found = store.list_notes(workspace_id)
    finally:
        store.close()
    click.echo(to_json(found) if fmt == "json" else format_notes_compact(found))


@cli.group()
def tasks():
    """Manage tasks."""


@tasks.command("add")
@click.argument("title")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--assignee", "assignee_id", required=True, help="Assignee user ID")
@click.option("--description", "-d", default=None)
@click.option("--priority", default="med", type=click.Choice([p.value for p in TaskPriority]))
@click.option("--due", "due_at", default=None, help="Due date (ISO 8601)")
@click.option("--note", "linked_note_id", default=None, help="Linked note ID")
@FORMAT_OPTION
@click.pass_context
def tasks_add(ctx, title, workspace_id, assignee_id, description, priority, due_at,
              linked_note_id, fmt):
    """Create a task directly, without an agent proposal."""
    store = _get_store(ctx.obj["settings"])
    try:
        task = store.create_task(
            workspace_id, title, assignee_id, description=description,
            priority=priority, due_at=due_at, linked_note_id=linked_note_id,
        )
        click.echo(to_json(task) if fmt == "json" else format_task_compact(task))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@tasks.command("ls")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--status", default=None, type=click.Choice([s.value for s in TaskStatus]))
@FORMAT_OPTION
@click.pass_context
def tasks_ls(ctx, workspace_id, status, fmt):
    """List tasks in a workspace."""
    store = _get_store(ctx.obj["settings"])
    try:
        found = store.list_tasks(workspace_id, status)
    finally:
        store.close()
    click.echo(to_json(found) if fmt == "json" else format_tasks_compact(found))


# --- Agent events ---

@cli.group()
def events():
    """Stage, review, and confirm agent proposals."""


@events.command("propose")
@click.option("--agent", "-a", default=None,
              help="Proposing agent name (default: $SILENTTRAY_AGENT_ID or cli)")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--input", "-i", "input_raw", required=True, help="Action input as a JSON object")
@FORMAT_OPTION
@click.pass_context
def events_propose(ctx, agent, workspace_id, input_raw, fmt):
    """Stage a draft proposal. The action is derived from the agent name."""
    agent = agent or ctx.obj["settings"].agent_id
    payload = _parse_json_object(input_raw, "--input")
    store = _get_store(ctx.obj["settings"])
    try:
        event = _machine(store).propose(agent, payload, workspace_id)
        click.echo(to_json(event) if fmt == "json" else format_agent_event_compact(event))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@events.command("create")
@click.option("--agent", "-a", required=True)
@click.option("--action", required=True, help="Canonical action name")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--input", "-i", "input_raw", default=None, help="Action input as a JSON object")
@click.option("--status", default="draft", type=click.Choice(EVENT_STATUSES))
@FORMAT_OPTION
@click.pass_context
def events_create(ctx, agent, action, workspace_id, input_raw, status, fmt):
    """Create an agent event with an explicit action."""
    payload = _parse_json_object(input_raw, "--input")
    store = _get_store(ctx.obj["settings"])
    try:
        event = _machine(store).create_draft(workspace_id, agent, action,
                                             input=payload, status=status)
        click.echo(to_json(event) if fmt == "json" else format_agent_event_compact(event))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@events.command("patch")
@click.argument("event_id")
@click.option("--status", default=None, type=click.Choice(EVENT_STATUSES))
@click.option("--output", "output_raw", default=None, help="Replacement output as a JSON object")
@click.option("--clear-output", is_flag=True, help="Set output to null")
@FORMAT_OPTION
@click.pass_context
def events_patch(ctx, event_id, status, output_raw, clear_output, fmt):
    """Overwrite an event's status and/or output (e.g. submit a draft for approval)."""
    changes = {}
    if status is not None:
        changes["status"] = status
    if clear_output:
        changes["output"] = None
    elif output_raw is not None:
        changes["output"] = _parse_json_object(output_raw, "--output")

    store = _get_store(ctx.obj["settings"])
    try:
        event = _machine(store).patch(event_id, **changes)
        click.echo(to_json(event) if fmt == "json" else format_agent_event_compact(event))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@events.command("confirm")
@click.argument("event_id")
@FORMAT_OPTION
@click.pass_context
def events_confirm(ctx, event_id, fmt):
    """Execute an event that is awaiting confirmation."""
    store = _get_store(ctx.obj["settings"])
    try:
        event = _machine(store).confirm(event_id)
        click.echo(to_json(event) if fmt == "json" else format_agent_event_compact(event))
    except SilentTrayError as e:
        _fail(e)
    finally:
        store.close()


@events.command("ls")
@click.option("--workspace", "-w", "workspace_id", required=True)
@click.option("--status", default=None, type=click.Choice(EVENT_STATUSES))
@FORMAT_OPTION
@click.pass_context
def events_ls(ctx, workspace_id, status, fmt):
    """List agent events for a workspace, newest first."""
    store = _get_store(ctx.obj["settings"])
    try:
        found = _machine(store).list(workspace_id, status)
    finally:
        store.close()
    click.echo(to_json(found) if fmt == "json" else format_agent_events_compact(found))
