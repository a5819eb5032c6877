"""EntityStore — SQLite persistence for workspaces, notes, tasks, reminders, and agent events."""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import pydantic
from pydantic import EmailStr, TypeAdapter

from silenttray.errors import ForeignKeyError, NotFoundError, ValidationError
from silenttray.models import (
    AgentEvent, AgentEventStatus, Note, NoteSource, Reminder, ReminderMethod,
    ReminderStatus, Task, TaskPriority, TaskStatus, User, Workspace,
)

SCHEMA_VERSION = 2

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id            TEXT PRIMARY KEY,
    email         TEXT NOT NULL UNIQUE,
    display_name  TEXT NOT NULL,
    timezone      TEXT NOT NULL DEFAULT 'Australia/Adelaide',
    llm_provider  TEXT NOT NULL DEFAULT 'openai',
    llm_model     TEXT NOT NULL DEFAULT 'gpt-4.1',
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS workspaces (
    id          TEXT PRIMARY KEY,
    owner_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    settings    TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id               TEXT PRIMARY KEY,
    workspace_id     TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    title            TEXT NOT NULL,
    source           TEXT NOT NULL
                     CHECK(source IN ('manual','meeting','import')),
    content_md       TEXT,
    transcript_text  TEXT,
    summary_text     TEXT,
    entities         TEXT,
    created_by       TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    title           TEXT NOT NULL,
    description     TEXT,
    status          TEXT NOT NULL DEFAULT 'todo'
                    CHECK(status IN ('todo','doing','done')),
    priority        TEXT NOT NULL DEFAULT 'med'
                    CHECK(priority IN ('low','med','high')),
    due_at          TEXT,
    assignee_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    linked_note_id  TEXT REFERENCES notes(id) ON DELETE SET NULL,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    remind_at   TEXT NOT NULL,
    method      TEXT NOT NULL DEFAULT 'app_push'
                CHECK(method IN ('app_push','email','calendar')),
    status      TEXT NOT NULL DEFAULT 'scheduled'
                CHECK(status IN ('scheduled','sent','cancelled')),
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_events (
    id            TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    agent         TEXT NOT NULL,
    action        TEXT NOT NULL,
    input         TEXT,
    output        TEXT,
    status        TEXT NOT NULL DEFAULT 'draft'
                  CHECK(status IN ('draft','awaiting_confirmation','executed','error')),
    created_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_workspaces_owner    ON workspaces(owner_id);
CREATE INDEX IF NOT EXISTS idx_notes_workspace     ON notes(workspace_id);
CREATE INDEX IF NOT EXISTS idx_tasks_workspace     ON tasks(workspace_id, status);
CREATE INDEX IF NOT EXISTS idx_reminders_task      ON reminders(task_id);
CREATE INDEX IF NOT EXISTS idx_agent_events_ws     ON agent_events(workspace_id, status);
CREATE INDEX IF NOT EXISTS idx_agent_events_time   ON agent_events(created_at);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "users": ("id", "email", "display_name", "timezone", "llm_provider",
              "llm_model", "created_at"),
    "workspaces": ("id", "owner_id", "name", "settings", "created_at"),
    "notes": ("id", "workspace_id", "title", "source", "content_md",
              "transcript_text", "summary_text", "entities", "created_by",
              "created_at", "updated_at"),
    "tasks": ("id", "workspace_id", "title", "description", "status",
              "priority", "due_at", "assignee_id", "linked_note_id",
              "created_at", "updated_at"),
    "reminders": ("id", "task_id", "remind_at", "method", "status", "created_at"),
    "agent_events": ("id", "workspace_id", "agent", "action", "input",
                     "output", "status", "created_at"),
}

JSON_COLUMNS: dict[str, frozenset[str]] = {
    "workspaces": frozenset({"settings"}),
    "notes": frozenset({"entities"}),
    "agent_events": frozenset({"input", "output"}),
}

ID_PREFIXES = {
    "users": "usr",
    "workspaces": "ws",
    "notes": "note",
    "tasks": "task",
    "reminders": "rem",
    "agent_events": "aev",
}

NOTE_UPDATABLE = frozenset({"title", "content_md", "transcript_text",
                            "summary_text", "entities"})
TASK_UPDATABLE = frozenset({"title", "description", "status", "priority",
                            "due_at", "assignee_id", "linked_note_id"})
NOTE_NULLABLE = frozenset({"content_md", "transcript_text", "summary_text", "entities"})
TASK_NULLABLE = frozenset({"description", "due_at", "linked_note_id"})
AGENT_EVENT_PATCHABLE = frozenset({"status", "output"})

_EMAIL = TypeAdapter(EmailStr)


def to_iso(value: datetime | str | None) -> str | None:
    """Normalize a datetime or ISO string to an ISO-8601 UTC string."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class EntityStore:
    """SQLite-backed entity store with foreign-key enforcement."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._migrated = False
        self._tx_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
        if not self._migrated:
            self._migrate()
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def initialize(self) -> None:
        """Create tables and indexes, and stamp the schema version."""
        self.conn.executescript(SCHEMA_SQL)
        if self.get_meta("schema_version") is None:
            self.set_meta("schema_version", str(SCHEMA_VERSION))

    def _migrate(self) -> None:
        """Run schema migrations if needed."""
        self._migrated = True
        tables = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='meta'"
        ).fetchone()
        if not tables:
            return  # not initialized yet

        current = self.get_meta("schema_version")
        version = int(current) if current else 1

        if version < 2:
            # v1 databases predate the agent_events status/time indexes
            with self._conn:
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_agent_events_ws "
                    "ON agent_events(workspace_id, status)"
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_agent_events_time "
                    "ON agent_events(created_at)"
                )
            self.set_meta("schema_version", str(SCHEMA_VERSION))

    # --- transactions ---

    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """Run several writes as one unit under an immediate write lock.

        CRUD calls made inside the block do not commit on their own; the
        whole block commits on exit or rolls back if it raises.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            self._tx_depth = 0

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        if self._tx_depth:
            yield self.conn
        else:
            with self.conn:
                yield self.conn

    # --- generic row primitives ---

    @staticmethod
    def _generate_id(table: str) -> str:
        return f"{ID_PREFIXES[table]}-{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _check_columns(table: str, columns) -> None:
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")
        unknown = set(columns) - set(TABLE_COLUMNS[table])
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}")

    @staticmethod
    def _encode(table: str, row: dict[str, Any]) -> dict[str, Any]:
        json_cols = JSON_COLUMNS.get(table, frozenset())
        encoded = {}
        for key, value in row.items():
            if key in json_cols and value is not None:
                value = json.dumps(value)
            elif isinstance(value, Enum):
                value = value.value
            encoded[key] = value
        return encoded

    @staticmethod
    def _decode(table: str, row: sqlite3.Row) -> dict[str, Any]:
        json_cols = JSON_COLUMNS.get(table, frozenset())
        decoded = {}
        for key in row.keys():
            value = row[key]
            if key in json_cols and value is not None:
                value = json.loads(value)
            decoded[key] = value
        return decoded

    @staticmethod
    def _integrity_error(table: str, exc: sqlite3.IntegrityError) -> Exception:
        message = str(exc)
        if "FOREIGN KEY" in message:
            return ForeignKeyError(f"Referenced row does not exist ({table}): {message}")
        return ValidationError(f"Constraint violated on {table}: {message}")

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row. Generates id and timestamps if not set. Returns the stored row."""
        row = dict(row)
        self._check_columns(table, row)
        if not row.get("id"):
            row["id"] = self._generate_id(table)
        now = self._now_iso()
        for ts_col in ("created_at", "updated_at"):
            if ts_col in TABLE_COLUMNS[table] and not row.get(ts_col):
                row[ts_col] = now

        encoded = self._encode(table, row)
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        try:
            with self._writing() as conn:
                conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    tuple(encoded.values()),
                )
        except sqlite3.IntegrityError as e:
            raise self._integrity_error(table, e) from e
        return self.get_row(table, row["id"])

    def update(self, table: str, row_id: str, partial: dict[str, Any],
               where: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Update the given columns of one row.

        ``where`` adds equality conditions; the update only applies when they
        hold. Returns the updated row, or None if nothing matched.
        """
        self._check_columns(table, partial)
        if where:
            self._check_columns(table, where)
        if not partial:
            return self.get_row(table, row_id)

        encoded = self._encode(table, partial)
        assignments = ", ".join(f"{col} = ?" for col in encoded)
        params: list = list(encoded.values())
        conditions = ["id = ?"]
        params.append(row_id)
        for col, value in self._encode(table, where or {}).items():
            conditions.append(f"{col} = ?")
            params.append(value)

        try:
            with self._writing() as conn:
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE {' AND '.join(conditions)}",
                    params,
                )
        except sqlite3.IntegrityError as e:
            raise self._integrity_error(table, e) from e
        if cursor.rowcount == 0:
            return None
        return self.get_row(table, row_id)

    def select(self, table: str, filters: dict[str, Any] | None = None,
               order_by: str | None = None, descending: bool = False,
               limit: int | None = None) -> list[dict[str, Any]]:
        """Select rows matching all equality filters."""
        filters = filters or {}
        self._check_columns(table, filters)
        if order_by:
            self._check_columns(table, [order_by])

        conditions = []
        params: list = []
        for col, value in self._encode(table, filters).items():
            if value is None:
                conditions.append(f"{col} IS NULL")
            else:
                conditions.append(f"{col} = ?")
                params.append(value)

        where = " AND ".join(conditions) if conditions else "1=1"
        sql = f"SELECT * FROM {table} WHERE {where}"
        if order_by:
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order_by} {direction}, rowid {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self.conn.execute(sql, params).fetchall()
        return [self._decode(table, r) for r in rows]

    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        rows = self.select(table, {"id": row_id}, limit=1)
        return rows[0] if rows else None

    def count(self, table: str) -> int:
        self._check_columns(table, [])
        row = self.conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
        return row["cnt"]

    # --- users & workspaces ---

    @staticmethod
    def _to_user(row: dict[str, Any]) -> User:
        return User(**row)

    @staticmethod
    def _to_workspace(row: dict[str, Any]) -> Workspace:
        return Workspace(**row)

    def create_user(self, email: str, display_name: str,
                    timezone: str = "Australia/Adelaide",
                    llm_provider: str = "openai",
                    llm_model: str = "gpt-4.1") -> User:
        try:
            _EMAIL.validate_python(email)
        except pydantic.ValidationError:
            raise ValidationError(f"Invalid email address: {email!r}") from None
        row = self.insert("users", {
            "email": email, "display_name": display_name, "timezone": timezone,
            "llm_provider": llm_provider, "llm_model": llm_model,
        })
        return self._to_user(row)

    def get_user(self, user_id: str) -> User | None:
        row = self.get_row("users", user_id)
        return self._to_user(row) if row else None

    def create_workspace(self, owner_id: str, name: str,
                         settings: dict[str, Any] | None = None) -> Workspace:
        row = self.insert("workspaces", {
            "owner_id": owner_id, "name": name, "settings": settings,
        })
        return self._to_workspace(row)

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        row = self.get_row("workspaces", workspace_id)
        return self._to_workspace(row) if row else None

    def list_workspaces(self, owner_id: str) -> list[Workspace]:
        rows = self.select("workspaces", {"owner_id": owner_id}, order_by="created_at")
        return [self._to_workspace(r) for r in rows]

    # --- notes ---

    @staticmethod
    def _to_note(row: dict[str, Any]) -> Note:
        row["source"] = NoteSource(row["source"])
        return Note(**row)

    def create_note(self, workspace_id: str, title: str, source: NoteSource | str,
                    created_by: str, content_md: str | None = None,
                    transcript_text: str | None = None) -> Note:
        row = self.insert("notes", {
            "workspace_id": workspace_id,
            "title": title,
            "source": NoteSource(source),
            "content_md": content_md,
            "transcript_text": transcript_text,
            "created_by": created_by,
        })
        return self._to_note(row)

    def get_note(self, note_id: str) -> Note | None:
        row = self.get_row("notes", note_id)
        return self._to_note(row) if row else None

    def update_note(self, note_id: str, changes: dict[str, Any]) -> Note:
        """Apply only the given fields and refresh updated_at."""
        unknown = set(changes) - NOTE_UPDATABLE
        if unknown:
            raise ValidationError(f"Note fields cannot be updated: {', '.join(sorted(unknown))}")
        partial = dict(changes)
        partial["updated_at"] = self._now_iso()
        row = self.update("notes", note_id, partial)
        if row is None:
            raise NotFoundError(f"Note with id {note_id} not found")
        return self._to_note(row)

    def list_notes(self, workspace_id: str) -> list[Note]:
        rows = self.select("notes", {"workspace_id": workspace_id},
                           order_by="created_at", descending=True)
        return [self._to_note(r) for r in rows]

    # --- tasks ---

    @staticmethod
    def _to_task(row: dict[str, Any]) -> Task:
        row["status"] = TaskStatus(row["status"])
        row["priority"] = TaskPriority(row["priority"])
        return Task(**row)

    def create_task(self, workspace_id: str, title: str, assignee_id: str,
                    description: str | None = None,
                    priority: TaskPriority | str = TaskPriority.MED,
                    due_at: datetime | str | None = None,
                    linked_note_id: str | None = None) -> Task:
        """Insert a task in status 'todo' after checking what it references."""
        if self.get_row("workspaces", workspace_id) is None:
            raise ForeignKeyError(f"Workspace with id {workspace_id} not found")
        if self.get_row("users", assignee_id) is None:
            raise ForeignKeyError(f"User with id {assignee_id} not found")
        if linked_note_id:
            linked = self.select("notes", {"id": linked_note_id, "workspace_id": workspace_id})
            if not linked:
                raise ForeignKeyError(
                    f"Note with id {linked_note_id} not found in workspace {workspace_id}"
                )

        row = self.insert("tasks", {
            "workspace_id": workspace_id,
            "title": title,
            "description": description or None,
            "priority": TaskPriority(priority),
            "due_at": to_iso(due_at),
            "assignee_id": assignee_id,
            "linked_note_id": linked_note_id or None,
        })
        return self._to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        row = self.get_row("tasks", task_id)
        return self._to_task(row) if row else None

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        unknown = set(changes) - TASK_UPDATABLE
        if unknown:
            raise ValidationError(f"Task fields cannot be updated: {', '.join(sorted(unknown))}")
        partial = dict(changes)
        if "status" in partial:
            partial["status"] = TaskStatus(partial["status"])
        if "priority" in partial:
            partial["priority"] = TaskPriority(partial["priority"])
        if "due_at" in partial:
            partial["due_at"] = to_iso(partial["due_at"])
        partial["updated_at"] = self._now_iso()
        row = self.update("tasks", task_id, partial)
        if row is None:
            raise NotFoundError(f"Task with id {task_id} not found")
        return self._to_task(row)

    def list_tasks(self, workspace_id: str,
                   status: TaskStatus | str | None = None) -> list[Task]:
        filters: dict[str, Any] = {"workspace_id": workspace_id}
        if status is not None:
            filters["status"] = TaskStatus(status)
        rows = self.select("tasks", filters, order_by="created_at")
        return [self._to_task(r) for r in rows]

    # --- reminders ---

    @staticmethod
    def _to_reminder(row: dict[str, Any]) -> Reminder:
        row["method"] = ReminderMethod(row["method"])
        row["status"] = ReminderStatus(row["status"])
        return Reminder(**row)

    def create_reminder(self, task_id: str, remind_at: datetime | str,
                        method: ReminderMethod | str = ReminderMethod.APP_PUSH) -> Reminder:
        row = self.insert("reminders", {
            "task_id": task_id,
            "remind_at": to_iso(remind_at),
            "method": ReminderMethod(method),
        })
        return self._to_reminder(row)

    def list_reminders(self, task_id: str | None = None) -> list[Reminder]:
        filters = {"task_id": task_id} if task_id else None
        rows = self.select("reminders", filters, order_by="remind_at")
        return [self._to_reminder(r) for r in rows]

    # --- agent events ---

    @staticmethod
    def _to_agent_event(row: dict[str, Any]) -> AgentEvent:
        row["status"] = AgentEventStatus(row["status"])
        return AgentEvent(**row)

    def insert_agent_event(self, event: AgentEvent) -> AgentEvent:
        """Insert an agent event. Generates id/created_at if not set."""
        row = self.insert("agent_events", {
            "id": event.id,
            "workspace_id": event.workspace_id,
            "agent": event.agent,
            "action": event.action,
            "input": event.input,
            "output": event.output,
            "status": AgentEventStatus(event.status),
            "created_at": event.created_at,
        })
        return self._to_agent_event(row)

    def get_agent_event(self, event_id: str) -> AgentEvent | None:
        row = self.get_row("agent_events", event_id)
        return self._to_agent_event(row) if row else None

    def patch_agent_event(self, event_id: str, changes: dict[str, Any]) -> AgentEvent | None:
        """Overwrite status and/or output. Returns None if the event does not exist."""
        unknown = set(changes) - AGENT_EVENT_PATCHABLE
        if unknown:
            raise ValidationError(
                f"Agent event fields cannot be patched: {', '.join(sorted(unknown))}"
            )
        partial = dict(changes)
        if "status" in partial:
            partial["status"] = AgentEventStatus(partial["status"])
        row = self.update("agent_events", event_id, partial)
        return self._to_agent_event(row) if row else None

    def transition_agent_event(self, event_id: str, expected: AgentEventStatus,
                               status: AgentEventStatus,
                               output: dict[str, Any] | None = None) -> bool:
        """Set status/output only if the event is currently in ``expected``.

        Returns True if this call made the transition.
        """
        row = self.update(
            "agent_events", event_id,
            {"status": status, "output": output},
            where={"status": expected},
        )
        return row is not None

    def list_agent_events(self, workspace_id: str,
                          status: AgentEventStatus | str | None = None) -> list[AgentEvent]:
        """Events for a workspace, newest first."""
        filters: dict[str, Any] = {"workspace_id": workspace_id}
        if status is not None:
            filters["status"] = AgentEventStatus(status)
        rows = self.select("agent_events", filters, order_by="created_at", descending=True)
        return [self._to_agent_event(r) for r in rows]

    # --- meta ---

    def get_meta(self, key: str) -> str | None:
        """Read from meta table."""
        row = self.conn.execute(
            "SELECT value FROM meta WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        """Write to meta table (upsert)."""
        with self._writing() as conn:
            conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
