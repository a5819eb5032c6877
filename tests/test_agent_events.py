"""Tests for the agent event lifecycle: propose, patch, confirm, list."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from silenttray.agent_events import AgentEventMachine
from silenttray.errors import (
    ForeignKeyError, InvalidStateError, NotFoundError, UnsupportedActionError,
    ValidationError,
)
from silenttray.models import AgentEvent, AgentEventStatus, TaskPriority, TaskStatus
from silenttray.router import ActionRouter


class _Exploding:
    def __init__(self, store=None):
        self.store = store

    def execute(self, payload):
        if self.store is not None:
            self.store.create_task(payload["workspace_id"], "half-done", payload["assignee_id"])
        raise RuntimeError("kaboom")


class TestPropose:

    def test_task_agent_proposal(self, machine, seeded):
        event = machine.propose("TaskAgent", {"title": "T", "assignee_id": seeded.user.id},
                                seeded.workspace.id)
        assert event.id.startswith("aev-")
        assert event.action == "create_task"
        assert event.status is AgentEventStatus.DRAFT
        assert event.input == {"title": "T", "assignee_id": seeded.user.id}
        assert event.output is None

    def test_unknown_agent_uses_fallback(self, machine, seeded):
        event = machine.propose("MysteryAgent", {"anything": 1}, seeded.workspace.id)
        assert event.action == "propose_action"
        assert event.status is AgentEventStatus.DRAFT

    def test_unknown_workspace(self, machine):
        with pytest.raises(ForeignKeyError):
            machine.propose("TaskAgent", {"title": "T"}, "ws-missing")

    def test_proposal_executes_nothing(self, machine, seeded, store):
        machine.propose("TaskAgent", {"title": "T", "assignee_id": seeded.user.id},
                        seeded.workspace.id)
        assert store.count("tasks") == 0


class TestCreateDraft:

    def test_explicit_action_and_status(self, machine, seeded):
        event = machine.create_draft(seeded.workspace.id, "NoteAgent", "update_note",
                                     input={"note_id": seeded.note.id},
                                     status="awaiting_confirmation")
        assert event.action == "update_note"
        assert event.status is AgentEventStatus.AWAITING_CONFIRMATION

    def test_preset_output(self, machine, seeded):
        event = machine.create_draft(seeded.workspace.id, "TaskAgent", "create_task",
                                     output={"note": "manual"}, status="executed")
        assert event.output == {"note": "manual"}

    def test_unknown_workspace(self, machine):
        with pytest.raises(ForeignKeyError):
            machine.create_draft("ws-missing", "TaskAgent", "create_task")


class TestPatch:

    @pytest.fixture
    def draft(self, machine, seeded):
        return machine.propose("TaskAgent", {"title": "T"}, seeded.workspace.id)

    def test_status_only(self, machine, draft):
        updated = machine.patch(draft.id, status="awaiting_confirmation")
        assert updated.status is AgentEventStatus.AWAITING_CONFIRMATION
        assert updated.output is None
        assert updated.input == {"title": "T"}

    def test_output_only(self, machine, draft):
        updated = machine.patch(draft.id, output={"reviewed": True})
        assert updated.status is AgentEventStatus.DRAFT
        assert updated.output == {"reviewed": True}

    def test_both(self, machine, draft):
        updated = machine.patch(draft.id, status="error", output={"error": "rejected"})
        assert updated.status is AgentEventStatus.ERROR
        assert updated.output == {"error": "rejected"}

    def test_clear_output(self, machine, draft):
        machine.patch(draft.id, output={"reviewed": True})
        updated = machine.patch(draft.id, output=None)
        assert updated.output is None

    def test_none_status_is_ignored(self, machine, draft):
        updated = machine.patch(draft.id, status=None)
        assert updated.status is AgentEventStatus.DRAFT

    def test_no_transition_checks(self, machine, draft):
        machine.patch(draft.id, status="executed")
        updated = machine.patch(draft.id, status="draft")
        assert updated.status is AgentEventStatus.DRAFT

    def test_missing_event(self, machine):
        with pytest.raises(NotFoundError, match="Agent event with id aev-missing not found"):
            machine.patch("aev-missing", status="awaiting_confirmation")

    def test_invalid_status(self, machine, draft):
        with pytest.raises(ValueError):
            machine.patch(draft.id, status="approved")


class TestConfirm:

    def test_create_task_round_trip(self, machine, seeded, store):
        event = machine.propose("TaskAgent", {"title": "T", "assignee_id": seeded.user.id},
                                seeded.workspace.id)
        assert event.output is None
        awaiting = machine.patch(event.id, status="awaiting_confirmation")
        assert awaiting.output is None

        confirmed = machine.confirm(event.id)
        assert confirmed.status is AgentEventStatus.EXECUTED
        assert confirmed.output["message"] == "Task created successfully"
        task = store.get_task(confirmed.output["task_id"])
        assert task.title == "T"
        assert task.status is TaskStatus.TODO
        assert task.priority is TaskPriority.MED
        assert task.workspace_id == seeded.workspace.id
        # stored input is untouched by workspace threading
        assert confirmed.input == {"title": "T", "assignee_id": seeded.user.id}

    def test_update_note_round_trip(self, awaiting, machine, seeded, store):
        event = awaiting("NoteAgent", "update_note",
                         {"note_id": seeded.note.id, "summary_text": "Ship it."})
        confirmed = machine.confirm(event.id)
        assert confirmed.output == {"note_id": seeded.note.id,
                                    "message": "Note updated successfully"}
        assert store.get_note(seeded.note.id).summary_text == "Ship it."

    def test_invalid_payload_marks_error(self, awaiting, machine, store):
        event = awaiting("TaskAgent", "create_task", {"title": "T"})
        with pytest.raises(ValidationError):
            machine.confirm(event.id)
        after = machine.get(event.id)
        assert after.status is AgentEventStatus.ERROR
        assert "assignee_id" in after.output["error"]
        assert store.count("tasks") == 0

    def test_missing_note_marks_error(self, awaiting, machine):
        event = awaiting("NoteAgent", "update_note", {"note_id": "note-missing"})
        with pytest.raises(NotFoundError, match="Note not found: note-missing"):
            machine.confirm(event.id)
        after = machine.get(event.id)
        assert after.status is AgentEventStatus.ERROR
        assert after.output == {"error": "Note not found: note-missing"}

    def test_missing_input_marks_error(self, awaiting, machine):
        event = awaiting("TaskAgent", "create_task", None)
        with pytest.raises(ValidationError, match="No input data found for TaskAgent/create_task"):
            machine.confirm(event.id)
        assert machine.get(event.id).status is AgentEventStatus.ERROR

    def test_unsupported_pair(self, awaiting, machine):
        event = awaiting("UnknownAgent", "unknown_action", {"x": 1})
        with pytest.raises(UnsupportedActionError, match="Unsupported agent action"):
            machine.confirm(event.id)
        after = machine.get(event.id)
        assert after.status is AgentEventStatus.ERROR
        assert after.output["error"] == "Unsupported agent action: UnknownAgent/unknown_action"

    def test_known_agent_with_fallback_action_is_unsupported(self, machine, seeded):
        event = machine.propose("KnowledgeAgent", {"topic": "x"}, seeded.workspace.id)
        machine.patch(event.id, status="awaiting_confirmation")
        with pytest.raises(UnsupportedActionError):
            machine.confirm(event.id)
        assert machine.get(event.id).status is AgentEventStatus.ERROR

    def test_already_executed(self, awaiting, machine, seeded, store):
        event = awaiting("TaskAgent", "create_task",
                         {"title": "T", "assignee_id": seeded.user.id})
        first = machine.confirm(event.id)

        with pytest.raises(InvalidStateError, match="not awaiting confirmation"):
            machine.confirm(event.id)
        again = machine.get(event.id)
        assert again.status is AgentEventStatus.EXECUTED
        assert again.output == first.output
        assert store.count("tasks") == 1

    def test_error_is_terminal(self, awaiting, machine):
        event = awaiting("TaskAgent", "create_task", {"title": "T"})
        with pytest.raises(ValidationError):
            machine.confirm(event.id)
        failed = machine.get(event.id)

        with pytest.raises(InvalidStateError, match="Current status: error"):
            machine.confirm(event.id)
        assert machine.get(event.id).output == failed.output

    def test_draft_cannot_be_confirmed(self, machine, seeded):
        event = machine.propose("TaskAgent", {"title": "T", "assignee_id": seeded.user.id},
                                seeded.workspace.id)
        with pytest.raises(InvalidStateError, match="Current status: draft"):
            machine.confirm(event.id)
        assert machine.get(event.id).status is AgentEventStatus.DRAFT

    def test_missing_event(self, machine):
        with pytest.raises(NotFoundError, match="Agent event not found: aev-missing"):
            machine.confirm("aev-missing")

    def test_unexpected_exception_propagates_unchanged(self, store, seeded):
        router = ActionRouter(executors={("TaskAgent", "create_task"): _Exploding()})
        machine = AgentEventMachine(store, router)
        event = machine.create_draft(seeded.workspace.id, "TaskAgent", "create_task",
                                     input={"title": "T"}, status="awaiting_confirmation")
        with pytest.raises(RuntimeError, match="kaboom"):
            machine.confirm(event.id)
        after = machine.get(event.id)
        assert after.status is AgentEventStatus.ERROR
        assert after.output == {"error": "kaboom"}

    def test_failed_executor_writes_are_rolled_back(self, store, seeded):
        router = ActionRouter(executors={("TaskAgent", "create_task"): _Exploding(store)})
        machine = AgentEventMachine(store, router)
        event = machine.create_draft(seeded.workspace.id, "TaskAgent", "create_task",
                                     input={"assignee_id": seeded.user.id},
                                     status="awaiting_confirmation")
        with pytest.raises(RuntimeError):
            machine.confirm(event.id)
        assert store.count("tasks") == 0
        assert machine.get(event.id).status is AgentEventStatus.ERROR

    def test_error_write_failure_keeps_executor_error(self, awaiting, machine, store):
        event = awaiting("TaskAgent", "create_task", {"title": "T"})
        real = store.transition_agent_event

        def flaky(event_id, expected, status, output=None):
            if status is AgentEventStatus.ERROR:
                raise sqlite3.OperationalError("disk I/O error")
            return real(event_id, expected, status, output)

        with patch.object(store, "transition_agent_event", side_effect=flaky):
            with pytest.raises(ValidationError):
                machine.confirm(event.id)
        # the claim was rolled back and the error write never landed
        assert machine.get(event.id).status is AgentEventStatus.AWAITING_CONFIRMATION


class TestList:

    def test_newest_first_with_status_filter(self, machine, seeded, store):
        base = datetime(2026, 2, 23, 10, 0, tzinfo=timezone.utc)
        ids = []
        for i, status in enumerate(["draft", "awaiting_confirmation", "draft"]):
            ids.append(store.insert_agent_event(AgentEvent(
                id="", workspace_id=seeded.workspace.id, agent="TaskAgent",
                action="create_task", input={"n": i}, status=AgentEventStatus(status),
                created_at=(base + timedelta(minutes=i)).isoformat(),
            )).id)

        assert [e.id for e in machine.list(seeded.workspace.id)] == list(reversed(ids))
        drafts = machine.list(seeded.workspace.id, "draft")
        assert [e.id for e in drafts] == [ids[2], ids[0]]

    def test_scoped_to_workspace(self, machine, seeded, store):
        other = store.create_workspace(seeded.user.id, "Other")
        machine.propose("TaskAgent", {"title": "T"}, other.id)
        assert machine.list(seeded.workspace.id) == []
