"""Shared fixtures for SilentTray tests."""

from types import SimpleNamespace

import pytest

from silenttray.agent_events import AgentEventMachine
from silenttray.models import NoteSource
from silenttray.store import EntityStore


@pytest.fixture
def store(tmp_path):
    """Empty initialized entity store."""
    db_path = tmp_path / "silenttray.db"
    s = EntityStore(db_path)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def seeded(store):
    """A user owning one workspace that holds one meeting note."""
    user = store.create_user("ada@example.com", "Ada Lovelace")
    other = store.create_user("grace@example.com", "Grace Hopper")
    workspace = store.create_workspace(user.id, "Analytical Engine")
    note = store.create_note(
        workspace.id, "Weekly sync", NoteSource.MEETING, user.id,
        transcript_text="We decided to ship the beta. Grace Hopper raised a risk.",
    )
    return SimpleNamespace(user=user, other=other, workspace=workspace, note=note)


@pytest.fixture
def machine(store):
    return AgentEventMachine(store)


@pytest.fixture
def awaiting(machine, seeded):
    """Factory: stage an event and move it to awaiting_confirmation."""
    def _make(agent, action, input):
        event = machine.create_draft(seeded.workspace.id, agent, action, input=input)
        return machine.patch(event.id, status="awaiting_confirmation")
    return _make
