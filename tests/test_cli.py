"""Tests for the SilentTray CLI."""

import json

import pytest
from click.testing import CliRunner

from silenttray.cli import cli


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("SILENTTRAY_LOG_LEVEL", "CRITICAL")
    monkeypatch.delenv("SILENTTRAY_PROJECT_DIR", raising=False)
    return CliRunner()


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "cli-test"
    path.mkdir()
    return path


@pytest.fixture
def ready(runner, project):
    """Initialized project with one user and one workspace."""
    def run(*args):
        result = runner.invoke(cli, ["-p", str(project), *args])
        assert result.exit_code == 0, result.output
        return result.output.strip()

    run("init")
    user_id = run("users", "add", "ada@example.com", "--name", "Ada Lovelace")
    workspace_id = run("workspaces", "add", "Engine room", "--owner", user_id)
    return project, user_id, workspace_id


def _invoke(runner, project, *args):
    return runner.invoke(cli, ["-p", str(project), *args])


class TestInit:

    def test_init_creates_database(self, runner, project):
        result = _invoke(runner, project, "init")
        assert result.exit_code == 0
        assert (project / ".silenttray" / "silenttray.db").exists()
        assert "SilentTray initialized for 'cli-test'" in result.output

    def test_init_already_initialized(self, runner, project):
        _invoke(runner, project, "init")
        result = _invoke(runner, project, "init")
        assert "already initialized" in result.output

    def test_commands_require_init(self, runner, project):
        result = _invoke(runner, project, "status")
        assert result.exit_code == 1
        assert "not initialized" in result.output


class TestStatus:

    def test_status_json(self, runner, ready):
        project, _, _ = ready
        result = _invoke(runner, project, "status", "--format", "json")
        assert result.exit_code == 0
        info = json.loads(result.output)
        assert info["project_name"] == "cli-test"
        assert info["users"] == 1
        assert info["workspaces"] == 1
        assert info["agent_events"] == 0

    def test_status_compact(self, runner, ready):
        project, _, _ = ready
        result = _invoke(runner, project, "status")
        assert "Workspaces:   1" in result.output


class TestRecords:

    def test_workspaces_ls(self, runner, ready):
        project, user_id, workspace_id = ready
        result = _invoke(runner, project, "workspaces", "ls", "--owner", user_id)
        assert f"{workspace_id} Engine room" in result.output

    def test_workspace_for_missing_owner(self, runner, ready):
        project, _, _ = ready
        result = _invoke(runner, project, "workspaces", "add", "Ghost", "--owner", "usr-missing")
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_notes_add_and_ls(self, runner, ready):
        project, user_id, workspace_id = ready
        result = _invoke(runner, project, "notes", "add", "Kickoff",
                         "-w", workspace_id, "--by", user_id, "--source", "meeting")
        assert result.exit_code == 0
        assert "[meeting]" in result.output
        listed = _invoke(runner, project, "notes", "ls", "-w", workspace_id)
        assert "Kickoff" in listed.output

    def test_tasks_add_and_ls(self, runner, ready):
        project, user_id, workspace_id = ready
        result = _invoke(runner, project, "tasks", "add", "Oil the gears",
                         "-w", workspace_id, "--assignee", user_id, "--priority", "high")
        assert result.exit_code == 0
        assert "[todo] [high]" in result.output

        empty = _invoke(runner, project, "tasks", "ls", "-w", workspace_id, "--status", "done")
        assert "(no tasks)" in empty.output

    def test_task_for_missing_assignee(self, runner, ready):
        project, _, workspace_id = ready
        result = _invoke(runner, project, "tasks", "add", "Orphan",
                         "-w", workspace_id, "--assignee", "usr-missing")
        assert result.exit_code == 1
        assert "User with id usr-missing not found" in result.output


class TestEvents:

    def test_propose_patch_confirm(self, runner, ready):
        project, user_id, workspace_id = ready
        payload = json.dumps({"title": "Calibrate", "assignee_id": user_id})

        proposed = _invoke(runner, project, "events", "propose", "-a", "TaskAgent",
                           "-w", workspace_id, "-i", payload, "-f", "json")
        assert proposed.exit_code == 0, proposed.output
        event = json.loads(proposed.output)
        assert event["action"] == "create_task"
        assert event["status"] == "draft"
        assert event["output"] is None

        patched = _invoke(runner, project, "events", "patch", event["id"],
                          "--status", "awaiting_confirmation")
        assert patched.exit_code == 0
        assert "[awaiting_confirmation]" in patched.output

        confirmed = _invoke(runner, project, "events", "confirm", event["id"], "-f", "json")
        assert confirmed.exit_code == 0, confirmed.output
        done = json.loads(confirmed.output)
        assert done["status"] == "executed"
        assert done["output"]["message"] == "Task created successfully"

        tasks = _invoke(runner, project, "tasks", "ls", "-w", workspace_id)
        assert "Calibrate" in tasks.output
        assert "[todo] [med]" in tasks.output

    def test_propose_agent_defaults_to_setting(self, runner, ready, monkeypatch):
        project, user_id, workspace_id = ready
        monkeypatch.setenv("SILENTTRAY_AGENT_ID", "TaskAgent")
        payload = json.dumps({"title": "Calibrate", "assignee_id": user_id})
        result = _invoke(runner, project, "events", "propose",
                         "-w", workspace_id, "-i", payload, "-f", "json")
        assert result.exit_code == 0, result.output
        event = json.loads(result.output)
        assert event["agent"] == "TaskAgent"
        assert event["action"] == "create_task"

    def test_propose_without_agent_setting(self, runner, ready, monkeypatch):
        project, _, workspace_id = ready
        monkeypatch.delenv("SILENTTRAY_AGENT_ID", raising=False)
        result = _invoke(runner, project, "events", "propose",
                         "-w", workspace_id, "-i", "{}", "-f", "json")
        event = json.loads(result.output)
        assert event["agent"] == "cli"
        assert event["action"] == "propose_action"

    def test_confirm_draft_fails(self, runner, ready):
        project, user_id, workspace_id = ready
        proposed = _invoke(runner, project, "events", "propose", "-a", "TaskAgent",
                           "-w", workspace_id, "-i", "{}", "-f", "json")
        event_id = json.loads(proposed.output)["id"]
        result = _invoke(runner, project, "events", "confirm", event_id)
        assert result.exit_code == 1
        assert "not awaiting confirmation" in result.output

    def test_confirm_unsupported_records_error(self, runner, ready):
        project, _, workspace_id = ready
        created = _invoke(runner, project, "events", "create", "-a", "UnknownAgent",
                          "--action", "unknown_action", "-w", workspace_id,
                          "-i", '{"x": 1}', "--status", "awaiting_confirmation", "-f", "json")
        event_id = json.loads(created.output)["id"]

        result = _invoke(runner, project, "events", "confirm", event_id)
        assert result.exit_code == 1
        assert "Unsupported agent action: UnknownAgent/unknown_action" in result.output

        listed = _invoke(runner, project, "events", "ls", "-w", workspace_id,
                         "--status", "error", "-f", "json")
        events = json.loads(listed.output)
        assert [e["id"] for e in events] == [event_id]

    def test_patch_output_and_clear(self, runner, ready):
        project, _, workspace_id = ready
        created = _invoke(runner, project, "events", "create", "-a", "TaskAgent",
                          "--action", "create_task", "-w", workspace_id, "-f", "json")
        event_id = json.loads(created.output)["id"]

        with_output = _invoke(runner, project, "events", "patch", event_id,
                              "--output", '{"note": "checked"}', "-f", "json")
        assert json.loads(with_output.output)["output"] == {"note": "checked"}

        cleared = _invoke(runner, project, "events", "patch", event_id,
                          "--clear-output", "-f", "json")
        assert json.loads(cleared.output)["output"] is None

    def test_patch_missing_event(self, runner, ready):
        project, _, _ = ready
        result = _invoke(runner, project, "events", "patch", "aev-missing",
                         "--status", "awaiting_confirmation")
        assert result.exit_code == 1
        assert "Agent event with id aev-missing not found" in result.output

    def test_invalid_json_input(self, runner, ready):
        project, _, workspace_id = ready
        result = _invoke(runner, project, "events", "propose", "-a", "TaskAgent",
                         "-w", workspace_id, "-i", "{not json")
        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_ls_empty(self, runner, ready):
        project, _, workspace_id = ready
        result = _invoke(runner, project, "events", "ls", "-w", workspace_id)
        assert "(no agent events)" in result.output
