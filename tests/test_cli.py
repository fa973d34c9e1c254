from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

import agentgate.cli as cli
from agentgate.cli import app
from agentgate.workspace.memory import InMemoryWorkspace
from conftest import USER, ScriptedClient, as_json, build_workspace, events_plan

runner = CliRunner()


@pytest.fixture()
def config_path(tmp_path):
    path = tmp_path / "agentgate.yaml"
    result = runner.invoke(app, ["init", "--config", str(path), "--user", USER], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    build_workspace().save(tmp_path / "data" / "workspace.json")
    return path


@pytest.fixture()
def scripted(monkeypatch) -> ScriptedClient:
    client = ScriptedClient()
    monkeypatch.setattr(cli, "_build_client", lambda settings: client)
    return client


def _invoke(*args: str):
    return runner.invoke(app, list(args), catch_exceptions=False)


def _draft(config_path, scripted) -> dict:
    scripted.queue(as_json(events_plan()))
    result = _invoke("draft", "cancel my Friday meetup", "--config", str(config_path))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_init_writes_config_and_database(tmp_path) -> None:
    path = tmp_path / "agentgate.yaml"

    result = _invoke("init", "--config", str(path), "--user", USER)

    assert result.exit_code == 0, result.output
    assert "Wrote configuration to" in result.output
    assert "Draft database ready at" in result.output
    assert (tmp_path / "data" / "agentgate.sqlite").exists()
    assert f"user_id: {USER}" in path.read_text(encoding="utf-8")


def test_init_refuses_to_overwrite_without_force(config_path) -> None:
    result = _invoke("init", "--config", str(config_path))
    assert result.exit_code == 1
    assert "already exists" in result.output

    forced = _invoke("init", "--config", str(config_path), "--force")
    assert forced.exit_code == 0, forced.output


def test_agents_lists_registered_agents() -> None:
    result = _invoke("agents")

    assert result.exit_code == 0
    assert result.output.split() == ["events_publisher", "notes_vault", "task_planner"]


def test_draft_confirm_apply_round(config_path, scripted, tmp_path) -> None:
    drafted = _draft(config_path, scripted)
    assert drafted["type"] == "draft"
    draft_id = drafted["draftId"]

    confirmed = _invoke("confirm", draft_id, "--config", str(config_path))
    assert confirmed.exit_code == 0, confirmed.output
    token = json.loads(confirmed.stdout)["confirmationToken"]

    applied = _invoke("apply", draft_id, token, "--config", str(config_path))
    assert applied.exit_code == 0, applied.output
    assert json.loads(applied.stdout)["results"]["deletedEventIds"] == [7]

    saved = InMemoryWorkspace.load(tmp_path / "data" / "workspace.json")
    assert saved.get_event(USER, 7) is None

    replay = _invoke("apply", draft_id, token, "--config", str(config_path))
    assert replay.exit_code == 1
    assert "TokenAlreadyUsed" in replay.output


def test_show_and_list_drafts(config_path, scripted) -> None:
    draft_id = _draft(config_path, scripted)["draftId"]

    shown = _invoke("show", draft_id, "--config", str(config_path))
    assert shown.exit_code == 0, shown.output
    assert json.loads(shown.stdout)["status"] == "proposed"

    listed = _invoke("drafts", "--config", str(config_path))
    assert f"- {draft_id} [proposed] events_publisher: cancel my Friday meetup" in listed.output


def test_reject_then_list_open_drafts(config_path, scripted) -> None:
    draft_id = _draft(config_path, scripted)["draftId"]

    rejected = _invoke("reject", draft_id, "--config", str(config_path))
    assert rejected.exit_code == 0, rejected.output
    assert json.loads(rejected.stdout)["status"] == "rejected"

    listed = _invoke("drafts", "--open", "--config", str(config_path))
    assert "No drafts." in listed.output


def test_other_users_cannot_see_a_draft(config_path, scripted) -> None:
    draft_id = _draft(config_path, scripted)["draftId"]

    result = _invoke("confirm", draft_id, "--user", "bob", "--config", str(config_path))

    assert result.exit_code == 1
    assert "DraftNotFound" in result.output


def test_blank_message_is_a_bad_request(config_path, scripted) -> None:
    result = _invoke("draft", "   ", "--config", str(config_path))

    assert result.exit_code == 1
    assert "BadRequest" in result.output
    assert scripted.payloads == []


def test_sweep_reports_counts(config_path) -> None:
    result = _invoke("sweep", "--config", str(config_path))

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"deleted": 0, "evicted": 0, "expired": 0}


def test_missing_config_exits_with_error(tmp_path) -> None:
    result = _invoke("drafts", "--config", str(tmp_path / "missing.yaml"))

    assert result.exit_code == 1
    assert "Config file not found" in result.output
