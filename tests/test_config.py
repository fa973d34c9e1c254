from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from agentgate.config import (
    DEFAULT_CONFIG_TEMPLATE,
    AgentSettings,
    ConfigError,
    copy_config_template,
    load_config,
    write_config,
)


def test_load_config_merges_over_the_template(tmp_path) -> None:
    config_path = tmp_path / "agentgate.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            models:
              model: gpt-4.1-mini
            drafts:
              ttl_minutes: 10
            identity:
              user_id: alice
            """
        ),
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config["models"]["model"] == "gpt-4.1-mini"
    assert config["models"]["temperature"] == DEFAULT_CONFIG_TEMPLATE["models"]["temperature"]
    assert config["drafts"] == {"ttl_minutes": 10, "retention_hours": 72}
    assert config["paths"]["db_path"] == (tmp_path / "data/agentgate.sqlite").as_posix()
    assert config["paths"]["workspace"] == (tmp_path / "data/workspace.json").as_posix()


def test_absolute_paths_are_kept(tmp_path) -> None:
    db_path = (tmp_path / "elsewhere" / "drafts.sqlite").as_posix()
    config_path = tmp_path / "agentgate.yaml"
    write_config(config_path, {"paths": {"db_path": db_path}})

    assert load_config(config_path)["paths"]["db_path"] == db_path


def test_template_copies_are_independent() -> None:
    first = copy_config_template()
    first["models"]["model"] = "changed"

    assert copy_config_template()["models"]["model"] == "gpt-4o-mini"


def test_missing_config_raises(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


@pytest.mark.parametrize("body", ["models: [unclosed", "- just\n- a list\n"])
def test_malformed_config_raises(tmp_path, body) -> None:
    config_path = tmp_path / "agentgate.yaml"
    config_path.write_text(body, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_empty_config_yields_the_defaults(tmp_path) -> None:
    config_path = tmp_path / "agentgate.yaml"
    config_path.write_text("", encoding="utf-8")

    settings = AgentSettings.from_config(load_config(config_path))

    assert settings.max_repairs == 2
    assert settings.draft_ttl_minutes == 30
    assert settings.user_id is None
    assert settings.logs_root == tmp_path / "data/logs"


def test_settings_read_every_section() -> None:
    settings = AgentSettings.from_config(
        {
            "models": {"model": "m", "timeout": 5, "temperature": "0.7", "max_tokens": 900},
            "generation": {"max_repairs": 0, "prompt_char_budget": 8000},
            "context": {"max_records": 12},
            "drafts": {"ttl_minutes": 5, "retention_hours": 24},
            "ledger": {"ttl_hours": 6},
            "identity": {"user_id": " alice "},
            "paths": {"db_path": "/tmp/x.sqlite", "workspace": "/tmp/ws.json"},
        }
    )

    assert settings.model == "m"
    assert settings.timeout == 5.0
    assert settings.temperature == 0.7
    assert settings.max_tokens == 900
    assert settings.max_repairs == 0
    assert settings.prompt_char_budget == 8000
    assert settings.max_context_records == 12
    assert settings.draft_ttl_minutes == 5
    assert settings.draft_retention_hours == 24
    assert settings.ledger_ttl_hours == 6
    assert settings.user_id == "alice"
    assert settings.db_path == Path("/tmp/x.sqlite")
    assert settings.workspace_path == Path("/tmp/ws.json")
    assert settings.logs_root is None


def test_bad_values_fall_back_to_defaults() -> None:
    settings = AgentSettings.from_config(
        {
            "models": {"timeout": -1, "temperature": "hot", "max_tokens": True},
            "generation": {"max_repairs": -3},
            "drafts": {"ttl_minutes": "soon"},
            "models_extra": "ignored",
            "ledger": "not a mapping",
        }
    )

    assert settings.timeout == 60.0
    assert settings.temperature == 0.2
    assert settings.max_tokens == 4000
    assert settings.max_repairs == 2
    assert settings.draft_ttl_minutes == 30
    assert settings.ledger_ttl_hours == 24


def test_context_limits_fill_missing_collections() -> None:
    limits = AgentSettings.context_limits({"context": {"limits": {"events": 5, "tasks": 0}}})

    assert limits == {"projects": 10, "tasks": 20, "notifications": 10, "events": 5, "notes": 20}
