"""Configuration loading and the typed settings view used across the runtime."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG_NAME = "agentgate.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "models": {
        "model": "gpt-4o-mini",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "timeout": 60,
        "temperature": 0.2,
        "max_tokens": 4000,
    },
    "generation": {
        "max_repairs": 2,
        "prompt_char_budget": 24_000,
    },
    "context": {
        "max_records": 30,
        "limits": {
            "projects": 10,
            "tasks": 20,
            "notifications": 10,
            "events": 30,
            "notes": 20,
        },
    },
    "drafts": {
        "ttl_minutes": 30,
        "retention_hours": 72,
    },
    "ledger": {
        "ttl_hours": 24,
    },
    "identity": {
        "user_id": "",
    },
    "paths": {
        "data": "data",
        "db_path": "data/agentgate.sqlite",
        "logs": "data/logs",
        "workspace": "data/workspace.json",
        "config": DEFAULT_CONFIG_NAME,
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read or has the wrong shape."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _deep_merge(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def load_config(config_path: Path | str) -> Dict[str, Any]:
    """Load YAML configuration and merge it over the default template."""
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.")

    merged = _deep_merge(copy_config_template(), data)
    paths = merged.setdefault("paths", {})
    base_dir = path.parent
    for key in ("data", "db_path", "logs", "workspace"):
        value = paths.get(key)
        if isinstance(value, str) and value.strip():
            candidate = Path(value.strip())
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            paths[key] = candidate.as_posix()
    return merged


def write_config(config_path: Path | str, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


@dataclass(slots=True)
class AgentSettings:
    """Typed view over the tunables the protocol components read."""

    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1/chat/completions"
    timeout: float = 60.0
    temperature: float = 0.2
    max_tokens: int = 4000
    max_repairs: int = 2
    prompt_char_budget: int = 24_000
    max_context_records: int = 30
    draft_ttl_minutes: int = 30
    draft_retention_hours: int = 72
    ledger_ttl_hours: int = 24
    user_id: Optional[str] = None
    db_path: Path = Path("data/agentgate.sqlite")
    logs_root: Optional[Path] = None
    workspace_path: Path = Path("data/workspace.json")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AgentSettings":
        """Build settings from a (possibly partial) configuration mapping."""
        models = _section(config, "models")
        generation = _section(config, "generation")
        context = _section(config, "context")
        drafts = _section(config, "drafts")
        ledger = _section(config, "ledger")
        identity = _section(config, "identity")
        paths = _section(config, "paths")
        defaults = cls()

        temperature = models.get("temperature", defaults.temperature)
        try:
            temperature = float(temperature)
        except (TypeError, ValueError):
            temperature = defaults.temperature

        user_id = identity.get("user_id")
        user_id = str(user_id).strip() if user_id not in (None, "") else None

        logs_value = paths.get("logs")
        logs_root = Path(logs_value) if isinstance(logs_value, str) and logs_value.strip() else None

        return cls(
            model=str(models.get("model") or defaults.model),
            base_url=str(models.get("base_url") or defaults.base_url),
            timeout=_positive_float(models.get("timeout"), defaults.timeout),
            temperature=temperature,
            max_tokens=_positive_int(models.get("max_tokens"), defaults.max_tokens),
            max_repairs=_non_negative_int(generation.get("max_repairs"), defaults.max_repairs),
            prompt_char_budget=_positive_int(
                generation.get("prompt_char_budget"), defaults.prompt_char_budget
            ),
            max_context_records=_positive_int(context.get("max_records"), defaults.max_context_records),
            draft_ttl_minutes=_positive_int(drafts.get("ttl_minutes"), defaults.draft_ttl_minutes),
            draft_retention_hours=_positive_int(
                drafts.get("retention_hours"), defaults.draft_retention_hours
            ),
            ledger_ttl_hours=_positive_int(ledger.get("ttl_hours"), defaults.ledger_ttl_hours),
            user_id=user_id or None,
            db_path=Path(str(paths.get("db_path") or defaults.db_path)),
            logs_root=logs_root,
            workspace_path=Path(str(paths.get("workspace") or defaults.workspace_path)),
        )

    @staticmethod
    def context_limits(config: Mapping[str, Any]) -> Dict[str, int]:
        """Return per-collection context limits, falling back to template defaults."""
        defaults = DEFAULT_CONFIG_TEMPLATE["context"]["limits"]
        raw = _section(_section(config, "context"), "limits")
        return {key: _positive_int(raw.get(key), default) for key, default in defaults.items()}


__all__ = [
    "AgentSettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "copy_config_template",
    "load_config",
    "write_config",
]
