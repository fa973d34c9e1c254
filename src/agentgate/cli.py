"""CLI commands for drafting, confirming and applying workspace changes."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .agents import available_agents
from .config import (
    DEFAULT_CONFIG_NAME,
    AgentSettings,
    ConfigError,
    copy_config_template,
    load_config,
    write_config,
)
from .errors import AgentError
from .identity import StaticIdentity
from .models.completion import CompletionClient
from .models.openai_chat import OpenAIChatClient
from .service import DEFAULT_AGENT, AgentService
from .staging.store import DraftStore
from .workspace.memory import InMemoryWorkspace
from .workspace.schema import Scope

APP_HELP = "Draft, confirm and apply agent-planned workspace changes."

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION_HELP = "Path to the agentgate configuration file."


def _load(config: str) -> Dict[str, Any]:
    try:
        return load_config(Path(config))
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _fail(error: AgentError) -> None:
    typer.echo(f"{error.kind}: {error.message}", err=True)
    if error.details:
        typer.echo(json.dumps(error.details, indent=2, sort_keys=True, default=str), err=True)
    raise typer.Exit(code=1) from error


def _build_client(settings: AgentSettings) -> CompletionClient:
    """Create the completion backend used by ``draft``."""
    try:
        return OpenAIChatClient.from_settings(settings)
    except ValueError as error:
        typer.echo(f"Failed to initialise completion client: {error}")
        typer.echo("Set AGENTGATE_API_KEY or OPENAI_API_KEY.")
        raise typer.Exit(code=1) from error


def _build_service(
    config_data: Dict[str, Any],
    *,
    user: Optional[str],
    workspace: InMemoryWorkspace,
    with_client: bool,
) -> AgentService:
    settings = AgentSettings.from_config(config_data)
    # Only ``draft`` reaches the backend; other commands never call the client.
    client = _build_client(settings) if with_client else CompletionClient(settings.model)
    return AgentService.from_config(
        config_data,
        workspace=workspace,
        client=client,
        identity=StaticIdentity(user or settings.user_id),
    )


def _open_workspace(config_data: Dict[str, Any]) -> InMemoryWorkspace:
    settings = AgentSettings.from_config(config_data)
    return InMemoryWorkspace.load(settings.workspace_path)


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User id recorded as the default identity."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file and create the draft database."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)

    config_data = copy_config_template()
    if user:
        config_data["identity"]["user_id"] = user
    write_config(config_path, config_data)
    typer.echo(f"Wrote configuration to {config_path}.")

    with DraftStore.from_config(load_config(config_path)) as store:
        typer.echo(f"Draft database ready at {store.db_path}.")


@app.command()
def agents() -> None:
    """List the registered agent ids."""
    for agent_id in sorted(available_agents()):
        typer.echo(agent_id)


@app.command()
def draft(
    message: str = typer.Argument(..., help="What you want the agent to do."),
    agent: str = typer.Option(DEFAULT_AGENT, "--agent", "-a", help="Agent id to plan with."),
    project: Optional[int] = typer.Option(None, "--project", "-p", help="Project id to scope the request to."),
    unlock: Optional[List[int]] = typer.Option(
        None, "--unlock", help="Id of a password-protected note already unlocked for this request."
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Generate a plan and stage it as a draft."""
    config_data = _load(config)
    workspace = _open_workspace(config_data)
    service = _build_service(config_data, user=user, workspace=workspace, with_client=True)
    try:
        result = service.draft(
            message, agent_id=agent, scope=Scope(project_id=project, unlocked_note_ids=unlock or None)
        )
    except AgentError as error:
        _fail(error)
    finally:
        service.close()
    _emit(result.to_dict())


@app.command()
def confirm(
    draft_id: str = typer.Argument(..., help="Draft id returned by 'draft'."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Approve a draft and print its single-use confirmation token."""
    config_data = _load(config)
    workspace = _open_workspace(config_data)
    service = _build_service(config_data, user=user, workspace=workspace, with_client=False)
    try:
        result = service.confirm(draft_id)
    except AgentError as error:
        _fail(error)
    finally:
        service.close()
    _emit(result.to_dict())


@app.command()
def apply(
    draft_id: str = typer.Argument(..., help="Draft id returned by 'draft'."),
    token: str = typer.Argument(..., help="Confirmation token returned by 'confirm'."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Execute a confirmed draft against the workspace."""
    config_data = _load(config)
    workspace = _open_workspace(config_data)
    service = _build_service(config_data, user=user, workspace=workspace, with_client=False)
    try:
        result = service.apply(draft_id, token)
    except AgentError as error:
        if error.kind == "PartialApplyError":
            workspace.save()
        _fail(error)
    finally:
        service.close()
    workspace.save()
    _emit(result.to_dict())


@app.command()
def reject(
    draft_id: str = typer.Argument(..., help="Draft id to discard."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Reject an open draft."""
    config_data = _load(config)
    service = _build_service(config_data, user=user, workspace=_open_workspace(config_data), with_client=False)
    try:
        result = service.reject(draft_id)
    except AgentError as error:
        _fail(error)
    finally:
        service.close()
    _emit(result)


@app.command()
def show(
    draft_id: str = typer.Argument(..., help="Draft id to display."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Print a stored draft."""
    config_data = _load(config)
    service = _build_service(config_data, user=user, workspace=_open_workspace(config_data), with_client=False)
    try:
        view = service.get_draft(draft_id)
    except AgentError as error:
        _fail(error)
    finally:
        service.close()
    _emit(view)


@app.command()
def drafts(
    open_only: bool = typer.Option(False, "--open", help="Only list proposed or confirmed drafts."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Act as this user id."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """List the current user's drafts, newest first."""
    config_data = _load(config)
    service = _build_service(config_data, user=user, workspace=_open_workspace(config_data), with_client=False)
    try:
        views = service.list_drafts(open_only=open_only)
    except AgentError as error:
        _fail(error)
    finally:
        service.close()
    if not views:
        typer.echo("No drafts.")
        return
    for view in views:
        typer.echo(f"- {view['draftId']} [{view['status']}] {view['agentId']}: {view['message']}")


@app.command()
def sweep(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Expire overdue drafts, delete old closed drafts and evict stale ledger keys."""
    config_data = _load(config)
    service = _build_service(config_data, user=None, workspace=_open_workspace(config_data), with_client=False)
    try:
        summary = service.sweep()
    finally:
        service.close()
    _emit(summary)


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    app()


if __name__ == "__main__":
    main()
