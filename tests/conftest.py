from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from agentgate.agents import get_profile  # noqa: E402
from agentgate.config import AgentSettings  # noqa: E402
from agentgate.context_builder import ContextBuilder  # noqa: E402
from agentgate.identity import StaticIdentity  # noqa: E402
from agentgate.models.completion import CompletionClient  # noqa: E402
from agentgate.prompts import ComposedPrompt, PromptComposer  # noqa: E402
from agentgate.protocol.authorization import PlanAuthorizer  # noqa: E402
from agentgate.protocol.stager import PlanStager  # noqa: E402
from agentgate.service import AgentService  # noqa: E402
from agentgate.staging.schema import Draft  # noqa: E402
from agentgate.staging.store import DraftStore  # noqa: E402
from agentgate.workspace.memory import InMemoryWorkspace  # noqa: E402
from agentgate.workspace.schema import (  # noqa: E402
    Event,
    EventComment,
    Notification,
    Project,
    Scope,
    StickyNote,
    Task,
)

USER = "alice"
OTHER_USER = "bob"
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Deterministic clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedClient(CompletionClient):
    """Completion backend that replays canned responses in order."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None) -> None:
        super().__init__(model="scripted-model", max_attempts=1, retry_delay=0.0)
        self.responses: List[Union[str, Exception]] = list(responses or [])
        self.payloads: List[Dict[str, Any]] = []

    def queue(self, *responses: Union[str, Exception]) -> None:
        self.responses.extend(responses)

    def user_prompts(self) -> List[str]:
        return [payload["messages"][-1]["content"] for payload in self.payloads]

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def build_workspace(*, supports_transactions: bool = True) -> InMemoryWorkspace:
    """Two users, three events (7 and 9 owned by alice), one shared project and a few notes."""
    created = START - timedelta(days=10)
    return InMemoryWorkspace(
        supports_transactions=supports_transactions,
        projects=[
            Project(
                id=3,
                title="Spring launch",
                created_by_id=USER,
                collaborator_ids=[OTHER_USER],
                created_at=created,
                updated_at=created,
            ),
            Project(id=4, title="Private roadmap", created_by_id="carol", created_at=created, updated_at=created),
        ],
        tasks=[
            Task(id=31, project_id=3, title="Draft press release", created_at=created, updated_at=created),
            Task(
                id=32,
                project_id=3,
                title="Book venue",
                status="in_progress",
                priority="high",
                assigned_to_id=OTHER_USER,
                created_at=created + timedelta(hours=1),
                updated_at=created + timedelta(hours=1),
            ),
            Task(id=41, project_id=4, title="Secret task", created_at=created, updated_at=created),
        ],
        notifications=[
            Notification(id=1, user_id=USER, title="Welcome", message="Hello", created_at=created),
            Notification(id=2, user_id=OTHER_USER, title="Not yours", created_at=created),
        ],
        events=[
            Event(
                id=7,
                title="Friday meetup",
                description="Weekly meetup in the park",
                event_date=datetime(2026, 3, 6, 18, 0, tzinfo=timezone.utc),
                region="sofia",
                created_by_id=USER,
                comments=[
                    EventComment(id=70, event_id=7, author_id=OTHER_USER, text="See you there", created_at=created),
                ],
                created_at=created,
                updated_at=created,
            ),
            Event(
                id=9,
                title="Rescheduled meetup",
                description="The meetup, one week later",
                event_date=datetime(2026, 3, 13, 18, 0, tzinfo=timezone.utc),
                region="sofia",
                enable_rsvp=True,
                created_by_id=USER,
                created_at=created + timedelta(hours=1),
                updated_at=created + timedelta(hours=1),
            ),
            Event(
                id=12,
                title="Bob's workshop",
                description="Hands-on pottery",
                event_date=datetime(2026, 3, 20, 10, 0, tzinfo=timezone.utc),
                region="varna",
                enable_rsvp=True,
                created_by_id=OTHER_USER,
                comments=[
                    EventComment(id=120, event_id=12, author_id=USER, text="Count me in", created_at=created),
                    EventComment(id=121, event_id=12, author_id="carol", text="Me too", created_at=created),
                ],
                created_at=created + timedelta(hours=2),
                updated_at=created + timedelta(hours=2),
            ),
        ],
        notes=[
            StickyNote(id=51, content="Groceries: eggs, milk", created_by_id=USER, created_at=created),
            StickyNote(
                id=52,
                content="Locker code is 4821",
                created_by_id=USER,
                is_locked=True,
                created_at=created + timedelta(hours=1),
            ),
            StickyNote(
                id=53,
                content="Venue shortlist: park, library",
                created_by_id=USER,
                share_status="shared_read",
                created_at=created + timedelta(hours=2),
            ),
            StickyNote(id=61, content="Bob's private note", created_by_id=OTHER_USER, created_at=created),
        ],
    )


def events_plan(**overrides: Any) -> Dict[str, Any]:
    """The 'cancel Friday, invite to the rescheduled one' plan, adjustable per test."""
    plan: Dict[str, Any] = {
        "agentId": "events_publisher",
        "summary": "Cancel the Friday meetup and invite people to the rescheduled one.",
        "deletes": [{"eventId": 7, "reason": "The user cancelled Friday's meetup.", "dangerous": True}],
        "comments": {
            "add": [{"eventId": 9, "text": "Friday is cancelled; join us here next week instead!"}],
            "remove": [],
        },
    }
    plan.update(overrides)
    return plan


def task_plan(**overrides: Any) -> Dict[str, Any]:
    plan: Dict[str, Any] = {
        "agentId": "task_planner",
        "summary": "Break the launch into tasks.",
        "creates": [
            {
                "title": "Write launch blog post",
                "priority": "high",
                "assignedToId": OTHER_USER,
                "clientRequestId": "launch-blog-post",
            }
        ],
        "statusChanges": [{"taskId": 31, "status": "completed"}],
    }
    plan.update(overrides)
    return plan


def notes_plan(**overrides: Any) -> Dict[str, Any]:
    plan: Dict[str, Any] = {
        "agentId": "notes_vault",
        "summary": "Tidy up the grocery note and drop the old shortlist.",
        "updates": [
            {"noteId": 51, "nextContent": "Groceries: eggs, milk, bread", "requiresUnlocked": False}
        ],
        "deletes": [{"noteId": 53, "reason": "The user picked the park.", "dangerous": True}],
    }
    plan.update(overrides)
    return plan


def as_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def workspace() -> InMemoryWorkspace:
    return build_workspace()


@pytest.fixture()
def store(tmp_path: Path):
    draft_store = DraftStore(tmp_path / "agentgate.sqlite")
    try:
        yield draft_store
    finally:
        draft_store.close()


@pytest.fixture()
def client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture()
def compose_prompt(workspace: InMemoryWorkspace, clock: FrozenClock) -> Callable[..., ComposedPrompt]:
    """Build the prompt a given agent would send for ``USER``."""

    def _compose(
        agent_id: str = "events_publisher",
        *,
        scope: Optional[Scope] = None,
        message: str = "cancel my Friday event and add a comment inviting people to the rescheduled one",
        char_budget: Optional[int] = None,
    ) -> ComposedPrompt:
        profile = get_profile(agent_id)
        snapshot = ContextBuilder(workspace, clock=clock).build(
            USER, scope or Scope(), collections=profile.collections
        )
        return PromptComposer(char_budget=char_budget).compose(
            snapshot,
            agent_title=profile.title,
            domain_rules=profile.domain_rules,
            output_schema=profile.output_schema_text(),
            message=message,
        )

    return _compose


@pytest.fixture()
def stage_plan(
    store: DraftStore,
    clock: FrozenClock,
    compose_prompt: Callable[..., ComposedPrompt],
) -> Callable[..., Draft]:
    """Validate ``payload`` against the user's context and stage it as a proposed draft."""

    def _stage(
        payload: Dict[str, Any],
        *,
        user_id: str = USER,
        scope: Optional[Scope] = None,
        ttl: timedelta = timedelta(minutes=30),
    ) -> Draft:
        agent_id = payload["agentId"]
        prompt = compose_prompt(agent_id, scope=scope)
        plan = get_profile(agent_id).validator().validate(as_json(payload), prompt.visible)
        stager = PlanStager(store, ttl=ttl, clock=clock)
        return stager.stage(user_id, agent_id, plan, scope=scope, message="test request")

    return _stage


@pytest.fixture()
def authorizer(workspace: InMemoryWorkspace) -> PlanAuthorizer:
    return PlanAuthorizer(workspace)


@pytest.fixture()
def service(
    workspace: InMemoryWorkspace,
    client: ScriptedClient,
    store: DraftStore,
    clock: FrozenClock,
    tmp_path: Path,
) -> AgentService:
    settings = AgentSettings(logs_root=tmp_path / "logs")
    return AgentService.build(
        identity=StaticIdentity(USER),
        workspace=workspace,
        client=client,
        store=store,
        settings=settings,
        clock=clock,
    )

