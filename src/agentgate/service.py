"""The three RPCs (draft, confirm, apply) plus draft housekeeping, wired together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .agents import get_profile
from .config import AgentSettings
from .context_builder import ContextBuilder
from .errors import BadRequest, GenerationFailed
from .fallback import AnswerResult, build_fallback_answer
from .generation import RepairLoop
from .identity import IdentityProvider, StaticIdentity, require_user
from .models.completion import CompletionClient, CompletionOptions
from .models.openai_chat import OpenAIChatClient
from .prompts import PromptComposer
from .protocol.apply import ApplyExecutor, ApplyResult
from .protocol.authorization import PlanAuthorizer
from .protocol.confirm import ConfirmationGate, ConfirmResult, load_owned_draft
from .protocol.stager import PlanStager
from .staging.schema import Draft, DraftStatus
from .staging.store import DraftStore
from .workspace.interfaces import WorkspaceReader, WorkspaceWriter
from .workspace.memory import InMemoryWorkspace
from .workspace.schema import Scope, utc_now

LOGGER = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 20_000
DEFAULT_AGENT = "events_publisher"


@dataclass(slots=True)
class DraftResult:
    """A staged draft as returned to the caller of ``draft``."""

    draft_id: str
    agent_id: str
    plan: Dict[str, Any]
    plan_hash: str
    expires_at: datetime
    truncated: bool = False

    @classmethod
    def from_draft(cls, draft: Draft, *, truncated: bool = False) -> "DraftResult":
        return cls(
            draft_id=draft.draft_id,
            agent_id=draft.agent_id,
            plan=draft.plan,
            plan_hash=draft.plan_hash,
            expires_at=draft.expires_at,
            truncated=truncated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "draft",
            "draftId": self.draft_id,
            "agentId": self.agent_id,
            "plan": {**self.plan, "planHash": self.plan_hash},
            "expiresAt": self.expires_at.isoformat(),
            "truncated": self.truncated,
        }


def draft_view(draft: Draft) -> Dict[str, Any]:
    """Caller-facing rendering of a stored draft."""
    return {
        "draftId": draft.draft_id,
        "agentId": draft.agent_id,
        "status": draft.status.value,
        "message": draft.message,
        "scope": draft.scope.model_dump(mode="json", by_alias=True, exclude_none=True),
        "plan": {**draft.plan, "planHash": draft.plan_hash},
        "createdAt": draft.created_at.isoformat(),
        "expiresAt": draft.expires_at.isoformat(),
        "confirmedAt": draft.confirmed_at.isoformat() if draft.confirmed_at else None,
        "appliedAt": draft.applied_at.isoformat() if draft.applied_at else None,
        "results": draft.results,
    }


class AgentService:
    """Request-scoped entry points; no call holds state between requests except the store."""

    def __init__(
        self,
        *,
        identity: IdentityProvider,
        context_builder: ContextBuilder,
        composer: PromptComposer,
        generator: RepairLoop,
        stager: PlanStager,
        gate: ConfirmationGate,
        executor: ApplyExecutor,
        store: DraftStore,
        retention: timedelta = timedelta(hours=72),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._identity = identity
        self._context_builder = context_builder
        self._composer = composer
        self._generator = generator
        self._stager = stager
        self._gate = gate
        self._executor = executor
        self._store = store
        self._retention = retention
        self._clock = clock

    @classmethod
    def build(
        cls,
        *,
        identity: IdentityProvider,
        workspace: Union[WorkspaceReader, WorkspaceWriter],
        client: CompletionClient,
        store: DraftStore,
        settings: Optional[AgentSettings] = None,
        limits: Optional[Mapping[str, int]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "AgentService":
        """Wire every component around one workspace object that is both reader and writer."""
        settings = settings or AgentSettings()
        authorizer = PlanAuthorizer(workspace)
        return cls(
            identity=identity,
            context_builder=ContextBuilder(
                workspace,
                max_records=settings.max_context_records,
                limits=limits,
                clock=clock,
            ),
            composer=PromptComposer(char_budget=settings.prompt_char_budget),
            generator=RepairLoop(
                client,
                max_repairs=settings.max_repairs,
                options=CompletionOptions(
                    temperature=settings.temperature,
                    max_tokens=settings.max_tokens,
                ),
                logs_root=settings.logs_root,
                clock=clock,
            ),
            stager=PlanStager(store, ttl=timedelta(minutes=settings.draft_ttl_minutes), clock=clock),
            gate=ConfirmationGate(store, authorizer, clock=clock),
            executor=ApplyExecutor(store, workspace, authorizer, clock=clock),
            store=store,
            retention=timedelta(hours=settings.draft_retention_hours),
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        workspace: Optional[InMemoryWorkspace] = None,
        client: Optional[CompletionClient] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> "AgentService":
        settings = AgentSettings.from_config(config)
        if workspace is None:
            workspace = InMemoryWorkspace.load(settings.workspace_path)
        if client is None:
            client = OpenAIChatClient.from_settings(settings)
        return cls.build(
            identity=identity or StaticIdentity(settings.user_id),
            workspace=workspace,
            client=client,
            store=DraftStore.from_config(config),
            settings=settings,
            limits=AgentSettings.context_limits(config),
        )

    @property
    def store(self) -> DraftStore:
        return self._store

    # RPCs ----------------------------------------------------------------------------
    def draft(
        self,
        message: str,
        *,
        agent_id: str = DEFAULT_AGENT,
        scope: Optional[Scope] = None,
    ) -> Union[DraftResult, AnswerResult]:
        """Generate and stage a plan, or answer from context alone when generation fails."""
        user_id = require_user(self._identity)
        if not isinstance(message, str) or not message.strip():
            raise BadRequest("Message must not be empty.")
        if len(message) > MAX_MESSAGE_CHARS:
            raise BadRequest(
                f"Message is too long ({len(message)} characters; limit {MAX_MESSAGE_CHARS}).",
                details={"length": len(message), "limit": MAX_MESSAGE_CHARS},
            )
        try:
            profile = get_profile(agent_id)
        except KeyError as error:
            raise BadRequest(str(error.args[0]), details={"agentId": agent_id}) from error

        scope = scope or Scope()
        snapshot = self._context_builder.build(user_id, scope, collections=profile.collections)
        prompt = self._composer.compose(
            snapshot,
            agent_title=profile.title,
            domain_rules=profile.domain_rules,
            output_schema=profile.output_schema_text(),
            message=message.strip(),
        )
        try:
            generated = self._generator.run(prompt, profile.validator(), agent_id=profile.agent_id)
        except GenerationFailed as failure:
            LOGGER.warning("Falling back to a context-only answer for user %s: %s", user_id, failure)
            return build_fallback_answer(snapshot, failure)

        draft = self._stager.stage(
            user_id,
            profile.agent_id,
            generated.plan,
            scope=scope,
            message=message.strip(),
        )
        return DraftResult.from_draft(draft, truncated=prompt.truncated)

    def confirm(self, draft_id: str) -> ConfirmResult:
        user_id = require_user(self._identity)
        return self._gate.confirm(user_id, draft_id)

    def apply(self, draft_id: str, confirmation_token: str) -> ApplyResult:
        user_id = require_user(self._identity)
        return self._executor.apply(user_id, draft_id, confirmation_token)

    # Housekeeping --------------------------------------------------------------------
    def reject(self, draft_id: str) -> Dict[str, Any]:
        """Close an open draft so it can no longer be confirmed or applied."""
        user_id = require_user(self._identity)
        draft = load_owned_draft(self._store, user_id, draft_id)
        if not draft.status.is_open or not self._store.reject(draft_id, now=self._clock()):
            current = load_owned_draft(self._store, user_id, draft_id)
            raise BadRequest(
                f"Draft {draft_id} is {current.status.value} and cannot be rejected.",
                details={"draftId": draft_id, "status": current.status.value},
            )
        return {"draftId": draft_id, "status": DraftStatus.REJECTED.value}

    def get_draft(self, draft_id: str) -> Dict[str, Any]:
        user_id = require_user(self._identity)
        return draft_view(load_owned_draft(self._store, user_id, draft_id))

    def list_drafts(self, *, open_only: bool = False) -> List[Dict[str, Any]]:
        user_id = require_user(self._identity)
        statuses = [DraftStatus.PROPOSED, DraftStatus.CONFIRMED] if open_only else None
        return [draft_view(item) for item in self._store.list_drafts(user_id=user_id, statuses=statuses)]

    def sweep(self) -> Dict[str, int]:
        return self._store.sweep(now=self._clock(), retention=self._retention)

    def close(self) -> None:
        self._store.close()


__all__ = ["AgentService", "DraftResult", "MAX_MESSAGE_CHARS", "draft_view"]
