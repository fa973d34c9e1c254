"""Registry mapping agent ids to their plan model, prompt rules and apply handlers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Literal, Optional, Tuple, Type

from .plans.base import Operation, PlanBase
from .plans.events import (
    EventCommentAdd,
    EventCommentRemove,
    EventCreate,
    EventDelete,
    EventLikeToggle,
    EventRsvp,
    EventsPublisherPlan,
    EventUpdate,
)
from .plans.hashing import canonical_json
from .plans.notes import NoteCreate, NoteDelete, NotesVaultPlan, NoteUpdate
from .plans.tasks import TaskCreate, TaskDelete, TaskPlannerPlan, TaskStatusChange, TaskUpdate
from .plans.validation import (
    DomainCheck,
    PlanValidator,
    check_note_locks,
    check_rsvp_enabled,
    check_scoped_project,
)
from .workspace.interfaces import WorkspaceWriter


@dataclass(slots=True)
class ApplyTarget:
    """Who an apply runs as and, for project-scoped agents, which project it writes to."""

    user_id: str
    project_id: Optional[int] = None


HandlerFn = Callable[[WorkspaceWriter, ApplyTarget, Any], Optional[int]]


@dataclass(slots=True)
class ApplyHandler:
    """How one operation type is executed and reported in the apply results."""

    result_key: str
    run: HandlerFn
    collect: Literal["id", "count"] = "id"


@dataclass(slots=True)
class AgentProfile:
    """Metadata describing one agent domain end to end."""

    agent_id: str
    title: str
    plan_model: Type[PlanBase]
    collections: Tuple[str, ...]
    domain_rules: Tuple[str, ...]
    handlers: Dict[Type[Operation], ApplyHandler]
    checks: Tuple[DomainCheck, ...] = ()
    requires_project: bool = False
    _schema_cache: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def validator(self) -> PlanValidator:
        return PlanValidator(self.plan_model, checks=self.checks)

    def output_schema(self) -> Dict[str, Any]:
        """JSON schema of the plan as it appears on the wire (camelCase keys)."""
        if self._schema_cache is None:
            self._schema_cache = self.plan_model.model_json_schema(by_alias=True)
        return self._schema_cache

    def output_schema_text(self) -> str:
        return json.dumps(self.output_schema(), indent=2, sort_keys=True)

    def load_plan(self, payload: Dict[str, Any]) -> PlanBase:
        """Rehydrate a stored canonical payload into this agent's plan model."""
        return self.plan_model.model_validate_json(canonical_json(payload))

    def handler_for(self, operation: Operation) -> ApplyHandler:
        try:
            return self.handlers[type(operation)]
        except KeyError as error:
            raise KeyError(
                f"Agent '{self.agent_id}' has no apply handler for {type(operation).__name__}"
            ) from error

    def empty_results(self) -> Dict[str, Any]:
        """Result skeleton: id lists and counters, every key present even when unused."""
        results: Dict[str, Any] = {}
        for handler in self.handlers.values():
            results.setdefault(handler.result_key, [] if handler.collect == "id" else 0)
        return results


# Event handlers ----------------------------------------------------------------------
def _create_event(writer: WorkspaceWriter, target: ApplyTarget, op: EventCreate) -> int:
    return writer.create_event(target.user_id, op.domain_fields())


def _update_event(writer: WorkspaceWriter, target: ApplyTarget, op: EventUpdate) -> int:
    writer.update_event(target.user_id, op.event_id, op.patch.changes())
    return op.event_id


def _delete_event(writer: WorkspaceWriter, target: ApplyTarget, op: EventDelete) -> int:
    writer.delete_event(target.user_id, op.event_id)
    return op.event_id


def _add_comment(writer: WorkspaceWriter, target: ApplyTarget, op: EventCommentAdd) -> int:
    return writer.add_event_comment(target.user_id, op.event_id, op.text)


def _remove_comment(writer: WorkspaceWriter, target: ApplyTarget, op: EventCommentRemove) -> int:
    writer.delete_event_comment(target.user_id, op.event_id, op.comment_id)
    return op.comment_id


def _set_rsvp(writer: WorkspaceWriter, target: ApplyTarget, op: EventRsvp) -> int:
    writer.set_event_rsvp(target.user_id, op.event_id, op.status)
    return op.event_id


def _toggle_like(writer: WorkspaceWriter, target: ApplyTarget, op: EventLikeToggle) -> int:
    writer.toggle_event_like(target.user_id, op.event_id)
    return op.event_id


# Task handlers -----------------------------------------------------------------------
def _require_project(target: ApplyTarget) -> int:
    if target.project_id is None:
        raise ValueError("task operations require a project in scope")
    return target.project_id


def _create_task(writer: WorkspaceWriter, target: ApplyTarget, op: TaskCreate) -> int:
    return writer.create_task(target.user_id, _require_project(target), op.domain_fields())


def _update_task(writer: WorkspaceWriter, target: ApplyTarget, op: TaskUpdate) -> int:
    writer.update_task(target.user_id, op.task_id, op.patch.changes())
    return op.task_id


def _change_task_status(writer: WorkspaceWriter, target: ApplyTarget, op: TaskStatusChange) -> int:
    writer.update_task_status(target.user_id, op.task_id, op.status)
    return op.task_id


def _delete_task(writer: WorkspaceWriter, target: ApplyTarget, op: TaskDelete) -> int:
    writer.delete_task(target.user_id, op.task_id)
    return op.task_id


# Note handlers -----------------------------------------------------------------------
def _create_note(writer: WorkspaceWriter, target: ApplyTarget, op: NoteCreate) -> int:
    return writer.create_note(target.user_id, op.content)


def _update_note(writer: WorkspaceWriter, target: ApplyTarget, op: NoteUpdate) -> int:
    writer.update_note(target.user_id, op.note_id, op.next_content, unlocked=op.requires_unlocked)
    return op.note_id


def _delete_note(writer: WorkspaceWriter, target: ApplyTarget, op: NoteDelete) -> int:
    writer.delete_note(target.user_id, op.note_id)
    return op.note_id


EVENTS_RULES = (
    "Handle events only: creation, updates, moderation, RSVPs, comments and likes.",
    "Never invent ids. Use only event and comment ids listed under Valid IDs.",
    "Every create needs a clientRequestId that is unique within the plan.",
    "Only delete when the user explicitly asks; set dangerous: true and give a reason.",
    "Only update or delete events where isOwner is true.",
    "Removing a comment is destructive: set dangerous: true and give a reason.",
    "Event dates are ISO-8601 UTC strings ending in 'Z'.",
    "Region must be one of the allowed values; if the user does not say, ask.",
    "Patches contain only fields that change; never repeat a current value.",
    "RSVP only to events with enableRsvp true.",
    "If the request is ambiguous, fill questionsForUser and leave every operation list empty.",
)

TASKS_RULES = (
    "Handle tasks of the scoped project only.",
    "Never invent ids. Use only task ids and member ids listed under Valid IDs.",
    "Every create needs a clientRequestId of 8 to 128 characters, unique within the plan.",
    "Only delete when the user explicitly asks; set dangerous: true and give a reason.",
    "Assign tasks only to project members.",
    "Due dates are ISO-8601 UTC strings ending in 'Z'.",
    "Patches contain only fields that change; never repeat a current value.",
    "Without a project in context, ask which project to use and leave every operation list empty.",
)

NOTES_RULES = (
    "Handle the user's own notes only: create, rewrite and delete them.",
    "Never ask for, accept or store note passwords or reset PINs.",
    "A note with isLocked true and no content is unreadable; never guess what it says.",
    "To rewrite a locked note its content must be in context; set requiresUnlocked: true.",
    "If a locked note's content is not in context, do not update it; add it to blocked with a reason.",
    "Never invent ids. Use only note ids listed under Valid IDs.",
    "Every create needs a clientRequestId that is unique within the plan.",
    "Prefer small, safe edits over rewriting whole notes.",
    "Only delete when the user explicitly asks; set dangerous: true and give a strong reason.",
    "If the request is ambiguous, fill questionsForUser and leave every operation list empty.",
)


AGENT_PROFILES: Dict[str, AgentProfile] = {
    "events_publisher": AgentProfile(
        agent_id="events_publisher",
        title="Events Publisher",
        plan_model=EventsPublisherPlan,
        collections=("events",),
        domain_rules=EVENTS_RULES,
        checks=(check_rsvp_enabled,),
        handlers={
            EventCreate: ApplyHandler("createdEventIds", _create_event),
            EventUpdate: ApplyHandler("updatedEventIds", _update_event),
            EventDelete: ApplyHandler("deletedEventIds", _delete_event),
            EventCommentAdd: ApplyHandler("commentsAdded", _add_comment, "count"),
            EventCommentRemove: ApplyHandler("commentsRemoved", _remove_comment, "count"),
            EventRsvp: ApplyHandler("rsvpsSet", _set_rsvp, "count"),
            EventLikeToggle: ApplyHandler("likesToggled", _toggle_like, "count"),
        },
    ),
    "task_planner": AgentProfile(
        agent_id="task_planner",
        title="Task Planner",
        plan_model=TaskPlannerPlan,
        collections=("tasks",),
        domain_rules=TASKS_RULES,
        checks=(check_scoped_project,),
        requires_project=True,
        handlers={
            TaskCreate: ApplyHandler("createdTaskIds", _create_task),
            TaskUpdate: ApplyHandler("updatedTaskIds", _update_task),
            TaskStatusChange: ApplyHandler("statusChangedTaskIds", _change_task_status),
            TaskDelete: ApplyHandler("deletedTaskIds", _delete_task),
        },
    ),
    "notes_vault": AgentProfile(
        agent_id="notes_vault",
        title="Notes Vault",
        plan_model=NotesVaultPlan,
        collections=("notes",),
        domain_rules=NOTES_RULES,
        checks=(check_note_locks,),
        handlers={
            NoteCreate: ApplyHandler("createdNoteIds", _create_note),
            NoteUpdate: ApplyHandler("updatedNoteIds", _update_note),
            NoteDelete: ApplyHandler("deletedNoteIds", _delete_note),
        },
    ),
}


def available_agents() -> Iterable[str]:
    """Return the agent ids currently registered."""
    return AGENT_PROFILES.keys()


def get_profile(agent_id: str) -> AgentProfile:
    """Resolve ``agent_id`` into its profile."""
    try:
        return AGENT_PROFILES[agent_id]
    except KeyError as error:
        valid = ", ".join(sorted(AGENT_PROFILES))
        raise KeyError(f"Unknown agent '{agent_id}'. Expected one of: {valid}") from error


def profile_for_plan(plan: PlanBase) -> AgentProfile:
    return get_profile(getattr(plan, "agent_id"))


__all__ = [
    "AGENT_PROFILES",
    "AgentProfile",
    "ApplyHandler",
    "ApplyTarget",
    "available_agents",
    "get_profile",
    "profile_for_plan",
]
