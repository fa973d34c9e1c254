"""Assemble bounded, read-only workspace snapshots for a user and scope."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .errors import Unauthorized
from .workspace.interfaces import WorkspaceReader
from .workspace.schema import (
    Event,
    Notification,
    Project,
    RecordModel,
    Scope,
    StickyNote,
    Task,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

COLLECTIONS = ("projects", "tasks", "notifications", "events", "notes")


class ProjectView(RecordModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    is_owner: bool
    member_ids: List[str] = Field(default_factory=list)


class TaskView(RecordModel):
    id: int
    project_id: int
    title: str
    description: str = ""
    status: str
    priority: str
    assigned_to_id: Optional[str] = None
    order_index: int = 0
    due_date: Optional[datetime] = None


class NotificationView(RecordModel):
    id: int
    type: str
    title: str
    message: str
    read: bool


class CommentView(RecordModel):
    id: int
    text: str
    is_mine: bool


class EventView(RecordModel):
    id: int
    title: str
    description: str
    event_date: datetime
    region: str
    enable_rsvp: bool
    send_reminders: bool
    is_owner: bool
    like_count: int
    liked_by_me: bool
    comment_count: int
    my_rsvp: Optional[str] = None
    comments: List[CommentView] = Field(default_factory=list)


class NoteView(RecordModel):
    """Note metadata; ``content`` is only present when the note is readable."""

    id: int
    created_at: datetime
    share_status: str
    is_locked: bool
    content: Optional[str] = None


class ContextSnapshot(RecordModel):
    """Serializable view of the workspace as one user sees it."""

    user_id: str
    scope: Scope = Field(default_factory=Scope)
    generated_at: datetime = Field(default_factory=utc_now)
    project: Optional[ProjectView] = None
    projects: List[ProjectView] = Field(default_factory=list)
    tasks: List[TaskView] = Field(default_factory=list)
    notifications: List[NotificationView] = Field(default_factory=list)
    events: List[EventView] = Field(default_factory=list)
    notes: List[NoteView] = Field(default_factory=list)

    def record_count(self) -> int:
        return (
            len(self.projects) + len(self.tasks) + len(self.notifications) + len(self.events) + len(self.notes)
        )

    def entity_index(self) -> "EntityIndex":
        """Index of every id the snapshot exposes, used for cross-reference checks."""
        members: set[str] = set()
        if self.project is not None:
            members.update(self.project.member_ids)
        for project in self.projects:
            members.update(project.member_ids)
        comments: Dict[int, int] = {}
        for event in self.events:
            for comment in event.comments:
                comments[comment.id] = event.id
        return EntityIndex(
            events={event.id: event for event in self.events},
            comments=comments,
            tasks={task.id: task for task in self.tasks},
            projects={project.id for project in self.projects}
            | ({self.project.id} if self.project is not None else set()),
            member_ids=members,
            scoped_project=self.project.id if self.project is not None else None,
            notes={note.id: note for note in self.notes},
        )


@dataclass(slots=True)
class EntityIndex:
    """Lookup tables over the ids a snapshot makes visible."""

    events: Dict[int, EventView] = field(default_factory=dict)
    comments: Dict[int, int] = field(default_factory=dict)
    tasks: Dict[int, TaskView] = field(default_factory=dict)
    projects: set[int] = field(default_factory=set)
    member_ids: set[str] = field(default_factory=set)
    scoped_project: Optional[int] = None
    notes: Dict[int, NoteView] = field(default_factory=dict)

    def as_listing(self) -> Dict[str, List[Any]]:
        """Sorted id listing embedded verbatim in prompts."""
        return {
            "eventIds": sorted(self.events),
            "commentIds": sorted(self.comments),
            "taskIds": sorted(self.tasks),
            "projectIds": sorted(self.projects),
            "memberIds": sorted(self.member_ids),
            "noteIds": sorted(self.notes),
        }


def _project_view(project: Project, user_id: str) -> ProjectView:
    return ProjectView(
        id=project.id,
        title=project.title,
        description=project.description,
        status=project.status,
        is_owner=project.created_by_id == user_id,
        member_ids=project.members(),
    )


def _task_view(task: Task) -> TaskView:
    return TaskView(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        assigned_to_id=task.assigned_to_id,
        order_index=task.order_index,
        due_date=task.due_date,
    )


def _notification_view(notification: Notification) -> NotificationView:
    return NotificationView(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        read=notification.read,
    )


def _note_view(note: StickyNote, scope: Scope) -> NoteView:
    readable = not note.is_locked or scope.is_unlocked(note.id)
    return NoteView(
        id=note.id,
        created_at=note.created_at,
        share_status=note.share_status,
        is_locked=note.is_locked,
        content=note.content if readable else None,
    )


def _event_view(event: Event, user_id: str, comment_limit: int) -> EventView:
    recent = sorted(event.comments, key=lambda item: (item.created_at, item.id), reverse=True)
    return EventView(
        id=event.id,
        title=event.title,
        description=event.description,
        event_date=event.event_date,
        region=event.region,
        enable_rsvp=event.enable_rsvp,
        send_reminders=event.send_reminders,
        is_owner=event.created_by_id == user_id,
        like_count=len(event.liked_by),
        liked_by_me=user_id in event.liked_by,
        comment_count=len(event.comments),
        my_rsvp=event.rsvps.get(user_id),
        comments=[
            CommentView(id=comment.id, text=comment.text, is_mine=comment.author_id == user_id)
            for comment in recent[:comment_limit]
        ],
    )


class ContextBuilder:
    """Builds bounded snapshots from a :class:`WorkspaceReader`.

    The builder only issues read queries. The total number of top-level records
    never exceeds ``max_records``; collections are filled in the order requested,
    each capped by its own limit.
    """

    DEFAULT_MAX_RECORDS = 30
    DEFAULT_LIMITS: Mapping[str, int] = {
        "projects": 10,
        "tasks": 20,
        "notifications": 10,
        "events": 30,
        "notes": 20,
    }
    COMMENTS_PER_EVENT = 5

    def __init__(
        self,
        reader: WorkspaceReader,
        *,
        max_records: int | None = None,
        limits: Mapping[str, int] | None = None,
        clock: Any = None,
    ) -> None:
        self._reader = reader
        self._max_records = max_records or self.DEFAULT_MAX_RECORDS
        merged = dict(self.DEFAULT_LIMITS)
        for key, value in (limits or {}).items():
            if key in merged and isinstance(value, int) and value > 0:
                merged[key] = value
        self._limits = merged
        self._clock = clock or utc_now

    @classmethod
    def from_config(cls, reader: WorkspaceReader, config: Mapping[str, Any]) -> "ContextBuilder":
        from .config import AgentSettings

        settings = AgentSettings.from_config(config)
        return cls(
            reader,
            max_records=settings.max_context_records,
            limits=AgentSettings.context_limits(config),
        )

    @property
    def max_records(self) -> int:
        return self._max_records

    def build(
        self,
        user_id: Optional[str],
        scope: Scope | None = None,
        *,
        collections: Sequence[str] = COLLECTIONS,
    ) -> ContextSnapshot:
        """Return the snapshot for ``user_id``; never ``None``, possibly empty."""
        if not user_id:
            raise Unauthorized("A signed-in user is required to build agent context.")
        scope = scope or Scope()
        remaining = self._max_records
        snapshot = ContextSnapshot(user_id=user_id, scope=scope, generated_at=self._clock())

        scoped_project: Optional[Project] = None
        if scope.project_id is not None:
            scoped_project = self._reader.get_project(user_id, scope.project_id)
            if scoped_project is not None:
                snapshot.project = _project_view(scoped_project, user_id)

        for name in collections:
            if name not in COLLECTIONS:
                raise ValueError(f"Unknown context collection '{name}'")
            budget = min(self._limits[name], remaining)
            if budget <= 0:
                break
            if name == "projects":
                rows = self._reader.list_projects(user_id, limit=budget)
                snapshot.projects = [_project_view(item, user_id) for item in rows[:budget]]
                remaining -= len(snapshot.projects)
            elif name == "tasks":
                if scoped_project is None:
                    continue
                rows = self._reader.list_tasks(user_id, scoped_project.id, limit=budget)
                snapshot.tasks = [_task_view(item) for item in rows[:budget]]
                remaining -= len(snapshot.tasks)
            elif name == "notifications":
                rows = self._reader.list_notifications(user_id, limit=budget)
                snapshot.notifications = [_notification_view(item) for item in rows[:budget]]
                remaining -= len(snapshot.notifications)
            elif name == "events":
                rows = self._reader.list_events(user_id, limit=budget)
                snapshot.events = [
                    _event_view(item, user_id, self.COMMENTS_PER_EVENT) for item in rows[:budget]
                ]
                remaining -= len(snapshot.events)
            elif name == "notes":
                rows = self._reader.list_notes(user_id, limit=budget)
                snapshot.notes = [_note_view(item, scope) for item in rows[:budget]]
                remaining -= len(snapshot.notes)

        LOGGER.debug(
            "Built context for user %s: %d record(s) across %s",
            user_id,
            snapshot.record_count(),
            ", ".join(collections),
        )
        return snapshot


__all__ = [
    "COLLECTIONS",
    "CommentView",
    "ContextBuilder",
    "ContextSnapshot",
    "EntityIndex",
    "EventView",
    "NoteView",
    "NotificationView",
    "ProjectView",
    "TaskView",
]
