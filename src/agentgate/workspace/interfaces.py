"""Boundaries to the domain store: a read-only query side and a mutation side."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, List, Mapping, Optional, Protocol

from .schema import Event, Notification, Project, RsvpStatus, StickyNote, Task, TaskStatus


class WorkspaceError(RuntimeError):
    """Raised by a workspace implementation when a mutation cannot be performed."""


class WorkspaceReader(Protocol):
    """Read-only queries, always evaluated from the perspective of ``user_id``.

    Implementations return only records the user is allowed to see; a record the
    user cannot see is indistinguishable from one that does not exist.
    """

    def get_project(self, user_id: str, project_id: int) -> Optional[Project]: ...

    def list_projects(self, user_id: str, *, limit: int) -> List[Project]: ...

    def get_task(self, user_id: str, task_id: int) -> Optional[Task]: ...

    def list_tasks(self, user_id: str, project_id: int, *, limit: int) -> List[Task]: ...

    def list_notifications(self, user_id: str, *, limit: int) -> List[Notification]: ...

    def get_event(self, user_id: str, event_id: int) -> Optional[Event]: ...

    def list_events(self, user_id: str, *, limit: int) -> List[Event]: ...

    def get_note(self, user_id: str, note_id: int) -> Optional[StickyNote]: ...

    def list_notes(self, user_id: str, *, limit: int) -> List[StickyNote]: ...


class WorkspaceWriter(Protocol):
    """Per-domain mutation primitives composed by the apply phase."""

    supports_transactions: bool

    def transaction(self) -> AbstractContextManager[Any]: ...

    def create_event(self, user_id: str, fields: Mapping[str, Any]) -> int: ...

    def update_event(self, user_id: str, event_id: int, patch: Mapping[str, Any]) -> None: ...

    def delete_event(self, user_id: str, event_id: int) -> None: ...

    def add_event_comment(self, user_id: str, event_id: int, text: str) -> int: ...

    def delete_event_comment(self, user_id: str, event_id: int, comment_id: int) -> None: ...

    def set_event_rsvp(self, user_id: str, event_id: int, status: RsvpStatus) -> None: ...

    def toggle_event_like(self, user_id: str, event_id: int) -> bool: ...

    def create_task(self, user_id: str, project_id: int, fields: Mapping[str, Any]) -> int: ...

    def update_task(self, user_id: str, task_id: int, patch: Mapping[str, Any]) -> None: ...

    def update_task_status(self, user_id: str, task_id: int, status: TaskStatus) -> None: ...

    def delete_task(self, user_id: str, task_id: int) -> None: ...

    def create_note(self, user_id: str, content: str) -> int: ...

    def update_note(self, user_id: str, note_id: int, content: str, *, unlocked: bool = False) -> None:
        """Replace a note's content; a locked note is only writable with ``unlocked`` set."""
        ...

    def delete_note(self, user_id: str, note_id: int) -> None: ...


__all__ = ["WorkspaceError", "WorkspaceReader", "WorkspaceWriter"]
