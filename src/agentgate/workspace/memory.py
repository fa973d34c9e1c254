"""In-process workspace used by the CLI and the test-suite.

Implements both :class:`WorkspaceReader` and :class:`WorkspaceWriter` over plain
dictionaries, optionally persisted to a JSON file. Transactions snapshot the
whole state and restore it when the block raises.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from pydantic import BaseModel

from .interfaces import WorkspaceError
from .schema import (
    Event,
    EventComment,
    Notification,
    Project,
    RsvpStatus,
    StickyNote,
    Task,
    TaskStatus,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

_EVENT_FIELDS = {
    "title",
    "description",
    "event_date",
    "region",
    "image_url",
    "enable_rsvp",
    "send_reminders",
}
_TASK_FIELDS = {
    "title",
    "description",
    "priority",
    "assigned_to_id",
    "acceptance_criteria",
    "order_index",
    "due_date",
}


def _dump(records: Mapping[int, BaseModel]) -> List[Dict[str, Any]]:
    return [records[key].model_dump(mode="json", by_alias=True) for key in sorted(records)]


class InMemoryWorkspace:
    """Dictionary-backed workspace store with snapshot/rollback transactions."""

    def __init__(
        self,
        *,
        projects: Optional[List[Project]] = None,
        tasks: Optional[List[Task]] = None,
        notifications: Optional[List[Notification]] = None,
        events: Optional[List[Event]] = None,
        notes: Optional[List[StickyNote]] = None,
        supports_transactions: bool = True,
        path: Path | str | None = None,
    ) -> None:
        self.supports_transactions = supports_transactions
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._depth = 0
        self._projects: Dict[int, Project] = {item.id: item for item in projects or []}
        self._tasks: Dict[int, Task] = {item.id: item for item in tasks or []}
        self._notifications: Dict[int, Notification] = {item.id: item for item in notifications or []}
        self._events: Dict[int, Event] = {item.id: item for item in events or []}
        self._notes: Dict[int, StickyNote] = {item.id: item for item in notes or []}

    # Persistence ---------------------------------------------------------------------
    @classmethod
    def load(cls, path: Path | str, *, supports_transactions: bool = True) -> "InMemoryWorkspace":
        """Load a workspace from a JSON document; a missing file yields an empty workspace."""
        file_path = Path(path)
        if not file_path.exists():
            return cls(path=file_path, supports_transactions=supports_transactions)
        with file_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise WorkspaceError(f"Workspace file {file_path} must contain a JSON object.")
        return cls(
            projects=[Project.model_validate(item) for item in data.get("projects", [])],
            tasks=[Task.model_validate(item) for item in data.get("tasks", [])],
            notifications=[Notification.model_validate(item) for item in data.get("notifications", [])],
            events=[Event.model_validate(item) for item in data.get("events", [])],
            notes=[StickyNote.model_validate(item) for item in data.get("notes", [])],
            supports_transactions=supports_transactions,
            path=file_path,
        )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "projects": _dump(self._projects),
                "tasks": _dump(self._tasks),
                "notifications": _dump(self._notifications),
                "events": _dump(self._events),
                "notes": _dump(self._notes),
            }

    def save(self, path: Path | str | None = None) -> None:
        target = Path(path) if path is not None else self._path
        if target is None:
            raise WorkspaceError("No path configured for saving the workspace.")
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle, indent=2, sort_keys=True)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryWorkspace"]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = None
            if outermost and self.supports_transactions:
                snapshot = copy.deepcopy(
                    (self._projects, self._tasks, self._notifications, self._events, self._notes)
                )
            self._depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    self._projects, self._tasks, self._notifications, self._events, self._notes = snapshot
                    LOGGER.info("Workspace transaction rolled back")
                raise
            finally:
                self._depth -= 1

    # Reader --------------------------------------------------------------------------
    def get_project(self, user_id: str, project_id: int) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None or not project.is_member(user_id):
                return None
            return project.model_copy(deep=True)

    def list_projects(self, user_id: str, *, limit: int) -> List[Project]:
        with self._lock:
            visible = [item for item in self._projects.values() if item.is_member(user_id)]
            visible.sort(key=lambda item: (item.updated_at, item.id), reverse=True)
            return [item.model_copy(deep=True) for item in visible[:limit]]

    def get_task(self, user_id: str, task_id: int) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            if self.get_project(user_id, task.project_id) is None:
                return None
            return task.model_copy(deep=True)

    def list_tasks(self, user_id: str, project_id: int, *, limit: int) -> List[Task]:
        with self._lock:
            if self.get_project(user_id, project_id) is None:
                return []
            rows = [item for item in self._tasks.values() if item.project_id == project_id]
            rows.sort(key=lambda item: (item.created_at, item.id), reverse=True)
            return [item.model_copy(deep=True) for item in rows[:limit]]

    def list_notifications(self, user_id: str, *, limit: int) -> List[Notification]:
        with self._lock:
            rows = [item for item in self._notifications.values() if item.user_id == user_id]
            rows.sort(key=lambda item: (item.created_at, item.id), reverse=True)
            return [item.model_copy(deep=True) for item in rows[:limit]]

    def get_event(self, user_id: str, event_id: int) -> Optional[Event]:
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy(deep=True) if event is not None else None

    def list_events(self, user_id: str, *, limit: int) -> List[Event]:
        with self._lock:
            rows = sorted(self._events.values(), key=lambda item: (item.created_at, item.id), reverse=True)
            return [item.model_copy(deep=True) for item in rows[:limit]]

    def get_note(self, user_id: str, note_id: int) -> Optional[StickyNote]:
        with self._lock:
            note = self._notes.get(note_id)
            if note is None or note.created_by_id != user_id:
                return None
            return note.model_copy(deep=True)

    def list_notes(self, user_id: str, *, limit: int) -> List[StickyNote]:
        with self._lock:
            rows = [item for item in self._notes.values() if item.created_by_id == user_id]
            rows.sort(key=lambda item: (item.created_at, item.id), reverse=True)
            return [item.model_copy(deep=True) for item in rows[:limit]]

    # Writer: events ------------------------------------------------------------------
    def _owned_event(self, user_id: str, event_id: int) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise WorkspaceError(f"Event {event_id} not found")
        if event.created_by_id != user_id:
            raise WorkspaceError(f"Event {event_id} is not owned by the requesting user")
        return event

    def _existing_event(self, event_id: int) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise WorkspaceError(f"Event {event_id} not found")
        return event

    def create_event(self, user_id: str, fields: Mapping[str, Any]) -> int:
        unknown = set(fields) - _EVENT_FIELDS
        if unknown:
            raise WorkspaceError(f"Unsupported event fields: {', '.join(sorted(unknown))}")
        with self._lock:
            event_id = max(self._events, default=0) + 1
            self._events[event_id] = Event(id=event_id, created_by_id=user_id, **dict(fields))
            return event_id

    def update_event(self, user_id: str, event_id: int, patch: Mapping[str, Any]) -> None:
        unknown = set(patch) - _EVENT_FIELDS
        if unknown:
            raise WorkspaceError(f"Unsupported event fields: {', '.join(sorted(unknown))}")
        with self._lock:
            event = self._owned_event(user_id, event_id)
            merged = event.model_dump()
            merged.update(patch)
            merged["updated_at"] = utc_now()
            self._events[event_id] = Event.model_validate(merged)

    def delete_event(self, user_id: str, event_id: int) -> None:
        with self._lock:
            self._owned_event(user_id, event_id)
            del self._events[event_id]

    def add_event_comment(self, user_id: str, event_id: int, text: str) -> int:
        with self._lock:
            event = self._existing_event(event_id)
            comment_id = 1 + max(
                (comment.id for item in self._events.values() for comment in item.comments),
                default=0,
            )
            event.comments.append(
                EventComment(id=comment_id, event_id=event_id, author_id=user_id, text=text)
            )
            return comment_id

    def delete_event_comment(self, user_id: str, event_id: int, comment_id: int) -> None:
        with self._lock:
            event = self._existing_event(event_id)
            for index, comment in enumerate(event.comments):
                if comment.id != comment_id:
                    continue
                if user_id not in (comment.author_id, event.created_by_id):
                    raise WorkspaceError(f"Comment {comment_id} cannot be removed by the requesting user")
                del event.comments[index]
                return
            raise WorkspaceError(f"Comment {comment_id} not found on event {event_id}")

    def set_event_rsvp(self, user_id: str, event_id: int, status: RsvpStatus) -> None:
        with self._lock:
            event = self._existing_event(event_id)
            if not event.enable_rsvp:
                raise WorkspaceError(f"Event {event_id} does not accept RSVPs")
            event.rsvps[user_id] = status

    def toggle_event_like(self, user_id: str, event_id: int) -> bool:
        with self._lock:
            event = self._existing_event(event_id)
            if user_id in event.liked_by:
                event.liked_by.remove(user_id)
                return False
            event.liked_by.append(user_id)
            return True

    # Writer: tasks -------------------------------------------------------------------
    def _editable_task(self, user_id: str, task_id: int) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise WorkspaceError(f"Task {task_id} not found")
        project = self._projects.get(task.project_id)
        if project is None or not project.is_member(user_id):
            raise WorkspaceError(f"Task {task_id} is not editable by the requesting user")
        return task

    def create_task(self, user_id: str, project_id: int, fields: Mapping[str, Any]) -> int:
        unknown = set(fields) - _TASK_FIELDS
        if unknown:
            raise WorkspaceError(f"Unsupported task fields: {', '.join(sorted(unknown))}")
        with self._lock:
            project = self._projects.get(project_id)
            if project is None or not project.is_member(user_id):
                raise WorkspaceError(f"Project {project_id} is not writable by the requesting user")
            task_id = max(self._tasks, default=0) + 1
            self._tasks[task_id] = Task(
                id=task_id,
                project_id=project_id,
                created_by_id=user_id,
                **dict(fields),
            )
            return task_id

    def update_task(self, user_id: str, task_id: int, patch: Mapping[str, Any]) -> None:
        unknown = set(patch) - _TASK_FIELDS
        if unknown:
            raise WorkspaceError(f"Unsupported task fields: {', '.join(sorted(unknown))}")
        with self._lock:
            task = self._editable_task(user_id, task_id)
            merged = task.model_dump()
            merged.update(patch)
            merged["updated_at"] = utc_now()
            self._tasks[task_id] = Task.model_validate(merged)

    def update_task_status(self, user_id: str, task_id: int, status: TaskStatus) -> None:
        with self._lock:
            task = self._editable_task(user_id, task_id)
            self._tasks[task_id] = task.model_copy(update={"status": status, "updated_at": utc_now()})

    def delete_task(self, user_id: str, task_id: int) -> None:
        with self._lock:
            self._editable_task(user_id, task_id)
            del self._tasks[task_id]

    # Writer: notes --------------------------------------------------------------------
    def _owned_note(self, user_id: str, note_id: int) -> StickyNote:
        note = self._notes.get(note_id)
        if note is None or note.created_by_id != user_id:
            raise WorkspaceError(f"Note {note_id} not found")
        return note

    def create_note(self, user_id: str, content: str) -> int:
        with self._lock:
            note_id = max(self._notes, default=0) + 1
            self._notes[note_id] = StickyNote(id=note_id, content=content, created_by_id=user_id)
            return note_id

    def update_note(self, user_id: str, note_id: int, content: str, *, unlocked: bool = False) -> None:
        with self._lock:
            note = self._owned_note(user_id, note_id)
            if note.is_locked and not unlocked:
                raise WorkspaceError(f"Note {note_id} is password-protected")
            self._notes[note_id] = note.model_copy(update={"content": content, "updated_at": utc_now()})

    def delete_note(self, user_id: str, note_id: int) -> None:
        with self._lock:
            self._owned_note(user_id, note_id)
            del self._notes[note_id]


__all__ = ["InMemoryWorkspace"]
