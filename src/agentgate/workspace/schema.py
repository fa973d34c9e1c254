"""Typed records for the workspace entities the agent can read and mutate."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python, unknown keys rejected."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


Region = Literal[
    "sofia",
    "plovdiv",
    "varna",
    "burgas",
    "ruse",
    "stara_zagora",
    "pleven",
    "sliven",
    "dobrich",
    "shumen",
]
RsvpStatus = Literal["going", "maybe", "not_going"]
TaskStatus = Literal["pending", "in_progress", "completed", "blocked"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
ShareStatus = Literal["private", "shared_read", "shared_write"]


class Scope(RecordModel):
    """Optional narrowing of the context a request operates on."""

    org_id: Optional[Union[str, int]] = None
    project_id: Optional[int] = Field(default=None, gt=0)
    # Password-protected notes the caller has already unlocked for this request.
    unlocked_note_ids: Optional[List[int]] = None

    def is_unlocked(self, note_id: int) -> bool:
        return note_id in (self.unlocked_note_ids or ())


class Project(RecordModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str = "active"
    created_by_id: str
    collaborator_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def members(self) -> List[str]:
        """Owner first, then collaborators, without duplicates."""
        seen: List[str] = [self.created_by_id]
        for collaborator in self.collaborator_ids:
            if collaborator not in seen:
                seen.append(collaborator)
        return seen

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members()


class Task(RecordModel):
    id: int
    project_id: int
    title: str
    description: str = ""
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    assigned_to_id: Optional[str] = None
    acceptance_criteria: List[str] = Field(default_factory=list)
    order_index: int = 0
    due_date: Optional[datetime] = None
    created_by_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Notification(RecordModel):
    id: int
    user_id: str
    type: str = "info"
    title: str
    message: str = ""
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class EventComment(RecordModel):
    id: int
    event_id: int
    author_id: str
    text: str
    created_at: datetime = Field(default_factory=utc_now)


class Event(RecordModel):
    id: int
    title: str
    description: str
    event_date: datetime
    region: Region
    image_url: Optional[str] = None
    enable_rsvp: bool = False
    send_reminders: bool = False
    created_by_id: str
    comments: List[EventComment] = Field(default_factory=list)
    liked_by: List[str] = Field(default_factory=list)
    rsvps: Dict[str, RsvpStatus] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class StickyNote(RecordModel):
    """A private note; ``is_locked`` marks a password-protected one."""

    id: int
    content: str
    created_by_id: str
    share_status: ShareStatus = "private"
    is_locked: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = [
    "Event",
    "EventComment",
    "Notification",
    "Project",
    "RecordModel",
    "Region",
    "RsvpStatus",
    "Scope",
    "ShareStatus",
    "StickyNote",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "utc_now",
]
