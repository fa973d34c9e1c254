"""Plan schema for the ``events_publisher`` agent."""

from __future__ import annotations

from typing import Annotated, ClassVar, Dict, List, Literal, Optional

from pydantic import Field, StringConstraints, field_validator

from ..workspace.schema import Region, RsvpStatus
from .base import (
    Access,
    DangerousOperation,
    EntityRef,
    Operation,
    OperationKind,
    PlanBase,
    PositiveId,
    StrictModel,
    UtcTimestamp,
)

Title = Annotated[str, StringConstraints(min_length=1, max_length=256)]
Description = Annotated[str, StringConstraints(min_length=1, max_length=5000)]
CommentText = Annotated[str, StringConstraints(min_length=1, max_length=500)]
ClientRequestId = Annotated[str, StringConstraints(min_length=1, max_length=64)]


class EventCreate(Operation):
    kind: ClassVar[OperationKind] = OperationKind.CREATE
    preview_group: ClassVar[str] = "creates"

    title: Title
    description: Description
    event_date: UtcTimestamp
    region: Region
    enable_rsvp: bool = False
    send_reminders: bool = False
    image_url: Optional[Annotated[str, StringConstraints(max_length=2048)]] = None
    client_request_id: ClientRequestId

    @field_validator("image_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("imageUrl must be an http(s) URL")
        return value

    def domain_fields(self) -> Dict[str, object]:
        """Domain fields handed to the persistence layer."""
        return self.model_dump(exclude={"client_request_id"}, exclude_none=True)

    def describe(self) -> str:
        return f"Create event '{self.title}' on {self.event_date} in {self.region}"


class EventPatch(StrictModel):
    title: Optional[Title] = None
    description: Optional[Description] = None
    event_date: Optional[UtcTimestamp] = None
    region: Optional[Region] = None
    enable_rsvp: Optional[bool] = None
    send_reminders: Optional[bool] = None

    def changes(self) -> Dict[str, object]:
        """Only the fields the generator actually set."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class EventUpdate(Operation):
    kind: ClassVar[OperationKind] = OperationKind.UPDATE
    preview_group: ClassVar[str] = "updates"

    event_id: PositiveId
    patch: EventPatch
    reason: Optional[Annotated[str, StringConstraints(max_length=500)]] = None

    def references(self) -> List[EntityRef]:
        return [EntityRef("event", self.event_id, Access.WRITE)]

    def describe(self) -> str:
        fields = ", ".join(sorted(self.patch.changes())) or "nothing"
        return f"Update event #{self.event_id}: {fields}"


class EventDelete(DangerousOperation):
    kind: ClassVar[OperationKind] = OperationKind.DELETE
    preview_group: ClassVar[str] = "deletes"

    event_id: PositiveId

    def references(self) -> List[EntityRef]:
        return [EntityRef("event", self.event_id, Access.WRITE)]

    def describe(self) -> str:
        return f"Delete event #{self.event_id} ({self.reason})"


class EventCommentAdd(Operation):
    kind: ClassVar[OperationKind] = OperationKind.COMMENT_ADD
    preview_group: ClassVar[str] = "comments"

    event_id: PositiveId
    text: CommentText

    def references(self) -> List[EntityRef]:
        return [EntityRef("event", self.event_id, Access.READ)]

    def describe(self) -> str:
        return f"Comment on event #{self.event_id}: {self.text[:80]}"


class EventCommentRemove(DangerousOperation):
    kind: ClassVar[OperationKind] = OperationKind.COMMENT_REMOVE
    preview_group: ClassVar[str] = "comments"

    event_id: PositiveId
    comment_id: PositiveId

    def references(self) -> List[EntityRef]:
        return [
            EntityRef("event", self.event_id, Access.READ),
            EntityRef("comment", self.comment_id, Access.MODERATE, parent=self.event_id),
        ]

    def describe(self) -> str:
        return f"Remove comment #{self.comment_id} from event #{self.event_id} ({self.reason})"


class EventRsvp(Operation):
    kind: ClassVar[OperationKind] = OperationKind.RSVP
    preview_group: ClassVar[str] = "rsvps"

    event_id: PositiveId
    status: RsvpStatus

    def references(self) -> List[EntityRef]:
        return [EntityRef("event", self.event_id, Access.READ)]

    def describe(self) -> str:
        return f"RSVP '{self.status}' to event #{self.event_id}"


class EventLikeToggle(Operation):
    kind: ClassVar[OperationKind] = OperationKind.LIKE_TOGGLE
    preview_group: ClassVar[str] = "likes"

    event_id: PositiveId

    def references(self) -> List[EntityRef]:
        return [EntityRef("event", self.event_id, Access.READ)]

    def describe(self) -> str:
        return f"Toggle like on event #{self.event_id}"


class EventComments(StrictModel):
    add: List[EventCommentAdd] = Field(default_factory=list)
    remove: List[EventCommentRemove] = Field(default_factory=list)


class EventsDiffPreview(StrictModel):
    creates: List[str] = Field(default_factory=list)
    updates: List[str] = Field(default_factory=list)
    deletes: List[str] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list)
    rsvps: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)


class EventsPublisherPlan(PlanBase):
    """Structured draft produced for event creation, moderation and engagement."""

    LIMITS: ClassVar[Dict[str, int]] = {
        "creates": 10,
        "updates": 20,
        "deletes": 5,
        "comments.add": 20,
        "comments.remove": 10,
        "rsvps": 20,
        "likes": 20,
        "risks": 10,
        "questionsForUser": 5,
    }
    APPLY_ORDER: ClassVar[tuple[str, ...]] = (
        "creates",
        "updates",
        "rsvps",
        "likes",
        "comments.add",
        "comments.remove",
        "deletes",
    )
    DANGEROUS_PATHS: ClassVar[tuple[str, ...]] = ("deletes", "comments.remove")

    agent_id: Literal["events_publisher"]
    creates: List[EventCreate] = Field(default_factory=list)
    updates: List[EventUpdate] = Field(default_factory=list)
    deletes: List[EventDelete] = Field(default_factory=list)
    comments: EventComments = Field(default_factory=EventComments)
    rsvps: List[EventRsvp] = Field(default_factory=list)
    likes: List[EventLikeToggle] = Field(default_factory=list)
    diff_preview: EventsDiffPreview = Field(default_factory=EventsDiffPreview)

    def operation_lists(self) -> Dict[str, List[Operation]]:
        return {
            "creates": list(self.creates),
            "updates": list(self.updates),
            "deletes": list(self.deletes),
            "comments.add": list(self.comments.add),
            "comments.remove": list(self.comments.remove),
            "rsvps": list(self.rsvps),
            "likes": list(self.likes),
        }

    def counts(self) -> Dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "commentsAdded": len(self.comments.add),
            "commentsRemoved": len(self.comments.remove),
            "rsvps": len(self.rsvps),
            "likes": len(self.likes),
        }


__all__ = [
    "EventCommentAdd",
    "EventCommentRemove",
    "EventComments",
    "EventCreate",
    "EventDelete",
    "EventLikeToggle",
    "EventPatch",
    "EventRsvp",
    "EventUpdate",
    "EventsDiffPreview",
    "EventsPublisherPlan",
]
