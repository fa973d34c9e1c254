"""Plan schema for the ``notes_vault`` agent.

Password-protected notes are opaque unless the caller unlocked them for the
request. A note the plan cannot safely change goes into ``blocked`` with a reason
instead of becoming an operation.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional

from pydantic import Field, StringConstraints

from .base import (
    Access,
    DangerousOperation,
    EntityRef,
    Note,
    Operation,
    OperationKind,
    PlanBase,
    PositiveId,
    Reason,
    StrictModel,
)

Content = Annotated[str, StringConstraints(min_length=1, max_length=20_000)]
ClientRequestId = Annotated[str, StringConstraints(min_length=1, max_length=64)]

EXCERPT_CHARS = 60


def _excerpt(content: str) -> str:
    flat = " ".join(content.split())
    return flat if len(flat) <= EXCERPT_CHARS else flat[: EXCERPT_CHARS - 3] + "..."


class NoteCreate(Operation):
    kind: ClassVar[OperationKind] = OperationKind.CREATE
    preview_group: ClassVar[str] = "creates"

    content: Content
    reason: Optional[Note] = None
    client_request_id: ClientRequestId

    def describe(self) -> str:
        return f"Create note: {_excerpt(self.content)}"


class NoteUpdate(Operation):
    """Replace a note's content. ``requires_unlocked`` must be set for a locked note."""

    kind: ClassVar[OperationKind] = OperationKind.UPDATE
    preview_group: ClassVar[str] = "updates"

    note_id: PositiveId
    next_content: Content
    reason: Optional[Note] = None
    requires_unlocked: bool

    def references(self) -> List[EntityRef]:
        access = Access.UNLOCK if self.requires_unlocked else Access.WRITE
        return [EntityRef("note", self.note_id, access)]

    def describe(self) -> str:
        line = f"Rewrite note #{self.note_id}: {_excerpt(self.next_content)}"
        if self.requires_unlocked:
            line += " (password-protected)"
        return line


class NoteDelete(DangerousOperation):
    kind: ClassVar[OperationKind] = OperationKind.DELETE
    preview_group: ClassVar[str] = "deletes"

    note_id: PositiveId

    def references(self) -> List[EntityRef]:
        return [EntityRef("note", self.note_id, Access.WRITE)]

    def describe(self) -> str:
        return f"Delete note #{self.note_id} ({self.reason})"


class BlockedNote(StrictModel):
    """A requested change the plan declines to make, reported back to the user."""

    note_id: PositiveId
    reason: Reason


class NotesDiffPreview(StrictModel):
    creates: List[str] = Field(default_factory=list)
    updates: List[str] = Field(default_factory=list)
    deletes: List[str] = Field(default_factory=list)


class NotesVaultPlan(PlanBase):
    """Structured draft for organizing the user's own notes."""

    LIMITS: ClassVar[Dict[str, int]] = {
        "creates": 20,
        "updates": 20,
        "deletes": 10,
        "blocked": 50,
        "risks": 10,
        "questionsForUser": 5,
    }
    APPLY_ORDER: ClassVar[tuple[str, ...]] = ("creates", "updates", "deletes")
    DANGEROUS_PATHS: ClassVar[tuple[str, ...]] = ("deletes",)

    agent_id: Literal["notes_vault"]
    creates: List[NoteCreate] = Field(default_factory=list)
    updates: List[NoteUpdate] = Field(default_factory=list)
    deletes: List[NoteDelete] = Field(default_factory=list)
    blocked: List[BlockedNote] = Field(default_factory=list)
    diff_preview: NotesDiffPreview = Field(default_factory=NotesDiffPreview)

    def operation_lists(self) -> Dict[str, List[Operation]]:
        return {
            "creates": list(self.creates),
            "updates": list(self.updates),
            "deletes": list(self.deletes),
        }

    def list_sizes(self) -> Dict[str, int]:
        sizes = super().list_sizes()
        sizes["blocked"] = len(self.blocked)
        return sizes

    def counts(self) -> Dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "blocked": len(self.blocked),
        }

    def extra_results(self) -> Dict[str, Any]:
        return {"blockedNoteIds": [item.note_id for item in self.blocked]}


__all__ = [
    "BlockedNote",
    "NoteCreate",
    "NoteDelete",
    "NoteUpdate",
    "NotesDiffPreview",
    "NotesVaultPlan",
]
