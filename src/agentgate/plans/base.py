"""Shared building blocks for the structured plans emitted by the generator."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, NamedTuple, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel


class StrictModel(BaseModel):
    """camelCase on the wire, no unknown keys, no type coercion."""

    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _check_utc_timestamp(value: str) -> str:
    candidate = value.strip()
    if not candidate.endswith("Z") and not candidate.endswith("+00:00"):
        raise ValueError("timestamp must be ISO-8601 UTC (ending in 'Z')")
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError as error:
        raise ValueError(f"invalid ISO-8601 timestamp: {value!r}") from error
    if parsed.utcoffset() != timezone.utc.utcoffset(None):
        raise ValueError("timestamp must be in UTC")
    return candidate


def parse_utc_timestamp(value: str) -> datetime:
    """Parse a validated UTC timestamp string into an aware ``datetime``."""
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


UtcTimestamp = Annotated[str, AfterValidator(_check_utc_timestamp)]
Reason = Annotated[str, StringConstraints(min_length=1, max_length=500)]
Note = Annotated[str, StringConstraints(max_length=500)]
PositiveId = Annotated[int, Field(gt=0)]


class OperationKind(str, Enum):
    """Closed vocabulary of mutations a plan may contain."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    COMMENT_ADD = "comment_add"
    COMMENT_REMOVE = "comment_remove"
    RSVP = "rsvp"
    LIKE_TOGGLE = "like_toggle"


class Access(str, Enum):
    """What a referenced entity must allow for an operation to proceed."""

    READ = "read"
    WRITE = "write"
    MODERATE = "moderate"
    UNLOCK = "unlock"


class EntityRef(NamedTuple):
    """An entity id referenced by an operation, with the access it needs."""

    entity: Literal["event", "comment", "task", "project", "member", "note"]
    id: Any
    access: Access = Access.READ
    parent: Optional[int] = None

    def label(self) -> str:
        if self.parent is not None:
            return f"{self.entity} {self.id} (on {self.parent})"
        return f"{self.entity} {self.id}"


class Operation(StrictModel):
    """One typed mutation. Subclasses pin ``kind`` and the diff-preview group."""

    kind: ClassVar[OperationKind]
    preview_group: ClassVar[str]
    destructive: ClassVar[bool] = False

    def references(self) -> List[EntityRef]:
        """Existing entities this operation touches; creates return the parents they need."""
        return []

    def describe(self) -> str:
        """One human-readable diff-preview line."""
        raise NotImplementedError


class DangerousOperation(Operation):
    """Destructive operations must carry a reason and the literal ``dangerous: true`` tag."""

    destructive: ClassVar[bool] = True

    reason: Reason
    dangerous: Literal[True]


class PlanBase(StrictModel):
    """Fields shared by every agent's plan.

    ``LIMITS`` maps each list's wire path (for example ``comments.add``) to its hard
    upper bound; bounds are checked independently of what the generator claims.
    """

    LIMITS: ClassVar[Dict[str, int]] = {}
    APPLY_ORDER: ClassVar[tuple[str, ...]] = ()
    DANGEROUS_PATHS: ClassVar[tuple[str, ...]] = ()

    summary: Annotated[str, StringConstraints(min_length=1, max_length=2000)]
    risks: List[Note] = Field(default_factory=list)
    questions_for_user: List[Note] = Field(default_factory=list)
    plan_hash: Optional[Annotated[str, StringConstraints(min_length=8, max_length=128)]] = None

    def operation_lists(self) -> Dict[str, List[Operation]]:
        """Map each operation list's wire path to its contents."""
        raise NotImplementedError

    def list_sizes(self) -> Dict[str, int]:
        sizes = {path: len(items) for path, items in self.operation_lists().items()}
        sizes["risks"] = len(self.risks)
        sizes["questionsForUser"] = len(self.questions_for_user)
        return sizes

    def operations(self) -> List[Operation]:
        """All operations in apply order."""
        lists = self.operation_lists()
        ordered: List[Operation] = []
        for path in self.APPLY_ORDER:
            ordered.extend(lists.get(path, []))
        return ordered

    def has_operations(self) -> bool:
        return any(self.operation_lists().values())

    def derived_diff_preview(self) -> Dict[str, List[str]]:
        """Preview lines grouped by operation kind, one per operation."""
        groups: Dict[str, List[str]] = {}
        for operation in self.operations():
            groups.setdefault(operation.preview_group, []).append(operation.describe())
        return groups

    def counts(self) -> Dict[str, int]:
        """Compact machine summary shown at confirm time."""
        raise NotImplementedError

    def extra_results(self) -> Dict[str, Any]:
        """Apply-result entries that no operation produces."""
        return {}

    def canonical_payload(self) -> Dict[str, Any]:
        """Wire payload used for hashing and storage; the model-supplied hash is dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude={"plan_hash"})


__all__ = [
    "Access",
    "DangerousOperation",
    "EntityRef",
    "Note",
    "Operation",
    "OperationKind",
    "PlanBase",
    "PositiveId",
    "Reason",
    "StrictModel",
    "UtcTimestamp",
    "parse_utc_timestamp",
]
