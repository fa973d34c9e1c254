"""Plan schema for the ``task_planner`` agent."""

from __future__ import annotations

from typing import Annotated, ClassVar, Dict, List, Literal, Optional

from pydantic import Field, StringConstraints

from ..workspace.schema import TaskPriority, TaskStatus
from .base import (
    Access,
    DangerousOperation,
    EntityRef,
    Note,
    Operation,
    OperationKind,
    PlanBase,
    PositiveId,
    StrictModel,
    UtcTimestamp,
)

Title = Annotated[str, StringConstraints(min_length=1, max_length=256)]
Description = Annotated[str, StringConstraints(max_length=5000)]
Criterion = Annotated[str, StringConstraints(min_length=1, max_length=500)]
MemberId = Annotated[str, StringConstraints(min_length=1, max_length=128)]
ClientRequestId = Annotated[str, StringConstraints(min_length=8, max_length=128)]


class TaskCreate(Operation):
    kind: ClassVar[OperationKind] = OperationKind.CREATE
    preview_group: ClassVar[str] = "creates"

    title: Title
    description: Description = ""
    priority: TaskPriority = "medium"
    assigned_to_id: Optional[MemberId] = None
    acceptance_criteria: List[Criterion] = Field(default_factory=list, max_length=20)
    order_index: Optional[Annotated[int, Field(ge=0)]] = None
    due_date: Optional[UtcTimestamp] = None
    client_request_id: ClientRequestId

    def references(self) -> List[EntityRef]:
        if self.assigned_to_id is None:
            return []
        return [EntityRef("member", self.assigned_to_id, Access.READ)]

    def domain_fields(self) -> Dict[str, object]:
        return self.model_dump(exclude={"client_request_id"}, exclude_none=True)

    def describe(self) -> str:
        line = f"Create task '{self.title}' ({self.priority})"
        if self.assigned_to_id:
            line += f" assigned to {self.assigned_to_id}"
        return line


class TaskPatch(StrictModel):
    title: Optional[Title] = None
    description: Optional[Description] = None
    priority: Optional[TaskPriority] = None
    assigned_to_id: Optional[MemberId] = None
    due_date: Optional[UtcTimestamp] = None

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class TaskUpdate(Operation):
    kind: ClassVar[OperationKind] = OperationKind.UPDATE
    preview_group: ClassVar[str] = "updates"

    task_id: PositiveId
    patch: TaskPatch
    reason: Optional[Note] = None

    def references(self) -> List[EntityRef]:
        refs = [EntityRef("task", self.task_id, Access.WRITE)]
        if self.patch.assigned_to_id is not None:
            refs.append(EntityRef("member", self.patch.assigned_to_id, Access.READ))
        return refs

    def describe(self) -> str:
        fields = ", ".join(sorted(self.patch.changes())) or "nothing"
        return f"Update task #{self.task_id}: {fields}"


class TaskStatusChange(Operation):
    kind: ClassVar[OperationKind] = OperationKind.STATUS_CHANGE
    preview_group: ClassVar[str] = "statusChanges"

    task_id: PositiveId
    status: TaskStatus
    reason: Optional[Note] = None

    def references(self) -> List[EntityRef]:
        return [EntityRef("task", self.task_id, Access.WRITE)]

    def describe(self) -> str:
        return f"Move task #{self.task_id} to {self.status}"


class TaskDelete(DangerousOperation):
    kind: ClassVar[OperationKind] = OperationKind.DELETE
    preview_group: ClassVar[str] = "deletes"

    task_id: PositiveId

    def references(self) -> List[EntityRef]:
        return [EntityRef("task", self.task_id, Access.WRITE)]

    def describe(self) -> str:
        return f"Delete task #{self.task_id} ({self.reason})"


class TasksDiffPreview(StrictModel):
    creates: List[str] = Field(default_factory=list)
    updates: List[str] = Field(default_factory=list)
    status_changes: List[str] = Field(default_factory=list)
    deletes: List[str] = Field(default_factory=list)


class TaskPlannerPlan(PlanBase):
    """Structured draft for breaking work down into tasks of one project."""

    LIMITS: ClassVar[Dict[str, int]] = {
        "creates": 30,
        "updates": 50,
        "statusChanges": 50,
        "deletes": 10,
        "risks": 10,
        "questionsForUser": 5,
    }
    APPLY_ORDER: ClassVar[tuple[str, ...]] = ("creates", "updates", "statusChanges", "deletes")
    DANGEROUS_PATHS: ClassVar[tuple[str, ...]] = ("deletes",)

    agent_id: Literal["task_planner"]
    creates: List[TaskCreate] = Field(default_factory=list)
    updates: List[TaskUpdate] = Field(default_factory=list)
    status_changes: List[TaskStatusChange] = Field(default_factory=list)
    deletes: List[TaskDelete] = Field(default_factory=list)
    diff_preview: TasksDiffPreview = Field(default_factory=TasksDiffPreview)

    def operation_lists(self) -> Dict[str, List[Operation]]:
        return {
            "creates": list(self.creates),
            "updates": list(self.updates),
            "statusChanges": list(self.status_changes),
            "deletes": list(self.deletes),
        }

    def counts(self) -> Dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "statusChanges": len(self.status_changes),
            "deletes": len(self.deletes),
        }


__all__ = [
    "TaskCreate",
    "TaskDelete",
    "TaskPatch",
    "TaskPlannerPlan",
    "TaskStatusChange",
    "TaskUpdate",
    "TasksDiffPreview",
]
