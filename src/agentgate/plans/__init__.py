"""Typed plan schemas, hashing, and validation for each agent domain."""

from .base import Access, DangerousOperation, EntityRef, Operation, OperationKind, PlanBase
from .events import EventsPublisherPlan
from .hashing import canonical_json, plan_hash
from .notes import NotesVaultPlan
from .tasks import TaskPlannerPlan
from .validation import PlanValidator, parse_strict_json

__all__ = [
    "Access",
    "DangerousOperation",
    "EntityRef",
    "EventsPublisherPlan",
    "NotesVaultPlan",
    "Operation",
    "OperationKind",
    "PlanBase",
    "PlanValidator",
    "TaskPlannerPlan",
    "canonical_json",
    "parse_strict_json",
    "plan_hash",
]
