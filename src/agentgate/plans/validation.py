"""Staged validation of raw generator output into a typed plan.

Stages run in a fixed order and the first failing stage rejects the whole
payload: ``parse``, ``schema``, ``reference``, ``cardinality``, ``dangerous``,
``consistency``. Nothing is partially accepted.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import ValidationError

from ..context_builder import EntityIndex
from ..errors import PlanValidationError
from .base import EntityRef, Operation, OperationKind, PlanBase, parse_utc_timestamp
from .events import EventRsvp
from .notes import NotesVaultPlan

LOGGER = logging.getLogger(__name__)

STAGES = ("parse", "schema", "reference", "cardinality", "dangerous", "consistency")

DomainCheck = Callable[[PlanBase, EntityIndex], List[str]]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def parse_strict_json(raw_text: str) -> Dict[str, Any]:
    """Parse ``raw_text`` as exactly one JSON object.

    Unlike a lenient extractor this never strips fences or skips prose: a payload
    wrapped in anything is reported as a parse failure.
    """
    if raw_text is None:
        raise PlanValidationError("parse", ["empty response"])
    text = raw_text.strip()
    if not text:
        raise PlanValidationError("parse", ["empty response"])
    if text.startswith("```"):
        raise PlanValidationError("parse", ["markdown code fences are not allowed; return bare JSON"])
    if not text.startswith("{"):
        raise PlanValidationError(
            "parse", [f"expected a JSON object, found leading text: {text[:40]!r}"]
        )
    decoder = json.JSONDecoder(parse_constant=_reject_constant)
    try:
        data, end = decoder.raw_decode(text)
    except json.JSONDecodeError as error:
        raise PlanValidationError(
            "parse", [f"invalid JSON at line {error.lineno} column {error.colno}: {error.msg}"]
        ) from error
    except ValueError as error:
        raise PlanValidationError("parse", [str(error)]) from error
    trailing = text[end:].strip()
    if trailing:
        raise PlanValidationError(
            "parse", [f"unexpected trailing text after the JSON object: {trailing[:40]!r}"]
        )
    if not isinstance(data, dict):
        raise PlanValidationError("parse", ["top-level JSON value must be an object"])
    return data


def _format_loc(loc: Sequence[Any]) -> str:
    parts: List[str] = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        elif parts:
            parts.append(f".{item}")
        else:
            parts.append(str(item))
    return "".join(parts) or "<root>"


def _list_path(loc: Sequence[Any]) -> str:
    """Dotted path of the list an error location points into (``comments.remove``)."""
    names: List[str] = []
    for item in loc:
        if isinstance(item, int):
            break
        names.append(str(item))
    return ".".join(names)


def _is_dangerous_error(loc: Sequence[Any], dangerous_paths: Sequence[str]) -> bool:
    if not loc:
        return False
    field_name = loc[-1]
    if field_name == "dangerous":
        return True
    return field_name == "reason" and _list_path(loc) in dangerous_paths


def _schema_error(error: ValidationError, dangerous_paths: Sequence[str]) -> PlanValidationError:
    general: List[str] = []
    dangerous: List[str] = []
    for item in error.errors():
        loc = item.get("loc", ())
        line = f"{_format_loc(loc)}: {item.get('msg', 'invalid value')}"
        if _is_dangerous_error(loc, dangerous_paths):
            dangerous.append(line)
        else:
            general.append(line)
    if dangerous and not general:
        return PlanValidationError("dangerous", dangerous)
    return PlanValidationError("schema", general + dangerous)


def _same_value(proposed: Any, current: Any) -> bool:
    if isinstance(current, datetime) and isinstance(proposed, str):
        try:
            return parse_utc_timestamp(proposed) == current
        except ValueError:
            return False
    return proposed == current


def _reference_issue(ref: EntityRef, visible: EntityIndex) -> Optional[str]:
    if ref.entity == "event" and ref.id not in visible.events:
        return f"{ref.label()} is not in the provided context"
    if ref.entity == "comment":
        owner = visible.comments.get(ref.id)
        if owner is None:
            return f"{ref.label()} is not in the provided context"
        if ref.parent is not None and owner != ref.parent:
            return f"comment {ref.id} belongs to event {owner}, not event {ref.parent}"
    if ref.entity == "task" and ref.id not in visible.tasks:
        return f"{ref.label()} is not in the provided context"
    if ref.entity == "project" and ref.id not in visible.projects:
        return f"{ref.label()} is not in the provided context"
    if ref.entity == "member" and ref.id not in visible.member_ids:
        return f"{ref.label()} is not a member of the project in context"
    if ref.entity == "note" and ref.id not in visible.notes:
        return f"{ref.label()} is not in the provided context"
    return None


def check_rsvp_enabled(plan: PlanBase, visible: EntityIndex) -> List[str]:
    """RSVPs are only accepted on events that have RSVP enabled."""
    issues: List[str] = []
    for index, operation in enumerate(plan.operation_lists().get("rsvps", [])):
        if not isinstance(operation, EventRsvp):
            continue
        event = visible.events.get(operation.event_id)
        if event is not None and not event.enable_rsvp:
            issues.append(f"rsvps[{index}]: event {operation.event_id} does not accept RSVPs")
    return issues


def check_note_locks(plan: PlanBase, visible: EntityIndex) -> List[str]:
    """Locked notes change only when unlocked for the request; blocked ids must be real."""
    if not isinstance(plan, NotesVaultPlan):
        return []
    issues: List[str] = []
    changed = {operation.note_id for operation in [*plan.updates, *plan.deletes]}
    for index, item in enumerate(plan.blocked):
        if item.note_id not in visible.notes:
            issues.append(f"blocked[{index}]: note {item.note_id} is not in the provided context")
        elif item.note_id in changed:
            issues.append(f"blocked[{index}]: note {item.note_id} is both blocked and changed")
    for index, operation in enumerate(plan.updates):
        note = visible.notes.get(operation.note_id)
        if note is None:
            continue
        if note.is_locked and not operation.requires_unlocked:
            issues.append(
                f"updates[{index}]: note {operation.note_id} is password-protected; set requiresUnlocked"
            )
        if note.is_locked and note.content is None:
            issues.append(
                f"updates[{index}]: note {operation.note_id} is locked and its content is unavailable; "
                "list it under blocked instead"
            )
        elif note.content is not None and operation.next_content == note.content:
            issues.append(f"updates[{index}]: nextContent repeats the current content of note {operation.note_id}")
    return issues


def check_scoped_project(plan: PlanBase, visible: EntityIndex) -> List[str]:
    """Task operations need a project in scope; without one the plan must only ask."""
    if visible.scoped_project is None and plan.has_operations():
        return ["no project is in scope; ask the user which project to plan for"]
    return []


class PlanValidator:
    """Turn raw generator text into a plan of ``plan_model`` or raise ``PlanValidationError``."""

    def __init__(
        self,
        plan_model: Type[PlanBase],
        *,
        checks: Sequence[DomainCheck] = (),
    ) -> None:
        self._plan_model = plan_model
        self._checks = tuple(checks)

    @property
    def plan_model(self) -> Type[PlanBase]:
        return self._plan_model

    def validate(self, raw_text: str, visible: EntityIndex) -> PlanBase:
        """Run every stage against ``raw_text``.

        ``visible`` must be the id index embedded in the prompt the text answers;
        ids outside it are treated as fabricated.
        """
        parse_strict_json(raw_text)
        try:
            plan = self._plan_model.model_validate_json(raw_text.strip())
        except ValidationError as error:
            raise _schema_error(error, self._plan_model.DANGEROUS_PATHS) from error

        self._check_references(plan, visible)
        self._check_cardinality(plan)
        self._check_dangerous(plan)
        self._check_consistency(plan, visible)
        return self._with_diff_preview(plan)

    # Stages ----------------------------------------------------------------------------
    def _check_references(self, plan: PlanBase, visible: EntityIndex) -> None:
        issues: List[str] = []
        for path, operations in plan.operation_lists().items():
            for index, operation in enumerate(operations):
                for ref in operation.references():
                    issue = _reference_issue(ref, visible)
                    if issue:
                        issues.append(f"{path}[{index}]: {issue}")
        if issues:
            raise PlanValidationError("reference", issues)

    def _check_cardinality(self, plan: PlanBase) -> None:
        issues = [
            f"{path} has {size} item(s); at most {plan.LIMITS[path]} allowed"
            for path, size in plan.list_sizes().items()
            if path in plan.LIMITS and size > plan.LIMITS[path]
        ]
        if issues:
            raise PlanValidationError("cardinality", issues)

    def _check_dangerous(self, plan: PlanBase) -> None:
        issues: List[str] = []
        for path, operations in plan.operation_lists().items():
            for index, operation in enumerate(operations):
                if not operation.destructive:
                    continue
                if getattr(operation, "dangerous", None) is not True:
                    issues.append(f"{path}[{index}]: destructive operation must set dangerous: true")
                reason = getattr(operation, "reason", None)
                if not isinstance(reason, str) or not reason.strip():
                    issues.append(f"{path}[{index}]: destructive operation needs a non-empty reason")
        if issues:
            raise PlanValidationError("dangerous", issues)

    def _check_consistency(self, plan: PlanBase, visible: EntityIndex) -> None:
        issues: List[str] = []
        if plan.questions_for_user and plan.has_operations():
            issues.append("questionsForUser is non-empty, so every operation list must be empty")

        request_ids = Counter(
            getattr(operation, "client_request_id")
            for operation in plan.operation_lists().get("creates", [])
        )
        for request_id, count in sorted(request_ids.items()):
            if count > 1:
                issues.append(f"clientRequestId {request_id!r} is used {count} times")

        for index, operation in enumerate(plan.operation_lists().get("updates", [])):
            if hasattr(operation, "patch"):
                issues.extend(self._patch_issues(index, operation, visible))

        issues.extend(self._conflicting_targets(plan))
        for check in self._checks:
            issues.extend(check(plan, visible))
        if issues:
            raise PlanValidationError("consistency", issues)

    @staticmethod
    def _patch_issues(index: int, operation: Operation, visible: EntityIndex) -> List[str]:
        changes = operation.patch.changes()  # type: ignore[attr-defined]
        if not changes:
            return [f"updates[{index}]: patch must change at least one field"]
        target = operation.references()[0]
        current = visible.events.get(target.id) if target.entity == "event" else visible.tasks.get(target.id)
        if current is None:
            return []
        echoed = sorted(
            name
            for name, value in changes.items()
            if hasattr(current, name) and _same_value(value, getattr(current, name))
        )
        if echoed:
            return [f"updates[{index}]: patch repeats current value(s) for {', '.join(echoed)}"]
        return []

    @staticmethod
    def _conflicting_targets(plan: PlanBase) -> List[str]:
        deleted: Counter[Tuple[str, Any]] = Counter()
        modified: set[Tuple[str, Any]] = set()
        for operation in plan.operations():
            if operation.kind is OperationKind.DELETE:
                for ref in operation.references():
                    deleted[(ref.entity, ref.id)] += 1
            elif operation.kind in (OperationKind.UPDATE, OperationKind.STATUS_CHANGE):
                target = operation.references()[0]
                modified.add((target.entity, target.id))
        issues: List[str] = []
        for (entity, entity_id), count in sorted(deleted.items()):
            if count > 1:
                issues.append(f"{entity} {entity_id} is deleted more than once")
            if (entity, entity_id) in modified:
                issues.append(f"{entity} {entity_id} is both modified and deleted")
        return issues

    # Diff preview ----------------------------------------------------------------------
    @staticmethod
    def _with_diff_preview(plan: PlanBase) -> PlanBase:
        # The reviewed preview must describe the operations, never the generator's wording.
        preview_model = type(plan.diff_preview)  # type: ignore[attr-defined]
        updates: Dict[str, Any] = {
            "plan_hash": None,
            "diff_preview": preview_model.model_validate(plan.derived_diff_preview()),
        }
        return plan.model_copy(update=updates)


__all__ = [
    "DomainCheck",
    "PlanValidator",
    "STAGES",
    "check_note_locks",
    "check_rsvp_enabled",
    "check_scoped_project",
    "parse_strict_json",
]
