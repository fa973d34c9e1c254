"""Re-check, against live workspace state, that a user may still touch what a plan references."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..agents import AgentProfile
from ..errors import Forbidden
from ..plans.base import Access, EntityRef, PlanBase
from ..workspace.interfaces import WorkspaceReader
from ..workspace.schema import Event, Project, Scope

LOGGER = logging.getLogger(__name__)


class PlanAuthorizer:
    """Ownership and visibility can change after a draft is staged; this catches it."""

    def __init__(self, reader: WorkspaceReader) -> None:
        self._reader = reader

    def check(self, user_id: str, profile: AgentProfile, plan: PlanBase, scope: Scope) -> None:
        """Raise :class:`Forbidden` listing every reference the user can no longer act on."""
        events: Dict[int, Optional[Event]] = {}
        project: Optional[Project] = None
        if scope.project_id is not None:
            project = self._reader.get_project(user_id, scope.project_id)

        issues: List[str] = []
        if profile.requires_project and plan.has_operations() and project is None:
            issues.append("the project in scope is not accessible")

        for path, operations in plan.operation_lists().items():
            for index, operation in enumerate(operations):
                for ref in operation.references():
                    issue = self._issue(user_id, ref, scope, project, events)
                    if issue:
                        issues.append(f"{path}[{index}]: {issue}")

        if issues:
            LOGGER.info("Authorization re-check failed for user %s: %s", user_id, "; ".join(issues))
            raise Forbidden(
                "You no longer have access to everything this plan touches.",
                details={"issues": issues},
            )

    def _event(self, user_id: str, event_id: int, cache: Dict[int, Optional[Event]]) -> Optional[Event]:
        if event_id not in cache:
            cache[event_id] = self._reader.get_event(user_id, event_id)
        return cache[event_id]

    def _issue(
        self,
        user_id: str,
        ref: EntityRef,
        scope: Scope,
        project: Optional[Project],
        events: Dict[int, Optional[Event]],
    ) -> Optional[str]:
        if ref.entity == "event":
            event = self._event(user_id, ref.id, events)
            if event is None:
                return f"event {ref.id} no longer exists"
            if ref.access is Access.WRITE and event.created_by_id != user_id:
                return f"event {ref.id} is not owned by you"
            return None
        if ref.entity == "comment":
            event = self._event(user_id, ref.parent, events) if ref.parent is not None else None
            if event is None:
                return f"event {ref.parent} no longer exists"
            comment = next((item for item in event.comments if item.id == ref.id), None)
            if comment is None:
                return f"comment {ref.id} no longer exists"
            if ref.access is Access.MODERATE and user_id not in (comment.author_id, event.created_by_id):
                return f"comment {ref.id} can only be removed by its author or the event owner"
            return None
        if ref.entity == "task":
            task = self._reader.get_task(user_id, ref.id)
            if task is None:
                return f"task {ref.id} no longer exists or is not visible"
            if scope.project_id is not None and task.project_id != scope.project_id:
                return f"task {ref.id} is outside the project in scope"
            return None
        if ref.entity == "member":
            if project is None or not project.is_member(ref.id):
                return f"{ref.id} is not a member of the project in scope"
            return None
        if ref.entity == "project":
            if self._reader.get_project(user_id, ref.id) is None:
                return f"project {ref.id} is not accessible"
            return None
        if ref.entity == "note":
            note = self._reader.get_note(user_id, ref.id)
            if note is None:
                return f"note {ref.id} no longer exists"
            if ref.access is Access.UNLOCK and note.is_locked and not scope.is_unlocked(ref.id):
                return f"note {ref.id} is password-protected and was not unlocked for this request"
            return None
        return f"unsupported reference {ref.label()}"


__all__ = ["PlanAuthorizer"]
