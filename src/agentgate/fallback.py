"""Deterministic answer built from context alone when generation fails.

The answer only restates records already in the snapshot. It never stages a
draft and never carries an operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .context_builder import ContextSnapshot
from .errors import AgentError

MAX_DETAIL_LINES = 10


@dataclass(slots=True)
class AnswerResult:
    """Read-only reply returned instead of a draft."""

    summary: str
    details: List[str] = field(default_factory=list)
    error: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "answer", "summary": self.summary, "details": list(self.details), "error": self.error}


def _event_lines(snapshot: ContextSnapshot) -> List[str]:
    lines = []
    for event in snapshot.events:
        owner = "yours" if event.is_owner else "public"
        lines.append(
            f"Event #{event.id} '{event.title}' on {event.event_date.date().isoformat()} in {event.region} "
            f"({owner}, {event.like_count} like(s), {event.comment_count} comment(s))"
        )
    return lines


def _task_lines(snapshot: ContextSnapshot) -> List[str]:
    lines = []
    for task in snapshot.tasks:
        assignee = f", assigned to {task.assigned_to_id}" if task.assigned_to_id else ""
        lines.append(f"Task #{task.id} '{task.title}' [{task.status}, {task.priority}{assignee}]")
    return lines


def _project_lines(snapshot: ContextSnapshot) -> List[str]:
    return [f"Project #{project.id} '{project.title}' ({project.status})" for project in snapshot.projects]


def _note_lines(snapshot: ContextSnapshot) -> List[str]:
    lines = []
    for note in snapshot.notes:
        if note.content is None:
            lines.append(f"Note #{note.id} (password-protected, {note.share_status})")
        else:
            first_line = note.content.strip().splitlines()[0] if note.content.strip() else ""
            lines.append(f"Note #{note.id} '{first_line[:60]}' ({note.share_status})")
    return lines


def build_fallback_answer(snapshot: ContextSnapshot, failure: AgentError) -> AnswerResult:
    """Summarize what the user can see; identical snapshots give identical answers."""
    lines = _event_lines(snapshot) + _task_lines(snapshot) + _project_lines(snapshot) + _note_lines(snapshot)
    unread = sum(1 for item in snapshot.notifications if not item.read)
    if snapshot.notifications:
        lines.append(f"{unread} unread of {len(snapshot.notifications)} recent notification(s)")

    scope = ""
    if snapshot.project is not None:
        scope = f" in project '{snapshot.project.title}'"
    if not lines:
        summary = (
            f"I could not prepare a reliable plan, so nothing was staged. "
            f"No records are visible{scope} for this request."
        )
    else:
        summary = (
            f"I could not prepare a reliable plan, so nothing was staged. "
            f"Here is what I can see{scope}; try rephrasing the request."
        )
    details = lines[:MAX_DETAIL_LINES]
    if len(lines) > MAX_DETAIL_LINES:
        details.append(f"... and {len(lines) - MAX_DETAIL_LINES} more")
    return AnswerResult(summary=summary, details=details, error=failure.to_dict())


__all__ = ["AnswerResult", "build_fallback_answer"]
