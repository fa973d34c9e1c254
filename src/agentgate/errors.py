"""Error taxonomy surfaced by the draft/confirm/apply protocol.

Every error carries a machine-readable ``kind`` (stable across releases, used by
clients to pick a message) plus a human summary and optional structured details.
State-machine violations are never recovered internally; they propagate verbatim
so callers can tell "this plan expired" apart from "this plan was already applied".
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional

__all__ = [
    "AgentError",
    "ApplyFailed",
    "BadRequest",
    "DraftAlreadyConfirmed",
    "DraftExpired",
    "DraftNotFound",
    "DraftRejected",
    "Forbidden",
    "GenerationError",
    "GenerationFailed",
    "PartialApplyError",
    "PlanIncomplete",
    "PlanStaleError",
    "PlanValidationError",
    "TokenAlreadyUsed",
    "TokenInvalid",
    "Unauthorized",
]


class AgentError(RuntimeError):
    """Base class for every error raised by the agent core."""

    kind: ClassVar[str] = "AgentError"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """Return the wire representation used by the CLI and service callers."""
        return {"kind": self.kind, "message": self.message, "details": self.details}


class BadRequest(AgentError):
    kind = "BadRequest"


class Unauthorized(AgentError):
    """No authenticated user is attached to the request."""

    kind = "Unauthorized"


class Forbidden(AgentError):
    """Authorization failed at Confirm/Apply time even though it passed at Draft time."""

    kind = "Forbidden"


class GenerationError(AgentError):
    """Transport failure or timeout while talking to the completion backend."""

    kind = "GenerationError"


class PlanValidationError(AgentError):
    """The generator output failed one of the validation stages."""

    kind = "ValidationError"

    def __init__(self, stage: str, issues: List[str]) -> None:
        cleaned = [issue for issue in issues if issue] or ["unknown validation failure"]
        summary = f"Plan rejected at {stage} stage: {cleaned[0]}"
        if len(cleaned) > 1:
            summary += f" (+{len(cleaned) - 1} more)"
        super().__init__(summary, details={"stage": stage, "issues": cleaned})
        self.stage = stage
        self.issues = cleaned

    def render_for_repair(self) -> str:
        """Format the issues as a bullet list suitable for a repair prompt."""
        body = "\n".join(f"- {issue}" for issue in self.issues)
        return f"Validation stage: {self.stage}\n{body}"


class GenerationFailed(AgentError):
    """Terminal failure after the repair budget was exhausted."""

    kind = "GenerationFailed"

    def __init__(self, message: str, *, attempts: int, last_error: AgentError) -> None:
        super().__init__(
            message,
            details={"attempts": attempts, "lastError": last_error.to_dict()},
        )
        self.attempts = attempts
        self.last_error = last_error


class DraftNotFound(AgentError):
    kind = "DraftNotFound"


class DraftExpired(AgentError):
    kind = "DraftExpired"


class DraftAlreadyConfirmed(AgentError):
    kind = "DraftAlreadyConfirmed"


class DraftRejected(AgentError):
    kind = "DraftRejected"


class PlanIncomplete(AgentError):
    """The staged plan still carries open questions and cannot be confirmed."""

    kind = "PlanIncomplete"


class PlanStaleError(AgentError):
    """The staged plan changed after the confirmation token was minted."""

    kind = "PlanStaleError"


class TokenInvalid(AgentError):
    kind = "TokenInvalid"


class TokenAlreadyUsed(AgentError):
    kind = "TokenAlreadyUsed"


class ApplyFailed(AgentError):
    """A transactional apply failed and was rolled back; nothing was written."""

    kind = "ApplyFailed"


class PartialApplyError(AgentError):
    """A best-effort apply finished with at least one failed operation."""

    kind = "PartialApplyError"

    def __init__(self, message: str, *, outcomes: List[Dict[str, Any]], results: Dict[str, Any]) -> None:
        super().__init__(message, details={"outcomes": outcomes, "results": results})
        self.outcomes = outcomes
        self.results = results
