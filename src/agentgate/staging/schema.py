"""Typed records for staged drafts and the tokens that confirm them."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from ..workspace.schema import RecordModel, Scope, utc_now


class DraftStatus(str, Enum):
    """Lifecycle states for a staged draft."""

    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    APPLYING = "applying"
    APPLIED = "applied"
    EXPIRED = "expired"
    REJECTED = "rejected"

    @property
    def is_open(self) -> bool:
        return self in (DraftStatus.PROPOSED, DraftStatus.CONFIRMED)


class Draft(RecordModel):
    """A validated plan awaiting a human decision.

    ``plan`` holds the canonical wire payload; ``plan_hash`` is the hash computed
    when the draft was staged.
    """

    draft_id: str
    user_id: str
    agent_id: str
    scope: Scope = Field(default_factory=Scope)
    message: str = ""
    plan: Dict[str, Any]
    plan_hash: str
    status: DraftStatus = DraftStatus.PROPOSED
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    updated_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    results: Optional[Dict[str, Any]] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ConfirmationToken(RecordModel):
    """Single-use credential bound to one user, one draft and one plan hash."""

    token: str
    draft_id: str
    user_id: str
    plan_hash: str
    created_at: datetime = Field(default_factory=utc_now)
    consumed_at: Optional[datetime] = None

    @property
    def consumed(self) -> bool:
        return self.consumed_at is not None


__all__ = ["ConfirmationToken", "Draft", "DraftStatus"]
