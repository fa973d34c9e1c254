"""Phase two: a human approves a proposed draft and receives a single-use token."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict

from ..agents import get_profile
from ..errors import (
    DraftAlreadyConfirmed,
    DraftExpired,
    DraftNotFound,
    DraftRejected,
    PlanIncomplete,
    PlanStaleError,
)
from ..plans.hashing import hash_payload
from ..staging.ledger import confirm_key
from ..staging.schema import ConfirmationToken, Draft, DraftStatus
from ..staging.store import DraftStore
from ..workspace.schema import utc_now
from .authorization import PlanAuthorizer

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ConfirmResult:
    """Token plus operation counts; the full plan is not repeated."""

    draft_id: str
    confirmation_token: str
    summary: Dict[str, int]
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draftId": self.draft_id,
            "confirmationToken": self.confirmation_token,
            "summary": dict(self.summary),
            "expiresAt": self.expires_at.isoformat(),
        }


def load_owned_draft(store: DraftStore, user_id: str, draft_id: str) -> Draft:
    """Return the draft or raise ``DraftNotFound``; other users' drafts look absent."""
    draft = store.get_draft(draft_id)
    if draft is None or draft.user_id != user_id:
        raise DraftNotFound(f"Draft {draft_id} was not found.", details={"draftId": draft_id})
    return draft


class ConfirmationGate:
    """Moves ``proposed`` drafts to ``confirmed`` exactly once."""

    def __init__(
        self,
        store: DraftStore,
        authorizer: PlanAuthorizer,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._authorizer = authorizer
        self._clock = clock

    def confirm(self, user_id: str, draft_id: str) -> ConfirmResult:
        draft = load_owned_draft(self._store, user_id, draft_id)
        self._require_proposed(draft)

        now = self._clock()
        if draft.is_expired(now):
            self._store.transition(draft_id, DraftStatus.PROPOSED, DraftStatus.EXPIRED, now=now)
            raise DraftExpired(
                "This plan expired before it was confirmed; ask again.",
                details={"draftId": draft_id, "expiresAt": draft.expires_at.isoformat()},
            )

        if hash_payload(draft.plan) != draft.plan_hash:
            raise PlanStaleError(
                "The staged plan changed after it was drafted; ask again.",
                details={"draftId": draft_id},
            )

        profile = get_profile(draft.agent_id)
        plan = profile.load_plan(draft.plan)
        if plan.questions_for_user:
            raise PlanIncomplete(
                "This plan has open questions and cannot be confirmed.",
                details={"draftId": draft_id, "questions": list(plan.questions_for_user)},
            )
        self._authorizer.check(user_id, profile, plan, draft.scope)

        ledger = self._store.ledger
        guard = confirm_key(draft_id)
        if not ledger.claim(user_id, guard, now=now):
            raise DraftAlreadyConfirmed(
                f"Draft {draft_id} is already being confirmed.", details={"draftId": draft_id}
            )

        token = ConfirmationToken(
            token=secrets.token_urlsafe(32),
            draft_id=draft_id,
            user_id=user_id,
            plan_hash=draft.plan_hash,
            created_at=now,
        )
        try:
            confirmed = self._store.confirm(draft_id, token, now=now)
        except Exception:
            ledger.release(user_id, guard)
            LOGGER.warning("Confirmation of %s failed; released its guard", draft_id)
            raise
        if not confirmed:
            ledger.release(user_id, guard)
            current = load_owned_draft(self._store, user_id, draft_id)
            self._require_proposed(current)
            raise DraftAlreadyConfirmed(
                f"Draft {draft_id} changed state during confirmation.", details={"draftId": draft_id}
            )

        return ConfirmResult(
            draft_id=draft_id,
            confirmation_token=token.token,
            summary=plan.counts(),
            expires_at=draft.expires_at,
        )

    @staticmethod
    def _require_proposed(draft: Draft) -> None:
        status = draft.status
        details = {"draftId": draft.draft_id, "status": status.value}
        if status is DraftStatus.REJECTED:
            raise DraftRejected(f"Draft {draft.draft_id} was rejected.", details=details)
        if status is DraftStatus.EXPIRED:
            raise DraftExpired("This plan expired; ask again.", details=details)
        if status in (DraftStatus.CONFIRMED, DraftStatus.APPLYING, DraftStatus.APPLIED):
            raise DraftAlreadyConfirmed(f"Draft {draft.draft_id} was already confirmed.", details=details)


__all__ = ["ConfirmResult", "ConfirmationGate", "load_owned_draft"]
