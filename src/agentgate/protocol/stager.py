"""Phase one: stage a validated plan as an inert, expiring draft."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..plans.base import PlanBase
from ..plans.hashing import hash_payload
from ..staging.schema import Draft, DraftStatus
from ..staging.store import DraftStore
from ..workspace.schema import Scope, utc_now

LOGGER = logging.getLogger(__name__)


def new_draft_id() -> str:
    return f"draft_{uuid.uuid4().hex}"


class PlanStager:
    """Persist plans as ``proposed`` drafts. Staging performs no domain writes."""

    def __init__(
        self,
        store: DraftStore,
        *,
        ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def stage(
        self,
        user_id: str,
        agent_id: str,
        plan: PlanBase,
        *,
        scope: Optional[Scope] = None,
        message: str = "",
    ) -> Draft:
        payload = plan.canonical_payload()
        now = self._clock()
        draft = Draft(
            draft_id=new_draft_id(),
            user_id=user_id,
            agent_id=agent_id,
            scope=scope or Scope(),
            message=message,
            plan=payload,
            plan_hash=hash_payload(payload),
            status=DraftStatus.PROPOSED,
            created_at=now,
            updated_at=now,
            expires_at=now + self._ttl,
        )
        self._store.create_draft(draft)
        LOGGER.info(
            "Staged draft %s for user %s (%s, %d operation(s))",
            draft.draft_id,
            user_id,
            agent_id,
            len(plan.operations()),
        )
        return draft


__all__ = ["PlanStager", "new_draft_id"]
