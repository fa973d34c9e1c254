"""Phase three: execute a confirmed draft exactly once."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, NoReturn, Optional, Tuple

from ..agents import AgentProfile, ApplyTarget, get_profile
from ..errors import (
    ApplyFailed,
    DraftExpired,
    DraftRejected,
    PartialApplyError,
    PlanStaleError,
    TokenAlreadyUsed,
    TokenInvalid,
)
from ..plans.base import Operation, OperationKind
from ..plans.hashing import hash_payload
from ..staging.ledger import create_key, decode_created, encode_created
from ..staging.schema import ConfirmationToken, Draft, DraftStatus
from ..staging.store import DraftStore
from ..workspace.interfaces import WorkspaceWriter
from ..workspace.schema import utc_now
from .authorization import PlanAuthorizer
from .confirm import load_owned_draft

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class OperationOutcome:
    """What happened to one operation during apply."""

    index: int
    kind: str
    description: str
    ok: bool
    entity_id: Optional[int] = None
    reused: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "kind": self.kind,
            "description": self.description,
            "ok": self.ok,
        }
        if self.entity_id is not None:
            payload["entityId"] = self.entity_id
        if self.reused:
            payload["reused"] = True
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class ApplyResult:
    """Successful apply. A failure is always an exception, so ``applied`` is always true."""

    draft_id: str
    results: Dict[str, Any]
    outcomes: List[OperationOutcome] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"applied": True, "draftId": self.draft_id, "results": self.results}


class _Run:
    """Mutable bookkeeping for one apply call."""

    def __init__(self, profile: AgentProfile, now: datetime) -> None:
        self.now = now
        self.results: Dict[str, Any] = profile.empty_results()
        self.outcomes: List[OperationOutcome] = []
        self.pending_keys: List[Tuple[str, str]] = []

    def record(self, key: str, collect: str, entity_id: Optional[int]) -> None:
        if collect == "id":
            self.results[key].append(entity_id)
        else:
            self.results[key] += 1


class ApplyExecutor:
    """Consume a confirmation token and run the plan's operations in apply order.

    With a transactional writer the whole plan commits or nothing does. With a
    writer that cannot span a transaction, every operation is attempted in order
    and the per-operation outcomes are reported explicitly.
    """

    def __init__(
        self,
        store: DraftStore,
        writer: WorkspaceWriter,
        authorizer: PlanAuthorizer,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._writer = writer
        self._authorizer = authorizer
        self._clock = clock

    def apply(self, user_id: str, draft_id: str, confirmation_token: str) -> ApplyResult:
        draft = load_owned_draft(self._store, user_id, draft_id)
        token = self._check_preconditions(user_id, draft, confirmation_token)

        profile = get_profile(draft.agent_id)
        plan = profile.load_plan(draft.plan)
        self._authorizer.check(user_id, profile, plan, draft.scope)

        now = self._clock()
        if not self._store.consume_token(token.token, now=now):
            raise TokenAlreadyUsed(
                "This confirmation was already used.", details={"draftId": draft_id}
            )
        # While applying, neither reject nor sweep can close the draft underneath us.
        if not self._store.transition(draft_id, DraftStatus.CONFIRMED, DraftStatus.APPLYING, now=now):
            self._store.release_token(token.token)
            self._raise_closed(load_owned_draft(self._store, user_id, draft_id))

        target = ApplyTarget(user_id=user_id, project_id=draft.scope.project_id)
        operations = plan.operations()
        if getattr(self._writer, "supports_transactions", False):
            run = self._apply_atomic(profile, target, draft, token, operations)
        else:
            run = self._apply_best_effort(profile, target, operations)
        run.results.update(plan.extra_results())

        finished = self._clock()
        if not self._store.mark_applied(draft_id, run.results, now=finished):
            LOGGER.error("Draft %s left the applying state before it was marked applied", draft_id)

        failures = [outcome for outcome in run.outcomes if not outcome.ok]
        if failures:
            raise PartialApplyError(
                f"{len(failures)} of {len(operations)} operation(s) failed; the rest were applied.",
                outcomes=[outcome.to_dict() for outcome in run.outcomes],
                results=run.results,
            )
        LOGGER.info("Applied draft %s: %d operation(s)", draft_id, len(operations))
        return ApplyResult(draft_id=draft_id, results=run.results, outcomes=run.outcomes)

    def _check_preconditions(self, user_id: str, draft: Draft, presented: str) -> ConfirmationToken:
        details = {"draftId": draft.draft_id, "status": draft.status.value}
        if draft.status is DraftStatus.REJECTED:
            raise DraftRejected(f"Draft {draft.draft_id} was rejected.", details=details)
        if draft.status is DraftStatus.EXPIRED:
            raise DraftExpired("This plan expired; ask again.", details=details)
        if draft.status is DraftStatus.PROPOSED:
            raise TokenInvalid("This plan has not been confirmed yet.", details=details)

        token = self._store.get_token(presented) if presented else None
        if token is None or token.draft_id != draft.draft_id or token.user_id != user_id:
            raise TokenInvalid("The confirmation token is not valid for this plan.", details=details)
        if draft.status in (DraftStatus.APPLYING, DraftStatus.APPLIED) or token.consumed:
            raise TokenAlreadyUsed("This confirmation was already used.", details=details)

        now = self._clock()
        if draft.is_expired(now):
            self._store.transition(draft.draft_id, DraftStatus.CONFIRMED, DraftStatus.EXPIRED, now=now)
            raise DraftExpired("This plan expired before it was applied; ask again.", details=details)

        current_hash = hash_payload(draft.plan)
        if current_hash != token.plan_hash:
            raise PlanStaleError(
                "The plan changed after it was confirmed; confirm it again.",
                details={"draftId": draft.draft_id, "confirmedHash": token.plan_hash, "currentHash": current_hash},
            )
        return token

    @staticmethod
    def _raise_closed(draft: Draft) -> NoReturn:
        """The draft left ``confirmed`` between the checks and the start of apply."""
        details = {"draftId": draft.draft_id, "status": draft.status.value}
        if draft.status is DraftStatus.REJECTED:
            raise DraftRejected(f"Draft {draft.draft_id} was rejected.", details=details)
        if draft.status is DraftStatus.EXPIRED:
            raise DraftExpired("This plan expired before it was applied; ask again.", details=details)
        raise TokenAlreadyUsed("This confirmation was already used.", details=details)

    def _run_operation(
        self,
        profile: AgentProfile,
        target: ApplyTarget,
        run: _Run,
        index: int,
        operation: Operation,
        *,
        defer_ledger: bool,
    ) -> None:
        handler = profile.handler_for(operation)
        request_id = getattr(operation, "client_request_id", None)
        key = create_key(profile.agent_id, request_id) if operation.kind is OperationKind.CREATE and request_id else None

        fingerprint = _create_fingerprint(operation) if key else ""
        previous = decode_created(self._store.ledger.lookup(target.user_id, key, now=run.now)) if key else None
        reused = previous is not None and previous[1] == fingerprint
        if previous is not None and reused:
            entity_id: Optional[int] = previous[0]
            LOGGER.info("Create %s already applied as %s; reusing it", key, entity_id)
        else:
            if previous is not None:
                LOGGER.warning("Create %s was recorded with different fields; creating a new entity", key)
            entity_id = handler.run(self._writer, target, operation)
            if key and entity_id is not None:
                value = encode_created(entity_id, fingerprint)
                if defer_ledger:
                    run.pending_keys.append((key, value))
                else:
                    self._store.ledger.record(target.user_id, key, value, now=run.now)

        run.record(handler.result_key, handler.collect, entity_id)
        run.outcomes.append(
            OperationOutcome(
                index=index,
                kind=operation.kind.value,
                description=operation.describe(),
                ok=True,
                entity_id=entity_id,
                reused=reused,
            )
        )

    def _apply_atomic(
        self,
        profile: AgentProfile,
        target: ApplyTarget,
        draft: Draft,
        token: ConfirmationToken,
        operations: List[Operation],
    ) -> _Run:
        run = _Run(profile, self._clock())
        index = 0
        try:
            with self._writer.transaction():
                for index, operation in enumerate(operations):
                    self._run_operation(profile, target, run, index, operation, defer_ledger=True)
        except Exception as error:
            self._store.transition(draft.draft_id, DraftStatus.APPLYING, DraftStatus.CONFIRMED, now=self._clock())
            self._store.release_token(token.token)
            failed = operations[index].describe() if operations else ""
            LOGGER.warning("Apply of draft %s rolled back at operation %d: %s", draft.draft_id, index, error)
            raise ApplyFailed(
                f"Operation {index} failed ({failed}); nothing was applied.",
                details={"draftId": draft.draft_id, "failedIndex": index, "error": str(error)},
            ) from error

        for key, value in run.pending_keys:
            self._store.ledger.record(target.user_id, key, value, now=run.now)
        return run

    def _apply_best_effort(
        self,
        profile: AgentProfile,
        target: ApplyTarget,
        operations: List[Operation],
    ) -> _Run:
        run = _Run(profile, self._clock())
        for index, operation in enumerate(operations):
            try:
                self._run_operation(profile, target, run, index, operation, defer_ledger=False)
            except Exception as error:
                LOGGER.warning("Operation %d (%s) failed: %s", index, operation.describe(), error)
                run.outcomes.append(
                    OperationOutcome(
                        index=index,
                        kind=operation.kind.value,
                        description=operation.describe(),
                        ok=False,
                        error=str(error),
                    )
                )
        return run


def _create_fingerprint(operation: Operation) -> str:
    """Hash of the fields a create was requested with, apart from its request id."""
    fields = operation.model_dump(mode="json", by_alias=True, exclude={"client_request_id"})
    return hash_payload(fields)


__all__ = ["ApplyExecutor", "ApplyResult", "OperationOutcome"]
