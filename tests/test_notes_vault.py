from __future__ import annotations

import pytest

from agentgate.agents import get_profile
from agentgate.context_builder import ContextBuilder
from agentgate.errors import Forbidden, GenerationError, PlanValidationError
from agentgate.fallback import build_fallback_answer
from agentgate.plans.notes import NotesVaultPlan
from agentgate.protocol.apply import ApplyExecutor
from agentgate.protocol.confirm import ConfirmationGate
from agentgate.workspace.interfaces import WorkspaceError
from agentgate.workspace.schema import Scope
from conftest import USER, as_json, notes_plan

UNLOCKED = Scope(unlocked_note_ids=[52])

LOCKER_UPDATE = {"noteId": 52, "nextContent": "Locker code is 1379", "requiresUnlocked": True}


def _visible(compose_prompt, scope=None):
    return compose_prompt("notes_vault", scope=scope, message="tidy up my notes").visible


def _rejection(payload, visible) -> PlanValidationError:
    with pytest.raises(PlanValidationError) as excinfo:
        get_profile("notes_vault").validator().validate(as_json(payload), visible)
    return excinfo.value


@pytest.fixture()
def gate(store, authorizer, clock) -> ConfirmationGate:
    return ConfirmationGate(store, authorizer, clock=clock)


@pytest.fixture()
def executor(store, workspace, authorizer, clock) -> ApplyExecutor:
    return ApplyExecutor(store, workspace, authorizer, clock=clock)


def test_context_lists_only_the_users_notes(compose_prompt) -> None:
    visible = _visible(compose_prompt)

    assert sorted(visible.notes) == [51, 52, 53]
    assert visible.as_listing()["noteIds"] == [51, 52, 53]


def test_locked_note_content_is_hidden_unless_unlocked(compose_prompt) -> None:
    hidden = _visible(compose_prompt)
    unlocked = _visible(compose_prompt, scope=UNLOCKED)

    assert hidden.notes[52].is_locked
    assert hidden.notes[52].content is None
    assert hidden.notes[51].content == "Groceries: eggs, milk"
    assert unlocked.notes[52].content == "Locker code is 4821"


def test_locked_content_never_reaches_the_prompt(compose_prompt) -> None:
    assert "4821" not in compose_prompt("notes_vault").user_prompt


def test_valid_notes_plan_is_accepted(compose_prompt) -> None:
    plan = get_profile("notes_vault").validator().validate(as_json(notes_plan()), _visible(compose_prompt))

    assert isinstance(plan, NotesVaultPlan)
    assert plan.diff_preview.updates == ["Rewrite note #51: Groceries: eggs, milk, bread"]
    assert plan.diff_preview.deletes == ["Delete note #53 (The user picked the park.)"]
    assert plan.counts() == {"creates": 0, "updates": 1, "deletes": 1, "blocked": 0}


def test_other_users_note_is_an_unknown_reference(compose_prompt) -> None:
    payload = notes_plan(deletes=[{"noteId": 61, "reason": "Clean up", "dangerous": True}])

    error = _rejection(payload, _visible(compose_prompt))

    assert error.stage == "reference"
    assert "61" in error.issues[0]


def test_note_delete_must_be_marked_dangerous(compose_prompt) -> None:
    payload = notes_plan(deletes=[{"noteId": 53, "reason": "The user picked the park."}])

    assert _rejection(payload, _visible(compose_prompt)).stage == "dangerous"


def test_locked_note_update_needs_requires_unlocked(compose_prompt) -> None:
    update = dict(LOCKER_UPDATE, requiresUnlocked=False)

    error = _rejection(notes_plan(updates=[update], deletes=[]), _visible(compose_prompt, scope=UNLOCKED))

    assert error.stage == "consistency"
    assert error.issues == ["updates[0]: note 52 is password-protected; set requiresUnlocked"]


def test_locked_note_without_content_must_be_blocked(compose_prompt) -> None:
    error = _rejection(notes_plan(updates=[LOCKER_UPDATE], deletes=[]), _visible(compose_prompt))

    assert error.stage == "consistency"
    assert "list it under blocked instead" in error.issues[0]


def test_blocked_notes_must_be_visible_and_untouched(compose_prompt) -> None:
    payload = notes_plan(
        blocked=[
            {"noteId": 61, "reason": "Not mine"},
            {"noteId": 51, "reason": "Locked"},
        ]
    )

    error = _rejection(payload, _visible(compose_prompt))

    assert error.stage == "consistency"
    assert error.issues == [
        "blocked[0]: note 61 is not in the provided context",
        "blocked[1]: note 51 is both blocked and changed",
    ]


def test_update_must_change_the_content(compose_prompt) -> None:
    update = {"noteId": 51, "nextContent": "Groceries: eggs, milk", "requiresUnlocked": False}

    error = _rejection(notes_plan(updates=[update]), _visible(compose_prompt))

    assert error.issues == ["updates[0]: nextContent repeats the current content of note 51"]


def test_blocked_list_has_a_cap(compose_prompt) -> None:
    payload = notes_plan(blocked=[{"noteId": 52, "reason": "Locked"}] * 51)

    assert _rejection(payload, _visible(compose_prompt)).stage == "cardinality"


def test_notes_plan_applies_end_to_end(stage_plan, gate, executor, workspace) -> None:
    payload = notes_plan(
        creates=[{"content": "Call the venue on Monday", "clientRequestId": "venue-call"}],
        blocked=[{"noteId": 52, "reason": "The locker note is password-protected."}],
    )
    draft = stage_plan(payload)

    confirmation = gate.confirm(USER, draft.draft_id)
    result = executor.apply(USER, draft.draft_id, confirmation.confirmation_token)

    assert confirmation.summary == {"creates": 1, "updates": 1, "deletes": 1, "blocked": 1}
    assert result.results == {
        "createdNoteIds": [62],
        "updatedNoteIds": [51],
        "deletedNoteIds": [53],
        "blockedNoteIds": [52],
    }
    assert workspace.get_note(USER, 62).content == "Call the venue on Monday"
    assert workspace.get_note(USER, 51).content == "Groceries: eggs, milk, bread"
    assert workspace.get_note(USER, 53) is None
    assert workspace.get_note(USER, 52).content == "Locker code is 4821"


def test_unlocked_note_can_be_rewritten(stage_plan, gate, executor, workspace) -> None:
    draft = stage_plan(notes_plan(updates=[LOCKER_UPDATE], deletes=[]), scope=UNLOCKED)

    token = gate.confirm(USER, draft.draft_id).confirmation_token
    result = executor.apply(USER, draft.draft_id, token)

    assert draft.scope.unlocked_note_ids == [52]
    assert result.results["updatedNoteIds"] == [52]
    assert workspace.get_note(USER, 52).content == "Locker code is 1379"


def test_authorizer_refuses_an_unlock_the_request_did_not_grant(compose_prompt, authorizer) -> None:
    profile = get_profile("notes_vault")
    payload = notes_plan(updates=[LOCKER_UPDATE], deletes=[])
    plan = profile.validator().validate(as_json(payload), _visible(compose_prompt, scope=UNLOCKED))

    with pytest.raises(Forbidden) as excinfo:
        authorizer.check(USER, profile, plan, Scope())

    assert excinfo.value.details["issues"] == [
        "updates[0]: note 52 is password-protected and was not unlocked for this request"
    ]
    authorizer.check(USER, profile, plan, UNLOCKED)


def test_writer_refuses_locked_update_without_unlock(workspace) -> None:
    with pytest.raises(WorkspaceError):
        workspace.update_note(USER, 52, "Locker code is 0000")

    workspace.update_note(USER, 52, "Locker code is 0000", unlocked=True)
    assert workspace.get_note(USER, 52).content == "Locker code is 0000"


def test_notes_of_other_users_are_not_writable(workspace) -> None:
    assert workspace.get_note(USER, 61) is None
    with pytest.raises(WorkspaceError):
        workspace.delete_note(USER, 61)


def test_fallback_lists_notes_without_locked_content(workspace, clock) -> None:
    snapshot = ContextBuilder(workspace, clock=clock).build(USER, collections=("notes",))

    answer = build_fallback_answer(snapshot, GenerationError("backend unavailable"))

    assert answer.details == [
        "Note #53 'Venue shortlist: park, library' (shared_read)",
        "Note #52 (password-protected, private)",
        "Note #51 'Groceries: eggs, milk' (private)",
    ]
