from __future__ import annotations

import pytest

from agentgate.context_builder import ContextBuilder
from agentgate.errors import Unauthorized
from agentgate.workspace.schema import Scope
from conftest import OTHER_USER, USER


def test_snapshot_is_scoped_to_the_requesting_user(workspace, clock) -> None:
    snapshot = ContextBuilder(workspace, clock=clock).build(USER)

    assert [event.id for event in snapshot.events] == [12, 9, 7]
    assert [item.id for item in snapshot.notifications] == [1]
    assert [project.id for project in snapshot.projects] == [3]
    assert snapshot.tasks == []
    assert snapshot.generated_at == clock.now

    friday = next(event for event in snapshot.events if event.id == 7)
    assert friday.is_owner
    assert friday.comments[0].is_mine is False


def test_tasks_require_a_project_scope(workspace, clock) -> None:
    builder = ContextBuilder(workspace, clock=clock)

    scoped = builder.build(USER, Scope(project_id=3), collections=("tasks",))

    assert scoped.project is not None and scoped.project.member_ids == [USER, OTHER_USER]
    assert [task.id for task in scoped.tasks] == [32, 31]
    assert scoped.events == []


def test_inaccessible_project_yields_an_empty_snapshot(workspace, clock) -> None:
    snapshot = ContextBuilder(workspace, clock=clock).build(USER, Scope(project_id=4))

    assert snapshot.project is None
    assert snapshot.tasks == []


def test_total_records_never_exceed_max(workspace, clock) -> None:
    builder = ContextBuilder(workspace, max_records=2, clock=clock)

    snapshot = builder.build(USER)

    assert snapshot.record_count() == 2
    assert [project.id for project in snapshot.projects] == [3]
    assert [item.id for item in snapshot.notifications] == [1]
    assert snapshot.events == []


def test_per_collection_limits_apply(workspace, clock) -> None:
    builder = ContextBuilder(workspace, limits={"events": 1}, clock=clock)

    snapshot = builder.build(USER, collections=("events",))

    assert [event.id for event in snapshot.events] == [12]


def test_missing_user_is_unauthorized(workspace) -> None:
    with pytest.raises(Unauthorized):
        ContextBuilder(workspace).build(None)


def test_unknown_collection_is_rejected(workspace) -> None:
    with pytest.raises(ValueError):
        ContextBuilder(workspace).build(USER, collections=("secrets",))


def test_entity_index_lists_visible_ids(workspace, clock) -> None:
    snapshot = ContextBuilder(workspace, clock=clock).build(USER, Scope(project_id=3))

    listing = snapshot.entity_index().as_listing()

    assert listing["eventIds"] == [7, 9, 12]
    assert listing["commentIds"] == [70, 120, 121]
    assert listing["taskIds"] == [31, 32]
    assert listing["projectIds"] == [3]
    assert listing["memberIds"] == [USER, OTHER_USER]


def test_from_config_reads_limits(workspace) -> None:
    config = {"context": {"max_records": 5, "limits": {"events": 2}}}

    builder = ContextBuilder.from_config(workspace, config)
    snapshot = builder.build(USER, collections=("events",))

    assert builder.max_records == 5
    assert len(snapshot.events) == 2
