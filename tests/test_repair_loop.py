from __future__ import annotations

import json

import pytest

from agentgate.agents import get_profile
from agentgate.errors import GenerationFailed
from agentgate.generation import RepairLoop, _slug
from agentgate.models.completion import CompletionTimeout, CompletionTransportError
from conftest import ScriptedClient, as_json, events_plan


@pytest.fixture()
def validator():
    return get_profile("events_publisher").validator()


def test_first_valid_answer_needs_no_repair(compose_prompt, validator) -> None:
    client = ScriptedClient([as_json(events_plan())])

    result = RepairLoop(client).run(compose_prompt(), validator, agent_id="events_publisher")

    assert [op.event_id for op in result.plan.deletes] == [7]
    assert len(client.payloads) == 1
    assert client.payloads[0]["response_format"] == {"type": "json_object"}


def test_rejected_answer_is_repaired_with_the_issues(compose_prompt, validator) -> None:
    fenced = "```json\n" + as_json(events_plan()) + "\n```"
    client = ScriptedClient([fenced, as_json(events_plan())])

    result = RepairLoop(client).run(compose_prompt(), validator, agent_id="events_publisher")

    assert len(result.attempts) == 2
    first, second = client.user_prompts()
    assert "## Repair Request" not in first
    assert "## Repair Request" in second
    assert "Validation stage: parse" in second
    assert "markdown code fences" in second


def test_budget_is_one_call_plus_max_repairs(compose_prompt, validator) -> None:
    client = ScriptedClient(["not json"] * 5)

    with pytest.raises(GenerationFailed) as excinfo:
        RepairLoop(client, max_repairs=2).run(compose_prompt(), validator, agent_id="events_publisher")

    assert len(client.payloads) == 3
    failure = excinfo.value
    assert failure.attempts == 3
    assert failure.last_error.kind == "ValidationError"
    assert failure.details["lastError"]["details"]["stage"] == "parse"


def test_transport_failure_retries_the_same_prompt(compose_prompt, validator) -> None:
    client = ScriptedClient([CompletionTransportError("connection reset"), as_json(events_plan())])

    result = RepairLoop(client).run(compose_prompt(), validator, agent_id="events_publisher")

    first, second = client.user_prompts()
    assert first == second
    assert result.attempts[0].error["kind"] == "GenerationError"


def test_timeouts_exhaust_into_generation_failed(compose_prompt, validator) -> None:
    client = ScriptedClient([CompletionTimeout("timed out")] * 2)

    with pytest.raises(GenerationFailed) as excinfo:
        RepairLoop(client, max_repairs=1).run(compose_prompt(), validator, agent_id="events_publisher")

    assert excinfo.value.last_error.kind == "GenerationError"


def test_zero_repairs_means_a_single_call(compose_prompt, validator) -> None:
    client = ScriptedClient(["{}", as_json(events_plan())])

    with pytest.raises(GenerationFailed):
        RepairLoop(client, max_repairs=0).run(compose_prompt(), validator, agent_id="events_publisher")

    assert len(client.payloads) == 1


def test_each_request_writes_a_generation_log(compose_prompt, validator, tmp_path, clock) -> None:
    client = ScriptedClient(["nope", as_json(events_plan())])
    loop = RepairLoop(client, logs_root=tmp_path, clock=clock)

    loop.run(compose_prompt(), validator, agent_id="events_publisher")

    logs = sorted((tmp_path / "generation").glob("generation__events_publisher__*.json"))
    assert len(logs) == 1
    entry = json.loads(logs[0].read_text(encoding="utf-8"))
    assert entry["agent"] == "events_publisher"
    assert entry["model"] == "scripted-model"
    assert [attempt["raw"] for attempt in entry["attempts"]] == ["nope", as_json(events_plan())]
    assert entry["plan"]["deletes"][0]["eventId"] == 7


def test_unwritable_log_directory_does_not_fail_the_request(compose_prompt, validator, tmp_path) -> None:
    blocker = tmp_path / "blocked"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    client = ScriptedClient([as_json(events_plan())])

    result = RepairLoop(client, logs_root=blocker).run(compose_prompt(), validator, agent_id="events_publisher")

    assert result.plan.summary.startswith("Cancel")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("events_publisher", "events_publisher"),
        ("task planner/v2", "task-planner-v2"),
        ("../../etc", "etc"),
        ("***", "agent"),
    ],
)
def test_log_slug_keeps_agent_ids_readable(value, expected) -> None:
    assert _slug(value, fallback="agent") == expected
