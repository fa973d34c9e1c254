from __future__ import annotations

import json

from agentgate.errors import PlanValidationError
from agentgate.prompts import (
    JSON_RESPONSE_INSTRUCTION,
    render_domain_rules,
    render_repair_request,
)


def test_prompt_embeds_rules_schema_context_and_ids(compose_prompt) -> None:
    prompt = compose_prompt()

    assert "Events Publisher" in prompt.system_prompt
    assert "## Hard Rules\n1. Handle events only" in prompt.system_prompt
    assert '"agentId"' in prompt.system_prompt
    assert JSON_RESPONSE_INSTRUCTION in prompt.system_prompt
    assert "## Valid IDs" in prompt.user_prompt
    assert json.dumps(prompt.visible.as_listing(), sort_keys=True) in prompt.user_prompt
    assert prompt.user_prompt.endswith("rescheduled one")
    assert not prompt.truncated

    roles = [message.role for message in prompt.messages()]
    assert roles == ["system", "user"]


def test_composition_is_deterministic(compose_prompt) -> None:
    first = compose_prompt()
    second = compose_prompt()

    assert first.system_prompt == second.system_prompt
    assert first.user_prompt == second.user_prompt


def test_truncation_drops_comments_first_and_lists_only_kept_ids(compose_prompt) -> None:
    full = compose_prompt()
    budget = len(full.system_prompt) + len(full.user_prompt) - 1

    trimmed = compose_prompt(char_budget=budget)

    assert trimmed.truncated
    assert set(trimmed.omitted) == {"comments"}
    assert len(trimmed.snapshot.events) == 3
    # The oldest event's comments go first.
    assert 70 not in trimmed.visible.comments
    assert 70 not in trimmed.visible.as_listing()["commentIds"]
    assert "## Omitted Context" in trimmed.user_prompt


def test_truncation_is_repeatable(compose_prompt) -> None:
    first = compose_prompt(char_budget=1500)
    second = compose_prompt(char_budget=1500)

    assert first.omitted == second.omitted
    assert first.user_prompt == second.user_prompt


def test_render_domain_rules_skips_blank_lines() -> None:
    assert render_domain_rules(["  first ", "", "second"]) == "## Hard Rules\n1. first\n2. second"
    assert render_domain_rules([]) == ""


def test_repair_request_truncates_long_output() -> None:
    error = PlanValidationError("schema", ["summary: Field required"])

    rendered = render_repair_request(error, "x" * 5000)

    assert "Validation stage: schema" in rendered
    assert "- summary: Field required" in rendered
    assert "x" * 2000 + "..." in rendered
    assert "x" * 2001 not in rendered


def test_with_repair_keeps_the_id_set(compose_prompt) -> None:
    prompt = compose_prompt()
    error = PlanValidationError("reference", ["deletes[0]: event 99 is not in the provided context"])

    repaired = prompt.with_repair(error, "{}")

    assert repaired.visible is prompt.visible
    assert repaired.system_prompt == prompt.system_prompt
    assert repaired.user_prompt.startswith(prompt.user_prompt)
    assert "event 99" in repaired.user_prompt
