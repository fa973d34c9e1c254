"""Prompt templates and the pure composer that turns a snapshot into chat messages."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .context_builder import ContextSnapshot, EntityIndex
from .errors import PlanValidationError
from .models.completion import ChatMessage

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the output schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings, and do not add keys the schema does not define."
)

DRAFT_MODE_BRIEF = (
    "You are in DRAFT mode. Produce a plan for human review; nothing is written until "
    "the user confirms it and the application applies it."
)

# Collections are trimmed in this order, one record at a time, from the end of
# each list (least recent first) when the prompt exceeds its budget.
TRIM_ORDER = ("notifications", "projects", "tasks", "notes", "events")
MAX_REPAIR_ECHO_CHARS = 2_000


def render_domain_rules(rules: Sequence[str]) -> str:
    """Format domain rules as a numbered list block."""
    lines = [rule.strip() for rule in rules if rule.strip()]
    if not lines:
        return ""
    body = "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))
    return f"## Hard Rules\n{body}"


def render_valid_ids(visible: EntityIndex) -> str:
    listing = json.dumps(visible.as_listing(), sort_keys=True)
    return (
        "## Valid IDs\n"
        "These are the only ids that exist for this request. Any other id is invalid.\n"
        f"{listing}"
    )


def render_repair_request(error: PlanValidationError, previous_output: str) -> str:
    """Follow-up instruction appended to the prompt after a rejected attempt."""
    echoed = previous_output if len(previous_output) <= MAX_REPAIR_ECHO_CHARS else (
        previous_output[:MAX_REPAIR_ECHO_CHARS] + "..."
    )
    return (
        "## Repair Request\n"
        "Your previous response was rejected.\n"
        f"{error.render_for_repair()}\n\n"
        "Previous response:\n"
        f"{echoed}\n\n"
        "Return a corrected JSON object that fixes every issue above. "
        f"{JSON_RESPONSE_INSTRUCTION}"
    )


@dataclass(slots=True)
class ComposedPrompt:
    """System and user prompts plus the id set the validator must check against."""

    system_prompt: str
    user_prompt: str
    snapshot: ContextSnapshot
    visible: EntityIndex
    truncated: bool = False
    omitted: Dict[str, int] = field(default_factory=dict)

    def messages(self) -> List[ChatMessage]:
        return [
            ChatMessage("system", self.system_prompt),
            ChatMessage("user", self.user_prompt),
        ]

    def with_repair(self, error: PlanValidationError, previous_output: str) -> "ComposedPrompt":
        """Return a copy whose user prompt carries the repair request."""
        return ComposedPrompt(
            system_prompt=self.system_prompt,
            user_prompt=f"{self.user_prompt}\n\n{render_repair_request(error, previous_output)}",
            snapshot=self.snapshot,
            visible=self.visible,
            truncated=self.truncated,
            omitted=dict(self.omitted),
        )


class PromptComposer:
    """Pure function object: identical inputs always produce identical prompts.

    When the rendered prompt exceeds ``char_budget`` the snapshot is trimmed in a
    fixed order (comments first, then whole records following ``TRIM_ORDER``) so
    the same input always loses the same records. The id listing is taken from the
    trimmed snapshot, never from the original.
    """

    DEFAULT_CHAR_BUDGET = 24_000

    def __init__(self, *, char_budget: int | None = None) -> None:
        self._char_budget = char_budget or self.DEFAULT_CHAR_BUDGET

    @property
    def char_budget(self) -> int:
        return self._char_budget

    def compose(
        self,
        snapshot: ContextSnapshot,
        *,
        agent_title: str,
        domain_rules: Sequence[str],
        output_schema: str,
        message: str,
    ) -> ComposedPrompt:
        system_prompt = self._render_system(agent_title, domain_rules, output_schema)
        working = snapshot.model_copy(deep=True)
        omitted: Dict[str, int] = {}
        user_prompt = self._render_user(working, message, omitted)

        while len(system_prompt) + len(user_prompt) > self._char_budget:
            if not self._trim_once(working, omitted):
                break
            user_prompt = self._render_user(working, message, omitted)

        return ComposedPrompt(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            snapshot=working,
            visible=working.entity_index(),
            truncated=bool(omitted),
            omitted=omitted,
        )

    @staticmethod
    def _render_system(agent_title: str, domain_rules: Sequence[str], output_schema: str) -> str:
        sections = [
            f"You are the {agent_title} agent of a shared workspace.",
            DRAFT_MODE_BRIEF,
            render_domain_rules(domain_rules),
            f"## Output Schema\n{output_schema}",
            JSON_RESPONSE_INSTRUCTION,
        ]
        return "\n\n".join(section for section in sections if section)

    @staticmethod
    def _render_user(snapshot: ContextSnapshot, message: str, omitted: Dict[str, int]) -> str:
        context = snapshot.model_dump(mode="json", by_alias=True)
        sections = [
            "## Current Context\n" + json.dumps(context, indent=2, sort_keys=True, ensure_ascii=False),
            render_valid_ids(snapshot.entity_index()),
        ]
        if omitted:
            detail = ", ".join(f"{name}: {count}" for name, count in sorted(omitted.items()))
            sections.append(
                "## Omitted Context\n"
                f"Some records were left out to fit the prompt ({detail}). "
                "Do not reference records that are not listed."
            )
        sections.append(f"## User Request\n{message.strip()}")
        return "\n\n".join(sections)

    @staticmethod
    def _trim_once(snapshot: ContextSnapshot, omitted: Dict[str, int]) -> bool:
        """Drop one unit of context; returns ``False`` once nothing is left to drop."""
        for event in reversed(snapshot.events):
            if event.comments:
                event.comments.pop()
                omitted["comments"] = omitted.get("comments", 0) + 1
                return True
        for name in TRIM_ORDER:
            records: List[Any] = getattr(snapshot, name)
            if records:
                records.pop()
                omitted[name] = omitted.get(name, 0) + 1
                return True
        return False


__all__ = [
    "ComposedPrompt",
    "DRAFT_MODE_BRIEF",
    "JSON_RESPONSE_INSTRUCTION",
    "PromptComposer",
    "render_domain_rules",
    "render_repair_request",
    "render_valid_ids",
]
