"""Bounded generate-validate-repair loop with per-request JSON logs."""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import AgentError, GenerationError, GenerationFailed, PlanValidationError
from .models.completion import CompletionClient, CompletionOptions, CompletionRequest
from .plans.base import PlanBase
from .plans.validation import PlanValidator
from .prompts import ComposedPrompt
from .workspace.schema import utc_now

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationAttempt:
    attempt: int
    raw: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"attempt": self.attempt, "raw": self.raw, "error": self.error}


@dataclass(slots=True)
class GenerationResult:
    """A validated plan and the prompt whose id set it was checked against."""

    plan: PlanBase
    prompt: ComposedPrompt
    attempts: List[GenerationAttempt] = field(default_factory=list)


class RepairLoop:
    """Call the completion backend until the validator accepts its output.

    The first call is followed by at most ``max_repairs`` repair calls, run one
    after another. A validation failure feeds its issues back into the next
    prompt; a transport failure retries the same prompt. When the budget is spent
    the loop raises :class:`GenerationFailed` carrying the last error.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        max_repairs: int = 2,
        options: Optional[CompletionOptions] = None,
        logs_root: Optional[Path] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._max_repairs = max(0, max_repairs)
        self._options = options or CompletionOptions()
        self._logs_root = Path(logs_root) if logs_root is not None else None
        self._clock = clock

    @property
    def max_repairs(self) -> int:
        return self._max_repairs

    def run(self, prompt: ComposedPrompt, validator: PlanValidator, *, agent_id: str) -> GenerationResult:
        attempts: List[GenerationAttempt] = []
        current = prompt
        last_error: Optional[AgentError] = None
        total = self._max_repairs + 1

        for attempt in range(1, total + 1):
            record = GenerationAttempt(attempt=attempt)
            attempts.append(record)
            request = CompletionRequest(
                messages=current.messages(),
                options=self._options,
                metadata={"agentId": agent_id, "attempt": attempt},
            )
            try:
                response = self._client.complete(request)
            except GenerationError as error:
                record.error = error.to_dict()
                last_error = error
                LOGGER.warning("Generation attempt %d/%d failed: %s", attempt, total, error)
                continue

            record.raw = response.content
            try:
                plan = validator.validate(response.content, prompt.visible)
            except PlanValidationError as error:
                record.error = error.to_dict()
                last_error = error
                LOGGER.warning(
                    "Generation attempt %d/%d rejected at %s stage: %s",
                    attempt,
                    total,
                    error.stage,
                    "; ".join(error.issues[:3]),
                )
                current = prompt.with_repair(error, response.content)
                continue

            result = GenerationResult(plan=plan, prompt=prompt, attempts=attempts)
            self._write_log(agent_id, prompt, attempts, plan=plan)
            return result

        assert last_error is not None
        failure = GenerationFailed(
            f"No valid plan after {total} attempt(s): {last_error.message}",
            attempts=total,
            last_error=last_error,
        )
        self._write_log(agent_id, prompt, attempts, error=failure)
        raise failure

    def _write_log(
        self,
        agent_id: str,
        prompt: ComposedPrompt,
        attempts: List[GenerationAttempt],
        *,
        plan: Optional[PlanBase] = None,
        error: Optional[AgentError] = None,
    ) -> None:
        """Persist a structured log of every attempt for later debugging."""
        if self._logs_root is None:
            return
        logs_root = self._logs_root / "generation"
        try:
            logs_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Generation logs disabled; cannot create %s: %s", logs_root, exc)
            return

        timestamp = self._clock()
        entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "agent": agent_id,
            "model": self._client.model,
            "prompt": {
                "system": prompt.system_prompt,
                "user": prompt.user_prompt,
                "truncated": prompt.truncated,
                "omitted": prompt.omitted,
            },
            "attempts": [item.to_dict() for item in attempts],
        }
        if plan is not None:
            entry["plan"] = plan.canonical_payload()
        if error is not None:
            entry["error"] = error.to_dict()

        parts = [
            "generation",
            _slug(agent_id, fallback="agent"),
            timestamp.strftime("%Y%m%dT%H%M%S%fZ"),
            uuid.uuid4().hex[:8],
        ]
        log_path = logs_root / ("__".join(parts) + ".json")
        try:
            with log_path.open("w", encoding="utf-8") as handle:
                json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as exc:
            LOGGER.warning("Failed to write generation log %s: %s", log_path, exc)


def _slug(value: str, *, fallback: str = "item", max_length: int = 60) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9_]+", "-", value).strip("-")
    return (cleaned or fallback)[:max_length]


__all__ = ["GenerationAttempt", "GenerationResult", "RepairLoop"]
