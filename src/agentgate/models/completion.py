"""Chat-completion client base class shared by every backend integration.

The completion backend is treated as untrusted: clients only move text around
and map transport failures onto :class:`GenerationError`. Whether the returned
text is JSON, let alone a valid plan, is decided by the validator.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence

from ..errors import GenerationError

__all__ = [
    "ChatMessage",
    "CompletionClient",
    "CompletionOptions",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionTimeout",
    "CompletionTransportError",
]

LOGGER = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


class CompletionTransportError(GenerationError):
    """Raised when the transport fails to return a response."""


class CompletionTimeout(CompletionTransportError):
    """Raised when the backend does not answer within the configured timeout."""


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class CompletionOptions:
    """Per-call knobs. ``json_mode`` is a hint to the backend, never a guarantee."""

    temperature: float = 0.2
    json_mode: bool = True
    max_tokens: int = 4000


@dataclass(slots=True)
class CompletionRequest:
    """Typed request payload sent to a chat-completion backend."""

    messages: List[ChatMessage]
    options: CompletionOptions = field(default_factory=CompletionOptions)
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready chat-completions payload."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "messages": [message.to_payload() for message in self.messages],
            "temperature": self.options.temperature,
            "max_tokens": self.options.max_tokens,
        }
        if self.options.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if self.metadata:
            max_metadata_len = 512
            serialised: Dict[str, str] = {}
            for key, value in self.metadata.items():
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised[key] = formatted
            payload["metadata"] = serialised
        return payload


@dataclass(slots=True)
class CompletionResponse:
    content: str
    model: Optional[str] = None
    raw: Optional[str] = None


class CompletionClient:
    """Send chat messages to a backend and return the raw text it produced."""

    def __init__(self, model: str, *, max_attempts: int = 1, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def chat_completion(
        self,
        messages: Sequence[ChatMessage],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """Convenience wrapper building a :class:`CompletionRequest`."""
        request = CompletionRequest(list(messages), options or CompletionOptions())
        return self.complete(request)

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Invoke the backend, retrying transport failures up to ``max_attempts``."""
        payload = request.to_payload(self._model)
        last_error: Optional[GenerationError] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                content = self._raw_invoke(payload)
            except GenerationError as error:
                last_error = error
                LOGGER.warning(
                    "Completion attempt %d/%d failed: %s", attempt, self._max_attempts, error
                )
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            if not isinstance(content, str):
                raise GenerationError("Completion backend returned a non-text payload.")
            return CompletionResponse(content=content, model=payload["model"], raw=content)
        raise last_error or GenerationError("Completion backend produced no response.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
