"""HTTP client for OpenAI-compatible chat-completions endpoints."""

from __future__ import annotations

import json
import os
import socket
from typing import Any, Callable, Dict, Optional

from ..errors import GenerationError
from .completion import CompletionClient, CompletionTimeout, CompletionTransportError

__all__ = ["OpenAIChatClient"]


Transport = Callable[[Dict[str, Any]], str]


class OpenAIChatClient(CompletionClient):
    """Thin adapter around the chat-completions API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o-mini",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        max_attempts: int = 1,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("AGENTGATE_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("AGENTGATE_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    @property
    def timeout(self) -> float:
        return self._timeout

    @classmethod
    def from_settings(cls, settings: Any, *, transport: Optional[Transport] = None) -> "OpenAIChatClient":
        return cls(
            base_url=settings.base_url,
            model=settings.model,
            timeout=settings.timeout,
            transport=transport,
        )

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            raw_response = self._transport(payload)
        except GenerationError:
            raise
        except (TimeoutError, socket.timeout) as error:
            raise CompletionTimeout(f"Completion timed out after {self._timeout:g}s.") from error
        except Exception as error:
            raise CompletionTransportError(f"Transport rejected the request: {error}") from error

        content = self._extract_content(raw_response)
        if content is None:
            raise CompletionTransportError("Completion response did not contain message content.")
        return content

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that posts to ``base_url``."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise CompletionTimeout("Completion response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise CompletionTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            if isinstance(error.reason, (TimeoutError, socket.timeout)):
                raise CompletionTimeout("Completion response timed out.") from error
            raise CompletionTransportError(
                f"Failed to reach completion endpoint: {error.reason}"
            ) from error

        if status >= 400:
            raise CompletionTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")

    @staticmethod
    def _extract_content(raw_response: str) -> Optional[str]:
        """Return ``choices[0].message.content``; non-JSON bodies are passed through."""
        if not raw_response:
            return None
        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            # Bare payloads from stub servers are treated as the content itself.
            return raw_response if "error" not in data else None
        first = choices[0]
        if not isinstance(first, dict):
            return None
        message = first.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str):
                return content
        text = first.get("text")
        return text if isinstance(text, str) else None
