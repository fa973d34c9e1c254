"""Convenience exports for completion backends."""

from .completion import (
    ChatMessage,
    CompletionClient,
    CompletionOptions,
    CompletionRequest,
    CompletionResponse,
    CompletionTimeout,
    CompletionTransportError,
)
from .openai_chat import OpenAIChatClient

__all__ = [
    "ChatMessage",
    "CompletionClient",
    "CompletionOptions",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionTimeout",
    "CompletionTransportError",
    "OpenAIChatClient",
]
