from __future__ import annotations

import json

import pytest

from agentgate.config import AgentSettings
from agentgate.models.completion import (
    ChatMessage,
    CompletionOptions,
    CompletionTimeout,
    CompletionTransportError,
)
from agentgate.models.openai_chat import OpenAIChatClient


def _chat_response(content: str) -> str:
    return json.dumps(
        {
            "id": "chatcmpl_mock",
            "object": "chat.completion",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
        }
    )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ("AGENTGATE_API_KEY", "OPENAI_API_KEY", "AGENTGATE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)


def test_client_returns_message_content_verbatim() -> None:
    sent = []

    def transport(payload):
        sent.append(payload)
        return _chat_response('{"agentId": "events_publisher"}')

    client = OpenAIChatClient(model="gpt-4o-mini", transport=transport)
    response = client.chat_completion(
        [ChatMessage("system", "rules"), ChatMessage("user", "hello")],
        CompletionOptions(temperature=0.0, max_tokens=100),
    )

    assert response.content == '{"agentId": "events_publisher"}'
    assert response.model == "gpt-4o-mini"
    assert sent[0]["response_format"] == {"type": "json_object"}
    assert sent[0]["messages"][1] == {"role": "user", "content": "hello"}
    assert sent[0]["temperature"] == 0.0


def test_json_mode_can_be_disabled() -> None:
    sent = []

    def transport(payload):
        sent.append(payload)
        return _chat_response("ok")

    client = OpenAIChatClient(transport=transport)
    client.chat_completion([ChatMessage("user", "hi")], CompletionOptions(json_mode=False))

    assert "response_format" not in sent[0]


def test_missing_api_key_without_transport_is_rejected() -> None:
    with pytest.raises(ValueError):
        OpenAIChatClient()


def test_api_key_is_read_from_the_environment(monkeypatch) -> None:
    monkeypatch.setenv("AGENTGATE_API_KEY", "sk-test")

    client = OpenAIChatClient()

    assert client.model == "gpt-4o-mini"


def test_timeout_maps_to_completion_timeout() -> None:
    def transport(_payload):
        raise TimeoutError("read timed out")

    client = OpenAIChatClient(transport=transport, timeout=5)

    with pytest.raises(CompletionTimeout) as excinfo:
        client.chat_completion([ChatMessage("user", "hi")])

    assert "5s" in str(excinfo.value)


def test_transport_errors_are_wrapped() -> None:
    def transport(_payload):
        raise ConnectionResetError("peer reset")

    client = OpenAIChatClient(transport=transport)

    with pytest.raises(CompletionTransportError) as excinfo:
        client.chat_completion([ChatMessage("user", "hi")])

    assert "peer reset" in str(excinfo.value)


def test_transport_failures_are_retried() -> None:
    calls = []

    def transport(_payload):
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("flaky")
        return _chat_response("second time lucky")

    client = OpenAIChatClient(transport=transport, max_attempts=2, retry_delay=0.0)

    assert client.chat_completion([ChatMessage("user", "hi")]).content == "second time lucky"
    assert len(calls) == 2


def test_timeout_can_be_overridden_by_environment(monkeypatch) -> None:
    monkeypatch.setenv("AGENTGATE_TIMEOUT", "12.5")

    client = OpenAIChatClient(transport=lambda payload: "", timeout=60)

    assert client.timeout == 12.5


def test_from_settings_uses_configured_model() -> None:
    settings = AgentSettings(model="gpt-4.1-mini", timeout=15)

    client = OpenAIChatClient.from_settings(settings, transport=lambda payload: _chat_response("x"))

    assert client.model == "gpt-4.1-mini"
    assert client.timeout == 15


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (_chat_response("plain"), "plain"),
        ('{"choices": [{"text": "legacy"}]}', "legacy"),
        ('{"agentId": "task_planner"}', '{"agentId": "task_planner"}'),
        ("not json at all", "not json at all"),
        ('{"error": {"message": "quota"}}', None),
        ('{"choices": [{"message": {"content": null}}]}', None),
        ("", None),
    ],
)
def test_extract_content(raw, expected) -> None:
    assert OpenAIChatClient._extract_content(raw) == expected


def test_empty_content_is_a_transport_error() -> None:
    client = OpenAIChatClient(transport=lambda payload: '{"error": {"message": "quota"}}')

    with pytest.raises(CompletionTransportError):
        client.chat_completion([ChatMessage("user", "hi")])
