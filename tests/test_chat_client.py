from __future__ import annotations

import json
from typing import Any, Dict

import pytest

from tcr.models.chat import ChatCompletionsClient, resolve_api_key
from tcr.models.llm_client import LLMRequest, LLMResponseFormatError, LLMTransportError


def _completion(content: Any) -> str:
    return json.dumps({"id": "chatcmpl-1", "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]})


def test_complete_returns_stripped_message_content() -> None:
    captured: Dict[str, Any] = {}

    def transport(payload: Dict[str, Any]) -> str:
        captured.update(payload)
        return _completion("\n@@ -1 +1 @@\n-a\n+b\n\n")

    client = ChatCompletionsClient(model="gpt-4o-mini", transport=transport)
    request = LLMRequest(prompt="Write a diff", system_prompt="Diffs only.", max_tokens=800)

    assert client.complete(request) == "@@ -1 +1 @@\n-a\n+b"
    assert captured["model"] == "gpt-4o-mini"
    assert captured["temperature"] == 0.0
    assert captured["max_tokens"] == 800
    assert captured["messages"] == [
        {"role": "system", "content": "Diffs only."},
        {"role": "user", "content": "Write a diff"},
    ]


@pytest.mark.parametrize("body", ["", json.dumps({"choices": []}), _completion(None), _completion("   ")])
def test_missing_content_is_none(body: str) -> None:
    client = ChatCompletionsClient(transport=lambda _: body)

    assert client.complete(LLMRequest(prompt="x")) is None


def test_invalid_json_is_a_format_error() -> None:
    client = ChatCompletionsClient(transport=lambda _: "<html>bad gateway</html>")

    with pytest.raises(LLMResponseFormatError):
        client.complete(LLMRequest(prompt="x"))


def test_transport_failures_are_wrapped() -> None:
    def transport(_: Dict[str, Any]) -> str:
        raise ConnectionResetError("peer went away")

    client = ChatCompletionsClient(transport=transport)

    with pytest.raises(LLMTransportError):
        client.complete(LLMRequest(prompt="x"))


def test_default_transport_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TCR_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        ChatCompletionsClient()


def test_resolve_api_key_prefers_configured_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TCR_API_KEY", "from-tcr")
    monkeypatch.setenv("OPENAI_API_KEY", "from-openai")

    assert resolve_api_key(" configured ") == "configured"
    assert resolve_api_key("") == "from-tcr"

    monkeypatch.delenv("TCR_API_KEY")
    assert resolve_api_key(None) == "from-openai"
