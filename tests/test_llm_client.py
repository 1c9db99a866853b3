from __future__ import annotations

import json

import httpx
import pytest

from demo_intake.services.llm_service import LLMClient, LLMError, LLMTransientError, extract_json_object


def _client(provider: str, handler, api_key: str = "k") -> LLMClient:
    return LLMClient(provider=provider, api_key=api_key, model="m", transport=httpx.MockTransport(handler))


def test_extract_json_object_variants():
    assert extract_json_object('{"a": 1}') == '{"a": 1}'
    assert extract_json_object('Sure!\n```json\n{"a": {"b": 2}}\n```\nDone') == '{"a": {"b": 2}}'
    assert extract_json_object('{"quote": "she said } and {"} trailing }') == '{"quote": "she said } and {"}'
    assert extract_json_object('{"esc": "a \\" } b"}') == '{"esc": "a \\" } b"}'

    with pytest.raises(LLMError):
        extract_json_object("no braces here")
    with pytest.raises(LLMError):
        extract_json_object('{"open": ')


def test_gemini_call_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": '{"ok": true}'}]}, "finishReason": "STOP"}]},
        )

    out = _client("gemini", handler).generate(system="sys", user="hello")

    assert out == '{"ok": true}'
    assert ":generateContent?key=k" in seen["url"]
    assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "sys"
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "hello"


def test_anthropic_call_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "{}"}]})

    out = _client("anthropic", handler).generate(system="sys", user="hello")

    assert out == "{}"
    assert seen["headers"]["x-api-key"] == "k"
    assert seen["headers"]["anthropic-version"]
    assert seen["body"]["system"] == "sys"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]


def test_error_classification():
    with pytest.raises(LLMTransientError):
        _client("gemini", lambda request: httpx.Response(429)).generate(system="s", user="u")
    with pytest.raises(LLMTransientError):
        _client("anthropic", lambda request: httpx.Response(529)).generate(system="s", user="u")

    with pytest.raises(LLMError) as err:
        _client("gemini", lambda request: httpx.Response(400)).generate(system="s", user="u")
    assert not isinstance(err.value, LLMTransientError)

    with pytest.raises(LLMError):
        _client("gemini", lambda request: httpx.Response(200, json={"candidates": []})).generate(system="s", user="u")
    with pytest.raises(LLMError):
        _client("anthropic", lambda request: httpx.Response(200, json={"content": []})).generate(system="s", user="u")


def test_missing_key_and_unknown_provider():
    ok = lambda request: httpx.Response(200, json={})  # noqa: E731

    with pytest.raises(LLMError):
        _client("gemini", ok, api_key="").generate(system="s", user="u")
    with pytest.raises(LLMError):
        _client("openai", ok).generate(system="s", user="u")
