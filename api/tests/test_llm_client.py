"""
LLM adapter tests - per-vendor request shape and response parsing
"""
import asyncio
import json

import pytest

from api.config import settings
from api.llm_client import (
    ProviderConfigError,
    ProviderResponseError,
    ProviderTarget,
    build_request,
    chat,
    parse_text,
    parse_tool_calls,
)

MESSAGES = [
    {"role": "system", "content": "Ты помощник"},
    {"role": "user", "content": "Привет"},
]


def _target(kind, **kw):
    return ProviderTarget(provider_type=kind, api_key="key-123", model=kw.pop("model", "m"), **kw)


def test_openai_request():
    url, headers, payload = build_request(_target("openai", temperature=0.2), MESSAGES, tools=[{"x": 1}])

    assert url == "https://api.openai.com/v1/chat/completions"
    assert headers == {"Authorization": "Bearer key-123"}
    assert payload["model"] == "m"
    assert payload["temperature"] == 0.2
    assert payload["tool_choice"] == "auto"


def test_anthropic_request_uses_api_key_header_and_top_level_system():
    url, headers, payload = build_request(_target("anthropic"), MESSAGES, max_tokens=50)

    assert url == "https://api.anthropic.com/v1/messages"
    assert headers["x-api-key"] == "key-123"
    assert "Authorization" not in headers
    assert payload["system"] == "Ты помощник"
    assert payload["messages"] == [{"role": "user", "content": "Привет"}]
    assert payload["max_tokens"] == 50


def test_azure_request_uses_deployment_url():
    url, headers, payload = build_request(_target("azure", endpoint="https://corp.openai.azure.com/"), MESSAGES)

    assert url == ("https://corp.openai.azure.com/openai/deployments/m/chat/completions"
                   "?api-version=2023-07-01-preview")
    assert headers == {"api-key": "key-123"}
    assert "model" not in payload


def test_google_request_flattens_messages():
    url, headers, payload = build_request(_target("google", model="gemini-pro"), MESSAGES)

    assert url.endswith("/models/gemini-pro:generateContent")
    assert headers == {}
    assert payload["contents"][0]["parts"][0]["text"] == "Ты помощник\n\nПривет"


def test_resolve_defaults_and_errors(monkeypatch):
    monkeypatch.setattr(settings, "DEEPSEEK_API_KEY", "ds")
    target = ProviderTarget.resolve("DeepSeek")
    assert target.model == "deepseek-chat"
    assert target.max_tokens == 1000

    with pytest.raises(ProviderConfigError):
        ProviderTarget.resolve("mistral")

    monkeypatch.setattr(settings, "GOOGLE_API_KEY", None)
    with pytest.raises(ProviderConfigError):
        ProviderTarget.resolve("google")


def test_parse_text_per_vendor():
    assert parse_text("anthropic", {"content": [{"type": "text", "text": "A"}]}) == "A"
    assert parse_text("google", {"candidates": [{"content": {"parts": [{"text": "G"}]}}]}) == "G"
    assert parse_text("openai", {"choices": [{"message": {"content": "O"}}]}) == "O"
    assert parse_text("openai", {"choices": [{"message": {"content": None}}]}) == ""
    assert parse_text("google", {}) == ""


def test_parse_tool_calls_tolerates_bad_json():
    data = {"choices": [{"message": {"tool_calls": [
        {"function": {"name": "create_worker", "arguments": json.dumps({"full_name": "Иван"})}},
        {"function": {"name": "create_payment", "arguments": "{not json"}},
    ]}}]}

    calls = parse_tool_calls(data)

    assert [c.name for c in calls] == ["create_worker", "create_payment"]
    assert calls[0].arguments == {"full_name": "Иван"}
    assert calls[1].arguments == {}


def test_non_json_body_raises_response_error(vendor_reply):
    vendor_reply(200, text="<html>maintenance</html>")

    with pytest.raises(ProviderResponseError) as excinfo:
        asyncio.run(chat(_target("openai"), MESSAGES))

    assert "maintenance" in str(excinfo.value)


def test_chat_parses_vendor_json(vendor_reply):
    requests = vendor_reply(200, json_body={"choices": [{"message": {"content": "Привет!"}}]})

    result = asyncio.run(chat(_target("openai"), MESSAGES))

    assert result.text == "Привет!"
    assert requests[0].headers["Authorization"] == "Bearer key-123"
