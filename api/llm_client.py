"""
LLM vendor adapter.

One request/response shape per vendor family:
- openai, deepseek, azure: OpenAI chat-completions (tools supported)
- anthropic: messages API, `system` as a top-level field
- google: generateContent, key in the query string

Keys come from the environment (`<TYPE>_API_KEY`), never from the DB.
Every upstream call is timed through `track_llm_call`; httpx errors
propagate to the caller.
"""
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session

from api.config import settings
from api.models import AIProvider
from api.utils.audit import track_llm_call

logger = logging.getLogger(__name__)

PROVIDER_TYPES = ("openai", "anthropic", "deepseek", "google", "azure")
OPENAI_COMPATIBLE = ("openai", "deepseek", "azure")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "deepseek": "deepseek-chat",
    "anthropic": "claude-3-5-haiku-20241022",
    "google": "gemini-pro",
    "azure": "gpt-35-turbo",
}

DEFAULT_ENDPOINTS = {
    "openai": "https://api.openai.com/v1/chat/completions",
    "deepseek": "https://api.deepseek.com/chat/completions",
    "anthropic": "https://api.anthropic.com/v1/messages",
    "google": "https://generativelanguage.googleapis.com/v1/models",
}

ANTHROPIC_VERSION = "2023-06-01"
AZURE_API_VERSION = "2023-07-01-preview"
WHISPER_URL = "https://api.openai.com/v1/audio/transcriptions"
VISION_MODEL = "gpt-4o-mini"

TEST_PROMPT = "Тест соединения"
TEST_MAX_TOKENS = 10
TEST_PREVIEW_CHARS = 50


class ProviderConfigError(Exception):
    """Provider cannot be called: unknown type, missing key or endpoint."""


class ProviderResponseError(Exception):
    """Vendor answered 2xx with a body that is not JSON."""


@dataclass
class ProviderTarget:
    provider_type: str
    api_key: str
    model: str
    endpoint: Optional[str] = None
    max_tokens: int = 1000
    temperature: Optional[float] = None

    @classmethod
    def resolve(cls, provider_type: str, api_endpoint: Optional[str] = None,
                model_name: Optional[str] = None, max_tokens: Optional[int] = None,
                temperature: Optional[float] = None) -> "ProviderTarget":
        provider_type = (provider_type or "").lower()
        if provider_type not in PROVIDER_TYPES:
            raise ProviderConfigError("Неподдерживаемый тип провайдера")

        api_key = settings.provider_api_key(provider_type)
        if not api_key:
            raise ProviderConfigError(f"API ключ для {provider_type} не найден в секретах")

        if provider_type == "azure" and not api_endpoint:
            raise ProviderConfigError("Azure endpoint обязателен")

        return cls(
            provider_type=provider_type,
            api_key=api_key,
            model=model_name or DEFAULT_MODELS[provider_type],
            endpoint=api_endpoint,
            max_tokens=max_tokens or 1000,
            temperature=temperature,
        )

    @classmethod
    def from_provider(cls, provider: AIProvider) -> "ProviderTarget":
        return cls.resolve(
            provider.provider_type,
            api_endpoint=provider.api_endpoint,
            model_name=provider.model_name,
            max_tokens=provider.max_tokens,
            temperature=provider.temperature,
        )


@dataclass
class ToolCall:
    name: str
    arguments: dict


@dataclass
class ChatResult:
    text: str
    provider: str
    model: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    latency_ms: int = 0


def active_providers(db: Session) -> List[AIProvider]:
    """Active providers, best (lowest priority number) first."""
    return (
        db.query(AIProvider)
        .filter(AIProvider.is_active == True)  # noqa: E712
        .order_by(AIProvider.priority, AIProvider.id)
        .all()
    )


def pick_provider(db: Session) -> Optional[AIProvider]:
    providers = active_providers(db)
    return providers[0] if providers else None


def build_request(target: ProviderTarget, messages: list, max_tokens: Optional[int] = None,
                  tools: Optional[list] = None):
    """Return (url, headers, payload) for a chat call in the vendor's dialect."""
    max_tokens = max_tokens or target.max_tokens
    kind = target.provider_type

    if kind in OPENAI_COMPATIBLE:
        payload = {"messages": messages, "max_tokens": max_tokens}
        if kind == "azure":
            url = (
                f"{target.endpoint.rstrip('/')}/openai/deployments/{target.model}"
                f"/chat/completions?api-version={AZURE_API_VERSION}"
            )
            headers = {"api-key": target.api_key}
        else:
            url = target.endpoint or DEFAULT_ENDPOINTS[kind]
            headers = {"Authorization": f"Bearer {target.api_key}"}
            payload["model"] = target.model
        if target.temperature is not None:
            payload["temperature"] = target.temperature
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return url, headers, payload

    if kind == "anthropic":
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload = {
            "model": target.model,
            "max_tokens": max_tokens,
            "messages": [m for m in messages if m["role"] != "system"],
        }
        if system:
            payload["system"] = system
        headers = {"x-api-key": target.api_key, "anthropic-version": ANTHROPIC_VERSION}
        return target.endpoint or DEFAULT_ENDPOINTS[kind], headers, payload

    # google
    url = target.endpoint or f"{DEFAULT_ENDPOINTS['google']}/{target.model}:generateContent"
    text = "\n\n".join(m["content"] for m in messages if isinstance(m["content"], str))
    payload = {
        "contents": [{"parts": [{"text": text}]}],
        "generationConfig": {"maxOutputTokens": max_tokens},
    }
    return url, {}, payload


def _google_params(target: ProviderTarget) -> dict:
    return {"key": target.api_key} if target.provider_type == "google" else {}


def parse_text(provider_type: str, data: dict) -> str:
    if provider_type == "anthropic":
        blocks = data.get("content") or []
        return blocks[0].get("text", "") if blocks else ""
    if provider_type == "google":
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return parts[0].get("text", "") if parts else ""
    choices = data.get("choices") or []
    if not choices:
        return ""
    return choices[0].get("message", {}).get("content") or ""


def parse_tool_calls(data: dict) -> List[ToolCall]:
    """Tool calls from an OpenAI-style response; malformed arguments become {}."""
    choices = data.get("choices") or []
    if not choices:
        return []
    calls = []
    for raw in choices[0].get("message", {}).get("tool_calls") or []:
        function = raw.get("function") or {}
        try:
            arguments = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Tool call {function.get('name')} has invalid JSON arguments")
            arguments = {}
        calls.append(ToolCall(name=function.get("name", ""), arguments=arguments))
    return calls


def _json_body(response: httpx.Response, provider_type: str) -> dict:
    try:
        data = response.json()
    except ValueError:
        raise ProviderResponseError(f"{provider_type} вернул не-JSON ответ: {response.text[:100]!r}")
    if not isinstance(data, dict):
        raise ProviderResponseError(f"{provider_type} вернул неожиданный ответ: {type(data).__name__}")
    return data


async def chat(target: ProviderTarget, messages: list, max_tokens: Optional[int] = None,
               tools: Optional[list] = None, intent: str = "chat") -> ChatResult:
    """Single chat call. Raises httpx.HTTPStatusError / httpx.RequestError / ProviderResponseError."""
    if target.provider_type not in OPENAI_COMPATIBLE:
        tools = None
    url, headers, payload = build_request(target, messages, max_tokens=max_tokens, tools=tools)

    with track_llm_call(intent, provider=target.provider_type, model=target.model) as tracker:
        async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_S) as client:
            response = await client.post(url, headers=headers, json=payload, params=_google_params(target))
            response.raise_for_status()
            data = _json_body(response, target.provider_type)
        tracker.set_outcome("ok")
        latency_ms = tracker.elapsed_ms

    return ChatResult(
        text=parse_text(target.provider_type, data),
        provider=target.provider_type,
        model=target.model,
        tool_calls=parse_tool_calls(data) if target.provider_type in OPENAI_COMPATIBLE else [],
        latency_ms=latency_ms,
    )


async def ping_provider(target: ProviderTarget) -> dict:
    """Minimal round-trip; returns the success payload or raises."""
    result = await chat(
        target,
        [{"role": "user", "content": TEST_PROMPT}],
        max_tokens=TEST_MAX_TOKENS,
        intent="provider_test",
    )
    return {
        "success": True,
        "message": f"Соединение с {target.provider_type} успешно",
        "model_used": target.model,
        "response_preview": result.text[:TEST_PREVIEW_CHARS] or "Ответ получен",
        "response_time_ms": result.latency_ms,
    }


def describe_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{exc.response.status_code} - {exc.response.text[:200]}"
    return str(exc) or exc.__class__.__name__


def _openai_key() -> str:
    api_key = settings.OPENAI_API_KEY
    if not api_key:
        raise ProviderConfigError("API ключ для openai не найден в секретах")
    return api_key


async def analyze_image(image: bytes, system: str, instruction: str = "Проанализируй это изображение") -> str:
    """Vision call (OpenAI) with the image inlined as a base64 data URL."""
    target = ProviderTarget(provider_type="openai", api_key=_openai_key(), model=VISION_MODEL, max_tokens=500)
    data_url = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": [
            {"type": "text", "text": instruction},
            {"type": "image_url", "image_url": {"url": data_url}},
        ]},
    ]
    result = await chat(target, messages, intent="vision")
    return result.text


async def transcribe_audio(audio: bytes, filename: str = "audio.ogg", language: str = "ru") -> str:
    """Whisper transcription of a voice note."""
    api_key = _openai_key()
    with track_llm_call("transcribe", provider="openai", model="whisper-1") as tracker:
        async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_S) as client:
            response = await client.post(
                WHISPER_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                data={"model": "whisper-1", "language": language},
                files={"file": (filename, audio, "audio/ogg")},
            )
            response.raise_for_status()
            text = _json_body(response, "openai").get("text", "")
        tracker.set_outcome("ok")
    logger.info(f"Transcribed voice note: {len(text)} chars")
    return text
