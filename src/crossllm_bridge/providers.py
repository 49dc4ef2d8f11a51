"""Per-provider wire configuration.

Every provider goes through the same adapter; what differs between them lives
here as data: endpoint, auth shape, request builder and reply parser.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, NamedTuple

from .contracts import Provider, Usage
from .errors import UpstreamProtocolError

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
ANTHROPIC_VERSION = "2023-06-01"


class GenerationParams(NamedTuple):
    model: str
    prompt: str
    temperature: float
    max_tokens: int


class ParsedReply(NamedTuple):
    text: str
    model: str
    usage: Usage


AuthBuilder = Callable[[str], tuple[dict[str, str], dict[str, str] | None]]
PayloadBuilder = Callable[[GenerationParams], dict[str, Any]]
ReplyParser = Callable[[dict[str, Any], str], ParsedReply]


@dataclass(frozen=True)
class ProviderSpec:
    provider: Provider
    label: str
    vendor: str
    endpoint: str
    base_url: str
    fallback_model: str
    auth: AuthBuilder
    build_payload: PayloadBuilder
    parse_reply: ReplyParser
    max_temperature: float = 2.0
    # BridgeConfig attribute that may override `base_url`
    base_url_setting: str | None = None

    def url(self, model: str, base_url: str | None = None) -> str:
        base = (base_url or self.base_url).rstrip("/")
        return self.endpoint.format(base=base, model=model)

    @property
    def missing_key_error(self) -> str:
        return f"{self.vendor} API key not configured"


def _bearer(api_key: str) -> tuple[dict[str, str], dict[str, str] | None]:
    return {"Authorization": f"Bearer {api_key}"}, None


def _anthropic_auth(api_key: str) -> tuple[dict[str, str], dict[str, str] | None]:
    return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}, None


def _query_key(api_key: str) -> tuple[dict[str, str], dict[str, str] | None]:
    return {}, {"key": api_key}


def _chat_payload(p: GenerationParams) -> dict[str, Any]:
    return {
        "model": p.model,
        "messages": [{"role": "user", "content": p.prompt}],
        "temperature": p.temperature,
        "max_tokens": p.max_tokens,
    }


def _anthropic_payload(p: GenerationParams) -> dict[str, Any]:
    return {
        "model": p.model,
        "max_tokens": p.max_tokens,
        "messages": [{"role": "user", "content": p.prompt}],
        "temperature": p.temperature,
    }


def _gemini_payload(p: GenerationParams) -> dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": p.prompt}]}],
        "generationConfig": {"temperature": p.temperature, "maxOutputTokens": p.max_tokens},
    }


def _count(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _usage(prompt: Any, completion: Any, total: Any = None) -> Usage:
    prompt_tokens, completion_tokens = _count(prompt), _count(completion)
    total_tokens = _count(total) if total is not None else prompt_tokens + completion_tokens
    return Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_tokens=total_tokens)


def _parse_chat(data: dict[str, Any], requested_model: str) -> ParsedReply:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise UpstreamProtocolError("Missing choices in upstream response.")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise UpstreamProtocolError("Missing message in upstream response.")
    text = message.get("content") or ""
    usage = data.get("usage") or {}
    return ParsedReply(
        text=text,
        model=data.get("model") or requested_model,
        usage=_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")),
    )


def _parse_anthropic(data: dict[str, Any], requested_model: str) -> ParsedReply:
    blocks = data.get("content")
    if not isinstance(blocks, list):
        raise UpstreamProtocolError("Missing content in upstream response.")
    text = next(
        (b["text"] for b in blocks if isinstance(b, dict) and isinstance(b.get("text"), str)),
        "",
    )
    usage = data.get("usage") or {}
    return ParsedReply(
        text=text,
        model=data.get("model") or requested_model,
        usage=_usage(usage.get("input_tokens"), usage.get("output_tokens")),
    )


def _parse_gemini(data: dict[str, Any], requested_model: str) -> ParsedReply:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = data.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        suffix = f" (blocked: {reason})" if reason else ""
        raise UpstreamProtocolError(f"Missing candidates in upstream response{suffix}.")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    text = ""
    if isinstance(parts, list) and parts and isinstance(parts[0], dict):
        text = parts[0].get("text") or ""
    meta = data.get("usageMetadata") or {}
    return ParsedReply(
        text=text,
        model=requested_model,
        usage=_usage(meta.get("promptTokenCount"), meta.get("candidatesTokenCount"), meta.get("totalTokenCount")),
    )


def _openai_compatible(
    provider: Provider, label: str, vendor: str, base_url: str, fallback_model: str, **kwargs: Any
) -> ProviderSpec:
    return ProviderSpec(
        provider=provider,
        label=label,
        vendor=vendor,
        endpoint="{base}/chat/completions",
        base_url=base_url,
        fallback_model=fallback_model,
        auth=_bearer,
        build_payload=_chat_payload,
        parse_reply=_parse_chat,
        **kwargs,
    )


PROVIDER_SPECS: dict[Provider, ProviderSpec] = {
    Provider.CHATGPT: _openai_compatible(
        Provider.CHATGPT, "ChatGPT", "OpenAI", "https://api.openai.com/v1", "gpt-4"
    ),
    Provider.CLAUDE: ProviderSpec(
        provider=Provider.CLAUDE,
        label="Claude",
        vendor="Anthropic",
        endpoint="{base}/messages",
        base_url="https://api.anthropic.com/v1",
        fallback_model="claude-3-sonnet-20240229",
        auth=_anthropic_auth,
        build_payload=_anthropic_payload,
        parse_reply=_parse_anthropic,
        max_temperature=1.0,
    ),
    Provider.DEEPSEEK: _openai_compatible(
        Provider.DEEPSEEK, "DeepSeek", "DeepSeek", "https://api.deepseek.com/v1", "deepseek-chat"
    ),
    Provider.GEMINI: ProviderSpec(
        provider=Provider.GEMINI,
        label="Gemini",
        vendor="Gemini",
        endpoint="{base}/models/{model}:generateContent",
        base_url="https://generativelanguage.googleapis.com/v1",
        fallback_model="gemini-2.5-flash",
        auth=_query_key,
        build_payload=_gemini_payload,
        parse_reply=_parse_gemini,
    ),
    Provider.GROK: _openai_compatible(Provider.GROK, "Grok", "Grok", "https://api.x.ai/v1", "grok-3"),
    Provider.KIMI: _openai_compatible(
        Provider.KIMI,
        "Kimi",
        "Kimi",
        "https://api.moonshot.ai/v1",
        "moonshot-v1-8k",
        base_url_setting="kimi_base_url",
    ),
    Provider.PERPLEXITY: _openai_compatible(
        Provider.PERPLEXITY, "Perplexity", "Perplexity", "https://api.perplexity.ai", "sonar-pro"
    ),
    Provider.MISTRAL: _openai_compatible(
        Provider.MISTRAL, "Mistral", "Mistral", "https://api.mistral.ai/v1", "mistral-large-latest"
    ),
}

