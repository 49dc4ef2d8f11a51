"""Static catalogue of known models, their tags and cost tiers.

Pure lookups, no I/O. Loaded once at import and never mutated.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Protocol

import structlog

from .contracts import ALL_PROVIDERS, CostPreference, CostTier, ModelInfo, ModelTag, Provider

log = structlog.get_logger()

REGISTRY_LOADED_AT = datetime.now(timezone.utc)


class RandomSource(Protocol):
    def choice(self, seq): ...


def _m(name: str, provider: Provider, tags: str, tier: CostTier, description: str) -> ModelInfo:
    return ModelInfo(
        name=name,
        provider=provider,
        tags=frozenset(ModelTag(t) for t in tags.split()),
        cost_tier=tier,
        description=description,
    )


_F, _S, _B = CostTier.FLAGSHIP, CostTier.STANDARD, CostTier.BUDGET

MODEL_REGISTRY: tuple[ModelInfo, ...] = (
    # DeepSeek
    _m("deepseek-r1", Provider.DEEPSEEK, "coding reasoning math", _F,
       "Flagship reasoning model, excels at coding, mathematics, and complex reasoning"),
    _m("deepseek-r1-distill-qwen-1.5b", Provider.DEEPSEEK, "coding math", _B,
       "Lightweight distilled version for efficient coding tasks"),
    _m("deepseek-r1-distill-qwen-7b", Provider.DEEPSEEK, "coding math", _S,
       "Balanced performance for coding and math tasks"),
    _m("deepseek-r1-distill-qwen-14b", Provider.DEEPSEEK, "coding math reasoning", _S,
       "Enhanced reasoning and coding capabilities"),
    _m("deepseek-r1-distill-qwen-32b", Provider.DEEPSEEK, "coding math reasoning", _F,
       "High-performance distilled model for advanced coding and reasoning"),
    _m("deepseek-r1-distill-llama-8b", Provider.DEEPSEEK, "coding business", _S,
       "Balanced model for coding and business applications"),
    _m("deepseek-r1-distill-llama-70b", Provider.DEEPSEEK, "coding reasoning business", _F,
       "Large distilled model for extensive coding and reasoning tasks"),
    _m("deepseek-chat", Provider.DEEPSEEK, "general coding", _S,
       "General-purpose chat model with coding capabilities"),
    _m("deepseek-coder", Provider.DEEPSEEK, "coding", _S, "Specialized coding model"),
    # OpenAI
    _m("gpt-4o", Provider.CHATGPT, "coding business creative reasoning", _F,
       "Latest flagship model with multimodal capabilities"),
    _m("gpt-4o-mini", Provider.CHATGPT, "general coding", _B, "Cost-effective general-purpose model"),
    _m("gpt-4-turbo", Provider.CHATGPT, "coding business creative", _F, "High-performance model for complex tasks"),
    _m("gpt-4", Provider.CHATGPT, "coding business creative reasoning", _F, "Flagship GPT-4 model"),
    _m("gpt-3.5-turbo", Provider.CHATGPT, "general coding", _B, "Fast and cost-effective general-purpose model"),
    _m("o1-preview", Provider.CHATGPT, "reasoning math coding", _F,
       "Advanced reasoning model for complex problem-solving"),
    _m("o1-mini", Provider.CHATGPT, "reasoning math", _S, "Efficient reasoning model"),
    # Anthropic
    _m("claude-3.5-sonnet-20241022", Provider.CLAUDE, "coding business reasoning creative", _F,
       "Latest Claude model with enhanced capabilities"),
    _m("claude-3-opus-20240229", Provider.CLAUDE, "business creative reasoning", _F,
       "Most capable Claude model for complex tasks"),
    _m("claude-3-sonnet-20240229", Provider.CLAUDE, "business coding general", _S, "Balanced performance model"),
    _m("claude-3-haiku-20240307", Provider.CLAUDE, "general", _B, "Fast and cost-effective model"),
    # Google
    _m("gemini-2.0-flash-exp", Provider.GEMINI, "general creative", _S, "Experimental fast model"),
    _m("gemini-1.5-pro", Provider.GEMINI, "business creative reasoning", _F, "High-performance model for complex tasks"),
    _m("gemini-1.5-flash", Provider.GEMINI, "general coding", _B, "Fast and efficient general-purpose model"),
    _m("gemini-2.5-flash", Provider.GEMINI, "general coding", _S, "Latest fast model with improved capabilities"),
    _m("gemini-pro", Provider.GEMINI, "general business", _S, "General-purpose model"),
    # Mistral
    _m("mistral-large-latest", Provider.MISTRAL, "business coding reasoning", _F, "Flagship Mistral model"),
    _m("mistral-medium-latest", Provider.MISTRAL, "business general", _S, "Balanced performance model"),
    _m("mistral-small-latest", Provider.MISTRAL, "general", _B, "Cost-effective model"),
    _m("pixtral-large-latest", Provider.MISTRAL, "creative general", _F, "Multimodal model for creative tasks"),
    # Perplexity
    _m("sonar-pro", Provider.PERPLEXITY, "business reasoning", _F, "Premium model with web search capabilities"),
    _m("sonar-medium-online", Provider.PERPLEXITY, "general business", _S, "Balanced model with web search"),
    _m("sonar-small-online", Provider.PERPLEXITY, "general", _B, "Cost-effective model with web search"),
    # xAI
    _m("grok-beta", Provider.GROK, "general creative", _S, "Beta model with real-time information"),
    _m("grok-2", Provider.GROK, "general creative", _S, "Latest Grok model"),
    _m("grok-3", Provider.GROK, "general creative", _F, "Flagship Grok model"),
    # Moonshot
    _m("moonshot-v1-8k", Provider.KIMI, "general coding", _B, "Cost-effective model with 8k context"),
    _m("moonshot-v1-32k", Provider.KIMI, "general coding business", _S, "Model with 32k context window"),
    _m("moonshot-v1-128k", Provider.KIMI, "general coding business", _F,
       "Large context window model for extensive tasks"),
)

_BY_NAME: dict[str, ModelInfo] = {m.name: m for m in MODEL_REGISTRY}
if len(_BY_NAME) != len(MODEL_REGISTRY):  # pragma: no cover
    raise RuntimeError("Duplicate model name in MODEL_REGISTRY.")


def all_models() -> tuple[ModelInfo, ...]:
    return MODEL_REGISTRY


def all_tags() -> list[ModelTag]:
    return list(ModelTag)


def find_model(name: str) -> ModelInfo | None:
    return _BY_NAME.get(name)


def models_by_tag(tag: ModelTag | str) -> list[ModelInfo]:
    tag = ModelTag(tag)
    return [m for m in MODEL_REGISTRY if tag in m.tags]


def models_by_provider(provider: Provider | str) -> list[ModelInfo]:
    provider = Provider(provider)
    return [m for m in MODEL_REGISTRY if m.provider is provider]


def model_counts_by_provider() -> dict[Provider, int]:
    return {p: len(models_by_provider(p)) for p in ALL_PROVIDERS}


def _narrow(candidates: list[ModelInfo], preferred: CostTier) -> list[ModelInfo]:
    """Keep `preferred` tier, else standard tier, else leave candidates as they are."""
    for tier in (preferred, CostTier.STANDARD):
        narrowed = [m for m in candidates if m.cost_tier is tier]
        if narrowed:
            return narrowed
    return candidates


def select_model(
    provider: Provider | str,
    tag: ModelTag | str | None = None,
    cost_preference: CostPreference | str | None = None,
    *,
    rng: RandomSource | None = None,
) -> str | None:
    """Pick a model name for `provider`, optionally matching `tag`.

    Ties left after tier narrowing are broken uniformly at random; pass
    `rng` for reproducible picks.
    """
    candidates = models_by_provider(provider)
    if tag is not None:
        tag = ModelTag(tag)
        candidates = [m for m in candidates if tag in m.tags]
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0].name

    if cost_preference is not None:
        preference = CostPreference(cost_preference)
        preferred = CostTier.FLAGSHIP if preference is CostPreference.FLAGSHIP else CostTier.BUDGET
        narrowed = _narrow(candidates, preferred)
        if narrowed is candidates:
            log.warning(
                "model_selection_no_tier_match",
                provider=str(Provider(provider).value),
                tag=getattr(tag, "value", tag),
                cost_preference=preference.value,
            )
        candidates = narrowed

    if len(candidates) == 1:
        return candidates[0].name
    return (rng or random).choice(candidates).name
