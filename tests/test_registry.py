import random

import pytest

from crossllm_bridge.contracts import ALL_PROVIDERS, CostTier, ModelTag, Provider
from crossllm_bridge.registry import (
    all_models,
    find_model,
    model_counts_by_provider,
    models_by_provider,
    models_by_tag,
    select_model,
)


class FirstChoice:
    def choice(self, seq):
        return seq[0]


def test_model_names_are_unique_and_every_provider_has_models():
    names = [m.name for m in all_models()]
    assert len(names) == len(set(names))
    counts = model_counts_by_provider()
    assert list(counts) == list(ALL_PROVIDERS)
    assert all(count > 0 for count in counts.values())
    assert sum(counts.values()) == len(names)


def test_find_model_and_tag_lookup():
    info = find_model("deepseek-r1")
    assert info is not None
    assert info.provider is Provider.DEEPSEEK
    assert info.cost_tier is CostTier.FLAGSHIP
    assert find_model("nonexistent-model") is None

    math_models = models_by_tag("math")
    assert math_models
    assert all(ModelTag.MATH in m.tags for m in math_models)


def test_select_model_flagship_falls_back_to_standard_never_budget():
    # gemini has no flagship "general" model; gemini-1.5-flash is budget
    rng = random.Random(7)
    standard = {"gemini-2.0-flash-exp", "gemini-2.5-flash", "gemini-pro"}
    picks = {select_model("gemini", "general", "flagship", rng=rng) for _ in range(50)}
    assert picks <= standard
    assert "gemini-1.5-flash" not in picks


def test_select_model_cheaper_prefers_budget():
    picks = {select_model(Provider.CHATGPT, ModelTag.CODING, "cheaper", rng=random.Random(1)) for _ in range(20)}
    assert picks <= {"gpt-4o-mini", "gpt-3.5-turbo"}


def test_select_model_keeps_candidates_when_no_tier_matches():
    # claude reasoning models are all flagship: neither budget nor standard exists
    picked = select_model("claude", "reasoning", "cheaper", rng=FirstChoice())
    assert picked in {"claude-3.5-sonnet-20241022", "claude-3-opus-20240229"}


def test_select_model_single_candidate_and_no_candidate():
    assert select_model("mistral", "creative") == "pixtral-large-latest"
    assert select_model("perplexity", "coding") is None


def test_select_model_uses_injected_random_source():
    expected = models_by_provider("grok")[0].name
    assert select_model("grok", rng=FirstChoice()) == expected


def test_select_model_rejects_unknown_provider():
    with pytest.raises(ValueError):
        select_model("nope")
