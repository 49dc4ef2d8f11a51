import json

import pytest

from crossllm_bridge.contracts import CostPreference, ModelTag, UserPreferences
from crossllm_bridge.errors import UnknownModelError
from crossllm_bridge.preferences import PreferencesStore, validate_preferences


@pytest.fixture
def store(tmp_path):
    return PreferencesStore(tmp_path / "preferences.json", env={})


def test_unknown_default_model_is_rejected():
    with pytest.raises(UnknownModelError, match='Model "gpt-9" not found in registry.'):
        validate_preferences(UserPreferences(default_model="gpt-9"))


def test_unknown_tag_model_names_the_tag():
    prefs = UserPreferences(tag_preferences={ModelTag.MATH: "nope"})
    with pytest.raises(UnknownModelError, match='for tag "math"'):
        validate_preferences(prefs)


def test_tag_mismatch_is_a_warning():
    # gpt-4o-mini is registered without the reasoning tag
    warnings = validate_preferences(UserPreferences(tag_preferences={ModelTag.REASONING: "gpt-4o-mini"}))
    assert len(warnings) == 1
    assert warnings[0].startswith('Model "gpt-4o-mini" does not have tag "reasoning" (has: ')


def test_save_merges_and_persists_camel_case(store):
    store.save(UserPreferences(default_model="gpt-4o", tag_preferences={ModelTag.CODING: "deepseek-coder"}))
    merged = store.save(
        UserPreferences(cost_preference=CostPreference.CHEAPER, tag_preferences={ModelTag.MATH: "deepseek-r1"})
    )

    assert merged.default_model == "gpt-4o"
    assert merged.cost_preference is CostPreference.CHEAPER
    assert merged.tag_preferences == {ModelTag.CODING: "deepseek-coder", ModelTag.MATH: "deepseek-r1"}

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk == {
        "defaultModel": "gpt-4o",
        "costPreference": "cheaper",
        "tagPreferences": {"coding": "deepseek-coder", "math": "deepseek-r1"},
    }
    assert store.load() == merged


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "preferences.json"
    path.write_text(json.dumps({"defaultModel": "gpt-4o", "costPreference": "cheaper"}), encoding="utf-8")

    prefs = PreferencesStore(path, env={"CROSS_LLM_DEFAULT_MODEL": "claude-3-haiku-20240307"}).load()
    assert prefs.default_model == "claude-3-haiku-20240307"
    assert prefs.cost_preference is CostPreference.CHEAPER

    prefs = PreferencesStore(path, env={"CROSS_LLM_COST_PREFERENCE": "flagship"}).load()
    assert prefs.cost_preference is CostPreference.FLAGSHIP

    prefs = PreferencesStore(path, env={"CROSS_LLM_COST_PREFERENCE": "free"}).load()
    assert prefs.cost_preference is CostPreference.CHEAPER


def test_unreadable_file_loads_defaults(store):
    store.path.write_text("[1, 2", encoding="utf-8")
    assert store.load() == UserPreferences()


def test_missing_file_loads_defaults(store):
    assert not store.path.exists()
    assert store.load() == UserPreferences()
