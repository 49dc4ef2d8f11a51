from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError

from .contracts import CostPreference, UserPreferences
from .errors import PreferencesError, UnknownModelError
from .registry import find_model

log = structlog.get_logger()

DEFAULT_MODEL_ENV = "CROSS_LLM_DEFAULT_MODEL"
COST_PREFERENCE_ENV = "CROSS_LLM_COST_PREFERENCE"


def validate_preferences(prefs: UserPreferences) -> list[str]:
    """Check every referenced model against the registry.

    Raises `UnknownModelError` for the first unknown model. Returns
    non-fatal warnings for tag-mapped models that lack the tag.
    """
    if prefs.default_model and find_model(prefs.default_model) is None:
        raise UnknownModelError(prefs.default_model)

    warnings: list[str] = []
    for tag, model_name in prefs.tag_preferences.items():
        info = find_model(model_name)
        if info is None:
            raise UnknownModelError(
                model_name, f'Model "{model_name}" for tag "{tag.value}" not found in registry.'
            )
        if tag not in info.tags:
            has = ", ".join(sorted(t.value for t in info.tags))
            warnings.append(f'Model "{model_name}" does not have tag "{tag.value}" (has: {has})')
    return warnings


class PreferencesStore:
    def __init__(self, path: Path | str, *, env: Mapping[str, str] | None = None):
        self._path = Path(path)
        self._env = env

    @property
    def path(self) -> Path:
        return self._path

    def _read_file(self) -> UserPreferences:
        if not self._path.exists():
            return UserPreferences()
        try:
            return UserPreferences.model_validate(json.loads(self._path.read_text(encoding="utf-8")))
        except (OSError, ValueError, PydanticValidationError) as e:
            log.warning("preferences_unreadable", path=str(self._path), error=str(e))
            return UserPreferences()

    def load(self) -> UserPreferences:
        """File preferences with environment overrides applied on top."""
        env = os.environ if self._env is None else self._env
        prefs = self._read_file()

        default_model = env.get(DEFAULT_MODEL_ENV)
        if default_model:
            prefs.default_model = default_model
        cost = env.get(COST_PREFERENCE_ENV)
        if cost in (CostPreference.FLAGSHIP.value, CostPreference.CHEAPER.value):
            prefs.cost_preference = CostPreference(cost)
        return prefs

    def save(self, update: UserPreferences) -> UserPreferences:
        """Merge `update` into the stored file and return the result.

        Unset fields keep their stored value; tag preferences merge per tag.
        """
        merged = self._read_file()
        if update.default_model is not None:
            merged.default_model = update.default_model
        if update.cost_preference is not None:
            merged.cost_preference = update.cost_preference
        merged.tag_preferences = {**merged.tag_preferences, **update.tag_preferences}

        body = json.dumps(merged.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2)
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(body, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise PreferencesError(f"Failed to save preferences: {e}") from e
        log.info("preferences_saved", path=str(self._path))
        return merged
