from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path

import structlog

log = structlog.get_logger()

APP_DIR_NAME = "cross-llm-bridge"
PROJECT_DIR_NAME = ".cross-llm-bridge"
DATA_DIR_ENV = "CROSS_LLM_DATA_DIR"

PREFERENCES_FILE = "preferences.json"
JOBS_FILE = "async-jobs.json"
PROMPT_LOG_FILE = "prompts.db"


def user_config_dir(
    *,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
    platform: str | None = None,
) -> Path:
    env = os.environ if env is None else env
    home = home or Path.home()
    platform = platform or sys.platform
    if platform == "win32":
        return Path(env.get("APPDATA") or home) / APP_DIR_NAME
    return home / f".{APP_DIR_NAME}"


def _usable_dir(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(directory, os.W_OK)


def resolve_store_path(
    filename: str,
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    home: Path | None = None,
    platform: str | None = None,
) -> Path:
    """Locate a persisted store file.

    Layers, first usable wins: explicit `CROSS_LLM_DATA_DIR`, the user-level
    config directory, `<cwd>/.cross-llm-bridge`. If none can be created the
    user-level path is returned anyway and the eventual write will fail loudly.
    """
    env = os.environ if env is None else env
    user_dir = user_config_dir(env=env, home=home, platform=platform)

    candidates: list[Path] = []
    explicit = env.get(DATA_DIR_ENV)
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(user_dir)
    candidates.append((cwd or Path.cwd()) / PROJECT_DIR_NAME)

    for directory in candidates:
        if _usable_dir(directory):
            return directory / filename

    log.warning("store_dir_unavailable", filename=filename, tried=[str(c) for c in candidates])
    return user_dir / filename
