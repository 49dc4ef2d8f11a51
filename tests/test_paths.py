from pathlib import Path

from crossllm_bridge.paths import PREFERENCES_FILE, resolve_store_path, user_config_dir


def test_user_config_dir_per_platform(tmp_path):
    assert user_config_dir(env={}, home=tmp_path, platform="linux") == tmp_path / ".cross-llm-bridge"
    appdata = tmp_path / "AppData"
    assert user_config_dir(env={"APPDATA": str(appdata)}, home=tmp_path, platform="win32") == (
        appdata / "cross-llm-bridge"
    )


def test_explicit_data_dir_wins(tmp_path):
    data_dir = tmp_path / "data"
    path = resolve_store_path(
        PREFERENCES_FILE, env={"CROSS_LLM_DATA_DIR": str(data_dir)}, home=tmp_path / "home", cwd=tmp_path
    )
    assert path == data_dir / PREFERENCES_FILE
    assert data_dir.is_dir()


def test_falls_back_to_project_dir_when_home_is_unusable(tmp_path):
    home = tmp_path / "home"
    home.write_text("a file, not a directory", encoding="utf-8")
    cwd = tmp_path / "project"

    path = resolve_store_path("jobs.json", env={}, home=home, cwd=cwd, platform="linux")

    assert path == cwd / ".cross-llm-bridge" / "jobs.json"


def test_returns_user_path_when_nothing_is_usable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    path = resolve_store_path("prompts.db", env={}, home=blocker, cwd=blocker, platform="linux")

    assert path == Path(blocker) / ".cross-llm-bridge" / "prompts.db"
