from datetime import datetime, timedelta, timezone

import httpx
import pytest

from crossllm_bridge.config import BridgeConfig
from crossllm_bridge.contracts import ALL_PROVIDERS
from crossllm_bridge.dispatch import Dispatcher
from crossllm_bridge.log_store import PromptLogStore
from crossllm_bridge.upstream import UpstreamSession

_KEY_FIELDS = (
    "openai_api_key",
    "anthropic_api_key",
    "deepseek_api_key",
    "gemini_api_key",
    "xai_api_key",
    "kimi_api_key",
    "perplexity_api_key",
    "mistral_api_key",
)


class MutableClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def make_config():
    """BridgeConfig isolated from the developer's environment."""

    def _make(**overrides) -> BridgeConfig:
        values = {field: None for field in _KEY_FIELDS}
        values.update({f"default_{p.value}_model": None for p in ALL_PROVIDERS})
        values.update(
            kimi_base_url="https://api.moonshot.ai/v1",
            data_dir=None,
            enable_metrics=False,
            server_auth_token=None,
            allowed_hosts=[],
        )
        values.update(overrides)
        return BridgeConfig(**values)

    return _make


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def log_store(tmp_path, clock):
    return PromptLogStore(tmp_path / "prompts.db", clock=clock)


@pytest.fixture
def make_dispatcher(make_config, log_store):
    """Dispatcher whose HTTP goes to `handler` through httpx.MockTransport."""

    def _make(handler, **cfg_overrides) -> Dispatcher:
        session = UpstreamSession(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        return Dispatcher.from_config(make_config(**cfg_overrides), log_store=log_store, session=session)

    return _make


def chat_reply(text: str = "hello", model: str = "gpt-4", usage: dict | None = None) -> dict:
    body = {"model": model, "choices": [{"message": {"role": "assistant", "content": text}}]}
    if usage is not None:
        body["usage"] = usage
    return body
