import asyncio
import threading

import httpx
import pytest

from conftest import chat_reply
from crossllm_bridge.contracts import (
    ALL_PROVIDERS,
    CostPreference,
    ModelTag,
    NormalizedRequest,
    NormalizedResponse,
    Provider,
    UserPreferences,
)
from crossllm_bridge.dispatch import Dispatcher
from crossllm_bridge.upstream import UpstreamSession


class DelayedAdapter:
    def __init__(self, provider: Provider, delay: float, fail: bool = False):
        self.provider = provider
        self.delay = delay
        self.fail = fail

    async def complete(self, request, *, record=True):
        await asyncio.sleep(self.delay)
        if self.fail:
            return NormalizedResponse.failure(self.provider, "boom")
        return NormalizedResponse(provider=self.provider.value, response=f"{self.provider.value}:{request.prompt}")


class ExplodingAdapter:
    async def complete(self, request, *, record=True):
        raise RuntimeError("adapter bug")


@pytest.mark.asyncio
async def test_unsupported_provider_returns_error_without_logging(make_dispatcher, log_store):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network call expected")

    dispatcher = make_dispatcher(handler, openai_api_key="sk")
    try:
        resp = await dispatcher.dispatch_one("llama", NormalizedRequest(prompt="hi"))
    finally:
        await dispatcher.close()

    assert resp.error == "Unsupported provider: llama"
    assert log_store.query() == []


@pytest.mark.asyncio
async def test_dispatch_all_keeps_registry_order_regardless_of_completion_order():
    # earlier providers finish last
    adapters = {
        p: DelayedAdapter(p, delay=0.01 * (len(ALL_PROVIDERS) - i), fail=(i % 3 == 0))
        for i, p in enumerate(ALL_PROVIDERS)
    }
    dispatcher = Dispatcher(adapters)

    results = await dispatcher.dispatch_all(NormalizedRequest(prompt="q"))

    assert [r.provider for r in results] == [p.value for p in ALL_PROVIDERS]
    assert [r.error is not None for r in results] == [i % 3 == 0 for i in range(len(ALL_PROVIDERS))]
    assert results[1].response == "claude:q"


@pytest.mark.asyncio
async def test_dispatch_all_partial_failure_logs_every_attempt(make_dispatcher, log_store):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=chat_reply("ok", usage={"prompt_tokens": 1, "completion_tokens": 1}))

    dispatcher = make_dispatcher(handler, openai_api_key="sk")
    try:
        results = await dispatcher.dispatch_all(NormalizedRequest(prompt="hi"))
    finally:
        await dispatcher.close()

    assert len(results) == len(ALL_PROVIDERS)
    assert results[0].ok
    assert results[0].usage.total_tokens == 2
    assert all("not configured" in r.error for r in results[1:])
    assert len(log_store.query()) == len(ALL_PROVIDERS)


@pytest.mark.asyncio
async def test_dispatch_all_contains_a_raising_slot():
    adapters = {p: DelayedAdapter(p, 0) for p in ALL_PROVIDERS}
    adapters[Provider.GROK] = ExplodingAdapter()
    dispatcher = Dispatcher(adapters)

    results = await dispatcher.dispatch_all(NormalizedRequest(prompt="q"))

    assert len(results) == len(ALL_PROVIDERS)
    grok = results[ALL_PROVIDERS.index(Provider.GROK)]
    assert grok.provider == "grok"
    assert grok.error == "adapter bug"


def test_preferred_model_order():
    dispatcher = Dispatcher({})
    prefs = UserPreferences(
        default_model="gpt-4o",
        cost_preference=CostPreference.CHEAPER,
        tag_preferences={ModelTag.CODING: "deepseek-r1"},
    )

    # tag preference owned by the provider wins
    assert dispatcher.preferred_model("deepseek", "coding", prefs) == "deepseek-r1"
    # tag preference for another provider is skipped, default model applies
    assert dispatcher.preferred_model("chatgpt", "coding", prefs) == "gpt-4o"
    # neither belongs to claude: registry selection with the cost preference
    assert dispatcher.preferred_model("claude", "general", prefs) == "claude-3-haiku-20240307"


class ThreadRecordingLogStore:
    def __init__(self):
        self.threads = []

    def append(self, provider, request, response, *, duration_ms=None):
        self.threads.append(threading.current_thread())
        return "entry"


@pytest.mark.asyncio
async def test_log_writes_run_off_the_event_loop_thread(make_config):
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=chat_reply("ok"))

    log_store = ThreadRecordingLogStore()
    session = UpstreamSession(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    dispatcher = Dispatcher.from_config(make_config(openai_api_key="sk"), log_store=log_store, session=session)
    try:
        await dispatcher.dispatch_all(NormalizedRequest(prompt="hi"))
    finally:
        await dispatcher.close()

    assert len(log_store.threads) == len(ALL_PROVIDERS)
    assert threading.main_thread() not in log_store.threads
