from __future__ import annotations

import asyncio

import structlog

from .adapter import ProviderAdapter
from .config import BridgeConfig
from .contracts import (
    ALL_PROVIDERS,
    CostPreference,
    ModelTag,
    NormalizedRequest,
    NormalizedResponse,
    Provider,
    UserPreferences,
    parse_provider,
)
from .errors import UnsupportedProviderError
from .log_store import PromptLogStore
from .providers import PROVIDER_SPECS
from .registry import RandomSource, find_model, select_model
from .upstream import UpstreamSession

log = structlog.get_logger()


class Dispatcher:
    """Routes normalized requests to provider adapters.

    Single-provider calls and broadcasts never raise for a failed provider;
    failures come back as responses with `error` set.
    """

    def __init__(
        self,
        adapters: dict[Provider, ProviderAdapter],
        *,
        session: UpstreamSession | None = None,
        rng: RandomSource | None = None,
    ):
        self.adapters = adapters
        self.session = session
        self.rng = rng

    @classmethod
    def from_config(
        cls,
        cfg: BridgeConfig,
        *,
        log_store: PromptLogStore | None = None,
        session: UpstreamSession | None = None,
        rng: RandomSource | None = None,
    ) -> "Dispatcher":
        session = session or UpstreamSession(timeout_seconds=cfg.upstream_timeout_seconds)
        adapters = {
            provider: ProviderAdapter(spec, cfg, session, log_store=log_store)
            for provider, spec in PROVIDER_SPECS.items()
        }
        return cls(adapters, session=session, rng=rng)

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()

    async def dispatch_one(
        self, provider: Provider | str, request: NormalizedRequest, *, record: bool = True
    ) -> NormalizedResponse:
        parsed = parse_provider(provider)
        adapter = self.adapters.get(parsed) if parsed is not None else None
        if adapter is None:
            error = UnsupportedProviderError(str(getattr(provider, "value", provider)))
            log.warning("dispatch_unsupported_provider", provider=error.provider)
            return NormalizedResponse.failure(error.provider, str(error))
        return await adapter.complete(request, record=record)

    async def dispatch_all(self, request: NormalizedRequest) -> list[NormalizedResponse]:
        """Fan `request` out to every provider; results follow registry order."""
        providers = [p for p in ALL_PROVIDERS if p in self.adapters]
        results = await asyncio.gather(
            *(self.dispatch_one(p, request) for p in providers),
            return_exceptions=True,
        )
        out: list[NormalizedResponse] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                log.error("dispatch_all_slot_failed", provider=provider.value, error=str(result))
                result = NormalizedResponse.failure(provider, str(result) or result.__class__.__name__)
            out.append(result)
        return out

    def select_model(
        self,
        provider: Provider | str,
        tag: ModelTag | str | None = None,
        cost_preference: CostPreference | str | None = None,
    ) -> str | None:
        return select_model(provider, tag, cost_preference, rng=self.rng)

    def preferred_model(
        self,
        provider: Provider | str,
        tag: ModelTag | str | None = None,
        preferences: UserPreferences | None = None,
    ) -> str | None:
        """Model for `provider` honouring user preferences.

        Order: tag preference owned by this provider, then the default model
        if it belongs to this provider, then registry selection by tag and
        cost preference.
        """
        provider = Provider(provider)
        preferences = preferences or UserPreferences()
        if tag is not None:
            tag = ModelTag(tag)
            mapped = preferences.tag_preferences.get(tag)
            info = find_model(mapped) if mapped else None
            if info is not None and info.provider is provider:
                return info.name
        if preferences.default_model:
            info = find_model(preferences.default_model)
            if info is not None and info.provider is provider:
                return info.name
        return self.select_model(provider, tag, preferences.cost_preference)
