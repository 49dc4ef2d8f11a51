from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from .config import BridgeConfig
from .contracts import NormalizedRequest, NormalizedResponse
from .errors import ProviderError, RateLimitError
from .metrics import dispatch_latency_seconds, dispatch_requests_total
from .providers import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, GenerationParams, ProviderSpec
from .upstream import UpstreamSession

if TYPE_CHECKING:
    from .log_store import PromptLogStore

log = structlog.get_logger()


class ProviderAdapter:
    """Generic adapter driven by a `ProviderSpec`.

    `complete` never raises for a failed provider call; every failure ends up
    in `NormalizedResponse.error`.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        cfg: BridgeConfig,
        session: UpstreamSession,
        *,
        log_store: PromptLogStore | None = None,
    ):
        self.spec = spec
        self.cfg = cfg
        self.session = session
        self.log_store = log_store

    @property
    def name(self) -> str:
        return self.spec.provider.value

    def resolve_model(self, request: NormalizedRequest) -> str:
        return request.model or self.cfg.default_model_for(self.name) or self.spec.fallback_model

    def _base_url(self) -> str | None:
        if self.spec.base_url_setting is None:
            return None
        return getattr(self.cfg, self.spec.base_url_setting, None)

    async def complete(self, request: NormalizedRequest, *, record: bool = True) -> NormalizedResponse:
        start = time.monotonic()
        response = await self._call(request)
        duration = time.monotonic() - start

        status = "success" if response.ok else "error"
        dispatch_requests_total.labels(provider=self.name, status=status).inc()
        dispatch_latency_seconds.labels(provider=self.name).observe(duration)

        if record and self.log_store is not None:
            await asyncio.to_thread(
                self.log_store.append, self.name, request, response, duration_ms=int(duration * 1000)
            )
        return response

    async def _call(self, request: NormalizedRequest) -> NormalizedResponse:
        api_key = self.cfg.api_key_for(self.name)
        if not api_key:
            return NormalizedResponse.failure(self.spec.provider, self.spec.missing_key_error)

        model = self.resolve_model(request)
        params = GenerationParams(
            model=model,
            prompt=request.prompt,
            temperature=DEFAULT_TEMPERATURE if request.temperature is None else request.temperature,
            max_tokens=request.max_tokens or DEFAULT_MAX_TOKENS,
        )
        headers, query = self.spec.auth(api_key)
        try:
            data = await self.session.post_json(
                self.spec.url(model, self._base_url()),
                label=self.spec.label,
                payload=self.spec.build_payload(params),
                headers=headers,
                params=query,
            )
            reply = self.spec.parse_reply(data, model)
        except RateLimitError as e:
            log.warning(
                "dispatch_rate_limited", provider=self.name, model=model, retry_after_seconds=e.retry_after_seconds
            )
            return NormalizedResponse.failure(self.spec.provider, f"{self.spec.label} API error: {e}", model=model)
        except ProviderError as e:
            log.warning("dispatch_failed", provider=self.name, model=model, error=str(e))
            return NormalizedResponse.failure(self.spec.provider, f"{self.spec.label} API error: {e}", model=model)
        except Exception as e:
            log.exception("dispatch_unexpected_error", provider=self.name, model=model)
            return NormalizedResponse.failure(
                self.spec.provider, f"{self.spec.label} API error: {str(e) or e.__class__.__name__}", model=model
            )

        return NormalizedResponse(provider=self.name, response=reply.text, model=reply.model, usage=reply.usage)
