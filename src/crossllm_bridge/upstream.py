from __future__ import annotations

from typing import Any

import httpx
import structlog

from .errors import (
    AuthenticationError,
    BadRequestError,
    PaymentRequiredError,
    RateLimitError,
    UpstreamHTTPError,
    UpstreamProtocolError,
    UpstreamTransportError,
)

log = structlog.get_logger()


def upstream_error_message(resp: httpx.Response) -> str | None:
    """Best-effort human message from a provider's error body."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    err = body.get("error")
    if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"]:
        return err["message"]
    if isinstance(err, str) and err:
        return err
    for key in ("message", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _retry_after(resp: httpx.Response) -> int | None:
    value = resp.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def raise_for_upstream_status(resp: httpx.Response, *, label: str) -> None:
    status = resp.status_code
    if status < 400:
        return
    message = upstream_error_message(resp)
    if status == 401:
        raise AuthenticationError(f"Invalid API key - please check your {label} API key")
    if status == 429:
        raise RateLimitError(retry_after_seconds=_retry_after(resp))
    if status == 402:
        raise PaymentRequiredError(f"Payment required - please check your {label} billing")
    if status == 400:
        raise BadRequestError(f"Bad request: {message or 'Invalid request format'}")
    if status >= 500:
        log.warning("upstream_5xx", provider=label, status_code=status, body=resp.text[:500])
    raise UpstreamHTTPError(status, message or resp.reason_phrase or "Upstream error")


class UpstreamSession:
    """Shared async HTTP session for every provider adapter.

    One JSON POST per call, no retries: a failed call resolves to a classified
    error and the caller decides what to do with it.
    """

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 120.0):
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def post_json(
        self,
        url: str,
        *,
        label: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamTransportError(str(e) or "Upstream request timed out.") from e
        except httpx.HTTPError as e:
            raise UpstreamTransportError(str(e) or e.__class__.__name__) from e

        raise_for_upstream_status(resp, label=label)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError("Upstream returned a non-JSON body.") from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError("Upstream returned an unexpected JSON document.")
        return data
