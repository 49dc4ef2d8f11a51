from __future__ import annotations

import asyncio
import re
import secrets as secrets_module
import uuid
from typing import Any

import structlog

TOOL_API_PREFIX = "/v1/"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def make_error_body(*, message: str, type: str, request_id: str | None = None) -> dict[str, Any]:
    """JSON body shared by every error the HTTP binding returns."""
    return {"error": {"message": message, "type": type, "request_id": request_id}}


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.strip().lower() != "bearer" or not token:
        return None
    return token


def constant_time_equals(a: str, b: str) -> bool:
    return secrets_module.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def is_tool_api_path(path: str) -> bool:
    return path.startswith(TOOL_API_PREFIX)


def install_middlewares(app, *, cfg) -> None:
    """Install request-id, security-header, auth and limit middleware on the tool API."""
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    def _reject(request: Request, status_code: int, message: str, type: str, headers=None) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            headers=headers,
            content=make_error_body(
                message=message,
                type=type,
                request_id=getattr(request.state, "request_id", None),
            ),
        )

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if not cfg.enable_api_docs:
                response.headers.setdefault("X-Robots-Tag", "noindex, nofollow")
            if is_tool_api_path(request.url.path):
                # tool reports may echo prompts and model output
                response.headers.setdefault("Cache-Control", "no-store")
            return response

    class MaxBodySizeMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            limit = cfg.max_request_body_bytes
            if limit > 0 and request.method == "POST" and is_tool_api_path(request.url.path):
                content_length = request.headers.get("content-length")
                too_large = content_length is not None and content_length.isdigit() and int(content_length) > limit
                if too_large or len(await request.body()) > limit:
                    return _reject(request, 413, "Request body too large.", "invalid_request_error")
            return await call_next(request)

    class ConcurrencyLimitMiddleware(BaseHTTPMiddleware):
        def __init__(self, app_):
            super().__init__(app_)
            self._sem = asyncio.Semaphore(max(1, cfg.max_inflight_requests))

        async def dispatch(self, request: Request, call_next):
            if not is_tool_api_path(request.url.path):
                return await call_next(request)
            if self._sem.locked():
                return _reject(request, 429, "Server is busy. Try again later.", "rate_limit_error")
            async with self._sem:
                return await call_next(request)

    class BearerAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            expected = cfg.server_auth_token
            if not expected or not is_tool_api_path(request.url.path):
                return await call_next(request)
            token = parse_bearer_token(request.headers.get("authorization")) or request.headers.get("x-api-key")
            if not token or not constant_time_equals(token, expected):
                return _reject(
                    request,
                    401,
                    "Missing or invalid authentication token.",
                    "authentication_error",
                    headers={"WWW-Authenticate": 'Bearer realm="cross-llm-bridge"'},
                )
            return await call_next(request)

    app.add_middleware(MaxBodySizeMiddleware)
    app.add_middleware(ConcurrencyLimitMiddleware)
    app.add_middleware(BearerAuthMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost, so short-circuited responses still carry X-Request-Id.
    app.add_middleware(RequestIdMiddleware)

    if cfg.allowed_hosts:
        from starlette.middleware.trustedhost import TrustedHostMiddleware

        app.add_middleware(TrustedHostMiddleware, allowed_hosts=cfg.allowed_hosts)
