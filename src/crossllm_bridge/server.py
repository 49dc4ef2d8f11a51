import json
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

from .config import BridgeConfig
from .dispatch import Dispatcher
from .errors import BridgeError, InvalidToolArgumentsError, StorageError, UnknownToolError, ValidationError
from .http_security import install_middlewares, make_error_body
from .job_queue import JobProcessor, JobStore
from .log_store import PromptLogStore
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .paths import JOBS_FILE, PREFERENCES_FILE, PROMPT_LOG_FILE, resolve_store_path
from .preferences import PreferencesStore
from .tools import BridgeTools
from .upstream import UpstreamSession

log = structlog.get_logger()


def _store_path(cfg: BridgeConfig, filename: str) -> Path:
    if cfg.data_dir:
        return Path(cfg.data_dir).expanduser() / filename
    return resolve_store_path(filename)


def build_bridge(cfg: BridgeConfig, *, session: UpstreamSession | None = None) -> tuple[BridgeTools, JobProcessor]:
    """Wire stores, dispatcher, tools and the job processor from configuration."""
    log_store = PromptLogStore(_store_path(cfg, PROMPT_LOG_FILE))
    job_store = JobStore(_store_path(cfg, JOBS_FILE))
    preferences = PreferencesStore(_store_path(cfg, PREFERENCES_FILE))
    dispatcher = Dispatcher.from_config(cfg, log_store=log_store, session=session)
    tools = BridgeTools(dispatcher, log_store=log_store, job_store=job_store, preferences=preferences)
    processor = JobProcessor(
        job_store, dispatcher, log_store=log_store, poll_interval=cfg.job_poll_interval_seconds
    )
    return tools, processor


def create_app(
    cfg: BridgeConfig | None = None,
    tools: BridgeTools | None = None,
    processor: JobProcessor | None = None,
):
    try:
        from fastapi import FastAPI, Request
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or BridgeConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    if tools is None:
        tools, built_processor = build_bridge(cfg)
        processor = processor or built_processor

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _error(request, status_code: int, exc: Exception, type: str) -> JSONResponse:
        server_errors_total.labels(type=type).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_error_body(message=str(exc), type=type, request_id=_request_id(request)),
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        if processor is not None and cfg.enable_job_processor:
            processor.start()
        try:
            yield
        finally:
            if processor is not None:
                await processor.stop()
                await processor.wait_idle()
            await tools.dispatcher.close()

    app = FastAPI(
        title="cross-llm-bridge",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(UnknownToolError)
    async def _unknown_tool_handler(request, exc: UnknownToolError):
        return _error(request, 404, exc, "not_found_error")

    @app.exception_handler(ValidationError)
    async def _validation_error_handler(request, exc: ValidationError):
        return _error(request, 400, exc, "invalid_request_error")

    @app.exception_handler(StorageError)
    async def _storage_error_handler(request, exc: StorageError):
        log.error("storage_error", error=str(exc))
        return _error(request, 500, exc, "storage_error")

    @app.exception_handler(BridgeError)
    async def _bridge_error_handler(request, exc: BridgeError):
        log.error("bridge_error", error=str(exc), error_type=exc.__class__.__name__)
        return _error(request, 500, exc, "api_error")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/tools")
    async def list_tools() -> dict:
        return {"tools": tools.catalogue()}

    @app.post("/v1/tools/{name}")
    async def call_tool(name: str, request: Request) -> dict:
        started_at = time.monotonic()
        raw = await request.body()
        try:
            arguments = json.loads(raw) if raw.strip() else {}
        except ValueError as e:
            raise InvalidToolArgumentsError("Request body must be a JSON object.") from e
        if not isinstance(arguments, dict):
            raise InvalidToolArgumentsError("Request body must be a JSON object.")

        result = await tools.call(name, arguments)
        _observe("/v1/tools", 200, started_at)
        return {
            "tool": name,
            "is_error": result.is_error,
            "content": [{"type": "text", "text": result.text}],
        }

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("crossllm_bridge.server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
