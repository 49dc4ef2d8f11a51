from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_KIMI_BASE_URL = "https://api.moonshot.ai/v1"


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


class BridgeConfig(BaseModel):
    # Provider credentials
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY") or None)
    anthropic_api_key: str | None = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY") or None)
    deepseek_api_key: str | None = Field(default_factory=lambda: os.getenv("DEEPSEEK_API_KEY") or None)
    gemini_api_key: str | None = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY") or None)
    xai_api_key: str | None = Field(default_factory=lambda: os.getenv("XAI_API_KEY") or None)
    kimi_api_key: str | None = Field(default_factory=lambda: _first_env("KIMI_API_KEY", "MOONSHOT_API_KEY"))
    perplexity_api_key: str | None = Field(default_factory=lambda: os.getenv("PERPLEXITY_API_KEY") or None)
    mistral_api_key: str | None = Field(default_factory=lambda: os.getenv("MISTRAL_API_KEY") or None)

    # Per-provider default model overrides
    default_chatgpt_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_CHATGPT_MODEL") or None)
    default_claude_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_CLAUDE_MODEL") or None)
    default_deepseek_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_DEEPSEEK_MODEL") or None)
    default_gemini_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_GEMINI_MODEL") or None)
    default_grok_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_GROK_MODEL") or None)
    default_kimi_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_KIMI_MODEL") or None)
    default_perplexity_model: str | None = Field(
        default_factory=lambda: os.getenv("DEFAULT_PERPLEXITY_MODEL") or None
    )
    default_mistral_model: str | None = Field(default_factory=lambda: os.getenv("DEFAULT_MISTRAL_MODEL") or None)

    kimi_base_url: str = Field(
        default_factory=lambda: _first_env("KIMI_API_BASE_URL", "MOONSHOT_API_BASE_URL") or DEFAULT_KIMI_BASE_URL
    )

    # Storage
    data_dir: str | None = Field(default_factory=lambda: os.getenv("CROSS_LLM_DATA_DIR") or None)

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Upstream HTTP
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "120"))
    )

    # Background job queue
    job_poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "1.0"))
    )
    enable_job_processor: bool = Field(default_factory=lambda: _env_flag("ENABLE_JOB_PROCESSOR", "true"))

    # Server hardening
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN") or None)
    enable_api_docs: bool = Field(default_factory=lambda: _env_flag("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_inflight_requests: int = Field(default_factory=lambda: int(os.getenv("MAX_INFLIGHT_REQUESTS", "32")))

    def api_key_for(self, provider: str) -> str | None:
        field = _API_KEY_FIELDS.get(_provider_key(provider))
        if field is None:
            return None
        return getattr(self, field)

    def default_model_for(self, provider: str) -> str | None:
        return getattr(self, f"default_{_provider_key(provider)}_model", None)

    def secrets(self) -> list[str]:
        values = [self.api_key_for(p) for p in _API_KEY_FIELDS]
        values.append(self.server_auth_token)
        return [v for v in values if v]


def _provider_key(provider: object) -> str:
    return str(getattr(provider, "value", provider))


_API_KEY_FIELDS = {
    "chatgpt": "openai_api_key",
    "claude": "anthropic_api_key",
    "deepseek": "deepseek_api_key",
    "gemini": "gemini_api_key",
    "grok": "xai_api_key",
    "kimi": "kimi_api_key",
    "perplexity": "perplexity_api_key",
    "mistral": "mistral_api_key",
}
