from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    DEEPSEEK = "deepseek"
    GEMINI = "gemini"
    GROK = "grok"
    KIMI = "kimi"
    PERPLEXITY = "perplexity"
    MISTRAL = "mistral"


# Registration order; fixes the order of broadcast results.
ALL_PROVIDERS: tuple[Provider, ...] = tuple(Provider)


def parse_provider(value: str | Provider) -> Provider | None:
    if isinstance(value, Provider):
        return value
    try:
        return Provider(str(value).strip().lower())
    except ValueError:
        return None


class ModelTag(str, Enum):
    CODING = "coding"
    BUSINESS = "business"
    REASONING = "reasoning"
    MATH = "math"
    CREATIVE = "creative"
    GENERAL = "general"


class CostTier(str, Enum):
    FLAGSHIP = "flagship"
    STANDARD = "standard"
    BUDGET = "budget"


class CostPreference(str, Enum):
    FLAGSHIP = "flagship"
    CHEAPER = "cheaper"


@dataclass(frozen=True)
class ModelInfo:
    name: str
    provider: Provider
    tags: frozenset[ModelTag]
    cost_tier: CostTier
    description: str | None = None


class Usage(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class NormalizedRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @field_validator("prompt")
    @classmethod
    def _validate_prompt(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("prompt must be non-empty.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v


class NormalizedResponse(BaseModel):
    """Provider-agnostic reply.

    `error` presence means failure regardless of `response` content.
    """

    provider: str
    response: str = ""
    model: str | None = None
    usage: Usage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.error

    @classmethod
    def failure(cls, provider: str | Provider, error: str, *, model: str | None = None) -> "NormalizedResponse":
        return cls(provider=getattr(provider, "value", provider), error=error, model=model)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AsyncJob(BaseModel):
    id: str
    status: JobStatus = JobStatus.PENDING
    provider: str
    request: NormalizedRequest
    response: NormalizedResponse | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class PromptLogEntry(BaseModel):
    id: str
    timestamp: datetime
    provider: str
    model: str | None = None
    prompt: str
    response: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    usage: Usage | None = None
    error: str | None = None
    duration_ms: int | None = None


class LogFilters(BaseModel):
    provider: str | None = None
    model: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    search_text: str | None = None
    limit: int | None = None


class LogDeleteCriteria(BaseModel):
    id: str | None = None
    provider: str | None = None
    model: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    older_than_days: float | None = None

    def is_empty(self) -> bool:
        return not any(
            v is not None
            for v in (self.id, self.provider, self.model, self.start_date, self.end_date, self.older_than_days)
        )


class LogStats(BaseModel):
    total_entries: int = 0
    by_provider: dict[str, int] = Field(default_factory=dict)
    by_model: dict[str, int] = Field(default_factory=dict)
    total_tokens: int = 0
    oldest_entry: str | None = None
    newest_entry: str | None = None


class UserPreferences(BaseModel):
    # persisted with camelCase keys: defaultModel, costPreference, tagPreferences
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    default_model: str | None = None
    cost_preference: CostPreference | None = None
    tag_preferences: dict[ModelTag, str] = Field(default_factory=dict)
