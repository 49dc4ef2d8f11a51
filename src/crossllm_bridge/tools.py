"""Tool operations exposed to a calling agent.

Each tool validates its JSON arguments, runs one bridge operation and renders
a markdown-style text report. Provider failures are reports too; only bad
arguments and storage failures raise.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Annotated, Any, NamedTuple

import structlog
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .contracts import (
    ALL_PROVIDERS,
    AsyncJob,
    CostPreference,
    JobStatus,
    LogDeleteCriteria,
    LogFilters,
    ModelTag,
    NormalizedRequest,
    NormalizedResponse,
    Provider,
    Usage,
    UserPreferences,
)
from .dispatch import Dispatcher
from .errors import InvalidToolArgumentsError, UnknownModelError, UnknownToolError
from .job_queue import JobStore
from .log_store import PromptLogStore
from .preferences import PreferencesStore, validate_preferences
from .providers import PROVIDER_SPECS
from .registry import REGISTRY_LOADED_AT, all_models, all_tags, find_model, model_counts_by_provider, models_by_tag

log = structlog.get_logger()

PREVIEW_CHARS = 200


class ToolResult(NamedTuple):
    text: str
    is_error: bool = False


def _check_prompt(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("prompt must be non-empty.")
    return v


Prompt = Annotated[str, AfterValidator(_check_prompt)]


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _CamelArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class CompletionArgs(_Args):
    prompt: Prompt
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    # picks a model from preferences / registry when `model` is not given
    tag: ModelTag | None = None

    def to_request(self, model: str | None = None) -> NormalizedRequest:
        return NormalizedRequest(
            prompt=self.prompt,
            model=self.model or model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


class ProviderCompletionArgs(CompletionArgs):
    provider: Provider


class BroadcastArgs(_Args):
    prompt: Prompt
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class NoArgs(_Args):
    pass


class SetPreferencesArgs(_CamelArgs):
    default_model: str | None = None
    cost_preference: CostPreference | None = None
    tag_preferences: dict[ModelTag, str] = Field(default_factory=dict)


class ModelsByTagArgs(_Args):
    tag: ModelTag


class HistoryArgs(_CamelArgs):
    provider: Provider | None = None
    model: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    search_text: str | None = None
    limit: int | None = Field(default=None, gt=0)


class DeleteEntriesArgs(_CamelArgs):
    id: str | None = None
    provider: Provider | None = None
    model: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    older_than_days: int | None = Field(default=None, gt=0)


class JobIdArgs(_CamelArgs):
    job_id: str


class ListJobsArgs(_CamelArgs):
    status: JobStatus | None = None
    provider: Provider | None = None
    limit: int | None = Field(default=None, gt=0)


class CleanupJobsArgs(_CamelArgs):
    older_than_days: int = Field(gt=0)


class ToolSpec(NamedTuple):
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[ToolResult]]


def _n(value: int | None) -> str:
    return "N/A" if value is None else str(value)


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")


def _usage_block(usage: Usage) -> str:
    return (
        "\n\n---\n**Usage:**\n"
        f"- Prompt tokens: {_n(usage.prompt_tokens)}\n"
        f"- Completion tokens: {_n(usage.completion_tokens)}\n"
        f"- Total tokens: {_n(usage.total_tokens)}\n"
    )


def render_response(heading: str, response: NormalizedResponse) -> ToolResult:
    if response.error:
        return ToolResult(f"**{heading} Error:** {response.error}", is_error=True)
    text = f"**{heading} Response**\n**Model:** {response.model or 'Unknown'}\n\n{response.response}"
    if response.usage is not None:
        text += _usage_block(response.usage)
    return ToolResult(text)


def render_broadcast(prompt: str, responses: list[NormalizedResponse]) -> ToolResult:
    parts = [f"**Multi-LLM Response**\n\n**Prompt:** {prompt}\n\n---\n\n"]
    total_tokens = 0
    successful = 0
    for response in responses:
        parts.append(f"## {response.provider.upper()}\n\n")
        if response.error:
            parts.append(f"**Error:** {response.error}\n\n")
        else:
            successful += 1
            parts.append(f"**Model:** {response.model or 'Unknown'}\n\n{response.response}\n\n")
            if response.usage is not None:
                total_tokens += response.usage.total_tokens or 0
        parts.append("---\n\n")

    parts.append(f"**Summary:**\n- Successful responses: {successful}/{len(responses)}\n")
    if total_tokens > 0:
        parts.append(f"- Total tokens used: {total_tokens}\n")
    return ToolResult("".join(parts), is_error=successful == 0)


def render_job(job: AsyncJob) -> str:
    lines = [
        "**Async Job**",
        "",
        f"**Job ID:** {job.id}",
        f"**Provider:** {job.provider}",
        f"**Status:** {job.status.value}",
        f"**Created:** {job.created_at.isoformat()}",
        f"**Updated:** {job.updated_at.isoformat()}",
    ]
    if job.completed_at is not None:
        lines.append(f"**Completed:** {job.completed_at.isoformat()}")
    lines.append(f"**Prompt:** {_preview(job.request.prompt)}")
    if job.error:
        lines.append(f"**Error:** {job.error}")
    elif job.response is not None:
        lines.append(f"**Model:** {job.response.model or 'Unknown'}")
        lines += ["", job.response.response]
        if job.response.usage is not None:
            lines.append(_usage_block(job.response.usage).rstrip("\n"))
    return "\n".join(lines)


class BridgeTools:
    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        log_store: PromptLogStore,
        job_store: JobStore,
        preferences: PreferencesStore,
    ):
        self.dispatcher = dispatcher
        self.log_store = log_store
        self.job_store = job_store
        self.preferences = preferences

        self.tools: dict[str, ToolSpec] = {}
        for provider, spec in PROVIDER_SPECS.items():
            self.tools[f"call-{provider.value}"] = ToolSpec(
                f"Call the {spec.label} API with a prompt",
                CompletionArgs,
                partial(self.call_provider, provider),
            )
        self.tools.update(
            {
                "call-llm": ToolSpec("Call a specific LLM provider by name", ProviderCompletionArgs, self.call_llm),
                "call-all-llms": ToolSpec(
                    "Call every LLM provider with the same prompt and combine the responses",
                    BroadcastArgs,
                    self.call_all_llms,
                ),
                "get-user-preferences": ToolSpec(
                    "Get the default model, cost preference and tag preferences", NoArgs, self.get_user_preferences
                ),
                "set-user-preferences": ToolSpec(
                    "Set the default model, cost preference and tag-based model preferences",
                    SetPreferencesArgs,
                    self.set_user_preferences,
                ),
                "get-models-by-tag": ToolSpec("List models carrying a tag", ModelsByTagArgs, self.get_models_by_tag),
                "get-model-registry-info": ToolSpec(
                    "Describe the model registry", NoArgs, self.get_model_registry_info
                ),
                "get-prompt-history": ToolSpec(
                    "Get logged prompts with optional filters", HistoryArgs, self.get_prompt_history
                ),
                "delete-prompt-entries": ToolSpec(
                    "Delete logged prompts matching the criteria", DeleteEntriesArgs, self.delete_prompt_entries
                ),
                "clear-prompt-history": ToolSpec("Delete every logged prompt", NoArgs, self.clear_prompt_history),
                "get-prompt-stats": ToolSpec("Summarize the prompt log", NoArgs, self.get_prompt_stats),
                "submit-async-job": ToolSpec(
                    "Queue a provider call for background processing", ProviderCompletionArgs, self.submit_async_job
                ),
                "get-async-job": ToolSpec("Get the state of an async job", JobIdArgs, self.get_async_job),
                "list-async-jobs": ToolSpec("List async jobs, newest first", ListJobsArgs, self.list_async_jobs),
                "cancel-async-job": ToolSpec("Cancel a pending async job", JobIdArgs, self.cancel_async_job),
                "delete-async-job": ToolSpec("Delete an async job", JobIdArgs, self.delete_async_job),
                "cleanup-async-jobs": ToolSpec(
                    "Delete async jobs older than a number of days", CleanupJobsArgs, self.cleanup_async_jobs
                ),
            }
        )

    def catalogue(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "description": spec.description, "input_schema": spec.args_model.model_json_schema()}
            for name, spec in self.tools.items()
        ]

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        spec = self.tools.get(name)
        if spec is None:
            raise UnknownToolError(name)
        try:
            args = spec.args_model.model_validate(arguments or {})
        except PydanticValidationError as e:
            raise InvalidToolArgumentsError(_describe_validation_error(e)) from e
        result = await spec.handler(args)
        log.info("tool_called", tool=name, is_error=result.is_error)
        return result

    # -- provider calls ------------------------------------------------------

    def _request_for(self, provider: Provider, args: CompletionArgs) -> NormalizedRequest:
        spec = PROVIDER_SPECS[provider]
        if args.temperature is not None and args.temperature > spec.max_temperature:
            raise InvalidToolArgumentsError(
                f"temperature must be between 0 and {spec.max_temperature:g} for {spec.label}."
            )
        model = None
        if args.model is None and args.tag is not None:
            model = self.dispatcher.preferred_model(provider, args.tag, self.preferences.load())
        return args.to_request(model)

    async def call_provider(self, provider: Provider, args: CompletionArgs) -> ToolResult:
        request = self._request_for(provider, args)
        response = await self.dispatcher.dispatch_one(provider, request)
        return render_response(PROVIDER_SPECS[provider].label, response)

    async def call_llm(self, args: ProviderCompletionArgs) -> ToolResult:
        request = self._request_for(args.provider, args)
        response = await self.dispatcher.dispatch_one(args.provider, request)
        return render_response(args.provider.value.upper(), response)

    async def call_all_llms(self, args: BroadcastArgs) -> ToolResult:
        request = NormalizedRequest(prompt=args.prompt, temperature=args.temperature, max_tokens=args.max_tokens)
        responses = await self.dispatcher.dispatch_all(request)
        return render_broadcast(args.prompt, responses)

    # -- preferences and registry -------------------------------------------

    async def get_user_preferences(self, _args: NoArgs) -> ToolResult:
        prefs = self.preferences.load()
        cost = prefs.cost_preference.value if prefs.cost_preference else "Not set"
        lines = [
            "**User Preferences**",
            "",
            f"**Default Model:** {prefs.default_model or 'Not set'}",
            f"**Cost Preference:** {cost}",
            f"**Preferences File:** {self.preferences.path}",
            "",
        ]
        if prefs.tag_preferences:
            lines.append("**Tag-Based Preferences:**")
            for tag in all_tags():
                model_name = prefs.tag_preferences.get(tag)
                if model_name:
                    info = find_model(model_name)
                    owner = f" ({info.provider.value})" if info else ""
                    lines.append(f"- **{tag.value}**: {model_name}{owner}")
            lines.append("")
        else:
            lines += ["**Tag-Based Preferences:** Not set", ""]

        lines += [f"**Available Tags:** {', '.join(t.value for t in all_tags())}", ""]
        lines.append(f"**Total Models Available:** {len(all_models())}")
        lines.append("- By Provider:")
        for provider, count in model_counts_by_provider().items():
            lines.append(f"  - {provider.value}: {count} models")
        return ToolResult("\n".join(lines) + "\n")

    async def set_user_preferences(self, args: SetPreferencesArgs) -> ToolResult:
        update = UserPreferences(
            default_model=args.default_model,
            cost_preference=args.cost_preference,
            tag_preferences=args.tag_preferences,
        )
        try:
            warnings = validate_preferences(update)
        except UnknownModelError as e:
            return ToolResult(f"Error: {e} Use get-models-by-tag to see available models.", is_error=True)
        self.preferences.save(update)

        lines = ["**Preferences Updated**", ""]
        if args.default_model:
            info = find_model(args.default_model)
            lines += [
                f"**Default Model:** {args.default_model}",
                f"  - Provider: {info.provider.value}",
                f"  - Tags: {', '.join(sorted(t.value for t in info.tags))}",
                f"  - Cost Tier: {info.cost_tier.value}",
                "",
            ]
        if args.cost_preference:
            lines += [f"**Cost Preference:** {args.cost_preference.value}", ""]
        if args.tag_preferences:
            lines.append("**Tag-Based Preferences:**")
            for tag, model_name in args.tag_preferences.items():
                lines.append(f"- **{tag.value}**: {model_name} ({find_model(model_name).provider.value})")
            lines.append("")
        if warnings:
            lines.append("**Warnings:**")
            lines += [f"- Note: {w}" for w in warnings]
            lines.append("")
        lines.append("Preferences saved successfully.")
        return ToolResult("\n".join(lines))

    async def get_models_by_tag(self, args: ModelsByTagArgs) -> ToolResult:
        models = models_by_tag(args.tag)
        if not models:
            return ToolResult(f'No models found with tag "{args.tag.value}"')
        lines = [f'**Models with tag "{args.tag.value}"** ({len(models)} found)', ""]
        for provider in ALL_PROVIDERS:
            owned = [m for m in models if m.provider is provider]
            if not owned:
                continue
            lines += [f"## {provider.value.upper()}", ""]
            for m in owned:
                lines += [
                    f"- **{m.name}**",
                    f"  - Cost Tier: {m.cost_tier.value}",
                    f"  - Tags: {', '.join(sorted(t.value for t in m.tags))}",
                ]
                if m.description:
                    lines.append(f"  - Description: {m.description}")
                lines.append("")
        return ToolResult("\n".join(lines))

    async def get_model_registry_info(self, _args: NoArgs) -> ToolResult:
        lines = [
            "**Model Registry Information**",
            "",
            f"**Last Updated:** {REGISTRY_LOADED_AT.isoformat()}",
            f"**Date:** {REGISTRY_LOADED_AT.date().isoformat()}",
            f"**Time:** {REGISTRY_LOADED_AT.strftime('%H:%M:%S')} UTC",
            f"**Total Models:** {len(all_models())}",
            "",
            "**Models by Provider:**",
        ]
        for provider, count in model_counts_by_provider().items():
            if count:
                lines.append(f"- {provider.value}: {count} models")
        return ToolResult("\n".join(lines) + "\n")

    # -- prompt log ----------------------------------------------------------

    async def get_prompt_history(self, args: HistoryArgs) -> ToolResult:
        filters = LogFilters(
            provider=args.provider.value if args.provider else None,
            model=args.model,
            start_date=args.start_date,
            end_date=args.end_date,
            search_text=args.search_text,
            limit=args.limit,
        )
        entries = await asyncio.to_thread(self.log_store.query, filters)
        if not entries:
            return ToolResult("No prompt history entries found matching the criteria.")

        parts = [f"**Prompt History** ({len(entries)} entries)\n\n"]
        for index, entry in enumerate(entries, start=1):
            lines = [
                f"## Entry {index}",
                "",
                f"**ID:** {entry.id}",
                f"**Timestamp:** {entry.timestamp.isoformat()}",
                f"**Provider:** {entry.provider}",
            ]
            if entry.model:
                lines.append(f"**Model:** {entry.model}")
            lines.append(f"**Prompt:** {_preview(entry.prompt)}")
            if entry.response:
                lines.append(f"**Response:** {_preview(entry.response)}")
            if entry.error:
                lines.append(f"**Error:** {entry.error}")
            if entry.usage is not None:
                u = entry.usage
                lines.append(
                    f"**Tokens:** {_n(u.total_tokens)} "
                    f"(prompt: {_n(u.prompt_tokens)}, completion: {_n(u.completion_tokens)})"
                )
            if entry.duration_ms is not None:
                lines.append(f"**Duration:** {entry.duration_ms}ms")
            parts.append("\n".join(lines) + "\n\n---\n\n")
        return ToolResult("".join(parts))

    async def delete_prompt_entries(self, args: DeleteEntriesArgs) -> ToolResult:
        criteria = LogDeleteCriteria(
            id=args.id,
            provider=args.provider.value if args.provider else None,
            model=args.model,
            start_date=args.start_date,
            end_date=args.end_date,
            older_than_days=args.older_than_days,
        )
        deleted = await asyncio.to_thread(self.log_store.delete, criteria)
        text = f"**Deleted {deleted} prompt log entry(ies)**\n\n"
        if args.id:
            return ToolResult(text + f"Deleted entry with ID: {args.id}\n")

        described = []
        if criteria.provider:
            described.append(f"provider: {criteria.provider}")
        if args.model:
            described.append(f"model: {args.model}")
        if args.start_date:
            described.append(f"from: {args.start_date}")
        if args.end_date:
            described.append(f"until: {args.end_date}")
        if args.older_than_days:
            described.append(f"older than: {args.older_than_days} days")
        if described:
            return ToolResult(text + f"Criteria: {', '.join(described)}\n")
        return ToolResult(text + "No criteria specified - no entries deleted.\n")

    async def clear_prompt_history(self, _args: NoArgs) -> ToolResult:
        deleted = await asyncio.to_thread(self.log_store.clear)
        return ToolResult(f"**Cleared all prompt history**\n\nDeleted {deleted} entry(ies).")

    async def get_prompt_stats(self, _args: NoArgs) -> ToolResult:
        stats = await asyncio.to_thread(self.log_store.stats)
        lines = [
            "**Prompt Log Statistics**",
            "",
            f"**Log File:** {self.log_store.path}",
            "",
            f"**Total Entries:** {stats.total_entries}",
            "",
        ]
        if stats.total_entries == 0:
            lines.append("No entries in log file.")
            return ToolResult("\n".join(lines))

        lines.append("**By Provider:**")
        for provider in ALL_PROVIDERS:
            count = stats.by_provider.get(provider.value, 0)
            if count:
                lines.append(f"- {provider.value}: {count} entries")

        lines += ["", "**By Model:**"]
        if stats.by_model:
            for model, count in sorted(stats.by_model.items(), key=lambda kv: kv[1], reverse=True):
                lines.append(f"- {model}: {count} entries")
        else:
            lines.append("- No model information available")

        lines += ["", f"**Total Tokens Used:** {stats.total_tokens:,}"]
        if stats.oldest_entry:
            lines += ["", f"**Oldest Entry:** {stats.oldest_entry}"]
        if stats.newest_entry:
            lines.append(f"**Newest Entry:** {stats.newest_entry}")
        return ToolResult("\n".join(lines) + "\n")

    # -- async jobs ----------------------------------------------------------

    async def submit_async_job(self, args: ProviderCompletionArgs) -> ToolResult:
        request = self._request_for(args.provider, args)
        job_id = await asyncio.to_thread(self.job_store.submit, args.provider, request)
        return ToolResult(
            "**Async Job Submitted**\n\n"
            f"**Job ID:** {job_id}\n"
            f"**Provider:** {args.provider.value}\n"
            f"**Status:** {JobStatus.PENDING.value}\n\n"
            "Use get-async-job to check the result."
        )

    async def get_async_job(self, args: JobIdArgs) -> ToolResult:
        job = await asyncio.to_thread(self.job_store.get, args.job_id)
        if job is None:
            return ToolResult(f"Job not found: {args.job_id}", is_error=True)
        return ToolResult(render_job(job))

    async def list_async_jobs(self, args: ListJobsArgs) -> ToolResult:
        jobs = await asyncio.to_thread(
            self.job_store.list, status=args.status, provider=args.provider, limit=args.limit
        )
        if not jobs:
            return ToolResult("No async jobs found matching the criteria.")
        lines = [f"**Async Jobs** ({len(jobs)} jobs)", ""]
        for job in jobs:
            lines.append(
                f"- `{job.id}` {job.provider} **{job.status.value}** "
                f"created {job.created_at.isoformat()}: {_preview(job.request.prompt)}"
            )
        return ToolResult("\n".join(lines) + "\n")

    async def cancel_async_job(self, args: JobIdArgs) -> ToolResult:
        job = await asyncio.to_thread(self.job_store.cancel, args.job_id)
        if job is None:
            existing = await asyncio.to_thread(self.job_store.get, args.job_id)
            if existing is None:
                return ToolResult(f"Job not found: {args.job_id}", is_error=True)
            return ToolResult(
                f"Job {args.job_id} is {existing.status.value} and can no longer be cancelled.", is_error=True
            )
        return ToolResult(f"**Cancelled job** {job.id}")

    async def delete_async_job(self, args: JobIdArgs) -> ToolResult:
        if await asyncio.to_thread(self.job_store.delete, args.job_id):
            return ToolResult(f"**Deleted job** {args.job_id}")
        return ToolResult(f"Job not found: {args.job_id}", is_error=True)

    async def cleanup_async_jobs(self, args: CleanupJobsArgs) -> ToolResult:
        removed = await asyncio.to_thread(self.job_store.cleanup, args.older_than_days)
        return ToolResult(
            f"**Cleaned up {removed} async job(s)** created more than {args.older_than_days} days ago."
        )


def _describe_validation_error(e: PydanticValidationError) -> str:
    problems = []
    for err in e.errors():
        where = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        problems.append(f"{where}: {err.get('msg')}")
    return "Invalid arguments: " + "; ".join(problems)
