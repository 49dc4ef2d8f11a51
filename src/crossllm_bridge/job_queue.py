"""Durable FIFO queue of deferred provider calls.

`JobStore` owns every job mutation and persists the whole queue as one JSON
document. `JobProcessor` drains it one job at a time on a poll cadence.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError as PydanticValidationError

from .contracts import AsyncJob, JobStatus, NormalizedRequest, NormalizedResponse, Provider, utcnow
from .errors import ConfigurationError, JobStoreError
from .metrics import jobs_total

if TYPE_CHECKING:
    from .dispatch import Dispatcher
    from .log_store import PromptLogStore

log = structlog.get_logger()

DEFAULT_POLL_INTERVAL_SECONDS = 1.0


class JobStore:
    def __init__(self, path: Path | str, *, clock: Callable[[], datetime] = utcnow):
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[AsyncJob]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("job file must hold a JSON array")
            return [AsyncJob.model_validate(item) for item in raw]
        except (OSError, ValueError, PydanticValidationError) as e:
            # left on disk untouched; every operation fails until it is repaired or removed
            log.error("job_store_unreadable", path=str(self._path), error=str(e))
            raise JobStoreError(f"Failed to read jobs from {self._path}: {e}") from e

    def _save(self, jobs: list[AsyncJob]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps([j.model_dump(mode="json") for j in jobs], indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise JobStoreError(f"Failed to save jobs to {self._path}: {e}") from e

    def submit(self, provider: Provider | str, request: NormalizedRequest) -> str:
        now = self._clock()
        job = AsyncJob(
            id=uuid.uuid4().hex,
            provider=str(getattr(provider, "value", provider)),
            request=request,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            jobs = self._load()
            jobs.append(job)
            self._save(jobs)
        log.info("job_submitted", job_id=job.id, provider=job.provider)
        jobs_total.labels(status=JobStatus.PENDING.value).inc()
        return job.id

    def get(self, job_id: str) -> AsyncJob | None:
        with self._lock:
            return next((j for j in self._load() if j.id == job_id), None)

    def list(
        self,
        *,
        status: JobStatus | str | None = None,
        provider: Provider | str | None = None,
        limit: int | None = None,
    ) -> list[AsyncJob]:
        """Jobs newest-created first."""
        with self._lock:
            jobs = self._load()
        if status is not None:
            status = JobStatus(status)
            jobs = [j for j in jobs if j.status is status]
        if provider is not None:
            name = str(getattr(provider, "value", provider))
            jobs = [j for j in jobs if j.provider == name]
        jobs = sorted(jobs, key=lambda j: j.created_at, reverse=True)
        if limit is not None and limit > 0:
            jobs = jobs[:limit]
        return jobs

    def claim_next_pending(self) -> AsyncJob | None:
        """Move the oldest pending job to `processing` and return it."""
        with self._lock:
            jobs = self._load()
            pending = [j for j in jobs if j.status is JobStatus.PENDING]
            if not pending:
                return None
            job = min(pending, key=lambda j: j.created_at)
            job.status = JobStatus.PROCESSING
            job.updated_at = self._clock()
            self._save(jobs)
            return job.model_copy()

    def finish(self, job_id: str, response: NormalizedResponse) -> AsyncJob | None:
        """Record the terminal state of a processed job.

        A response carrying an error fails the job. Returns None if the job
        vanished while it was running.
        """
        with self._lock:
            jobs = self._load()
            job = next((j for j in jobs if j.id == job_id), None)
            if job is None:
                return None
            now = self._clock()
            job.status = JobStatus.FAILED if response.error else JobStatus.COMPLETED
            job.response = response
            job.error = response.error
            job.updated_at = now
            job.completed_at = now
            self._save(jobs)
            return job.model_copy()

    def cancel(self, job_id: str) -> AsyncJob | None:
        """Cancel a pending job. Returns None if it is not pending."""
        with self._lock:
            jobs = self._load()
            job = next((j for j in jobs if j.id == job_id), None)
            if job is None or job.status is not JobStatus.PENDING:
                return None
            now = self._clock()
            job.status = JobStatus.CANCELLED
            job.updated_at = now
            job.completed_at = now
            self._save(jobs)
        jobs_total.labels(status=JobStatus.CANCELLED.value).inc()
        log.info("job_cancelled", job_id=job_id)
        return job.model_copy()

    def delete(self, job_id: str) -> bool:
        with self._lock:
            jobs = self._load()
            kept = [j for j in jobs if j.id != job_id]
            if len(kept) == len(jobs):
                return False
            self._save(kept)
        return True

    def cleanup(self, older_than_days: float) -> int:
        """Remove jobs created strictly before now minus `older_than_days`."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        with self._lock:
            jobs = self._load()
            kept = [j for j in jobs if j.created_at >= cutoff]
            removed = len(jobs) - len(kept)
            if removed:
                self._save(kept)
        if removed:
            log.info("jobs_cleaned_up", removed=removed, older_than_days=older_than_days)
        return removed


class JobProcessor:
    """Single-in-flight drainer for a `JobStore`.

    Each poll tick runs as its own task so that `stop()` only disarms the
    timer; a job already running finishes and records its terminal state.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: Dispatcher,
        *,
        log_store: PromptLogStore | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if poll_interval <= 0:
            raise ConfigurationError(f"Job poll interval must be positive, got {poll_interval}.")
        self.store = store
        self.dispatcher = dispatcher
        self.log_store = log_store
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._busy = asyncio.Lock()
        self._poller: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._poller is not None and not self._poller.done()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def start(self) -> None:
        if self.running:
            return
        self._poller = asyncio.create_task(self._poll_loop())
        log.info("job_processor_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        if self._poller is None:
            return
        self._poller.cancel()
        try:
            await self._poller
        except asyncio.CancelledError:
            pass
        self._poller = None
        log.info("job_processor_stopped", in_flight=len(self._ticks))

    async def wait_idle(self) -> None:
        while self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def _poll_loop(self) -> None:
        while True:
            self._spawn_tick()
            await self._sleep(self.poll_interval)

    def _spawn_tick(self) -> None:
        if self.busy:
            return
        task = asyncio.create_task(self._tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _tick(self) -> None:
        try:
            await self.process_next_job()
        except Exception:
            log.exception("job_tick_failed")

    async def process_next_job(self) -> AsyncJob | None:
        """Run the oldest pending job to completion.

        No-op (returns None) while another job is in flight or when nothing
        is pending.
        """
        if self._busy.locked():
            return None
        async with self._busy:
            job = await asyncio.to_thread(self.store.claim_next_pending)
            if job is None:
                return None
            return await self._run(job)

    async def _run(self, job: AsyncJob) -> AsyncJob | None:
        log.info("job_started", job_id=job.id, provider=job.provider)
        start = time.monotonic()
        try:
            response = await self.dispatcher.dispatch_one(job.provider, job.request, record=False)
        except Exception as e:
            log.exception("job_dispatch_raised", job_id=job.id)
            response = NormalizedResponse.failure(job.provider, str(e) or e.__class__.__name__)
        duration_ms = int((time.monotonic() - start) * 1000)

        finished = await asyncio.to_thread(self.store.finish, job.id, response)
        status = JobStatus.FAILED if response.error else JobStatus.COMPLETED
        jobs_total.labels(status=status.value).inc()
        if finished is None:
            log.warning("job_vanished", job_id=job.id)
        elif response.error:
            log.warning("job_failed", job_id=job.id, provider=job.provider, error=response.error)
        else:
            log.info("job_completed", job_id=job.id, provider=job.provider, duration_ms=duration_ms)

        if self.log_store is not None:
            await asyncio.to_thread(
                self.log_store.append, job.provider, job.request, response, duration_ms=duration_ms
            )
        return finished
