"""SQLite-backed audit log of every provider call.

Appends are best-effort: a failed write is reported to the operational log
and dropped so it never breaks the call being recorded.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

import structlog

from .contracts import (
    LogDeleteCriteria,
    LogFilters,
    LogStats,
    NormalizedRequest,
    NormalizedResponse,
    PromptLogEntry,
    Usage,
    utcnow,
)
from .errors import PromptLogError, ValidationError
from .metrics import prompt_log_write_failures_total

log = structlog.get_logger()

TABLE_NAME = "prompt_logs"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT,
    prompt TEXT NOT NULL,
    response TEXT,
    temperature REAL,
    max_tokens INTEGER,
    usage TEXT,
    error TEXT,
    duration_ms INTEGER
);
CREATE INDEX IF NOT EXISTS idx_timestamp ON {TABLE_NAME}(timestamp);
CREATE INDEX IF NOT EXISTS idx_provider ON {TABLE_NAME}(provider);
CREATE INDEX IF NOT EXISTS idx_model ON {TABLE_NAME}(model);
"""

_COLUMNS = "id, timestamp, provider, model, prompt, response, temperature, max_tokens, usage, error, duration_ms"


def format_timestamp(value: datetime) -> str:
    """UTC, fixed microsecond precision: lexical order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _is_date_only(value: str) -> bool:
    return len(value) == 10 and value[4] == "-" and value[7] == "-"


def _parse_bound(value: str, *, end_of_day: bool = False) -> tuple[str, bool]:
    """Normalize a date filter to a stored-timestamp string.

    Returns `(bound, exclusive)`. A date-only end bound becomes the start of
    the following day, compared exclusively, so the whole day is included.
    """
    value = value.strip()
    try:
        if _is_date_only(value):
            day = date.fromisoformat(value)
            if end_of_day:
                day += timedelta(days=1)
            return format_timestamp(datetime.combine(day, time(), tzinfo=timezone.utc)), end_of_day
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}") from e
    return format_timestamp(parsed), False


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _like_contains(text: str) -> str:
    escaped = text.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def get_connection(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    # SQLite LOWER() only folds ASCII
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    return conn


class PromptLogStore:
    def __init__(self, path: Path | str, *, clock: Callable[[], datetime] = utcnow):
        self._path = Path(path)
        self._clock = clock
        self._ready = False
        self._init_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        if not self._ready:
            with self._init_lock:
                if not self._ready:
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                    conn = get_connection(self._path)
                    try:
                        conn.executescript(_SCHEMA)
                    except sqlite3.Error:
                        conn.close()
                        raise
                    self._ready = True
                    return conn
        return get_connection(self._path)

    def append(
        self,
        provider: str,
        request: NormalizedRequest,
        response: NormalizedResponse,
        *,
        duration_ms: int | None = None,
    ) -> str | None:
        """Record one call. Returns the entry id, or None if the write failed."""
        entry_id = uuid.uuid4().hex
        usage = response.usage.model_dump(exclude_none=True) if response.usage is not None else None
        row = (
            entry_id,
            format_timestamp(self._clock()),
            provider,
            response.model or request.model,
            request.prompt,
            None if response.error else response.response,
            request.temperature,
            request.max_tokens,
            json.dumps(usage) if usage is not None else None,
            response.error,
            duration_ms,
        )
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", row)
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            prompt_log_write_failures_total.inc()
            log.error("prompt_log_append_failed", provider=provider, path=str(self._path), error=str(e))
            return None
        return entry_id

    def query(self, filters: LogFilters | None = None) -> list[PromptLogEntry]:
        filters = filters or LogFilters()
        conditions: list[str] = []
        params: list[object] = []

        if filters.provider:
            conditions.append("provider = ?")
            params.append(filters.provider)
        if filters.model:
            conditions.append("model = ?")
            params.append(filters.model)
        self._date_conditions(filters.start_date, filters.end_date, conditions, params)
        if filters.search_text:
            conditions.append("casefold(prompt) LIKE ? ESCAPE '\\'")
            params.append(_like_contains(filters.search_text))

        sql = f"SELECT {_COLUMNS} FROM {TABLE_NAME}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC"
        if filters.limit is not None and filters.limit > 0:
            sql += " LIMIT ?"
            params.append(filters.limit)

        rows = self._read(sql, params)
        return [_row_to_entry(r) for r in rows]

    def delete(self, criteria: LogDeleteCriteria) -> int:
        """Delete matching entries.

        `id` is exclusive of every other criterion; the rest are ANDed. Empty
        criteria delete nothing, use `clear()` to wipe the log.
        """
        if criteria.id:
            return self._write(f"DELETE FROM {TABLE_NAME} WHERE id = ?", [criteria.id])
        if criteria.is_empty():
            return 0

        conditions: list[str] = []
        params: list[object] = []
        if criteria.provider:
            conditions.append("provider = ?")
            params.append(criteria.provider)
        if criteria.model:
            conditions.append("model = ?")
            params.append(criteria.model)
        self._date_conditions(criteria.start_date, criteria.end_date, conditions, params)
        if criteria.older_than_days is not None:
            cutoff = self._clock() - timedelta(days=criteria.older_than_days)
            conditions.append("timestamp < ?")
            params.append(format_timestamp(cutoff))
        if not conditions:
            return 0
        return self._write(f"DELETE FROM {TABLE_NAME} WHERE " + " AND ".join(conditions), params)

    def clear(self) -> int:
        return self._write(f"DELETE FROM {TABLE_NAME}", [])

    def stats(self) -> LogStats:
        try:
            conn = self._connect()
            try:
                total = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]
                oldest, newest = conn.execute(f"SELECT MIN(timestamp), MAX(timestamp) FROM {TABLE_NAME}").fetchone()
                by_provider = {
                    r[0]: r[1]
                    for r in conn.execute(f"SELECT provider, COUNT(*) FROM {TABLE_NAME} GROUP BY provider")
                }
                by_model = {
                    r[0]: r[1]
                    for r in conn.execute(
                        f"SELECT model, COUNT(*) FROM {TABLE_NAME} WHERE model IS NOT NULL GROUP BY model"
                    )
                }
                usages = [r[0] for r in conn.execute(f"SELECT usage FROM {TABLE_NAME} WHERE usage IS NOT NULL")]
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise PromptLogError(f"Failed to read prompt log stats: {e}") from e

        total_tokens = 0
        for raw in usages:
            try:
                usage = json.loads(raw)
            except ValueError:
                continue
            if isinstance(usage, dict) and isinstance(usage.get("total_tokens"), int):
                total_tokens += usage["total_tokens"]

        return LogStats(
            total_entries=total,
            by_provider=by_provider,
            by_model=by_model,
            total_tokens=total_tokens,
            oldest_entry=oldest,
            newest_entry=newest,
        )

    def _date_conditions(
        self, start: str | None, end: str | None, conditions: list[str], params: list[object]
    ) -> None:
        if start:
            bound, _ = _parse_bound(start)
            conditions.append("timestamp >= ?")
            params.append(bound)
        if end:
            bound, exclusive = _parse_bound(end, end_of_day=True)
            conditions.append("timestamp < ?" if exclusive else "timestamp <= ?")
            params.append(bound)

    def _read(self, sql: str, params: list[object]) -> list[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise PromptLogError(f"Failed to query prompt log: {e}") from e

    def _write(self, sql: str, params: list[object]) -> int:
        try:
            conn = self._connect()
            try:
                with conn:
                    return conn.execute(sql, params).rowcount
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise PromptLogError(f"Failed to modify prompt log: {e}") from e


def _row_to_entry(row: sqlite3.Row) -> PromptLogEntry:
    usage = None
    if row["usage"] is not None:
        try:
            usage = Usage.model_validate(json.loads(row["usage"]))
        except ValueError:
            usage = None
    return PromptLogEntry(
        id=row["id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        provider=row["provider"],
        model=row["model"],
        prompt=row["prompt"],
        response=row["response"],
        temperature=row["temperature"],
        max_tokens=row["max_tokens"],
        usage=usage,
        error=row["error"],
        duration_ms=row["duration_ms"],
    )
