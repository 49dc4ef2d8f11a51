import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from crossllm_bridge.contracts import (
    LogDeleteCriteria,
    LogFilters,
    NormalizedRequest,
    NormalizedResponse,
    Usage,
)
from crossllm_bridge.errors import PromptLogError, ValidationError
from crossllm_bridge.log_store import PromptLogStore


def _ok(provider="chatgpt", text="answer", model="gpt-4", usage=None):
    return NormalizedResponse(provider=provider, response=text, model=model, usage=usage)


def test_round_trip_keeps_fields_and_absent_usage(log_store, clock):
    request = NormalizedRequest(prompt="Tell me a joke", model="gpt-4", temperature=0.2, max_tokens=42)
    entry_id = log_store.append("chatgpt", request, _ok(), duration_ms=15)

    [entry] = log_store.query()
    assert entry.id == entry_id
    assert entry.timestamp == clock.now
    assert entry.provider == "chatgpt"
    assert entry.model == "gpt-4"
    assert entry.prompt == "Tell me a joke"
    assert entry.response == "answer"
    assert entry.temperature == 0.2
    assert entry.max_tokens == 42
    assert entry.usage is None
    assert entry.error is None
    assert entry.duration_ms == 15


def test_failed_call_is_logged_without_response(log_store):
    failure = NormalizedResponse(provider="claude", response="partial", error="Claude API error: HTTP 500: x")
    log_store.append("claude", NormalizedRequest(prompt="hi", model="claude-3-haiku-20240307"), failure)

    [entry] = log_store.query()
    assert entry.response is None
    assert entry.error == "Claude API error: HTTP 500: x"
    assert entry.model == "claude-3-haiku-20240307"


def test_search_text_is_case_insensitive_on_prompt_only(log_store):
    log_store.append("chatgpt", NormalizedRequest(prompt="Tell me about FOO"), _ok(text="nothing"))
    log_store.append("chatgpt", NormalizedRequest(prompt="bar"), _ok(text="foo in the response"))

    entries = log_store.query(LogFilters(search_text="foo"))
    assert [e.prompt for e in entries] == ["Tell me about FOO"]


@pytest.mark.parametrize(
    ("needle", "expected"),
    [
        ("50%", ["a 50% discount"]),
        ("a_b", ["a_b"]),
        ("back\\slash", ["back\\slash"]),
        ("école", ["Parle-moi de l'ÉCOLE"]),
        ("STRASSE", ["Hauptstraße"]),
    ],
)
def test_search_text_is_a_literal_casefolded_substring(log_store, clock, needle, expected):
    prompts = ["save 50 dollars", "a 50% discount", "a_b", "axb", "back\\slash", "Parle-moi de l'ÉCOLE", "Hauptstraße"]
    for prompt in prompts:
        log_store.append("chatgpt", NormalizedRequest(prompt=prompt), _ok())
        clock.advance(seconds=1)

    entries = log_store.query(LogFilters(search_text=needle))

    assert [e.prompt for e in entries] == expected


def test_query_filters_order_and_limit(log_store, clock):
    for i, provider in enumerate(["chatgpt", "claude", "chatgpt"]):
        log_store.append(provider, NormalizedRequest(prompt=f"p{i}"), _ok(provider=provider, model=f"m{i}"))
        clock.advance(minutes=1)

    assert [e.prompt for e in log_store.query()] == ["p2", "p1", "p0"]
    assert [e.prompt for e in log_store.query(LogFilters(provider="chatgpt"))] == ["p2", "p0"]
    assert [e.prompt for e in log_store.query(LogFilters(model="m1"))] == ["p1"]
    assert [e.prompt for e in log_store.query(LogFilters(limit=1))] == ["p2"]


def test_date_only_end_date_includes_the_whole_day(log_store, clock):
    clock.now = datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc)
    log_store.append("grok", NormalizedRequest(prompt="late"), _ok("grok"))
    clock.now = datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)
    log_store.append("grok", NormalizedRequest(prompt="next day"), _ok("grok"))

    entries = log_store.query(LogFilters(start_date="2026-03-01", end_date="2026-03-01"))
    assert [e.prompt for e in entries] == ["late"]
    entries = log_store.query(LogFilters(start_date="2026-03-02T00:00:00Z"))
    assert [e.prompt for e in entries] == ["next day"]


def test_invalid_date_is_a_validation_error(log_store):
    with pytest.raises(ValidationError):
        log_store.query(LogFilters(start_date="yesterday"))


def test_delete_by_id_ignores_other_criteria(log_store):
    keep = log_store.append("chatgpt", NormalizedRequest(prompt="keep"), _ok())
    drop = log_store.append("chatgpt", NormalizedRequest(prompt="drop"), _ok())

    removed = log_store.delete(LogDeleteCriteria(id=drop, provider="claude"))

    assert removed == 1
    assert [e.id for e in log_store.query()] == [keep]


def test_delete_criteria_compose_with_and(log_store):
    log_store.append("chatgpt", NormalizedRequest(prompt="a"), _ok(model="gpt-4"))
    log_store.append("chatgpt", NormalizedRequest(prompt="b"), _ok(model="gpt-4o"))
    log_store.append("claude", NormalizedRequest(prompt="c"), _ok(provider="claude", model="gpt-4"))

    assert log_store.delete(LogDeleteCriteria(provider="chatgpt", model="gpt-4")) == 1
    assert sorted(e.prompt for e in log_store.query()) == ["b", "c"]


def test_empty_delete_criteria_delete_nothing(log_store):
    log_store.append("chatgpt", NormalizedRequest(prompt="a"), _ok())
    assert log_store.delete(LogDeleteCriteria()) == 0
    assert len(log_store.query()) == 1


def test_older_than_days_keeps_entry_exactly_at_cutoff(log_store, clock):
    start = clock.now
    log_store.append("chatgpt", NormalizedRequest(prompt="before cutoff"), _ok())
    clock.now = start + timedelta(microseconds=1)
    log_store.append("chatgpt", NormalizedRequest(prompt="at cutoff"), _ok())
    clock.now = start + timedelta(days=2)
    log_store.append("chatgpt", NormalizedRequest(prompt="fresh"), _ok())

    # cutoff lands exactly on the second entry
    clock.now = start + timedelta(days=2, microseconds=1)
    removed = log_store.delete(LogDeleteCriteria(older_than_days=2))

    assert removed == 1
    assert sorted(e.prompt for e in log_store.query()) == ["at cutoff", "fresh"]


def test_clear_removes_everything(log_store):
    for i in range(3):
        log_store.append("chatgpt", NormalizedRequest(prompt=str(i)), _ok())
    assert log_store.clear() == 3
    assert log_store.query() == []


def test_stats_aggregate_and_skip_unparseable_usage(log_store, clock):
    log_store.append("chatgpt", NormalizedRequest(prompt="a"), _ok(usage=Usage(total_tokens=10)))
    clock.advance(hours=1)
    log_store.append("claude", NormalizedRequest(prompt="b"), _ok("claude", model="claude-3-haiku-20240307"))
    clock.advance(hours=1)
    log_store.append("chatgpt", NormalizedRequest(prompt="c"), _ok(usage=Usage(prompt_tokens=1, total_tokens=5)))

    conn = sqlite3.connect(log_store.path)
    with conn:
        conn.execute("UPDATE prompt_logs SET usage = ? WHERE prompt = ?", ("{not json", "c"))
    conn.close()

    stats = log_store.stats()
    assert stats.total_entries == 3
    assert stats.by_provider == {"chatgpt": 2, "claude": 1}
    assert stats.by_model == {"gpt-4": 2, "claude-3-haiku-20240307": 1}
    assert stats.total_tokens == 10
    assert stats.oldest_entry < stats.newest_entry


def test_append_failure_is_swallowed(tmp_path):
    # a directory cannot be opened as a database file
    store = PromptLogStore(tmp_path)

    assert store.append("chatgpt", NormalizedRequest(prompt="hi"), _ok()) is None
    with pytest.raises(PromptLogError):
        store.query()
