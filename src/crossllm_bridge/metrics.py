from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

dispatch_requests_total = Counter(
    "dispatch_requests_total",
    "Provider calls by outcome",
    labelnames=["provider", "status"],
)

dispatch_latency_seconds = Histogram(
    "dispatch_latency_seconds",
    "Provider call latency",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider"],
)

jobs_total = Counter(
    "jobs_total",
    "Async jobs reaching a state",
    labelnames=["status"],
)

prompt_log_write_failures_total = Counter(
    "prompt_log_write_failures_total",
    "Prompt log appends that failed and were dropped",
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
