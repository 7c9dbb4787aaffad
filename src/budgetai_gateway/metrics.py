from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "gateway_server_requests_total",
    "Total HTTP requests handled by the gateway",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "gateway_server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "gateway_server_errors_total",
    "Total errors returned by the gateway",
    labelnames=["type"],
)

upstream_attempts_total = Counter(
    "gateway_upstream_attempts_total",
    "Completion attempts by outcome",
    labelnames=["outcome"],
)

upstream_retry_wait_seconds = Histogram(
    "gateway_upstream_retry_wait_seconds",
    "Wait chosen before retrying a completion attempt",
    buckets=[0.5, 1, 2, 4, 6, 8, 15, 30, 60],
    labelnames=["reason"],
)

provider_requests_total = Counter(
    "gateway_provider_requests_total",
    "Completion provider calls by status",
    labelnames=["status"],
)

provider_latency_seconds = Histogram(
    "gateway_provider_latency_seconds",
    "Completion provider latency, retries included",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
)

memos_saved_total = Counter(
    "gateway_memos_saved_total",
    "Web memos persisted",
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
