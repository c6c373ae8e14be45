"""Prometheus metrics for the prescreen service.

This module provides Prometheus metrics for monitoring:
- Bureau gateway calls (latency, outcome)
- Batch runs (terminal status, per-record outcomes)
- Audit log writes that failed in the background
- HTTP requests
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from prometheus_client import REGISTRY, CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

if TYPE_CHECKING:
    from collections.abc import Generator

__all__ = [
    "CONTENT_TYPE_LATEST",
    "GATEWAY_REQUEST_COUNT",
    "GATEWAY_REQUEST_DURATION",
    "BATCH_COUNT",
    "RECORD_OUTCOME_COUNT",
    "AUDIT_WRITE_FAILURES",
    "HTTP_REQUEST_COUNT",
    "HTTP_REQUEST_DURATION",
    "observe_gateway_call",
    "record_batch_outcome",
    "record_record_outcomes",
    "record_audit_write_failure",
    "record_http_request",
    "get_metrics",
]

PREFIX = "prescreen"

# ============================================================================
# Bureau Gateway Metrics
# ============================================================================

GATEWAY_REQUEST_DURATION = Histogram(
    f"{PREFIX}_gateway_request_duration_seconds",
    "Latency of bureau gateway calls",
    ["operation", "outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

GATEWAY_REQUEST_COUNT = Counter(
    f"{PREFIX}_gateway_requests_total",
    "Bureau gateway calls by operation and outcome",
    ["operation", "outcome"],
)

# ============================================================================
# Batch Metrics
# ============================================================================

BATCH_COUNT = Counter(
    f"{PREFIX}_batches_total",
    "Batches that reached a terminal or stuck status",
    ["status"],
)

RECORD_OUTCOME_COUNT = Counter(
    f"{PREFIX}_records_total",
    "Per-record bureau outcomes",
    ["match_status"],
)

# ============================================================================
# Audit Metrics
# ============================================================================

AUDIT_WRITE_FAILURES = Counter(
    f"{PREFIX}_audit_write_failures_total",
    "Audit log writes that failed in the background",
    ["action"],
)

# ============================================================================
# HTTP Metrics
# ============================================================================

HTTP_REQUEST_DURATION = Histogram(
    f"{PREFIX}_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route", "status_code"],
)

HTTP_REQUEST_COUNT = Counter(
    f"{PREFIX}_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status_code"],
)


@contextmanager
def observe_gateway_call(operation: str) -> Generator[dict[str, Any], None, None]:
    """Context manager for observing a gateway call.

    Args:
        operation: Gateway operation name (login, list_programs, submit, ...).

    Yields:
        Context dict; set ``outcome`` to override the default.
    """
    context: dict[str, Any] = {"outcome": "success"}
    start_time = time.perf_counter()

    try:
        yield context
    except Exception as exc:
        context["outcome"] = type(exc).__name__
        raise
    finally:
        duration = time.perf_counter() - start_time
        outcome = context["outcome"]
        GATEWAY_REQUEST_DURATION.labels(operation=operation, outcome=outcome).observe(duration)
        GATEWAY_REQUEST_COUNT.labels(operation=operation, outcome=outcome).inc()


def record_batch_outcome(status: str) -> None:
    BATCH_COUNT.labels(status=status).inc()


def record_record_outcomes(counts: dict[str, int]) -> None:
    for match_status, n in counts.items():
        if n:
            RECORD_OUTCOME_COUNT.labels(match_status=match_status).inc(n)


def record_audit_write_failure(action: str) -> None:
    AUDIT_WRITE_FAILURES.labels(action=action).inc()


def get_metrics() -> bytes:
    """Prometheus exposition of the default registry."""
    return generate_latest(REGISTRY)


def record_http_request(method: str, route: str, status_code: int, duration: float) -> None:
    labels = {"method": method, "route": route, "status_code": str(status_code)}
    HTTP_REQUEST_DURATION.labels(**labels).observe(duration)
    HTTP_REQUEST_COUNT.labels(**labels).inc()
