"""Observability for the prescreen service.

Usage:
    from prescreen.observability import observe_gateway_call

    with observe_gateway_call("submit") as ctx:
        response = await client.post(...)
"""

from prescreen.observability.metrics import (
    CONTENT_TYPE_LATEST,
    get_metrics,
    observe_gateway_call,
    record_audit_write_failure,
    record_batch_outcome,
    record_http_request,
    record_record_outcomes,
)

__all__ = [
    "CONTENT_TYPE_LATEST",
    "get_metrics",
    "observe_gateway_call",
    "record_audit_write_failure",
    "record_batch_outcome",
    "record_http_request",
    "record_record_outcomes",
]
