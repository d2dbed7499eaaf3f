from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

scope_denied_count = Counter(
    "scope_denied_count",
    "Total record reads/writes denied by row scope",
    ["resource", "action", "role"],
)

field_denied_count = Counter(
    "field_denied_count",
    "Total fields denied by field write policy",
    ["resource", "role"],
)

service_request_transitions_total = Counter(
    "service_request_transitions_total",
    "Service request status transitions",
    ["from_status", "to_status"],
)

service_request_conversions_total = Counter(
    "service_request_conversions_total",
    "Service request to job conversions by result",
    ["result"],
)

notifications_enqueued_total = Counter(
    "notifications_enqueued_total",
    "Notifications enqueued by type",
    ["notification_type"],
)

notification_enqueue_failures_total = Counter(
    "notification_enqueue_failures_total",
    "Notifications that could not be enqueued",
    ["notification_type"],
)

notification_handoff_failures_total = Counter(
    "notification_handoff_failures_total",
    "Queued notifications that could not be handed to the delivery worker",
    ["notification_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        for attribute in ("path_format", "path"):
            value = getattr(route, attribute, None)
            if isinstance(value, str) and value:
                return _PATH_PARAM_RE.sub("{id}", value)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_denied(resource: str, action: str, role: str) -> None:
    scope_denied_count.labels(resource=resource, action=action, role=role).inc()


def observe_field_denials(resource: str, role: str, denied_count: int) -> None:
    if denied_count > 0:
        field_denied_count.labels(resource=resource, role=role).inc(denied_count)


def observe_status_transition(from_status: str, to_status: str) -> None:
    service_request_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def observe_conversion(result: str) -> None:
    service_request_conversions_total.labels(result=result).inc()


def observe_notification_enqueued(notification_type: str) -> None:
    notifications_enqueued_total.labels(notification_type=notification_type).inc()


def observe_notification_handoff_failure(notification_type: str) -> None:
    notification_handoff_failures_total.labels(notification_type=notification_type).inc()


def observe_notification_failure(notification_type: str) -> None:
    notification_enqueue_failures_total.labels(notification_type=notification_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
