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

entry_history_appended_total = Counter(
    "entry_history_appended_total",
    "History snapshots appended, labelled by the first trigger that fired",
    ["trigger"],
)

entry_history_evicted_total = Counter(
    "entry_history_evicted_total",
    "History snapshots evicted by the length cap",
)

notifications_total = Counter(
    "notifications_total",
    "Notification fan-out outcomes",
    ["outcome"],
)

authz_denied_total = Counter(
    "authz_denied_total",
    "Authorization denials by operation",
    ["operation"],
)

hierarchy_mutations_total = Counter(
    "hierarchy_mutations_total",
    "Admin hierarchy mutations by operation",
    ["operation"],
)

reminder_sweep_total = Counter(
    "reminder_sweep_total",
    "Reminder sweeps by status",
    ["status"],
)

reminder_sweep_duration_seconds = Histogram(
    "reminder_sweep_duration_seconds",
    "Reminder sweep duration in seconds",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_history_appended(trigger: str) -> None:
    entry_history_appended_total.labels(trigger=trigger).inc()


def observe_history_evicted(count: int = 1) -> None:
    if count > 0:
        entry_history_evicted_total.inc(count)


def observe_notification(outcome: str) -> None:
    notifications_total.labels(outcome=outcome).inc()


def observe_authz_denied(operation: str) -> None:
    authz_denied_total.labels(operation=operation).inc()


def observe_hierarchy_mutation(operation: str) -> None:
    hierarchy_mutations_total.labels(operation=operation).inc()


def observe_reminder_sweep(status: str, duration: float) -> None:
    reminder_sweep_total.labels(status=status).inc()
    reminder_sweep_duration_seconds.observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
