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

authz_decisions_total = Counter(
    "authz_decisions_total",
    "Authorization decisions by check and outcome",
    ["check", "outcome", "kind"],
)

zone_directory_lookup_failures_total = Counter(
    "zone_directory_lookup_failures_total",
    "Zone directory lookups that failed closed",
    ["lookup"],
)

capability_lookup_failures_total = Counter(
    "capability_lookup_failures_total",
    "Capability lookups that failed closed",
)

audit_writes_total = Counter(
    "audit_writes_total",
    "Persisted audit entries by action",
    ["action"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Audit entries that could not be persisted",
    ["action"],
)

audit_read_failures_total = Counter(
    "audit_read_failures_total",
    "Audit queries that failed and returned no rows",
    ["query"],
)

audit_dispatch_fallbacks_total = Counter(
    "audit_dispatch_fallbacks_total",
    "Activity entries written inline because background dispatch failed",
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_authz_decision(check: str, allowed: bool, kind: str | None) -> None:
    outcome = "allow" if allowed else "deny"
    authz_decisions_total.labels(check=check, outcome=outcome, kind=kind or "none").inc()


def observe_zone_lookup_failure(lookup: str) -> None:
    zone_directory_lookup_failures_total.labels(lookup=lookup).inc()


def observe_capability_lookup_failure() -> None:
    capability_lookup_failures_total.inc()


def observe_audit_write(action: str) -> None:
    audit_writes_total.labels(action=action).inc()


def observe_audit_write_failure(action: str) -> None:
    audit_write_failures_total.labels(action=action).inc()


def observe_audit_read_failure(query: str) -> None:
    audit_read_failures_total.labels(query=query).inc()


def observe_audit_dispatch_fallback() -> None:
    audit_dispatch_fallbacks_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
