"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
    "standing_http_requests_total",
    "Total HTTP requests processed",
    ["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
    "standing_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["route", "method"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

LOGINS = Counter(
    "standing_logins_total",
    "Login attempts by outcome",
    ["outcome"],
)

SESSIONS_ISSUED = Counter(
    "standing_sessions_issued_total",
    "Sessions created",
)

SESSIONS_REJECTED = Counter(
    "standing_sessions_rejected_total",
    "Session validations that failed",
    ["reason"],
)

SESSIONS_REVOKED = Counter(
    "standing_sessions_revoked_total",
    "Sessions removed by logout, revocation or sweep",
    ["cause"],
)

CSRF_REJECTED = Counter(
    "standing_csrf_rejected_total",
    "Mutating requests rejected for a missing or mismatched CSRF token",
)

ACCESS_DENIED = Counter(
    "standing_access_denied_total",
    "Authorization denials by reason",
    ["reason"],
)

TRANSITIONS = Counter(
    "standing_membership_transitions_total",
    "Membership lifecycle events by outcome",
    ["event", "result"],
)

PAYMENTS_RECONCILED = Counter(
    "standing_payments_reconciled_total",
    "Payment events processed by the reconciler",
    ["status", "outcome"],
)

WEBHOOK_REJECTED = Counter(
    "standing_webhook_rejected_total",
    "Payment webhook deliveries rejected before reconciliation",
    ["reason"],
)

AUDIT_RECORDS = Counter(
    "standing_audit_records_total",
    "Audit records written",
    ["action"],
)

BACKGROUND_RUNS = Counter(
    "standing_background_runs_total",
    "Background job runs",
    ["job", "result"],
)

BACKGROUND_DURATION = Histogram(
    "standing_background_duration_seconds",
    "Background job duration in seconds",
    ["job"],
)


def observe_request(route: str, method: str, status: int, latency_seconds: float) -> None:
    REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
    REQUEST_LATENCY.labels(route=route, method=method).observe(latency_seconds)
