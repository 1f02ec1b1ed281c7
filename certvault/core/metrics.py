"""Prometheus metrics inventory.

All metrics are declared here and incremented by the module that owns the
behaviour.  Prometheus scrapes them from GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CERTIFICATE_TRANSITIONS = Counter(
    "certificate_transitions_total",
    "Lifecycle actions attempted, by action and outcome",
    ["action", "outcome"],  # outcome: ok|invalid|denied
)

INGESTION_ROWS = Counter(
    "ingestion_rows_total",
    "Upload rows processed by the ingestion pipeline",
    ["result"],  # valid|invalid
)

INTEGRITY_FAILURES = Counter(
    "integrity_failures_total",
    "Authenticated decryptions rejected (wrong key or tampered data)",
)

EXTERNAL_CALLS = Counter(
    "external_calls_total",
    "Calls to external collaborators",
    ["collaborator", "operation", "outcome"],  # outcome: ok|error
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Verification cache lookups by result",
    ["operation"],  # hit|miss
)

# --- HTTP surface ---

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "HTTP requests currently being processed",
)
