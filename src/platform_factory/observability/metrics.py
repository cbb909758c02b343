"""Prometheus metrics for the platform factory.

Counters and histograms for provisioning runs, individual steps, pre-flight
cleanup and rollback, plus the HTTP request metrics recorded by
``MetricsMiddleware``.

Usage::

    from platform_factory.observability.metrics import PROVISION_RUNS_TOTAL

    PROVISION_RUNS_TOTAL.labels(outcome="success").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "platform_factory_http_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "platform_factory_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "platform_factory_http_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Provisioning metrics
# ---------------------------------------------------------------------------

PROVISION_RUNS_TOTAL = Counter(
    "platform_factory_provision_runs_total",
    "Completed provisioning runs by outcome (success, degraded, failed).",
    labelnames=["outcome"],
    registry=REGISTRY,
)

PROVISION_RUN_DURATION_SECONDS = Histogram(
    "platform_factory_provision_run_duration_seconds",
    "Wall-clock duration of a provisioning run.",
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0),
    registry=REGISTRY,
)

PROVISION_STEPS_TOTAL = Counter(
    "platform_factory_provision_steps_total",
    "Provisioning steps by step id and terminal status.",
    labelnames=["step", "status"],
    registry=REGISTRY,
)

PROVISION_STEP_DURATION_SECONDS = Histogram(
    "platform_factory_provision_step_duration_seconds",
    "Duration of a provisioning step including verification.",
    labelnames=["step"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 600.0),
    registry=REGISTRY,
)

PROVISION_ROLLBACKS_TOTAL = Counter(
    "platform_factory_provision_rollback_entries_total",
    "Rollback deletions by resource kind and outcome.",
    labelnames=["kind", "outcome"],
    registry=REGISTRY,
)

CLEANUP_ENTRIES_TOTAL = Counter(
    "platform_factory_preflight_cleanup_entries_total",
    "Pre-flight cleanup results by resource kind and outcome.",
    labelnames=["kind", "outcome"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
