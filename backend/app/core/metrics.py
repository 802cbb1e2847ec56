"""Prometheus metrics for the dispatch service.

Exposes HTTP request metrics plus the dispatch-specific series: delivery
outcomes per channel, claim outcomes per sweep category, rate limiter
decisions and the orphaned-attempt gauge.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Running under gunicorn with several workers
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "familynotify_dispatch_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Dispatch Metrics
# ============================================
DELIVERY_ATTEMPTS_TOTAL = Counter(
    "delivery_attempts_total",
    "Delivery attempts by channel and terminal status",
    ["channel", "status"],
    registry=REGISTRY,
)

DISPATCH_DURATION_SECONDS = Histogram(
    "dispatch_duration_seconds",
    "Duration of a full fan-out for one item",
    ["item_type"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

SCHEDULER_CLAIMS_TOTAL = Counter(
    "scheduler_claims_total",
    "Scheduled item claim attempts by category and outcome",
    ["category", "outcome"],
    registry=REGISTRY,
)

ORPHANED_DELIVERY_ATTEMPTS = Gauge(
    "delivery_attempts_orphaned",
    "QUEUED delivery attempts older than the orphan threshold",
    registry=REGISTRY,
)


# ============================================
# Rate Limiter Metrics
# ============================================
RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions by route class",
    ["route_class", "decision"],
    registry=REGISTRY,
)


def record_delivery_outcome(channel: str, status: str) -> None:
    """Count one terminal delivery outcome."""
    DELIVERY_ATTEMPTS_TOTAL.labels(channel=channel, status=status).inc()


def record_claim(category: str, outcome: str) -> None:
    """Count one claim attempt (won, lost, released, kept)."""
    SCHEDULER_CLAIMS_TOTAL.labels(category=category, outcome=outcome).inc()


def record_rate_limit_decision(route_class: str, decision: str) -> None:
    """Count one limiter decision (allowed, rejected, fail_open)."""
    RATE_LIMIT_DECISIONS_TOTAL.labels(route_class=route_class, decision=decision).inc()


def set_app_info(version: str, environment: str) -> None:
    """Publish application version and environment."""
    APP_INFO.info({"version": version, "environment": environment})


def get_metrics() -> tuple[bytes, str]:
    """Render the registry in Prometheus exposition format."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
