"""
Prometheus monitoring for the ChantierPro compliance core.

Provides Prometheus metrics for:
- Security events by action and risk level
- Rate limit rejections
- Permission denials by role
- Security middleware decisions
- GDPR rights request processing
- GDPR processing duration

Used by:
- Prometheus scraping (the host app mounts ``generate_metrics()`` on /metrics)
- Alertmanager rules on HIGH/CRITICAL security events
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


# =============================================================================
# Metrics Definitions
# =============================================================================

security_events_total = Counter(
    "chantierpro_security_events_total",
    "Security events emitted by the compliance core",
    ["action", "risk_level"],
)

rate_limit_rejections_total = Counter(
    "chantierpro_rate_limit_rejections_total",
    "Requests rejected by the fixed-window rate limiter",
)

permission_denials_total = Counter(
    "chantierpro_permission_denials_total",
    "Permission checks that returned False",
    ["role"],
)

middleware_decisions_total = Counter(
    "chantierpro_middleware_decisions_total",
    "Security middleware outcomes",
    ["outcome"],
)

gdpr_requests_total = Counter(
    "chantierpro_gdpr_requests_total",
    "Data rights requests processed",
    ["type", "outcome"],
)

gdpr_operation_duration_seconds = Histogram(
    "chantierpro_gdpr_operation_duration_seconds",
    "Duration of GDPR controller operations",
    ["operation"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


# =============================================================================
# Metrics Recording Functions
# =============================================================================


def record_security_event(action: str, risk_level: str) -> None:
    security_events_total.labels(action=action, risk_level=risk_level).inc()


def record_rate_limit_rejection() -> None:
    rate_limit_rejections_total.inc()


def record_permission_denial(role: str) -> None:
    permission_denials_total.labels(role=role).inc()


def record_middleware_decision(outcome: str) -> None:
    """
    Record a middleware outcome.

    Args:
        outcome: "allowed", "rate_limited", "forbidden" or "high_risk"
    """
    middleware_decisions_total.labels(outcome=outcome).inc()


def record_gdpr_request(request_type: str, outcome: str) -> None:
    gdpr_requests_total.labels(type=request_type, outcome=outcome).inc()


@contextmanager
def track_gdpr_operation(operation: str) -> Iterator[None]:
    """
    Time a GDPR controller operation.

    Usage:
        with track_gdpr_operation("erasure"):
            ...
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        gdpr_operation_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start
        )


# =============================================================================
# Prometheus Metrics Export
# =============================================================================


def generate_metrics() -> bytes:
    """Return all metrics in the Prometheus text exposition format."""
    return generate_latest()
