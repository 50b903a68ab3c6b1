"""
Tests for Prometheus monitoring.

Test coverage:
- Metric recording functions
- Context manager for GDPR operation timing
- Metrics export
"""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from src.infra.monitoring import (
    generate_metrics,
    record_gdpr_request,
    record_middleware_decision,
    record_permission_denial,
    record_rate_limit_rejection,
    record_security_event,
    track_gdpr_operation,
)


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_record_security_event() -> None:
    labels = {"action": "TEST_EVENT", "risk_level": "HIGH"}
    before = sample("chantierpro_security_events_total", labels)
    record_security_event("TEST_EVENT", "HIGH")
    assert sample("chantierpro_security_events_total", labels) == before + 1


def test_record_rate_limit_rejection() -> None:
    before = sample("chantierpro_rate_limit_rejections_total")
    record_rate_limit_rejection()
    assert sample("chantierpro_rate_limit_rejections_total") == before + 1


def test_record_permission_denial() -> None:
    before = sample("chantierpro_permission_denials_total", {"role": "CLIENT"})
    record_permission_denial("CLIENT")
    assert sample("chantierpro_permission_denials_total", {"role": "CLIENT"}) == before + 1


def test_record_middleware_decision() -> None:
    before = sample("chantierpro_middleware_decisions_total", {"outcome": "forbidden"})
    record_middleware_decision("forbidden")
    assert sample("chantierpro_middleware_decisions_total", {"outcome": "forbidden"}) == before + 1


def test_record_gdpr_request() -> None:
    labels = {"type": "ACCESS", "outcome": "completed"}
    before = sample("chantierpro_gdpr_requests_total", labels)
    record_gdpr_request("ACCESS", "completed")
    assert sample("chantierpro_gdpr_requests_total", labels) == before + 1


def test_track_gdpr_operation_observes_duration() -> None:
    labels = {"operation": "unit-test"}
    before = sample("chantierpro_gdpr_operation_duration_seconds_count", labels)
    with track_gdpr_operation("unit-test"):
        pass
    assert sample("chantierpro_gdpr_operation_duration_seconds_count", labels) == before + 1


def test_track_gdpr_operation_observes_on_error() -> None:
    labels = {"operation": "unit-test-error"}
    before = sample("chantierpro_gdpr_operation_duration_seconds_count", labels)
    with pytest.raises(RuntimeError):
        with track_gdpr_operation("unit-test-error"):
            raise RuntimeError("boom")
    assert sample("chantierpro_gdpr_operation_duration_seconds_count", labels) == before + 1


def test_generate_metrics() -> None:
    record_rate_limit_rejection()
    output = generate_metrics()
    assert isinstance(output, bytes)
    assert b"chantierpro_rate_limit_rejections_total" in output
