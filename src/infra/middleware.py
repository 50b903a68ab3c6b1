"""
Security middleware for the ChantierPro compliance core.

Composes the per-request checks, short-circuiting on the first failure:
1. Rate limit on the client IP
2. Permission check (when user, action and resource are all known)
3. Anomaly score (when the user is known); blocked above the risk threshold

The middleware is framework-agnostic: route handlers reduce the incoming
request to a ``RequestContext`` and translate a denied ``SecurityDecision``
with ``to_error_response()``.

Usage:
    middleware = build_security_middleware(settings, session_factory)
    ctx = RequestContext.from_headers(request.headers, request.client.host)
    decision = middleware.evaluate(ctx, user_id, "READ_DEVIS", "devis")
    if not decision.allowed:
        body, status = decision.to_error_response()
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.orm import Session

from src.config.settings import SecuritySettings
from src.infra.monitoring import record_middleware_decision
from src.infra.rbac import PermissionEvaluator, db_role_lookup
from src.lib.anomaly import AnomalyDetector
from src.lib.audit import AlertSink, RiskLevel, SecurityEvent, SecurityEventLogger
from src.lib.errors import FORBIDDEN, HIGH_RISK, RATE_LIMITED, build_error_response, http_status_for
from src.lib.security import (
    DEFAULT_MAX_REQUESTS,
    DEFAULT_WINDOW_MS,
    CounterStore,
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    RedisCounterStore,
)

logger = logging.getLogger(__name__)

REASON_RATE_LIMITED = "Rate limit exceeded"
REASON_FORBIDDEN = "Insufficient permissions"
REASON_HIGH_RISK = "High risk activity detected"

_REASON_CODES = {
    REASON_RATE_LIMITED: RATE_LIMITED,
    REASON_FORBIDDEN: FORBIDDEN,
    REASON_HIGH_RISK: HIGH_RISK,
}


# =============================================================================
# Request Context and Decision
# =============================================================================


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the security checks need."""

    client_ip: str = "unknown"
    user_agent: str = "unknown"
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], remote_addr: str | None = None) -> RequestContext:
        """
        Build a context from request headers.

        The client IP is the first ``x-forwarded-for`` hop, then ``x-real-ip``,
        then the socket address.
        """
        lowered = {k.lower(): v for k, v in headers.items()}

        client_ip = ""
        forwarded = lowered.get("x-forwarded-for", "")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        if not client_ip:
            client_ip = lowered.get("x-real-ip", "").strip()
        if not client_ip:
            client_ip = remote_addr or "unknown"

        correlation_id = lowered.get("x-correlation-id") or lowered.get("x-request-id") or str(uuid.uuid4())

        return cls(
            client_ip=client_ip,
            user_agent=lowered.get("user-agent") or "unknown",
            correlation_id=correlation_id,
        )


@dataclass(frozen=True)
class SecurityDecision:
    """Outcome of ``SecurityMiddleware.evaluate``."""

    allowed: bool
    reason: str | None = None

    def to_error_response(self, lang: str = "fr") -> tuple[dict[str, Any], int]:
        """Error body and HTTP status for a denied decision."""
        code = _REASON_CODES.get(self.reason or "", FORBIDDEN)
        return build_error_response(code, details={"reason": self.reason}, lang=lang), http_status_for(code)


ALLOWED = SecurityDecision(allowed=True)


# =============================================================================
# Security Middleware
# =============================================================================


class SecurityMiddleware:
    """Runs the rate limit, permission and anomaly checks in order."""

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter,
        permission_evaluator: PermissionEvaluator,
        anomaly_detector: AnomalyDetector,
        event_logger: SecurityEventLogger,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
        risk_threshold: int = AnomalyDetector.HIGH_RISK_THRESHOLD,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.permission_evaluator = permission_evaluator
        self.anomaly_detector = anomaly_detector
        self.event_logger = event_logger
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.risk_threshold = risk_threshold

    def evaluate(
        self,
        context: RequestContext,
        user_id: str | None = None,
        action: str | None = None,
        resource: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> SecurityDecision:
        """
        Decide whether the request may proceed.

        Args:
            context: Client IP and user agent.
            user_id: Authenticated user, if any.
            action: Action tag checked against the role matrix.
            resource: Resource name for the audit trail.
            metadata: Extra anomaly signals (e.g. ``failedLogins``).
        """
        with structlog.contextvars.bound_contextvars(correlation_id=context.correlation_id):
            decision = self._evaluate(context, user_id, action, resource, metadata)

        record_middleware_decision(_outcome(decision))
        return decision

    def _evaluate(
        self,
        context: RequestContext,
        user_id: str | None,
        action: str | None,
        resource: str | None,
        metadata: Mapping[str, Any] | None,
    ) -> SecurityDecision:
        if not self.rate_limiter.allow(context.client_ip, self.max_requests, self.window_ms):
            return SecurityDecision(False, REASON_RATE_LIMITED)

        if user_id and action and resource:
            allowed = self.permission_evaluator.check_permission(
                user_id,
                action,
                resource,
                ip_address=context.client_ip,
                user_agent=context.user_agent,
            )
            if not allowed:
                return SecurityDecision(False, REASON_FORBIDDEN)

        if user_id:
            anomaly_action = action or "UNKNOWN"
            risk_score = self.anomaly_detector.detect_anomalies(user_id, anomaly_action, metadata)
            if risk_score > self.risk_threshold:
                self.event_logger.log_security_event(SecurityEvent(
                    action="HIGH_RISK_ACTIVITY_DETECTED",
                    resource=resource or "unknown",
                    ip_address=context.client_ip,
                    user_agent=context.user_agent,
                    success=False,
                    risk_level=RiskLevel.HIGH,
                    details={"riskScore": risk_score, "action": anomaly_action},
                    user_id=user_id,
                ))
                return SecurityDecision(False, REASON_HIGH_RISK)

        return ALLOWED


def _outcome(decision: SecurityDecision) -> str:
    if decision.allowed:
        return "allowed"
    return {
        REASON_RATE_LIMITED: "rate_limited",
        REASON_FORBIDDEN: "forbidden",
        REASON_HIGH_RISK: "high_risk",
    }.get(decision.reason or "", "denied")


def build_security_middleware(
    settings: SecuritySettings,
    session_factory: Callable[[], Session],
    alert_sink: AlertSink | None = None,
) -> SecurityMiddleware:
    """
    Wire the middleware and its components from settings.

    Uses a Redis counter store when ``settings.redis_url`` is set, the
    in-memory store otherwise.
    """
    event_logger = SecurityEventLogger(session_factory=session_factory, alert_sink=alert_sink)

    store: CounterStore
    if settings.redis_url:
        store = RedisCounterStore.from_url(settings.redis_url)
        logger.info("Rate limiter using Redis counter store")
    else:
        store = InMemoryCounterStore()
        logger.info("Rate limiter using in-memory counter store (single instance only)")

    return SecurityMiddleware(
        rate_limiter=FixedWindowRateLimiter(store=store, event_logger=event_logger),
        permission_evaluator=PermissionEvaluator(db_role_lookup(session_factory), event_logger),
        anomaly_detector=AnomalyDetector(),
        event_logger=event_logger,
        max_requests=settings.rate_limit_max,
        window_ms=settings.rate_limit_window_ms,
        risk_threshold=settings.anomaly_threshold,
    )
