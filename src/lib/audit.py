"""
Security Event Logger for the ChantierPro compliance core.

Every security-relevant check (rate limit, permission, anomaly) reports
here. Logging is best-effort: a failure to persist or alert is caught,
reported on the diagnostic log, and never raised into the caller.

Components:
- RiskLevel: LOW / MEDIUM / HIGH / CRITICAL
- SecurityEvent: one audit entry
- AlertSink / LoggingAlertSink: outbound alert hook for HIGH and CRITICAL events
- SecurityEventLogger: persistence + structured log + metrics + alerting
- SecurityLogRepository: admin-side querying and statistics over the trail

Usage:
    from src.lib.audit import RiskLevel, SecurityEvent, SecurityEventLogger

    event_logger = SecurityEventLogger(session_factory=SessionLocal)
    event_logger.log_security_event(SecurityEvent(
        action="EXPORT_CLIENTS",
        resource="clients",
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
        success=True,
        risk_level=RiskLevel.MEDIUM,
        user_id="u_123",
    ))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.infra.monitoring import record_security_event
from src.lib.exceptions import ValidationError
from src.models.security_log import SecurityLog

logger = structlog.get_logger()


# ============================================
# Event Types
# ============================================

class RiskLevel(StrEnum):
    """Risk classification of a security event."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def requires_alert(self) -> bool:
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)


@dataclass
class SecurityEvent:
    """
    A single security audit entry.

    ``details`` is a JSON-compatible dict whose shape is fixed per action:
    RATE_LIMIT_EXCEEDED -> {maxRequests, windowMs, currentCount};
    PERMISSION_CHECK -> {action, userRole, hasPermission};
    HIGH_RISK_ACTIVITY_DETECTED -> {riskScore, action}.
    """
    action: str
    resource: str
    ip_address: str
    user_agent: str
    success: bool
    risk_level: RiskLevel
    details: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "success": self.success,
            "riskLevel": str(self.risk_level),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================
# Alert Sinks
# ============================================

class AlertSink(Protocol):
    """Outbound notification channel for HIGH and CRITICAL events."""

    def send_alert(self, event: SecurityEvent) -> None: ...


class LoggingAlertSink:
    """Default sink: writes the alert to the structured log for the log pipeline to route."""

    def send_alert(self, event: SecurityEvent) -> None:
        logger.error("security_alert", **event.to_dict())


# ============================================
# Security Event Logger
# ============================================

class SecurityEventLogger:
    """
    Best-effort audit trail writer.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session. When
            None, events are only written to the structured log.
        alert_sink: Receives HIGH and CRITICAL events (LoggingAlertSink by default).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        alert_sink: AlertSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._alert_sink: AlertSink = alert_sink or LoggingAlertSink()

    def log_security_event(self, event: SecurityEvent) -> None:
        """Record an event. Never raises."""
        log = logger.warning if event.risk_level.requires_alert else logger.info
        log(
            "security_event",
            action=event.action,
            resource=event.resource,
            risk_level=str(event.risk_level),
            success=event.success,
            user_id=event.user_id,
            ip_address=event.ip_address,
        )

        try:
            record_security_event(event.action, str(event.risk_level))
        except Exception as e:
            logger.warning("security_event_metric_failed", error=str(e))

        if self._session_factory is not None:
            self._persist(self._session_factory, event)

        if event.risk_level.requires_alert:
            try:
                self._alert_sink.send_alert(event)
            except Exception as e:
                logger.error("security_alert_dispatch_failed", action=event.action, error=str(e))

    def _persist(self, session_factory: Callable[[], Session], event: SecurityEvent) -> None:
        try:
            with session_factory() as session:
                session.add(SecurityLog(
                    user_id=event.user_id,
                    action=event.action,
                    resource=event.resource,
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    success=event.success,
                    risk_level=str(event.risk_level),
                    details=event.details,
                    timestamp=event.timestamp,
                ))
                session.commit()
        except Exception as e:
            logger.error("security_event_persist_failed", action=event.action, error=str(e))


# ============================================
# Security Log Queries (admin dashboard)
# ============================================

TIMEFRAMES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

MAX_QUERY_LIMIT = 1000


class SecurityLogRepository:
    """Read-side access to the security trail."""

    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(UTC))

    def _since(self, timeframe: str) -> datetime:
        window = TIMEFRAMES.get(timeframe)
        if window is None:
            raise ValidationError(f"timeframe must be one of {sorted(TIMEFRAMES)}, got {timeframe!r}")
        return self._clock() - window

    def query(
        self,
        timeframe: str = "24h",
        risk_level: RiskLevel | str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
        only_failures: bool = False,
        limit: int = 100,
    ) -> list[SecurityLog]:
        """
        Return matching events, newest first.

        ``action`` and ``ip_address`` match as substrings.

        Raises:
            ValidationError: Unknown timeframe, or limit outside 1..1000.
        """
        if not 1 <= limit <= MAX_QUERY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_QUERY_LIMIT}, got {limit}")

        stmt = select(SecurityLog).where(SecurityLog.timestamp >= self._since(timeframe))
        if risk_level is not None:
            stmt = stmt.where(SecurityLog.risk_level == str(risk_level))
        if action:
            stmt = stmt.where(SecurityLog.action.contains(action))
        if user_id:
            stmt = stmt.where(SecurityLog.user_id == user_id)
        if ip_address:
            stmt = stmt.where(SecurityLog.ip_address.contains(ip_address))
        if only_failures:
            stmt = stmt.where(SecurityLog.success.is_(False))

        stmt = stmt.order_by(SecurityLog.timestamp.desc(), SecurityLog.id.desc()).limit(limit)
        return list(self._session.scalars(stmt))

    def stats(self, timeframe: str = "24h") -> dict[str, Any]:
        """Aggregate counts for the dashboard: per risk level, top failed actions, top IPs."""
        since = self._since(timeframe)
        in_window = SecurityLog.timestamp >= since

        by_risk = self._session.execute(
            select(SecurityLog.risk_level, func.count(SecurityLog.id))
            .where(in_window)
            .group_by(SecurityLog.risk_level)
        ).all()

        failed_actions = self._session.execute(
            select(SecurityLog.action, func.count(SecurityLog.id).label("n"))
            .where(in_window, SecurityLog.success.is_(False))
            .group_by(SecurityLog.action)
            .order_by(func.count(SecurityLog.id).desc())
            .limit(10)
        ).all()

        top_ips = self._session.execute(
            select(SecurityLog.ip_address, func.count(SecurityLog.id).label("n"))
            .where(in_window)
            .group_by(SecurityLog.ip_address)
            .order_by(func.count(SecurityLog.id).desc())
            .limit(10)
        ).all()

        by_risk_level = {level: count for level, count in by_risk}
        return {
            "byRiskLevel": by_risk_level,
            "topFailedActions": [{"action": a, "count": n} for a, n in failed_actions],
            "topIpAddresses": [{"ipAddress": ip, "count": n} for ip, n in top_ips],
            "total": sum(by_risk_level.values()),
        }
