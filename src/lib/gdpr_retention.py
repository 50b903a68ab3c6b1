"""
Retention strategies for GDPR cleanup.

A ``DataRetention`` policy is keyed by (data_type, category). Cleanup applies
a policy only when the strategy registered for its data type declares the
policy's category; every other policy is reported as skipped and its rows are
left untouched. Deletion semantics are decided per table, never guessed.

The security audit trail (``security_logs``) is append-only and has no
strategy.

Usage:
    registry = default_retention_registry()
    registry.register(DataType.COMMERCIAL, MyQuoteArchiver())
    controller = GDPRDataController(session, retention_registry=registry)
    result = controller.cleanup_expired_data()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.orm import Session

from src.lib.gdpr_types import DataType
from src.models.gdpr import DataRetention
from src.models.user import Notification

logger = logging.getLogger(__name__)


class RetentionStrategy(Protocol):
    """Deletes or anonymizes one category of records older than a cutoff."""

    tables: tuple[str, ...]
    categories: tuple[str, ...]

    def purge(self, session: Session, policy: DataRetention, cutoff: datetime) -> int:
        """Apply the policy inside the caller's transaction. Returns rows affected."""
        ...


class NotificationRetention:
    """COMMUNICATION/notifications: deletes notifications created before the cutoff."""

    tables = ("notifications",)
    categories = ("notifications",)

    def purge(self, session: Session, policy: DataRetention, cutoff: datetime) -> int:
        result = session.execute(delete(Notification).where(Notification.created_at < cutoff))
        return result.rowcount or 0


class RetentionRegistry:
    """Maps a data type to its retention strategy."""

    def __init__(self) -> None:
        self._strategies: dict[DataType, RetentionStrategy] = {}

    def register(self, data_type: DataType | str, strategy: RetentionStrategy) -> None:
        self._strategies[DataType(data_type)] = strategy
        logger.info(f"Registered retention strategy for {DataType(data_type)}: {type(strategy).__name__}")

    def get(self, data_type: DataType | str) -> RetentionStrategy | None:
        try:
            return self._strategies.get(DataType(data_type))
        except ValueError:
            return None

    def for_policy(self, policy: DataRetention) -> RetentionStrategy | None:
        """Strategy that handles this policy's (data_type, category), if any."""
        strategy = self.get(policy.data_type)
        if strategy is None or policy.category not in strategy.categories:
            return None
        return strategy

    def __contains__(self, data_type: object) -> bool:
        return isinstance(data_type, str) and self.get(data_type) is not None


def default_retention_registry() -> RetentionRegistry:
    """Registry with the built-in strategy (COMMUNICATION/notifications)."""
    registry = RetentionRegistry()
    registry.register(DataType.COMMUNICATION, NotificationRetention())
    return registry
