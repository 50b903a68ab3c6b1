"""
Anomaly detection for the ChantierPro compliance core.

Deterministic, rule-based risk scoring per user:
- Bulk data access (action tag contains BULK or EXPORT): +30
- Repeated failed logins (metadata failedLogins > 3): +50
- Off-hours access (server local hour < 6 or > 22): +20

Scores accumulate per user and saturate at 100. They never decay within the
process lifetime; ``reset()`` is the operator's way to clear a flagged user.
Profiles are process-local.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from src.lib.security import KeyedLocks, hash_uid

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and Data Classes
# =============================================================================


class AnomalyTag(StrEnum):
    """Activity tags recorded on a profile when a rule fires."""

    BULK_DATA_ACCESS = "BULK_DATA_ACCESS"
    MULTIPLE_FAILED_LOGINS = "MULTIPLE_FAILED_LOGINS"
    UNUSUAL_TIME_ACCESS = "UNUSUAL_TIME_ACCESS"


@dataclass
class AnomalyProfile:
    """Snapshot of a user's accumulated risk.

    Attributes:
        user_id: Profiled user.
        activities: Most recent rule tags, oldest first.
        score: Accumulated risk score (0-100).
    """

    user_id: str
    activities: list[str] = field(default_factory=list)
    score: int = 0


@dataclass
class _ProfileState:
    activities: deque[str]
    score: int = 0


# =============================================================================
# Anomaly Detector
# =============================================================================


class AnomalyDetector:
    """Stateful per-user risk scorer.

    Usage:
        detector = AnomalyDetector()
        score = detector.detect_anomalies("u_42", "EXPORT_CLIENTS", {"failedLogins": 0})
        if score > AnomalyDetector.HIGH_RISK_THRESHOLD:
            ...
    """

    BULK_ACCESS_SCORE: int = 30
    FAILED_LOGINS_SCORE: int = 50
    UNUSUAL_TIME_SCORE: int = 20

    FAILED_LOGINS_THRESHOLD: int = 3
    BUSINESS_HOURS_START: int = 6
    BUSINESS_HOURS_END: int = 22
    MAX_SCORE: int = 100
    HIGH_RISK_THRESHOLD: int = 70

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_activities: int = 10,
    ) -> None:
        self._clock = clock or datetime.now
        self._max_activities = max_activities
        self._profiles: dict[str, _ProfileState] = {}
        self._profiles_lock = threading.Lock()
        self._locks = KeyedLocks()

    def _state(self, user_id: str) -> _ProfileState:
        with self._profiles_lock:
            state = self._profiles.get(user_id)
            if state is None:
                state = _ProfileState(activities=deque(maxlen=self._max_activities))
                self._profiles[user_id] = state
            return state

    def _evaluate_rules(self, action: str, metadata: Mapping[str, Any]) -> tuple[int, list[str]]:
        delta = 0
        tags: list[str] = []

        if "BULK" in action or "EXPORT" in action:
            delta += self.BULK_ACCESS_SCORE
            tags.append(AnomalyTag.BULK_DATA_ACCESS)

        failed_logins = metadata.get("failedLogins")
        if (
            isinstance(failed_logins, (int, float))
            and not isinstance(failed_logins, bool)
            and failed_logins > self.FAILED_LOGINS_THRESHOLD
        ):
            delta += self.FAILED_LOGINS_SCORE
            tags.append(AnomalyTag.MULTIPLE_FAILED_LOGINS)

        hour = self._clock().hour
        if hour < self.BUSINESS_HOURS_START or hour > self.BUSINESS_HOURS_END:
            delta += self.UNUSUAL_TIME_SCORE
            tags.append(AnomalyTag.UNUSUAL_TIME_ACCESS)

        return delta, tags

    def detect_anomalies(
        self,
        user_id: str,
        action: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        """Apply the rules to one action and return the user's updated score (0-100)."""
        delta, tags = self._evaluate_rules(action, metadata or {})

        with self._locks(user_id):
            state = self._state(user_id)
            state.activities.extend(tags)
            state.score = min(state.score + delta, self.MAX_SCORE)
            score = state.score

        if delta:
            logger.info(
                "Anomaly rules fired for user %s: %s (+%d, score=%d)",
                hash_uid(user_id), ",".join(tags), delta, score,
            )
        return score

    def get_profile(self, user_id: str) -> AnomalyProfile:
        with self._locks(user_id):
            state = self._profiles.get(user_id)
            if state is None:
                return AnomalyProfile(user_id=user_id)
            return AnomalyProfile(user_id=user_id, activities=list(state.activities), score=state.score)

    def reset(self, user_id: str) -> None:
        """Clear a user's profile."""
        with self._locks(user_id):
            with self._profiles_lock:
                self._profiles.pop(user_id, None)
        logger.info("Anomaly profile reset for user %s", hash_uid(user_id))
