"""
GDPR types, enums, dataclasses and serialization helpers.

Contains all type definitions shared by the GDPR data controller and the
retention strategies. Enum values are the strings stored in the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any


class ConsentPurpose(StrEnum):
    """Processing purposes a user can consent to."""
    MARKETING = "MARKETING"
    ANALYTICS = "ANALYTICS"
    COMMUNICATION = "COMMUNICATION"
    PROFILING = "PROFILING"
    THIRD_PARTY_SHARING = "THIRD_PARTY_SHARING"
    COOKIES = "COOKIES"
    GEOLOCATION = "GEOLOCATION"
    PHOTO_STORAGE = "PHOTO_STORAGE"


class DataRightsType(StrEnum):
    """Data-subject rights (RGPD articles 15 to 21)."""
    ACCESS = "ACCESS"
    RECTIFICATION = "RECTIFICATION"
    ERASURE = "ERASURE"
    RESTRICT = "RESTRICT"
    PORTABILITY = "PORTABILITY"
    OBJECT = "OBJECT"


class RequestStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class DataType(StrEnum):
    """Data categories used by processing logs and retention policies."""
    PERSONAL = "PERSONAL"
    SENSITIVE = "SENSITIVE"
    FINANCIAL = "FINANCIAL"
    TECHNICAL = "TECHNICAL"
    COMMERCIAL = "COMMERCIAL"
    COMMUNICATION = "COMMUNICATION"


class ProcessingOperation(StrEnum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"
    ANONYMIZE = "ANONYMIZE"


class LawfulBasis(StrEnum):
    """RGPD article 6 lawful bases."""
    CONSENT = "CONSENT"
    CONTRACT = "CONTRACT"
    LEGAL_OBLIGATION = "LEGAL_OBLIGATION"
    VITAL_INTERESTS = "VITAL_INTERESTS"
    PUBLIC_TASK = "PUBLIC_TASK"
    LEGITIMATE_INTERESTS = "LEGITIMATE_INTERESTS"


class BreachSeverity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class BreachStatus(StrEnum):
    DETECTED = "DETECTED"
    INVESTIGATING = "INVESTIGATING"
    CONTAINED = "CONTAINED"
    RESOLVED = "RESOLVED"
    REPORTED = "REPORTED"


# Rights request state machine. COMPLETED, REJECTED and EXPIRED are terminal.
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.IN_PROGRESS,
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.IN_PROGRESS: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}


def can_transition(current: RequestStatus | str, target: RequestStatus | str) -> bool:
    return RequestStatus(target) in ALLOWED_TRANSITIONS[RequestStatus(current)]


# Anonymization placeholders
ANONYMIZED_NAME = "Utilisateur supprimé"
ANONYMIZED_NOM = "Anonyme"
ANONYMIZED_EMAIL_DOMAIN = "anonymized.local"
REDACTED_MESSAGE = "[Message supprimé]"
REDACTED_COMMENT = "[Commentaire supprimé]"

# User columns never included in an export
EXPORT_EXCLUDED_USER_FIELDS: frozenset[str] = frozenset({
    "password",
    "two_factor_secret",
    "backup_codes",
})

EXPORT_DATA_TYPES: list[str] = ["profile", "chantiers", "devis", "messages", "documents"]


@dataclass
class ConsentInput:
    """
    A consent decision captured from the user.

    Attributes:
        user_id: Consenting user.
        purpose: Processing purpose.
        granted: True for a grant, False for an explicit refusal.
        ip_address: Client IP at the time of the decision.
        user_agent: Client user agent at the time of the decision.
    """
    user_id: str
    purpose: ConsentPurpose
    granted: bool
    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class ComplianceReport:
    """Headline compliance figures for the admin dashboard."""
    total_users: int
    active_consents: int
    pending_requests: int
    recent_breaches: int
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalUsers": self.total_users,
            "activeConsents": self.active_consents,
            "pendingRequests": self.pending_requests,
            "recentBreaches": self.recent_breaches,
            "generatedAt": self.generated_at.isoformat(),
        }


@dataclass
class CleanupResult:
    """Outcome of a retention cleanup run.

    Attributes:
        deleted_records: Rows deleted or anonymized across all strategies.
        processed_tables: Tables touched by a strategy.
        skipped: "DATA_TYPE/category" of policies no strategy handles.
    """
    deleted_records: int = 0
    processed_tables: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def to_json_value(value: Any) -> Any:
    """Convert a column value to a JSON-compatible value."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def row_to_dict(row: Any, exclude: frozenset[str] | set[str] = frozenset()) -> dict[str, Any]:
    """Serialize an ORM row's columns, skipping ``exclude``."""
    return {
        column.key: to_json_value(getattr(row, column.key))
        for column in row.__table__.columns
        if column.key not in exclude
    }
