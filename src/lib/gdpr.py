"""
GDPR (RGPD) data controller for ChantierPro.

Coordinates consent, data-subject rights requests, retention and breach
tracking over the application database.

Responsibilities:
- Consent lifecycle: grant, withdraw (soft revocation, never deleted)
- Rights requests: submit, approve, reject, process ACCESS and ERASURE
- Anonymization: one transaction over the user, messages, comments, documents
- Retention: strategy-driven cleanup per data type, policy upsert
- Breach register: report, status follow-up
- Reporting: compliance figures and admin listings

Every controller-level action appends a GDPRProcessingLog entry. Those
writes are best-effort: a failure is logged and never masks the outcome of
the primary operation.

Usage:
    controller = GDPRDataController(session, event_logger=event_logger)

    request_id = controller.submit_data_rights_request(user_id, DataRightsType.ERASURE)
    controller.process_erasure_request(request_id, processor_user_id=admin_id)

    report = controller.generate_compliance_report()
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import ColumnElement, delete, func, null, select, update
from sqlalchemy.orm import Session

from src.infra.monitoring import record_gdpr_request, track_gdpr_operation
from src.lib.audit import RiskLevel, SecurityEvent, SecurityEventLogger
from src.lib.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RequestTypeMismatchError,
    ValidationError,
)
from src.lib.gdpr_retention import RetentionRegistry, default_retention_registry
from src.lib.gdpr_types import (
    ANONYMIZED_EMAIL_DOMAIN,
    ANONYMIZED_NAME,
    ANONYMIZED_NOM,
    EXPORT_DATA_TYPES,
    EXPORT_EXCLUDED_USER_FIELDS,
    REDACTED_COMMENT,
    REDACTED_MESSAGE,
    BreachSeverity,
    BreachStatus,
    CleanupResult,
    ComplianceReport,
    ConsentInput,
    ConsentPurpose,
    DataRightsType,
    DataType,
    LawfulBasis,
    ProcessingOperation,
    RequestStatus,
    can_transition,
    row_to_dict,
)
from src.lib.security import hash_uid
from src.models.gdpr import (
    DataBreach,
    DataRetention,
    DataRightsRequest,
    GDPRConsent,
    GDPRProcessingLog,
)
from src.models.user import Comment, Document, Message, User

logger = logging.getLogger(__name__)

PROCESSING_LOG_LIMIT = 100
ALL_REQUESTS_LIMIT = 50
BREACH_LIST_LIMIT = 20
RECENT_BREACH_DAYS = 30


def _enum_value(enum_cls: type[Any], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from e


class GDPRDataController:
    """
    RGPD data controller.

    Construct one per unit of work (typically per request) around a
    SQLAlchemy session; the process-wide wiring decides how sessions are
    created.

    Args:
        session: Database session the controller reads and writes through.
        retention_registry: Retention strategies per data type
            (built-in COMMUNICATION and TECHNICAL strategies by default).
        event_logger: Security trail for exports and anonymizations.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        session: Session,
        retention_registry: RetentionRegistry | None = None,
        event_logger: SecurityEventLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.retention_registry = retention_registry or default_retention_registry()
        self.event_logger = event_logger
        self._clock = clock or (lambda: datetime.now(UTC))

    def _now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Transactions and audit helpers
    # =========================================================================

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Commit on success, roll back everything on any exception."""
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _log_processing_activity(
        self,
        user_id: str,
        data_type: DataType,
        operation: ProcessingOperation,
        lawful_basis: LawfulBasis,
        purpose: str,
        source: str,
    ) -> None:
        try:
            self.session.add(GDPRProcessingLog(
                user_id=user_id,
                data_type=data_type.value,
                operation=operation.value,
                lawful_basis=lawful_basis.value,
                purpose=purpose,
                source=source,
                timestamp=self._now(),
            ))
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Processing log write failed ({operation} for user {hash_uid(user_id)}): {e}")

    def _audit(self, action: str, user_id: str, processor_user_id: str, details: dict[str, Any]) -> None:
        if self.event_logger is None:
            return
        self.event_logger.log_security_event(SecurityEvent(
            action=action,
            resource="gdpr",
            ip_address="internal",
            user_agent="gdpr-controller",
            success=True,
            risk_level=RiskLevel.MEDIUM,
            details={"subjectUserId": user_id, **details},
            user_id=processor_user_id,
        ))

    def _get_user(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def _get_request(self, request_id: str) -> DataRightsRequest:
        request = self.session.get(DataRightsRequest, request_id)
        if request is None:
            raise NotFoundError("DataRightsRequest", request_id)
        return request

    @staticmethod
    def _require_type(request: DataRightsRequest, expected: DataRightsType) -> None:
        if request.type != expected.value:
            raise RequestTypeMismatchError(request.id, expected.value, request.type)

    @staticmethod
    def _require_transition(request: DataRightsRequest, target: RequestStatus) -> None:
        if not can_transition(request.status, target):
            raise InvalidTransitionError(request.id, request.status, target.value)

    # =========================================================================
    # Consent lifecycle
    # =========================================================================

    @staticmethod
    def _active_consents(user_id: str, purpose: ConsentPurpose) -> tuple[ColumnElement[bool], ...]:
        return (
            GDPRConsent.user_id == user_id,
            GDPRConsent.purpose == purpose.value,
            GDPRConsent.granted.is_(True),
            GDPRConsent.revoked_at.is_(None),
        )

    def record_consent(self, consent: ConsentInput) -> str:
        """
        Record a consent decision and return the new consent id.

        A grant first revokes any still-active grant for the same
        (user, purpose), so at most one active row exists per pair. A refusal
        (``granted=False``) is recorded as history only and leaves an active
        grant in place; withdrawal goes through ``withdraw_consent``.
        """
        purpose = _enum_value(ConsentPurpose, consent.purpose, "consent purpose")
        now = self._now()

        with self._transaction():
            if consent.granted:
                self.session.execute(
                    update(GDPRConsent)
                    .where(*self._active_consents(consent.user_id, purpose))
                    .values(
                        revoked_at=now,
                        revoked_ip_address=consent.ip_address,
                        revoked_user_agent=consent.user_agent,
                    )
                )
            row = GDPRConsent(
                user_id=consent.user_id,
                purpose=purpose.value,
                granted=consent.granted,
                ip_address=consent.ip_address,
                user_agent=consent.user_agent,
                timestamp=now,
            )
            self.session.add(row)
            self.session.flush()
            consent_id = row.id

        self._log_processing_activity(
            consent.user_id,
            DataType.PERSONAL,
            ProcessingOperation.CREATE,
            LawfulBasis.CONSENT,
            f"Consentement pour {purpose.value}",
            "user_action",
        )
        return consent_id

    def withdraw_consent(
        self,
        user_id: str,
        purpose: ConsentPurpose | str,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> int:
        """Revoke the active consent(s) for (user, purpose). Returns the number revoked."""
        purpose = _enum_value(ConsentPurpose, purpose, "consent purpose")

        with self._transaction():
            result = self.session.execute(
                update(GDPRConsent)
                .where(*self._active_consents(user_id, purpose))
                .values(
                    revoked_at=self._now(),
                    revoked_ip_address=ip_address,
                    revoked_user_agent=user_agent,
                )
            )
            revoked = result.rowcount or 0

        self._log_processing_activity(
            user_id,
            DataType.PERSONAL,
            ProcessingOperation.UPDATE,
            LawfulBasis.CONSENT,
            f"Révocation consentement pour {purpose.value}",
            "user_action",
        )
        return revoked

    def get_active_consents(self, user_id: str, purpose: ConsentPurpose | str | None = None) -> list[GDPRConsent]:
        stmt = select(GDPRConsent).where(
            GDPRConsent.user_id == user_id,
            GDPRConsent.granted.is_(True),
            GDPRConsent.revoked_at.is_(None),
        )
        if purpose is not None:
            stmt = stmt.where(GDPRConsent.purpose == _enum_value(ConsentPurpose, purpose, "consent purpose").value)
        return list(self.session.scalars(stmt))

    # =========================================================================
    # Rights requests
    # =========================================================================

    def submit_data_rights_request(
        self,
        user_id: str,
        request_type: DataRightsType | str,
        request_data: dict[str, Any] | None = None,
    ) -> str:
        """Create a PENDING rights request and return its id."""
        request_type = _enum_value(DataRightsType, request_type, "request type")
        self._get_user(user_id)

        with self._transaction():
            request = DataRightsRequest(
                user_id=user_id,
                type=request_type.value,
                status=RequestStatus.PENDING.value,
                request_data=request_data,
                created_at=self._now(),
            )
            self.session.add(request)
            self.session.flush()
            request_id = request.id

        self._log_processing_activity(
            user_id,
            DataType.PERSONAL,
            ProcessingOperation.CREATE,
            LawfulBasis.LEGITIMATE_INTERESTS,
            f"Demande de droit {request_type.value}",
            "user_request",
        )
        logger.info(f"Rights request {request_id} ({request_type}) submitted for user {hash_uid(user_id)}")
        return request_id

    def approve_data_rights_request(self, request_id: str, processor_user_id: str, note: str | None = None) -> None:
        """PENDING -> IN_PROGRESS, attributed to the processor."""
        with self._transaction():
            request = self._get_request(request_id)
            self._require_transition(request, RequestStatus.IN_PROGRESS)
            request.status = RequestStatus.IN_PROGRESS.value
            request.processor_user_id = processor_user_id
            request.response_note = note

    def reject_data_rights_request(self, request_id: str, processor_user_id: str, reason: str | None = None) -> None:
        """PENDING or IN_PROGRESS -> REJECTED, attributed to the processor."""
        with self._transaction():
            request = self._get_request(request_id)
            self._require_transition(request, RequestStatus.REJECTED)
            request.status = RequestStatus.REJECTED.value
            request.processor_user_id = processor_user_id
            request.response_note = reason
            request.processed_at = self._now()
            request_type = request.type
        record_gdpr_request(request_type, "rejected")

    def process_access_request(self, request_id: str, processor_user_id: str) -> dict[str, Any]:
        """
        Answer an ACCESS request with a snapshot of the user's data.

        Returns:
            The exported data ({"user": ..., "metadata": ...}), also stored on
            the request as ``processed_data``.

        Raises:
            NotFoundError: Unknown request or user.
            RequestTypeMismatchError: The request is not an ACCESS request.
            InvalidTransitionError: The request is already closed.
        """
        with track_gdpr_operation("access"):
            with self._transaction():
                request = self._get_request(request_id)
                self._require_type(request, DataRightsType.ACCESS)
                self._require_transition(request, RequestStatus.COMPLETED)

                user_id = request.user_id
                exported = self._collect_user_data(user_id)

                request.status = RequestStatus.COMPLETED.value
                request.processed_data = exported
                request.processor_user_id = processor_user_id
                request.processed_at = self._now()

        record_gdpr_request(DataRightsType.ACCESS.value, "completed")
        self._log_processing_activity(
            user_id,
            DataType.PERSONAL,
            ProcessingOperation.EXPORT,
            LawfulBasis.LEGAL_OBLIGATION,
            "Droit d'accès RGPD",
            "admin_action",
        )
        self._audit("GDPR_DATA_EXPORTED", user_id, processor_user_id, {"requestId": request_id})
        return exported

    def process_erasure_request(self, request_id: str, processor_user_id: str) -> None:
        """
        Answer an ERASURE request by anonymizing the user.

        Anonymization and the request's completion commit together; on any
        failure nothing is persisted and the request stays open.

        Raises:
            NotFoundError: Unknown request or user.
            RequestTypeMismatchError: The request is not an ERASURE request.
            InvalidTransitionError: The request is already closed.
        """
        with track_gdpr_operation("erasure"):
            try:
                with self._transaction():
                    request = self._get_request(request_id)
                    self._require_type(request, DataRightsType.ERASURE)
                    self._require_transition(request, RequestStatus.COMPLETED)

                    user_id = request.user_id
                    summary = self._anonymize_user_data(user_id)

                    request.status = RequestStatus.COMPLETED.value
                    request.processed_data = summary
                    request.processor_user_id = processor_user_id
                    request.processed_at = self._now()
            except Exception:
                record_gdpr_request(DataRightsType.ERASURE.value, "failed")
                raise

        record_gdpr_request(DataRightsType.ERASURE.value, "completed")
        self._log_anonymization(user_id)
        self._audit("GDPR_DATA_ANONYMIZED", user_id, processor_user_id, {"requestId": request_id, **summary})
        logger.info(f"Erasure request {request_id} completed for user {hash_uid(user_id)}")

    def get_data_rights_requests(self, user_id: str) -> list[DataRightsRequest]:
        stmt = (
            select(DataRightsRequest)
            .where(DataRightsRequest.user_id == user_id)
            .order_by(DataRightsRequest.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def get_pending_data_rights_requests(self) -> list[DataRightsRequest]:
        """Pending requests, oldest first (processing queue order)."""
        stmt = (
            select(DataRightsRequest)
            .where(DataRightsRequest.status == RequestStatus.PENDING.value)
            .order_by(DataRightsRequest.created_at.asc())
        )
        return list(self.session.scalars(stmt))

    def get_all_data_rights_requests(
        self,
        status: RequestStatus | str | None = None,
        request_type: DataRightsType | str | None = None,
    ) -> list[DataRightsRequest]:
        stmt = select(DataRightsRequest)
        if status is not None:
            stmt = stmt.where(DataRightsRequest.status == _enum_value(RequestStatus, status, "status").value)
        if request_type is not None:
            stmt = stmt.where(
                DataRightsRequest.type == _enum_value(DataRightsType, request_type, "request type").value
            )
        stmt = stmt.order_by(DataRightsRequest.created_at.desc()).limit(ALL_REQUESTS_LIMIT)
        return list(self.session.scalars(stmt))

    # =========================================================================
    # Export and anonymization
    # =========================================================================

    def _collect_user_data(self, user_id: str) -> dict[str, Any]:
        user = self._get_user(user_id)

        related = {
            "chantiers": user.chantiers,
            "devis": user.devis,
            "messages": user.messages,
            "comments": user.comments,
            "documents": user.documents,
            "notifications": user.notifications,
            "gdprConsents": user.gdpr_consents,
            "dataRightsRequests": user.data_rights_requests,
            "processingLogs": user.processing_logs,
        }

        profile = row_to_dict(user, exclude=EXPORT_EXCLUDED_USER_FIELDS)
        total_records = 1
        for key, rows in related.items():
            profile[key] = [row_to_dict(row) for row in rows]
            total_records += len(rows)

        return {
            "user": profile,
            "metadata": {
                "exportedAt": self._now().isoformat(),
                "dataTypes": list(EXPORT_DATA_TYPES),
                "totalRecords": total_records,
            },
        }

    def _anonymized_email(self) -> str:
        millis = int(self._now().timestamp() * 1000)
        return f"deleted_{millis}_{uuid.uuid4().hex[:8]}@{ANONYMIZED_EMAIL_DOMAIN}"

    def _anonymize_profile(self, user: User) -> None:
        user.email = self._anonymized_email()
        user.name = ANONYMIZED_NAME
        user.nom = ANONYMIZED_NOM
        user.phone = None
        user.company = None
        user.address = None
        user.image = None

    def _redact_messages(self, user_id: str) -> int:
        result = self.session.execute(
            update(Message)
            .where(Message.expediteur_id == user_id)
            .values(message=REDACTED_MESSAGE, photos=null())
        )
        return result.rowcount or 0

    def _redact_comments(self, user_id: str) -> int:
        result = self.session.execute(
            update(Comment)
            .where(Comment.auteur_id == user_id)
            .values(message=REDACTED_COMMENT, photos=null())
        )
        return result.rowcount or 0

    def _delete_documents(self, user_id: str) -> int:
        result = self.session.execute(delete(Document).where(Document.uploader_id == user_id))
        return result.rowcount or 0

    def _anonymize_user_data(self, user_id: str) -> dict[str, Any]:
        """Anonymize inside the caller's transaction. The user row and its id are kept."""
        user = self._get_user(user_id)
        self._anonymize_profile(user)
        self.session.flush()

        return {
            "anonymizedAt": self._now().isoformat(),
            "messagesRedacted": self._redact_messages(user_id),
            "commentsRedacted": self._redact_comments(user_id),
            "documentsDeleted": self._delete_documents(user_id),
        }

    def _log_anonymization(self, user_id: str) -> None:
        self._log_processing_activity(
            user_id,
            DataType.PERSONAL,
            ProcessingOperation.ANONYMIZE,
            LawfulBasis.LEGITIMATE_INTERESTS,
            "Droit à l'oubli RGPD",
            "admin_action",
        )

    def export_user_data(self, user_id: str) -> dict[str, Any]:
        """Collect the user's data without touching any rights request."""
        return self._collect_user_data(user_id)

    def execute_anonymization(self, user_id: str) -> dict[str, Any]:
        """Anonymize a user directly (admin action outside a rights request)."""
        with track_gdpr_operation("anonymization"):
            with self._transaction():
                summary = self._anonymize_user_data(user_id)
        self._log_anonymization(user_id)
        return summary

    # =========================================================================
    # Listings and reporting
    # =========================================================================

    def get_user_consents(self, user_id: str) -> list[GDPRConsent]:
        stmt = (
            select(GDPRConsent)
            .where(GDPRConsent.user_id == user_id)
            .order_by(GDPRConsent.timestamp.desc())
        )
        return list(self.session.scalars(stmt))

    def get_processing_logs(
        self,
        user_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[GDPRProcessingLog]:
        """Processing activity, newest first, at most 100 entries."""
        stmt = select(GDPRProcessingLog)
        if user_id:
            stmt = stmt.where(GDPRProcessingLog.user_id == user_id)
        if start_date is not None:
            stmt = stmt.where(GDPRProcessingLog.timestamp >= start_date)
        if end_date is not None:
            stmt = stmt.where(GDPRProcessingLog.timestamp <= end_date)
        stmt = stmt.order_by(GDPRProcessingLog.timestamp.desc(), GDPRProcessingLog.id.desc()).limit(
            PROCESSING_LOG_LIMIT
        )
        return list(self.session.scalars(stmt))

    def get_retention_policies(self) -> list[DataRetention]:
        stmt = select(DataRetention).order_by(DataRetention.data_type.asc(), DataRetention.category.asc())
        return list(self.session.scalars(stmt))

    def get_consents_overview(self) -> list[dict[str, Any]]:
        """Active consent counts grouped by purpose."""
        rows = self.session.execute(
            select(GDPRConsent.purpose, func.count(GDPRConsent.id))
            .where(GDPRConsent.granted.is_(True), GDPRConsent.revoked_at.is_(None))
            .group_by(GDPRConsent.purpose)
            .order_by(GDPRConsent.purpose)
        ).all()
        return [{"purpose": purpose, "activeConsents": count} for purpose, count in rows]

    def get_data_retention_report(self) -> list[dict[str, Any]]:
        """Retention policies, flagged with whether a cleanup strategy handles their category."""
        return [
            {
                "dataType": policy.data_type,
                "category": policy.category,
                "retentionDays": policy.retention_days,
                "lawfulBasis": policy.lawful_basis,
                "updatedAt": policy.updated_at.isoformat() if policy.updated_at else None,
                "automatedCleanup": self.retention_registry.for_policy(policy) is not None,
            }
            for policy in self.get_retention_policies()
        ]

    def get_data_breaches(self) -> list[DataBreach]:
        stmt = select(DataBreach).order_by(DataBreach.detected_at.desc()).limit(BREACH_LIST_LIMIT)
        return list(self.session.scalars(stmt))

    def generate_compliance_report(self) -> ComplianceReport:
        now = self._now()
        since = now - timedelta(days=RECENT_BREACH_DAYS)

        total_users = self.session.scalar(select(func.count(User.id))) or 0
        active_consents = self.session.scalar(
            select(func.count(GDPRConsent.id)).where(
                GDPRConsent.granted.is_(True), GDPRConsent.revoked_at.is_(None)
            )
        ) or 0
        pending_requests = self.session.scalar(
            select(func.count(DataRightsRequest.id)).where(
                DataRightsRequest.status == RequestStatus.PENDING.value
            )
        ) or 0
        recent_breaches = self.session.scalar(
            select(func.count(DataBreach.id)).where(DataBreach.detected_at >= since)
        ) or 0

        return ComplianceReport(
            total_users=total_users,
            active_consents=active_consents,
            pending_requests=pending_requests,
            recent_breaches=recent_breaches,
            generated_at=now,
        )

    # =========================================================================
    # Breach register
    # =========================================================================

    def report_data_breach(
        self,
        title: str,
        description: str,
        severity: BreachSeverity | str,
        affected_data_types: list[str],
        reported_by: str,
        affected_users_count: int | None = None,
        occurred_at: datetime | None = None,
    ) -> str:
        """Register a breach and return its id."""
        severity = _enum_value(BreachSeverity, severity, "breach severity")
        now = self._now()

        with self._transaction():
            breach = DataBreach(
                title=title,
                description=description,
                severity=severity.value,
                affected_data_types=list(affected_data_types),
                affected_users_count=affected_users_count,
                reported_by=reported_by,
                occurred_at=occurred_at or now,
                detected_at=now,
                status=BreachStatus.DETECTED.value,
            )
            self.session.add(breach)
            self.session.flush()
            breach_id = breach.id

        logger.warning(f"Data breach {breach_id} reported ({severity}): {title}")
        return breach_id

    def update_breach_status(self, breach_id: str, status: BreachStatus | str, notes: str | None = None) -> None:
        """Move a breach to ``status``; ``notes`` are appended to its mitigation actions."""
        status = _enum_value(BreachStatus, status, "breach status")

        with self._transaction():
            breach = self.session.get(DataBreach, breach_id)
            if breach is None:
                raise NotFoundError("DataBreach", breach_id)
            breach.status = status.value
            if notes:
                # Reassign so the JSON column is flagged dirty
                breach.mitigation_actions = [
                    *(breach.mitigation_actions or []),
                    {"note": notes, "timestamp": self._now().isoformat()},
                ]

    # =========================================================================
    # Retention
    # =========================================================================

    def update_retention_policy(
        self,
        data_type: DataType | str,
        category: str,
        retention_days: int,
        lawful_basis: LawfulBasis | str,
    ) -> None:
        """Create or update the policy for (data_type, category)."""
        data_type = _enum_value(DataType, data_type, "data type")
        lawful_basis = _enum_value(LawfulBasis, lawful_basis, "lawful basis")
        if retention_days < 0:
            raise ValidationError(f"retention_days must be >= 0, got {retention_days}")

        with self._transaction():
            policy = self.session.scalar(
                select(DataRetention).where(
                    DataRetention.data_type == data_type.value,
                    DataRetention.category == category,
                )
            )
            if policy is None:
                self.session.add(DataRetention(
                    data_type=data_type.value,
                    category=category,
                    retention_days=retention_days,
                    lawful_basis=lawful_basis.value,
                ))
            else:
                policy.retention_days = retention_days
                policy.lawful_basis = lawful_basis.value
                policy.updated_at = self._now()

    def cleanup_expired_data(self) -> CleanupResult:
        """
        Apply every retention policy through its registered strategy.

        All strategies run in one transaction. A policy is applied only when
        the strategy for its data type handles its category; other policies
        are reported in ``skipped`` as ``"DATA_TYPE/category"``.
        """
        result = CleanupResult()
        now = self._now()

        with track_gdpr_operation("cleanup"):
            with self._transaction():
                for policy in self.get_retention_policies():
                    strategy = self.retention_registry.for_policy(policy)
                    if strategy is None:
                        result.skipped.append(f"{policy.data_type}/{policy.category}")
                        continue

                    cutoff = now - timedelta(days=policy.retention_days)
                    result.deleted_records += strategy.purge(self.session, policy, cutoff)
                    for table in strategy.tables:
                        if table not in result.processed_tables:
                            result.processed_tables.append(table)

        logger.info(
            f"Retention cleanup: {result.deleted_records} records in {result.processed_tables}, "
            f"no strategy for {result.skipped}"
        )
        return result
