"""
Tests for the GDPR data controller.

Covers:
- Consent lifecycle (grant, withdraw, re-grant)
- Rights request state machine (submit, approve, reject, process)
- Access export and erasure anonymization, including atomicity
- Admin listings, compliance report and breach register
- Retention policies and strategy-driven cleanup
- Best-effort processing logs
"""

from __future__ import annotations

import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select

from src.lib.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RequestTypeMismatchError,
    ValidationError,
)
from src.lib.gdpr import GDPRDataController
from src.lib.gdpr_retention import RetentionRegistry, default_retention_registry
from src.lib.gdpr_types import (
    BreachSeverity,
    BreachStatus,
    ConsentInput,
    ConsentPurpose,
    DataRightsType,
    DataType,
    LawfulBasis,
    ProcessingOperation,
    RequestStatus,
    can_transition,
)
from src.models import (
    Chantier,
    Comment,
    DataRetention,
    DataRightsRequest,
    Devis,
    Document,
    GDPRConsent,
    GDPRProcessingLog,
    Message,
    Notification,
    SecurityLog,
    User,
)

ANONYMIZED_EMAIL = re.compile(r"^deleted_\d+_[0-9a-f]{8}@anonymized\.local$")


@pytest.fixture()
def event_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def controller(db_session, clock, event_logger) -> GDPRDataController:
    return GDPRDataController(db_session, event_logger=event_logger, clock=clock)


def grant(controller, user_id, purpose=ConsentPurpose.MARKETING, granted=True):
    return controller.record_consent(ConsentInput(
        user_id=user_id,
        purpose=purpose,
        granted=granted,
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
    ))


# =============================================================================
# Consents
# =============================================================================


class TestConsents:

    def test_record_consent(self, controller, db_session, client_user):
        consent_id = grant(controller, client_user.id)

        consent = db_session.get(GDPRConsent, consent_id)
        assert consent.purpose == "MARKETING"
        assert consent.granted is True
        assert consent.ip_address == "203.0.113.7"
        assert consent.is_active

        log = controller.get_processing_logs(client_user.id)[0]
        assert log.data_type == DataType.PERSONAL
        assert log.operation == ProcessingOperation.CREATE
        assert log.lawful_basis == LawfulBasis.CONSENT
        assert log.purpose == "Consentement pour MARKETING"
        assert log.source == "user_action"

    def test_withdraw_then_regrant(self, controller, db_session, client_user, clock):
        first_id = grant(controller, client_user.id)
        clock.advance(timedelta(minutes=1))

        assert controller.withdraw_consent(client_user.id, ConsentPurpose.MARKETING, "198.51.100.1", "UA2") == 1
        assert controller.get_active_consents(client_user.id, ConsentPurpose.MARKETING) == []

        revoked = db_session.get(GDPRConsent, first_id)
        assert revoked.revoked_at == clock()
        assert revoked.revoked_ip_address == "198.51.100.1"
        assert revoked.revoked_user_agent == "UA2"

        clock.advance(timedelta(minutes=1))
        second_id = grant(controller, client_user.id)

        active = controller.get_active_consents(client_user.id, ConsentPurpose.MARKETING)
        assert [c.id for c in active] == [second_id]
        assert second_id != first_id
        # The revoked row is not resurrected
        db_session.expire_all()
        assert db_session.get(GDPRConsent, first_id).revoked_at is not None

        history = controller.get_user_consents(client_user.id)
        assert [c.id for c in history] == [second_id, first_id]

    def test_withdraw_logs_update(self, controller, client_user):
        grant(controller, client_user.id, ConsentPurpose.ANALYTICS)
        controller.withdraw_consent(client_user.id, "ANALYTICS")

        log = controller.get_processing_logs(client_user.id)[0]
        assert log.operation == ProcessingOperation.UPDATE
        assert log.purpose == "Révocation consentement pour ANALYTICS"

    def test_withdraw_without_active_consent(self, controller, client_user):
        assert controller.withdraw_consent(client_user.id, ConsentPurpose.COOKIES) == 0

    def test_second_grant_replaces_active_one(self, controller, client_user):
        grant(controller, client_user.id)
        grant(controller, client_user.id)
        assert len(controller.get_active_consents(client_user.id, ConsentPurpose.MARKETING)) == 1

    def test_refusal_is_recorded_but_not_active(self, controller, client_user):
        grant(controller, client_user.id, ConsentPurpose.PROFILING, granted=False)
        assert controller.get_active_consents(client_user.id) == []
        assert len(controller.get_user_consents(client_user.id)) == 1

    def test_refusal_leaves_active_grant_in_place(self, controller, client_user):
        granted_id = grant(controller, client_user.id)
        refused_id = grant(controller, client_user.id, granted=False)

        active = controller.get_active_consents(client_user.id, ConsentPurpose.MARKETING)
        assert [c.id for c in active] == [granted_id]
        history = controller.get_user_consents(client_user.id)
        assert {c.id for c in history} == {granted_id, refused_id}

        assert controller.withdraw_consent(client_user.id, ConsentPurpose.MARKETING) == 1
        assert controller.get_active_consents(client_user.id, ConsentPurpose.MARKETING) == []

    def test_invalid_purpose(self, controller, client_user):
        with pytest.raises(ValidationError):
            controller.withdraw_consent(client_user.id, "NEWSLETTER")

    def test_consents_overview(self, controller, client_user, admin_user):
        grant(controller, client_user.id, ConsentPurpose.MARKETING)
        grant(controller, client_user.id, ConsentPurpose.ANALYTICS)
        grant(controller, admin_user.id, ConsentPurpose.ANALYTICS)
        controller.withdraw_consent(client_user.id, ConsentPurpose.MARKETING)

        assert controller.get_consents_overview() == [{"purpose": "ANALYTICS", "activeConsents": 2}]


# =============================================================================
# Rights request state machine
# =============================================================================


class TestRequestLifecycle:

    def test_submit(self, controller, db_session, client_user):
        request_id = controller.submit_data_rights_request(
            client_user.id, DataRightsType.RECTIFICATION, {"field": "phone", "value": "0700000000"}
        )

        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.PENDING
        assert request.type == "RECTIFICATION"
        assert request.request_data == {"field": "phone", "value": "0700000000"}

        log = controller.get_processing_logs(client_user.id)[0]
        assert log.lawful_basis == LawfulBasis.LEGITIMATE_INTERESTS
        assert log.purpose == "Demande de droit RECTIFICATION"
        assert log.source == "user_request"

    def test_submit_unknown_user(self, controller):
        with pytest.raises(NotFoundError):
            controller.submit_data_rights_request("missing", DataRightsType.ACCESS)

    def test_submit_invalid_type(self, controller, client_user):
        with pytest.raises(ValidationError):
            controller.submit_data_rights_request(client_user.id, "DELETE_EVERYTHING")

    def test_approve_moves_to_in_progress_only(self, controller, db_session, client_user, admin_user):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.PORTABILITY)

        controller.approve_data_rights_request(request_id, admin_user.id, "Pris en charge")

        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.IN_PROGRESS
        assert request.processor_user_id == admin_user.id
        assert request.response_note == "Pris en charge"
        assert request.processed_at is None

        with pytest.raises(InvalidTransitionError):
            controller.approve_data_rights_request(request_id, admin_user.id)

    def test_reject(self, controller, db_session, client_user, admin_user, clock):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.OBJECT)

        controller.reject_data_rights_request(request_id, admin_user.id, "Demande non fondée")

        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.REJECTED
        assert request.response_note == "Demande non fondée"
        assert request.processed_at == clock()

    def test_reject_never_reaches_completed(self, controller, db_session, client_user, admin_user):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        controller.approve_data_rights_request(request_id, admin_user.id)
        controller.reject_data_rights_request(request_id, admin_user.id)

        assert db_session.get(DataRightsRequest, request_id).status == RequestStatus.REJECTED
        # Terminal: neither reject nor process can move it again
        with pytest.raises(InvalidTransitionError):
            controller.reject_data_rights_request(request_id, admin_user.id)
        with pytest.raises(InvalidTransitionError):
            controller.process_access_request(request_id, admin_user.id)

    def test_unknown_request(self, controller, admin_user):
        with pytest.raises(NotFoundError):
            controller.approve_data_rights_request("missing", admin_user.id)
        with pytest.raises(NotFoundError):
            controller.process_erasure_request("missing", admin_user.id)

    def test_erasure_rejects_other_types(self, controller, db_session, client_user, admin_user):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)

        with pytest.raises(RequestTypeMismatchError):
            controller.process_erasure_request(request_id, admin_user.id)

        db_session.expire_all()
        assert db_session.get(User, client_user.id).email == "marie.dupont@example.fr"
        assert db_session.get(DataRightsRequest, request_id).status == RequestStatus.PENDING

    def test_access_rejects_other_types(self, controller, client_user, admin_user):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ERASURE)
        with pytest.raises(RequestTypeMismatchError):
            controller.process_access_request(request_id, admin_user.id)

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("PENDING", "IN_PROGRESS", True),
            ("PENDING", "COMPLETED", True),
            ("PENDING", "EXPIRED", True),
            ("IN_PROGRESS", "COMPLETED", True),
            ("IN_PROGRESS", "PENDING", False),
            ("COMPLETED", "REJECTED", False),
            ("REJECTED", "IN_PROGRESS", False),
            ("EXPIRED", "COMPLETED", False),
        ],
    )
    def test_transition_table(self, current, target, allowed):
        assert can_transition(current, target) is allowed


# =============================================================================
# Access requests
# =============================================================================


class TestAccessRequest:

    def test_export_contents(self, controller, db_session, client_user, admin_user, clock):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)

        exported = controller.process_access_request(request_id, admin_user.id)

        profile = exported["user"]
        assert profile["email"] == "marie.dupont@example.fr"
        assert profile["phone"] == "+33 6 12 34 56 78"
        for secret in ("password", "two_factor_secret", "backup_codes"):
            assert secret not in profile
        assert len(profile["chantiers"]) == 1
        assert profile["devis"][0]["montant_ttc"] == "18450.00"
        assert len(profile["messages"]) == 2
        assert len(profile["comments"]) == 1
        assert len(profile["documents"]) == 2
        assert len(profile["notifications"]) == 1
        assert len(profile["dataRightsRequests"]) == 1
        assert len(profile["processingLogs"]) == 1

        metadata = exported["metadata"]
        assert metadata["exportedAt"] == clock().isoformat()
        assert metadata["dataTypes"] == ["profile", "chantiers", "devis", "messages", "documents"]
        # profile + 1 chantier + 1 devis + 2 messages + 1 comment + 2 documents
        # + 1 notification + 1 request + 1 processing log
        assert metadata["totalRecords"] == 11

        db_session.expire_all()
        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.COMPLETED
        assert request.processor_user_id == admin_user.id
        assert request.processed_at == clock()
        assert request.processed_data["user"]["email"] == "marie.dupont@example.fr"

    def test_access_is_logged_and_audited(self, controller, client_user, admin_user, event_logger):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        controller.process_access_request(request_id, admin_user.id)

        log = controller.get_processing_logs(client_user.id)[0]
        assert log.operation == ProcessingOperation.EXPORT
        assert log.lawful_basis == LawfulBasis.LEGAL_OBLIGATION
        assert log.source == "admin_action"

        event = event_logger.log_security_event.call_args.args[0]
        assert event.action == "GDPR_DATA_EXPORTED"
        assert event.user_id == admin_user.id
        assert event.details["subjectUserId"] == client_user.id

    def test_second_processing_fails(self, controller, client_user, admin_user):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        controller.process_access_request(request_id, admin_user.id)
        with pytest.raises(InvalidTransitionError):
            controller.process_access_request(request_id, admin_user.id)

    def test_export_user_data_does_not_touch_requests(self, controller, db_session, client_user):
        exported = controller.export_user_data(client_user.id)
        assert exported["user"]["id"] == client_user.id
        assert db_session.scalar(select(func.count(DataRightsRequest.id))) == 0

    def test_export_unknown_user(self, controller):
        with pytest.raises(NotFoundError):
            controller.export_user_data("missing")


# =============================================================================
# Erasure requests
# =============================================================================


class TestErasureRequest:

    def test_end_to_end(self, controller, db_session, client_user, admin_user, event_logger):
        user_id = client_user.id
        request_id = controller.submit_data_rights_request(user_id, DataRightsType.ERASURE)
        assert db_session.get(DataRightsRequest, request_id).status == RequestStatus.PENDING

        controller.process_erasure_request(request_id, admin_user.id)

        db_session.expire_all()
        user = db_session.get(User, user_id)
        assert user is not None
        assert ANONYMIZED_EMAIL.match(user.email)
        assert user.name == "Utilisateur supprimé"
        assert user.nom == "Anonyme"
        assert user.phone is None
        assert user.company is None
        assert user.address is None
        assert user.image is None

        messages = db_session.scalars(select(Message).where(Message.expediteur_id == user_id)).all()
        assert len(messages) == 2
        assert all(m.message == "[Message supprimé]" and m.photos is None for m in messages)

        comment = db_session.scalars(select(Comment).where(Comment.auteur_id == user_id)).one()
        assert comment.message == "[Commentaire supprimé]"
        assert comment.photos is None

        assert db_session.scalars(select(Document).where(Document.uploader_id == user_id)).all() == []

        # Business records keep pointing at the preserved user id
        assert db_session.scalar(select(func.count(Chantier.id)).where(Chantier.client_id == user_id)) == 1
        assert db_session.scalar(select(func.count(Devis.id)).where(Devis.client_id == user_id)) == 1

        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.COMPLETED
        assert request.processor_user_id == admin_user.id
        assert request.processed_at is not None
        assert request.processed_data["messagesRedacted"] == 2
        assert request.processed_data["documentsDeleted"] == 2

        log = controller.get_processing_logs(user_id)[0]
        assert log.operation == ProcessingOperation.ANONYMIZE
        assert log.lawful_basis == LawfulBasis.LEGITIMATE_INTERESTS
        assert log.purpose == "Droit à l'oubli RGPD"
        assert log.source == "admin_action"

        event = event_logger.log_security_event.call_args.args[0]
        assert event.action == "GDPR_DATA_ANONYMIZED"

    def test_failure_rolls_back_everything(self, controller, db_session, client_user, admin_user, monkeypatch):
        user_id = client_user.id
        request_id = controller.submit_data_rights_request(user_id, DataRightsType.ERASURE)
        logs_before = len(controller.get_processing_logs(user_id))
        failed_before = REGISTRY.get_sample_value(
            "chantierpro_gdpr_requests_total", {"type": "ERASURE", "outcome": "failed"}
        ) or 0.0

        def fail(_user_id):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(controller, "_delete_documents", fail)

        with pytest.raises(RuntimeError, match="storage unavailable"):
            controller.process_erasure_request(request_id, admin_user.id)

        db_session.expire_all()
        user = db_session.get(User, user_id)
        assert user.email == "marie.dupont@example.fr"
        assert user.name == "Marie Dupont"
        assert user.phone == "+33 6 12 34 56 78"

        bodies = db_session.scalars(select(Message.message).where(Message.expediteur_id == user_id)).all()
        assert "[Message supprimé]" not in bodies
        assert db_session.scalar(select(func.count(Document.id))) == 2

        request = db_session.get(DataRightsRequest, request_id)
        assert request.status == RequestStatus.PENDING
        assert request.processed_at is None
        assert len(controller.get_processing_logs(user_id)) == logs_before

        failed_after = REGISTRY.get_sample_value(
            "chantierpro_gdpr_requests_total", {"type": "ERASURE", "outcome": "failed"}
        )
        assert failed_after == failed_before + 1

    def test_request_can_be_retried_after_failure(self, controller, db_session, client_user, admin_user,
                                                  monkeypatch):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ERASURE)

        monkeypatch.setattr(controller, "_redact_comments", MagicMock(side_effect=RuntimeError("boom")))
        with pytest.raises(RuntimeError):
            controller.process_erasure_request(request_id, admin_user.id)
        monkeypatch.undo()

        controller.process_erasure_request(request_id, admin_user.id)
        db_session.expire_all()
        assert db_session.get(DataRightsRequest, request_id).status == RequestStatus.COMPLETED

    def test_anonymized_emails_are_unique(self, controller, db_session, client_user, admin_user):
        other = User(email="paul@example.fr", name="Paul")
        db_session.add(other)
        db_session.commit()

        controller.execute_anonymization(client_user.id)
        controller.execute_anonymization(other.id)

        db_session.expire_all()
        first = db_session.get(User, client_user.id).email
        second = db_session.get(User, other.id).email
        assert first != second
        assert ANONYMIZED_EMAIL.match(first) and ANONYMIZED_EMAIL.match(second)

    def test_execute_anonymization_logs(self, controller, client_user):
        summary = controller.execute_anonymization(client_user.id)
        assert summary["commentsRedacted"] == 1
        assert controller.get_processing_logs(client_user.id)[0].operation == ProcessingOperation.ANONYMIZE


# =============================================================================
# Listings and reporting
# =============================================================================


class TestListings:

    def test_pending_requests_oldest_first(self, controller, client_user, admin_user, clock):
        first = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        clock.advance(timedelta(hours=1))
        second = controller.submit_data_rights_request(admin_user.id, DataRightsType.PORTABILITY)
        clock.advance(timedelta(hours=1))
        third = controller.submit_data_rights_request(client_user.id, DataRightsType.OBJECT)
        controller.reject_data_rights_request(third, admin_user.id)

        assert [r.id for r in controller.get_pending_data_rights_requests()] == [first, second]
        assert [r.id for r in controller.get_data_rights_requests(client_user.id)] == [third, first]

    def test_all_requests_filters(self, controller, client_user, admin_user):
        access = controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        controller.submit_data_rights_request(client_user.id, DataRightsType.ERASURE)
        controller.approve_data_rights_request(access, admin_user.id)

        assert len(controller.get_all_data_rights_requests()) == 2
        assert [r.id for r in controller.get_all_data_rights_requests(status="IN_PROGRESS")] == [access]
        assert len(controller.get_all_data_rights_requests(request_type=DataRightsType.ERASURE)) == 1
        assert controller.get_all_data_rights_requests(status="COMPLETED", request_type="ACCESS") == []

    def test_all_requests_capped_at_50(self, controller, client_user):
        for _ in range(55):
            controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)
        assert len(controller.get_all_data_rights_requests()) == 50

    def test_processing_logs_date_range(self, controller, client_user, clock):
        start = clock()
        grant(controller, client_user.id)
        clock.advance(timedelta(days=2))
        grant(controller, client_user.id, ConsentPurpose.ANALYTICS)

        in_range = controller.get_processing_logs(start_date=start, end_date=start + timedelta(days=1))
        assert [log.purpose for log in in_range] == ["Consentement pour MARKETING"]
        assert len(controller.get_processing_logs(start_date=start + timedelta(days=1))) == 1
        assert len(controller.get_processing_logs()) == 2

    def test_processing_logs_capped_at_100(self, controller, db_session, client_user, clock):
        db_session.add_all([
            GDPRProcessingLog(
                user_id=client_user.id, data_type="PERSONAL", operation="READ",
                lawful_basis="CONTRACT", purpose="Consultation", source="system",
                timestamp=clock() - timedelta(minutes=i),
            )
            for i in range(120)
        ])
        db_session.commit()
        assert len(controller.get_processing_logs(client_user.id)) == 100


class TestComplianceReport:

    def test_report(self, controller, client_user, admin_user, clock):
        now = clock()
        clock.now = now - timedelta(days=31)
        controller.report_data_breach("Ancienne fuite", "Export exposé", BreachSeverity.LOW, ["PERSONAL"],
                                      admin_user.id)
        clock.now = now - timedelta(days=29)
        controller.report_data_breach("Fuite récente", "Accès non autorisé", BreachSeverity.HIGH,
                                      ["PERSONAL", "FINANCIAL"], admin_user.id, affected_users_count=12)
        clock.now = now

        grant(controller, client_user.id)
        grant(controller, admin_user.id, ConsentPurpose.ANALYTICS)
        controller.withdraw_consent(admin_user.id, ConsentPurpose.ANALYTICS)
        controller.submit_data_rights_request(client_user.id, DataRightsType.ACCESS)

        report = controller.generate_compliance_report()

        assert report.total_users == 2
        assert report.active_consents == 1
        assert report.pending_requests == 1
        assert report.recent_breaches == 1
        assert report.generated_at == now
        assert report.to_dict() == {
            "totalUsers": 2,
            "activeConsents": 1,
            "pendingRequests": 1,
            "recentBreaches": 1,
            "generatedAt": now.isoformat(),
        }


# =============================================================================
# Breach register
# =============================================================================


class TestBreaches:

    def test_report_and_update(self, controller, db_session, admin_user, clock):
        breach_id = controller.report_data_breach(
            "Perte d'un ordinateur", "Portable non chiffré volé", "MEDIUM", ["PERSONAL"], admin_user.id,
        )

        breach = controller.get_data_breaches()[0]
        assert breach.id == breach_id
        assert breach.status == BreachStatus.DETECTED
        assert breach.occurred_at == clock()
        assert breach.detected_at == clock()

        controller.update_breach_status(breach_id, BreachStatus.INVESTIGATING, "Analyse en cours")
        clock.advance(timedelta(hours=2))
        controller.update_breach_status(breach_id, "CONTAINED", "Mots de passe réinitialisés")
        controller.update_breach_status(breach_id, BreachStatus.REPORTED)

        db_session.expire_all()
        breach = controller.get_data_breaches()[0]
        assert breach.status == BreachStatus.REPORTED
        assert [a["note"] for a in breach.mitigation_actions] == [
            "Analyse en cours",
            "Mots de passe réinitialisés",
        ]
        assert breach.mitigation_actions[1]["timestamp"] == clock().isoformat()

    def test_breaches_newest_first_capped_at_20(self, controller, admin_user, clock):
        ids = []
        for i in range(22):
            clock.advance(timedelta(minutes=1))
            ids.append(controller.report_data_breach(f"B{i}", "d", "LOW", [], admin_user.id))

        listed = controller.get_data_breaches()
        assert len(listed) == 20
        assert listed[0].id == ids[-1]

    def test_unknown_breach(self, controller):
        with pytest.raises(NotFoundError):
            controller.update_breach_status("missing", BreachStatus.RESOLVED)

    def test_invalid_severity(self, controller, admin_user):
        with pytest.raises(ValidationError):
            controller.report_data_breach("x", "y", "SEVERE", [], admin_user.id)


# =============================================================================
# Retention
# =============================================================================


class TestRetention:

    def test_policy_upsert(self, controller):
        controller.update_retention_policy(DataType.TECHNICAL, "security_logs", 365, LawfulBasis.LEGITIMATE_INTERESTS)
        controller.update_retention_policy("TECHNICAL", "security_logs", 180, "LEGAL_OBLIGATION")
        controller.update_retention_policy(DataType.COMMUNICATION, "notifications", 30, LawfulBasis.CONSENT)

        policies = controller.get_retention_policies()
        assert [(p.data_type, p.retention_days) for p in policies] == [
            ("COMMUNICATION", 30),
            ("TECHNICAL", 180),
        ]
        assert policies[1].lawful_basis == "LEGAL_OBLIGATION"

    def test_policy_validation(self, controller):
        with pytest.raises(ValidationError):
            controller.update_retention_policy("UNKNOWN", "x", 10, LawfulBasis.CONSENT)
        with pytest.raises(ValidationError):
            controller.update_retention_policy(DataType.TECHNICAL, "x", -1, LawfulBasis.CONSENT)

    def test_retention_report(self, controller):
        controller.update_retention_policy(DataType.FINANCIAL, "factures", 3650, LawfulBasis.LEGAL_OBLIGATION)
        controller.update_retention_policy(DataType.TECHNICAL, "security_logs", 90, LawfulBasis.LEGITIMATE_INTERESTS)
        controller.update_retention_policy(DataType.COMMUNICATION, "notifications", 30, LawfulBasis.CONSENT)
        controller.update_retention_policy(DataType.COMMUNICATION, "marketing", 30, LawfulBasis.CONSENT)

        report = controller.get_data_retention_report()
        assert [(r["dataType"], r["category"], r["automatedCleanup"]) for r in report] == [
            ("COMMUNICATION", "marketing", False),
            ("COMMUNICATION", "notifications", True),
            ("FINANCIAL", "factures", False),
            ("TECHNICAL", "security_logs", False),
        ]

    def test_cleanup(self, controller, db_session, client_user, clock):
        now = clock()
        db_session.add_all([
            Notification(titre="Ancienne", user_id=client_user.id, created_at=now - timedelta(days=40)),
            Notification(titre="Récente", user_id=client_user.id, created_at=now - timedelta(days=5)),
            SecurityLog(action="OLD", resource="API", success=True, risk_level="LOW",
                        timestamp=now - timedelta(days=100)),
            SecurityLog(action="NEW", resource="API", success=True, risk_level="LOW",
                        timestamp=now - timedelta(days=10)),
        ])
        db_session.commit()
        controller.update_retention_policy(DataType.COMMUNICATION, "notifications", 30, LawfulBasis.CONSENT)
        controller.update_retention_policy(DataType.TECHNICAL, "security_logs", 90, LawfulBasis.LEGITIMATE_INTERESTS)
        controller.update_retention_policy(DataType.FINANCIAL, "factures", 3650, LawfulBasis.LEGAL_OBLIGATION)

        result = controller.cleanup_expired_data()

        assert result.deleted_records == 1
        assert result.processed_tables == ["notifications"]
        assert result.skipped == ["FINANCIAL/factures", "TECHNICAL/security_logs"]

        titles = db_session.scalars(select(Notification.titre)).all()
        assert "Ancienne" not in titles
        assert "Récente" in titles
        # Audit trail is append-only
        assert sorted(db_session.scalars(select(SecurityLog.action)).all()) == ["NEW", "OLD"]

    def test_policies_for_other_categories_do_not_purge(self, controller, db_session, client_user, clock):
        db_session.add(Notification(titre="Relance", user_id=client_user.id,
                                    created_at=clock() - timedelta(days=60)))
        db_session.commit()
        controller.update_retention_policy(DataType.COMMUNICATION, "marketing", 30, LawfulBasis.CONSENT)
        controller.update_retention_policy(DataType.COMMUNICATION, "transactional", 365, LawfulBasis.CONTRACT)

        result = controller.cleanup_expired_data()

        assert result.deleted_records == 0
        assert result.processed_tables == []
        assert result.skipped == ["COMMUNICATION/marketing", "COMMUNICATION/transactional"]
        assert db_session.scalars(select(Notification.titre)).all() == ["Relance"]

    def test_only_the_matching_category_applies(self, controller, db_session, client_user, clock):
        db_session.add(Notification(titre="Relance", user_id=client_user.id,
                                    created_at=clock() - timedelta(days=60)))
        db_session.commit()
        controller.update_retention_policy(DataType.COMMUNICATION, "marketing", 30, LawfulBasis.CONSENT)
        controller.update_retention_policy(DataType.COMMUNICATION, "notifications", 365, LawfulBasis.CONTRACT)

        result = controller.cleanup_expired_data()

        assert result.deleted_records == 0
        assert result.processed_tables == ["notifications"]
        assert result.skipped == ["COMMUNICATION/marketing"]
        assert db_session.scalars(select(Notification.titre)).all() == ["Relance"]

    def test_custom_strategy(self, db_session, clock, client_user):
        class QuoteArchiver:
            tables = ("devis",)
            categories = ("devis",)

            def __init__(self):
                self.calls = []

            def purge(self, session, policy, cutoff):
                self.calls.append((policy.category, cutoff))
                return 0

        archiver = QuoteArchiver()
        registry = default_retention_registry()
        registry.register(DataType.COMMERCIAL, archiver)
        controller = GDPRDataController(db_session, retention_registry=registry, clock=clock)
        controller.update_retention_policy(DataType.COMMERCIAL, "devis", 1825, LawfulBasis.CONTRACT)

        result = controller.cleanup_expired_data()

        assert archiver.calls == [("devis", clock() - timedelta(days=1825))]
        assert result.processed_tables == ["devis"]
        assert result.skipped == []

    def test_empty_registry_skips_everything(self, db_session, clock):
        controller = GDPRDataController(db_session, retention_registry=RetentionRegistry(), clock=clock)
        controller.update_retention_policy(DataType.TECHNICAL, "security_logs", 1, LawfulBasis.CONSENT)

        result = controller.cleanup_expired_data()
        assert result.deleted_records == 0
        assert result.skipped == ["TECHNICAL/security_logs"]

    def test_registry_lookup(self):
        registry = default_retention_registry()
        assert "COMMUNICATION" in registry
        assert DataType.TECHNICAL not in registry
        assert "FINANCIAL" not in registry
        assert "NOT_A_TYPE" not in registry
        assert registry.get("NOT_A_TYPE") is None

        notifications = DataRetention(data_type="COMMUNICATION", category="notifications",
                                      retention_days=30, lawful_basis="CONSENT")
        marketing = DataRetention(data_type="COMMUNICATION", category="marketing",
                                  retention_days=30, lawful_basis="CONSENT")
        assert registry.for_policy(notifications) is registry.get(DataType.COMMUNICATION)
        assert registry.for_policy(marketing) is None


# =============================================================================
# Best-effort processing logs
# =============================================================================


class TestProcessingLogFailures:

    def test_log_failure_does_not_mask_consent(self, controller, db_session, client_user, monkeypatch):
        def broken_log(**kwargs):
            raise RuntimeError("log table locked")

        monkeypatch.setattr("src.lib.gdpr.GDPRProcessingLog", broken_log)

        consent_id = grant(controller, client_user.id)

        db_session.expire_all()
        assert db_session.get(GDPRConsent, consent_id).is_active
        assert db_session.scalar(select(func.count(GDPRProcessingLog.id))) == 0

    def test_log_failure_does_not_mask_erasure(self, controller, db_session, client_user, admin_user, monkeypatch):
        request_id = controller.submit_data_rights_request(client_user.id, DataRightsType.ERASURE)

        original_commit = db_session.commit
        calls = {"n": 0}

        def commit_failing_on_log():
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disk full")
            original_commit()

        monkeypatch.setattr(db_session, "commit", commit_failing_on_log)
        controller.process_erasure_request(request_id, admin_user.id)
        monkeypatch.undo()

        db_session.expire_all()
        assert db_session.get(DataRightsRequest, request_id).status == RequestStatus.COMPLETED
        assert ANONYMIZED_EMAIL.match(db_session.get(User, client_user.id).email)
