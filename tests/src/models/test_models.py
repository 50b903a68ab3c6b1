"""
Tests for the SQLAlchemy models.

Covers table registration, defaults, UTC timestamp round-trips, the
consent ``is_active`` property and relationship wiring.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from src.models import (
    Base,
    DataBreach,
    DataRetention,
    DataRightsRequest,
    GDPRConsent,
    SecurityLog,
    User,
)


def test_all_tables_registered() -> None:
    assert {
        "users",
        "chantiers",
        "devis",
        "messages",
        "comments",
        "documents",
        "notifications",
        "gdpr_consents",
        "data_rights_requests",
        "gdpr_processing_logs",
        "data_retention",
        "data_breaches",
        "security_logs",
    } <= set(Base.metadata.tables)


class TestUser:

    def test_defaults(self, db_session):
        user = User(email="jean@example.fr")
        db_session.add(user)
        db_session.commit()

        assert len(user.id) == 32
        assert user.role == "CLIENT"
        assert user.created_at.tzinfo is not None

    def test_email_unique(self, db_session):
        db_session.add(User(email="dup@example.fr"))
        db_session.commit()
        db_session.add(User(email="dup@example.fr"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_relationships(self, db_session, client_user):
        assert len(client_user.chantiers) == 1
        assert len(client_user.devis) == 1
        assert len(client_user.messages) == 2
        assert len(client_user.comments) == 1
        assert len(client_user.documents) == 2
        assert len(client_user.notifications) == 1


class TestUTCDateTime:

    def test_aware_value_round_trips_as_utc(self, db_session):
        paris = timezone(timedelta(hours=1))
        log = SecurityLog(
            action="X", resource="Y", success=True, risk_level="LOW",
            timestamp=datetime(2024, 3, 12, 11, 0, tzinfo=paris),
        )
        db_session.add(log)
        db_session.commit()
        db_session.expire_all()

        assert log.timestamp == datetime(2024, 3, 12, 10, 0, tzinfo=UTC)
        assert log.timestamp.utcoffset() == timedelta(0)

    def test_naive_value_is_treated_as_utc(self, db_session):
        log = SecurityLog(action="X", resource="Y", success=True, risk_level="LOW",
                          timestamp=datetime(2024, 3, 12, 10, 0))
        db_session.add(log)
        db_session.commit()
        db_session.expire_all()

        assert log.timestamp == datetime(2024, 3, 12, 10, 0, tzinfo=UTC)


class TestComplianceRecords:

    def test_consent_is_active(self, db_session, client_user):
        consent = GDPRConsent(user_id=client_user.id, purpose="MARKETING", granted=True)
        db_session.add(consent)
        db_session.commit()
        assert consent.is_active

        consent.revoked_at = datetime.now(UTC)
        assert not consent.is_active

        refused = GDPRConsent(user_id=client_user.id, purpose="ANALYTICS", granted=False)
        assert not refused.is_active

    def test_rights_request_defaults(self, db_session, client_user, admin_user):
        request = DataRightsRequest(user_id=client_user.id, type="ACCESS", request_data={"scope": "all"})
        db_session.add(request)
        db_session.commit()

        assert request.status == "PENDING"
        assert request.request_data == {"scope": "all"}
        assert request.user.id == client_user.id

        request.processor_user_id = admin_user.id
        db_session.commit()
        assert request.processor.email == "admin@chantierpro.fr"

    def test_retention_unique_per_type_and_category(self, db_session):
        db_session.add(DataRetention(data_type="TECHNICAL", category="logs", retention_days=365,
                                     lawful_basis="LEGITIMATE_INTERESTS"))
        db_session.commit()
        db_session.add(DataRetention(data_type="TECHNICAL", category="logs", retention_days=30,
                                     lawful_basis="LEGITIMATE_INTERESTS"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_breach_defaults(self, db_session):
        breach = DataBreach(title="Fuite", description="Export exposé", severity="HIGH",
                            affected_data_types=["PERSONAL"], reported_by="u_admin")
        db_session.add(breach)
        db_session.commit()

        assert breach.status == "DETECTED"
        assert breach.detected_at is not None
        assert breach.mitigation_actions is None
