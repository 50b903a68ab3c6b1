"""
RGPD compliance records.

Tables:
- gdpr_consents: consent grants; withdrawal is a soft transition (revoked_at)
- data_rights_requests: data-subject rights requests and their lifecycle
- gdpr_processing_logs: append-only lawful-basis audit of processing activity
- data_retention: retention policy per (data_type, category)
- data_breaches: breach register, never deleted

Enum-valued columns store the enum ``.value`` strings defined in
``src.lib.gdpr_types``.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.models.base import Base, UTCDateTime, new_id, utcnow


class GDPRConsent(Base):
    """
    Consent record for one (user, purpose).

    At most one row per (user_id, purpose) is active, i.e. granted with
    revoked_at unset. Revoked rows are kept for the audit trail.
    """

    __tablename__ = "gdpr_consents"

    user = relationship("User", back_populates="gdpr_consents")

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    purpose = Column(String(30), nullable=False)
    granted = Column(Boolean, nullable=False)
    ip_address = Column(String(64), nullable=False, default="unknown")
    user_agent = Column(String(500), nullable=False, default="unknown")
    timestamp = Column(UTCDateTime, default=utcnow, nullable=False)
    revoked_at = Column(UTCDateTime, nullable=True)
    revoked_ip_address = Column(String(64), nullable=True)
    revoked_user_agent = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_gdpr_consent_user_purpose", "user_id", "purpose"),
    )

    @property
    def is_active(self) -> bool:
        return bool(self.granted) and self.revoked_at is None

    def __repr__(self) -> str:
        return f"<GDPRConsent(id={self.id}, purpose={self.purpose}, active={self.is_active})>"


class DataRightsRequest(Base):
    """Data-subject rights request (access, erasure, ...)."""

    __tablename__ = "data_rights_requests"

    user = relationship("User", back_populates="data_rights_requests", foreign_keys="DataRightsRequest.user_id")
    processor = relationship("User", foreign_keys="DataRightsRequest.processor_user_id")

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    request_data = Column(JSON, nullable=True)
    processed_data = Column(JSON, nullable=True)
    processor_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    response_note = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    processed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_rights_request_user", "user_id"),
        Index("idx_rights_request_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<DataRightsRequest(id={self.id}, type={self.type}, status={self.status})>"


class GDPRProcessingLog(Base):
    """One lawful-basis-backed processing activity."""

    __tablename__ = "gdpr_processing_logs"

    user = relationship("User", back_populates="processing_logs")

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    data_type = Column(String(20), nullable=False)
    operation = Column(String(20), nullable=False)
    lawful_basis = Column(String(30), nullable=False)
    purpose = Column(String(255), nullable=False)
    source = Column(String(50), nullable=False)
    timestamp = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_processing_log_user_ts", "user_id", "timestamp"),
    )


class DataRetention(Base):
    """Retention policy, unique per (data_type, category)."""

    __tablename__ = "data_retention"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data_type = Column(String(20), nullable=False)
    category = Column(String(100), nullable=False)
    retention_days = Column(Integer, nullable=False)
    lawful_basis = Column(String(30), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("data_type", "category", name="uq_data_retention_type_category"),
    )

    def __repr__(self) -> str:
        return f"<DataRetention({self.data_type}/{self.category}: {self.retention_days}d)>"


class DataBreach(Base):
    """Personal data breach register entry."""

    __tablename__ = "data_breaches"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(String(10), nullable=False)
    affected_data_types = Column(JSON, nullable=False, default=list)
    affected_users_count = Column(Integer, nullable=True)
    reported_by = Column(String(36), nullable=False)
    occurred_at = Column(UTCDateTime, nullable=False, default=utcnow)
    detected_at = Column(UTCDateTime, nullable=False, default=utcnow)
    status = Column(String(20), nullable=False, default="DETECTED")
    mitigation_actions = Column(JSON, nullable=True)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_data_breach_detected_at", "detected_at"),
    )

    def __repr__(self) -> str:
        return f"<DataBreach(id={self.id}, severity={self.severity}, status={self.status})>"
