"""
Security audit trail.

Append-only: rows are created by the security event logger and only ever
read back (admin dashboards, compliance reporting). Nothing in this package
updates or deletes them, retention cleanup included.
"""

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String

from src.models.base import Base, UTCDateTime, utcnow


class SecurityLog(Base):
    """
    Persisted security event.

    ``user_id`` carries no foreign key: events about unknown or deleted
    users must still be recorded.
    """

    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True)
    action = Column(String(100), nullable=False)
    resource = Column(String(100), nullable=False)
    ip_address = Column(String(64), nullable=False, default="unknown")
    user_agent = Column(String(500), nullable=False, default="unknown")
    success = Column(Boolean, nullable=False)
    risk_level = Column(String(10), nullable=False)
    details = Column(JSON, nullable=True)
    timestamp = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_security_log_timestamp", "timestamp"),
        Index("idx_security_log_user", "user_id"),
        Index("idx_security_log_risk", "risk_level"),
    )

    def __repr__(self) -> str:
        return f"<SecurityLog(id={self.id}, action={self.action}, risk={self.risk_level})>"
