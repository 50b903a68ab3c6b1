"""
Models package for the ChantierPro compliance core.

This package exports all SQLAlchemy models. Importing it registers every
table with ``Base.metadata``.

Usage:
    from src.models import User, DataRightsRequest, GDPRConsent, SecurityLog
"""

from src.models.base import Base
from src.models.gdpr import (
    DataBreach,
    DataRetention,
    DataRightsRequest,
    GDPRConsent,
    GDPRProcessingLog,
)
from src.models.security_log import SecurityLog
from src.models.user import (
    Chantier,
    Comment,
    Devis,
    Document,
    Message,
    Notification,
    User,
)

__all__ = [
    # Base
    "Base",
    # Business records
    "User",
    "Chantier",
    "Devis",
    "Message",
    "Comment",
    "Document",
    "Notification",
    # Compliance records
    "GDPRConsent",
    "DataRightsRequest",
    "GDPRProcessingLog",
    "DataRetention",
    "DataBreach",
    "SecurityLog",
]
