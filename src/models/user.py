"""
User and user-owned business records.

Only the columns the compliance core reads or rewrites are modelled here:
profile fields touched by anonymization, credentials excluded from exports,
and the records collected for access requests (chantiers, devis, messages,
comments, documents, notifications).

Data Classification: PERSONAL
- email, name, nom, phone, company, address, image: erased on anonymization
- password, two_factor_secret, backup_codes: never exported
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from src.models.base import Base, UTCDateTime, new_id, utcnow


class User(Base):
    """
    Application user (staff member or client).

    Attributes:
        id: Primary key, kept on anonymization for referential integrity
        email: Login email (unique)
        role: ADMIN | COMMERCIAL | OUVRIER | CLIENT
    """

    __tablename__ = "users"

    # Relationships
    chantiers = relationship("Chantier", back_populates="client", cascade="all, delete-orphan")
    devis = relationship("Devis", back_populates="client", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="expediteur", cascade="all, delete-orphan")
    comments = relationship("Comment", back_populates="auteur", cascade="all, delete-orphan")
    documents = relationship("Document", back_populates="uploader", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    gdpr_consents = relationship("GDPRConsent", back_populates="user", cascade="all, delete-orphan")
    data_rights_requests = relationship(
        "DataRightsRequest",
        back_populates="user",
        foreign_keys="DataRightsRequest.user_id",
        cascade="all, delete-orphan",
    )
    processing_logs = relationship("GDPRProcessingLog", back_populates="user", cascade="all, delete-orphan")

    # Columns
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    nom = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)
    image = Column(String(500), nullable=True)
    role = Column(String(20), default="CLIENT", nullable=False)

    # Credentials, excluded from every export
    password = Column(String(255), nullable=True)
    two_factor_secret = Column(String(255), nullable=True)
    backup_codes = Column(JSON, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_user_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role})>"


class Chantier(Base):
    """Construction project owned by a client."""

    __tablename__ = "chantiers"

    client = relationship("User", back_populates="chantiers")

    id = Column(String(36), primary_key=True, default=new_id)
    nom = Column(String(255), nullable=False)
    adresse = Column(String(500), nullable=True)
    statut = Column(String(30), default="PLANIFIE", nullable=False)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Devis(Base):
    """Quote issued to a client."""

    __tablename__ = "devis"

    client = relationship("User", back_populates="devis")

    id = Column(String(36), primary_key=True, default=new_id)
    numero = Column(String(50), unique=True, nullable=False)
    objet = Column(String(500), nullable=True)
    montant_ttc = Column(Numeric(12, 2), default=0, nullable=False)
    statut = Column(String(30), default="BROUILLON", nullable=False)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Message(Base):
    """Chantier message; body and photos are redacted on erasure."""

    __tablename__ = "messages"

    expediteur = relationship("User", back_populates="messages")

    id = Column(String(36), primary_key=True, default=new_id)
    message = Column(Text, nullable=False)
    photos = Column(JSON, nullable=True)
    expediteur_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    chantier_id = Column(String(36), ForeignKey("chantiers.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Comment(Base):
    """Comment on a chantier step; body and photos are redacted on erasure."""

    __tablename__ = "comments"

    auteur = relationship("User", back_populates="comments")

    id = Column(String(36), primary_key=True, default=new_id)
    message = Column(Text, nullable=False)
    photos = Column(JSON, nullable=True)
    auteur_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    chantier_id = Column(String(36), ForeignKey("chantiers.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Document(Base):
    """Uploaded file; hard-deleted on erasure."""

    __tablename__ = "documents"

    uploader = relationship("User", back_populates="documents")

    id = Column(String(36), primary_key=True, default=new_id)
    nom = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    type = Column(String(50), nullable=True)
    uploader_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    chantier_id = Column(String(36), ForeignKey("chantiers.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Notification(Base):
    """In-app notification; purged by the COMMUNICATION retention strategy."""

    __tablename__ = "notifications"

    user = relationship("User", back_populates="notifications")

    id = Column(String(36), primary_key=True, default=new_id)
    titre = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    lu = Column(Boolean, default=False, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
