"""
Shared test fixtures for the ChantierPro compliance core.

This module provides common fixtures used across all test modules:
- Environment setup (dev mode, test encryption secrets)
- Database engine, session factory and session (in-memory SQLite)
- SecuritySettings and DataEncryption built from the test environment
- A controllable clock
- SecurityEventLogger wired to the test database with a mock alert sink
- Seeded users (a client with business records, an admin)

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# 1. Environment setup -- must run before any application imports
# ---------------------------------------------------------------------------

os.environ.setdefault("CHANTIERPRO_ENV", "test")
os.environ.setdefault("CHANTIERPRO_DEV_MODE", "1")
os.environ.setdefault("CHANTIERPRO_ENCRYPTION_KEY", "test-master-secret-for-chantierpro")
os.environ.setdefault("CHANTIERPRO_ENCRYPTION_SALT", "test-salt-for-chantierpro")

# ---------------------------------------------------------------------------
# Application imports (after env vars are set)
# ---------------------------------------------------------------------------

from src.config.settings import SecuritySettings  # noqa: E402
from src.lib.audit import SecurityEventLogger  # noqa: E402
from src.lib.encryption import DataEncryption  # noqa: E402

# Importing the package registers every table with Base.metadata
from src.models import (  # noqa: E402
    Base,
    Chantier,
    Comment,
    Devis,
    Document,
    Message,
    Notification,
    User,
)

# ---------------------------------------------------------------------------
# 2. Database -- one in-memory SQLite database per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    """
    In-memory SQLite engine shared by every session of a test.

    StaticPool keeps a single connection so that sessions opened by
    ``session_factory`` see the same database as ``db_session``.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine)


@pytest.fixture()
def db_session(session_factory):
    """Provide a SQLAlchemy session for the test database."""
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# 3. Settings and encryption
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> SecuritySettings:
    """Settings read from the test environment set above."""
    return SecuritySettings.from_env()


@pytest.fixture(scope="session")
def cipher() -> DataEncryption:
    """
    ``DataEncryption`` with deterministic test secrets.

    Session-scoped: scrypt key derivation is deliberately slow.
    """
    return DataEncryption("test-master-secret-for-chantierpro", "test-salt-for-chantierpro")


# ---------------------------------------------------------------------------
# 4. Clock and security trail
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a settable UTC datetime."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def clock() -> FakeClock:
    """Clock fixed at 2024-03-12 10:00 UTC (business hours)."""
    return FakeClock(datetime(2024, 3, 12, 10, 0, tzinfo=UTC))


@pytest.fixture()
def alert_sink() -> MagicMock:
    """Mock alert sink recording every HIGH/CRITICAL alert."""
    return MagicMock()


@pytest.fixture()
def security_logger(session_factory, alert_sink) -> SecurityEventLogger:
    """Security event logger persisting to the test database."""
    return SecurityEventLogger(session_factory=session_factory, alert_sink=alert_sink)


# ---------------------------------------------------------------------------
# 5. Seeded users
# ---------------------------------------------------------------------------


@pytest.fixture()
def admin_user(db_session) -> User:
    """An ADMIN user."""
    user = User(email="admin@chantierpro.fr", name="Admin", role="ADMIN", password="hashed-admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def client_user(db_session) -> User:
    """
    A CLIENT user with one of each business record.

    Records: 1 chantier, 1 devis, 2 messages, 1 comment, 2 documents,
    1 notification.
    """
    user = User(
        email="marie.dupont@example.fr",
        name="Marie Dupont",
        nom="Dupont",
        phone="+33 6 12 34 56 78",
        company="Dupont Rénovation",
        address="12 rue des Lilas, 69003 Lyon",
        image="https://cdn.example.fr/avatars/marie.png",
        role="CLIENT",
        password="hashed-password",
        two_factor_secret="JBSWY3DPEHPK3PXP",
        backup_codes=["111111", "222222"],
    )
    db_session.add(user)
    db_session.flush()

    chantier = Chantier(nom="Rénovation cuisine", adresse="12 rue des Lilas", client_id=user.id)
    db_session.add(chantier)
    db_session.flush()

    db_session.add_all([
        Devis(numero="DEV-2024-001", objet="Cuisine complète", montant_ttc=Decimal("18450.00"), client_id=user.id),
        Message(
            message="Pouvez-vous passer mardi ?",
            photos=["https://cdn.example.fr/p/1.jpg"],
            expediteur_id=user.id,
            chantier_id=chantier.id,
        ),
        Message(message="Merci pour le devis", expediteur_id=user.id, chantier_id=chantier.id),
        Comment(
            message="Le carrelage est fissuré",
            photos=["https://cdn.example.fr/p/2.jpg"],
            auteur_id=user.id,
            chantier_id=chantier.id,
        ),
        Document(nom="plan.pdf", url="https://cdn.example.fr/d/plan.pdf", uploader_id=user.id),
        Document(nom="photo.jpg", url="https://cdn.example.fr/d/photo.jpg", uploader_id=user.id),
        Notification(titre="Nouveau devis", message="Votre devis est prêt", user_id=user.id),
    ])
    db_session.commit()
    return user
