"""
Role-Based Access Control (RBAC) for the ChantierPro compliance core.

A static role -> allowed-actions matrix, plus an evaluator that resolves a
user's role and records every check on the security trail.

Roles:
- ADMIN: every action (wildcard)
- COMMERCIAL: clients, opportunities and quotes (read + write)
- OUVRIER: site worker; chantier read, progress write, planning read
- CLIENT: own data, own chantiers, own quotes (read only)

Denials are an expected outcome: ``check_permission`` returns False and
never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.infra.monitoring import record_permission_denial
from src.lib.audit import RiskLevel, SecurityEvent, SecurityEventLogger
from src.lib.security import hash_uid
from src.models.user import User

logger = logging.getLogger(__name__)


# =============================================================================
# Role and Permission Definitions
# =============================================================================


class Role(Enum):
    """User roles in ChantierPro."""

    ADMIN = "ADMIN"
    COMMERCIAL = "COMMERCIAL"
    OUVRIER = "OUVRIER"
    CLIENT = "CLIENT"

    def __str__(self) -> str:
        """String representation."""
        return self.value


class Permission(Enum):
    """Action tags checked by route handlers."""

    # CRM
    READ_CLIENTS = "READ_CLIENTS"
    WRITE_CLIENTS = "WRITE_CLIENTS"
    READ_OPPORTUNITES = "READ_OPPORTUNITES"
    WRITE_OPPORTUNITES = "WRITE_OPPORTUNITES"
    READ_DEVIS = "READ_DEVIS"
    WRITE_DEVIS = "WRITE_DEVIS"

    # Chantiers
    READ_CHANTIERS = "READ_CHANTIERS"
    WRITE_CHANTIER_PROGRESS = "WRITE_CHANTIER_PROGRESS"
    READ_PLANNING = "READ_PLANNING"

    # Client portal
    READ_OWN_DATA = "READ_OWN_DATA"
    READ_OWN_CHANTIERS = "READ_OWN_CHANTIERS"
    READ_OWN_DEVIS = "READ_OWN_DEVIS"

    # Admin only (granted through the wildcard)
    MANAGE_GDPR = "MANAGE_GDPR"
    READ_SECURITY_LOGS = "READ_SECURITY_LOGS"

    def __str__(self) -> str:
        """String representation."""
        return self.value


WILDCARD = "*"

# Role -> allowed action tags
ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset({WILDCARD}),
    Role.COMMERCIAL: frozenset({
        Permission.READ_CLIENTS.value,
        Permission.WRITE_CLIENTS.value,
        Permission.READ_OPPORTUNITES.value,
        Permission.WRITE_OPPORTUNITES.value,
        Permission.READ_DEVIS.value,
        Permission.WRITE_DEVIS.value,
    }),
    Role.OUVRIER: frozenset({
        Permission.READ_CHANTIERS.value,
        Permission.WRITE_CHANTIER_PROGRESS.value,
        Permission.READ_PLANNING.value,
    }),
    Role.CLIENT: frozenset({
        Permission.READ_OWN_DATA.value,
        Permission.READ_OWN_CHANTIERS.value,
        Permission.READ_OWN_DEVIS.value,
    }),
}


# =============================================================================
# Permission Checking
# =============================================================================


def has_permission(role: Role, action: str | Permission) -> bool:
    """
    Check if a role may perform an action.

    Example:
        >>> has_permission(Role.COMMERCIAL, "WRITE_DEVIS")
        True
        >>> has_permission(Role.CLIENT, Permission.WRITE_DEVIS)
        False
        >>> has_permission(Role.ADMIN, "ANYTHING")
        True
    """
    allowed = ROLE_PERMISSIONS.get(role, frozenset())
    return WILDCARD in allowed or str(action) in allowed


RoleLookup = Callable[[str], "Role | str | None"]


class PermissionEvaluator:
    """
    Resolves a user's role and checks it against the matrix.

    Args:
        role_lookup: Returns the role for a user id (None when the user is unknown).
        event_logger: Security trail; every check is recorded.
    """

    def __init__(self, role_lookup: RoleLookup, event_logger: SecurityEventLogger) -> None:
        self._role_lookup = role_lookup
        self._event_logger = event_logger

    def _resolve_role(self, user_id: str) -> Role | None:
        try:
            raw = self._role_lookup(user_id)
        except Exception:
            logger.exception("Role lookup failed for user %s", hash_uid(user_id))
            return None
        if raw is None:
            return None
        if isinstance(raw, Role):
            return raw
        try:
            return Role(str(raw).upper())
        except ValueError:
            logger.warning("Unknown role %r for user %s", raw, hash_uid(user_id))
            return None

    def check_permission(
        self,
        user_id: str,
        action: str | Permission,
        resource: str,
        resource_id: str | None = None,
        ip_address: str = "unknown",
        user_agent: str = "unknown",
    ) -> bool:
        """
        Check whether ``user_id`` may perform ``action`` on ``resource``.

        Returns:
            True if allowed. False on denial or when the user's role cannot
            be resolved.
        """
        action_tag = str(action)
        role = self._resolve_role(user_id)

        if role is None:
            self._event_logger.log_security_event(SecurityEvent(
                action="PERMISSION_CHECK_INVALID_USER",
                resource=resource,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                risk_level=RiskLevel.HIGH,
                details={"action": action_tag, "resourceId": resource_id},
                user_id=user_id,
            ))
            return False

        allowed = has_permission(role, action_tag)

        details: dict[str, Any] = {
            "action": action_tag,
            "userRole": role.value,
            "hasPermission": allowed,
        }
        if resource_id is not None:
            details["resourceId"] = resource_id

        self._event_logger.log_security_event(SecurityEvent(
            action="PERMISSION_CHECK",
            resource=resource,
            ip_address=ip_address,
            user_agent=user_agent,
            success=allowed,
            risk_level=RiskLevel.LOW if allowed else RiskLevel.MEDIUM,
            details=details,
            user_id=user_id,
        ))

        if not allowed:
            record_permission_denial(role.value)
            logger.info("Permission denied: user %s (%s) -> %s", hash_uid(user_id), role, action_tag)
        return allowed


def db_role_lookup(session_factory: Callable[[], Session]) -> RoleLookup:
    """Build a role lookup reading ``users.role``."""

    def lookup(user_id: str) -> str | None:
        with session_factory() as session:
            return session.scalar(select(User.role).where(User.id == user_id))

    return lookup
