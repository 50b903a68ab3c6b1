"""
Custom exception hierarchy for the ChantierPro compliance core.

Provides structured exception types for all subsystems:
- Configuration, encryption, GDPR compliance
- Security, state transitions, databases

All exceptions inherit from ChantierProException, enabling
catch-all for ChantierPro-specific errors while keeping the
ability to catch specific error types.

Authorization denials and input validation failures are NOT raised:
they are returned as structured results by the security layer.
"""

from __future__ import annotations


class ChantierProException(Exception):
    """Base exception for all ChantierPro compliance errors."""


class ConfigurationError(ChantierProException):
    """Missing environment variables, invalid config values, or startup failures."""


class EncryptionError(ChantierProException):
    """Encryption or decryption failures (key errors, corrupted data, missing keys)."""


class DecryptionError(EncryptionError):
    """Authentication tag mismatch or malformed encrypted payload."""


class SecurityError(ChantierProException):
    """Security subsystem failures that cannot be expressed as a denial."""


class GDPRError(ChantierProException):
    """GDPR compliance failures (consent, rights requests, anonymization)."""


class NotFoundError(GDPRError):
    """A referenced record (user, rights request, breach) does not exist."""

    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class RequestTypeMismatchError(NotFoundError):
    """A rights request exists but is not of the type the operation handles."""

    def __init__(self, identifier: str, expected: str, actual: str) -> None:
        super().__init__("DataRightsRequest", identifier)
        self.expected = expected
        self.actual = actual
        self.args = (f"DataRightsRequest {identifier} is {actual}, expected {expected}",)


class DatabaseError(ChantierProException):
    """Database connection, query, or transaction failures."""


class ValidationError(ChantierProException):
    """Invalid arguments passed to a core operation."""


class StateError(ChantierProException):
    """Invalid state transitions, missing required state."""


class InvalidTransitionError(StateError):
    """A rights request cannot move from its current status to the target one."""

    def __init__(self, identifier: str, current: str, target: str) -> None:
        self.identifier = identifier
        self.current = current
        self.target = target
        super().__init__(f"DataRightsRequest {identifier}: {current} -> {target} is not allowed")
