"""
Lib package for the ChantierPro compliance core.

Contains shared utilities:
- security.py: Input validation, sanitization and fixed-window rate limiting
- anomaly.py: Per-user behavioural risk scoring
- audit.py: Security event logging, alerting and security-log queries
- encryption.py: Field-level PII encryption (AES-256-GCM)
- errors.py: Centralized error response builder (French, English fallback)
- logging.py: structlog setup with sensitive-field redaction
- gdpr.py: RGPD data controller (consents, rights requests, retention, breaches)
"""

from src.lib.anomaly import AnomalyDetector
from src.lib.audit import (
    RiskLevel,
    SecurityEvent,
    SecurityEventLogger,
    SecurityLogRepository,
)
from src.lib.encryption import PII_FIELDS, DataEncryption, EncryptedValue
from src.lib.errors import (
    AUTH_REQUIRED,
    FORBIDDEN,
    HIGH_RISK,
    INTERNAL_ERROR,
    INVALID_STATE,
    NOT_FOUND,
    RATE_LIMITED,
    VALIDATION_FAILED,
    build_error_response,
    get_error_message,
)
from src.lib.gdpr import GDPRDataController
from src.lib.security import (
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    InputValidator,
    RedisCounterStore,
    ValidationRule,
)

__all__ = [
    # Anomaly
    "AnomalyDetector",
    # Audit
    "RiskLevel",
    "SecurityEvent",
    "SecurityEventLogger",
    "SecurityLogRepository",
    # Encryption
    "DataEncryption",
    "EncryptedValue",
    "PII_FIELDS",
    # Errors
    "AUTH_REQUIRED",
    "RATE_LIMITED",
    "FORBIDDEN",
    "HIGH_RISK",
    "NOT_FOUND",
    "INVALID_STATE",
    "VALIDATION_FAILED",
    "INTERNAL_ERROR",
    "get_error_message",
    "build_error_response",
    # GDPR
    "GDPRDataController",
    # Security
    "InputValidator",
    "ValidationRule",
    "FixedWindowRateLimiter",
    "InMemoryCounterStore",
    "RedisCounterStore",
]
