"""
Runtime settings for the ChantierPro compliance core.

All settings come from environment variables and are read once into an
immutable ``SecuritySettings``. Secrets are never given defaults: the PII
cipher refuses to start without an explicit key and salt, in every
environment.

Environment:
    CHANTIERPRO_ENV                    development | test | production
    CHANTIERPRO_DEV_MODE               "1" for console logging
    CHANTIERPRO_ENCRYPTION_KEY         master secret for PII encryption
    CHANTIERPRO_ENCRYPTION_SALT        key-derivation salt
    CHANTIERPRO_RATE_LIMIT_MAX         requests allowed per window
    CHANTIERPRO_RATE_LIMIT_WINDOW_MS   window length in milliseconds
    CHANTIERPRO_ANOMALY_THRESHOLD      risk score above which requests are blocked
    REDIS_URL                          shared rate-limit store (optional)
    LOG_LEVEL                          root log level
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from src.lib.exceptions import ConfigurationError

Environment = Literal["development", "test", "production"]

VALID_ENVIRONMENTS: set[str] = {"development", "test", "production"}

DEFAULT_RATE_LIMIT_MAX = 100
DEFAULT_RATE_LIMIT_WINDOW_MS = 15 * 60 * 1000
DEFAULT_ANOMALY_THRESHOLD = 70


def _read_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class SecuritySettings:
    """
    Immutable settings snapshot.

    Attributes:
        environment: Deployment environment name.
        dev_mode: Human-readable logging when True.
        encryption_key: Master secret for the PII cipher (None when unset).
        encryption_salt: Key-derivation salt (None when unset).
        rate_limit_max: Requests allowed per client per window.
        rate_limit_window_ms: Fixed window length in milliseconds.
        anomaly_threshold: Risk scores strictly above this are blocked.
        redis_url: Shared counter store; in-memory counters when None.
        log_level: Root log level name.
    """

    environment: Environment = "production"
    dev_mode: bool = False
    encryption_key: str | None = None
    encryption_salt: str | None = None
    rate_limit_max: int = DEFAULT_RATE_LIMIT_MAX
    rate_limit_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    anomaly_threshold: int = DEFAULT_ANOMALY_THRESHOLD
    redis_url: str | None = None
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SecuritySettings:
        """
        Build settings from the process environment (or a given mapping).

        Raises:
            ConfigurationError: Unknown environment name or malformed numbers.
        """
        env = os.environ if environ is None else environ

        environment = env.get("CHANTIERPRO_ENV", "production").strip().lower()
        if environment not in VALID_ENVIRONMENTS:
            raise ConfigurationError(
                f"CHANTIERPRO_ENV must be one of {sorted(VALID_ENVIRONMENTS)}, got {environment!r}"
            )

        anomaly_threshold = _read_int(env, "CHANTIERPRO_ANOMALY_THRESHOLD", DEFAULT_ANOMALY_THRESHOLD)
        if anomaly_threshold > 100:
            raise ConfigurationError(
                f"CHANTIERPRO_ANOMALY_THRESHOLD must be at most 100, got {anomaly_threshold}"
            )

        return cls(
            environment=environment,  # type: ignore[arg-type]
            dev_mode=env.get("CHANTIERPRO_DEV_MODE") == "1",
            encryption_key=env.get("CHANTIERPRO_ENCRYPTION_KEY") or None,
            encryption_salt=env.get("CHANTIERPRO_ENCRYPTION_SALT") or None,
            rate_limit_max=_read_int(env, "CHANTIERPRO_RATE_LIMIT_MAX", DEFAULT_RATE_LIMIT_MAX),
            rate_limit_window_ms=_read_int(
                env, "CHANTIERPRO_RATE_LIMIT_WINDOW_MS", DEFAULT_RATE_LIMIT_WINDOW_MS
            ),
            anomaly_threshold=anomaly_threshold,
            redis_url=env.get("REDIS_URL") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def require_encryption_secrets(self) -> tuple[str, str]:
        """
        Return (key, salt), failing fast when either is missing.

        Raises:
            ConfigurationError: CHANTIERPRO_ENCRYPTION_KEY or
                CHANTIERPRO_ENCRYPTION_SALT is not set.
        """
        if not self.encryption_key:
            raise ConfigurationError(
                "CHANTIERPRO_ENCRYPTION_KEY is not set. "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )
        if not self.encryption_salt:
            raise ConfigurationError("CHANTIERPRO_ENCRYPTION_SALT is not set.")
        return self.encryption_key, self.encryption_salt
