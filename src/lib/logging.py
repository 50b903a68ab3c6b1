"""
Structured logging configuration for the ChantierPro compliance core.

structlog runs on top of stdlib logging, so security modules
(``structlog.get_logger()``) and persistence modules
(``logging.getLogger(__name__)``) end up on the same handler and format:
JSON lines in production, colored console output in dev mode.

Event dicts pass through ``redact_sensitive_fields`` before rendering, so a
stray ``password=...`` or ``email=...`` keyword never reaches the log pipeline.

Usage:
    from src.lib.logging import setup_logging

    setup_logging(SecuritySettings.from_env())  # once, at process startup
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from src.config.settings import SecuritySettings

REDACTED = "[REDACTED]"

SENSITIVE_LOG_KEYS: frozenset[str] = frozenset({
    "password",
    "two_factor_secret",
    "backup_codes",
    "encryption_key",
    "encryption_salt",
    "token",
    "email",
    "phone",
    "address",
})

_NOISY_LOGGERS = ("redis", "urllib3", "sqlalchemy.engine")


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: mask credential and contact fields, including one level of nesting."""
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_LOG_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in SENSITIVE_LOG_KEYS else v
                for k, v in value.items()
            }
    return event_dict


def setup_logging(settings: SecuritySettings | None = None) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        settings: Source of ``dev_mode`` and ``log_level``. Read from the
            environment when omitted.
    """
    if settings is None:
        from src.config.settings import SecuritySettings

        settings = SecuritySettings.from_env()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive_fields,
    ]

    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer() if settings.dev_mode else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
