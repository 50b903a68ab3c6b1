"""
Centralized error response builder for the ChantierPro compliance core.

The core never produces HTTP responses itself. Route handlers use these
helpers to turn denials, validation results and raised exceptions into a
consistent error body and status code:

    decision = middleware.evaluate(ctx, user_id, action, resource)
    if not decision.allowed:
        body, status = decision.to_error_response()

Messages default to French (the application's UI language) with an
English fallback.
"""

from __future__ import annotations

from typing import Any

from src.lib.exceptions import (
    ChantierProException,
    NotFoundError,
    StateError,
    ValidationError,
)

# =============================================================================
# Error Code Constants
# =============================================================================

AUTH_REQUIRED = "AUTH_REQUIRED"
RATE_LIMITED = "RATE_LIMITED"
FORBIDDEN = "FORBIDDEN"
HIGH_RISK = "HIGH_RISK"
NOT_FOUND = "NOT_FOUND"
INVALID_STATE = "INVALID_STATE"
VALIDATION_FAILED = "VALIDATION_FAILED"
INTERNAL_ERROR = "INTERNAL_ERROR"

# =============================================================================
# Message Registry
#
# Maps (error_code, language) -> message string. Falls back to "en" when
# a translation is missing for the requested language.
# =============================================================================

_ERROR_MESSAGES: dict[str, dict[str, str]] = {
    AUTH_REQUIRED: {
        "fr": "Non authentifié.",
        "en": "Authentication is required.",
    },
    RATE_LIMITED: {
        "fr": "Trop de requêtes. Veuillez réessayer plus tard.",
        "en": "Too many requests. Please try again later.",
    },
    FORBIDDEN: {
        "fr": "Permissions insuffisantes.",
        "en": "You do not have permission to perform this action.",
    },
    HIGH_RISK: {
        "fr": "Activité à risque détectée.",
        "en": "High risk activity detected.",
    },
    NOT_FOUND: {
        "fr": "Ressource introuvable.",
        "en": "The requested resource was not found.",
    },
    INVALID_STATE: {
        "fr": "Opération impossible dans l'état actuel.",
        "en": "The operation is not allowed in the current state.",
    },
    VALIDATION_FAILED: {
        "fr": "Données invalides.",
        "en": "Invalid input. Please check your request.",
    },
    INTERNAL_ERROR: {
        "fr": "Erreur interne du serveur.",
        "en": "An internal error occurred. Please try again.",
    },
}

_HTTP_STATUS: dict[str, int] = {
    AUTH_REQUIRED: 401,
    RATE_LIMITED: 429,
    FORBIDDEN: 403,
    HIGH_RISK: 403,
    NOT_FOUND: 404,
    INVALID_STATE: 409,
    VALIDATION_FAILED: 400,
    INTERNAL_ERROR: 500,
}

_DEFAULT_LANG = "fr"


# =============================================================================
# Error Response Builder
# =============================================================================


def get_error_message(code: str, lang: str = _DEFAULT_LANG) -> str:
    """
    Get a translated error message for a given error code.

    Falls back to English if the requested language is not available,
    and to a generic message if the error code is unknown.
    """
    messages = _ERROR_MESSAGES.get(code, {})
    return messages.get(lang, messages.get("en", "An error occurred."))


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    lang: str = _DEFAULT_LANG,
) -> dict[str, Any]:
    """
    Build a structured error response dict.

    Args:
        code: Error code constant (e.g. RATE_LIMITED, NOT_FOUND)
        message: Optional override message (bypasses the registry lookup)
        details: Optional additional error details
        lang: Language code for the message lookup

    Returns:
        Structured error dict: {"code": str, "message": str, "details": dict}
    """
    resolved_message = message if message is not None else get_error_message(code, lang)
    error: dict[str, Any] = {
        "code": code,
        "message": resolved_message,
    }
    if details is not None:
        error["details"] = details
    return error


def error_code_for(exc: BaseException) -> str:
    """Map a raised exception to its error code."""
    if isinstance(exc, NotFoundError):
        return NOT_FOUND
    if isinstance(exc, StateError):
        return INVALID_STATE
    if isinstance(exc, ValidationError):
        return VALIDATION_FAILED
    return INTERNAL_ERROR


def http_status_for(code_or_exc: str | BaseException) -> int:
    """
    Return the HTTP status a route handler should answer with.

    Accepts either an error code constant or a raised exception. Unknown
    codes and non-ChantierPro exceptions map to 500.
    """
    if isinstance(code_or_exc, BaseException):
        if not isinstance(code_or_exc, ChantierProException):
            return 500
        code_or_exc = error_code_for(code_or_exc)
    return _HTTP_STATUS.get(code_or_exc, 500)


__all__ = [
    # Error code constants
    "AUTH_REQUIRED",
    "RATE_LIMITED",
    "FORBIDDEN",
    "HIGH_RISK",
    "NOT_FOUND",
    "INVALID_STATE",
    "VALIDATION_FAILED",
    "INTERNAL_ERROR",
    # Functions
    "get_error_message",
    "build_error_response",
    "error_code_for",
    "http_status_for",
]
