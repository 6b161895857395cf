"""Exceptions raised by the clinic backend.

Every application error derives from ``ClinicaException`` and carries a
machine-readable ``code`` and the HTTP status it maps to. Messages may
contain store internals, so anything rendered to a client for a 5xx goes
through ``sanitize_error`` first.
"""

from typing import Any

# Exception type name -> message safe to show a user
_SAFE_MESSAGES: dict[str, str] = {
    "AuthenticationError": "Authentication failed. Please log in again.",
    "AuthorizationError": "You do not have permission to perform this action.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "ConflictError": "This record already exists.",
    "DatabaseError": "A database error occurred. Please try again.",
    "OnboardingStepError": "Onboarding not completed, please retry.",
    "SnapshotError": "Saved onboarding progress could not be restored.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    The closest ancestor with a known message wins, so subclasses need no
    entry of their own.

    Args:
        e: The exception to sanitize.

    Returns:
        A generic message that reveals nothing about the failure.
    """
    for cls in type(e).__mro__:
        if cls.__name__ in _SAFE_MESSAGES:
            return _SAFE_MESSAGES[cls.__name__]
    return _DEFAULT_MESSAGE


class ClinicaException(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthenticationError(ClinicaException):
    """Bearer token missing or rejected (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="AUTHENTICATION_ERROR", status_code=401)


class AuthorizationError(ClinicaException):
    """Caller lacks the required role (403)."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message=message, code="AUTHORIZATION_ERROR", status_code=403)


class ValidationError(ClinicaException):
    """Submitted wizard data is unusable (400).

    ``field_errors`` maps a field name to its message; for whole-wizard
    validation the keys are step names and the values field maps.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        field_errors: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: The single offending field, when there is one.
            field_errors: Per-field (or per-step) error messages.
        """
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if field_errors:
            details["errors"] = field_errors
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400, details=details)
        self.field = field
        self.field_errors = field_errors or {}


class ConflictError(ClinicaException):
    """Insert hit a unique constraint (409).

    This is the conflict-on-create signal: onboarding steps treat it as
    "already exists" and re-read the row instead of failing.
    """

    def __init__(self, message: str, resource: str | None = None) -> None:
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
            details={"resource": resource} if resource else {},
        )
        self.resource = resource


class DatabaseError(ClinicaException):
    """Store request failed for any reason other than a conflict (500)."""

    def __init__(self, message: str = "A database error occurred") -> None:
        super().__init__(message=message, code="DATABASE_ERROR", status_code=500)


class OnboardingStepError(ClinicaException):
    """An onboarding saga step could not run or produced no result (500)."""

    def __init__(self, step: str, message: str) -> None:
        """Initialize onboarding step error.

        Args:
            step: Name of the saga step that failed.
            message: Error details.
        """
        super().__init__(
            message=message,
            code="ONBOARDING_STEP_ERROR",
            status_code=500,
            details={"step": step},
        )
        self.step = step


class SnapshotError(ClinicaException):
    """Wizard snapshot is malformed or expired (400)."""

    def __init__(self, message: str = "Invalid onboarding snapshot") -> None:
        super().__init__(message=message, code="SNAPSHOT_ERROR", status_code=400)
