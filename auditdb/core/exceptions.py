"""
Custom Exceptions

Typed persistence errors surfaced to callers of the session layer.
"""

from typing import Any, Optional


class AuditDbException(Exception):
    """Base exception for all auditdb errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured reporting."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(AuditDbException):
    """Connection address or options are missing or malformed."""

    def __init__(
        self,
        message: str = "Invalid database configuration",
        config_key: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        extra_details = details or {}
        if config_key:
            extra_details["config_key"] = config_key
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=extra_details,
        )


class ConnectivityError(AuditDbException):
    """Database unreachable after the retry policy was exhausted."""

    def __init__(
        self,
        message: str = "Database unavailable",
        attempts: Optional[int] = None,
        original_error: Optional[Exception] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        extra_details = details or {}
        if attempts is not None:
            extra_details["attempts"] = attempts
        if original_error:
            extra_details["error_type"] = type(original_error).__name__
        super().__init__(
            message=message,
            error_code="CONNECTIVITY_ERROR",
            details=extra_details,
        )
        self.attempts = attempts
        self.original_error = original_error


class ConcurrencyError(AuditDbException):
    """Optimistic concurrency violation: the row version changed underneath us."""

    def __init__(
        self,
        message: str = "Record was modified by another session",
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        extra_details = details or {}
        if entity:
            extra_details["entity"] = entity
        if entity_id:
            extra_details["entity_id"] = entity_id
        super().__init__(
            message=message,
            error_code="CONCURRENCY_ERROR",
            details=extra_details,
        )


class CommitError(AuditDbException):
    """Any other failure while flushing or committing."""

    def __init__(
        self,
        message: str = "Commit failed",
        original_error: Optional[Exception] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        extra_details = details or {}
        if original_error:
            extra_details["error_type"] = type(original_error).__name__
        super().__init__(
            message=message,
            error_code="COMMIT_ERROR",
            details=extra_details,
        )
        self.original_error = original_error


class SessionStateError(AuditDbException):
    """Operation attempted on a session that can no longer accept it."""

    def __init__(self, state: str, operation: str) -> None:
        super().__init__(
            message=f"Cannot {operation} a session in state '{state}'",
            error_code="SESSION_STATE_ERROR",
            details={"state": state, "operation": operation},
        )
        self.state = state
        self.operation = operation
