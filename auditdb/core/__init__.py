"""Core utilities module."""

from auditdb.core.exceptions import (
    AuditDbException,
    CommitError,
    ConcurrencyError,
    ConfigurationError,
    ConnectivityError,
    SessionStateError,
)

__all__ = [
    "AuditDbException",
    "ConfigurationError",
    "ConnectivityError",
    "ConcurrencyError",
    "CommitError",
    "SessionStateError",
]
