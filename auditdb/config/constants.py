"""
Application Constants

Centralized constants used throughout the package.
"""

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle states of a persistence session."""

    OPEN = "open"  # Accepting reads and mutations
    COMMITTING = "committing"  # Interceptor running, flush in progress
    COMMITTED = "committed"  # Last commit succeeded, observer notified
    FAILED = "failed"  # Last commit failed and was rolled back
    CLOSED = "closed"  # Connection released


class DatabaseProvider(str, Enum):
    """Supported database providers, keyed by SQLAlchemy backend name."""

    SQL_SERVER = "mssql"
    POSTGRES = "postgresql"
    SQLITE = "sqlite"


# Async driver used for each provider when the URL does not name one
DEFAULT_ASYNC_DRIVERS: dict[DatabaseProvider, str] = {
    DatabaseProvider.SQL_SERVER: "aioodbc",
    DatabaseProvider.POSTGRES: "asyncpg",
    DatabaseProvider.SQLITE: "aiosqlite",
}


# =============================================================================
# Soft Delete
# =============================================================================

SOFT_DELETE_FIELD = "is_deleted"


# =============================================================================
# Transient Error Codes
# =============================================================================

# SQL Server / Azure SQL error numbers that indicate a retryable condition
SQL_SERVER_TRANSIENT_ERRORS = frozenset({
    20,  # Instance does not support encryption (transient during failover)
    64,  # Connection successfully established, error during login
    121,  # Semaphore timeout
    233,  # No process on the other end of the pipe
    1205,  # Deadlock victim
    4060,  # Cannot open database
    4221,  # Login to read-secondary failed
    10053,  # Transport-level error, connection aborted
    10054,  # Transport-level error, connection reset
    10060,  # Network-related error
    10928,  # Resource limit reached
    10929,  # Resource limit reached
    10936,  # Request limit reached
    12015,  # Index operation failed, resources
    40143,  # Connection could not be initialized
    40197,  # Service error processing request
    40501,  # Service busy
    40613,  # Database unavailable
    41301,  # Dependency failure on commit
    41302,  # Row updated by another transaction (in-memory OLTP)
    41305,  # Repeatable read validation failure
    41325,  # Serializable validation failure
    41839,  # Transaction exceeded maximum commit dependencies
    49918,  # Not enough resources to process request
    49919,  # Too many create/update operations in progress
    49920,  # Too many operations in progress
})

# PostgreSQL SQLSTATE codes (or two-character classes) that are retryable
POSTGRES_TRANSIENT_SQLSTATES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "57P01",  # admin_shutdown
    "57P02",  # crash_shutdown
    "57P03",  # cannot_connect_now
})
POSTGRES_TRANSIENT_SQLSTATE_CLASSES = frozenset({
    "08",  # connection_exception
    "53",  # insufficient_resources
})

# SQLite contention: SQLITE_BUSY and SQLITE_LOCKED primary result codes
SQLITE_TRANSIENT_CODES = frozenset({5, 6})
# Full messages for the same conditions, for drivers that omit the result code
SQLITE_TRANSIENT_MESSAGES = frozenset({
    "database is locked",
    "database table is locked",
    "database schema is locked",
    "database is busy",
})
