"""
Connection Resolution and Options

Resolvers supply the administrative connection string; ``ConnectionOptions``
is the immutable bundle a session factory builds from it.

Resolvers are shared by every session a factory mints, so implementations
must be safe for concurrent read-only use: they hold no mutable state and
perform no I/O other than reading configuration.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.engine import URL

from auditdb.config.settings import Settings
from auditdb.db.retry import RetryPolicy


@runtime_checkable
class ConnectionResolver(Protocol):
    """Supplies the administrative connection address."""

    @property
    def admin_connection_string(self) -> str: ...


class StaticConnectionResolver:
    """Resolver over a fixed connection string."""

    def __init__(self, connection_string: str) -> None:
        self._connection_string = connection_string

    @property
    def admin_connection_string(self) -> str:
        return self._connection_string


class SettingsConnectionResolver:
    """Resolver reading ``DATABASE_URL`` from application settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def admin_connection_string(self) -> str:
        return self._settings.DATABASE_URL


class EnvironmentConnectionResolver:
    """Resolver reading an environment variable each time it is asked."""

    def __init__(self, variable: str = "DATABASE_URL") -> None:
        self.variable = variable

    @property
    def admin_connection_string(self) -> str:
        return os.environ.get(self.variable, "")


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Immutable connection configuration for one database provider.

    Attributes:
        url: Parsed SQLAlchemy URL for the target database
        retry_on_failure: Retry transient failures under ``retry_policy``
        retry_policy: Retry ceiling and backoff
        sensitive_data_logging: Echo SQL with bound parameters and include
            parameters in error details. Parameters can carry credentials and
            personal data; never enable this in production.
        detailed_errors: Include the failing SQL statement in error details
        engine_options: Provider-specific keyword arguments for
            ``create_async_engine`` (pool sizing, connect args)
    """

    url: URL
    retry_on_failure: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    sensitive_data_logging: bool = False
    detailed_errors: bool = True
    engine_options: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_retry_policy(self) -> RetryPolicy:
        """Policy actually applied; a zero-retry policy when retries are off."""
        if self.retry_on_failure:
            return self.retry_policy
        return RetryPolicy(max_retry_count=0, base_delay_seconds=0, max_delay_seconds=0)

    def engine_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``create_async_engine``."""
        return {
            **self.engine_options,
            "echo": self.sensitive_data_logging,
            "hide_parameters": not self.sensitive_data_logging,
        }
