"""
Session Factories

A session factory turns a connection resolver, an audit interceptor and a
commit observer into ready-to-use ``PersistenceSession`` objects. The only
provider-specific policy in the package lives here: how connection options
are built and which errors count as transient.

Architecture Overview:
======================
┌─────────────────────────────────────────────────────────────────────────────┐
│                        SESSION FACTORY                                      │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                             │
│   ConnectionResolver ──► admin_connection_string                            │
│       │                                                                     │
│       ▼                                                                     │
│   apply_options()  (provider override)                                      │
│       │   url + retry policy + sensitive logging + detailed errors          │
│       ▼                                                                     │
│   AsyncEngine (created on first use, one pool per factory)                  │
│       │                                                                     │
│       ▼                                                                     │
│   create(actor_id) ──► PersistenceSession                                   │
│                          ├── AsyncSession (one connection / transaction)    │
│                          ├── AuditFieldInterceptor (shared)                 │
│                          └── CommitObserver (shared)                        │
│                                                                             │
└─────────────────────────────────────────────────────────────────────────────┘

Providers:
==========
- SqlServerSessionFactory: mssql+aioodbc
- PostgresSessionFactory:  postgresql+asyncpg
- SqliteSessionFactory:    sqlite+aiosqlite

Factories hold no per-call mutable state and are safe to share process-wide.
"""

import re
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from functools import cached_property
from typing import AsyncIterator, Callable, ClassVar, Generic, TypeVar

from pydantic import ValidationError
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from auditdb.config.constants import (
    DEFAULT_ASYNC_DRIVERS,
    POSTGRES_TRANSIENT_SQLSTATE_CLASSES,
    POSTGRES_TRANSIENT_SQLSTATES,
    SQL_SERVER_TRANSIENT_ERRORS,
    SQLITE_TRANSIENT_CODES,
    SQLITE_TRANSIENT_MESSAGES,
    DatabaseProvider,
)
from auditdb.config.settings import Settings, get_settings
from auditdb.core.exceptions import ConfigurationError
from auditdb.core.logging import logger
from auditdb.core.utils import safe_url
from auditdb.db.connection import ConnectionOptions, ConnectionResolver
from auditdb.db.interceptor import AuditFieldInterceptor
from auditdb.db.observer import CommitObserver, as_observer
from auditdb.db.retry import RetryPolicy, is_transient_error
from auditdb.db.session import PersistenceSession

SessionT = TypeVar("SessionT", bound=PersistenceSession)

# ODBC diagnostics end with the native error number and the failing call:
# "[23000] ... The duplicate key value is (20). (2627) (SQLExecDirectW)"
_SQL_SERVER_ERROR_NUMBER = re.compile(r"\((\d+)\)\s*\(SQL\w+\)")
_SQL_SERVER_TRANSIENT_SQLSTATES = frozenset({"08S01", "08001", "HYT00", "HYT01"})


class SessionFactory(ABC, Generic[SessionT]):
    """
    Builds persistence sessions for one database provider.

    Subclasses set ``provider`` and implement ``apply_options``. Applications
    that want typed record-set properties subclass ``PersistenceSession`` and
    point ``session_class`` at it:

        class BillingSession(PersistenceSession):
            @property
            def invoices(self) -> RecordSet[Invoice]:
                return self.set(Invoice)

        class BillingSessionFactory(PostgresSessionFactory[BillingSession]):
            session_class = BillingSession
    """

    provider: ClassVar[DatabaseProvider]
    session_class: ClassVar[type[PersistenceSession]] = PersistenceSession

    def __init__(
        self,
        connection_resolver: ConnectionResolver,
        observer: CommitObserver | Callable[[], None] | None = None,
        *,
        settings: Settings | None = None,
        interceptor: AuditFieldInterceptor | None = None,
        retry_policy: RetryPolicy | None = None,
        sensitive_data_logging: bool | None = None,
        notify_on_empty_commit: bool | None = None,
    ) -> None:
        """
        Initialize the factory and validate its connection address.

        Args:
            connection_resolver: Supplies the administrative connection string
            observer: Notified after each successful commit; an object with
                ``on_saved()`` or a zero-argument callable
            settings: Application settings (defaults to the cached settings)
            interceptor: Audit stamping policy (defaults to wall-clock UTC)
            retry_policy: Overrides the policy derived from settings
            sensitive_data_logging: Overrides DATABASE_SENSITIVE_DATA_LOGGING
            notify_on_empty_commit: Overrides DATABASE_NOTIFY_ON_EMPTY_COMMIT

        Raises:
            ConfigurationError: If the address is empty, malformed or belongs
                to another provider, or the retry settings are invalid
        """
        self.settings = settings or get_settings()
        self.connection_resolver = connection_resolver
        self.observer = as_observer(observer)
        self.interceptor = interceptor or AuditFieldInterceptor()
        self.retry_policy = retry_policy or self._retry_policy_from_settings()
        self.notify_on_empty_commit = (
            self.settings.DATABASE_NOTIFY_ON_EMPTY_COMMIT
            if notify_on_empty_commit is None
            else notify_on_empty_commit
        )
        self.url = self._resolve_url()
        self.options = self.apply_options(
            self.settings.DATABASE_SENSITIVE_DATA_LOGGING
            if sensitive_data_logging is None
            else sensitive_data_logging
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PROVIDER POLICY
    # ═══════════════════════════════════════════════════════════════════════════

    @abstractmethod
    def apply_options(self, sensitive_data_logging_enabled: bool = False) -> ConnectionOptions:
        """Build provider-specific connection options from the resolved URL.

        Retry-on-failure and detailed errors are always on. Sensitive data
        logging writes bound parameters to logs and error details; it is for
        development only and must stay off in production.
        """

    def is_transient(self, error: BaseException) -> bool:
        """Whether ``error`` is worth retrying on this provider."""
        return is_transient_error(error)

    def _build_options(
        self,
        sensitive_data_logging_enabled: bool,
        engine_options: dict,
    ) -> ConnectionOptions:
        if sensitive_data_logging_enabled:
            log = logger.error if self.settings.is_production else logger.warning
            log(
                "Sensitive data logging enabled; SQL parameters will be logged. "
                "Do not use in production.",
                provider=self.provider.value,
                app_env=self.settings.APP_ENV,
            )
        return ConnectionOptions(
            url=self.url,
            retry_on_failure=True,
            retry_policy=self.retry_policy,
            sensitive_data_logging=sensitive_data_logging_enabled,
            detailed_errors=True,
            engine_options=engine_options,
        )

    def _pool_options(self) -> dict:
        return {
            "pool_size": self.settings.DATABASE_POOL_SIZE,
            "max_overflow": self.settings.DATABASE_MAX_OVERFLOW,
            "pool_timeout": self.settings.DATABASE_POOL_TIMEOUT_SECONDS,
            "pool_pre_ping": True,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # SESSIONS
    # ═══════════════════════════════════════════════════════════════════════════

    @cached_property
    def engine(self) -> AsyncEngine:
        """Engine and connection pool shared by every session of this factory."""
        try:
            engine = create_async_engine(self.options.url, **self.options.engine_kwargs())
        except (sa_exc.ArgumentError, sa_exc.InvalidRequestError, ImportError) as e:
            raise ConfigurationError(
                message=f"Cannot create engine for {safe_url(self.options.url)}: {e}",
                config_key="DATABASE_URL",
            ) from e
        logger.info(
            "Database engine created",
            provider=self.provider.value,
            url=safe_url(self.options.url),
            max_retries=self.options.retry_policy.max_retry_count,
        )
        return engine

    @cached_property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        return async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create(self, actor_id: uuid.UUID | None = None) -> SessionT:
        """
        Create a connected session.

        Args:
            actor_id: Identity stamped into created_by / modified_by; can also
                be set afterwards with ``session.with_actor()``

        Returns:
            An open session; the caller must close it

        Raises:
            ConnectivityError: If no connection could be established after retries
        """
        session = self.session_class(
            self.session_maker(),
            self.options,
            self.interceptor,
            self.observer,
            actor_id=actor_id,
            is_transient=self.is_transient,
            notify_on_empty_commit=self.notify_on_empty_commit,
        )
        await session.connect()
        return session

    @asynccontextmanager
    async def session(self, actor_id: uuid.UUID | None = None) -> AsyncIterator[SessionT]:
        """Create a session and close it on every exit path.

        Changes not committed inside the block are rolled back on close.
        """
        session = await self.create(actor_id=actor_id)
        try:
            yield session
        finally:
            await session.close()

    async def dispose(self) -> None:
        """Close all pooled connections, if the engine was ever created."""
        if "engine" in self.__dict__:
            await self.engine.dispose()
            logger.info("Database engine disposed", provider=self.provider.value)

    # ═══════════════════════════════════════════════════════════════════════════
    # CONFIGURATION
    # ═══════════════════════════════════════════════════════════════════════════

    def _retry_policy_from_settings(self) -> RetryPolicy:
        try:
            return RetryPolicy(
                max_retry_count=self.settings.DATABASE_RETRY_MAX_ATTEMPTS,
                base_delay_seconds=self.settings.DATABASE_RETRY_BASE_DELAY_SECONDS,
                max_delay_seconds=self.settings.DATABASE_RETRY_MAX_DELAY_SECONDS,
            )
        except ValidationError as e:
            raise ConfigurationError(
                message="Invalid database retry settings",
                config_key="DATABASE_RETRY_*",
                details={"errors": e.errors(include_url=False)},
            ) from e

    def _resolve_url(self) -> URL:
        raw = _read_connection_string(self.connection_resolver)
        if not raw or not raw.strip():
            raise ConfigurationError(
                message="Database connection string is empty",
                config_key="DATABASE_URL",
            )

        try:
            url = make_url(raw.strip())
        except (sa_exc.ArgumentError, ValueError) as e:
            raise ConfigurationError(
                message="Database connection string is malformed",
                config_key="DATABASE_URL",
            ) from e

        if url.get_backend_name() != self.provider.value:
            raise ConfigurationError(
                message=(
                    f"{type(self).__name__} expects a '{self.provider.value}' URL, "
                    f"got '{url.get_backend_name()}'"
                ),
                config_key="DATABASE_URL",
            )

        if "+" not in url.drivername:
            url = url.set(
                drivername=f"{url.drivername}+{DEFAULT_ASYNC_DRIVERS[self.provider]}"
            )
        return url


class SqlServerSessionFactory(SessionFactory[SessionT]):
    """Sessions against SQL Server / Azure SQL via aioodbc."""

    provider = DatabaseProvider.SQL_SERVER

    def apply_options(self, sensitive_data_logging_enabled: bool = False) -> ConnectionOptions:
        return self._build_options(
            sensitive_data_logging_enabled,
            {
                **self._pool_options(),
                "connect_args": {"timeout": int(self.settings.DATABASE_CONNECT_TIMEOUT_SECONDS)},
            },
        )

    def is_transient(self, error: BaseException) -> bool:
        if is_transient_error(error):
            return True
        if not isinstance(error, sa_exc.DBAPIError) or error.orig is None:
            return False
        args = getattr(error.orig, "args", ())
        if args and str(args[0]) in _SQL_SERVER_TRANSIENT_SQLSTATES:
            return True
        messages = [arg for arg in args if isinstance(arg, str)] or [str(error.orig)]
        numbers = {
            int(n) for message in messages for n in _SQL_SERVER_ERROR_NUMBER.findall(message)
        }
        return bool(numbers & SQL_SERVER_TRANSIENT_ERRORS)


class PostgresSessionFactory(SessionFactory[SessionT]):
    """Sessions against PostgreSQL via asyncpg."""

    provider = DatabaseProvider.POSTGRES

    def apply_options(self, sensitive_data_logging_enabled: bool = False) -> ConnectionOptions:
        return self._build_options(
            sensitive_data_logging_enabled,
            {
                **self._pool_options(),
                "connect_args": {"timeout": self.settings.DATABASE_CONNECT_TIMEOUT_SECONDS},
            },
        )

    def is_transient(self, error: BaseException) -> bool:
        if is_transient_error(error):
            return True
        if not isinstance(error, sa_exc.DBAPIError) or error.orig is None:
            return False
        sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
        if not sqlstate:
            return False
        return (
            sqlstate in POSTGRES_TRANSIENT_SQLSTATES
            or sqlstate[:2] in POSTGRES_TRANSIENT_SQLSTATE_CLASSES
        )


class SqliteSessionFactory(SessionFactory[SessionT]):
    """Sessions against a SQLite file via aiosqlite. Used for tests and tooling."""

    provider = DatabaseProvider.SQLITE

    def apply_options(self, sensitive_data_logging_enabled: bool = False) -> ConnectionOptions:
        # SQLite pools are not sized; the timeout is the busy-wait on locks
        return self._build_options(
            sensitive_data_logging_enabled,
            {"connect_args": {"timeout": self.settings.DATABASE_CONNECT_TIMEOUT_SECONDS}},
        )

    def is_transient(self, error: BaseException) -> bool:
        if is_transient_error(error):
            return True
        if not isinstance(error, sa_exc.OperationalError):
            return False
        # sqlite3 exposes the extended result code; the low byte is the primary code
        code = getattr(error.orig, "sqlite_errorcode", None)
        if code is not None and (code & 0xFF) in SQLITE_TRANSIENT_CODES:
            return True
        return str(error.orig).strip().lower() in SQLITE_TRANSIENT_MESSAGES


_FACTORIES: dict[DatabaseProvider, type[SessionFactory]] = {
    DatabaseProvider.SQL_SERVER: SqlServerSessionFactory,
    DatabaseProvider.POSTGRES: PostgresSessionFactory,
    DatabaseProvider.SQLITE: SqliteSessionFactory,
}


def _read_connection_string(connection_resolver: ConnectionResolver) -> str:
    try:
        return connection_resolver.admin_connection_string
    except Exception as e:
        raise ConfigurationError(
            message="Could not resolve database connection string",
            config_key="DATABASE_URL",
            details={"error_type": type(e).__name__},
        ) from e


def factory_for_url(
    connection_resolver: ConnectionResolver,
    observer: CommitObserver | Callable[[], None] | None = None,
    **kwargs,
) -> SessionFactory:
    """Pick the provider factory matching the resolver's URL.

    Args:
        connection_resolver: Supplies the administrative connection string
        observer: Commit observer or callable
        **kwargs: Passed through to the factory constructor

    Raises:
        ConfigurationError: If the URL is unusable or its backend unsupported
    """
    raw = _read_connection_string(connection_resolver)
    try:
        backend = make_url((raw or "").strip()).get_backend_name()
    except (sa_exc.ArgumentError, ValueError) as e:
        raise ConfigurationError(
            message="Database connection string is empty or malformed",
            config_key="DATABASE_URL",
        ) from e

    try:
        provider = DatabaseProvider(backend)
    except ValueError as e:
        raise ConfigurationError(
            message=f"Unsupported database provider '{backend}'",
            config_key="DATABASE_URL",
            details={"supported": [p.value for p in DatabaseProvider]},
        ) from e

    return _FACTORIES[provider](connection_resolver, observer, **kwargs)
