"""
Database Module

Session factories, persistence sessions and the policies they apply.

Architecture Overview:
======================
┌─────────────────────────────────────────────────────────────────────────────┐
│                        DATABASE LAYER                                       │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                             │
│   Caller (request handler, job, CLI)                                        │
│       │                                                                     │
│       │  factory.session(actor_id=...)                                      │
│       ▼                                                                     │
│   ┌─────────────────────────────────────────────────────────────┐          │
│   │              PersistenceSession (from session.py)           │          │
│   │                                                             │          │
│   │  - One session per unit of work                             │          │
│   │  - Audit stamping before every flush                        │          │
│   │  - Retry on transient failure                               │          │
│   │  - Observer notified after each successful commit           │          │
│   │  - Connection released when the block exits                 │          │
│   └─────────────────────────────────────────────────────────────┘          │
│       │                                                                     │
│       │  session.set(Model)                                                 │
│       ▼                                                                     │
│   ┌─────────────────────────────────────────────────────────────┐          │
│   │              RecordSet (from record_set.py)                 │          │
│   └─────────────────────────────────────────────────────────────┘          │
│       │                                                                     │
│       │  SQLAlchemy AsyncSession                                            │
│       ▼                                                                     │
│   ┌─────────────────────────────────────────────────────────────┐          │
│   │        SQL Server  /  PostgreSQL  /  SQLite                 │          │
│   └─────────────────────────────────────────────────────────────┘          │
│                                                                             │
└─────────────────────────────────────────────────────────────────────────────┘

Components:
===========
- connection.py: Connection resolvers and immutable connection options
- factory.py: Provider session factories
- session.py: PersistenceSession unit of work
- record_set.py: Typed per-model handles
- interceptor.py: Audit field stamping
- observer.py: Commit observer protocol and adapters
- retry.py: Retry policy and transient failure handling

Usage:
======
    from auditdb.db import create_session_factory

    factory = create_session_factory(observer=cache.invalidate_all)

    async with factory.session(actor_id=current_user.id) as session:
        session.set(Invoice).add(Invoice(number="INV-001"))
        await session.commit()
"""

from typing import Callable

from auditdb.config.settings import Settings, get_settings
from auditdb.db.connection import (
    ConnectionOptions,
    ConnectionResolver,
    EnvironmentConnectionResolver,
    SettingsConnectionResolver,
    StaticConnectionResolver,
)
from auditdb.db.factory import (
    PostgresSessionFactory,
    SessionFactory,
    SqliteSessionFactory,
    SqlServerSessionFactory,
    factory_for_url,
)
from auditdb.db.interceptor import AuditFieldInterceptor, AuditResult
from auditdb.db.observer import CallbackObserver, CommitObserver, NullObserver, as_observer
from auditdb.db.record_set import RecordSet
from auditdb.db.retry import RetryPolicy, execute_with_retry, is_transient_error
from auditdb.db.session import PersistenceSession


def create_session_factory(
    settings: Settings | None = None,
    observer: CommitObserver | Callable[[], None] | None = None,
    **kwargs,
) -> SessionFactory:
    """Build the provider factory for ``DATABASE_URL`` in settings.

    Args:
        settings: Application settings (defaults to the cached settings)
        observer: Commit observer or zero-argument callable
        **kwargs: Passed through to the factory constructor

    Raises:
        ConfigurationError: If DATABASE_URL is missing, malformed or unsupported
    """
    settings = settings or get_settings()
    return factory_for_url(
        SettingsConnectionResolver(settings),
        observer,
        settings=settings,
        **kwargs,
    )


__all__ = [
    # Factories
    "create_session_factory",  # Factory for DATABASE_URL in settings
    "factory_for_url",  # Factory for any resolver's URL
    "SessionFactory",
    "SqlServerSessionFactory",
    "PostgresSessionFactory",
    "SqliteSessionFactory",
    # Sessions
    "PersistenceSession",
    "RecordSet",
    # Connection
    "ConnectionOptions",
    "ConnectionResolver",
    "StaticConnectionResolver",
    "SettingsConnectionResolver",
    "EnvironmentConnectionResolver",
    # Policies
    "AuditFieldInterceptor",
    "AuditResult",
    "CommitObserver",
    "CallbackObserver",
    "NullObserver",
    "as_observer",
    "RetryPolicy",
    "execute_with_retry",
    "is_transient_error",
]
