"""
Persistence Session

The unit of work handed out by a ``SessionFactory``. Wraps exactly one
SQLAlchemy ``AsyncSession`` (one connection, one transaction scope) and adds
the audit, retry and notification policy on top of it.

Session Lifecycle:
==================
┌─────────────────────────────────────────────────────────────────────────────┐
│                                                                             │
│   factory.create()                                                          │
│       │                                                                     │
│       ▼                                                                     │
│   ┌────────┐  commit()  ┌────────────┐  success  ┌───────────┐             │
│   │  OPEN  │ ─────────► │ COMMITTING │ ────────► │ COMMITTED │ ─┐          │
│   └────────┘            └────────────┘           └───────────┘  │          │
│       ▲                       │                                  │          │
│       │                       │ error / cancel                   │          │
│       │                       ▼                                  │          │
│       │                  ┌────────┐                              │          │
│       │                  │ FAILED │   (rolled back, terminal)    │          │
│       │                  └────────┘                              │          │
│       └──────────── further mutations / commits ─────────────────┘          │
│                                                                             │
│   close() from any state ──► CLOSED (connection released)                   │
│                                                                             │
└─────────────────────────────────────────────────────────────────────────────┘

Commit Ordering:
================
1. Collect pending adds, updates and deletes from the ORM session
2. Run the audit interceptor over every pending record (once per commit)
3. Flush and commit, retrying transient failures; between attempts the
   transaction is rolled back and the staged records are restored
4. Notify the observer, strictly after the database acknowledged the commit

Usage:
======
    async with factory.session(actor_id=user_id) as session:
        invoices = session.set(Invoice)
        invoices.add(Invoice(number="INV-001"))
        await session.commit()
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from sqlalchemy import exc as sa_exc
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from auditdb.config.constants import SessionState
from auditdb.core.exceptions import (
    AuditDbException,
    CommitError,
    ConcurrencyError,
    ConnectivityError,
    SessionStateError,
)
from auditdb.core.logging import get_logger
from auditdb.db.connection import ConnectionOptions
from auditdb.db.interceptor import AuditFieldInterceptor
from auditdb.db.observer import CommitObserver
from auditdb.db.record_set import RecordSet
from auditdb.db.retry import execute_with_retry, is_transient_error
from auditdb.models.base import Auditable, Base

ModelType = TypeVar("ModelType", bound=Base)

# States that accept reads, mutations and commits
_USABLE_STATES = frozenset({SessionState.OPEN, SessionState.COMMITTED})


@dataclass
class _StagedChanges:
    """Pending work captured after stamping, replayed if a commit attempt is retried."""

    added: list[Any] = field(default_factory=list)
    # (record, changed column values, version expected in the database)
    modified: list[tuple[Any, dict[str, Any], int | None]] = field(default_factory=list)
    deleted: list[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)


class PersistenceSession:
    """
    A scoped unit of work over a single database transaction.

    Not safe for concurrent use: one task drives a session at a time.
    """

    def __init__(
        self,
        orm_session: AsyncSession,
        options: ConnectionOptions,
        interceptor: AuditFieldInterceptor,
        observer: CommitObserver,
        *,
        actor_id: uuid.UUID | None = None,
        is_transient: Callable[[BaseException], bool] = is_transient_error,
        notify_on_empty_commit: bool = False,
    ) -> None:
        """
        Initialize the session.

        Sessions are normally built by ``SessionFactory.create()``; subclasses
        may add typed record-set properties but must keep this signature.

        Args:
            orm_session: SQLAlchemy session owning the connection
            options: Connection options the session was built with
            interceptor: Audit stamping policy
            observer: Notified once after each successful commit
            actor_id: Identity stamped into created_by / modified_by
            is_transient: Provider-specific transient error predicate
            notify_on_empty_commit: Notify the observer for commits with
                nothing to write
        """
        self.id = uuid.uuid4()
        self._orm = orm_session
        self.options = options
        self.interceptor = interceptor
        self.observer = observer
        self._actor_id = actor_id
        self._is_transient = is_transient
        self.notify_on_empty_commit = notify_on_empty_commit
        self._state = SessionState.OPEN
        self._record_sets: dict[type, RecordSet[Any]] = {}
        self.logger = get_logger("auditdb.session").bind(
            session_id=str(self.id),
            actor_id=str(actor_id) if actor_id else None,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PROPERTIES
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def actor_id(self) -> uuid.UUID | None:
        return self._actor_id

    @property
    def orm_session(self) -> AsyncSession:
        """The underlying SQLAlchemy session, for queries record sets do not cover."""
        return self._orm

    @property
    def has_pending_changes(self) -> bool:
        added, modified, deleted = self._pending_changes()
        return bool(added or modified or deleted)

    def with_actor(self, actor_id: uuid.UUID | None) -> "PersistenceSession":
        """Scope this session to an acting identity for audit stamping.

        Returns:
            This session, for chaining off ``factory.create()``
        """
        self.ensure_usable("set the actor of")
        self._actor_id = actor_id
        self.logger = self.logger.bind(actor_id=str(actor_id) if actor_id else None)
        return self

    def set(self, model: type[ModelType]) -> RecordSet[ModelType]:
        """Return the record set for ``model``, creating it on first use."""
        record_set = self._record_sets.get(model)
        if record_set is None:
            record_set = RecordSet(model, self)
            self._record_sets[model] = record_set
        return record_set

    def ensure_usable(self, operation: str) -> None:
        """Raise ``SessionStateError`` unless the session accepts work."""
        if self._state not in _USABLE_STATES:
            raise SessionStateError(state=self._state.value, operation=operation)

    # ═══════════════════════════════════════════════════════════════════════════
    # CONNECTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def connect(self) -> "PersistenceSession":
        """
        Acquire the session's connection under the retry policy.

        Raises:
            ConnectivityError: If no connection could be established
        """
        policy = self.options.effective_retry_policy

        async def reset(_retry_number: int, _error: BaseException) -> None:
            await self._orm.close()

        try:
            await execute_with_retry(
                self._orm.connection,
                policy,
                is_transient=self._is_transient,
                on_retry=reset,
                operation_name="connect",
            )
        except Exception as e:
            await self._orm.close()
            self._state = SessionState.CLOSED
            self.logger.error(
                "Could not establish database connection",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ConnectivityError(
                message="Could not establish database connection",
                attempts=policy.max_attempts if self._is_transient(e) else None,
                original_error=e,
                details=self._error_details(e),
            ) from e

        self.logger.debug("Session connected")
        return self

    # ═══════════════════════════════════════════════════════════════════════════
    # UNIT OF WORK
    # ═══════════════════════════════════════════════════════════════════════════

    async def commit(self) -> int:
        """
        Stamp, persist and announce all pending changes.

        Returns:
            Number of records inserted, updated or deleted

        Raises:
            ConcurrencyError: A modified record's version changed in the database
            ConnectivityError: Transient failures outlasted the retry policy
            CommitError: Any other flush or commit failure
            SessionStateError: The session is closed or has failed
        """
        self.ensure_usable("commit")
        self._state = SessionState.COMMITTING

        try:
            staged = self._stage()
            await execute_with_retry(
                self._flush_and_commit,
                self.options.effective_retry_policy,
                is_transient=self._is_transient,
                on_retry=lambda _n, _e: self._restore(staged),
                operation_name="commit",
            )
        except asyncio.CancelledError:
            await self._fail("Commit cancelled")
            raise
        except AuditDbException:
            await self._fail("Commit failed")
            raise
        except StaleDataError as e:
            await self._fail("Commit rejected by optimistic concurrency check")
            raise ConcurrencyError(details=self._error_details(e)) from e
        except Exception as e:
            await self._fail("Commit failed", e)
            raise self._translate(e) from e

        self._state = SessionState.COMMITTED
        self.logger.debug("Commit succeeded", changes=staged.total)

        if staged.total or self.notify_on_empty_commit:
            self.observer.on_saved()

        return staged.total

    async def rollback(self) -> None:
        """Discard pending changes and end the current transaction."""
        self.ensure_usable("roll back")
        await self._orm.rollback()
        self._state = SessionState.OPEN

    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self._state is SessionState.CLOSED:
            return
        try:
            await self._orm.close()
        finally:
            self._state = SessionState.CLOSED
            self.logger.debug("Session closed")

    async def __aenter__(self) -> "PersistenceSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # INTERNALS
    # ═══════════════════════════════════════════════════════════════════════════

    async def _flush_and_commit(self) -> None:
        await self._orm.flush()
        await self._orm.commit()

    def _pending_changes(self) -> tuple[list[Any], list[Any], list[Any]]:
        added = list(self._orm.new)
        modified = [obj for obj in self._orm.dirty if self._orm.is_modified(obj)]
        deleted = list(self._orm.deleted)
        return added, modified, deleted

    def _stage(self) -> _StagedChanges:
        """Run the interceptor and capture what a retry has to replay."""
        added, modified, deleted = self._pending_changes()
        self.interceptor.intercept(added, modified, actor_id=self._actor_id)

        staged = _StagedChanges(added=added, deleted=deleted)
        for record in modified:
            staged.modified.append(
                (record, self._changed_values(record), self._expected_version(record))
            )
        return staged

    async def _restore(self, staged: _StagedChanges) -> None:
        """Roll back a failed attempt and re-stage its records for the next one.

        Rollback expunges pending inserts and expires persistent rows, so new
        records are re-added, modified rows are reloaded and get their stamped
        values re-applied, and deletions are re-issued.
        """
        await self._orm.rollback()

        for record in staged.added:
            if record not in self._orm:
                self._orm.add(record)

        for record, changes, expected_version in staged.modified:
            try:
                await self._orm.refresh(record)
            except sa_exc.InvalidRequestError as e:
                raise ConcurrencyError(
                    message="Record no longer exists",
                    entity=type(record).__name__,
                ) from e
            if expected_version is not None and record.version != expected_version:
                raise ConcurrencyError(
                    entity=type(record).__name__,
                    entity_id=str(getattr(record, "id", "")) or None,
                )
            for key, value in changes.items():
                setattr(record, key, value)

        for record in staged.deleted:
            await self._orm.delete(record)

    async def _fail(self, message: str, error: Exception | None = None) -> None:
        self._state = SessionState.FAILED
        if error is not None:
            self.logger.error(message, error=str(error), error_type=type(error).__name__)
        else:
            self.logger.warning(message)
        try:
            await self._orm.rollback()
        except Exception as e:
            # Keep the original error; the connection is discarded on close()
            self.logger.warning("Rollback after failed commit also failed", error=str(e))

    def _translate(self, error: Exception) -> AuditDbException:
        details = self._error_details(error)
        if self._is_transient(error):
            return ConnectivityError(
                message="Database unavailable after retries",
                attempts=self.options.effective_retry_policy.max_attempts,
                original_error=error,
                details=details,
            )
        return CommitError(original_error=error, details=details)

    def _error_details(self, error: Exception) -> dict[str, Any]:
        details: dict[str, Any] = {}
        if not self.options.detailed_errors:
            return details
        if isinstance(error, sa_exc.StatementError):
            details["statement"] = error.statement
            if self.options.sensitive_data_logging:
                details["params"] = repr(error.params)
            if error.orig is not None:
                details["reason"] = str(error.orig)
        else:
            details["reason"] = str(error)
        return details

    @staticmethod
    def _changed_values(record: Any) -> dict[str, Any]:
        state = sa_inspect(record)
        changes: dict[str, Any] = {}
        for prop in state.mapper.column_attrs:
            history = state.attrs[prop.key].history
            if history.added:
                changes[prop.key] = history.added[0]
        return changes

    @staticmethod
    def _expected_version(record: Any) -> int | None:
        # The interceptor already advanced the version by one
        if isinstance(record, Auditable) and record.version is not None:
            return record.version - 1
        return None
