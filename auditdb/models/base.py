"""
Base Model Classes

This module provides the foundational classes for SQLAlchemy models persisted
through auditdb sessions: the declarative base, the auditable mixin, and the
structural protocols the session uses to decide which records to stamp.

Auditing is a capability, not a base type. The session checks each pending
record against the ``Auditable`` protocol at commit time; any mapped class
that carries the audit columns participates, whether or not it inherits
``AuditableMixin``.

SAMPLE AUDITABLE RECORD:
┌──────────────────────────────────────────────────────────────────────────────┐
│ id               │ 550e8400-e29b-41d4-a716-446655440000                      │
│ created_on       │ 2024-01-15T10:30:00Z   (first commit)                     │
│ created_by       │ 770e8400-e29b-41d4-a716-446655440002 (actor, optional)    │
│ modified_on      │ 2024-01-16T14:45:30Z   (latest commit)                    │
│ modified_by      │ 770e8400-e29b-41d4-a716-446655440002 (actor, optional)    │
│ synchronized_on  │ null                   (owned by external sync jobs)      │
│ version          │ 2                      (+1 per commit touching the row)   │
│ is_deleted       │ false                  (soft delete flag)                 │
└──────────────────────────────────────────────────────────────────────────────┘
"""

import uuid
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import Boolean, DateTime, Integer, Uuid, false
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    All models persisted through a ``PersistenceSession`` should inherit from
    this class either directly or together with ``AuditableMixin``.
    """


@runtime_checkable
class Auditable(Protocol):
    """Records that opt in to audit stamping on commit."""

    created_on: datetime | None
    created_by: uuid.UUID | None
    modified_on: datetime | None
    modified_by: uuid.UUID | None
    version: int | None
    is_deleted: bool


@runtime_checkable
class SoftDeletable(Protocol):
    """Records whose removal is a flag update rather than a DELETE."""

    is_deleted: bool


class AuditableMixin:
    """
    Mixin that adds audit columns and optimistic concurrency to models.

    The ``version`` column is registered as SQLAlchemy's ``version_id_col``
    with ``version_id_generator=False``: the audit interceptor assigns the
    next version itself, and SQLAlchemy adds ``WHERE version = <loaded>`` to
    every UPDATE, raising ``StaleDataError`` when another session won.

    Usage:
        class Invoice(Base, AuditableMixin):
            __tablename__ = "invoices"
            number: Mapped[str] = mapped_column(String(32))

    Note: Listing queries should filter out soft-deleted records:
        query.where(Invoice.is_deleted == false())
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        doc="Unique identifier, immutable after creation",
    )

    # Set once, at first commit
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    # Updated on every commit that changes the record
    modified_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    modified_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    # Written by external synchronization jobs, never by the session
    synchronized_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        index=True,
    )

    @declared_attr.directive
    def __mapper_args__(cls) -> dict[str, Any]:
        return {
            "version_id_col": cls.__table__.c.version,
            "version_id_generator": False,
        }
