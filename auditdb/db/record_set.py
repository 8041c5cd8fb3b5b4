"""
Record Sets

Typed handles over a single entity kind inside a ``PersistenceSession``.

What This Provides:
===================
- add(record)      → Stage a new record (INSERT on commit)
- add_all(records) → Stage several new records
- find(id)         → Direct key lookup, soft-deleted rows included
- get_by_ids()     → Fetch multiple records by key
- count()          → Count records with filtering
- exists()         → Check if a record exists
- list()           → List records with pagination and filtering
- remove(record)   → Soft delete (flag) or hard delete (no flag)

Generic Type Pattern:
=====================
    invoices: RecordSet[Invoice] = session.set(Invoice)
    invoice = await invoices.find(invoice_id)  # Invoice | None, not Any

Soft Delete Visibility:
=======================
``find`` is a primary-key lookup and returns the row whatever its flag.
``list`` and ``count`` hide rows with ``is_deleted = True`` unless
``include_deleted=True`` is passed or the caller filters on the flag itself.

Nothing here writes to the database directly. Staged changes are persisted
by ``PersistenceSession.commit()``, which runs the audit interceptor first.
"""

from typing import TYPE_CHECKING, Any, Generic, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import Select, false, select
from sqlalchemy.sql.functions import count

from auditdb.config.constants import SOFT_DELETE_FIELD
from auditdb.models.base import Base, SoftDeletable

if TYPE_CHECKING:
    from auditdb.db.session import PersistenceSession

# TypeVar bound to Base ensures we only work with SQLAlchemy models
ModelType = TypeVar("ModelType", bound=Base)


class RecordSet(Generic[ModelType]):
    """
    Typed access to one mapped model within a persistence session.

    Attributes:
        model: The SQLAlchemy model class
        session: The owning persistence session
    """

    def __init__(self, model: type[ModelType], session: "PersistenceSession") -> None:
        self.model = model
        self.session = session

    @property
    def soft_deletes(self) -> bool:
        """Whether removal of this model is a flag update."""
        return hasattr(self.model, SOFT_DELETE_FIELD)

    # ═══════════════════════════════════════════════════════════════════════════
    # WRITE OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def add(self, record: ModelType) -> ModelType:
        """
        Stage a new record for insertion.

        Audit fields are stamped at commit time, not here.

        Args:
            record: A transient model instance

        Returns:
            The same instance, now pending in the session
        """
        self.session.ensure_usable("add records to")
        self.session.orm_session.add(record)
        return record

    def add_all(self, records: Iterable[ModelType]) -> list[ModelType]:
        """Stage several new records for insertion."""
        self.session.ensure_usable("add records to")
        staged = list(records)
        self.session.orm_session.add_all(staged)
        return staged

    async def remove(self, record: ModelType) -> None:
        """
        Remove a record.

        Soft-deletable records get ``is_deleted = True`` and are written as
        an ordinary update on commit, so their version and modification
        stamps advance. Records without the flag are handed to the ORM's
        delete.

        Args:
            record: A persistent model instance
        """
        self.session.ensure_usable("remove records from")
        if isinstance(record, SoftDeletable):
            record.is_deleted = True
            return
        await self.session.orm_session.delete(record)

    # ═══════════════════════════════════════════════════════════════════════════
    # READ OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def find(self, entity_id: UUID) -> ModelType | None:
        """
        Get a single record by its primary key.

        Served from the session's identity map when already loaded.

        Args:
            entity_id: Primary key of the record

        Returns:
            The model instance if found, None otherwise
        """
        self.session.ensure_usable("query")
        return await self.session.orm_session.get(self.model, entity_id)

    async def get_by_ids(self, ids: list[UUID]) -> list[ModelType]:
        """
        Get multiple records by their primary keys in one IN query.

        Args:
            ids: Keys to fetch

        Returns:
            Instances found (may be fewer than requested)
        """
        if not ids:
            return []

        self.session.ensure_usable("query")
        result = await self.session.orm_session.execute(
            select(self.model).where(self.model.id.in_(ids))
        )
        return list(result.scalars().all())

    async def count(
        self,
        filters: dict[str, Any] | None = None,
        include_deleted: bool = False,
    ) -> int:
        """
        Count records with optional filtering.

        Args:
            filters: Dict of field=value for WHERE clauses
            include_deleted: Count soft-deleted rows too

        Returns:
            Number of matching records
        """
        self.session.ensure_usable("query")
        query = select(count()).select_from(self.model)
        query = self._apply_filters(query, filters, include_deleted)

        result = await self.session.orm_session.execute(query)
        return result.scalar() or 0

    async def exists(self, entity_id: UUID) -> bool:
        """Check if a record exists without loading it."""
        self.session.ensure_usable("query")
        result = await self.session.orm_session.execute(
            select(count()).select_from(self.model).where(self.model.id == entity_id)
        )
        return (result.scalar() or 0) > 0

    async def list(
        self,
        *,
        offset: int = 0,
        limit: int = 100,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        order_desc: bool = True,
        include_deleted: bool = False,
    ) -> list[ModelType]:
        """
        List records with pagination and optional filtering.

        Args:
            offset: Number of records to skip (for pagination)
            limit: Maximum records to return (default 100)
            filters: Dict of field=value for WHERE clauses
            order_by: Field name to order results by
            order_desc: If True, order descending; if False, ascending
            include_deleted: Return soft-deleted rows too

        Returns:
            List of model instances

        Example:
            recent = await invoices.list(limit=20, order_by="modified_on")

        SQL Generated:
            SELECT * FROM invoices
            WHERE is_deleted = false
            ORDER BY modified_on DESC
            LIMIT 20 OFFSET 0
        """
        self.session.ensure_usable("query")
        query = self._apply_filters(select(self.model), filters, include_deleted)

        # Apply ordering: ORDER BY field [DESC|ASC]
        if order_by and hasattr(self.model, order_by):
            order_field = getattr(self.model, order_by)
            query = query.order_by(order_field.desc() if order_desc else order_field)

        # Apply pagination: OFFSET x LIMIT y
        query = query.offset(offset).limit(limit)

        result = await self.session.orm_session.execute(query)
        return list(result.scalars().all())

    def _apply_filters(
        self,
        query: Select,
        filters: dict[str, Any] | None,
        include_deleted: bool,
    ) -> Select:
        filters = filters or {}

        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        # Hide soft-deleted rows unless asked, or unless the caller filters on the flag
        if self.soft_deletes and not include_deleted and SOFT_DELETE_FIELD not in filters:
            query = query.where(getattr(self.model, SOFT_DELETE_FIELD) == false())

        return query
