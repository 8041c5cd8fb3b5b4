"""
auditdb SQLAlchemy Models

Models Overview:
================
- Base: Declarative base for every persisted model
- AuditableMixin: Audit columns, UUID key, optimistic-concurrency version
- Auditable: Structural protocol the audit interceptor dispatches on
- SoftDeletable: Structural protocol for flag-based removal

Usage:
======
    from auditdb.models import Base, AuditableMixin

    class Customer(Base, AuditableMixin):
        __tablename__ = "customers"
        name: Mapped[str] = mapped_column(String(200))
"""

from auditdb.models.base import Auditable, AuditableMixin, Base, SoftDeletable

__all__ = [
    "Base",
    "AuditableMixin",
    "Auditable",
    "SoftDeletable",
]
