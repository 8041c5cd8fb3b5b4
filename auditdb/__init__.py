"""
auditdb - Audited Persistence Sessions

A session factory over SQLAlchemy's asyncio ORM, providing:
- Provider connection options: retry on transient failure, diagnostics flags
- Audit stamping: created/modified timestamps, actors, row versions
- Soft delete through an ``is_deleted`` flag
- A commit observer notified once per successful commit
"""

__version__ = "0.1.0"
