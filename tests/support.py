"""
Test Models and Session Doubles

Mapped models and session subclasses shared by the test suite.
"""

import asyncio
import uuid

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Mapped, mapped_column

from auditdb.db import PersistenceSession, RecordSet, SqliteSessionFactory
from auditdb.models import AuditableMixin, Base


# =============================================================================
# MODELS
# =============================================================================


class Widget(Base, AuditableMixin):
    """Auditable, soft-deletable record."""

    __tablename__ = "widgets"

    name: Mapped[str] = mapped_column(String(100))
    quantity: Mapped[int] = mapped_column(Integer, default=0)


class Note(Base):
    """Record without the audit capability."""

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    body: Mapped[str] = mapped_column(String(200))


# =============================================================================
# OBSERVERS
# =============================================================================


class RecordingObserver:
    """Counts commit notifications."""

    def __init__(self) -> None:
        self.calls = 0

    def on_saved(self) -> None:
        self.calls += 1


# =============================================================================
# SESSIONS
# =============================================================================


class InventorySession(PersistenceSession):
    """Session exposing typed record sets."""

    @property
    def widgets(self) -> RecordSet[Widget]:
        return self.set(Widget)

    @property
    def notes(self) -> RecordSet[Note]:
        return self.set(Note)


class FlakySession(InventorySession):
    """Fails the next ``transient_failures`` commit attempts with a dropped connection."""

    transient_failures = 0
    attempts = 0

    async def _flush_and_commit(self) -> None:
        self.attempts += 1
        if self.transient_failures:
            self.transient_failures -= 1
            raise OperationalError(
                "COMMIT", None, ConnectionResetError("connection reset by peer")
            )
        await super()._flush_and_commit()


class HangingSession(InventorySession):
    """Flushes, then blocks before committing until cancelled."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.flushed = asyncio.Event()

    async def _flush_and_commit(self) -> None:
        await self.orm_session.flush()
        self.flushed.set()
        await asyncio.sleep(3600)
        await self.orm_session.commit()


class InventorySessionFactory(SqliteSessionFactory[InventorySession]):
    session_class = InventorySession


class FlakySessionFactory(SqliteSessionFactory[FlakySession]):
    session_class = FlakySession


class HangingSessionFactory(SqliteSessionFactory[HangingSession]):
    session_class = HangingSession
