"""
Audit Field Interceptor

Stamps audit metadata on pending records before a commit is flushed.

Stamping Rules:
===============
┌─────────────────────────────────────────────────────────────────────────────┐
│                                                                             │
│   ADDED (auditable):                                                        │
│     created_on  = now          created_by  = actor                          │
│     modified_on = now          modified_by = actor                          │
│     version     = 1                                                         │
│                                                                             │
│   MODIFIED (auditable, including is_deleted = True):                        │
│     modified_on = now          modified_by = actor                          │
│     version     = version + 1                                               │
│                                                                             │
│   NOT AUDITABLE:                                                            │
│     untouched                                                               │
│                                                                             │
└─────────────────────────────────────────────────────────────────────────────┘

The interceptor is handed the pending records by the session and keeps no
state between calls. A record is stamped at most once per call, even if it
appears in both lists or twice in one list.
Without an actor, both actor fields are written as null; a modification
never inherits the previous modifier.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from auditdb.core.utils import utc_now
from auditdb.models.base import Auditable

Clock = Callable[[], datetime]


@dataclass
class AuditResult:
    """Records stamped by one interceptor run."""

    added: list[Any] = field(default_factory=list)
    modified: list[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified)


class AuditFieldInterceptor:
    """Applies audit timestamps, actors and versions to auditable records."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock

    def intercept(
        self,
        added: Iterable[Any],
        modified: Iterable[Any],
        actor_id: uuid.UUID | None = None,
    ) -> AuditResult:
        """Stamp every auditable record in ``added`` and ``modified``.

        Args:
            added: Records pending INSERT
            modified: Records pending UPDATE
            actor_id: Identity to record as creator/modifier, if any

        Returns:
            The auditable records that were stamped, by change kind
        """
        now = self.clock()
        result = AuditResult()
        seen: set[int] = set()

        for record in added:
            if not isinstance(record, Auditable) or id(record) in seen:
                continue
            seen.add(id(record))
            record.created_on = now
            record.created_by = actor_id
            record.modified_on = now
            record.modified_by = actor_id
            record.version = 1
            result.added.append(record)

        for record in modified:
            if not isinstance(record, Auditable) or id(record) in seen:
                continue
            seen.add(id(record))
            record.modified_on = now
            record.modified_by = actor_id
            record.version = (record.version or 0) + 1
            result.modified.append(record)

        return result
