# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database-backed audit sink.

Entries are added to the caller's session so a mutation and its audit
entry commit, or roll back, together. Rows are append-only: the ORM
rejects updates and deletes on AuditLog.
"""

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models import AuditLog
from src.models.lifecycle import AuditSeverity

if TYPE_CHECKING:
    from src.domains.lifecycle.ports import AuditEntry

logger = logging.getLogger(__name__)


class DatabaseAuditSink:
    """Audit sink writing to the lifecycle_audit_log table.

    Attributes:
        db: Async database session shared with the mutating service.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def append(self, entry: "AuditEntry") -> None:
        """Append an entry to the audit log in the current transaction.

        Args:
            entry: Audit entry to record.
        """
        self.db.add(
            AuditLog(
                actor=entry.actor,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                reason=entry.reason,
                severity=entry.severity,
                details=dict(entry.details),
            )
        )
        logger.debug(
            "Audit: actor=%s, action=%s, entity=%s:%s",
            entry.actor,
            entry.action,
            entry.entity_type,
            entry.entity_id,
        )

    async def list_entries(
        self,
        search: str | None = None,
        severity: AuditSeverity | None = None,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Query the audit log in chronological order.

        Args:
            search: Case-insensitive match on actor, action, entity id or reason.
            severity: Severity filter.
            action: Exact action filter.
            entity_type: Entity type filter.
            entity_id: Entity id filter.
            limit: Page size.
            offset: Page offset.

        Returns:
            Tuple of (entries, total count).
        """
        query = select(AuditLog)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(AuditLog.actor).like(pattern),
                    func.lower(AuditLog.action).like(pattern),
                    func.lower(AuditLog.entity_id).like(pattern),
                    func.lower(AuditLog.reason).like(pattern),
                )
            )
        if severity:
            query = query.where(AuditLog.severity == severity)
        if action:
            query = query.where(AuditLog.action == action)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.where(AuditLog.entity_id == entity_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        result = await self.db.execute(query.order_by(AuditLog.id).offset(offset).limit(limit))
        return list(result.scalars().all()), total
