# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exception promotions for retained students.

An override promotes a Retained candidate of an in-flight batch. It always
carries a justification, is written once and never deleted, and is audited
at warning severity. Deselecting a Conditional candidate later keeps the
override record.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.lifecycle.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.domains.lifecycle.ports import AuditEntry, AuditSink
from src.domains.lifecycle.repository import LifecycleRepository
from src.infrastructure.audit import DatabaseAuditSink
from src.infrastructure.database.models import OverrideRecord, generate_uuid
from src.models.lifecycle import AuditSeverity, LifecycleStatus

logger = logging.getLogger(__name__)


class OverrideManager:
    """Grants and lists override promotions.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession, audit: AuditSink | None = None) -> None:
        """Initialize the override manager.

        Args:
            db: Async database session.
            audit: Audit sink; defaults to the database sink on the same session.
        """
        self.db = db
        self._repo = LifecycleRepository(db)
        self._audit = audit or DatabaseAuditSink(db)

    async def apply_override(
        self,
        student_id: str,
        reason: str,
        approver: str,
        expected_version: int | None = None,
        batch_id: str | None = None,
    ) -> OverrideRecord:
        """Promote a retained student by exception.

        Args:
            student_id: Student to promote.
            reason: Mandatory justification.
            approver: Operator granting the override.
            expected_version: Batch version the operator last saw.
            batch_id: Batch the operator is working in, if known.

        Returns:
            The created override record.

        Raises:
            ValidationError: If the reason is blank.
            NotFoundError: If the student has no active record.
            InvalidStateError: If the student is not Retained or not part of
                an in-flight batch.
            ConflictError: If the batch moved past expected_version.
        """
        reason_text = (reason or "").strip()
        if not reason_text:
            raise ValidationError("Override reason is required", code="empty_reason")

        record = await self._repo.get_active_record(student_id)
        if record is None:
            raise NotFoundError(f"Student {student_id} not found")

        if record.status != LifecycleStatus.RETAINED:
            raise InvalidStateError(
                f"Student {student_id} is {record.status.value}; "
                "only retained students can be overridden"
            )

        batch = None
        if record.claimed_by_batch_id:
            batch = await self._repo.get_batch(record.claimed_by_batch_id)
        if batch is None or not batch.is_in_flight:
            raise InvalidStateError(
                f"Student {student_id} is not part of an in-flight promotion batch"
            )

        if batch_id is not None and batch.id != batch_id:
            raise NotFoundError(f"Student {student_id} is not part of batch {batch_id}")

        if expected_version is not None:
            self._repo.check_version(batch, expected_version)

        override = OverrideRecord(
            id=generate_uuid(),
            student_id=student_id,
            record_id=record.id,
            batch_id=batch.id,
            reason=reason_text,
            approved_by=approver,
        )
        self.db.add(override)
        await self._repo.flush()

        record.override_id = override.id
        record.status = LifecycleStatus.CONDITIONAL
        record.selected_for_batch = True

        await self._repo.reopen_if_confirmed(batch)
        self._repo.touch(batch)

        await self._audit.append(
            AuditEntry(
                actor=approver,
                action="override-promotion",
                entity_type="student",
                entity_id=student_id,
                reason=reason_text,
                severity=AuditSeverity.WARNING,
                details={"batch_id": batch.id, "override_id": override.id},
            )
        )

        await self._repo.commit()

        logger.info(
            "Override applied: student=%s, batch=%s, by=%s",
            student_id,
            batch.id,
            approver,
        )
        return override

    async def list_overrides(self, student_id: str) -> list[OverrideRecord]:
        """List a student's override history, oldest first."""
        return await self._repo.list_overrides(student_id)
