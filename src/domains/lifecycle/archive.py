# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Alumni archive and reactivation.

This module provides the ArchiveRegistry for:
- Archiving a whole cohort or a single student with an exit status
- Reactivating an archived student under audit
- The alumni directory

Archive entries are never deleted. Reactivation creates a new active
record and annotates the original entry once.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import PromotionPolicySettings, get_settings
from src.domains.lifecycle.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.domains.lifecycle.ports import (
    AuditEntry,
    AuditSink,
    CohortMember,
    LifecycleCollaborators,
)
from src.domains.lifecycle.repository import LifecycleRepository
from src.infrastructure.audit import DatabaseAuditSink
from src.infrastructure.database.models import (
    ArchiveEntry,
    StudentLifecycleRecord,
    generate_uuid,
)
from src.infrastructure.notifications import NotificationOutbox
from src.models.lifecycle import (
    AlumniListResponse,
    ArchiveEntryResponse,
    AuditSeverity,
    BulkArchiveResponse,
    ExitStatus,
    LifecycleStatus,
    ReactivationResponse,
    StudentRecordResponse,
)
from src.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class ArchiveRegistry:
    """Service moving students into and back out of the alumni archive.

    Attributes:
        db: Async database session.
    """

    def __init__(
        self,
        db: AsyncSession,
        collaborators: LifecycleCollaborators,
        policy: PromotionPolicySettings | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        """Initialize the archive registry.

        Args:
            db: Async database session.
            collaborators: Roster and notification services are used.
            policy: Promotion policy; defaults to application settings.
            audit: Audit sink; defaults to the database sink on the same session.
        """
        self.db = db
        self._collaborators = collaborators
        self._policy = policy or get_settings().promotion
        self._repo = LifecycleRepository(db)
        self._audit = audit or DatabaseAuditSink(db)
        self._outbox = NotificationOutbox(db, max_attempts=self._policy.notification_max_attempts)

    async def bulk_archive(
        self,
        source_class: str,
        source_year: str,
        exit_status: ExitStatus,
        expected_count: int,
        actor: str,
        reason: str | None = None,
    ) -> BulkArchiveResponse:
        """Archive every active student of a cohort in one transaction.

        The cohort is the roster listing plus any active record already
        stored for the class and year. Students already archived are not
        part of it.

        Args:
            source_class: Class to archive.
            source_year: Academic year of the class.
            exit_status: Exit status recorded on every entry.
            expected_count: Cohort size the operator confirmed.
            actor: Operator identifier.
            reason: Optional note stored on each entry.

        Returns:
            Bulk archive result.

        Raises:
            ValidationError: If expected_count differs from the cohort size.
            NotFoundError: If the cohort is empty.
            ConflictError: If a student is held by an in-flight promotion batch.
        """
        members = await self._collaborators.roster.list_cohort(source_class, source_year)
        records = {
            r.student_id: r
            for r in await self._repo.list_active_cohort(source_class, source_year)
        }
        listed: dict[str, CohortMember] = {}
        unknown: list[CohortMember] = []

        for member in members:
            listed[member.student_id] = member
            if member.student_id in records:
                continue
            record = await self._repo.get_active_record(member.student_id)
            if record is not None:
                records[member.student_id] = record
            elif not await self._repo.has_archived_record(member.student_id):
                unknown.append(member)

        cohort_size = len(records) + len(unknown)
        if expected_count != cohort_size:
            raise ValidationError(
                f"Expected {expected_count} students but {source_class} {source_year} "
                f"has {cohort_size}; reload and retry",
                code="count_mismatch",
            )
        if cohort_size == 0:
            raise NotFoundError(f"No active students found for {source_class} {source_year}")

        for record in records.values():
            self._ensure_unclaimed(record)

        for student_id, record in records.items():
            member = listed.get(student_id)
            if member is not None:
                self._repo.apply_member(record, member, source_class, source_year)
        for member in unknown:
            records[member.student_id] = self._repo.new_record(member, source_class, source_year)
        await self._repo.flush()

        entries: list[ArchiveEntry] = []
        queued: list[str] = []
        for record in records.values():
            entry, notification_id = await self._archive_record(record, exit_status, actor, reason)
            entries.append(entry)
            queued.append(notification_id)

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="bulk-archive",
                entity_type="cohort",
                entity_id=f"{source_class}:{source_year}",
                reason=reason or f"Archived cohort as {exit_status.value}",
                details={
                    "exit_status": exit_status.value,
                    "count": len(entries),
                    "student_ids": [e.student_id for e in entries],
                },
            )
        )
        await self._repo.commit()

        logger.info(
            "Bulk archived cohort: class=%s, year=%s, exit_status=%s, count=%d, by=%s",
            source_class,
            source_year,
            exit_status.value,
            len(entries),
            actor,
        )

        await self._outbox.dispatch_pending(self._collaborators.notifier, entry_ids=queued)

        items = [self._entry_response(e) for e in entries]
        return BulkArchiveResponse(
            source_class=source_class,
            source_year=source_year,
            exit_status=exit_status,
            archived_count=len(items),
            alumni_batch=items[0].alumni_batch if items else None,
            entries=items,
        )

    async def archive_student(
        self,
        student_id: str,
        exit_status: ExitStatus,
        actor: str,
        reason: str | None = None,
    ) -> ArchiveEntryResponse:
        """Archive one student.

        Raises:
            NotFoundError: If the student has no active record.
            ConflictError: If the student is held by an in-flight promotion batch.
        """
        record = await self._repo.get_active_record(student_id)
        if record is None:
            raise NotFoundError(f"No active record for student {student_id}")
        self._ensure_unclaimed(record)

        entry, notification_id = await self._archive_record(record, exit_status, actor, reason)
        await self._repo.commit()

        logger.info(
            "Archived student: student=%s, exit_status=%s, by=%s",
            student_id,
            exit_status.value,
            actor,
        )

        await self._outbox.dispatch_pending(
            self._collaborators.notifier, entry_ids=[notification_id]
        )
        return self._entry_response(entry)

    async def reactivate(
        self,
        student_id: str,
        reason: str,
        restored_by: str,
    ) -> ReactivationResponse:
        """Restore an archived student to active status.

        A new Eligible record is created with the student's identity and a
        blank placement. The archive entry is kept and annotated.

        Args:
            student_id: Archived student.
            reason: Mandatory justification.
            restored_by: Operator identifier.

        Returns:
            The new record and the annotated archive entry.

        Raises:
            ValidationError: If the reason is blank.
            NotFoundError: If the student was never archived.
            InvalidStateError: If the student is currently active.
        """
        reason_text = (reason or "").strip()
        if not reason_text:
            raise ValidationError("Reactivation reason is required", code="empty_reason")

        entry = await self._repo.latest_archive_entry(student_id)
        if entry is None:
            raise NotFoundError(f"No archive entry for student {student_id}")

        if await self._repo.get_active_record(student_id) is not None:
            raise InvalidStateError(f"Student {student_id} is already active")
        if entry.is_reactivated:
            raise InvalidStateError(f"Archive entry {entry.id} was already reactivated")

        archived = await self._repo.get_record(entry.record_id)
        if archived is None:
            raise NotFoundError(f"Archived record {entry.record_id} not found")

        record = StudentLifecycleRecord(
            id=generate_uuid(),
            student_id=student_id,
            name=entry.name,
            status=LifecycleStatus.ELIGIBLE,
            selected_for_batch=False,
            attendance_pct=archived.attendance_pct,
            academic_score=archived.academic_score,
            exam_result=archived.exam_result,
            guardian_contact=archived.guardian_contact,
            reactivated_from_id=entry.id,
        )
        self.db.add(record)

        entry.reactivation_reason = reason_text
        entry.restored_by = restored_by
        entry.restored_at = utc_now()

        await self._audit.append(
            AuditEntry(
                actor=restored_by,
                action="reactivate-student",
                entity_type="student",
                entity_id=student_id,
                reason=reason_text,
                severity=AuditSeverity.WARNING,
                details={"archive_entry_id": entry.id, "record_id": record.id},
            )
        )
        await self._repo.commit()

        logger.info(
            "Reactivated student: student=%s, entry=%s, by=%s",
            student_id,
            entry.id,
            restored_by,
        )
        return ReactivationResponse(
            record=StudentRecordResponse.model_validate(record),
            archive_entry=self._entry_response(entry),
        )

    async def list_alumni(
        self,
        search: str | None = None,
        batch_year: str | None = None,
        exit_status: ExitStatus | None = None,
        include_reactivated: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> AlumniListResponse:
        """List the alumni directory."""
        entries, total = await self._repo.search_alumni(
            search=search,
            batch_year=batch_year,
            exit_status=exit_status,
            include_reactivated=include_reactivated,
            limit=limit,
            offset=offset,
        )
        return AlumniListResponse(
            items=[self._entry_response(e) for e in entries],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_archive_entry(self, entry_id: str) -> ArchiveEntryResponse:
        """Get one archive entry.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        entry = await self._repo.get_archive_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Archive entry {entry_id} not found")
        return self._entry_response(entry)

    # =========================================================================
    # Helper methods
    # =========================================================================

    @staticmethod
    def _ensure_unclaimed(record: StudentLifecycleRecord) -> None:
        if record.claimed_by_batch_id:
            raise ConflictError(
                f"Student {record.student_id} is held by promotion batch "
                f"{record.claimed_by_batch_id}"
            )

    async def _archive_record(
        self,
        record: StudentLifecycleRecord,
        exit_status: ExitStatus,
        actor: str,
        reason: str | None,
    ) -> tuple[ArchiveEntry, str]:
        entry = ArchiveEntry(
            id=generate_uuid(),
            student_id=record.student_id,
            record_id=record.id,
            name=record.name,
            archived_from_class=record.class_id,
            archived_from_section=record.section,
            archived_year=record.academic_year,
            exit_status=exit_status,
            archived_at=utc_now(),
            archived_by=actor,
            archive_reason=reason,
        )
        self.db.add(entry)

        record.status = LifecycleStatus.ARCHIVED
        record.selected_for_batch = False
        record.clear_proposed_placement()

        notification_id = self._outbox.queue_archive_confirmation(
            record.student_id, record.guardian_contact, exit_status
        )
        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="archive-student",
                entity_type="student",
                entity_id=record.student_id,
                reason=reason or f"Archived as {exit_status.value}",
                details={
                    "archive_entry_id": entry.id,
                    "class_id": record.class_id,
                    "academic_year": record.academic_year,
                    "exit_status": exit_status.value,
                },
            )
        )
        return entry, notification_id

    @staticmethod
    def _entry_response(entry: ArchiveEntry) -> ArchiveEntryResponse:
        return ArchiveEntryResponse(
            id=entry.id,
            student_id=entry.student_id,
            name=entry.name,
            archived_from_class=entry.archived_from_class,
            archived_from_section=entry.archived_from_section,
            archived_year=entry.archived_year,
            alumni_batch=entry.alumni_batch,
            exit_status=entry.exit_status,
            archived_at=ensure_utc(entry.archived_at),
            archived_by=entry.archived_by,
            reactivation_reason=entry.reactivation_reason,
            restored_by=entry.restored_by,
            restored_at=ensure_utc(entry.restored_at),
        )
