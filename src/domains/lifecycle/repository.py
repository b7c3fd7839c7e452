# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lifecycle record store access.

Queries used by the promotion, override and archive services. Services own
their unit of work; commit() and flush() here translate optimistic locking
and unique-index failures into ConflictError.
"""

import logging
from typing import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from src.domains.lifecycle.errors import ConflictError, InvalidStateError, NotFoundError
from src.domains.lifecycle.ports import CohortMember
from src.infrastructure.database.models import (
    ArchiveEntry,
    BatchCandidate,
    OverrideRecord,
    PromotionBatch,
    StudentLifecycleRecord,
    generate_uuid,
)
from src.models.lifecycle import BatchStatus, ExitStatus, LifecycleStatus
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class LifecycleRepository:
    """Repository over the lifecycle tables.

    Attributes:
        db: Async database session shared with the calling service.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # =========================================================================
    # Unit of work
    # =========================================================================

    async def flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictError(
                "Lifecycle data was modified by another session; reload and retry"
            ) from e
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(f"Conflicting lifecycle record write: {e.orig}") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictError(
                "Lifecycle data was modified by another session; reload and retry"
            ) from e
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(f"Conflicting lifecycle record write: {e.orig}") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    # =========================================================================
    # Batches
    # =========================================================================

    async def get_batch(self, batch_id: str) -> PromotionBatch | None:
        result = await self.db.execute(
            select(PromotionBatch)
            .where(PromotionBatch.id == batch_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require_batch(self, batch_id: str) -> PromotionBatch:
        batch = await self.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Promotion batch {batch_id} not found")
        return batch

    @staticmethod
    def check_version(batch: PromotionBatch, version: int) -> None:
        """Reject a command made against an outdated view of the batch."""
        if batch.version != version:
            raise ConflictError(
                f"Batch {batch.id} is at version {batch.version}, "
                f"command was made against version {version}; reload and retry"
            )

    @staticmethod
    def require_in_flight(batch: PromotionBatch) -> None:
        if not batch.is_in_flight:
            raise InvalidStateError(
                f"Batch {batch.id} is {batch.status.value} and can no longer be changed"
            )

    async def list_candidates(self, batch_id: str) -> list[StudentLifecycleRecord]:
        """Return the batch's candidate records in batch order."""
        result = await self.db.execute(
            select(StudentLifecycleRecord)
            .join(BatchCandidate, BatchCandidate.record_id == StudentLifecycleRecord.id)
            .where(BatchCandidate.batch_id == batch_id)
            .order_by(BatchCandidate.position)
        )
        return list(result.scalars().all())

    async def next_candidate_position(self, batch_id: str) -> int:
        result = await self.db.execute(
            select(func.max(BatchCandidate.position)).where(BatchCandidate.batch_id == batch_id)
        )
        current = result.scalar_one_or_none()
        return (current or 0) + 1

    def add_candidate(self, batch_id: str, record_id: str, position: int) -> None:
        self.db.add(BatchCandidate(batch_id=batch_id, record_id=record_id, position=position))

    async def remove_candidate(self, batch_id: str, record_id: str) -> None:
        candidate = await self.db.get(BatchCandidate, (batch_id, record_id))
        if candidate is not None:
            await self.db.delete(candidate)

    async def reopen_if_confirmed(self, batch: PromotionBatch) -> bool:
        """Send a Confirmed batch back to Draft after its selection changed.

        Proposed placements computed at confirmation are dropped.

        Returns:
            True if the batch was reopened.
        """
        if batch.status != BatchStatus.CONFIRMED:
            return False
        batch.status = BatchStatus.DRAFT
        batch.confirmed_by = None
        batch.confirmed_at = None
        for record in await self.list_candidates(batch.id):
            record.clear_proposed_placement()
        return True

    @staticmethod
    def touch(batch: PromotionBatch) -> None:
        """Mark the batch modified so the flush advances its version."""
        batch.updated_at = utc_now()

    @staticmethod
    def release_claims(records: Sequence[StudentLifecycleRecord]) -> None:
        """Release records held by a batch and clear their selection."""
        for record in records:
            record.claimed_by_batch_id = None
            record.selected_for_batch = False

    # =========================================================================
    # Records
    # =========================================================================

    async def get_record(self, record_id: str) -> StudentLifecycleRecord | None:
        return await self.db.get(StudentLifecycleRecord, record_id)

    async def get_active_record(self, student_id: str) -> StudentLifecycleRecord | None:
        result = await self.db.execute(
            select(StudentLifecycleRecord).where(
                StudentLifecycleRecord.student_id == student_id,
                StudentLifecycleRecord.status != LifecycleStatus.ARCHIVED,
            )
        )
        return result.scalar_one_or_none()

    async def has_archived_record(self, student_id: str) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(StudentLifecycleRecord)
            .where(
                StudentLifecycleRecord.student_id == student_id,
                StudentLifecycleRecord.status == LifecycleStatus.ARCHIVED,
            )
        )
        return result.scalar_one() > 0

    async def list_active_cohort(
        self, class_id: str, academic_year: str
    ) -> list[StudentLifecycleRecord]:
        result = await self.db.execute(
            select(StudentLifecycleRecord)
            .where(
                StudentLifecycleRecord.class_id == class_id,
                StudentLifecycleRecord.academic_year == academic_year,
                StudentLifecycleRecord.status != LifecycleStatus.ARCHIVED,
            )
            .order_by(StudentLifecycleRecord.roll, StudentLifecycleRecord.name)
        )
        return list(result.scalars().all())

    def new_record(
        self, member: CohortMember, class_id: str, academic_year: str
    ) -> StudentLifecycleRecord:
        record = StudentLifecycleRecord(
            id=generate_uuid(),
            student_id=member.student_id,
            status=LifecycleStatus.ELIGIBLE,
            selected_for_batch=False,
        )
        self.apply_member(record, member, class_id, academic_year)
        self.db.add(record)
        return record

    @staticmethod
    def apply_member(
        record: StudentLifecycleRecord,
        member: CohortMember,
        class_id: str,
        academic_year: str,
    ) -> None:
        """Copy roster inputs onto a record."""
        record.name = member.name
        record.class_id = class_id
        record.academic_year = academic_year
        record.section = member.section
        record.roll = member.roll
        record.attendance_pct = member.attendance_pct
        record.academic_score = member.academic_score
        record.exam_result = member.exam_result
        record.guardian_contact = member.guardian_contact

    # =========================================================================
    # Overrides
    # =========================================================================

    async def get_overrides(self, override_ids: Sequence[str]) -> dict[str, OverrideRecord]:
        if not override_ids:
            return {}
        result = await self.db.execute(
            select(OverrideRecord).where(OverrideRecord.id.in_(list(override_ids)))
        )
        return {o.id: o for o in result.scalars().all()}

    async def list_overrides(self, student_id: str) -> list[OverrideRecord]:
        result = await self.db.execute(
            select(OverrideRecord)
            .where(OverrideRecord.student_id == student_id)
            .order_by(OverrideRecord.created_at)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Archive
    # =========================================================================

    async def get_archive_entry(self, entry_id: str) -> ArchiveEntry | None:
        return await self.db.get(ArchiveEntry, entry_id)

    async def latest_archive_entry(self, student_id: str) -> ArchiveEntry | None:
        result = await self.db.execute(
            select(ArchiveEntry)
            .where(ArchiveEntry.student_id == student_id)
            .order_by(ArchiveEntry.archived_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def search_alumni(
        self,
        search: str | None = None,
        batch_year: str | None = None,
        exit_status: ExitStatus | None = None,
        include_reactivated: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ArchiveEntry], int]:
        """Search the alumni archive.

        Args:
            search: Case-insensitive match on name or student id.
            batch_year: Alumni batch (end year of the archived academic year).
            exit_status: Exit status filter.
            include_reactivated: Include entries whose student was reactivated.
            limit: Page size.
            offset: Page offset.

        Returns:
            Tuple of (entries, total count).
        """
        query = select(ArchiveEntry)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(ArchiveEntry.name).like(pattern),
                    func.lower(ArchiveEntry.student_id).like(pattern),
                )
            )
        if batch_year:
            query = query.where(
                or_(
                    ArchiveEntry.archived_year == batch_year,
                    ArchiveEntry.archived_year.like(f"%-{batch_year}"),
                )
            )
        if exit_status:
            query = query.where(ArchiveEntry.exit_status == exit_status)
        if not include_reactivated:
            query = query.where(ArchiveEntry.restored_at.is_(None))

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        query = query.order_by(ArchiveEntry.archived_at.desc(), ArchiveEntry.name)
        query = query.offset(offset).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total
