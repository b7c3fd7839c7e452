# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cohort-to-cohort promotion batches.

This module provides the PromotionBatchExecutor for:
- Loading a source cohort into a draft batch and classifying it
- Operator selection, target and confirmation commands
- Executing a confirmed batch as one all-or-nothing unit
- Rejecting a batch

Batch states: Draft -> Confirmed -> Executed, or Draft/Confirmed -> Rejected.
Executed and Rejected are terminal. Every mutating command carries the
batch version the operator last saw.
"""

import logging
from functools import partial
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import PromotionPolicySettings, get_settings
from src.domains.lifecycle.capacity import CapacityGuard
from src.domains.lifecycle.eligibility import EligibilityEvaluator
from src.domains.lifecycle.errors import (
    BatchExecutionError,
    CapacityExceededError,
    ConflictError,
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from src.domains.lifecycle.ports import (
    AuditEntry,
    AuditSink,
    CapacitySnapshot,
    CohortMember,
    LifecycleCollaborators,
)
from src.domains.lifecycle.repository import LifecycleRepository
from src.infrastructure.audit import DatabaseAuditSink
from src.infrastructure.database.models import (
    AcademicSnapshot,
    PromotionBatch,
    StudentLifecycleRecord,
    generate_uuid,
)
from src.infrastructure.notifications import NotificationOutbox
from src.models.lifecycle import (
    AuditSeverity,
    BatchExecutionResponse,
    BatchStatus,
    BatchSummary,
    CapacityPreviewResponse,
    ExecutionOutcome,
    LifecycleStatus,
    PromotionBatchResponse,
    StudentRecordResponse,
)
from src.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[None]]


class PromotionBatchExecutor:
    """Service orchestrating promotion batches.

    Attributes:
        db: Async database session.
    """

    def __init__(
        self,
        db: AsyncSession,
        collaborators: LifecycleCollaborators,
        capacity_guard: CapacityGuard | None = None,
        policy: PromotionPolicySettings | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            db: Async database session.
            collaborators: Roster, capacity, fee and notification services.
            capacity_guard: Process-wide guard; a private one is created if omitted.
            policy: Promotion policy; defaults to application settings.
            audit: Audit sink; defaults to the database sink on the same session.
        """
        self.db = db
        self._collaborators = collaborators
        self._policy = policy or get_settings().promotion
        self._evaluator = EligibilityEvaluator(self._policy.min_attendance_pct)
        self._guard = capacity_guard or CapacityGuard(collaborators.capacity)
        self._repo = LifecycleRepository(db)
        self._audit = audit or DatabaseAuditSink(db)
        self._outbox = NotificationOutbox(db, max_attempts=self._policy.notification_max_attempts)

    # =========================================================================
    # Cohort loading
    # =========================================================================

    async def select_cohort(
        self,
        source_class: str,
        source_year: str,
        actor: str,
    ) -> PromotionBatchResponse:
        """Load a source cohort into a new draft batch.

        Every listed student is upserted into the record store, classified
        and claimed by the batch. Eligible students start selected.

        Args:
            source_class: Source class identifier.
            source_year: Source academic year.
            actor: Operator identifier.

        Returns:
            The new draft batch.

        Raises:
            NotFoundError: If the roster lists nobody for the cohort.
            ConflictError: If a student is held by another in-flight batch.
            InvalidStateError: If a listed student is archived.
        """
        members = await self._collaborators.roster.list_cohort(source_class, source_year)
        if not members:
            raise NotFoundError(f"No students found for {source_class} {source_year}")

        batch = PromotionBatch(
            id=generate_uuid(),
            source_class=source_class,
            source_year=source_year,
            status=BatchStatus.DRAFT,
            created_by=actor,
        )
        self.db.add(batch)

        eligible = 0
        try:
            await self._repo.flush()
            for position, member in enumerate(members, start=1):
                record = await self._claim_record(batch.id, member, source_class, source_year)
                self._classify(record)
                await self._repo.flush()
                self._repo.add_candidate(batch.id, record.id, position)
                if record.status == LifecycleStatus.ELIGIBLE:
                    eligible += 1
        except LifecycleError:
            await self.db.rollback()
            raise

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="select-cohort",
                entity_type="batch",
                entity_id=batch.id,
                details={
                    "source_class": source_class,
                    "source_year": source_year,
                    "candidates": len(members),
                    "eligible": eligible,
                },
            )
        )
        await self._repo.commit()

        logger.info(
            "Selected cohort: batch=%s, class=%s, year=%s, candidates=%d, eligible=%d, by=%s",
            batch.id,
            source_class,
            source_year,
            len(members),
            eligible,
            actor,
        )
        return await self.get_batch(batch.id)

    async def refresh_cohort(
        self,
        batch_id: str,
        version: int,
        actor: str,
    ) -> PromotionBatchResponse:
        """Re-read roster inputs and re-evaluate the batch.

        Conditional candidates keep their override. Newly listed students
        are added and students no longer listed are released.

        Raises:
            NotFoundError: If the batch does not exist.
            InvalidStateError: If the batch is Executed or Rejected.
            ConflictError: On a version mismatch or a student held elsewhere.
        """
        batch = await self._repo.require_batch(batch_id)
        self._repo.require_in_flight(batch)
        self._repo.check_version(batch, version)

        members = await self._collaborators.roster.list_cohort(
            batch.source_class, batch.source_year
        )
        candidates = await self._repo.list_candidates(batch.id)
        by_student = {r.student_id: r for r in candidates}
        position = await self._repo.next_candidate_position(batch.id)
        listed: set[str] = set()
        added = 0

        try:
            for member in members:
                listed.add(member.student_id)
                record = by_student.get(member.student_id)
                if record is None:
                    record = await self._claim_record(
                        batch.id, member, batch.source_class, batch.source_year
                    )
                    self._classify(record)
                    await self._repo.flush()
                    self._repo.add_candidate(batch.id, record.id, position)
                    position += 1
                    added += 1
                    continue

                self._repo.apply_member(record, member, batch.source_class, batch.source_year)
                if record.status == LifecycleStatus.CONDITIONAL:
                    continue

                was_eligible = record.status == LifecycleStatus.ELIGIBLE
                record.status = self._evaluator.evaluate(record.attendance_pct, record.exam_result)
                if record.status == LifecycleStatus.RETAINED:
                    record.selected_for_batch = False
                elif not was_eligible:
                    record.selected_for_batch = True
        except LifecycleError:
            await self.db.rollback()
            raise

        removed = [r for r in candidates if r.student_id not in listed]
        for record in removed:
            await self._repo.remove_candidate(batch.id, record.id)
        self._repo.release_claims(removed)

        await self._repo.reopen_if_confirmed(batch)
        self._repo.touch(batch)
        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="refresh-cohort",
                entity_type="batch",
                entity_id=batch.id,
                details={"added": added, "removed": [r.student_id for r in removed]},
            )
        )
        await self._repo.commit()

        logger.info(
            "Refreshed cohort: batch=%s, added=%d, removed=%d, by=%s",
            batch.id,
            added,
            len(removed),
            actor,
        )
        return await self.get_batch(batch.id)

    async def _claim_record(
        self,
        batch_id: str,
        member: CohortMember,
        class_id: str,
        academic_year: str,
    ) -> StudentLifecycleRecord:
        record = await self._repo.get_active_record(member.student_id)
        if record is None:
            if await self._repo.has_archived_record(member.student_id):
                raise InvalidStateError(
                    f"Student {member.student_id} is archived; reactivate before promoting"
                )
            record = self._repo.new_record(member, class_id, academic_year)
        else:
            if record.claimed_by_batch_id and record.claimed_by_batch_id != batch_id:
                raise ConflictError(
                    f"Student {member.student_id} is held by promotion batch "
                    f"{record.claimed_by_batch_id}"
                )
            self._repo.apply_member(record, member, class_id, academic_year)

        record.claimed_by_batch_id = batch_id
        return record

    def _classify(self, record: StudentLifecycleRecord) -> None:
        """Reset a record to its default evaluation for a new batch."""
        status = self._evaluator.evaluate(record.attendance_pct, record.exam_result)
        record.status = status
        record.override_id = None
        record.selected_for_batch = status == LifecycleStatus.ELIGIBLE
        record.clear_proposed_placement()

    # =========================================================================
    # Operator commands
    # =========================================================================

    async def set_target(
        self,
        batch_id: str,
        version: int,
        target_class: str,
        target_year: str,
        actor: str,
        target_section: str | None = None,
    ) -> PromotionBatchResponse:
        """Set the class and year the batch promotes into."""
        if not target_class.strip() or not target_year.strip():
            raise ValidationError("Target class and year are required")

        batch = await self._repo.require_batch(batch_id)
        self._repo.require_in_flight(batch)
        self._repo.check_version(batch, version)

        batch.target_class = target_class.strip()
        batch.target_year = target_year.strip()
        batch.target_section = target_section or self._policy.default_section

        await self._repo.reopen_if_confirmed(batch)
        self._repo.touch(batch)
        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="set-target",
                entity_type="batch",
                entity_id=batch.id,
                details={
                    "target_class": batch.target_class,
                    "target_year": batch.target_year,
                    "target_section": batch.target_section,
                },
            )
        )
        await self._repo.commit()
        return await self.get_batch(batch.id)

    async def toggle_selection(
        self,
        batch_id: str,
        version: int,
        student_id: str,
        actor: str,
    ) -> PromotionBatchResponse:
        """Flip one candidate's selection.

        Raises:
            NotFoundError: If the student is not a candidate of the batch.
            InvalidStateError: If the student is Retained without an override.
            ConflictError: On a version mismatch.
        """
        batch = await self._repo.require_batch(batch_id)
        self._repo.require_in_flight(batch)
        self._repo.check_version(batch, version)

        candidates = await self._repo.list_candidates(batch.id)
        record = next((r for r in candidates if r.student_id == student_id), None)
        if record is None:
            raise NotFoundError(f"Student {student_id} is not part of batch {batch.id}")

        if record.status == LifecycleStatus.RETAINED:
            raise InvalidStateError(
                f"Student {student_id} is retained; apply an override before selecting"
            )

        record.selected_for_batch = not record.selected_for_batch
        if record.status == LifecycleStatus.CONDITIONAL:
            await self._audit.append(
                AuditEntry(
                    actor=actor,
                    action="override-reselected" if record.selected_for_batch else "override-deselected",
                    entity_type="student",
                    entity_id=student_id,
                    severity=AuditSeverity.WARNING,
                    details={"batch_id": batch.id, "override_id": record.override_id},
                )
            )
        else:
            await self._audit.append(
                AuditEntry(
                    actor=actor,
                    action="toggle-selection",
                    entity_type="student",
                    entity_id=student_id,
                    details={"batch_id": batch.id, "selected": record.selected_for_batch},
                )
            )

        await self._repo.reopen_if_confirmed(batch)
        self._repo.touch(batch)
        await self._repo.commit()
        return await self.get_batch(batch.id)

    async def bulk_select(
        self,
        batch_id: str,
        version: int,
        include: bool,
        actor: str,
    ) -> PromotionBatchResponse:
        """Select or deselect every candidate that is not Retained."""
        batch = await self._repo.require_batch(batch_id)
        self._repo.require_in_flight(batch)
        self._repo.check_version(batch, version)

        changed = 0
        for record in await self._repo.list_candidates(batch.id):
            if record.status == LifecycleStatus.RETAINED:
                continue
            if record.selected_for_batch == include:
                continue
            record.selected_for_batch = include
            changed += 1
            if record.status == LifecycleStatus.CONDITIONAL and not include:
                await self._audit.append(
                    AuditEntry(
                        actor=actor,
                        action="override-deselected",
                        entity_type="student",
                        entity_id=record.student_id,
                        severity=AuditSeverity.WARNING,
                        details={"batch_id": batch.id, "override_id": record.override_id},
                    )
                )

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="bulk-select",
                entity_type="batch",
                entity_id=batch.id,
                details={"include": include, "changed": changed},
            )
        )
        await self._repo.reopen_if_confirmed(batch)
        self._repo.touch(batch)
        await self._repo.commit()
        return await self.get_batch(batch.id)

    async def capacity_preview(self, batch_id: str) -> CapacityPreviewResponse:
        """Advisory capacity projection for the batch's current selection.

        Raises:
            NotFoundError: If the batch does not exist.
            ValidationError: If the batch has no target yet.
        """
        batch = await self._repo.require_batch(batch_id)
        if not batch.target_class or not batch.target_year:
            raise ValidationError(f"Batch {batch.id} has no target class")

        candidates = await self._repo.list_candidates(batch.id)
        selected_count = sum(1 for r in candidates if r.selected_for_batch)
        check, _ = await self._guard.advisory_check(
            batch.target_class, batch.target_year, selected_count
        )
        return CapacityPreviewResponse(
            target_class=batch.target_class,
            target_year=batch.target_year,
            capacity=check.capacity,
            current_enrolled=check.current_enrolled,
            selected_count=selected_count,
            projected_enrollment=check.projected_enrollment,
            fill_ratio=check.fill_ratio,
            is_over_capacity=not check.ok,
        )

    async def confirm(
        self,
        batch_id: str,
        version: int,
        actor: str,
        target_class: str | None = None,
        target_year: str | None = None,
        target_section: str | None = None,
    ) -> PromotionBatchResponse:
        """Confirm a draft batch after the advisory capacity check.

        Proposed placements are assigned in batch order, with rolls
        continuing from the target's current enrollment.

        Raises:
            InvalidStateError: If the batch is not Draft.
            ConflictError: On a version mismatch.
            ValidationError: If there is no target or nobody is selected.
            CapacityExceededError: If the selection does not fit; the batch
                is left unchanged.
        """
        batch = await self._repo.require_batch(batch_id)
        if batch.status != BatchStatus.DRAFT:
            raise InvalidStateError(
                f"Only draft batches can be confirmed; batch {batch.id} is {batch.status.value}"
            )
        self._repo.check_version(batch, version)

        target_class = target_class or batch.target_class
        target_year = target_year or batch.target_year
        section = target_section or batch.target_section or self._policy.default_section
        if not target_class or not target_year:
            raise ValidationError("A target class and year are required to confirm")

        candidates = await self._repo.list_candidates(batch.id)
        selected = [r for r in candidates if r.selected_for_batch]
        if not selected:
            raise ValidationError("No students are selected for promotion")

        check, snapshot = await self._guard.advisory_check(target_class, target_year, len(selected))
        check.raise_if_exceeded()

        batch.target_class = target_class
        batch.target_year = target_year
        batch.target_section = section
        for position, record in enumerate(selected, start=1):
            record.proposed_class_id = target_class
            record.proposed_section = section
            record.proposed_roll = snapshot.current_enrolled + position

        batch.status = BatchStatus.CONFIRMED
        batch.confirmed_by = actor
        batch.confirmed_at = utc_now()
        self._repo.touch(batch)

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="confirm-promotion-batch",
                entity_type="batch",
                entity_id=batch.id,
                details={
                    "target_class": target_class,
                    "target_year": target_year,
                    "selected": len(selected),
                    "projected_enrollment": check.projected_enrollment,
                    "capacity": check.capacity,
                },
            )
        )
        await self._repo.commit()

        logger.info(
            "Confirmed batch: batch=%s, target=%s, selected=%d, projected=%d, by=%s",
            batch.id,
            target_class,
            len(selected),
            check.projected_enrollment,
            actor,
        )
        return await self.get_batch(batch.id)

    async def reject(
        self,
        batch_id: str,
        version: int,
        actor: str,
        reason: str | None = None,
    ) -> PromotionBatchResponse:
        """Abandon a batch and release its candidates."""
        batch = await self._repo.require_batch(batch_id)
        self._repo.require_in_flight(batch)
        self._repo.check_version(batch, version)

        candidates = await self._repo.list_candidates(batch.id)
        self._repo.release_claims(candidates)
        for record in candidates:
            record.clear_proposed_placement()

        batch.status = BatchStatus.REJECTED
        batch.rejection_reason = reason
        self._repo.touch(batch)

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="reject-promotion-batch",
                entity_type="batch",
                entity_id=batch.id,
                reason=reason,
            )
        )
        await self._repo.commit()

        logger.info("Rejected batch: batch=%s, by=%s", batch.id, actor)
        return await self.get_batch(batch.id)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, batch_id: str, version: int, actor: str) -> BatchExecutionResponse:
        """Execute a confirmed batch as one all-or-nothing unit.

        Capacity is re-checked against a fresh snapshot first. Then every
        selected student is promoted. If any student fails, local changes
        are rolled back and external calls already made are compensated.

        Args:
            batch_id: Batch to execute.
            version: Batch version the operator last saw.
            actor: Operator identifier.

        Returns:
            Execution result; outcome is already_executed, with no side
            effects, when the batch was executed before.

        Raises:
            InvalidStateError: If the batch is not Confirmed.
            ConflictError: On a version mismatch or concurrent execution.
            CapacityExceededError: If the fresh snapshot no longer fits; the
                batch returns to Draft.
            BatchExecutionError: If any student failed; the batch stays
                Confirmed.
        """
        batch = await self._repo.require_batch(batch_id)
        if batch.status == BatchStatus.EXECUTED:
            logger.info("Batch already executed: batch=%s", batch.id)
            return BatchExecutionResponse(
                batch_id=batch.id,
                outcome=ExecutionOutcome.ALREADY_EXECUTED,
                version=batch.version,
            )
        if batch.status != BatchStatus.CONFIRMED:
            raise InvalidStateError(
                f"Only confirmed batches can be executed; batch {batch.id} is {batch.status.value}"
            )
        self._repo.check_version(batch, version)

        candidates = await self._repo.list_candidates(batch.id)
        selected = [r for r in candidates if r.selected_for_batch]
        promoted_ids = [r.student_id for r in selected]
        retained_ids = [r.student_id for r in candidates if not r.selected_for_batch]

        try:
            async with self._guard.reserve(
                batch.target_class, batch.target_year, len(selected)
            ) as snapshot:
                queued = await self._commit_promotions(batch, selected, candidates, snapshot, actor)
        except CapacityExceededError as e:
            await self._return_to_draft(batch, candidates, actor, e)
            raise

        notifications_sent = await self._outbox.dispatch_pending(
            self._collaborators.notifier, entry_ids=queued
        )

        logger.info(
            "Executed batch: batch=%s, promoted=%d, retained=%d, notified=%d, by=%s",
            batch.id,
            len(promoted_ids),
            len(retained_ids),
            notifications_sent,
            actor,
        )
        return BatchExecutionResponse(
            batch_id=batch.id,
            outcome=ExecutionOutcome.EXECUTED,
            version=batch.version,
            promoted_student_ids=promoted_ids,
            retained_student_ids=retained_ids,
            notifications_sent=notifications_sent,
        )

    async def _commit_promotions(
        self,
        batch: PromotionBatch,
        selected: list[StudentLifecycleRecord],
        candidates: list[StudentLifecycleRecord],
        snapshot: CapacitySnapshot,
        actor: str,
    ) -> list[str]:
        """Promote every selected student and commit, or undo everything.

        Returns:
            Outbox entry ids queued for the promoted students.
        """
        batch_id = batch.id
        compensations: list[Compensation] = []
        failures: dict[str, str] = {}
        queued: list[str] = []

        for position, record in enumerate(selected, start=1):
            student_id = record.student_id
            try:
                queued.append(
                    await self._promote_student(batch, record, position, snapshot, actor, compensations)
                )
            except Exception as e:
                failures[student_id] = str(e) or type(e).__name__
                logger.warning(
                    "Promotion failed: batch=%s, student=%s, error=%s",
                    batch_id,
                    student_id,
                    str(e),
                )

        if failures:
            await self.db.rollback()
            await self._compensate(batch_id, compensations)
            raise BatchExecutionError(batch_id, failures)

        batch.status = BatchStatus.EXECUTED
        batch.executed_by = actor
        batch.executed_at = utc_now()
        self._repo.release_claims(candidates)
        self._repo.touch(batch)

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="execute-promotion-batch",
                entity_type="batch",
                entity_id=batch_id,
                details={
                    "target_class": batch.target_class,
                    "target_year": batch.target_year,
                    "promoted": [r.student_id for r in selected],
                    "retained": [r.student_id for r in candidates if r not in selected],
                },
            )
        )

        try:
            await self._repo.commit()
        except Exception:
            try:
                await self.db.rollback()
            finally:
                await self._compensate(batch_id, compensations)
            raise
        return queued

    async def _promote_student(
        self,
        batch: PromotionBatch,
        record: StudentLifecycleRecord,
        position: int,
        snapshot: CapacitySnapshot,
        actor: str,
        compensations: list[Compensation],
    ) -> str:
        roster = self._collaborators.roster
        fee = self._collaborators.fee
        student_id = record.student_id
        target_class = batch.target_class
        target_year = batch.target_year
        section = batch.target_section or self._policy.default_section
        roll = snapshot.current_enrolled + position
        prior_class, prior_section, prior_roll = record.class_id, record.section, record.roll

        self.db.add(
            AcademicSnapshot(
                student_id=student_id,
                record_id=record.id,
                batch_id=batch.id,
                academic_year=record.academic_year,
                class_id=prior_class,
                section=prior_section,
                roll=prior_roll,
                attendance_pct=record.attendance_pct,
                academic_score=record.academic_score,
                exam_result=record.exam_result,
                status=record.status,
            )
        )

        await roster.apply_placement(student_id, target_class, section, roll)
        compensations.append(
            partial(roster.apply_placement, student_id, prior_class, prior_section, prior_roll)
        )

        await fee.assign_fee_structure(student_id, target_year)
        compensations.append(partial(fee.revoke_fee_structure, student_id, target_year))

        previous_year = record.academic_year
        record.class_id = target_class
        record.section = section
        record.roll = roll
        record.academic_year = target_year
        record.proposed_class_id = target_class
        record.proposed_section = section
        record.proposed_roll = roll

        notification_id = self._outbox.queue_promotion_notice(
            student_id,
            record.guardian_contact,
            {
                "batch_id": batch.id,
                "from_class": prior_class,
                "to_class": target_class,
                "section": section,
                "roll": roll,
                "academic_year": target_year,
            },
        )

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="promote-student",
                entity_type="student",
                entity_id=student_id,
                details={
                    "batch_id": batch.id,
                    "from_class": prior_class,
                    "from_year": previous_year,
                    "to_class": target_class,
                    "to_year": target_year,
                    "section": section,
                    "roll": roll,
                    "override_id": record.override_id,
                },
            )
        )
        return notification_id

    async def _compensate(self, batch_id: str, compensations: list[Compensation]) -> None:
        """Undo external calls in reverse order."""
        for undo in reversed(compensations):
            try:
                await undo()
            except Exception:
                logger.exception("Compensation failed: batch=%s, action=%s", batch_id, undo)

    async def _return_to_draft(
        self,
        batch: PromotionBatch,
        candidates: list[StudentLifecycleRecord],
        actor: str,
        error: CapacityExceededError,
    ) -> None:
        batch.status = BatchStatus.DRAFT
        batch.confirmed_by = None
        batch.confirmed_at = None
        for record in candidates:
            record.clear_proposed_placement()
        self._repo.touch(batch)

        await self._audit.append(
            AuditEntry(
                actor=actor,
                action="capacity-recheck-failed",
                entity_type="batch",
                entity_id=batch.id,
                reason=str(error),
                severity=AuditSeverity.WARNING,
                details={"projected": error.projected, "capacity": error.capacity},
            )
        )
        await self._repo.commit()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_batch(self, batch_id: str) -> PromotionBatchResponse:
        """Get a batch with its candidates and promotion summary.

        Raises:
            NotFoundError: If the batch does not exist.
        """
        batch = await self._repo.require_batch(batch_id)
        candidates = await self._repo.list_candidates(batch.id)
        overrides = await self._repo.get_overrides(
            [r.override_id for r in candidates if r.override_id]
        )

        items = []
        for record in candidates:
            item = StudentRecordResponse.model_validate(record)
            override = overrides.get(record.override_id) if record.override_id else None
            if override is not None:
                item = item.model_copy(
                    update={"override_reason": override.reason, "override_by": override.approved_by}
                )
            items.append(item)

        promoting = sum(1 for r in candidates if r.selected_for_batch)
        return PromotionBatchResponse(
            id=batch.id,
            source_class=batch.source_class,
            source_year=batch.source_year,
            target_class=batch.target_class,
            target_section=batch.target_section,
            target_year=batch.target_year,
            status=batch.status,
            version=batch.version,
            created_by=batch.created_by,
            created_at=ensure_utc(batch.created_at),
            confirmed_by=batch.confirmed_by,
            confirmed_at=ensure_utc(batch.confirmed_at),
            executed_by=batch.executed_by,
            executed_at=ensure_utc(batch.executed_at),
            rejection_reason=batch.rejection_reason,
            summary=BatchSummary(
                total=len(candidates),
                promoting=promoting,
                retained=len(candidates) - promoting,
                conditional=sum(
                    1 for r in candidates if r.status == LifecycleStatus.CONDITIONAL
                ),
            ),
            candidates=items,
        )
