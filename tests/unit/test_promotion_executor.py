# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for promotion batches.

Tests run against a SQLite record store and in-memory collaborators.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from src.domains.lifecycle import (
    BatchExecutionError,
    CapacityExceededError,
    ConflictError,
    InvalidStateError,
    LifecycleCommandHandler,
    NotFoundError,
    ValidationError,
)
from src.infrastructure.audit import DatabaseAuditSink
from src.infrastructure.database.models import AcademicSnapshot, StudentLifecycleRecord
from src.models.lifecycle import (
    BatchStatus,
    ExamResult,
    ExecutionOutcome,
    LifecycleStatus,
)
from tests.conftest import SOURCE_CLASS, SOURCE_YEAR, TARGET_CLASS, TARGET_YEAR
from tests.fakes import member


def _by_student(batch):
    return {c.student_id: c for c in batch.candidates}


async def _draft_with_target(handler: LifecycleCommandHandler):
    batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")
    return await handler.promotions.set_target(
        batch.id, batch.version, TARGET_CLASS, TARGET_YEAR, "registrar"
    )


async def _active_record(db_session, student_id: str) -> StudentLifecycleRecord:
    result = await db_session.execute(
        select(StudentLifecycleRecord)
        .where(
            StudentLifecycleRecord.student_id == student_id,
            StudentLifecycleRecord.status != LifecycleStatus.ARCHIVED,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestSelectCohort:
    """Tests for loading a cohort into a draft batch."""

    @pytest.mark.asyncio
    async def test_default_evaluation(self, handler, loaded_roster):
        """Eligible students start selected, retained ones do not."""
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        assert batch.status == BatchStatus.DRAFT
        assert batch.version == 1
        assert [c.student_id for c in batch.candidates] == [
            "S1", "S2", "S3", "S4", "S5", "S6", "S7",
        ]

        selected = {c.student_id for c in batch.candidates if c.selected_for_batch}
        retained = {
            c.student_id for c in batch.candidates if c.status == LifecycleStatus.RETAINED
        }
        assert selected == {"S1", "S2", "S4", "S7"}
        assert retained == {"S3", "S5", "S6"}
        assert batch.summary.total == 7
        assert batch.summary.promoting == 4
        assert batch.summary.retained == 3
        assert batch.summary.conditional == 0

    @pytest.mark.asyncio
    async def test_empty_cohort(self, handler, roster):
        with pytest.raises(NotFoundError):
            await handler.promotions.select_cohort("9", SOURCE_YEAR, "registrar")

    @pytest.mark.asyncio
    async def test_student_held_by_another_batch(self, handler, loaded_roster):
        """A student can be claimed by only one in-flight batch."""
        await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        with pytest.raises(ConflictError):
            await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "deputy")

    @pytest.mark.asyncio
    async def test_rejected_batch_releases_students(self, handler, loaded_roster):
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")
        await handler.promotions.reject(batch.id, batch.version, "registrar", reason="Wrong year")

        second = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        assert second.id != batch.id
        assert second.summary.total == 7


class TestSelection:
    """Tests for operator selection commands."""

    @pytest.mark.asyncio
    async def test_toggle_retained_rejected(self, handler, loaded_roster):
        """A retained student cannot be selected without an override."""
        batch = await _draft_with_target(handler)

        with pytest.raises(InvalidStateError):
            await handler.promotions.toggle_selection(batch.id, batch.version, "S3", "registrar")

        reloaded = await handler.promotions.get_batch(batch.id)
        assert reloaded.version == batch.version
        assert _by_student(reloaded)["S3"].selected_for_batch is False

    @pytest.mark.asyncio
    async def test_toggle_eligible(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        updated = await handler.promotions.toggle_selection(
            batch.id, batch.version, "S1", "registrar"
        )

        assert _by_student(updated)["S1"].selected_for_batch is False
        assert updated.summary.promoting == 3
        assert updated.version == batch.version + 1

    @pytest.mark.asyncio
    async def test_toggle_unknown_student(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        with pytest.raises(NotFoundError):
            await handler.promotions.toggle_selection(batch.id, batch.version, "S99", "registrar")

    @pytest.mark.asyncio
    async def test_bulk_select_skips_retained(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        cleared = await handler.promotions.bulk_select(batch.id, batch.version, False, "registrar")
        assert cleared.summary.promoting == 0

        restored = await handler.promotions.bulk_select(
            cleared.id, cleared.version, True, "registrar"
        )
        assert {c.student_id for c in restored.candidates if c.selected_for_batch} == {
            "S1", "S2", "S4", "S7",
        }

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, handler, loaded_roster):
        """A command made against an outdated batch view is a conflict."""
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")
        await handler.promotions.set_target(
            batch.id, batch.version, TARGET_CLASS, TARGET_YEAR, "registrar"
        )

        with pytest.raises(ConflictError):
            await handler.promotions.toggle_selection(batch.id, batch.version, "S1", "registrar")

    @pytest.mark.asyncio
    async def test_concurrent_session_sees_new_version(
        self, session_factory, collaborators, policy, loaded_roster
    ):
        """Two operators acting on the same version: the second one conflicts."""
        async with session_factory() as first_db, session_factory() as second_db:
            first = LifecycleCommandHandler(first_db, collaborators, policy=policy)
            second = LifecycleCommandHandler(second_db, collaborators, policy=policy)

            batch = await first.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")
            await first.promotions.toggle_selection(batch.id, batch.version, "S1", "registrar")

            with pytest.raises(ConflictError):
                await second.promotions.toggle_selection(
                    batch.id, batch.version, "S2", "deputy"
                )


class TestConfirm:
    """Tests for batch confirmation."""

    @pytest.mark.asyncio
    async def test_confirm_assigns_proposed_placements(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        assert confirmed.status == BatchStatus.CONFIRMED
        assert confirmed.confirmed_by == "principal"
        candidates = _by_student(confirmed)
        assert [candidates[s].proposed_roll for s in ("S1", "S2", "S4", "S7")] == [13, 14, 15, 16]
        assert candidates["S1"].proposed_class_id == TARGET_CLASS
        assert candidates["S1"].proposed_section == "A"
        assert candidates["S3"].proposed_roll is None

    @pytest.mark.asyncio
    async def test_confirm_over_capacity_leaves_batch_unchanged(
        self, handler, loaded_roster, capacity
    ):
        capacity.set_class(TARGET_CLASS, TARGET_YEAR, capacity=35, enrolled=32)
        batch = await _draft_with_target(handler)

        with pytest.raises(CapacityExceededError):
            await handler.promotions.confirm(batch.id, batch.version, "principal")

        reloaded = await handler.promotions.get_batch(batch.id)
        assert reloaded.status == BatchStatus.DRAFT
        assert reloaded.version == batch.version

    @pytest.mark.asyncio
    async def test_confirm_requires_target(self, handler, loaded_roster):
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        with pytest.raises(ValidationError):
            await handler.promotions.confirm(batch.id, batch.version, "principal")

    @pytest.mark.asyncio
    async def test_confirm_requires_selection(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)
        batch = await handler.promotions.bulk_select(batch.id, batch.version, False, "registrar")

        with pytest.raises(ValidationError):
            await handler.promotions.confirm(batch.id, batch.version, "principal")

    @pytest.mark.asyncio
    async def test_selection_change_reopens_confirmed_batch(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        reopened = await handler.promotions.toggle_selection(
            confirmed.id, confirmed.version, "S7", "registrar"
        )

        assert reopened.status == BatchStatus.DRAFT
        assert reopened.confirmed_by is None
        assert all(c.proposed_roll is None for c in reopened.candidates)

    @pytest.mark.asyncio
    async def test_unlimited_alumni_target(self, handler, loaded_roster):
        """Promotion into an unlimited target never hits capacity."""
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")
        batch = await handler.promotions.set_target(
            batch.id, batch.version, "Alumni", "2025", "registrar"
        )

        preview = await handler.promotions.capacity_preview(batch.id)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        assert preview.capacity is None
        assert preview.fill_ratio is None
        assert preview.is_over_capacity is False
        assert confirmed.status == BatchStatus.CONFIRMED


class TestCapacityPreview:
    """Tests for the advisory capacity preview."""

    @pytest.mark.asyncio
    async def test_preview(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        preview = await handler.promotions.capacity_preview(batch.id)

        assert preview.current_enrolled == 12
        assert preview.selected_count == 4
        assert preview.projected_enrollment == 16
        assert preview.is_over_capacity is False

    @pytest.mark.asyncio
    async def test_preview_without_target(self, handler, loaded_roster):
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        with pytest.raises(ValidationError):
            await handler.promotions.capacity_preview(batch.id)


class TestExecute:
    """Tests for executing a confirmed batch."""

    @pytest.mark.asyncio
    async def test_seven_student_scenario(
        self, handler, db_session, loaded_roster, fee, notifier
    ):
        """Four eligible plus one override are promoted; two stay retained."""
        batch = await _draft_with_target(handler)
        override = await handler.overrides.apply_override(
            "S5", "Medical exemption", "principal", expected_version=batch.version
        )
        batch = await handler.promotions.get_batch(batch.id)
        s5 = _by_student(batch)["S5"]
        assert s5.status == LifecycleStatus.CONDITIONAL
        assert s5.selected_for_batch is True
        assert s5.override_id == override.id
        assert s5.override_reason == "Medical exemption"

        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")
        preview = await handler.promotions.capacity_preview(batch.id)
        assert preview.projected_enrollment == 17

        result = await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert result.promoted_student_ids == ["S1", "S2", "S4", "S5", "S7"]
        assert result.retained_student_ids == ["S3", "S6"]
        assert result.notifications_sent == 5

        assert loaded_roster.placements["S1"] == (TARGET_CLASS, "A", 13)
        assert loaded_roster.placements["S7"] == (TARGET_CLASS, "A", 17)
        assert "S3" not in loaded_roster.placements
        assert fee.assigned == {(s, TARGET_YEAR) for s in ("S1", "S2", "S4", "S5", "S7")}
        assert [n[0] for n in notifier.promotion_notices] == ["S1", "S2", "S4", "S5", "S7"]
        assert notifier.promotion_notices[0][1] == "guardian-s1@example.com"

        s1 = await _active_record(db_session, "S1")
        assert (s1.class_id, s1.academic_year, s1.roll) == (TARGET_CLASS, TARGET_YEAR, 13)
        assert s1.claimed_by_batch_id is None

        s3 = await _active_record(db_session, "S3")
        assert (s3.class_id, s3.academic_year, s3.roll) == (SOURCE_CLASS, SOURCE_YEAR, 3)
        assert s3.status == LifecycleStatus.RETAINED
        assert s3.claimed_by_batch_id is None

        snapshots = await db_session.execute(
            select(func.count()).select_from(AcademicSnapshot)
        )
        assert snapshots.scalar_one() == 5

        executed = await handler.promotions.get_batch(batch.id)
        assert executed.status == BatchStatus.EXECUTED
        assert executed.executed_by == "principal"

    @pytest.mark.asyncio
    async def test_execute_is_idempotent(self, handler, loaded_roster, fee, notifier):
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        first = await handler.promotions.execute(confirmed.id, confirmed.version, "principal")
        second = await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        assert first.outcome == ExecutionOutcome.EXECUTED
        assert second.outcome == ExecutionOutcome.ALREADY_EXECUTED
        assert second.promoted_student_ids == []
        assert len(fee.assign_calls) == 4
        assert len(notifier.promotion_notices) == 4

    @pytest.mark.asyncio
    async def test_execute_requires_confirmation(self, handler, loaded_roster):
        batch = await _draft_with_target(handler)

        with pytest.raises(InvalidStateError):
            await handler.promotions.execute(batch.id, batch.version, "principal")

    @pytest.mark.asyncio
    async def test_capacity_recheck_failure_returns_to_draft(
        self, handler, db_session, loaded_roster, capacity, fee
    ):
        """Capacity taken after confirmation blocks execution without mutation."""
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        capacity.set_class(TARGET_CLASS, TARGET_YEAR, capacity=35, enrolled=32)

        with pytest.raises(CapacityExceededError) as exc_info:
            await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        assert exc_info.value.projected == 36
        assert loaded_roster.placement_calls == []
        assert fee.assign_calls == []

        reloaded = await handler.promotions.get_batch(batch.id)
        assert reloaded.status == BatchStatus.DRAFT
        assert all(c.proposed_roll is None for c in reloaded.candidates)
        s1 = await _active_record(db_session, "S1")
        assert (s1.class_id, s1.academic_year) == (SOURCE_CLASS, SOURCE_YEAR)

        entries, _ = await DatabaseAuditSink(db_session).list_entries(
            action="capacity-recheck-failed"
        )
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_student_failure_rolls_back_batch(
        self, handler, db_session, loaded_roster, fee, notifier
    ):
        """One failing student undoes every promotion and leaves the batch re-executable."""
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")
        fee.fail_for = {"S4"}

        with pytest.raises(BatchExecutionError) as exc_info:
            await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        assert set(exc_info.value.failures) == {"S4"}
        assert fee.assigned == set()
        assert set(fee.revoked) == {(s, TARGET_YEAR) for s in ("S1", "S2", "S7")}
        assert loaded_roster.placements["S1"] == (SOURCE_CLASS, "A", 1)
        assert loaded_roster.placements["S4"] == (SOURCE_CLASS, "A", 4)
        assert notifier.promotion_notices == []

        reloaded = await handler.promotions.get_batch(confirmed.id)
        assert reloaded.status == BatchStatus.CONFIRMED
        assert reloaded.version == confirmed.version
        s1 = await _active_record(db_session, "S1")
        assert (s1.class_id, s1.academic_year, s1.roll) == (SOURCE_CLASS, SOURCE_YEAR, 1)

        fee.fail_for = set()
        retried = await handler.promotions.execute(reloaded.id, reloaded.version, "principal")

        assert retried.outcome == ExecutionOutcome.EXECUTED
        assert fee.assigned == {(s, TARGET_YEAR) for s in ("S1", "S2", "S4", "S7")}

    @pytest.mark.asyncio
    async def test_commit_failure_compensates(
        self, handler, db_session, loaded_roster, fee, notifier, monkeypatch
    ):
        """A database failure at the final commit undoes every external call."""
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")

        async def locked_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", locked_commit)

        with pytest.raises(OperationalError):
            await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        monkeypatch.undo()
        assert fee.assigned == set()
        assert set(fee.revoked) == {(s, TARGET_YEAR) for s in ("S1", "S2", "S4", "S7")}
        assert loaded_roster.placements["S1"] == (SOURCE_CLASS, "A", 1)
        assert loaded_roster.placements["S7"] == (SOURCE_CLASS, "A", 7)
        assert notifier.promotion_notices == []

        reloaded = await handler.promotions.get_batch(confirmed.id)
        assert reloaded.status == BatchStatus.CONFIRMED
        assert reloaded.version == confirmed.version
        s1 = await _active_record(db_session, "S1")
        assert (s1.class_id, s1.academic_year, s1.roll) == (SOURCE_CLASS, SOURCE_YEAR, 1)

        retried = await handler.promotions.execute(reloaded.id, reloaded.version, "principal")

        assert retried.outcome == ExecutionOutcome.EXECUTED
        assert fee.assigned == {(s, TARGET_YEAR) for s in ("S1", "S2", "S4", "S7")}

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_undo_promotion(
        self, handler, loaded_roster, notifier
    ):
        batch = await _draft_with_target(handler)
        confirmed = await handler.promotions.confirm(batch.id, batch.version, "principal")
        notifier.failing = True

        result = await handler.promotions.execute(confirmed.id, confirmed.version, "principal")

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert result.notifications_sent == 0


class TestRefreshCohort:
    """Tests for re-reading the roster into a batch."""

    @pytest.mark.asyncio
    async def test_refresh_adds_and_releases(self, handler, roster, seven_student_cohort):
        roster.set_cohort(SOURCE_CLASS, SOURCE_YEAR, seven_student_cohort)
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        updated = [m for m in seven_student_cohort if m.student_id != "S7"]
        updated.append(member("S8", 90, ExamResult.PASS, roll=8))
        roster.set_cohort(SOURCE_CLASS, SOURCE_YEAR, updated)

        refreshed = await handler.promotions.refresh_cohort(batch.id, batch.version, "registrar")

        ids = [c.student_id for c in refreshed.candidates]
        assert "S7" not in ids
        assert ids[-1] == "S8"
        assert _by_student(refreshed)["S8"].selected_for_batch is True

    @pytest.mark.asyncio
    async def test_refresh_reevaluates_inputs(self, handler, roster, seven_student_cohort):
        roster.set_cohort(SOURCE_CLASS, SOURCE_YEAR, seven_student_cohort)
        batch = await handler.promotions.select_cohort(SOURCE_CLASS, SOURCE_YEAR, "registrar")

        corrected = [
            member("S3", 90, ExamResult.PASS, roll=3) if m.student_id == "S3" else m
            for m in seven_student_cohort
        ]
        roster.set_cohort(SOURCE_CLASS, SOURCE_YEAR, corrected)

        refreshed = await handler.promotions.refresh_cohort(batch.id, batch.version, "registrar")

        s3 = _by_student(refreshed)["S3"]
        assert s3.status == LifecycleStatus.ELIGIBLE
        assert s3.selected_for_batch is True
