# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lifecycle record store models.

Tables:
- student_lifecycle_records: one row per student placement; archived rows
  are kept, reactivation inserts a new row
- promotion_batches / promotion_batch_candidates: a batch and the ordered
  reference set of records it covers
- override_records: immutable exception grants
- archive_entries: alumni archive, never deleted
- academic_snapshots: prior-year records archived on promotion
- lifecycle_audit_log: append-only audit trail
- notification_outbox: notifications queued inside a transaction and
  delivered after commit
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base, TimestampMixin, generate_uuid
from src.models.lifecycle import (
    AuditSeverity,
    BatchStatus,
    ExamResult,
    ExitStatus,
    LifecycleStatus,
)
from src.utils.datetime import utc_now


class ImmutableRecordError(Exception):
    """Raised when a flush would modify or delete an immutable row."""

    pass


def _enum_column(enum_cls: type[PyEnum]) -> Enum:
    """Store an Enum by value in a plain string column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class StudentLifecycleRecord(Base, TimestampMixin):
    """A student's lifecycle record.

    Every UPDATE increments the version counter, so a claim or archive
    written from a stale read fails at flush with StaleDataError.

    Attributes:
        student_id: Roster identifier; stable across reactivation.
        status: Closed lifecycle status.
        override_id: Override that made the record Conditional.
        claimed_by_batch_id: In-flight batch currently holding the record.
        reactivated_from_id: Archive entry this record reversed (lookup only).
    """

    __tablename__ = "student_lifecycle_records"
    __table_args__ = (
        CheckConstraint(
            "status != 'conditional' OR override_id IS NOT NULL",
            name="ck_conditional_requires_override",
        ),
        CheckConstraint(
            "NOT selected_for_batch OR status IN ('eligible', 'conditional')",
            name="ck_selection_requires_promotable_status",
        ),
        CheckConstraint(
            "attendance_pct >= 0 AND attendance_pct <= 100",
            name="ck_attendance_range",
        ),
        Index(
            "uq_active_student_record",
            "student_id",
            unique=True,
            sqlite_where=text("status != 'archived'"),
            postgresql_where=text("status != 'archived'"),
        ),
        Index("ix_records_cohort", "class_id", "academic_year"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    class_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    section: Mapped[str | None] = mapped_column(String(20), nullable=True)
    roll: Mapped[int | None] = mapped_column(Integer, nullable=True)
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)

    attendance_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    academic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    exam_result: Mapped[ExamResult] = mapped_column(
        _enum_column(ExamResult), nullable=False, default=ExamResult.WITHHELD
    )

    status: Mapped[LifecycleStatus] = mapped_column(
        _enum_column(LifecycleStatus), nullable=False, default=LifecycleStatus.ELIGIBLE
    )
    override_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("override_records.id"), nullable=True
    )

    proposed_class_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    proposed_section: Mapped[str | None] = mapped_column(String(20), nullable=True)
    proposed_roll: Mapped[int | None] = mapped_column(Integer, nullable=True)

    selected_for_batch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_by_batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("promotion_batches.id"), nullable=True, index=True
    )

    guardian_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reactivated_from_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        """Check whether the record is an active (non-archived) record."""
        return self.status != LifecycleStatus.ARCHIVED

    def clear_proposed_placement(self) -> None:
        """Drop any proposed placement computed at confirmation."""
        self.proposed_class_id = None
        self.proposed_section = None
        self.proposed_roll = None

    def __repr__(self) -> str:
        return f"<StudentLifecycleRecord {self.student_id} {self.status.value}>"


class PromotionBatch(Base, TimestampMixin):
    """A cohort-to-cohort promotion batch.

    The version column is SQLAlchemy's version counter: every UPDATE
    increments it and a concurrent writer's flush fails with StaleDataError.
    """

    __tablename__ = "promotion_batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    source_class: Mapped[str] = mapped_column(String(100), nullable=False)
    source_year: Mapped[str] = mapped_column(String(20), nullable=False)
    target_class: Mapped[str | None] = mapped_column(String(100), nullable=True)
    target_section: Mapped[str | None] = mapped_column(String(20), nullable=True)
    target_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[BatchStatus] = mapped_column(
        _enum_column(BatchStatus), nullable=False, default=BatchStatus.DRAFT
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    confirmed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_in_flight(self) -> bool:
        """Check whether the batch still holds its candidates."""
        return self.status in (BatchStatus.DRAFT, BatchStatus.CONFIRMED)

    def __repr__(self) -> str:
        return f"<PromotionBatch {self.id} {self.status.value} v{self.version}>"


class BatchCandidate(Base):
    """Reference from a batch to a record in the store, with its order."""

    __tablename__ = "promotion_batch_candidates"

    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("promotion_batches.id"), primary_key=True
    )
    record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_lifecycle_records.id"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)


class OverrideRecord(Base):
    """An audited exception promotion. Never updated, never deleted."""

    __tablename__ = "override_records"
    __table_args__ = (
        CheckConstraint("length(trim(reason)) > 0", name="ck_override_reason_not_blank"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(36), nullable=False)
    batch_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("promotion_batches.id"), nullable=True
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    approved_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class ArchiveEntry(Base):
    """Alumni archive entry.

    Only the reactivation annotation may be written after insert, and only
    once.
    """

    __tablename__ = "archive_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_lifecycle_records.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    archived_from_class: Mapped[str | None] = mapped_column(String(100), nullable=True)
    archived_from_section: Mapped[str | None] = mapped_column(String(20), nullable=True)
    archived_year: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    exit_status: Mapped[ExitStatus] = mapped_column(_enum_column(ExitStatus), nullable=False)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    archived_by: Mapped[str] = mapped_column(String(100), nullable=False)
    archive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    reactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    restored_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    restored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_reactivated(self) -> bool:
        """Check whether the entry carries a reactivation annotation."""
        return self.restored_at is not None

    @property
    def alumni_batch(self) -> str | None:
        """Alumni batch label: the end year of the archived academic year."""
        if not self.archived_year:
            return None
        return self.archived_year.split("-")[-1].strip()


class AcademicSnapshot(Base):
    """Prior-year academic record archived when a student is promoted."""

    __tablename__ = "academic_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("student_lifecycle_records.id"), nullable=False
    )
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("promotion_batches.id"), nullable=False
    )
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    class_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    section: Mapped[str | None] = mapped_column(String(20), nullable=True)
    roll: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attendance_pct: Mapped[float] = mapped_column(Float, nullable=False)
    academic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    exam_result: Mapped[ExamResult] = mapped_column(_enum_column(ExamResult), nullable=False)
    status: Mapped[LifecycleStatus] = mapped_column(
        _enum_column(LifecycleStatus), nullable=False
    )
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class AuditLog(Base):
    """Append-only audit entry. The integer id gives chronological order."""

    __tablename__ = "lifecycle_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[AuditSeverity] = mapped_column(
        _enum_column(AuditSeverity), nullable=False, default=AuditSeverity.INFO
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class NotificationOutboxEntry(Base):
    """A notification queued inside a lifecycle transaction."""

    __tablename__ = "notification_outbox"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    guardian_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# =============================================================================
# Immutability guards
# =============================================================================

_ARCHIVE_ANNOTATION_FIELDS = frozenset({"reactivation_reason", "restored_by", "restored_at"})


@event.listens_for(OverrideRecord, "before_update")
def _reject_override_update(mapper, connection, target: OverrideRecord) -> None:
    raise ImmutableRecordError(f"Override record {target.id} is immutable")


@event.listens_for(OverrideRecord, "before_delete")
def _reject_override_delete(mapper, connection, target: OverrideRecord) -> None:
    raise ImmutableRecordError(f"Override record {target.id} cannot be deleted")


@event.listens_for(ArchiveEntry, "before_delete")
def _reject_archive_delete(mapper, connection, target: ArchiveEntry) -> None:
    raise ImmutableRecordError(f"Archive entry {target.id} cannot be deleted")


@event.listens_for(ArchiveEntry, "before_update")
def _guard_archive_update(mapper, connection, target: ArchiveEntry) -> None:
    for attr in inspect(target).attrs:
        history = attr.history
        if not history.has_changes():
            continue
        if attr.key not in _ARCHIVE_ANNOTATION_FIELDS:
            raise ImmutableRecordError(f"Archive entry field {attr.key} is immutable")
        if any(value is not None for value in history.deleted):
            raise ImmutableRecordError(f"Archive entry {target.id} is already reactivated")


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target: AuditLog) -> None:
    raise ImmutableRecordError("Audit log entries are append-only")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target: AuditLog) -> None:
    raise ImmutableRecordError("Audit log entries are append-only")
