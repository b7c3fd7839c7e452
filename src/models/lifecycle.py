# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student lifecycle enums and API models.

This module defines:
- The closed status vocabularies (lifecycle, exam result, batch, exit)
- Request bodies accepted by the promotion and alumni endpoints
- Response DTOs returned by the lifecycle services
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExamResult(str, Enum):
    """Final exam outcome for the academic year."""

    PASS = "pass"
    FAIL = "fail"
    WITHHELD = "withheld"


class LifecycleStatus(str, Enum):
    """Lifecycle status of a student record."""

    ELIGIBLE = "eligible"
    RETAINED = "retained"
    CONDITIONAL = "conditional"
    ARCHIVED = "archived"


class BatchStatus(str, Enum):
    """Promotion batch state."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    REJECTED = "rejected"


class ExitStatus(str, Enum):
    """Reason a student left active enrollment."""

    GRADUATED = "graduated"
    WITHDRAWN = "withdrawn"
    EXPELLED = "expelled"
    TRANSFER = "transfer"


class AuditSeverity(str, Enum):
    """Audit entry severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ExecutionOutcome(str, Enum):
    """Outcome of an execute request."""

    EXECUTED = "executed"
    ALREADY_EXECUTED = "already_executed"


# =============================================================================
# Request bodies
# =============================================================================


class ActorRequest(BaseModel):
    """Base body carrying the operator performing the command."""

    actor: str = Field(min_length=1, max_length=100, description="Operator identifier")


class VersionedRequest(ActorRequest):
    """Body for commands guarded by the batch concurrency token."""

    version: int = Field(ge=1, description="Batch version the operator last saw")


class CreateBatchRequest(ActorRequest):
    """Select a source cohort and open a draft batch."""

    source_class: str = Field(min_length=1, max_length=100)
    source_year: str = Field(min_length=1, max_length=20)


class SetTargetRequest(VersionedRequest):
    """Set the promotion target of a batch."""

    target_class: str = Field(min_length=1, max_length=100)
    target_year: str = Field(min_length=1, max_length=20)
    target_section: str | None = Field(default=None, max_length=20)


class ToggleSelectionRequest(VersionedRequest):
    """Flip the selection of one candidate."""

    student_id: str = Field(min_length=1)


class BulkSelectRequest(VersionedRequest):
    """Select or deselect every non-retained candidate."""

    include: bool


class ApplyOverrideRequest(VersionedRequest):
    """Grant an exception promotion to a retained candidate."""

    student_id: str = Field(min_length=1)
    reason: str = Field(description="Mandatory justification")


class ConfirmBatchRequest(VersionedRequest):
    """Confirm a draft batch, optionally setting the target in the same call."""

    target_class: str | None = None
    target_year: str | None = None
    target_section: str | None = None


class RejectBatchRequest(VersionedRequest):
    """Abandon a batch."""

    reason: str | None = None


class BulkArchiveRequest(ActorRequest):
    """Move a whole cohort into the alumni archive."""

    source_class: str = Field(min_length=1, max_length=100)
    source_year: str = Field(min_length=1, max_length=20)
    exit_status: ExitStatus
    expected_count: int = Field(ge=0, description="Cohort size the operator confirmed")
    reason: str | None = None


class ArchiveStudentRequest(ActorRequest):
    """Move one student into the alumni archive."""

    exit_status: ExitStatus
    reason: str | None = None


class ReactivateRequest(ActorRequest):
    """Restore an archived student to active status."""

    reason: str = Field(description="Mandatory justification")


# =============================================================================
# Responses
# =============================================================================


class StudentRecordResponse(BaseModel):
    """Student lifecycle record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    name: str
    class_id: str | None
    section: str | None
    roll: int | None
    academic_year: str | None
    attendance_pct: float
    academic_score: float | None
    exam_result: ExamResult
    status: LifecycleStatus
    selected_for_batch: bool
    override_id: str | None = None
    override_reason: str | None = None
    override_by: str | None = None
    proposed_class_id: str | None = None
    proposed_section: str | None = None
    proposed_roll: int | None = None
    reactivated_from_id: str | None = None


class BatchSummary(BaseModel):
    """Promotion summary shown in the action footer."""

    total: int
    promoting: int
    retained: int
    conditional: int


class PromotionBatchResponse(BaseModel):
    """Promotion batch with its candidates."""

    id: str
    source_class: str
    source_year: str
    target_class: str | None
    target_section: str | None
    target_year: str | None
    status: BatchStatus
    version: int
    created_by: str
    created_at: datetime
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    executed_by: str | None = None
    executed_at: datetime | None = None
    rejection_reason: str | None = None
    summary: BatchSummary
    candidates: list[StudentRecordResponse] = Field(default_factory=list)


class CapacityPreviewResponse(BaseModel):
    """Advisory capacity projection for a batch target."""

    target_class: str
    target_year: str
    capacity: int | None = Field(description="None means unlimited")
    current_enrolled: int
    selected_count: int
    projected_enrollment: int
    fill_ratio: float | None
    is_over_capacity: bool


class BatchExecutionResponse(BaseModel):
    """Result of executing a batch."""

    batch_id: str
    outcome: ExecutionOutcome
    version: int
    promoted_student_ids: list[str] = Field(default_factory=list)
    retained_student_ids: list[str] = Field(default_factory=list)
    notifications_sent: int = 0


class OverrideResponse(BaseModel):
    """Audited override record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    batch_id: str | None
    reason: str
    approved_by: str
    created_at: datetime


class ArchiveEntryResponse(BaseModel):
    """Alumni archive entry."""

    id: str
    student_id: str
    name: str
    archived_from_class: str | None
    archived_from_section: str | None
    archived_year: str | None
    alumni_batch: str | None
    exit_status: ExitStatus
    archived_at: datetime
    archived_by: str
    reactivation_reason: str | None = None
    restored_by: str | None = None
    restored_at: datetime | None = None


class BulkArchiveResponse(BaseModel):
    """Result of a bulk archive."""

    source_class: str
    source_year: str
    exit_status: ExitStatus
    archived_count: int
    alumni_batch: str | None
    entries: list[ArchiveEntryResponse]


class ReactivationResponse(BaseModel):
    """Result of reactivating an archived student."""

    record: StudentRecordResponse
    archive_entry: ArchiveEntryResponse


class AlumniListResponse(BaseModel):
    """Paginated alumni directory."""

    items: list[ArchiveEntryResponse]
    total: int
    limit: int
    offset: int


class AuditEntryResponse(BaseModel):
    """Audit log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    actor: str
    action: str
    entity_type: str
    entity_id: str
    reason: str | None
    severity: AuditSeverity
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AuditListResponse(BaseModel):
    """Paginated audit log."""

    items: list[AuditEntryResponse]
    total: int
    limit: int
    offset: int
