# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Promotion batch API endpoints.

This module provides endpoints for cohort promotion:
- POST /batches - Select a source cohort into a draft batch
- GET /batches/{batch_id} - Get batch with candidates and summary
- GET /batches/{batch_id}/capacity - Advisory capacity preview
- POST /batches/{batch_id}/refresh - Re-read the cohort from the roster
- PUT /batches/{batch_id}/target - Set the target class and year
- POST /batches/{batch_id}/selection/toggle - Flip one candidate
- POST /batches/{batch_id}/selection/bulk - Select or deselect all
- POST /batches/{batch_id}/overrides - Grant an override promotion
- POST /batches/{batch_id}/confirm - Confirm a draft batch
- POST /batches/{batch_id}/execute - Execute a confirmed batch
- POST /batches/{batch_id}/reject - Reject a batch
- GET /students/{student_id}/overrides - Override history of a student

Mutating endpoints carry the batch version the operator last saw; a stale
version is answered with 409.
"""

import logging

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_command_handler, lifecycle_http_error
from src.domains.lifecycle import (
    ApplyOverride,
    BulkSelect,
    ConfirmBatch,
    ExecuteBatch,
    LifecycleCommandHandler,
    LifecycleError,
    RefreshCohort,
    RejectBatch,
    SelectSourceCohort,
    SetTarget,
    ToggleSelection,
)
from src.infrastructure.clients import CollaboratorError
from src.models.lifecycle import (
    ApplyOverrideRequest,
    BatchExecutionResponse,
    BulkSelectRequest,
    CapacityPreviewResponse,
    ConfirmBatchRequest,
    CreateBatchRequest,
    OverrideResponse,
    PromotionBatchResponse,
    RejectBatchRequest,
    SetTargetRequest,
    ToggleSelectionRequest,
    VersionedRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/batches",
    response_model=PromotionBatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Select source cohort",
    description="Load a class and year from the roster into a new draft batch.",
)
async def create_batch(
    data: CreateBatchRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Select a source cohort.

    Args:
        data: Source class and year.
        handler: Command handler.

    Returns:
        The new draft batch.

    Raises:
        HTTPException: If the cohort is empty or a student is held elsewhere.
    """
    logger.info(
        "Selecting cohort: %s %s by %s", data.source_class, data.source_year, data.actor
    )
    try:
        return await handler.handle(
            SelectSourceCohort(
                actor=data.actor,
                source_class=data.source_class,
                source_year=data.source_year,
            )
        )
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.get(
    "/batches/{batch_id}",
    response_model=PromotionBatchResponse,
    summary="Get batch",
)
async def get_batch(
    batch_id: str,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Get a batch with its candidates and promotion summary."""
    try:
        return await handler.promotions.get_batch(batch_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.get(
    "/batches/{batch_id}/capacity",
    response_model=CapacityPreviewResponse,
    summary="Preview target capacity",
    description="Advisory projection of the target class after the current selection.",
)
async def get_capacity_preview(
    batch_id: str,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> CapacityPreviewResponse:
    """Preview target-class capacity for the batch's selection."""
    try:
        return await handler.promotions.capacity_preview(batch_id)
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/refresh",
    response_model=PromotionBatchResponse,
    summary="Refresh cohort",
)
async def refresh_batch(
    batch_id: str,
    data: VersionedRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Re-read roster inputs and re-evaluate the batch."""
    try:
        return await handler.handle(
            RefreshCohort(actor=data.actor, batch_id=batch_id, version=data.version)
        )
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.put(
    "/batches/{batch_id}/target",
    response_model=PromotionBatchResponse,
    summary="Set promotion target",
)
async def set_target(
    batch_id: str,
    data: SetTargetRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Set the class and year the batch promotes into."""
    try:
        return await handler.handle(
            SetTarget(
                actor=data.actor,
                batch_id=batch_id,
                version=data.version,
                target_class=data.target_class,
                target_year=data.target_year,
                target_section=data.target_section,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/selection/toggle",
    response_model=PromotionBatchResponse,
    summary="Toggle candidate selection",
)
async def toggle_selection(
    batch_id: str,
    data: ToggleSelectionRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Flip one candidate's selection.

    Raises:
        HTTPException: 409 if the student is retained without an override.
    """
    try:
        return await handler.handle(
            ToggleSelection(
                actor=data.actor,
                batch_id=batch_id,
                version=data.version,
                student_id=data.student_id,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/selection/bulk",
    response_model=PromotionBatchResponse,
    summary="Select or deselect all",
)
async def bulk_select(
    batch_id: str,
    data: BulkSelectRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Select or deselect every candidate that is not retained."""
    try:
        return await handler.handle(
            BulkSelect(
                actor=data.actor,
                batch_id=batch_id,
                version=data.version,
                include=data.include,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/overrides",
    response_model=OverrideResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant override promotion",
    description="Promote a retained student under an audited exception.",
)
async def apply_override(
    batch_id: str,
    data: ApplyOverrideRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> OverrideResponse:
    """Grant an override promotion.

    Args:
        batch_id: Batch the student belongs to.
        data: Student, reason and approver.
        handler: Command handler.

    Returns:
        The override record.

    Raises:
        HTTPException: 422 for a blank reason, 409 if the student is not
            retained or the version is stale.
    """
    logger.info(
        "Applying override: student=%s, batch=%s, by=%s",
        data.student_id,
        batch_id,
        data.actor,
    )
    try:
        return await handler.handle(
            ApplyOverride(
                actor=data.actor,
                student_id=data.student_id,
                reason=data.reason,
                batch_version=data.version,
                batch_id=batch_id,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.get(
    "/students/{student_id}/overrides",
    response_model=list[OverrideResponse],
    summary="List student overrides",
)
async def list_student_overrides(
    student_id: str,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> list[OverrideResponse]:
    """List a student's override history, oldest first."""
    overrides = await handler.overrides.list_overrides(student_id)
    return [OverrideResponse.model_validate(o) for o in overrides]


@router.post(
    "/batches/{batch_id}/confirm",
    response_model=PromotionBatchResponse,
    summary="Confirm batch",
)
async def confirm_batch(
    batch_id: str,
    data: ConfirmBatchRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Confirm a draft batch after the advisory capacity check.

    Raises:
        HTTPException: 409 with code capacity_exceeded if the selection
            does not fit the target class.
    """
    try:
        return await handler.handle(
            ConfirmBatch(
                actor=data.actor,
                batch_id=batch_id,
                version=data.version,
                target_class=data.target_class,
                target_year=data.target_year,
                target_section=data.target_section,
            )
        )
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/execute",
    response_model=BatchExecutionResponse,
    summary="Execute batch",
    description="Promote every selected student as one all-or-nothing unit.",
)
async def execute_batch(
    batch_id: str,
    data: VersionedRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> BatchExecutionResponse:
    """Execute a confirmed batch.

    Executing an already executed batch returns outcome already_executed.

    Raises:
        HTTPException: 409 on capacity or version conflicts, 502 when a
            student failed and the batch was rolled back.
    """
    logger.info("Executing batch: %s by %s", batch_id, data.actor)
    try:
        return await handler.handle(
            ExecuteBatch(actor=data.actor, batch_id=batch_id, version=data.version)
        )
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/batches/{batch_id}/reject",
    response_model=PromotionBatchResponse,
    summary="Reject batch",
)
async def reject_batch(
    batch_id: str,
    data: RejectBatchRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> PromotionBatchResponse:
    """Abandon a batch and release its candidates."""
    try:
        return await handler.handle(
            RejectBatch(
                actor=data.actor,
                batch_id=batch_id,
                version=data.version,
                reason=data.reason,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e
