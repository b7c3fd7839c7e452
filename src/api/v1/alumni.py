# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Alumni archive API endpoints.

This module provides endpoints for the alumni archive:
- POST /bulk-archive - Archive a whole cohort
- POST /students/{student_id}/archive - Archive one student
- POST /students/{student_id}/reactivate - Restore an archived student
- GET / - Alumni directory
- GET /{entry_id} - Get one archive entry
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from src.api.dependencies import get_command_handler, lifecycle_http_error
from src.domains.lifecycle import (
    ArchiveStudent,
    BulkArchive,
    LifecycleCommandHandler,
    LifecycleError,
    Reactivate,
)
from src.infrastructure.clients import CollaboratorError
from src.models.lifecycle import (
    AlumniListResponse,
    ArchiveEntryResponse,
    ArchiveStudentRequest,
    BulkArchiveRequest,
    BulkArchiveResponse,
    ExitStatus,
    ReactivateRequest,
    ReactivationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/bulk-archive",
    response_model=BulkArchiveResponse,
    summary="Archive cohort",
    description=(
        "Archive every active student of a class and year. expected_count must "
        "match the cohort size the operator confirmed."
    ),
)
async def bulk_archive(
    data: BulkArchiveRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> BulkArchiveResponse:
    """Archive a whole cohort.

    Raises:
        HTTPException: 422 with code count_mismatch if the cohort changed,
            409 if a student is held by an in-flight batch.
    """
    logger.info(
        "Bulk archiving: %s %s as %s by %s",
        data.source_class,
        data.source_year,
        data.exit_status.value,
        data.actor,
    )
    try:
        return await handler.handle(
            BulkArchive(
                actor=data.actor,
                source_class=data.source_class,
                source_year=data.source_year,
                exit_status=data.exit_status,
                expected_count=data.expected_count,
                reason=data.reason,
            )
        )
    except (LifecycleError, CollaboratorError) as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/students/{student_id}/archive",
    response_model=ArchiveEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Archive student",
)
async def archive_student(
    student_id: str,
    data: ArchiveStudentRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> ArchiveEntryResponse:
    """Archive one student with an exit status."""
    try:
        return await handler.handle(
            ArchiveStudent(
                actor=data.actor,
                student_id=student_id,
                exit_status=data.exit_status,
                reason=data.reason,
            )
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.post(
    "/students/{student_id}/reactivate",
    response_model=ReactivationResponse,
    summary="Reactivate student",
)
async def reactivate_student(
    student_id: str,
    data: ReactivateRequest,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> ReactivationResponse:
    """Restore an archived student to active status.

    Args:
        student_id: Archived student.
        data: Justification and operator.
        handler: Command handler.

    Returns:
        The new active record and the annotated archive entry.

    Raises:
        HTTPException: 422 for a blank reason, 404 if the student was never
            archived, 409 if the student is already active.
    """
    logger.info("Reactivating student: %s by %s", student_id, data.actor)
    try:
        return await handler.handle(
            Reactivate(actor=data.actor, student_id=student_id, reason=data.reason)
        )
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e


@router.get(
    "",
    response_model=AlumniListResponse,
    summary="Alumni directory",
)
async def list_alumni(
    search: Annotated[
        str | None, Query(description="Match on name or student id")
    ] = None,
    batch_year: Annotated[
        str | None, Query(description="Alumni batch, e.g. 2025")
    ] = None,
    exit_status: Annotated[ExitStatus | None, Query()] = None,
    include_reactivated: Annotated[bool, Query()] = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> AlumniListResponse:
    """List archived students."""
    return await handler.archive.list_alumni(
        search=search,
        batch_year=batch_year,
        exit_status=exit_status,
        include_reactivated=include_reactivated,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{entry_id}",
    response_model=ArchiveEntryResponse,
    summary="Get archive entry",
)
async def get_archive_entry(
    entry_id: str,
    handler: LifecycleCommandHandler = Depends(get_command_handler),
) -> ArchiveEntryResponse:
    """Get one archive entry."""
    try:
        return await handler.archive.get_archive_entry(entry_id)
    except LifecycleError as e:
        raise lifecycle_http_error(e) from e
