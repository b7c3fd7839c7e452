# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Audit log API endpoints.

The audit log is read-only over HTTP; entries are written by the
lifecycle services in the same transaction as the change they record.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.infrastructure.audit import DatabaseAuditSink
from src.models.lifecycle import AuditEntryResponse, AuditListResponse, AuditSeverity
from src.utils.datetime import ensure_utc

router = APIRouter()


@router.get(
    "",
    response_model=AuditListResponse,
    summary="List audit entries",
    description="Audit log in chronological order, filterable by severity and entity.",
)
async def list_audit_entries(
    search: Annotated[str | None, Query(description="Match on actor, action or reason")] = None,
    severity: Annotated[AuditSeverity | None, Query()] = None,
    action: Annotated[str | None, Query()] = None,
    entity_type: Annotated[str | None, Query()] = None,
    entity_id: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    """List audit entries."""
    entries, total = await DatabaseAuditSink(db).list_entries(
        search=search,
        severity=severity,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
    items = []
    for entry in entries:
        item = AuditEntryResponse.model_validate(entry)
        items.append(item.model_copy(update={"created_at": ensure_utc(item.created_at)}))
    return AuditListResponse(items=items, total=total, limit=limit, offset=offset)
