# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

This module provides dependency functions for FastAPI endpoints.
Dependencies are used to:
- Get lifecycle database sessions
- Get the collaborator bundle and the shared capacity guard
- Get the command handler
- Map lifecycle errors to HTTP errors

Example:
    @router.post("/promotions/batches")
    async def create_batch(
        handler: LifecycleCommandHandler = Depends(get_command_handler),
    ):
        ...
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.domains.lifecycle import (
    BatchExecutionError,
    CapacityExceededError,
    CapacityGuard,
    ConflictError,
    InvalidStateError,
    LifecycleCollaborators,
    LifecycleCommandHandler,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from src.infrastructure.clients import CollaboratorError
from src.infrastructure.database.connection import (
    close_lifecycle_database,
    get_lifecycle_session,
    init_lifecycle_database,
)

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Initialize the lifecycle database connection pool."""
    await init_lifecycle_database(get_settings())


async def close_db() -> None:
    """Close the lifecycle database connection pool."""
    await close_lifecycle_database()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get lifecycle database session.

    Yields:
        AsyncSession for the lifecycle record store.
    """
    async with get_lifecycle_session() as session:
        yield session


def get_collaborators(request: Request) -> LifecycleCollaborators:
    """Get the collaborator bundle created at startup.

    Raises:
        HTTPException: If the application has not finished starting.
    """
    collaborators = getattr(request.app.state, "collaborators", None)
    if collaborators is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Collaborators not initialized",
        )
    return collaborators


def get_capacity_guard(request: Request) -> CapacityGuard:
    """Get the process-wide capacity guard."""
    guard = getattr(request.app.state, "capacity_guard", None)
    if guard is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Capacity guard not initialized",
        )
    return guard


def get_command_handler(
    db: AsyncSession = Depends(get_db),
    collaborators: LifecycleCollaborators = Depends(get_collaborators),
    capacity_guard: CapacityGuard = Depends(get_capacity_guard),
) -> LifecycleCommandHandler:
    """Get a command handler bound to the request's session."""
    return LifecycleCommandHandler(
        db,
        collaborators,
        capacity_guard=capacity_guard,
        policy=get_settings().promotion,
    )


# =========================================================================
# Error mapping
# =========================================================================


def lifecycle_http_error(error: Exception) -> HTTPException:
    """Translate a lifecycle or collaborator error into an HTTPException.

    Args:
        error: Error raised by a lifecycle service.

    Returns:
        HTTPException to raise from the endpoint.
    """
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, CapacityExceededError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "capacity_exceeded",
                "message": str(error),
                "target_class": error.target_class,
                "projected": error.projected,
                "capacity": error.capacity,
            },
        )

    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "conflict", "message": str(error)},
        )

    if isinstance(error, InvalidStateError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "invalid_state", "message": str(error)},
        )

    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": error.code, "message": str(error)},
        )

    if isinstance(error, BatchExecutionError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "code": "batch_execution_failed",
                "message": str(error),
                "failures": error.failures,
            },
        )

    if isinstance(error, CollaboratorError):
        logger.warning("Collaborator failure: %s", str(error))
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "collaborator_unavailable", "message": str(error)},
        )

    if isinstance(error, LifecycleError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    logger.exception("Unexpected lifecycle failure")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal error",
    )
