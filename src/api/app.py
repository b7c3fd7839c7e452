# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the main application factory for the student
lifecycle API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import close_db, init_db
from src.api.routes import health
from src.api.v1 import router as v1_router
from src.core.config import get_settings
from src.domains.lifecycle import CapacityGuard, LifecycleCollaborators
from src.infrastructure.clients import build_http_collaborators, close_http_collaborators
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(collaborators: LifecycleCollaborators | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        collaborators: Collaborator bundle to use instead of the HTTP
            clients built from settings.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager.

        Initializes and cleans up:
        - Logging
        - The lifecycle database pool
        - Collaborator clients and the shared capacity guard
        """
        setup_logging(settings)
        logger.info(
            "Starting student lifecycle API: environment=%s, debug=%s",
            settings.environment,
            settings.debug,
        )

        await init_db()
        logger.info("Database connections initialized")

        owns_clients = collaborators is None
        bundle = collaborators or build_http_collaborators(settings.services)
        app.state.collaborators = bundle
        app.state.capacity_guard = CapacityGuard(bundle.capacity)

        yield

        if owns_clients:
            try:
                await close_http_collaborators(bundle)
                logger.info("Collaborator clients closed")
            except Exception as e:
                logger.warning("Error closing collaborator clients: %s", str(e))

        try:
            await close_db()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning("Error closing database connections: %s", str(e))

        logger.info("Shutting down student lifecycle API")

    app = FastAPI(
        title=settings.api.title,
        description="Student lifecycle, cohort promotion and alumni archive",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
