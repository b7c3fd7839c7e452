# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

This package contains all v1 API endpoint definitions.
Each module provides a FastAPI router for a specific area.

Modules:
    promotions: Promotion batch endpoints (select, confirm, execute, overrides).
    alumni: Alumni archive endpoints (archive, reactivate, directory).
    audit: Audit log endpoints.
"""

from fastapi import APIRouter

from src.api.v1 import alumni, audit, promotions

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(promotions.router, prefix="/promotions", tags=["Promotions"])
router.include_router(alumni.router, prefix="/alumni", tags=["Alumni"])
router.include_router(audit.router, prefix="/audit", tags=["Audit"])

__all__ = ["router"]
