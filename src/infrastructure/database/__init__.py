# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the lifecycle record store.

Example:
    from src.infrastructure.database import (
        init_lifecycle_database,
        get_lifecycle_session,
    )

    await init_lifecycle_database(settings)
    async with get_lifecycle_session() as session:
        result = await session.execute(select(PromotionBatch))
"""

from src.infrastructure.database.connection import (
    DatabaseError,
    check_lifecycle_database_connection,
    close_lifecycle_database,
    create_engine_from_settings,
    create_schema,
    create_sessionmaker,
    get_lifecycle_session,
    get_lifecycle_sessionmaker,
    init_lifecycle_database,
)

__all__ = [
    "DatabaseError",
    "check_lifecycle_database_connection",
    "close_lifecycle_database",
    "create_engine_from_settings",
    "create_schema",
    "create_sessionmaker",
    "get_lifecycle_session",
    "get_lifecycle_sessionmaker",
    "init_lifecycle_database",
]
