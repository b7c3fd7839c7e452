# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the lifecycle record store.

Importing this package registers every table on Base.metadata.
"""

from src.infrastructure.database.models.base import Base, TimestampMixin, generate_uuid
from src.infrastructure.database.models.lifecycle import (
    AcademicSnapshot,
    ArchiveEntry,
    AuditLog,
    BatchCandidate,
    ImmutableRecordError,
    NotificationOutboxEntry,
    OverrideRecord,
    PromotionBatch,
    StudentLifecycleRecord,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    # Lifecycle
    "StudentLifecycleRecord",
    "PromotionBatch",
    "BatchCandidate",
    "OverrideRecord",
    "ArchiveEntry",
    "AcademicSnapshot",
    "AuditLog",
    "NotificationOutboxEntry",
    "ImmutableRecordError",
]
