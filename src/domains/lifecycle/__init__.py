# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student lifecycle domain package.

This package provides the cohort promotion and alumni lifecycle including:
- Default eligibility evaluation
- Audited override promotions
- Target-class capacity checks
- Promotion batch execution
- Alumni archive and reactivation
- Operator command dispatch
"""

from src.domains.lifecycle.archive import ArchiveRegistry
from src.domains.lifecycle.capacity import CapacityCheck, CapacityGuard, check_capacity
from src.domains.lifecycle.commands import (
    ApplyOverride,
    ArchiveStudent,
    BulkArchive,
    BulkSelect,
    ConfirmBatch,
    ExecuteBatch,
    LifecycleCommand,
    LifecycleCommandHandler,
    Reactivate,
    RefreshCohort,
    RejectBatch,
    SelectSourceCohort,
    SetTarget,
    ToggleSelection,
)
from src.domains.lifecycle.eligibility import EligibilityEvaluator, evaluate_eligibility
from src.domains.lifecycle.errors import (
    BatchExecutionError,
    CapacityExceededError,
    ConflictError,
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from src.domains.lifecycle.override import OverrideManager
from src.domains.lifecycle.ports import (
    AuditEntry,
    AuditSink,
    CapacityPort,
    CapacitySnapshot,
    CohortMember,
    FeePort,
    LifecycleCollaborators,
    NotificationPort,
    RosterPort,
)
from src.domains.lifecycle.promotion import PromotionBatchExecutor

__all__ = [
    # Services
    "ArchiveRegistry",
    "CapacityGuard",
    "EligibilityEvaluator",
    "OverrideManager",
    "PromotionBatchExecutor",
    "LifecycleCommandHandler",
    "check_capacity",
    "evaluate_eligibility",
    "CapacityCheck",
    # Commands
    "LifecycleCommand",
    "SelectSourceCohort",
    "RefreshCohort",
    "SetTarget",
    "ToggleSelection",
    "BulkSelect",
    "ApplyOverride",
    "ConfirmBatch",
    "ExecuteBatch",
    "RejectBatch",
    "BulkArchive",
    "ArchiveStudent",
    "Reactivate",
    # Errors
    "LifecycleError",
    "ValidationError",
    "InvalidStateError",
    "CapacityExceededError",
    "ConflictError",
    "BatchExecutionError",
    "NotFoundError",
    # Collaborators
    "AuditEntry",
    "AuditSink",
    "CapacityPort",
    "CapacitySnapshot",
    "CohortMember",
    "FeePort",
    "LifecycleCollaborators",
    "NotificationPort",
    "RosterPort",
]
