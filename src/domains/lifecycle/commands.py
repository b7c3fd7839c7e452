# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Operator commands and their dispatcher.

Each operator action is an explicit, immutable command object. The
LifecycleCommandHandler validates it against the record store through the
lifecycle services and returns a result or raises a LifecycleError.

Example:
    handler = LifecycleCommandHandler(session, collaborators)
    batch = await handler.handle(
        SelectSourceCohort(actor="registrar", source_class="7", source_year="2024-2025")
    )
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config.settings import PromotionPolicySettings, get_settings
from src.domains.lifecycle.archive import ArchiveRegistry
from src.domains.lifecycle.capacity import CapacityGuard
from src.domains.lifecycle.errors import LifecycleError, ValidationError
from src.domains.lifecycle.override import OverrideManager
from src.domains.lifecycle.ports import LifecycleCollaborators
from src.domains.lifecycle.promotion import PromotionBatchExecutor
from src.infrastructure.audit import DatabaseAuditSink
from src.models.lifecycle import (
    ArchiveEntryResponse,
    BatchExecutionResponse,
    BulkArchiveResponse,
    ExitStatus,
    OverrideResponse,
    PromotionBatchResponse,
    ReactivationResponse,
)
from src.utils.logging import bind_context, clear_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectSourceCohort:
    actor: str
    source_class: str
    source_year: str


@dataclass(frozen=True)
class RefreshCohort:
    actor: str
    batch_id: str
    version: int


@dataclass(frozen=True)
class SetTarget:
    actor: str
    batch_id: str
    version: int
    target_class: str
    target_year: str
    target_section: str | None = None


@dataclass(frozen=True)
class ToggleSelection:
    actor: str
    batch_id: str
    version: int
    student_id: str


@dataclass(frozen=True)
class BulkSelect:
    actor: str
    batch_id: str
    version: int
    include: bool


@dataclass(frozen=True)
class ApplyOverride:
    """Grant an exception promotion. The actor is the approver."""

    actor: str
    student_id: str
    reason: str
    batch_version: int | None = None
    batch_id: str | None = None


@dataclass(frozen=True)
class ConfirmBatch:
    actor: str
    batch_id: str
    version: int
    target_class: str | None = None
    target_year: str | None = None
    target_section: str | None = None


@dataclass(frozen=True)
class ExecuteBatch:
    actor: str
    batch_id: str
    version: int


@dataclass(frozen=True)
class RejectBatch:
    actor: str
    batch_id: str
    version: int
    reason: str | None = None


@dataclass(frozen=True)
class BulkArchive:
    actor: str
    source_class: str
    source_year: str
    exit_status: ExitStatus
    expected_count: int
    reason: str | None = None


@dataclass(frozen=True)
class ArchiveStudent:
    actor: str
    student_id: str
    exit_status: ExitStatus
    reason: str | None = None


@dataclass(frozen=True)
class Reactivate:
    """Restore an archived student. The actor is recorded as restored_by."""

    actor: str
    student_id: str
    reason: str


LifecycleCommand = Union[
    SelectSourceCohort,
    RefreshCohort,
    SetTarget,
    ToggleSelection,
    BulkSelect,
    ApplyOverride,
    ConfirmBatch,
    ExecuteBatch,
    RejectBatch,
    BulkArchive,
    ArchiveStudent,
    Reactivate,
]


class LifecycleCommandHandler:
    """Dispatches operator commands to the lifecycle services.

    All services share one session, so a command and its audit entries
    commit together.

    Attributes:
        promotions: Promotion batch executor.
        overrides: Override manager.
        archive: Archive registry.
    """

    def __init__(
        self,
        db: AsyncSession,
        collaborators: LifecycleCollaborators,
        capacity_guard: CapacityGuard | None = None,
        policy: PromotionPolicySettings | None = None,
    ) -> None:
        policy = policy or get_settings().promotion
        audit = DatabaseAuditSink(db)
        self.promotions = PromotionBatchExecutor(
            db, collaborators, capacity_guard=capacity_guard, policy=policy, audit=audit
        )
        self.overrides = OverrideManager(db, audit=audit)
        self.archive = ArchiveRegistry(db, collaborators, policy=policy, audit=audit)

        self._handlers: dict[type, Callable[[Any], Awaitable[Any]]] = {
            SelectSourceCohort: self._select_source_cohort,
            RefreshCohort: self._refresh_cohort,
            SetTarget: self._set_target,
            ToggleSelection: self._toggle_selection,
            BulkSelect: self._bulk_select,
            ApplyOverride: self._apply_override,
            ConfirmBatch: self._confirm_batch,
            ExecuteBatch: self._execute_batch,
            RejectBatch: self._reject_batch,
            BulkArchive: self._bulk_archive,
            ArchiveStudent: self._archive_student,
            Reactivate: self._reactivate,
        }

    async def handle(self, command: LifecycleCommand) -> Any:
        """Run one operator command.

        Args:
            command: The command to run.

        Returns:
            The command's result model.

        Raises:
            LifecycleError: Any lifecycle error raised by the command.
        """
        name = type(command).__name__
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValidationError(f"Unsupported command: {name}")

        bind_context(actor=command.actor, command=name)
        try:
            result = await handler(command)
            logger.debug("Command handled: %s", name)
            return result
        except LifecycleError as e:
            logger.info("Command rejected: %s: %s", type(e).__name__, str(e))
            raise
        finally:
            clear_context()

    async def _select_source_cohort(self, command: SelectSourceCohort) -> PromotionBatchResponse:
        return await self.promotions.select_cohort(
            command.source_class, command.source_year, command.actor
        )

    async def _refresh_cohort(self, command: RefreshCohort) -> PromotionBatchResponse:
        return await self.promotions.refresh_cohort(command.batch_id, command.version, command.actor)

    async def _set_target(self, command: SetTarget) -> PromotionBatchResponse:
        return await self.promotions.set_target(
            command.batch_id,
            command.version,
            command.target_class,
            command.target_year,
            command.actor,
            target_section=command.target_section,
        )

    async def _toggle_selection(self, command: ToggleSelection) -> PromotionBatchResponse:
        return await self.promotions.toggle_selection(
            command.batch_id, command.version, command.student_id, command.actor
        )

    async def _bulk_select(self, command: BulkSelect) -> PromotionBatchResponse:
        return await self.promotions.bulk_select(
            command.batch_id, command.version, command.include, command.actor
        )

    async def _apply_override(self, command: ApplyOverride) -> OverrideResponse:
        override = await self.overrides.apply_override(
            command.student_id,
            command.reason,
            command.actor,
            expected_version=command.batch_version,
            batch_id=command.batch_id,
        )
        return OverrideResponse.model_validate(override)

    async def _confirm_batch(self, command: ConfirmBatch) -> PromotionBatchResponse:
        return await self.promotions.confirm(
            command.batch_id,
            command.version,
            command.actor,
            target_class=command.target_class,
            target_year=command.target_year,
            target_section=command.target_section,
        )

    async def _execute_batch(self, command: ExecuteBatch) -> BatchExecutionResponse:
        return await self.promotions.execute(command.batch_id, command.version, command.actor)

    async def _reject_batch(self, command: RejectBatch) -> PromotionBatchResponse:
        return await self.promotions.reject(
            command.batch_id, command.version, command.actor, reason=command.reason
        )

    async def _bulk_archive(self, command: BulkArchive) -> BulkArchiveResponse:
        return await self.archive.bulk_archive(
            command.source_class,
            command.source_year,
            command.exit_status,
            command.expected_count,
            command.actor,
            reason=command.reason,
        )

    async def _archive_student(self, command: ArchiveStudent) -> ArchiveEntryResponse:
        return await self.archive.archive_student(
            command.student_id, command.exit_status, command.actor, reason=command.reason
        )

    async def _reactivate(self, command: Reactivate) -> ReactivationResponse:
        return await self.archive.reactivate(command.student_id, command.reason, command.actor)
