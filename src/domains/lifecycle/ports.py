# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Collaborator interfaces used by the lifecycle services.

The roster, capacity, fee and notification systems are owned elsewhere.
The lifecycle services only see these protocols; HTTP implementations live
in src.infrastructure.clients and tests use in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from src.models.lifecycle import AuditSeverity, ExamResult, ExitStatus


@dataclass(frozen=True)
class CohortMember:
    """A student as listed by the roster for one class and year."""

    student_id: str
    name: str
    attendance_pct: float
    exam_result: ExamResult
    roll: int | None = None
    section: str | None = None
    academic_score: float | None = None
    guardian_contact: str | None = None


@dataclass(frozen=True)
class CapacitySnapshot:
    """Point-in-time capacity of a class.

    A capacity of None means the class is unlimited (alumni or exit targets).
    """

    class_id: str
    capacity: int | None
    current_enrolled: int

    @property
    def is_unlimited(self) -> bool:
        return self.capacity is None


@dataclass
class AuditEntry:
    """One audit trail entry, written in the same transaction as the mutation."""

    actor: str
    action: str
    entity_type: str
    entity_id: str
    reason: str | None = None
    severity: AuditSeverity = AuditSeverity.INFO
    details: dict[str, Any] = field(default_factory=dict)


class RosterPort(Protocol):
    async def list_cohort(self, class_id: str, year: str) -> list[CohortMember]: ...

    async def apply_placement(
        self, student_id: str, class_id: str, section: str | None, roll: int | None
    ) -> None: ...


class CapacityPort(Protocol):
    async def get_capacity(self, class_id: str, year: str) -> CapacitySnapshot: ...


class FeePort(Protocol):
    async def assign_fee_structure(self, student_id: str, year: str) -> None: ...

    async def revoke_fee_structure(self, student_id: str, year: str) -> None: ...


class NotificationPort(Protocol):
    async def send_promotion_notice(
        self, student_id: str, guardian_contact: str | None, payload: dict[str, Any]
    ) -> None: ...

    async def send_archive_confirmation(
        self,
        student_id: str,
        guardian_contact: str | None,
        exit_status: ExitStatus,
    ) -> None: ...


class AuditSink(Protocol):
    async def append(self, entry: AuditEntry) -> None: ...


@dataclass
class LifecycleCollaborators:
    """Bundle of external collaborators handed to the lifecycle services."""

    roster: RosterPort
    capacity: CapacityPort
    fee: FeePort
    notifier: NotificationPort
