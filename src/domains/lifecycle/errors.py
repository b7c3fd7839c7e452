# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lifecycle error taxonomy.

Every lifecycle operation either succeeds completely or raises one of these
errors with no state change.
"""


class LifecycleError(Exception):
    """Base exception for lifecycle service errors."""

    pass


class ValidationError(LifecycleError):
    """Raised when command input is rejected before any state change.

    Attributes:
        code: Machine-readable reason (empty_reason, count_mismatch,
            invalid_input).
    """

    def __init__(self, message: str, code: str = "invalid_input") -> None:
        super().__init__(message)
        self.code = code


class InvalidStateError(LifecycleError):
    """Raised when an operation does not apply to the entity's current state."""

    pass


class CapacityExceededError(LifecycleError):
    """Raised when a promotion would overfill the target class.

    Attributes:
        projected: Projected enrollment after the move.
        capacity: Capacity of the target class.
    """

    def __init__(self, target_class: str, projected: int, capacity: int) -> None:
        super().__init__(
            f"Class {target_class} would hold {projected} students, capacity is {capacity}"
        )
        self.target_class = target_class
        self.projected = projected
        self.capacity = capacity


class ConflictError(LifecycleError):
    """Raised when another writer got there first."""

    pass


class BatchExecutionError(LifecycleError):
    """Raised when one or more students failed during batch execution.

    Attributes:
        batch_id: Batch that failed.
        failures: Failing student IDs mapped to their reasons.
    """

    def __init__(self, batch_id: str, failures: dict[str, str]) -> None:
        super().__init__(
            f"Batch {batch_id} rolled back: {len(failures)} student(s) failed"
        )
        self.batch_id = batch_id
        self.failures = failures


class NotFoundError(LifecycleError):
    """Raised when a student, batch or archive entry does not exist."""

    pass
