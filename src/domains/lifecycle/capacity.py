# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Target-class admission control.

Capacity is checked twice: an advisory check when a batch is confirmed and
an authoritative re-check against a freshly read snapshot right before a
batch is committed. reserve() holds a per-class lock from that re-check
until the caller's commit finishes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from src.domains.lifecycle.errors import CapacityExceededError
from src.domains.lifecycle.ports import CapacityPort, CapacitySnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityCheck:
    """Result of projecting a target class's enrollment."""

    target_class: str
    current_enrolled: int
    selected_count: int
    projected_enrollment: int
    capacity: int | None

    @property
    def ok(self) -> bool:
        return self.capacity is None or self.projected_enrollment <= self.capacity

    @property
    def fill_ratio(self) -> float | None:
        """Projected enrollment over capacity; None when unlimited."""
        if self.capacity is None:
            return None
        if self.capacity == 0:
            return float("inf") if self.projected_enrollment else 0.0
        return round(self.projected_enrollment / self.capacity, 4)

    def raise_if_exceeded(self) -> None:
        if not self.ok:
            raise CapacityExceededError(
                self.target_class,
                projected=self.projected_enrollment,
                capacity=self.capacity,
            )


def check_capacity(
    target_class: str,
    current_enrolled: int,
    capacity: int | None,
    selected_count: int,
) -> CapacityCheck:
    """Project enrollment of a target class after moving selected students in.

    Args:
        target_class: Target class identifier.
        current_enrolled: Students already enrolled.
        capacity: Seat capacity, or None for an unlimited target.
        selected_count: Students about to move in.

    Returns:
        CapacityCheck; ok is True when the class is unlimited or the
        projection fits.
    """
    return CapacityCheck(
        target_class=target_class,
        current_enrolled=current_enrolled,
        selected_count=selected_count,
        projected_enrollment=current_enrolled + selected_count,
        capacity=capacity,
    )


class CapacityGuard:
    """Capacity checks against the external capacity service.

    One guard is shared per process so that its locks serialize batches
    targeting the same class and year.
    """

    def __init__(self, capacity: CapacityPort) -> None:
        self._capacity = capacity
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def snapshot(self, target_class: str, target_year: str) -> CapacitySnapshot:
        return await self._capacity.get_capacity(target_class, target_year)

    async def advisory_check(
        self, target_class: str, target_year: str, selected_count: int
    ) -> tuple[CapacityCheck, CapacitySnapshot]:
        """Check capacity for UI feedback and confirmation.

        Returns:
            Tuple of (check, snapshot the check was made against).
        """
        snapshot = await self.snapshot(target_class, target_year)
        check = check_capacity(
            target_class, snapshot.current_enrolled, snapshot.capacity, selected_count
        )
        logger.debug(
            "Advisory capacity check: class=%s, projected=%d, capacity=%s, ok=%s",
            target_class,
            check.projected_enrollment,
            check.capacity,
            check.ok,
        )
        return check, snapshot

    @asynccontextmanager
    async def reserve(
        self, target_class: str, target_year: str, selected_count: int
    ) -> AsyncIterator[CapacitySnapshot]:
        """Authoritatively re-check capacity and hold the class until commit.

        Args:
            target_class: Target class identifier.
            target_year: Target academic year.
            selected_count: Students about to move in.

        Yields:
            The fresh snapshot the check passed against.

        Raises:
            CapacityExceededError: If the fresh snapshot no longer fits.
        """
        lock = self._locks.setdefault((target_class, target_year), asyncio.Lock())
        async with lock:
            snapshot = await self.snapshot(target_class, target_year)
            check = check_capacity(
                target_class, snapshot.current_enrolled, snapshot.capacity, selected_count
            )
            if not check.ok:
                logger.warning(
                    "Capacity re-check failed: class=%s, year=%s, projected=%d, capacity=%s",
                    target_class,
                    target_year,
                    check.projected_enrollment,
                    check.capacity,
                )
            check.raise_if_exceeded()
            yield snapshot
