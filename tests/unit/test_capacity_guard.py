# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for target-class capacity checks."""

import asyncio

import pytest

from src.domains.lifecycle import CapacityExceededError, CapacityGuard, check_capacity
from tests.fakes import FakeCapacity


class TestCheckCapacity:
    """Tests for the pure capacity projection."""

    def test_projection_within_capacity(self):
        check = check_capacity("8", current_enrolled=12, capacity=35, selected_count=4)

        assert check.projected_enrollment == 16
        assert check.ok is True
        assert check.fill_ratio == round(16 / 35, 4)
        check.raise_if_exceeded()

    def test_projection_at_capacity_is_allowed(self):
        check = check_capacity("8", current_enrolled=12, capacity=35, selected_count=23)

        assert check.projected_enrollment == 35
        assert check.ok is True

    def test_projection_over_capacity(self):
        check = check_capacity("8", current_enrolled=12, capacity=35, selected_count=24)

        assert check.projected_enrollment == 36
        assert check.ok is False
        with pytest.raises(CapacityExceededError) as exc_info:
            check.raise_if_exceeded()

        assert exc_info.value.projected == 36
        assert exc_info.value.capacity == 35
        assert exc_info.value.target_class == "8"

    def test_unlimited_target(self):
        """A null capacity never blocks, and has no fill ratio."""
        check = check_capacity("Alumni", current_enrolled=500, capacity=None, selected_count=40)

        assert check.ok is True
        assert check.fill_ratio is None


class TestCapacityGuard:
    """Tests for the guard against the capacity service."""

    @pytest.fixture
    def capacity(self) -> FakeCapacity:
        fake = FakeCapacity()
        fake.set_class("8", "2025-2026", capacity=35, enrolled=12)
        return fake

    @pytest.mark.asyncio
    async def test_advisory_check_returns_snapshot(self, capacity):
        guard = CapacityGuard(capacity)

        check, snapshot = await guard.advisory_check("8", "2025-2026", 5)

        assert check.projected_enrollment == 17
        assert snapshot.current_enrolled == 12
        assert snapshot.capacity == 35

    @pytest.mark.asyncio
    async def test_reserve_reads_fresh_snapshot(self, capacity):
        guard = CapacityGuard(capacity)
        await guard.advisory_check("8", "2025-2026", 4)

        # Seats were taken elsewhere between confirmation and execution
        capacity.set_class("8", "2025-2026", capacity=35, enrolled=32)

        with pytest.raises(CapacityExceededError):
            async with guard.reserve("8", "2025-2026", 4):
                pytest.fail("reserve should not yield when the class is full")

        assert capacity.calls == 2

    @pytest.mark.asyncio
    async def test_reserve_yields_snapshot(self, capacity):
        guard = CapacityGuard(capacity)

        async with guard.reserve("8", "2025-2026", 4) as snapshot:
            assert snapshot.current_enrolled == 12

    @pytest.mark.asyncio
    async def test_reserve_serializes_same_target(self, capacity):
        """Two reservations for the same class and year never overlap."""
        guard = CapacityGuard(capacity)
        active = 0
        overlaps = 0

        async def hold() -> None:
            nonlocal active, overlaps
            async with guard.reserve("8", "2025-2026", 1):
                active += 1
                if active > 1:
                    overlaps += 1
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(hold(), hold(), hold())

        assert overlaps == 0
