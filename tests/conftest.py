# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- A SQLite lifecycle database per test
- In-memory collaborators
- Lifecycle services wired to both
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src.core.config import PromotionPolicySettings, clear_settings_cache
from src.core.config.settings import DatabaseSettings
from src.domains.lifecycle import (
    CohortMember,
    LifecycleCollaborators,
    LifecycleCommandHandler,
)
from src.infrastructure.database.connection import (
    create_engine_from_settings,
    create_schema,
    create_sessionmaker,
)
from src.models.lifecycle import ExamResult
from tests.fakes import (
    FakeCapacity,
    FakeFee,
    FakeNotifier,
    FakeRoster,
    member,
)

SOURCE_CLASS = "7"
SOURCE_YEAR = "2024-2025"
TARGET_CLASS = "8"
TARGET_YEAR = "2025-2026"


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Reload settings from the environment for every test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite lifecycle database with the full schema."""
    settings = DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    engine = create_engine_from_settings(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine):
    """Sessionmaker configured like the application's."""
    return create_sessionmaker(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for one test."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def roster() -> FakeRoster:
    return FakeRoster()


@pytest.fixture
def capacity() -> FakeCapacity:
    fake = FakeCapacity()
    fake.set_class(TARGET_CLASS, TARGET_YEAR, capacity=35, enrolled=12)
    return fake


@pytest.fixture
def fee() -> FakeFee:
    return FakeFee()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def collaborators(roster, capacity, fee, notifier) -> LifecycleCollaborators:
    return LifecycleCollaborators(roster=roster, capacity=capacity, fee=fee, notifier=notifier)


@pytest.fixture
def policy() -> PromotionPolicySettings:
    return PromotionPolicySettings(
        min_attendance_pct=75.0,
        default_section="A",
        notification_max_attempts=3,
    )


@pytest.fixture
def handler(db_session, collaborators, policy) -> LifecycleCommandHandler:
    """Command handler on the test session and fakes."""
    return LifecycleCommandHandler(db_session, collaborators, policy=policy)


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def seven_student_cohort() -> list[CohortMember]:
    """Class 7 cohort: four eligible, three retained by default."""
    return [
        member("S1", 92, ExamResult.PASS, roll=1),
        member("S2", 88, ExamResult.PASS, roll=2),
        member("S3", 65, ExamResult.FAIL, roll=3),
        member("S4", 95, ExamResult.PASS, roll=4),
        member("S5", 72, ExamResult.PASS, roll=5),
        member("S6", 80, ExamResult.FAIL, roll=6),
        member("S7", 85, ExamResult.PASS, roll=7),
    ]


@pytest.fixture
def loaded_roster(roster, seven_student_cohort) -> FakeRoster:
    """Roster listing the seven-student cohort for class 7."""
    roster.set_cohort(SOURCE_CLASS, SOURCE_YEAR, seven_student_cohort)
    return roster
