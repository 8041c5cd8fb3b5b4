"""
Pytest Fixtures

Every test gets its own file-backed SQLite database (``sqlite+aiosqlite``)
with a fresh schema, and settings that retry without sleeping.

Usage:
    pytest tests/ -v
"""

# pylint: disable=redefined-outer-name

from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio

from auditdb.config.settings import Settings
from auditdb.core.logging import setup_logging
from auditdb.db import SessionFactory, SettingsConnectionResolver
from auditdb.models import Base
from tests.support import (
    FlakySessionFactory,
    HangingSessionFactory,
    InventorySessionFactory,
    RecordingObserver,
)


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def configure_logging() -> None:
    """Render package logs the way an application would."""
    setup_logging(Settings(_env_file=None, APP_ENV="test", LOG_LEVEL="INFO"))


@pytest.fixture
def database_url(tmp_path) -> str:
    """URL of a SQLite file private to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'auditdb_test.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        APP_ENV="test",
        DATABASE_URL=database_url,
        DATABASE_RETRY_MAX_ATTEMPTS=3,
        DATABASE_RETRY_BASE_DELAY_SECONDS=0,
        DATABASE_RETRY_MAX_DELAY_SECONDS=0,
    )


@pytest.fixture
def observer() -> RecordingObserver:
    """Observer shared by every factory in a test."""
    return RecordingObserver()


# =============================================================================
# FACTORY FIXTURES
# =============================================================================


async def _build(factory: SessionFactory) -> SessionFactory:
    async with factory.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return factory


@pytest_asyncio.fixture
async def factory(
    test_settings: Settings, observer: RecordingObserver
) -> AsyncGenerator[InventorySessionFactory, None]:
    """Session factory over a fresh schema."""
    factory = await _build(
        InventorySessionFactory(
            SettingsConnectionResolver(test_settings),
            observer,
            settings=test_settings,
        )
    )
    yield factory
    await factory.dispose()


@pytest_asyncio.fixture
async def flaky_factory(
    factory: InventorySessionFactory,
    test_settings: Settings,
    observer: RecordingObserver,
) -> AsyncGenerator[FlakySessionFactory, None]:
    """Factory whose sessions can be told to fail commit attempts."""
    flaky = FlakySessionFactory(
        SettingsConnectionResolver(test_settings),
        observer,
        settings=test_settings,
    )
    yield flaky
    await flaky.dispose()


@pytest_asyncio.fixture
async def hanging_factory(
    factory: InventorySessionFactory,
    test_settings: Settings,
    observer: RecordingObserver,
) -> AsyncGenerator[HangingSessionFactory, None]:
    """Factory whose sessions block mid-commit until cancelled."""
    hanging = HangingSessionFactory(
        SettingsConnectionResolver(test_settings),
        observer,
        settings=test_settings,
    )
    yield hanging
    await hanging.dispose()


# =============================================================================
# HELPER FIXTURES
# =============================================================================


@pytest.fixture
def actor_id():
    """Acting user for audit stamping."""
    return uuid4()
