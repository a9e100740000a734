"""Shared fixtures for integration tests.

These tests need a running MongoDB. Point ``TEST_MONGO_URL`` at it; every
test session works in its own throwaway database derived from the
configured database name.
"""

import os
import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from src.core.config import DatabaseConfig, get_settings
from src.infrastructure.database.base import DocumentModel
from src.infrastructure.database.connection import ConnectionManager
from src.infrastructure.database.repository import BaseRepository

TEST_MONGO_URL_ENV = "TEST_MONGO_URL"


class Account(DocumentModel):
    """Entity stored by integration tests."""

    name: str
    balance: int = 0


@pytest.fixture(scope="session")
def mongo_url() -> str:
    """Get the test server URL or skip the integration suite."""
    url = os.getenv(TEST_MONGO_URL_ENV)
    if not url:
        pytest.skip(f"{TEST_MONGO_URL_ENV} is not set")
    return url


@pytest.fixture
def database_config(mongo_url: str) -> DatabaseConfig:
    """Provide settings targeting a unique test database."""
    base_name = get_settings().database_config.get_test_database_name()
    return DatabaseConfig(
        connection_string=mongo_url,
        database_name=f"{base_name}_{uuid.uuid4().hex[:8]}",
        mongo_down_time=5,
    )


@pytest_asyncio.fixture
async def connection(
    database_config: DatabaseConfig,
) -> AsyncGenerator[ConnectionManager]:
    """Provide a live connection and drop its database afterwards."""
    manager = ConnectionManager(database_config)
    try:
        yield manager
    finally:
        await manager.dispose()
        async with ConnectionManager(database_config) as cleanup:
            result = cleanup.ensure_connected()
            if result.client is not None:
                await result.client.drop_database(database_config.database_name)


@pytest.fixture
def account_model() -> type[Account]:
    """Provide the integration test entity class."""
    return Account


@pytest.fixture
def account_repository(connection: ConnectionManager) -> BaseRepository[Account]:
    """Provide a repository bound to the live connection."""
    return BaseRepository(connection, Account)
