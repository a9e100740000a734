"""Fixtures for database unit tests.

The Motor collection is replaced by a MagicMock whose store methods are
AsyncMocks, so repositories run their real logic without a server.
"""

from collections.abc import Callable, Iterable
from typing import Any

import pytest
from pytest_mock import MockerFixture, MockType

from src.core.config import DatabaseConfig
from src.infrastructure.database.base import DocumentModel
from src.infrastructure.database.connection import ConnectionManager
from src.infrastructure.database.repository import BaseRepository, RetryingRepository

type CursorFactory = Callable[[Iterable[dict[str, Any]]], MockType]


class Customer(DocumentModel):
    """Entity used across database unit tests."""

    name: str
    email: str | None = None


def _make_cursor(
    mocker: MockerFixture, documents: Iterable[dict[str, Any]]
) -> MockType:
    items = list(documents)
    cursor = mocker.MagicMock()
    cursor.to_list = mocker.AsyncMock(return_value=items)
    cursor.__aiter__.return_value = items
    return cursor


@pytest.fixture
def make_cursor(mocker: MockerFixture) -> CursorFactory:
    """Provide a factory for cursor mocks supporting to_list and async for."""
    return lambda documents: _make_cursor(mocker, documents)


@pytest.fixture
def customer_model() -> type[Customer]:
    """Provide the test entity class."""
    return Customer


@pytest.fixture
def database_config() -> DatabaseConfig:
    """Provide database settings pointing at a local server."""
    return DatabaseConfig(
        connection_string="mongodb://localhost:27017",
        database_name="scrinium_unit",
        mongo_down_time=5,
    )


@pytest.fixture
def mock_collection(mocker: MockerFixture) -> MockType:
    """Provide a collection mock with async store methods."""
    collection = mocker.MagicMock()
    for method in (
        "find_one",
        "replace_one",
        "delete_one",
        "delete_many",
        "insert_many",
        "insert_one",
        "bulk_write",
        "count_documents",
    ):
        setattr(collection, method, mocker.AsyncMock())
    collection.find = mocker.MagicMock(return_value=_make_cursor(mocker, []))
    return collection


@pytest.fixture
def connection(
    mocker: MockerFixture,
    database_config: DatabaseConfig,
    mock_collection: MockType,
) -> ConnectionManager:
    """Provide a real manager whose collections resolve to the mock."""
    manager = ConnectionManager(database_config)
    mocker.patch.object(manager, "get_collection", return_value=mock_collection)
    return manager


@pytest.fixture
def repository(connection: ConnectionManager) -> BaseRepository[Customer]:
    """Provide a repository for the test entity."""
    return BaseRepository(connection, Customer)


@pytest.fixture
def retrying_repository(
    connection: ConnectionManager,
) -> RetryingRepository[Customer]:
    """Provide a retrying repository for the test entity."""
    return RetryingRepository(connection, Customer)
