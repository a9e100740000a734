"""Shared fixtures for unit tests."""

import os
from collections.abc import Generator

import pytest
from pytest_mock import MockerFixture, MockType

from src.core.config import LogConfig, Settings, get_settings
from src.core.error_context import _get_sensitive_fields

# Environment variables that would leak host configuration into Settings()
SETTINGS_ENV_PREFIXES = (
    "APP_",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_CONFIG__",
    "DATABASE_CONFIG__",
    "K_SERVICE",
    "AWS_EXECUTION_ENV",
)


@pytest.fixture(autouse=True)
def isolated_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Strip settings-related variables; monkeypatch restores them afterwards."""
    for key in list(os.environ):
        if key.startswith(SETTINGS_ENV_PREFIXES):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def fresh_settings_cache() -> Generator[None]:
    """Drop cached settings around each test."""
    caches = (get_settings, _get_sensitive_fields)
    for cached in caches:
        cached.cache_clear()
    yield
    for cached in caches:
        cached.cache_clear()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Provide real Settings built from a development environment.

    Returns:
        Settings: Settings pointing at a local unit-test database.
    """
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("DATABASE_CONFIG__CONNECTION_STRING", "mongodb://localhost")
    monkeypatch.setenv("DATABASE_CONFIG__DATABASE_NAME", "scrinium_unit")
    return Settings()


@pytest.fixture
def mock_main_dependencies(
    mocker: MockerFixture, mock_settings: Settings
) -> dict[str, MockType]:
    """Patch what main.py talks to, leaving a healthy ping by default.

    Returns:
        dict[str, MockType]: Patched objects keyed by name in main.
    """
    return {
        "get_settings": mocker.patch("main.get_settings", return_value=mock_settings),
        "setup_logging": mocker.patch("main.setup_logging"),
        "check_database_connection": mocker.patch(
            "main.check_database_connection",
            new_callable=mocker.AsyncMock,
            return_value=(True, None),
        ),
        "logger": mocker.patch("main.logger"),
    }


@pytest.fixture
def mock_get_settings(mocker: MockerFixture) -> MockType:
    """Patch error_context's settings with extra sensitive field names.

    Returns:
        MockType: The patched get_settings.
    """
    log_config = mocker.Mock(spec=LogConfig)
    log_config.sensitive_fields = ["internal_ref", "customer_code"]
    settings = mocker.Mock(spec=Settings, log_config=log_config)

    _get_sensitive_fields.cache_clear()
    return mocker.patch("src.core.error_context.get_settings", return_value=settings)
