"""Settings for Scrinium, loaded with pydantic-settings.

Values come from, highest precedence first: environment variables, a
``.env`` file in the working directory, then the defaults below. Nested
sections use ``__`` in variable names, e.g.
``DATABASE_CONFIG__CONNECTION_STRING=mongodb://db:27017``.

``get_settings`` caches the result; tests clear the cache to reload.
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MONGO_URL_SCHEMES = ("mongodb://", "mongodb+srv://")

# Set by managed container platforms (Cloud Run, Lambda)
MANAGED_PLATFORM_ENV_VARS = ("K_SERVICE", "AWS_EXECUTION_ENV")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
FormatterType = Literal["console", "json"]


class LogConfig(BaseModel):
    """Log level, output mode and redaction."""

    log_level: LogLevel = Field(default="INFO", description="Minimum level emitted")
    log_formatter_type: FormatterType | None = Field(
        default=None,
        description="console or json; chosen from the environment when unset",
    )
    slow_operation_threshold_ms: int = Field(
        default=500,
        gt=0,
        description="Store round-trips slower than this are logged as warnings",
    )
    sensitive_fields: list[str] = Field(
        default_factory=lambda: [
            "password",
            "token",
            "secret",
            "api_key",
            "authorization",
        ],
        description="Extra names whose values are masked in logs",
    )


class DatabaseConfig(BaseModel):
    """Document store connection settings.

    Pool size and idle time are fixed constants of the connection layer and
    are deliberately absent here.
    """

    connection_string: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI (mongodb:// or mongodb+srv://)",
    )
    database_name: str = Field(
        default="scrinium",
        min_length=1,
        description="Target database name",
    )
    collection_name: str | None = Field(
        default=None,
        description="Explicit collection name. Defaults to the entity class name.",
    )
    mongo_down_time: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Server selection timeout in seconds",
    )

    @field_validator("connection_string", mode="after")
    @classmethod
    def require_mongo_scheme(cls, v: str) -> str:
        """Reject URIs that pymongo would not accept as a MongoDB address."""
        if not v.startswith(MONGO_URL_SCHEMES):
            msg = "Connection string must start with mongodb:// or mongodb+srv://"
            raise ValueError(msg)
        return v

    @field_validator("collection_name", mode="before")
    @classmethod
    def blank_collection_is_unset(cls, v: str | None) -> str | None:
        """Treat an empty override as no override."""
        return v or None

    def get_test_database_name(self) -> str:
        """Name of the database integration tests work in."""
        if self.database_name.endswith("_test"):
            return self.database_name
        return f"{self.database_name}_test"


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        validate_default=True,
    )

    app_name: str = Field(default="Scrinium", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    debug: bool = Field(default=True, description="Verbose tracebacks in logs")

    log_config: LogConfig = Field(default_factory=LogConfig)
    database_config: DatabaseConfig = Field(default_factory=DatabaseConfig)

    def model_post_init(self, __context: object) -> None:
        """Fill in the log formatter when it wasn't configured."""
        super().model_post_init(__context)
        if self.log_config.log_formatter_type is None:
            self.log_config.log_formatter_type = self._detect_formatter()

    def _detect_formatter(self) -> FormatterType:
        if any(os.getenv(name) for name in MANAGED_PLATFORM_ENV_VARS):
            return "json"
        return "console" if self.environment == "development" else "json"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first call."""
    return Settings()
