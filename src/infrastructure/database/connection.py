"""Document store client construction and lifecycle management.

This module owns the single live MongoDB client a repository works
through. The client is built lazily on first use and reused for every
subsequent operation until it is disposed.

Core functionality:
- **Lazy construction**: No client exists until an operation needs one
- **Idempotent connect**: Repeated ensure_connected calls return the same client
- **Soft construction failure**: Errors are logged and returned, never raised
- **Scoped disposal**: ``async with`` releases the client on every exit path
- **Health checks**: Ping-based connectivity validation for probes

Client tuning (fixed, see src.infrastructure.constants):
- **Pool ceiling**: 500 connections
- **Idle timeout**: 59 seconds
- **Server selection timeout**: ``mongo_down_time`` seconds from settings
- **TLS**: certificate verification disabled

State machine::

    UNINITIALIZED -> CONNECTING -> CONNECTED
    CONNECTING -> UNINITIALIZED      (construction failed, retried next call)
    UNINITIALIZED | CONNECTED -> DISPOSED   (terminal)

Each manager is an explicit object handed to the repositories that use
it, so tests can substitute it and teardown is deterministic.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Self

from loguru import logger
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo.errors import PyMongoError

from src.core.config import DatabaseConfig, get_settings
from src.core.constants import MILLISECONDS_PER_SECOND
from src.core.error_context import sanitize_connection_string, sanitize_error_context
from src.core.exceptions import ConnectionDisposedError, ConnectionUnavailableError
from src.core.logging import format_log_timestamp
from src.infrastructure.constants import (
    MAX_CONNECTION_IDLE_SECONDS,
    MAX_POOL_SIZE,
    TLS_ALLOW_INVALID_CERTIFICATES,
)


class ConnectionState(Enum):
    """Lifecycle states of a ConnectionManager."""

    UNINITIALIZED = "UNINITIALIZED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISPOSED = "DISPOSED"


@dataclass(frozen=True)
class ConnectionResult:
    """Outcome of an ensure_connected call.

    Attributes:
        client: The live client, or None if none could be built yet.
        error: The construction failure when ``client`` is None.
    """

    client: AsyncIOMotorClient | None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Whether a client is available."""
        return self.client is not None


def create_mongo_client(
    connection_string: str, down_time_seconds: int
) -> AsyncIOMotorClient:
    """Create an async MongoDB client with the fixed pool and TLS policy.

    Malformed connection strings and invalid options fail here;
    unreachable servers fail at first use. For ``mongodb://`` URIs
    construction does no network I/O. For ``mongodb+srv://`` URIs the
    driver may resolve the SRV and TXT records here, which is a blocking
    DNS lookup on the calling thread (and on the event loop when called
    from a coroutine). Services using SRV URIs should call
    ``ConnectionManager.ensure_connected`` once at startup, before serving
    traffic, so the lookup never lands inside a request.

    Args:
        connection_string: MongoDB connection URI.
        down_time_seconds: Server selection timeout in seconds.

    Returns:
        AsyncIOMotorClient: Configured client instance.
    """
    return AsyncIOMotorClient(
        connection_string,
        maxPoolSize=MAX_POOL_SIZE,
        maxIdleTimeMS=MAX_CONNECTION_IDLE_SECONDS * MILLISECONDS_PER_SECOND,
        serverSelectionTimeoutMS=down_time_seconds * MILLISECONDS_PER_SECOND,
        tlsAllowInvalidCertificates=TLS_ALLOW_INVALID_CERTIFICATES,
    )


class ConnectionManager:
    """Owns one lazily-built MongoDB client and its lifecycle.

    Args:
        config: Database settings. Defaults to the application settings.

    Example:
        async with ConnectionManager() as connection:
            repo = BaseRepository(connection, Customer)
            await repo.insert(Customer(name="Ada"))
    """

    def __init__(self, config: DatabaseConfig | None = None) -> None:
        self.config = config or get_settings().database_config
        self._client: AsyncIOMotorClient | None = None
        self._state = ConnectionState.UNINITIALIZED
        self._last_error: Exception | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def client(self) -> AsyncIOMotorClient | None:
        """The cached client, or None if not built yet."""
        return self._client

    @property
    def is_disposed(self) -> bool:
        """Whether dispose() has run."""
        return self._state is ConnectionState.DISPOSED

    def _raise_if_disposed(self) -> None:
        if self.is_disposed:
            raise ConnectionDisposedError(
                "Connection manager was used after dispose()",
                context={"database": self.config.database_name},
            )

    def ensure_connected(self) -> ConnectionResult:
        """Build the client if needed and return it.

        A call that finds an existing client is a no-op. A construction
        failure is logged and returned in the result; the next call tries
        again.

        Returns:
            ConnectionResult: The client, or the error that prevented it.

        Raises:
            ConnectionDisposedError: If the manager has been disposed.
        """
        self._raise_if_disposed()
        if self._client is not None:
            return ConnectionResult(self._client)

        with self._lock:
            # Double-checked locking pattern
            if self._client is None:
                self._raise_if_disposed()
                self._connect()

        return ConnectionResult(self._client, self._last_error)

    def _connect(self) -> None:
        """Construct the client. Caller holds the lock."""
        self._state = ConnectionState.CONNECTING
        safe_url = sanitize_connection_string(self.config.connection_string)
        start = time.perf_counter()

        try:
            client = create_mongo_client(
                self.config.connection_string, self.config.mongo_down_time
            )
        except (PyMongoError, ValueError, TypeError) as e:
            self._state = ConnectionState.UNINITIALIZED
            self._last_error = e
            logger.error(
                "Failed to create MongoDB client at {} - url: {}, error: {}",
                format_log_timestamp(),
                safe_url,
                type(e).__name__,
                **sanitize_error_context(e, {"url": safe_url}),
            )
            return

        duration_ms = (time.perf_counter() - start) * MILLISECONDS_PER_SECOND
        self._client = client
        self._last_error = None
        self._state = ConnectionState.CONNECTED
        logger.info(
            "Created MongoDB client at {} in {:.2f}ms - url: {}, pool: {}, "
            "idle: {}s, server_selection: {}s",
            format_log_timestamp(),
            duration_ms,
            safe_url,
            MAX_POOL_SIZE,
            MAX_CONNECTION_IDLE_SECONDS,
            self.config.mongo_down_time,
            duration_ms=round(duration_ms, 2),
        )

    def get_database(self, database_name: str | None = None) -> AsyncIOMotorDatabase:
        """Get a database handle, connecting first if needed.

        Args:
            database_name: Database to bind. Defaults to the configured one.

        Returns:
            AsyncIOMotorDatabase: The database handle.

        Raises:
            ConnectionUnavailableError: If no client could be built.
            ConnectionDisposedError: If the manager has been disposed.
        """
        name = database_name or self.config.database_name
        result = self.ensure_connected()
        if result.client is None:
            raise ConnectionUnavailableError(
                "MongoDB client is not available",
                context={
                    "database": name,
                    "url": sanitize_connection_string(self.config.connection_string),
                },
                cause=result.error,
            )
        return result.client[name]

    def get_collection(
        self, collection_name: str, database_name: str | None = None
    ) -> AsyncIOMotorCollection:
        """Bind a collection handle on the target database.

        Handles are stateless beyond the binding and may be recreated freely.

        Args:
            collection_name: The collection to bind.
            database_name: Database to bind. Defaults to the configured one.

        Returns:
            AsyncIOMotorCollection: The collection handle.
        """
        return self.get_database(database_name)[collection_name]

    async def dispose(self) -> None:
        """Close the client and release its pool. Safe to call repeatedly.

        Disposal while operations are in flight is the caller's
        responsibility to avoid.
        """
        with self._lock:
            if self.is_disposed:
                return
            client = self._client
            self._client = None
            self._state = ConnectionState.DISPOSED

        if client is not None:
            client.close()
        logger.info("MongoDB connection disposed at {}", format_log_timestamp())

    async def __aenter__(self) -> Self:
        """Enter the scope that owns this connection."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Dispose the connection on every exit path."""
        await self.dispose()


async def check_database_connection(
    connection: ConnectionManager,
) -> tuple[bool, str | None]:
    """Check if the document store is reachable.

    This function is used for health checks and startup validation.

    Args:
        connection: The connection manager to probe.

    Returns:
        tuple[bool, str | None]: A tuple containing:
            - bool: True if the ping succeeded, False otherwise
            - str | None: Error message if the ping failed, None if successful

    Example:
        is_healthy, error = await check_database_connection(connection)
        if not is_healthy:
            logger.error("Database unhealthy: {}", error)
    """
    try:
        database = connection.get_database()
        await database.command("ping")
    except (PyMongoError, ConnectionUnavailableError) as e:
        return False, sanitize_connection_string(str(e))
    else:
        return True, None
