"""Connectivity probe for the configured document store."""

import asyncio
import sys

from loguru import logger

from src.core.config import get_settings
from src.core.error_context import sanitize_connection_string
from src.core.logging import setup_logging
from src.infrastructure.database.connection import (
    ConnectionManager,
    check_database_connection,
)


async def probe() -> bool:
    """Ping the configured database once and dispose the connection.

    Returns:
        bool: True if the store answered the ping.
    """
    settings = get_settings()
    db_config = settings.database_config

    async with ConnectionManager(db_config) as connection:
        is_healthy, error = await check_database_connection(connection)

    if is_healthy:
        logger.info(
            "Database {} reachable at {}",
            db_config.database_name,
            sanitize_connection_string(db_config.connection_string),
        )
    else:
        logger.error("Database {} unreachable: {}", db_config.database_name, error)
    return is_healthy


def main() -> None:
    """Main entry point for the Scrinium connectivity probe."""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings)
    logger.info(
        "Starting {} v{} connectivity probe",
        settings.app_name,
        settings.app_version,
        environment=settings.environment,
    )

    healthy = asyncio.run(probe())
    sys.exit(0 if healthy else 1)


if __name__ == "__main__":
    main()
