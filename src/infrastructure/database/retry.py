"""Fixed-delay retry for store operations that may fail transiently.

The policy is deliberately flat: a fixed number of attempts separated by
a fixed delay, with no backoff growth, no jitter and no classification of
the failure. A permanent error consumes the same budget as a network blip.
After the last attempt the original exception propagates unchanged.

Two conditions are never retried:
- ``asyncio.CancelledError``: cancellation ends the call at once
- ``ConnectionDisposedError``: use after disposal is a programmer error
"""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from src.core.error_context import sanitize_error_context
from src.core.exceptions import ConnectionDisposedError, ValidationError
from src.infrastructure.constants import RETRY_ATTEMPTS, RETRY_DELAY_SECONDS


async def with_retry[R](
    operation: Callable[[], Awaitable[R]],
    *,
    operation_name: str,
    attempts: int = RETRY_ATTEMPTS,
    delay_seconds: float = RETRY_DELAY_SECONDS,
) -> R:
    """Execute an async operation, retrying on failure.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        operation_name: Name used in log lines.
        attempts: Total attempts including the first.
        delay_seconds: Wait between a failed attempt and the next one.

    Returns:
        R: Result of the first successful attempt.

    Raises:
        Exception: The last attempt's exception, unmodified.

    Example:
        users = await with_retry(
            lambda: repo.find_all_by_predicate({"active": True}),
            operation_name="find_active_users",
        )
    """
    if attempts < 1:
        raise ValidationError(
            "Retry attempts must be at least 1",
            context={"attempts": attempts, "operation": operation_name},
        )

    attempt = 1
    while True:
        try:
            return await operation()
        except ConnectionDisposedError:
            raise
        except Exception as e:
            if attempt >= attempts:
                logger.error(
                    "{} failed after {} attempts: {}",
                    operation_name,
                    attempts,
                    type(e).__name__,
                    operation=operation_name,
                    attempt=attempt,
                    **sanitize_error_context(e),
                )
                raise

            logger.warning(
                "{} failed on attempt {}/{}, retrying in {}s: {}",
                operation_name,
                attempt,
                attempts,
                delay_seconds,
                type(e).__name__,
                operation=operation_name,
                attempt=attempt,
                **sanitize_error_context(e),
            )
            await asyncio.sleep(delay_seconds)
            attempt += 1
