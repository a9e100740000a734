"""Structured exception hierarchy for the data-access layer.

Only the conditions the layer itself detects get an exception type here.
Errors raised by the document store driver (``pymongo.errors``) are never
wrapped: they reach the caller with their original detail.

Key components:
- **ErrorCode enum**: Standardized error identifiers for programmatic handling
- **ScriniumError**: Base exception with structured context and cause chaining
- **Specialized exceptions**: Validation, connection availability, disposal

Not-found conditions are not errors. Repositories report them as ``None``,
``False`` or an empty list.
"""

from enum import Enum

from src.core.types import ErrorContext


class ErrorCode(Enum):
    """Standardized error codes for the data-access layer."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """A repository call was made with arguments it cannot act on."""

    CONNECTION_UNAVAILABLE = "CONNECTION_UNAVAILABLE"
    """The store client could not be constructed."""

    CONNECTION_DISPOSED = "CONNECTION_DISPOSED"
    """The connection was used after it had been disposed."""


class ScriniumError(Exception):
    """Base exception for errors detected by the data-access layer.

    Subclasses set ``default_code``; callers only pass a message and, where
    useful, context and the underlying cause.

    Args:
        message: Human-readable error message.
        error_code: Overrides the class default code.
        context: Structured details for logs (collection, operation, ...).
        cause: The exception that led to this one; chained as ``__cause__``.
    """

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ) -> None:
        code = error_code or self.default_code
        self.error_code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.context = context or {}
        self.cause = cause

        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        details = [f"error_code='{self.error_code}'", f"message='{self.message}'"]
        if self.context:
            details.append(f"context={self.context}")
        return f"{type(self).__name__}({', '.join(details)})"


class ValidationError(ScriniumError):
    """A repository call received arguments it cannot act on.

    Examples are updating an entity without an identifier or submitting an
    empty batch to a bulk insert.
    """

    default_code = ErrorCode.VALIDATION_ERROR


class ConnectionUnavailableError(ScriniumError):
    """No store client could be built at the point of use.

    The construction failure itself is logged and returned by
    ``ConnectionManager.ensure_connected``; this error carries it as ``cause``.
    """

    default_code = ErrorCode.CONNECTION_UNAVAILABLE


class ConnectionDisposedError(ScriniumError):
    """A disposed connection manager was used again."""

    default_code = ErrorCode.CONNECTION_DISPOSED

    def __init__(
        self,
        message: str = "Connection has been disposed",
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message, context=context)
