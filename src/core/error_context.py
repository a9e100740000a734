"""Redaction of credentials and sensitive filter values before logging.

Connection strings and filter documents regularly end up in log lines:
connection strings in lifecycle messages and driver errors, filters in
query and delete logs. Both pass through here first.

A field is sensitive when its name matches ``DEFAULT_SENSITIVE_PATTERN``
or contains one of ``LogConfig.sensitive_fields``. Query operators such as
``$in`` take the sensitivity of the field they apply to.

Only copies are redacted; documents and filters sent to the store are
never modified.
"""

from __future__ import annotations

import re
from functools import lru_cache
from re import Pattern
from typing import Any, Final

from src.core.config import get_settings
from src.core.constants import REDACTED
from src.core.types import FilterSpec, LogContext

DEFAULT_SENSITIVE_PATTERN: Final[Pattern[str]] = re.compile(
    r"(password|passwd|pwd|secret|token|api[_-]?key|apikey|auth|credential|"
    r"private[_-]?key|access[_-]?key|session|ssn|pin|cvv|cvc|card[_-]?number|"
    r"connection[_-]?string)",
    re.IGNORECASE,
)

# user:password@ section of a MongoDB URI, anywhere in a string
URI_CREDENTIALS_PATTERN: Final[Pattern[str]] = re.compile(
    r"(?P<scheme>mongodb(?:\+srv)?://)(?P<user>[^:@/\s]+):(?P<password>[^@/\s]*)@",
    re.IGNORECASE,
)

# Nesting below this is replaced wholesale
MAX_DEPTH: Final[int] = 10


@lru_cache(maxsize=1)
def _get_sensitive_fields() -> tuple[str, ...]:
    """Configured extra sensitive names, lowercased."""
    return tuple(
        name.lower() for name in get_settings().log_config.sensitive_fields
    )


def is_sensitive_field(field_name: str) -> bool:
    """Whether values stored under ``field_name`` must be masked.

    Args:
        field_name: Document or filter key.

    Returns:
        bool: True for credential-like names and configured extras.
    """
    if DEFAULT_SENSITIVE_PATTERN.search(field_name):
        return True
    lowered = field_name.lower()
    return any(name in lowered for name in _get_sensitive_fields())


def sanitize_value(value: Any, field_name: str = "", depth: int = 0) -> Any:
    """Return a copy of ``value`` with sensitive parts masked.

    Dicts, lists and tuples are walked recursively. Keys starting with ``$``
    are operators and inherit ``field_name``; list items inherit it too.
    """
    if depth > MAX_DEPTH or (field_name and is_sensitive_field(field_name)):
        return REDACTED

    match value:
        case dict():
            return {
                key: sanitize_value(
                    item, field_name if key.startswith("$") else key, depth + 1
                )
                for key, item in value.items()
            }
        case list() | tuple():
            items = [sanitize_value(item, field_name, depth + 1) for item in value]
            return items if isinstance(value, list) else tuple(items)
        case _:
            return value


def sanitize_filter(filter_doc: FilterSpec | None) -> LogContext:
    """Copy a filter document for logging, masking sensitive values.

    Args:
        filter_doc: The filter document, or None for an unfiltered query.

    Returns:
        LogContext: A new dict; empty for a missing filter.
    """
    if not filter_doc:
        return {}
    return {key: sanitize_value(value, key) for key, value in filter_doc.items()}


def sanitize_connection_string(url: str) -> str:
    """Mask every MongoDB URI password found in ``url``.

    Works on bare URIs and on error messages that embed one.
    """
    return URI_CREDENTIALS_PATTERN.sub(
        lambda m: f"{m.group('scheme')}{m.group('user')}:{REDACTED}@", url
    )


def sanitize_error_context(
    error: Exception, context: LogContext | None = None
) -> LogContext:
    """Build log extras describing ``error``, safe to emit.

    Args:
        error: The failure being logged.
        context: Additional extras, masked like filter values.

    Returns:
        LogContext: ``error_type``, ``error_message`` and the masked extras.
    """
    extras: LogContext = {
        "error_type": type(error).__name__,
        "error_message": sanitize_connection_string(str(error)),
    }
    if context:
        extras.update(
            (key, sanitize_value(value, key)) for key, value in context.items()
        )
    return extras
