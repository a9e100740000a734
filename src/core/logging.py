"""Loguru setup for the data-access layer.

Two output modes share one record shape:

- **console**: colorized single line, store context (collection, operation,
  attempt, duration) inlined before the message. Used in development.
- **json**: one object per line for log shippers. Used everywhere else.

pymongo and motor log through the standard library; those records are
routed into Loguru so there is a single sink and format.

Connection lifecycle events carry a UTC stamp formatted by
``format_log_timestamp`` (``2024-05-01 03:07:09 PM``).
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final, cast

from loguru import logger

from src.core.config import get_settings
from src.core.constants import LOG_TIMESTAMP_FORMAT, REDACTED

if TYPE_CHECKING:
    from src.core.config import Settings

type RecordFormatter = Callable[[dict[str, Any]], str]


class _LoggingState:
    """Tracks whether setup_logging already ran in this process."""

    def __init__(self) -> None:
        self.configured = False


_state = _LoggingState()

FALLBACK_FORMAT: Final[str] = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{message}\n"
)
MAX_FIELD_VALUE_LENGTH: Final[int] = 100

# Store context rendered first on console lines, in this order
STORE_FIELDS: Final[tuple[str, ...]] = (
    "collection",
    "operation",
    "attempt",
    "duration_ms",
    "timestamp",
)

# Standard library loggers that are chatty below WARNING
QUIET_LOGGERS: Final[tuple[str, ...]] = ("pymongo.topology", "pymongo.serverSelection")


def format_log_timestamp(moment: datetime | None = None) -> str:
    """Format a UTC diagnostic timestamp, e.g. ``2024-05-01 03:07:09 PM``.

    Args:
        moment: The instant to format, timezone-aware. Defaults to now.

    Returns:
        str: The formatted timestamp.

    Raises:
        ValueError: If ``moment`` is naive; its offset would be guessed.
    """
    if moment is None:
        moment = datetime.now(UTC)
    elif moment.utcoffset() is None:
        msg = "format_log_timestamp requires a timezone-aware datetime"
        raise ValueError(msg)
    return moment.astimezone(UTC).strftime(LOG_TIMESTAMP_FORMAT)


def _escape(text: str) -> str:
    # Loguru treats the returned format string as a template
    return text.replace("{", "{{").replace("}", "}}")


def _render_value(key: str, value: object, sensitive: list[str]) -> str:
    if key in sensitive:
        return REDACTED
    if key == "duration_ms":
        return f"{value}ms"
    text = str(value)
    if len(text) > MAX_FIELD_VALUE_LENGTH:
        return text[: MAX_FIELD_VALUE_LENGTH - 3] + "..."
    return text


def _format_extra_field(key: str, value: object) -> str | None:
    """Render one ``key=value`` pair for console output.

    Returns None when the value can't be rendered, so one odd extra never
    breaks the whole line.
    """
    try:
        sensitive = get_settings().log_config.sensitive_fields
        rendered = _render_value(key, value, sensitive)
    except (AttributeError, TypeError, ValueError) as e:
        logger.trace("Skipping unrenderable log field {}: {}", key, e)
        return None
    return f"{_escape(key)}={_escape(rendered)}"


def _ordered_extras(extra: dict[str, Any]) -> Iterator[tuple[str, Any, bool]]:
    """Yield public, non-null extras as (key, value, is_store_field)."""
    for key in STORE_FIELDS:
        if extra.get(key) is not None:
            yield key, extra[key], True
    for key, value in extra.items():
        if key in STORE_FIELDS or key.startswith("_") or value is None:
            continue
        yield key, value, False


def _format_context_fields(extra: dict[str, Any]) -> list[str]:
    """Render extras as markup, store context highlighted and first.

    Args:
        extra: Extra fields bound to the log record.

    Returns:
        list[str]: Markup fragments in display order.
    """
    fragments = []
    for key, value, is_store_field in _ordered_extras(extra):
        rendered = _format_extra_field(key, value)
        if rendered is None:
            continue
        tag = "yellow" if is_store_field else "dim"
        fragments.append(f"<{tag}>{rendered}</{tag}>")
    return fragments


def format_console_with_context(record: dict[str, Any]) -> str:
    """Build the Loguru format string for one console line.

    Args:
        record: Loguru record.

    Returns:
        str: Format template; braces from user data are escaped.
    """
    try:
        stamp = record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        location = f"{record['name']}:{record['function']}:{record['line']}"
        segments = [
            f"<green>{stamp}</green>",
            f"<level>{record['level'].name: <8}</level>",
            f"<cyan>{_escape(location)}</cyan>",
        ]
        if context := _format_context_fields(record.get("extra", {})):
            segments.append(" ".join(f"[{fragment}]" for fragment in context))
        segments.append(_escape(str(record["message"])))
    except (AttributeError, TypeError, ValueError, KeyError) as e:
        logger.trace("Falling back to plain console format: {}", e)
        return FALLBACK_FORMAT

    line = " | ".join(segments)
    if record.get("exception"):
        line += "\n{exception}"
    return line + "\n"


def serialize_for_json(record: dict[str, Any]) -> str:
    """Serialize a record as one JSON line.

    Extras are merged at the top level; private extras (``_`` prefix) are
    dropped. Values JSON can't encode, such as ObjectIds, become strings.

    Args:
        record: Loguru record.

    Returns:
        str: JSON document terminated by a newline.
    """
    entry: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "source": f"{record['module']}.{record['function']}:{record['line']}",
    }
    entry.update(
        (key, value)
        for key, value in record.get("extra", {}).items()
        if not key.startswith("_")
    )

    if exception := record.get("exception"):
        entry["exception"] = {
            "type": exception.type.__name__ if exception.type else None,
            "value": str(exception.value) if exception.value else None,
        }

    return json.dumps(entry, default=str) + "\n"


class InterceptHandler(logging.Handler):
    """Forward standard library records (pymongo, motor) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        """Re-emit the record through Loguru at the caller's frame.

        Args:
            record: Standard library record.
        """
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            frame, depth = sys._getframe(6), 6
            while frame.f_code.co_filename == logging.__file__ and frame.f_back:
                frame = frame.f_back
                depth += 1
        except ValueError:
            # Shallow stack
            depth = 1

        logger.opt(depth=depth, exception=record.exc_info).bind(
            logger_name=record.name
        ).log(level, record.getMessage())


LOG_FORMATTERS: dict[str, RecordFormatter | None] = {
    "console": None,
    "json": serialize_for_json,
}


def _add_console_sink(settings: Settings) -> None:
    logger.add(
        sys.stdout,
        format=cast("Any", format_console_with_context),
        level=settings.log_config.log_level,
        enqueue=True,
        colorize=True,
        diagnose=settings.debug,
        backtrace=settings.debug,
    )


def _add_structured_sink(settings: Settings, formatter: RecordFormatter) -> None:
    def structured_sink(message: object) -> None:
        record = getattr(message, "record", None)
        if record is not None:
            sys.stdout.write(formatter(record))
            sys.stdout.flush()

    logger.add(
        structured_sink,
        level=settings.log_config.log_level,
        enqueue=True,
        diagnose=False,
        backtrace=False,
    )


def setup_logging(settings: Settings) -> None:
    """Configure Loguru and route stdlib logging into it, once per process.

    Args:
        settings: Application settings; ``log_config`` selects level and mode.
    """
    if _state.configured:
        return

    logger.remove()

    formatter_type = settings.log_config.log_formatter_type or "console"
    formatter = LOG_FORMATTERS.get(formatter_type)
    if formatter is None:
        _add_console_sink(settings)
    else:
        _add_structured_sink(settings, formatter)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        "Logging configured with {} formatter",
        formatter_type,
        formatter_type=formatter_type,
        log_level=settings.log_config.log_level,
    )
    _state.configured = True
