"""structlog configuration for the package's own diagnostics.

logguard reports its internal events (appender failures, retries,
configuration warnings) through structlog, on the ``logguard.*`` loggers.
The ``logguard.fallback`` logger is the last-resort channel for entries
that could not be delivered. Applications that already configure
structlog need nothing from this module; others can call
``configure_internal_logging()`` once at startup.
"""

import logging
import sys
from typing import Any

import structlog

from .config import LogFormat
from .sanitizer import DataSanitizer

_sanitizer = DataSanitizer()


def _add_logging_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add ambient logging context (request_id, user_id) to diagnostic events."""
    from logguard.core.context import get_logging_context

    context = get_logging_context()
    if context:
        if context.request_id:
            event_dict.setdefault("request_id", context.request_id)
        if context.user_id:
            event_dict.setdefault("user_id", context.user_id)
    return event_dict


def _sanitize_event(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask sensitive fields in diagnostic events."""
    return _sanitizer.sanitize(event_dict)


def _create_processor_chain(format: LogFormat) -> list:
    """Build the processor chain ending in a JSON or console renderer."""
    processors: list = [
        _sanitize_event,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_logging_context,
    ]
    if format == LogFormat.JSON:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), pad_event=True))
    return processors


def configure_internal_logging(
    level: str = "WARNING",
    format: LogFormat = LogFormat.CONSOLE,
) -> None:
    """
    Route ``logguard.*`` structlog events through a stdlib stderr handler.

    Args:
        level: Minimum level for internal events (stdlib level name)
        format: ``json`` or ``console`` rendering
    """
    processors = _create_processor_chain(format)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=processors[-1],
            foreign_pre_chain=processors[:-1],
        )
    )

    internal_logger = logging.getLogger("logguard")
    for existing in internal_logger.handlers[:]:
        internal_logger.removeHandler(existing)
    internal_logger.addHandler(handler)
    internal_logger.setLevel(level.upper())
    internal_logger.propagate = False

    structlog.configure(
        processors=[
            *processors[:-1],
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
