"""Ambient logging context for the current request or unit of work.

A context bound here is merged underneath the context passed to each log
call, so per-request identifiers only have to be set once.
"""
from collections.abc import Mapping
from contextvars import ContextVar, Token
from typing import Any

import structlog

from logguard.core.logging.entry import LoggingContext

logger = structlog.get_logger(__name__)


# Thread-safe context variable
_logging_context: ContextVar[LoggingContext | None] = ContextVar(
    "logging_context", default=None
)


def get_logging_context() -> LoggingContext | None:
    """
    Get the ambient logging context.

    Returns:
        The current LoggingContext or None if not set
    """
    return _logging_context.get()


def set_logging_context(context: LoggingContext | Mapping[str, Any]) -> Token:
    """
    Replace the ambient logging context.

    Args:
        context: The context (or mapping of context fields) to set

    Returns:
        Token that can be passed to ``reset_logging_context``
    """
    ctx = LoggingContext.coerce(context)
    token = _logging_context.set(ctx)
    logger.debug(
        "Logging context set",
        request_id=ctx.request_id if ctx else None,
        user_id=ctx.user_id if ctx else None
    )
    return token


def reset_logging_context(token: Token) -> None:
    _logging_context.reset(token)


def bind_logging_context(**fields: Any) -> LoggingContext:
    """
    Merge fields into the ambient logging context.

    Unknown field names are stored in ``additional_data``.

    Returns:
        The new ambient context
    """
    current = get_logging_context() or LoggingContext()
    updated = current.merge(LoggingContext.from_dict(fields))
    _logging_context.set(updated)
    return updated


def clear_logging_context() -> None:
    """Clear the ambient logging context."""
    _logging_context.set(None)


class logging_context:
    """
    Context manager for temporarily binding logging context.

    Fields are layered on top of whatever context is already bound and the
    previous context is restored on exit.

    Example:
        with logging_context(request_id="req-1", user_id="u1"):
            logger.info("Handling request")
    """

    def __init__(self, context: LoggingContext | Mapping[str, Any] | None = None, **fields: Any):
        base = LoggingContext.coerce(context) or LoggingContext()
        self.context = base.merge(LoggingContext.from_dict(fields)) if fields else base
        self._token: Token | None = None

    def __enter__(self) -> LoggingContext:
        """Layer the context over the current one."""
        current = get_logging_context()
        merged = current.merge(self.context) if current else self.context
        self._token = _logging_context.set(merged)
        return merged

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore previous context."""
        if self._token is not None:
            _logging_context.reset(self._token)
            self._token = None
