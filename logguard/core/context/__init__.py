"""Core context management for request-scoped logging data."""
from .logging_context import (
    bind_logging_context,
    clear_logging_context,
    get_logging_context,
    logging_context,
    reset_logging_context,
    set_logging_context,
)

__all__ = [
    "bind_logging_context",
    "clear_logging_context",
    "get_logging_context",
    "logging_context",
    "reset_logging_context",
    "set_logging_context",
]
