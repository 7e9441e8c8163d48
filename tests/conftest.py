"""Global pytest configuration and fixtures."""
import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from logguard.core.context import clear_logging_context
from logguard.core.logging import (
    AppenderConfig,
    LogEntry,
    LoggingContext,
    LogLevel,
    MemoryAppender,
    PatternLayout,
)


@pytest.fixture(autouse=True)
def clean_logging_context():
    """Make sure no ambient logging context leaks between tests."""
    clear_logging_context()
    yield
    clear_logging_context()


@pytest.fixture
def make_entry() -> Callable[..., LogEntry]:
    """Build log entries with sensible defaults."""
    def _make_entry(**overrides: Any) -> LogEntry:
        values: dict[str, Any] = {
            "id": "entry-1",
            "timestamp": datetime(2025, 6, 20, 14, 30, 45, 123000, tzinfo=UTC),
            "level": LogLevel.INFO,
            "category": "app.test",
            "message": "Test message",
        }
        values.update(overrides)
        return LogEntry(**values)
    return _make_entry


@pytest.fixture
def context() -> LoggingContext:
    """A typical request context."""
    return LoggingContext(
        user_id="user-123",
        session_id="sess-456",
        request_id="req-789",
        component="auth",
        action="login",
    )


@pytest.fixture
def memory_appender() -> MemoryAppender:
    """A started in-memory appender with a pattern layout."""
    appender = MemoryAppender(
        AppenderConfig(name="memory", type="memory"),
        layout=PatternLayout(),
    )
    asyncio.run(appender.start())
    return appender
