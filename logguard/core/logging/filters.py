"""Security filter chain for log entries.

Filters are named, prioritized transforms over a ``LogEntry``. They run in
descending priority order, each receiving the previous filter's output. A
filter returning ``None`` drops the entry: no later filter and no appender
sees it.

Built-in filters (registered when a sanitizer is supplied):
- ``pii-sanitization``: masks PII shapes and sensitive ``key: value`` text
  in the message, sanitizes context and metadata
- ``security-level-filter``: reduces the context of SECURITY entries to
  ``component`` and ``action``
- ``user-data-protection``: drops the user agent and sensitive additional
  context data
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from .entry import LogEntry, LoggingContext
from .levels import LogLevel
from .sanitizer import DataSanitizer

logger = structlog.get_logger(__name__)

FilterTransform = Callable[[LogEntry], LogEntry | None]


@dataclass
class SecurityFilter:
    """A named entry transform. Returning None drops the entry."""

    name: str
    transform: FilterTransform
    priority: int = 0
    enabled: bool = True
    description: str = ""


class SecurityFilterChain:
    """Ordered, individually switchable set of security filters."""

    def __init__(self, sanitizer: DataSanitizer | None = None):
        self.sanitizer = sanitizer
        self._filters: dict[str, SecurityFilter] = {}
        self._dropped = 0
        if sanitizer is not None:
            for security_filter in self._builtin_filters(sanitizer):
                self.add_filter(security_filter)

    def _builtin_filters(self, sanitizer: DataSanitizer) -> list[SecurityFilter]:
        def sanitize_pii(entry: LogEntry) -> LogEntry:
            sanitized = sanitizer.sanitize_entry(entry)
            message = sanitizer.redact_pii(sanitizer.sanitize_string(sanitized.message))
            return sanitized.with_message(message)

        def reduce_security_context(entry: LogEntry) -> LogEntry:
            if entry.level != LogLevel.SECURITY or entry.context is None:
                return entry
            return entry.with_context(
                LoggingContext(component=entry.context.component, action=entry.context.action)
            )

        def protect_user_data(entry: LogEntry) -> LogEntry:
            if entry.context is None:
                return entry
            context = entry.context.clone()
            context.user_agent = None
            context.additional_data = {
                key: value
                for key, value in context.additional_data.items()
                if not sanitizer.is_sensitive_field(str(key))
            }
            return entry.with_context(context)

        return [
            SecurityFilter(
                name="pii-sanitization",
                transform=sanitize_pii,
                priority=100,
                description="Mask PII and sensitive fields",
            ),
            SecurityFilter(
                name="security-level-filter",
                transform=reduce_security_context,
                priority=90,
                description="Strip context of SECURITY entries to component/action",
            ),
            SecurityFilter(
                name="user-data-protection",
                transform=protect_user_data,
                priority=80,
                description="Drop user agent and sensitive additional data",
            ),
        ]

    def add_filter(self, security_filter: SecurityFilter) -> None:
        """Register a filter, replacing one with the same name."""
        self._filters[security_filter.name] = security_filter

    def remove_filter(self, name: str) -> None:
        self._filters.pop(name, None)

    def get_filter(self, name: str) -> SecurityFilter | None:
        return self._filters.get(name)

    def set_filter_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a filter; returns False if no such filter exists."""
        security_filter = self._filters.get(name)
        if security_filter is None:
            return False
        security_filter.enabled = enabled
        return True

    def list_filters(self) -> list[SecurityFilter]:
        """Registered filters in execution order."""
        return sorted(self._filters.values(), key=lambda f: f.priority, reverse=True)

    def _run(self, entry: LogEntry, changes: list[str] | None = None) -> LogEntry | None:
        current = entry
        for security_filter in self.list_filters():
            if not security_filter.enabled:
                continue
            try:
                result = security_filter.transform(current)
            except Exception as e:
                # a broken filter must not let unfiltered data through
                logger.warning(
                    "Security filter failed, dropping entry",
                    filter=security_filter.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = None
            if result is None:
                self._dropped += 1
                if changes is not None:
                    changes.append(security_filter.name)
                return None
            if changes is not None and result != current:
                changes.append(security_filter.name)
            current = result
        return current

    def apply_filters(self, entry: LogEntry) -> LogEntry | None:
        """Run every enabled filter; None means the entry was dropped."""
        return self._run(entry)

    def test_filters(self, entry: LogEntry) -> dict[str, Any]:
        """Run the chain and report which filters changed or dropped the entry."""
        changes: list[str] = []
        filtered = self._run(entry, changes)
        return {
            "original": entry,
            "filtered": filtered,
            "filtered_out": filtered is None,
            "changes": changes,
        }

    def get_statistics(self) -> dict[str, Any]:
        filters = self.list_filters()
        return {
            "total_filters": len(filters),
            "enabled_filters": sum(1 for f in filters if f.enabled),
            "entries_dropped": self._dropped,
            "filters": [
                {"name": f.name, "priority": f.priority, "enabled": f.enabled}
                for f in filters
            ],
        }
