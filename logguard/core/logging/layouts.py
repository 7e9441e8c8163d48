"""Layouts turn a ``LogEntry`` into an output payload.

Every layout is a pure function of the entry plus its own settings. A
layout never raises for an entry: invalid entries and internal formatting
failures (such as circular structures in context or metadata) produce a
deterministic fallback payload instead.
"""

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from rich.markup import escape

from .config import LayoutConfig
from .entry import LogEntry
from .formatting import format_date

FALLBACK_ERROR_MARKER = "format_failed"
INVALID_ENTRY_MARKER = "invalid_entry"

# Log level colors and icons
LEVEL_STYLES: dict[str, tuple[str, str]] = {
    "TRACE": ("dim", "·"),
    "DEBUG": ("dim cyan", "🔍"),
    "INFO": ("green", "ℹ️ "),
    "AUDIT": ("blue", "📋"),
    "WARN": ("yellow", "⚠️ "),
    "METRICS": ("magenta", "📈"),
    "ERROR": ("red bold", "❌"),
    "SECURITY": ("red bold", "🔒"),
    "FATAL": ("red bold reverse", "🚨"),
}


def _safe_str(value: Any) -> str:
    try:
        if isinstance(value, datetime):
            return value.isoformat()
        return "" if value is None else str(value)
    except Exception:
        return ""


def fallback_payload(entry: Any, marker: str = FALLBACK_ERROR_MARKER) -> str:
    """Minimal JSON payload used when formatting fails."""
    return json.dumps(
        {
            "timestamp": _safe_str(getattr(entry, "timestamp", None)),
            "level": _safe_str(getattr(entry, "level", None)),
            "category": _safe_str(getattr(entry, "category", None)),
            "message": _safe_str(getattr(entry, "message", None)),
            "error": marker,
        },
        ensure_ascii=False,
    )


class BaseLayout(ABC):
    """Common behaviour for layouts: configuration and failure fallback."""

    layout_type = "base"
    content_type = "text/plain"

    def __init__(self, config: LayoutConfig | Mapping[str, Any] | None = None):
        if config is None:
            config = LayoutConfig(name=self.layout_type, type=self.layout_type)
        elif not isinstance(config, LayoutConfig):
            config = LayoutConfig.model_validate(config)
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name or self.layout_type

    @property
    def uses_markup(self) -> bool:
        """Whether payloads contain rich console markup."""
        return False

    def get_content_type(self) -> str:
        return self.content_type

    def configure(self, partial: LayoutConfig | Mapping[str, Any]) -> None:
        """Merge ``partial`` settings into the current configuration."""
        if isinstance(partial, LayoutConfig):
            updates = partial.model_dump(exclude_unset=True)
        else:
            updates = LayoutConfig.model_validate(partial).model_dump(exclude_unset=True)
        self.config = self.config.model_copy(update=updates)

    def format(self, entry: LogEntry) -> str:
        if not isinstance(entry, LogEntry) or not entry.is_valid():
            return fallback_payload(entry, INVALID_ENTRY_MARKER)
        try:
            return self._format(entry)
        except Exception:
            return fallback_payload(entry)

    @abstractmethod
    def _format(self, entry: LogEntry) -> str:
        """Format a structurally valid entry; may raise."""


class PatternLayout(BaseLayout):
    """
    Human-readable layout driven by a token pattern.

    Tokens: ``%d{FORMAT}`` (or bare ``%d`` for ISO-8601), ``%level``,
    ``%category``, ``%message``, ``%thread``, ``%id``. Tokens are replaced
    in a single pass, so token-like text inside a message is left alone.
    """

    layout_type = "pattern"
    DEFAULT_PATTERN = "%d{YYYY-MM-DD HH:mm:ss.SSS} [%level] %category - %message"

    _TOKEN = re.compile(r"%d\{([^}]*)\}|%d|%level|%category|%message|%thread|%id")

    @property
    def uses_markup(self) -> bool:
        return self.config.include_colors

    def _format(self, entry: LogEntry) -> str:
        pattern = self.config.pattern or self.DEFAULT_PATTERN
        colors = self.config.include_colors

        def text(value: str) -> str:
            return escape(value) if colors else value

        def substitute(match: re.Match) -> str:
            token = match.group(0)
            if token.startswith("%d"):
                return text(format_date(entry.timestamp, match.group(1) or self.config.date_format))
            if token == "%level":
                level = str(entry.level)
                if colors:
                    style = LEVEL_STYLES.get(level, ("white", ""))[0]
                    return f"[{style}]{level}[/{style}]"
                return level
            if token == "%category":
                return text(entry.category)
            if token == "%message":
                return text(entry.message)
            if token == "%thread":
                return text(entry.thread or "")
            return text(entry.id)

        output = self._TOKEN.sub(substitute, pattern)
        if entry.stack_trace:
            output = f"{output}\n{text(entry.stack_trace)}"
        for key, value in self.config.custom_fields.items():
            output = f"{output} {text(f'{key}={value}')}"
        return output


class JsonLayout(BaseLayout):
    """
    Structured layout emitting one JSON object per entry.

    Keys follow ``fields`` (an allowlist that also fixes the order) or the
    default order. Absent optional fields are omitted, never null.
    ``custom_fields`` are appended to every object.
    """

    layout_type = "json"
    content_type = "application/json"

    DEFAULT_FIELDS = [
        "timestamp",
        "level",
        "category",
        "message",
        "context",
        "metadata",
        "stackTrace",
        "thread",
        "id",
    ]

    _EXTRACTORS: dict[str, Callable[[LogEntry], Any]] = {
        "timestamp": lambda e: e.timestamp.isoformat(),
        "level": lambda e: str(e.level),
        "category": lambda e: e.category,
        "message": lambda e: e.message,
        "context": lambda e: e.context.to_dict() if e.context is not None and not e.context.is_empty() else None,
        "metadata": lambda e: dict(e.metadata) if e.metadata else None,
        "stackTrace": lambda e: e.stack_trace or None,
        "thread": lambda e: e.thread or None,
        "id": lambda e: e.id,
        "template": lambda e: e.template,
        "args": lambda e: list(e.args) if e.args else None,
    }

    def to_record(self, entry: LogEntry) -> dict[str, Any]:
        """Build the ordered dictionary that ``format`` serializes."""
        record: dict[str, Any] = {}
        for name in self.config.fields or self.DEFAULT_FIELDS:
            extractor = self._EXTRACTORS.get(name)
            if extractor is None:
                continue
            value = extractor(entry)
            if value is not None:
                record[name] = value
        for key, value in self.config.custom_fields.items():
            record.setdefault(key, value)
        return record

    def _format(self, entry: LogEntry) -> str:
        return json.dumps(self.to_record(entry), default=str, ensure_ascii=False)


class ConsoleLayout(BaseLayout):
    """Compact single-line layout for terminals, optionally with rich colors."""

    layout_type = "console"

    @property
    def uses_markup(self) -> bool:
        return self.config.include_colors

    def _format(self, entry: LogEntry) -> str:
        colors = self.config.include_colors
        level = str(entry.level)
        style, icon = LEVEL_STYLES.get(level, ("white", "•"))

        def text(value: str) -> str:
            return escape(value) if colors else value

        output_parts = []

        timestamp = format_date(entry.timestamp, self.config.date_format or "HH:mm:ss.SSS")
        output_parts.append(f"[dim]{timestamp}[/dim]" if colors else timestamp)

        # Level with icon
        if colors:
            output_parts.append(f"[{style}]{icon} {level:>8}[/{style}]")
        else:
            output_parts.append(f"{level:>8}")

        output_parts.append(f"[dim blue]{text(entry.category)}[/dim blue]" if colors else entry.category)

        # Context IDs
        context_parts = []
        if entry.context is not None:
            if entry.context.request_id:
                context_parts.append(f"req={entry.context.request_id[:8]}")
            if entry.context.user_id:
                context_parts.append(f"user={entry.context.user_id}")
            if entry.context.component:
                context_parts.append(f"component={entry.context.component}")
        if context_parts:
            joined = text(" ".join(context_parts))
            output_parts.append(f"[dim]{joined}[/dim]" if colors else joined)

        message = text(entry.message)
        output_parts.append(f"[bold]{message}[/bold]" if colors else message)

        output = " │ ".join(output_parts)

        extra = {**self.config.custom_fields, **entry.metadata}
        if extra:
            rendered = " ".join(f"{key}={value}" for key, value in extra.items())
            output = f"{output} {text(rendered)}"
        if entry.stack_trace:
            output = f"{output}\n{text(entry.stack_trace)}"
        return output
