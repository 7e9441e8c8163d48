"""Log entry and logging context models.

``LogEntry`` is the immutable record produced for every emitted log call.
Pipeline stages never mutate an entry; they derive a new one with the
``with_*`` helpers.

``LoggingContext`` is the mergeable bag of request/user/component fields
attached to an entry.
"""

import copy
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from typing import Any, Self

from .levels import LogLevel, resolve_level

# camelCase keys of the external context shape
_CONTEXT_ALIASES = {
    "userId": "user_id",
    "sessionId": "session_id",
    "requestId": "request_id",
    "userAgent": "user_agent",
    "additionalData": "additional_data",
}


@dataclass
class LoggingContext:
    """
    Contextual metadata attached to a log entry.

    Merge is right-biased: values set on the right-hand context win,
    except ``additional_data`` which is merged key by key.
    """
    user_id: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    component: str | None = None
    action: str | None = None
    route: str | None = None
    user_agent: str | None = None
    environment: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "LoggingContext | Mapping[str, Any] | None") -> "LoggingContext":
        """Return a new context with ``other`` layered on top of this one."""
        other_ctx = LoggingContext.coerce(other)
        if other_ctx is None:
            return self.clone()

        merged = self.clone()
        for f in fields(self):
            if f.name == "additional_data":
                continue
            value = getattr(other_ctx, f.name)
            if value is not None:
                setattr(merged, f.name, value)
        merged.additional_data = {
            **merged.additional_data,
            **copy.deepcopy(other_ctx.additional_data),
        }
        return merged

    def clone(self) -> "LoggingContext":
        return copy.deepcopy(self)

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary, omitting unset fields."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "additional_data":
                if value:
                    data["additional_data"] = value
            elif value is not None:
                data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoggingContext":
        """Build a context from a mapping with snake_case or camelCase keys.

        Unknown keys end up in ``additional_data``.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            name = _CONTEXT_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                extra[key] = value
        context = cls(**kwargs)
        if context.additional_data is None:
            context.additional_data = {}
        else:
            context.additional_data = dict(context.additional_data)
        context.additional_data.update(extra)
        return context

    @classmethod
    def coerce(cls, value: "LoggingContext | Mapping[str, Any] | None") -> "LoggingContext | None":
        """Accept a context, a mapping or None."""
        if value is None:
            return None
        if isinstance(value, LoggingContext):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise TypeError(f"Cannot build LoggingContext from {type(value).__name__}")


def generate_entry_id() -> str:
    """Generate a unique log entry ID."""
    return uuid.uuid4().hex


def current_thread_label() -> str:
    return threading.current_thread().name


@dataclass(frozen=True)
class LogEntry:
    """Immutable record produced per log call."""

    id: str
    timestamp: datetime
    level: LogLevel
    category: str
    message: str
    template: str | None = None
    args: tuple[Any, ...] = ()
    context: LoggingContext | None = None
    stack_trace: str | None = None
    thread: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        level: LogLevel | str,
        category: str,
        message: str,
        *,
        template: str | None = None,
        args: tuple[Any, ...] = (),
        context: LoggingContext | None = None,
        stack_trace: str | None = None,
        thread: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Self:
        """Build an entry with a fresh id and the current UTC timestamp."""
        return cls(
            id=generate_entry_id(),
            timestamp=datetime.now(UTC),
            level=resolve_level(level) or level,
            category=category,
            message=message,
            template=template,
            args=tuple(args),
            context=context,
            stack_trace=stack_trace,
            thread=thread,
            metadata=dict(metadata or {}),
        )

    def is_valid(self) -> bool:
        """Check that the required fields are present and well-typed."""
        return (
            isinstance(self.id, str) and bool(self.id)
            and isinstance(self.timestamp, datetime)
            and isinstance(self.level, LogLevel)
            and isinstance(self.category, str) and bool(self.category)
            and isinstance(self.message, str)
        )

    def with_message(self, message: str) -> "LogEntry":
        return replace(self, message=message)

    def with_context(self, context: LoggingContext | None) -> "LogEntry":
        return replace(self, context=context)

    def with_metadata(self, **metadata: Any) -> "LogEntry":
        """Return a copy with ``metadata`` merged over the existing metadata."""
        return replace(self, metadata={**self.metadata, **metadata})

    def replace(self, **changes: Any) -> "LogEntry":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert entry to a plain dictionary (timestamp as ISO string)."""
        data: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if isinstance(self.timestamp, datetime) else self.timestamp,
            "level": str(self.level),
            "category": self.category,
            "message": self.message,
        }
        if self.template is not None:
            data["template"] = self.template
        if self.args:
            data["args"] = list(self.args)
        if self.context is not None and not self.context.is_empty():
            data["context"] = self.context.to_dict()
        if self.stack_trace:
            data["stack_trace"] = self.stack_trace
        if self.thread:
            data["thread"] = self.thread
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data
