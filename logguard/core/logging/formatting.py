"""Message templating and value formatting helpers."""

import json
import re
from datetime import date, datetime
from typing import Any

_PLACEHOLDER = re.compile(r"\{(\d*)\}")

# moment-style date tokens, longest first
_DATE_TOKENS = [
    ("YYYY", "%Y"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("hh", "%I"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("A", "%p"),
]
_DATE_TOKEN_RE = re.compile("SSS|" + "|".join(token for token, _ in _DATE_TOKENS))


def format_value(value: Any) -> str:
    """Render a single template argument as text."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, list | tuple):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        try:
            return json.dumps(value, default=str, separators=(",", ":"))
        except (TypeError, ValueError):
            return str(value)
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return str(value)


def format_message(template: str | None, args: list[Any] | tuple[Any, ...] = ()) -> str:
    """
    Substitute ``{}`` placeholders left to right and ``{n}`` by index.

    A placeholder without a matching argument is left in place literally,
    so an arity mismatch never raises.

    Examples:
        format_message("User {} did {}", ["alice", "login"]) == "User alice did login"
        format_message("A {} B {}", ["x"]) == "A x B {}"
    """
    if not template:
        return ""
    if not args:
        return template

    position = 0

    def substitute(match: re.Match) -> str:
        nonlocal position
        index_text = match.group(1)
        if index_text:
            index = int(index_text)
        else:
            index = position
            position += 1
        if index < len(args):
            return format_value(args[index])
        return match.group(0)

    return _PLACEHOLDER.sub(substitute, template)


def truncate_string(value: str, max_length: int, suffix: str = "...") -> str:
    """Truncate ``value`` to at most ``max_length`` characters."""
    if max_length <= 0 or len(value) <= max_length:
        return value
    if max_length <= len(suffix):
        return value[:max_length]
    return value[: max_length - len(suffix)] + suffix


def format_date(timestamp: datetime, pattern: str | None = None) -> str:
    """
    Format a timestamp with a moment-style pattern.

    Supported tokens: YYYY YY MM DD HH hh mm ss SSS A. ``None`` or
    ``ISO8601`` gives an ISO-8601 string.
    """
    if not pattern or pattern.upper() in ("ISO8601", "ISO"):
        return timestamp.isoformat()

    def substitute(match: re.Match) -> str:
        token = match.group(0)
        if token == "SSS":
            return f"{timestamp.microsecond // 1000:03d}"
        return timestamp.strftime(dict(_DATE_TOKENS)[token])

    return _DATE_TOKEN_RE.sub(substitute, pattern)
