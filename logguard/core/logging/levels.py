"""Log level model.

Levels form a fixed total order by numeric priority. Names are only used
for lookup; comparisons always go through the priority.

Unrecognized level names fail closed: they get ``UNKNOWN_PRIORITY`` and
are never considered enabled, neither as a candidate nor as a threshold.
"""

from enum import Enum

from .exceptions import UnknownLevelError


class LogLevel(str, Enum):
    """Log levels supported by the logging subsystem, least to most severe."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    AUDIT = "AUDIT"
    WARN = "WARN"
    METRICS = "METRICS"
    ERROR = "ERROR"
    SECURITY = "SECURITY"
    FATAL = "FATAL"

    @property
    def priority(self) -> int:
        return LEVEL_PRIORITIES[self]

    def __str__(self) -> str:
        return self.value


LEVEL_PRIORITIES: dict[LogLevel, int] = {
    LogLevel.TRACE: 0,
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.AUDIT: 25,
    LogLevel.WARN: 30,
    LogLevel.METRICS: 35,
    LogLevel.ERROR: 40,
    LogLevel.SECURITY: 45,
    LogLevel.FATAL: 50,
}

UNKNOWN_PRIORITY = -1

# stdlib spellings
_ALIASES = {
    "WARNING": LogLevel.WARN,
    "CRITICAL": LogLevel.FATAL,
}

LevelLike = LogLevel | str


def resolve_level(level: LevelLike) -> LogLevel | None:
    """Resolve a level or level name to a ``LogLevel``, or None if unknown."""
    if isinstance(level, LogLevel):
        return level
    if not isinstance(level, str):
        return None
    name = level.strip().upper()
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return LogLevel(name)
    except ValueError:
        return None


def parse_level(level: LevelLike) -> LogLevel:
    """Resolve a level name, raising ``UnknownLevelError`` if it is not known."""
    resolved = resolve_level(level)
    if resolved is None:
        raise UnknownLevelError(str(level))
    return resolved


def is_valid_level(level: LevelLike) -> bool:
    return resolve_level(level) is not None


def priority_of(level: LevelLike) -> int:
    """Get the numeric priority of a level, ``UNKNOWN_PRIORITY`` if unknown."""
    resolved = resolve_level(level)
    if resolved is None:
        return UNKNOWN_PRIORITY
    return LEVEL_PRIORITIES[resolved]


def compare(a: LevelLike, b: LevelLike) -> int:
    """Compare two levels by priority, returning -1, 0 or 1."""
    pa, pb = priority_of(a), priority_of(b)
    if pa < pb:
        return -1
    if pa > pb:
        return 1
    return 0


def is_enabled_for(candidate: LevelLike, threshold: LevelLike) -> bool:
    """Check whether ``candidate`` passes a logger set to ``threshold``."""
    pc, pt = priority_of(candidate), priority_of(threshold)
    if pc == UNKNOWN_PRIORITY or pt == UNKNOWN_PRIORITY:
        return False
    return pc >= pt


def all_levels() -> list[LogLevel]:
    """All levels in ascending priority."""
    return sorted(LogLevel, key=priority_of)
