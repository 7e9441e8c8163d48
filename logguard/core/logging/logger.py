"""Category-scoped logger core.

A ``Logger`` gates calls by level, renders the message template, merges
context, runs the processing pipeline and fans the entry out to its
appenders:

    level gate -> context merge -> compliance veto -> entry
      -> sanitization -> security filters -> compliance rules -> appenders

Nothing raises out of the log methods. Appender failures are isolated per
appender and reported to the ``logguard.fallback`` structlog channel.
"""

import sys
import threading
import time
import traceback
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from .appenders import BaseAppender
from .compliance import ComplianceEngine
from .config import LoggingSystemConfig
from .entry import LogEntry, LoggingContext, current_thread_label
from .filters import SecurityFilterChain
from .formatting import format_message, truncate_string
from .levels import LevelLike, LogLevel, is_enabled_for, parse_level, resolve_level
from .metrics import LoggingMetrics
from .sanitizer import DataSanitizer

if TYPE_CHECKING:
    from .registry import LoggerRegistry

fallback_logger = structlog.get_logger("logguard.fallback")

BUILTIN_FILTERS = ("pii-sanitization", "security-level-filter", "user-data-protection")

ContextLike = LoggingContext | Mapping[str, Any] | None


@dataclass
class LoggingPipeline:
    """Processing stages shared by all loggers of a registry."""

    sanitizer: DataSanitizer | None = None
    filter_chain: SecurityFilterChain | None = None
    compliance: ComplianceEngine | None = None
    metrics: LoggingMetrics = field(default_factory=lambda: LoggingMetrics(enabled=False))
    enable_lazy_evaluation: bool = True
    max_message_length: int | None = None

    @classmethod
    def from_config(cls, config: LoggingSystemConfig) -> "LoggingPipeline":
        pipeline = cls()
        pipeline.configure(config)
        return pipeline

    def configure(self, config: LoggingSystemConfig) -> None:
        """Apply ``config`` in place, keeping consent state and custom filters."""
        security = config.security
        self.sanitizer = DataSanitizer(security) if security.enable_sanitization else None

        if security.enable_filters:
            chain = SecurityFilterChain(DataSanitizer(security))
            if self.filter_chain is not None:
                for existing in self.filter_chain.list_filters():
                    if existing.name in BUILTIN_FILTERS:
                        chain.set_filter_enabled(existing.name, existing.enabled)
                    else:
                        chain.add_filter(existing)
            self.filter_chain = chain
        else:
            self.filter_chain = None

        if self.compliance is None:
            self.compliance = ComplianceEngine(config.compliance)
        else:
            self.compliance.config = config.compliance

        monitoring = config.performance.monitoring
        self.metrics.enabled = bool(monitoring and monitoring.enabled)
        self.metrics.configure(monitoring)
        self.enable_lazy_evaluation = config.performance.enable_lazy_evaluation
        self.max_message_length = config.performance.max_message_length

    def process(self, entry: LogEntry) -> LogEntry | None:
        """Run sanitization, security filters and compliance rules."""
        if self.sanitizer is not None:
            entry = self.sanitizer.sanitize_entry(entry)
        if self.filter_chain is not None:
            filtered = self.filter_chain.apply_filters(entry)
            if filtered is None:
                self.metrics.record_suppressed("filter")
                return None
            entry = filtered
        if self.compliance is not None and self.compliance.config.enabled:
            entry = self.compliance.apply_compliance_rules(entry)
        return entry


def _ambient_context() -> LoggingContext | None:
    # Imported lazily: logguard.core.context depends on this package
    from logguard.core.context import get_logging_context

    return get_logging_context()


def _caller_trace(limit: int = 5) -> str:
    frame = sys._getframe(1)
    while frame is not None and frame.f_code.co_filename == __file__:
        frame = frame.f_back
    if frame is None:
        return ""
    return "".join(traceback.format_stack(frame, limit=limit))


def _exception_trace(exc_info: Any) -> str | None:
    if not exc_info:
        return None
    if isinstance(exc_info, BaseException):
        return "".join(traceback.format_exception(type(exc_info), exc_info, exc_info.__traceback__))
    if exc_info is True:
        exc_info = sys.exc_info()
    if isinstance(exc_info, tuple) and exc_info[0] is not None:
        return "".join(traceback.format_exception(*exc_info))
    return None


class Logger:
    """
    Per-category log emitter.

    Appenders are kept in insertion order without duplicates. With
    ``additive`` set, entries also reach the appenders of ancestor loggers.
    """

    def __init__(
        self,
        category: str,
        level: LevelLike = LogLevel.INFO,
        appenders: Iterable[BaseAppender] | None = None,
        properties: ContextLike = None,
        parent: "Logger | None" = None,
        additive: bool = True,
        include_caller: bool = False,
        pipeline: LoggingPipeline | None = None,
        registry: "LoggerRegistry | None" = None,
    ):
        self._category = category
        self._level = parse_level(level)
        self._appenders: list[BaseAppender] = []
        self._lock = threading.Lock()
        self.properties = LoggingContext.coerce(properties)
        self.parent = parent
        self.additive = additive
        self.include_caller = include_caller
        self.pipeline = pipeline or LoggingPipeline()
        self.registry = registry
        for appender in appenders or ():
            self.add_appender(appender)

    def __repr__(self) -> str:
        return f"<Logger category={self._category!r} level={self._level.value}>"

    @property
    def category(self) -> str:
        return self._category

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LevelLike) -> None:
        self._level = parse_level(value)

    def set_level(self, level: LevelLike) -> None:
        self.level = level

    def is_enabled_for(self, level: LevelLike) -> bool:
        return is_enabled_for(level, self._level)

    # Appenders

    @property
    def appenders(self) -> list[BaseAppender]:
        return list(self._appenders)

    def add_appender(self, appender: BaseAppender) -> None:
        """Attach ``appender``; attaching it twice has no effect."""
        with self._lock:
            if not any(existing is appender for existing in self._appenders):
                self._appenders.append(appender)

    def remove_appender(self, appender: BaseAppender | str) -> None:
        """Detach an appender by instance or by name; unknown ones are ignored."""
        with self._lock:
            if isinstance(appender, str):
                self._appenders = [a for a in self._appenders if a.name != appender]
            else:
                self._appenders = [a for a in self._appenders if a is not appender]

    def set_appenders(self, appenders: Iterable[BaseAppender]) -> None:
        with self._lock:
            self._appenders = []
        for appender in appenders:
            self.add_appender(appender)

    def get_appender(self, name: str) -> BaseAppender | None:
        for appender in self._appenders:
            if appender.name == name:
                return appender
        return None

    def child(self, suffix: str) -> "Logger":
        """Get the logger for a sub-category of this one."""
        category = f"{self._category}.{suffix}"
        if self.registry is not None:
            return self.registry.get_logger(category)
        return Logger(
            category,
            level=self._level,
            parent=self,
            additive=True,
            include_caller=self.include_caller,
            pipeline=self.pipeline,
        )

    # Emission

    def log(
        self,
        level: LevelLike,
        template: str | Callable[[], str] | None = None,
        *args: Any,
        context: ContextLike = None,
        exc_info: Any = None,
        metadata: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> None:
        """
        Log ``template`` formatted with ``args`` at ``level``.

        ``{}`` placeholders are filled left to right and ``{n}`` by index;
        placeholders without an argument stay in the message as written.
        A callable template is only evaluated when the level is enabled.
        Extra keyword fields are added to the entry metadata, overriding
        keys of the same name in ``metadata``.
        """
        try:
            if fields:
                metadata = {**(metadata or {}), **fields}
            self._log(level, template, args, context, exc_info, metadata)
        except Exception as e:
            fallback_logger.error(
                "Log call failed",
                category=self._category,
                level=str(level),
                error=str(e),
                error_type=type(e).__name__,
            )

    def _log(
        self,
        level: LevelLike,
        template: str | Callable[[], str] | None,
        args: tuple[Any, ...],
        context: ContextLike,
        exc_info: Any,
        metadata: Mapping[str, Any] | None,
    ) -> None:
        pipeline = self.pipeline
        started = time.perf_counter()
        resolved = resolve_level(level)
        if resolved is None or not is_enabled_for(resolved, self._level):
            pipeline.metrics.record_suppressed("level")
            return

        merged = self._merge_context(context)
        if pipeline.compliance is not None and not pipeline.compliance.is_logging_allowed(merged):
            pipeline.metrics.record_suppressed("compliance")
            return

        if callable(template):
            template = template() if pipeline.enable_lazy_evaluation else str(template)
        template_text = None if template is None else str(template)
        message = format_message(template_text, args)
        if pipeline.max_message_length:
            message = truncate_string(message, pipeline.max_message_length)

        traces = [_exception_trace(exc_info)]
        if self.include_caller:
            traces.append(_caller_trace())

        entry = LogEntry.create(
            resolved,
            self._category,
            message,
            template=template_text,
            args=args,
            context=None if merged.is_empty() else merged,
            stack_trace="\n".join(trace for trace in traces if trace) or None,
            thread=current_thread_label(),
            metadata=dict(metadata or {}),
        )

        processed = pipeline.process(entry)
        if processed is None:
            return
        pipeline.metrics.record_emitted(resolved.value, self._category)
        self._dispatch(processed)
        pipeline.metrics.record_processing(resolved.value, time.perf_counter() - started)

    def _merge_context(self, context: ContextLike) -> LoggingContext:
        merged = LoggingContext()
        ambient = _ambient_context()
        if ambient is not None:
            merged = merged.merge(ambient)
        if self.properties is not None:
            merged = merged.merge(self.properties)
        return merged.merge(context)

    def _dispatch(self, entry: LogEntry) -> None:
        seen: set[int] = set()
        node: Logger | None = self
        while node is not None:
            for appender in node.appenders:
                if id(appender) in seen:
                    continue
                seen.add(id(appender))
                if not appender.is_ready():
                    continue
                throttled_before = appender.throttled
                try:
                    appender.append(entry)
                except Exception as e:
                    self.pipeline.metrics.record_appender_failure(appender.name)
                    fallback_logger.error(
                        "Appender failed",
                        appender=appender.name,
                        category=self._category,
                        entry_id=entry.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                else:
                    if appender.throttled > throttled_before:
                        self.pipeline.metrics.record_throttled(appender.name)
            if not node.additive:
                break
            node = node.parent

    # Convenience methods

    def trace(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.TRACE, template, *args, **kwargs)

    def debug(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.DEBUG, template, *args, **kwargs)

    def info(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.INFO, template, *args, **kwargs)

    def audit(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.AUDIT, template, *args, **kwargs)

    def warn(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.WARN, template, *args, **kwargs)

    warning = warn

    def metrics(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.METRICS, template, *args, **kwargs)

    def error(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.ERROR, template, *args, **kwargs)

    def exception(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with the exception currently being handled."""
        kwargs.setdefault("exc_info", True)
        self.log(LogLevel.ERROR, template, *args, **kwargs)

    def security(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.SECURITY, template, *args, **kwargs)

    def fatal(self, template: Any = None, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.FATAL, template, *args, **kwargs)

    critical = fatal
