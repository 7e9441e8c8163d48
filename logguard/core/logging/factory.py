"""Type-keyed construction of appenders, layouts and loggers."""

import threading
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from .appenders import BaseAppender, ConsoleAppender, FileAppender, MemoryAppender, RemoteAppender
from .config import AppenderConfig, LayoutConfig, LoggerConfig, LoggingSystemConfig
from .exceptions import UnknownAppenderTypeError, UnknownLayoutTypeError
from .layouts import BaseLayout, ConsoleLayout, JsonLayout, PatternLayout
from .logger import Logger, LoggingPipeline

logger = structlog.get_logger(__name__)

AppenderConstructor = Callable[[AppenderConfig, BaseLayout | None], BaseAppender]
LayoutConstructor = Callable[[LayoutConfig], BaseLayout]


class LoggerFactory:
    """
    Registries of appender and layout constructors plus a logger cache.

    Built-in types (appenders ``console``, ``memory``, ``file``, ``remote``;
    layouts ``pattern``, ``json``, ``console``) are registered on
    construction. Registering a type name again replaces its constructor.
    """

    def __init__(
        self,
        config: LoggingSystemConfig | None = None,
        pipeline: LoggingPipeline | None = None,
    ):
        self._lock = threading.RLock()
        self._appender_types: dict[str, AppenderConstructor] = {}
        self._layout_types: dict[str, LayoutConstructor] = {}
        self._cache: dict[tuple[str, str], Logger] = {}
        self._cache_hits = 0
        self._cache_misses = 0
        self.config = config or LoggingSystemConfig()
        self.pipeline = pipeline or LoggingPipeline()

        self.register_appender_type("console", ConsoleAppender)
        self.register_appender_type("memory", MemoryAppender)
        self.register_appender_type("file", FileAppender)
        self.register_appender_type("remote", RemoteAppender)

        self.register_layout_type("pattern", PatternLayout)
        self.register_layout_type("json", JsonLayout)
        self.register_layout_type("console", ConsoleLayout)

    def register_appender_type(self, type_name: str, constructor: AppenderConstructor) -> None:
        with self._lock:
            self._appender_types[type_name] = constructor

    def register_layout_type(self, type_name: str, constructor: LayoutConstructor) -> None:
        with self._lock:
            self._layout_types[type_name] = constructor

    def get_appender_types(self) -> list[str]:
        with self._lock:
            return sorted(self._appender_types)

    def get_layout_types(self) -> list[str]:
        with self._lock:
            return sorted(self._layout_types)

    def create_layout(self, config: LayoutConfig | Mapping[str, Any]) -> BaseLayout:
        """Build a layout, raising ``UnknownLayoutTypeError`` for unregistered types."""
        if not isinstance(config, LayoutConfig):
            config = LayoutConfig.model_validate(config)
        with self._lock:
            constructor = self._layout_types.get(config.type)
        if constructor is None:
            raise UnknownLayoutTypeError(config.type)
        return constructor(config)

    def create_appender(
        self,
        config: AppenderConfig | Mapping[str, Any],
        layouts: Mapping[str, LayoutConfig] | None = None,
    ) -> BaseAppender:
        """
        Build an appender, raising ``UnknownAppenderTypeError`` for unregistered types.

        A layout given by name is looked up in ``layouts`` (or the factory's
        config); without a layout the appender type's default is used.
        """
        if not isinstance(config, AppenderConfig):
            config = AppenderConfig.model_validate(config)
        with self._lock:
            constructor = self._appender_types.get(config.type)
        if constructor is None:
            raise UnknownAppenderTypeError(config.type)

        layout_config: LayoutConfig | None = None
        if isinstance(config.layout, LayoutConfig):
            layout_config = config.layout
        elif config.layout:
            known = layouts if layouts is not None else self.config.layouts
            layout_config = known.get(config.layout)
            if layout_config is None:
                logger.warning(
                    "Appender references undefined layout, using default",
                    appender=config.name,
                    layout=config.layout,
                )

        layout = self.create_layout(layout_config) if layout_config is not None else None
        return constructor(config, layout)

    def create_logger(
        self,
        category: str,
        config: LoggerConfig | Mapping[str, Any] | None = None,
    ) -> Logger:
        """
        Get the logger for ``(category, config)``.

        Identical arguments return the identical logger until
        ``clear_cache()`` is called.
        """
        if config is None:
            config = LoggerConfig(category=category, level=self.config.default_level or "INFO")
        elif not isinstance(config, LoggerConfig):
            config = LoggerConfig.model_validate(config)
        key = (category, config.cache_key())

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache_hits += 1
                return cached
            self._cache_misses += 1
            created = Logger(
                category,
                level=config.level or self.config.default_level or "INFO",
                additive=config.additive,
                include_caller=config.include_caller,
                pipeline=self.pipeline,
            )
            self._cache[key] = created
            return created

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._cache),
                "hits": self._cache_hits,
                "misses": self._cache_misses,
                "categories": sorted({category for category, _ in self._cache}),
            }
