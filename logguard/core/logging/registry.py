"""Logger registry: owner of live loggers, appenders and the active config.

The registry is an explicit object created by the application's startup
code and passed to whoever needs loggers. One registry per process is a
convention, not enforced.

Usage:
    registry = await configure_logging(config)
    logger = get_logger(registry, "app.auth")
    logger.info("User {} logged in", user_id)
    ...
    await shutdown_logging(registry)
"""

import asyncio
import threading
from collections.abc import Mapping
from typing import Any

import structlog

from .appenders import BaseAppender
from .config import LoggerConfig, LoggingSystemConfig, parse_config
from .config_manager import ConfigurationLoader, ConfigurationValidator
from .exceptions import ConfigurationValidationError, RegistryShutdownError
from .factory import LoggerFactory
from .logger import Logger, LoggingPipeline

logger = structlog.get_logger(__name__)

ROOT_CATEGORY = "root"
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


def parent_category(category: str) -> str | None:
    """``a.b.c`` -> ``a.b``; top-level categories hang off the root logger."""
    if category == ROOT_CATEGORY:
        return None
    if "." in category:
        return category.rsplit(".", 1)[0]
    return ROOT_CATEGORY


class LoggerRegistry:
    """
    Creates and caches loggers by category using the active configuration.

    Level and ``include_caller`` come from the logger config with the
    longest matching category prefix (falling back to ``default_level``).
    Appenders and ``additive`` come only from a logger's own config; with
    additivity, entries reach ancestor appenders through the parent chain.
    """

    def __init__(
        self,
        config: LoggingSystemConfig | Mapping[str, Any] | None = None,
        factory: LoggerFactory | None = None,
    ):
        if config is None:
            config = ConfigurationLoader().load_from_environment()
        config = parse_config(config)
        self._validator = ConfigurationValidator()
        self._ensure_valid(config)

        self._lock = threading.RLock()
        self._config = config
        self.pipeline = LoggingPipeline.from_config(config)
        self.factory = factory or LoggerFactory(config, self.pipeline)
        self.factory.config = config
        self.factory.pipeline = self.pipeline
        self._loggers: dict[str, Logger] = {}
        self._appenders: dict[str, BaseAppender] = self._build_appenders(config)
        self._started = False
        self._shutdown = False

    # Configuration

    def _ensure_valid(self, config: LoggingSystemConfig) -> None:
        result = self._validator.validate(config)
        for warning in result.warnings:
            logger.warning("Logging configuration warning", code=warning.code, path=warning.path, message=warning.message)
        if not result.valid:
            raise ConfigurationValidationError(result)

    def _build_appenders(self, config: LoggingSystemConfig) -> dict[str, BaseAppender]:
        appenders: dict[str, BaseAppender] = {}
        for name, appender_config in config.appenders.items():
            if not appender_config.active:
                continue
            appenders[name] = self.factory.create_appender(appender_config, config.layouts)
        return appenders

    @property
    def config(self) -> LoggingSystemConfig:
        return self._config.model_copy(deep=True)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def appenders(self) -> dict[str, BaseAppender]:
        return dict(self._appenders)

    @property
    def loggers(self) -> dict[str, Logger]:
        return dict(self._loggers)

    @property
    def compliance(self):
        return self.pipeline.compliance

    @property
    def metrics(self):
        return self.pipeline.metrics

    async def configure(self, config: LoggingSystemConfig | Mapping[str, Any]) -> None:
        """
        Replace the active configuration and update existing loggers.

        The new configuration is validated and its appenders are built
        before anything changes; on failure the previous configuration
        stays active and the error is raised. Appenders of the previous
        configuration are stopped and, if the registry was started, the
        new ones are started.
        """
        config = parse_config(config)
        self._ensure_valid(config)
        with self._lock:
            self._check_open()
            appenders = self._build_appenders(config)
            retired = [a for a in self._appenders.values() if all(a is not n for n in appenders.values())]
            self._config = config
            self._appenders = appenders
            self.pipeline.configure(config)
            self.factory.config = config
            self.factory.clear_cache()
            for category, existing in self._loggers.items():
                self._apply_logger_config(existing, self._logger_config_for(category))

        logger.info("Logging configuration applied", loggers=len(self._loggers), appenders=len(appenders))
        await self._stop_all(retired, DEFAULT_SHUTDOWN_TIMEOUT)
        if self._started:
            await self._start_all(list(appenders.values()))

    def _logger_config_for(self, category: str) -> LoggerConfig:
        loggers = self._config.loggers
        exact = loggers.get(category)

        effective = None
        candidate: str | None = category
        while candidate is not None:
            if candidate in loggers:
                effective = loggers[candidate]
                break
            candidate = parent_category(candidate)

        level = (effective.level if effective and effective.level else None) or self._config.default_level or "INFO"
        return LoggerConfig(
            category=category,
            level=level,
            additive=exact.additive if exact else True,
            appenders=list(exact.appenders) if exact else [],
            include_caller=effective.include_caller if effective else False,
        )

    def _apply_logger_config(self, target: Logger, config: LoggerConfig) -> None:
        target.level = config.level
        target.additive = config.additive
        target.include_caller = config.include_caller
        target.set_appenders(self._appenders[name] for name in config.appenders if name in self._appenders)

    # Loggers

    def _check_open(self) -> None:
        if self._shutdown:
            raise RegistryShutdownError()

    def get_logger(self, category: str = ROOT_CATEGORY) -> Logger:
        """Get or lazily create the logger for ``category``."""
        category = category or ROOT_CATEGORY
        with self._lock:
            self._check_open()
            existing = self._loggers.get(category)
            if existing is not None:
                return existing

            config = self._logger_config_for(category)
            created = self.factory.create_logger(category, config)
            created.registry = self
            self._apply_logger_config(created, config)
            parent = parent_category(category)
            created.parent = self.get_logger(parent) if parent is not None else None
            self._loggers[category] = created
            return created

    # Lifecycle

    def _all_appenders(self) -> list[BaseAppender]:
        unique: dict[int, BaseAppender] = {id(a): a for a in self._appenders.values()}
        for known in self._loggers.values():
            for appender in known.appenders:
                unique.setdefault(id(appender), appender)
        return list(unique.values())

    async def _start_all(self, appenders: list[BaseAppender]) -> None:
        async def start_one(appender: BaseAppender) -> None:
            try:
                await appender.start()
            except Exception as e:
                logger.error("Appender failed to start", appender=appender.name, error=str(e))

        await asyncio.gather(*(start_one(appender) for appender in appenders))

    async def _stop_all(self, appenders: list[BaseAppender], timeout: float) -> None:
        async def stop_one(appender: BaseAppender) -> None:
            try:
                await asyncio.wait_for(appender.stop(), timeout=timeout)
            except TimeoutError:
                logger.warning("Appender stop timed out", appender=appender.name, timeout=timeout)
            except Exception as e:
                logger.error("Appender failed to stop", appender=appender.name, error=str(e))

        await asyncio.gather(*(stop_one(appender) for appender in appenders))

    async def start(self) -> None:
        """Start every appender known to the registry."""
        with self._lock:
            self._check_open()
            appenders = self._all_appenders()
            self._started = True
        await self._start_all(appenders)
        logger.info("Logging started", appenders=len(appenders))

    async def shutdown(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """
        Stop every appender and release all loggers.

        Appenders stop concurrently, each bounded by ``timeout`` seconds;
        a slow appender does not hold up the others. Afterwards the
        registry rejects further use. Calling it again does nothing.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            appenders = self._all_appenders()

        await self._stop_all(appenders, timeout)

        with self._lock:
            self._loggers.clear()
            self._appenders.clear()
            self.factory.clear_cache()
        logger.info("Logging shut down", appenders=len(appenders))

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "loggers": sorted(self._loggers),
                "appenders": [a.get_statistics() for a in self._all_appenders()],
                "started": self._started,
                "shutdown": self._shutdown,
                "metrics": self.pipeline.metrics.snapshot(),
                "cache": self.factory.get_cache_stats(),
            }


async def configure_logging(
    config: LoggingSystemConfig | Mapping[str, Any] | None = None,
) -> LoggerRegistry:
    """Create a registry for ``config`` (or the environment) and start its appenders."""
    registry = LoggerRegistry(config)
    await registry.start()
    return registry


def get_logger(registry: LoggerRegistry, category: str = ROOT_CATEGORY) -> Logger:
    return registry.get_logger(category)


async def shutdown_logging(registry: LoggerRegistry, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
    await registry.shutdown(timeout)
