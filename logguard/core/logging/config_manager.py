"""Configuration validation, loading and change management.

``LoggingConfigManager`` owns the active ``LoggingSystemConfig`` for an
environment. Updates are merged, validated, and only then applied;
watchers are notified after every successful change.
"""

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from .config import (
    ENVIRONMENT_CONFIGS,
    AppenderConfig,
    DefaultConfigurationFactory,
    EnvironmentConfig,
    LayoutConfig,
    LoggerConfig,
    LoggingSettings,
    LoggingSystemConfig,
    detect_environment,
    merge_config,
    normalize_environment,
    parse_config,
)
from .exceptions import ConfigurationError, ConfigurationValidationError
from .levels import is_valid_level

logger = structlog.get_logger(__name__)

REMOTE_APPENDER_TYPES = frozenset({"remote", "http"})


class ValidationIssue(BaseModel):
    code: str
    message: str
    path: str


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []


@dataclass
class ConfigChangeEvent:
    """Notification sent to configuration watchers."""
    type: str
    path: str
    old_value: Any
    new_value: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _prefixed(issues: list[ValidationIssue], prefix: str) -> list[ValidationIssue]:
    return [
        ValidationIssue(code=i.code, message=i.message, path=f"{prefix}.{i.path}")
        for i in issues
    ]


class ConfigurationValidator:
    """
    Validates a configuration and reports every problem found.

    Missing required fields are errors; under-configuration (such as a
    logger without appenders) produces warnings only.
    """

    def validate(self, config: LoggingSystemConfig) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not config.default_level:
            errors.append(ValidationIssue(
                code="MISSING_DEFAULT_LEVEL",
                message="Default log level is required",
                path="defaultLevel",
            ))
        elif not is_valid_level(config.default_level):
            errors.append(ValidationIssue(
                code="INVALID_LEVEL",
                message=f"Unknown log level: {config.default_level}",
                path="defaultLevel",
            ))

        for name, logger_config in config.loggers.items():
            result = self.validate_logger(logger_config, known_appenders=set(config.appenders))
            errors.extend(_prefixed(result.errors, f"loggers.{name}"))
            warnings.extend(_prefixed(result.warnings, f"loggers.{name}"))

        for name, appender_config in config.appenders.items():
            result = self.validate_appender(appender_config, known_layouts=set(config.layouts))
            errors.extend(_prefixed(result.errors, f"appenders.{name}"))
            warnings.extend(_prefixed(result.warnings, f"appenders.{name}"))

        for name, layout_config in config.layouts.items():
            result = self.validate_layout(layout_config)
            errors.extend(_prefixed(result.errors, f"layouts.{name}"))
            warnings.extend(_prefixed(result.warnings, f"layouts.{name}"))

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def validate_logger(
        self,
        config: LoggerConfig,
        known_appenders: set[str] | None = None,
    ) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not config.category:
            errors.append(ValidationIssue(
                code="MISSING_CATEGORY", message="Logger category is required", path="category"
            ))
        if not config.level:
            errors.append(ValidationIssue(
                code="MISSING_LEVEL", message="Logger level is required", path="level"
            ))
        elif not is_valid_level(config.level):
            errors.append(ValidationIssue(
                code="INVALID_LEVEL", message=f"Unknown log level: {config.level}", path="level"
            ))

        if not config.appenders:
            warnings.append(ValidationIssue(
                code="NO_APPENDERS", message="Logger has no appenders configured", path="appenders"
            ))
        elif known_appenders is not None:
            for appender_name in config.appenders:
                if appender_name not in known_appenders:
                    warnings.append(ValidationIssue(
                        code="UNKNOWN_APPENDER",
                        message=f"Logger references undefined appender: {appender_name}",
                        path="appenders",
                    ))

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def validate_appender(
        self,
        config: AppenderConfig,
        known_layouts: set[str] | None = None,
    ) -> ValidationResult:
        errors: list[ValidationIssue] = []

        if not config.name:
            errors.append(ValidationIssue(
                code="MISSING_NAME", message="Appender name is required", path="name"
            ))
        if not config.type:
            errors.append(ValidationIssue(
                code="MISSING_TYPE", message="Appender type is required", path="type"
            ))
        if config.type in REMOTE_APPENDER_TYPES and not (config.url or config.properties.get("url")):
            errors.append(ValidationIssue(
                code="MISSING_URL", message="Remote appender requires URL", path="url"
            ))
        if isinstance(config.layout, str) and known_layouts is not None and config.layout not in known_layouts:
            errors.append(ValidationIssue(
                code="UNKNOWN_LAYOUT",
                message=f"Appender references undefined layout: {config.layout}",
                path="layout",
            ))
        if isinstance(config.layout, LayoutConfig):
            nested = self.validate_layout(config.layout)
            errors.extend(_prefixed(nested.errors, "layout"))

        return ValidationResult(valid=not errors, errors=errors)

    def validate_layout(self, config: LayoutConfig) -> ValidationResult:
        errors: list[ValidationIssue] = []

        if not config.name:
            errors.append(ValidationIssue(
                code="MISSING_NAME", message="Layout name is required", path="name"
            ))
        if not config.type:
            errors.append(ValidationIssue(
                code="MISSING_TYPE", message="Layout type is required", path="type"
            ))

        return ValidationResult(valid=not errors, errors=errors)


class ConfigurationLoader:
    """Loads configurations from files, mappings and the environment."""

    def load_from_file(self, path: str | Path) -> LoggingSystemConfig:
        """Load a JSON configuration file."""
        config_path = Path(path)
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Cannot load configuration from file: {config_path}",
                details={"error": str(e)},
            ) from e
        return self.load_from_object(data)

    def load_from_object(self, data: Mapping[str, Any]) -> LoggingSystemConfig:
        return parse_config(data)

    def load_from_environment(
        self,
        settings: LoggingSettings | None = None,
    ) -> LoggingSystemConfig:
        """Build a configuration from environment defaults plus LOG_* overrides."""
        settings = settings or LoggingSettings()
        config = DefaultConfigurationFactory.create_default(settings.environment or detect_environment())
        return merge_config(config, self.settings_overrides(settings))

    def settings_overrides(self, settings: LoggingSettings) -> dict[str, Any]:
        """Translate LOG_* settings into a partial configuration."""
        overrides: dict[str, Any] = {}

        if settings.level:
            overrides["default_level"] = settings.level
            overrides["loggers"] = {"root": {"level": settings.level}}
        if settings.format:
            overrides["layouts"] = {"default": {"type": settings.format.value}}
        if settings.remote_url:
            overrides["appenders"] = {
                "remote": {
                    "name": "remote",
                    "type": "remote",
                    "active": True,
                    "url": settings.remote_url,
                    "layout": {"name": "remote-json", "type": "json"},
                }
            }
            root = overrides.setdefault("loggers", {}).setdefault("root", {})
            root["appenders"] = ["console", "remote"]
        if settings.enable_sanitization is not None:
            overrides["security"] = {"enable_sanitization": settings.enable_sanitization}
        compliance: dict[str, Any] = {}
        if settings.compliance_enabled is not None:
            compliance["enabled"] = settings.compliance_enabled
        if settings.retention_days is not None:
            compliance["data_retention_days"] = settings.retention_days
        if compliance:
            overrides["compliance"] = compliance

        return overrides

    def merge(
        self,
        base: LoggingSystemConfig,
        override: LoggingSystemConfig | Mapping[str, Any],
    ) -> LoggingSystemConfig:
        return merge_config(base, override)


class LoggingConfigManager:
    """
    Environment-aware owner of the active logging configuration.

    Every update goes through merge, then validation; an invalid update is
    reverted and raised, leaving the previous configuration active.
    """

    def __init__(self, environment: str | None = None):
        self._environment = normalize_environment(environment) if environment else detect_environment()
        self._config = DefaultConfigurationFactory.create_default(self._environment)
        self._loader = ConfigurationLoader()
        self._validator = ConfigurationValidator()
        self._watchers: list[Callable[[ConfigChangeEvent], None]] = []
        self._last_validation: ValidationResult | None = None

    @property
    def environment(self) -> str:
        return self._environment

    def get_current_config(self) -> LoggingSystemConfig:
        """Get a copy of the current configuration."""
        return self._config.model_copy(deep=True)

    def update_config(self, partial: LoggingSystemConfig | Mapping[str, Any]) -> ValidationResult:
        """
        Merge ``partial`` into the active configuration.

        Returns:
            The validation result (warnings included)

        Raises:
            ConfigurationValidationError: If the merged configuration is invalid
            ConfigurationError: If ``partial`` cannot be parsed
        """
        old_config = self._config
        new_config = self._loader.merge(old_config, partial)

        result = self._validator.validate(new_config)
        self._last_validation = result
        if not result.valid:
            logger.warning(
                "Rejected invalid logging configuration",
                errors=[e.message for e in result.errors]
            )
            raise ConfigurationValidationError(result)

        for warning in result.warnings:
            logger.info("Logging configuration warning", code=warning.code, path=warning.path)

        self._config = new_config
        self._notify_watchers(ConfigChangeEvent(
            type="updated", path="root", old_value=old_config, new_value=self.get_current_config()
        ))
        return result

    def replace_config(self, config: LoggingSystemConfig | Mapping[str, Any]) -> ValidationResult:
        """Validate and install a complete configuration."""
        new_config = parse_config(config)
        result = self._validator.validate(new_config)
        self._last_validation = result
        if not result.valid:
            raise ConfigurationValidationError(result)

        old_config = self._config
        self._config = new_config
        self._notify_watchers(ConfigChangeEvent(
            type="replaced", path="root", old_value=old_config, new_value=self.get_current_config()
        ))
        return result

    def get_environment_config(self) -> EnvironmentConfig:
        return ENVIRONMENT_CONFIGS.get(self._environment, ENVIRONMENT_CONFIGS["development"])

    def set_environment(self, environment: str) -> None:
        """Switch environment and apply its default level."""
        old_env = self._environment
        new_env = normalize_environment(environment)
        env_config = ENVIRONMENT_CONFIGS.get(new_env, ENVIRONMENT_CONFIGS["development"])

        self.update_config({
            "default_level": env_config.default_level,
            "properties": {**self._config.properties, "environment": new_env},
        })
        self._environment = new_env
        self._notify_watchers(ConfigChangeEvent(
            type="updated", path="environment", old_value=old_env, new_value=self._environment
        ))

    def load_config(self, source: str | Path | Mapping[str, Any]) -> ValidationResult:
        """Load a configuration from a JSON file path or a mapping and merge it."""
        if isinstance(source, Mapping):
            config = self._loader.load_from_object(source)
        else:
            config = self._loader.load_from_file(source)
        return self.update_config(config)

    def save_config(self, target: str | Path) -> Path:
        """Write the current configuration as JSON (camelCase keys)."""
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._config.model_dump_json(by_alias=True, indent=2))
        return path

    def validate_config(self, config: LoggingSystemConfig | None = None) -> ValidationResult:
        result = self._validator.validate(config or self._config)
        self._last_validation = result
        return result

    def reset_to_defaults(self) -> None:
        old_config = self._config
        self._config = DefaultConfigurationFactory.create_default(self._environment)
        self._notify_watchers(ConfigChangeEvent(
            type="reset", path="root", old_value=old_config, new_value=self.get_current_config()
        ))

    def watch(self, callback: Callable[[ConfigChangeEvent], None]) -> Callable[[], None]:
        """
        Register a watcher for configuration changes.

        Returns:
            Function that unsubscribes the watcher
        """
        self._watchers.append(callback)

        def unsubscribe() -> None:
            if callback in self._watchers:
                self._watchers.remove(callback)

        return unsubscribe

    def stop(self) -> None:
        self._watchers.clear()

    def _notify_watchers(self, event: ConfigChangeEvent) -> None:
        for watcher in list(self._watchers):
            try:
                watcher(event)
            except Exception as e:
                logger.error("Configuration watcher failed", path=event.path, error=str(e))

    def get_statistics(self) -> dict[str, Any]:
        return {
            "environment": self._environment,
            "logger_count": len(self._config.loggers),
            "appender_count": len(self._config.appenders),
            "layout_count": len(self._config.layouts),
            "watcher_count": len(self._watchers),
            "last_validated": self._last_validation.valid if self._last_validation else None,
        }
