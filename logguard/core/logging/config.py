"""Logging configuration models.

This module defines the typed configuration for the logging system:
- Per-component pydantic models (loggers, appenders, layouts, security,
  performance, compliance) accepting the camelCase keys of the external
  configuration shape
- Environment-variable settings read with pydantic-settings (``LOG_`` prefix)
- Environment-based default configurations
- An explicit, recursive, last-writer-wins merge

Validation of cross-field requirements lives in ``config_manager``.
"""

import copy
import os
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

DEFAULT_SENSITIVE_FIELDS = [
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "authorization",
    "cookie",
    "creditcard",
    "cardnumber",
    "cvv",
    "ssn",
    "privatekey",
]


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    CONSOLE = "console"
    PATTERN = "pattern"


class _ConfigModel(BaseModel):
    """Base for configuration records: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ThrottlingConfig(_ConfigModel):
    """Batching and rate limiting for an appender.

    Attributes
    ----------
        max_batch_size: Flush once this many entries are buffered
        max_interval: Flush at least every this many seconds
        max_per_second: Rate limit, None for unlimited
        overflow_policy: What to do with entries over the rate limit
        max_queue_size: Bound for buffered and deferred entries

    """

    max_batch_size: int = Field(default=50, ge=1)
    max_interval: float = Field(default=5.0, gt=0)
    max_per_second: int | None = Field(default=None, ge=1)
    overflow_policy: Literal["drop", "queue"] = "drop"
    max_queue_size: int = Field(default=10_000, ge=1)


class RetryConfig(_ConfigModel):
    """Bounded retry with fixed or exponential backoff (seconds)."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    exponential: bool = True
    max_delay: float = Field(default=10.0, ge=0)


class LayoutConfig(_ConfigModel):
    name: str = ""
    type: str = ""
    pattern: str | None = None
    include_colors: bool = False
    date_format: str | None = None
    fields: list[str] | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class AppenderConfig(_ConfigModel):
    name: str = ""
    type: str = ""
    active: bool = True
    layout: str | LayoutConfig | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    url: str | None = None
    throttling: ThrottlingConfig | None = None
    retry: RetryConfig | None = None


class LoggerConfig(_ConfigModel):
    category: str = ""
    level: str = ""
    additive: bool = True
    appenders: list[str] = Field(default_factory=list)
    include_caller: bool = False

    def cache_key(self) -> str:
        return self.model_dump_json()


class SanitizationRuleConfig(_ConfigModel):
    """Declarative custom sanitization rule.

    ``pattern`` is matched against field names and string values; matches
    are replaced by ``replacement`` or masked with the configured mask char.
    """

    name: str
    pattern: str
    replacement: str | None = None
    priority: int = 0
    enabled: bool = True


class SecurityConfig(_ConfigModel):
    enable_sanitization: bool = True
    enable_filters: bool = True
    sensitive_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_FIELDS))
    mask_char: str = Field(default="*", min_length=1, max_length=1)
    partial_mask: bool = False
    custom_rules: list[SanitizationRuleConfig] = Field(default_factory=list)


class AlertRuleConfig(_ConfigModel):
    """Threshold alert over the monitoring window: fires while ``metric > threshold``."""

    name: str
    metric: Literal["error_rate", "security_events", "total_entries", "entries_per_second"]
    threshold: float
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    cooldown: float = Field(default=300.0, ge=0)
    enabled: bool = True
    description: str = ""


class MonitoringConfig(_ConfigModel):
    """Pipeline metrics and alerting.

    Attributes
    ----------
        enabled: Record metrics at all
        window_seconds: Sliding window for rates and alert evaluation
        default_alerts: Install the built-in error-rate, security and volume alerts
        alerts: Additional threshold alerts

    """

    enabled: bool = False
    window_seconds: float = Field(default=60.0, gt=0)
    default_alerts: bool = True
    alerts: list[AlertRuleConfig] = Field(default_factory=list)


class PerformanceConfig(_ConfigModel):
    enable_lazy_evaluation: bool = True
    max_message_length: int | None = Field(default=None, ge=1)
    enable_batching: bool = False
    monitoring: MonitoringConfig | None = None


class ComplianceConfig(_ConfigModel):
    enabled: bool = False
    data_retention_days: int = Field(default=90, ge=0)
    require_consent: bool = False
    anonymize_ips: bool = Field(default=False, alias="anonymizeIPs")
    enable_audit_trail: bool = True
    restricted_regions: list[str] = Field(default_factory=list)
    consent_storage_key: str = "logging-consent"
    audit_fields: list[str] = Field(default_factory=list)


class LoggingSystemConfig(_ConfigModel):
    """Aggregate configuration for the whole logging system."""

    default_level: str | None = "INFO"
    loggers: dict[str, LoggerConfig] = Field(default_factory=dict)
    appenders: dict[str, AppenderConfig] = Field(default_factory=dict)
    layouts: dict[str, LayoutConfig] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)

    @field_validator("default_level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> Any:
        """Normalize level names to uppercase."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def resolve_layout(self, appender: AppenderConfig) -> LayoutConfig | None:
        """Resolve an appender's layout reference to a layout config."""
        if isinstance(appender.layout, LayoutConfig):
            return appender.layout
        if appender.layout:
            return self.layouts.get(appender.layout)
        return None


class LoggingSettings(BaseSettings):
    """Environment settings for the logging system.

    This class reads configuration from environment variables with the prefix LOG_.
    For example:
    - LOG_ENVIRONMENT=production
    - LOG_LEVEL=DEBUG
    - LOG_FORMAT=console
    - LOG_REMOTE_URL=https://logs.example.com/ingest
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str | None = Field(default=None, description="Deployment environment")
    level: str | None = Field(default=None, description="Default log level override")
    format: LogFormat | None = Field(default=None, description="Output format for the console appender")
    remote_url: str | None = Field(default=None, description="Endpoint for the remote appender")
    enable_sanitization: bool | None = Field(default=None, description="Mask sensitive fields")
    compliance_enabled: bool | None = Field(default=None, description="Enable compliance rules")
    retention_days: int | None = Field(default=None, description="Days to retain logs")

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> Any:
        """Validate and convert log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v


class EnvironmentConfig(BaseModel):
    """Per-environment defaults."""

    default_level: str
    format: LogFormat
    include_colors: bool
    enable_sanitization: bool
    partial_mask: bool
    compliance_enabled: bool
    enable_batching: bool


ENVIRONMENT_CONFIGS: dict[str, EnvironmentConfig] = {
    "development": EnvironmentConfig(
        default_level="DEBUG",
        format=LogFormat.CONSOLE,
        include_colors=True,
        enable_sanitization=True,
        partial_mask=True,
        compliance_enabled=False,
        enable_batching=False,
    ),
    "test": EnvironmentConfig(
        default_level="DEBUG",
        format=LogFormat.PATTERN,
        include_colors=False,
        enable_sanitization=True,
        partial_mask=False,
        compliance_enabled=False,
        enable_batching=False,
    ),
    "staging": EnvironmentConfig(
        default_level="INFO",
        format=LogFormat.JSON,
        include_colors=False,
        enable_sanitization=True,
        partial_mask=False,
        compliance_enabled=True,
        enable_batching=True,
    ),
    "production": EnvironmentConfig(
        default_level="WARN",
        format=LogFormat.JSON,
        include_colors=False,
        enable_sanitization=True,
        partial_mask=False,
        compliance_enabled=True,
        enable_batching=True,
    ),
}

_ENVIRONMENT_ALIASES = {
    "dev": "development",
    "local": "development",
    "testing": "test",
    "stage": "staging",
    "prod": "production",
}


def normalize_environment(environment: str | None) -> str:
    """Map an environment name to one of ``ENVIRONMENT_CONFIGS``."""
    if not environment:
        return "development"
    env = environment.strip().lower()
    env = _ENVIRONMENT_ALIASES.get(env, env)
    return env if env in ENVIRONMENT_CONFIGS else "development"


def detect_environment() -> str:
    """Detect the current environment from LOG_ENVIRONMENT or ENVIRONMENT."""
    return normalize_environment(
        os.getenv("LOG_ENVIRONMENT") or os.getenv("ENVIRONMENT") or "development"
    )


class DefaultConfigurationFactory:
    """Builds the default configuration for an environment."""

    DEFAULT_PATTERN = "%d{YYYY-MM-DD HH:mm:ss.SSS} [%level] %category - %message"

    @classmethod
    def create_default(cls, environment: str | None = None) -> LoggingSystemConfig:
        env_name = normalize_environment(environment)
        env = ENVIRONMENT_CONFIGS[env_name]

        layout_type = env.format.value
        layouts = {
            "default": LayoutConfig(
                name="default",
                type=layout_type,
                pattern=cls.DEFAULT_PATTERN if env.format != LogFormat.JSON else None,
                include_colors=env.include_colors,
            )
        }
        appenders = {
            "console": AppenderConfig(name="console", type="console", layout="default"),
        }
        loggers = {
            "root": LoggerConfig(
                category="root",
                level=env.default_level,
                appenders=["console"],
            )
        }
        return LoggingSystemConfig(
            default_level=env.default_level,
            loggers=loggers,
            appenders=appenders,
            layouts=layouts,
            properties={"environment": env_name},
            security=SecurityConfig(
                enable_sanitization=env.enable_sanitization,
                partial_mask=env.partial_mask,
            ),
            performance=PerformanceConfig(enable_batching=env.enable_batching),
            compliance=ComplianceConfig(enabled=env.compliance_enabled),
        )


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if value is None and key not in merged:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_config(data: "LoggingSystemConfig | Mapping[str, Any]") -> LoggingSystemConfig:
    """Parse a mapping (camelCase or snake_case keys) into a config model."""
    if isinstance(data, LoggingSystemConfig):
        return data
    try:
        return LoggingSystemConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} field error(s)",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def merge_config(
    base: LoggingSystemConfig,
    override: "LoggingSystemConfig | Mapping[str, Any]",
) -> LoggingSystemConfig:
    """
    Merge ``override`` into ``base``; later values win, recursively.

    Only fields explicitly present in ``override`` are applied. Lists are
    replaced, not concatenated.
    """
    override_model = parse_config(override)
    override_data = override_model.model_dump(exclude_unset=True)
    merged = _deep_merge(base.model_dump(), override_data)
    return parse_config(merged)
