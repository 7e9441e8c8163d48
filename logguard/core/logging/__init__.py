"""Core logging module.

This module provides category-scoped loggers with pluggable appenders and
layouts, sensitive data sanitization, security filters and compliance
rules.
"""

from .appenders import (
    AppenderState,
    BaseAppender,
    BufferedAppender,
    ConsoleAppender,
    FileAppender,
    MemoryAppender,
    RemoteAppender,
)
from .audit import AuditAction, AuditEntry, AuditResult
from .compliance import ComplianceEngine, ConsentRecord, anonymize_ip
from .config import (
    AppenderConfig,
    ComplianceConfig,
    DefaultConfigurationFactory,
    LayoutConfig,
    LogFormat,
    LoggerConfig,
    LoggingSettings,
    LoggingSystemConfig,
    PerformanceConfig,
    RetryConfig,
    SecurityConfig,
    ThrottlingConfig,
    merge_config,
)
from .config_manager import (
    ConfigurationLoader,
    ConfigurationValidator,
    LoggingConfigManager,
    ValidationIssue,
    ValidationResult,
)
from .diagnostics import configure_internal_logging
from .entry import LogEntry, LoggingContext
from .exceptions import (
    AppenderError,
    ConfigurationError,
    ConfigurationValidationError,
    DeliveryError,
    LoggingError,
    LoggingErrorCode,
    RegistryShutdownError,
    UnknownAppenderTypeError,
    UnknownLayoutTypeError,
    UnknownLevelError,
)
from .factory import LoggerFactory
from .filters import SecurityFilter, SecurityFilterChain
from .formatting import format_date, format_message, format_value, truncate_string
from .layouts import BaseLayout, ConsoleLayout, JsonLayout, PatternLayout
from .levels import LogLevel, compare, is_enabled_for, parse_level, priority_of
from .logger import Logger, LoggingPipeline
from .metrics import Alert, AlertRule, LoggingMetrics, WindowMetrics
from .registry import LoggerRegistry, configure_logging, get_logger, shutdown_logging
from .sanitizer import DataSanitizer, SanitizationRule

__all__ = [
    "configure_logging",
    "get_logger",
    "shutdown_logging",
    "configure_internal_logging",
    "LoggerRegistry",
    "LoggerFactory",
    "Logger",
    "LoggingPipeline",
    "LogLevel",
    "priority_of",
    "compare",
    "is_enabled_for",
    "parse_level",
    "LogEntry",
    "LoggingContext",
    "BaseLayout",
    "PatternLayout",
    "JsonLayout",
    "ConsoleLayout",
    "AppenderState",
    "BaseAppender",
    "BufferedAppender",
    "ConsoleAppender",
    "MemoryAppender",
    "FileAppender",
    "RemoteAppender",
    "DataSanitizer",
    "SanitizationRule",
    "SecurityFilter",
    "SecurityFilterChain",
    "ComplianceEngine",
    "ConsentRecord",
    "anonymize_ip",
    "AuditAction",
    "AuditEntry",
    "AuditResult",
    "LoggingMetrics",
    "Alert",
    "AlertRule",
    "WindowMetrics",
    "format_message",
    "format_value",
    "format_date",
    "truncate_string",
    "LogFormat",
    "LoggingSettings",
    "LoggingSystemConfig",
    "LoggerConfig",
    "AppenderConfig",
    "LayoutConfig",
    "ThrottlingConfig",
    "RetryConfig",
    "SecurityConfig",
    "PerformanceConfig",
    "ComplianceConfig",
    "DefaultConfigurationFactory",
    "merge_config",
    "ConfigurationLoader",
    "ConfigurationValidator",
    "LoggingConfigManager",
    "ValidationIssue",
    "ValidationResult",
    "LoggingError",
    "LoggingErrorCode",
    "ConfigurationError",
    "ConfigurationValidationError",
    "UnknownAppenderTypeError",
    "UnknownLayoutTypeError",
    "UnknownLevelError",
    "RegistryShutdownError",
    "AppenderError",
    "DeliveryError",
]
