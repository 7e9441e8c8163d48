"""
Exceptions raised by the logging subsystem.

Only configuration and construction paths raise these to their caller.
Delivery and formatting problems are caught inside the pipeline and
reported through the fallback channel instead, so a log statement can
never crash the code that issued it.
"""

from enum import Enum
from typing import Any


class LoggingErrorCode(str, Enum):
    """Machine-readable error codes for logging failures."""

    CONFIGURATION_INVALID = "configuration_invalid"
    UNKNOWN_APPENDER_TYPE = "unknown_appender_type"
    UNKNOWN_LAYOUT_TYPE = "unknown_layout_type"
    UNKNOWN_LEVEL = "unknown_level"
    REGISTRY_SHUTDOWN = "registry_shutdown"
    APPENDER_FAILURE = "appender_failure"
    DELIVERY_FAILED = "delivery_failed"


class LoggingError(Exception):
    """
    Base exception for all logging subsystem errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional error details (optional)
    """

    def __init__(
        self,
        message: str,
        error_code: LoggingErrorCode = LoggingErrorCode.CONFIGURATION_INVALID,
        details: dict[str, Any] | None = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for diagnostics."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(LoggingError):
    """Raised when a configuration operation cannot be applied."""

    def __init__(
        self,
        message: str = "Invalid logging configuration",
        error_code: LoggingErrorCode = LoggingErrorCode.CONFIGURATION_INVALID,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message=message, error_code=error_code, details=details)


class ConfigurationValidationError(ConfigurationError):
    """Raised when a configuration fails validation.

    The full validation result (errors and warnings) is kept on
    ``result`` so callers can render every problem at once.
    """

    def __init__(self, result: Any, message: str | None = None):
        self.result = result
        messages = [error.message for error in getattr(result, "errors", [])]
        super().__init__(
            message=message or f"Invalid configuration: {', '.join(messages)}",
            details={"errors": [error.model_dump() for error in getattr(result, "errors", [])]}
        )


class UnknownAppenderTypeError(ConfigurationError):
    """Raised when no constructor is registered for an appender type."""

    def __init__(self, appender_type: str):
        self.appender_type = appender_type
        super().__init__(
            message=f"Unknown appender type: {appender_type}",
            error_code=LoggingErrorCode.UNKNOWN_APPENDER_TYPE,
            details={"type": appender_type}
        )


class UnknownLayoutTypeError(ConfigurationError):
    """Raised when no constructor is registered for a layout type."""

    def __init__(self, layout_type: str):
        self.layout_type = layout_type
        super().__init__(
            message=f"Unknown layout type: {layout_type}",
            error_code=LoggingErrorCode.UNKNOWN_LAYOUT_TYPE,
            details={"type": layout_type}
        )


class UnknownLevelError(ConfigurationError):
    """Raised when a level name cannot be resolved."""

    def __init__(self, level: str):
        self.level = level
        super().__init__(
            message=f"Unknown log level: {level}",
            error_code=LoggingErrorCode.UNKNOWN_LEVEL,
            details={"level": level}
        )


class RegistryShutdownError(LoggingError):
    """Raised when a shut down registry is used again."""

    def __init__(self, message: str = "Logger registry is shutdown"):
        super().__init__(message=message, error_code=LoggingErrorCode.REGISTRY_SHUTDOWN)


class AppenderError(LoggingError):
    """Raised by appenders; caught by the logger core during dispatch."""

    def __init__(
        self,
        message: str,
        appender: str | None = None,
        error_code: LoggingErrorCode = LoggingErrorCode.APPENDER_FAILURE,
        details: dict[str, Any] | None = None
    ):
        self.appender = appender
        super().__init__(
            message=message,
            error_code=error_code,
            details={"appender": appender, **(details or {})}
        )


class DeliveryError(AppenderError):
    """Raised when a batch could not be delivered after all retries."""

    def __init__(self, message: str, appender: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            appender=appender,
            error_code=LoggingErrorCode.DELIVERY_FAILED,
            details=details
        )
