"""Tests for the logger core and its processing pipeline."""
from unittest.mock import MagicMock, patch

import pytest

from logguard.core.context import logging_context
from logguard.core.logging import LoggingContext, LogLevel
from logguard.core.logging.appenders import AppenderState, BaseAppender, MemoryAppender
from logguard.core.logging.config import LoggingSystemConfig
from logguard.core.logging.logger import Logger, LoggingPipeline


def ready_memory_appender(name: str = "memory") -> MemoryAppender:
    appender = MemoryAppender({"name": name, "type": "memory"})
    appender.state = AppenderState.READY
    return appender


class TestLevelGate:
    """Test level filtering."""

    def test_entries_below_threshold_are_dropped(self, memory_appender):
        """Test a WARN logger drops INFO and keeps WARN and ERROR."""
        logger = Logger("app", level="WARN", appenders=[memory_appender])

        logger.info("not logged")
        logger.warn("warned")
        logger.error("failed")

        assert [(e.level, e.message) for e in memory_appender.entries] == [
            (LogLevel.WARN, "warned"),
            (LogLevel.ERROR, "failed"),
        ]

    def test_level_setter(self, memory_appender):
        """Test changing the level at runtime."""
        logger = Logger("app", level="ERROR", appenders=[memory_appender])
        logger.level = "debug"
        logger.debug("now visible")

        assert logger.level == LogLevel.DEBUG
        assert len(memory_appender.entries) == 1

    def test_unknown_level_is_not_logged(self, memory_appender):
        """Test log() with an unknown level fails closed without raising."""
        logger = Logger("app", level="TRACE", appenders=[memory_appender])
        logger.log("VERBOSE", "hidden")

        assert memory_appender.entries == []

    def test_every_level_method(self, memory_appender):
        """Test convenience methods map to their levels."""
        logger = Logger("app", level="TRACE", appenders=[memory_appender])
        for method in ("trace", "debug", "info", "audit", "warn", "metrics", "error", "security", "fatal"):
            getattr(logger, method)(method)
        logger.warning("warning")
        logger.critical("critical")

        levels = [e.level for e in memory_appender.entries]
        assert levels[:9] == list(LogLevel)
        assert levels[9:] == [LogLevel.WARN, LogLevel.FATAL]


class TestMessageBuilding:
    """Test templating, context and stack traces."""

    def test_template_arguments(self, memory_appender):
        """Test placeholders are filled and the template is kept."""
        logger = Logger("app", appenders=[memory_appender])
        logger.info("User {} did {} {}", "alice", "login")

        entry = memory_appender.entries[0]
        assert entry.message == "User alice did login {}"
        assert entry.template == "User {} did {} {}"
        assert entry.args == ("alice", "login")

    def test_lazy_template_not_evaluated_when_disabled(self, memory_appender):
        """Test a callable template is only called for enabled levels."""
        logger = Logger("app", level="INFO", appenders=[memory_appender])
        template = MagicMock(return_value="expensive")

        logger.debug(template)
        template.assert_not_called()

        logger.info(template)
        template.assert_called_once()
        assert memory_appender.entries[0].message == "expensive"

    def test_message_truncation(self, memory_appender):
        """Test max_message_length truncates messages."""
        pipeline = LoggingPipeline(max_message_length=10)
        logger = Logger("app", appenders=[memory_appender], pipeline=pipeline)
        logger.info("a" * 50)

        assert memory_appender.entries[0].message == "aaaaaaa..."

    def test_context_merge_order(self, memory_appender):
        """Test ambient context, then logger properties, then call context."""
        logger = Logger(
            "app",
            appenders=[memory_appender],
            properties={"component": "auth", "environment": "test"},
        )
        with logging_context(request_id="req-1", component="ambient"):
            logger.info("hello", context={"userId": "u1", "environment": "call"})

        ctx = memory_appender.entries[0].context
        assert ctx.request_id == "req-1"
        assert ctx.component == "auth"
        assert ctx.user_id == "u1"
        assert ctx.environment == "call"

    def test_empty_context_omitted(self, memory_appender):
        """Test entries without any context carry None."""
        Logger("app", appenders=[memory_appender]).info("hello")
        assert memory_appender.entries[0].context is None

    def test_metadata(self, memory_appender):
        """Test metadata is attached to the entry."""
        Logger("app", appenders=[memory_appender]).info("hello", metadata={"duration_ms": 12})
        assert memory_appender.entries[0].metadata == {"duration_ms": 12}

    def test_keyword_fields_become_metadata(self, memory_appender):
        """Test structured keyword fields are kept instead of raising."""
        logger = Logger("app", appenders=[memory_appender])
        logger.info("User logged in", user_id="u1", metadata={"duration_ms": 12, "user_id": "old"})
        logger.warn("Quota low", remaining=3)

        first, second = memory_appender.entries
        assert first.message == "User logged in"
        assert first.metadata == {"duration_ms": 12, "user_id": "u1"}
        assert second.metadata == {"remaining": 3}

    def test_invalid_metadata_does_not_raise(self, memory_appender):
        """Test a non-mapping metadata argument is reported, not raised."""
        with patch("logguard.core.logging.logger.fallback_logger") as fallback:
            Logger("app", appenders=[memory_appender]).info("hello", metadata=["x"], extra=1)

        assert memory_appender.entries == []
        fallback.error.assert_called_once()

    def test_exception_captures_traceback(self, memory_appender):
        """Test exception() records the active exception."""
        logger = Logger("app", appenders=[memory_appender])
        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("Operation failed")

        entry = memory_appender.entries[0]
        assert entry.level == LogLevel.ERROR
        assert "ValueError: boom" in entry.stack_trace

    def test_exc_info_instance(self, memory_appender):
        """Test an exception instance can be passed as exc_info."""
        Logger("app", appenders=[memory_appender]).error("failed", exc_info=KeyError("missing"))
        assert "KeyError" in memory_appender.entries[0].stack_trace

    def test_include_caller(self, memory_appender):
        """Test caller location is captured when enabled."""
        Logger("app", appenders=[memory_appender], include_caller=True).info("hello")
        assert "test_logger.py" in memory_appender.entries[0].stack_trace


class TestDispatch:
    """Test appender fan-out and isolation."""

    def test_failing_appender_is_isolated(self, memory_appender):
        """Test one failing appender does not stop others or raise."""
        broken = MagicMock(spec=BaseAppender)
        broken.name = "broken"
        broken.is_ready.return_value = True
        broken.append.side_effect = RuntimeError("disk full")
        logger = Logger("app", appenders=[broken, memory_appender])

        with patch("logguard.core.logging.logger.fallback_logger") as fallback:
            logger.info("still delivered")

        assert len(memory_appender.entries) == 1
        fallback.error.assert_called_once()
        assert fallback.error.call_args.kwargs["appender"] == "broken"

    def test_appenders_not_ready_are_skipped(self):
        """Test stopped appenders receive nothing."""
        appender = MemoryAppender()
        Logger("app", appenders=[appender]).info("hello")
        assert appender.entries == []

    def test_add_appender_deduplicates(self, memory_appender):
        """Test adding the same appender twice has no effect."""
        logger = Logger("app")
        logger.add_appender(memory_appender)
        logger.add_appender(memory_appender)
        assert logger.appenders == [memory_appender]

        logger.remove_appender("memory")
        assert logger.appenders == []

    def test_additivity(self):
        """Test entries reach ancestor appenders unless additivity is off."""
        parent_appender = ready_memory_appender("parent")
        child_appender = ready_memory_appender("child")
        parent = Logger("app", appenders=[parent_appender])
        child = Logger("app.db", appenders=[child_appender], parent=parent)

        child.info("both")
        child.additive = False
        child.info("child only")

        assert [e.message for e in child_appender.entries] == ["both", "child only"]
        assert [e.message for e in parent_appender.entries] == ["both"]

    def test_shared_appender_receives_once(self):
        """Test an appender on both child and parent gets one copy."""
        shared = ready_memory_appender()
        parent = Logger("app", appenders=[shared])
        child = Logger("app.db", appenders=[shared], parent=parent)

        child.info("once")
        assert len(shared.entries) == 1

    def test_invalid_context_reported_not_raised(self, memory_appender):
        """Test a bad argument never escapes the log call."""
        logger = Logger("app", appenders=[memory_appender])
        with patch("logguard.core.logging.logger.fallback_logger") as fallback:
            logger.info("hello", context=42)

        assert memory_appender.entries == []
        assert fallback.error.call_args.kwargs["error_type"] == "TypeError"


class TestPipeline:
    """Test sanitization, filters and compliance inside the logger."""

    def test_sensitive_data_masked(self, memory_appender):
        """Test passwords in message and metadata are masked."""
        pipeline = LoggingPipeline.from_config(LoggingSystemConfig())
        logger = Logger("app", appenders=[memory_appender], pipeline=pipeline)

        logger.info("login password=hunter2 from a@b.com", metadata={"password": "hunter2", "user": "bob"})

        entry = memory_appender.entries[0]
        assert entry.message == "login password=*** from [EMAIL]"
        assert entry.metadata == {"password": "***", "user": "bob"}

    def test_dropping_filter(self, memory_appender):
        """Test a filter returning None suppresses the entry."""
        from logguard.core.logging.filters import SecurityFilter

        pipeline = LoggingPipeline.from_config(LoggingSystemConfig())
        pipeline.filter_chain.add_filter(
            SecurityFilter(name="drop-debug-noise", transform=lambda entry: None, priority=200)
        )
        Logger("app", appenders=[memory_appender], pipeline=pipeline).info("dropped")

        assert memory_appender.entries == []

    def test_consent_required(self, memory_appender):
        """Test entries of users without consent are suppressed."""
        config = LoggingSystemConfig.model_validate({"compliance": {"enabled": True, "requireConsent": True}})
        pipeline = LoggingPipeline.from_config(config)
        logger = Logger("app", appenders=[memory_appender], pipeline=pipeline)

        logger.info("before consent", context={"userId": "u1"})
        pipeline.compliance.grant_consent("u1")
        logger.info("after consent", context={"userId": "u1"})
        logger.info("anonymous")

        messages = [e.message for e in memory_appender.entries]
        assert messages == ["after consent", "anonymous"]
        assert memory_appender.entries[0].metadata["complianceEnabled"] is True
        assert "retentionDate" in memory_appender.entries[0].metadata

    def test_metrics(self, memory_appender):
        """Test emitted and suppressed counters."""
        config = LoggingSystemConfig.model_validate({"performance": {"monitoring": {"enabled": True}}})
        pipeline = LoggingPipeline.from_config(config)
        logger = Logger("app", level="INFO", appenders=[memory_appender], pipeline=pipeline)

        logger.debug("suppressed")
        logger.info("emitted")

        snapshot = pipeline.metrics.snapshot()
        assert snapshot["emitted"] == {"INFO": 1}
        assert snapshot["suppressed"] == {"level": 1}

    def test_metrics_count_throttled_entries(self):
        """Test entries dropped by an appender rate limit are counted."""
        config = LoggingSystemConfig.model_validate({"performance": {"monitoring": {"enabled": True}}})
        pipeline = LoggingPipeline.from_config(config)
        appender = MemoryAppender(
            {"name": "limited", "type": "memory", "throttling": {"maxPerSecond": 1, "overflowPolicy": "drop"}}
        )
        appender.state = AppenderState.READY
        logger = Logger("app", appenders=[appender], pipeline=pipeline)

        for _ in range(3):
            logger.info("burst")

        assert len(appender.entries) == 1
        assert pipeline.metrics.snapshot()["throttled"] == {"limited": 2}

    def test_configure_keeps_custom_filters(self):
        """Test reconfiguring keeps custom filters and disabled built-ins."""
        from logguard.core.logging.filters import SecurityFilter

        pipeline = LoggingPipeline.from_config(LoggingSystemConfig())
        pipeline.filter_chain.add_filter(SecurityFilter(name="custom", transform=lambda e: e))
        pipeline.filter_chain.set_filter_enabled("user-data-protection", False)
        compliance = pipeline.compliance

        pipeline.configure(LoggingSystemConfig())

        assert pipeline.filter_chain.get_filter("custom") is not None
        assert pipeline.filter_chain.get_filter("user-data-protection").enabled is False
        assert pipeline.compliance is compliance


class TestChild:
    """Test child loggers without a registry."""

    def test_child_inherits(self, memory_appender):
        """Test a child logs through the parent's appenders."""
        parent = Logger("app", level="WARN", appenders=[memory_appender])
        child = parent.child("db")

        child.warn("slow query")

        assert child.category == "app.db"
        assert memory_appender.entries[0].category == "app.db"

    @pytest.mark.parametrize("properties", [None, LoggingContext(component="auth")])
    def test_repr(self, properties):
        """Test repr shows category and level."""
        assert repr(Logger("app", properties=properties)) == "<Logger category='app' level=INFO>"
