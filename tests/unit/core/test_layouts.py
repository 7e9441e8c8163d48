"""Tests for pattern, JSON and console layouts."""
import json

import pytest

from logguard.core.logging import LoggingContext, LogLevel
from logguard.core.logging.config import LayoutConfig
from logguard.core.logging.layouts import (
    FALLBACK_ERROR_MARKER,
    INVALID_ENTRY_MARKER,
    ConsoleLayout,
    JsonLayout,
    PatternLayout,
)


class TestPatternLayout:
    """Test token pattern rendering."""

    def test_default_pattern(self, make_entry):
        """Test the default pattern output."""
        output = PatternLayout().format(make_entry())

        assert output == "2025-06-20 14:30:45.123 [INFO] app.test - Test message"

    def test_custom_pattern_tokens(self, make_entry):
        """Test every supported token."""
        layout = PatternLayout(LayoutConfig(pattern="%d{HH:mm} %id %thread %level %category %message"))
        output = layout.format(make_entry(thread="worker-1"))

        assert output == "14:30 entry-1 worker-1 INFO app.test Test message"

    def test_bare_date_token_is_iso(self, make_entry):
        """Test %d without a format renders ISO-8601."""
        output = PatternLayout(LayoutConfig(pattern="%d")).format(make_entry())
        assert output == "2025-06-20T14:30:45.123000+00:00"

    def test_tokens_inside_message_are_literal(self, make_entry):
        """Test token-like text in the message is not substituted."""
        output = PatternLayout(LayoutConfig(pattern="%message")).format(make_entry(message="literal %level"))
        assert output == "literal %level"

    def test_stack_trace_appended(self, make_entry):
        """Test the stack trace follows on a new line."""
        output = PatternLayout(LayoutConfig(pattern="%message")).format(
            make_entry(stack_trace="Traceback: boom")
        )
        assert output == "Test message\nTraceback: boom"

    def test_colors_use_rich_markup(self, make_entry):
        """Test colored output wraps the level in markup and escapes text."""
        layout = PatternLayout(LayoutConfig(pattern="%level %message", include_colors=True))
        output = layout.format(make_entry(level=LogLevel.ERROR, message="[bold]x"))

        assert output == "[red bold]ERROR[/red bold] \\[bold]x"
        assert layout.uses_markup

    def test_configure_merges(self, make_entry):
        """Test configure replaces only the given settings."""
        layout = PatternLayout(LayoutConfig(pattern="%level", date_format="HH"))
        layout.configure({"pattern": "%category"})

        assert layout.config.pattern == "%category"
        assert layout.config.date_format == "HH"
        assert layout.format(make_entry()) == "app.test"


class TestJsonLayout:
    """Test structured JSON rendering."""

    def test_default_fields_in_order(self, make_entry):
        """Test default key order and omission of absent fields."""
        record = json.loads(JsonLayout().format(make_entry()))

        assert list(record) == ["timestamp", "level", "category", "message", "id"]
        assert record["timestamp"] == "2025-06-20T14:30:45.123000+00:00"
        assert "context" not in record
        assert "stackTrace" not in record

    def test_context_and_metadata(self, make_entry, context):
        """Test context and metadata are nested objects."""
        record = json.loads(JsonLayout().format(make_entry(context=context, metadata={"count": 2})))

        assert record["context"]["user_id"] == "user-123"
        assert record["metadata"] == {"count": 2}

    def test_fields_allowlist(self, make_entry):
        """Test fields restricts and orders keys."""
        layout = JsonLayout(LayoutConfig(fields=["message", "level", "unknown"]))
        assert layout.format(make_entry()) == '{"message": "Test message", "level": "INFO"}'

    def test_custom_fields(self, make_entry):
        """Test custom fields are added without overriding entry fields."""
        layout = JsonLayout(LayoutConfig(custom_fields={"service": "api", "level": "nope"}))
        record = json.loads(layout.format(make_entry()))

        assert record["service"] == "api"
        assert record["level"] == "INFO"

    def test_content_type(self):
        """Test JSON content type."""
        assert JsonLayout().get_content_type() == "application/json"
        assert PatternLayout().get_content_type() == "text/plain"


class TestConsoleLayout:
    """Test compact console rendering."""

    def test_plain_output(self, make_entry, context):
        """Test uncolored console line."""
        output = ConsoleLayout().format(make_entry(context=context, metadata={"attempt": 1}))

        assert output.startswith("14:30:45.123 │     INFO │ app.test │ ")
        assert "req=req-789 user=user-123 component=auth" in output
        assert output.endswith("Test message attempt=1")

    def test_colored_output_has_icon(self, make_entry):
        """Test colored output carries the level icon and style."""
        output = ConsoleLayout(LayoutConfig(include_colors=True)).format(make_entry(level=LogLevel.WARN))
        assert output.count("[yellow]") == 1
        assert "⚠️" in output
        assert "WARN[/yellow]" in output


class TestLayoutFallback:
    """Layouts never raise."""

    @pytest.mark.parametrize("layout", [PatternLayout(), JsonLayout(), ConsoleLayout()])
    def test_invalid_entry(self, layout, make_entry):
        """Test invalid entries produce the invalid-entry fallback."""
        payload = json.loads(layout.format(make_entry(category="")))
        assert payload["error"] == INVALID_ENTRY_MARKER

    def test_non_entry(self):
        """Test arbitrary objects produce the fallback."""
        payload = json.loads(JsonLayout().format({"not": "an entry"}))
        assert payload["error"] == INVALID_ENTRY_MARKER

    def test_circular_metadata(self, make_entry):
        """Test circular structures produce the formatting fallback."""
        loop: dict = {}
        loop["self"] = loop
        payload = json.loads(JsonLayout().format(make_entry(metadata={"loop": loop})))

        assert payload["error"] == FALLBACK_ERROR_MARKER
        assert payload["message"] == "Test message"
        assert payload["level"] == "INFO"

    def test_circular_context(self, make_entry):
        """Test circular additional data in context is handled."""
        loop: list = []
        loop.append(loop)
        entry = make_entry(context=LoggingContext(additional_data={"loop": loop}))
        payload = json.loads(JsonLayout().format(entry))

        assert payload["error"] == FALLBACK_ERROR_MARKER
