"""Tests for log entries, logging context and message formatting."""
from datetime import UTC, datetime

import pytest

from logguard.core.context import (
    bind_logging_context,
    clear_logging_context,
    get_logging_context,
    logging_context,
    reset_logging_context,
    set_logging_context,
)
from logguard.core.logging.entry import LogEntry, LoggingContext
from logguard.core.logging.formatting import format_date, format_message, format_value, truncate_string
from logguard.core.logging.levels import LogLevel


class TestLoggingContext:
    """Test context merging and conversion."""

    def test_merge_is_right_biased(self):
        """Test later values win on merge."""
        base = LoggingContext(user_id="u1", component="auth")
        merged = base.merge(LoggingContext(user_id="u2", action="login"))

        assert merged.user_id == "u2"
        assert merged.component == "auth"
        assert merged.action == "login"

    def test_merge_additional_data_key_wise(self):
        """Test additional_data is merged key by key."""
        base = LoggingContext(additional_data={"a": 1, "b": 2})
        merged = base.merge(LoggingContext(additional_data={"b": 3, "c": 4}))

        assert merged.additional_data == {"a": 1, "b": 3, "c": 4}

    def test_merge_does_not_mutate_inputs(self):
        """Test merge returns a new context."""
        base = LoggingContext(user_id="u1", additional_data={"a": 1})
        other = LoggingContext(additional_data={"b": 2})
        base.merge(other)

        assert base.additional_data == {"a": 1}
        assert other.additional_data == {"b": 2}

    def test_none_values_do_not_override(self):
        """Test unset fields on the right keep the left value."""
        merged = LoggingContext(user_id="u1").merge(LoggingContext(user_id=None))
        assert merged.user_id == "u1"

    def test_from_dict_accepts_camel_case(self):
        """Test camelCase keys map to fields and unknown keys become additional data."""
        ctx = LoggingContext.from_dict({"userId": "u1", "requestId": "r1", "ip": "10.0.0.1"})

        assert ctx.user_id == "u1"
        assert ctx.request_id == "r1"
        assert ctx.additional_data == {"ip": "10.0.0.1"}

    def test_to_dict_omits_unset(self):
        """Test to_dict only contains set fields."""
        assert LoggingContext(user_id="u1").to_dict() == {"user_id": "u1"}
        assert LoggingContext().is_empty()

    def test_coerce_rejects_other_types(self):
        """Test coerce raises for unsupported values."""
        with pytest.raises(TypeError):
            LoggingContext.coerce(42)


class TestLogEntry:
    """Test log entry construction."""

    def test_create_sets_required_fields(self):
        """Test create fills id and UTC timestamp."""
        entry = LogEntry.create("info", "app", "hello")

        assert entry.id
        assert entry.timestamp.tzinfo is not None
        assert entry.level == LogLevel.INFO
        assert entry.is_valid()

    def test_entries_have_unique_ids(self):
        """Test ids are unique."""
        assert LogEntry.create("INFO", "app", "a").id != LogEntry.create("INFO", "app", "b").id

    def test_entry_is_immutable(self, make_entry):
        """Test fields cannot be assigned."""
        entry = make_entry()
        with pytest.raises(AttributeError):
            entry.message = "changed"

    def test_with_metadata_returns_copy(self, make_entry):
        """Test with_metadata merges into a new entry."""
        entry = make_entry(metadata={"a": 1})
        updated = entry.with_metadata(b=2)

        assert updated.metadata == {"a": 1, "b": 2}
        assert entry.metadata == {"a": 1}

    def test_invalid_entry(self, make_entry):
        """Test entries with missing required fields are invalid."""
        assert not make_entry(category="").is_valid()
        assert not make_entry(level="VERBOSE").is_valid()

    def test_to_dict(self, make_entry):
        """Test dictionary conversion."""
        data = make_entry(context=LoggingContext(user_id="u1")).to_dict()

        assert data["timestamp"] == "2025-06-20T14:30:45.123000+00:00"
        assert data["level"] == "INFO"
        assert data["context"] == {"user_id": "u1"}
        assert "stack_trace" not in data


class TestAmbientContext:
    """Test the contextvar-based ambient context."""

    def test_set_and_reset(self):
        """Test set returns a token that restores the previous value."""
        token = set_logging_context({"requestId": "r1"})
        assert get_logging_context().request_id == "r1"

        reset_logging_context(token)
        assert get_logging_context() is None

    def test_bind_merges_fields(self):
        """Test bind layers fields over the current context."""
        bind_logging_context(request_id="r1")
        bind_logging_context(user_id="u1", tenant="t1")

        ctx = get_logging_context()
        assert ctx.request_id == "r1"
        assert ctx.user_id == "u1"
        assert ctx.additional_data == {"tenant": "t1"}

        clear_logging_context()
        assert get_logging_context() is None

    def test_context_manager_restores(self):
        """Test the context manager restores the outer context."""
        bind_logging_context(request_id="outer")

        with logging_context(user_id="u1") as ctx:
            assert ctx.request_id == "outer"
            assert ctx.user_id == "u1"

        assert get_logging_context().user_id is None
        assert get_logging_context().request_id == "outer"


class TestFormatting:
    """Test message templating helpers."""

    def test_positional_placeholders(self):
        """Test {} placeholders are filled left to right."""
        assert format_message("User {} did {}", ["alice", "login"]) == "User alice did login"

    def test_unmatched_placeholder_left_literal(self):
        """Test missing arguments leave the placeholder in place."""
        assert format_message("A {} B {}", ["x"]) == "A x B {}"

    def test_indexed_placeholders(self):
        """Test {n} placeholders pick arguments by index."""
        assert format_message("{1} before {0}", ["a", "b"]) == "b before a"

    def test_extra_arguments_ignored(self):
        """Test surplus arguments do not raise."""
        assert format_message("only {}", ["a", "b"]) == "only a"

    def test_empty_template(self):
        """Test None and empty templates."""
        assert format_message(None, ["a"]) == ""
        assert format_message("", []) == ""

    def test_format_value(self):
        """Test rendering of argument types."""
        assert format_value(None) == "null"
        assert format_value(True) == "true"
        assert format_value([1, 2]) == "[1, 2]"
        assert format_value({"a": 1}) == '{"a":1}'
        assert format_value(ValueError("bad")) == "ValueError: bad"

    def test_truncate_string(self):
        """Test truncation with suffix."""
        assert truncate_string("abcdefghij", 6) == "abc..."
        assert truncate_string("short", 10) == "short"

    def test_format_date(self):
        """Test moment-style date patterns."""
        ts = datetime(2025, 6, 20, 14, 30, 45, 123000, tzinfo=UTC)
        assert format_date(ts, "YYYY-MM-DD HH:mm:ss.SSS") == "2025-06-20 14:30:45.123"
        assert format_date(ts, "ISO8601") == ts.isoformat()
        assert format_date(ts) == ts.isoformat()
