"""Tests for the log level model."""
import itertools

import pytest

from logguard.core.logging.exceptions import UnknownLevelError
from logguard.core.logging.levels import (
    UNKNOWN_PRIORITY,
    LogLevel,
    all_levels,
    compare,
    is_enabled_for,
    is_valid_level,
    parse_level,
    priority_of,
)


class TestLevelOrdering:
    """Test level priorities and comparison."""

    def test_priorities_follow_declaration_order(self):
        """Test priority is monotonic with the declared order."""
        priorities = [level.priority for level in LogLevel]
        assert priorities == sorted(priorities)
        assert len(set(priorities)) == len(priorities)

    def test_all_levels_ascending(self):
        """Test all_levels returns levels least to most severe."""
        levels = all_levels()
        assert levels[0] == LogLevel.TRACE
        assert levels[-1] == LogLevel.FATAL
        assert LogLevel.AUDIT in levels
        assert LogLevel.SECURITY in levels

    def test_is_enabled_for_matches_priorities(self):
        """Test is_enabled_for agrees with priority comparison for every pair."""
        for candidate, threshold in itertools.product(LogLevel, LogLevel):
            expected = priority_of(candidate) >= priority_of(threshold)
            assert is_enabled_for(candidate, threshold) == expected

    def test_compare_is_antisymmetric(self):
        """Test compare(a, b) == -compare(b, a)."""
        for a, b in itertools.product(LogLevel, LogLevel):
            assert compare(a, b) == -compare(b, a)
            assert compare(a, b) in (-1, 0, 1)

    def test_compare_examples(self):
        """Test a few concrete comparisons."""
        assert compare(LogLevel.DEBUG, LogLevel.INFO) == -1
        assert compare("error", "ERROR") == 0
        assert compare(LogLevel.FATAL, LogLevel.SECURITY) == 1


class TestLevelNames:
    """Test level name resolution."""

    def test_names_are_case_insensitive(self):
        """Test lowercase and padded names resolve."""
        assert parse_level("warn") == LogLevel.WARN
        assert parse_level(" Info ") == LogLevel.INFO

    def test_stdlib_aliases(self):
        """Test WARNING and CRITICAL map to WARN and FATAL."""
        assert parse_level("WARNING") == LogLevel.WARN
        assert parse_level("critical") == LogLevel.FATAL

    def test_parse_unknown_level_raises(self):
        """Test unknown names raise UnknownLevelError."""
        with pytest.raises(UnknownLevelError, match="Unknown log level: VERBOSE"):
            parse_level("VERBOSE")

    def test_is_valid_level(self):
        """Test level name validation."""
        assert is_valid_level("metrics")
        assert not is_valid_level("verbose")
        assert not is_valid_level("")


class TestUnknownLevelPolicy:
    """Unknown levels fail closed."""

    def test_unknown_priority(self):
        """Test unknown names get the sentinel priority."""
        assert priority_of("bogus") == UNKNOWN_PRIORITY
        assert priority_of("bogus") < priority_of(LogLevel.TRACE)

    def test_unknown_candidate_never_enabled(self):
        """Test an unknown level is never logged, even at TRACE threshold."""
        assert not is_enabled_for("bogus", LogLevel.TRACE)

    def test_unknown_threshold_enables_nothing(self):
        """Test an unknown threshold does not let everything through."""
        assert not is_enabled_for(LogLevel.FATAL, "bogus")
