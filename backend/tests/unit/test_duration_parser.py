"""
Unit tests for the duration parser.

Tests the conversion of duration strings such as "60s" or "1h30m" to seconds.
"""

import pytest
from utils.duration_parser import parse_duration


class TestBasicDurations:
    """Test basic single-unit durations"""

    def test_parse_seconds(self):
        assert parse_duration("30s") == 30.0

    def test_parse_minutes(self):
        assert parse_duration("5m") == 300.0

    def test_parse_hours(self):
        assert parse_duration("2h") == 7200.0

    def test_parse_milliseconds(self):
        assert parse_duration("500ms") == pytest.approx(0.5)

    def test_parse_microseconds(self):
        assert parse_duration("1000us") == pytest.approx(0.001)


class TestCompoundDurations:
    """Test compound durations with multiple units"""

    def test_parse_minutes_and_seconds(self):
        """Test 1m30s format"""
        assert parse_duration("1m30s") == 90.0

    def test_parse_hours_minutes_seconds(self):
        """Test 1h30m45s format"""
        assert parse_duration("1h30m45s") == 5445.0


class TestDecimalValues:
    """Test decimal duration values"""

    def test_parse_decimal_hours(self):
        assert parse_duration("1.5h") == 5400.0

    def test_parse_decimal_minutes(self):
        assert parse_duration("2.5m") == 150.0


class TestNumbers:
    """Plain numbers are already seconds"""

    def test_integer_passthrough(self):
        assert parse_duration(45) == 45.0

    def test_float_passthrough(self):
        assert parse_duration(0.5) == 0.5

    def test_negative_number_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            parse_duration(-1)


class TestInvalidFormats:
    """Test error handling for invalid duration formats"""

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values_raise(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)

    def test_no_unit_raises_error(self):
        """Test number without unit raises ValueError"""
        with pytest.raises(ValueError, match="Invalid duration format"):
            parse_duration("30")

    def test_invalid_unit_raises_error(self):
        with pytest.raises(ValueError, match="Invalid duration format"):
            parse_duration("30x")

    def test_text_only_raises_error(self):
        with pytest.raises(ValueError, match="Invalid duration format"):
            parse_duration("seconds")

    def test_negative_string_raises_error(self):
        with pytest.raises(ValueError, match="Invalid duration format"):
            parse_duration("-5s")
