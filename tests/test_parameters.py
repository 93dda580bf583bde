"""Unit tests for parameter tracking."""

import pytest

from query_ir import ParameterManager, QueryBuilderMode, format_value


class TestFormatValue:
    """Test inline literal formatting."""

    def test_strings_are_quoted(self):
        """Test strings are wrapped in single quotes"""
        assert format_value("test") == "'test'"

    def test_quotes_are_doubled(self):
        """Test embedded single quotes are escaped"""
        assert format_value("O'Brien") == "'O''Brien'"

    def test_numbers(self):
        """Test numbers are emitted bare"""
        assert format_value(42) == "42"
        assert format_value(-1) == "-1"
        assert format_value(2.5) == "2.5"

    def test_booleans_and_null(self):
        """Test TRUE / FALSE / NULL keywords"""
        assert format_value(True) == "TRUE"
        assert format_value(False) == "FALSE"
        assert format_value(None) == "NULL"


class TestParameterManager:
    """Test placeholder generation per mode."""

    def test_named(self):
        """Test NAMED mode numbers @paramN placeholders from 1"""
        manager = ParameterManager(QueryBuilderMode.NAMED)
        assert manager.add_parameter(18) == "@param1"
        assert manager.add_parameter("John%") == "@param2"
        assert manager.get_parameters() == {"param1": 18, "param2": "John%"}

    def test_positional(self):
        """Test POSITIONAL mode emits ? and keeps order"""
        manager = ParameterManager(QueryBuilderMode.POSITIONAL)
        assert manager.add_parameters([18, "John%"]) == ["?", "?"]
        assert manager.get_parameters() == [18, "John%"]

    def test_simple(self):
        """Test SIMPLE mode inlines values and collects nothing"""
        manager = ParameterManager(QueryBuilderMode.SIMPLE)
        assert manager.add_parameter("x") == "'x'"
        assert manager.get_parameters() is None

    def test_mode_from_string(self):
        """Test the mode can be given by name"""
        manager = ParameterManager("POSITIONAL")
        assert manager.mode == QueryBuilderMode.POSITIONAL

    def test_invalid_mode(self):
        """Test unknown modes are rejected"""
        with pytest.raises(ValueError):
            ParameterManager("QUOTED")

    def test_get_parameters_returns_copy(self):
        """Test callers cannot modify the collected parameters"""
        manager = ParameterManager(QueryBuilderMode.NAMED)
        manager.add_parameter(1)
        manager.get_parameters()["param2"] = 2
        assert manager.get_parameters() == {"param1": 1}
