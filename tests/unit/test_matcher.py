"""
Tests for the DuckDB matcher.
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tablediff.core.errors import KeyColumnMissing
from tablediff.core.matcher import Matcher, ordinal_column, qident


def rows(*records):
    return [dict(r) for r in records]


class TestMatcher:

    def setup_method(self):
        self.matcher = Matcher()

    def test_one_match_one_mismatch(self):
        source = rows({"UNI_KEY": "1", "amt": "100"}, {"UNI_KEY": "2", "amt": "200"})
        target = rows({"UNI_KEY": "1", "amt": "100"}, {"UNI_KEY": "2", "amt": "205"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.matched_count == 1
        assert result.mismatched_count == 1
        assert result.source_only_rows == []
        assert result.target_only_rows == []
        assert result.per_row_detail == [
            {"key": "2", "column": "amt", "source_value": "200", "target_value": "205"}
        ]

    def test_only_rows_in_source_order(self):
        source = rows({"UNI_KEY": "3", "v": "c"}, {"UNI_KEY": "1", "v": "a"},
                      {"UNI_KEY": "9", "v": "z"})
        target = rows({"UNI_KEY": "1", "v": "a"}, {"UNI_KEY": "4", "v": "d"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert [r["UNI_KEY"] for r in result.source_only_rows] == ["3", "9"]
        assert result.target_only_rows == [{"UNI_KEY": "4", "v": "d"}]
        assert result.matched_count == 1
        assert result.has_differences

    def test_null_equals_null(self):
        source = rows({"UNI_KEY": "1", "v": None})
        target = rows({"UNI_KEY": "1", "v": None})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.matched_count == 1
        assert not result.has_differences

    def test_null_vs_value_differs(self):
        source = rows({"UNI_KEY": "1", "v": None})
        target = rows({"UNI_KEY": "1", "v": ""})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.mismatched_count == 1

    def test_ignored_column_not_compared(self):
        source = rows({"UNI_KEY": "1", "amt": "10", "ts": "2024"})
        target = rows({"UNI_KEY": "1", "amt": "10", "ts": "2025"})

        result = self.matcher.match(source, target, "UNI_KEY", ignore_columns={"ts"})

        assert result.matched_count == 1
        assert result.compared_columns == ["amt"]

    def test_threshold_within_tolerance(self):
        source = rows({"UNI_KEY": "1", "amt": "100"}, {"UNI_KEY": "2", "amt": "100"})
        target = rows({"UNI_KEY": "1", "amt": "101.5"}, {"UNI_KEY": "2", "amt": "103"})

        result = self.matcher.match(source, target, "UNI_KEY", thresholds={"amt": 2.0})

        assert result.matched_count == 1
        assert [d["key"] for d in result.per_row_detail] == ["2"]

    def test_threshold_on_non_numeric_falls_back_to_text(self):
        source = rows({"UNI_KEY": "1", "amt": "n/a"})
        target = rows({"UNI_KEY": "1", "amt": "N/A"})

        result = self.matcher.match(source, target, "UNI_KEY", thresholds={"amt": 50})

        assert result.mismatched_count == 1

    def test_zero_threshold_treats_equal_numbers_as_equal(self):
        source = rows({"UNI_KEY": "1", "amt": "1.0"})
        target = rows({"UNI_KEY": "1", "amt": "1.00"})

        result = self.matcher.match(source, target, "UNI_KEY", thresholds={"amt": 0})

        assert result.matched_count == 1

    def test_one_sided_columns_reported_not_compared(self):
        source = rows({"UNI_KEY": "1", "a": "x", "old": "1"})
        target = rows({"UNI_KEY": "1", "a": "x", "new": "2"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.matched_count == 1
        assert result.source_only_columns == ["old"]
        assert result.target_only_columns == ["new"]

    def test_duplicate_keys_use_first_occurrence(self):
        source = rows({"UNI_KEY": "1", "v": "a"}, {"UNI_KEY": "1", "v": "b"})
        target = rows({"UNI_KEY": "1", "v": "a"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.duplicate_keys == {"source": 1}
        assert result.matched_count == 1

    def test_empty_sides_with_declared_columns(self):
        result = self.matcher.match([], rows({"UNI_KEY": "1", "v": "a"}), "UNI_KEY",
                                    source_columns=["UNI_KEY", "v"])

        assert result.matched_count == 0
        assert len(result.target_only_rows) == 1

    def test_missing_join_column(self):
        with pytest.raises(KeyColumnMissing):
            self.matcher.match(rows({"id": "1"}), rows({"UNI_KEY": "1"}), "UNI_KEY")

    def test_awkward_column_names(self):
        source = rows({"UNI_KEY": "1", 'say "hi"': "a", "it's": "x", "select": "1"})
        target = rows({"UNI_KEY": "1", 'say "hi"': "b", "it's": "x", "select": "1"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.per_row_detail[0]["column"] == 'say "hi"'
        assert result.mismatched_count == 1

    def test_differences_ordered_by_row_then_column(self):
        source = rows({"UNI_KEY": "2", "a": "1", "b": "1"},
                      {"UNI_KEY": "1", "a": "1", "b": "1"})
        target = rows({"UNI_KEY": "1", "a": "2", "b": "2"},
                      {"UNI_KEY": "2", "a": "2", "b": "1"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert [(d["key"], d["column"]) for d in result.per_row_detail] == [
            ("2", "a"), ("1", "a"), ("1", "b")
        ]
        assert result.mismatched_count == 2

    def test_column_named_like_row_order_column(self):
        source = rows({"UNI_KEY": "2", "__ordinal__": "9", "v": "b"},
                      {"UNI_KEY": "1", "__ordinal__": "5", "v": "a"},
                      {"UNI_KEY": "3", "__ordinal__": "1", "v": "c"})
        target = rows({"UNI_KEY": "2", "__ordinal__": "9", "v": "b"},
                      {"UNI_KEY": "1", "__ordinal__": "6", "v": "a"})

        result = self.matcher.match(source, target, "UNI_KEY")

        assert result.compared_columns == ["__ordinal__", "v"]
        assert result.per_row_detail == [
            {"key": "1", "column": "__ordinal__",
             "source_value": "5", "target_value": "6"}
        ]
        assert result.source_only_rows == [
            {"UNI_KEY": "3", "__ordinal__": "1", "v": "c"}
        ]
        assert result.matched_count == 1


def test_ordinal_column_avoids_data_columns():
    assert ordinal_column(["id"], ["v"]) == "__ordinal__"
    assert ordinal_column(["__ordinal__"], ["__ordinal___1"]) == "__ordinal___2"


def test_qident_escapes_quotes():
    assert qident('a"b') == '"a""b"'
