"""
Tests for table normalization and key construction.
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tablediff.core.errors import InvalidRequest, KeyColumnMissing, SourceNotFound
from tablediff.pipeline.normalizer import (
    TableNormalizer,
    composite_key_value,
    effective_key_column,
    parse_column_list,
    parse_key_spec,
)


class TestKeySpecParsing:

    def test_single_column(self):
        assert parse_key_spec("id") == ("id",)

    def test_blank_entries_dropped_and_trimmed(self):
        assert parse_key_spec(" account , ,branch ") == ("account", "branch")

    def test_empty_key_is_rejected(self):
        with pytest.raises(InvalidRequest):
            parse_key_spec(" , ")

    def test_column_list_accepts_iterables(self):
        assert parse_column_list(["ts", " ts ", "note"]) == ("ts", "note")
        assert parse_column_list(None) == ()

    def test_effective_key_column(self):
        assert effective_key_column("id") == "id"
        assert effective_key_column("a,b") == "_COMPOSITE_KEY_"


class TestNormalize:
    """Delimited lines -> rows."""

    def setup_method(self):
        self.normalizer = TableNormalizer()

    def test_round_trip_id_name(self):
        rows = self.normalizer.normalize(
            ["id,name", "1,Alice", "2,Bob"], ",", True, "id")

        assert len(rows) == 2
        assert [row["id"] for row in rows] == ["1", "2"]
        assert list(rows[0].keys()) == ["id", "name"]
        assert rows[1] == {"id": "2", "name": "Bob"}

    def test_quotes_stripped_and_values_trimmed(self):
        rows = self.normalizer.normalize(
            ['"id" , "name"', ' 1 , "Smith, Jane" '], ",", True, "id")

        assert rows == [{"id": "1", "name": "Smith, Jane"}]

    def test_blank_header_gets_positional_name(self):
        rows = self.normalizer.normalize(["id,,amt", "1,x,5"], ",", True, "id")

        assert list(rows[0].keys()) == ["id", "COLUMN_2", "amt"]

    def test_no_header_generates_column_names(self):
        rows = self.normalizer.normalize(
            ["1|Alice|10", "2|Bob|20"], "|", False, "COLUMN_1")

        assert list(rows[0].keys()) == ["COLUMN_1", "COLUMN_2", "COLUMN_3"]
        assert rows[0]["COLUMN_2"] == "Alice"
        assert len(rows) == 2

    def test_short_rows_padded_long_rows_truncated(self):
        rows = self.normalizer.normalize(
            ["id,a,b", "1", "2,x,y,z"], ",", True, "id")

        assert rows[0] == {"id": "1", "a": "", "b": ""}
        assert rows[1] == {"id": "2", "a": "x", "b": "y"}

    def test_blank_lines_skipped(self):
        rows = self.normalizer.normalize(
            ["", "id,v", "", "1,a", "   ", "2,b"], ",", True, "id")

        assert [row["id"] for row in rows] == ["1", "2"]

    def test_quote_inside_value_keeps_later_columns(self):
        rows = self.normalizer.normalize(
            ["id,desc,amt", '1,5" screen,100'], ",", True, "id")

        assert rows == [{"id": "1", "desc": '5" screen', "amt": "100"}]

    def test_pipe_delimiter_is_literal(self):
        rows = self.normalizer.normalize(["id|v", "1|a|b"], "|", True, "id")

        assert rows == [{"id": "1", "v": "a"}]

    def test_missing_key_column_lists_available(self):
        with pytest.raises(KeyColumnMissing) as exc_info:
            self.normalizer.normalize(["id,name", "1,Alice"], ",", True, "customer_id")

        error = exc_info.value
        assert error.column == "customer_id"
        assert error.available == ["id", "name"]
        assert "Available columns: id, name" in error.message

    def test_missing_composite_key_part_names_first_absent(self):
        with pytest.raises(KeyColumnMissing) as exc_info:
            self.normalizer.normalize(["a,b", "1,2"], ",", True, "a,c,d")

        assert exc_info.value.column == "c"

    def test_single_key_blank_gets_row_placeholder(self):
        rows = self.normalizer.normalize(["id,v", "1,a", ",b"], ",", True, "id")

        # Line index of the blank-key line in the input
        assert rows[1]["id"] == "ROW_2"

    def test_composite_key_inserted_first(self):
        rows = self.normalizer.normalize(
            ["acct,branch,amt", "A1,B1,10"], ",", True, "acct,branch")

        assert list(rows[0].keys())[0] == "_COMPOSITE_KEY_"
        assert rows[0]["_COMPOSITE_KEY_"] == "A1|B1"
        assert rows[0]["acct"] == "A1"

    def test_blank_composite_parts_use_row_index(self):
        rows = self.normalizer.normalize(
            ["a,b,v", ",x,1", ",x,2"], ",", True, "a,b")

        first = rows[0]["_COMPOSITE_KEY_"]
        second = rows[1]["_COMPOSITE_KEY_"]
        assert first == "NULL_0|x"
        assert second == "NULL_1|x"
        assert first != second

    def test_row_index_counts_data_rows_only(self):
        rows = self.normalizer.normalize(
            ["", "a,b,v", "", "x,,1", "x,,2"], ",", True, "a,b")

        assert [r["_COMPOSITE_KEY_"] for r in rows] == ["x|NULL_0", "x|NULL_1"]

    def test_composite_key_is_deterministic(self):
        lines = ["a,b,v", "1,,x", ",2,y"]
        first = self.normalizer.normalize(lines, ",", True, "a,b")
        second = self.normalizer.normalize(lines, ",", True, "a,b")

        assert [r["_COMPOSITE_KEY_"] for r in first] == \
            [r["_COMPOSITE_KEY_"] for r in second]

    def test_duplicate_headers_renamed(self):
        rows = self.normalizer.normalize(["id,v,v", "1,a,b"], ",", True, "id")

        assert list(rows[0].keys()) == ["id", "v", "v_3"]

    def test_empty_input(self):
        assert self.normalizer.normalize(["", "  "], ",", True, "id") == []

    def test_empty_delimiter_rejected(self):
        with pytest.raises(InvalidRequest):
            self.normalizer.normalize(["id"], "", True, "id")


class TestCompositeKeyValue:

    def test_none_and_empty_are_placeholders(self):
        row = {"a": None, "b": "", "c": "z"}
        assert composite_key_value(row, ["a", "b", "c"], 4) == "NULL_4|NULL_4|z"


class TestNormalizeFile:

    def setup_method(self):
        self.normalizer = TableNormalizer()

    def test_detects_delimiter_when_not_given(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text("id;amt\n1;100\n2;200\n", encoding="utf-8")

        rows, delimiter = self.normalizer.normalize_file(path, "id")

        assert delimiter == ";"
        assert rows[1] == {"id": "2", "amt": "200"}

    def test_handles_bom(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("id,amt\n1,5\n".encode("utf-8-sig"))

        rows, _ = self.normalizer.normalize_file(path, "id", delimiter=",")

        assert rows == [{"id": "1", "amt": "5"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFound):
            self.normalizer.normalize_file(tmp_path / "nope.csv", "id")

    def test_directory_is_not_a_source(self, tmp_path):
        with pytest.raises(SourceNotFound):
            self.normalizer.normalize_file(tmp_path, "id")


class TestNormalizeRecords:

    def setup_method(self):
        self.normalizer = TableNormalizer()

    def test_values_stringified_and_none_kept(self):
        rows = self.normalizer.normalize_records(
            [{"id": 1, "amt": 10.5, "note": None}], "id")

        assert rows == [{"id": "1", "amt": "10.5", "note": None}]

    def test_nan_becomes_none(self):
        rows = self.normalizer.normalize_records(
            [{"id": "1", "amt": float("nan")}], "id")

        assert rows[0]["amt"] is None

    def test_explicit_column_order(self):
        rows = self.normalizer.normalize_records(
            [{"b": "2", "id": "1"}], "id", columns=["id", "b"])

        assert list(rows[0].keys()) == ["id", "b"]

    def test_key_validated_without_rows(self):
        with pytest.raises(KeyColumnMissing):
            self.normalizer.normalize_records([], "id", columns=["code"])

    def test_composite_key_from_records(self):
        rows = self.normalizer.normalize_records(
            [{"a": "1", "b": None}], "a,b")

        assert rows[0]["_COMPOSITE_KEY_"] == "1|NULL_0"


class TestPrepareForComparison:

    def setup_method(self):
        self.normalizer = TableNormalizer()

    def test_ignored_column_kept_but_not_compared(self):
        rows = [{"id": "1", "amt": "10", "ts": "2024"}]

        prepared = self.normalizer.prepare_for_comparison(rows, "id", {"ts"})

        assert "ts" in prepared.rows[0]
        assert prepared.compare_columns == ["amt"]
        assert prepared.comparison_fields(prepared.rows[0]) == {"amt": "10"}

    def test_join_column_first(self):
        rows = [{"id": "7", "amt": "10"}]

        prepared = self.normalizer.prepare_for_comparison(rows, "id")

        assert list(prepared.rows[0].keys()) == ["UNI_KEY", "id", "amt"]
        assert prepared.rows[0]["UNI_KEY"] == "7"

    def test_composite_join_uses_composite_value(self):
        rows = self.normalizer.normalize(
            ["a,b,v", "1,2,x"], ",", True, "a,b")

        prepared = self.normalizer.prepare_for_comparison(rows, "a,b")

        assert prepared.rows[0]["UNI_KEY"] == "1|2"
        assert prepared.compare_columns == ["v"]
