"""
Tests for delimiter auto-detection.
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tablediff.adapters.delimiter import DelimiterDetector, split_line


class TestSplitLine:
    """Quote-aware literal splitting."""

    def test_plain_split(self):
        assert split_line("a,b,c", ",") == ["a", "b", "c"]

    def test_delimiter_inside_quotes_is_kept(self):
        assert split_line('a,"b,c",d', ",") == ["a", '"b,c"', "d"]

    def test_escaped_quote_inside_quoted_field(self):
        assert split_line('"say ""hi""",x', ",") == ['"say ""hi"""', "x"]

    def test_pipe_is_not_a_regex(self):
        assert split_line("a|b|c", "|") == ["a", "b", "c"]

    def test_trailing_empty_fields_are_kept(self):
        assert split_line("a,,", ",") == ["a", "", ""]

    def test_unterminated_quote_swallows_rest_of_line(self):
        assert split_line('a,"b,c', ",") == ["a", '"b,c']

    def test_quote_inside_field_is_literal(self):
        assert split_line('5" screen,100', ",") == ['5" screen', "100"]

    def test_quote_after_leading_blanks_opens_quoting(self):
        assert split_line('a,  "b,c"', ",") == ["a", '  "b,c"']


class TestDelimiterDetector:
    """Detection over files and in-memory samples."""

    def setup_method(self):
        self.detector = DelimiterDetector()

    @pytest.mark.parametrize("delimiter", [",", ";", "\t", "|", ":"])
    def test_detects_consistent_delimiter(self, tmp_path, delimiter):
        path = tmp_path / "sample.txt"
        lines = [delimiter.join(["id", "name", "amount"]),
                 delimiter.join(["1", "Alice", "100"]),
                 delimiter.join(["2", "Bob", "200"])]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        assert self.detector.detect(path) == delimiter

    def test_single_column_file_defaults_to_comma(self, tmp_path):
        path = tmp_path / "single.csv"
        path.write_text("id\n1\n2\n3\n", encoding="utf-8")

        assert self.detector.detect(path) == ","

    def test_missing_file_defaults_to_comma(self, tmp_path):
        assert self.detector.detect(tmp_path / "missing.csv") == ","

    def test_fewer_than_two_lines_defaults_to_comma(self):
        assert self.detector.detect_from_lines(["a;b;c"]) == ","

    def test_blank_lines_are_ignored(self):
        lines = ["", "a;b", "   ", "1;2", ""]
        assert self.detector.detect_from_lines(lines) == ";"

    def test_quoted_commas_do_not_win_over_semicolon(self):
        lines = ["name;city", '"Doe, John";Paris', '"Roe, Jane";Lyon']
        assert self.detector.detect_from_lines(lines) == ";"

    def test_lower_variance_wins(self):
        # Commas are inconsistent, pipes are not
        lines = ["a|b,c|d", "e|f|g", "h,i,j,k|l|m"]
        assert self.detector.detect_from_lines(lines) == "|"

    def test_inch_marks_do_not_break_field_counts(self):
        lines = ["id,desc,amt", '1,5" screen,100', '2,7" tablet,200']
        assert self.detector.detect_from_lines(lines) == ","

    def test_tie_prefers_more_fields(self):
        lines = ["a,b;c,d", "e,f;g,h"]
        assert self.detector.detect_from_lines(lines) == ","

    def test_only_reads_sample_lines(self, tmp_path):
        path = tmp_path / "big.csv"
        head = ["a;b"] * 3
        tail = ["a,b,c,d,e,f"] * 50
        path.write_text("\n".join(head + tail), encoding="utf-8")

        detector = DelimiterDetector(sample_lines=3)
        assert detector.detect(path) == ";"

    def test_describe(self):
        assert DelimiterDetector.describe("\t") == "TAB"
        assert DelimiterDetector.describe(",") == "COMMA"
        assert DelimiterDetector.describe("#") == "'#'"
