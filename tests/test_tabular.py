"""Tests for tally.core.tabular: quote-aware delimited text decoding."""

from tally.core.tabular import coerce_value, decode_table, split_records
from tests.helpers import encode_table


class TestSplitRecords:
    def test_simple_rows(self):
        assert split_records("a,b\n1,2\n") == [["a", "b"], ["1", "2"]]

    def test_quoted_delimiter_and_escaped_quote(self):
        text = 'name,note\n"Smith, J","said ""hi"""\n'
        assert split_records(text) == [["name", "note"], ["Smith, J", 'said "hi"']]

    def test_newline_inside_quotes_does_not_split(self):
        records = split_records('q,n\n"line one\nline two",3')
        assert records == [["q", "n"], ["line one\nline two", "3"]]

    def test_crlf_line_endings(self):
        assert split_records("a,b\r\n1,2\r\n") == [["a", "b"], ["1", "2"]]

    def test_blank_lines_skipped_and_fields_trimmed(self):
        assert split_records("a , b\n\n  1,  2  \n\n") == [["a", "b"], ["1", "2"]]

    def test_alternate_delimiter(self):
        assert split_records("a\tb\n1\t2", delimiter="\t") == [["a", "b"], ["1", "2"]]


class TestCoerceValue:
    def test_nulls(self):
        assert coerce_value("") is None
        assert coerce_value("null") is None
        assert coerce_value("NULL") is None

    def test_numbers(self):
        assert coerce_value("42") == 42
        assert coerce_value("-7") == -7
        assert coerce_value("3.5") == 3.5
        assert coerce_value("1e3") == 1000.0

    def test_leading_zeros_become_numbers(self):
        # Documented limitation: identifiers that look numeric are coerced
        assert coerce_value("02134") == 2134

    def test_booleans_any_case(self):
        assert coerce_value("true") is True
        assert coerce_value("FALSE") is False

    def test_strings_pass_through(self):
        assert coerce_value("hello") == "hello"
        assert coerce_value("12abc") == "12abc"


class TestDecodeTable:
    def test_empty_and_header_only(self):
        assert decode_table("").rows == []
        assert decode_table(None).rows == []
        table = decode_table("a,b\n")
        assert table.columns == ["a", "b"]
        assert table.rows == []

    def test_typed_rows(self):
        table = decode_table("query,count,ok\nbudget,12,true\n,0,false")
        assert table.columns == ["query", "count", "ok"]
        assert table.rows == [
            {"query": "budget", "count": 12, "ok": True},
            {"query": None, "count": 0, "ok": False},
        ]

    def test_ragged_rows_dropped_and_counted(self):
        table = decode_table("a,b\n1,2\n3\n4,5,6\n7,8")
        assert table.rows == [{"a": 1, "b": 2}, {"a": 7, "b": 8}]
        assert table.dropped == 2

    def test_every_row_has_header_keys(self):
        table = decode_table('x,y,z\n1,"a,b",\n2,c,3')
        for row in table.rows:
            assert set(row) == {"x", "y", "z"}

    def test_encode_decode_with_awkward_values(self):
        rows = [{"term": 'say "when", now', "n": 3}, {"term": "multi\nline", "n": None}]
        table = decode_table(encode_table(["term", "n"], rows))
        assert table.rows == rows
