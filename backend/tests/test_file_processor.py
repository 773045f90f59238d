"""
Unit tests for tabular file parsing and type inference
"""
import pytest

from app.core.exceptions import MalformedFileError, ValidationError
from app.processors.file_processor import FileProcessor, classify_value, infer_column_type

from conftest import build_csv, build_xlsx


class TestClassifyValue:

    @pytest.mark.parametrize("value,expected", [
        ("42", "integer"),
        ("-7", "integer"),
        ("3.14", "numeric"),
        ("1e5", "numeric"),
        ("true", "boolean"),
        ("Sim", "boolean"),
        ("2024-01-31", "timestamp"),
        ("2024-01-31T10:15:00Z", "timestamp"),
        ("31/01/2024 10:00", "timestamp"),
        ("Ana", "text"),
        ("", None),
        ("   ", None),
        (None, None),
    ])
    def test_classify(self, value, expected):
        assert classify_value(value) == expected


class TestInferColumnType:

    def test_majority_vote_wins(self):
        assert infer_column_type(["1", "2", "abc"]) == "integer"
        assert infer_column_type(["abc", "def", "3"]) == "text"

    def test_ties_follow_priority_order(self):
        assert infer_column_type(["abc", "1"]) == "integer"
        assert infer_column_type(["yes", "2024-01-01"]) == "boolean"

    def test_empty_values_do_not_vote(self):
        assert infer_column_type(["", "", "2.5"]) == "numeric"
        assert infer_column_type(["", None]) == "text"

    def test_sample_size_of_one_uses_first_value(self):
        assert infer_column_type(["1", "a", "b"], sample_size=1) == "integer"

    def test_votes_stop_after_sample_size(self):
        values = ["1", "2"] + ["text"] * 10
        assert infer_column_type(values, sample_size=3) == "integer"


class TestFileProcessor:

    @pytest.fixture
    def processor(self):
        return FileProcessor(max_file_size=1024 * 1024)

    def test_validate_file_types(self, processor):
        assert processor.validate_file(b"a,b\n1,2\n", "data.CSV") == "csv"
        assert processor.validate_file(b"x", "book.xlsx") == "xlsx"
        assert processor.validate_file(b"x", "old.xls") == "xls"

    def test_validate_rejects_unknown_extension(self, processor):
        with pytest.raises(ValidationError):
            processor.validate_file(b"a,b", "notes.txt")

    def test_validate_rejects_oversized_file(self):
        with pytest.raises(ValidationError) as exc_info:
            FileProcessor(max_file_size=10).validate_file(b"a" * 11, "data.csv")
        assert exc_info.value.details["max_file_size"] == 10

    def test_validate_rejects_empty_file(self, processor):
        with pytest.raises(MalformedFileError):
            processor.validate_file(b"", "data.csv")

    def test_parse_csv(self, processor):
        content = build_csv(["name", "age", "active"], [["Ana", "34", "true"], ["Bob", "", "false"]])

        parsed = processor.parse(content, "csv")

        assert parsed.headers == ["name", "age", "active"]
        assert parsed.rows == [
            {"name": "Ana", "age": "34", "active": "true"},
            {"name": "Bob", "age": "", "active": "false"},
        ]
        assert parsed.column_types == {"name": "text", "age": "integer", "active": "boolean"}
        assert parsed.total_rows == 2
        assert parsed.encoding == "utf-8"

    def test_parse_keeps_leading_zeros_as_strings(self, processor):
        parsed = processor.parse(build_csv(["zip"], [["01234"]]), "csv")
        assert parsed.rows[0]["zip"] == "01234"

    def test_parse_falls_back_to_latin1(self, processor):
        content = "nome,cidade\nJosé,São Paulo\n".encode("latin-1")

        parsed = processor.parse(content, "csv")

        assert parsed.encoding == "latin-1"
        assert parsed.rows[0] == {"nome": "José", "cidade": "São Paulo"}

    def test_parse_drops_blank_rows_and_trailing_columns(self, processor):
        content = b"a,b,\n1,2,\n,,\n3,4,\n"

        parsed = processor.parse(content, "csv")

        assert parsed.headers == ["a", "b"]
        assert parsed.rows == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]

    def test_parse_requires_a_data_row(self, processor):
        with pytest.raises(MalformedFileError) as exc_info:
            processor.parse(b"a,b\n", "csv")
        assert exc_info.value.details["rows_found"] == 1

    def test_parse_rejects_duplicate_headers(self, processor):
        with pytest.raises(MalformedFileError) as exc_info:
            processor.parse(b"a,a\n1,2\n", "csv")
        assert exc_info.value.details["duplicates"] == ["a"]

    def test_parse_rejects_blank_header_with_values(self, processor):
        with pytest.raises(MalformedFileError):
            processor.parse(b"a,\n1,2\n", "csv")

    def test_parse_xlsx_first_sheet(self, processor):
        content = build_xlsx(["city", "visits"], [["Lisboa", "12"], ["Porto", "7"]])

        parsed = processor.parse(content, "xlsx")

        assert parsed.file_type == "xlsx"
        assert parsed.headers == ["city", "visits"]
        assert parsed.rows[1] == {"city": "Porto", "visits": "7"}
        assert parsed.column_types["visits"] == "integer"

    def test_parse_invalid_spreadsheet(self, processor):
        with pytest.raises(MalformedFileError):
            processor.parse(b"not a spreadsheet", "xlsx")

    def test_preview_and_samples_are_bounded(self, processor):
        rows = [[str(i)] for i in range(30)]
        parsed = processor.parse(build_csv(["n"], rows), "csv")

        assert len(parsed.preview()) == 10
        assert len(parsed.preview(3)) == 3
        assert parsed.sample_values("n") == ["0", "1", "2", "3", "4"]
