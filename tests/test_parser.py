"""
Delimited Parser Tests

Tests for CSV/TSV parsing into table sets.
"""
import pytest

from dbfixture.exceptions import ConfigurationError, DataSetLoadError
from dbfixture.parser import CSV_CONFIG, TSV_CONFIG, DelimitedParser, DelimiterConfig


class TestDelimitedParser:
    """Test directory parsing."""

    def test_one_table_per_file_in_name_order(self, dataset_dir, write_csv):
        """Files become tables named after the file, sorted by file name."""
        write_csv(dataset_dir, "USERS.csv", "ID,NAME\n1,alice\n")
        write_csv(dataset_dir, "ORDERS.csv", "ID,USER_ID\n10,1\n")
        write_csv(dataset_dir, "notes.txt", "ignored")

        table_set = DelimitedParser(CSV_CONFIG).parse(dataset_dir)

        assert [t.name.value for t in table_set] == ["ORDERS", "USERS"]
        assert table_set.source_directory == dataset_dir

    def test_parse_is_deterministic(self, dataset_dir, write_csv):
        """Parsing the same directory twice yields equal table sets."""
        write_csv(dataset_dir, "B.csv", "X\n1\n")
        write_csv(dataset_dir, "A.csv", "Y\n2\n")
        parser = DelimitedParser()
        assert parser.parse(dataset_dir) == parser.parse(dataset_dir)

    def test_header_trimmed_and_empty_cells_null(self, dataset_dir, write_csv):
        path = write_csv(dataset_dir, "USERS.csv", " ID , NAME ,EMAIL\n1,,x@example.com\n2,bob\n")

        table = DelimitedParser().parse_file(path)

        assert [c.value for c in table.columns] == ["ID", "NAME", "EMAIL"]
        first, second = table.rows
        assert first.get_value("NAME").is_null
        assert second.get_value("EMAIL").is_null
        assert second.get_value("NAME").value == "bob"

    def test_blank_rows_skipped(self, dataset_dir, write_csv):
        """Rows whose every cell is blank are excluded."""
        path = write_csv(dataset_dir, "T.csv", "\nID,NAME\n1,a\n,\n  ,  \n\n2,b\n")
        table = DelimitedParser().parse_file(path)
        assert [r.get_value("ID").value for r in table.rows] == ["1", "2"]

    def test_quoted_fields(self, dataset_dir, write_csv):
        """Quoted fields keep delimiters, newlines and doubled quotes."""
        path = write_csv(
            dataset_dir, "T.csv", 'ID,TEXT\n1,"a,b"\n2,"line1\nline2"\n3,"say ""hi"""\n'
        )
        rows = DelimitedParser().parse_file(path).rows
        assert [r.get_value("TEXT").value for r in rows] == ["a,b", "line1\nline2", 'say "hi"']

    def test_tsv(self, dataset_dir, write_csv):
        write_csv(dataset_dir, "USERS.tsv", "ID\tNAME\n1\talice, a\n")
        table = DelimitedParser(TSV_CONFIG).parse(dataset_dir).get_table("USERS")
        assert table.rows[0].get_value("NAME").value == "alice, a"

    def test_missing_directory_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            DelimitedParser().parse(tmp_path / "nope")

    def test_empty_file_is_load_error(self, dataset_dir, write_csv):
        """A file without a header names the offending file."""
        path = write_csv(dataset_dir, "EMPTY.csv", "\n\n")
        with pytest.raises(DataSetLoadError) as exc_info:
            DelimitedParser().parse(dataset_dir)
        assert exc_info.value.path == path
        assert "EMPTY.csv" in str(exc_info.value)

    def test_duplicate_header_is_load_error(self, dataset_dir, write_csv):
        path = write_csv(dataset_dir, "T.csv", "ID,id\n1,2\n")
        with pytest.raises(DataSetLoadError):
            DelimitedParser().parse_file(path)


class TestDelimiterConfig:
    """Test delimiter configuration validation."""

    def test_extension_normalized(self):
        assert DelimiterConfig(delimiter="|", extension=".PSV").suffix == ".psv"

    def test_multi_character_delimiter_rejected(self):
        with pytest.raises(ValueError):
            DelimiterConfig(delimiter="::", extension="txt")
