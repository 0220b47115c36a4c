"""
Delimited Dataset Parser

Reads a directory of delimited files (CSV/TSV) into a TableSet:
- One file per table; the file name without extension is the table name
- First non-empty line is the header, later lines are rows
- Empty cells become NULL; rows with only blank cells are skipped
- Files are read in lexicographic file-name order

Usage:
    from dbfixture.parser import CSV_CONFIG, DelimitedParser

    table_set = DelimitedParser(CSV_CONFIG).parse("fixtures/UserRepositoryTest")
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .exceptions import ConfigurationError, DataSetLoadError
from .models import CellValue, ColumnName, Row, Table, TableName, TableSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelimiterConfig:
    """Column separator, quoting and file extension of a delimited format."""

    delimiter: str
    extension: str
    quote_char: str = '"'
    escape_char: Optional[str] = "\\"

    def __post_init__(self):
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {self.delimiter!r}")
        if len(self.quote_char) != 1:
            raise ValueError(f"quote_char must be a single character, got {self.quote_char!r}")
        if self.escape_char is not None and len(self.escape_char) != 1:
            raise ValueError(f"escape_char must be a single character, got {self.escape_char!r}")
        extension = self.extension.strip().lstrip(".").lower()
        if not extension:
            raise ValueError("extension must not be blank")
        object.__setattr__(self, "extension", extension)

    @property
    def suffix(self) -> str:
        return f".{self.extension}"


CSV_CONFIG = DelimiterConfig(delimiter=",", extension="csv")
TSV_CONFIG = DelimiterConfig(delimiter="\t", extension="tsv")


def _is_blank(values: Sequence[Optional[str]]) -> bool:
    return all(value is None or not value.strip() for value in values)


class DelimitedParser:
    """Stateless parser; one instance can be shared across threads."""

    def __init__(self, config: DelimiterConfig = CSV_CONFIG):
        self.config = config

    def list_data_files(self, directory) -> List[Path]:
        """List the data files of this format in a directory, sorted by file name."""
        dir_path = Path(directory)
        if not dir_path.is_dir():
            raise ConfigurationError(f"Dataset directory does not exist: {dir_path.absolute()}")
        try:
            files = [
                p
                for p in dir_path.iterdir()
                if p.is_file() and p.name.lower().endswith(self.config.suffix)
            ]
        except OSError as e:
            raise DataSetLoadError(
                f"Failed to list files in directory: {dir_path}", path=dir_path
            ) from e
        return sorted(files, key=lambda p: p.name)

    def parse(self, directory) -> TableSet:
        """
        Parse every data file of a directory.

        Args:
            directory: Path to the dataset directory

        Returns:
            TableSet with one table per file, in file-name order

        Raises:
            ConfigurationError: If the directory does not exist
            DataSetLoadError: If a file is empty or cannot be read
        """
        files = self.list_data_files(directory)
        logger.debug(f"Parsing {len(files)} {self.config.extension} files from {directory}")

        tables = [self.parse_file(path) for path in files]
        return TableSet(tables, source_directory=Path(directory))

    def parse_file(self, path) -> Table:
        """Parse a single data file into a Table."""
        path = Path(path)
        table_name = TableName(self.table_name_for(path))

        try:
            with open(path, newline="", encoding="utf-8-sig") as f:
                reader = csv.reader(
                    f,
                    delimiter=self.config.delimiter,
                    quotechar=self.config.quote_char,
                    escapechar=self.config.escape_char,
                    doublequote=True,
                    strict=True,
                )
                header = None
                records = []
                for values in reader:
                    if _is_blank(values):
                        continue
                    if header is None:
                        header = values
                    else:
                        records.append(values)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise DataSetLoadError(f"Failed to parse file: {path.absolute()}", path=path) from e

        if header is None:
            raise DataSetLoadError(f"File is empty: {path.absolute()}", path=path)

        columns = self._parse_header(header, path)
        rows = [self._create_row(columns, values) for values in records]

        logger.debug(f"Parsed table {table_name} with {len(columns)} columns and {len(rows)} rows")
        return Table(table_name, columns, rows)

    def table_name_for(self, path: Path) -> str:
        name = path.name
        if name.lower().endswith(self.config.suffix):
            return name[: -len(self.config.suffix)]
        return path.stem

    def _parse_header(self, header: Sequence[str], path: Path) -> List[ColumnName]:
        columns: List[ColumnName] = []
        seen = set()
        for position, value in enumerate(header, start=1):
            try:
                column = ColumnName(value)
            except ValueError as e:
                raise DataSetLoadError(
                    f"Blank column name at position {position} in header of {path.absolute()}",
                    path=path,
                ) from e
            if column.key in seen:
                raise DataSetLoadError(
                    f"Duplicate column '{column}' in header of {path.absolute()}", path=path
                )
            seen.add(column.key)
            columns.append(column)
        return columns

    def _create_row(self, columns: List[ColumnName], values: Sequence[str]) -> Row:
        cells = {}
        for i, column in enumerate(columns):
            raw = values[i] if i < len(values) else None
            cells[column] = CellValue.NULL if not raw else CellValue(raw)
        return Row(cells)


class FormatProvider:
    """Turns a dataset directory into a TableSet for one file extension."""

    extension: str = ""

    def parse(self, directory) -> TableSet:
        raise NotImplementedError

    def has_data_files(self, directory) -> bool:
        raise NotImplementedError


class DelimitedFormatProvider(FormatProvider):
    """Format provider backed by a DelimitedParser."""

    def __init__(self, config: DelimiterConfig):
        self.parser = DelimitedParser(config)
        self.extension = config.extension

    def parse(self, directory) -> TableSet:
        return self.parser.parse(directory)

    def has_data_files(self, directory) -> bool:
        return bool(self.parser.list_data_files(directory))


class CsvFormatProvider(DelimitedFormatProvider):
    def __init__(self):
        super().__init__(CSV_CONFIG)


class TsvFormatProvider(DelimitedFormatProvider):
    def __init__(self):
        super().__init__(TSV_CONFIG)
