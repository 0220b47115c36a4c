"""
Dataset Models

Immutable value types flowing through the fixture pipeline: identifiers,
cells, rows, tables, table sets, comparison strategies and column metadata.
Nothing here is mutated after construction; transformations build new
instances instead.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Union

from sqlalchemy import types as sqltypes


class Operation(str, Enum):
    """Write semantics applied to a table set."""

    NONE = "none"
    UPDATE = "update"
    INSERT = "insert"
    REFRESH = "refresh"
    DELETE = "delete"
    DELETE_ALL = "delete_all"
    TRUNCATE_TABLE = "truncate_table"
    CLEAN_INSERT = "clean_insert"
    TRUNCATE_INSERT = "truncate_insert"


class TableMergeStrategy(str, Enum):
    """How same-named tables from several dataset sources are combined."""

    FIRST = "first"
    LAST = "last"
    UNION = "union"
    UNION_ALL = "union_all"


class TableOrderingStrategy(str, Enum):
    """How the processing order of tables is determined."""

    AUTO = "auto"
    LOAD_ORDER_FILE = "load_order_file"
    FOREIGN_KEY = "foreign_key"
    ALPHABETICAL = "alphabetical"


class DataFormat(str, Enum):
    """Supported dataset file formats."""

    CSV = "csv"
    TSV = "tsv"

    @property
    def extension(self) -> str:
        return self.value


# =============================================================================
# Identifiers
# =============================================================================


@dataclass(frozen=True, order=True)
class _Identifier:
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise ValueError(f"{type(self).__name__} must be a string, got {self.value!r}")
        trimmed = self.value.strip()
        if not trimmed:
            raise ValueError(f"{type(self).__name__} must not be blank")
        object.__setattr__(self, "value", trimmed)

    @property
    def key(self) -> str:
        """Upper-cased form used for case-insensitive lookups."""
        return self.value.upper()

    def matches(self, other: Union["_Identifier", str]) -> bool:
        other_value = other.value if isinstance(other, _Identifier) else str(other).strip()
        return self.key == other_value.upper()

    def __str__(self) -> str:
        return self.value


class TableName(_Identifier):
    """Validated, trimmed table name. Storage preserves case."""

    @classmethod
    def of(cls, name: Union["TableName", str]) -> "TableName":
        return name if isinstance(name, TableName) else cls(name)


class ColumnName(_Identifier):
    """Validated, trimmed column name. Storage preserves case."""

    @classmethod
    def of(cls, name: Union["ColumnName", str]) -> "ColumnName":
        return name if isinstance(name, ColumnName) else cls(name)


# =============================================================================
# Cells and rows
# =============================================================================


class CellValue:
    """
    Nullable wrapper around a single scalar value.

    CellValue.NULL is the canonical absent value; all NULL checks go through
    is_null rather than comparing raw values against None.
    """

    __slots__ = ("_value",)

    NULL: "CellValue"

    def __init__(self, value: Any = None):
        self._value = value

    @classmethod
    def of(cls, value: Any) -> "CellValue":
        if isinstance(value, CellValue):
            return value
        if value is None:
            return cls.NULL
        return cls(value)

    @property
    def value(self) -> Any:
        return self._value

    @property
    def is_null(self) -> bool:
        return self._value is None

    def __eq__(self, other) -> bool:
        if not isinstance(other, CellValue):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        try:
            return hash(self._value)
        except TypeError:
            return hash(repr(self._value))

    def __repr__(self) -> str:
        return "CellValue.NULL" if self.is_null else f"CellValue({self._value!r})"


CellValue.NULL = CellValue(None)


class Row:
    """Immutable ordered mapping of ColumnName to CellValue."""

    __slots__ = ("_values", "_index")

    def __init__(self, values: Mapping[ColumnName, CellValue]):
        self._values: Dict[ColumnName, CellValue] = {
            ColumnName.of(column): CellValue.of(value) for column, value in values.items()
        }
        self._index = {column.key: column for column in self._values}

    @classmethod
    def of(cls, values: Mapping[str, Any]) -> "Row":
        """Build a row from plain column names and raw values."""
        return cls({ColumnName.of(k): CellValue.of(v) for k, v in values.items()})

    @property
    def values(self) -> Mapping[ColumnName, CellValue]:
        return MappingProxyType(self._values)

    @property
    def columns(self) -> List[ColumnName]:
        return list(self._values)

    def get_value(self, column: Union[ColumnName, str]) -> CellValue:
        """Return the cell for a column, or CellValue.NULL if it is not present."""
        column = ColumnName.of(column)
        if column in self._values:
            return self._values[column]
        actual = self._index.get(column.key)
        if actual is None:
            return CellValue.NULL
        return self._values[actual]

    def has_column(self, column: Union[ColumnName, str]) -> bool:
        return ColumnName.of(column).key in self._index

    def __eq__(self, other) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return list(self._values.items()) == list(other._values.items())

    def __hash__(self) -> int:
        return hash(tuple(self._values.items()))

    def __repr__(self) -> str:
        cells = ", ".join(f"{c.value}={v.value!r}" for c, v in self._values.items())
        return f"Row({cells})"


# =============================================================================
# Tables and table sets
# =============================================================================


class Table:
    """
    Immutable table: name, ordered columns and rows.

    Every row's columns must be a subset of the table's columns.
    """

    __slots__ = ("_name", "_columns", "_rows", "_column_index")

    def __init__(
        self,
        name: Union[TableName, str],
        columns: Iterable[Union[ColumnName, str]],
        rows: Iterable[Row] = (),
    ):
        self._name = TableName.of(name)
        self._columns = tuple(ColumnName.of(c) for c in columns)
        self._rows = tuple(rows)
        self._column_index = {c.key: c for c in self._columns}

        for i, row in enumerate(self._rows):
            unknown = [c.value for c in row.columns if c.key not in self._column_index]
            if unknown:
                raise ValueError(
                    f"Row {i} of table '{self._name}' has columns not declared "
                    f"by the table: {unknown}"
                )

    @property
    def name(self) -> TableName:
        return self._name

    @property
    def columns(self) -> List[ColumnName]:
        return list(self._columns)

    @property
    def rows(self) -> List[Row]:
        return list(self._rows)

    @property
    def row_count(self) -> int:
        return len(self._rows)

    def find_column(self, column: Union[ColumnName, str]) -> Optional[ColumnName]:
        """Case-insensitive column lookup."""
        return self._column_index.get(ColumnName.of(column).key)

    def with_rows(self, rows: Iterable[Row]) -> "Table":
        return Table(self._name, self._columns, rows)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        return (self._name, self._columns, self._rows) == (
            other._name,
            other._columns,
            other._rows,
        )

    def __hash__(self) -> int:
        return hash((self._name, self._columns, self._rows))

    def __repr__(self) -> str:
        return (
            f"Table({self._name.value!r}, columns={[c.value for c in self._columns]}, "
            f"rows={len(self._rows)})"
        )


class TableSet:
    """
    Immutable, insertion-ordered collection of uniquely named tables.

    Optionally bound to the data source it should be applied to and to the
    directory it was loaded from (used to locate the load-order file).
    """

    __slots__ = ("_tables", "_index", "_data_source", "_source_directory")

    def __init__(
        self,
        tables: Iterable[Table] = (),
        data_source: Any = None,
        source_directory: Any = None,
    ):
        self._tables = tuple(tables)
        self._data_source = data_source
        self._source_directory = source_directory

        index: Dict[str, Table] = {}
        for table in self._tables:
            if table.name.key in index:
                raise ValueError(f"Duplicate table name in table set: '{table.name}'")
            index[table.name.key] = table
        self._index = MappingProxyType(index)

    @property
    def tables(self) -> List[Table]:
        return list(self._tables)

    @property
    def table_names(self) -> List[TableName]:
        return [t.name for t in self._tables]

    @property
    def data_source(self):
        return self._data_source

    @property
    def source_directory(self):
        return self._source_directory

    def get_table(self, name: Union[TableName, str]) -> Optional[Table]:
        """Case-insensitive table lookup."""
        return self._index.get(TableName.of(name).key)

    def with_tables(self, tables: Iterable[Table]) -> "TableSet":
        return TableSet(tables, self._data_source, self._source_directory)

    def reordered(self, order: Iterable[Union[TableName, str]]) -> "TableSet":
        """
        Return a copy with tables in the given order.

        Names that do not match a table are ignored; tables not named keep
        their relative order after the named ones.
        """
        ordered: List[Table] = []
        seen = set()
        for name in order:
            table = self.get_table(name)
            if table is not None and table.name.key not in seen:
                ordered.append(table)
                seen.add(table.name.key)
        ordered.extend(t for t in self._tables if t.name.key not in seen)
        return self.with_tables(ordered)

    def bound_to(self, data_source) -> "TableSet":
        return TableSet(self._tables, data_source, self._source_directory)

    def __len__(self) -> int:
        return len(self._tables)

    def __iter__(self) -> Iterator[Table]:
        return iter(self._tables)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TableSet):
            return NotImplemented
        return self._tables == other._tables

    def __hash__(self) -> int:
        return hash(self._tables)

    def __repr__(self) -> str:
        return f"TableSet({[t.name.value for t in self._tables]})"


# =============================================================================
# Comparison strategies
# =============================================================================


class StrategyType(str, Enum):
    """Kinds of per-column comparison."""

    STRICT = "STRICT"
    IGNORE = "IGNORE"
    NUMERIC = "NUMERIC"
    CASE_INSENSITIVE = "CASE_INSENSITIVE"
    TIMESTAMP_FLEXIBLE = "TIMESTAMP_FLEXIBLE"
    NOT_NULL = "NOT_NULL"
    REGEX = "REGEX"


class ComparisonStrategy:
    """
    Tagged comparison rule for one column.

    Only REGEX carries a payload (a compiled pattern). Use the class constants
    for the other variants and ComparisonStrategy.regex() for REGEX.
    """

    __slots__ = ("_type", "_pattern")

    STRICT: "ComparisonStrategy"
    IGNORE: "ComparisonStrategy"
    NUMERIC: "ComparisonStrategy"
    CASE_INSENSITIVE: "ComparisonStrategy"
    TIMESTAMP_FLEXIBLE: "ComparisonStrategy"
    NOT_NULL: "ComparisonStrategy"

    def __init__(self, strategy_type: StrategyType, pattern: Optional[Pattern] = None):
        if strategy_type == StrategyType.REGEX and (pattern is None or not pattern.pattern):
            raise ValueError("REGEX strategy requires a non-empty pattern")
        if strategy_type != StrategyType.REGEX and pattern is not None:
            raise ValueError(f"{strategy_type.value} strategy does not take a pattern")
        self._type = strategy_type
        self._pattern = pattern

    @classmethod
    def regex(cls, pattern: str) -> "ComparisonStrategy":
        if not pattern:
            raise ValueError("REGEX strategy requires a non-empty pattern")
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid REGEX pattern '{pattern}': {e}") from e
        return cls(StrategyType.REGEX, compiled)

    @classmethod
    def parse(cls, text: str) -> "ComparisonStrategy":
        """
        Build a strategy from its textual form.

        Accepts a variant name (case-insensitive) or "REGEX:<pattern>".
        """
        text = text.strip()
        name, sep, payload = text.partition(":")
        name = name.strip().upper()
        if name == StrategyType.REGEX.value:
            return cls.regex(payload if sep else "")
        try:
            strategy_type = StrategyType(name)
        except ValueError:
            valid = ", ".join(t.value for t in StrategyType)
            raise ValueError(f"Unknown comparison strategy '{text}'. Must be one of: {valid}")
        return _STRATEGY_CONSTANTS[strategy_type]

    @property
    def type(self) -> StrategyType:
        return self._type

    @property
    def pattern(self) -> Optional[Pattern]:
        return self._pattern

    @property
    def is_ignore(self) -> bool:
        return self._type == StrategyType.IGNORE

    @property
    def is_strict(self) -> bool:
        return self._type == StrategyType.STRICT

    def __eq__(self, other) -> bool:
        if not isinstance(other, ComparisonStrategy):
            return NotImplemented
        this_pattern = self._pattern.pattern if self._pattern else None
        other_pattern = other._pattern.pattern if other._pattern else None
        return self._type == other._type and this_pattern == other_pattern

    def __hash__(self) -> int:
        return hash((self._type, self._pattern.pattern if self._pattern else None))

    def __str__(self) -> str:
        if self._type == StrategyType.REGEX:
            return f"REGEX:{self._pattern.pattern}"
        return self._type.value

    def __repr__(self) -> str:
        return f"ComparisonStrategy[{self}]"


ComparisonStrategy.STRICT = ComparisonStrategy(StrategyType.STRICT)
ComparisonStrategy.IGNORE = ComparisonStrategy(StrategyType.IGNORE)
ComparisonStrategy.NUMERIC = ComparisonStrategy(StrategyType.NUMERIC)
ComparisonStrategy.CASE_INSENSITIVE = ComparisonStrategy(StrategyType.CASE_INSENSITIVE)
ComparisonStrategy.TIMESTAMP_FLEXIBLE = ComparisonStrategy(StrategyType.TIMESTAMP_FLEXIBLE)
ComparisonStrategy.NOT_NULL = ComparisonStrategy(StrategyType.NOT_NULL)

_STRATEGY_CONSTANTS = {
    StrategyType.STRICT: ComparisonStrategy.STRICT,
    StrategyType.IGNORE: ComparisonStrategy.IGNORE,
    StrategyType.NUMERIC: ComparisonStrategy.NUMERIC,
    StrategyType.CASE_INSENSITIVE: ComparisonStrategy.CASE_INSENSITIVE,
    StrategyType.TIMESTAMP_FLEXIBLE: ComparisonStrategy.TIMESTAMP_FLEXIBLE,
    StrategyType.NOT_NULL: ComparisonStrategy.NOT_NULL,
}


@dataclass(frozen=True)
class ColumnStrategyMapping:
    """Assignment of a comparison strategy to a column (name upper-cased)."""

    column_name: str
    strategy: ComparisonStrategy

    def __post_init__(self):
        name = str(self.column_name).strip()
        if not name:
            raise ValueError("Column name of a strategy mapping must not be blank")
        object.__setattr__(self, "column_name", name.upper())

    @classmethod
    def of(cls, column_name: str, strategy: Union[ComparisonStrategy, str]) -> "ColumnStrategyMapping":
        if isinstance(strategy, str):
            strategy = ComparisonStrategy.parse(strategy)
        return cls(column_name, strategy)


StrategyMap = Mapping[str, ColumnStrategyMapping]


def normalize_strategies(
    strategies: Union[None, Mapping[str, Any], Iterable[ColumnStrategyMapping]],
) -> Dict[str, ColumnStrategyMapping]:
    """
    Normalize the accepted strategy inputs into {UPPER_NAME: mapping}.

    Accepts a mapping of column name to ComparisonStrategy / strategy text /
    ColumnStrategyMapping, or an iterable of ColumnStrategyMapping.
    """
    if not strategies:
        return {}
    result: Dict[str, ColumnStrategyMapping] = {}
    if isinstance(strategies, Mapping):
        for name, strategy in strategies.items():
            if isinstance(strategy, ColumnStrategyMapping):
                mapping = ColumnStrategyMapping(name, strategy.strategy)
            else:
                mapping = ColumnStrategyMapping.of(name, strategy)
            result[mapping.column_name] = mapping
    else:
        for mapping in strategies:
            result[mapping.column_name] = mapping
    return result


@dataclass(frozen=True)
class ExpectedTableSet:
    """
    Expected dataset plus verification settings.

    Exclusions are matched case-insensitively and win over strategies.
    """

    table_set: TableSet
    exclude_columns: frozenset = field(default_factory=frozenset)
    column_strategies: StrategyMap = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        object.__setattr__(
            self,
            "exclude_columns",
            frozenset(str(c).strip().upper() for c in self.exclude_columns),
        )
        object.__setattr__(
            self,
            "column_strategies",
            MappingProxyType(normalize_strategies(self.column_strategies)),
        )

    @classmethod
    def of(
        cls,
        table_set: TableSet,
        exclude_columns: Iterable[str] = (),
        column_strategies=None,
    ) -> "ExpectedTableSet":
        return cls(table_set, frozenset(exclude_columns), normalize_strategies(column_strategies))

    @property
    def has_exclusions(self) -> bool:
        return bool(self.exclude_columns)

    @property
    def has_column_strategies(self) -> bool:
        return bool(self.column_strategies)

    def is_excluded(self, column: Union[ColumnName, str]) -> bool:
        return ColumnName.of(column).key in self.exclude_columns

    def strategy_for(self, column: Union[ColumnName, str]) -> ComparisonStrategy:
        mapping = self.column_strategies.get(ColumnName.of(column).key)
        return mapping.strategy if mapping else ComparisonStrategy.STRICT

    def combine(self, global_exclude_columns: Iterable[str] = (), global_strategies=None) -> "ExpectedTableSet":
        """
        Merge global settings into this expectation.

        Exclusions are unioned; strategies set on this expectation override
        global ones for the same column.
        """
        strategies = normalize_strategies(global_strategies)
        strategies.update(self.column_strategies)
        excluded = set(self.exclude_columns)
        excluded.update(str(c).strip().upper() for c in global_exclude_columns)
        return ExpectedTableSet(self.table_set, frozenset(excluded), strategies)


# =============================================================================
# Schema metadata
# =============================================================================

_NUMERIC_TYPES = (sqltypes.Integer, sqltypes.Numeric)
_TEXTUAL_TYPES = (sqltypes.String,)
_TEMPORAL_TYPES = (sqltypes.Date, sqltypes.DateTime, sqltypes.Time)
_BINARY_TYPES = (sqltypes.LargeBinary, sqltypes.BINARY, sqltypes.VARBINARY)


@dataclass(frozen=True)
class ColumnMetadata:
    """Schema-derived description of a database column."""

    name: str
    sql_type: Optional[sqltypes.TypeEngine] = None
    nullable: bool = True
    primary_key: bool = False
    ordinal_position: int = 0
    precision: int = 0
    scale: int = 0
    default_value: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.sql_type, _NUMERIC_TYPES) and not self.is_boolean

    @property
    def is_textual(self) -> bool:
        return isinstance(self.sql_type, _TEXTUAL_TYPES)

    @property
    def is_temporal(self) -> bool:
        return isinstance(self.sql_type, _TEMPORAL_TYPES)

    @property
    def is_binary(self) -> bool:
        return isinstance(self.sql_type, _BINARY_TYPES)

    @property
    def is_boolean(self) -> bool:
        return isinstance(self.sql_type, sqltypes.Boolean)

    @property
    def is_likely_auto_increment(self) -> bool:
        return (
            self.primary_key
            and isinstance(self.sql_type, sqltypes.Integer)
            and self.default_value is None
        )

    @property
    def type_name(self) -> str:
        if self.sql_type is None or isinstance(self.sql_type, sqltypes.NullType):
            return "UNKNOWN"
        name = type(self.sql_type).__name__.upper()
        if self.precision > 0:
            if self.scale > 0:
                return f"{name}({self.precision},{self.scale})"
            return f"{name}({self.precision})"
        return name
