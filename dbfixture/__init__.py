"""
dbfixture - convention-driven database fixtures.

Prepares a database from delimited dataset files before a test and verifies
its state against expected datasets afterwards.
"""

from .assertion import DatabaseAssertion
from .comparison import ComparisonResult, ValueComparator
from .config import (
    ConfigLoader,
    Configuration,
    ConventionSettings,
    DataSourceSettings,
    OperationDefaults,
    load_configuration,
)
from .db import DataSource, DataSourceRegistry, SchemaInspector
from .exceptions import (
    ConfigurationError,
    DatabaseOperationError,
    DatabaseTesterError,
    DataSetLoadError,
    DataSourceNotFoundError,
    ValidationError,
)
from .expectation import ExpectationVerifier
from .loader import DataSetFactory, DataSetLoader, DataSetSource
from .merger import DataSetMerger
from .models import (
    CellValue,
    ColumnMetadata,
    ColumnName,
    ColumnStrategyMapping,
    ComparisonStrategy,
    DataFormat,
    ExpectedTableSet,
    Operation,
    Row,
    Table,
    TableMergeStrategy,
    TableName,
    TableOrderingStrategy,
    TableSet,
)
from .operations import OperationExecutor
from .ordering import LoadOrderFile, TableOrderResolver, topological_sort
from .parser import CSV_CONFIG, TSV_CONFIG, DelimitedParser, DelimiterConfig
from .registry import FormatRegistry
from .scenario import ScenarioFilter
from .tester import DatabaseTester

__all__ = [
    "CSV_CONFIG",
    "TSV_CONFIG",
    "CellValue",
    "ColumnMetadata",
    "ColumnName",
    "ColumnStrategyMapping",
    "ComparisonResult",
    "ComparisonStrategy",
    "ConfigLoader",
    "Configuration",
    "ConfigurationError",
    "ConventionSettings",
    "DataFormat",
    "DataSetFactory",
    "DataSetLoadError",
    "DataSetLoader",
    "DataSetMerger",
    "DataSetSource",
    "DataSource",
    "DataSourceNotFoundError",
    "DataSourceRegistry",
    "DataSourceSettings",
    "DatabaseAssertion",
    "DatabaseOperationError",
    "DatabaseTester",
    "DatabaseTesterError",
    "DelimitedParser",
    "DelimiterConfig",
    "ExpectationVerifier",
    "ExpectedTableSet",
    "FormatRegistry",
    "LoadOrderFile",
    "Operation",
    "OperationDefaults",
    "OperationExecutor",
    "Row",
    "SchemaInspector",
    "ScenarioFilter",
    "Table",
    "TableMergeStrategy",
    "TableName",
    "TableOrderResolver",
    "TableOrderingStrategy",
    "TableSet",
    "ValidationError",
    "ValueComparator",
    "load_configuration",
    "topological_sort",
]
