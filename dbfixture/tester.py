"""
Database Tester

Facade tying the pipeline together:

    prepare(): load -> filter -> merge -> order -> execute
    verify():  load expected -> combine settings -> compare -> raise on mismatch

Usage:
    from dbfixture import Configuration, DatabaseTester, DataSource, DataSourceRegistry

    registry = DataSourceRegistry()
    registry.register_default(DataSource.from_url("sqlite:///test.db"))
    tester = DatabaseTester(Configuration.defaults().with_conventions(
        ConventionSettings(base_directory="tests/fixtures/UserRepositoryTest")
    ), registry)

    tester.prepare(scenario_names=["test_create_user"])
    ...  # run the code under test
    tester.verify(scenario_names=["test_create_user"])
"""

import logging
from typing import Iterable, List, Optional, Sequence

from .comparison import ComparisonResult
from .config import Configuration
from .db import DataSource, DataSourceRegistry
from .exceptions import (
    ConfigurationError,
    DatabaseOperationError,
    DatabaseTesterError,
    DataSetLoadError,
    ValidationError,
)
from .expectation import ExpectationVerifier
from .loader import DataSetLoader, DataSetSource
from .models import ExpectedTableSet, Operation, TableOrderingStrategy, TableSet
from .operations import OperationExecutor
from .ordering import LoadOrderFile, TableOrderResolver

logger = logging.getLogger(__name__)


def _with_test_name(error: DatabaseTesterError, test_name: Optional[str]) -> DatabaseTesterError:
    """Return a copy of an engine error whose message names the test."""
    if not test_name:
        return error
    message = f"[{test_name}] {error}"
    if isinstance(error, ValidationError):
        return ValidationError(message, result=error.result)
    if isinstance(error, DataSetLoadError):
        return DataSetLoadError(message, path=error.path)
    if isinstance(error, DatabaseOperationError):
        wrapped = DatabaseOperationError(message)
        wrapped.operation, wrapped.table, wrapped.sql = error.operation, error.table, error.sql
        return wrapped
    if isinstance(error, ConfigurationError):
        return ConfigurationError(message)
    return DatabaseTesterError(message)


class DatabaseTester:
    """Prepares and verifies database state from dataset files."""

    def __init__(
        self,
        configuration: Optional[Configuration] = None,
        registry: Optional[DataSourceRegistry] = None,
        executor: Optional[OperationExecutor] = None,
        verifier: Optional[ExpectationVerifier] = None,
    ):
        self.configuration = configuration or Configuration.defaults()
        self.registry = registry or self.configuration.create_registry()
        self.executor = executor or OperationExecutor()
        self.verifier = verifier or ExpectationVerifier()
        self.loader = DataSetLoader(self.configuration.conventions, self.registry)
        self.order_resolver = TableOrderResolver(
            LoadOrderFile(self.configuration.conventions.load_order_file_name)
        )

    def prepare(
        self,
        sources: Sequence[DataSetSource] = (),
        scenario_names: Iterable[str] = (),
        operation: Optional[Operation] = None,
        table_ordering: Optional[TableOrderingStrategy] = None,
        base_directory=None,
        test_name: Optional[str] = None,
    ) -> TableSet:
        """
        Load the preparation datasets and apply them to the database.

        Args:
            sources: Dataset descriptors; empty means the base directory
            scenario_names: Scenarios to load (usually the test name)
            operation: Operation to apply; defaults to operations.preparation
            table_ordering: Ordering strategy; defaults to conventions.table_ordering
            base_directory: Overrides the configured base directory
            test_name: Test identity added to error messages

        Returns:
            The table set that was applied, in processing order

        Raises:
            ConfigurationError, DataSetLoadError, DatabaseOperationError
        """
        operation = Operation(operation or self.configuration.operations.preparation)
        ordering = TableOrderingStrategy(table_ordering or self.configuration.conventions.table_ordering)
        scenario_names = list(scenario_names) or ([test_name] if test_name else [])

        try:
            table_set = self.loader.load_preparation(sources, scenario_names, base_directory)
            if operation == Operation.NONE:
                logger.info(f"Preparation operation is NONE, skipping {len(table_set)} tables")
                return table_set
            data_source = self._data_source_for(table_set)
            ordered = self._order(table_set, ordering, data_source)
            self.executor.execute(operation, ordered, data_source)
        except DatabaseTesterError as e:
            if not test_name:
                raise
            raise _with_test_name(e, test_name) from e

        logger.info(f"Prepared {len(ordered)} tables with {operation.value}")
        return ordered

    def verify(
        self,
        sources: Sequence[DataSetSource] = (),
        scenario_names: Iterable[str] = (),
        exclude_columns: Iterable[str] = (),
        column_strategies=None,
        base_directory=None,
        test_name: Optional[str] = None,
    ) -> List[ComparisonResult]:
        """
        Verify the database against the expectation datasets.

        Exclusions and strategies passed here apply to every loaded
        expectation and override the global and per-source ones.

        Returns:
            One empty ComparisonResult per expectation dataset

        Raises:
            ValidationError: If the database does not match, listing every difference
        """
        scenario_names = list(scenario_names) or ([test_name] if test_name else [])
        try:
            expectations = self.loader.load_expectation(sources, scenario_names, base_directory)
            results = []
            failures = []
            for expected in expectations:
                expected = self._apply_overrides(expected, exclude_columns, column_strategies)
                data_source = self._data_source_for(expected.table_set)
                result = self.verifier.compare(expected, data_source)
                if result.has_differences:
                    failures.append(result)
                results.append(result)
            if failures:
                combined = ComparisonResult.combine(failures)
                raise ValidationError(combined.format_message(), result=combined)
        except DatabaseTesterError as e:
            if not test_name:
                raise
            raise _with_test_name(e, test_name) from e
        return results

    def _apply_overrides(self, expected: ExpectedTableSet, exclude_columns, column_strategies) -> ExpectedTableSet:
        exclude_columns = list(exclude_columns)
        if not exclude_columns and not column_strategies:
            return expected
        overrides = ExpectedTableSet.of(expected.table_set, exclude_columns, column_strategies)
        return overrides.combine(expected.exclude_columns, expected.column_strategies)

    def _data_source_for(self, table_set: TableSet) -> DataSource:
        if table_set.data_source is not None:
            return table_set.data_source
        return self.registry.get_default()

    def _order(self, table_set: TableSet, ordering: TableOrderingStrategy, data_source: DataSource) -> TableSet:
        if len(table_set) == 0:
            return table_set
        with data_source.connect() as conn:
            order = self.order_resolver.resolve(
                table_set, ordering, connection=conn, schema=data_source.schema
            )
        logger.debug(f"Table order: {[n.value for n in order]}")
        return table_set.reordered(order)
