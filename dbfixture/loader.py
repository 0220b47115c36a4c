"""
Dataset Loading

Turns dataset descriptors into filtered, data-source-bound table sets.

Directory conventions:
- Preparation data lives in the dataset directory itself
- Expectation data lives in the "<directory>/<expectation_suffix>" subdirectory
- With no DataSetSource given, the dataset directory is the configured (or
  caller supplied) base directory

Usage:
    loader = DataSetLoader(configuration.conventions, registry)
    table_set = loader.load_preparation(
        [DataSetSource("fixtures/users")], scenario_names=["test_create_user"]
    )
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .db import DataSource, DataSourceRegistry
from .exceptions import ConfigurationError, DataSetLoadError
from .merger import DataSetMerger
from .models import DataFormat, ExpectedTableSet, TableSet, normalize_strategies
from .registry import FormatRegistry
from .scenario import DEFAULT_SCENARIO_MARKER, ScenarioFilter

logger = logging.getLogger(__name__)


@dataclass
class DataSetSource:
    """
    Declares one dataset to load.

    Attributes:
        resource_location: Dataset directory; relative paths resolve against
            the base directory. None means the base directory itself.
        scenario_names: Scenarios to keep; empty means the caller's scenario names
        data_source_name: Registered data source to bind; None means the default
        exclude_columns: Columns skipped during verification
        column_strategies: Column name -> ComparisonStrategy (or its text form)
    """

    resource_location: Optional[str] = None
    scenario_names: Tuple[str, ...] = ()
    data_source_name: Optional[str] = None
    exclude_columns: Tuple[str, ...] = ()
    column_strategies: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict) -> "DataSetSource":
        return cls(
            resource_location=data.get("resource_location") or data.get("location"),
            scenario_names=tuple(data.get("scenario_names", [])),
            data_source_name=data.get("data_source_name") or data.get("data_source"),
            exclude_columns=tuple(data.get("exclude_columns", [])),
            column_strategies=dict(data.get("column_strategies", {})),
        )


class DataSetFactory:
    """Parses a dataset directory and applies the scenario filter."""

    def create_table_set(
        self,
        directory,
        scenario_names: Iterable[str] = (),
        scenario_marker: str = DEFAULT_SCENARIO_MARKER,
        data_format: DataFormat = DataFormat.CSV,
        data_source: Optional[DataSource] = None,
    ) -> TableSet:
        """
        Load a filtered table set from a directory.

        Raises:
            ConfigurationError: If the directory does not exist or the format has no provider
            DataSetLoadError: If the directory holds no data files or a file cannot be parsed
        """
        directory = Path(directory)
        logger.debug(f"Creating dataset from directory: {directory} with format: {DataFormat(data_format).value}")

        if not directory.is_dir():
            raise ConfigurationError(f"Directory does not exist: {directory.absolute()}")

        provider = FormatRegistry.get_provider(data_format)
        if not provider.has_data_files(directory):
            raise DataSetLoadError(
                f"No data files with extension '{provider.extension}' found in directory: "
                f"{directory.absolute()}",
                path=directory,
            )

        raw = provider.parse(directory)
        scenario_filter = ScenarioFilter(scenario_marker, scenario_names)
        filtered = scenario_filter.apply_all(raw)
        return filtered.bound_to(data_source)


class DataSetLoader:
    """Convention-based loader for preparation and expectation datasets."""

    def __init__(
        self,
        conventions,
        registry: Optional[DataSourceRegistry] = None,
        factory: Optional[DataSetFactory] = None,
        merger: Optional[DataSetMerger] = None,
    ):
        self.conventions = conventions
        self.registry = registry or DataSourceRegistry()
        self.factory = factory or DataSetFactory()
        self.merger = merger or DataSetMerger()

    def load_preparation(
        self,
        sources: Sequence[DataSetSource] = (),
        scenario_names: Iterable[str] = (),
        base_directory=None,
    ) -> TableSet:
        """
        Load and merge the preparation datasets.

        Args:
            sources: Dataset descriptors; empty means the base directory
            scenario_names: Default scenario names for sources that name none
            base_directory: Overrides the configured base directory

        Returns:
            One TableSet merged with the configured table merge strategy
        """
        table_sets = [
            self._load_source(source, scenario_names, base_directory, suffix=None)
            for source in self._sources_or_convention(sources)
        ]
        return self.merger.merge(table_sets, self.conventions.table_merge_strategy)

    def load_expectation(
        self,
        sources: Sequence[DataSetSource] = (),
        scenario_names: Iterable[str] = (),
        base_directory=None,
    ) -> List[ExpectedTableSet]:
        """
        Load the expectation datasets, one per source.

        Each source's exclusions and strategies are combined with the global
        ones from the conventions; per-source strategies win.
        """
        suffix = self.conventions.expectation_suffix
        global_excludes = self.conventions.global_exclude_columns
        global_strategies = self.conventions.global_column_strategies

        if not sources:
            table_set = self._load_source(DataSetSource(), scenario_names, base_directory, suffix)
            return [ExpectedTableSet.of(table_set, global_excludes, global_strategies)]

        expected = []
        for source in sources:
            table_set = self._load_source(source, scenario_names, base_directory, suffix)
            own = ExpectedTableSet.of(
                table_set, source.exclude_columns, normalize_strategies(source.column_strategies)
            )
            expected.append(own.combine(global_excludes, global_strategies))
        return expected

    def resolve_directory(self, source: DataSetSource, base_directory=None, suffix: Optional[str] = None) -> Path:
        """
        Resolve the dataset directory of a source.

        Raises:
            ConfigurationError: If a relative or missing location has no base directory
        """
        base = base_directory if base_directory is not None else self.conventions.base_directory
        location = Path(source.resource_location) if source.resource_location else None

        if location is not None and location.is_absolute():
            directory = location
        elif base is None:
            raise ConfigurationError(
                "No base directory configured; set conventions.base_directory or pass an "
                "absolute resource location"
            )
        elif location is None:
            directory = Path(base)
        else:
            directory = Path(base) / location

        if suffix:
            directory = directory / suffix
        return directory

    def _sources_or_convention(self, sources: Sequence[DataSetSource]) -> List[DataSetSource]:
        return list(sources) if sources else [DataSetSource()]

    def _load_source(
        self,
        source: DataSetSource,
        scenario_names: Iterable[str],
        base_directory,
        suffix: Optional[str],
    ) -> TableSet:
        directory = self.resolve_directory(source, base_directory, suffix)
        names = source.scenario_names or tuple(scenario_names)
        data_source = self._resolve_data_source(source.data_source_name)
        logger.debug(f"Loading dataset {directory} for scenarios {list(names)}")
        return self.factory.create_table_set(
            directory,
            scenario_names=names,
            scenario_marker=self.conventions.scenario_marker,
            data_format=self.conventions.data_format,
            data_source=data_source,
        )

    def _resolve_data_source(self, name: Optional[str]) -> Optional[DataSource]:
        if name:
            return self.registry.get(name)
        if self.registry.has():
            return self.registry.get_default()
        return None
