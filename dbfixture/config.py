"""
Configuration

Conventions and operation defaults for the fixture engine, loadable from YAML
files with environment-specific overrides.

Loading order (later wins, nested mappings deep-merged):
1. <config_dir>/dbfixture.yaml
2. <config_dir>/dbfixture.<environment>.yaml
3. DBFIXTURE_* environment variables

Example dbfixture.yaml:

    conventions:
      base_directory: tests/fixtures
      data_format: csv
      table_merge_strategy: union_all
      global_exclude_columns: [CREATED_AT]
      global_column_strategies:
        UPDATED_AT: TIMESTAMP_FLEXIBLE
        EMAIL: "REGEX:.+@example\\.com"
    operations:
      preparation: clean_insert
      expectation: none
    data_sources:
      default:
        url: sqlite:///test.db
        pragmas:
          foreign_keys: "ON"
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar

import yaml

from .db import DataSource, DataSourceRegistry
from .exceptions import ConfigurationError
from .models import (
    DataFormat,
    Operation,
    TableMergeStrategy,
    TableOrderingStrategy,
    normalize_strategies,
)
from .ordering import DEFAULT_LOAD_ORDER_FILE
from .scenario import DEFAULT_SCENARIO_MARKER

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "dbfixture"
ENV_PREFIX = "DBFIXTURE_"

E = TypeVar("E", bound=Enum)


def _parse_enum(enum_cls: Type[E], value: Any, key: str) -> E:
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip().lower()
    try:
        return enum_cls(text)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"Invalid value for {key}: '{value}'. Must be one of: {valid}")


def _parse_list(value: Any, key: str) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise ConfigurationError(f"Invalid value for {key}: expected a list, got {type(value).__name__}")


def _require_text(value: Any, key: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigurationError(f"{key} must not be blank")
    return text


@dataclass(frozen=True)
class ConventionSettings:
    """Naming and loading conventions for dataset directories."""

    base_directory: Optional[str] = None
    expectation_suffix: str = "expected"
    scenario_marker: str = DEFAULT_SCENARIO_MARKER
    data_format: DataFormat = DataFormat.CSV
    table_merge_strategy: TableMergeStrategy = TableMergeStrategy.UNION_ALL
    load_order_file_name: str = DEFAULT_LOAD_ORDER_FILE
    global_exclude_columns: frozenset = field(default_factory=frozenset)
    global_column_strategies: Mapping = field(default_factory=lambda: MappingProxyType({}))
    table_ordering: TableOrderingStrategy = TableOrderingStrategy.AUTO

    def __post_init__(self):
        object.__setattr__(
            self,
            "global_exclude_columns",
            frozenset(str(c).strip().upper() for c in self.global_exclude_columns),
        )
        try:
            strategies = normalize_strategies(self.global_column_strategies)
        except ValueError as e:
            raise ConfigurationError(f"Invalid global_column_strategies: {e}") from e
        object.__setattr__(self, "global_column_strategies", MappingProxyType(strategies))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConventionSettings":
        data = data or {}
        unknown = set(data) - {f for f in cls.__dataclass_fields__}
        if unknown:
            raise ConfigurationError(f"Unknown convention settings: {sorted(unknown)}")

        defaults = cls()
        strategies = data.get("global_column_strategies") or {}
        if not isinstance(strategies, Mapping):
            raise ConfigurationError("global_column_strategies must be a mapping of column to strategy")
        base_directory = data.get("base_directory", defaults.base_directory)
        return cls(
            base_directory=str(base_directory) if base_directory is not None else None,
            expectation_suffix=_require_text(
                data.get("expectation_suffix", defaults.expectation_suffix), "expectation_suffix"
            ),
            scenario_marker=_require_text(
                data.get("scenario_marker", defaults.scenario_marker), "scenario_marker"
            ),
            data_format=_parse_enum(DataFormat, data.get("data_format", defaults.data_format), "data_format"),
            table_merge_strategy=_parse_enum(
                TableMergeStrategy,
                data.get("table_merge_strategy", defaults.table_merge_strategy),
                "table_merge_strategy",
            ),
            load_order_file_name=_require_text(
                data.get("load_order_file_name", defaults.load_order_file_name), "load_order_file_name"
            ),
            global_exclude_columns=frozenset(
                _parse_list(data.get("global_exclude_columns"), "global_exclude_columns")
            ),
            global_column_strategies={str(k): str(v) for k, v in strategies.items()},
            table_ordering=_parse_enum(
                TableOrderingStrategy,
                data.get("table_ordering", defaults.table_ordering),
                "table_ordering",
            ),
        )

    def with_base_directory(self, base_directory) -> "ConventionSettings":
        return replace(self, base_directory=str(base_directory) if base_directory is not None else None)

    def with_expectation_suffix(self, suffix: str) -> "ConventionSettings":
        return replace(self, expectation_suffix=_require_text(suffix, "expectation_suffix"))

    def with_scenario_marker(self, marker: str) -> "ConventionSettings":
        return replace(self, scenario_marker=_require_text(marker, "scenario_marker"))

    def with_data_format(self, data_format: DataFormat) -> "ConventionSettings":
        return replace(self, data_format=_parse_enum(DataFormat, data_format, "data_format"))

    def with_table_merge_strategy(self, strategy: TableMergeStrategy) -> "ConventionSettings":
        return replace(
            self,
            table_merge_strategy=_parse_enum(TableMergeStrategy, strategy, "table_merge_strategy"),
        )

    def with_load_order_file_name(self, file_name: str) -> "ConventionSettings":
        return replace(self, load_order_file_name=_require_text(file_name, "load_order_file_name"))

    def with_global_exclude_columns(self, columns: Iterable[str]) -> "ConventionSettings":
        return replace(self, global_exclude_columns=frozenset(columns))

    def with_global_column_strategies(self, strategies) -> "ConventionSettings":
        return replace(self, global_column_strategies=strategies)

    def with_table_ordering(self, ordering: TableOrderingStrategy) -> "ConventionSettings":
        return replace(self, table_ordering=_parse_enum(TableOrderingStrategy, ordering, "table_ordering"))


@dataclass(frozen=True)
class OperationDefaults:
    """Operations used when the caller does not name one."""

    preparation: Operation = Operation.CLEAN_INSERT
    expectation: Operation = Operation.NONE

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OperationDefaults":
        data = data or {}
        defaults = cls()
        return cls(
            preparation=_parse_enum(Operation, data.get("preparation", defaults.preparation), "preparation"),
            expectation=_parse_enum(Operation, data.get("expectation", defaults.expectation), "expectation"),
        )


@dataclass(frozen=True)
class DataSourceSettings:
    """Connection settings of one named data source."""

    name: str
    url: str
    schema: Optional[str] = None
    pragmas: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "DataSourceSettings":
        if isinstance(data, str):
            data = {"url": data}
        if not isinstance(data, Mapping) or not data.get("url"):
            raise ConfigurationError(f"Data source '{name}' requires a url")
        return cls(
            name=name,
            url=str(data["url"]),
            schema=data.get("schema"),
            pragmas={str(k): str(v) for k, v in (data.get("pragmas") or {}).items()},
        )

    def create(self) -> DataSource:
        return DataSource.from_url(self.url, name=self.name, schema=self.schema, pragmas=self.pragmas)


@dataclass(frozen=True)
class Configuration:
    """Resolved engine configuration."""

    conventions: ConventionSettings = field(default_factory=ConventionSettings)
    operations: OperationDefaults = field(default_factory=OperationDefaults)
    data_sources: tuple = ()

    @classmethod
    def defaults(cls) -> "Configuration":
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Configuration":
        data = data or {}
        sources = data.get("data_sources") or {}
        if not isinstance(sources, Mapping):
            raise ConfigurationError("data_sources must be a mapping of name to settings")
        return cls(
            conventions=ConventionSettings.from_dict(data.get("conventions")),
            operations=OperationDefaults.from_dict(data.get("operations")),
            data_sources=tuple(DataSourceSettings.from_dict(str(n), s) for n, s in sources.items()),
        )

    def with_conventions(self, conventions: ConventionSettings) -> "Configuration":
        return replace(self, conventions=conventions)

    def with_operations(self, operations: OperationDefaults) -> "Configuration":
        return replace(self, operations=operations)

    def create_registry(self) -> DataSourceRegistry:
        """Create a registry holding the configured data sources."""
        registry = DataSourceRegistry()
        for settings in self.data_sources:
            data_source = settings.create()
            if settings.name in ("default", ""):
                registry.register_default(data_source)
            else:
                registry.register(settings.name, data_source)
        return registry


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "BASE_DIRECTORY": ("conventions", "base_directory"),
    "EXPECTATION_SUFFIX": ("conventions", "expectation_suffix"),
    "SCENARIO_MARKER": ("conventions", "scenario_marker"),
    "DATA_FORMAT": ("conventions", "data_format"),
    "TABLE_MERGE_STRATEGY": ("conventions", "table_merge_strategy"),
    "LOAD_ORDER_FILE_NAME": ("conventions", "load_order_file_name"),
    "GLOBAL_EXCLUDE_COLUMNS": ("conventions", "global_exclude_columns"),
    "TABLE_ORDERING": ("conventions", "table_ordering"),
    "PREPARATION_OPERATION": ("operations", "preparation"),
    "EXPECTATION_OPERATION": ("operations", "expectation"),
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read configuration file: {path}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return data


class ConfigLoader:
    """Load and merge configuration from YAML files and the environment."""

    def __init__(
        self,
        config_dir: str = ".",
        environment: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config_dir = Path(config_dir)
        self.environ = os.environ if environ is None else environ
        self.environment = environment or self.environ.get(f"{ENV_PREFIX}ENV")

    def load_dict(self) -> Dict[str, Any]:
        """Return the merged raw configuration mapping."""
        config: Dict[str, Any] = {}

        base_path = self.config_dir / f"{CONFIG_FILE_NAME}.yaml"
        if base_path.exists():
            config = _read_yaml(base_path)
            logger.debug(f"Loaded configuration from {base_path}")

        if self.environment:
            env_path = self.config_dir / f"{CONFIG_FILE_NAME}.{self.environment}.yaml"
            if env_path.exists():
                config = self._merge_config(config, _read_yaml(env_path))
                logger.debug(f"Applied {self.environment} overrides from {env_path}")

        return self._merge_config(config, self._env_overrides())

    def load(self) -> Configuration:
        """
        Load the configuration.

        Returns:
            Configuration; defaults where nothing is configured

        Raises:
            ConfigurationError: If a file is unreadable or a value is invalid
        """
        return Configuration.from_dict(self.load_dict())

    def _env_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for suffix, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(f"{ENV_PREFIX}{suffix}")
            if value is not None:
                overrides.setdefault(section, {})[key] = value
        return overrides

    def _merge_config(self, base: Dict, override: Dict) -> Dict:
        """Deep merge override config into base config."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result


def load_configuration(path) -> Configuration:
    """Load a Configuration from a single YAML file."""
    return Configuration.from_dict(_read_yaml(Path(path)))
