"""
Value Comparison and Diff Reporting

ValueComparator decides whether an expected dataset cell matches an actual
database value under a ComparisonStrategy. ComparisonResult collects every
mismatch of a verification pass and renders them as a summary line followed
by a YAML report:

    Assertion failed: 2 differences in USERS, ORDERS
    summary:
      status: FAILED
      total_differences: 2
    tables:
      USERS:
        differences:
        - path: row[0].EMAIL
          expected: alice@example.com
          actual: bob@example.com
          strategy: STRICT
          column:
            type: VARCHAR(100)
            nullable: true
            primary_key: false
"""

import base64
import math
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .binder import BASE64_PREFIX, parse_datetime
from .exceptions import ValidationError
from .models import CellValue, ColumnMetadata, ComparisonStrategy, StrategyType

FLOAT_EPSILON = 1e-6

_TRUE_STRINGS = {"1", "true", "yes", "y"}
_FALSE_STRINGS = {"0", "false", "no", "n"}
_ZERO_FRACTION = re.compile(r"^(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2})\.0+$")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def _floats_equal(expected: float, actual: float) -> bool:
    if math.isnan(expected) and math.isnan(actual):
        return True
    if math.isinf(expected) or math.isinf(actual):
        return expected == actual
    diff = abs(expected - actual)
    largest = max(abs(expected), abs(actual))
    if largest < FLOAT_EPSILON:
        return diff < FLOAT_EPSILON
    return diff / largest < FLOAT_EPSILON


def _compare_to_number(text: str, number) -> bool:
    if isinstance(number, float):
        try:
            return _floats_equal(float(text.strip()), number)
        except ValueError:
            return text == str(number)
    expected = _to_decimal(text)
    if expected is None:
        return text == str(number)
    return expected == _to_decimal(number)


def _compare_numbers(expected, actual) -> bool:
    if isinstance(expected, float) or isinstance(actual, float):
        return _floats_equal(float(expected), float(actual))
    return _to_decimal(expected) == _to_decimal(actual)


def _compare_to_boolean(value: Any, flag: bool) -> bool:
    text = str(value).strip().lower()
    return text in (_TRUE_STRINGS if flag else _FALSE_STRINGS)


def _compare_to_bytes(value: Any, data: bytes) -> bool:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value) == data
    text = str(value)
    if text.startswith(BASE64_PREFIX):
        return text == BASE64_PREFIX + base64.b64encode(data).decode("ascii")
    try:
        return text == data.decode("utf-8")
    except UnicodeDecodeError:
        return False


def _compare_to_temporal(text: str, actual) -> bool:
    try:
        if isinstance(actual, datetime):
            return parse_datetime(text) == actual
        if isinstance(actual, date):
            return date.fromisoformat(text.strip()) == actual
        return time.fromisoformat(text.strip()) == actual
    except (ValueError, TypeError):
        return _normalize_text(text) == _normalize_text(str(actual))


def _normalize_text(text: str) -> str:
    match = _ZERO_FRACTION.match(text)
    return match.group(1) if match else text


def to_epoch_seconds(value: Any) -> Optional[int]:
    """Parse a timestamp (naive values are UTC) into whole epoch seconds."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = parse_datetime(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return math.floor(parsed.timestamp())


class ValueComparator:
    """Compares an expected cell against an actual database value."""

    def matches(self, expected: CellValue, actual: Any, strategy: ComparisonStrategy) -> bool:
        """
        Check whether an actual value satisfies the expected cell.

        NULL handling is shared by all value strategies: both NULL matches,
        exactly one NULL does not. NOT_NULL and REGEX only look at the actual
        value.
        """
        if isinstance(actual, CellValue):
            actual = actual.value
        strategy_type = strategy.type

        if strategy_type == StrategyType.IGNORE:
            return True
        if strategy_type == StrategyType.NOT_NULL:
            return actual is not None
        if strategy_type == StrategyType.REGEX:
            return actual is not None and strategy.pattern.fullmatch(self.as_text(actual)) is not None

        if expected.is_null or actual is None:
            return expected.is_null and actual is None
        expected_value = expected.value

        if strategy_type == StrategyType.NUMERIC:
            return self._numeric_equal(expected_value, actual)
        if strategy_type == StrategyType.CASE_INSENSITIVE:
            return self.as_text(expected_value).casefold() == self.as_text(actual).casefold()
        if strategy_type == StrategyType.TIMESTAMP_FLEXIBLE:
            return self._timestamp_equal(expected_value, actual)
        return self.strict_equal(expected_value, actual)

    def strict_equal(self, expected: Any, actual: Any) -> bool:
        """
        Equality of a dataset value and a database value by canonical form.

        Dataset values are usually text while database values are typed, so
        numbers compare by value, booleans by 1/0/true/false/yes/no/y/n,
        bytes by UTF-8 or [BASE64] text and temporals by parsed value.
        """
        if type(expected) is type(actual) and expected == actual:
            return True
        if isinstance(actual, bool):
            return _compare_to_boolean(expected, actual)
        if isinstance(expected, bool):
            return _compare_to_boolean(actual, expected)
        if isinstance(actual, (bytes, bytearray, memoryview)):
            return _compare_to_bytes(expected, bytes(actual))
        if isinstance(expected, str) and isinstance(actual, (int, float, Decimal)):
            return _compare_to_number(expected, actual)
        if isinstance(actual, str) and isinstance(expected, (int, float, Decimal)):
            return _compare_to_number(actual, expected)
        if isinstance(expected, (int, float, Decimal)) and isinstance(actual, (int, float, Decimal)):
            return _compare_numbers(expected, actual)
        if isinstance(expected, str) and isinstance(actual, (datetime, date, time)):
            return _compare_to_temporal(expected, actual)
        return _normalize_text(str(expected)) == _normalize_text(str(actual))

    def _numeric_equal(self, expected: Any, actual: Any) -> bool:
        expected_number = _to_decimal(expected)
        actual_number = _to_decimal(actual)
        if expected_number is None or actual_number is None:
            return self.strict_equal(expected, actual)
        return expected_number == actual_number

    def _timestamp_equal(self, expected: Any, actual: Any) -> bool:
        expected_seconds = to_epoch_seconds(expected)
        actual_seconds = to_epoch_seconds(actual)
        if expected_seconds is None or actual_seconds is None:
            return self.as_text(expected) == self.as_text(actual)
        return expected_seconds == actual_seconds

    @staticmethod
    def as_text(value: Any) -> str:
        if isinstance(value, (bytes, bytearray, memoryview)):
            try:
                return bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                return BASE64_PREFIX + base64.b64encode(bytes(value)).decode("ascii")
        return str(value)


def _format_value(value: Any) -> Optional[str]:
    if isinstance(value, CellValue):
        value = value.value
    if value is None:
        return None
    return ValueComparator.as_text(value)


class ComparisonResult:
    """Accumulates the differences found while verifying an expected dataset."""

    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._total = 0

    def add_table_count_mismatch(self, expected: int, actual: int):
        self._add("(dataset)", {"path": "table_count", "expected": str(expected), "actual": str(actual)})

    def add_missing_table(self, table_name: str):
        self._add(table_name, {"path": "table", "expected": "exists", "actual": "not found"})

    def add_row_count_mismatch(self, table_name: str, expected: int, actual: int):
        self._add(table_name, {"path": "row_count", "expected": str(expected), "actual": str(actual)})

    def add_missing_column(self, table_name: str, column_name: str):
        self._add(
            table_name,
            {"path": f"column.{column_name}", "expected": "exists", "actual": "column not found"},
        )

    def add_value_mismatch(
        self,
        table_name: str,
        row_index: int,
        column_name: str,
        expected: Any,
        actual: Any,
        strategy: Optional[ComparisonStrategy] = None,
        metadata: Optional[ColumnMetadata] = None,
    ):
        difference = {
            "path": f"row[{row_index}].{column_name}",
            "expected": _format_value(expected),
            "actual": _format_value(actual),
        }
        if strategy is not None:
            difference["strategy"] = str(strategy)
        if metadata is not None:
            difference["column"] = {
                "type": metadata.type_name,
                "nullable": metadata.nullable,
                "primary_key": metadata.primary_key,
            }
        self._add(table_name, difference)

    def extend(self, other: "ComparisonResult"):
        """Append every difference of another result, keeping table order."""
        for table_name, differences in other._tables.items():
            for difference in differences:
                self._add(table_name, dict(difference))

    @classmethod
    def combine(cls, results: Iterable["ComparisonResult"]) -> "ComparisonResult":
        combined = cls()
        for result in results:
            combined.extend(result)
        return combined

    def _add(self, table_name: str, difference: Dict[str, Any]):
        self._tables.setdefault(table_name, []).append(difference)
        self._total += 1

    @property
    def has_differences(self) -> bool:
        return self._total > 0

    @property
    def difference_count(self) -> int:
        return self._total

    @property
    def table_names(self) -> List[str]:
        return list(self._tables)

    def differences(self, table_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Differences of one table, or of all tables in report order."""
        if table_name is not None:
            return list(self._tables.get(table_name, []))
        return [d for diffs in self._tables.values() for d in diffs]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {"status": "FAILED" if self.has_differences else "PASSED", "total_differences": self._total},
            "tables": {name: {"differences": diffs} for name, diffs in self._tables.items()},
        }

    def summary_line(self) -> str:
        noun = "difference" if self._total == 1 else "differences"
        return f"Assertion failed: {self._total} {noun} in {', '.join(self._tables)}"

    def format_message(self) -> str:
        if not self.has_differences:
            return "No differences found"
        report = yaml.safe_dump(
            self.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True
        )
        return f"{self.summary_line()}\n{report}".strip()

    def assert_no_differences(self):
        """
        Raises:
            ValidationError: If any difference was recorded
        """
        if self.has_differences:
            raise ValidationError(self.format_message(), result=self)

    def __repr__(self) -> str:
        return f"ComparisonResult(differences={self._total}, tables={self.table_names})"
