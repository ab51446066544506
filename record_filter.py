"""Record selection: blank-row exclusion, active flag and a single predicate."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from envelope import RecordNotFoundError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

_TRUE_TEXT = {"1", "true", "yes", "on"}


def as_flag(value: Any, default: bool = False) -> bool:
    """Boolean from a bool or its text form (query strings, JSON, CLI); ``None`` means ``default``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_TEXT


class FilterOperator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER = ">"
    LESS = "<"
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"

    @classmethod
    def parse(cls, value: Union["FilterOperator", str, None]) -> "FilterOperator":
        """Operator from its textual form; unknown text means equality."""
        if isinstance(value, FilterOperator):
            return value
        text = (value or "").strip()
        if text == "==":
            return cls.EQUALS
        for operator in cls:
            if operator.value.lower() == text.lower():
                return operator
        if text:
            logger.debug("Unknown filter operator %r, using equality", text)
        return cls.EQUALS


@dataclass(frozen=True)
class RecordFilter:
    column: str
    value: Any
    operator: FilterOperator = FilterOperator.EQUALS
    multiple: bool = True

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RecordFilter":
        return cls(
            column=str(payload["column"]),
            value=payload.get("value"),
            operator=FilterOperator.parse(payload.get("operator")),
            multiple=as_flag(payload.get("multiple"), True),
        )


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def loose_equals(left: Any, right: Any) -> bool:
    """Equality after coercion: ``"1" == 1``, ``"TRUE" == True``, otherwise text."""
    if isinstance(left, bool) or isinstance(right, bool):
        return str(left).strip().lower() == str(right).strip().lower()
    left_number, right_number = to_number(left), to_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return _text(left) == _text(right)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def matcher(cell: Any, expected: Any) -> bool:
        cell_number, expected_number = to_number(cell), to_number(expected)
        if cell_number is None or expected_number is None:
            return False
        return compare(cell_number, expected_number)

    return matcher


_MATCHERS: Dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQUALS: loose_equals,
    FilterOperator.NOT_EQUALS: lambda cell, expected: not loose_equals(cell, expected),
    FilterOperator.GREATER: _numeric(lambda a, b: a > b),
    FilterOperator.LESS: _numeric(lambda a, b: a < b),
    FilterOperator.GREATER_EQUAL: _numeric(lambda a, b: a >= b),
    FilterOperator.LESS_EQUAL: _numeric(lambda a, b: a <= b),
    FilterOperator.CONTAINS: lambda cell, expected: _text(expected).lower() in _text(cell).lower(),
    FilterOperator.STARTS_WITH: lambda cell, expected: _text(cell).lower().startswith(_text(expected).lower()),
    FilterOperator.ENDS_WITH: lambda cell, expected: _text(cell).lower().endswith(_text(expected).lower()),
}


def matches(record: Mapping[str, Any], record_filter: RecordFilter) -> bool:
    column = record_filter.column.strip().lower()
    if column not in record:
        return False
    return _MATCHERS[record_filter.operator](record[column], record_filter.value)


def has_valid_id(record: Mapping[str, Any]) -> bool:
    """Rows without an id (missing, empty or ``0``) are placeholders, not data."""
    record_id = record.get("id")
    if record_id is None or _text(record_id).strip() == "":
        return False
    return to_number(record_id) != 0


def is_active(record: Mapping[str, Any]) -> bool:
    """Only an explicit false ``active`` marks a record as deactivated."""
    value = record.get("active")
    if isinstance(value, bool):
        return value
    return _text(value).strip().lower() != "false"


def valid_records(records: Sequence[Mapping[str, Any]], include_inactive: bool = True) -> List[Record]:
    selected = [dict(record) for record in records if has_valid_id(record)]
    if not include_inactive:
        selected = [record for record in selected if is_active(record)]
    return selected


def apply_filter(
    records: Sequence[Mapping[str, Any]],
    record_filter: Optional[RecordFilter] = None,
) -> Union[List[Record], Record]:
    """Records matching ``record_filter``; the first match only when ``multiple`` is off.

    Raises :class:`RecordNotFoundError` when an explicit filter matches nothing.
    """
    if record_filter is None:
        return [dict(record) for record in records]

    selected = [dict(record) for record in records if matches(record, record_filter)]
    if not selected:
        raise RecordNotFoundError(
            f"No records where {record_filter.column} {record_filter.operator.value} {record_filter.value}",
            {
                "column": record_filter.column,
                "operator": record_filter.operator.value,
                "value": record_filter.value,
            },
        )
    if not record_filter.multiple:
        return selected[0]
    return selected
