"""Conversion between raw sheet grids and header-keyed records."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Sequence

Record = Dict[str, Any]
Grid = List[List[Any]]

EMPTY_CELL = ""

# Columns holding sheet booleans.
FLAG_FIELDS = ("active",)

_TRUE_TEXT = "true"
_FALSE_TEXT = "false"


def normalize_header(header: Iterable[Any]) -> List[str]:
    """Lower-case header cells; blank cells become empty names."""
    return [str(cell).strip().lower() if cell is not None else "" for cell in header]


def to_records(grid: Sequence[Sequence[Any]]) -> List[Record]:
    """Turn ``grid`` (first row is the header) into one record per data row.

    Short rows are padded with empty cells; cells beyond the header are dropped.
    """
    if not grid:
        return []

    header = normalize_header(grid[0])
    records: List[Record] = []
    for row in grid[1:]:
        row = list(row or [])
        record: Record = {}
        for position, field in enumerate(header):
            record[field] = row[position] if position < len(row) else EMPTY_CELL
        records.append(record)
    return records


def to_row(record: Mapping[str, Any], header: Sequence[str]) -> List[Any]:
    """Values of ``record`` ordered by ``header``, empty where the field is missing."""
    row: List[Any] = []
    for field in header:
        value = record.get(field)
        row.append(EMPTY_CELL if value is None else value)
    return row


def column_of(field_name: str, header: Sequence[str]) -> int:
    """1-based column of ``field_name`` in the normalized ``header``, or ``0`` if unknown.

    Positions come from the header row itself, so blank or repeated header
    cells still occupy their column.  ``0`` means the field cannot be written.
    """
    target = str(field_name).strip().lower()
    if not target:
        return 0
    try:
        return list(header).index(target) + 1
    except ValueError:
        return 0


def coerce_flag(value: Any) -> Any:
    """``"TRUE"``/``"FALSE"`` text to ``bool``; anything else unchanged."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == _TRUE_TEXT:
            return True
        if lowered == _FALSE_TEXT:
            return False
    return value


def coerce_flags(
    record: MutableMapping[str, Any],
    fields: Iterable[str] = FLAG_FIELDS,
) -> MutableMapping[str, Any]:
    """Coerce the boolean ``fields`` of ``record`` in place; other columns keep their text."""
    for field in fields:
        if field in record:
            record[field] = coerce_flag(record[field])
    return record
