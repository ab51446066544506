"""Locating the grid row and cells that back a logical record.

Indices handed to :func:`grid_row` must come from the *unfiltered* data
records (every row after the header, blank rows included); filtering first
would shift positions away from the sheet rows they describe.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from gspread.utils import absolute_range_name, rowcol_to_a1

from envelope import RecordNotFoundError
from record_filter import loose_equals


def find_row(records: Sequence[Mapping[str, Any]], column_name: str, record_id: Any) -> int:
    """0-based index of the first record whose ``column_name`` loosely equals ``record_id``."""
    column = str(column_name).strip().lower()
    for index, record in enumerate(records):
        if column in record and loose_equals(record[column], record_id):
            return index
    raise RecordNotFoundError(
        f"No record with {column_name} = {record_id}",
        {"columnName": column_name, "id": record_id},
    )


def grid_row(index: int, row_head: int) -> int:
    """Absolute 1-based sheet row of data record ``index``.

    The header sits on ``row_head``, so the first data record is one below it.
    """
    return index + row_head + 1


def cell_range(sheet_name: str, row: int, column: int) -> str:
    """A1 range of a single cell, qualified with the sheet name."""
    return absolute_range_name(sheet_name, rowcol_to_a1(row, column))


def row_range(sheet_name: str, row: int, last_column: str) -> str:
    """A1 range spanning every column of one sheet row."""
    return absolute_range_name(sheet_name, f"A{row}:{last_column}{row}")
