import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gspread.utils import a1_to_rowcol  # noqa: E402

from grid_backend import AppendResult, ClearResult, WriteResult  # noqa: E402
from sheet_store import SheetStore  # noqa: E402


class FakeResponse:
    """Minimal stand-in for the HTTP response gspread wraps in ``APIError``."""

    def __init__(self, code: int, message: str = "backend failure"):
        self.status_code = code
        self.text = message

    def json(self):
        return {"error": {"code": self.status_code, "message": self.text, "status": "FAILED"}}


class FakeGridBackend:
    """In-memory sheet; ``rows[0]`` is sheet row 1."""

    def __init__(self, rows: List[List[Any]], spreadsheet_id: str = "sheet-id"):
        self.rows = [list(row) for row in rows]
        self.spreadsheet_id = spreadsheet_id
        self.reads = 0
        self.appended: List[List[Any]] = []
        self.writes: List[Any] = []
        self.cleared: List[str] = []
        self.fail_with: Optional[BaseException] = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def read_range(self, descriptor):
        self._maybe_fail()
        self.reads += 1
        return [list(row) for row in self.rows[descriptor.row_head - 1:]]

    async def append_row(self, descriptor, row):
        self._maybe_fail()
        self.rows.append(list(row))
        self.appended.append(list(row))
        number = len(self.rows)
        return AppendResult(updated_range=f"'{descriptor.sheet_name}'!A{number}:C{number}", updated_rows=1)

    async def write_cells(self, writes):
        self._maybe_fail()
        touched_rows = set()
        for write in writes:
            self.writes.append(write)
            row, col = a1_to_rowcol(write.range.split("!", 1)[1])
            while len(self.rows) < row:
                self.rows.append([])
            cells = self.rows[row - 1]
            while len(cells) < col:
                cells.append("")
            cells[col - 1] = write.value
            touched_rows.add(row)
        return WriteResult(total_updated_rows=len(touched_rows), total_updated_cells=len(writes))

    async def clear_range(self, range_a1):
        self._maybe_fail()
        self.cleared.append(range_a1)
        start = range_a1.split("!", 1)[1].split(":", 1)[0]
        row, _ = a1_to_rowcol(start)
        if row <= len(self.rows):
            self.rows[row - 1] = []
        return ClearResult(cleared_range=range_a1)


@pytest.fixture
def people_rows():
    return [
        ["id", "name", "active"],
        ["1", "Ana", "TRUE"],
        ["2", "Bob", "FALSE"],
    ]


@pytest.fixture
def backend(people_rows):
    return FakeGridBackend(people_rows)


@pytest.fixture
def store(backend):
    return SheetStore(backend, "Sheet1", 1, description="people")
