"""Record store over a single sheet.

Each public coroutine re-reads the sheet, works on records projected from the
fresh grid, and answers with an :class:`~envelope.Envelope`.  Nothing is cached
between calls.

Update and delete resolve the target row from one read and write afterwards;
another writer changing the sheet in between can make that row stale.  The
store does not guard against this.
"""

from __future__ import annotations

import copy
import functools
import logging
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from prometheus_client import Counter, Histogram, start_http_server

import grid_mapper
from address_resolver import cell_range, find_row, grid_row, row_range
from envelope import (
    Envelope,
    RecordNotFoundError,
    RecordValidationError,
    success,
    with_error_handling,
)
from grid_backend import CellWrite, GridBackend, RangeDescriptor
from record_filter import RecordFilter, apply_filter, to_number, valid_records
from sheet_dates import DateDirection, normalize_dates, today_display

logger = logging.getLogger(__name__)

SHEET_OPERATION_REQUESTS = Counter(
    "sheet_store_operations_total",
    "Total number of record store operations.",
    ["operation"],
)
SHEET_OPERATION_FAILURES = Counter(
    "sheet_store_operation_failures_total",
    "Record store operations that answered with an error envelope.",
    ["operation", "error_type"],
)
SHEET_OPERATION_DURATION = Histogram(
    "sheet_store_operation_duration_seconds",
    "Duration of record store operations in seconds.",
    ["operation"],
)

_METRICS_SERVER_STARTED = False


def start_metrics_server(port: int) -> None:
    """Start the Prometheus metrics HTTP exporter if it is not running yet."""

    global _METRICS_SERVER_STARTED
    if _METRICS_SERVER_STARTED:
        return

    start_http_server(port)
    _METRICS_SERVER_STARTED = True
    logger.info("Prometheus metrics exporter started on port %s", port)


def store_operation(operation: str) -> Callable[[Callable[..., Awaitable[Envelope]]], Callable[..., Awaitable[Envelope]]]:
    """Error-handled, instrumented public store operation."""

    def decorator(func: Callable[..., Awaitable[Envelope]]) -> Callable[..., Awaitable[Envelope]]:
        handled = with_error_handling(operation)(func)

        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Envelope:
            SHEET_OPERATION_REQUESTS.labels(operation=operation).inc()
            with SHEET_OPERATION_DURATION.labels(operation=operation).time():
                envelope = await handled(self, *args, **kwargs)
            if not envelope.success and envelope.error is not None:
                SHEET_OPERATION_FAILURES.labels(operation=operation, error_type=envelope.error.type).inc()
            return envelope

        return wrapper

    return decorator


class SheetStore:
    """CRUD over the rows of one sheet, keyed by its header row."""

    def __init__(
        self,
        backend: GridBackend,
        sheet_name: str,
        row_head: int = 1,
        *,
        spreadsheet_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.backend = backend
        self.descriptor = RangeDescriptor(sheet_name=sheet_name, row_head=int(row_head))
        self.spreadsheet_id = spreadsheet_id or getattr(backend, "spreadsheet_id", None)
        self.description = description

    @property
    def sheet_name(self) -> str:
        return self.descriptor.sheet_name

    @property
    def row_head(self) -> int:
        return self.descriptor.row_head

    def error_context(self) -> Dict[str, Any]:
        return {
            "sheet_id": self.spreadsheet_id,
            "sheet_name": self.sheet_name,
            "description": self.description,
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "sheet_id": self.spreadsheet_id,
            "sheet_name": self.sheet_name,
            "row_head": self.row_head,
            "range": self.descriptor.a1,
            "description": self.description,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch_grid(self) -> List[List[Any]]:
        return await self.backend.read_range(self.descriptor)

    async def _fetch_table(self) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Normalized header plus every data row as a record, blank rows included."""
        grid = await self._fetch_grid()
        header = grid_mapper.normalize_header(grid[0]) if grid else []
        return header, [grid_mapper.coerce_flags(record) for record in grid_mapper.to_records(grid)]

    async def _fetch_records(self) -> List[Dict[str, Any]]:
        _, records = await self._fetch_table()
        return records

    async def _fetch_headers(self) -> List[str]:
        grid = await self._fetch_grid()
        if not grid:
            raise RecordNotFoundError(f"Sheet '{self.sheet_name}' has no header row", {"range": self.descriptor.a1})
        return grid_mapper.normalize_header(grid[0])

    @staticmethod
    def _require_target(col_name: str, record_id: Any) -> None:
        missing = [name for name, value in (("colName", col_name), ("id", record_id)) if value in (None, "")]
        if missing:
            raise RecordValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {"missingFields": missing},
            )

    async def _max_id(self) -> int:
        records = valid_records(await self._fetch_records(), include_inactive=True)
        ids = [number for number in (to_number(record.get("id")) for record in records) if number is not None]
        if not ids:
            return 0
        return int(max(ids))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @store_operation("read")
    async def read(
        self,
        record_filter: Union[RecordFilter, Mapping[str, Any], None] = None,
        *,
        include_inactive: bool = False,
    ) -> Envelope:
        """Valid records (active only unless ``include_inactive``), optionally filtered."""
        if isinstance(record_filter, Mapping):
            record_filter = RecordFilter.from_mapping(record_filter)
        logger.info("Reading '%s' (filter=%s, include_inactive=%s)", self.sheet_name, record_filter, include_inactive)

        records = valid_records(await self._fetch_records(), include_inactive=include_inactive)
        if not records:
            return success([])

        selected = apply_filter(records, record_filter)
        if isinstance(selected, dict):
            return success(normalize_dates(selected, DateDirection.STORAGE_TO_DISPLAY))
        return success([normalize_dates(record, DateDirection.STORAGE_TO_DISPLAY) for record in selected])

    @store_operation("headers")
    async def headers(self) -> Envelope:
        return success(await self._fetch_headers())

    @store_operation("insert")
    async def insert(
        self,
        data: Mapping[str, Any],
        *,
        user: Optional[Mapping[str, Any]] = None,
        include_id: bool = False,
    ) -> Envelope:
        """Append ``data`` as a new active row stamped with today's creation date."""
        if not isinstance(data, Mapping) or not data:
            raise RecordValidationError("Insert requires a non-empty data mapping", {"data": data})

        record: Dict[str, Any] = {str(key).strip().lower(): value for key, value in copy.deepcopy(dict(data)).items()}
        if user and user.get("alias"):
            record["registrado_por"] = user["alias"]
        if include_id:
            record["id"] = await self._max_id() + 1
        record["active"] = True
        record["fecha_creacion"] = today_display()
        normalize_dates(record, DateDirection.DISPLAY_TO_STORAGE)

        header = await self._fetch_headers()
        row = grid_mapper.to_row(record, header)
        logger.info("Inserting row into '%s': %s", self.sheet_name, row)
        result = await self.backend.append_row(self.descriptor, row)

        return success(
            {
                "insertedData": record,
                "rowsAdded": result.updated_rows,
                "range": result.updated_range,
            },
            HTTPStatus.CREATED,
            "Record inserted",
        )

    async def _write_fields(self, col_name: str, record_id: Any, values: Mapping[str, Any]) -> Dict[str, Any]:
        self._require_target(col_name, record_id)
        if not isinstance(values, Mapping) or not values:
            raise RecordValidationError("Update requires at least one field", {"values": values})

        values = normalize_dates(dict(values), DateDirection.DISPLAY_TO_STORAGE)
        header, records = await self._fetch_table()
        index = find_row(records, col_name, record_id)
        row = grid_row(index, self.row_head)

        writes: List[CellWrite] = []
        updated_fields: List[str] = []
        skipped_fields: List[str] = []
        for field, value in values.items():
            column = grid_mapper.column_of(field, header)
            if column == 0:
                skipped_fields.append(field)
                continue
            writes.append(CellWrite(range=cell_range(self.sheet_name, row, column), value=value))
            updated_fields.append(field)

        if skipped_fields:
            logger.warning("Skipping unknown fields on '%s': %s", self.sheet_name, ", ".join(skipped_fields))
        if not writes:
            raise RecordValidationError(
                "None of the given fields exist in the sheet",
                {"skippedFields": skipped_fields},
            )

        logger.info("Updating row %s of '%s' (%s)", row, self.sheet_name, ", ".join(updated_fields))
        result = await self.backend.write_cells(writes)
        return {
            "updatedFields": updated_fields,
            "skippedFields": skipped_fields,
            "row": row,
            "rowsUpdated": result.total_updated_rows,
            "cellsUpdated": result.total_updated_cells,
        }

    @store_operation("update")
    async def update(self, col_name: str, record_id: Any, values: Mapping[str, Any]) -> Envelope:
        """Write each known field of ``values`` into the row where ``col_name == record_id``.

        Fields without a matching column are skipped and reported back.
        """
        return success(await self._write_fields(col_name, record_id, values), message="Record updated")

    @store_operation("deactivate")
    async def deactivate(self, col_name: str, record_id: Any) -> Envelope:
        """Soft delete: mark the record ``active = false``."""
        await self._write_fields(col_name, record_id, {"active": False})
        return success({col_name: record_id, "active": False}, message="Record deactivated")

    @store_operation("delete")
    async def delete(self, col_name: str, record_id: Any) -> Envelope:
        """Hard delete: clear every cell of the record's row."""
        self._require_target(col_name, record_id)

        records = await self._fetch_records()
        index = find_row(records, col_name, record_id)
        row = grid_row(index, self.row_head)
        target = row_range(self.sheet_name, row, self.descriptor.last_column)

        logger.info("Clearing row %s of '%s'", row, self.sheet_name)
        result = await self.backend.clear_range(target)
        return success(
            {
                "deletedRecord": normalize_dates(records[index], DateDirection.STORAGE_TO_DISPLAY),
                "clearedRange": result.cleared_range or target,
                "rowDeleted": row,
            },
            message="Record deleted",
        )

    @store_operation("last_id")
    async def last_id(self) -> Envelope:
        return success(await self._max_id())

    @store_operation("find_by_key")
    async def find_by_key(self, key: str, value: Any) -> Envelope:
        """Every valid record (inactive included) whose ``key`` loosely equals ``value``."""
        records = valid_records(await self._fetch_records(), include_inactive=True)
        matches = apply_filter(records, RecordFilter(column=key, value=value))
        return success([normalize_dates(record, DateDirection.STORAGE_TO_DISPLAY) for record in matches])

    @store_operation("find_one")
    async def find_one(self, key: str, value: Any) -> Envelope:
        """First valid record (inactive included) whose ``key`` loosely equals ``value``."""
        records = valid_records(await self._fetch_records(), include_inactive=True)
        match = apply_filter(records, RecordFilter(column=key, value=value, multiple=False))
        return success(normalize_dates(match, DateDirection.STORAGE_TO_DISPLAY))
