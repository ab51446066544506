"""Access to the sheet grid: range descriptors and the gspread-backed backend.

The store only talks to a :class:`GridBackend`.  :class:`GspreadGridBackend`
implements it on top of the Sheets ``values`` endpoints exposed by gspread,
running each blocking call in a worker thread so store operations stay async.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import gspread
import requests
from gspread.exceptions import APIError
from gspread.utils import absolute_range_name
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from envelope import GoogleAPIRateLimitError, backend_error_payload

logger = logging.getLogger(__name__)

LAST_COLUMN = "ZZZ"
RETRYABLE_CODES = frozenset({429, 500, 502, 503, 504})
# An append answered with one of these was not applied and can be sent again.
APPEND_RETRYABLE_CODES = frozenset({429})


@dataclass(frozen=True)
class RangeDescriptor:
    """Sheet name plus header row; the region read on every operation."""

    sheet_name: str
    row_head: int = 1
    last_column: str = LAST_COLUMN

    def __post_init__(self) -> None:
        if not self.sheet_name or not self.sheet_name.strip():
            raise ValueError("sheet_name must not be empty")
        if int(self.row_head) < 1:
            raise ValueError(f"row_head must be >= 1, got {self.row_head}")

    @property
    def a1(self) -> str:
        return absolute_range_name(self.sheet_name, f"A{self.row_head}:{self.last_column}")


@dataclass(frozen=True)
class CellWrite:
    range: str
    value: Any


@dataclass(frozen=True)
class AppendResult:
    updated_range: Optional[str]
    updated_rows: int


@dataclass(frozen=True)
class WriteResult:
    total_updated_rows: int
    total_updated_cells: int


@dataclass(frozen=True)
class ClearResult:
    cleared_range: Optional[str]


class GridBackend(Protocol):
    """Remote rectangular cell storage used by the record store."""

    async def read_range(self, descriptor: RangeDescriptor) -> List[List[Any]]:
        ...

    async def append_row(self, descriptor: RangeDescriptor, row: Sequence[Any]) -> AppendResult:
        ...

    async def write_cells(self, writes: Sequence[CellWrite]) -> WriteResult:
        ...

    async def clear_range(self, range_a1: str) -> ClearResult:
        ...


def _backend_code(error: APIError) -> int:
    payload = backend_error_payload(error) or {}
    try:
        return int(payload.get("code") or 0)
    except (TypeError, ValueError):
        return 0


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, requests.exceptions.RequestException):
        return True
    if isinstance(error, APIError):
        return _backend_code(error) in RETRYABLE_CODES
    return False


def _is_retryable_append(error: BaseException) -> bool:
    """Only failures that prove the row was never written; appends are not idempotent."""
    if isinstance(error, requests.exceptions.ConnectTimeout):
        return True
    if isinstance(error, APIError):
        return _backend_code(error) in APPEND_RETRYABLE_CODES
    return False


def create_gspread_client(
    service_account_json: Optional[str] = None,
    service_account_file: Optional[str] = None,
) -> gspread.Client:
    """gspread client authorised with a service account (inline JSON or key file)."""
    json_credentials = service_account_json or os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    json_file = service_account_file or os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")

    if json_credentials:
        try:
            credentials_dict = json.loads(json_credentials)
        except json.JSONDecodeError as exc:
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON") from exc
        return gspread.service_account_from_dict(credentials_dict)

    if json_file:
        if not os.path.exists(json_file):
            raise FileNotFoundError(f"Service account file not found: {json_file}")
        return gspread.service_account(filename=json_file)

    raise ValueError(
        "Google service account is not configured. Set GOOGLE_SERVICE_ACCOUNT_JSON "
        "or GOOGLE_SERVICE_ACCOUNT_FILE."
    )


class GspreadGridBackend:
    """:class:`GridBackend` over one spreadsheet opened with gspread."""

    def __init__(
        self,
        spreadsheet_id: str,
        client: Optional[gspread.Client] = None,
        *,
        retry_attempts: int = 3,
        retry_multiplier: float = 1.0,
        retry_max_wait: float = 10.0,
        rate_tokens: int = 60,
        rate_interval: float = 60.0,
    ) -> None:
        if not spreadsheet_id:
            raise ValueError("spreadsheet_id is required")
        self.spreadsheet_id = spreadsheet_id
        self._client = client or create_gspread_client()
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._spreadsheet_lock = threading.Lock()

        self._retry_attempts = max(1, int(retry_attempts))
        self._retry_multiplier = retry_multiplier
        self._retry_max_wait = max(1.0, retry_max_wait)
        self._retryer = self._build_retryer(_is_retryable)
        self._append_retryer = self._build_retryer(_is_retryable_append)

        self._rate_capacity = max(1, int(rate_tokens))
        self._rate_interval = max(0.1, float(rate_interval))
        self._rate_tokens = self._rate_capacity
        self._rate_last_refill = time.monotonic()
        self._rate_lock = threading.Lock()

    def _build_retryer(self, predicate) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_multiplier, max=self._retry_max_wait),
            retry=retry_if_exception(predicate),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    @property
    def spreadsheet(self) -> gspread.Spreadsheet:
        with self._spreadsheet_lock:
            if self._spreadsheet is None:
                self._spreadsheet = self._call_google_api(self._client.open_by_key, self.spreadsheet_id)
            return self._spreadsheet

    def _acquire_token(self) -> None:
        with self._rate_lock:
            now = time.monotonic()
            if now - self._rate_last_refill >= self._rate_interval:
                self._rate_tokens = self._rate_capacity
                self._rate_last_refill = now
            if self._rate_tokens <= 0:
                logger.warning(
                    "Google API rate limit exceeded (capacity=%s, interval=%s)",
                    self._rate_capacity,
                    self._rate_interval,
                )
                raise GoogleAPIRateLimitError(
                    f"Google API request budget spent: {self._rate_capacity} calls per {self._rate_interval}s"
                )
            self._rate_tokens -= 1

    def _call_google_api(self, func, *args, retryer: Optional[Retrying] = None, **kwargs):
        self._acquire_token()
        for attempt in retryer if retryer is not None else self._retryer:
            with attempt:
                return func(*args, **kwargs)

    # ------------------------------------------------------------------
    # Blocking calls
    # ------------------------------------------------------------------

    def _read_range_sync(self, descriptor: RangeDescriptor) -> List[List[Any]]:
        response = self._call_google_api(
            self.spreadsheet.values_get,
            descriptor.a1,
            params={
                "valueRenderOption": "UNFORMATTED_VALUE",
                "dateTimeRenderOption": "FORMATTED_STRING",
            },
        )
        return [list(row) for row in response.get("values", [])]

    def _append_row_sync(self, descriptor: RangeDescriptor, row: Sequence[Any]) -> AppendResult:
        response = self._call_google_api(
            self.spreadsheet.values_append,
            descriptor.a1,
            retryer=self._append_retryer,
            params={
                "valueInputOption": "USER_ENTERED",
                "insertDataOption": "INSERT_ROWS",
                "includeValuesInResponse": True,
                "responseValueRenderOption": "FORMATTED_VALUE",
                "responseDateTimeRenderOption": "FORMATTED_STRING",
            },
            body={"majorDimension": "ROWS", "values": [list(row)]},
        )
        updates: Dict[str, Any] = response.get("updates", {})
        return AppendResult(
            updated_range=updates.get("updatedRange"),
            updated_rows=int(updates.get("updatedRows", 0)),
        )

    def _write_cells_sync(self, writes: Sequence[CellWrite]) -> WriteResult:
        response = self._call_google_api(
            self.spreadsheet.values_batch_update,
            body={
                "valueInputOption": "USER_ENTERED",
                "includeValuesInResponse": False,
                "data": [
                    {"range": write.range, "majorDimension": "ROWS", "values": [[write.value]]}
                    for write in writes
                ],
            },
        )
        return WriteResult(
            total_updated_rows=int(response.get("totalUpdatedRows", 0)),
            total_updated_cells=int(response.get("totalUpdatedCells", 0)),
        )

    def _clear_range_sync(self, range_a1: str) -> ClearResult:
        response = self._call_google_api(self.spreadsheet.values_clear, range_a1)
        return ClearResult(cleared_range=response.get("clearedRange"))

    # ------------------------------------------------------------------
    # GridBackend
    # ------------------------------------------------------------------

    async def read_range(self, descriptor: RangeDescriptor) -> List[List[Any]]:
        return await asyncio.to_thread(self._read_range_sync, descriptor)

    async def append_row(self, descriptor: RangeDescriptor, row: Sequence[Any]) -> AppendResult:
        return await asyncio.to_thread(self._append_row_sync, descriptor, row)

    async def write_cells(self, writes: Sequence[CellWrite]) -> WriteResult:
        if not writes:
            return WriteResult(total_updated_rows=0, total_updated_cells=0)
        return await asyncio.to_thread(self._write_cells_sync, writes)

    async def clear_range(self, range_a1: str) -> ClearResult:
        return await asyncio.to_thread(self._clear_range_sync, range_a1)
