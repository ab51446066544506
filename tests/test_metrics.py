import asyncio

from prometheus_client import REGISTRY

from conftest import FakeGridBackend
from sheet_store import (
    SHEET_OPERATION_FAILURES,
    SHEET_OPERATION_REQUESTS,
    SheetStore,
)


def _duration_count(operation: str) -> float:
    return REGISTRY.get_sample_value(
        "sheet_store_operation_duration_seconds_count",
        {"operation": operation},
    ) or 0.0


def test_successful_read_is_counted(store) -> None:
    requests_before = SHEET_OPERATION_REQUESTS.labels(operation="read")._value.get()
    failures_before = SHEET_OPERATION_FAILURES.labels(operation="read", error_type="NOT_FOUND_ERROR")._value.get()
    duration_before = _duration_count("read")

    envelope = asyncio.run(store.read())

    assert envelope.success is True
    assert SHEET_OPERATION_REQUESTS.labels(operation="read")._value.get() == requests_before + 1
    assert SHEET_OPERATION_FAILURES.labels(operation="read", error_type="NOT_FOUND_ERROR")._value.get() == failures_before
    assert _duration_count("read") == duration_before + 1


def test_failed_delete_is_counted_by_error_type(store) -> None:
    failures = SHEET_OPERATION_FAILURES.labels(operation="delete", error_type="NOT_FOUND_ERROR")
    failures_before = failures._value.get()

    envelope = asyncio.run(store.delete("id", "404"))

    assert envelope.success is False
    assert failures._value.get() == failures_before + 1


def test_deactivate_has_its_own_series() -> None:
    store = SheetStore(FakeGridBackend([["id", "active"], ["1", "TRUE"]]), "Sheet1")
    deactivate_before = SHEET_OPERATION_REQUESTS.labels(operation="deactivate")._value.get()
    update_before = SHEET_OPERATION_REQUESTS.labels(operation="update")._value.get()
    duration_before = _duration_count("deactivate")

    envelope = asyncio.run(store.deactivate("id", "1"))

    assert envelope.success is True
    assert SHEET_OPERATION_REQUESTS.labels(operation="deactivate")._value.get() == deactivate_before + 1
    assert SHEET_OPERATION_REQUESTS.labels(operation="update")._value.get() == update_before
    assert _duration_count("deactivate") == duration_before + 1


def test_failed_deactivate_is_counted_by_error_type() -> None:
    store = SheetStore(FakeGridBackend([["id", "active"], ["1", "TRUE"]]), "Sheet1")
    failures = SHEET_OPERATION_FAILURES.labels(operation="deactivate", error_type="NOT_FOUND_ERROR")
    failures_before = failures._value.get()

    asyncio.run(store.deactivate("id", "9"))

    assert failures._value.get() == failures_before + 1
