from datetime import date

import pytest

from sheet_dates import (
    DateDirection,
    is_display_date,
    is_storage_date,
    normalize_dates,
    to_display,
    to_storage,
    today_display,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("05/03/2024", "2024-03-05"),
        ("5/3/2024", "2024-03-05"),
        ("31/12/99", "1999-12-31"),
        ("1/1/24", "2024-01-01"),
    ],
)
def test_to_storage_pads_and_expands_years(value, expected):
    assert to_storage(value) == expected


def test_to_display_pads_fields():
    assert to_display("2024-3-5") == "05/03/2024"


def test_pattern_detection():
    assert is_display_date("01/02/2023")
    assert not is_display_date("2023-02-01")
    assert is_storage_date("2023-02-01")
    assert not is_storage_date("01/02/2023")
    assert not is_display_date(20230201)


def test_normalize_converts_only_matching_fields():
    record = {
        "fecha": "18/10/2026",
        "name": "Ana",
        "amount": 12.5,
        "active": True,
        "code": "12/ab/2024",
        "iso": "2026-10-18",
    }

    normalize_dates(record, DateDirection.DISPLAY_TO_STORAGE)

    assert record == {
        "fecha": "2026-10-18",
        "name": "Ana",
        "amount": 12.5,
        "active": True,
        "code": "12/ab/2024",
        "iso": "2026-10-18",
    }


def test_normalize_leaves_impossible_dates_untouched():
    record = {"fecha": "31/02/2024"}

    normalize_dates(record, DateDirection.DISPLAY_TO_STORAGE)

    assert record["fecha"] == "31/02/2024"


def test_normalize_is_idempotent_in_each_direction():
    record = {"a": "01/02/2020", "b": "2021-12-31"}

    once = normalize_dates(dict(record), DateDirection.DISPLAY_TO_STORAGE)
    twice = normalize_dates(dict(once), DateDirection.DISPLAY_TO_STORAGE)
    assert once == twice

    once = normalize_dates(dict(record), DateDirection.STORAGE_TO_DISPLAY)
    twice = normalize_dates(dict(once), DateDirection.STORAGE_TO_DISPLAY)
    assert once == twice


@pytest.mark.parametrize("value", ["01/01/2000", "29/02/2024", "31/12/1999", "15/07/2031"])
def test_display_round_trip_restores_original(value):
    record = {"fecha": value}

    normalize_dates(record, DateDirection.DISPLAY_TO_STORAGE)
    normalize_dates(record, DateDirection.STORAGE_TO_DISPLAY)

    assert record["fecha"] == value


def test_direction_accepts_plain_strings():
    record = {"fecha": "2024-01-09"}

    normalize_dates(record, "storage-display")

    assert record["fecha"] == "09/01/2024"


def test_today_display_format():
    assert today_display(date(2026, 10, 8)) == "08/10/2026"
