import pytest

from envelope import RecordNotFoundError
from record_filter import (
    FilterOperator,
    RecordFilter,
    apply_filter,
    as_flag,
    has_valid_id,
    is_active,
    loose_equals,
    valid_records,
)

RECORDS = [
    {"id": "1", "name": "Ana Lopez", "age": "31", "active": True},
    {"id": 2, "name": "bob", "age": 25, "active": False},
    {"id": "3", "name": "Carla", "age": "n/a", "active": ""},
]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("=", FilterOperator.EQUALS),
        ("==", FilterOperator.EQUALS),
        ("!=", FilterOperator.NOT_EQUALS),
        (">=", FilterOperator.GREATER_EQUAL),
        ("contains", FilterOperator.CONTAINS),
        ("STARTSWITH", FilterOperator.STARTS_WITH),
        ("endsWith", FilterOperator.ENDS_WITH),
        ("like", FilterOperator.EQUALS),
        (None, FilterOperator.EQUALS),
    ],
)
def test_parse_operator(raw, expected):
    assert FilterOperator.parse(raw) is expected


def test_loose_equals_coerces_numbers_and_flags():
    assert loose_equals("1", 1)
    assert loose_equals(2.0, "2")
    assert loose_equals(True, "TRUE")
    assert not loose_equals("01a", "1a ")
    assert not loose_equals(True, 1)
    assert loose_equals("Ana", "Ana")
    assert not loose_equals("Ana", "ana")


def test_has_valid_id_discards_placeholders():
    assert has_valid_id({"id": "7"})
    assert has_valid_id({"id": "abc"})
    assert not has_valid_id({"id": ""})
    assert not has_valid_id({"id": "0"})
    assert not has_valid_id({"id": 0})
    assert not has_valid_id({"name": "no id"})


def test_is_active_only_false_deactivates():
    assert is_active({"active": True})
    assert is_active({"active": ""})
    assert is_active({})
    assert not is_active({"active": False})
    assert not is_active({"active": "FALSE"})


def test_valid_records_active_switch():
    rows = RECORDS + [{"id": "", "name": "blank", "age": "", "active": ""}]

    assert [r["name"] for r in valid_records(rows)] == ["Ana Lopez", "bob", "Carla"]
    assert [r["name"] for r in valid_records(rows, include_inactive=False)] == ["Ana Lopez", "Carla"]


def test_equality_filter_returns_matching_subset():
    result = apply_filter(RECORDS, RecordFilter(column="ID", value=2))

    assert result == [RECORDS[1]]


@pytest.mark.parametrize(
    "operator, value, names",
    [
        (FilterOperator.NOT_EQUALS, "bob", ["Ana Lopez", "Carla"]),
        (FilterOperator.GREATER, "26", ["Ana Lopez"]),
        (FilterOperator.LESS_EQUAL, 31, ["Ana Lopez", "bob"]),
        (FilterOperator.CONTAINS, "LOP", ["Ana Lopez"]),
        (FilterOperator.STARTS_WITH, "B", ["bob"]),
        (FilterOperator.ENDS_WITH, "LA", ["Carla"]),
    ],
)
def test_operators(operator, value, names):
    column = "age" if operator in (FilterOperator.GREATER, FilterOperator.LESS_EQUAL) else "name"

    result = apply_filter(RECORDS, RecordFilter(column=column, value=value, operator=operator))

    assert [r["name"] for r in result] == names


def test_single_mode_returns_first_match():
    result = apply_filter(RECORDS, RecordFilter(column="age", value=0, operator=">", multiple=False))

    assert result == RECORDS[0]


def test_no_match_raises_not_found():
    with pytest.raises(RecordNotFoundError) as excinfo:
        apply_filter(RECORDS, RecordFilter(column="name", value="Zed"))

    assert excinfo.value.details == {"column": "name", "operator": "=", "value": "Zed"}


def test_unknown_column_raises_not_found():
    with pytest.raises(RecordNotFoundError):
        apply_filter(RECORDS, RecordFilter(column="missing", value="x"))


def test_no_filter_returns_copies():
    result = apply_filter(RECORDS)

    assert result == RECORDS
    result[0]["name"] = "changed"
    assert RECORDS[0]["name"] == "Ana Lopez"


def test_filter_from_mapping():
    record_filter = RecordFilter.from_mapping({"column": "age", "value": 30, "operator": "<", "multiple": False})

    assert record_filter == RecordFilter(column="age", value=30, operator=FilterOperator.LESS, multiple=False)


@pytest.mark.parametrize("raw, expected", [("false", False), ("0", False), ("True", True), ("yes", True), (0, False)])
def test_filter_from_mapping_parses_text_multiple(raw, expected):
    record_filter = RecordFilter.from_mapping({"column": "name", "value": "bob", "multiple": raw})

    assert record_filter.multiple is expected


def test_filter_from_mapping_defaults_to_multiple():
    assert RecordFilter.from_mapping({"column": "name"}).multiple is True


def test_as_flag():
    assert as_flag(None) is False
    assert as_flag(None, True) is True
    assert as_flag(False, True) is False
    assert as_flag(" ON ") is True
    assert as_flag("off", True) is False
