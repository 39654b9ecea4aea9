from datetime import date, datetime

import pytest

from periods import PeriodSelection, as_calendar_date, month_label, partition
from records import ExpenseRecord


def _rec(record_id: str, d: date, amount: int = 1000) -> ExpenseRecord:
    return ExpenseRecord(record_id, d, amount, "Cash", "Food")


def test_january_previous_slice_wraps_to_december() -> None:
    records = [
        _rec("dec", date(2025, 12, 20)),
        _rec("jan", date(2026, 1, 5)),
        _rec("feb", date(2026, 2, 1)),
    ]

    slices = partition(records, 2026, 1)

    assert [r.id for r in slices.current] == ["jan"]
    assert [r.id for r in slices.previous] == ["dec"]
    assert [r.id for r in slices.year_to_date] == ["jan", "feb"]


def test_empty_partition_is_empty() -> None:
    slices = partition([], 2026, 5)
    assert slices.current == [] and slices.previous == [] and slices.year_to_date == []


def test_month_label_uses_short_name_and_two_digit_year() -> None:
    assert month_label(2026, 2) == "Feb26"
    assert month_label(2025, 12) == "Dec25"


def test_selection_defaults_to_today() -> None:
    selection = PeriodSelection.from_query(None, None, today=date(2026, 3, 15))
    assert (selection.year, selection.month) == (2026, 3)
    assert (selection.previous.year, selection.previous.month) == (2026, 2)
    assert PeriodSelection(2026, 1).previous == PeriodSelection(2025, 12)


def test_selection_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        PeriodSelection.from_query("2026", "13")
    with pytest.raises(ValueError):
        PeriodSelection.from_query("abc", "1")


def test_date_strings_are_read_as_calendar_dates() -> None:
    assert as_calendar_date("2026-03-01") == date(2026, 3, 1)
    assert as_calendar_date(datetime(2026, 3, 1, 23, 59)) == date(2026, 3, 1)
