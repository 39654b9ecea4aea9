from decimal import Decimal

import pytest

from numeric_input import NumericInput, format_input, parse_display


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1500", "1.500"),
        ("1234567", "1.234.567"),
        ("1500.50", "1.500,50"),
        ("1.500.000", "1.500.000"),
        ("1.500", "1.500"),
        ("12,3,4", "12,34"),
        ("$ 2.000,5", "2.000,5"),
        ("abc", ""),
        ("", ""),
        ("1.5\n", "15"),
        ("1.\u0661", "1"),
    ],
)
def test_format_input(raw: str, expected: str) -> None:
    assert format_input(raw) == expected


@pytest.mark.parametrize("raw", ["1500", "1500.50", "1.234.567,89", "12,34", "100.000"])
def test_format_input_is_idempotent(raw: str) -> None:
    once = format_input(raw)
    assert format_input(once) == once


def test_typing_an_amount_keystroke_by_keystroke() -> None:
    field = NumericInput()
    for raw in ("1", "15", "150"):
        field.on_change(raw)
    assert field.on_change("1500") == ("1.500", 5)
    assert field.on_change("1.500,") == ("1.500,", 6)
    assert field.on_change("1.500,5") == ("1.500,5", 7)
    assert field.numeric_value == Decimal("1500.5")


def test_reset_shows_stored_amount() -> None:
    field = NumericInput()
    assert field.reset(1500.5) == "1.500,5"
    assert field.caret == len("1.500,5")
    assert NumericInput(Decimal("1500")).display == "1.500"
    assert field.reset(None) == ""


def test_caret_stays_next_to_inserted_digit() -> None:
    field = NumericInput(1500)
    assert field.on_change("12.500", caret=2) == ("12.500", 2)
    assert field.on_change("12.5000", caret=7) == ("125.000", 7)
    assert field.on_change(".500", caret=0) == ("500", 0)


def test_caret_counts_stray_characters_it_passes() -> None:
    assert NumericInput().on_change("1a500", caret=2) == ("1.500", 3)
    assert NumericInput().on_change("1a500", caret=1) == ("1.500", 1)


def test_caret_after_pasted_decimal_point() -> None:
    assert NumericInput().on_change("1500.50", caret=7) == ("1.500,50", 8)
    assert NumericInput().on_change("1500.50", caret=5) == ("1.500,50", 6)
    assert NumericInput().on_change("1500.500", caret=5) == ("1.500.500", 5)


def test_paste_with_decimal_point() -> None:
    field = NumericInput()
    field.on_change("1500.50")
    assert field.display == "1.500,50"
    assert field.to_dict() == {
        "display": "1.500,50",
        "caret": 8,
        "numeric_value": "1500.50",
    }


def test_empty_field_has_no_value() -> None:
    field = NumericInput()
    field.on_change("")
    assert field.numeric_value is None
    assert parse_display("") is None
    assert parse_display(",") is None


def test_typed_and_reset_values_converge() -> None:
    typed = NumericInput()
    typed.on_change("1500")
    typed.on_change("1.500,")
    typed.on_change("1.500,5")

    loaded = NumericInput()
    loaded.reset(1500.5)

    assert typed.display == loaded.display == "1.500,5"
    assert typed.numeric_value == loaded.numeric_value == Decimal("1500.5")
