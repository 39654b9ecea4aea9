"""Locale amount entry: ``1.234.567,89`` style display with a tracked caret.

Grouping separator is ``.`` and the decimal marker is ``,``. Each keystroke
runs the raw field text through normalize, sanitize, single-marker and
regroup steps, then moves the caret so it stays next to the same digit.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

GROUP_SEP = "."
DECIMAL_MARK = ","

_GROUPING_RE = re.compile(r"\B(?=(\d{3})+(?!\d))")
_DISALLOWED_RE = re.compile(r"[^0-9,]")

Number = Union[Decimal, int, float, str, None]


def _decimal_dot_index(raw: str) -> int:
    """Index of a ``.`` acting as decimal marker, or -1.

    A lone dot with no comma and at most two digits after it (``1500.50``)
    is a decimal point; any other dot is a grouping separator.
    """
    if DECIMAL_MARK in raw or raw.count(".") != 1:
        return -1
    idx = raw.index(".")
    after = raw[idx + 1 :]
    if len(after) <= 2 and re.fullmatch(r"[0-9]*", after):
        return idx
    return -1


def normalize(raw: str) -> str:
    dot = _decimal_dot_index(raw)
    if dot >= 0:
        return raw[:dot] + DECIMAL_MARK + raw[dot + 1 :]
    return raw.replace(".", "")


def sanitize(value: str) -> str:
    clean = _DISALLOWED_RE.sub("", value)
    first = clean.find(DECIMAL_MARK)
    if first == -1:
        return clean
    return clean[: first + 1] + clean[first + 1 :].replace(DECIMAL_MARK, "")


def format_grouped(raw: str) -> str:
    if not raw:
        return ""
    int_part, sep, dec_part = raw.partition(DECIMAL_MARK)
    grouped = _GROUPING_RE.sub(GROUP_SEP, int_part)
    return f"{grouped}{DECIMAL_MARK}{dec_part}" if sep else grouped


def format_input(raw: str) -> str:
    return format_grouped(sanitize(normalize(raw)))


def number_to_display(value: Number) -> str:
    """Display string for a stored amount: ``1500.5`` gives ``"1.500,5"``."""
    if value is None or value == "":
        return ""
    as_decimal = value if isinstance(value, Decimal) else Decimal(str(value))
    plain = format(as_decimal, "f")
    return format_grouped(plain.replace(".", DECIMAL_MARK))


def parse_display(display: str) -> Optional[Decimal]:
    plain = display.replace(GROUP_SEP, "").replace(DECIMAL_MARK, ".")
    if not any(ch.isdigit() for ch in plain):
        return None
    try:
        return Decimal(plain)
    except InvalidOperation:
        return None


def _kept_before(raw: str, caret: int) -> int:
    """Non-separator characters left of ``caret``; a decimal dot counts."""
    dot = _decimal_dot_index(raw)
    return sum(1 for idx, ch in enumerate(raw[:caret]) if ch != GROUP_SEP or idx == dot)


def place_caret(display: str, logical: int) -> int:
    pos = len(display)
    count = 0
    for idx, ch in enumerate(display):
        if count >= logical:
            pos = idx
            break
        if ch != GROUP_SEP:
            count += 1
    return pos


class NumericInput:
    """State of one amount field in an edit form."""

    def __init__(self, initial: Number = None) -> None:
        self.display = number_to_display(initial)
        self.caret = len(self.display)

    def on_change(self, raw: str, caret: Optional[int] = None) -> tuple[str, int]:
        if caret is None:
            caret = len(raw)
        caret = max(0, min(caret, len(raw)))
        new_display = format_input(raw)
        self.caret = place_caret(new_display, _kept_before(raw, caret))
        self.display = new_display
        return self.display, self.caret

    def reset(self, value: Number = None) -> str:
        self.display = number_to_display(value)
        self.caret = len(self.display)
        return self.display

    @property
    def numeric_value(self) -> Optional[Decimal]:
        if not self.display:
            return None
        return parse_display(self.display)

    def to_dict(self) -> dict[str, object]:
        value = self.numeric_value
        return {
            "display": self.display,
            "caret": self.caret,
            "numeric_value": str(value) if value is not None else None,
        }
