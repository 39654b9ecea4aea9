from __future__ import annotations

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Union

RateValue = Union[Decimal, int, float, str]

DEFAULT_RATE = Decimal("1000")

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def month_key(year: int, month: int) -> str:
    """Zero-padded ``YYYY-MM`` key; ``month`` is 1-based."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    return f"{year:04d}-{month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    if not isinstance(key, str) or not _MONTH_KEY_RE.match(key):
        raise ValueError(f"Invalid month key: {key!r} (expected YYYY-MM)")
    year, month = key.split("-")
    return int(year), int(month)


def as_rate(value: RateValue) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def resolve_rate(
    key: str,
    overrides: Mapping[str, RateValue],
    default: Decimal = DEFAULT_RATE,
) -> Decimal:
    """Rate for ``key``: the exact override, else the latest earlier one.

    Keys are compared as strings. That is only chronological because every
    key is a zero-padded ``YYYY-MM``.
    """
    if key in overrides:
        return as_rate(overrides[key])
    prior = [k for k in overrides if k <= key]
    if not prior:
        return default
    return as_rate(overrides[max(prior)])


def has_custom_rate(key: str, overrides: Mapping[str, RateValue]) -> bool:
    return key in overrides


def to_usd(amount_cents: int, rate: Decimal) -> Decimal:
    if rate <= 0:
        return Decimal("0.00")
    return (Decimal(amount_cents) / Decimal(100) / rate).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


def rate_to_micros(rate: Decimal) -> int:
    return int(
        (rate * Decimal("1000000")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


def micros_to_rate(micros: int) -> Decimal:
    rate = Decimal(micros) / Decimal("1000000")
    if rate == rate.to_integral_value():
        return rate.quantize(Decimal("1"))
    return rate.normalize()
