"""Derived figures over an in-memory slice of expense records.

Every function here is pure: it reads only its arguments, and an empty slice
yields empty or zero results.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Literal, Mapping, Optional, Sequence

from periods import MONTH_NAMES, as_calendar_date, records_for_year
from rates import DEFAULT_RATE, RateValue, has_custom_rate, month_key, resolve_rate, to_usd
from records import INVESTMENTS_CATEGORY, ExpenseRecord

Dimension = Literal["category", "payment_method"]

TOP_EXPENSES_LIMIT = 10
RECURRING_LIMIT = 15


def _percent(part: int, whole: int) -> float:
    return (part / whole * 100) if whole else 0.0


def slice_total(records: Iterable[ExpenseRecord]) -> int:
    return sum(r.amount_cents for r in records)


def headline_total(records: Iterable[ExpenseRecord]) -> int:
    """Spending total used in headlines; investments are not spending."""
    return sum(r.amount_cents for r in records if r.category != INVESTMENTS_CATEGORY)


@dataclass(frozen=True)
class GroupTotal:
    name: str
    count: int
    total_cents: int
    percent: float

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "count": self.count,
            "total_cents": self.total_cents,
            "percent": round(self.percent, 1),
        }


def group_totals(
    records: Sequence[ExpenseRecord],
    dimension: Dimension,
    labels: Iterable[str],
) -> list[GroupTotal]:
    if dimension not in ("category", "payment_method"):
        raise ValueError(f"Unknown dimension: {dimension}")
    total = slice_total(records)
    counts: dict[str, int] = {}
    sums: dict[str, int] = {}
    for record in records:
        key = getattr(record, dimension)
        counts[key] = counts.get(key, 0) + 1
        sums[key] = sums.get(key, 0) + record.amount_cents
    return [
        GroupTotal(
            name=label,
            count=counts.get(label, 0),
            total_cents=sums.get(label, 0),
            percent=_percent(sums.get(label, 0), total),
        )
        for label in labels
    ]


def visible_groups(groups: Iterable[GroupTotal]) -> list[GroupTotal]:
    return [g for g in groups if g.total_cents > 0]


@dataclass(frozen=True)
class CategoryDelta:
    name: str
    current_cents: int
    previous_cents: int
    delta_cents: int
    pct: float

    @property
    def comparable(self) -> bool:
        return self.current_cents > 0 and self.previous_cents > 0

    @property
    def display_pct(self) -> Optional[float]:
        # A category seen in only one period has no meaningful ratio.
        return self.pct if self.comparable else None

    def to_dict(self) -> dict[str, object]:
        display = self.display_pct
        return {
            "name": self.name,
            "current_cents": self.current_cents,
            "previous_cents": self.previous_cents,
            "delta_cents": self.delta_cents,
            "pct": round(self.pct, 1),
            "display_pct": round(display, 1) if display is not None else None,
            "comparable": self.comparable,
        }


@dataclass(frozen=True)
class DeltaReport:
    headline_current_cents: int
    headline_previous_cents: int
    headline_delta_cents: int
    headline_pct: float
    rows: list[CategoryDelta]
    has_previous: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "headline": {
                "current_cents": self.headline_current_cents,
                "previous_cents": self.headline_previous_cents,
                "delta_cents": self.headline_delta_cents,
                "pct": round(self.headline_pct, 1),
            },
            "rows": [row.to_dict() for row in self.rows],
            "has_previous": self.has_previous,
        }


def category_delta(name: str, current: int, previous: int) -> CategoryDelta:
    delta = current - previous
    if previous > 0:
        pct = delta / previous * 100
    elif current > 0:
        pct = 100.0
    else:
        pct = 0.0
    return CategoryDelta(name, current, previous, delta, pct)


def month_over_month(
    current: Sequence[ExpenseRecord],
    previous: Sequence[ExpenseRecord],
    categories: Iterable[str],
) -> DeltaReport:
    cur_by_cat = {g.name: g.total_cents for g in group_totals(current, "category", categories)}
    prev_by_cat = {g.name: g.total_cents for g in group_totals(previous, "category", cur_by_cat)}

    rows = [
        category_delta(name, cur_by_cat[name], prev_by_cat.get(name, 0))
        for name in cur_by_cat
        if cur_by_cat[name] > 0 or prev_by_cat.get(name, 0) > 0
    ]
    rows.sort(key=lambda row: row.current_cents, reverse=True)

    head_cur = headline_total(current)
    head_prev = headline_total(previous)
    head_delta = head_cur - head_prev
    return DeltaReport(
        headline_current_cents=head_cur,
        headline_previous_cents=head_prev,
        headline_delta_cents=head_delta,
        headline_pct=_percent(head_delta, head_prev),
        rows=rows,
        has_previous=len(previous) > 0,
    )


@dataclass(frozen=True)
class TopExpense:
    rank: int
    record: ExpenseRecord
    percent: float

    def to_dict(self) -> dict[str, object]:
        return {
            "rank": self.rank,
            "percent": round(self.percent, 1),
            **self.record.to_dict(),
        }


def top_expenses(
    records: Sequence[ExpenseRecord], limit: int = TOP_EXPENSES_LIMIT
) -> list[TopExpense]:
    total = slice_total(records)
    # sorted() is stable, so equal amounts keep their input order.
    ordered = sorted(records, key=lambda r: r.amount_cents, reverse=True)[:limit]
    return [
        TopExpense(rank=idx, record=record, percent=_percent(record.amount_cents, total))
        for idx, record in enumerate(ordered, start=1)
    ]


@dataclass(frozen=True)
class RecurringGroup:
    key: str
    label: str
    category: str
    month_count: int
    count: int
    total_cents: int
    average_cents: Decimal
    min_cents: int
    max_cents: int

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "label": self.label,
            "category": self.category,
            "month_count": self.month_count,
            "count": self.count,
            "total_cents": self.total_cents,
            "average_cents": str(self.average_cents),
            "min_cents": self.min_cents,
            "max_cents": self.max_cents,
        }


def recurring_key(record: ExpenseRecord) -> str:
    return (record.note or record.category).lower().strip()


def recurring_expenses(
    records: Sequence[ExpenseRecord], limit: int = RECURRING_LIMIT
) -> list[RecurringGroup]:
    """Notes (or categories, for blank notes) seen in two or more months.

    Matching is plain case-insensitive equality of the trimmed text, so
    distinct expenses sharing a note merge and typos split a series. The
    first record seen for a key supplies the label and the category.
    """
    buckets: dict[str, dict] = {}
    for record in records:
        key = recurring_key(record)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = {
                "label": record.note or record.category,
                "category": record.category,
                "months": set(),
                "amounts": [],
            }
            buckets[key] = bucket
        d = as_calendar_date(record.date)
        bucket["months"].add((d.year, d.month))
        bucket["amounts"].append(record.amount_cents)

    groups = []
    for key, bucket in buckets.items():
        if len(bucket["months"]) < 2:
            continue
        amounts: list[int] = bucket["amounts"]
        total = sum(amounts)
        groups.append(
            RecurringGroup(
                key=key,
                label=bucket["label"],
                category=bucket["category"],
                month_count=len(bucket["months"]),
                count=len(amounts),
                total_cents=total,
                average_cents=(Decimal(total) / len(amounts)).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                ),
                min_cents=min(amounts),
                max_cents=max(amounts),
            )
        )
    groups.sort(key=lambda g: (-g.month_count, -g.total_cents))
    return groups[:limit]


@dataclass(frozen=True)
class MonthSummary:
    month: int
    name: str
    total_cents: int
    count: int
    rate: Decimal
    has_custom_rate: bool
    total_usd: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "month": self.month,
            "name": self.name,
            "total_cents": self.total_cents,
            "count": self.count,
            "rate": str(self.rate),
            "has_custom_rate": self.has_custom_rate,
            "total_usd": str(self.total_usd),
        }


def monthly_summaries(
    records: Sequence[ExpenseRecord],
    year: int,
    overrides: Mapping[str, RateValue],
    default_rate: Decimal = DEFAULT_RATE,
) -> list[MonthSummary]:
    in_year = records_for_year(records, year)
    totals = [0] * 12
    counts = [0] * 12
    for record in in_year:
        idx = as_calendar_date(record.date).month - 1
        totals[idx] += record.amount_cents
        counts[idx] += 1

    out = []
    for idx, name in enumerate(MONTH_NAMES):
        key = month_key(year, idx + 1)
        rate = resolve_rate(key, overrides, default_rate)
        out.append(
            MonthSummary(
                month=idx + 1,
                name=name,
                total_cents=totals[idx],
                count=counts[idx],
                rate=rate,
                has_custom_rate=has_custom_rate(key, overrides),
                total_usd=to_usd(totals[idx], rate),
            )
        )
    return out


@dataclass(frozen=True)
class YearSummary:
    year: int
    total_cents: int
    total_usd: Decimal
    months_with_data: int
    monthly_average_cents: Decimal
    busiest_month: Optional[MonthSummary]
    quietest_month: Optional[MonthSummary]

    def to_dict(self) -> dict[str, object]:
        return {
            "year": self.year,
            "total_cents": self.total_cents,
            "total_usd": str(self.total_usd),
            "months_with_data": self.months_with_data,
            "monthly_average_cents": str(self.monthly_average_cents),
            "busiest_month": self.busiest_month.to_dict() if self.busiest_month else None,
            "quietest_month": self.quietest_month.to_dict()
            if self.quietest_month
            else None,
        }


def year_summary(
    records: Sequence[ExpenseRecord],
    year: int,
    overrides: Mapping[str, RateValue],
    default_rate: Decimal = DEFAULT_RATE,
) -> YearSummary:
    months = monthly_summaries(records, year, overrides, default_rate)
    active = [m for m in months if m.total_cents > 0]
    total = sum(m.total_cents for m in months)
    average = (
        (Decimal(total) / len(active)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        if active
        else Decimal("0")
    )
    return YearSummary(
        year=year,
        total_cents=total,
        total_usd=sum((m.total_usd for m in months), Decimal("0.00")),
        months_with_data=len(active),
        monthly_average_cents=average,
        # max/min keep the first month on ties
        busiest_month=max(active, key=lambda m: m.total_cents) if active else None,
        quietest_month=min(active, key=lambda m: m.total_cents) if active else None,
    )


def compare_years(
    current_year: Sequence[ExpenseRecord],
    previous_year: Sequence[ExpenseRecord],
    categories: Iterable[str],
) -> DeltaReport:
    return month_over_month(current_year, previous_year, categories)
