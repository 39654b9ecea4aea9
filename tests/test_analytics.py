from datetime import date
from decimal import Decimal

import pytest

from analytics import (
    category_delta,
    group_totals,
    headline_total,
    month_over_month,
    monthly_summaries,
    recurring_expenses,
    slice_total,
    top_expenses,
    visible_groups,
    year_summary,
)
from records import DEFAULT_CATEGORIES, ExpenseRecord


def _rec(
    record_id: str,
    d: date,
    amount: int,
    category: str = "Food",
    note=None,
    method: str = "Cash",
) -> ExpenseRecord:
    return ExpenseRecord(record_id, d, amount, method, category, note)


def test_group_totals_follow_label_order_with_percent_of_slice() -> None:
    records = [
        _rec("a", date(2026, 3, 1), 300),
        _rec("b", date(2026, 3, 2), 600, category="Transport"),
        _rec("c", date(2026, 3, 3), 100),
    ]

    groups = group_totals(records, "category", ["Food", "Transport", "Health"])

    assert [(g.name, g.count, g.total_cents) for g in groups] == [
        ("Food", 2, 400),
        ("Transport", 1, 600),
        ("Health", 0, 0),
    ]
    assert groups[0].percent == pytest.approx(40.0)
    assert groups[1].percent == pytest.approx(60.0)
    assert [g.name for g in visible_groups(groups)] == ["Food", "Transport"]


def test_group_totals_by_payment_method() -> None:
    records = [
        _rec("a", date(2026, 3, 1), 250, method="Wise"),
        _rec("b", date(2026, 3, 2), 750, method="Cash"),
    ]
    groups = group_totals(records, "payment_method", ["Cash", "Wise"])
    assert [(g.name, g.percent) for g in groups] == [("Cash", 75.0), ("Wise", 25.0)]


def test_group_totals_on_empty_slice_are_zero() -> None:
    groups = group_totals([], "category", ["Food"])
    assert groups[0].total_cents == 0
    assert groups[0].percent == 0.0
    assert visible_groups(groups) == []


def test_unknown_dimension_is_rejected() -> None:
    with pytest.raises(ValueError):
        group_totals([], "note", ["Food"])


def test_investments_count_in_groups_but_not_in_headline() -> None:
    records = [
        _rec("a", date(2026, 3, 1), 1000),
        _rec("b", date(2026, 3, 2), 5000, category="Investments"),
    ]

    assert headline_total(records) == 1000
    assert slice_total(records) == 6000
    groups = {g.name: g for g in group_totals(records, "category", DEFAULT_CATEGORIES)}
    assert groups["Investments"].percent == pytest.approx(5000 / 6000 * 100)


def test_category_delta_percent_cases() -> None:
    grew = category_delta("Food", 1500, 1000)
    assert (grew.delta_cents, grew.pct, grew.comparable) == (500, 50.0, True)
    assert grew.display_pct == 50.0

    new = category_delta("Food", 500, 0)
    assert new.pct == 100.0
    assert new.display_pct is None

    gone = category_delta("Food", 0, 800)
    assert (gone.delta_cents, gone.pct) == (-800, -100.0)
    assert gone.display_pct is None

    assert category_delta("Food", 0, 0).pct == 0.0


def test_month_over_month_rows_and_headline() -> None:
    current = [
        _rec("a", date(2026, 3, 1), 1500),
        _rec("b", date(2026, 3, 2), 200, category="Health"),
    ]
    previous = [
        _rec("c", date(2026, 2, 1), 1000),
        _rec("d", date(2026, 2, 2), 400, category="Transport"),
    ]

    report = month_over_month(current, previous, DEFAULT_CATEGORIES)

    assert [row.name for row in report.rows] == ["Food", "Health", "Transport"]
    assert report.headline_current_cents == 1700
    assert report.headline_previous_cents == 1400
    assert report.headline_delta_cents == 300
    assert report.headline_pct == pytest.approx(300 / 1400 * 100)
    assert report.has_previous
    payload = report.to_dict()
    assert payload["headline"]["pct"] == 21.4
    assert payload["rows"][1]["display_pct"] is None


def test_month_over_month_without_previous_data() -> None:
    report = month_over_month([_rec("a", date(2026, 3, 1), 900)], [], DEFAULT_CATEGORIES)
    assert not report.has_previous
    assert report.headline_pct == 0.0
    assert report.rows[0].pct == 100.0


def test_headline_delta_ignores_investments() -> None:
    current = [
        _rec("a", date(2026, 3, 1), 1000),
        _rec("b", date(2026, 3, 2), 5000, category="Investments"),
    ]
    previous = [_rec("c", date(2026, 2, 1), 1000)]

    report = month_over_month(current, previous, DEFAULT_CATEGORIES)

    assert report.headline_delta_cents == 0
    assert report.headline_pct == 0.0
    assert "Investments" in [row.name for row in report.rows]


def test_top_expenses_limits_to_ten_and_keeps_tie_order() -> None:
    records = [
        _rec(f"e{i}", date(2026, 3, 1), 1000 if i in (3, 7) else 100 + i)
        for i in range(15)
    ]

    top = top_expenses(records)

    assert len(top) == 10
    assert [t.record.id for t in top[:3]] == ["e3", "e7", "e14"]
    assert [t.rank for t in top] == list(range(1, 11))


def test_top_expenses_equal_amounts_keep_input_order() -> None:
    records = [_rec(f"e{i}", date(2026, 3, 1), 500) for i in range(4)]
    assert [t.record.id for t in top_expenses(records, limit=3)] == ["e0", "e1", "e2"]
    assert top_expenses([]) == []


def test_recurring_groups_by_note_across_months() -> None:
    records = [
        _rec("n1", date(2026, 1, 15), 1500, category="Other", note="Netflix"),
        _rec("n2", date(2026, 3, 3), 1700, category="Home", note="netflix "),
        _rec("d1", date(2026, 1, 20), 9000, category="Health", note="Dentist"),
        _rec("f1", date(2026, 1, 4), 500),
        _rec("f2", date(2026, 2, 4), 700),
    ]

    groups = recurring_expenses(records)

    assert [g.key for g in groups] == ["netflix", "food"]
    netflix = groups[0]
    assert netflix.label == "Netflix"
    assert netflix.category == "Other"
    assert (netflix.month_count, netflix.count) == (2, 2)
    assert netflix.average_cents == Decimal("1600")
    assert (netflix.min_cents, netflix.max_cents) == (1500, 1700)


def test_recurring_needs_two_distinct_months() -> None:
    records = [
        _rec("a", date(2026, 1, 1), 100, note="Gym"),
        _rec("b", date(2026, 1, 20), 100, note="Gym"),
    ]
    assert recurring_expenses(records) == []


def test_recurring_months_from_different_years_are_distinct() -> None:
    records = [
        _rec("a", date(2025, 12, 1), 100, note="Gym"),
        _rec("b", date(2026, 1, 1), 100, note="Gym"),
    ]
    assert recurring_expenses(records)[0].month_count == 2


def test_year_summary_uses_resolved_monthly_rates() -> None:
    records = [
        _rec("a", date(2026, 1, 10), 100000),
        _rec("b", date(2026, 3, 10), 300000),
        _rec("c", date(2026, 3, 11), 50000),
        _rec("old", date(2025, 3, 11), 999999),
    ]
    overrides = {"2026-03": "1500"}

    months = monthly_summaries(records, 2026, overrides, Decimal("1000"))
    assert months[0].total_usd == Decimal("1.00")
    assert months[2].total_usd == Decimal("2.33")
    assert months[2].has_custom_rate
    assert months[3].rate == Decimal("1500") and not months[3].has_custom_rate

    summary = year_summary(records, 2026, overrides, Decimal("1000"))
    assert summary.total_cents == 450000
    assert summary.months_with_data == 2
    assert summary.monthly_average_cents == Decimal("225000")
    assert summary.busiest_month.name == "March"
    assert summary.quietest_month.name == "January"
    assert summary.total_usd == Decimal("3.33")


def test_year_summary_of_empty_year() -> None:
    summary = year_summary([], 2026, {})
    assert summary.total_cents == 0
    assert summary.busiest_month is None
    assert summary.to_dict()["monthly_average_cents"] == "0"


def test_breakdown_sums_to_slice_total_and_percents_to_hundred() -> None:
    records = [
        _rec(f"r{i}", date(2026, 4, 1 + i), 137 * (i + 1), category=cat)
        for i, cat in enumerate(["Food", "Health", "Investments", "Food", "Travel", "Home"])
    ]

    groups = group_totals(records, "category", DEFAULT_CATEGORIES)

    assert sum(g.total_cents for g in groups) == slice_total(records)
    assert all(0 <= g.percent <= 100 for g in groups)
    assert sum(g.percent for g in groups) == pytest.approx(100.0)


def test_note_seen_in_a_single_month_is_not_recurring() -> None:
    records = [_rec("a", date(2026, 1, 3), 1500, note="Netflix")]
    assert recurring_expenses(records) == []


def test_category_idle_in_both_months_is_dropped() -> None:
    report = month_over_month(
        [_rec("a", date(2026, 3, 1), 500)],
        [_rec("b", date(2026, 2, 1), 500, category="Health")],
        ["Food", "Health", "Travel"],
    )
    assert [row.name for row in report.rows] == ["Food", "Health"]
    health = report.rows[1]
    assert (health.delta_cents, health.pct) == (-500, -100.0)
