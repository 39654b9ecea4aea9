from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Union

from analytics import (
    compare_years,
    group_totals,
    headline_total,
    month_over_month,
    monthly_summaries,
    recurring_expenses,
    top_expenses,
    visible_groups,
    year_summary,
)
from config import get_settings
from csv_utils import build_template, export_expenses, parse_import, parse_upload
from periods import month_label, partition, previous_month, records_for_year
from rates import has_custom_rate, month_key, parse_month_key, resolve_rate, to_usd
from records import ExpenseRecord, LabelSet, UserLabels
from schemas import ExpenseIn, ExpenseUpdate, ImportRow, SettingsIn
from store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


class LabelValidationError(ValueError):
    pass


def _check_label(labels: LabelSet, kind: str, value: str) -> str:
    canonical = labels.canonical(value)
    if not canonical:
        raise LabelValidationError(labels.unknown_message(kind, value))
    return canonical


def _check_labels(labels: UserLabels, payment_method: str, category: str) -> tuple[str, str]:
    return (
        _check_label(labels.payment_methods, "payment method", payment_method),
        _check_label(labels.categories, "category", category),
    )


class ExpenseService:
    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def list_for_year(self, year: int) -> list[ExpenseRecord]:
        return self.store.list_by_year(self.user_id, year)

    def create(self, data: ExpenseIn) -> ExpenseRecord:
        labels = self.store.get_settings(self.user_id)
        method, category = _check_labels(labels, data.payment_method, data.category)
        record = self.store.create(
            self.user_id,
            {
                "date": data.date,
                "amount_cents": data.amount_cents,
                "payment_method": method,
                "category": category,
                "note": data.note,
            },
        )
        logger.info(f"expense_created: user={self.user_id} id={record.id}")
        return record

    def update(self, record_id: str, data: ExpenseUpdate) -> ExpenseRecord:
        changes = data.changes()
        if "payment_method" in changes or "category" in changes:
            # Untouched labels are left alone even if the user has since
            # removed them from their set.
            labels = self.store.get_settings(self.user_id)
            if "payment_method" in changes:
                changes["payment_method"] = _check_label(
                    labels.payment_methods, "payment method", changes["payment_method"]
                )
            if "category" in changes:
                changes["category"] = _check_label(
                    labels.categories, "category", changes["category"]
                )
        record = self.store.update(self.user_id, record_id, changes)
        logger.info(f"expense_updated: user={self.user_id} id={record_id}")
        return record

    def delete(self, record_id: str) -> None:
        self.store.delete(self.user_id, record_id)
        logger.info(f"expense_deleted: user={self.user_id} id={record_id}")

    def delete_many(self, record_ids: Iterable[str]) -> int:
        removed = self.store.delete_many(self.user_id, record_ids)
        logger.info(f"expenses_bulk_deleted: user={self.user_id} count={removed}")
        return removed

    def export_year(self, year: int) -> str:
        return export_expenses(self.list_for_year(year))


class RateService:
    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id
        self.default_rate = get_settings().default_usd_rate

    def rates(self) -> dict[str, Decimal]:
        return self.store.get_rates(self.user_id)

    def upsert(self, key: str, rate: Decimal) -> dict[str, Decimal]:
        parse_month_key(key)
        if rate <= 0:
            raise ValueError("Rate must be positive")
        updated = self.store.upsert_rate(self.user_id, key, rate)
        logger.info(f"usd_rate_upserted: user={self.user_id} month={key} rate={rate}")
        return updated

    def resolve(self, key: str) -> dict[str, object]:
        parse_month_key(key)
        overrides = self.rates()
        return {
            "month_key": key,
            "rate": resolve_rate(key, overrides, self.default_rate),
            "has_custom_rate": has_custom_rate(key, overrides),
        }


class SettingsService:
    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def get(self) -> UserLabels:
        return self.store.get_settings(self.user_id)

    def save(self, data: SettingsIn) -> UserLabels:
        labels = UserLabels.from_lists(data.payment_methods, data.categories)
        self.store.save_settings(self.user_id, labels)
        logger.info(
            f"settings_saved: user={self.user_id} "
            f"payment_methods={len(labels.payment_methods)} "
            f"categories={len(labels.categories)}"
        )
        return labels


@dataclass
class ImportResult:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class ImportService:
    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def _parse(
        self, content: Union[str, bytes], filename: Optional[str]
    ) -> tuple[list[ImportRow], list[str]]:
        labels = self.store.get_settings(self.user_id)
        if isinstance(content, bytes):
            return parse_upload(filename, content, labels)
        return parse_import(content, labels)

    def template(self) -> bytes:
        return build_template(self.store.get_settings(self.user_id))

    def preview(
        self, content: Union[str, bytes], filename: Optional[str] = None
    ) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = self._parse(content, filename)
        preview_rows = [
            {
                "row": row.row,
                "date": row.date.isoformat(),
                "amount_cents": row.amount_cents,
                "payment_method": row.payment_method,
                "category": row.category,
                "note": row.note,
            }
            for row in rows
        ]
        return preview_rows, errors

    def commit(
        self, content: Union[str, bytes], filename: Optional[str] = None
    ) -> ImportResult:
        """Submit valid rows one at a time; a failing row does not stop the rest."""
        rows, errors = self._parse(content, filename)
        result = ImportResult(skipped=len(errors), errors=list(errors))
        for row in rows:
            try:
                self.store.create(
                    self.user_id,
                    {
                        "date": row.date,
                        "amount_cents": row.amount_cents,
                        "payment_method": row.payment_method,
                        "category": row.category,
                        "note": row.note,
                    },
                )
                result.succeeded += 1
            except StoreError as exc:
                result.failed += 1
                result.errors.append(f"Row {row.row}: {exc}")
        logger.info(
            f"import_commit: user={self.user_id} succeeded={result.succeeded} "
            f"failed={result.failed} skipped={result.skipped}"
        )
        return result


class DashboardService:
    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id
        self.default_rate = get_settings().default_usd_rate

    def _working_set(self, year: int, month: Optional[int] = None) -> list[ExpenseRecord]:
        records = self.store.list_by_year(self.user_id, year)
        if month == 1:
            records = records + self.store.list_by_year(self.user_id, year - 1)
        return records

    def month(self, year: int, month: int) -> dict[str, object]:
        records = self._working_set(year, month)
        labels = self.store.get_settings(self.user_id)
        overrides = self.store.get_rates(self.user_id)
        slices = partition(records, year, month)

        key = month_key(year, month)
        rate = resolve_rate(key, overrides, self.default_rate)
        total = headline_total(slices.current)
        prev_year, prev_month = previous_month(year, month)

        return {
            "year": year,
            "month": month,
            "month_key": key,
            "label": month_label(year, month),
            "previous_label": month_label(prev_year, prev_month),
            "rate": str(rate),
            "has_custom_rate": has_custom_rate(key, overrides),
            "total_cents": total,
            "total_usd": str(to_usd(total, rate)),
            "year_total_cents": headline_total(slices.year_to_date),
            "count": len(slices.current),
            "by_category": [
                g.to_dict()
                for g in visible_groups(
                    group_totals(slices.current, "category", labels.categories)
                )
            ],
            "by_payment_method": [
                g.to_dict()
                for g in visible_groups(
                    group_totals(slices.current, "payment_method", labels.payment_methods)
                )
            ],
            "comparison": month_over_month(
                slices.current, slices.previous, labels.categories
            ).to_dict(),
            "top": [item.to_dict() for item in top_expenses(slices.current)],
            "expenses": [r.to_dict() for r in slices.current],
        }

    def year(self, year: int) -> dict[str, object]:
        records = records_for_year(self.store.list_by_year(self.user_id, year), year)
        previous = self.store.list_by_year(self.user_id, year - 1)
        labels = self.store.get_settings(self.user_id)
        overrides = self.store.get_rates(self.user_id)

        categories = sorted(
            visible_groups(group_totals(records, "category", labels.categories)),
            key=lambda g: g.total_cents,
            reverse=True,
        )
        return {
            "year": year,
            "summary": year_summary(records, year, overrides, self.default_rate).to_dict(),
            "months": [
                m.to_dict()
                for m in monthly_summaries(records, year, overrides, self.default_rate)
            ],
            "categories": [g.to_dict() for g in categories],
            "recurring": [g.to_dict() for g in recurring_expenses(records)],
            "previous_year": compare_years(records, previous, labels.categories).to_dict(),
        }
