from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from rates import parse_month_key
from records import UserLabels
from store import LedgerStore, StoreError

logger = logging.getLogger(__name__)

# Spanish labels of the flat db.json ledger and the defaults they became.
PAYMENT_METHOD_TRANSLATIONS = {
    "credito": "Credit",
    "crédito": "Credit",
    "efectivo": "Cash",
}

CATEGORY_TRANSLATIONS = {
    "creditos": "Loans",
    "créditos": "Loans",
    "fijos": "Fixed",
    "comida": "Food",
    "regalos": "Gifts",
    "ropa": "Clothing",
    "salidas": "Going out",
    "transporte": "Transport",
    "otros": "Other",
    "inversiones": "Investments",
    "peluquería": "Hairdresser",
    "peluqueria": "Hairdresser",
    "educacion": "Education",
    "educación": "Education",
    "salud": "Health",
    "casa": "Home",
    "viaje españa": "Travel",
    "viaje": "Travel",
}


@dataclass(frozen=True)
class LegacyExpense:
    legacy_id: str
    date: date
    amount_cents: int
    payment_method: str
    category: str
    note: Optional[str]


@dataclass(frozen=True)
class LegacyLabelRow:
    kind: str
    legacy_label: str
    mapped_label: str
    expense_count: int
    known: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "legacy_label": self.legacy_label,
            "mapped_label": self.mapped_label,
            "expense_count": self.expense_count,
            "known": self.known,
        }


@dataclass(frozen=True)
class LegacyJsonPreview:
    expenses_count: int
    invalid_count: int
    rates_count: int
    min_date: Optional[date]
    max_date: Optional[date]
    label_rows: list[LegacyLabelRow]
    warnings: list[str]

    def to_dict(self) -> dict[str, object]:
        return {
            "expenses_count": self.expenses_count,
            "invalid_count": self.invalid_count,
            "rates_count": self.rates_count,
            "min_date": self.min_date.isoformat() if self.min_date else None,
            "max_date": self.max_date.isoformat() if self.max_date else None,
            "labels": [row.to_dict() for row in self.label_rows],
            "warnings": self.warnings,
        }


@dataclass
class LegacyImportResult:
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    rates: int = 0
    added_labels: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "skipped": self.skipped,
            "rates": self.rates,
            "added_labels": self.added_labels,
            "errors": self.errors,
        }


@dataclass
class _LegacyDocument:
    expenses: list[LegacyExpense]
    rates: dict[str, Decimal]
    errors: list[str]
    warnings: list[str]


def translate_payment_method(label: str) -> str:
    label = label.strip()
    return PAYMENT_METHOD_TRANSLATIONS.get(label.lower(), label)


def translate_category(label: str) -> str:
    label = label.strip()
    return CATEGORY_TRANSLATIONS.get(label.lower(), label)


def _parse_amount_cents(value: object) -> int:
    try:
        cents = int((Decimal(str(value).strip()) * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid legacy amount: {value}") from exc
    if cents <= 0:
        raise ValueError("Legacy amount must be positive")
    return cents


def _parse_expense(raw: dict) -> LegacyExpense:
    if not isinstance(raw, dict):
        raise ValueError("Entry is not an object")
    fecha = str(raw.get("fecha") or "").strip()
    if not fecha:
        raise ValueError("Missing fecha")
    try:
        parsed_date = date.fromisoformat(fecha[:10])
    except ValueError as exc:
        raise ValueError(f"Invalid fecha: {fecha}") from exc
    forma = str(raw.get("forma") or "").strip()
    concepto = str(raw.get("concepto") or "").strip()
    if not forma:
        raise ValueError("Missing forma")
    if not concepto:
        raise ValueError("Missing concepto")
    note = str(raw.get("nota") or "").strip() or None
    return LegacyExpense(
        legacy_id=str(raw.get("id") or ""),
        date=parsed_date,
        amount_cents=_parse_amount_cents(raw.get("cantidad")),
        payment_method=translate_payment_method(forma),
        category=translate_category(concepto),
        note=note,
    )


def load_legacy_document(content: str) -> _LegacyDocument:
    try:
        data = json.loads(content.lstrip("\ufeff"))
    except json.JSONDecodeError as exc:
        raise ValueError("Legacy file is not valid JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("gastos", []), list):
        raise ValueError("Legacy file must be an object with a 'gastos' list")

    warnings: list[str] = []
    raw_rates = data.get("usdRates")
    if raw_rates is None:
        raw_rates = {}
        if "usdRate" in data:
            warnings.append(
                "Single usdRate found; it is not tied to a month and was dropped."
            )
    if not isinstance(raw_rates, dict):
        raise ValueError("'usdRates' must be an object")

    rates: dict[str, Decimal] = {}
    for key, value in sorted(raw_rates.items()):
        try:
            parse_month_key(key)
            rate = Decimal(str(value))
        except (ValueError, InvalidOperation):
            warnings.append(f"Skipped rate {key!r}: invalid month or value")
            continue
        if rate <= 0:
            warnings.append(f"Skipped rate {key!r}: must be positive")
            continue
        rates[key] = rate

    expenses: list[LegacyExpense] = []
    errors: list[str] = []
    for idx, raw in enumerate(data.get("gastos", []), start=1):
        try:
            expenses.append(_parse_expense(raw))
        except ValueError as exc:
            errors.append(f"Entry {idx}: {exc}")
    return _LegacyDocument(expenses, rates, errors, warnings)


class LegacyJsonImportService:
    """Brings a flat ``{"gastos": [...], "usdRates": {...}}`` ledger into a store."""

    def __init__(self, store: LedgerStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    def _label_rows(
        self, expenses: list[LegacyExpense], labels: UserLabels
    ) -> list[LegacyLabelRow]:
        counts: dict[tuple[str, str], int] = {}
        for expense in expenses:
            for kind, label in (
                ("payment_method", expense.payment_method),
                ("category", expense.category),
            ):
                counts[(kind, label)] = counts.get((kind, label), 0) + 1
        rows = []
        for (kind, label), count in sorted(counts.items()):
            label_set = labels.payment_methods if kind == "payment_method" else labels.categories
            canonical = label_set.canonical(label)
            rows.append(
                LegacyLabelRow(
                    kind=kind,
                    legacy_label=label,
                    mapped_label=canonical or label,
                    expense_count=count,
                    known=canonical is not None,
                )
            )
        return rows

    def preview(self, content: str) -> LegacyJsonPreview:
        doc = load_legacy_document(content)
        labels = self.store.get_settings(self.user_id)
        label_rows = self._label_rows(doc.expenses, labels)
        warnings = list(doc.warnings)
        unknown = [row for row in label_rows if not row.known]
        if unknown:
            warnings.append(
                "Labels not in your settings will be added on import: "
                + ", ".join(row.legacy_label for row in unknown)
            )
        dates = [e.date for e in doc.expenses]
        return LegacyJsonPreview(
            expenses_count=len(doc.expenses),
            invalid_count=len(doc.errors),
            rates_count=len(doc.rates),
            min_date=min(dates) if dates else None,
            max_date=max(dates) if dates else None,
            label_rows=label_rows,
            warnings=warnings + doc.errors,
        )

    def commit(self, content: str) -> LegacyImportResult:
        doc = load_legacy_document(content)
        labels = self.store.get_settings(self.user_id)
        result = LegacyImportResult(skipped=len(doc.errors), errors=list(doc.errors))

        methods = labels.payment_methods
        categories = labels.categories
        for row in self._label_rows(doc.expenses, labels):
            if row.known:
                continue
            if row.kind == "payment_method":
                methods = methods.with_label(row.legacy_label)
            else:
                categories = categories.with_label(row.legacy_label)
            result.added_labels.append(row.legacy_label)
        if result.added_labels:
            labels = UserLabels(payment_methods=methods, categories=categories)
            self.store.save_settings(self.user_id, labels)

        for key, rate in doc.rates.items():
            self.store.upsert_rate(self.user_id, key, rate)
            result.rates += 1

        for idx, expense in enumerate(doc.expenses, start=1):
            try:
                self.store.create(
                    self.user_id,
                    {
                        "date": expense.date,
                        "amount_cents": expense.amount_cents,
                        "payment_method": labels.payment_methods.canonical(
                            expense.payment_method
                        ),
                        "category": labels.categories.canonical(expense.category),
                        "note": expense.note,
                    },
                )
                result.imported += 1
            except StoreError as exc:
                result.failed += 1
                result.errors.append(f"Expense {expense.legacy_id or idx}: {exc}")

        logger.info(
            f"legacy_json_import: user={self.user_id} imported={result.imported} "
            f"failed={result.failed} skipped={result.skipped} rates={result.rates}"
        )
        return result
