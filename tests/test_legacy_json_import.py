import json
from datetime import date
from decimal import Decimal

import pytest

from legacy_json_import import LegacyJsonImportService, load_legacy_document
from store import JsonLedgerStore

LEGACY_DB = {
    "gastos": [
        {
            "id": "1700000000000",
            "fecha": "2026-01-15",
            "cantidad": 15000,
            "forma": "Efectivo",
            "concepto": "Comida",
            "nota": "Super",
        },
        {
            "id": "1700000000001",
            "fecha": "2026-02-03",
            "cantidad": "2500.5",
            "forma": "Lemon",
            "concepto": "Mascotas",
            "nota": "",
        },
        {"id": "1700000000002", "fecha": "", "cantidad": 10, "forma": "Lemon"},
    ],
    "usdRates": {"2026-01": 1200, "2026-02": "1450.5", "bad": 3},
}


def test_load_maps_spanish_fields_and_labels() -> None:
    doc = load_legacy_document(json.dumps(LEGACY_DB))

    first = doc.expenses[0]
    assert (first.date, first.amount_cents) == (date(2026, 1, 15), 1500000)
    assert (first.payment_method, first.category, first.note) == ("Cash", "Food", "Super")
    assert doc.expenses[1].amount_cents == 250050
    assert doc.expenses[1].note is None
    assert doc.errors == ["Entry 3: Missing fecha"]
    assert doc.rates == {"2026-01": Decimal("1200"), "2026-02": Decimal("1450.5")}
    assert doc.warnings == ["Skipped rate 'bad': invalid month or value"]


def test_single_rate_shape_is_migrated_to_empty_map() -> None:
    doc = load_legacy_document(json.dumps({"gastos": [], "usdRate": 1000}))
    assert doc.rates == {}
    assert len(doc.warnings) == 1


def test_invalid_documents_are_rejected() -> None:
    with pytest.raises(ValueError):
        load_legacy_document("not json")
    with pytest.raises(ValueError):
        load_legacy_document(json.dumps({"gastos": {}}))


def test_preview_lists_unknown_labels(tmp_path) -> None:
    store = JsonLedgerStore(tmp_path / "db.json")

    preview = LegacyJsonImportService(store, "u1").preview(json.dumps(LEGACY_DB))

    assert preview.expenses_count == 2
    assert preview.invalid_count == 1
    assert preview.rates_count == 2
    assert (preview.min_date, preview.max_date) == (date(2026, 1, 15), date(2026, 2, 3))
    unknown = [row.legacy_label for row in preview.label_rows if not row.known]
    assert unknown == ["Mascotas"]
    assert store.list_by_year("u1", 2026) == []


def test_commit_writes_records_rates_and_new_labels(tmp_path) -> None:
    store = JsonLedgerStore(tmp_path / "db.json")

    result = LegacyJsonImportService(store, "u1").commit(json.dumps(LEGACY_DB))

    assert (result.imported, result.skipped, result.rates) == (2, 1, 2)
    assert result.added_labels == ["Mascotas"]
    assert "Mascotas" in store.get_settings("u1").categories
    assert store.get_rates("u1")["2026-02"] == Decimal("1450.5")
    categories = sorted(r.category for r in store.list_by_year("u1", 2026))
    assert categories == ["Food", "Mascotas"]
