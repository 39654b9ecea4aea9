from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from records import UserLabels
from store import (
    JsonLedgerStore,
    RecordNotFound,
    SqlLedgerStore,
    StoreError,
    get_store,
)


@pytest.fixture(params=["json", "sql"])
def store(request, tmp_path):
    if request.param == "json":
        yield JsonLedgerStore(tmp_path / "db.json")
        return
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield SqlLedgerStore(session)


def _expense(d: date, amount: int = 1000, **extra) -> dict:
    data = {
        "date": d,
        "amount_cents": amount,
        "payment_method": "Cash",
        "category": "Food",
        "note": None,
    }
    data.update(extra)
    return data


def test_list_by_year_is_newest_first_and_scoped(store) -> None:
    older = store.create("u1", _expense(date(2026, 1, 5)))
    newer = store.create("u1", _expense(date(2026, 3, 1), note="Dinner"))
    store.create("u1", _expense(date(2025, 12, 31)))
    store.create("u2", _expense(date(2026, 2, 1)))

    records = store.list_by_year("u1", 2026)

    assert [r.id for r in records] == [newer.id, older.id]
    assert records[0].note == "Dinner"
    assert records[0].date == date(2026, 3, 1)


def test_update_and_get(store) -> None:
    record = store.create("u1", _expense(date(2026, 3, 1)))

    updated = store.update("u1", record.id, {"category": "Health", "amount_cents": 2500})

    assert (updated.category, updated.amount_cents) == ("Health", 2500)
    assert store.get("u1", record.id).category == "Health"


def test_other_users_records_are_not_found(store) -> None:
    record = store.create("u1", _expense(date(2026, 3, 1)))

    with pytest.raises(RecordNotFound):
        store.get("u2", record.id)
    with pytest.raises(RecordNotFound):
        store.update("u2", record.id, {"note": "x"})
    with pytest.raises(RecordNotFound):
        store.delete("u2", record.id)
    with pytest.raises(RecordNotFound):
        store.delete("u1", "missing")


def test_delete_many_only_touches_own_records(store) -> None:
    mine = [store.create("u1", _expense(date(2026, 3, d))) for d in (1, 2, 3)]
    theirs = store.create("u2", _expense(date(2026, 3, 1)))

    removed = store.delete_many("u1", [mine[0].id, mine[1].id, theirs.id, "nope"])

    assert removed == 2
    assert [r.id for r in store.list_by_year("u1", 2026)] == [mine[2].id]
    assert len(store.list_by_year("u2", 2026)) == 1


def test_rate_upsert_replaces_month(store) -> None:
    assert store.get_rates("u1") == {}

    store.upsert_rate("u1", "2026-03", Decimal("1450.5"))
    rates = store.upsert_rate("u1", "2026-01", Decimal("1200"))
    assert rates == {"2026-01": Decimal("1200"), "2026-03": Decimal("1450.5")}

    rates = store.upsert_rate("u1", "2026-03", Decimal("1500"))
    assert rates["2026-03"] == Decimal("1500")
    assert store.get_rates("u2") == {}


def test_settings_default_then_saved(store) -> None:
    assert store.get_settings("u1") == UserLabels()

    labels = UserLabels.from_lists(["Wise", "Cash"], ["Food", "Rent"])
    store.save_settings("u1", labels)

    assert store.get_settings("u1").to_dict() == {
        "payment_methods": ["Wise", "Cash"],
        "categories": ["Food", "Rent"],
    }


def test_json_store_unreadable_file_raises_store_error(tmp_path) -> None:
    path = tmp_path / "db.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        JsonLedgerStore(path).list_by_year("u1", 2026)


@pytest.mark.parametrize("content", ["[]", "null", "3"])
def test_json_store_non_object_file_raises_store_error(tmp_path, content: str) -> None:
    path = tmp_path / "db.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(StoreError):
        JsonLedgerStore(path).get_settings("u1")


def test_get_store_follows_backend_setting(monkeypatch, tmp_path) -> None:
    from config import get_settings

    monkeypatch.setenv("EXPENSES_STORAGE_BACKEND", "json")
    monkeypatch.setenv("EXPENSES_JSON_PATH", str(tmp_path / "ledger.json"))
    get_settings.cache_clear()
    assert isinstance(get_store(), JsonLedgerStore)

    monkeypatch.setenv("EXPENSES_STORAGE_BACKEND", "sql")
    get_settings.cache_clear()
    with pytest.raises(ValueError):
        get_store()
