from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from pathlib import Path
from typing import Iterable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import Expense, UsdRate, UserSettingsRow
from rates import as_rate, micros_to_rate, rate_to_micros
from records import ExpenseRecord, UserLabels

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("date", "amount_cents", "payment_method", "category", "note")


class StoreError(RuntimeError):
    """The backing store could not be read or written; safe to retry."""


class RecordNotFound(LookupError):
    pass


class LedgerStore(Protocol):
    def list_by_year(self, user_id: str, year: int) -> list[ExpenseRecord]: ...

    def get(self, user_id: str, record_id: str) -> ExpenseRecord: ...

    def create(self, user_id: str, data: dict[str, object]) -> ExpenseRecord: ...

    def update(
        self, user_id: str, record_id: str, changes: dict[str, object]
    ) -> ExpenseRecord: ...

    def delete(self, user_id: str, record_id: str) -> None: ...

    def delete_many(self, user_id: str, record_ids: Iterable[str]) -> int: ...

    def get_rates(self, user_id: str) -> dict[str, Decimal]: ...

    def upsert_rate(
        self, user_id: str, month_key: str, rate: Decimal
    ) -> dict[str, Decimal]: ...

    def get_settings(self, user_id: str) -> UserLabels: ...

    def save_settings(self, user_id: str, labels: UserLabels) -> None: ...


def new_record_id() -> str:
    return uuid.uuid4().hex


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def _sorted_newest_first(records: list[ExpenseRecord]) -> list[ExpenseRecord]:
    return sorted(records, key=lambda r: r.date, reverse=True)


_FILE_LOCKS: dict[str, threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _FILE_LOCKS_GUARD:
        lock = _FILE_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _FILE_LOCKS[key] = lock
        return lock


class JsonLedgerStore:
    """Whole ledger kept in one JSON document, rewritten on every change."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _empty(self) -> dict:
        return {"expenses": [], "usd_rates": {}, "settings": {}}

    def _read(self) -> dict:
        try:
            if not self.path.exists():
                data = self._empty()
                self._write(data)
                return data
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception(f"json_store_read_failed: path={self.path}")
            raise StoreError(f"Could not read ledger file {self.path}") from exc
        if not isinstance(data, dict):
            logger.error(f"json_store_bad_shape: path={self.path}")
            raise StoreError(f"Ledger file {self.path} does not hold a JSON object")
        for key, value in self._empty().items():
            data.setdefault(key, value)
        return data

    def _write(self, data: dict) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), "utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.exception(f"json_store_write_failed: path={self.path}")
            raise StoreError(f"Could not write ledger file {self.path}") from exc

    @staticmethod
    def _to_record(row: dict) -> ExpenseRecord:
        return ExpenseRecord.from_dict(row)

    def _find(self, data: dict, user_id: str, record_id: str) -> int:
        for idx, row in enumerate(data["expenses"]):
            if row.get("user_id") == user_id and row.get("id") == record_id:
                return idx
        raise RecordNotFound(f"Expense {record_id} not found")

    def list_by_year(self, user_id: str, year: int) -> list[ExpenseRecord]:
        start, end = _year_bounds(year)
        with self._lock:
            data = self._read()
        records = [
            self._to_record(row)
            for row in data["expenses"]
            if row.get("user_id") == user_id
        ]
        return _sorted_newest_first([r for r in records if start <= r.date <= end])

    def get(self, user_id: str, record_id: str) -> ExpenseRecord:
        with self._lock:
            data = self._read()
        return self._to_record(data["expenses"][self._find(data, user_id, record_id)])

    def create(self, user_id: str, data: dict[str, object]) -> ExpenseRecord:
        record = ExpenseRecord(
            id=new_record_id(),
            date=data["date"],
            amount_cents=int(data["amount_cents"]),
            payment_method=str(data["payment_method"]),
            category=str(data["category"]),
            note=data.get("note") or None,
            created_at=datetime.utcnow(),
        )
        with self._lock:
            doc = self._read()
            doc["expenses"].append({"user_id": user_id, **record.to_dict()})
            self._write(doc)
        return record

    def update(
        self, user_id: str, record_id: str, changes: dict[str, object]
    ) -> ExpenseRecord:
        with self._lock:
            doc = self._read()
            idx = self._find(doc, user_id, record_id)
            current = self._to_record(doc["expenses"][idx])
            updated = current.with_changes(
                **{k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
            )
            doc["expenses"][idx] = {"user_id": user_id, **updated.to_dict()}
            self._write(doc)
        return updated

    def delete(self, user_id: str, record_id: str) -> None:
        with self._lock:
            doc = self._read()
            idx = self._find(doc, user_id, record_id)
            del doc["expenses"][idx]
            self._write(doc)

    def delete_many(self, user_id: str, record_ids: Iterable[str]) -> int:
        wanted = set(record_ids)
        with self._lock:
            doc = self._read()
            before = len(doc["expenses"])
            doc["expenses"] = [
                row
                for row in doc["expenses"]
                if not (row.get("user_id") == user_id and row.get("id") in wanted)
            ]
            removed = before - len(doc["expenses"])
            if removed:
                self._write(doc)
        return removed

    def get_rates(self, user_id: str) -> dict[str, Decimal]:
        with self._lock:
            data = self._read()
        raw = data["usd_rates"].get(user_id, {})
        return {key: as_rate(value) for key, value in sorted(raw.items())}

    def upsert_rate(
        self, user_id: str, month_key: str, rate: Decimal
    ) -> dict[str, Decimal]:
        with self._lock:
            doc = self._read()
            doc["usd_rates"].setdefault(user_id, {})[month_key] = str(rate)
            self._write(doc)
            raw = doc["usd_rates"][user_id]
        return {key: as_rate(value) for key, value in sorted(raw.items())}

    def get_settings(self, user_id: str) -> UserLabels:
        with self._lock:
            data = self._read()
        saved = data["settings"].get(user_id) or {}
        return UserLabels.from_lists(
            saved.get("payment_methods"), saved.get("categories")
        )

    def save_settings(self, user_id: str, labels: UserLabels) -> None:
        with self._lock:
            doc = self._read()
            doc["settings"][user_id] = labels.to_dict()
            self._write(doc)


def _db_errors(func):
    @wraps(func)
    def wrapper(self: "SqlLedgerStore", *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"sql_store_failed: op={func.__name__}")
            raise StoreError(f"Database error during {func.__name__}") from exc

    return wrapper


class SqlLedgerStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _to_record(row: Expense) -> ExpenseRecord:
        return ExpenseRecord(
            id=row.id,
            date=row.date,
            amount_cents=row.amount_cents,
            payment_method=row.payment_method,
            category=row.category,
            note=row.note,
            created_at=row.created_at,
        )

    def _get_row(self, user_id: str, record_id: str) -> Expense:
        row = self.session.get(Expense, record_id)
        if not row or row.user_id != user_id:
            raise RecordNotFound(f"Expense {record_id} not found")
        return row

    @_db_errors
    def list_by_year(self, user_id: str, year: int) -> list[ExpenseRecord]:
        start, end = _year_bounds(year)
        stmt = (
            select(Expense)
            .where(Expense.user_id == user_id, Expense.date.between(start, end))
            .order_by(Expense.date.desc(), Expense.created_at.asc())
        )
        return [self._to_record(row) for row in self.session.scalars(stmt)]

    @_db_errors
    def get(self, user_id: str, record_id: str) -> ExpenseRecord:
        return self._to_record(self._get_row(user_id, record_id))

    @_db_errors
    def create(self, user_id: str, data: dict[str, object]) -> ExpenseRecord:
        row = Expense(
            id=new_record_id(),
            user_id=user_id,
            date=data["date"],
            amount_cents=int(data["amount_cents"]),
            payment_method=str(data["payment_method"]),
            category=str(data["category"]),
            note=data.get("note") or None,
        )
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return self._to_record(row)

    @_db_errors
    def update(
        self, user_id: str, record_id: str, changes: dict[str, object]
    ) -> ExpenseRecord:
        row = self._get_row(user_id, record_id)
        for key, value in changes.items():
            if key in EDITABLE_FIELDS:
                setattr(row, key, value)
        self.session.commit()
        self.session.refresh(row)
        return self._to_record(row)

    @_db_errors
    def delete(self, user_id: str, record_id: str) -> None:
        row = self._get_row(user_id, record_id)
        self.session.delete(row)
        self.session.commit()

    @_db_errors
    def delete_many(self, user_id: str, record_ids: Iterable[str]) -> int:
        ids = list(set(record_ids))
        if not ids:
            return 0
        result = self.session.execute(
            delete(Expense).where(Expense.user_id == user_id, Expense.id.in_(ids))
        )
        self.session.commit()
        return int(result.rowcount or 0)

    @_db_errors
    def get_rates(self, user_id: str) -> dict[str, Decimal]:
        stmt = (
            select(UsdRate)
            .where(UsdRate.user_id == user_id)
            .order_by(UsdRate.month_key)
        )
        return {
            row.month_key: micros_to_rate(row.rate_micros)
            for row in self.session.scalars(stmt)
        }

    @_db_errors
    def upsert_rate(
        self, user_id: str, month_key: str, rate: Decimal
    ) -> dict[str, Decimal]:
        row = self.session.scalar(
            select(UsdRate).where(
                UsdRate.user_id == user_id, UsdRate.month_key == month_key
            )
        )
        if not row:
            row = UsdRate(user_id=user_id, month_key=month_key, rate_micros=0)
            self.session.add(row)
        row.rate_micros = rate_to_micros(rate)
        self.session.commit()
        return self.get_rates(user_id)

    @_db_errors
    def get_settings(self, user_id: str) -> UserLabels:
        row = self.session.get(UserSettingsRow, user_id)
        if not row:
            return UserLabels()
        return UserLabels.from_lists(
            json.loads(row.payment_methods_json), json.loads(row.categories_json)
        )

    @_db_errors
    def save_settings(self, user_id: str, labels: UserLabels) -> None:
        row = self.session.get(UserSettingsRow, user_id)
        if not row:
            row = UserSettingsRow(
                user_id=user_id, payment_methods_json="[]", categories_json="[]"
            )
            self.session.add(row)
        row.payment_methods_json = json.dumps(list(labels.payment_methods))
        row.categories_json = json.dumps(list(labels.categories))
        self.session.commit()


def get_store(session: Optional[Session] = None) -> LedgerStore:
    settings = get_settings()
    if settings.storage_backend == "json":
        return JsonLedgerStore(settings.json_path)
    if session is None:
        raise ValueError("The SQL store needs a database session")
    return SqlLedgerStore(session)
