import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: dt.date
    amount_cents: int = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=60)
    category: str = Field(..., min_length=1, max_length=60)
    note: Optional[str] = Field(default=None, max_length=200)

    @field_validator("payment_method", "category")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("note")
    @classmethod
    def _blank_note_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: Optional[dt.date] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    payment_method: Optional[str] = Field(default=None, min_length=1, max_length=60)
    category: Optional[str] = Field(default=None, min_length=1, max_length=60)
    note: Optional[str] = Field(default=None, max_length=200)

    def changes(self) -> dict[str, object]:
        data = self.model_dump(exclude_unset=True)
        for key in ("date", "amount_cents", "payment_method", "category"):
            if key in data and data[key] is None:
                raise ValueError(f"{key} cannot be cleared")
        for key in ("payment_method", "category"):
            if key in data:
                data[key] = data[key].strip()
        if "note" in data:
            data["note"] = (data["note"] or "").strip() or None
        return data


class BulkDeleteIn(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class RateIn(BaseModel):
    month_key: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    rate: Decimal = Field(..., gt=0)


class SettingsIn(BaseModel):
    payment_methods: list[str] = Field(..., min_length=1)
    categories: list[str] = Field(..., min_length=1)


class SessionIn(BaseModel):
    subject: str = Field(..., min_length=1, max_length=64)
    bridge_secret: str


class FormatAmountIn(BaseModel):
    raw: str = Field(default="", max_length=64)
    caret: Optional[int] = Field(default=None, ge=0)
    value: Optional[Decimal] = Field(default=None, ge=0)


class ImportRow(BaseModel):
    row: int
    date: dt.date
    amount_cents: int = Field(..., gt=0)
    payment_method: str
    category: str
    note: Optional[str]
