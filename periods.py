from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from config import get_settings
from records import ExpenseRecord

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def as_calendar_date(value: Union[date, str]) -> date:
    # Bare ISO strings carry no time of day; reading them as calendar fields
    # keeps a UTC-midnight parse from landing on the previous local day.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def month_label(year: int, month: int) -> str:
    return f"{MONTH_NAMES[month - 1][:3]}{str(year)[2:]}"


@dataclass(frozen=True)
class PeriodSelection:
    year: int
    month: int

    @classmethod
    def from_query(
        cls,
        year: Optional[str],
        month: Optional[str],
        *,
        today: Optional[date] = None,
    ) -> "PeriodSelection":
        today = today or local_today()
        try:
            year_value = int(year) if year else today.year
            month_value = int(month) if month else today.month
        except ValueError as exc:
            raise ValueError("Year and month must be integers") from exc
        if not 1970 <= year_value <= 3000:
            raise ValueError(f"Year out of range: {year_value}")
        if not 1 <= month_value <= 12:
            raise ValueError(f"Month out of range: {month_value}")
        return cls(year_value, month_value)

    @property
    def previous(self) -> "PeriodSelection":
        return PeriodSelection(*previous_month(self.year, self.month))


@dataclass(frozen=True)
class PeriodSlices:
    current: list[ExpenseRecord]
    previous: list[ExpenseRecord]
    year_to_date: list[ExpenseRecord]


def records_for_month(
    records: Iterable[ExpenseRecord], year: int, month: int
) -> list[ExpenseRecord]:
    out = []
    for record in records:
        d = as_calendar_date(record.date)
        if d.year == year and d.month == month:
            out.append(record)
    return out


def records_for_year(records: Iterable[ExpenseRecord], year: int) -> list[ExpenseRecord]:
    return [r for r in records if as_calendar_date(r.date).year == year]


def partition(records: Sequence[ExpenseRecord], year: int, month: int) -> PeriodSlices:
    prev_year, prev_month = previous_month(year, month)
    return PeriodSlices(
        current=records_for_month(records, year, month),
        previous=records_for_month(records, prev_year, prev_month),
        year_to_date=records_for_year(records, year),
    )
