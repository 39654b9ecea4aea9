from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Iterable, Iterator, Optional

from rapidfuzz.distance import Levenshtein


INVESTMENTS_CATEGORY = "Investments"

DEFAULT_PAYMENT_METHODS = (
    "Lemon",
    "Credit",
    "Wise",
    "Uala",
    "Mercado Pago",
    "Cash",
)

DEFAULT_CATEGORIES = (
    "Loans",
    "Fixed",
    "Food",
    "Gifts",
    "Clothing",
    "Going out",
    "Transport",
    "Other",
    INVESTMENTS_CATEGORY,
    "Hairdresser",
    "Education",
    "Health",
    "Home",
    "Travel",
)


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    date: date
    amount_cents: int
    payment_method: str
    category: str
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "category": self.category,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExpenseRecord":
        created_raw = data.get("created_at")
        return cls(
            id=str(data["id"]),
            date=date.fromisoformat(str(data["date"])[:10]),
            amount_cents=int(data["amount_cents"]),
            payment_method=str(data["payment_method"]),
            category=str(data["category"]),
            note=data.get("note") or None,
            created_at=datetime.fromisoformat(created_raw) if created_raw else None,
        )

    def with_changes(self, **changes: object) -> "ExpenseRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class LabelSet:
    """Ordered, case-insensitively unique labels chosen by the user."""

    labels: tuple[str, ...] = ()

    @classmethod
    def of(cls, labels: Iterable[str]) -> "LabelSet":
        seen: set[str] = set()
        ordered: list[str] = []
        for raw in labels:
            label = (raw or "").strip()
            if not label or label.lower() in seen:
                continue
            seen.add(label.lower())
            ordered.append(label)
        return cls(tuple(ordered))

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)

    def __len__(self) -> int:
        return len(self.labels)

    def __contains__(self, label: object) -> bool:
        return isinstance(label, str) and self.canonical(label) is not None

    def canonical(self, label: str) -> Optional[str]:
        wanted = label.strip().lower()
        for existing in self.labels:
            if existing.lower() == wanted:
                return existing
        return None

    def with_label(self, label: str) -> "LabelSet":
        return LabelSet.of([*self.labels, label])

    def suggest(self, label: str, max_distance: int = 2) -> Optional[str]:
        """Closest existing label within ``max_distance`` edits, if unique."""
        wanted = label.strip().lower()
        best_distance: Optional[int] = None
        best: list[str] = []
        for existing in self.labels:
            dist = int(Levenshtein.distance(wanted, existing.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [existing]
            elif dist == best_distance:
                best.append(existing)
        if best_distance is None or best_distance > max_distance or len(best) > 1:
            return None
        return best[0]

    def unknown_message(self, kind: str, label: str) -> str:
        hint = self.suggest(label)
        message = f"Unknown {kind} '{label}'"
        if hint:
            message += f" (did you mean '{hint}'?)"
        return message


@dataclass(frozen=True)
class UserLabels:
    payment_methods: LabelSet = field(
        default_factory=lambda: LabelSet.of(DEFAULT_PAYMENT_METHODS)
    )
    categories: LabelSet = field(
        default_factory=lambda: LabelSet.of(DEFAULT_CATEGORIES)
    )

    @classmethod
    def from_lists(
        cls,
        payment_methods: Optional[Iterable[str]],
        categories: Optional[Iterable[str]],
    ) -> "UserLabels":
        methods = LabelSet.of(payment_methods or ())
        cats = LabelSet.of(categories or ())
        return cls(
            payment_methods=methods or LabelSet.of(DEFAULT_PAYMENT_METHODS),
            categories=cats or LabelSet.of(DEFAULT_CATEGORIES),
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "payment_methods": list(self.payment_methods),
            "categories": list(self.categories),
        }
