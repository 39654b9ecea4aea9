import csv
import numbers
import re
import zipfile
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from typing import Iterable, Optional, Sequence

import pandas as pd
from openpyxl.utils import get_column_letter

from numeric_input import format_input, parse_display
from records import ExpenseRecord, UserLabels
from schemas import ImportRow

EXPORT_HEADER = ["Date", "Amount", "PaymentMethod", "Category", "Note"]

# Accepted header spellings, Spanish ones included.
COLUMN_ALIASES = {
    "date": ("Date", "date", "Fecha", "fecha"),
    "amount": ("Amount", "amount", "Cantidad", "cantidad"),
    "payment_method": (
        "PaymentMethod",
        "payment_method",
        "Payment method",
        "Forma",
        "forma",
    ),
    "category": ("Category", "category", "Concepto", "concepto"),
    "note": ("Note", "note", "Nota", "nota"),
}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y")

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm")
TEMPLATE_SHEET = "Expenses"
REFERENCE_SHEET = "Reference"
# Day zero of the 1900 workbook date system, after its leap-year bug.
EXCEL_EPOCH = date(1899, 12, 30)


def sanitize_csv_value(value: str) -> str:
    """Neutralise cells a spreadsheet would evaluate as formulas."""
    if not value or value.strip() == "":
        return ""

    value = value.strip()
    if value.startswith(("=", "+", "-", "@", "\t", "\r")):
        return "\t" + value
    if re.match(r"^(cmd|powershell|bash|sh)\b|^http[s]?://", value, re.IGNORECASE):
        return "\t" + value
    return value


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}' (use DD/MM/YYYY or YYYY-MM-DD)")


def parse_amount(value: str) -> int:
    """Amount text in either ``1.500,50`` or ``1500.50`` style to cents."""
    clean = value.strip().replace("$", "").replace(" ", "")
    if clean.startswith("-"):
        raise ValueError("Amount must be positive")
    amount: Optional[Decimal] = parse_display(format_input(clean))
    if amount is None:
        raise ValueError("Invalid amount")
    try:
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents <= 0:
        raise ValueError("Amount must be positive")
    return cents


def _cell(raw: dict, field: str) -> str:
    for name in COLUMN_ALIASES[field]:
        value = raw.get(name)
        if value is not None:
            return str(value).strip()
    return ""


def _field_for_header(header: str) -> Optional[str]:
    for field, names in COLUMN_ALIASES.items():
        if header in names:
            return field
    return None


def _spreadsheet_cell(field: Optional[str], value: object) -> str:
    """Render a workbook cell as the text a CSV export would have held."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        if field == "date":
            # Undated cells carry the raw serial day number.
            return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()
        if float(value).is_integer():
            return str(int(value))
        return f"{float(value):.2f}"
    return str(value).strip()


def read_spreadsheet(data: bytes) -> list[dict[str, str]]:
    """Rows of the first sheet of an xlsx workbook, keyed by header."""
    try:
        frame = pd.read_excel(BytesIO(data), sheet_name=0, dtype=object)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        raise ValueError("Could not read spreadsheet (expected .xlsx)") from exc
    frame = frame.fillna("")
    fields = {str(col): _field_for_header(str(col).strip()) for col in frame.columns}
    rows = []
    for record in frame.to_dict("records"):
        rows.append(
            {
                str(col).strip(): _spreadsheet_cell(fields[str(col)], value)
                for col, value in record.items()
            }
        )
    return rows


def is_spreadsheet(filename: Optional[str], data: bytes) -> bool:
    if filename and filename.lower().endswith(SPREADSHEET_SUFFIXES):
        return True
    return data.startswith(b"PK\x03\x04")


def validate_rows(
    raw_rows: Iterable[dict], labels: UserLabels
) -> tuple[list[ImportRow], list[str]]:
    """Validate every row on its own; bad rows are reported, not raised."""
    rows: list[ImportRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(raw_rows, start=1):
        if not any((v or "").strip() for v in raw.values() if isinstance(v, str)):
            continue
        problems: list[str] = []

        parsed_date = None
        try:
            parsed_date = parse_date(_cell(raw, "date"))
        except ValueError as exc:
            problems.append(str(exc))

        amount_cents = 0
        try:
            amount_cents = parse_amount(_cell(raw, "amount"))
        except ValueError as exc:
            problems.append(str(exc))

        method_raw = _cell(raw, "payment_method")
        method = labels.payment_methods.canonical(method_raw) if method_raw else None
        if not method_raw:
            problems.append("Missing payment method")
        elif not method:
            problems.append(
                labels.payment_methods.unknown_message("payment method", method_raw)
            )

        category_raw = _cell(raw, "category")
        category = labels.categories.canonical(category_raw) if category_raw else None
        if not category_raw:
            problems.append("Missing category")
        elif not category:
            problems.append(labels.categories.unknown_message("category", category_raw))

        if problems:
            errors.append(f"Row {idx}: {'; '.join(problems)}")
            continue
        rows.append(
            ImportRow(
                row=idx,
                date=parsed_date,
                amount_cents=amount_cents,
                payment_method=method,
                category=category,
                note=_cell(raw, "note") or None,
            )
        )
    return rows, errors


def parse_import(
    content: str, labels: UserLabels
) -> tuple[list[ImportRow], list[str]]:
    reader = csv.DictReader(StringIO(content.lstrip("\ufeff")))
    return validate_rows(reader, labels)


def parse_upload(
    filename: Optional[str], data: bytes, labels: UserLabels
) -> tuple[list[ImportRow], list[str]]:
    """CSV text or an xlsx workbook, checked by the same row rules."""
    if is_spreadsheet(filename, data):
        return validate_rows(read_spreadsheet(data), labels)
    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError("File must be UTF-8 text or an .xlsx workbook") from exc
    return parse_import(content, labels)


def build_template(labels: UserLabels) -> bytes:
    """Blank import workbook: sample rows plus a sheet of the valid labels."""
    methods = list(labels.payment_methods)
    categories = list(labels.categories)
    samples = [
        ("15/01/2026", 5000, "Supermarket"),
        ("20/01/2026", 12000, "Internet"),
        ("25/01/2026", 3500, "Taxi"),
    ]
    expenses = pd.DataFrame(
        [
            [
                when,
                amount,
                methods[i % len(methods)],
                categories[i % len(categories)],
                note,
            ]
            for i, (when, amount, note) in enumerate(samples)
        ],
        columns=EXPORT_HEADER,
    )
    size = max(len(methods), len(categories))
    reference = pd.DataFrame(
        {
            "Valid payment methods": methods + [""] * (size - len(methods)),
            "Valid categories": categories + [""] * (size - len(categories)),
        }
    )

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        expenses.to_excel(writer, sheet_name=TEMPLATE_SHEET, index=False)
        reference.to_excel(writer, sheet_name=REFERENCE_SHEET, index=False)
        for name, widths in (
            (TEMPLATE_SHEET, (12, 12, 16, 16, 30)),
            (REFERENCE_SHEET, (24, 24)),
        ):
            sheet = writer.sheets[name]
            for col, width in enumerate(widths, start=1):
                sheet.column_dimensions[get_column_letter(col)].width = width
    return buffer.getvalue()


def export_expenses(records: Sequence[ExpenseRecord]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for record in records:
        writer.writerow(
            [
                record.date.isoformat(),
                f"{record.amount_cents / 100:.2f}",
                sanitize_csv_value(record.payment_method),
                sanitize_csv_value(record.category),
                sanitize_csv_value(record.note or ""),
            ]
        )
    return output.getvalue()
