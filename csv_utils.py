import csv
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Mapping, Optional, Sequence

from models import MINOR_UNITS_PER_UNIT
from schemas import MAX_ABS_AMOUNT, REQUIRED_IMPORT_FIELDS, ImportField, ImportRow


DATE_INPUT_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")

HEADER_ALIASES: dict[str, ImportField] = {
    "date": ImportField.date,
    "bookingdate": ImportField.date,
    "transactiondate": ImportField.date,
    "valuedate": ImportField.date,
    "amount": ImportField.amount,
    "value": ImportField.amount,
    "sum": ImportField.amount,
    "payee": ImportField.payee,
    "description": ImportField.payee,
    "merchant": ImportField.payee,
    "name": ImportField.payee,
    "counterparty": ImportField.payee,
    "notes": ImportField.notes,
    "note": ImportField.notes,
    "memo": ImportField.notes,
    "reference": ImportField.notes,
    "category": ImportField.category,
}


def _normalize_header(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.strip().lower())


def read_csv(content: str) -> tuple[list[str], list[list[str]]]:
    content = content.lstrip("\ufeff")
    reader = csv.reader(StringIO(content))
    records = [row for row in reader if any(cell.strip() for cell in row)]
    if not records:
        raise ValueError("CSV file is empty")
    headers = [cell.strip() for cell in records[0]]
    return headers, records[1:]


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> int:
    """
    Parse a decimal amount such as "25.50", "-1 234,5" or "$12" into signed
    thousandths (25.50 -> 25500).
    """
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value.strip()}'") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount '{value.strip()}'")
    if abs(amount) > Decimal(MAX_ABS_AMOUNT) / MINOR_UNITS_PER_UNIT:
        raise ValueError(f"Amount '{value.strip()}' is out of range")
    return int((amount * MINOR_UNITS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def suggest_mapping(headers: Sequence[str]) -> dict[int, ImportField]:
    mapping: dict[int, ImportField] = {}
    taken: set[ImportField] = set()
    for idx, header in enumerate(headers):
        field = HEADER_ALIASES.get(_normalize_header(header))
        if field is None or field in taken:
            mapping[idx] = ImportField.skip
            continue
        mapping[idx] = field
        taken.add(field)
    return mapping


def mapping_progress(mapping: Mapping[int, ImportField]) -> int:
    mapped = set(mapping.values())
    done = sum(1 for field in REQUIRED_IMPORT_FIELDS if field in mapped)
    return done * 100 // len(REQUIRED_IMPORT_FIELDS)


def missing_required_fields(mapping: Mapping[int, ImportField]) -> list[ImportField]:
    mapped = set(mapping.values())
    return [field for field in REQUIRED_IMPORT_FIELDS if field not in mapped]


def validate_mapping(mapping: Mapping[int, ImportField], column_count: int) -> None:
    seen: dict[ImportField, int] = {}
    for idx, field in mapping.items():
        if idx < 0 or idx >= column_count:
            raise ValueError(f"Column {idx} does not exist")
        if field == ImportField.skip:
            continue
        if field in seen:
            raise ValueError(
                f"Field '{field.value}' is mapped to columns {seen[field]} and {idx}"
            )
        seen[field] = idx


def _cell(raw: Sequence[str], idx: Optional[int]) -> str:
    if idx is None or idx >= len(raw):
        return ""
    return (raw[idx] or "").strip()


def map_rows(
    rows: Sequence[Sequence[str]], mapping: Mapping[int, ImportField]
) -> tuple[list[ImportRow], list[str]]:
    columns = {
        field: idx for idx, field in mapping.items() if field != ImportField.skip
    }
    mapped: list[ImportRow] = []
    errors: list[str] = []
    for number, raw in enumerate(rows, start=1):
        values = {field: _cell(raw, idx) for field, idx in columns.items()}
        try:
            for field in REQUIRED_IMPORT_FIELDS:
                if not values.get(field):
                    raise ValueError(f"missing {field.value}")
            payee = values[ImportField.payee]
            if len(payee) > 200:
                raise ValueError("payee is longer than 200 characters")
            mapped.append(
                ImportRow(
                    date=parse_date(values[ImportField.date]),
                    amount=parse_amount(values[ImportField.amount]),
                    payee=payee,
                    notes=values.get(ImportField.notes) or None,
                    category=values.get(ImportField.category) or None,
                )
            )
        except ValueError as exc:
            errors.append(f"Row {number}: {exc}")
    return mapped, errors
