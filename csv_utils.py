import csv
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from ledger import Transaction, to_amount
from models import Frequency, TransactionType
from schemas import CSVRow


HEADER = ["Type", "Description", "Amount", "Category", "Date", "Recurring"]
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
_COMMAND_PREFIX = re.compile(r"^(cmd|powershell|https?://)", re.IGNORECASE)


def sanitize_csv_value(value: str) -> str:
    """Strip a free-text cell and defuse spreadsheet formulas with a leading tab.

    Import strips the tab again, so exported files re-import unchanged.
    """
    value = (value or "").strip()
    if value.startswith(_FORMULA_PREFIXES) or _COMMAND_PREFIX.match(value):
        return "\t" + value
    return value


def parse_amount(value: str) -> Decimal:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f'invalid amount "{value}"') from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f'invalid amount "{value}"')
    return to_amount(amount)


def detect_delimiter(header_line: str) -> str:
    return "\t" if "\t" in header_line else ","


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    lines = content.strip().splitlines()
    if len(lines) < 2:
        return [], ["File is empty or has no data rows."]

    delimiter = detect_delimiter(lines[0])
    reader = csv.reader(StringIO("\n".join(lines)), delimiter=delimiter)
    next(reader)
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, fields in enumerate(reader, start=2):
        if not fields or all(not f.strip() for f in fields):
            continue
        if len(fields) < 6:
            errors.append(
                f"Row {idx}: not enough columns (expected 6, got {len(fields)})"
            )
            continue
        type_raw, description, amount_raw, category, date_raw, recurring = fields[:6]
        try:
            txn_type = TransactionType(type_raw.strip())
        except ValueError:
            errors.append(
                f'Row {idx}: type must be "expense" or "income", got "{type_raw}"'
            )
            continue
        if not description.strip():
            errors.append(f"Row {idx}: description is required")
            continue
        try:
            amount = parse_amount(amount_raw)
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
            continue
        date_raw = date_raw.strip()
        if not _ISO_DATE.match(date_raw):
            errors.append(
                f'Row {idx}: date must be YYYY-MM-DD format, got "{date_raw}"'
            )
            continue
        try:
            day = date.fromisoformat(date_raw)
        except ValueError:
            errors.append(f'Row {idx}: "{date_raw}" is not a calendar date')
            continue
        rows.append(
            CSVRow(
                type=txn_type,
                description=description.strip(),
                amount=amount,
                category=category.strip(),
                date=day,
                recurring=recurring.strip() or Frequency.one_time.value,
            )
        )
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.type.value,
                sanitize_csv_value(txn.description),
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.category),
                txn.date.isoformat(),
                txn.recurring,
            ]
        )
    return output.getvalue()
