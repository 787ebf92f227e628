import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Transaction, TransactionType
from schemas import ImportRowIn

EXPORT_HEADER = ["Date", "Type", "Amount", "Category", "Description"]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> datetime:
    value = value.strip()
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d", "%d.%m.%Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def parse_amount(value: str) -> float:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return float(abs(amount))


def parse_type(value: str) -> TransactionType:
    return (
        TransactionType.income
        if "income" in value.strip().lower()
        else TransactionType.expense
    )


def parse_csv(content: str) -> tuple[list[ImportRowIn], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[ImportRowIn] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_raw = (raw.get("Date") or "").strip()
            description = (raw.get("Description") or "").strip()
            amount_raw = (raw.get("Amount") or "").strip()
            type_raw = (raw.get("Type") or "").strip()
            if not date_raw or not amount_raw or not type_raw:
                raise ValueError("missing required fields")
            parse_date(date_raw)
            category = (raw.get("Category") or "").strip()
            rows.append(
                ImportRowIn(
                    amount=parse_amount(amount_raw),
                    date=date_raw,
                    description=description,
                    type=parse_type(type_raw),
                    category_name=category or None,
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.occurred_at.isoformat(timespec="seconds"),
                txn.type.value,
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.category.name if txn.category else ""),
                sanitize_csv_value(txn.description or ""),
            ]
        )
    return output.getvalue()
