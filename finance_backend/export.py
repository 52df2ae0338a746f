from __future__ import annotations

import csv
import io
import json
import re
import unicodedata
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from finance_backend.ledger_store import LedgerStore
from finance_backend.models import Transaction, TransactionType

CSV_HEADER = ("Date", "Description", "Category", "Type", "Amount")
TYPE_LABELS = {
    TransactionType.INCOME: "Receita",
    TransactionType.EXPENSE: "Despesa",
}
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def export_json(store: LedgerStore, now: datetime | None = None) -> str:
    return json.dumps(store.export_snapshot(now=now), ensure_ascii=False, indent=2)


def export_filename(prefix: str, extension: str, now: datetime | None = None) -> str:
    return f"{prefix}-{(now or datetime.now()).date().isoformat()}.{extension}"


def sanitize_csv_cell(value: object) -> str:
    """Neutralize spreadsheet formulas; quoting is left to the csv writer."""
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", _CONTROL_CHARS.sub("", str(value)))
    if text.startswith(FORMULA_PREFIXES):
        text = f"'{text}"
    return text


def export_csv(transactions: Iterable[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                sanitize_csv_cell(txn.date.strftime("%d/%m/%Y")),
                sanitize_csv_cell(txn.description),
                sanitize_csv_cell(txn.category),
                sanitize_csv_cell(TYPE_LABELS[txn.type]),
                sanitize_csv_cell(_format_amount(txn.amount)),
            ]
        )
    return buffer.getvalue()


def _format_amount(amount: Decimal) -> str:
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
