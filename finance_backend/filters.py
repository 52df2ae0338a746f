from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, List, Optional

from finance_backend.models import Transaction, TransactionType


@dataclass(frozen=True)
class TransactionFilter:
    """Criteria for narrowing the transaction list; empty fields match everything.

    Dates are calendar days and both ends are inclusive. Amount bounds compare
    against the amount in the transaction's own currency.
    """

    search: str = ""
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    tags: tuple[str, ...] = ()

    def matches(self, txn: Transaction) -> bool:
        term = self.search.strip().lower()
        if term and term not in txn.description.lower() and term not in txn.category.lower():
            return False
        if self.type is not None and txn.type is not self.type:
            return False
        if self.category and txn.category != self.category:
            return False
        if self.start_date is not None and txn.date < _day_start(self.start_date):
            return False
        if self.end_date is not None and txn.date > _day_end(self.end_date):
            return False
        if self.min_amount is not None and txn.amount < self.min_amount:
            return False
        if self.max_amount is not None and txn.amount > self.max_amount:
            return False
        return all(tag in txn.tags for tag in self.tags)


def filter_transactions(
    transactions: Iterable[Transaction],
    criteria: TransactionFilter | None = None,
) -> List[Transaction]:
    """Matching transactions, newest first."""
    criteria = criteria or TransactionFilter()
    matched = [txn for txn in transactions if criteria.matches(txn)]
    return sorted(matched, key=lambda txn: txn.date, reverse=True)


def _day_start(value: date) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def _day_end(value: date) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.max)
