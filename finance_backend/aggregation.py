from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from finance_backend.currency_conversion import Currency, CurrencyTable
from finance_backend.models import LedgerState, Transaction, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONTHLY_WINDOW = 6
MONTH_LABEL_FORMAT = "%b/%y"


@dataclass(frozen=True)
class MonthlyTotals:
    month: str
    start: datetime
    income: Decimal
    expenses: Decimal

    @property
    def has_activity(self) -> bool:
        return self.income != ZERO or self.expenses != ZERO


@dataclass(frozen=True)
class BudgetStatus:
    category: str
    spent: Decimal
    limit: Decimal
    percentage: int

    @property
    def remaining(self) -> Decimal:
        return self.limit - self.spent

    @property
    def over_limit(self) -> bool:
        return self.spent > self.limit


def to_reference_currency(txn: Transaction, table: CurrencyTable | None = None) -> Decimal:
    """Amount in BRL using the rate locked on the transaction."""
    if txn.currency is Currency.BRL:
        return txn.amount
    rate = txn.exchange_rate
    if not rate and table is not None:
        rate = table.rate(txn.currency)
    return txn.amount * (rate or Decimal("1"))


def total_income(state: LedgerState) -> Decimal:
    return state.salary + _sum_by_type(state.transactions, TransactionType.INCOME, state.currencies)


def total_expenses(state: LedgerState) -> Decimal:
    return _sum_by_type(state.transactions, TransactionType.EXPENSE, state.currencies)


def total_saved(state: LedgerState) -> Decimal:
    return sum((entry.amount for entry in state.saved_money), ZERO)


def total_balance(state: LedgerState) -> Decimal:
    return total_income(state) - total_expenses(state)


def available_balance(state: LedgerState) -> Decimal:
    return total_balance(state) - total_saved(state)


def category_totals(state: LedgerState) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for txn in state.transactions:
        if txn.type is not TransactionType.EXPENSE:
            continue
        totals[txn.category] = totals.get(txn.category, ZERO) + to_reference_currency(
            txn, state.currencies
        )
    return totals


def monthly_data(state: LedgerState, now: datetime | None = None) -> list[MonthlyTotals]:
    """Income and expenses for the six months ending with the current one."""
    reference = now or datetime.now()
    current_month = month_start(reference)
    starts = [shift_month(current_month, offset) for offset in range(-(MONTHLY_WINDOW - 1), 1)]
    income = [ZERO] * MONTHLY_WINDOW
    expenses = [ZERO] * MONTHLY_WINDOW

    window_end = shift_month(current_month, 1)
    for txn in state.transactions:
        if txn.date < starts[0] or txn.date >= window_end:
            continue
        index = _month_index(starts[0], txn.date)
        value = to_reference_currency(txn, state.currencies)
        if txn.type is TransactionType.INCOME:
            income[index] += value
        else:
            expenses[index] += value

    return [
        MonthlyTotals(
            month=start.strftime(MONTH_LABEL_FORMAT),
            start=start,
            income=income[index],
            expenses=expenses[index],
        )
        for index, start in enumerate(starts)
    ]


def budget_status(state: LedgerState) -> list[BudgetStatus]:
    totals = category_totals(state)
    statuses = []
    for budget in state.budgets:
        spent = totals.get(budget.category, ZERO)
        statuses.append(
            BudgetStatus(
                category=budget.category,
                spent=spent,
                limit=budget.limit,
                percentage=percentage_of(spent, budget.limit),
            )
        )
    return statuses


def percentage_of(value: Decimal, whole: Decimal) -> int:
    if whole <= ZERO:
        return 0
    return int((value / whole * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def shift_month(value: datetime, months: int) -> datetime:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return datetime(year, month, 1)


def _month_index(first_month: datetime, value: datetime) -> int:
    return (value.year - first_month.year) * 12 + (value.month - first_month.month)


def _sum_by_type(
    transactions: Iterable[Transaction],
    txn_type: TransactionType,
    table: CurrencyTable,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.type is not txn_type:
            continue
        total += to_reference_currency(txn, table)
    return total
