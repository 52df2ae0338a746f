from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from finance_backend.aggregation import (
    MONTH_LABEL_FORMAT,
    MonthlyTotals,
    available_balance,
    month_start,
    monthly_data,
    shift_month,
)
from finance_backend.currency_conversion import Currency
from finance_backend.models import Frequency, LedgerState, RecurringRule, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MIN_TREND_MONTHS = 2
FALLBACK_EXPENSE_RATIO = Decimal("0.7")
FALLBACK_CONFIDENCE = 30
WEEKS_PER_MONTH = 4
DAYS_PER_MONTH = 30

SCENARIO_FACTORS = {
    # name: (income factor, expense factor, balance adjustment as share of expenses)
    "pessimistic": (Decimal("0.95"), Decimal("1.15"), Decimal("-0.15")),
    "realistic": (Decimal("1"), Decimal("1"), ZERO),
    "optimistic": (Decimal("1.05"), Decimal("0.90"), Decimal("0.10")),
}


@dataclass(frozen=True)
class FinancialProjection:
    month: str
    projected_balance: Decimal
    projected_income: Decimal
    projected_expenses: Decimal
    confidence: int


@dataclass(frozen=True)
class HistoryStats:
    avg_income: Decimal
    avg_expenses: Decimal
    expense_trend: Decimal
    expense_std_dev: Decimal
    volatility_factor: Decimal


def projection_history(state: LedgerState, now: datetime | None = None) -> List[MonthlyTotals]:
    """Months of the trailing window that actually carry transactions."""
    return [month for month in monthly_data(state, now) if month.has_activity]


def history_stats(history: Sequence[MonthlyTotals]) -> HistoryStats:
    count = Decimal(len(history))
    avg_income = sum((month.income for month in history), ZERO) / count
    avg_expenses = sum((month.expenses for month in history), ZERO) / count
    expense_trend = (history[-1].expenses - history[0].expenses) / count
    variance = sum(((month.expenses - avg_expenses) ** 2 for month in history), ZERO) / count
    std_dev = variance.sqrt()
    volatility = std_dev / avg_expenses if avg_expenses != ZERO else ZERO
    return HistoryStats(
        avg_income=avg_income,
        avg_expenses=avg_expenses,
        expense_trend=expense_trend,
        expense_std_dev=std_dev,
        volatility_factor=volatility,
    )


def financial_projection(
    state: LedgerState,
    months: int = 6,
    now: datetime | None = None,
) -> List[FinancialProjection]:
    reference = now or datetime.now()
    history = projection_history(state, reference)
    balance = available_balance(state)
    first_month = month_start(reference)
    projections: List[FinancialProjection] = []

    if len(history) < MIN_TREND_MONTHS:
        income = state.salary
        expenses = state.salary * FALLBACK_EXPENSE_RATIO
        for offset in range(1, months + 1):
            balance += income - expenses
            projections.append(
                FinancialProjection(
                    month=_label(first_month, offset),
                    projected_balance=balance,
                    projected_income=income,
                    projected_expenses=expenses,
                    confidence=FALLBACK_CONFIDENCE,
                )
            )
        return projections

    stats = history_stats(history)
    # salary + (avg_income - salary) reduces to the historical average.
    base_income = stats.avg_income
    for offset in range(1, months + 1):
        income = base_income
        expenses = max(ZERO, stats.avg_expenses + stats.expense_trend * offset)
        recurring_income, recurring_expenses = recurring_impact(state, offset)
        income += recurring_income
        expenses += recurring_expenses
        balance += income - expenses
        projections.append(
            FinancialProjection(
                month=_label(first_month, offset),
                projected_balance=balance,
                projected_income=income,
                projected_expenses=expenses,
                confidence=_confidence(offset, stats.volatility_factor),
            )
        )
    return projections


def projection_scenarios(
    state: LedgerState,
    months: int = 6,
    now: datetime | None = None,
) -> Dict[str, List[FinancialProjection]]:
    """Pessimistic, realistic and optimistic views over one base projection."""
    base = financial_projection(state, months, now)
    scenarios: Dict[str, List[FinancialProjection]] = {}
    for name, (income_factor, expense_factor, balance_share) in SCENARIO_FACTORS.items():
        scenarios[name] = [
            FinancialProjection(
                month=entry.month,
                projected_balance=entry.projected_balance + entry.projected_expenses * balance_share,
                projected_income=entry.projected_income * income_factor,
                projected_expenses=entry.projected_expenses * expense_factor,
                confidence=entry.confidence,
            )
            for entry in base
        ]
    return scenarios


def recurring_impact(state: LedgerState, months_ahead: int) -> tuple[Decimal, Decimal]:
    income = ZERO
    expenses = ZERO
    for rule in state.recurring_rules:
        if not rule.active:
            continue
        amount = _rule_amount_in_reference(rule, state) * occurrences_within(rule.frequency, months_ahead)
        if rule.type is TransactionType.INCOME:
            income += amount
        else:
            expenses += amount
    return income, expenses


def occurrences_within(frequency: Frequency, months_ahead: int) -> int:
    if frequency is Frequency.MONTHLY:
        return months_ahead
    if frequency is Frequency.WEEKLY:
        return months_ahead * WEEKS_PER_MONTH
    if frequency is Frequency.DAILY:
        return months_ahead * DAYS_PER_MONTH
    return 1 if months_ahead >= 12 else 0


def _rule_amount_in_reference(rule: RecurringRule, state: LedgerState) -> Decimal:
    if rule.currency is Currency.BRL:
        return rule.amount
    return rule.amount * state.currencies.rate(rule.currency)


def _confidence(months_ahead: int, volatility_factor: Decimal) -> int:
    horizon = Decimal(max(100 - months_ahead * 8, 40))
    volatility_penalty = max(ZERO, Decimal(20) - volatility_factor * HUNDRED)
    value = min(horizon - volatility_penalty, Decimal(95))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _label(first_month: datetime, offset: int) -> str:
    return shift_month(first_month, offset).strftime(MONTH_LABEL_FORMAT)
