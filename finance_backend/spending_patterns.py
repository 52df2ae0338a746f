from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List

from finance_backend.aggregation import to_reference_currency
from finance_backend.models import LedgerState, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")
INCREASING_THRESHOLD = Decimal("1.2")
DECREASING_THRESHOLD = Decimal("0.8")
HEATMAP_LEVELS = 5

# Sunday first, matching the dashboard's week layout.
WEEKDAY_NAMES = ("Domingo", "Segunda", "Terça", "Quarta", "Quinta", "Sexta", "Sábado")


@dataclass(frozen=True)
class SpendingPattern:
    day_of_week: str
    average_spending: Decimal
    percentage: Decimal
    trend: str


@dataclass(frozen=True)
class HeatmapDay:
    day: date
    amount: Decimal
    intensity: int


def sunday_first_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def spending_patterns(state: LedgerState) -> List[SpendingPattern]:
    totals = [ZERO] * 7
    counts = [0] * 7
    for txn in state.transactions:
        if txn.type is not TransactionType.EXPENSE:
            continue
        index = sunday_first_weekday(txn.date)
        totals[index] += to_reference_currency(txn, state.currencies)
        counts[index] += 1

    averages = [
        totals[index] / counts[index] if counts[index] else ZERO for index in range(7)
    ]
    sum_of_averages = sum(averages, ZERO)
    overall_average = sum_of_averages / 7

    patterns = []
    for name, average in zip(WEEKDAY_NAMES, averages):
        percentage = average / sum_of_averages * HUNDRED if sum_of_averages > ZERO else ZERO
        patterns.append(
            SpendingPattern(
                day_of_week=name,
                average_spending=average,
                percentage=percentage,
                trend=_trend(average, overall_average),
            )
        )
    return patterns


def spending_heatmap(state: LedgerState, now: datetime | None = None) -> List[HeatmapDay]:
    """Expenses per day of the current month with a 0-5 intensity bucket."""
    reference = (now or datetime.now()).date()
    days_in_month = monthrange(reference.year, reference.month)[1]
    amounts = [ZERO] * days_in_month
    for txn in state.transactions:
        if txn.type is not TransactionType.EXPENSE:
            continue
        if txn.date.year != reference.year or txn.date.month != reference.month:
            continue
        amounts[txn.date.day - 1] += to_reference_currency(txn, state.currencies)

    peak = max(max(amounts), Decimal("1"))
    return [
        HeatmapDay(
            day=reference.replace(day=index + 1),
            amount=amount,
            intensity=_intensity(amount, peak),
        )
        for index, amount in enumerate(amounts)
    ]


def _trend(average: Decimal, overall_average: Decimal) -> str:
    if average > overall_average * INCREASING_THRESHOLD:
        return "increasing"
    if average < overall_average * DECREASING_THRESHOLD:
        return "decreasing"
    return "stable"


def _intensity(amount: Decimal, peak: Decimal) -> int:
    if amount <= ZERO:
        return 0
    share = amount / peak * HUNDRED
    if share < 20:
        return 1
    if share < 40:
        return 2
    if share < 60:
        return 3
    if share < 80:
        return 4
    return HEATMAP_LEVELS
