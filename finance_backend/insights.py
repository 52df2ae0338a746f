"""Alerts and month-over-month figures derived from the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional

from finance_backend.aggregation import (
    HUNDRED,
    ZERO,
    MonthlyTotals,
    available_balance,
    budget_status,
    monthly_data,
    to_reference_currency,
)
from finance_backend.models import LedgerState, TransactionType

BUDGET_WARNING_PERCENT = 80
SPIKE_WINDOW = 7
SPIKE_FACTOR = Decimal("2")
CENTS = Decimal("0.01")


class AlertLevel(str, Enum):
    WARNING = "warning"
    DANGER = "danger"
    SUCCESS = "success"
    INFO = "info"


@dataclass(frozen=True)
class Alert:
    id: str
    level: AlertLevel
    title: str
    message: str


@dataclass(frozen=True)
class MonthComparison:
    current: MonthlyTotals
    previous: MonthlyTotals
    income_change: Decimal
    expense_change: Decimal

    @property
    def income_delta(self) -> Decimal:
        return self.current.income - self.previous.income

    @property
    def expense_delta(self) -> Decimal:
        return self.current.expenses - self.previous.expenses


def smart_alerts(state: LedgerState) -> List[Alert]:
    """Budget, goal, balance and unusual-expense alerts, in that order.

    Ids are stable per subject so callers can dedupe and dismiss them.
    """
    alerts: List[Alert] = []

    for status in budget_status(state):
        alert_id = f"budget-{status.category}"
        if status.percentage > 100:
            alerts.append(
                Alert(
                    id=alert_id,
                    level=AlertLevel.DANGER,
                    title="Orçamento excedido",
                    message=(
                        f"Você gastou {status.percentage}% do orçamento de {status.category}. "
                        f"(R$ {_money(status.spent)} de R$ {_money(status.limit)})"
                    ),
                )
            )
        elif status.percentage >= BUDGET_WARNING_PERCENT:
            alerts.append(
                Alert(
                    id=alert_id,
                    level=AlertLevel.WARNING,
                    title="Atenção ao orçamento",
                    message=(
                        f"Você já usou {status.percentage}% do orçamento de {status.category}. "
                        f"Restam R$ {_money(status.remaining)}."
                    ),
                )
            )

    for goal in state.goals:
        if goal.target_amount > ZERO and goal.current_amount >= goal.target_amount:
            alerts.append(
                Alert(
                    id=f"goal-{goal.id}",
                    level=AlertLevel.SUCCESS,
                    title="Meta alcançada",
                    message=(
                        f"Parabéns! Você atingiu a meta {goal.name} "
                        f"de R$ {_money(goal.target_amount)}!"
                    ),
                )
            )

    balance = available_balance(state)
    if balance < ZERO:
        alerts.append(
            Alert(
                id="negative-balance",
                level=AlertLevel.DANGER,
                title="Saldo negativo",
                message=(
                    f"Seu saldo está negativo em R$ {_money(abs(balance))}. "
                    "Cuidado com novos gastos!"
                ),
            )
        )

    spike = _unusual_expense(state)
    if spike is not None:
        alerts.append(spike)
    return alerts


def month_over_month(state: LedgerState, now: datetime | None = None) -> MonthComparison:
    months = monthly_data(state, now=now)
    current, previous = months[-1], months[-2]
    return MonthComparison(
        current=current,
        previous=previous,
        income_change=percent_change(previous.income, current.income),
        expense_change=percent_change(previous.expenses, current.expenses),
    )


def percent_change(before: Decimal, after: Decimal) -> Decimal:
    # No baseline means no meaningful ratio.
    if before == ZERO:
        return ZERO
    return ((after - before) / before * HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)


def _unusual_expense(state: LedgerState) -> Optional[Alert]:
    if len(state.transactions) < SPIKE_WINDOW:
        return None
    window = state.transactions[:SPIKE_WINDOW]
    spent = sum(
        (
            to_reference_currency(txn, state.currencies)
            for txn in window
            if txn.type is TransactionType.EXPENSE
        ),
        ZERO,
    )
    average = spent / SPIKE_WINDOW
    latest = state.transactions[0]
    if latest.type is not TransactionType.EXPENSE or average <= ZERO:
        return None
    amount = to_reference_currency(latest, state.currencies)
    if amount <= average * SPIKE_FACTOR:
        return None
    ratio = (amount / average).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return Alert(
        id=f"unusual-{latest.id}",
        level=AlertLevel.INFO,
        title="Gasto atípico detectado",
        message=(
            f"O gasto {latest.description} de R$ {_money(amount)} "
            f"é {ratio}x maior que sua média diária."
        ),
    )


def _money(value: Decimal) -> str:
    return str(value.quantize(CENTS, rounding=ROUND_HALF_UP))
