from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from finance_backend.currency_conversion import Currency, CurrencyTable

ZERO = Decimal("0")

CATEGORIES = (
    "Alimentação",
    "Transporte",
    "Moradia",
    "Saúde",
    "Educação",
    "Lazer",
    "Vestuário",
    "Contas",
    "Investimentos",
    "Outros",
)
FALLBACK_CATEGORY = "Outros"

GOAL_COLORS = (
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
)


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def parse(cls, value: object) -> "TransactionType":
        if isinstance(value, TransactionType):
            return value
        if isinstance(value, str) and value.strip().lower() == "income":
            return cls.INCOME
        return cls.EXPENSE


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: object) -> "Frequency":
        if isinstance(value, Frequency):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.MONTHLY


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, value: object) -> "BudgetPeriod":
        if isinstance(value, BudgetPeriod):
            return value
        if isinstance(value, str) and value.strip().lower() == "weekly":
            return cls.WEEKLY
        return cls.MONTHLY


@dataclass(frozen=True)
class Split:
    total: Decimal
    people: int
    shared_with: tuple[str, ...] = ()


@dataclass(frozen=True)
class Transaction:
    id: str
    description: str
    amount: Decimal
    category: str
    type: TransactionType
    date: datetime
    currency: Currency = Currency.BRL
    exchange_rate: Decimal = Decimal("1")
    tags: tuple[str, ...] = ()
    recurring: bool = False
    recurring_id: Optional[str] = None
    split: Optional[Split] = None


@dataclass(frozen=True)
class RecurringRule:
    id: str
    description: str
    amount: Decimal
    category: str
    type: TransactionType
    frequency: Frequency
    start_date: datetime
    end_date: Optional[datetime] = None
    last_executed: Optional[datetime] = None
    active: bool = True
    currency: Currency = Currency.BRL
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Goal:
    id: str
    name: str
    target_amount: Decimal
    deadline: datetime
    category: str
    color: str
    current_amount: Decimal = ZERO

    @property
    def progress(self) -> Decimal:
        if self.target_amount <= ZERO:
            return ZERO
        return self.current_amount / self.target_amount * 100


@dataclass(frozen=True)
class Budget:
    category: str
    limit: Decimal
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    # Legacy field kept for snapshot compatibility; spending is always recomputed.
    spent: Decimal = ZERO


@dataclass(frozen=True)
class SavedMoney:
    id: str
    amount: Decimal
    description: str
    date: datetime
    goal: Optional[str] = None


@dataclass(frozen=True)
class LedgerState:
    salary: Decimal = ZERO
    transactions: tuple[Transaction, ...] = ()
    recurring_rules: tuple[RecurringRule, ...] = ()
    goals: tuple[Goal, ...] = ()
    budgets: tuple[Budget, ...] = ()
    saved_money: tuple[SavedMoney, ...] = ()
    dark_mode: bool = False
    currencies: CurrencyTable = field(default_factory=CurrencyTable)
