"""Snapshot (de)serialization, entity builders and schema migrations.

A snapshot is the JSON-ready dict shared by local persistence, cloud sync and
the export file: ``salary``, ``transactions``, ``recurringTransactions``,
``goals``, ``budgets``, ``savedMoney``, ``darkMode`` and ``currencies``, with
camelCase entity fields and ISO-8601 dates.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from finance_backend.currency_conversion import (
    Currency,
    CurrencyTable,
    lock_exchange_rate,
)
from finance_backend.models import (
    FALLBACK_CATEGORY,
    GOAL_COLORS,
    Budget,
    BudgetPeriod,
    Frequency,
    Goal,
    LedgerState,
    RecurringRule,
    SavedMoney,
    Split,
    Transaction,
    TransactionType,
)
from finance_backend.validation import (
    ZERO,
    coerce_datetime,
    coerce_decimal,
    coerce_list,
    coerce_tags,
    optional_datetime,
    sanitize_text,
    strip_forbidden_keys,
)

SNAPSHOT_VERSION = 2

MAX_TRANSACTIONS = 5000
MAX_RECURRING = 200
MAX_GOALS = 100
MAX_BUDGETS = 50
MAX_SAVED_MONEY = 100
MAX_SALARY = Decimal("10000000")
MAX_SPLIT_PEOPLE = 100


def new_id() -> str:
    return str(uuid.uuid4())


def build_transaction(
    *,
    description: Any,
    amount: Any,
    category: Any,
    type: Any,
    date: Any,
    table: CurrencyTable,
    now: datetime | None = None,
    id: Any = None,
    currency: Any = None,
    exchange_rate: Any = None,
    tags: Any = None,
    recurring: Any = False,
    recurring_id: Any = None,
    split: Any = None,
) -> Transaction:
    resolved_currency = Currency.parse(currency)
    return Transaction(
        id=_entity_id(id),
        description=sanitize_text(description, 200),
        amount=coerce_decimal(amount),
        category=_category(category),
        type=TransactionType.parse(type),
        date=coerce_datetime(date, now=now),
        currency=resolved_currency,
        exchange_rate=lock_exchange_rate(resolved_currency, table, exchange_rate),
        tags=coerce_tags(tags),
        recurring=bool(recurring),
        recurring_id=sanitize_text(recurring_id, 100) or None,
        split=build_split(split),
    )


def build_split(raw: Any) -> Split | None:
    if isinstance(raw, Split):
        raw = {"total": raw.total, "people": raw.people, "sharedWith": raw.shared_with}
    if not isinstance(raw, Mapping):
        return None
    people = coerce_decimal(raw.get("people"), minimum=Decimal("1"), maximum=Decimal(MAX_SPLIT_PEOPLE))
    shared_with = raw.get("sharedWith", raw.get("shared_with"))
    return Split(
        total=coerce_decimal(raw.get("total")),
        people=int(people),
        shared_with=tuple(
            sanitize_text(str(name), 100) for name in coerce_list(shared_with, MAX_SPLIT_PEOPLE)
        ),
    )


def build_recurring_rule(
    *,
    description: Any,
    amount: Any,
    category: Any,
    type: Any,
    frequency: Any,
    start_date: Any,
    now: datetime | None = None,
    id: Any = None,
    end_date: Any = None,
    last_executed: Any = None,
    active: Any = True,
    currency: Any = None,
    tags: Any = None,
) -> RecurringRule:
    start = coerce_datetime(start_date, now=now)
    end = optional_datetime(end_date, now=now)
    if end is not None and end < start:
        end = None
    return RecurringRule(
        id=_entity_id(id),
        description=sanitize_text(description, 200),
        amount=coerce_decimal(amount),
        category=_category(category),
        type=TransactionType.parse(type),
        frequency=Frequency.parse(frequency),
        start_date=start,
        end_date=end,
        last_executed=optional_datetime(last_executed, now=now),
        active=bool(active),
        currency=Currency.parse(currency),
        tags=coerce_tags(tags),
    )


def build_goal(
    *,
    name: Any,
    target_amount: Any,
    deadline: Any,
    category: Any = None,
    color: Any = None,
    now: datetime | None = None,
    id: Any = None,
    current_amount: Any = ZERO,
) -> Goal:
    target = coerce_decimal(target_amount, minimum=Decimal("1"))
    return Goal(
        id=_entity_id(id),
        name=sanitize_text(name, 100),
        target_amount=target,
        current_amount=coerce_decimal(current_amount, maximum=target),
        deadline=coerce_datetime(deadline, now=now),
        category=_category(category),
        color=sanitize_text(color, 20) or GOAL_COLORS[0],
    )


def build_budget(*, category: Any, limit: Any, period: Any = None, spent: Any = ZERO) -> Budget:
    return Budget(
        category=_category(category),
        limit=coerce_decimal(limit),
        period=BudgetPeriod.parse(period),
        spent=coerce_decimal(spent),
    )


def build_saved_money(
    *,
    amount: Any,
    description: Any,
    date: Any,
    now: datetime | None = None,
    id: Any = None,
    goal: Any = None,
) -> SavedMoney:
    return SavedMoney(
        id=_entity_id(id),
        amount=coerce_decimal(amount),
        description=sanitize_text(description, 200),
        date=coerce_datetime(date, now=now),
        goal=sanitize_text(goal, 100) or None,
    )


def state_from_snapshot(raw: Mapping[str, Any], now: datetime | None = None) -> LedgerState:
    """Rebuild a full ledger state, defaulting anything missing or malformed."""
    table = CurrencyTable.from_mapping(raw.get("currencies"))
    transactions = tuple(
        build_transaction(
            id=item.get("id"),
            description=item.get("description"),
            amount=item.get("amount"),
            category=item.get("category"),
            type=item.get("type"),
            date=item.get("date"),
            currency=item.get("currency"),
            exchange_rate=item.get("exchangeRate"),
            tags=item.get("tags"),
            recurring=item.get("recurring"),
            recurring_id=item.get("recurringId"),
            split=item.get("split"),
            table=table,
            now=now,
        )
        for item in _records(raw.get("transactions"), MAX_TRANSACTIONS)
    )
    recurring_rules = tuple(
        build_recurring_rule(
            id=item.get("id"),
            description=item.get("description"),
            amount=item.get("amount"),
            category=item.get("category"),
            type=item.get("type"),
            frequency=item.get("frequency"),
            start_date=item.get("startDate"),
            end_date=item.get("endDate"),
            last_executed=item.get("lastExecuted"),
            active=item.get("active", True),
            currency=item.get("currency"),
            tags=item.get("tags"),
            now=now,
        )
        for item in _records(raw.get("recurringTransactions"), MAX_RECURRING)
    )
    goals = tuple(
        build_goal(
            id=item.get("id"),
            name=item.get("name"),
            target_amount=item.get("targetAmount"),
            current_amount=item.get("currentAmount"),
            deadline=item.get("deadline"),
            category=item.get("category"),
            color=item.get("color"),
            now=now,
        )
        for item in _records(raw.get("goals"), MAX_GOALS)
    )
    budgets: dict[str, Budget] = {}
    for item in _records(raw.get("budgets"), MAX_BUDGETS):
        budget = build_budget(
            category=item.get("category"),
            limit=item.get("limit"),
            period=item.get("period"),
            spent=item.get("spent"),
        )
        budgets[budget.category] = budget
    saved_money = tuple(
        build_saved_money(
            id=item.get("id"),
            amount=item.get("amount"),
            description=item.get("description"),
            date=item.get("date"),
            goal=item.get("goal"),
            now=now,
        )
        for item in _records(raw.get("savedMoney"), MAX_SAVED_MONEY)
    )
    return LedgerState(
        salary=coerce_decimal(raw.get("salary"), maximum=MAX_SALARY),
        transactions=transactions,
        recurring_rules=recurring_rules,
        goals=goals,
        budgets=tuple(budgets.values()),
        saved_money=saved_money,
        dark_mode=bool(raw.get("darkMode", False)),
        currencies=table,
    )


def snapshot_from_state(state: LedgerState) -> dict[str, Any]:
    return {
        "salary": _number(state.salary),
        "transactions": [transaction_to_raw(txn) for txn in state.transactions],
        "recurringTransactions": [recurring_rule_to_raw(rule) for rule in state.recurring_rules],
        "goals": [goal_to_raw(goal) for goal in state.goals],
        "budgets": [budget_to_raw(budget) for budget in state.budgets],
        "savedMoney": [saved_money_to_raw(entry) for entry in state.saved_money],
        "darkMode": state.dark_mode,
        "currencies": {code: _number(rate) for code, rate in state.currencies.as_dict().items()},
    }


def transaction_to_raw(txn: Transaction) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "id": txn.id,
        "description": txn.description,
        "amount": _number(txn.amount),
        "category": txn.category,
        "type": txn.type.value,
        "date": txn.date.isoformat(),
        "currency": txn.currency.value,
        "exchangeRate": _number(txn.exchange_rate),
        "tags": list(txn.tags),
        "recurring": txn.recurring,
    }
    if txn.recurring_id:
        raw["recurringId"] = txn.recurring_id
    if txn.split is not None:
        raw["split"] = {
            "total": _number(txn.split.total),
            "people": txn.split.people,
            "sharedWith": list(txn.split.shared_with),
        }
    return raw


def recurring_rule_to_raw(rule: RecurringRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "description": rule.description,
        "amount": _number(rule.amount),
        "category": rule.category,
        "type": rule.type.value,
        "frequency": rule.frequency.value,
        "startDate": rule.start_date.isoformat(),
        "endDate": rule.end_date.isoformat() if rule.end_date else None,
        "lastExecuted": rule.last_executed.isoformat() if rule.last_executed else None,
        "active": rule.active,
        "currency": rule.currency.value,
        "tags": list(rule.tags),
    }


def goal_to_raw(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "name": goal.name,
        "targetAmount": _number(goal.target_amount),
        "currentAmount": _number(goal.current_amount),
        "deadline": goal.deadline.isoformat(),
        "category": goal.category,
        "color": goal.color,
    }


def budget_to_raw(budget: Budget) -> dict[str, Any]:
    return {
        "category": budget.category,
        "limit": _number(budget.limit),
        "spent": _number(budget.spent),
        "period": budget.period.value,
    }


def saved_money_to_raw(entry: SavedMoney) -> dict[str, Any]:
    return {
        "id": entry.id,
        "amount": _number(entry.amount),
        "description": entry.description,
        "date": entry.date.isoformat(),
        "goal": entry.goal,
    }


def parse_snapshot_text(text: Any) -> dict[str, Any] | None:
    """Decode a JSON object, or return None when the input is not one."""
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(text, str):
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return strip_forbidden_keys(payload)


def _normalize_v1_entries(raw: dict[str, Any]) -> dict[str, Any]:
    table = CurrencyTable.from_mapping(raw.get("currencies"))
    upgraded = dict(raw)
    for key in ("transactions", "recurringTransactions"):
        entries = []
        for item in coerce_list(raw.get(key), MAX_TRANSACTIONS):
            if not isinstance(item, dict):
                continue
            entry = dict(item)
            currency = Currency.parse(entry.get("currency"))
            entry["amount"] = _number(coerce_decimal(entry.get("amount")))
            entry["currency"] = currency.value
            entry["exchangeRate"] = _number(
                lock_exchange_rate(currency, table, entry.get("exchangeRate"))
            )
            entries.append(entry)
        upgraded[key] = entries
    return upgraded


# Each entry upgrades a snapshot from version N to N + 1.
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _normalize_v1_entries,
}


def migrate_snapshot(raw: Mapping[str, Any], version: Any) -> dict[str, Any]:
    try:
        current = int(version)
    except (TypeError, ValueError, OverflowError):
        current = 1
    current = max(current, 1)
    upgraded = dict(raw)
    while current < SNAPSHOT_VERSION:
        upgraded = MIGRATIONS[current](upgraded)
        current += 1
    return upgraded


def _records(value: Any, max_length: int) -> list[Mapping[str, Any]]:
    return [item for item in coerce_list(value, max_length) if isinstance(item, Mapping)]


def _entity_id(value: Any) -> str:
    return sanitize_text(value, 100) or new_id()


def _category(value: Any) -> str:
    return sanitize_text(value, 50) or FALLBACK_CATEGORY


def _number(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)
