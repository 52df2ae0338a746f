"""Authoritative container for every financial entity.

The store holds one immutable :class:`LedgerState` and replaces it wholesale on
each mutation, so readers only ever see a complete state. Subscribers are
notified with the new state after every commit.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from finance_backend.currency_conversion import Currency, lock_exchange_rate
from finance_backend.models import (
    Budget,
    Goal,
    LedgerState,
    RecurringRule,
    SavedMoney,
    Transaction,
    TransactionType,
)
from finance_backend.snapshot import (
    MAX_BUDGETS,
    MAX_GOALS,
    MAX_RECURRING,
    MAX_SALARY,
    MAX_SAVED_MONEY,
    MAX_TRANSACTIONS,
    SNAPSHOT_VERSION,
    build_budget,
    build_goal,
    build_recurring_rule,
    build_saved_money,
    build_split,
    build_transaction,
    parse_snapshot_text,
    snapshot_from_state,
    state_from_snapshot,
)
from finance_backend.utils import get_logger
from finance_backend.validation import (
    coerce_datetime,
    coerce_decimal,
    coerce_tags,
    sanitize_text,
)

logger = get_logger(__name__)

Listener = Callable[[LedgerState], None]

MISSING_REFERENCE_LABEL = "Removido"


class LedgerStore:
    def __init__(self, state: LedgerState | None = None) -> None:
        self._state = state or LedgerState()
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> LedgerState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _update(self, mutate: Callable[[LedgerState], LedgerState]) -> LedgerState:
        with self._lock:
            current = self._state
            updated = mutate(current)
            if updated is current:
                return current
            self._state = updated
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(updated)
            except Exception:
                logger.exception("Ledger listener failed")
        return updated

    # Salary and settings

    def set_salary(self, salary: Any) -> LedgerState:
        value = coerce_decimal(salary, maximum=MAX_SALARY)
        return self._update(lambda state: replace(state, salary=value))

    def toggle_dark_mode(self) -> LedgerState:
        return self._update(lambda state: replace(state, dark_mode=not state.dark_mode))

    def update_currency(self, currency: Currency | str, rate: Any) -> LedgerState:
        parsed = Currency.parse(currency)
        if parsed is Currency.BRL:
            return self._state
        return self._update(
            lambda state: replace(state, currencies=state.currencies.with_rate(parsed, rate))
        )

    # Transactions

    def add_transaction(
        self,
        *,
        description: Any,
        amount: Any,
        category: Any,
        type: Any,
        date: Any = None,
        currency: Any = None,
        exchange_rate: Any = None,
        tags: Any = None,
        recurring: Any = False,
        recurring_id: Any = None,
        split: Any = None,
        now: datetime | None = None,
    ) -> Transaction:
        created: list[Transaction] = []

        def mutate(state: LedgerState) -> LedgerState:
            txn = build_transaction(
                description=description,
                amount=amount,
                category=category,
                type=type,
                date=date,
                currency=currency,
                exchange_rate=exchange_rate,
                tags=tags,
                recurring=recurring,
                recurring_id=recurring_id,
                split=split,
                table=state.currencies,
                now=now,
            )
            created.append(txn)
            transactions = ((txn,) + state.transactions)[:MAX_TRANSACTIONS]
            return replace(state, transactions=transactions)

        self._update(mutate)
        return created[0]

    def remove_transaction(self, transaction_id: str) -> LedgerState:
        return self._update(
            lambda state: _without(state, "transactions", lambda txn: txn.id == transaction_id)
        )

    def update_transaction(self, transaction_id: str, **changes: Any) -> LedgerState:
        def mutate(state: LedgerState) -> LedgerState:
            return _map_matching(
                state,
                "transactions",
                lambda txn: txn.id == transaction_id,
                lambda txn: _apply_transaction_changes(txn, changes, state),
            )

        return self._update(mutate)

    def get_tagged_transactions(self, tag: str) -> list[Transaction]:
        return [txn for txn in self._state.transactions if tag in txn.tags]

    def all_tags(self) -> list[str]:
        tags: list[str] = []
        for txn in self._state.transactions:
            for tag in txn.tags:
                if tag not in tags:
                    tags.append(tag)
        return tags

    # Recurring rules

    def add_recurring_rule(
        self,
        *,
        description: Any,
        amount: Any,
        category: Any,
        type: Any,
        frequency: Any,
        start_date: Any,
        end_date: Any = None,
        currency: Any = None,
        tags: Any = None,
        now: datetime | None = None,
    ) -> Optional[RecurringRule]:
        created: list[RecurringRule] = []

        def mutate(state: LedgerState) -> LedgerState:
            if len(state.recurring_rules) >= MAX_RECURRING:
                return state
            rule = build_recurring_rule(
                description=description,
                amount=amount,
                category=category,
                type=type,
                frequency=frequency,
                start_date=start_date,
                end_date=end_date,
                currency=currency,
                tags=tags,
                now=now,
            )
            created.append(rule)
            return replace(state, recurring_rules=state.recurring_rules + (rule,))

        self._update(mutate)
        return created[0] if created else None

    def remove_recurring_rule(self, rule_id: str) -> LedgerState:
        return self._update(
            lambda state: _without(state, "recurring_rules", lambda rule: rule.id == rule_id)
        )

    def toggle_recurring_rule(self, rule_id: str) -> LedgerState:
        return self._update(
            lambda state: _map_matching(
                state,
                "recurring_rules",
                lambda rule: rule.id == rule_id,
                lambda rule: replace(rule, active=not rule.active),
            )
        )

    def update_recurring_rule(self, rule_id: str, **changes: Any) -> LedgerState:
        changes.pop("last_executed", None)

        def rebuild(rule: RecurringRule) -> RecurringRule:
            merged = {
                "description": rule.description,
                "amount": rule.amount,
                "category": rule.category,
                "type": rule.type,
                "frequency": rule.frequency,
                "start_date": rule.start_date,
                "end_date": rule.end_date,
                "active": rule.active,
                "currency": rule.currency,
                "tags": rule.tags,
            }
            merged.update(changes)
            return build_recurring_rule(id=rule.id, last_executed=rule.last_executed, **merged)

        return self._update(
            lambda state: _map_matching(
                state, "recurring_rules", lambda rule: rule.id == rule_id, rebuild
            )
        )

    def record_occurrence(
        self,
        rule_id: str,
        occurrence: datetime,
        now: datetime | None = None,
    ) -> Optional[Transaction]:
        """Materialize one transaction from a rule and advance its marker in one commit.

        The transaction is dated ``now``; ``last_executed`` moves to
        ``occurrence`` unless that would move it backwards.
        """
        return self.record_occurrence_if(rule_id, lambda rule, state: occurrence, now=now)

    def record_occurrence_if(
        self,
        rule_id: str,
        resolve: Callable[[RecurringRule, LedgerState], Optional[datetime]],
        now: datetime | None = None,
    ) -> Optional[Transaction]:
        """Like :meth:`record_occurrence`, deciding the occurrence under the lock.

        ``resolve`` sees the rule and the state as they are at commit time and
        returns the occurrence to record, or None to leave the state unchanged.
        """
        reference = now or datetime.now()
        created: list[Transaction] = []

        def mutate(state: LedgerState) -> LedgerState:
            rule = next((item for item in state.recurring_rules if item.id == rule_id), None)
            if rule is None:
                return state
            occurrence = resolve(rule, state)
            if occurrence is None:
                return state

            def advance(item: RecurringRule) -> RecurringRule:
                if item.last_executed is not None and occurrence <= item.last_executed:
                    return item
                return replace(item, last_executed=occurrence)

            txn = build_transaction(
                description=rule.description,
                amount=rule.amount,
                category=rule.category,
                type=rule.type,
                date=reference,
                currency=rule.currency,
                tags=rule.tags,
                recurring=True,
                recurring_id=rule.id,
                table=state.currencies,
                now=reference,
            )
            created.append(txn)
            advanced = _map_matching(
                state, "recurring_rules", lambda item: item.id == rule_id, advance
            )
            return replace(
                advanced,
                transactions=((txn,) + state.transactions)[:MAX_TRANSACTIONS],
            )

        self._update(mutate)
        return created[0] if created else None

    def find_recurring_rule(self, rule_id: Optional[str]) -> Optional[RecurringRule]:
        if not rule_id:
            return None
        return next((rule for rule in self._state.recurring_rules if rule.id == rule_id), None)

    # Goals

    def add_goal(
        self,
        *,
        name: Any,
        target_amount: Any,
        deadline: Any,
        category: Any = None,
        color: Any = None,
        now: datetime | None = None,
    ) -> Optional[Goal]:
        created: list[Goal] = []

        def mutate(state: LedgerState) -> LedgerState:
            if len(state.goals) >= MAX_GOALS:
                return state
            goal = build_goal(
                name=name,
                target_amount=target_amount,
                deadline=deadline,
                category=category,
                color=color,
                now=now,
            )
            created.append(goal)
            return replace(state, goals=state.goals + (goal,))

        self._update(mutate)
        return created[0] if created else None

    def remove_goal(self, goal_id: str) -> LedgerState:
        return self._update(lambda state: _without(state, "goals", lambda goal: goal.id == goal_id))

    def contribute_to_goal(self, goal_id: str, amount: Any) -> LedgerState:
        """Add (or withdraw, with a negative amount) progress towards a goal."""
        delta = _signed_decimal(amount)

        def contribute(goal: Goal) -> Goal:
            current = goal.current_amount + delta
            return replace(goal, current_amount=min(max(current, Decimal("0")), goal.target_amount))

        return self._update(
            lambda state: _map_matching(state, "goals", lambda goal: goal.id == goal_id, contribute)
        )

    def find_goal(self, goal_id: Optional[str]) -> Optional[Goal]:
        if not goal_id:
            return None
        return next((goal for goal in self._state.goals if goal.id == goal_id), None)

    def goal_label_for(self, entry: SavedMoney) -> Optional[str]:
        if not entry.goal:
            return None
        goal = self.find_goal(entry.goal)
        return goal.name if goal else MISSING_REFERENCE_LABEL

    # Budgets

    def set_budget(self, category: Any, limit: Any, period: Any = None) -> LedgerState:
        budget = build_budget(category=category, limit=limit, period=period)

        def mutate(state: LedgerState) -> LedgerState:
            others = tuple(item for item in state.budgets if item.category != budget.category)
            if len(others) >= MAX_BUDGETS:
                return state
            return replace(state, budgets=others + (budget,))

        return self._update(mutate)

    def remove_budget(self, category: str) -> LedgerState:
        return self._update(
            lambda state: _without(state, "budgets", lambda budget: budget.category == category)
        )

    def find_budget(self, category: str) -> Optional[Budget]:
        return next((budget for budget in self._state.budgets if budget.category == category), None)

    # Saved money

    def add_saved_money(
        self,
        *,
        amount: Any,
        description: Any,
        date: Any = None,
        goal: Any = None,
        now: datetime | None = None,
    ) -> SavedMoney:
        entry = build_saved_money(
            amount=amount, description=description, date=date, goal=goal, now=now
        )

        def mutate(state: LedgerState) -> LedgerState:
            saved = (state.saved_money + (entry,))[-MAX_SAVED_MONEY:]
            return replace(state, saved_money=saved)

        self._update(mutate)
        return entry

    def remove_saved_money(self, entry_id: str) -> LedgerState:
        return self._update(
            lambda state: _without(state, "saved_money", lambda entry: entry.id == entry_id)
        )

    # Whole-state operations

    def clear_all_data(self) -> LedgerState:
        return self._update(
            lambda state: LedgerState(dark_mode=state.dark_mode, currencies=state.currencies)
        )

    def export_snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        snapshot = snapshot_from_state(self._state)
        snapshot["exportDate"] = (now or datetime.now()).isoformat()
        snapshot["version"] = SNAPSHOT_VERSION
        return snapshot

    def import_snapshot(self, raw: Any, now: datetime | None = None) -> bool:
        """Replace every collection with the snapshot contents.

        Returns False (leaving the state untouched) when ``raw`` is not a JSON
        object; missing or malformed fields fall back to empty defaults.
        """
        payload = raw if isinstance(raw, dict) else parse_snapshot_text(raw)
        if payload is None:
            logger.warning("Ignoring snapshot import: payload is not a JSON object")
            return False
        try:
            imported = state_from_snapshot(payload, now=now)
        except (TypeError, ValueError, AttributeError, ArithmeticError):
            logger.exception("Ignoring snapshot import: payload could not be parsed")
            return False
        self._update(lambda state: replace(imported, dark_mode=state.dark_mode))
        logger.info(
            "Imported snapshot with %d transactions and %d recurring rules",
            len(imported.transactions),
            len(imported.recurring_rules),
        )
        return True

    def replace_state(self, raw: Any, now: datetime | None = None) -> bool:
        """Swap in a snapshot received from another tab or the cloud (last writer wins)."""
        payload = raw if isinstance(raw, dict) else parse_snapshot_text(raw)
        if payload is None:
            logger.warning("Ignoring external state: payload is not a JSON object")
            return False
        try:
            incoming = state_from_snapshot(payload, now=now)
        except (TypeError, ValueError, AttributeError, ArithmeticError):
            logger.exception("Ignoring external state: payload could not be parsed")
            return False
        self._update(lambda state: incoming)
        return True


def _without(state: LedgerState, attribute: str, predicate: Callable[[Any], bool]) -> LedgerState:
    items: tuple = getattr(state, attribute)
    kept = tuple(item for item in items if not predicate(item))
    if len(kept) == len(items):
        return state
    return replace(state, **{attribute: kept})


def _map_matching(
    state: LedgerState,
    attribute: str,
    predicate: Callable[[Any], bool],
    transform: Callable[[Any], Any],
) -> LedgerState:
    items: Iterable = getattr(state, attribute)
    changed = False
    updated = []
    for item in items:
        if predicate(item):
            new_item = transform(item)
            changed = changed or new_item is not item
            updated.append(new_item)
        else:
            updated.append(item)
    if not changed:
        return state
    return replace(state, **{attribute: tuple(updated)})


def _apply_transaction_changes(
    txn: Transaction, changes: dict[str, Any], state: LedgerState
) -> Transaction:
    values: dict[str, Any] = {}
    if "description" in changes:
        values["description"] = sanitize_text(changes["description"], 200)
    if "amount" in changes:
        values["amount"] = coerce_decimal(changes["amount"])
    if "category" in changes:
        values["category"] = sanitize_text(changes["category"], 50) or txn.category
    if "type" in changes:
        values["type"] = TransactionType.parse(changes["type"])
    if "date" in changes:
        values["date"] = coerce_datetime(changes["date"])
    if "tags" in changes:
        values["tags"] = coerce_tags(changes["tags"])
    if "split" in changes:
        values["split"] = build_split(changes["split"])
    if "currency" in changes or "exchange_rate" in changes:
        currency = Currency.parse(changes.get("currency", txn.currency))
        supplied = changes.get("exchange_rate")
        if supplied is None and currency is txn.currency:
            supplied = txn.exchange_rate
        values["currency"] = currency
        values["exchange_rate"] = lock_exchange_rate(currency, state.currencies, supplied)
    if not values:
        return txn
    return replace(txn, **values)


def _signed_decimal(value: Any) -> Decimal:
    magnitude = coerce_decimal(value)
    try:
        negative = Decimal(str(value)) < 0
    except (ArithmeticError, ValueError):
        negative = False
    return -magnitude if negative else magnitude
