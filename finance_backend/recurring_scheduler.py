from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from finance_backend.config import recurring_interval_seconds
from finance_backend.ledger_store import LedgerStore
from finance_backend.models import Frequency, LedgerState, RecurringRule, Transaction
from finance_backend.timers import PeriodicRunner
from finance_backend.utils import get_logger

logger = get_logger(__name__)

DAY_INTERVAL = timedelta(days=1)
WEEK_INTERVAL = timedelta(weeks=1)
CALENDAR_HORIZON_DAYS = 365
UPCOMING_DAYS = 30
PAYMENT_HOUR = time(12, 0)


class RuleState(str, Enum):
    INACTIVE = "inactive"
    EXPIRED = "expired"
    ACTIVE_DUE = "active-due"
    ACTIVE_NOT_DUE = "active-not-due"


@dataclass(frozen=True)
class UpcomingPayment:
    date: date
    rule: RecurringRule


def advance(value: datetime, frequency: Frequency, steps: int = 1) -> datetime:
    """Move ``value`` forward by ``steps`` periods; month steps clamp to month end."""
    if frequency is Frequency.DAILY:
        return value + DAY_INTERVAL * steps
    if frequency is Frequency.WEEKLY:
        return value + WEEK_INTERVAL * steps
    if frequency is Frequency.YEARLY:
        return _add_months(value, 12 * steps)
    return _add_months(value, steps)


def next_due_date(rule: RecurringRule) -> datetime:
    anchor = rule.last_executed or rule.start_date
    return advance(anchor, rule.frequency)


def rule_state(rule: RecurringRule, now: datetime) -> RuleState:
    if not rule.active:
        return RuleState.INACTIVE
    if rule.end_date is not None and now >= rule.end_date:
        return RuleState.EXPIRED
    due = next_due_date(rule)
    if due <= now or due.date() == now.date():
        return RuleState.ACTIVE_DUE
    return RuleState.ACTIVE_NOT_DUE


def process_recurring_rules(store: LedgerStore, now: datetime | None = None) -> List[Transaction]:
    """Fire every due rule once and return the transactions created.

    A rule that missed several periods advances a single period per call, and
    fires at most once for a given ``now``.
    """
    reference = now or datetime.now()

    # Checked again under the store lock so concurrent callers cannot both fire.
    def due_occurrence(rule: RecurringRule, state: LedgerState) -> Optional[datetime]:
        if rule_state(rule, reference) is not RuleState.ACTIVE_DUE:
            return None
        if _fired_at(state, rule.id, reference):
            return None
        return next_due_date(rule)

    created: List[Transaction] = []
    for rule_id in [rule.id for rule in store.state.recurring_rules]:
        txn = store.record_occurrence_if(rule_id, due_occurrence, now=reference)
        if txn is None:
            continue
        logger.info("Recurring rule %s fired at %s", rule_id, reference.isoformat())
        created.append(txn)
    return created


def project_occurrences(
    rule: RecurringRule,
    count: int,
    after: datetime | None = None,
) -> List[datetime]:
    """Up to ``count`` occurrence dates of ``rule`` without touching its state.

    Stepping starts at ``last_executed`` (or ``start_date`` for a rule that
    never fired), and that anchor is the first occurrence. ``end_date`` is
    inclusive and ``after`` drops occurrences earlier than it.
    """
    if count <= 0:
        return []
    anchor = rule.last_executed or rule.start_date
    step = 0
    if after is not None and after > anchor:
        step = _first_step_on_or_after(anchor, rule.frequency, after)

    occurrences: List[datetime] = []
    while len(occurrences) < count:
        current = advance(anchor, rule.frequency, step)
        if rule.end_date is not None and current > rule.end_date:
            break
        occurrences.append(current)
        step += 1
    return occurrences


def occurs_on(rule: RecurringRule, day: date, today: date | None = None) -> bool:
    """Whether an active rule has an occurrence on the calendar day ``day``."""
    if not rule.active:
        return False
    start = rule.start_date.date()
    if rule.end_date is not None:
        last_day = rule.end_date.date()
    else:
        last_day = (today or date.today()) + timedelta(days=CALENDAR_HORIZON_DAYS)
    if day < start or day > last_day:
        return False

    if rule.frequency is Frequency.DAILY:
        return True
    if rule.frequency is Frequency.WEEKLY:
        return day.weekday() == start.weekday()
    if rule.frequency is Frequency.YEARLY and day.month != start.month:
        return False
    return day.day == min(start.day, monthrange(day.year, day.month)[1])


def upcoming_payments(
    rules: Iterable[RecurringRule],
    start: date | None = None,
    days: int = UPCOMING_DAYS,
) -> List[UpcomingPayment]:
    first_day = start or date.today()
    rules = list(rules)
    payments: List[UpcomingPayment] = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        for rule in rules:
            if occurs_on(rule, day, today=first_day):
                payments.append(UpcomingPayment(date=day, rule=rule))
    return payments


def is_occurrence_paid(state: LedgerState, rule_id: str, day: date) -> bool:
    return any(
        txn.recurring_id == rule_id and txn.date.date() == day for txn in state.transactions
    )


def mark_occurrence_paid(store: LedgerStore, rule_id: str, day: date) -> Optional[Transaction]:
    """Record a manual payment for one calendar occurrence, dated at noon."""
    rule = store.find_recurring_rule(rule_id)
    if rule is None:
        return None
    paid_at = datetime.combine(day, PAYMENT_HOUR)
    return store.add_transaction(
        description=rule.description,
        amount=rule.amount,
        category=rule.category,
        type=rule.type,
        date=paid_at,
        currency=rule.currency,
        tags=rule.tags,
        recurring=True,
        recurring_id=rule.id,
    )


class RecurringTicker:
    """Runs the scheduler on start and then on a fixed interval (hourly by default)."""

    def __init__(self, store: LedgerStore, interval: float | None = None) -> None:
        self.store = store
        self._runner = PeriodicRunner(
            interval or recurring_interval_seconds(),
            self.tick,
            name="recurring-ticker",
        )

    @property
    def running(self) -> bool:
        return self._runner.running

    def tick(self) -> List[Transaction]:
        return process_recurring_rules(self.store)

    def start(self) -> None:
        self._runner.start(run_immediately=True)

    def stop(self) -> None:
        self._runner.stop()


def _fired_at(state: LedgerState, rule_id: str, instant: datetime) -> bool:
    return any(
        txn.recurring_id == rule_id and txn.date == instant for txn in state.transactions
    )


def _first_step_on_or_after(start: datetime, frequency: Frequency, minimum: datetime) -> int:
    if frequency in {Frequency.DAILY, Frequency.WEEKLY}:
        interval = DAY_INTERVAL if frequency is Frequency.DAILY else WEEK_INTERVAL
        steps = (minimum - start) // interval
        if start + interval * steps < minimum:
            steps += 1
        return steps

    months_per_step = 12 if frequency is Frequency.YEARLY else 1
    months_between = (minimum.year - start.year) * 12 + (minimum.month - start.month)
    steps = months_between // months_per_step
    if advance(start, frequency, steps) < minimum:
        steps += 1
    return steps


def _add_months(value: datetime, months: int) -> datetime:
    total_month = value.month - 1 + months
    year = value.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))
