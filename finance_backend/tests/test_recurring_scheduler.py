import threading
import unittest
from datetime import date, datetime, timedelta
from decimal import Decimal

from finance_backend.ledger_store import LedgerStore
from finance_backend.models import TransactionType
from finance_backend.recurring_scheduler import (
    RecurringTicker,
    RuleState,
    is_occurrence_paid,
    mark_occurrence_paid,
    next_due_date,
    occurs_on,
    process_recurring_rules,
    project_occurrences,
    rule_state,
    upcoming_payments,
)

NOW = datetime(2026, 10, 17, 9, 0)


def add_rule(store, frequency="monthly", start_date=None, **extra):
    return store.add_recurring_rule(
        description=extra.pop("description", "Aluguel"),
        amount=extra.pop("amount", "200"),
        category="Moradia",
        type=extra.pop("type", "expense"),
        frequency=frequency,
        start_date=start_date or NOW - timedelta(days=40),
        now=NOW,
        **extra,
    )


class ProcessRecurringRulesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = LedgerStore()

    def test_due_rule_fires_once_and_advances(self) -> None:
        rule = add_rule(self.store)

        created = process_recurring_rules(self.store, now=NOW)

        self.assertEqual(len(created), 1)
        txn = created[0]
        self.assertEqual(txn.amount, Decimal("200"))
        self.assertEqual(txn.type, TransactionType.EXPENSE)
        self.assertEqual(txn.date, NOW)
        self.assertTrue(txn.recurring)
        self.assertEqual(txn.recurring_id, rule.id)

        updated = self.store.find_recurring_rule(rule.id)
        self.assertEqual(updated.last_executed, datetime(2026, 10, 7, 9, 0))
        self.assertEqual(rule_state(updated, NOW), RuleState.ACTIVE_NOT_DUE)

        self.assertEqual(process_recurring_rules(self.store, now=NOW), [])
        self.assertEqual(len(self.store.state.transactions), 1)

    def test_missed_periods_catch_up_one_per_tick(self) -> None:
        rule = add_rule(self.store, start_date=datetime(2026, 7, 10, 9, 0))

        fired = []
        for hours in range(5):
            fired.extend(process_recurring_rules(self.store, now=NOW + timedelta(hours=hours)))

        self.assertEqual(len(fired), 3)
        self.assertEqual(
            self.store.find_recurring_rule(rule.id).last_executed,
            datetime(2026, 10, 10, 9, 0),
        )

    def test_rule_due_later_the_same_day_fires(self) -> None:
        rule = add_rule(self.store, frequency="daily", start_date=datetime(2026, 10, 16, 15, 0))

        self.assertEqual(next_due_date(rule), datetime(2026, 10, 17, 15, 0))
        self.assertEqual(rule_state(rule, NOW), RuleState.ACTIVE_DUE)
        self.assertEqual(len(process_recurring_rules(self.store, now=NOW)), 1)

    def test_inactive_and_expired_rules_never_fire(self) -> None:
        inactive = add_rule(self.store)
        self.store.toggle_recurring_rule(inactive.id)
        expired = add_rule(
            self.store,
            start_date=datetime(2026, 1, 1),
            end_date=datetime(2026, 6, 1),
        )

        self.assertEqual(process_recurring_rules(self.store, now=NOW), [])
        self.assertEqual(
            rule_state(self.store.find_recurring_rule(inactive.id), NOW), RuleState.INACTIVE
        )
        self.assertEqual(rule_state(expired, NOW), RuleState.EXPIRED)

    def test_rule_not_yet_due(self) -> None:
        rule = add_rule(self.store, start_date=NOW - timedelta(days=1))

        self.assertEqual(rule_state(rule, NOW), RuleState.ACTIVE_NOT_DUE)
        self.assertEqual(process_recurring_rules(self.store, now=NOW), [])

    def test_foreign_rule_locks_current_rate(self) -> None:
        self.store.update_currency("USD", "5.5")
        add_rule(self.store, currency="USD")

        txn = process_recurring_rules(self.store, now=NOW)[0]

        self.assertEqual(txn.exchange_rate, Decimal("5.5"))

    def test_ticker_processes_rules_on_tick(self) -> None:
        add_rule(self.store, frequency="daily", start_date=datetime.now() - timedelta(days=3))
        ticker = RecurringTicker(self.store, interval=3600)

        self.assertEqual(len(ticker.tick()), 1)
        self.assertFalse(ticker.running)

    def test_concurrent_ticks_fire_a_due_rule_once(self) -> None:
        workers = 4
        for _ in range(20):
            store = LedgerStore()
            add_rule(store, frequency="daily", start_date=NOW - timedelta(days=3))
            barrier = threading.Barrier(workers)

            def tick() -> None:
                barrier.wait()
                process_recurring_rules(store, now=NOW)

            threads = [threading.Thread(target=tick) for _ in range(workers)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            self.assertEqual(len(store.state.transactions), 1)

    def test_record_occurrence_if_skips_when_nothing_is_due(self) -> None:
        rule = add_rule(self.store)
        before = self.store.state

        txn = self.store.record_occurrence_if(rule.id, lambda rule, state: None, now=NOW)

        self.assertIsNone(txn)
        self.assertIs(self.store.state, before)
        self.assertIsNone(self.store.record_occurrence_if("missing", lambda rule, state: NOW))


class ProjectOccurrencesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = LedgerStore()

    def test_monthly_occurrences_clamp_to_month_end(self) -> None:
        rule = add_rule(self.store, start_date=datetime(2026, 1, 31))

        self.assertEqual(
            project_occurrences(rule, 4),
            [
                datetime(2026, 1, 31),
                datetime(2026, 2, 28),
                datetime(2026, 3, 31),
                datetime(2026, 4, 30),
            ],
        )

    def test_end_date_is_inclusive(self) -> None:
        rule = add_rule(
            self.store,
            frequency="weekly",
            start_date=datetime(2026, 1, 1),
            end_date=datetime(2026, 1, 15),
        )

        self.assertEqual(
            project_occurrences(rule, 10),
            [datetime(2026, 1, 1), datetime(2026, 1, 8), datetime(2026, 1, 15)],
        )

    def test_after_skips_earlier_occurrences(self) -> None:
        daily = add_rule(self.store, frequency="daily", start_date=datetime(2026, 1, 1))
        yearly = add_rule(self.store, frequency="yearly", start_date=datetime(2024, 2, 29))

        self.assertEqual(
            project_occurrences(daily, 2, after=datetime(2026, 1, 5)),
            [datetime(2026, 1, 5), datetime(2026, 1, 6)],
        )
        self.assertEqual(
            project_occurrences(yearly, 2, after=datetime(2025, 1, 1)),
            [datetime(2025, 2, 28), datetime(2026, 2, 28)],
        )

    def test_projection_leaves_rule_untouched(self) -> None:
        rule = add_rule(self.store, frequency="daily", start_date=datetime(2026, 1, 1))
        before = self.store.state

        project_occurrences(rule, 30)

        self.assertIs(self.store.state, before)
        self.assertEqual(project_occurrences(rule, 0), [])

    def test_fired_rule_projects_from_last_execution(self) -> None:
        rule = add_rule(self.store, start_date=datetime(2026, 1, 5))
        self.store.record_occurrence(rule.id, datetime(2026, 2, 5), now=NOW)
        fired = self.store.find_recurring_rule(rule.id)

        self.assertEqual(fired.last_executed, datetime(2026, 2, 5))
        self.assertEqual(
            project_occurrences(fired, 2),
            [datetime(2026, 2, 5), datetime(2026, 3, 5)],
        )
        self.assertEqual(
            project_occurrences(fired, 2, after=datetime(2026, 2, 6)),
            [datetime(2026, 3, 5), datetime(2026, 4, 5)],
        )
        self.assertEqual(
            project_occurrences(fired, 1, after=datetime(2025, 12, 1)),
            [datetime(2026, 2, 5)],
        )


class CalendarTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = LedgerStore()

    def test_occurs_on_matches_frequency(self) -> None:
        monthly = add_rule(self.store, start_date=datetime(2026, 1, 31))
        weekly = add_rule(self.store, frequency="weekly", start_date=datetime(2026, 10, 5))
        yearly = add_rule(self.store, frequency="yearly", start_date=datetime(2025, 3, 10))
        today = date(2026, 1, 1)

        self.assertTrue(occurs_on(monthly, date(2026, 2, 28), today))
        self.assertFalse(occurs_on(monthly, date(2026, 2, 27), today))
        self.assertFalse(occurs_on(monthly, date(2025, 12, 31), today))
        self.assertTrue(occurs_on(weekly, date(2026, 10, 12), today))
        self.assertFalse(occurs_on(weekly, date(2026, 10, 13), today))
        self.assertTrue(occurs_on(yearly, date(2026, 3, 10), today))
        self.assertFalse(occurs_on(yearly, date(2026, 4, 10), today))

    def test_inactive_rule_has_no_occurrences(self) -> None:
        rule = add_rule(self.store, frequency="daily", start_date=datetime(2026, 10, 1))
        self.store.toggle_recurring_rule(rule.id)

        paused = self.store.find_recurring_rule(rule.id)
        self.assertFalse(occurs_on(paused, date(2026, 10, 20), date(2026, 10, 17)))

    def test_upcoming_payments_cover_window(self) -> None:
        add_rule(self.store, frequency="daily", start_date=datetime(2026, 10, 1))
        add_rule(self.store, frequency="monthly", start_date=datetime(2026, 9, 20))

        payments = upcoming_payments(self.store.state.recurring_rules, start=date(2026, 10, 17), days=7)

        self.assertEqual(len(payments), 8)
        self.assertEqual(payments[0].date, date(2026, 10, 17))
        self.assertEqual(
            [payment.date for payment in payments if payment.rule.frequency.value == "monthly"],
            [date(2026, 10, 20)],
        )

    def test_mark_occurrence_paid(self) -> None:
        rule = add_rule(self.store, start_date=datetime(2026, 9, 20))
        day = date(2026, 10, 20)

        self.assertFalse(is_occurrence_paid(self.store.state, rule.id, day))
        txn = mark_occurrence_paid(self.store, rule.id, day)

        self.assertEqual(txn.date, datetime(2026, 10, 20, 12, 0))
        self.assertEqual(txn.recurring_id, rule.id)
        self.assertTrue(is_occurrence_paid(self.store.state, rule.id, day))
        self.assertIsNone(mark_occurrence_paid(self.store, "missing", day))


if __name__ == "__main__":
    unittest.main()
