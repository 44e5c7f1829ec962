import unittest
from datetime import date
from decimal import Decimal

from finledger.models import InvalidPeriod, Transaction
from finledger.recurring_scheduler import (
    RecurringTransaction,
    advance_date,
    advance_entry,
    is_due,
    new_recurring,
    process_recurring,
)


def make_recurring(**overrides) -> RecurringTransaction:
    values = {
        "id": 1,
        "user_id": 10,
        "type": "outcome",
        "amount": Decimal("100.00"),
        "currency": "USD",
        "frequency": "monthly",
        "start_date": date(2024, 1, 31),
        "next_date": date(2024, 1, 31),
        "description": "Rent",
    }
    values.update(overrides)
    return RecurringTransaction(**values)


class AdvanceDateTests(unittest.TestCase):
    def test_monthly_clamps_and_keeps_clamped_day(self) -> None:
        first = advance_date(date(2024, 1, 31), "monthly")
        second = advance_date(first, "monthly")

        self.assertEqual(first, date(2024, 2, 29))
        self.assertEqual(second, date(2024, 3, 29))

    def test_monthly_clamps_in_non_leap_year(self) -> None:
        self.assertEqual(advance_date(date(2023, 1, 31), "monthly"), date(2023, 2, 28))

    def test_year_wraps(self) -> None:
        self.assertEqual(advance_date(date(2024, 12, 15), "monthly"), date(2025, 1, 15))
        self.assertEqual(advance_date(date(2024, 12, 28), "weekly"), date(2025, 1, 4))

    def test_unsupported_frequency_is_rejected(self) -> None:
        with self.assertRaises(InvalidPeriod):
            advance_date(date(2024, 1, 1), "daily")

    def test_entry_past_end_date_is_deactivated(self) -> None:
        entry = make_recurring(end_date=date(2024, 2, 15))

        advanced = advance_entry(entry)

        self.assertEqual(advanced.next_date, date(2024, 2, 29))
        self.assertFalse(advanced.is_active)


class NewRecurringTests(unittest.TestCase):
    def test_first_occurrence_is_one_period_after_start(self) -> None:
        entry = new_recurring("Income", "2500", "USD", "Weekly", date(2024, 5, 6), description="Pay")

        self.assertEqual(entry.start_date, date(2024, 5, 6))
        self.assertEqual(entry.next_date, date(2024, 5, 13))
        self.assertEqual((entry.type, entry.frequency), ("income", "weekly"))
        self.assertEqual(entry.amount, Decimal("2500"))
        self.assertEqual(entry.description, "Pay")

    def test_monthly_entry_is_not_due_on_its_start_date(self) -> None:
        entry = new_recurring("outcome", "100", "USD", "monthly", date(2024, 1, 31))

        on_start = process_recurring([entry], date(2024, 1, 31), [])
        one_month_later = process_recurring([entry], date(2024, 2, 29), [])

        self.assertEqual(entry.next_date, date(2024, 2, 29))
        self.assertEqual(on_start.created, [])
        self.assertEqual([txn.date for txn in one_month_later.created], [date(2024, 2, 29)])
        self.assertEqual(one_month_later.updated[0].next_date, date(2024, 3, 29))

    def test_rejects_invalid_input(self) -> None:
        with self.assertRaises(InvalidPeriod):
            new_recurring("outcome", "0", "USD", "monthly", date(2024, 5, 6))
        with self.assertRaises(InvalidPeriod):
            new_recurring("outcome", "10", "USD", "monthly", date(2024, 5, 6), end_date=date(2024, 5, 1))
        with self.assertRaises(InvalidPeriod):
            new_recurring("transfer", "10", "USD", "monthly", date(2024, 5, 6))


class DueTests(unittest.TestCase):
    def test_due_rules(self) -> None:
        as_of = date(2024, 2, 1)

        self.assertTrue(is_due(make_recurring(), as_of))
        self.assertFalse(is_due(make_recurring(next_date=date(2024, 2, 2)), as_of))
        self.assertFalse(is_due(make_recurring(is_active=False), as_of))
        self.assertFalse(is_due(make_recurring(end_date=date(2024, 1, 31)), as_of))


class ProcessRecurringTests(unittest.TestCase):
    def test_materializes_one_occurrence_and_advances(self) -> None:
        result = process_recurring([make_recurring()], date(2024, 2, 5), [])

        self.assertEqual(len(result.created), 1)
        created = result.created[0]
        self.assertEqual(created.date, date(2024, 1, 31))
        self.assertEqual(created.recurring_id, 1)
        self.assertEqual(created.description, "Rent")
        self.assertEqual(result.updated[0].next_date, date(2024, 2, 29))

    def test_one_occurrence_per_run_even_when_far_behind(self) -> None:
        result = process_recurring([make_recurring()], date(2024, 6, 1), [])

        self.assertEqual(len(result.created), 1)
        self.assertEqual(result.updated[0].next_date, date(2024, 2, 29))

    def test_rerun_after_interrupted_advance_does_not_duplicate(self) -> None:
        entry = make_recurring()
        first = process_recurring([entry], date(2024, 2, 5), [])

        second = process_recurring([entry], date(2024, 2, 5), first.created)

        self.assertEqual(second.created, [])
        self.assertEqual(second.skipped, [entry])
        self.assertEqual(second.updated[0].next_date, date(2024, 2, 29))

    def test_matching_manual_transaction_is_treated_as_existing(self) -> None:
        manual = Transaction(
            amount=Decimal("100"),
            type="outcome",
            date=date(2024, 1, 31),
            currency="USD",
            user_id=10,
        )

        result = process_recurring([make_recurring()], date(2024, 2, 5), [manual])

        self.assertEqual(result.created, [])
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(len(result.updated), 1)

    def test_entries_that_are_not_due_are_untouched(self) -> None:
        entries = [
            make_recurring(id=1, next_date=date(2024, 3, 1)),
            make_recurring(id=2, is_active=False),
        ]

        result = process_recurring(entries, date(2024, 2, 5), [])

        self.assertEqual((result.created, result.updated, result.skipped), ([], [], []))

    def test_failure_is_collected_and_entry_not_advanced(self) -> None:
        entries = [make_recurring(id=1), make_recurring(id=2, amount=Decimal("55"))]

        def materialize(occurrence: Transaction) -> Transaction:
            if occurrence.recurring_id == 1:
                raise RuntimeError("database is locked")
            return occurrence

        result = process_recurring(entries, date(2024, 2, 5), [], materialize)

        self.assertEqual([failure.recurring_id for failure in result.failures], [1])
        self.assertEqual(result.failures[0].error, "database is locked")
        self.assertEqual([entry.id for entry in result.updated], [2])
        self.assertEqual(len(result.created), 1)

    def test_two_series_on_the_same_day_are_both_created(self) -> None:
        entries = [
            make_recurring(id=1),
            make_recurring(id=2, amount=Decimal("20"), description="Gym"),
        ]

        result = process_recurring(entries, date(2024, 2, 5), [])

        self.assertEqual([txn.recurring_id for txn in result.created], [1, 2])


if __name__ == "__main__":
    unittest.main()
