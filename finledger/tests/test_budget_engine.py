import unittest
from datetime import date
from decimal import Decimal

from finledger.budget_engine import (
    Budget,
    ensure_unique_budget,
    evaluate_budget,
    evaluate_budgets,
    validate_budget,
)
from finledger.currency_conversion import CurrencyLedger, CurrencyRecord
from finledger.models import DuplicateBudget, InvalidPeriod, Transaction


def make_ledger() -> CurrencyLedger:
    return CurrencyLedger(
        [
            CurrencyRecord(id=1, code="IDR", exchange_rate=Decimal("1"), is_default=True),
            CurrencyRecord(id=2, code="EUR", exchange_rate=Decimal("0.00005")),
        ]
    )


def outcome(amount, on_date, category_id=7, currency="IDR", category=None) -> Transaction:
    return Transaction(
        amount=Decimal(amount),
        type="outcome",
        date=on_date,
        currency=currency,
        category_id=category_id,
        category=category,
    )


class BudgetEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger = make_ledger()
        self.budget = Budget(
            year=2024,
            month=5,
            amount=Decimal("1000000"),
            currency="IDR",
            category_id=7,
            alert_threshold=Decimal("80"),
        )
        self.transactions = [
            outcome("500000", date(2024, 5, 1)),
            outcome("350000", date(2024, 5, 31)),
            outcome("900000", date(2024, 6, 1)),
            outcome("400000", date(2024, 5, 10), category_id=8),
            Transaction(
                amount=Decimal("2000000"),
                type="income",
                date=date(2024, 5, 2),
                currency="IDR",
                category_id=7,
            ),
        ]

    def test_near_limit_but_not_exceeded(self) -> None:
        result = evaluate_budget(self.budget, self.transactions, self.ledger)

        self.assertEqual(result.spent, Decimal("850000"))
        self.assertEqual(result.remaining, Decimal("150000"))
        self.assertEqual(result.percentage, Decimal("85"))
        self.assertFalse(result.is_exceeded)
        self.assertTrue(result.is_near_limit)
        self.assertEqual(result.currency, "IDR")

    def test_exceeded_budget_clamps_percentage(self) -> None:
        transactions = self.transactions + [outcome("300000", date(2024, 5, 15))]

        result = evaluate_budget(self.budget, transactions, self.ledger)

        self.assertEqual(result.percentage, Decimal("100"))
        self.assertTrue(result.is_exceeded)
        self.assertEqual(result.remaining, Decimal("-150000"))

    def test_percentage_never_decreases_as_spending_grows(self) -> None:
        transactions = []
        previous = Decimal("0")
        for day in range(1, 15):
            transactions.append(outcome("100000", date(2024, 5, day)))
            percentage = evaluate_budget(self.budget, transactions, self.ledger).percentage
            self.assertGreaterEqual(percentage, previous)
            self.assertLessEqual(percentage, Decimal("100"))
            previous = percentage

    def test_spending_is_reexpressed_in_budget_currency(self) -> None:
        budget = Budget(year=2024, month=5, amount=Decimal("100"), currency="EUR", category_id=7)
        transactions = [outcome("1000000", date(2024, 5, 3))]

        result = evaluate_budget(budget, transactions, self.ledger)

        self.assertEqual(result.spent, Decimal("50"))
        self.assertEqual(result.remaining, Decimal("50"))
        self.assertEqual(result.percentage, Decimal("50"))
        self.assertEqual(result.budget_amount_base, Decimal("2000000"))
        self.assertFalse(result.is_near_limit)

    def test_zero_budget_reports_zero_percent(self) -> None:
        budget = Budget(year=2024, month=5, amount=Decimal("0"), currency="IDR", category_id=7)

        empty = evaluate_budget(budget, [], self.ledger)
        spent = evaluate_budget(budget, self.transactions, self.ledger)

        self.assertEqual(empty.percentage, Decimal("0"))
        self.assertFalse(empty.is_exceeded)
        self.assertEqual(spent.percentage, Decimal("0"))
        self.assertTrue(spent.is_exceeded)

    def test_legacy_category_name_matches_transactions(self) -> None:
        budget = Budget(year=2024, month=5, amount=Decimal("100000"), currency="IDR", category="Food")
        transactions = [
            outcome("40000", date(2024, 5, 3), category_id=None, category="Food"),
            outcome("70000", date(2024, 5, 4), category_id=None, category="Fuel"),
        ]

        result = evaluate_budget(budget, transactions, self.ledger)

        self.assertEqual(result.spent, Decimal("40000"))
        self.assertEqual(result.percentage, Decimal("40"))

    def test_invalid_month_is_rejected(self) -> None:
        budget = Budget(year=2024, month=13, amount=Decimal("10"), currency="IDR", category_id=7)

        with self.assertRaises(InvalidPeriod):
            evaluate_budget(budget, self.transactions, self.ledger)

    def test_evaluates_each_budget_over_its_own_month(self) -> None:
        june = Budget(year=2024, month=6, amount=Decimal("1000000"), currency="IDR", category_id=7)

        results = evaluate_budgets([self.budget, june], self.transactions, self.ledger)

        self.assertEqual([evaluation.spent for _, evaluation in results], [Decimal("850000"), Decimal("900000")])
        self.assertIs(results[1][0], june)


class BudgetValidationTests(unittest.TestCase):
    def test_rejects_invalid_budgets(self) -> None:
        invalid = [
            Budget(year=2024, month=0, amount=Decimal("10"), currency="USD", category_id=1),
            Budget(year=2024, month=5, amount=Decimal("0"), currency="USD", category_id=1),
            Budget(year=2024, month=5, amount=Decimal("10"), currency="USD", category_id=1,
                   alert_threshold=Decimal("120")),
            Budget(year=2024, month=5, amount=Decimal("10"), currency="USD"),
        ]
        for budget in invalid:
            with self.assertRaises(InvalidPeriod):
                validate_budget(budget)

    def test_duplicate_category_and_month_is_rejected(self) -> None:
        existing = [Budget(year=2024, month=5, amount=Decimal("10"), currency="USD", category_id=1, id=3)]

        with self.assertRaises(DuplicateBudget):
            ensure_unique_budget(
                existing,
                Budget(year=2024, month=5, amount=Decimal("20"), currency="USD", category_id=1),
            )

    def test_other_month_or_same_record_is_accepted(self) -> None:
        existing = [Budget(year=2024, month=5, amount=Decimal("10"), currency="USD", category_id=1, id=3)]

        ensure_unique_budget(
            existing,
            Budget(year=2024, month=6, amount=Decimal("20"), currency="USD", category_id=1),
        )
        ensure_unique_budget(
            existing,
            Budget(year=2024, month=5, amount=Decimal("30"), currency="USD", category_id=1, id=3),
        )


if __name__ == "__main__":
    unittest.main()
