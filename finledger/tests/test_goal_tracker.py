import unittest
from datetime import date, datetime
from decimal import Decimal

from finledger.goal_tracker import (
    Goal,
    cancel_goal,
    create_goal,
    evaluate_goal,
    reactivate_goal,
    update_goal,
)
from finledger.models import GoalStatus, InvalidPeriod


class GoalProgressTests(unittest.TestCase):
    def test_progress_is_clamped_to_one_hundred(self) -> None:
        goal = Goal(
            title="House",
            target_amount=Decimal("5000000"),
            current_amount=Decimal("5200000"),
            currency="IDR",
        )

        progress = evaluate_goal(goal, date(2024, 3, 1))

        self.assertEqual(progress.progress_percentage, Decimal("100"))
        self.assertIsNone(progress.days_remaining)
        self.assertFalse(progress.is_overdue)

    def test_partial_progress(self) -> None:
        goal = Goal(title="Bike", target_amount=Decimal("400"), current_amount=Decimal("100"), currency="USD")

        self.assertEqual(evaluate_goal(goal, date(2024, 3, 1)).progress_percentage, Decimal("25"))

    def test_days_remaining_for_dates_and_datetimes(self) -> None:
        goal = Goal(
            title="Trip",
            target_amount=Decimal("1000"),
            currency="USD",
            deadline=date(2024, 3, 30),
        )

        self.assertEqual(evaluate_goal(goal, date(2024, 3, 1)).days_remaining, 29)
        self.assertEqual(evaluate_goal(goal, datetime(2024, 3, 1, 12, 0)).days_remaining, 29)

    def test_active_goal_past_deadline_is_overdue(self) -> None:
        goal = Goal(
            title="Trip",
            target_amount=Decimal("1000"),
            currency="USD",
            deadline=date(2024, 3, 1),
        )

        progress = evaluate_goal(goal, date(2024, 3, 3))

        self.assertEqual(progress.days_remaining, -2)
        self.assertTrue(progress.is_overdue)

    def test_finished_goals_are_never_overdue(self) -> None:
        for status in (GoalStatus.COMPLETED, GoalStatus.CANCELLED):
            goal = Goal(
                title="Trip",
                target_amount=Decimal("1000"),
                currency="USD",
                deadline=date(2024, 3, 1),
                status=status,
            )
            self.assertFalse(evaluate_goal(goal, date(2024, 3, 3)).is_overdue)


class GoalLifecycleTests(unittest.TestCase):
    def test_current_above_target_is_rejected(self) -> None:
        with self.assertRaises(InvalidPeriod):
            create_goal("House", Decimal("5000000"), "IDR", current_amount=Decimal("5200000"))

        goal = create_goal("House", Decimal("5000000"), "IDR", current_amount=Decimal("100"))
        with self.assertRaises(InvalidPeriod):
            update_goal(goal, current_amount=Decimal("5200000"))

    def test_rejects_invalid_creation_input(self) -> None:
        with self.assertRaises(InvalidPeriod):
            create_goal(" ", Decimal("10"), "USD")
        with self.assertRaises(InvalidPeriod):
            create_goal("Car", Decimal("0"), "USD")
        with self.assertRaises(InvalidPeriod):
            create_goal("Car", Decimal("10"), "USD", current_amount=Decimal("-1"))
        with self.assertRaises(InvalidPeriod):
            create_goal("Car", Decimal("10"), "USD", deadline=date(2024, 1, 1), today=date(2024, 2, 1))

    def test_reaching_target_completes_goal(self) -> None:
        reached = create_goal("Car", Decimal("10"), "USD", current_amount=Decimal("10"))
        goal = create_goal("Laptop", "1500", "USD", current_amount="200")

        updated = update_goal(goal, current_amount=Decimal("1500"))

        self.assertEqual(reached.status, GoalStatus.COMPLETED)
        self.assertEqual(goal.status, GoalStatus.ACTIVE)
        self.assertEqual(updated.status, GoalStatus.COMPLETED)

    def test_cancelled_goal_stays_cancelled_when_funded(self) -> None:
        goal = cancel_goal(create_goal("Laptop", Decimal("1500"), "USD"))

        updated = update_goal(goal, current_amount=Decimal("1500"))

        self.assertEqual(updated.status, GoalStatus.CANCELLED)

    def test_reactivation_reapplies_completion_rule(self) -> None:
        partial = cancel_goal(create_goal("Laptop", Decimal("1500"), "USD", current_amount=Decimal("10")))
        funded = update_goal(partial, current_amount=Decimal("1500"))

        self.assertEqual(reactivate_goal(partial).status, GoalStatus.ACTIVE)
        self.assertEqual(reactivate_goal(funded).status, GoalStatus.COMPLETED)

    def test_invalid_status_is_rejected(self) -> None:
        goal = create_goal("Laptop", Decimal("1500"), "USD")

        with self.assertRaises(InvalidPeriod):
            update_goal(goal, status="paused")

    def test_explicit_status_is_normalized(self) -> None:
        goal = create_goal("Laptop", Decimal("1500"), "USD")

        self.assertEqual(update_goal(goal, status=" Cancelled ").status, GoalStatus.CANCELLED)


if __name__ == "__main__":
    unittest.main()
