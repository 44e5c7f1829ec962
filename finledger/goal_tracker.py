from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from finledger.models import ZERO, GoalStatus, InvalidPeriod, coerce_decimal

HUNDRED = Decimal("100")
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class Goal:
    title: str
    target_amount: Decimal
    currency: str
    current_amount: Decimal = ZERO
    deadline: Optional[date] = None
    status: str = GoalStatus.ACTIVE
    description: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class GoalProgress:
    progress_percentage: Decimal
    days_remaining: Optional[int]
    is_overdue: bool


def validate_goal_amounts(
    target_amount: Decimal | int | float | str,
    current_amount: Decimal | int | float | str,
) -> None:
    target = coerce_decimal(target_amount)
    current = coerce_decimal(current_amount)
    if target <= ZERO:
        raise InvalidPeriod("Target amount must be greater than 0.")
    if current < ZERO:
        raise InvalidPeriod("Current amount cannot be negative.")
    if current > target:
        raise InvalidPeriod("Current amount cannot exceed target amount.")


def create_goal(
    title: str,
    target_amount: Decimal | int | float | str,
    currency: str,
    current_amount: Decimal | int | float | str = ZERO,
    deadline: Optional[date] = None,
    today: Optional[date] = None,
    description: Optional[str] = None,
) -> Goal:
    if not title or not title.strip():
        raise InvalidPeriod("Title is required.")
    validate_goal_amounts(target_amount, current_amount)
    if deadline is not None and deadline < (today or date.today()):
        raise InvalidPeriod("Deadline cannot be in the past.")
    goal = Goal(
        title=title.strip(),
        target_amount=coerce_decimal(target_amount),
        current_amount=coerce_decimal(current_amount),
        currency=currency,
        deadline=deadline,
        description=description,
    )
    return _auto_complete(goal)


def update_goal(goal: Goal, **changes) -> Goal:
    """Apply changes, re-validating amounts and the auto-complete rule.

    An explicit ``status`` is honoured, except that a goal which reaches its
    target is completed unless the caller is cancelling it.
    """
    if "status" in changes:
        changes["status"] = GoalStatus.validate(changes["status"])
    for key in ("target_amount", "current_amount"):
        if key in changes:
            changes[key] = coerce_decimal(changes[key])
    updated = replace(goal, **changes)
    if "target_amount" in changes or "current_amount" in changes:
        validate_goal_amounts(updated.target_amount, updated.current_amount)
    return _auto_complete(updated)


def cancel_goal(goal: Goal) -> Goal:
    if goal.status == GoalStatus.CANCELLED:
        return goal
    return replace(goal, status=GoalStatus.CANCELLED)


def reactivate_goal(goal: Goal) -> Goal:
    if goal.status == GoalStatus.ACTIVE:
        return goal
    return _auto_complete(replace(goal, status=GoalStatus.ACTIVE))


def evaluate_goal(goal: Goal, as_of: date | datetime) -> GoalProgress:
    target = coerce_decimal(goal.target_amount)
    if target > ZERO:
        progress = coerce_decimal(goal.current_amount) / target * HUNDRED
        progress = min(max(progress, ZERO), HUNDRED)
    else:
        progress = ZERO

    days_remaining = None
    if goal.deadline is not None:
        days_remaining = _days_until(goal.deadline, as_of)

    return GoalProgress(
        progress_percentage=progress,
        days_remaining=days_remaining,
        is_overdue=(
            goal.status == GoalStatus.ACTIVE
            and days_remaining is not None
            and days_remaining < 0
        ),
    )


def _auto_complete(goal: Goal) -> Goal:
    if goal.status == GoalStatus.CANCELLED:
        return goal
    if goal.current_amount >= goal.target_amount:
        return replace(goal, status=GoalStatus.COMPLETED)
    return goal


def _days_until(deadline: date, as_of: date | datetime) -> int:
    if isinstance(as_of, datetime):
        deadline_at = datetime(deadline.year, deadline.month, deadline.day, tzinfo=as_of.tzinfo)
        return math.ceil((deadline_at - as_of).total_seconds() / SECONDS_PER_DAY)
    return (deadline - as_of).days
