from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from datetime import date

from finledger.config import settings
from finledger.currency_conversion import CurrencyLedger, from_base, to_base
from finledger.models import (
    ZERO,
    Diagnostics,
    DuplicateBudget,
    InvalidPeriod,
    Transaction,
    coerce_decimal,
)
from finledger.period import month_bounds

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Budget:
    year: int
    month: int
    amount: Decimal
    currency: str
    category_id: Optional[int] = None
    category: Optional[str] = None
    alert_threshold: Decimal = Decimal(settings.budget_alert_threshold)
    id: Optional[int] = None


@dataclass(frozen=True)
class BudgetEvaluation:
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    is_exceeded: bool
    is_near_limit: bool
    budget_amount_base: Decimal
    spent_base: Decimal
    currency: str


def budget_period(year: int, month: int) -> Tuple[date, date]:
    return month_bounds(year, month)


def evaluate_budget(
    budget: Budget,
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
) -> BudgetEvaluation:
    start_date, end_date = budget_period(budget.year, budget.month)

    spent_base = ZERO
    for txn in transactions:
        if txn.type != "outcome":
            continue
        if not start_date <= txn.date <= end_date:
            continue
        if not _matches_category(budget, txn):
            continue
        spent_base += to_base(txn.amount, txn.currency, ledger, diagnostics, txn.id)

    budget_base = to_base(budget.amount, budget.currency, ledger, diagnostics, budget.id)
    remaining_base = budget_base - spent_base
    if budget_base > 0:
        percentage = min(max(spent_base / budget_base * HUNDRED, ZERO), HUNDRED)
    else:
        percentage = ZERO
    threshold = coerce_decimal(budget.alert_threshold)

    return BudgetEvaluation(
        spent=from_base(spent_base, budget.currency, ledger, diagnostics, budget.id),
        remaining=from_base(remaining_base, budget.currency, ledger, diagnostics, budget.id),
        percentage=percentage,
        is_exceeded=spent_base > budget_base,
        is_near_limit=percentage >= threshold,
        budget_amount_base=budget_base,
        spent_base=spent_base,
        currency=ledger.normalize_code(budget.currency),
    )


def evaluate_budgets(
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
) -> List[Tuple[Budget, BudgetEvaluation]]:
    """Evaluate each budget over its own month."""
    transactions = list(transactions)
    return [
        (budget, evaluate_budget(budget, transactions, ledger, diagnostics))
        for budget in budgets
    ]


def validate_budget(budget: Budget) -> Budget:
    budget_period(budget.year, budget.month)
    if coerce_decimal(budget.amount) <= ZERO:
        raise InvalidPeriod("Budget amount must be greater than zero.")
    threshold = coerce_decimal(budget.alert_threshold)
    if not ZERO <= threshold <= HUNDRED:
        raise InvalidPeriod("Alert threshold must be between 0 and 100.")
    if budget.category_id is None and not budget.category:
        raise InvalidPeriod("Budget requires a category.")
    return budget


def ensure_unique_budget(existing: Iterable[Budget], candidate: Budget) -> None:
    for budget in existing:
        if budget.id is not None and budget.id == candidate.id:
            continue
        if (budget.year, budget.month) != (candidate.year, candidate.month):
            continue
        if _same_category(budget, candidate):
            raise DuplicateBudget("A budget for this category and month already exists.")


def _same_category(left: Budget, right: Budget) -> bool:
    if left.category_id is not None and right.category_id is not None:
        return left.category_id == right.category_id
    return left.category is not None and left.category == right.category


def _matches_category(budget: Budget, txn: Transaction) -> bool:
    if budget.category_id is not None:
        return txn.category_id == budget.category_id
    return budget.category is not None and txn.category == budget.category
