"""
Report aggregation over a year or a single month.

Every amount is converted to the base currency before it is summed. Bucketed
series (monthly and daily trends) sum only the activity of their bucket; the
balance chart is a running total carried from one day to the next.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from finledger.budget_engine import Budget, BudgetEvaluation, evaluate_budget
from finledger.currency_conversion import CurrencyLedger, from_base, to_base
from finledger.models import (
    MISSING_RATE,
    UNKNOWN_CATEGORY,
    ZERO,
    Category,
    Diagnostics,
    Transaction,
)
from finledger.period import (
    bucket_start,
    iter_days,
    month_bounds,
    normalize_grouping,
    previous_period,
    validate_month,
    year_bounds,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
DEFAULT_CATEGORY_COLOR = "#6B7280"


@dataclass(frozen=True)
class MonthlyTrend:
    month: int
    month_name: str
    income: Decimal = ZERO
    outcome: Decimal = ZERO
    balance: Decimal = ZERO


@dataclass(frozen=True)
class DailyTrend:
    date: date
    income: Decimal = ZERO
    outcome: Decimal = ZERO
    balance: Decimal = ZERO


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: Decimal


@dataclass(frozen=True)
class CategorySpend:
    name: str
    amount: Decimal
    count: int
    percentage: Decimal
    icon: str = ""
    color: str = DEFAULT_CATEGORY_COLOR


@dataclass(frozen=True)
class ReportSummary:
    total_income: Decimal
    total_outcome: Decimal
    balance: Decimal
    currency: str
    total_transactions: int
    avg_transaction_amount: Decimal


@dataclass(frozen=True)
class ReportInsights:
    top_category: Optional[CategorySpend]
    avg_category_spending: Decimal
    income_growth: Decimal
    outcome_growth: Decimal
    previous_income: Decimal
    previous_outcome: Decimal


@dataclass(frozen=True)
class BudgetComparison:
    budget: Budget
    evaluation: BudgetEvaluation


@dataclass(frozen=True)
class Report:
    year: int
    month: Optional[int]
    currency: str
    monthly_trends: List[MonthlyTrend]
    daily_trends: List[DailyTrend]
    balance_chart_data: List[BalancePoint]
    category_breakdown: List[CategorySpend]
    summary: ReportSummary
    insights: ReportInsights
    budget_comparison: List[BudgetComparison] = field(default_factory=list)


@dataclass(frozen=True)
class _Entry:
    txn: Transaction
    amount: Decimal
    category: str


def build_report(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
    ledger: CurrencyLedger,
    year: int,
    month: Optional[int] = None,
    today: Optional[date] = None,
    display_currency: Optional[str] = None,
    budgets: Iterable[Budget] = (),
    group_by: str = "day",
    diagnostics: Optional[Diagnostics] = None,
) -> Report:
    if month is not None:
        validate_month(month)
        start_date, end_date = month_bounds(year, month)
    else:
        start_date, end_date = year_bounds(year)
    grouping = normalize_grouping(group_by)
    today = today or date.today()
    transactions = list(transactions)
    categories_by_id = {category.id: category for category in categories}

    entries = _convert(
        [txn for txn in transactions if start_date <= txn.date <= end_date],
        categories_by_id,
        ledger,
        diagnostics,
    )
    currency = _display_currency(display_currency, ledger, diagnostics)

    def display(amount: Decimal) -> Decimal:
        return from_base(amount, currency, ledger)

    monthly_trends = [
        MonthlyTrend(
            month=trend.month,
            month_name=trend.month_name,
            income=display(trend.income),
            outcome=display(trend.outcome),
            balance=display(trend.balance),
        )
        for trend in monthly_series(entries)
    ]

    daily_month = month
    if daily_month is None and year == today.year:
        daily_month = today.month
    daily_trends: List[DailyTrend] = []
    if daily_month is not None:
        daily_trends = [
            DailyTrend(
                date=trend.date,
                income=display(trend.income),
                outcome=display(trend.outcome),
                balance=display(trend.balance),
            )
            for trend in daily_series(entries, year, daily_month)
        ]

    balance_chart_data = group_balance_series(
        [
            BalancePoint(date=point.date, balance=display(point.balance))
            for point in running_balance(entries, start_date, end_date)
        ],
        grouping,
    )

    breakdown = [
        CategorySpend(
            name=spend.name,
            amount=display(spend.amount),
            count=spend.count,
            percentage=spend.percentage,
            icon=spend.icon,
            color=spend.color,
        )
        for spend in category_breakdown(entries, categories_by_id)
    ]

    total_income = sum((e.amount for e in entries if e.txn.type == "income"), ZERO)
    total_outcome = sum((e.amount for e in entries if e.txn.type != "income"), ZERO)
    count = len(entries)
    summary = ReportSummary(
        total_income=display(total_income),
        total_outcome=display(total_outcome),
        balance=display(total_income - total_outcome),
        currency=currency,
        total_transactions=count,
        avg_transaction_amount=display((total_income + total_outcome) / count) if count else ZERO,
    )

    previous_start, previous_end = previous_period(year, month)
    previous_entries = _convert(
        [txn for txn in transactions if previous_start <= txn.date <= previous_end],
        categories_by_id,
        ledger,
        diagnostics,
    )
    previous_income = sum((e.amount for e in previous_entries if e.txn.type == "income"), ZERO)
    previous_outcome = sum((e.amount for e in previous_entries if e.txn.type != "income"), ZERO)

    insights = ReportInsights(
        top_category=breakdown[0] if breakdown else None,
        avg_category_spending=(
            display(total_outcome / len(breakdown)) if breakdown else ZERO
        ),
        income_growth=growth(total_income, previous_income),
        outcome_growth=growth(total_outcome, previous_outcome),
        previous_income=display(previous_income),
        previous_outcome=display(previous_outcome),
    )

    budget_comparison: List[BudgetComparison] = []
    if month is not None:
        budget_comparison = [
            BudgetComparison(
                budget=budget,
                evaluation=evaluate_budget(budget, transactions, ledger, diagnostics),
            )
            for budget in budgets
            if budget.year == year and budget.month == month
        ]

    logger.debug(
        "Report %s-%s: %d transactions, %d categories", year, month or "all", count, len(breakdown)
    )
    return Report(
        year=year,
        month=month,
        currency=currency,
        monthly_trends=monthly_trends,
        daily_trends=daily_trends,
        balance_chart_data=balance_chart_data,
        category_breakdown=breakdown,
        summary=summary,
        insights=insights,
        budget_comparison=budget_comparison,
    )


def monthly_series(entries: Iterable[_Entry]) -> List[MonthlyTrend]:
    """Twelve buckets, zero-filled, keyed by calendar month."""
    income = {month: ZERO for month in range(1, 13)}
    outcome = {month: ZERO for month in range(1, 13)}
    for entry in entries:
        bucket = income if entry.txn.type == "income" else outcome
        bucket[entry.txn.date.month] += entry.amount
    return [
        MonthlyTrend(
            month=month,
            month_name=calendar.month_abbr[month],
            income=income[month],
            outcome=outcome[month],
            balance=income[month] - outcome[month],
        )
        for month in range(1, 13)
    ]


def daily_series(entries: Iterable[_Entry], year: int, month: int) -> List[DailyTrend]:
    start_date, end_date = month_bounds(year, month)
    income: Dict[date, Decimal] = {}
    outcome: Dict[date, Decimal] = {}
    for entry in entries:
        if not start_date <= entry.txn.date <= end_date:
            continue
        bucket = income if entry.txn.type == "income" else outcome
        bucket[entry.txn.date] = bucket.get(entry.txn.date, ZERO) + entry.amount
    return [
        DailyTrend(
            date=day,
            income=income.get(day, ZERO),
            outcome=outcome.get(day, ZERO),
            balance=income.get(day, ZERO) - outcome.get(day, ZERO),
        )
        for day in iter_days(start_date, end_date)
    ]


def running_balance(
    entries: Iterable[_Entry],
    start_date: date,
    end_date: date,
    opening_balance: Decimal = ZERO,
) -> List[BalancePoint]:
    """One point per calendar day holding the balance at the end of that day."""
    net_by_day: Dict[date, Decimal] = {}
    for entry in entries:
        signed = entry.amount if entry.txn.type == "income" else -entry.amount
        net_by_day[entry.txn.date] = net_by_day.get(entry.txn.date, ZERO) + signed

    points: List[BalancePoint] = []
    balance = opening_balance
    for day in iter_days(start_date, end_date):
        balance += net_by_day.get(day, ZERO)
        points.append(BalancePoint(date=day, balance=balance))
    return points


def group_balance_series(points: Sequence[BalancePoint], group_by: str) -> List[BalancePoint]:
    """Rebucket a running balance, keeping the last value seen in each bucket.

    Each grouped point is dated at the start of its bucket, but never before
    the first point, so a week straddling the period start is dated at the
    period start.
    """
    grouping = normalize_grouping(group_by)
    if grouping == "day" or not points:
        return list(points)
    first_date = points[0].date
    grouped: Dict[date, Decimal] = {}
    for point in points:
        grouped[max(bucket_start(point.date, grouping), first_date)] = point.balance
    return [BalancePoint(date=key, balance=value) for key, value in grouped.items()]


def category_breakdown(
    entries: Iterable[_Entry],
    categories_by_id: Dict[int, Category],
) -> List[CategorySpend]:
    """Outcome totals per category name, largest first, ties in discovery order."""
    amounts: Dict[str, Decimal] = {}
    counts: Dict[str, int] = {}
    styles: Dict[str, Tuple[str, str]] = {}
    for entry in entries:
        if entry.txn.type != "outcome":
            continue
        name = entry.category
        if name not in amounts:
            amounts[name] = ZERO
            counts[name] = 0
            category = categories_by_id.get(entry.txn.category_id)
            if category is not None:
                styles[name] = (category.icon, category.color or DEFAULT_CATEGORY_COLOR)
            else:
                styles[name] = ("", DEFAULT_CATEGORY_COLOR)
        amounts[name] += entry.amount
        counts[name] += 1

    total = sum(amounts.values(), ZERO)
    ordered = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
    return [
        CategorySpend(
            name=name,
            amount=amount,
            count=counts[name],
            percentage=(amount / total * HUNDRED) if total > 0 else ZERO,
            icon=styles[name][0],
            color=styles[name][1],
        )
        for name, amount in ordered
    ]


def growth(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return ZERO
    return (current - previous) / previous * HUNDRED


def _convert(
    transactions: Iterable[Transaction],
    categories_by_id: Dict[int, Category],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics],
) -> List[_Entry]:
    entries: List[_Entry] = []
    for txn in sorted(transactions, key=lambda item: item.date):
        category = categories_by_id.get(txn.category_id) if txn.category_id is not None else None
        name = category.name if category is not None else (txn.category or UNKNOWN_CATEGORY)
        entries.append(
            _Entry(
                txn=txn,
                amount=to_base(txn.amount, txn.currency, ledger, diagnostics, txn.id),
                category=name,
            )
        )
    return entries


def _display_currency(
    display_currency: Optional[str],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics],
) -> str:
    if not display_currency:
        return ledger.base_code
    normalized = ledger.normalize_code(display_currency)
    if ledger.rate(normalized) is None:
        if diagnostics is not None:
            diagnostics.add(MISSING_RATE, None, f"display currency {normalized} unusable; using base")
        else:
            logger.warning("Display currency %s has no usable rate; using base", normalized)
        return ledger.base_code
    return normalized
