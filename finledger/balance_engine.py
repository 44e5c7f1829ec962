from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from finledger.currency_conversion import CurrencyLedger, convert_amount, from_base, to_base
from finledger.models import (
    ZERO,
    Account,
    Diagnostics,
    InvalidPeriod,
    Transaction,
    coerce_decimal,
)
from finledger.period import month_bounds, year_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountBalance:
    account_id: int
    balance: Decimal
    transaction_count: int
    currency: str


@dataclass(frozen=True)
class CurrencyTotals:
    income: Decimal = ZERO
    outcome: Decimal = ZERO


@dataclass(frozen=True)
class TransactionStats:
    total_income: Decimal
    total_outcome: Decimal
    balance: Decimal
    currency: str
    base_currency: str
    this_month_income: Decimal
    outcome_today: Decimal
    outcome_this_week: Decimal
    outcome_this_month: Decimal
    start_of_week: date
    start_of_month: date
    end_of_month: date


def account_balance(
    account_id: int,
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    account_currency: Optional[str] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> AccountBalance:
    """Balance of one account over its whole history, in the account currency."""
    currency = ledger.normalize_code(account_currency)
    balance = ZERO
    count = 0
    for txn in transactions:
        if txn.account_id != account_id:
            continue
        count += 1
        converted = convert_amount(txn.amount, txn.currency, currency, ledger, diagnostics, txn.id)
        balance += converted if txn.type == "income" else -converted
    logger.debug("Account %s (%s): %d transactions, balance %s", account_id, currency, count, balance)
    return AccountBalance(
        account_id=account_id,
        balance=balance,
        transaction_count=count,
        currency=currency,
    )


def account_balances(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
) -> List[AccountBalance]:
    transactions = list(transactions)
    return [
        account_balance(account.id, transactions, ledger, account.currency, diagnostics)
        for account in accounts
    ]


def total_balance(
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    currency: Optional[str] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> Decimal:
    target = ledger.normalize_code(currency)
    total = ZERO
    for txn in transactions:
        converted = convert_amount(txn.amount, txn.currency, target, ledger, diagnostics, txn.id)
        total += converted if txn.type == "income" else -converted
    return total


def totals_by_currency(transactions: Iterable[Transaction]) -> Dict[str, CurrencyTotals]:
    """Raw income and outcome sums per transaction currency, unconverted."""
    totals: Dict[str, CurrencyTotals] = {}
    for txn in transactions:
        entry = totals.get(txn.currency, CurrencyTotals())
        amount = coerce_decimal(txn.amount)
        if txn.type == "income":
            entry = CurrencyTotals(income=entry.income + amount, outcome=entry.outcome)
        else:
            entry = CurrencyTotals(income=entry.income, outcome=entry.outcome + amount)
        totals[txn.currency] = entry
    return totals


def transaction_stats(
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    today: date,
    year: Optional[int] = None,
    month: Optional[int] = None,
    display_currency: Optional[str] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> TransactionStats:
    """Dashboard figures.

    Totals cover the whole history unless ``year`` (and optionally ``month``)
    narrows them. The today/week/month figures always refer to ``today``.
    """
    transactions = list(transactions)
    if year is not None and month is not None:
        period = month_bounds(year, month)
    elif year is not None:
        period = year_bounds(year)
    else:
        period = None

    scoped = transactions
    if period is not None:
        scoped = [txn for txn in transactions if period[0] <= txn.date <= period[1]]

    total_income, total_outcome = _sum_base(scoped, ledger, diagnostics)

    start_of_week = today - timedelta(days=today.weekday())
    start_of_month, end_of_month = month_bounds(today.year, today.month)
    this_month_income, outcome_this_month = _sum_base(
        _between(transactions, start_of_month, end_of_month), ledger, diagnostics
    )
    _, outcome_this_week = _sum_base(_between(transactions, start_of_week, today), ledger, diagnostics)
    _, outcome_today = _sum_base(_between(transactions, today, today), ledger, diagnostics)

    currency = ledger.base_code
    if display_currency and ledger.normalize_code(display_currency) != ledger.base_code:
        normalized_display = ledger.normalize_code(display_currency)
        if ledger.rate(normalized_display) is not None:
            currency = normalized_display
        else:
            logger.warning("Display currency %s has no usable rate; using base", normalized_display)

    def display(amount: Decimal) -> Decimal:
        return from_base(amount, currency, ledger)

    return TransactionStats(
        total_income=display(total_income),
        total_outcome=display(total_outcome),
        balance=display(total_income - total_outcome),
        currency=currency,
        base_currency=ledger.base_code,
        this_month_income=display(this_month_income),
        outcome_today=display(outcome_today),
        outcome_this_week=display(outcome_this_week),
        outcome_this_month=display(outcome_this_month),
        start_of_week=start_of_week,
        start_of_month=start_of_month,
        end_of_month=end_of_month,
    )


def build_transfer(
    from_account_id: int,
    to_account_id: int,
    amount: Decimal | int | float | str,
    currency: str,
    on_date: date,
    description: Optional[str] = None,
    from_name: Optional[str] = None,
    to_name: Optional[str] = None,
    category: str = "Transfer",
) -> Tuple[Transaction, Transaction]:
    """Return the outcome leg on the source and the income leg on the destination."""
    if from_account_id == to_account_id:
        raise InvalidPeriod("Source and destination accounts must differ.")
    coerced = coerce_decimal(amount)
    if coerced <= 0:
        raise InvalidPeriod("Amount must be greater than zero.")

    if description:
        label = f"Transfer: {description}"
    else:
        label = f"Transfer from {from_name or from_account_id} to {to_name or to_account_id}"

    outgoing = Transaction(
        amount=coerced,
        type="outcome",
        date=on_date,
        currency=currency,
        category=category,
        account_id=from_account_id,
        description=label,
    )
    incoming = Transaction(
        amount=coerced,
        type="income",
        date=on_date,
        currency=currency,
        category=category,
        account_id=to_account_id,
        description=label,
    )
    return outgoing, incoming


def _between(transactions: Iterable[Transaction], start: date, end: date) -> List[Transaction]:
    return [txn for txn in transactions if start <= txn.date <= end]


def _sum_base(
    transactions: Iterable[Transaction],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics],
) -> Tuple[Decimal, Decimal]:
    income = ZERO
    outcome = ZERO
    for txn in transactions:
        converted = to_base(txn.amount, txn.currency, ledger, diagnostics, txn.id)
        if txn.type == "income":
            income += converted
        else:
            outcome += converted
    return income, outcome
