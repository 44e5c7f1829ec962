from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Set, Tuple

from finledger.models import (
    InvalidPeriod,
    RecurringFrequency,
    Transaction,
    TransactionType,
    coerce_decimal,
)
from finledger.period import shift_month_keep_day

logger = logging.getLogger(__name__)

WEEKLY_DAYS = 7

Materialize = Callable[[Transaction], Transaction]


@dataclass(frozen=True)
class RecurringTransaction:
    type: str
    amount: Decimal
    currency: str
    frequency: str
    start_date: date
    next_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    id: Optional[int] = None
    user_id: Optional[int] = None
    category_id: Optional[int] = None
    category: Optional[str] = None
    account_id: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class RecurringFailure:
    recurring_id: Optional[int]
    error: str


@dataclass(frozen=True)
class RecurringRunResult:
    created: List[Transaction] = field(default_factory=list)
    updated: List[RecurringTransaction] = field(default_factory=list)
    skipped: List[RecurringTransaction] = field(default_factory=list)
    failures: List[RecurringFailure] = field(default_factory=list)


def advance_date(current: date, frequency: str) -> date:
    """Next occurrence after ``current``.

    Monthly keeps the day of ``current`` and clamps to the end of shorter
    months, so Jan 31 moves to Feb 28/29 and then to Mar 28/29.
    """
    normalized = RecurringFrequency.validate(frequency)
    if normalized == "weekly":
        return current + timedelta(days=WEEKLY_DAYS)
    return shift_month_keep_day(current, 1)


def is_due(recurring: RecurringTransaction, as_of: date) -> bool:
    if not recurring.is_active:
        return False
    if recurring.next_date > as_of:
        return False
    return recurring.end_date is None or recurring.end_date >= as_of


def new_recurring(
    type: str,
    amount: Decimal | int | float | str,
    currency: str,
    frequency: str,
    start_date: date,
    end_date: Optional[date] = None,
    **extra,
) -> RecurringTransaction:
    coerced = coerce_decimal(amount)
    if coerced <= 0:
        raise InvalidPeriod("Amount must be greater than zero.")
    if end_date is not None and end_date < start_date:
        raise InvalidPeriod("End date must be on or after start date.")
    # The first occurrence is one period after the start date.
    return RecurringTransaction(
        type=TransactionType.validate(type),
        amount=coerced,
        currency=currency,
        frequency=RecurringFrequency.validate(frequency),
        start_date=start_date,
        next_date=advance_date(start_date, frequency),
        end_date=end_date,
        **extra,
    )


def occurrence_for(recurring: RecurringTransaction) -> Transaction:
    return Transaction(
        amount=coerce_decimal(recurring.amount),
        type=recurring.type,
        date=recurring.next_date,
        currency=recurring.currency,
        user_id=recurring.user_id,
        category_id=recurring.category_id,
        category=recurring.category,
        account_id=recurring.account_id,
        description=recurring.description,
        recurring_id=recurring.id,
    )


def process_recurring(
    recurrings: Iterable[RecurringTransaction],
    as_of: date,
    existing_transactions: Iterable[Transaction],
    materialize: Optional[Materialize] = None,
) -> RecurringRunResult:
    """Materialize one occurrence for every due entry and advance it.

    An occurrence that already exists (same user, date, amount and type, or
    already tagged with the same recurring id and date) is not created again
    but the entry is still advanced. A failure while creating one occurrence
    is collected and leaves that entry untouched.
    """
    matches, tagged = _index_existing(existing_transactions)
    result = RecurringRunResult()

    for recurring in recurrings:
        if not is_due(recurring, as_of):
            continue

        occurrence = occurrence_for(recurring)
        if _already_materialized(occurrence, matches, tagged):
            logger.info(
                "Recurring %s already materialized for %s; advancing only",
                recurring.id,
                recurring.next_date,
            )
            result.skipped.append(recurring)
        else:
            try:
                created = materialize(occurrence) if materialize else occurrence
            except Exception as exc:
                logger.exception("Failed to create transaction for recurring %s", recurring.id)
                result.failures.append(RecurringFailure(recurring_id=recurring.id, error=str(exc)))
                continue
            result.created.append(created)
            _remember(created, matches, tagged)

        result.updated.append(advance_entry(recurring))

    logger.info(
        "Recurring run for %s: %d created, %d skipped, %d failed",
        as_of,
        len(result.created),
        len(result.skipped),
        len(result.failures),
    )
    return result


def advance_entry(recurring: RecurringTransaction) -> RecurringTransaction:
    next_date = advance_date(recurring.next_date, recurring.frequency)
    is_active = recurring.is_active
    if recurring.end_date is not None and next_date > recurring.end_date:
        is_active = False
    return replace(recurring, next_date=next_date, is_active=is_active)


def _match_key(txn: Transaction) -> Tuple[Optional[int], date, Decimal, str]:
    return (txn.user_id, txn.date, coerce_decimal(txn.amount), txn.type)


def _index_existing(
    transactions: Iterable[Transaction],
) -> Tuple[Set[Tuple[Optional[int], date, Decimal, str]], Set[Tuple[int, date]]]:
    matches: Set[Tuple[Optional[int], date, Decimal, str]] = set()
    tagged: Set[Tuple[int, date]] = set()
    for txn in transactions:
        _remember(txn, matches, tagged)
    return matches, tagged


def _remember(
    txn: Transaction,
    matches: Set[Tuple[Optional[int], date, Decimal, str]],
    tagged: Set[Tuple[int, date]],
) -> None:
    matches.add(_match_key(txn))
    if txn.recurring_id is not None:
        tagged.add((txn.recurring_id, txn.date))


def _already_materialized(
    occurrence: Transaction,
    matches: Set[Tuple[Optional[int], date, Decimal, str]],
    tagged: Set[Tuple[int, date]],
) -> bool:
    if occurrence.recurring_id is not None and (occurrence.recurring_id, occurrence.date) in tagged:
        return True
    return _match_key(occurrence) in matches
