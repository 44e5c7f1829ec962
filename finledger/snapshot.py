"""
Boundary between stored rows and the pure engines.

Rows may reference currencies either by id or by a legacy code string, and
categories either by id or by a legacy name. Both are resolved here, once, so
that every engine works with plain currency codes and category names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import InvalidOperation
from typing import Any, Callable, Iterable, List, Mapping, Optional, TypeVar

from finledger.currency_conversion import CurrencyLedger, CurrencyRecord
from finledger.models import (
    DANGLING_REFERENCE,
    INVALID_ROW,
    UNKNOWN_CATEGORY,
    Account,
    ByCode,
    ById,
    Category,
    CurrencyRef,
    Diagnostics,
    Transaction,
    TransactionType,
    coerce_decimal,
)

Row = Mapping[str, Any]
T = TypeVar("T")


@dataclass
class LedgerSnapshot:
    ledger: CurrencyLedger
    transactions: List[Transaction] = field(default_factory=list)
    accounts: List[Account] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


def currency_ref(currency_id: Optional[int], currency_code: Optional[str]) -> Optional[CurrencyRef]:
    if currency_id is not None:
        return ById(currency_id)
    if currency_code:
        return ByCode(currency_code)
    return None


def currency_record_from_row(row: Row) -> CurrencyRecord:
    return CurrencyRecord(
        id=row.get("id"),
        code=row["code"],
        exchange_rate=row.get("exchange_rate") or 0,
        is_default=bool(row.get("is_default")),
        name=row.get("name") or "",
        symbol=row.get("symbol"),
    )


def category_from_row(row: Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        type=row.get("type") or "outcome",
        icon=row.get("icon") or "",
        color=row.get("color") or "",
    )


def account_from_row(row: Row, ledger: CurrencyLedger, diagnostics: Optional[Diagnostics] = None) -> Account:
    ref = currency_ref(row.get("currency_id"), row.get("currency"))
    return Account(
        id=row["id"],
        name=row["name"],
        type=row.get("type") or "cash",
        currency=ledger.resolve_code(ref, diagnostics, row["id"]) if ref else None,
        is_default=bool(row.get("is_default")),
    )


def transaction_from_row(
    row: Row,
    ledger: CurrencyLedger,
    categories_by_id: Mapping[int, Category],
    diagnostics: Optional[Diagnostics] = None,
) -> Transaction:
    record_id = row.get("id")
    amount = coerce_decimal(row["amount"])
    txn_type = TransactionType.validate(row["type"])
    txn_date = _coerce_date(row["date"])

    ref = currency_ref(row.get("currency_id"), row.get("currency"))
    currency = ledger.resolve_code(ref, diagnostics, record_id)

    category_id = row.get("category_id")
    category_name = row.get("category") or UNKNOWN_CATEGORY
    if category_id is not None:
        category = categories_by_id.get(category_id)
        if category is not None:
            category_name = category.name
        elif diagnostics is not None:
            diagnostics.add(DANGLING_REFERENCE, record_id, f"category {category_id} not found")

    return Transaction(
        id=record_id,
        user_id=row.get("user_id"),
        amount=amount,
        type=txn_type,
        date=txn_date,
        currency=currency,
        category_id=category_id,
        category=category_name,
        account_id=row.get("account_id"),
        description=row.get("description"),
        recurring_id=row.get("recurring_id"),
    )


def build_snapshot(
    currency_rows: Iterable[Row],
    transaction_rows: Iterable[Row] = (),
    account_rows: Iterable[Row] = (),
    category_rows: Iterable[Row] = (),
    default_currency: Optional[str] = None,
) -> LedgerSnapshot:
    """Convert stored rows into engine records.

    A row that cannot be converted (missing column, unparseable amount or
    date, unknown type) is skipped and reported as ``invalid_row`` so that one
    bad record never hides the rest of the ledger.
    """
    diagnostics = Diagnostics()
    ledger = CurrencyLedger(
        _convert_rows(currency_rows, currency_record_from_row, diagnostics, "currency"),
        default_currency=default_currency,
    )
    categories = _convert_rows(category_rows, category_from_row, diagnostics, "category")
    categories_by_id = {category.id: category for category in categories}
    accounts = _convert_rows(
        account_rows,
        lambda row: account_from_row(row, ledger, diagnostics),
        diagnostics,
        "account",
    )
    transactions = _convert_rows(
        transaction_rows,
        lambda row: transaction_from_row(row, ledger, categories_by_id, diagnostics),
        diagnostics,
        "transaction",
    )
    return LedgerSnapshot(
        ledger=ledger,
        transactions=transactions,
        accounts=accounts,
        categories=categories,
        diagnostics=diagnostics,
    )


def _convert_rows(
    rows: Iterable[Row],
    convert: Callable[[Row], T],
    diagnostics: Diagnostics,
    kind: str,
) -> List[T]:
    converted: List[T] = []
    for row in rows:
        try:
            converted.append(convert(row))
        except (KeyError, TypeError, AttributeError, ValueError, InvalidOperation) as exc:
            diagnostics.add(INVALID_ROW, row.get("id"), f"{kind} row skipped: {exc!r}")
    return converted


def _coerce_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value[:10], "%Y-%m-%d").date()
