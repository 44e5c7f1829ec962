"""
SQLAlchemy-backed data store.

Every read and write is scoped by ``user_id``. Reads are turned into a
``LedgerSnapshot`` through ``finledger.snapshot`` so that the engines never
see raw rows.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from finledger.balance_engine import build_transfer
from finledger.budget_engine import Budget
from finledger.config import settings
from finledger.currency_conversion import (
    CurrencyLedger,
    CurrencyRecord,
    RateRefresh,
    refresh_ledger_rates,
    set_default_currency as rebase_default_currency,
)
from finledger.goal_tracker import Goal, create_goal, update_goal
from finledger.models import DuplicateBudget, DuplicateCurrency, RecordNotFound, Transaction
from finledger.recurring_scheduler import (
    RecurringRunResult,
    RecurringTransaction,
    advance_date,
    advance_entry,
    process_recurring,
)
from finledger.schemas import (
    AccountPayload,
    BudgetPayload,
    CategoryPayload,
    CurrencyPayload,
    GoalPayload,
    GoalUpdatePayload,
    RecurringPayload,
    TransactionPayload,
    TransferPayload,
)
from finledger.snapshot import (
    LedgerSnapshot,
    build_snapshot,
    currency_record_from_row,
    currency_ref,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

currencies = Table(
    "currencies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("code", String(3), nullable=False),
    Column("name", String(255), nullable=False),
    Column("symbol", String(16)),
    Column("is_default", Boolean, nullable=False, default=False),
    Column("exchange_rate", Numeric(24, 10), nullable=False, default=1),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "code", name="uq_currencies_user_code"),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("type", String(10), nullable=False),
    Column("icon", String(16)),
    Column("color", String(16)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("type", String(50), nullable=False),
    Column("currency_id", Integer),
    Column("is_default", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# Currency, category and account references are weak: no foreign keys, the
# referenced row may be gone when the transaction is read back.
transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("type", String(10), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency_id", Integer),
    Column("currency", String(3)),
    Column("category_id", Integer),
    Column("category", String(255)),
    Column("account_id", Integer),
    Column("recurring_id", Integer),
    Column("date", Date, nullable=False),
    Column("description", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("category_id", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("month", Integer, nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency_id", Integer, nullable=False),
    Column("alert_threshold", Numeric(5, 2), nullable=False, default=80),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "category_id", "year", "month", name="uq_budgets_period"),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", String(500)),
    Column("target_amount", Numeric(18, 2), nullable=False),
    Column("current_amount", Numeric(18, 2), nullable=False, default=0),
    Column("currency_id", Integer, nullable=False),
    Column("deadline", Date),
    Column("status", String(20), nullable=False, default="active"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

recurring_transactions = Table(
    "recurring_transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("type", String(10), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency_id", Integer),
    Column("currency", String(3)),
    Column("category_id", Integer),
    Column("category", String(255)),
    Column("account_id", Integer),
    Column("description", String(500)),
    Column("frequency", String(10), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("next_date", Date, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


def make_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or settings.database_url
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, connect_args=connect_args)


class LedgerStore:
    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine = engine or make_engine()

    def init_db(self) -> None:
        metadata.create_all(self.engine)

    # Currencies

    def add_currency(self, user_id: int, payload: CurrencyPayload) -> int:
        payload = CurrencyPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            has_default = conn.execute(
                select(currencies.c.id).where(
                    currencies.c.user_id == user_id, currencies.c.is_default.is_(True)
                )
            ).first()
            try:
                currency_id = conn.execute(
                    insert(currencies).values(
                        user_id=user_id,
                        code=payload.code,
                        name=payload.name,
                        symbol=payload.symbol,
                        is_default=False,
                        exchange_rate=payload.exchange_rate,
                    )
                ).inserted_primary_key[0]
            except IntegrityError as exc:
                raise DuplicateCurrency(f"Currency {payload.code} already exists.") from exc
            if payload.is_default or has_default is None:
                self._set_default(conn, user_id, currency_id)
        logger.info("Added currency %s for user %s", payload.code, user_id)
        return currency_id

    def set_default_currency(self, user_id: int, currency_id: int) -> None:
        """Unset the previous default and set the new one in a single transaction."""
        with self.engine.begin() as conn:
            self._set_default(conn, user_id, currency_id)
        logger.info("Default currency for user %s is now %s", user_id, currency_id)

    def _set_default(self, conn: Connection, user_id: int, currency_id: int) -> None:
        records = self._currency_records(conn, user_id, for_update=True)
        for record in rebase_default_currency(records, currency_id):
            conn.execute(
                update(currencies)
                .where(currencies.c.user_id == user_id, currencies.c.id == record.id)
                .values(is_default=record.is_default, exchange_rate=record.exchange_rate)
            )

    def load_ledger(self, user_id: int) -> CurrencyLedger:
        with self.engine.begin() as conn:
            return CurrencyLedger(self._currency_records(conn, user_id))

    def refresh_rates(self, user_id: int, provider) -> RateRefresh:
        with self.engine.begin() as conn:
            refresh = refresh_ledger_rates(self._currency_records(conn, user_id), provider)
            for record in refresh.records:
                if record.id is None:
                    continue
                conn.execute(
                    update(currencies)
                    .where(currencies.c.user_id == user_id, currencies.c.id == record.id)
                    .values(exchange_rate=record.exchange_rate)
                )
        return refresh

    def _currency_records(
        self, conn: Connection, user_id: int, for_update: bool = False
    ) -> List[CurrencyRecord]:
        stmt = select(currencies).where(currencies.c.user_id == user_id).order_by(currencies.c.id)
        if for_update:
            stmt = stmt.with_for_update()
        rows = conn.execute(stmt).mappings().all()
        return [currency_record_from_row(row) for row in rows]

    # Categories and accounts

    def add_category(self, user_id: int, payload: CategoryPayload) -> int:
        payload = CategoryPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            return conn.execute(
                insert(categories).values(user_id=user_id, **payload.model_dump())
            ).inserted_primary_key[0]

    def add_account(self, user_id: int, payload: AccountPayload) -> int:
        payload = AccountPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            if payload.is_default:
                conn.execute(
                    update(accounts)
                    .where(accounts.c.user_id == user_id)
                    .values(is_default=False)
                )
            return conn.execute(
                insert(accounts).values(user_id=user_id, **payload.model_dump())
            ).inserted_primary_key[0]

    # Transactions

    def add_transaction(self, user_id: int, payload: TransactionPayload) -> int:
        payload = TransactionPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            return self._insert_transaction(conn, user_id, payload.model_dump())

    def transfer(self, user_id: int, payload: TransferPayload) -> List[int]:
        payload = TransferPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(accounts.c.id, accounts.c.name).where(
                    accounts.c.user_id == user_id,
                    accounts.c.id.in_([payload.from_account_id, payload.to_account_id]),
                )
            ).mappings().all()
            names = {row["id"]: row["name"] for row in rows}
            if len(names) != 2:
                raise RecordNotFound("Account not found.")
            currency = conn.execute(
                select(currencies.c.code).where(
                    currencies.c.user_id == user_id, currencies.c.id == payload.currency_id
                )
            ).scalar()
            if currency is None:
                raise RecordNotFound("Currency not found.")
            legs = build_transfer(
                payload.from_account_id,
                payload.to_account_id,
                payload.amount,
                currency,
                payload.date,
                description=payload.description,
                from_name=names[payload.from_account_id],
                to_name=names[payload.to_account_id],
            )
            ids = []
            for leg in legs:
                values = _transaction_values(leg)
                values["currency_id"] = payload.currency_id
                ids.append(self._insert_transaction(conn, user_id, values))
        logger.info("Transfer of %s %s for user %s", payload.amount, currency, user_id)
        return ids

    def _insert_transaction(self, conn: Connection, user_id: int, values: dict) -> int:
        return conn.execute(
            insert(transactions).values(user_id=user_id, **values)
        ).inserted_primary_key[0]

    def load_snapshot(self, user_id: int) -> LedgerSnapshot:
        with self.engine.begin() as conn:
            currency_rows = conn.execute(
                select(currencies).where(currencies.c.user_id == user_id).order_by(currencies.c.id)
            ).mappings().all()
            transaction_rows = conn.execute(
                select(transactions)
                .where(transactions.c.user_id == user_id)
                .order_by(transactions.c.date, transactions.c.id)
            ).mappings().all()
            account_rows = conn.execute(
                select(accounts)
                .where(accounts.c.user_id == user_id)
                .order_by(accounts.c.is_default.desc(), accounts.c.id)
            ).mappings().all()
            category_rows = conn.execute(
                select(categories).where(categories.c.user_id == user_id)
            ).mappings().all()
        return build_snapshot(currency_rows, transaction_rows, account_rows, category_rows)

    # Budgets

    def add_budget(self, user_id: int, payload: BudgetPayload) -> int:
        payload = BudgetPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            try:
                budget_id = conn.execute(
                    insert(budgets).values(user_id=user_id, **payload.model_dump())
                ).inserted_primary_key[0]
            except IntegrityError as exc:
                raise DuplicateBudget(
                    "A budget for this category and month already exists."
                ) from exc
        logger.info("Added budget %s-%02d for user %s", payload.year, payload.month, user_id)
        return budget_id

    def load_budgets(self, user_id: int, year: Optional[int] = None, month: Optional[int] = None) -> List[Budget]:
        stmt = (
            select(budgets, currencies.c.code.label("currency_code"))
            .select_from(
                budgets.outerjoin(
                    currencies,
                    (budgets.c.currency_id == currencies.c.id)
                    & (budgets.c.user_id == currencies.c.user_id),
                )
            )
            .where(budgets.c.user_id == user_id)
        )
        if year is not None:
            stmt = stmt.where(budgets.c.year == year)
        if month is not None:
            stmt = stmt.where(budgets.c.month == month)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            Budget(
                id=row["id"],
                category_id=row["category_id"],
                year=row["year"],
                month=row["month"],
                amount=Decimal(str(row["amount"])),
                currency=row["currency_code"] or "",
                alert_threshold=Decimal(str(row["alert_threshold"])),
            )
            for row in rows
        ]

    # Goals

    def add_goal(self, user_id: int, payload: GoalPayload, today: Optional[date] = None) -> int:
        payload = GoalPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            code = conn.execute(
                select(currencies.c.code).where(
                    currencies.c.user_id == user_id, currencies.c.id == payload.currency_id
                )
            ).scalar()
            if code is None:
                raise RecordNotFound("Currency not found.")
            goal = create_goal(
                payload.title,
                payload.target_amount,
                currency=code,
                current_amount=payload.current_amount,
                deadline=payload.deadline,
                today=today,
                description=payload.description,
            )
            return conn.execute(
                insert(goals).values(
                    user_id=user_id,
                    title=goal.title,
                    description=goal.description,
                    target_amount=goal.target_amount,
                    current_amount=goal.current_amount,
                    currency_id=payload.currency_id,
                    deadline=goal.deadline,
                    status=goal.status,
                )
            ).inserted_primary_key[0]

    def load_goal(self, user_id: int, goal_id: int) -> Goal:
        with self.engine.begin() as conn:
            return self._load_goal(conn, user_id, goal_id)

    def update_goal(self, user_id: int, goal_id: int, payload: GoalUpdatePayload) -> Goal:
        payload = GoalUpdatePayload.validate_payload(payload)
        changes = payload.model_dump(exclude_none=True)
        with self.engine.begin() as conn:
            goal = update_goal(self._load_goal(conn, user_id, goal_id), **changes)
            conn.execute(
                update(goals)
                .where(goals.c.user_id == user_id, goals.c.id == goal_id)
                .values(
                    title=goal.title,
                    description=goal.description,
                    target_amount=goal.target_amount,
                    current_amount=goal.current_amount,
                    deadline=goal.deadline,
                    status=goal.status,
                )
            )
        return goal

    def _load_goal(self, conn: Connection, user_id: int, goal_id: int) -> Goal:
        row = conn.execute(
            select(goals, currencies.c.code.label("currency_code"))
            .select_from(
                goals.outerjoin(
                    currencies,
                    (goals.c.currency_id == currencies.c.id)
                    & (goals.c.user_id == currencies.c.user_id),
                )
            )
            .where(goals.c.user_id == user_id, goals.c.id == goal_id)
        ).mappings().first()
        if row is None:
            raise RecordNotFound("Goal not found.")
        return Goal(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            target_amount=Decimal(str(row["target_amount"])),
            current_amount=Decimal(str(row["current_amount"])),
            currency=row["currency_code"] or "",
            deadline=row["deadline"],
            status=row["status"],
        )

    # Recurring transactions

    def add_recurring(self, user_id: int, payload: RecurringPayload) -> int:
        payload = RecurringPayload.validate_payload(payload)
        with self.engine.begin() as conn:
            return conn.execute(
                insert(recurring_transactions).values(
                    user_id=user_id,
                    next_date=advance_date(payload.start_date, payload.frequency),
                    is_active=True,
                    **payload.model_dump(),
                )
            ).inserted_primary_key[0]

    def load_recurring(self, user_id: int) -> List[RecurringTransaction]:
        with self.engine.begin() as conn:
            ledger = CurrencyLedger(self._currency_records(conn, user_id))
            rows = conn.execute(
                select(recurring_transactions)
                .where(recurring_transactions.c.user_id == user_id)
                .order_by(recurring_transactions.c.id)
            ).mappings().all()
        return [_recurring_from_row(row, ledger) for row in rows]

    def process_recurring(self, user_id: int, as_of: Optional[date] = None) -> RecurringRunResult:
        """Materialize every due recurring entry for ``as_of`` (today by default).

        Each occurrence is inserted in the same database transaction that
        advances its entry's ``next_date``. The advance is a compare-and-set on
        the previous ``next_date``; losing it to a concurrent run rolls the
        insert back and is reported as a failure for that entry.
        """
        as_of = as_of or date.today()
        recurrings = [entry for entry in self.load_recurring(user_id) if entry.is_active]
        by_id = {entry.id: entry for entry in recurrings}
        snapshot = self.load_snapshot(user_id)
        currency_ids = {record.code: record.id for record in snapshot.ledger.records}

        def materialize(occurrence: Transaction) -> Transaction:
            values = _transaction_values(occurrence)
            values["currency_id"] = currency_ids.get(occurrence.currency)
            with self.engine.begin() as conn:
                if not self._claim_occurrence(conn, user_id, by_id[occurrence.recurring_id]):
                    raise ConcurrentAdvance(
                        f"Recurring {occurrence.recurring_id} was advanced by another run."
                    )
                new_id = self._insert_transaction(conn, user_id, values)
            return replace(occurrence, id=new_id, user_id=user_id)

        result = process_recurring(recurrings, as_of, snapshot.transactions, materialize)

        with self.engine.begin() as conn:
            for entry in result.skipped:
                if not self._claim_occurrence(conn, user_id, entry):
                    logger.warning("Recurring %s advanced concurrently; left unchanged", entry.id)
        return result

    def _claim_occurrence(self, conn: Connection, user_id: int, entry: RecurringTransaction) -> bool:
        advanced = advance_entry(entry)
        outcome = conn.execute(
            update(recurring_transactions)
            .where(
                recurring_transactions.c.user_id == user_id,
                recurring_transactions.c.id == entry.id,
                recurring_transactions.c.next_date == entry.next_date,
            )
            .values(next_date=advanced.next_date, is_active=advanced.is_active)
        )
        return outcome.rowcount == 1


class ConcurrentAdvance(RuntimeError):
    """Raised when a recurring entry moved on between reading and claiming it."""


def _transaction_values(txn: Transaction) -> dict:
    return {
        "type": txn.type,
        "amount": txn.amount,
        "currency": txn.currency,
        "category_id": txn.category_id,
        "category": txn.category,
        "account_id": txn.account_id,
        "recurring_id": txn.recurring_id,
        "date": txn.date,
        "description": txn.description,
    }


def _recurring_from_row(row, ledger: CurrencyLedger) -> RecurringTransaction:
    ref = currency_ref(row["currency_id"], row["currency"])
    return RecurringTransaction(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        amount=Decimal(str(row["amount"])),
        currency=ledger.resolve_code(ref, record_id=row["id"]),
        frequency=row["frequency"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        next_date=row["next_date"],
        is_active=bool(row["is_active"]),
        category_id=row["category_id"],
        category=row["category"],
        account_id=row["account_id"],
        description=row["description"],
    )
