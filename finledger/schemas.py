from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from finledger.config import settings
from finledger.goal_tracker import validate_goal_amounts
from finledger.models import (
    GoalStatus,
    InvalidPeriod,
    RecurringFrequency,
    TransactionType,
    normalize_currency,
)
from finledger.period import validate_month


class CurrencyPayload(BaseModel):
    code: str
    name: str
    symbol: str | None = None
    is_default: bool = False
    exchange_rate: Decimal = Decimal("1")

    @classmethod
    def validate_payload(cls, payload: "CurrencyPayload") -> "CurrencyPayload":
        payload.code = normalize_currency(payload.code)
        payload.name = payload.name.strip()
        if not payload.name:
            raise InvalidPeriod("Currency name required.")
        if payload.exchange_rate <= 0:
            raise InvalidPeriod("Exchange rate must be greater than zero.")
        return payload


class CategoryPayload(BaseModel):
    name: str
    type: str = "outcome"
    icon: str | None = None
    color: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        payload.type = TransactionType.validate(payload.type)
        if not payload.name:
            raise InvalidPeriod("Category name required.")
        return payload


class AccountPayload(BaseModel):
    name: str
    type: str = "cash"
    currency_id: int | None = None
    is_default: bool = False

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        payload.type = payload.type.strip().lower()
        if not payload.name:
            raise InvalidPeriod("Account name required.")
        return payload


class TransactionPayload(BaseModel):
    type: str
    amount: Decimal
    date: date
    currency_id: int | None = None
    currency: str | None = None
    category_id: int | None = None
    category: str | None = None
    account_id: int | None = None
    description: str | None = None
    recurring_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        if payload.amount <= 0:
            raise InvalidPeriod("Amount must be greater than zero.")
        payload.currency = normalize_currency(payload.currency) if payload.currency else None
        payload.category = payload.category.strip() if payload.category else None
        if payload.currency_id is None and payload.currency is None:
            raise InvalidPeriod("Currency is required.")
        if payload.category_id is None and payload.category is None:
            raise InvalidPeriod("Category is required.")
        payload.description = payload.description.strip() if payload.description else None
        return payload


class TransferPayload(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: Decimal
    currency_id: int
    date: date
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransferPayload") -> "TransferPayload":
        if payload.from_account_id == payload.to_account_id:
            raise InvalidPeriod("Source and destination accounts must differ.")
        if payload.amount <= 0:
            raise InvalidPeriod("Amount must be greater than zero.")
        payload.description = payload.description.strip() if payload.description else None
        return payload


class BudgetPayload(BaseModel):
    category_id: int
    year: int
    month: int
    amount: Decimal
    currency_id: int
    alert_threshold: Decimal = Decimal(settings.budget_alert_threshold)

    @classmethod
    def validate_payload(cls, payload: "BudgetPayload") -> "BudgetPayload":
        validate_month(payload.month)
        if payload.amount <= 0:
            raise InvalidPeriod("Budget amount must be greater than zero.")
        if not Decimal("0") <= payload.alert_threshold <= Decimal("100"):
            raise InvalidPeriod("Alert threshold must be between 0 and 100.")
        return payload


class GoalPayload(BaseModel):
    title: str
    target_amount: Decimal
    currency_id: int
    current_amount: Decimal = Decimal("0")
    deadline: date | None = None
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalPayload") -> "GoalPayload":
        payload.title = payload.title.strip()
        if not payload.title:
            raise InvalidPeriod("Title is required.")
        validate_goal_amounts(payload.target_amount, payload.current_amount)
        payload.description = payload.description.strip() if payload.description else None
        return payload


class GoalUpdatePayload(BaseModel):
    title: str | None = None
    target_amount: Decimal | None = None
    current_amount: Decimal | None = None
    deadline: date | None = None
    status: str | None = None
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalUpdatePayload") -> "GoalUpdatePayload":
        if payload.status is not None:
            payload.status = GoalStatus.validate(payload.status)
        if payload.title is not None:
            payload.title = payload.title.strip()
            if not payload.title:
                raise InvalidPeriod("Title is required.")
        return payload


class RecurringPayload(BaseModel):
    type: str
    amount: Decimal
    currency_id: int
    frequency: str
    start_date: date
    end_date: date | None = None
    category_id: int | None = None
    category: str | None = None
    account_id: int | None = None
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringPayload") -> "RecurringPayload":
        payload.type = TransactionType.validate(payload.type)
        payload.frequency = RecurringFrequency.validate(payload.frequency)
        if payload.amount <= 0:
            raise InvalidPeriod("Amount must be greater than zero.")
        if payload.end_date is not None and payload.end_date < payload.start_date:
            raise InvalidPeriod("End date must be on or after start date.")
        payload.category = payload.category.strip() if payload.category else None
        if payload.category_id is None and payload.category is None:
            raise InvalidPeriod("Category is required.")
        payload.description = payload.description.strip() if payload.description else None
        return payload
