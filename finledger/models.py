from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
UNKNOWN_CATEGORY = "Unknown"

MISSING_RATE = "missing_rate"
DANGLING_REFERENCE = "dangling_reference"
INVALID_ROW = "invalid_row"


class InvalidPeriod(ValueError):
    """Raised when a record is rejected at the boundary.

    Covers months outside 1..12, non-positive target amounts, current amounts
    above target and the other write-time checks. The message is the reason
    shown to the caller.
    """


class DuplicateBudget(ValueError):
    """Raised when a budget already exists for the same category and month."""


class DuplicateCurrency(ValueError):
    """Raised when a user already has a currency with the same code."""


class RecordNotFound(ValueError):
    """Raised when a referenced currency, account or goal does not exist for the user."""


class TransactionType:
    values = {"income", "outcome"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise InvalidPeriod("Invalid transaction type.")
        return normalized


class RecurringFrequency:
    values = {"weekly", "monthly"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise InvalidPeriod("Only weekly or monthly schedules are supported.")
        return normalized


class GoalStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    values = {ACTIVE, COMPLETED, CANCELLED}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise InvalidPeriod("Invalid status.")
        return normalized


@dataclass(frozen=True)
class ByCode:
    code: str


@dataclass(frozen=True)
class ById:
    currency_id: int


CurrencyRef = ByCode | ById


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    record_id: Optional[int]
    detail: str


@dataclass
class Diagnostics:
    """Collects degradations that were absorbed instead of raised."""

    entries: List[Diagnostic] = field(default_factory=list)

    def add(self, kind: str, record_id: Optional[int], detail: str) -> None:
        logger.warning("%s (record %s): %s", kind, record_id, detail)
        self.entries.append(Diagnostic(kind=kind, record_id=record_id, detail=detail))

    def of_kind(self, kind: str) -> List[Diagnostic]:
        return [entry for entry in self.entries if entry.kind == kind]

    def record_ids(self, kind: Optional[str] = None) -> List[Optional[int]]:
        return [
            entry.record_id
            for entry in self.entries
            if kind is None or entry.kind == kind
        ]

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class Transaction:
    amount: Decimal
    type: str
    date: date
    currency: str
    id: Optional[int] = None
    user_id: Optional[int] = None
    category_id: Optional[int] = None
    category: Optional[str] = None
    account_id: Optional[int] = None
    description: Optional[str] = None
    recurring_id: Optional[int] = None


@dataclass(frozen=True)
class Account:
    id: int
    name: str
    type: str = "cash"
    currency: Optional[str] = None
    is_default: bool = False


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    type: str = "outcome"
    icon: str = ""
    color: str = ""


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise InvalidPeriod("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
