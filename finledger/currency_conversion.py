from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
import json
import logging
import time
from typing import Iterable, List, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from finledger.config import settings
from finledger.models import (
    MISSING_RATE,
    DANGLING_REFERENCE,
    ByCode,
    ById,
    CurrencyRef,
    Diagnostics,
    RecordNotFound,
    normalize_currency,
)

logger = logging.getLogger(__name__)

ONE = Decimal("1")

DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "IDR": Decimal("15650"),
    "SGD": Decimal("1.34"),
    "MYR": Decimal("4.68"),
    "AUD": Decimal("1.52"),
    "CAD": Decimal("1.34"),
    "CHF": Decimal("0.88"),
}


@dataclass(frozen=True)
class CurrencyRecord:
    """One row of a user's currency table.

    ``exchange_rate`` is expressed as units of this currency per 1 unit of
    the base (default) currency.
    """

    id: Optional[int]
    code: str
    exchange_rate: Decimal = ONE
    is_default: bool = False
    name: str = ""
    symbol: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", self.code.strip().upper())
        object.__setattr__(self, "exchange_rate", _coerce_rate(self.exchange_rate))


class CurrencyLedger:
    """Read-only lookup of rates by code or id for a single user."""

    def __init__(
        self,
        records: Iterable[CurrencyRecord],
        default_currency: Optional[str] = None,
    ) -> None:
        records = list(records)
        defaults = [record for record in records if record.is_default]
        if len(defaults) > 1:
            logger.warning(
                "Several default currencies flagged (%s); using %s as base",
                ", ".join(record.code for record in defaults),
                defaults[0].code,
            )
        if defaults:
            base = defaults[0]
            self.base_code = base.code
        else:
            self.base_code = (default_currency or settings.default_currency).strip().upper()
            base = next(
                (record for record in records if record.code == self.base_code),
                CurrencyRecord(id=None, code=self.base_code, is_default=True),
            )

        normalized: List[CurrencyRecord] = []
        for record in records:
            if record.code == self.base_code:
                record = replace(record, exchange_rate=ONE, is_default=True)
            elif record.is_default:
                record = replace(record, is_default=False)
            normalized.append(record)
        if not any(record.code == self.base_code for record in normalized):
            normalized.append(replace(base, exchange_rate=ONE, is_default=True))

        self._records = normalized
        self._by_code = {}
        for record in normalized:
            self._by_code.setdefault(record.code, record)
        self._by_id = {record.id: record for record in normalized if record.id is not None}

    @property
    def records(self) -> List[CurrencyRecord]:
        return list(self._records)

    @property
    def base(self) -> CurrencyRecord:
        return self._by_code[self.base_code]

    def get(self, code: str) -> Optional[CurrencyRecord]:
        return self._by_code.get(code.strip().upper())

    def get_by_id(self, currency_id: int) -> Optional[CurrencyRecord]:
        return self._by_id.get(currency_id)

    def rate(self, code: str) -> Optional[Decimal]:
        """Return the usable rate for ``code`` or ``None`` when it is missing or not positive."""
        normalized = code.strip().upper()
        if normalized == self.base_code:
            return ONE
        record = self._by_code.get(normalized)
        if record is None or record.exchange_rate <= 0:
            return None
        return record.exchange_rate

    def resolve(self, ref: Optional[CurrencyRef]) -> Optional[CurrencyRecord]:
        if isinstance(ref, ById):
            return self.get_by_id(ref.currency_id)
        if isinstance(ref, ByCode):
            return self.get(ref.code)
        return None

    def resolve_code(
        self,
        ref: Optional[CurrencyRef],
        diagnostics: Optional[Diagnostics] = None,
        record_id: Optional[int] = None,
    ) -> str:
        """Resolve a reference to a currency code, defaulting to base when it dangles."""
        if ref is None:
            return self.base_code
        record = self.resolve(ref)
        if record is not None:
            return record.code
        if isinstance(ref, ByCode) and ref.code.strip():
            # Legacy rows store a bare code that may not be in the table; the
            # rate lookup reports it as missing later on.
            return ref.code.strip().upper()
        if diagnostics is not None:
            diagnostics.add(DANGLING_REFERENCE, record_id, f"currency {ref} not found")
        return self.base_code

    def normalize_code(self, code: Optional[str]) -> str:
        if not code or not code.strip():
            return self.base_code
        return code.strip().upper()


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: Optional[str],
    target_currency: Optional[str],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
    record_id: Optional[int] = None,
) -> Decimal:
    """Convert an amount between two currencies through the base currency.

    A hop whose rate is missing or not positive is skipped, which treats the
    amount as already being in base. The anomaly goes to ``diagnostics``.
    """
    coerced_amount = _coerce_amount(amount)
    normalized_source = ledger.normalize_code(source_currency)
    normalized_target = ledger.normalize_code(target_currency)

    if normalized_source == normalized_target:
        return coerced_amount

    amount_in_base = coerced_amount
    if normalized_source != ledger.base_code:
        source_rate = ledger.rate(normalized_source)
        if source_rate is None:
            _flag_missing_rate(diagnostics, record_id, normalized_source)
        else:
            amount_in_base = coerced_amount / source_rate

    if normalized_target == ledger.base_code:
        return amount_in_base
    target_rate = ledger.rate(normalized_target)
    if target_rate is None:
        _flag_missing_rate(diagnostics, record_id, normalized_target)
        return amount_in_base
    return amount_in_base * target_rate


def to_base(
    amount: Decimal | int | float | str,
    currency: Optional[str],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
    record_id: Optional[int] = None,
) -> Decimal:
    return convert_amount(amount, currency, ledger.base_code, ledger, diagnostics, record_id)


def from_base(
    amount: Decimal | int | float | str,
    currency: Optional[str],
    ledger: CurrencyLedger,
    diagnostics: Optional[Diagnostics] = None,
    record_id: Optional[int] = None,
) -> Decimal:
    return convert_amount(amount, ledger.base_code, currency, ledger, diagnostics, record_id)


def set_default_currency(
    records: Iterable[CurrencyRecord], currency_id: int
) -> List[CurrencyRecord]:
    """Make ``currency_id`` the only default and rebase every other rate onto it."""
    records = list(records)
    target = next((record for record in records if record.id == currency_id), None)
    if target is None:
        raise RecordNotFound("Currency not found.")

    new_base_rate = target.exchange_rate
    if target.is_default:
        new_base_rate = ONE
    elif new_base_rate <= 0:
        logger.warning(
            "Currency %s has no usable rate; default moved without rebasing", target.code
        )
        new_base_rate = ONE

    updated: List[CurrencyRecord] = []
    for record in records:
        if record.id == currency_id:
            updated.append(replace(record, is_default=True, exchange_rate=ONE))
            continue
        rate = record.exchange_rate
        if rate > 0:
            rate = rate / new_base_rate
        updated.append(replace(record, is_default=False, exchange_rate=rate))
    return updated


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 USD and rebased on request.
    """

    rates: Mapping[str, Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        normalized = normalize_currency(base_currency)
        try:
            base_rate = _coerce_rate(self.rates[normalized])
        except KeyError as exc:
            raise RateProviderUnavailable(f"No static rate for {normalized}") from exc
        return {code: _coerce_rate(rate) / base_rate for code, rate in self.rates.items()}


@dataclass(frozen=True)
class CachedRates:
    rates: Mapping[str, Decimal]
    expires_at: float


@dataclass
class ExchangeRateApiProvider:
    base_url: str = settings.exchange_rate_api_url
    cache_ttl_seconds: int = settings.exchange_rate_cache_ttl
    timeout: int = 8
    _cache: dict[str, CachedRates] = field(default_factory=dict)

    def fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        normalized = normalize_currency(base_currency)
        cached = self._cache.get(normalized)
        now = time.monotonic()
        if cached and cached.expires_at > now:
            return cached.rates

        rates = self._fetch_rates(normalized)
        self._cache[normalized] = CachedRates(
            rates=rates, expires_at=now + self.cache_ttl_seconds
        )
        return rates

    def _fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        url = f"{self.base_url}/latest/{base_currency}"
        try:
            with urlopen(url, timeout=self.timeout) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable("Exchange rate API unavailable") from exc

        rates = payload.get("rates")
        if not isinstance(rates, dict) or not rates:
            raise RateProviderUnavailable("Exchange rate response missing rates")

        parsed = {}
        for code, value in rates.items():
            try:
                parsed[code.strip().upper()] = Decimal(str(value))
            except InvalidOperation:
                logger.debug("Skipping unparseable rate %r for %s", value, code)
        parsed[base_currency] = ONE
        return parsed


@dataclass(frozen=True)
class RateRefresh:
    records: List[CurrencyRecord]
    updated_codes: List[str]
    error: Optional[str] = None


def refresh_ledger_rates(
    records: Iterable[CurrencyRecord],
    provider,
) -> RateRefresh:
    """Pull fresh rates for every non-base currency.

    On provider failure the stored rates are kept as they are; only the base
    currency is forced back to 1.
    """
    ledger = CurrencyLedger(records)
    base_code = ledger.base_code
    try:
        fetched = provider.fetch_rates(base_code)
    except RateProviderUnavailable as exc:
        logger.warning("Rate refresh for base %s failed: %s", base_code, exc)
        return RateRefresh(records=ledger.records, updated_codes=[], error=str(exc))

    updated: List[CurrencyRecord] = []
    updated_codes: List[str] = []
    for record in ledger.records:
        if record.code == base_code:
            updated.append(record)
            continue
        rate = fetched.get(record.code)
        if rate is None or rate <= 0:
            logger.warning("No rate returned for %s; keeping %s", record.code, record.exchange_rate)
            updated.append(record)
            continue
        if rate != record.exchange_rate:
            updated_codes.append(record.code)
            record = replace(record, exchange_rate=rate)
        updated.append(record)
    logger.info("Refreshed %d rate(s) against %s", len(updated_codes), base_code)
    return RateRefresh(records=updated, updated_codes=updated_codes)


def _flag_missing_rate(
    diagnostics: Optional[Diagnostics], record_id: Optional[int], code: str
) -> None:
    if diagnostics is not None:
        diagnostics.add(MISSING_RATE, record_id, f"no usable rate for {code}; treated as base")
    else:
        logger.warning("No usable rate for %s; treated as base currency", code)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def _coerce_rate(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return _coerce_amount(value)
    except InvalidOperation:
        return Decimal("0")
