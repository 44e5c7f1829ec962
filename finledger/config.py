import logging
import os
from dataclasses import dataclass


def _currency_from_env(name: str, fallback: str) -> str:
    raw = os.getenv(name, fallback).strip().upper()
    if len(raw) != 3 or not raw.isalpha():
        return fallback
    return raw


def _int_from_env(name: str, fallback: int) -> int:
    try:
        return int(os.getenv(name, str(fallback)))
    except ValueError:
        return fallback


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./finledger.db")
    default_currency: str = _currency_from_env("DEFAULT_CURRENCY", "USD")
    exchange_rate_api_url: str = os.getenv(
        "EXCHANGE_RATE_API_URL", "https://api.exchangerate-api.com/v4"
    )
    exchange_rate_cache_ttl: int = _int_from_env("EXCHANGE_RATE_CACHE_TTL", 12 * 60 * 60)
    budget_alert_threshold: int = _int_from_env("BUDGET_ALERT_THRESHOLD", 80)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level or settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
