"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from wallet.config import settings
    print(settings.REDIS_URL)
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the wallet ledger service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Wallet Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Database ---
    # SQLite for local use; swap to a PostgreSQL URL (asyncpg) for row-level locking
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/wallet.db"

    # --- Idempotency cache ---
    REDIS_URL: str = "redis://localhost:6379/1"
    IDEMPOTENCY_KEY_PREFIX: str = "idempotency:"
    # Safety valve: a crashed worker releases its key after this long
    IDEMPOTENCY_IN_PROGRESS_TTL_SECONDS: int = 60
    IDEMPOTENCY_RESULT_TTL_SECONDS: int = 3600

    # --- Currencies ---
    DEFAULT_CURRENCY: str = "USD"
    SUPPORTED_CURRENCIES: list[str] = ["USD", "EUR", "GBP"]
    # from-currency -> to-currency -> multiplier applied to minor units
    EXCHANGE_RATES: dict[str, dict[str, Decimal]] = {
        "USD": {"EUR": Decimal("0.85"), "GBP": Decimal("0.73")},
        "EUR": {"USD": Decimal("1.18")},
        "GBP": {"USD": Decimal("1.37")},
    }

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
