# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


DEV_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "staging", "prod"] = "dev"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="")
    DB_POOL_MAX: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # -----------------------
    # JWT
    # -----------------------
    JWT_SECRET: str = Field(default=DEV_JWT_SECRET, min_length=16)
    JWT_ALG: str = Field(default="HS256")

    # -----------------------
    # Payment processor (Mode Switch)
    # -----------------------
    PROCESSOR_MODE: Literal["mock", "stripe"] = "mock"
    PROCESSOR_TIMEOUT_S: float = 20.0

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_VERSION: str = ""  # empty => account default

    # Connect onboarding links
    ONBOARDING_REFRESH_URL: str = "http://localhost:5173/creator/payouts?refresh=1"
    ONBOARDING_RETURN_URL: str = "http://localhost:5173/creator/payouts?done=1"

    # cached enablement flags older than this are refreshed before use
    PAYOUT_STATUS_MAX_AGE_S: int = 300

    # -----------------------
    # Transfer retry engine
    # -----------------------
    TRANSFER_RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    TRANSFER_RETRY_BATCH_SIZE: int = Field(default=10, ge=1)
    TRANSFER_RETRY_BASE_BACKOFF_S: int = Field(default=300, ge=0)
    TRANSFER_RETRY_INTERVAL_S: int = 300

    # -----------------------
    # Revenue split / referrals
    # -----------------------
    PLATFORM_FEE_PERCENT: float = Field(default=20.0, ge=0, le=100)
    REFERRAL_WINDOW_MONTHS: int = Field(default=9, ge=1)
    REFERRAL_COMMISSION_PERCENT: float = Field(default=7.5, ge=0, le=100)
    REFERRAL_PAYOUT_THRESHOLD_CENTS: int = 2500
    REFERRAL_COMMISSION_INTERVAL_S: int = 900


settings = Settings()


def validate_env_settings() -> None:
    """
    Fail fast outside dev when required settings are missing.
    Collects every problem so one deploy surfaces all of them.
    """
    env = (settings.ENV or "dev").strip().lower()
    if env == "dev":
        return

    missing: list[str] = []
    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if not settings.JWT_SECRET or settings.JWT_SECRET == DEV_JWT_SECRET:
        missing.append("JWT_SECRET")

    if settings.PROCESSOR_MODE == "stripe":
        if not (settings.STRIPE_SECRET_KEY or "").strip():
            missing.append("STRIPE_SECRET_KEY")
        if not (settings.STRIPE_WEBHOOK_SECRET or "").strip():
            missing.append("STRIPE_WEBHOOK_SECRET")
    elif env == "prod":
        missing.append("PROCESSOR_MODE")

    if missing:
        raise RuntimeError(f"Missing/invalid settings for ENV={env}: {', '.join(missing)}")
