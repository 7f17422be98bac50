import os
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class Settings(BaseModel):
    max_retries: int = Field(default=5, ge=1)
    currency: str = "BDT"
    default_timezone: str = "Asia/Dhaka"
    welcome_bonus: Decimal = Decimal("100.00")
    daily_bonus_base: Decimal = Decimal("10.00")
    daily_bonus_cap: Decimal = Decimal("100.00")
    referrer_bonus: Decimal = Decimal("50.00")
    referred_bonus: Decimal = Decimal("25.00")
    spins_per_day: int = Field(default=3, ge=0)
    withdrawal_fee_rate: Decimal = Decimal("0.02")
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown IANA timezone: {value!r}") from e
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = {
            "max_retries": os.getenv("LEDGER_MAX_RETRIES"),
            "currency": os.getenv("LEDGER_CURRENCY"),
            "default_timezone": os.getenv("LEDGER_DEFAULT_TIMEZONE"),
            "welcome_bonus": os.getenv("WELCOME_BONUS"),
            "daily_bonus_base": os.getenv("DAILY_BONUS_BASE"),
            "daily_bonus_cap": os.getenv("DAILY_BONUS_CAP"),
            "referrer_bonus": os.getenv("REFERRER_BONUS"),
            "referred_bonus": os.getenv("REFERRED_BONUS"),
            "spins_per_day": os.getenv("SPINS_PER_DAY"),
            "withdrawal_fee_rate": os.getenv("WITHDRAWAL_FEE_RATE"),
            "log_level": os.getenv("LOG_LEVEL"),
            "admin_email": os.getenv("ADMIN_EMAIL"),
            "admin_password": os.getenv("ADMIN_PASSWORD"),
        }
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            env["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        return cls(**{k: v for k, v in env.items() if v is not None})


def get_settings() -> Settings:
    return Settings.from_env()
