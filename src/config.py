from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DB_FILE = ARTIFACTS_DIR / "turnip_market.db"


class LedgerSettings(BaseSettings):
    expire_days: int = Field(default=7, gt=0)
    service_fee: Decimal = Field(default=Decimal("0.03"), ge=0, lt=1)
    max_buy_per_day: int | None = Field(default=10, gt=0)
    query_page_size: int = Field(default=10, gt=0)
    market_timezone: str = "UTC"
    lock_timeout_seconds: float = Field(default=10.0, gt=0)
    reaper_interval_seconds: float = Field(default=60.0, gt=0)
    db_file: Path = DB_FILE

    model_config = SettingsConfigDict(
        env_prefix="TURNIP_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@cache
def config() -> LedgerSettings:
    return LedgerSettings()
