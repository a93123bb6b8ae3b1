from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed runtime settings."""

    app_name: str = "TradeLedger"
    env: str = "dev"
    log_level: str = "INFO"

    api_key: str | None = None
    admin_api_key: str | None = None
    database_url: str | None = None
    rate_limit_per_minute: int = Field(default=120, gt=0)

    summary_timezone: str = "UTC"
    pnl_decimals: int = Field(default=2, ge=0, le=8)

    @field_validator("api_key", "admin_api_key", "database_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("summary_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    model_config = SettingsConfigDict(
        env_prefix="TRADELEDGER_",
        env_file=".env",
        env_file_encoding="utf-8-sig",
        extra="ignore",
    )
