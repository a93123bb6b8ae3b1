from __future__ import annotations

import pytest
from pydantic import ValidationError

from tradeledger.config import Settings


def test_settings_defaults_are_valid() -> None:
    settings = Settings()
    assert settings.app_name == "TradeLedger"
    assert settings.api_key is None
    assert settings.admin_api_key is None
    assert settings.database_url is None
    assert settings.rate_limit_per_minute > 0
    assert settings.summary_timezone == "UTC"
    assert settings.pnl_decimals == 2


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRADELEDGER_SUMMARY_TIMEZONE", "America/New_York")
    monkeypatch.setenv("TRADELEDGER_PNL_DECIMALS", "4")
    monkeypatch.setenv("TRADELEDGER_DATABASE_URL", "   ")

    settings = Settings()

    assert settings.summary_timezone == "America/New_York"
    assert settings.pnl_decimals == 4
    assert settings.database_url is None


def test_unknown_timezone_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown timezone"):
        Settings(summary_timezone="Mars/Olympus_Mons")


@pytest.mark.parametrize("field, value", [("rate_limit_per_minute", 0), ("pnl_decimals", -1)])
def test_out_of_range_numbers_rejected(field: str, value: int) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: value})
