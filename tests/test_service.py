from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from tradeledger.journal.fingerprint import batch_fingerprint
from tradeledger.journal.models import Order, TradeSide
from tradeledger.journal.service import reconstruct
from tradeledger.journal.validation import OrderValidationError

_START = datetime(2026, 1, 5, 14, 30)


def _order(
    side: str,
    quantity: float,
    price: float,
    minutes: int = 0,
    account_id: str = "acct-1",
    symbol: str = "AAPL",
) -> Order:
    return Order(
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        date=_START + timedelta(minutes=minutes),
        account_id=account_id,
        user_id="user-1",
    )


def test_reconstruct_produces_trades_and_summaries() -> None:
    result = reconstruct(
        [
            _order("buy", 100, 10.0),
            _order("sell", 150, 12.0, 10),
            _order("buy", 50, 11.0, 20),
        ]
    )

    assert [t.side for t in result.trades] == [TradeSide.LONG_SELL, TradeSide.SHORT_COVER]
    assert len(result.summaries) == 1
    summary = result.summaries[0]
    assert summary.total_trades == 2
    assert summary.total_profit_loss == 250.0
    assert summary.accuracy == 100.0
    assert result.open_positions == {("user-1", "acct-1"): {}}


def test_accounts_keep_independent_positions() -> None:
    result = reconstruct(
        [
            _order("buy", 100, 10.0, account_id="acct-1"),
            _order("sell", 100, 12.0, 5, account_id="acct-2"),
        ]
    )

    assert result.trades == []
    assert result.summaries == []
    assert result.open_positions[("user-1", "acct-1")]["AAPL"].quantity == 100
    assert result.open_positions[("user-1", "acct-2")]["AAPL"].quantity == -100


def test_invalid_batch_rejected_before_reconstruction() -> None:
    with pytest.raises(OrderValidationError):
        reconstruct([_order("buy", 100, 10.0), _order("sell", -5, 12.0, 1)])


def test_empty_history_is_not_an_error() -> None:
    result = reconstruct([])
    assert result.trades == []
    assert result.summaries == []


def test_summary_timezone_is_applied() -> None:
    late = [_order("buy", 1, 10.0, 600), _order("sell", 1, 11.0, 660)]

    utc_day = reconstruct(late).summaries[0].date
    tokyo_day = reconstruct(late, timezone="Asia/Tokyo").summaries[0].date

    assert utc_day == "2026-01-06"
    assert tokyo_day == "2026-01-06"
    assert reconstruct(late, timezone="America/Los_Angeles").summaries[0].date == "2026-01-05"


def test_fingerprint_ignores_record_order_but_not_content() -> None:
    orders = [_order("buy", 100, 10.0), _order("sell", 100, 12.0, 5)]

    assert batch_fingerprint(orders) == batch_fingerprint(list(reversed(orders)))
    assert batch_fingerprint(orders) != batch_fingerprint([orders[0], _order("sell", 100, 12.5, 5)])
    assert len(batch_fingerprint(orders)) == 64
