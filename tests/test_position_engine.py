from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from tradeledger.journal.models import Order, TradeSide
from tradeledger.journal.position_engine import PositionEngine, calculate_trades

_START = datetime(2026, 1, 5, 9, 30)


def _order(side: str, quantity: float, price: float, minutes: int = 0, symbol: str = "AAPL") -> Order:
    return Order(
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        date=_START + timedelta(minutes=minutes),
        account_id="acct-1",
        user_id="user-1",
    )


def test_buy_adds_use_volume_weighted_average() -> None:
    result = PositionEngine().run([_order("buy", 100, 10.0), _order("buy", 100, 20.0, 1)])

    assert result.trades == []
    position = result.positions["AAPL"]
    assert position.quantity == 200
    assert position.avg_price == 15.0


def test_sell_adds_to_short_use_volume_weighted_average() -> None:
    result = PositionEngine().run([_order("sell", 100, 20.0), _order("sell", 100, 30.0, 1)])

    assert result.trades == []
    assert result.positions["AAPL"].quantity == -200
    assert result.positions["AAPL"].avg_price == 25.0


def test_sell_through_long_flips_to_short_without_second_trade() -> None:
    result = PositionEngine().run([_order("buy", 100, 10.0), _order("sell", 150, 12.0, 5)])

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.side == TradeSide.LONG_SELL
    assert trade.quantity == 100
    assert trade.buy_price == 10.0
    assert trade.sell_price == 12.0
    assert trade.profit_loss == 200.0
    assert trade.short_price is None
    assert result.positions["AAPL"].quantity == -50
    assert result.positions["AAPL"].avg_price == 12.0


def test_buy_through_short_covers_and_opens_long() -> None:
    result = PositionEngine().run([_order("sell", 100, 20.0), _order("buy", 150, 15.0, 5)])

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.side == TradeSide.SHORT_COVER
    assert trade.quantity == 100
    assert trade.short_price == 20.0
    assert trade.cover_price == 15.0
    assert trade.profit_loss == 500.0
    assert trade.buy_price is None
    assert result.positions["AAPL"].quantity == 50
    assert result.positions["AAPL"].avg_price == 15.0


def test_exact_flatten_does_not_open_new_leg() -> None:
    result = PositionEngine().run([_order("buy", 100, 10.0), _order("sell", 100, 11.0, 1)])

    position = result.positions["AAPL"]
    assert position.quantity == 0
    assert position.is_flat
    assert position.avg_price == 0.0
    assert position.start_date is None
    assert [t.profit_loss for t in result.trades] == [100.0]


def test_fractional_fills_flatten_exactly() -> None:
    result = PositionEngine().run(
        [
            _order("buy", 0.1, 10.0),
            _order("buy", 0.2, 10.0, 1),
            _order("sell", 0.3, 11.0, 2),
            _order("sell", 1.0, 12.0, 3),
        ]
    )

    assert len(result.trades) == 1
    assert result.trades[0].quantity == 0.3
    position = result.positions["AAPL"]
    assert position.quantity == -1.0
    assert position.avg_price == 12.0
    assert position.start_date == _START + timedelta(minutes=3)


def test_fractional_cover_does_not_open_residual_leg() -> None:
    result = PositionEngine().run(
        [
            _order("sell", 0.3, 10.0),
            _order("buy", 0.1, 9.0, 1),
            _order("buy", 0.2, 9.0, 2),
        ]
    )

    assert [t.side for t in result.trades] == [TradeSide.SHORT_COVER, TradeSide.SHORT_COVER]
    position = result.positions["AAPL"]
    assert position.is_flat
    assert position.start_date is None


def test_partial_close_keeps_average_of_remaining_shares() -> None:
    result = PositionEngine().run([_order("buy", 100, 10.0), _order("sell", 40, 12.0, 1)])

    assert result.trades[0].quantity == 40
    assert result.trades[0].profit_loss == 80.0
    assert result.positions["AAPL"].quantity == 60
    assert result.positions["AAPL"].avg_price == 10.0


def test_reopening_after_flat_ignores_stale_average() -> None:
    trades = calculate_trades(
        [
            _order("buy", 10, 50.0),
            _order("sell", 10, 55.0, 1),
            _order("buy", 10, 100.0, 2),
            _order("sell", 10, 101.0, 3),
        ]
    )

    assert [t.buy_price for t in trades] == [50.0, 100.0]
    assert [t.profit_loss for t in trades] == [50.0, 10.0]


def test_profit_loss_is_rounded_on_both_close_paths() -> None:
    long_trade = calculate_trades([_order("buy", 1, 0.1), _order("sell", 1, 0.3, 1)])[0]
    short_trade = calculate_trades([_order("sell", 3, 10.005), _order("buy", 3, 10.001, 1)])[0]

    assert long_trade.profit_loss == 0.2
    assert short_trade.profit_loss == 0.01


def test_pnl_decimals_is_configurable() -> None:
    trade = calculate_trades(
        [_order("sell", 3, 10.005), _order("buy", 3, 10.001, 1)],
        pnl_decimals=3,
    )[0]
    assert trade.profit_loss == 0.012


def test_negative_pnl_decimals_rejected() -> None:
    with pytest.raises(ValueError, match="pnl_decimals"):
        PositionEngine(pnl_decimals=-1)


def test_side_aliases_are_normalized() -> None:
    trades = calculate_trades(
        [
            _order("BOT", 10, 10.0),
            _order("Sell", 5, 11.0, 1),
            _order("SLD", 5, 12.0, 2),
            _order("SELL", 5, 13.0, 3),
            _order("Buy", 5, 12.0, 4),
        ]
    )

    assert [t.side for t in trades] == [
        TradeSide.LONG_SELL,
        TradeSide.LONG_SELL,
        TradeSide.SHORT_COVER,
    ]
    assert [t.profit_loss for t in trades] == [5.0, 10.0, 5.0]


def test_unrecognized_side_is_skipped() -> None:
    result = PositionEngine().run(
        [_order("hold", 100, 10.0), _order("bot", 100, 10.0, 1), _order("x", 5, 1.0, symbol="MSFT")]
    )

    assert result.trades == []
    assert result.positions == {}
    assert result.skipped_orders == 3


def test_empty_input_returns_no_trades() -> None:
    result = PositionEngine().run([])
    assert result.trades == []
    assert result.positions == {}


def test_output_is_invariant_to_input_permutation() -> None:
    orders = [
        _order("buy", 100, 10.0, 0),
        _order("buy", 50, 11.0, 1),
        _order("sell", 200, 12.5, 2),
        _order("sell", 20, 13.0, 3),
        _order("buy", 100, 9.75, 4),
        _order("buy", 30, 20.0, 10, symbol="MSFT"),
        _order("sell", 10, 21.0, 12, symbol="MSFT"),
        _order("sell", 40, 19.0, 15, symbol="MSFT"),
    ]
    expected = calculate_trades(orders)
    rng = random.Random(7)

    for _ in range(20):
        shuffled = orders[:]
        rng.shuffle(shuffled)
        assert calculate_trades(shuffled) == expected


def test_equal_timestamps_keep_input_order() -> None:
    buy = _order("buy", 100, 10.0)
    sell = _order("sell", 100, 12.0)

    assert calculate_trades([buy, sell])[0].side == TradeSide.LONG_SELL
    assert calculate_trades([sell, buy])[0].side == TradeSide.SHORT_COVER


def test_naive_and_aware_dates_are_sequenced_in_utc() -> None:
    eastern = timezone(timedelta(hours=-5))
    sell = Order(
        symbol="AAPL",
        side="sell",
        quantity=10,
        price=12.0,
        date=datetime(2026, 1, 5, 9, 0, tzinfo=eastern),
    )
    buy = Order(symbol="AAPL", side="buy", quantity=10, price=10.0, date=datetime(2026, 1, 5, 10, 0))

    trades = calculate_trades([sell, buy])

    assert len(trades) == 1
    assert trades[0].side == TradeSide.LONG_SELL
    assert trades[0].hold_time_minutes == 240.0


def test_quantity_is_conserved_and_trades_are_bounded() -> None:
    rng = random.Random(42)
    orders = [
        _order(
            rng.choice(["buy", "sell"]),
            float(rng.randint(1, 300)),
            round(rng.uniform(5, 50), 2),
            minutes,
            symbol=rng.choice(["AAPL", "MSFT", "TSLA"]),
        )
        for minutes in range(200)
    ]

    result = PositionEngine().run(orders)

    for symbol, position in result.positions.items():
        net = sum(
            o.quantity if o.side == "buy" else -o.quantity for o in orders if o.symbol == symbol
        )
        assert position.quantity == net

    by_date = {(o.symbol, o.date): o for o in orders}
    for trade in result.trades:
        assert trade.quantity > 0
        assert trade.quantity <= by_date[(trade.symbol, trade.date)].quantity


def test_hold_time_spans_partial_closes_and_resets_when_flat() -> None:
    trades = calculate_trades(
        [
            _order("buy", 10, 10.0, 0),
            _order("sell", 5, 11.0, 30),
            _order("sell", 5, 11.0, 45),
            _order("buy", 10, 10.0, 90),
            _order("sell", 10, 10.5, 100),
        ]
    )

    assert [t.hold_time_minutes for t in trades] == [30.0, 45.0, 10.0]


def test_flip_restarts_hold_clock_for_new_leg() -> None:
    trades = calculate_trades(
        [
            _order("buy", 100, 10.0, 0),
            _order("sell", 150, 12.0, 30),
            _order("buy", 50, 11.0, 50),
        ]
    )

    assert [t.side for t in trades] == [TradeSide.LONG_SELL, TradeSide.SHORT_COVER]
    assert [t.hold_time_minutes for t in trades] == [30.0, 20.0]
    assert trades[1].profit_loss == 50.0


def test_trades_carry_owner_attribution_and_closing_date() -> None:
    closing = _order("sell", 10, 11.0, 15)
    trade = calculate_trades([_order("buy", 10, 10.0), closing])[0]

    assert trade.account_id == "acct-1"
    assert trade.user_id == "user-1"
    assert trade.date == closing.date
