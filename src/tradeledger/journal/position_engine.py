from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from tradeledger.journal.models import Order, Position, Side, Trade, TradeSide

logger = logging.getLogger(__name__)

# Fill quantities below this are float residue from fractional shares.
QUANTITY_TOLERANCE = 1e-9


@dataclass(slots=True)
class ReconstructionResult:
    trades: list[Trade]
    positions: dict[str, Position]
    skipped_orders: int = 0


class PositionEngine:
    """Replays orders chronologically and emits a Trade for every closing fill.

    Positions use single average-cost accounting. A fill that crosses zero
    closes the old exposure (one Trade) and opens the remainder on the other
    side at the fill price without emitting a second Trade.
    """

    def __init__(self, pnl_decimals: int = 2) -> None:
        if pnl_decimals < 0:
            raise ValueError("pnl_decimals must be non-negative")
        self.pnl_decimals = pnl_decimals

    def run(self, orders: Iterable[Order]) -> ReconstructionResult:
        positions: dict[str, Position] = {}
        trades: list[Trade] = []
        skipped = 0

        for order in sorted(orders, key=lambda o: to_utc(o.date)):
            side = Side.parse(order.side)
            if side is None:
                logger.debug("Skipping %s order with unrecognized side %r", order.symbol, order.side)
                skipped += 1
                continue

            position = positions.get(order.symbol)
            if position is None:
                position = positions[order.symbol] = Position(symbol=order.symbol)

            trade = self._buy(position, order) if side == Side.BUY else self._sell(position, order)
            if trade is not None:
                trades.append(trade)

        return ReconstructionResult(trades=trades, positions=positions, skipped_orders=skipped)

    def _buy(self, position: Position, order: Order) -> Trade | None:
        if position.quantity >= 0:
            new_qty = position.quantity + order.quantity
            weighted_cost = (position.avg_price * position.quantity) + (order.price * order.quantity)
            position.avg_price = weighted_cost / new_qty
            position.quantity = new_qty
            if position.start_date is None:
                position.start_date = order.date
            return None

        cover_qty = min(-position.quantity, order.quantity)
        trade = Trade(
            symbol=order.symbol,
            side=TradeSide.SHORT_COVER,
            quantity=cover_qty,
            date=order.date,
            profit_loss=round((position.avg_price - order.price) * cover_qty, self.pnl_decimals),
            short_price=position.avg_price,
            cover_price=order.price,
            hold_time_minutes=self._hold_time(position, order),
            account_id=order.account_id,
            user_id=order.user_id,
        )
        position.quantity = _snap(position.quantity + cover_qty)
        self._open_remainder(position, order, order.quantity - cover_qty)
        return trade

    def _sell(self, position: Position, order: Order) -> Trade | None:
        if position.quantity <= 0:
            new_qty = position.quantity - order.quantity
            weighted_cost = abs(position.avg_price * position.quantity) + (order.price * order.quantity)
            position.avg_price = weighted_cost / abs(new_qty)
            position.quantity = new_qty
            if position.start_date is None:
                position.start_date = order.date
            return None

        sell_qty = min(position.quantity, order.quantity)
        trade = Trade(
            symbol=order.symbol,
            side=TradeSide.LONG_SELL,
            quantity=sell_qty,
            date=order.date,
            profit_loss=round((order.price - position.avg_price) * sell_qty, self.pnl_decimals),
            buy_price=position.avg_price,
            sell_price=order.price,
            hold_time_minutes=self._hold_time(position, order),
            account_id=order.account_id,
            user_id=order.user_id,
        )
        position.quantity = _snap(position.quantity - sell_qty)
        self._open_remainder(position, order, -(order.quantity - sell_qty))
        return trade

    @staticmethod
    def _open_remainder(position: Position, order: Order, signed_remainder: float) -> None:
        if _snap(signed_remainder) != 0:
            position.avg_price = order.price
            position.quantity += signed_remainder
            position.start_date = order.date
        elif position.is_flat:
            # avg_price is stale once flat
            position.avg_price = 0.0
            position.start_date = None

    @staticmethod
    def _hold_time(position: Position, order: Order) -> float | None:
        if position.start_date is None:
            return None
        elapsed = to_utc(order.date) - to_utc(position.start_date)
        return round(elapsed.total_seconds() / 60.0, 2)


def calculate_trades(orders: Iterable[Order], pnl_decimals: int = 2) -> list[Trade]:
    return PositionEngine(pnl_decimals=pnl_decimals).run(orders).trades


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _snap(quantity: float) -> float:
    if math.isclose(quantity, 0.0, abs_tol=QUANTITY_TOLERANCE):
        return 0.0
    return quantity
