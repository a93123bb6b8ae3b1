from __future__ import annotations

import math

from tradeledger.journal.models import DailySummary, Position, Trade, TradeSide
from tradeledger.journal.position_engine import to_utc


def trade_payload(trade: Trade) -> dict[str, object]:
    payload: dict[str, object] = {
        "user_id": trade.user_id,
        "account_id": trade.account_id,
        "symbol": trade.symbol,
        "side": str(trade.side),
        "quantity": trade.quantity,
        "date": to_utc(trade.date).isoformat(),
        "profit_loss": trade.profit_loss,
        "hold_time_minutes": trade.hold_time_minutes,
    }
    if trade.side == TradeSide.SHORT_COVER:
        payload["short_price"] = trade.short_price
        payload["cover_price"] = trade.cover_price
    else:
        payload["buy_price"] = trade.buy_price
        payload["sell_price"] = trade.sell_price
    return payload


def summary_payload(summary: DailySummary) -> dict[str, object]:
    return {
        "user_id": summary.user_id,
        "account_id": summary.account_id,
        "date": summary.date,
        "total_trades": summary.total_trades,
        "wins": summary.wins,
        "losses": summary.losses,
        "total_profit_loss": summary.total_profit_loss,
        "accuracy": summary.accuracy,
        "profit_to_loss_ratio": ratio_payload(summary.profit_to_loss_ratio),
    }


def position_payload(position: Position) -> dict[str, object]:
    return {
        "symbol": position.symbol,
        "quantity": position.quantity,
        "avg_price": position.avg_price,
        "start_date": to_utc(position.start_date).isoformat() if position.start_date else None,
    }


def ratio_payload(value: float) -> float | str:
    # JSON has no infinity literal
    if math.isinf(value):
        return "Infinity"
    return value
