from __future__ import annotations

import math
from collections.abc import Iterable
from zoneinfo import ZoneInfo

import pandas as pd

from tradeledger.journal.models import DailySummary, Trade
from tradeledger.journal.position_engine import to_utc

_GroupKey = tuple[str, str, str]


def trade_day(trade: Trade, timezone: str = "UTC") -> str:
    """Calendar day of a trade in ``timezone`` as YYYY-MM-DD."""
    return to_utc(trade.date).astimezone(ZoneInfo(timezone)).strftime("%Y-%m-%d")


def calculate_summaries(trades: Iterable[Trade], timezone: str = "UTC") -> list[DailySummary]:
    """Roll realized trades into one DailySummary per owner and calendar day."""
    groups: dict[_GroupKey, list[float]] = {}
    owners: dict[_GroupKey, tuple[str | None, str | None]] = {}
    for trade in trades:
        key = (trade.user_id or "", trade.account_id or "", trade_day(trade, timezone))
        groups.setdefault(key, []).append(trade.profit_loss)
        owners[key] = (trade.user_id, trade.account_id)

    summaries: list[DailySummary] = []
    for key in sorted(groups):
        user_id, account_id = owners[key]
        summaries.append(
            summarize_day(
                key[2],
                pd.Series(groups[key], dtype="float64"),
                user_id=user_id,
                account_id=account_id,
            )
        )
    return summaries


def summarize_day(
    day: str,
    profit_loss: pd.Series,
    *,
    user_id: str | None = None,
    account_id: str | None = None,
) -> DailySummary:
    total_trades = int(len(profit_loss))
    winners = profit_loss[profit_loss > 0]
    losers = profit_loss[profit_loss < 0]

    total_profit = float(winners.sum())
    total_loss = float(losers.abs().sum())
    accuracy = (len(winners) / total_trades) * 100 if total_trades > 0 else 0.0

    return DailySummary(
        date=day,
        total_trades=total_trades,
        wins=int(len(winners)),
        losses=int(len(losers)),
        total_profit_loss=round(float(profit_loss.sum()), 2),
        accuracy=round(accuracy, 2),
        profit_to_loss_ratio=profit_to_loss_ratio(total_profit, total_loss),
        account_id=account_id,
        user_id=user_id,
    )


def profit_to_loss_ratio(total_profit: float, total_loss: float) -> float:
    if total_loss > 0:
        return round(total_profit / total_loss, 4)
    if total_profit > 0:
        return math.inf
    return 0.0
