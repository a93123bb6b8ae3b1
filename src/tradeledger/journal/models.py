from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class Side(StrEnum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, token: object) -> Side | None:
        """Map a raw side token onto BUY/SELL, or None when unrecognized.

        Matching is case-insensitive for ``buy``/``sell``; the broker codes
        ``BOT``/``SLD`` match exactly.
        """
        if not isinstance(token, str):
            return None
        if token == "BOT" or token.lower() == "buy":
            return cls.BUY
        if token == "SLD" or token.lower() == "sell":
            return cls.SELL
        return None


class TradeSide(StrEnum):
    LONG_SELL = "long_sell"
    SHORT_COVER = "short_cover"


@dataclass(slots=True, frozen=True)
class Order:
    symbol: str
    side: str
    quantity: float
    price: float
    date: datetime
    account_id: str | None = None
    user_id: str | None = None


@dataclass(slots=True)
class Position:
    symbol: str
    quantity: float = 0.0
    avg_price: float = 0.0
    start_date: datetime | None = None

    @property
    def is_flat(self) -> bool:
        return self.quantity == 0


@dataclass(slots=True, frozen=True)
class Trade:
    symbol: str
    side: TradeSide
    quantity: float
    date: datetime
    profit_loss: float
    buy_price: float | None = None
    sell_price: float | None = None
    short_price: float | None = None
    cover_price: float | None = None
    hold_time_minutes: float | None = None
    account_id: str | None = None
    user_id: str | None = None


@dataclass(slots=True, frozen=True)
class DailySummary:
    date: str
    total_trades: int
    wins: int
    losses: int
    total_profit_loss: float
    accuracy: float
    profit_to_loss_ratio: float
    account_id: str | None = None
    user_id: str | None = None
