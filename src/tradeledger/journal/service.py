from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from tradeledger.journal.models import DailySummary, Order, Position, Trade
from tradeledger.journal.position_engine import PositionEngine
from tradeledger.journal.summary import calculate_summaries
from tradeledger.journal.validation import validate_orders

logger = logging.getLogger(__name__)

Owner = tuple[str | None, str | None]


@dataclass(slots=True)
class JournalResult:
    trades: list[Trade]
    summaries: list[DailySummary]
    open_positions: dict[Owner, dict[str, Position]] = field(default_factory=dict)


def reconstruct(
    orders: Sequence[Order],
    *,
    timezone: str = "UTC",
    pnl_decimals: int = 2,
) -> JournalResult:
    """Validate a full order history, rebuild trades per owner and summarize them.

    Owners are ``(user_id, account_id)`` pairs; each gets an independent set
    of positions. Raises OrderValidationError before any computation if one
    order is malformed.
    """
    validate_orders(orders)

    by_owner: dict[Owner, list[Order]] = {}
    for order in orders:
        by_owner.setdefault((order.user_id, order.account_id), []).append(order)

    engine = PositionEngine(pnl_decimals=pnl_decimals)
    trades: list[Trade] = []
    open_positions: dict[Owner, dict[str, Position]] = {}
    for owner, owner_orders in by_owner.items():
        result = engine.run(owner_orders)
        trades.extend(result.trades)
        open_positions[owner] = {
            symbol: position
            for symbol, position in result.positions.items()
            if not position.is_flat
        }
        if result.skipped_orders:
            logger.warning(
                "Skipped %s orders with unrecognized side for owner %s",
                result.skipped_orders,
                owner,
            )

    summaries = calculate_summaries(trades, timezone=timezone)
    logger.info(
        "Reconstructed %s trades and %s daily summaries from %s orders",
        len(trades),
        len(summaries),
        len(orders),
    )
    return JournalResult(trades=trades, summaries=summaries, open_positions=open_positions)
