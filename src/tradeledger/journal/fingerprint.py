from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable

from tradeledger.journal.models import Order
from tradeledger.journal.position_engine import to_utc


def order_record(order: Order) -> dict[str, object]:
    return {
        "symbol": order.symbol,
        "side": order.side,
        "quantity": float(order.quantity),
        "price": float(order.price),
        "date": to_utc(order.date).isoformat(),
        "account_id": order.account_id,
        "user_id": order.user_id,
    }


def batch_fingerprint(orders: Iterable[Order]) -> str:
    """SHA-256 content hash of a batch; insensitive to the order of records."""
    rows = sorted(json.dumps(order_record(order), sort_keys=True) for order in orders)
    return hashlib.sha256("\n".join(rows).encode("utf-8")).hexdigest()
