from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime

from tradeledger.journal.models import Order


class OrderValidationError(ValueError):
    """Raised when any order in a batch fails validation; the batch is rejected whole."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = tuple(problems)
        super().__init__("Invalid order batch: " + "; ".join(self.problems))


def validate_orders(orders: Sequence[Order]) -> None:
    problems: list[str] = []
    for index, order in enumerate(orders):
        problems.extend(f"order[{index}]: {issue}" for issue in _order_issues(order))
    if problems:
        raise OrderValidationError(problems)


def _order_issues(order: Order) -> list[str]:
    issues: list[str] = []
    if not isinstance(order.symbol, str) or not order.symbol.strip():
        issues.append("symbol must be non-empty")
    for field_name in ("quantity", "price"):
        value = getattr(order, field_name)
        if not _is_positive_number(value):
            issues.append(f"{field_name} must be a positive number, got {value!r}")
    if not isinstance(order.date, datetime):
        issues.append(f"date must be a datetime, got {order.date!r}")
    # Unknown side tokens are tolerated; the engine skips those orders.
    return issues


def _is_positive_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value) and value > 0
