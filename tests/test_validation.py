from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from tradeledger.journal.models import Order, Side
from tradeledger.journal.validation import OrderValidationError, validate_orders


def _order(**overrides: Any) -> Order:
    fields: dict[str, Any] = {
        "symbol": "AAPL",
        "side": "buy",
        "quantity": 10.0,
        "price": 100.0,
        "date": datetime(2026, 1, 5, 9, 30),
    }
    fields.update(overrides)
    return Order(**fields)


def test_side_parse_aliases() -> None:
    assert Side.parse("buy") == Side.BUY
    assert Side.parse("BUY") == Side.BUY
    assert Side.parse("BOT") == Side.BUY
    assert Side.parse("Sell") == Side.SELL
    assert Side.parse("SLD") == Side.SELL
    assert Side.parse("sld") is None
    assert Side.parse("short") is None
    assert Side.parse(None) is None


def test_valid_batch_passes() -> None:
    validate_orders([_order(), _order(side="SLD", quantity=1)])


def test_unknown_side_is_not_a_validation_error() -> None:
    validate_orders([_order(side="hold")])


def test_empty_batch_passes() -> None:
    validate_orders([])


def test_batch_rejected_with_every_problem_listed() -> None:
    orders = [
        _order(),
        _order(quantity=0),
        _order(price=float("nan"), symbol=" "),
        _order(date=None),
    ]

    with pytest.raises(OrderValidationError) as excinfo:
        validate_orders(orders)

    problems = excinfo.value.problems
    assert len(problems) == 4
    assert problems[0].startswith("order[1]: quantity")
    assert any(p.startswith("order[2]: symbol") for p in problems)
    assert any(p.startswith("order[2]: price") for p in problems)
    assert problems[-1].startswith("order[3]: date")
    assert isinstance(excinfo.value, ValueError)


@pytest.mark.parametrize("value", [-1.0, None, "10", True, float("inf")])
def test_non_positive_or_non_numeric_quantity_rejected(value: object) -> None:
    with pytest.raises(OrderValidationError, match="quantity must be a positive number"):
        validate_orders([_order(quantity=value)])
