from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from tradeledger.journal.models import Order

REQUIRED_COLUMNS = ["symbol", "side", "quantity", "price", "date"]

_COLUMN_ALIASES = {
    "accountid": "account_id",
    "account": "account_id",
    "accountnr": "account_id",
    "userid": "user_id",
    "user": "user_id",
    "qty": "quantity",
    "timestamp": "date",
}


def load_orders(path: str | Path) -> list[Order]:
    """Read orders from a CSV file or a JSON file (list of records or ``{"orders": [...]}``)."""
    source = Path(path)
    if source.suffix.lower() == ".json":
        payload = json.loads(source.read_text(encoding="utf-8"))
        records = payload.get("orders", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise ValueError(f"Expected a list of orders in {source}")
        frame = pd.DataFrame.from_records(records)
    else:
        frame = pd.read_csv(source, dtype=str, keep_default_na=False, na_values=[""])
    return frame_to_orders(frame)


def frame_to_orders(frame: pd.DataFrame) -> list[Order]:
    if frame.empty:
        return []

    normalized = frame.rename(columns=_normalize_column)
    duplicated = normalized.columns[normalized.columns.duplicated()]
    if len(duplicated):
        raise ValueError(f"Duplicate columns after normalization: {sorted(set(duplicated))}")
    missing = set(REQUIRED_COLUMNS).difference(normalized.columns)
    if missing:
        raise ValueError(f"Missing expected columns: {sorted(missing)}")

    quantities = pd.to_numeric(normalized["quantity"], errors="coerce")
    prices = pd.to_numeric(normalized["price"], errors="coerce")
    dates = pd.to_datetime(normalized["date"], utc=True, errors="coerce", format="mixed")
    symbols = normalized["symbol"]
    sides = normalized["side"]
    accounts = normalized.get("account_id")
    users = normalized.get("user_id")

    orders: list[Order] = []
    for i in range(len(normalized)):
        orders.append(
            Order(
                symbol=_text(symbols.iloc[i]) or "",
                side=_text(sides.iloc[i]) or "",
                quantity=float(quantities.iloc[i]),
                price=float(prices.iloc[i]),
                date=_timestamp(dates.iloc[i]),
                account_id=_text(accounts.iloc[i]) if accounts is not None else None,
                user_id=_text(users.iloc[i]) if users is not None else None,
            )
        )
    return orders


def _normalize_column(name: object) -> str:
    key = str(name).strip()
    return _COLUMN_ALIASES.get(key.lower().replace("_", "").replace(" ", ""), key.lower())


def _text(value: Any) -> str | None:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return str(value)


def _timestamp(value: Any) -> Any:
    if pd.isna(value):
        return None
    return value.to_pydatetime()
