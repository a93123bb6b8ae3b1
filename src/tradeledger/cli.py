from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from datetime import date
from functools import partial

from tradeledger.config import Settings
from tradeledger.journal.fingerprint import batch_fingerprint
from tradeledger.journal.loader import load_orders
from tradeledger.journal.serialize import position_payload, summary_payload, trade_payload
from tradeledger.journal.service import reconstruct
from tradeledger.journal.validation import validate_orders
from tradeledger.logging_config import configure_logging
from tradeledger.storage import JournalStorage

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TradeLedger CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconstruct_cmd = subparsers.add_parser(
        "reconstruct",
        help="Rebuild trades and daily summaries from an order file",
    )
    reconstruct_cmd.add_argument("--input", required=True, help="CSV or JSON order file")
    reconstruct_cmd.add_argument("--timezone", default=None)

    import_cmd = subparsers.add_parser("import", help="Persist an order file for a user")
    import_cmd.add_argument("--input", required=True, help="CSV or JSON order file")
    import_cmd.add_argument("--user-id", required=True)
    import_cmd.add_argument("--database-url", default=None)

    db_init = subparsers.add_parser("db-init", help="Initialize persistence schema")
    db_init.add_argument("--database-url", default=None)

    db_trades = subparsers.add_parser("db-trades", help="List stored trades for a user")
    db_trades.add_argument("--user-id", required=True)
    db_trades.add_argument("--start", type=date.fromisoformat, default=None)
    db_trades.add_argument("--end", type=date.fromisoformat, default=None)
    db_trades.add_argument("--database-url", default=None)

    db_summaries = subparsers.add_parser("db-summaries", help="List daily summaries for a user")
    db_summaries.add_argument("--user-id", required=True)
    db_summaries.add_argument("--date", default=None)
    db_summaries.add_argument("--database-url", default=None)

    db_audit = subparsers.add_parser("db-audit", help="List recent API audit events")
    db_audit.add_argument("--database-url", default=None)
    db_audit.add_argument("--limit", type=int, default=100)

    return parser


def _handle_reconstruct(args: argparse.Namespace, settings: Settings) -> int:
    orders = load_orders(args.input)
    result = reconstruct(
        orders,
        timezone=args.timezone or settings.summary_timezone,
        pnl_decimals=settings.pnl_decimals,
    )
    payload = {
        "orders": len(orders),
        "trades": [trade_payload(trade) for trade in result.trades],
        "summaries": [summary_payload(summary) for summary in result.summaries],
        "open_positions": [
            position_payload(position)
            for positions in result.open_positions.values()
            for position in positions.values()
        ],
    }
    print(json.dumps(payload))
    return 0


def _handle_import(args: argparse.Namespace, settings: Settings) -> int:
    storage = _require_storage(settings, args.database_url)
    orders = [replace(order, user_id=args.user_id) for order in load_orders(args.input)]
    if not orders:
        raise SystemExit("No orders found in input")
    validate_orders(orders)

    batch_hash = batch_fingerprint(orders)
    recorded = storage.record_batch(
        args.user_id,
        orders,
        partial(
            reconstruct,
            timezone=settings.summary_timezone,
            pnl_decimals=settings.pnl_decimals,
        ),
        batch_hash=batch_hash,
    )
    logger.info("Imported %s orders from %s as batch %s", len(orders), args.input, recorded.batch_id)
    print(
        json.dumps(
            {
                "batch_id": recorded.batch_id,
                "batch_hash": batch_hash,
                "orders_saved": len(orders),
                "trades": len(recorded.trades),
                "summaries": len(recorded.summaries),
            }
        )
    )
    return 0


def _handle_db_init(args: argparse.Namespace, settings: Settings) -> int:
    storage = _require_storage(settings, args.database_url)
    storage.init_schema()
    print(json.dumps({"status": "ok"}))
    return 0


def _handle_db_trades(args: argparse.Namespace, settings: Settings) -> int:
    storage = _require_storage(settings, args.database_url)
    rows = storage.list_trades(args.user_id, start=args.start, end=args.end)
    print(json.dumps({"trades": [trade_payload(row) for row in rows]}))
    return 0


def _handle_db_summaries(args: argparse.Namespace, settings: Settings) -> int:
    storage = _require_storage(settings, args.database_url)
    rows = storage.list_summaries(args.user_id, day=args.date)
    print(json.dumps({"summaries": [summary_payload(row) for row in rows]}))
    return 0


def _handle_db_audit(args: argparse.Namespace, settings: Settings) -> int:
    if args.limit <= 0:
        raise SystemExit("limit must be greater than zero")
    storage = _require_storage(settings, args.database_url)
    events = storage.list_audit_events(limit=args.limit)
    payload = {
        "events": [
            {
                "event_id": row.event_id,
                "created_at": row.created_at,
                "method": row.method,
                "path": row.path,
                "status_code": row.status_code,
                "request_id": row.request_id,
                "actor_role": row.actor_role,
            }
            for row in events
        ]
    }
    print(json.dumps(payload))
    return 0


def _get_storage(settings: Settings, override_database_url: str | None) -> JournalStorage | None:
    database_url = override_database_url or settings.database_url
    if not database_url:
        return None
    storage = JournalStorage(database_url)
    storage.init_schema()
    return storage


def _require_storage(settings: Settings, override_database_url: str | None) -> JournalStorage:
    storage = _get_storage(settings, override_database_url)
    if storage is None:
        raise SystemExit("database-url is required (or set TRADELEDGER_DATABASE_URL)")
    return storage


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    parser = _build_parser()
    args = parser.parse_args()

    try:
        if args.command == "reconstruct":
            raise SystemExit(_handle_reconstruct(args, settings))
        if args.command == "import":
            raise SystemExit(_handle_import(args, settings))
        if args.command == "db-init":
            raise SystemExit(_handle_db_init(args, settings))
        if args.command == "db-trades":
            raise SystemExit(_handle_db_trades(args, settings))
        if args.command == "db-summaries":
            raise SystemExit(_handle_db_summaries(args, settings))
        if args.command == "db-audit":
            raise SystemExit(_handle_db_audit(args, settings))
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    main()
