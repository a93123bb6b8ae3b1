from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tradeledger.journal.models import DailySummary, Order, Trade, TradeSide
from tradeledger.journal.position_engine import to_utc

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from tradeledger.journal.service import JournalResult


class DuplicateBatchError(ValueError):
    """The same order batch (by content hash) was already stored."""


@dataclass(slots=True, frozen=True)
class StoredBatch:
    batch_id: int
    created_at: str
    user_id: str
    batch_hash: str
    order_count: int


@dataclass(slots=True, frozen=True)
class RecordedBatch:
    batch_id: int
    trades: list[Trade]
    summaries: list[DailySummary]


@dataclass(slots=True, frozen=True)
class DeletedCounts:
    trades: int
    summaries: int
    orders: int


@dataclass(slots=True, frozen=True)
class AuditEvent:
    event_id: int
    created_at: str
    method: str
    path: str
    status_code: int
    request_id: str
    actor_role: str


_TABLES = {
    "order_batches": """
        id {pk},
        created_at TEXT NOT NULL,
        user_id TEXT NOT NULL,
        batch_hash TEXT NOT NULL UNIQUE,
        order_count INTEGER NOT NULL
    """,
    "orders": """
        id {pk},
        batch_id {fk} NOT NULL REFERENCES order_batches(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        account_id TEXT,
        symbol TEXT NOT NULL,
        side TEXT NOT NULL,
        quantity {real} NOT NULL,
        price {real} NOT NULL,
        date TEXT NOT NULL
    """,
    "trades": """
        id {pk},
        user_id TEXT NOT NULL,
        account_id TEXT,
        symbol TEXT NOT NULL,
        side TEXT NOT NULL,
        quantity {real} NOT NULL,
        buy_price {real},
        sell_price {real},
        short_price {real},
        cover_price {real},
        profit_loss {real} NOT NULL,
        hold_time_minutes {real},
        date TEXT NOT NULL
    """,
    "daily_summaries": """
        id {pk},
        user_id TEXT NOT NULL,
        account_id TEXT,
        date TEXT NOT NULL,
        total_trades INTEGER NOT NULL,
        wins INTEGER NOT NULL,
        losses INTEGER NOT NULL,
        total_profit_loss {real} NOT NULL,
        accuracy {real} NOT NULL,
        profit_to_loss_ratio {real} NOT NULL
    """,
    "api_audit_logs": """
        id {pk},
        created_at TEXT NOT NULL,
        method TEXT NOT NULL,
        path TEXT NOT NULL,
        status_code INTEGER NOT NULL,
        request_id TEXT NOT NULL,
        actor_role TEXT NOT NULL
    """,
}

_TRADE_COLUMNS = (
    "user_id, account_id, symbol, side, quantity, buy_price, sell_price, "
    "short_price, cover_price, profit_loss, hold_time_minutes, date"
)
_SUMMARY_COLUMNS = (
    "user_id, account_id, date, total_trades, wins, losses, "
    "total_profit_loss, accuracy, profit_to_loss_ratio"
)


class JournalStorage:
    """Persists order batches with their derived trades and daily summaries.

    ``record_batch`` writes everything for one submission in a single
    transaction, so a failure never leaves trades without their orders.
    """

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url must be non-empty")
        self.database_url = database_url
        self._is_postgres = database_url.startswith(("postgresql://", "postgres://"))
        self._sqlite_path: str | None
        if database_url.startswith("sqlite:///"):
            self._sqlite_path = database_url.removeprefix("sqlite:///")
        elif self._is_postgres:
            self._sqlite_path = None
        else:
            raise ValueError("database_url must start with sqlite:/// or postgresql://")

    def init_schema(self) -> None:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            conn.commit()

    def has_batch(self, batch_hash: str) -> bool:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(cur, "SELECT 1 FROM order_batches WHERE batch_hash = ?", (batch_hash,))
            return cur.fetchone() is not None

    def record_batch(
        self,
        user_id: str,
        orders: Sequence[Order],
        recompute: Callable[[list[Order]], JournalResult],
        *,
        batch_hash: str,
    ) -> RecordedBatch:
        """Store new orders and replace the user's trades and summaries.

        The user's stored history is read, ``recompute`` is called on history
        plus ``orders``, and the result is written back, all while holding the
        user's write lock. Concurrent batches for one user are applied one
        after the other.
        """
        if not user_id.strip():
            raise ValueError("user_id must be non-empty")
        if not orders:
            raise ValueError("orders must be non-empty")

        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._lock_user(cur, user_id)
            self._execute(cur, "SELECT id FROM order_batches WHERE batch_hash = ?", (batch_hash,))
            if cur.fetchone() is not None:
                raise DuplicateBatchError("Duplicate order batch detected. No orders were saved.")

            result = recompute([*self._select_orders(cur, user_id), *orders])

            batch_id = self._insert(
                cur,
                """
                INSERT INTO order_batches (created_at, user_id, batch_hash, order_count)
                VALUES (?, ?, ?, ?)
                """,
                (datetime.now(UTC).isoformat(), user_id, batch_hash, len(orders)),
            )
            for order in orders:
                self._execute(
                    cur,
                    """
                    INSERT INTO orders
                        (batch_id, user_id, account_id, symbol, side, quantity, price, date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        batch_id,
                        user_id,
                        order.account_id,
                        order.symbol,
                        order.side,
                        float(order.quantity),
                        float(order.price),
                        _to_text(order.date),
                    ),
                )

            self._execute(cur, "DELETE FROM trades WHERE user_id = ?", (user_id,))
            self._execute(cur, "DELETE FROM daily_summaries WHERE user_id = ?", (user_id,))
            for trade in result.trades:
                self._execute(
                    cur,
                    f"INSERT INTO trades ({_TRADE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user_id,
                        trade.account_id,
                        trade.symbol,
                        str(trade.side),
                        float(trade.quantity),
                        trade.buy_price,
                        trade.sell_price,
                        trade.short_price,
                        trade.cover_price,
                        float(trade.profit_loss),
                        trade.hold_time_minutes,
                        _to_text(trade.date),
                    ),
                )
            for summary in result.summaries:
                self._execute(
                    cur,
                    f"INSERT INTO daily_summaries ({_SUMMARY_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user_id,
                        summary.account_id,
                        summary.date,
                        summary.total_trades,
                        summary.wins,
                        summary.losses,
                        float(summary.total_profit_loss),
                        float(summary.accuracy),
                        float(summary.profit_to_loss_ratio),
                    ),
                )
            conn.commit()
        return RecordedBatch(batch_id=batch_id, trades=result.trades, summaries=result.summaries)

    def list_batches(self, user_id: str) -> list[StoredBatch]:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                """
                SELECT id, created_at, user_id, batch_hash, order_count
                FROM order_batches
                WHERE user_id = ?
                ORDER BY id DESC
                """,
                (user_id,),
            )
            rows = cur.fetchall()
        return [
            StoredBatch(
                batch_id=int(row[0]),
                created_at=str(row[1]),
                user_id=str(row[2]),
                batch_hash=str(row[3]),
                order_count=int(row[4]),
            )
            for row in rows
        ]

    def list_orders(self, user_id: str) -> list[Order]:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            return self._select_orders(conn.cursor(), user_id)

    def list_trades(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Trade]:
        """Trades for ``user_id``, newest first; ``start``/``end`` are inclusive UTC days."""
        range_clauses, range_params = _timestamp_range(start, end)
        clauses = ["user_id = ?", *range_clauses]
        params: list[Any] = [user_id, *range_params]

        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                f"SELECT {_TRADE_COLUMNS} FROM trades WHERE {' AND '.join(clauses)} "
                "ORDER BY date DESC, id DESC",
                tuple(params),
            )
            rows = cur.fetchall()
        return [
            Trade(
                user_id=str(row[0]),
                account_id=_to_str_or_none(row[1]),
                symbol=str(row[2]),
                side=TradeSide(str(row[3])),
                quantity=float(row[4]),
                buy_price=_to_float_or_none(row[5]),
                sell_price=_to_float_or_none(row[6]),
                short_price=_to_float_or_none(row[7]),
                cover_price=_to_float_or_none(row[8]),
                profit_loss=float(row[9]),
                hold_time_minutes=_to_float_or_none(row[10]),
                date=datetime.fromisoformat(str(row[11])),
            )
            for row in rows
        ]

    def list_summaries(
        self,
        user_id: str,
        *,
        min_profit: float | None = None,
        max_profit: float | None = None,
        min_trades: int | None = None,
        max_trades: int | None = None,
        day: str | None = None,
    ) -> list[DailySummary]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        for column, operator, value in (
            ("total_profit_loss", ">=", min_profit),
            ("total_profit_loss", "<=", max_profit),
            ("total_trades", ">=", min_trades),
            ("total_trades", "<=", max_trades),
            ("date", "=", day),
        ):
            if value is not None:
                clauses.append(f"{column} {operator} ?")
                params.append(value)

        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                f"SELECT {_SUMMARY_COLUMNS} FROM daily_summaries "
                f"WHERE {' AND '.join(clauses)} ORDER BY date, account_id",
                tuple(params),
            )
            rows = cur.fetchall()
        return [
            DailySummary(
                user_id=str(row[0]),
                account_id=_to_str_or_none(row[1]),
                date=str(row[2]),
                total_trades=int(row[3]),
                wins=int(row[4]),
                losses=int(row[5]),
                total_profit_loss=float(row[6]),
                accuracy=float(row[7]),
                profit_to_loss_ratio=float(row[8]),
            )
            for row in rows
        ]

    def delete_user_data(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> DeletedCounts:
        """Delete a user's trades, summaries and orders, optionally within inclusive UTC days."""
        stamp_clauses, stamp_params = _timestamp_range(start, end)
        day_clauses: list[str] = []
        day_params: list[str] = []
        if start is not None:
            day_clauses.append("date >= ?")
            day_params.append(start.isoformat())
        if end is not None:
            day_clauses.append("date <= ?")
            day_params.append(end.isoformat())

        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            trades = self._delete(cur, "trades", user_id, stamp_clauses, stamp_params)
            summaries = self._delete(cur, "daily_summaries", user_id, day_clauses, day_params)
            orders = self._delete(cur, "orders", user_id, stamp_clauses, stamp_params)
            self._execute(
                cur,
                """
                DELETE FROM order_batches
                WHERE user_id = ? AND id NOT IN (SELECT DISTINCT batch_id FROM orders)
                """,
                (user_id,),
            )
            conn.commit()
        return DeletedCounts(trades=trades, summaries=summaries, orders=orders)

    def record_audit_event(
        self,
        method: str,
        path: str,
        status_code: int,
        request_id: str,
        actor_role: str,
    ) -> int:
        created_at = datetime.now(UTC).isoformat()
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            event_id = self._insert(
                cur,
                """
                INSERT INTO api_audit_logs
                    (created_at, method, path, status_code, request_id, actor_role)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (created_at, method, path, int(status_code), request_id, actor_role),
            )
            conn.commit()
        return event_id

    def list_audit_events(self, limit: int = 100) -> list[AuditEvent]:
        if limit <= 0:
            raise ValueError("limit must be greater than zero")
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                """
                SELECT id, created_at, method, path, status_code, request_id, actor_role
                FROM api_audit_logs
                ORDER BY id DESC
                LIMIT ?
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        return [
            AuditEvent(
                event_id=int(row[0]),
                created_at=str(row[1]),
                method=str(row[2]),
                path=str(row[3]),
                status_code=int(row[4]),
                request_id=str(row[5]),
                actor_role=str(row[6]),
            )
            for row in rows
        ]

    def _connect(self) -> Any:
        if self._is_postgres:
            try:
                import psycopg
            except ImportError as exc:  # pragma: no cover
                raise ValueError(
                    "PostgreSQL URL configured but psycopg is not installed."
                ) from exc
            return psycopg.connect(self.database_url)

        assert self._sqlite_path is not None
        path = Path(self._sqlite_path)
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _run_schema_migrations(self, conn: Any) -> None:
        if self._is_postgres:
            types = {"pk": "BIGSERIAL PRIMARY KEY", "fk": "BIGINT", "real": "DOUBLE PRECISION"}
        else:
            types = {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "fk": "INTEGER", "real": "REAL"}
        cur = conn.cursor()
        for table, columns in _TABLES.items():
            cur.execute(f"CREATE TABLE IF NOT EXISTS {table} ({columns.format(**types)})")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_orders_user ON orders (user_id, date)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_user ON trades (user_id, date)")
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_summaries_user ON daily_summaries (user_id, date)"
        )

    def _lock_user(self, cur: Any, user_id: str) -> None:
        """Hold the user's write lock until the current transaction ends."""
        if self._is_postgres:
            self._execute(cur, "SELECT pg_advisory_xact_lock(hashtext(?))", (user_id,))
        else:
            # sqlite locks the whole database; readers still proceed
            cur.execute("BEGIN IMMEDIATE")

    def _select_orders(self, cur: Any, user_id: str) -> list[Order]:
        self._execute(
            cur,
            """
            SELECT symbol, side, quantity, price, date, account_id, user_id
            FROM orders
            WHERE user_id = ?
            ORDER BY date, id
            """,
            (user_id,),
        )
        return [
            Order(
                symbol=str(row[0]),
                side=str(row[1]),
                quantity=float(row[2]),
                price=float(row[3]),
                date=datetime.fromisoformat(str(row[4])),
                account_id=_to_str_or_none(row[5]),
                user_id=str(row[6]),
            )
            for row in cur.fetchall()
        ]

    def _delete(
        self,
        cur: Any,
        table: str,
        user_id: str,
        clauses: list[str],
        params: list[str],
    ) -> int:
        where = " AND ".join(["user_id = ?", *clauses])
        self._execute(cur, f"DELETE FROM {table} WHERE {where}", (user_id, *params))
        return max(int(cur.rowcount), 0)

    def _insert(self, cur: Any, query: str, params: tuple[Any, ...]) -> int:
        if self._is_postgres:
            self._execute(cur, query.rstrip() + " RETURNING id", params)
            inserted = cur.fetchone()
            if inserted is None:
                raise ValueError("Failed to read inserted row id")
            return int(inserted[0])
        self._execute(cur, query, params)
        return int(cur.lastrowid)

    def _execute(self, cur: Any, query: str, params: tuple[Any, ...]) -> None:
        if self._is_postgres:
            cur.execute(query.replace("?", "%s"), params)
        else:
            cur.execute(query, params)


def _timestamp_range(start: date | None, end: date | None) -> tuple[list[str], list[str]]:
    clauses: list[str] = []
    params: list[str] = []
    if start is not None:
        clauses.append("date >= ?")
        params.append(f"{start.isoformat()}T00:00:00")
    if end is not None:
        clauses.append("date < ?")
        params.append(f"{(end + timedelta(days=1)).isoformat()}T00:00:00")
    return clauses, params


def _to_text(value: datetime) -> str:
    return to_utc(value).isoformat(timespec="microseconds")


def _to_float_or_none(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _to_str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
