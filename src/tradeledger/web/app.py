from __future__ import annotations

import hmac
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from functools import partial
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, Response
from pydantic import AliasChoices, BaseModel, Field

from tradeledger.config import Settings
from tradeledger.journal.fingerprint import batch_fingerprint
from tradeledger.journal.models import Order
from tradeledger.journal.serialize import position_payload, summary_payload, trade_payload
from tradeledger.journal.service import reconstruct
from tradeledger.journal.validation import OrderValidationError, validate_orders
from tradeledger.rate_limit import SlidingWindowRateLimiter
from tradeledger.storage import DuplicateBatchError, JournalStorage

logger = logging.getLogger(__name__)


class OrderIn(BaseModel):
    symbol: str
    side: str
    quantity: float
    price: float
    date: datetime
    account_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("account_id", "accountId", "account"),
    )

    def to_order(self, user_id: str | None) -> Order:
        return Order(
            symbol=self.symbol,
            side=self.side,
            quantity=self.quantity,
            price=self.price,
            date=self.date,
            account_id=self.account_id,
            user_id=user_id,
        )


class OrderBatchRequest(BaseModel):
    user_id: str = Field(min_length=1)
    orders: list[OrderIn] = Field(min_length=1)


class ReconstructRequest(BaseModel):
    user_id: str | None = None
    orders: list[OrderIn] = Field(default_factory=list)


def _request_role(request: Request, settings: Settings) -> str:
    if not settings.api_key and not settings.admin_api_key:
        return "anonymous"
    provided_key = request.headers.get("X-API-Key")
    if not provided_key:
        return ""
    if settings.admin_api_key and hmac.compare_digest(provided_key, settings.admin_api_key):
        return "admin"
    if settings.api_key and hmac.compare_digest(provided_key, settings.api_key):
        return "trader"
    return ""


def _require_role(request: Request, settings: Settings, allowed_roles: set[str]) -> str:
    role = _request_role(request, settings)
    if role == "anonymous":
        return role
    if not role:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if role not in allowed_roles:
        raise HTTPException(status_code=403, detail="Forbidden")
    return role


def _get_storage(settings: Settings) -> JournalStorage | None:
    if not settings.database_url:
        return None
    storage = JournalStorage(settings.database_url)
    storage.init_schema()
    return storage


def _require_storage(settings: Settings) -> JournalStorage:
    storage = _get_storage(settings)
    if storage is None:
        raise HTTPException(status_code=400, detail="Persistence is not configured.")
    return storage


def create_app() -> FastAPI:
    app = FastAPI(title="TradeLedger API", version="0.1.0")
    limiter = SlidingWindowRateLimiter(int(getattr(Settings(), "rate_limit_per_minute", 120)))

    @app.middleware("http")
    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        settings = Settings()
        storage = _get_storage(settings)
        actor_role = _request_role(request, settings) or "unauthenticated"
        principal = request.headers.get("X-API-Key") or (
            request.client.host if request.client else "unknown"
        )
        request_id = request.headers.get("X-Request-ID", uuid4().hex)
        started = time.perf_counter()
        if request.url.path.startswith("/api/"):
            decision = limiter.check(principal)
            if not decision.allowed:
                response = Response(status_code=429, content='{"detail":"Rate limit exceeded"}')
                response.headers["Content-Type"] = "application/json"
                response.headers["Retry-After"] = str(max(1, int(decision.retry_after)))
            else:
                response = await call_next(request)
        else:
            response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        logger.info(
            "%s %s status=%s request_id=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            request_id,
            elapsed_ms,
        )
        if storage is not None and request.url.path.startswith("/api/"):
            try:
                storage.record_audit_event(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    request_id=request_id,
                    actor_role=actor_role,
                )
            except ValueError:
                logger.exception("Failed to persist audit event")
        return response

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        settings = Settings()
        return {"status": "ok", "env": settings.env, "app": settings.app_name}

    @app.get("/readyz")
    def readyz() -> dict[str, str]:
        return {"status": "ready"}

    @app.post("/api/reconstruct")
    def reconstruct_preview(req: ReconstructRequest, request: Request) -> dict[str, object]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"trader", "admin"})
        orders = [item.to_order(req.user_id) for item in req.orders]
        try:
            result = reconstruct(
                orders,
                timezone=settings.summary_timezone,
                pnl_decimals=settings.pnl_decimals,
            )
        except OrderValidationError as exc:
            raise HTTPException(status_code=422, detail=list(exc.problems)) from exc
        return {
            "trades": [trade_payload(trade) for trade in result.trades],
            "summaries": [summary_payload(summary) for summary in result.summaries],
            "open_positions": [
                position_payload(position)
                for positions in result.open_positions.values()
                for position in positions.values()
            ],
        }

    @app.post("/api/orders", status_code=201)
    def submit_orders(req: OrderBatchRequest, request: Request) -> dict[str, object]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"trader", "admin"})
        storage = _require_storage(settings)
        orders = [item.to_order(req.user_id) for item in req.orders]
        try:
            validate_orders(orders)
            batch_hash = batch_fingerprint(orders)
            recorded = storage.record_batch(
                req.user_id,
                orders,
                partial(
                    reconstruct,
                    timezone=settings.summary_timezone,
                    pnl_decimals=settings.pnl_decimals,
                ),
                batch_hash=batch_hash,
            )
        except OrderValidationError as exc:
            raise HTTPException(status_code=422, detail=list(exc.problems)) from exc
        except DuplicateBatchError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info(
            "Stored batch %s with %s orders for user %s",
            recorded.batch_id,
            len(orders),
            req.user_id,
        )
        return {
            "status": "success",
            "batch_id": recorded.batch_id,
            "batch_hash": batch_hash,
            "orders_saved": len(orders),
            "trades": len(recorded.trades),
            "summaries": len(recorded.summaries),
        }

    @app.get("/api/trades")
    def trades(
        request: Request,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[dict[str, object]]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"trader", "admin"})
        rows = _require_storage(settings).list_trades(user_id, start=start, end=end)
        if not rows:
            raise HTTPException(
                status_code=404,
                detail="No trades found within the specified date range.",
            )
        return [trade_payload(row) for row in rows]

    @app.get("/api/trades/summaries")
    def summaries(request: Request, user_id: str) -> list[dict[str, object]]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"trader", "admin"})
        rows = _require_storage(settings).list_summaries(user_id)
        return [summary_payload(row) for row in rows]

    @app.get("/api/trades/summaries/filter")
    def filtered_summaries(
        request: Request,
        user_id: str,
        min_profit: float | None = None,
        max_profit: float | None = None,
        min_trades: int | None = None,
        max_trades: int | None = None,
        day: str | None = Query(default=None, alias="date"),
    ) -> list[dict[str, object]]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"trader", "admin"})
        rows = _require_storage(settings).list_summaries(
            user_id,
            min_profit=min_profit,
            max_profit=max_profit,
            min_trades=min_trades,
            max_trades=max_trades,
            day=day,
        )
        return [summary_payload(row) for row in rows]

    @app.delete("/api/trades/user/{user_id}")
    def delete_user_data(
        user_id: str,
        request: Request,
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, object]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"admin"})
        counts = _require_storage(settings).delete_user_data(user_id, start=start, end=end)
        logger.info("Deleted journal data for user %s: %s", user_id, counts)
        return {
            "message": "Data deleted successfully",
            "deleted_trades_count": counts.trades,
            "deleted_summaries_count": counts.summaries,
            "deleted_orders_count": counts.orders,
        }

    @app.get("/api/audit")
    def audit(request: Request, limit: int = 100) -> dict[str, object]:
        settings = Settings()
        _require_role(request, settings, allowed_roles={"admin"})
        rows = _require_storage(settings).list_audit_events(limit=limit)
        return {
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
                for row in rows
            ]
        }

    return app


def run() -> None:
    uvicorn.run("tradeledger.web.app:create_app", factory=True, host="127.0.0.1", port=8000)


app = create_app()
