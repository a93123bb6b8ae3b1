from tradeledger.journal.fingerprint import batch_fingerprint
from tradeledger.journal.models import DailySummary, Order, Position, Side, Trade, TradeSide
from tradeledger.journal.position_engine import (
    PositionEngine,
    ReconstructionResult,
    calculate_trades,
)
from tradeledger.journal.service import JournalResult, reconstruct
from tradeledger.journal.summary import calculate_summaries
from tradeledger.journal.validation import OrderValidationError, validate_orders

__all__ = [
    "DailySummary",
    "JournalResult",
    "Order",
    "OrderValidationError",
    "Position",
    "PositionEngine",
    "ReconstructionResult",
    "Side",
    "Trade",
    "TradeSide",
    "batch_fingerprint",
    "calculate_summaries",
    "calculate_trades",
    "reconstruct",
    "validate_orders",
]
