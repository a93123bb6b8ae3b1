from tradeledger.config import Settings
from tradeledger.journal import (
    DailySummary,
    Order,
    PositionEngine,
    Trade,
    calculate_summaries,
    calculate_trades,
    reconstruct,
)

__version__ = "0.1.0"

__all__ = [
    "DailySummary",
    "Order",
    "PositionEngine",
    "Settings",
    "Trade",
    "__version__",
    "calculate_summaries",
    "calculate_trades",
    "reconstruct",
]
