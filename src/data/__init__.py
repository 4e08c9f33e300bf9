"""
Persistence collaborators: order records, users, instruments, market prices.

Depends on ledger_core.contracts for the record types; no dependency from
ledger_core back to data.
"""

from data.market_store import MarketStore
from data.order_store import OrderStore

__all__ = [
    "MarketStore",
    "OrderStore",
]
