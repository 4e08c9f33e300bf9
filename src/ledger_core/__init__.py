"""
ledger-core: pure order ledger and portfolio valuation.

No I/O, no network, no side effects. Consumes Order records, produces cash
balances, positions and execution quotes. Fully deterministic and
unit-testable.
"""

from ledger_core.cash_ledger import calculate_cash_balance
from ledger_core.contracts import (
    AdmissionResult,
    CashBalance,
    ExecutionQuote,
    Instrument,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Portfolio,
    Position,
    Quantity,
    User,
)
from ledger_core.position_ledger import calculate_position, calculate_positions
from ledger_core.pricing import resolve_execution

__all__ = [
    "AdmissionResult",
    "calculate_cash_balance",
    "calculate_position",
    "calculate_positions",
    "CashBalance",
    "ExecutionQuote",
    "Instrument",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Portfolio",
    "Position",
    "Quantity",
    "resolve_execution",
    "User",
]
