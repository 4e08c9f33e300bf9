"""
Data contracts for ledger-core: Order, CashBalance, Position, Portfolio.

Orders are the single source of truth. Balances and positions are derived
views, recomputed from the order set on every query. No I/O; these are
plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class OrderSide(str, Enum):
    """Direction of an order. CASH_* sides move money only."""

    BUY = "BUY"
    SELL = "SELL"
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"

    @property
    def is_trade(self) -> bool:
        return self in (OrderSide.BUY, OrderSide.SELL)

    @property
    def is_cash(self) -> bool:
        return self in (OrderSide.CASH_IN, OrderSide.CASH_OUT)


class OrderType(str, Enum):
    """MARKET executes at the current price, LIMIT at the caller's price."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderStatus(str, Enum):
    """Lifecycle state of an order."""

    NEW = "NEW"
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.NEW


# Statuses that count towards balances: FILLED moves totals, NEW reserves.
LEDGER_STATUSES: tuple[OrderStatus, ...] = (OrderStatus.NEW, OrderStatus.FILLED)


@dataclass
class Order:
    instrument_id: int
    user_id: int
    side: OrderSide
    size: int | float  # shares for BUY/SELL, cash amount for CASH_*
    price: float | None
    order_type: OrderType
    status: OrderStatus
    timestamp: datetime
    id: int | None = None

    def notional(self) -> float:
        """size × price, with a missing price counted as 0."""
        return self.size * (self.price or 0.0)

    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class CashBalance:
    total: float
    available: float
    reserved: float


@dataclass(frozen=True)
class Quantity:
    total: float
    available: float
    reserved: float


@dataclass(frozen=True)
class Position:
    instrument_id: int
    quantity: Quantity
    average_cost: float
    current_price: float
    market_value: float
    realized_gains: float
    total_investment: float
    total_return_percent: float
    ticker: str = ""
    name: str = ""


@dataclass(frozen=True)
class Portfolio:
    user_id: int
    cash_balance: CashBalance
    positions: list[Position] = field(default_factory=list)

    @property
    def total_market_value(self) -> float:
        return sum(p.market_value for p in self.positions)

    @property
    def total_value(self) -> float:
        return self.cash_balance.total + self.total_market_value

    def position_for(self, instrument_id: int) -> Position | None:
        for p in self.positions:
            if p.instrument_id == instrument_id:
                return p
        return None


@dataclass(frozen=True)
class ExecutionQuote:
    """Resolved execution price and share count for a new order."""

    price: float
    size: int


@dataclass(frozen=True)
class AdmissionResult:
    accepted: bool
    reason: str = ""


@dataclass(frozen=True)
class Instrument:
    id: int
    ticker: str
    name: str
    type: str = "STOCK"


@dataclass(frozen=True)
class User:
    id: int
    email: str
    account_number: str
