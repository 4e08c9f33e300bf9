"""
Order pricing: order type + size-or-amount + prices -> ExecutionQuote.

MARKET orders execute at the current market price, LIMIT orders at the
caller's limit price. A notional amount is converted to whole shares by
truncation.
"""

from __future__ import annotations

import math

from ledger_core.contracts import ExecutionQuote, OrderType
from ledger_core.errors import InvalidOrderError


def is_positive_finite(value: float) -> bool:
    """False for zero, negatives, NaN and infinities."""
    return math.isfinite(value) and value > 0


def resolve_execution(
    order_type: OrderType,
    current_price: float,
    *,
    size: int | float | None = None,
    amount: float | None = None,
    limit_price: float | None = None,
) -> ExecutionQuote:
    """Resolve execution price and share count.

    Raises InvalidOrderError when:
      - both or neither of size/amount are given, or either is not a positive finite number
      - size is not a whole number of shares
      - a MARKET order carries a limit price or there is no tradable price
      - a LIMIT order has no positive finite limit price
      - the resulting share count is zero (amount smaller than one share)
    """
    if (size is None) == (amount is None):
        raise InvalidOrderError(
            "Must provide either size (exact shares) or amount (total investment), but not both"
        )
    if size is not None and not is_positive_finite(size):
        raise InvalidOrderError(f"Size must be a positive finite number, got {size}")
    if size is not None and not float(size).is_integer():
        raise InvalidOrderError(f"Size must be a whole number of shares, got {size}")
    if amount is not None and not is_positive_finite(amount):
        raise InvalidOrderError(f"Amount must be a positive finite number, got {amount}")

    price = _execution_price(order_type, current_price, limit_price)

    if size is not None:
        shares = int(size)
    else:
        raw = amount / price
        if not math.isfinite(raw):
            raise InvalidOrderError(f"Amount {amount} at {price} does not give a share count")
        shares = math.floor(raw)
    if shares <= 0:
        raise InvalidOrderError(
            f"Amount {amount} is smaller than one share at {price:.2f}"
        )
    return ExecutionQuote(price=price, size=shares)


def _execution_price(
    order_type: OrderType,
    current_price: float,
    limit_price: float | None,
) -> float:
    if order_type is OrderType.MARKET:
        if limit_price is not None:
            raise InvalidOrderError("MARKET orders should not specify a price")
        if current_price is None or not is_positive_finite(current_price):
            raise InvalidOrderError("No tradable market price for instrument")
        return float(current_price)
    if order_type is OrderType.LIMIT:
        if limit_price is None or not is_positive_finite(limit_price):
            raise InvalidOrderError(f"LIMIT orders require a positive finite price, got {limit_price}")
        return float(limit_price)
    raise ValueError(f"Unknown order type: {order_type!r}")
