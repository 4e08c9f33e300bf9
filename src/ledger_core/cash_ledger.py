"""
Cash ledger: user's orders -> CashBalance.

total     = cash_in - cash_out - purchases + sales   (FILLED only)
reserved  = notional of NEW BUY orders
available = total - reserved
"""

from __future__ import annotations

import logging
from typing import Iterable

from ledger_core.contracts import CashBalance, Order, OrderSide, OrderStatus

logger = logging.getLogger("ledger.cash")


def calculate_cash_balance(orders: Iterable[Order]) -> CashBalance:
    """Compute the cash balance from a user's orders. Order of input is irrelevant.

    BUY/SELL with a missing or zero price move no cash (treated as a gift).
    CASH_IN/CASH_OUT ignore price; size is the amount.
    """
    total = 0.0
    reserved = 0.0
    filled = 0

    for order in orders:
        if order.status is OrderStatus.FILLED:
            filled += 1
            total += _filled_cash_delta(order)
        elif order.status is OrderStatus.NEW:
            if order.side is OrderSide.BUY:
                reserved += order.notional()

    balance = CashBalance(total=total, available=total - reserved, reserved=reserved)
    logger.debug(
        "Cash balance: total=%.2f available=%.2f reserved=%.2f (%d filled orders)",
        balance.total, balance.available, balance.reserved, filled,
    )
    return balance


def _filled_cash_delta(order: Order) -> float:
    side = order.side
    if side is OrderSide.CASH_IN:
        return float(order.size)
    if side is OrderSide.CASH_OUT:
        return -float(order.size)
    if side is OrderSide.BUY:
        return -order.notional()
    if side is OrderSide.SELL:
        return order.notional()
    raise ValueError(f"Unknown order side: {side!r}")
