"""
Order admission: decide NEW vs REJECTED against live, recomputed ledger state.

Reserved cash and shares are never stored; every check replays the user's
NEW and FILLED orders through the cash and position calculators.
"""

from __future__ import annotations

import logging

from ledger_core.cash_ledger import calculate_cash_balance
from ledger_core.contracts import LEDGER_STATUSES, AdmissionResult, Order, OrderSide
from ledger_core.errors import InsufficientFundsError, InsufficientSharesError
from ledger_core.position_ledger import calculate_position

from execution.ports import OrderRepository

logger = logging.getLogger("ledger.admission")


class OrderAdmissionValidator:
    """Read-only admission checks. No caching: each call reads the current order set.

    Parameters
    ----------
    orders:
        Order repository used to load the user's NEW and FILLED orders.
    """

    def __init__(self, orders: OrderRepository) -> None:
        self._orders = orders

    def _ledger_orders(self, user_id: int, exclude_order_id: int | None) -> list[Order]:
        orders = self._orders.orders_for_user(user_id, LEDGER_STATUSES)
        if exclude_order_id is None:
            return orders
        return [o for o in orders if o.id != exclude_order_id]

    def available_cash(self, user_id: int, *, exclude_order_id: int | None = None) -> float:
        """Available cash; with exclude_order_id, that order's own reservation is given back."""
        return calculate_cash_balance(self._ledger_orders(user_id, exclude_order_id)).available

    def available_shares(
        self,
        user_id: int,
        instrument_id: int,
        *,
        exclude_order_id: int | None = None,
    ) -> float:
        orders = self._ledger_orders(user_id, exclude_order_id)
        # Price is irrelevant for quantities
        position = calculate_position(instrument_id, orders, 0.0)
        return position.quantity.available

    def evaluate(
        self,
        user_id: int,
        instrument_id: int,
        side: OrderSide,
        size: int | float,
        price: float,
        *,
        exclude_order_id: int | None = None,
    ) -> AdmissionResult:
        """Accept or reject a candidate order.

        BUY and CASH_OUT need size × price (CASH_OUT: size) of available cash,
        SELL needs size available shares, CASH_IN always passes.
        """
        if side is OrderSide.CASH_IN:
            return AdmissionResult(accepted=True)

        if side is OrderSide.BUY or side is OrderSide.CASH_OUT:
            required = size * price if side is OrderSide.BUY else float(size)
            available = self.available_cash(user_id, exclude_order_id=exclude_order_id)
            accepted = required <= available
            logger.info(
                "Cash check user=%s side=%s required=%.2f available=%.2f -> %s",
                user_id, side.value, required, available, "accept" if accepted else "reject",
            )
            if accepted:
                return AdmissionResult(accepted=True)
            return AdmissionResult(
                accepted=False,
                reason=f"Insufficient available cash: required {required:.2f}, available {available:.2f}",
            )

        if side is OrderSide.SELL:
            available = self.available_shares(user_id, instrument_id, exclude_order_id=exclude_order_id)
            accepted = size <= available
            logger.info(
                "Shares check user=%s instrument=%s required=%s available=%s -> %s",
                user_id, instrument_id, size, available, "accept" if accepted else "reject",
            )
            if accepted:
                return AdmissionResult(accepted=True)
            return AdmissionResult(
                accepted=False,
                reason=f"Insufficient available shares: required {size}, available {available:g}",
            )

        raise ValueError(f"Unknown order side: {side!r}")

    def require(
        self,
        user_id: int,
        instrument_id: int,
        side: OrderSide,
        size: int | float,
        price: float,
        *,
        exclude_order_id: int | None = None,
    ) -> None:
        """Like evaluate, but raise InsufficientFundsError / InsufficientSharesError on rejection."""
        result = self.evaluate(
            user_id, instrument_id, side, size, price, exclude_order_id=exclude_order_id
        )
        if result.accepted:
            return
        if side is OrderSide.SELL:
            raise InsufficientSharesError(result.reason)
        raise InsufficientFundsError(result.reason)
