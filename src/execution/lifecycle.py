"""
Order lifecycle: create, execute, re-validate and cancel orders.

State machine:

    NEW -> FILLED      MARKET: same call as creation, no re-validation
                       LIMIT:  process_order, re-validated without the
                               order's own reservation
    NEW -> REJECTED    admission or re-validation failed
    NEW -> CANCELLED   owner request

FILLED, REJECTED and CANCELLED are terminal. Transitions are written with a
compare-and-set on the stored status, so two racing transitions on one order
cannot both win.

Known gap: admission reads the ledger, persistence is a second step. Two
concurrent requests of the same user can both pass admission on the same
snapshot. serialize_per_user=True closes this within one process by holding
a per-user lock across admission and persistence; it is off by default.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterator

from ledger_core.contracts import Order, OrderSide, OrderStatus, OrderType
from ledger_core.errors import (
    InstrumentNotFoundError,
    InsufficientFundsError,
    InvalidOrderError,
    InvalidStateTransitionError,
    OrderNotFoundError,
    UnauthorizedError,
    UserNotFoundError,
)
from ledger_core.pricing import is_positive_finite, resolve_execution

from execution.admission import OrderAdmissionValidator
from execution.ports import MarketData, OrderRepository, UserDirectory

logger = logging.getLogger("ledger.lifecycle")

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NEW: frozenset({OrderStatus.FILLED, OrderStatus.REJECTED, OrderStatus.CANCELLED}),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

MAX_BATCH_SIZE = 100
CASH_PRICE = 1.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderLifecycleController:
    """Single entry point for every order mutation.

    Parameters
    ----------
    orders:
        Order persistence (source of truth for all balances).
    market:
        Instrument existence and current prices.
    users:
        User existence checks.
    admission:
        Admission validator; built over *orders* when omitted.
    cash_instrument_id:
        Instrument that CASH_IN / CASH_OUT orders are booked against.
    serialize_per_user:
        Hold a per-user lock across admission and persistence.
    clock:
        Returns the timestamp for new orders (UTC).
    on_reject:
        Called with (order, reason) whenever admission or re-validation
        turns an order REJECTED.
    """

    def __init__(
        self,
        orders: OrderRepository,
        market: MarketData,
        users: UserDirectory,
        *,
        admission: OrderAdmissionValidator | None = None,
        cash_instrument_id: int = 1,
        serialize_per_user: bool = False,
        clock: Callable[[], datetime] = _utc_now,
        on_reject: Callable[[Order, str], object] | None = None,
    ) -> None:
        self._orders = orders
        self._market = market
        self._users = users
        self._admission = admission or OrderAdmissionValidator(orders)
        self._cash_instrument_id = cash_instrument_id
        self._serialize = serialize_per_user
        self._clock = clock
        self._on_reject = on_reject
        self._locks_guard = threading.Lock()
        self._user_locks: dict[int, threading.RLock] = {}

    @property
    def admission(self) -> OrderAdmissionValidator:
        return self._admission

    @contextmanager
    def _user_guard(self, user_id: int) -> Iterator[None]:
        if not self._serialize:
            yield
            return
        with self._locks_guard:
            lock = self._user_locks.setdefault(user_id, threading.RLock())
        with lock:
            yield

    def _require_user(self, user_id: int) -> None:
        if not self._users.user_exists(user_id):
            raise UserNotFoundError(f"User {user_id} not found")

    def _transition(self, order: Order, new_status: OrderStatus) -> Order:
        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidStateTransitionError(
                f"Cannot move order {order.id} from {order.status.value} to {new_status.value}"
            )
        if not self._orders.update_status(order.id, order.status, new_status):
            current = self._orders.get(order.id)
            now = current.status.value if current else "missing"
            raise InvalidStateTransitionError(
                f"Order {order.id} is no longer {order.status.value} (now {now})"
            )
        logger.info("Order %s: %s -> %s", order.id, order.status.value, new_status.value)
        return replace(order, status=new_status)

    def _fill_now(self, order: Order) -> Order:
        """Fill a just-saved NEW order. On failure it is marked REJECTED and the error re-raised."""
        try:
            return self._transition(order, OrderStatus.FILLED)
        except InvalidStateTransitionError:
            raise
        except Exception:
            logger.exception("Error filling order %s; marking REJECTED", order.id)
            self._orders.update_status(order.id, OrderStatus.NEW, OrderStatus.REJECTED)
            raise

    def _rejected(self, order: Order, reason: str) -> Order:
        if self._on_reject is not None:
            self._on_reject(order, reason)
        return order

    # ---------- create ----------

    def create_order(
        self,
        user_id: int,
        instrument_id: int,
        side: OrderSide | str,
        order_type: OrderType | str,
        *,
        size: int | float | None = None,
        amount: float | None = None,
        limit_price: float | None = None,
    ) -> Order:
        """Create an order and return it as NEW, FILLED or REJECTED.

        Trading orders that fail admission are persisted as REJECTED and
        returned. Withdrawals that fail admission raise InsufficientFundsError
        and persist nothing.
        """
        try:
            side = OrderSide(side)
            order_type = OrderType(order_type)
        except ValueError as exc:
            raise InvalidOrderError(str(exc)) from exc
        logger.info(
            "Creating order user=%s instrument=%s side=%s type=%s size=%s amount=%s",
            user_id, instrument_id, side.value, order_type.value, size, amount,
        )

        self._require_user(user_id)
        if not self._market.instrument_exists(instrument_id):
            raise InstrumentNotFoundError(f"Instrument {instrument_id} not found")

        if side.is_cash:
            return self._create_cash_order(
                user_id, instrument_id, side, order_type,
                size=size, amount=amount, limit_price=limit_price,
            )

        current_price = 0.0
        if order_type is OrderType.MARKET:
            current_price = self._market.get_current_price(instrument_id)
        quote = resolve_execution(
            order_type, current_price, size=size, amount=amount, limit_price=limit_price
        )

        with self._user_guard(user_id):
            result = self._admission.evaluate(user_id, instrument_id, side, quote.size, quote.price)
            order = self._orders.save(
                Order(
                    instrument_id=instrument_id,
                    user_id=user_id,
                    side=side,
                    size=quote.size,
                    price=quote.price,
                    order_type=order_type,
                    status=OrderStatus.NEW if result.accepted else OrderStatus.REJECTED,
                    timestamp=self._clock(),
                )
            )
            if not result.accepted:
                logger.info("Order %s rejected at admission: %s", order.id, result.reason)
                return self._rejected(order, result.reason)
            if order_type is OrderType.MARKET:
                order = self._fill_now(order)

        logger.info(
            "Order %s %s: %s %s @ %.2f",
            order.id, order.status.value, order.side.value, order.size, order.price,
        )
        return order

    def _create_cash_order(
        self,
        user_id: int,
        instrument_id: int,
        side: OrderSide,
        order_type: OrderType,
        *,
        size: int | float | None,
        amount: float | None,
        limit_price: float | None,
    ) -> Order:
        if order_type is not OrderType.MARKET or limit_price is not None:
            raise InvalidOrderError("Cash transfers are MARKET orders without a price")
        if (size is None) == (amount is None):
            raise InvalidOrderError("Cash transfers need exactly one of size or amount")
        cash = size if size is not None else amount
        if not is_positive_finite(cash):
            raise InvalidOrderError(f"Cash amount must be a positive finite number, got {cash}")

        with self._user_guard(user_id):
            result = self._admission.evaluate(user_id, instrument_id, side, cash, CASH_PRICE)
            if not result.accepted:
                logger.info("Withdrawal refused for user %s: %s", user_id, result.reason)
                raise InsufficientFundsError(result.reason)
            order = self._orders.save(
                Order(
                    instrument_id=instrument_id,
                    user_id=user_id,
                    side=side,
                    size=cash,
                    price=CASH_PRICE,
                    order_type=OrderType.MARKET,
                    status=OrderStatus.NEW,
                    timestamp=self._clock(),
                )
            )
            order = self._fill_now(order)
        logger.info("Cash transfer %s: %s %.2f for user %s", order.id, side.value, cash, user_id)
        return order

    def deposit(self, user_id: int, amount: float) -> Order:
        return self.create_order(
            user_id, self._cash_instrument_id, OrderSide.CASH_IN, OrderType.MARKET, amount=amount
        )

    def withdraw(self, user_id: int, amount: float) -> Order:
        return self.create_order(
            user_id, self._cash_instrument_id, OrderSide.CASH_OUT, OrderType.MARKET, amount=amount
        )

    # ---------- execute ----------

    def process_order(self, order_id: int) -> Order:
        """Execute a NEW order, returning it FILLED or REJECTED.

        LIMIT orders are re-validated with their own reservation excluded.
        An unexpected failure marks the order REJECTED before propagating.
        """
        order = self.get_order(order_id)
        if order.is_terminal():
            raise InvalidStateTransitionError(
                f"Cannot process order {order_id} with status {order.status.value}; only NEW orders can be processed"
            )

        with self._user_guard(order.user_id):
            try:
                if order.order_type is OrderType.LIMIT:
                    result = self._admission.evaluate(
                        order.user_id, order.instrument_id, order.side, order.size,
                        order.price or 0.0, exclude_order_id=order.id,
                    )
                    if not result.accepted:
                        logger.info("Order %s rejected at execution: %s", order.id, result.reason)
                        return self._rejected(self._transition(order, OrderStatus.REJECTED), result.reason)
                return self._transition(order, OrderStatus.FILLED)
            except InvalidStateTransitionError:
                raise
            except Exception:
                logger.exception("Error executing order %s; marking REJECTED", order.id)
                self._orders.update_status(order.id, OrderStatus.NEW, OrderStatus.REJECTED)
                raise

    def process_pending_orders(self, limit: int = 10) -> list[Order]:
        """Process the oldest NEW orders one after another."""
        if limit <= 0 or limit > MAX_BATCH_SIZE:
            raise InvalidOrderError(f"Limit must be between 1 and {MAX_BATCH_SIZE}")

        processed: list[Order] = []
        for pending in self._orders.pending_orders(limit):
            try:
                processed.append(self.process_order(pending.id))
            except InvalidStateTransitionError as exc:
                logger.warning("Skipping order %s: %s", pending.id, exc)
        logger.info("Batch processed %d orders (limit %d)", len(processed), limit)
        return processed

    # ---------- cancel ----------

    def cancel_order(self, order_id: int, user_id: int) -> Order:
        """Cancel a NEW order owned by *user_id*. Its reservation is released implicitly."""
        order = self.get_order(order_id)
        if order.user_id != user_id:
            raise UnauthorizedError(f"User {user_id} does not own order {order_id}")
        if order.is_terminal():
            raise InvalidStateTransitionError(
                f"Cannot cancel order {order_id} with status {order.status.value}; only NEW orders can be cancelled"
            )
        return self._transition(order, OrderStatus.CANCELLED)

    # ---------- read ----------

    def get_order(self, order_id: int) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def list_orders(
        self,
        user_id: int,
        *,
        status: OrderStatus | str | None = None,
        limit: int = 50,
    ) -> list[Order]:
        """Order history, newest first."""
        self._require_user(user_id)
        if limit <= 0:
            raise InvalidOrderError("Limit must be positive")
        try:
            wanted = OrderStatus(status) if status is not None else None
        except ValueError as exc:
            raise InvalidOrderError(str(exc)) from exc
        return self._orders.recent_orders(user_id, status=wanted, limit=limit)
