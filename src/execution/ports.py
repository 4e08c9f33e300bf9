"""
Collaborator protocols consumed by the execution layer.

The SQLite stores in data/ implement these; tests may pass anything with
the same shape.
"""

from typing import Iterable, Protocol

from ledger_core.contracts import Instrument, Order, OrderStatus


class OrderRepository(Protocol):
    """Persistence for Order records. Reads are ordered by ascending timestamp."""

    def orders_for_user(
        self,
        user_id: int,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        ...

    def save(self, order: Order) -> Order:
        """Insert when order.id is None, else update. Returns the stored order."""
        ...

    def get(self, order_id: int) -> Order | None:
        ...

    def update_status(self, order_id: int, expected: OrderStatus, new: OrderStatus) -> bool:
        """Compare-and-set on status. False when the stored status is not *expected*."""
        ...

    def pending_orders(self, limit: int = 10) -> list[Order]:
        ...

    def recent_orders(
        self,
        user_id: int,
        *,
        status: OrderStatus | None = None,
        limit: int = 50,
    ) -> list[Order]:
        ...


class MarketData(Protocol):
    """Instrument lookup and current prices. A price of 0.0 means no tradable price."""

    def get_current_price(self, instrument_id: int) -> float:
        ...

    def get_current_prices(self, instrument_ids: Iterable[int]) -> dict[int, float]:
        ...

    def instrument_exists(self, instrument_id: int) -> bool:
        ...

    def get_instruments(self, instrument_ids: Iterable[int]) -> dict[int, Instrument]:
        ...


class UserDirectory(Protocol):
    def user_exists(self, user_id: int) -> bool:
        ...
