"""Pytest fixtures: order builders and SQLite-backed ledger wiring."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from data import MarketStore, OrderStore
from execution import OrderLifecycleController, PortfolioService
from ledger_core.contracts import Order, OrderSide, OrderStatus, OrderType

T0 = datetime(2024, 1, 2, 14, 30, 0, tzinfo=timezone.utc)


def make_order(
    side: OrderSide,
    size: float,
    price: float | None,
    status: OrderStatus = OrderStatus.FILLED,
    *,
    instrument_id: int = 2,
    user_id: int = 1,
    order_type: OrderType = OrderType.MARKET,
    minutes: int = 0,
    order_id: int | None = None,
) -> Order:
    return Order(
        instrument_id=instrument_id,
        user_id=user_id,
        side=side,
        size=size,
        price=price,
        order_type=order_type,
        status=status,
        timestamp=T0 + timedelta(minutes=minutes),
        id=order_id,
    )


class StepClock:
    """Deterministic clock: each call is one second after the previous one."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "ledger.db"


@pytest.fixture
def order_store(db_path: Path) -> OrderStore:
    return OrderStore(db_path)


@pytest.fixture
def market(db_path: Path) -> MarketStore:
    """Cash instrument (id 1) and ACME (id 2) priced at 50."""
    store = MarketStore(db_path)
    store.add_instrument("USD", "Cash", "MONEDA")
    acme = store.add_instrument("ACME", "Acme Corp")
    store.set_price(acme.id, 50.0)
    return store


@pytest.fixture
def user_id(market: MarketStore) -> int:
    return market.add_user("trader@example.com", "ACC-0001").id


@pytest.fixture
def controller(order_store: OrderStore, market: MarketStore) -> OrderLifecycleController:
    return OrderLifecycleController(order_store, market, market, clock=StepClock())


@pytest.fixture
def portfolio_service(order_store: OrderStore, market: MarketStore) -> PortfolioService:
    return PortfolioService(order_store, market, market)
