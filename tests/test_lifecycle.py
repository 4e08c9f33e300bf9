"""Tests for the order lifecycle controller (SQLite stores, deterministic clock)."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from conftest import StepClock, make_order
from data import MarketStore, OrderStore
from execution import OrderLifecycleController, PortfolioService
from ledger_core.contracts import OrderSide, OrderStatus, OrderType
from ledger_core.errors import (
    InstrumentNotFoundError,
    InsufficientFundsError,
    InvalidOrderError,
    InvalidStateTransitionError,
    OrderNotFoundError,
    UnauthorizedError,
    UserNotFoundError,
)

ACME = 2


class FlakyOrderStore(OrderStore):
    """OrderStore whose next NEW -> FILLED write fails once."""

    fail_next_fill = False

    def update_status(self, order_id: int, expected: OrderStatus, new: OrderStatus) -> bool:
        if self.fail_next_fill and new is OrderStatus.FILLED:
            self.fail_next_fill = False
            raise sqlite3.OperationalError("database is locked")
        return super().update_status(order_id, expected, new)


class TestCreate:
    def test_buy_rejected_without_cash(
        self, controller: OrderLifecycleController, order_store: OrderStore, user_id: int
    ) -> None:
        order = controller.create_order(user_id, ACME, "BUY", "MARKET", size=1)
        assert order.status is OrderStatus.REJECTED
        assert order.id is not None
        assert order_store.get(order.id).status is OrderStatus.REJECTED

    def test_market_buy_fills_immediately(
        self,
        controller: OrderLifecycleController,
        portfolio_service: PortfolioService,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 10_000)
        order = controller.create_order(user_id, ACME, OrderSide.BUY, OrderType.MARKET, size=10)
        assert order.status is OrderStatus.FILLED
        assert order.price == 50.0
        cash = portfolio_service.cash_balance(user_id)
        assert cash.total == pytest.approx(9_500.0)
        assert cash.available == pytest.approx(9_500.0)

    def test_market_buy_by_amount(self, controller: OrderLifecycleController, user_id: int) -> None:
        controller.deposit(user_id, 1_000)
        order = controller.create_order(user_id, ACME, "BUY", "MARKET", amount=120.0)
        assert order.size == 2
        assert order.status is OrderStatus.FILLED

    def test_limit_sell_without_shares_rejected(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        order = controller.create_order(user_id, ACME, "SELL", "LIMIT", size=5, limit_price=60.0)
        assert order.status is OrderStatus.REJECTED

    def test_limit_buy_stays_pending_and_reserves(
        self,
        controller: OrderLifecycleController,
        portfolio_service: PortfolioService,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 1_000)
        order = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=10, limit_price=80.0)
        assert order.status is OrderStatus.NEW
        cash = portfolio_service.cash_balance(user_id)
        assert cash.reserved == pytest.approx(800.0)
        assert cash.available == pytest.approx(200.0)

    def test_market_without_price_is_invalid(
        self,
        controller: OrderLifecycleController,
        market: MarketStore,
        order_store: OrderStore,
        user_id: int,
    ) -> None:
        unpriced = market.add_instrument("NOPX", "No Price Inc")
        controller.deposit(user_id, 1_000)
        before = order_store.count_orders()
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, unpriced.id, "BUY", "MARKET", size=1)
        assert order_store.count_orders() == before

    def test_unknown_user(self, controller: OrderLifecycleController, market: MarketStore) -> None:
        with pytest.raises(UserNotFoundError):
            controller.create_order(999, ACME, "BUY", "MARKET", size=1)

    def test_unknown_instrument(self, controller: OrderLifecycleController, user_id: int) -> None:
        with pytest.raises(InstrumentNotFoundError):
            controller.create_order(user_id, 999, "BUY", "MARKET", size=1)

    def test_unknown_side_value(self, controller: OrderLifecycleController, user_id: int) -> None:
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, ACME, "SHORT", "MARKET", size=1)

    def test_unknown_order_type(self, controller: OrderLifecycleController, user_id: int) -> None:
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, ACME, "BUY", "STOP", size=1)

    @pytest.mark.parametrize("kwargs", [{"size": float("nan")}, {"amount": float("inf")}])
    def test_non_finite_trade_size(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        user_id: int,
        kwargs: dict,
    ) -> None:
        controller.deposit(user_id, 1_000)
        before = order_store.count_orders()
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, ACME, "BUY", "MARKET", **kwargs)
        assert order_store.count_orders() == before

    def test_admission_rejection_reported_with_reason(
        self, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        rejected = []
        controller = OrderLifecycleController(
            order_store, market, market, clock=StepClock(),
            on_reject=lambda order, reason: rejected.append((order.id, reason)),
        )
        order = controller.create_order(user_id, ACME, "BUY", "MARKET", size=1)
        assert [order_id for order_id, _ in rejected] == [order.id]
        assert rejected[0][1].startswith("Insufficient available cash")

    def test_fill_failure_marks_market_order_rejected(
        self, db_path: Path, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        flaky = FlakyOrderStore(db_path)
        controller = OrderLifecycleController(flaky, market, market, clock=StepClock())
        controller.deposit(user_id, 1_000)
        flaky.fail_next_fill = True
        with pytest.raises(sqlite3.OperationalError):
            controller.create_order(user_id, ACME, "BUY", "MARKET", size=1)
        assert order_store.count_orders(OrderStatus.NEW) == 0
        assert order_store.count_orders(OrderStatus.REJECTED) == 1


class TestCash:
    def test_deposit_is_filled_cash_in(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        order = controller.deposit(user_id, 250.5)
        assert order.side is OrderSide.CASH_IN
        assert order.status is OrderStatus.FILLED
        assert order.instrument_id == 1
        assert order.size == 250.5
        assert order.price == 1.0

    def test_withdraw_within_balance(
        self,
        controller: OrderLifecycleController,
        portfolio_service: PortfolioService,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 1_000)
        order = controller.withdraw(user_id, 400)
        assert order.status is OrderStatus.FILLED
        assert portfolio_service.cash_balance(user_id).total == pytest.approx(600.0)

    def test_withdraw_over_balance_raises_and_persists_nothing(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 100)
        before = order_store.count_orders()
        with pytest.raises(InsufficientFundsError):
            controller.withdraw(user_id, 100.01)
        assert order_store.count_orders() == before

    def test_withdraw_cannot_touch_reserved_cash(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        controller.deposit(user_id, 1_000)
        controller.create_order(user_id, ACME, "BUY", "LIMIT", size=10, limit_price=80.0)
        with pytest.raises(InsufficientFundsError):
            controller.withdraw(user_id, 300)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"amount": 0},
            {"amount": -5},
            {},
            {"size": 10, "amount": 10},
            {"amount": 10, "limit_price": 1.0},
            {"amount": float("nan")},
            {"amount": float("inf")},
            {"size": float("-inf")},
        ],
    )
    def test_invalid_cash_orders(
        self, controller: OrderLifecycleController, user_id: int, kwargs: dict
    ) -> None:
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, 1, "CASH_IN", "MARKET", **kwargs)

    def test_cash_limit_order_invalid(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        with pytest.raises(InvalidOrderError):
            controller.create_order(user_id, 1, "CASH_IN", "LIMIT", amount=10)

    @pytest.mark.parametrize("amount", [float("inf"), float("nan")])
    def test_non_finite_transfer_persists_nothing(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        user_id: int,
        amount: float,
    ) -> None:
        controller.deposit(user_id, 100)
        before = order_store.count_orders()
        with pytest.raises(InvalidOrderError):
            controller.deposit(user_id, amount)
        with pytest.raises(InvalidOrderError):
            controller.withdraw(user_id, amount)
        assert order_store.count_orders() == before
        assert controller.admission.available_cash(user_id) == pytest.approx(100.0)

    def test_failed_withdrawal_fill_cannot_overdraw(
        self, db_path: Path, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        flaky = FlakyOrderStore(db_path)
        controller = OrderLifecycleController(flaky, market, market, clock=StepClock())
        controller.deposit(user_id, 100)

        flaky.fail_next_fill = True
        with pytest.raises(sqlite3.OperationalError):
            controller.withdraw(user_id, 100)
        assert order_store.count_orders(OrderStatus.NEW) == 0

        # The failed withdrawal holds nothing, so the full balance is still there once
        assert controller.withdraw(user_id, 100).status is OrderStatus.FILLED
        with pytest.raises(InsufficientFundsError):
            controller.withdraw(user_id, 100)
        assert controller.process_pending_orders() == []
        assert controller.admission.available_cash(user_id) == pytest.approx(0.0)

    def test_failed_deposit_fill_marks_rejected(
        self, db_path: Path, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        flaky = FlakyOrderStore(db_path)
        flaky.fail_next_fill = True
        controller = OrderLifecycleController(flaky, market, market, clock=StepClock())
        with pytest.raises(sqlite3.OperationalError):
            controller.deposit(user_id, 100)
        assert order_store.count_orders(OrderStatus.REJECTED) == 1
        assert controller.admission.available_cash(user_id) == pytest.approx(0.0)


class TestProcess:
    def test_limit_buy_fills_with_own_reservation_excluded(
        self,
        controller: OrderLifecycleController,
        portfolio_service: PortfolioService,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 800)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=10, limit_price=80.0)
        filled = controller.process_order(pending.id)
        assert filled.status is OrderStatus.FILLED
        cash = portfolio_service.cash_balance(user_id)
        assert cash.total == pytest.approx(0.0)
        assert cash.reserved == 0.0

    def test_limit_rejected_when_resources_gone(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 1_000)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=10, limit_price=80.0)
        # Another fill lands outside the controller and spends 250
        order_store.save(make_order(OrderSide.BUY, 5, 50.0, user_id=user_id))
        result = controller.process_order(pending.id)
        assert result.status is OrderStatus.REJECTED
        assert order_store.get(pending.id).status is OrderStatus.REJECTED

    def test_revalidation_rejection_reported_with_reason(
        self, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        rejected = []
        controller = OrderLifecycleController(
            order_store, market, market, clock=StepClock(),
            on_reject=lambda order, reason: rejected.append((order, reason)),
        )
        controller.deposit(user_id, 500)
        controller.create_order(user_id, ACME, "BUY", "MARKET", size=4)
        pending = controller.create_order(user_id, ACME, "SELL", "LIMIT", size=4, limit_price=55.0)
        order_store.save(make_order(OrderSide.SELL, 2, 50.0, user_id=user_id, minutes=1))
        assert controller.process_order(pending.id).status is OrderStatus.REJECTED
        order, reason = rejected[0]
        assert order.id == pending.id
        assert order.status is OrderStatus.REJECTED
        assert reason.startswith("Insufficient available shares")

    def test_limit_sell_processed(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        controller.deposit(user_id, 500)
        controller.create_order(user_id, ACME, "BUY", "MARKET", size=10)
        pending = controller.create_order(user_id, ACME, "SELL", "LIMIT", size=10, limit_price=55.0)
        assert pending.status is OrderStatus.NEW
        assert controller.process_order(pending.id).status is OrderStatus.FILLED

    def test_process_terminal_order(self, controller: OrderLifecycleController, user_id: int) -> None:
        order = controller.deposit(user_id, 100)
        with pytest.raises(InvalidStateTransitionError):
            controller.process_order(order.id)

    def test_process_unknown_order(self, controller: OrderLifecycleController) -> None:
        with pytest.raises(OrderNotFoundError):
            controller.process_order(12345)

    def test_pending_new_market_order_filled_without_revalidation(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        user_id: int,
    ) -> None:
        stored = order_store.save(make_order(OrderSide.BUY, 1, 50.0, OrderStatus.NEW, user_id=user_id))
        assert controller.process_order(stored.id).status is OrderStatus.FILLED

    def test_unexpected_failure_marks_rejected(
        self,
        controller: OrderLifecycleController,
        order_store: OrderStore,
        market: MarketStore,
        user_id: int,
    ) -> None:
        class ExplodingAdmission:
            def evaluate(self, *args, **kwargs):
                raise RuntimeError("boom")

        controller.deposit(user_id, 1_000)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=1, limit_price=10.0)
        broken = OrderLifecycleController(order_store, market, market, admission=ExplodingAdmission())
        with pytest.raises(RuntimeError, match="boom"):
            broken.process_order(pending.id)
        assert order_store.get(pending.id).status is OrderStatus.REJECTED

    def test_process_pending_in_order(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        controller.deposit(user_id, 1_000)
        first = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=2, limit_price=100.0)
        second = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=3, limit_price=100.0)
        third = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=1, limit_price=100.0)

        processed = controller.process_pending_orders(limit=2)
        assert [o.id for o in processed] == [first.id, second.id]
        assert all(o.status is OrderStatus.FILLED for o in processed)
        assert controller.get_order(third.id).status is OrderStatus.NEW

    @pytest.mark.parametrize("limit", [0, -1, 101])
    def test_process_pending_limit_bounds(
        self, controller: OrderLifecycleController, limit: int
    ) -> None:
        with pytest.raises(InvalidOrderError):
            controller.process_pending_orders(limit)

    def test_process_pending_empty(self, controller: OrderLifecycleController) -> None:
        assert controller.process_pending_orders() == []


class TestCancel:
    def test_cancel_releases_reservation(
        self,
        controller: OrderLifecycleController,
        portfolio_service: PortfolioService,
        user_id: int,
    ) -> None:
        controller.deposit(user_id, 1_000)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=10, limit_price=80.0)
        cancelled = controller.cancel_order(pending.id, user_id)
        assert cancelled.status is OrderStatus.CANCELLED
        cash = portfolio_service.cash_balance(user_id)
        assert cash.available == pytest.approx(1_000.0)
        assert cash.reserved == 0.0

    def test_cancel_by_other_user(
        self, controller: OrderLifecycleController, market: MarketStore, user_id: int
    ) -> None:
        other = market.add_user("other@example.com", "ACC-0002")
        controller.deposit(user_id, 1_000)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=1, limit_price=80.0)
        with pytest.raises(UnauthorizedError):
            controller.cancel_order(pending.id, other.id)
        assert controller.get_order(pending.id).status is OrderStatus.NEW

    @pytest.mark.parametrize("make_terminal", ["fill", "reject", "cancel"])
    def test_cancel_terminal_order(
        self, controller: OrderLifecycleController, user_id: int, make_terminal: str
    ) -> None:
        if make_terminal == "fill":
            order = controller.deposit(user_id, 100)
        elif make_terminal == "reject":
            order = controller.create_order(user_id, ACME, "BUY", "MARKET", size=100)
        else:
            controller.deposit(user_id, 100)
            order = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=1, limit_price=10.0)
            controller.cancel_order(order.id, user_id)
        with pytest.raises(InvalidStateTransitionError):
            controller.cancel_order(order.id, user_id)

    def test_cancel_unknown_order(self, controller: OrderLifecycleController, user_id: int) -> None:
        with pytest.raises(OrderNotFoundError):
            controller.cancel_order(999, user_id)


class TestRead:
    def test_list_orders_newest_first_with_filter(
        self, controller: OrderLifecycleController, user_id: int
    ) -> None:
        deposit = controller.deposit(user_id, 1_000)
        buy = controller.create_order(user_id, ACME, "BUY", "MARKET", size=1)
        pending = controller.create_order(user_id, ACME, "BUY", "LIMIT", size=1, limit_price=40.0)

        history = controller.list_orders(user_id)
        assert [o.id for o in history] == [pending.id, buy.id, deposit.id]
        filled = controller.list_orders(user_id, status="FILLED", limit=1)
        assert [o.id for o in filled] == [buy.id]

    def test_list_orders_unknown_user(self, controller: OrderLifecycleController, market: MarketStore) -> None:
        with pytest.raises(UserNotFoundError):
            controller.list_orders(42)

    def test_list_orders_unknown_status(self, controller: OrderLifecycleController, user_id: int) -> None:
        with pytest.raises(InvalidOrderError):
            controller.list_orders(user_id, status="DONE")


class TestSerialization:
    def test_concurrent_buys_cannot_overcommit_when_serialized(
        self, order_store: OrderStore, market: MarketStore, user_id: int
    ) -> None:
        controller = OrderLifecycleController(
            order_store, market, market, serialize_per_user=True, clock=StepClock()
        )
        controller.deposit(user_id, 500)

        def buy(_: int):
            return controller.create_order(user_id, ACME, "BUY", "MARKET", size=10)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(buy, range(4)))

        statuses = sorted(o.status.value for o in results)
        assert statuses == ["FILLED", "REJECTED", "REJECTED", "REJECTED"]
        assert controller.admission.available_cash(user_id) == pytest.approx(0.0)
