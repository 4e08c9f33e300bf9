"""
Portfolio view: cash balance + positions, recomputed from orders on every call.
"""

from __future__ import annotations

import logging

from ledger_core.cash_ledger import calculate_cash_balance
from ledger_core.contracts import LEDGER_STATUSES, CashBalance, Portfolio
from ledger_core.errors import UserNotFoundError
from ledger_core.position_ledger import calculate_positions, group_by_instrument

from execution.ports import MarketData, OrderRepository, UserDirectory

logger = logging.getLogger("ledger.portfolio")


class PortfolioService:
    """Answers portfolio reads by running both ledgers over the current order set."""

    def __init__(self, orders: OrderRepository, market: MarketData, users: UserDirectory) -> None:
        self._orders = orders
        self._market = market
        self._users = users

    def _require_user(self, user_id: int) -> None:
        if not self._users.user_exists(user_id):
            raise UserNotFoundError(f"User {user_id} not found")

    def cash_balance(self, user_id: int) -> CashBalance:
        self._require_user(user_id)
        return calculate_cash_balance(self._orders.orders_for_user(user_id, LEDGER_STATUSES))

    def get_portfolio(self, user_id: int) -> Portfolio:
        self._require_user(user_id)
        orders = self._orders.orders_for_user(user_id, LEDGER_STATUSES)

        cash = calculate_cash_balance(orders)
        instrument_ids = list(group_by_instrument(orders))
        prices = self._market.get_current_prices(instrument_ids)
        instruments = self._market.get_instruments(instrument_ids)
        positions = calculate_positions(orders, prices, instruments)

        portfolio = Portfolio(user_id=user_id, cash_balance=cash, positions=positions)
        logger.info(
            "Portfolio user=%s cash=%.2f (available %.2f) positions=%d value=%.2f",
            user_id, cash.total, cash.available, len(positions), portfolio.total_value,
        )
        return portfolio
