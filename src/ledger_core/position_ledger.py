"""
Position ledger: weighted-average cost replay of BUY/SELL orders.

    new_avg_cost = (qty × avg_cost + size × price) / (qty + size)     on BUY
    realized    += (price - avg_cost) × size                          on SELL

The average cost is not recomputed on SELL: remaining shares keep their
cost basis. Replay order matters, so callers must pass orders sorted by
ascending timestamp (the stores return them that way).
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from ledger_core.contracts import (
    Instrument,
    Order,
    OrderSide,
    OrderStatus,
    Position,
    Quantity,
)

logger = logging.getLogger("ledger.positions")


def calculate_position(
    instrument_id: int,
    orders: Iterable[Order],
    current_price: float,
    *,
    ticker: str = "",
    name: str = "",
) -> Position:
    """Replay FILLED orders of one instrument and attach NEW SELL reservations.

    Orders for other instruments, non-trading sides and statuses other than
    FILLED/NEW are ignored. A SELL arriving while the replayed quantity is
    zero or negative is skipped (logged, not raised).
    """
    quantity = 0.0
    average_cost = 0.0
    total_investment = 0.0
    realized_gains = 0.0
    reserved = 0.0

    for order in orders:
        if order.instrument_id != instrument_id or not order.side.is_trade:
            continue

        if order.status is OrderStatus.NEW:
            if order.side is OrderSide.SELL:
                reserved += order.size
            continue
        if order.status is not OrderStatus.FILLED:
            continue

        price = order.price or 0.0
        if order.side is OrderSide.BUY:
            new_quantity = quantity + order.size
            if new_quantity > 0:
                average_cost = (quantity * average_cost + order.size * price) / new_quantity
            else:
                average_cost = 0.0
            quantity = new_quantity
            total_investment += order.size * price
        elif order.side is OrderSide.SELL:
            if quantity <= 0:
                logger.warning(
                    "Skipping SELL order %s for instrument %s: no shares held at replay time",
                    order.id, instrument_id,
                )
                continue
            realized_gains += (price - average_cost) * order.size
            quantity -= order.size
            if quantity < 0:
                logger.warning(
                    "SELL order %s drove instrument %s quantity negative (%s)",
                    order.id, instrument_id, quantity,
                )
        else:
            raise ValueError(f"Unknown order side: {order.side!r}")

    market_value = quantity * current_price
    if total_investment > 0:
        total_return_percent = (realized_gains + market_value) / total_investment * 100
    else:
        total_return_percent = 0.0

    return Position(
        instrument_id=instrument_id,
        quantity=Quantity(total=quantity, available=quantity - reserved, reserved=reserved),
        average_cost=average_cost,
        current_price=current_price,
        market_value=market_value,
        realized_gains=realized_gains,
        total_investment=total_investment,
        total_return_percent=total_return_percent,
        ticker=ticker,
        name=name,
    )


def group_by_instrument(orders: Iterable[Order]) -> dict[int, list[Order]]:
    """Group trading orders by instrument, preserving input order within each group."""
    groups: dict[int, list[Order]] = {}
    for order in orders:
        if not order.side.is_trade:
            continue
        groups.setdefault(order.instrument_id, []).append(order)
    return groups


def calculate_positions(
    orders: Sequence[Order],
    prices: Mapping[int, float],
    instruments: Mapping[int, Instrument] | None = None,
) -> list[Position]:
    """Positions with a positive held quantity, sorted by instrument id."""
    instruments = instruments or {}
    positions: list[Position] = []
    groups = group_by_instrument(orders)

    for instrument_id, instrument_orders in groups.items():
        instrument = instruments.get(instrument_id)
        position = calculate_position(
            instrument_id,
            instrument_orders,
            prices.get(instrument_id, 0.0),
            ticker=instrument.ticker if instrument else "",
            name=instrument.name if instrument else "",
        )
        if position.quantity.total > 0:
            positions.append(position)

    logger.debug("Positions: %d instruments traded, %d active", len(groups), len(positions))
    return sorted(positions, key=lambda p: p.instrument_id)
