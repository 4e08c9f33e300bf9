"""
Human-readable ledger output for the terminal.

Every CLI command uses these formatters.
"""

from __future__ import annotations

from ledger_core.contracts import CashBalance, Order, Portfolio, Position


def _fmt_money(value: float) -> str:
    return f"${value:,.2f}"


def _fmt_qty(value: float) -> str:
    return f"{value:g}"


def format_order(order: Order) -> str:
    price = f"{order.price:.2f}" if order.price is not None else "-"
    ts = order.timestamp.isoformat(timespec="seconds")
    if order.side.is_cash:
        return (
            f"#{order.id:<5} {order.status.value:<9} {order.side.value:<8} "
            f"{_fmt_money(float(order.size))}  user {order.user_id}  {ts}"
        )
    return (
        f"#{order.id:<5} {order.status.value:<9} {order.side.value:<8} {order.order_type.value:<6} "
        f"{_fmt_qty(order.size)} x instrument {order.instrument_id} @ {price}  user {order.user_id}  {ts}"
    )


def format_orders(orders: list[Order]) -> str:
    if not orders:
        return "No orders."
    return "\n".join(format_order(o) for o in orders)


def format_cash(balance: CashBalance) -> str:
    return "\n".join([
        f"Cash total     : {_fmt_money(balance.total)}",
        f"Cash reserved  : {_fmt_money(balance.reserved)}",
        f"Cash available : {_fmt_money(balance.available)}",
    ])


def format_position(position: Position) -> str:
    label = position.ticker or f"#{position.instrument_id}"
    q = position.quantity
    return (
        f"  {label:<8} qty {_fmt_qty(q.total):>6} (avail {_fmt_qty(q.available)}, reserved {_fmt_qty(q.reserved)})"
        f"  avg {position.average_cost:.2f}  px {position.current_price:.2f}"
        f"  value {_fmt_money(position.market_value)}"
        f"  realized {_fmt_money(position.realized_gains)}"
        f"  return {position.total_return_percent:.2f}%"
    )


def format_portfolio(portfolio: Portfolio) -> str:
    lines = [
        f"=== Portfolio: user {portfolio.user_id} ===",
        format_cash(portfolio.cash_balance),
        f"Market value   : {_fmt_money(portfolio.total_market_value)}",
        f"Total value    : {_fmt_money(portfolio.total_value)}",
        "",
        f"Positions ({len(portfolio.positions)}):",
    ]
    if portfolio.positions:
        lines.extend(format_position(p) for p in portfolio.positions)
    else:
        lines.append("  (none)")
    return "\n".join(lines)
