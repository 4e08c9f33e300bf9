"""
CLI entry point: ledger order | cancel | process | portfolio | orders | ...

Every command loads config from --config (default config.yaml), prints
human-readable output and emits structured JSON events to stderr.
"""

import logging
import math
import sys
from contextlib import contextmanager
from datetime import date
from typing import Iterator

import click
from dotenv import load_dotenv

from config import AppConfig, load_config
from ledger_core.contracts import Order, OrderStatus
from ledger_core.errors import LedgerError

load_dotenv()

logger = logging.getLogger("ledger")


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _load(ctx: click.Context) -> AppConfig:
    cfg = load_config(ctx.obj["config_path"])
    _setup_logging(cfg.log_level)
    return cfg


def _events(cfg: AppConfig):
    from cli.structured_log import StructuredEventLogger

    return StructuredEventLogger(
        enabled=cfg.alerting.structured_logs,
        webhook_url=cfg.alerting.webhook_url,
    )


def _controller(cfg: AppConfig, events=None):
    from data import MarketStore, OrderStore
    from execution import OrderLifecycleController

    market = MarketStore(cfg.data.db_path)
    return OrderLifecycleController(
        OrderStore(cfg.data.db_path),
        market,
        market,
        cash_instrument_id=cfg.execution.cash_instrument_id,
        serialize_per_user=cfg.execution.serialize_per_user,
        on_reject=events.order_rejected if events is not None else None,
    )


def _portfolio_service(cfg: AppConfig):
    from data import MarketStore, OrderStore
    from execution import PortfolioService

    market = MarketStore(cfg.data.db_path)
    return PortfolioService(OrderStore(cfg.data.db_path), market, market)


def _report(events, order: Order) -> None:
    # Rejections are already reported, with their reason, by the controller's on_reject
    if order.status is not OrderStatus.REJECTED:
        events.order_event(order)


@contextmanager
def _ledger_errors(events) -> Iterator[None]:
    """Turn ledger errors into a clean CLI failure (exit code 1) plus an error event."""
    try:
        yield
    except LedgerError as exc:
        events.error(message=str(exc), detail=type(exc).__name__)
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """ledger: paper trading order ledger and portfolio valuation."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- reference data ----------


@cli.command("add-user")
@click.argument("email")
@click.argument("account_number")
@click.pass_context
def add_user(ctx: click.Context, email: str, account_number: str) -> None:
    """Register a user account."""
    cfg = _load(ctx)
    from data import MarketStore

    user = MarketStore(cfg.data.db_path).add_user(email, account_number)
    click.echo(f"User {user.id} created ({user.email}, account {user.account_number})")


@cli.command("add-instrument")
@click.argument("ticker")
@click.argument("name")
@click.option("--type", "instrument_type", default="STOCK", help="Instrument type (STOCK, MONEDA, ...).")
@click.pass_context
def add_instrument(ctx: click.Context, ticker: str, name: str, instrument_type: str) -> None:
    """Register a tradable instrument (or the cash instrument)."""
    cfg = _load(ctx)
    from data import MarketStore

    inst = MarketStore(cfg.data.db_path).add_instrument(ticker, name, instrument_type)
    click.echo(f"Instrument {inst.id} created: {inst.ticker} ({inst.name}, {inst.type})")


@cli.command("set-price")
@click.argument("instrument_id", type=int)
@click.argument("price", type=float)
@click.option("--date", "date_str", default=None, help="Market date (ISO). Defaults to today.")
@click.pass_context
def set_price(ctx: click.Context, instrument_id: int, price: float, date_str: str | None) -> None:
    """Record the close price of an instrument for a day."""
    cfg = _load(ctx)
    from data import MarketStore

    if not math.isfinite(price) or price < 0:
        raise click.BadParameter("price must be a finite number >= 0", param_hint="PRICE")
    store = MarketStore(cfg.data.db_path)
    if not store.instrument_exists(instrument_id):
        raise click.ClickException(f"Instrument {instrument_id} not found")
    on = date.fromisoformat(date_str) if date_str else None
    store.set_price(instrument_id, price, on=on)
    click.echo(f"Price for instrument {instrument_id} set to {price:.2f}")


# ---------- cash ----------


@cli.command()
@click.argument("user_id", type=int)
@click.argument("amount", type=float)
@click.pass_context
def deposit(ctx: click.Context, user_id: int, amount: float) -> None:
    """Deposit cash (CASH_IN)."""
    cfg = _load(ctx)
    from cli.output import format_order

    events = _events(cfg)
    with _ledger_errors(events):
        order = _controller(cfg, events).deposit(user_id, amount)
    _report(events, order)
    click.echo(format_order(order))


@cli.command()
@click.argument("user_id", type=int)
@click.argument("amount", type=float)
@click.pass_context
def withdraw(ctx: click.Context, user_id: int, amount: float) -> None:
    """Withdraw cash (CASH_OUT). Fails without a trace if cash is insufficient."""
    cfg = _load(ctx)
    from cli.output import format_order

    events = _events(cfg)
    with _ledger_errors(events):
        order = _controller(cfg, events).withdraw(user_id, amount)
    _report(events, order)
    click.echo(format_order(order))


# ---------- orders ----------


@cli.command()
@click.argument("user_id", type=int)
@click.argument("instrument_id", type=int)
@click.option("--side", type=click.Choice(["buy", "sell"], case_sensitive=False), required=True)
@click.option("--type", "order_type", type=click.Choice(["market", "limit"], case_sensitive=False), default="market")
@click.option("--size", type=int, default=None, help="Exact number of shares.")
@click.option("--amount", type=float, default=None, help="Cash to invest; converted to whole shares.")
@click.option("--price", "limit_price", type=float, default=None, help="Limit price (LIMIT orders only).")
@click.pass_context
def order(
    ctx: click.Context,
    user_id: int,
    instrument_id: int,
    side: str,
    order_type: str,
    size: int | None,
    amount: float | None,
    limit_price: float | None,
) -> None:
    """Create a BUY/SELL order. MARKET orders fill immediately; LIMIT orders wait for 'process'."""
    cfg = _load(ctx)
    from cli.output import format_order

    events = _events(cfg)
    with _ledger_errors(events):
        created = _controller(cfg, events).create_order(
            user_id,
            instrument_id,
            side.upper(),
            order_type.upper(),
            size=size,
            amount=amount,
            limit_price=limit_price,
        )
    _report(events, created)
    click.echo(format_order(created))


@cli.command()
@click.argument("order_id", type=int)
@click.option("--user", "user_id", type=int, required=True, help="Owner of the order.")
@click.pass_context
def cancel(ctx: click.Context, order_id: int, user_id: int) -> None:
    """Cancel a NEW order."""
    cfg = _load(ctx)
    from cli.output import format_order

    events = _events(cfg)
    with _ledger_errors(events):
        cancelled = _controller(cfg, events).cancel_order(order_id, user_id)
    _report(events, cancelled)
    click.echo(format_order(cancelled))


@cli.command()
@click.argument("order_id", type=int)
@click.pass_context
def process(ctx: click.Context, order_id: int) -> None:
    """Execute a pending order (re-validates LIMIT orders)."""
    cfg = _load(ctx)
    from cli.output import format_order

    events = _events(cfg)
    with _ledger_errors(events):
        processed = _controller(cfg, events).process_order(order_id)
    _report(events, processed)
    click.echo(format_order(processed))


@cli.command("process-pending")
@click.option("--limit", default=None, type=int, help="Max orders to process (1-100). Defaults to config.")
@click.pass_context
def process_pending(ctx: click.Context, limit: int | None) -> None:
    """Process the oldest NEW orders one by one."""
    cfg = _load(ctx)
    from cli.output import format_orders

    events = _events(cfg)
    with _ledger_errors(events):
        processed = _controller(cfg, events).process_pending_orders(limit or cfg.execution.batch_limit)
    for o in processed:
        _report(events, o)
    filled = sum(1 for o in processed if o.status is OrderStatus.FILLED)
    events.batch_processed(len(processed), filled, len(processed) - filled)
    click.echo(f"Processed {len(processed)} orders ({filled} filled, {len(processed) - filled} rejected)")
    if processed:
        click.echo(format_orders(processed))


@cli.command()
@click.argument("user_id", type=int)
@click.option("--status", type=click.Choice(["new", "filled", "rejected", "cancelled"], case_sensitive=False), default=None)
@click.option("--limit", default=None, type=int, help="Number of orders to show. Defaults to config.")
@click.pass_context
def orders(ctx: click.Context, user_id: int, status: str | None, limit: int | None) -> None:
    """Show a user's order history, newest first."""
    cfg = _load(ctx)
    from cli.output import format_orders

    events = _events(cfg)
    with _ledger_errors(events):
        history = _controller(cfg, events).list_orders(
            user_id,
            status=status.upper() if status else None,
            limit=limit or cfg.execution.history_limit,
        )
    click.echo(format_orders(history))


# ---------- portfolio ----------


@cli.command()
@click.argument("user_id", type=int)
@click.pass_context
def portfolio(ctx: click.Context, user_id: int) -> None:
    """Show cash balance and positions, recomputed from the order history."""
    cfg = _load(ctx)
    from cli.output import format_portfolio

    events = _events(cfg)
    with _ledger_errors(events):
        result = _portfolio_service(cfg).get_portfolio(user_id)
    click.echo(format_portfolio(result))


# ---------- health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, database access, cash instrument.

    Exit code 0 = healthy, 1 = unhealthy.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = _load(ctx)
        checks.append(("config", True, f"loaded (db={cfg.data.db_path})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from data import MarketStore, OrderStore

        store = OrderStore(cfg.data.db_path)
        total = store.count_orders()
        pending = store.count_orders(OrderStatus.NEW)
        checks.append(("orders", True, f"{total} orders, {pending} pending"))

        market = MarketStore(cfg.data.db_path)
        cash_id = cfg.execution.cash_instrument_id
        if market.instrument_exists(cash_id):
            checks.append(("cash_instrument", True, f"instrument {cash_id} present"))
        else:
            checks.append(("cash_instrument", False, f"instrument {cash_id} missing; deposits will fail"))
    except Exception as e:
        checks.append(("database", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
