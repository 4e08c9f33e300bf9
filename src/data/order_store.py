"""
Persist and load Order records (SQLite). Timestamps in UTC.

Orders are returned in ascending (timestamp, id) order for ledger replay.
Status transitions go through update_status, a compare-and-set on the
stored status.
"""

import sqlite3
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from ledger_core.contracts import Order, OrderSide, OrderStatus, OrderType

_COLUMNS = "id, instrument_id, user_id, side, size, price, order_type, status, ts_utc"


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _ts_text(ts: datetime) -> str:
    # Fixed width so lexical order in SQL matches chronological order
    return _utc(ts).isoformat(timespec="microseconds")


def _number(value: float) -> int | float:
    value = float(value)
    return int(value) if value.is_integer() else value


class OrderStore:
    """SQLite-backed order storage. One file per path."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    instrument_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    side TEXT NOT NULL,
                    size REAL NOT NULL,
                    price REAL,
                    order_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    ts_utc TEXT NOT NULL
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS idx_orders_user_ts ON orders (user_id, ts_utc)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_orders_status_ts ON orders (status, ts_utc)")

    def save(self, order: Order) -> Order:
        """Insert when order.id is None, else overwrite the stored row. Returns the stored order."""
        values = (
            order.instrument_id,
            order.user_id,
            order.side.value,
            order.size,
            order.price,
            order.order_type.value,
            order.status.value,
            _ts_text(order.timestamp),
        )
        with self._conn() as c:
            if order.id is None:
                cur = c.execute(
                    """INSERT INTO orders (instrument_id, user_id, side, size, price, order_type, status, ts_utc)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    values,
                )
                return replace(order, id=cur.lastrowid, timestamp=_utc(order.timestamp))
            c.execute(
                """UPDATE orders SET instrument_id = ?, user_id = ?, side = ?, size = ?, price = ?,
                       order_type = ?, status = ?, ts_utc = ?
                   WHERE id = ?""",
                (*values, order.id),
            )
        return replace(order, timestamp=_utc(order.timestamp))

    def update_status(self, order_id: int, expected: OrderStatus, new: OrderStatus) -> bool:
        """Set status to *new* only if it is still *expected*. Returns True if the row changed."""
        with self._conn() as c:
            cur = c.execute(
                "UPDATE orders SET status = ? WHERE id = ? AND status = ?",
                (new.value, order_id, expected.value),
            )
            return cur.rowcount == 1

    def get(self, order_id: int) -> Order | None:
        with self._conn() as c:
            row = c.execute(f"SELECT {_COLUMNS} FROM orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row else None

    def orders_for_user(
        self,
        user_id: int,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        """Return the user's orders in ascending (timestamp, id) order."""
        q = f"SELECT {_COLUMNS} FROM orders WHERE user_id = ?"
        params: list = [user_id]
        if statuses is not None:
            wanted = [s.value for s in statuses]
            if not wanted:
                return []
            q += f" AND status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        q += " ORDER BY ts_utc ASC, id ASC"
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        return [self._row_to_order(r) for r in rows]

    def pending_orders(self, limit: int = 10) -> list[Order]:
        """Oldest NEW orders first, across all users."""
        with self._conn() as c:
            rows = c.execute(
                f"SELECT {_COLUMNS} FROM orders WHERE status = ? ORDER BY ts_utc ASC, id ASC LIMIT ?",
                (OrderStatus.NEW.value, limit),
            ).fetchall()
        return [self._row_to_order(r) for r in rows]

    def recent_orders(
        self,
        user_id: int,
        *,
        status: OrderStatus | None = None,
        limit: int = 50,
    ) -> list[Order]:
        """Newest first, for order history views."""
        q = f"SELECT {_COLUMNS} FROM orders WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            q += " AND status = ?"
            params.append(status.value)
        q += " ORDER BY ts_utc DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        return [self._row_to_order(r) for r in rows]

    def count_orders(self, status: OrderStatus | None = None) -> int:
        with self._conn() as c:
            if status is None:
                row = c.execute("SELECT COUNT(*) FROM orders").fetchone()
            else:
                row = c.execute("SELECT COUNT(*) FROM orders WHERE status = ?", (status.value,)).fetchone()
        return row[0] if row else 0

    def _row_to_order(self, row: tuple) -> Order:
        oid, instrument_id, user_id, side, size, price, order_type, status, ts_utc = row
        ts = datetime.fromisoformat(ts_utc.replace("Z", "+00:00"))
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return Order(
            id=oid,
            instrument_id=instrument_id,
            user_id=user_id,
            side=OrderSide(side),
            size=_number(size),
            price=float(price) if price is not None else None,
            order_type=OrderType(order_type),
            status=OrderStatus(status),
            timestamp=ts,
        )
