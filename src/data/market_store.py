"""
Users, instruments and daily market prices (SQLite).

The current price of an instrument is the close of its most recent market
data row. 0.0 means no tradable price.
"""

import sqlite3
from datetime import date
from pathlib import Path
from typing import Iterable

from ledger_core.contracts import Instrument, User


class MarketStore:
    """SQLite-backed reference data: users, instruments, market data."""

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
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL,
                    account_number TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS instruments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ticker TEXT NOT NULL,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS market_data (
                    instrument_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    close REAL NOT NULL,
                    previous_close REAL,
                    PRIMARY KEY (instrument_id, date)
                )
                """
            )

    # ---------- users ----------

    def add_user(self, email: str, account_number: str) -> User:
        with self._conn() as c:
            cur = c.execute(
                "INSERT INTO users (email, account_number) VALUES (?, ?)",
                (email, account_number),
            )
        return User(id=cur.lastrowid, email=email, account_number=account_number)

    def get_user(self, user_id: int) -> User | None:
        with self._conn() as c:
            row = c.execute(
                "SELECT id, email, account_number FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return User(*row) if row else None

    def user_exists(self, user_id: int) -> bool:
        return self.get_user(user_id) is not None

    # ---------- instruments ----------

    def add_instrument(self, ticker: str, name: str, instrument_type: str = "STOCK") -> Instrument:
        with self._conn() as c:
            cur = c.execute(
                "INSERT INTO instruments (ticker, name, type) VALUES (?, ?, ?)",
                (ticker.upper(), name, instrument_type),
            )
        return Instrument(id=cur.lastrowid, ticker=ticker.upper(), name=name, type=instrument_type)

    def get_instrument(self, instrument_id: int) -> Instrument | None:
        with self._conn() as c:
            row = c.execute(
                "SELECT id, ticker, name, type FROM instruments WHERE id = ?", (instrument_id,)
            ).fetchone()
        return Instrument(*row) if row else None

    def get_instruments(self, instrument_ids: Iterable[int]) -> dict[int, Instrument]:
        ids = list(instrument_ids)
        if not ids:
            return {}
        with self._conn() as c:
            rows = c.execute(
                f"SELECT id, ticker, name, type FROM instruments WHERE id IN ({', '.join('?' for _ in ids)})",
                ids,
            ).fetchall()
        return {r[0]: Instrument(*r) for r in rows}

    def instrument_exists(self, instrument_id: int) -> bool:
        return self.get_instrument(instrument_id) is not None

    # ---------- market data ----------

    def set_price(
        self,
        instrument_id: int,
        close: float,
        *,
        on: date | None = None,
        previous_close: float | None = None,
    ) -> None:
        """Upsert the close for (instrument, day). Defaults to today."""
        day = (on or date.today()).isoformat()
        with self._conn() as c:
            c.execute(
                """INSERT OR REPLACE INTO market_data (instrument_id, date, close, previous_close)
                   VALUES (?, ?, ?, ?)""",
                (instrument_id, day, close, previous_close),
            )

    def get_current_price(self, instrument_id: int) -> float:
        with self._conn() as c:
            row = c.execute(
                "SELECT close FROM market_data WHERE instrument_id = ? ORDER BY date DESC LIMIT 1",
                (instrument_id,),
            ).fetchone()
        if not row or row[0] is None:
            return 0.0
        return max(float(row[0]), 0.0)

    def get_current_prices(self, instrument_ids: Iterable[int]) -> dict[int, float]:
        """Latest close per instrument in one query. Missing instruments map to 0.0."""
        ids = list(instrument_ids)
        prices = {i: 0.0 for i in ids}
        if not ids:
            return prices
        with self._conn() as c:
            rows = c.execute(
                f"""
                SELECT m.instrument_id, m.close FROM market_data m
                JOIN (
                    SELECT instrument_id, MAX(date) AS last_date FROM market_data
                    WHERE instrument_id IN ({', '.join('?' for _ in ids)})
                    GROUP BY instrument_id
                ) latest
                ON m.instrument_id = latest.instrument_id AND m.date = latest.last_date
                """,
                ids,
            ).fetchall()
        for instrument_id, close in rows:
            prices[instrument_id] = max(float(close), 0.0) if close is not None else 0.0
        return prices
