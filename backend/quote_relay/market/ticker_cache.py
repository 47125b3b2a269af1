"""Durable cache of resolved upstream tickers (SQLite)."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass

from .errors import ConfigStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedTicker:
    symbol: str
    ticker: str
    exchange: str | None = None
    description: str | None = None
    type: str | None = None
    currency: str | None = None
    is_manual: bool = False
    resolved_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "ticker": self.ticker,
            "exchange": self.exchange,
            "description": self.description,
            "type": self.type,
            "currency": self.currency,
            "isManual": self.is_manual,
            "resolvedAt": self.resolved_at,
        }


def _ensure_schema(con: sqlite3.Connection) -> None:
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS ticker_cache (
            symbol TEXT PRIMARY KEY,
            ticker TEXT NOT NULL,
            exchange TEXT,
            description TEXT,
            type TEXT,
            currency TEXT,
            is_manual INTEGER NOT NULL DEFAULT 0,
            resolved_at REAL NOT NULL
        )
        """
    )
    con.commit()


class TickerCache:
    """Name -> ticker mappings found by symbol search or set by an operator.

    Methods are synchronous and guarded by a lock; async callers run them via
    ``asyncio.to_thread``.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._con = sqlite3.connect(self._db_path, check_same_thread=False)
            _ensure_schema(self._con)
        except sqlite3.Error as e:
            raise ConfigStoreError(f"cannot open ticker cache at {self._db_path}: {e}") from e

    def get(self, symbol: str) -> CachedTicker | None:
        with self._lock:
            row = self._con.execute(
                "SELECT symbol, ticker, exchange, description, type, currency, is_manual, resolved_at "
                "FROM ticker_cache WHERE symbol = ?",
                (symbol,),
            ).fetchone()
        return _row_to_entry(row) if row else None

    def put(
        self,
        symbol: str,
        ticker: str,
        *,
        exchange: str | None = None,
        description: str | None = None,
        type: str | None = None,
        currency: str | None = None,
        is_manual: bool = False,
    ) -> CachedTicker:
        entry = CachedTicker(
            symbol=symbol,
            ticker=ticker,
            exchange=exchange,
            description=description,
            type=type,
            currency=currency,
            is_manual=is_manual,
            resolved_at=time.time(),
        )
        with self._lock:
            self._con.execute(
                "INSERT OR REPLACE INTO ticker_cache "
                "(symbol, ticker, exchange, description, type, currency, is_manual, resolved_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.symbol,
                    entry.ticker,
                    entry.exchange,
                    entry.description,
                    entry.type,
                    entry.currency,
                    int(entry.is_manual),
                    entry.resolved_at,
                ),
            )
            self._con.commit()
        return entry

    def delete(self, symbol: str) -> bool:
        with self._lock:
            cur = self._con.execute("DELETE FROM ticker_cache WHERE symbol = ?", (symbol,))
            self._con.commit()
        return cur.rowcount > 0

    def clear(self) -> int:
        with self._lock:
            cur = self._con.execute("DELETE FROM ticker_cache")
            self._con.commit()
        return cur.rowcount

    def list_all(self) -> list[CachedTicker]:
        """Every cached mapping, most recently resolved first."""
        with self._lock:
            rows = self._con.execute(
                "SELECT symbol, ticker, exchange, description, type, currency, is_manual, resolved_at "
                "FROM ticker_cache ORDER BY resolved_at DESC"
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._con.close()


def _row_to_entry(row: tuple) -> CachedTicker:
    return CachedTicker(
        symbol=row[0],
        ticker=row[1],
        exchange=row[2],
        description=row[3],
        type=row[4],
        currency=row[5],
        is_manual=bool(row[6]),
        resolved_at=float(row[7]),
    )
