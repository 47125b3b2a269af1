"""Thread-safe in-memory table of the latest price per instrument."""

from __future__ import annotations

import time
from threading import Lock

from .models import LatestPrice


class LatestPriceCache:
    """Most recent post-transform price for each instrument.

    Writer: the tick pipeline (one sequential producer).
    Readers: new-subscriber replay, status queries.

    Values are stored exactly as produced; formatting happens at the edge.
    """

    def __init__(self) -> None:
        self._prices: dict[str, LatestPrice] = {}
        self._lock = Lock()

    def update(
        self,
        name: str,
        price: float,
        change_percent: float | None = None,
        currency: str | None = None,
        timestamp: float | None = None,
    ) -> LatestPrice:
        """Record a new price for an instrument and return the stored entry."""
        entry = LatestPrice(
            instrument_name=name,
            price=price,
            change_percent=change_percent,
            currency=currency,
            updated_at=timestamp or time.time(),
        )
        with self._lock:
            self._prices[name] = entry
        return entry

    def get(self, name: str) -> LatestPrice | None:
        with self._lock:
            return self._prices.get(name)

    def get_all(self) -> dict[str, LatestPrice]:
        """Snapshot of every known price. Returns a shallow copy."""
        with self._lock:
            return dict(self._prices)

    def get_price(self, name: str) -> float | None:
        entry = self.get(name)
        return entry.price if entry else None

    def remove(self, name: str) -> None:
        """Forget an instrument (e.g. when it is deleted from the store)."""
        with self._lock:
            self._prices.pop(name, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._prices
