"""GBM-based simulated Feed Source speaking the framed quote protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Sequence

import numpy as np

from .errors import FeedSourceError
from .framing import encode_frame
from .interface import FeedSource, FrameHandler

logger = logging.getLogger(__name__)

# Rough starting levels by namespace so simulated quotes look plausible
NAMESPACE_PRICE_RANGES: dict[str, tuple[float, float]] = {
    "BINANCE": (0.5, 60000.0),
    "BIST": (10.0, 500.0),
    "FX_IDC": (0.5, 40.0),
    "TVC": (100.0, 20000.0),
    "NASDAQ": (50.0, 900.0),
    "NYSE": (20.0, 400.0),
}
DEFAULT_PRICE_RANGE = (10.0, 300.0)

NAMESPACE_CURRENCY: dict[str, str] = {
    "BINANCE": "USDT",
    "BIST": "TRY",
    "FX_IDC": "TRY",
}


class GBMSimulator:
    """Geometric Brownian Motion over a dynamic set of tickers.

    S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    All tickers share one drift/volatility; moves are independent.
    """

    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600
    DEFAULT_DT = 0.5 / TRADING_SECONDS_PER_YEAR

    def __init__(self, mu: float = 0.05, sigma: float = 0.3, dt: float = DEFAULT_DT) -> None:
        self._mu = mu
        self._sigma = sigma
        self._dt = dt
        self._tickers: list[str] = []
        self._prices = np.empty(0)
        self._opens = np.empty(0)

    @property
    def tickers(self) -> list[str]:
        return list(self._tickers)

    def add(self, ticker: str, price: float | None = None) -> None:
        if ticker in self._tickers:
            return
        if price is None:
            low, high = NAMESPACE_PRICE_RANGES.get(ticker.split(":")[0], DEFAULT_PRICE_RANGE)
            price = random.uniform(low, high)
        self._tickers.append(ticker)
        self._prices = np.append(self._prices, price)
        self._opens = np.append(self._opens, price)

    def remove(self, ticker: str) -> None:
        if ticker not in self._tickers:
            return
        i = self._tickers.index(ticker)
        del self._tickers[i]
        self._prices = np.delete(self._prices, i)
        self._opens = np.delete(self._opens, i)

    def step(self) -> dict[str, tuple[float, float]]:
        """Advance every ticker one step. Returns {ticker: (price, change_pct)}."""
        n = len(self._tickers)
        if n == 0:
            return {}
        z = np.random.standard_normal(n)
        drift = (self._mu - 0.5 * self._sigma**2) * self._dt
        diffusion = self._sigma * np.sqrt(self._dt) * z
        self._prices = self._prices * np.exp(drift + diffusion)
        change = (self._prices - self._opens) / self._opens * 100.0
        return {t: (float(self._prices[i]), float(change[i])) for i, t in enumerate(self._tickers)}


class SimulatedFeedSource(FeedSource):
    """Feed Source that fabricates ``qsd`` frames from a GBM simulation.

    Useful for development and demos without network access; each tick
    emits a single frame carrying one quote message per subscribed ticker.
    """

    def __init__(self, update_interval: float = 0.5, simulator: GBMSimulator | None = None) -> None:
        self._interval = update_interval
        self._sim = simulator or GBMSimulator()
        self._handler: FrameHandler | None = None
        self._task: asyncio.Task | None = None
        self._closed = asyncio.Event()
        self._open = False
        self._session_id = "qs_simulated"

    def on_message(self, handler: FrameHandler) -> None:
        self._handler = handler

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed.is_set()

    @property
    def simulator(self) -> GBMSimulator:
        return self._sim

    async def connect(self) -> None:
        self._open = True
        self._task = asyncio.create_task(self._run_loop(), name="simulator-feed")
        logger.info("Simulated feed started (%.2fs interval)", self._interval)

    async def subscribe(self, tickers: Sequence[str]) -> None:
        if not self.is_open:
            raise FeedSourceError("simulated session is not open")
        for ticker in tickers:
            self._sim.add(ticker)

    async def unsubscribe(self, tickers: Sequence[str]) -> None:
        for ticker in tickers:
            self._sim.remove(ticker)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._open = False
        self._closed.set()
        logger.info("Simulated feed stopped")

    def build_frame(self, quotes: dict[str, tuple[float, float]]) -> str:
        parts = []
        for ticker, (price, change_pct) in quotes.items():
            values: dict = {"lp": price, "chp": round(change_pct, 2)}
            currency = NAMESPACE_CURRENCY.get(ticker.split(":")[0])
            if currency:
                values["currency_code"] = currency
            message = {"m": "qsd", "p": [self._session_id, {"n": ticker, "s": "ok", "v": values}]}
            parts.append(encode_frame(json.dumps(message)))
        return "".join(parts)

    async def _run_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                quotes = self._sim.step()
                if quotes and self._handler is not None:
                    await self._handler(self.build_frame(quotes))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Simulated feed failed")
        finally:
            self._closed.set()
