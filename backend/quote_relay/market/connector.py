"""Supervisor that keeps a single Feed Source session alive."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from .errors import FeedSourceError
from .interface import FeedSource
from .models import ConnectorState, Instrument
from .pipeline import TickPipeline
from .subscriptions import SubscriptionSet

logger = logging.getLogger(__name__)

T = TypeVar("T")

FeedSourceFactory = Callable[[], FeedSource]


class _ReconnectRequested(Exception):
    """Raised inside the supervisor when a forced reconnect interrupts a phase."""


class FeedConnector:
    """Drives STOPPED -> CONNECTING -> SUBSCRIBING -> STREAMING -> RECONNECTING.

    Every session starts from scratch: a new Feed Source instance, a rebuilt
    subscription set, and fresh per-session pipeline state. Failures of any
    kind lead to RECONNECTING and, after a constant wait, a new attempt.
    A separate watchdog forces a reconnect when a STREAMING session stops
    delivering frames.

    Subscriptions are sent in fixed-size batches with a fixed pause between
    them; the upstream silently drops requests that arrive too quickly.
    """

    def __init__(
        self,
        source_factory: FeedSourceFactory,
        subscriptions: SubscriptionSet,
        pipeline: TickPipeline,
        batch_size: int = 50,
        batch_delay: float = 0.2,
        retry_interval: float = 15.0,
        stall_timeout: float = 180.0,
        watchdog_interval: float = 30.0,
    ) -> None:
        self._source_factory = source_factory
        self._subscriptions = subscriptions
        self._pipeline = pipeline
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay
        self._retry_interval = retry_interval
        self._stall_timeout = stall_timeout
        self._watchdog_interval = watchdog_interval

        self._state = ConnectorState.STOPPED
        self._source: FeedSource | None = None
        self._supervisor: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None
        self._reconnect_event = asyncio.Event()
        self._last_data_at: float | None = None  # Unix seconds, for status
        self._last_data_mono: float = 0.0
        self._sessions: int = 0

    # --- Status ---

    @property
    def state(self) -> ConnectorState:
        return self._state

    @property
    def last_data_received_at(self) -> float | None:
        return self._last_data_at

    @property
    def sessions_started(self) -> int:
        return self._sessions

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._reconnect_event.clear()
        self._supervisor = asyncio.create_task(self._run(), name="feed-supervisor")
        self._watchdog = asyncio.create_task(self._watch(), name="feed-watchdog")
        logger.info("Feed connector started")

    async def stop(self) -> None:
        for task in (self._watchdog, self._supervisor):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._watchdog = None
        self._supervisor = None
        await self._teardown()
        self._state = ConnectorState.STOPPED
        logger.info("Feed connector stopped")

    def request_reconnect(self, reason: str) -> None:
        """Force RECONNECTING, abandoning any in-progress connect/subscribe."""
        if self._state is ConnectorState.STOPPED:
            return
        logger.warning("Reconnect requested: %s", reason)
        self._reconnect_event.set()

    # --- Incremental changes ---

    async def add_instrument(self, instrument: Instrument) -> str | None:
        """Start streaming one instrument, injecting it into the live session.

        A name that moved to another ticker releases the old one upstream when
        nothing else uses it. Returns the ticker that was newly injected, if any.
        """
        previous = self._subscriptions.ticker_for(instrument.name)
        ticker = await self._subscriptions.add_one(instrument)
        current = self._subscriptions.ticker_for(instrument.name)
        if previous is not None and previous != current and self._subscriptions.is_retired(previous):
            await self._unsubscribe_live(previous)
        if self._state is ConnectorState.SUBSCRIBING:
            # The rebuild for this session may already have read the store
            if current is not None:
                self.request_reconnect(f"{instrument.name} added while subscribing")
            return None
        if ticker is None:
            return None

        if self._state is ConnectorState.STREAMING and self._source is not None:
            try:
                await self._source.subscribe([ticker])
                logger.info("Injected %s into live session", ticker)
                return ticker
            except Exception as e:
                self.request_reconnect(f"live injection of {ticker} failed: {e}")
                return None
        return None

    async def remove_instrument(self, name: str) -> str | None:
        """Stop streaming one instrument. Returns the retired ticker, if any."""
        ticker = self._subscriptions.remove_one(name)
        if self._state is ConnectorState.SUBSCRIBING:
            # A rebuild in flight may still index the name
            self.request_reconnect(f"{name} removed while subscribing")
        elif ticker is not None:
            await self._unsubscribe_live(ticker)
        return ticker

    async def _unsubscribe_live(self, ticker: str) -> None:
        if self._state is not ConnectorState.STREAMING or self._source is None:
            return
        try:
            await self._source.unsubscribe([ticker])
        except Exception as e:
            logger.warning("Unsubscribe of %s failed (ticks will be dropped): %s", ticker, e)

    # --- Supervisor ---

    async def _run(self) -> None:
        first = True
        while True:
            if not first:
                self._state = ConnectorState.RECONNECTING
                await self._teardown()
                logger.info("Reconnecting in %.1fs", self._retry_interval)
                await asyncio.sleep(self._retry_interval)
            first = False
            self._reconnect_event.clear()
            try:
                await self._run_session()
            except _ReconnectRequested:
                pass
            except FeedSourceError as e:
                logger.warning("Feed session failed: %s", e)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Feed session failed")

    async def _run_session(self) -> None:
        self._state = ConnectorState.CONNECTING
        self._sessions += 1
        source = self._source_factory()
        source.on_message(self._handle_frame)
        self._source = source
        self._pipeline.reset_session()
        await self._interruptible(source.connect())

        self._state = ConnectorState.SUBSCRIBING
        tickers = await self._interruptible(self._subscriptions.rebuild())
        await self._interruptible(self._subscribe_batches(source, tickers))

        self._state = ConnectorState.STREAMING
        self._mark_data()
        logger.info("Streaming %d tickers", len(tickers))
        await self._interruptible(source.wait_closed())
        logger.warning("Feed session ended")

    async def _subscribe_batches(self, source: FeedSource, tickers: Sequence[str]) -> None:
        for i in range(0, len(tickers), self._batch_size):
            batch = list(tickers[i : i + self._batch_size])
            await source.subscribe(batch)
            logger.debug("Subscribed batch %d (%d tickers)", i // self._batch_size + 1, len(batch))
            if i + self._batch_size < len(tickers):
                await asyncio.sleep(self._batch_delay)
        logger.info("Requested %d tickers in %d batches", len(tickers), -(-len(tickers) // self._batch_size))

    async def _interruptible(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless a reconnect is requested first."""
        task = asyncio.ensure_future(aw)
        waiter = asyncio.create_task(self._reconnect_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, Exception):
            pass
        raise _ReconnectRequested()

    async def _teardown(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            try:
                await source.close()
            except Exception:
                logger.exception("Error closing feed source")

    async def _handle_frame(self, frame: str) -> None:
        self._mark_data()
        try:
            await self._pipeline.on_raw_frame(frame)
        except Exception:
            logger.exception("Tick pipeline failed on frame")

    def _mark_data(self) -> None:
        self._last_data_at = time.time()
        self._last_data_mono = time.monotonic()

    # --- Watchdog ---

    def check_stall(self) -> bool:
        """Force a reconnect if a STREAMING session has gone quiet."""
        if self._state is not ConnectorState.STREAMING:
            return False
        silent_for = time.monotonic() - self._last_data_mono
        if silent_for <= self._stall_timeout:
            return False
        self.request_reconnect(f"no data for {silent_for:.0f}s")
        return True

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._watchdog_interval)
            try:
                self.check_stall()
            except Exception:
                logger.exception("Watchdog check failed")
