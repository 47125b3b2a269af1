"""Tick normalization and the pause/override/delay transform layer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator

from .cache import LatestPriceCache
from .framing import iter_messages
from .hub import BroadcastHub
from .models import NormalizedUpdate, PriceOverride, QuoteTick, normalize_name
from .subscriptions import SubscriptionSet

logger = logging.getLogger(__name__)

QUOTE_METHOD = "qsd"


def _as_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    return float(value)  # type: ignore[arg-type]


def parse_quote(message: dict) -> QuoteTick | None:
    """Extract a tick from a ``qsd`` message, or None for other messages.

    Raises (KeyError, IndexError, TypeError, ValueError) on a malformed quote.
    """
    if message.get("m") != QUOTE_METHOD:
        return None
    body = message["p"][1]
    if body.get("s") == "error":
        return None
    ticker = str(body["n"]).strip().upper()
    if not ticker:
        raise ValueError("empty ticker")
    values = body.get("v") or {}
    currency = values.get("currency_code")
    return QuoteTick(
        ticker=ticker,
        price=_as_float(values.get("lp")),
        change_percent=_as_float(values.get("chp")),
        currency=str(currency) if currency else None,
    )


def fallback_name(ticker: str) -> str:
    """Best-effort instrument name for an unmapped ticker: drop the namespace."""
    return normalize_name(ticker.split(":")[-1])


class TransformState:
    """Operator-controlled transform settings consulted on every tick."""

    def __init__(self) -> None:
        self._overrides: dict[str, PriceOverride] = {}
        self._paused: set[str] = set()
        self._delay_ms: int = 0

    def set_overrides(self, overrides: dict[str, PriceOverride]) -> None:
        self._overrides = {normalize_name(k): v for k, v in overrides.items()}

    def drop_override(self, name: str) -> None:
        self._overrides = {k: v for k, v in self._overrides.items() if k != normalize_name(name)}

    def active_override(self, name: str, now: float | None = None) -> PriceOverride | None:
        override = self._overrides.get(name)
        if override is None or not override.is_active(now):
            return None
        return override

    @property
    def overrides(self) -> dict[str, PriceOverride]:
        return dict(self._overrides)

    def set_paused(self, name: str, paused: bool) -> None:
        name = normalize_name(name)
        if paused:
            self._paused = self._paused | {name}
        else:
            self._paused = self._paused - {name}

    def is_paused(self, name: str) -> bool:
        return name in self._paused

    @property
    def paused(self) -> frozenset[str]:
        return frozenset(self._paused)

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @delay_ms.setter
    def delay_ms(self, value: int) -> None:
        self._delay_ms = max(0, int(value))


class TickPipeline:
    """Turns raw feed frames into normalized updates and hands them to the hub.

    Frames must be fed sequentially. Raw quote fields are merged per ticker
    for the current session because the Feed Source only sends fields that
    changed.
    """

    def __init__(
        self,
        subscriptions: SubscriptionSet,
        state: TransformState,
        cache: LatestPriceCache,
        hub: BroadcastHub,
    ) -> None:
        self._subscriptions = subscriptions
        self._state = state
        self._cache = cache
        self._hub = hub
        self._raw: dict[str, QuoteTick] = {}
        self._delayed: dict[asyncio.Task, str] = {}  # task -> instrument name

    @property
    def state(self) -> TransformState:
        return self._state

    def reset_session(self) -> None:
        """Forget per-session raw quote state (called on every reconnect)."""
        self._raw = {}

    def iter_ticks(self, frame: str) -> Iterator[QuoteTick]:
        for message in iter_messages(frame):
            try:
                tick = parse_quote(message)
            except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
                logger.debug("Skipping malformed quote message: %r", e)
                continue
            if tick is not None:
                yield tick

    async def on_raw_frame(self, frame: str) -> list[NormalizedUpdate]:
        """Process one frame. Returns the updates delivered immediately.

        Updates held back by the global delay are delivered later and are
        not part of the return value.
        """
        delivered: list[NormalizedUpdate] = []
        for tick in self.iter_ticks(frame):
            for update in self._transform(tick):
                if self._state.delay_ms > 0:
                    self._schedule(update, self._state.delay_ms / 1000.0)
                else:
                    await self._deliver(update)
                    delivered.append(update)
        return delivered

    def _merge(self, tick: QuoteTick) -> QuoteTick:
        prev = self._raw.get(tick.ticker)
        if prev is not None:
            tick = QuoteTick(
                ticker=tick.ticker,
                price=tick.price if tick.price is not None else prev.price,
                change_percent=tick.change_percent if tick.change_percent is not None else prev.change_percent,
                currency=tick.currency or prev.currency,
            )
        self._raw[tick.ticker] = tick
        return tick

    def _transform(self, tick: QuoteTick) -> list[NormalizedUpdate]:
        names = self._subscriptions.names_for(tick.ticker)
        if not names:
            if self._subscriptions.is_retired(tick.ticker):
                return []
            names = [fallback_name(tick.ticker)]

        merged = self._merge(tick)
        now = time.time()
        updates: list[NormalizedUpdate] = []
        for name in names:
            if self._state.is_paused(name):
                continue
            price = merged.price
            override = self._state.active_override(name, now)
            if override is not None:
                price = override.apply(price)
            if price is None:
                continue
            updates.append(
                NormalizedUpdate(
                    instrument_name=name,
                    price=price,
                    change_percent=merged.change_percent,
                    currency=merged.currency,
                )
            )
        return updates

    async def _deliver(self, update: NormalizedUpdate) -> None:
        self._cache.update(
            name=update.instrument_name,
            price=update.price,
            change_percent=update.change_percent,
            currency=update.currency,
        )
        await self._hub.publish(update)

    def _schedule(self, update: NormalizedUpdate, delay_s: float) -> None:
        task = asyncio.create_task(self._deliver_later(update, delay_s), name=f"delayed-{update.instrument_name}")
        self._delayed[task] = update.instrument_name
        task.add_done_callback(lambda t: self._delayed.pop(t, None))

    async def _deliver_later(self, update: NormalizedUpdate, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        try:
            await self._deliver(update)
        except Exception:
            logger.exception("Delayed delivery failed for %s", update.instrument_name)

    def cancel_delayed(self, name: str) -> int:
        """Drop deliveries still queued for one instrument. Returns how many."""
        tasks = [t for t, n in self._delayed.items() if n == name]
        for task in tasks:
            task.cancel()
        return len(tasks)

    @property
    def pending_delayed(self) -> int:
        return len(self._delayed)

    async def close(self) -> None:
        """Cancel deliveries still waiting out the delay."""
        tasks = list(self._delayed)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._delayed.clear()
