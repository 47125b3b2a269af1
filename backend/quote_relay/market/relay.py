"""Composition root of the live quote pipeline."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .cache import LatestPriceCache
from .config_store import ConfigStore
from .connector import FeedConnector, FeedSourceFactory
from .hub import BroadcastHub
from .models import Instrument, PriceOverride, RelayMetrics
from .pipeline import TickPipeline, TransformState
from .resolver import SymbolResolver
from .subscriptions import SubscriptionSet

logger = logging.getLogger(__name__)


class QuoteRelay:
    """Wires the core components together and receives store change hooks.

    The Configuration Store calls the ``on_*`` methods after persisting a
    mutation; they update the transform state or the live subscription set
    without restarting the feed.
    """

    def __init__(
        self,
        store: ConfigStore,
        resolver: SymbolResolver,
        source_factory: FeedSourceFactory,
        send_timeout: float = 2.0,
        seed: Sequence[Instrument] = (),
        **connector_options: float,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.cache = LatestPriceCache()
        self.hub = BroadcastHub(self.cache, send_timeout=send_timeout)
        self.state = TransformState()
        self.subscriptions = SubscriptionSet(store, resolver, seed=seed)
        self.pipeline = TickPipeline(self.subscriptions, self.state, self.cache, self.hub)
        self.connector = FeedConnector(source_factory, self.subscriptions, self.pipeline, **connector_options)
        store.set_listener(self)

    async def start(self) -> None:
        """Load the stored transform settings and start the feed.

        Store failures propagate: the relay must not run half-initialized.
        """
        self.state.set_overrides(await self.store.get_overrides())
        self.state.delay_ms = await self.store.get_delay()
        for instrument in await self.store.list_instruments():
            if instrument.paused:
                self.state.set_paused(instrument.name, True)
        manual = await self.resolver.load_manual()
        logger.info(
            "Relay state loaded: %d overrides, %d paused, delay %d ms, %d manual tickers",
            len(self.state.overrides),
            len(self.state.paused),
            self.state.delay_ms,
            manual,
        )
        await self.connector.start()

    async def stop(self) -> None:
        await self.connector.stop()
        await self.pipeline.close()
        await self.resolver.aclose()
        self.store.close()

    def metrics(self) -> RelayMetrics:
        return RelayMetrics(
            connected_subscriber_count=self.hub.subscriber_count,
            last_data_received_at=self.connector.last_data_received_at,
            feed_connector_state=self.connector.state,
        )

    # --- Configuration Store hooks ---

    async def on_instrument_added(self, name: str, category: str) -> None:
        await self.connector.add_instrument(Instrument(name=name, category=category))

    async def on_instrument_removed(self, name: str) -> None:
        await self.connector.remove_instrument(name)
        self.state.drop_override(name)
        self.state.set_paused(name, False)
        self.pipeline.cancel_delayed(name)
        self.cache.remove(name)

    async def on_overrides_changed(self, overrides: dict[str, PriceOverride]) -> None:
        self.state.set_overrides(overrides)

    async def on_delay_changed(self, delay_ms: int) -> None:
        self.state.delay_ms = delay_ms

    async def on_pause_changed(self, name: str, paused: bool) -> None:
        self.state.set_paused(name, paused)

    async def on_category_changed(self, name: str, category: str) -> None:
        await self.connector.add_instrument(Instrument(name=name, category=category))
