"""Factories that assemble the relay from settings."""

from __future__ import annotations

import logging

from ..settings import RelaySettings
from .config_store import ConfigStore
from .connector import FeedSourceFactory
from .relay import QuoteRelay
from .resolver import SymbolResolver
from .search import SymbolSearchClient
from .seed_symbols import SEED_INSTRUMENTS, load_exception_table
from .ticker_cache import TickerCache

logger = logging.getLogger(__name__)


def create_feed_source_factory(settings: RelaySettings) -> FeedSourceFactory:
    """Pick the Feed Source implementation named by ``FEED_SOURCE``.

    - ``simulator`` -> SimulatedFeedSource (GBM, no network)
    - anything else -> TradingViewFeedSource (real data)

    Returns a zero-argument callable; the connector creates a fresh source
    for every session.
    """
    if settings.feed_source == "simulator":
        from .simulator import SimulatedFeedSource

        logger.info("Feed source: GBM simulator")
        return lambda: SimulatedFeedSource(update_interval=settings.simulator_interval)

    from .tradingview import TradingViewFeedSource

    logger.info("Feed source: TradingView (%s)", settings.tv_socket_url)
    return lambda: TradingViewFeedSource(
        url=settings.tv_socket_url,
        auth_token=settings.tv_auth_token,
        session_cookie=settings.tv_session_cookie,
    )


def create_relay(settings: RelaySettings) -> QuoteRelay:
    """Open the durable stores and build an unstarted relay.

    Raises ConfigStoreError if the database cannot be opened. Caller must
    await relay.start().
    """
    store = ConfigStore(settings.db_path)
    resolver = SymbolResolver(
        cache=TickerCache(settings.db_path),
        search=SymbolSearchClient(url=settings.symbol_search_url, timeout=settings.symbol_search_timeout),
        exceptions=load_exception_table(settings.symbol_exceptions_path or None),
        allow_guess=settings.resolver_guess_fallback,
    )
    return QuoteRelay(
        store=store,
        resolver=resolver,
        source_factory=create_feed_source_factory(settings),
        send_timeout=settings.broadcast_send_timeout,
        batch_size=settings.subscribe_batch_size,
        batch_delay=settings.subscribe_batch_delay_ms / 1000.0,
        retry_interval=settings.reconnect_interval,
        stall_timeout=settings.stall_timeout,
        watchdog_interval=settings.watchdog_interval,
    )


async def seed_store(relay: QuoteRelay, settings: RelaySettings) -> int:
    """Seed the default watchlist into an empty store, if enabled."""
    if not settings.seed_default_instruments:
        return 0
    return await relay.store.seed_defaults(SEED_INSTRUMENTS)
