"""Live quote pipeline.

Public API:
    QuoteRelay           - Composition root; receives configuration hooks
    LatestPriceCache     - Thread-safe table of the latest price per instrument
    BroadcastHub         - Fan-out to subscriber sessions with replay on connect
    TickPipeline         - Frame decoding and pause/override/delay transforms
    SubscriptionSet      - Upstream ticker set and reverse index
    FeedConnector        - Session supervisor with watchdog
    SymbolResolver       - Instrument name -> upstream ticker
    FeedSource           - Abstract interface for upstream sessions
    create_relay         - Factory that builds a relay from settings
    create_stream_router - FastAPI router factory for the push channel
"""

from .cache import LatestPriceCache
from .connector import FeedConnector
from .factory import create_feed_source_factory, create_relay
from .hub import BroadcastHub
from .interface import FeedSource
from .models import NormalizedUpdate, PriceOverride
from .pipeline import TickPipeline
from .relay import QuoteRelay
from .resolver import SymbolResolver
from .stream import create_stream_router
from .subscriptions import SubscriptionSet

__all__ = [
    "QuoteRelay",
    "LatestPriceCache",
    "BroadcastHub",
    "TickPipeline",
    "SubscriptionSet",
    "FeedConnector",
    "SymbolResolver",
    "FeedSource",
    "NormalizedUpdate",
    "PriceOverride",
    "create_feed_source_factory",
    "create_relay",
    "create_stream_router",
]
