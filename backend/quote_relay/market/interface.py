"""Abstract interface for Feed Source clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

FrameHandler = Callable[[str], Awaitable[None]]


class FeedSource(ABC):
    """Contract for one session with the upstream quote feed.

    How the session is established (direct socket, negotiated handshake,
    simulation) is hidden behind this interface. An instance represents a
    single session: once closed it is discarded and a fresh one is created.

    Lifecycle:
        source = factory()
        source.on_message(handler)
        await source.connect()
        await source.subscribe(["BINANCE:BTCUSDT", ...])
        await source.wait_closed()   # returns when the session ends
        await source.close()
    """

    @abstractmethod
    def on_message(self, handler: FrameHandler) -> None:
        """Register the coroutine that receives every raw inbound frame.

        Frames are delivered one at a time; the next frame is not read until
        the handler returns.
        """

    @abstractmethod
    async def connect(self) -> None:
        """Open the session and start reading. Raises FeedSourceError."""

    @abstractmethod
    async def subscribe(self, tickers: Sequence[str]) -> None:
        """Request quotes for a batch of tickers on the live session.

        Raises FeedSourceError if the session is not usable.
        """

    @abstractmethod
    async def unsubscribe(self, tickers: Sequence[str]) -> None:
        """Stop quotes for a batch of tickers. Best effort."""

    @abstractmethod
    async def wait_closed(self) -> None:
        """Block until the session ends for any reason."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the session. Safe to call multiple times."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the session can accept requests."""
