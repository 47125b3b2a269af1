"""Fan-out of normalized updates to connected subscriber sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .cache import LatestPriceCache
from .models import NormalizedUpdate

logger = logging.getLogger(__name__)


class SubscriberSession(Protocol):
    """Anything that can receive a text message, e.g. a FastAPI WebSocket."""

    async def send_text(self, data: str) -> None: ...


class _Subscriber:
    __slots__ = ("session", "replaying", "backlog")

    def __init__(self, session: SubscriberSession) -> None:
        self.session = session
        self.replaying = True
        self.backlog: list[str] = []


class BroadcastHub:
    """Holds open sessions and pushes every update to all of them.

    Sends are concurrent and bounded by ``send_timeout``; a session whose
    send fails or times out is dropped without affecting the others. A new
    session first receives the full LatestPrice table, and any live update
    published meanwhile is held back until that replay has been sent.
    """

    def __init__(self, cache: LatestPriceCache, send_timeout: float = 2.0) -> None:
        self._cache = cache
        self._send_timeout = send_timeout
        self._subscribers: dict[int, _Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def connect(self, session: SubscriberSession) -> int:
        """Register an already-authenticated session. Returns replayed count."""
        sub = _Subscriber(session)
        self._subscribers[id(session)] = sub
        snapshot = self._cache.get_all()
        replayed = 0
        try:
            for entry in snapshot.values():
                await asyncio.wait_for(session.send_text(entry.as_update().to_message()), self._send_timeout)
                replayed += 1
            while sub.backlog:
                message = sub.backlog.pop(0)
                await asyncio.wait_for(session.send_text(message), self._send_timeout)
        except Exception as e:
            logger.warning("Replay to new subscriber failed, dropping it: %r", e)
            self._subscribers.pop(id(session), None)
            return replayed
        sub.replaying = False
        logger.info("Subscriber connected (%d replayed, %d open)", replayed, len(self._subscribers))
        return replayed

    def disconnect(self, session: SubscriberSession) -> None:
        if self._subscribers.pop(id(session), None) is not None:
            logger.info("Subscriber disconnected (%d open)", len(self._subscribers))

    async def publish(self, update: NormalizedUpdate) -> int:
        """Deliver one update to every open session. Returns sessions reached."""
        if not self._subscribers:
            return 0
        message = update.to_message()

        recipients: list[_Subscriber] = []
        for sub in list(self._subscribers.values()):
            if sub.replaying:
                sub.backlog.append(message)
            else:
                recipients.append(sub)
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(asyncio.wait_for(sub.session.send_text(message), self._send_timeout) for sub in recipients),
            return_exceptions=True,
        )
        delivered = 0
        for sub, result in zip(recipients, results):
            if isinstance(result, BaseException):
                reason = "timeout" if isinstance(result, asyncio.TimeoutError) else type(result).__name__
                logger.warning("Dropping subscriber after failed send (%s)", reason)
                self._subscribers.pop(id(sub.session), None)
            else:
                delivered += 1
        return delivered
