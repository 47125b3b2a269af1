"""Live set of upstream tickers and the ticker -> instrument reverse index."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .config_store import ConfigStore
from .errors import ResolutionError
from .models import Instrument, normalize_name
from .resolver import SymbolResolver

logger = logging.getLogger(__name__)


class SubscriptionSet:
    """Derived, non-owning view of the tracked instruments.

    One upstream ticker may back several instrument names; each name maps to
    exactly one ticker for the lifetime of a connector session. The index is
    replaced wholesale on rebuild, so readers always see a consistent map.
    """

    def __init__(
        self,
        store: ConfigStore,
        resolver: SymbolResolver,
        seed: Sequence[Instrument] = (),
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._seed = list(seed)
        self._tickers: list[str] = []
        self._names_by_ticker: dict[str, list[str]] = {}
        self._ticker_by_name: dict[str, str] = {}
        self._retired: set[str] = set()

    async def rebuild(self) -> list[str]:
        """Resolve every tracked instrument and return the ordered ticker set.

        Instruments that fail to resolve are logged and skipped.
        """
        instruments = await self._store.list_instruments()
        known = {i.name for i in instruments}
        instruments.extend(i for i in self._seed if i.name not in known)

        results = await asyncio.gather(
            *(self._resolver.resolve(i.name, i.category) for i in instruments),
            return_exceptions=True,
        )

        tickers: list[str] = []
        names_by_ticker: dict[str, list[str]] = {}
        ticker_by_name: dict[str, str] = {}
        for instrument, result in zip(instruments, results):
            if isinstance(result, ResolutionError):
                logger.warning("Skipping %s: %s", instrument.name, result.reason)
                continue
            if isinstance(result, BaseException):
                logger.error("Skipping %s: unexpected resolution error: %r", instrument.name, result)
                continue
            if result not in names_by_ticker:
                names_by_ticker[result] = []
                tickers.append(result)
            names_by_ticker[result].append(instrument.name)
            ticker_by_name[instrument.name] = result

        self._tickers = tickers
        self._names_by_ticker = names_by_ticker
        self._ticker_by_name = ticker_by_name
        self._retired = set()
        logger.info("Subscription set rebuilt: %d instruments -> %d tickers", len(ticker_by_name), len(tickers))
        return list(tickers)

    async def add_one(self, instrument: Instrument) -> str | None:
        """Index one instrument without a full rebuild.

        Returns the resolved ticker when it is not yet subscribed upstream
        (the caller must inject it), or None when nothing new is needed or
        resolution failed. A known name whose resolution changed (e.g. after
        a category change) is moved to its new ticker.
        """
        name = normalize_name(instrument.name)
        try:
            ticker = await self._resolver.resolve(name, instrument.category)
        except ResolutionError as e:
            logger.warning("Cannot add %s: %s", name, e.reason)
            return None

        previous = self._ticker_by_name.get(name)
        if previous == ticker:
            return None
        if previous is not None:
            self._detach(name, previous)

        names_by_ticker = dict(self._names_by_ticker)
        is_new = ticker not in names_by_ticker
        names_by_ticker[ticker] = [*names_by_ticker.get(ticker, []), name]
        ticker_by_name = {**self._ticker_by_name, name: ticker}

        self._names_by_ticker = names_by_ticker
        self._ticker_by_name = ticker_by_name
        self._retired.discard(ticker)
        if is_new:
            self._tickers = [*self._tickers, ticker]
            logger.info("Added %s -> %s (new ticker)", name, ticker)
            return ticker
        logger.info("Added %s -> %s (shared ticker)", name, ticker)
        return None

    def remove_one(self, name: str) -> str | None:
        """Drop a name from the index.

        Returns the ticker if it no longer backs any instrument, in which case
        it is retired and should be unsubscribed upstream.
        """
        name = normalize_name(name)
        ticker = self._ticker_by_name.get(name)
        if ticker is None:
            return None
        return self._detach(name, ticker)

    def _detach(self, name: str, ticker: str) -> str | None:
        names = [n for n in self._names_by_ticker.get(ticker, []) if n != name]
        names_by_ticker = dict(self._names_by_ticker)
        ticker_by_name = {k: v for k, v in self._ticker_by_name.items() if k != name}
        orphaned = None
        if names:
            names_by_ticker[ticker] = names
        else:
            names_by_ticker.pop(ticker, None)
            self._tickers = [t for t in self._tickers if t != ticker]
            self._retired.add(ticker)
            orphaned = ticker
        self._names_by_ticker = names_by_ticker
        self._ticker_by_name = ticker_by_name
        return orphaned

    # --- Reads ---

    def names_for(self, ticker: str) -> list[str]:
        return list(self._names_by_ticker.get(ticker, ()))

    def ticker_for(self, name: str) -> str | None:
        return self._ticker_by_name.get(normalize_name(name))

    def is_retired(self, ticker: str) -> bool:
        return ticker in self._retired

    @property
    def tickers(self) -> list[str]:
        return list(self._tickers)

    def index(self) -> dict[str, list[str]]:
        """Copy of the reverse index (ticker -> instrument names)."""
        return {t: list(n) for t, n in self._names_by_ticker.items()}

    def __len__(self) -> int:
        return len(self._tickers)
