"""Maps user-facing instrument names to upstream feed tickers."""

from __future__ import annotations

import asyncio
import logging
import re

from .errors import ResolutionError
from .models import Category, normalize_name
from .search import SymbolSearchClient
from .seed_symbols import CRYPTO_QUOTE_SUFFIXES, KNOWN_CRYPTOS, NASDAQ_STOCKS, NYSE_STOCKS
from .ticker_cache import CachedTicker, TickerCache

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = ":"

_VALID_NAME_RE = re.compile(r"^[A-Z0-9._!&/-]+$")
_ALPHA_RE = re.compile(r"^[A-Z]+$")


def crypto_ticker(name: str) -> str:
    """BINANCE pair for a crypto name, quoting in USDT unless a quote is given."""
    if name.endswith(("USDT", "TRY")):
        return f"BINANCE:{name}"
    if name.endswith("USD"):
        return f"BINANCE:{name[:-3]}USDT"
    return f"BINANCE:{name}USDT"


def category_ticker(name: str, category: str | None) -> str | None:
    """Apply the category's namespace rule, or None if it has none."""
    if category == Category.CRYPTO:
        return crypto_ticker(name)
    if category == Category.BIST:
        return f"BIST:{name}"
    if category == Category.FOREX:
        return f"FX_IDC:{name}"
    if category in (Category.INDEX, Category.COMMODITY):
        return f"TVC:{name}"
    if category == Category.STOCKS:
        return f"NYSE:{name}" if name in NYSE_STOCKS else f"NASDAQ:{name}"
    return None


def guess_ticker(name: str) -> str:
    """Best-effort namespace guess for a name nothing else could place."""
    for suffix in CRYPTO_QUOTE_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            base = name[: -len(suffix)]
            if base in KNOWN_CRYPTOS or len(base) <= 6:
                if suffix == "USD":
                    return f"BINANCE:{base}USDT"
                return f"BINANCE:{name}"
    if name in NASDAQ_STOCKS:
        return f"NASDAQ:{name}"
    if name in NYSE_STOCKS:
        return f"NYSE:{name}"
    if name in KNOWN_CRYPTOS:
        return f"BINANCE:{name}USDT"
    if 3 <= len(name) <= 6 and _ALPHA_RE.match(name):
        return f"BIST:{name}"
    return f"TVC:{name}"


class SymbolResolver:
    """Resolve ``(name, category)`` to an upstream ticker.

    Order, first match wins: explicit ``NS:SYM`` name, operator manual
    mapping, static exception table, category rule, cached or live symbol
    search, and finally a default guess. Concurrent lookups of the same name
    share one in-flight search.
    """

    def __init__(
        self,
        cache: TickerCache,
        search: SymbolSearchClient | None = None,
        exceptions: dict[str, str] | None = None,
        allow_guess: bool = True,
    ) -> None:
        self._cache = cache
        self._search = search
        self._exceptions = dict(exceptions or {})
        self._allow_guess = allow_guess
        # name -> ticker for search results and manual mappings; None marks a known miss
        self._memory: dict[str, str | None] = {}
        self._manual: set[str] = set()
        self._pending: dict[str, asyncio.Task[str | None]] = {}

    @property
    def exceptions(self) -> dict[str, str]:
        return dict(self._exceptions)

    def set_exceptions(self, table: dict[str, str]) -> None:
        self._exceptions = {normalize_name(k): normalize_name(v) for k, v in table.items()}

    async def resolve(self, name: str, category: str | None = None) -> str:
        key = normalize_name(name)
        if not key or not _VALID_NAME_RE.match(key.replace(NAMESPACE_SEPARATOR, "")):
            raise ResolutionError(name, "invalid instrument name")

        if NAMESPACE_SEPARATOR in key:
            return key

        if key in self._manual:
            return self._memory[key]  # type: ignore[return-value]

        if key in self._exceptions:
            return self._exceptions[key]

        ticker = category_ticker(key, category)
        if ticker is not None:
            return ticker

        ticker = await self._lookup(key, category)
        if ticker is not None:
            return ticker

        if self._allow_guess:
            guess = guess_ticker(key)
            logger.info("No search match for %s, guessing %s", key, guess)
            return guess
        raise ResolutionError(key)

    async def _lookup(self, key: str, category: str | None) -> str | None:
        if key in self._memory:
            return self._memory[key]

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.create_task(self._lookup_once(key, category), name=f"resolve-{key}")
            self._pending[key] = pending
            pending.add_done_callback(lambda _t, k=key: self._pending.pop(k, None))
        # Shield so one caller's cancellation does not abort the shared lookup
        return await asyncio.shield(pending)

    async def _lookup_once(self, key: str, category: str | None) -> str | None:
        cached = await asyncio.to_thread(self._cache.get, key)
        if cached is not None:
            logger.debug("Ticker cache hit: %s -> %s", key, cached.ticker)
            self._remember(cached)
            return cached.ticker

        if self._search is None:
            return None

        try:
            best = await self._search.find_best(key, category)
        except ResolutionError as e:
            # Transient: do not remember the miss so a later attempt searches again
            logger.warning("Symbol search failed for %s: %s", key, e.reason)
            return None

        if best is None:
            logger.warning("No symbol search match for %s (category %s)", key, category)
            self._memory[key] = None
            return None

        await asyncio.to_thread(
            self._cache.put,
            key,
            best.ticker,
            exchange=best.exchange,
            description=best.description,
            type=best.type,
            currency=best.currency,
        )
        logger.info("Resolved %s -> %s (%s, score %d)", key, best.ticker, best.description, best.score)
        self._memory[key] = best.ticker
        return best.ticker

    def _remember(self, entry: CachedTicker) -> None:
        self._memory[entry.symbol] = entry.ticker
        if entry.is_manual:
            self._manual.add(entry.symbol)

    async def load_manual(self) -> int:
        """Prime the manual mappings from the durable cache."""
        entries = await asyncio.to_thread(self._cache.list_all)
        count = 0
        for entry in entries:
            if entry.is_manual:
                self._remember(entry)
                count += 1
        return count

    async def set_manual(self, name: str, ticker: str) -> str:
        """Force ``name`` to ``ticker``. Never re-resolved automatically."""
        key = normalize_name(name)
        value = normalize_name(ticker)
        if not key or NAMESPACE_SEPARATOR not in value:
            raise ResolutionError(name, f"manual ticker {ticker!r} must look like NAMESPACE:SYMBOL")
        await asyncio.to_thread(self._cache.put, key, value, is_manual=True)
        self._memory[key] = value
        self._manual.add(key)
        logger.info("Manual ticker set: %s -> %s", key, value)
        return value

    async def clear_cache(self, name: str | None = None) -> None:
        if name is None:
            self._memory.clear()
            self._manual.clear()
            await asyncio.to_thread(self._cache.clear)
            logger.info("Ticker cache cleared")
            return
        key = normalize_name(name)
        self._memory.pop(key, None)
        self._manual.discard(key)
        await asyncio.to_thread(self._cache.delete, key)
        logger.info("Ticker cache cleared for %s", key)

    async def list_cache(self) -> list[CachedTicker]:
        return await asyncio.to_thread(self._cache.list_all)

    async def aclose(self) -> None:
        if self._search is not None:
            await self._search.aclose()
        self._cache.close()
