"""Symbol-search client and candidate ranking."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import ResolutionError
from .seed_symbols import CATEGORY_TYPE_PREFS, EXCHANGE_PRIORITY

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_URL = "https://symbol-search.tradingview.com/symbol_search/v3/"

# Candidates scoring below this are treated as no match
MIN_MATCH_SCORE = 10

_TAG_RE = re.compile(r"</?em>", re.IGNORECASE)

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
    "Origin": "https://www.tradingview.com",
    "Referer": "https://www.tradingview.com/",
}


@dataclass(frozen=True, slots=True)
class SearchCandidate:
    symbol: str
    exchange: str
    type: str = ""
    description: str = ""
    currency: str | None = None
    score: int = 0

    @property
    def ticker(self) -> str:
        return f"{self.exchange}:{self.symbol}"


def _clean(value: Any) -> str:
    return _TAG_RE.sub("", str(value or "")).strip()


def score_candidate(name: str, raw: dict, category: str | None) -> SearchCandidate:
    """Score one search result for ``name`` under ``category``."""
    symbol = _clean(raw.get("symbol")).upper()
    exchange = _clean(raw.get("exchange")).upper()
    kind = _clean(raw.get("type")).lower()
    description = _clean(raw.get("description"))

    score = 0
    base = symbol.split(":")[-1]
    if base == name:
        score += 100
    elif base.startswith(name):
        score += 50
    elif name in description.upper():
        score += 20

    preferred_types = CATEGORY_TYPE_PREFS.get(category or "")
    if preferred_types and any(t in kind for t in preferred_types):
        score += 40

    for rank, preferred in enumerate(EXCHANGE_PRIORITY.get(category or "", ())):
        if preferred in exchange:
            score += 30 - rank * 5
            break

    if symbol.endswith("USDT") and category in (None, "", "CRYPTO"):
        score += 15
    if symbol.endswith("!"):
        score += 10
    if kind == "cfd":
        score -= 5

    return SearchCandidate(
        symbol=symbol,
        exchange=exchange,
        type=kind,
        description=description,
        currency=raw.get("currency_code"),
        score=score,
    )


def rank_candidates(name: str, results: list[dict], category: str | None) -> SearchCandidate | None:
    """Return the best candidate, or None if nothing clears MIN_MATCH_SCORE."""
    scored = [score_candidate(name, r, category) for r in results if r.get("symbol") and r.get("exchange")]
    if not scored:
        return None
    # Stable sort keeps the search engine's own order among equal scores
    scored.sort(key=lambda c: c.score, reverse=True)
    best = scored[0]
    if best.score < MIN_MATCH_SCORE:
        return None
    return best


class SymbolSearchClient:
    """Thin async wrapper around the Feed Source's symbol-search endpoint."""

    def __init__(
        self,
        url: str = DEFAULT_SEARCH_URL,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=_HEADERS)

    async def search(self, text: str, exchange: str = "") -> list[dict]:
        params = {
            "text": text,
            "hl": "0",
            "exchange": exchange,
            "lang": "en",
            "search_type": "undefined",
            "domain": "production",
        }
        try:
            resp = await self._client.get(self._url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ResolutionError(text, f"symbol search failed: {e}") from e

        if isinstance(data, dict):
            symbols = data.get("symbols") or []
        elif isinstance(data, list):
            symbols = data
        else:
            symbols = []
        return [s for s in symbols if isinstance(s, dict)]

    async def find_best(self, name: str, category: str | None) -> SearchCandidate | None:
        """Search for ``name`` and return the top-ranked candidate.

        Sparse results for a name without a quote-currency suffix are widened
        with a second search for the USDT pair.
        """
        results = await self.search(name)
        if len(results) < 3 and not name.endswith(("USDT", "TRY")):
            results = results + await self.search(f"{name}USDT")
        best = rank_candidates(name, results, category)
        if best is not None:
            logger.debug("Search %s -> %s (score %d)", name, best.ticker, best.score)
        return best

    async def aclose(self) -> None:
        await self._client.aclose()
