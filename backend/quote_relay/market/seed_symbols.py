"""Static symbol tables: default instruments and resolver hints."""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path

logger = logging.getLogger(__name__)

# Default watchlist seeded into an empty Configuration Store, by category
SEED_INSTRUMENTS: dict[str, list[str]] = {
    "CRYPTO": ["BTC", "ETH", "SOL", "XRP", "AVAX", "BNB", "DOGE"],
    "BIST": ["XU100", "THYAO", "GARAN", "ASELS", "KCHOL"],
    "FOREX": ["USDTRY", "EURTRY", "EURUSD", "GBPUSD"],
    "INDEX": ["SPX", "NDX", "DJI", "DAX"],
    "COMMODITY": ["GOLD", "SILVER", "BRENT", "NATGAS"],
    "STOCKS": ["AAPL", "MSFT", "NVDA", "TSLA", "JPM"],
}

KNOWN_CRYPTOS: frozenset[str] = frozenset({
    "BTC", "ETH", "SOL", "BNB", "XRP", "ADA", "AVAX", "DOGE", "SHIB", "DOT",
    "LINK", "TRX", "POL", "LTC", "BCH", "UNI", "XLM", "ATOM", "ETC", "FIL",
    "HBAR", "APT", "ARB", "OP", "INJ", "RENDER", "GRT", "STX", "NEAR", "ALGO",
    "AAVE", "SAND", "GALA", "MANA", "EGLD", "THETA", "AXS", "XTZ", "MINA",
    "CHZ", "NEO",
})

NASDAQ_STOCKS: frozenset[str] = frozenset({
    "AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "TSLA", "META", "NFLX", "AMD",
    "INTC", "CSCO", "ADBE", "PYPL", "CRM", "ORCL",
})

NYSE_STOCKS: frozenset[str] = frozenset({
    "IBM", "V", "MA", "JPM", "BAC", "WFC", "C", "GS", "MS", "BA", "DIS", "KO",
    "PEP", "MCD", "NKE", "WMT", "TGT", "PG", "JNJ", "PFE", "MRK", "ABBV",
    "LLY", "UNH", "XOM", "CVX", "GE", "F", "GM", "VZ", "T",
})

# Quote currencies recognised at the end of an uncategorised crypto pair
CRYPTO_QUOTE_SUFFIXES: tuple[str, ...] = ("USDT", "USDC", "USD", "TRY", "BTC", "ETH", "BNB")

# Search ranking: instrument types each category prefers (None = no preference)
CATEGORY_TYPE_PREFS: dict[str, tuple[str, ...] | None] = {
    "BIST": ("stock",),
    "CRYPTO": ("crypto",),
    "COMMODITY": ("futures", "commodity", "cfd"),
    "INDEX": ("index",),
    "FOREX": ("forex",),
    "STOCKS": ("stock",),
    "OTHER": None,
    "CUSTOM": None,
}

# Search ranking: exchanges each category prefers, most preferred first
EXCHANGE_PRIORITY: dict[str, tuple[str, ...]] = {
    "BIST": ("BIST",),
    "CRYPTO": ("BINANCE", "BYBIT", "OKX", "COINBASE"),
    "COMMODITY": ("NYMEX", "COMEX", "CBOT", "ICEUS", "TVC"),
    "INDEX": ("TVC", "DJ", "SP", "NASDAQ"),
    "FOREX": ("FX_IDC", "FX", "OANDA", "FXCM"),
    "STOCKS": ("NASDAQ", "NYSE", "AMEX"),
}

_EXCEPTIONS_RESOURCE = "symbol_exceptions.json"


def load_exception_table(path: str | Path | None = None) -> dict[str, str]:
    """Load the name -> ticker exception table.

    Reads ``path`` when given, otherwise the JSON document shipped in
    ``quote_relay.market.data``. Keys and values are uppercased.
    """
    if path:
        raw = Path(path).read_text(encoding="utf-8")
        source = str(path)
    else:
        raw = resources.files("quote_relay.market.data").joinpath(_EXCEPTIONS_RESOURCE).read_text(encoding="utf-8")
        source = _EXCEPTIONS_RESOURCE

    table = json.loads(raw)
    if not isinstance(table, dict):
        raise ValueError(f"exception table {source} must be a JSON object")
    result = {str(k).strip().upper(): str(v).strip().upper() for k, v in table.items()}
    logger.info("Loaded %d symbol exceptions from %s", len(result), source)
    return result
