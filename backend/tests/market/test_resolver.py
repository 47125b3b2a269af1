"""Tests for SymbolResolver and the namespace rules."""

import asyncio

import pytest

from quote_relay.market.errors import ResolutionError
from quote_relay.market.resolver import SymbolResolver, category_ticker, guess_ticker
from quote_relay.market.search import SearchCandidate
from quote_relay.market.seed_symbols import load_exception_table

from .fakes import FakeSearch

EXCEPTIONS = {"GOLD": "FX_IDC:XAUTRY", "BRENT": "TVC:UKOIL"}


class FailingSearch(FakeSearch):
    async def find_best(self, name, category):
        self.calls.append(name)
        raise ResolutionError(name, "symbol search failed: timeout")


@pytest.fixture
def resolver(ticker_cache, fake_search):
    return SymbolResolver(ticker_cache, search=fake_search, exceptions=EXCEPTIONS)


class TestNamespaceRules:
    """Unit tests for the pure ticker rules."""

    def test_crypto(self):
        """Test that crypto names quote in USDT unless a quote is given."""
        assert category_ticker("FOO", "CRYPTO") == "BINANCE:FOOUSDT"
        assert category_ticker("ETHUSD", "CRYPTO") == "BINANCE:ETHUSDT"
        assert category_ticker("BTCTRY", "CRYPTO") == "BINANCE:BTCTRY"
        assert category_ticker("SOLUSDT", "CRYPTO") == "BINANCE:SOLUSDT"

    def test_other_categories(self):
        """Test the fixed namespace per category."""
        assert category_ticker("THYAO", "BIST") == "BIST:THYAO"
        assert category_ticker("USDTRY", "FOREX") == "FX_IDC:USDTRY"
        assert category_ticker("SPX", "INDEX") == "TVC:SPX"
        assert category_ticker("PLATINUM", "COMMODITY") == "TVC:PLATINUM"
        assert category_ticker("JPM", "STOCKS") == "NYSE:JPM"
        assert category_ticker("ZZZZ", "STOCKS") == "NASDAQ:ZZZZ"

    def test_no_rule(self):
        """Test categories that defer to search."""
        assert category_ticker("FOO", "OTHER") is None
        assert category_ticker("FOO", "CUSTOM") is None
        assert category_ticker("FOO", "MY_WATCHLIST") is None
        assert category_ticker("FOO", None) is None

    def test_guess(self):
        """Test the default guess heuristics."""
        assert guess_ticker("SOLUSD") == "BINANCE:SOLUSDT"
        assert guess_ticker("DOGETRY") == "BINANCE:DOGETRY"
        assert guess_ticker("AAPL") == "NASDAQ:AAPL"
        assert guess_ticker("KO") == "NYSE:KO"
        assert guess_ticker("ETH") == "BINANCE:ETHUSDT"
        assert guess_ticker("THYAO") == "BIST:THYAO"
        assert guess_ticker("XU030") == "TVC:XU030"

    def test_shipped_exception_table(self):
        """Test that the packaged table loads and is uppercased."""
        table = load_exception_table()
        assert table["BTC"] == "BINANCE:BTCUSDT"
        assert table["BRENT"] == "TVC:UKOIL"
        assert all(k == k.upper() and ":" in v for k, v in table.items())

    def test_exception_table_from_path(self, tmp_path):
        """Test loading an operator-supplied table."""
        path = tmp_path / "exceptions.json"
        path.write_text('{"copper": "comex:hg1!"}', encoding="utf-8")
        assert load_exception_table(path) == {"COPPER": "COMEX:HG1!"}


@pytest.mark.asyncio
class TestSymbolResolver:
    """Tests for the resolution chain."""

    async def test_explicit_namespace(self, resolver, fake_search):
        """Test that NS:SYM names are used as-is."""
        assert await resolver.resolve("nasdaq:aapl") == "NASDAQ:AAPL"
        assert fake_search.calls == []

    async def test_exception_beats_category(self, resolver):
        """Test that the exception table wins over the category rule."""
        assert await resolver.resolve("gold", "COMMODITY") == "FX_IDC:XAUTRY"
        assert await resolver.resolve("SILVERX", "COMMODITY") == "TVC:SILVERX"

    async def test_crypto_category(self, resolver, fake_search):
        """Test that FOO in CRYPTO resolves to the USDT pair without search."""
        assert await resolver.resolve("FOO", "CRYPTO") == "BINANCE:FOOUSDT"
        assert fake_search.calls == []

    async def test_search_result_cached(self, resolver, fake_search, ticker_cache):
        """Test that repeated resolution is idempotent and searches once."""
        fake_search.results["FOO"] = SearchCandidate("FOO", "NASDAQ", type="stock", currency="USD", score=140)
        first = await resolver.resolve("FOO", "OTHER")
        second = await resolver.resolve("foo", "OTHER")
        assert first == second == "NASDAQ:FOO"
        assert fake_search.calls == ["FOO"]
        assert ticker_cache.get("FOO").ticker == "NASDAQ:FOO"

    async def test_durable_cache_hit(self, resolver, fake_search, ticker_cache):
        """Test that a previously stored mapping skips the search."""
        ticker_cache.put("BAR", "NYSE:BAR")
        assert await resolver.resolve("BAR") == "NYSE:BAR"
        assert fake_search.calls == []

    async def test_concurrent_lookups_coalesce(self, ticker_cache):
        """Test that simultaneous resolutions share one search."""
        search = FakeSearch({"FOO": SearchCandidate("FOO", "NASDAQ", score=100)}, delay=0.05)
        resolver = SymbolResolver(ticker_cache, search=search)
        results = await asyncio.gather(*(resolver.resolve("FOO") for _ in range(5)))
        assert set(results) == {"NASDAQ:FOO"}
        assert search.calls == ["FOO"]

    async def test_miss_falls_back_to_guess(self, resolver, fake_search):
        """Test the default guess when search finds nothing, and that the miss is remembered."""
        assert await resolver.resolve("QWE") == "BIST:QWE"
        assert await resolver.resolve("QWE") == "BIST:QWE"
        assert fake_search.calls == ["QWE"]

    async def test_no_guess_raises(self, ticker_cache, fake_search):
        """Test that disabling the guess turns a miss into a ResolutionError."""
        resolver = SymbolResolver(ticker_cache, search=fake_search, allow_guess=False)
        with pytest.raises(ResolutionError) as exc:
            await resolver.resolve("QWE")
        assert exc.value.name == "QWE"

    async def test_search_failure_not_remembered(self, ticker_cache):
        """Test that a transient search error is retried on the next resolution."""
        search = FailingSearch()
        resolver = SymbolResolver(ticker_cache, search=search, allow_guess=False)
        for _ in range(2):
            with pytest.raises(ResolutionError):
                await resolver.resolve("QWE")
        assert search.calls == ["QWE", "QWE"]

    async def test_without_search(self, ticker_cache):
        """Test resolution with no search client configured."""
        resolver = SymbolResolver(ticker_cache)
        assert await resolver.resolve("AAPL") == "NASDAQ:AAPL"

    async def test_invalid_names(self, resolver):
        """Test that empty and malformed names are rejected."""
        for bad in ("", "   ", "BAD NAME", "FOO$"):
            with pytest.raises(ResolutionError):
                await resolver.resolve(bad)

    async def test_manual_mapping_wins(self, resolver):
        """Test that an operator mapping beats exceptions and category rules."""
        assert await resolver.set_manual("gold", "tvc:gold") == "TVC:GOLD"
        assert await resolver.resolve("GOLD", "COMMODITY") == "TVC:GOLD"
        await resolver.set_manual("FOO", "BIST:FOO")
        assert await resolver.resolve("FOO", "CRYPTO") == "BIST:FOO"

    async def test_manual_mapping_validated(self, resolver):
        """Test that a manual ticker must carry a namespace."""
        with pytest.raises(ResolutionError):
            await resolver.set_manual("FOO", "FOO")

    async def test_manual_mapping_reloaded(self, resolver, ticker_cache):
        """Test that manual mappings survive a restart."""
        await resolver.set_manual("FOO", "BIST:FOO")
        fresh = SymbolResolver(ticker_cache)
        assert await fresh.load_manual() == 1
        assert await fresh.resolve("FOO", "CRYPTO") == "BIST:FOO"

    async def test_clear_cache_entry(self, resolver, fake_search):
        """Test that clearing one name forces a new search."""
        fake_search.results["FOO"] = SearchCandidate("FOO", "NASDAQ", score=100)
        await resolver.resolve("FOO")
        await resolver.clear_cache("FOO")
        fake_search.results["FOO"] = SearchCandidate("FOO", "NYSE", score=100)
        assert await resolver.resolve("FOO") == "NYSE:FOO"
        assert fake_search.calls == ["FOO", "FOO"]

    async def test_clear_cache_all(self, resolver, ticker_cache):
        """Test clearing every mapping, manual ones included."""
        await resolver.set_manual("FOO", "BIST:FOO")
        ticker_cache.put("BAR", "NYSE:BAR")
        await resolver.clear_cache()
        assert await resolver.list_cache() == []
        assert await resolver.resolve("FOO", "CRYPTO") == "BINANCE:FOOUSDT"

    async def test_set_exceptions(self, resolver):
        """Test replacing the exception table at runtime."""
        resolver.set_exceptions({"oil": "tvc:usoil"})
        assert resolver.exceptions == {"OIL": "TVC:USOIL"}
        assert await resolver.resolve("OIL") == "TVC:USOIL"
