"""Fixtures for quote pipeline tests."""

import pytest

from quote_relay.market.config_store import ConfigStore
from quote_relay.market.ticker_cache import TickerCache

from .fakes import FakeSearch, FakeSourceFactory


@pytest.fixture
def store(db_path):
    s = ConfigStore(db_path)
    yield s
    s.close()


@pytest.fixture
def ticker_cache(db_path):
    cache = TickerCache(db_path)
    yield cache
    cache.close()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def source_factory():
    return FakeSourceFactory()
