"""Tests for settings and the relay factories."""

import os
from unittest.mock import patch

import pytest

from quote_relay.market.factory import create_feed_source_factory, create_relay, seed_store
from quote_relay.market.relay import QuoteRelay
from quote_relay.market.seed_symbols import SEED_INSTRUMENTS
from quote_relay.market.simulator import SimulatedFeedSource
from quote_relay.market.tradingview import TradingViewFeedSource
from quote_relay.settings import ANONYMOUS_TOKEN, RelaySettings


class TestSettings:
    """Tests for RelaySettings.from_env."""

    def test_defaults(self):
        """Test defaults with an empty environment."""
        settings = RelaySettings.from_env({})
        assert settings.feed_source == "tradingview"
        assert settings.tv_auth_token == ANONYMOUS_TOKEN
        assert settings.subscribe_batch_size == 50
        assert settings.subscribe_batch_delay_ms == 200
        assert settings.reconnect_interval == 15.0
        assert settings.stall_timeout == 180.0
        assert settings.port == 3002
        assert settings.resolver_guess_fallback is True

    def test_overrides(self):
        """Test reading values from the environment."""
        settings = RelaySettings.from_env(
            {
                "FEED_SOURCE": " Simulator ",
                "SUBSCRIBE_BATCH_SIZE": "25",
                "STALL_TIMEOUT_S": "60.5",
                "RESOLVER_GUESS_FALLBACK": "false",
                "STREAM_TOKEN": "s3cret",
                "LOG_LEVEL": "debug",
                "TV_AUTH_TOKEN": "",
            }
        )
        assert settings.feed_source == "simulator"
        assert settings.subscribe_batch_size == 25
        assert settings.stall_timeout == 60.5
        assert settings.resolver_guess_fallback is False
        assert settings.stream_token == "s3cret"
        assert settings.log_level == "DEBUG"
        assert settings.tv_auth_token == ANONYMOUS_TOKEN

    def test_reads_process_environment(self):
        """Test that from_env defaults to os.environ."""
        with patch.dict(os.environ, {"FEED_SOURCE": "simulator", "RELAY_PORT": "8080"}, clear=True):
            settings = RelaySettings.from_env()
        assert settings.feed_source == "simulator"
        assert settings.port == 8080

    def test_invalid_numbers_fall_back(self):
        """Test that unparseable numbers keep their defaults."""
        settings = RelaySettings.from_env({"RELAY_PORT": "http", "RECONNECT_INTERVAL_S": "soon"})
        assert settings.port == 3002
        assert settings.reconnect_interval == 15.0


class TestFeedSourceFactory:
    """Tests for create_feed_source_factory."""

    def test_tradingview_by_default(self):
        """Test that the real feed is the default."""
        factory = create_feed_source_factory(RelaySettings.from_env({}))
        assert isinstance(factory(), TradingViewFeedSource)

    def test_simulator(self):
        """Test selecting the simulator."""
        factory = create_feed_source_factory(RelaySettings.from_env({"FEED_SOURCE": "simulator"}))
        assert isinstance(factory(), SimulatedFeedSource)

    def test_fresh_source_per_call(self):
        """Test that every session gets a new source instance."""
        factory = create_feed_source_factory(RelaySettings.from_env({"FEED_SOURCE": "simulator"}))
        assert factory() is not factory()


@pytest.mark.asyncio
class TestCreateRelay:
    """Tests for create_relay and seed_store."""

    async def test_create_and_seed(self, db_path):
        """Test building a relay and seeding the default watchlist once."""
        settings = RelaySettings(feed_source="simulator", db_path=db_path)
        relay = create_relay(settings)
        assert isinstance(relay, QuoteRelay)

        seeded = await seed_store(relay, settings)
        assert seeded == sum(len(v) for v in SEED_INSTRUMENTS.values())
        assert await seed_store(relay, settings) == 0
        assert relay.resolver.exceptions["BRENT"] == "TVC:UKOIL"

        await relay.stop()

    async def test_seeding_disabled(self, db_path):
        """Test that seeding can be turned off."""
        settings = RelaySettings(feed_source="simulator", db_path=db_path, seed_default_instruments=False)
        relay = create_relay(settings)
        assert await seed_store(relay, settings) == 0
        assert await relay.store.list_instruments() == []
        await relay.stop()
