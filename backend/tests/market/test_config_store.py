"""Tests for the SQLite Configuration Store."""

import pytest

from quote_relay.market.config_store import ConfigStore
from quote_relay.market.errors import ConfigStoreError
from quote_relay.market.models import OverrideType


class RecordingListener:
    """Collects every hook call as (hook, args)."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def on_instrument_added(self, name, category):
        self.calls.append(("added", name, category))

    async def on_instrument_removed(self, name):
        self.calls.append(("removed", name))

    async def on_overrides_changed(self, overrides):
        self.calls.append(("overrides", dict(overrides)))

    async def on_delay_changed(self, delay_ms):
        self.calls.append(("delay", delay_ms))

    async def on_pause_changed(self, name, paused):
        self.calls.append(("paused", name, paused))

    async def on_category_changed(self, name, category):
        self.calls.append(("category", name, category))

    def hooks(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def listener(store):
    recorder = RecordingListener()
    store.set_listener(recorder)
    return recorder


@pytest.mark.asyncio
class TestInstruments:
    """Tests for instrument mutations."""

    async def test_add_and_list(self, store, listener):
        """Test that adds persist in insertion order and notify the listener."""
        await store.add_instrument(" btc ", "crypto")
        await store.add_instrument("THYAO", "BIST", is_custom=False)
        instruments = await store.list_instruments()
        assert [i.name for i in instruments] == ["BTC", "THYAO"]
        assert instruments[0].category == "CRYPTO"
        assert instruments[1].is_custom is False
        assert listener.calls == [("added", "BTC", "CRYPTO"), ("added", "THYAO", "BIST")]

    async def test_add_existing_is_noop(self, store, listener):
        """Test that re-adding a name changes nothing and fires no hook."""
        await store.add_instrument("BTC", "CRYPTO")
        again = await store.add_instrument("btc", "OTHER")
        assert again.category == "CRYPTO"
        assert len(await store.list_instruments()) == 1
        assert listener.hooks() == ["added"]

    async def test_add_requires_name(self, store):
        """Test that an empty name is rejected."""
        with pytest.raises(ConfigStoreError):
            await store.add_instrument("  ")

    async def test_add_registers_category(self, store):
        """Test that a new category name is registered on first use."""
        await store.add_instrument("FOO", "my_list")
        assert "MY_LIST" in await store.list_categories()

    async def test_remove(self, store, listener):
        """Test that removal drops the instrument and its override."""
        await store.add_instrument("BTC", "CRYPTO")
        await store.set_override("BTC", "fixed", 1.0)
        assert await store.remove_instrument("btc") is True
        assert await store.get_instrument("BTC") is None
        assert await store.get_overrides() == {}
        assert ("removed", "BTC") in listener.calls

    async def test_remove_missing(self, store, listener):
        """Test that removing an unknown name returns False silently."""
        assert await store.remove_instrument("NOPE") is False
        assert listener.calls == []

    async def test_bulk_remove(self, store):
        """Test removing several instruments at once."""
        for name in ("A", "B", "C"):
            await store.add_instrument(name)
        assert await store.remove_instruments(["a", "c", "zzz"]) == ["A", "C"]
        assert [i.name for i in await store.list_instruments()] == ["B"]

    async def test_pause(self, store, listener):
        """Test pausing and resuming."""
        await store.add_instrument("BTC", "CRYPTO")
        paused = await store.set_paused("BTC", True)
        assert paused.paused is True
        assert (await store.get_instrument("BTC")).paused is True
        await store.set_paused("BTC", False)
        assert listener.calls[-2:] == [("paused", "BTC", True), ("paused", "BTC", False)]

    async def test_pause_unknown(self, store):
        """Test that pausing an unknown instrument fails."""
        with pytest.raises(ConfigStoreError):
            await store.set_paused("NOPE", True)

    async def test_set_category(self, store, listener):
        """Test moving an instrument to another category."""
        await store.add_instrument("FOO", "OTHER")
        moved = await store.set_category("FOO", "crypto")
        assert moved.category == "CRYPTO"
        assert (await store.get_instrument("FOO")).category == "CRYPTO"
        assert listener.calls[-1] == ("category", "FOO", "CRYPTO")

    async def test_set_category_unknown(self, store):
        """Test that recategorizing an unknown instrument fails."""
        with pytest.raises(ConfigStoreError):
            await store.set_category("NOPE", "CRYPTO")


@pytest.mark.asyncio
class TestOverridesAndDelay:
    """Tests for overrides and the global delay."""

    async def test_set_override(self, store, listener):
        """Test that an override persists and the full map is pushed."""
        override = await store.set_override("btc", "multiplier", 1.5, expires_at=2_000_000_000.0)
        assert override.type is OverrideType.MULTIPLIER
        stored = (await store.get_overrides())["BTC"]
        assert stored.value == 1.5
        assert stored.expires_at == 2_000_000_000.0
        assert listener.calls[-1][0] == "overrides"
        assert set(listener.calls[-1][1]) == {"BTC"}

    async def test_replace_override(self, store):
        """Test that a second override replaces the first."""
        await store.set_override("BTC", OverrideType.FIXED, 100.0)
        await store.set_override("BTC", OverrideType.MULTIPLIER, 2.0)
        stored = (await store.get_overrides())["BTC"]
        assert stored.type is OverrideType.MULTIPLIER

    async def test_invalid_override_type(self, store):
        """Test that an unknown override type is rejected."""
        with pytest.raises(ValueError):
            await store.set_override("BTC", "bogus", 1.0)

    async def test_bulk_override_and_clear(self, store, listener):
        """Test overriding and clearing several instruments at once."""
        created = await store.set_overrides(["a", "b"], "fixed", 10.0)
        assert [o.instrument_name for o in created] == ["A", "B"]
        assert set(await store.get_overrides()) == {"A", "B"}
        assert await store.clear_overrides(["A", "Z"]) == ["A"]
        assert set(await store.get_overrides()) == {"B"}
        assert listener.hooks().count("overrides") == 2

    async def test_clear_missing_override(self, store, listener):
        """Test that clearing nothing fires no hook."""
        assert await store.clear_override("NOPE") is False
        assert listener.calls == []

    async def test_delay(self, store, listener):
        """Test the global delay, clamped at zero."""
        assert await store.get_delay() == 0
        assert await store.set_delay(1500) == 1500
        assert await store.get_delay() == 1500
        assert await store.set_delay(-10) == 0
        assert listener.calls == [("delay", 1500), ("delay", 0)]


@pytest.mark.asyncio
class TestSeedingAndCategories:
    """Tests for default seeding and the category registry."""

    async def test_seed_once(self, store):
        """Test that defaults are inserted only into a fresh store."""
        seed = {"CRYPTO": ["BTC", "ETH"], "BIST": ["THYAO"]}
        assert await store.seed_defaults(seed) == 3
        instruments = await store.list_instruments()
        assert [i.name for i in instruments] == ["BTC", "ETH", "THYAO"]
        assert all(not i.is_custom for i in instruments)

        await store.remove_instrument("ETH")
        assert await store.seed_defaults(seed) == 0
        assert [i.name for i in await store.list_instruments()] == ["BTC", "THYAO"]

    async def test_builtin_categories(self, store):
        """Test that built-in categories exist from the start."""
        categories = await store.list_categories()
        assert {"CRYPTO", "BIST", "FOREX", "INDEX", "COMMODITY", "STOCKS", "OTHER", "CUSTOM"} <= set(categories)

    async def test_add_and_remove_category(self, store):
        """Test custom categories."""
        assert await store.add_category("watch") == "WATCH"
        assert "WATCH" in await store.list_categories()
        assert await store.remove_category("WATCH") is True
        assert "WATCH" not in await store.list_categories()

    async def test_remove_category_in_use(self, store):
        """Test that a category holding instruments cannot be removed."""
        await store.add_instrument("FOO", "WATCH")
        with pytest.raises(ConfigStoreError):
            await store.remove_category("WATCH")

    async def test_persists_across_reopen(self, db_path):
        """Test that configuration survives a restart."""
        first = ConfigStore(db_path)
        await first.add_instrument("BTC", "CRYPTO")
        await first.set_delay(250)
        await first.set_paused("BTC", True)
        first.close()

        second = ConfigStore(db_path)
        assert (await second.get_instrument("BTC")).paused is True
        assert await second.get_delay() == 250
        second.close()
