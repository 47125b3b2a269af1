"""Durable operator configuration: instruments, categories, overrides, delay.

Every mutation is persisted first and then reported to the registered
listener, so the live pipeline reflects a change by the time the mutating
call returns. Writes touching the same instrument are serialized.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections import defaultdict
from collections.abc import Iterable
from typing import Protocol

from .errors import ConfigStoreError
from .models import Category, Instrument, OverrideType, PriceOverride, normalize_name

logger = logging.getLogger(__name__)

_DELAY_KEY = "delay_ms"
_SEEDED_KEY = "seeded"


class ConfigListener(Protocol):
    """Hooks the core exposes for the store's mutation API."""

    async def on_instrument_added(self, name: str, category: str) -> None: ...

    async def on_instrument_removed(self, name: str) -> None: ...

    async def on_overrides_changed(self, overrides: dict[str, PriceOverride]) -> None: ...

    async def on_delay_changed(self, delay_ms: int) -> None: ...

    async def on_pause_changed(self, name: str, paused: bool) -> None: ...

    async def on_category_changed(self, name: str, category: str) -> None: ...


def _ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS instruments (
            name TEXT PRIMARY KEY,
            category TEXT NOT NULL,
            is_custom INTEGER NOT NULL DEFAULT 1,
            paused INTEGER NOT NULL DEFAULT 0,
            created_seq INTEGER NOT NULL
        );
        CREATE TABLE IF NOT EXISTS overrides (
            name TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            value REAL NOT NULL,
            expires_at REAL
        );
        CREATE TABLE IF NOT EXISTS categories (
            name TEXT PRIMARY KEY
        );
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """
    )
    con.executemany(
        "INSERT OR IGNORE INTO categories (name) VALUES (?)",
        [(c.value,) for c in Category],
    )
    con.commit()


class ConfigStore:
    """SQLite-backed Configuration Store."""

    def __init__(self, db_path: str, listener: ConfigListener | None = None) -> None:
        self._db_path = str(db_path)
        self._listener = listener
        self._db_lock = threading.Lock()
        self._name_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._settings_lock = asyncio.Lock()
        try:
            self._con = sqlite3.connect(self._db_path, check_same_thread=False)
            _ensure_schema(self._con)
        except sqlite3.Error as e:
            raise ConfigStoreError(f"cannot open configuration store at {self._db_path}: {e}") from e
        logger.info("Configuration store opened at %s", self._db_path)

    def set_listener(self, listener: ConfigListener | None) -> None:
        self._listener = listener

    def close(self) -> None:
        with self._db_lock:
            self._con.close()

    # --- Reads ---

    async def list_instruments(self) -> list[Instrument]:
        rows = await self._query(
            "SELECT name, category, is_custom, paused FROM instruments ORDER BY created_seq"
        )
        return [Instrument(name=r[0], category=r[1], is_custom=bool(r[2]), paused=bool(r[3])) for r in rows]

    async def get_instrument(self, name: str) -> Instrument | None:
        rows = await self._query(
            "SELECT name, category, is_custom, paused FROM instruments WHERE name = ?",
            (normalize_name(name),),
        )
        if not rows:
            return None
        r = rows[0]
        return Instrument(name=r[0], category=r[1], is_custom=bool(r[2]), paused=bool(r[3]))

    async def get_overrides(self) -> dict[str, PriceOverride]:
        rows = await self._query("SELECT name, type, value, expires_at FROM overrides")
        return {
            r[0]: PriceOverride(instrument_name=r[0], type=OverrideType(r[1]), value=float(r[2]), expires_at=r[3])
            for r in rows
        }

    async def get_delay(self) -> int:
        rows = await self._query("SELECT value FROM settings WHERE key = ?", (_DELAY_KEY,))
        return int(rows[0][0]) if rows else 0

    async def list_categories(self) -> list[str]:
        rows = await self._query("SELECT name FROM categories ORDER BY name")
        return [r[0] for r in rows]

    # --- Seeding ---

    async def seed_defaults(self, seed: dict[str, list[str]]) -> int:
        """Insert the default instruments the first time the store is used."""
        async with self._settings_lock:
            rows = await self._query("SELECT value FROM settings WHERE key = ?", (_SEEDED_KEY,))
            if rows:
                return 0
            statements: list[tuple[str, tuple]] = []
            for category, names in seed.items():
                statements.append(("INSERT OR IGNORE INTO categories (name) VALUES (?)", (category,)))
                for name in names:
                    statements.append(
                        (
                            "INSERT OR IGNORE INTO instruments (name, category, is_custom, paused, created_seq) "
                            "VALUES (?, ?, 0, 0, (SELECT COALESCE(MAX(created_seq), 0) + 1 FROM instruments))",
                            (normalize_name(name), category),
                        )
                    )
            statements.append(("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (_SEEDED_KEY, "1")))
            await self._execute_many(statements)
        count = sum(len(v) for v in seed.values())
        logger.info("Seeded configuration store with %d default instruments", count)
        return count

    # --- Instrument mutations ---

    async def add_instrument(self, name: str, category: str = Category.OTHER.value, is_custom: bool = True) -> Instrument:
        """Track a new instrument. Adding an existing name is a no-op."""
        key = normalize_name(name)
        if not key:
            raise ConfigStoreError("instrument name is required")
        category = normalize_name(category) or Category.OTHER.value
        async with self._name_locks[key]:
            existing = await self.get_instrument(key)
            if existing is not None:
                return existing
            await self._execute_many(
                [
                    ("INSERT OR IGNORE INTO categories (name) VALUES (?)", (category,)),
                    (
                        "INSERT INTO instruments (name, category, is_custom, paused, created_seq) "
                        "VALUES (?, ?, ?, 0, (SELECT COALESCE(MAX(created_seq), 0) + 1 FROM instruments))",
                        (key, category, int(is_custom)),
                    ),
                ]
            )
            logger.info("Instrument added: %s (%s)", key, category)
            if self._listener is not None:
                await self._listener.on_instrument_added(key, category)
        return Instrument(name=key, category=category, is_custom=is_custom)

    async def remove_instrument(self, name: str) -> bool:
        """Stop tracking an instrument and drop its override."""
        key = normalize_name(name)
        async with self._name_locks[key]:
            removed = await self._delete_instrument(key)
            if removed and self._listener is not None:
                await self._listener.on_instrument_removed(key)
        return removed

    async def remove_instruments(self, names: Iterable[str]) -> list[str]:
        """Bulk removal. Returns the names that actually existed."""
        removed: list[str] = []
        for name in names:
            if await self.remove_instrument(name):
                removed.append(normalize_name(name))
        return removed

    async def set_paused(self, name: str, paused: bool) -> Instrument:
        key = normalize_name(name)
        async with self._name_locks[key]:
            instrument = await self._require(key)
            await self._execute_many([("UPDATE instruments SET paused = ? WHERE name = ?", (int(paused), key))])
            logger.info("Instrument %s %s", key, "paused" if paused else "resumed")
            if self._listener is not None:
                await self._listener.on_pause_changed(key, paused)
        return Instrument(name=key, category=instrument.category, is_custom=instrument.is_custom, paused=paused)

    async def set_category(self, name: str, category: str) -> Instrument:
        key = normalize_name(name)
        category = normalize_name(category) or Category.OTHER.value
        async with self._name_locks[key]:
            instrument = await self._require(key)
            await self._execute_many(
                [
                    ("INSERT OR IGNORE INTO categories (name) VALUES (?)", (category,)),
                    ("UPDATE instruments SET category = ? WHERE name = ?", (category, key)),
                ]
            )
            logger.info("Instrument %s moved to category %s", key, category)
            if self._listener is not None:
                await self._listener.on_category_changed(key, category)
        return Instrument(name=key, category=category, is_custom=instrument.is_custom, paused=instrument.paused)

    # --- Overrides ---

    async def set_override(
        self,
        name: str,
        type: OverrideType | str,
        value: float,
        expires_at: float | None = None,
    ) -> PriceOverride:
        return (await self.set_overrides([name], type, value, expires_at))[0]

    async def set_overrides(
        self,
        names: Iterable[str],
        type: OverrideType | str,
        value: float,
        expires_at: float | None = None,
    ) -> list[PriceOverride]:
        """Apply the same override to several instruments at once."""
        kind = OverrideType(type)
        value = float(value)
        created: list[PriceOverride] = []
        for name in names:
            key = normalize_name(name)
            async with self._name_locks[key]:
                await self._execute_many(
                    [
                        (
                            "INSERT OR REPLACE INTO overrides (name, type, value, expires_at) VALUES (?, ?, ?, ?)",
                            (key, kind.value, value, expires_at),
                        )
                    ]
                )
            created.append(PriceOverride(instrument_name=key, type=kind, value=value, expires_at=expires_at))
        logger.info("Override %s=%s set for %s", kind.value, value, ", ".join(o.instrument_name for o in created))
        await self._notify_overrides()
        return created

    async def clear_override(self, name: str) -> bool:
        return bool(await self.clear_overrides([name]))

    async def clear_overrides(self, names: Iterable[str]) -> list[str]:
        cleared: list[str] = []
        for name in names:
            key = normalize_name(name)
            async with self._name_locks[key]:
                if await self._execute_many([("DELETE FROM overrides WHERE name = ?", (key,))]):
                    cleared.append(key)
        if cleared:
            logger.info("Override cleared for %s", ", ".join(cleared))
            await self._notify_overrides()
        return cleared

    # --- Delay ---

    async def set_delay(self, delay_ms: int) -> int:
        delay_ms = max(0, int(delay_ms))
        async with self._settings_lock:
            await self._execute_many(
                [("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (_DELAY_KEY, str(delay_ms)))]
            )
            logger.info("Global delay set to %d ms", delay_ms)
            if self._listener is not None:
                await self._listener.on_delay_changed(delay_ms)
        return delay_ms

    # --- Categories ---

    async def add_category(self, name: str) -> str:
        key = normalize_name(name)
        if not key:
            raise ConfigStoreError("category name is required")
        await self._execute_many([("INSERT OR IGNORE INTO categories (name) VALUES (?)", (key,))])
        return key

    async def remove_category(self, name: str) -> bool:
        key = normalize_name(name)
        in_use = await self._query("SELECT COUNT(*) FROM instruments WHERE category = ?", (key,))
        if in_use and in_use[0][0]:
            raise ConfigStoreError(f"category {key} still has {in_use[0][0]} instruments")
        return bool(await self._execute_many([("DELETE FROM categories WHERE name = ?", (key,))]))

    # --- Internals ---

    async def _require(self, key: str) -> Instrument:
        instrument = await self.get_instrument(key)
        if instrument is None:
            raise ConfigStoreError(f"unknown instrument {key}")
        return instrument

    async def _delete_instrument(self, key: str) -> bool:
        changed = await self._execute_many(
            [
                ("DELETE FROM instruments WHERE name = ?", (key,)),
                ("DELETE FROM overrides WHERE name = ?", (key,)),
            ]
        )
        if changed:
            logger.info("Instrument removed: %s", key)
        return changed > 0

    async def _notify_overrides(self) -> None:
        if self._listener is not None:
            await self._listener.on_overrides_changed(await self.get_overrides())

    async def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        return await asyncio.to_thread(self._query_sync, sql, params)

    def _query_sync(self, sql: str, params: tuple) -> list[tuple]:
        with self._db_lock:
            return self._con.execute(sql, params).fetchall()

    async def _execute_many(self, statements: list[tuple[str, tuple]]) -> int:
        """Run statements in one transaction. Returns rows changed by the first."""
        return await asyncio.to_thread(self._execute_many_sync, statements)

    def _execute_many_sync(self, statements: list[tuple[str, tuple]]) -> int:
        with self._db_lock:
            try:
                first_changed = -1
                for sql, params in statements:
                    cur = self._con.execute(sql, params)
                    if first_changed < 0:
                        first_changed = cur.rowcount
                self._con.commit()
            except sqlite3.Error as e:
                self._con.rollback()
                raise ConfigStoreError(str(e)) from e
        return max(first_changed, 0)
