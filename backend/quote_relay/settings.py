"""Runtime configuration read from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_URL = "wss://data.tradingview.com/socket.io/websocket"
DEFAULT_SEARCH_URL = "https://symbol-search.tradingview.com/symbol_search/v3/"
ANONYMOUS_TOKEN = "unauthorized_user_token"


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip()


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %d", name, raw, default)
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class RelaySettings:
    feed_source: str = "tradingview"
    tv_socket_url: str = DEFAULT_SOCKET_URL
    tv_auth_token: str = ANONYMOUS_TOKEN
    tv_session_cookie: str = ""
    symbol_search_url: str = DEFAULT_SEARCH_URL
    symbol_search_timeout: float = 8.0
    db_path: str = "quote_relay.db"
    symbol_exceptions_path: str = ""
    resolver_guess_fallback: bool = True
    subscribe_batch_size: int = 50
    subscribe_batch_delay_ms: int = 200
    reconnect_interval: float = 15.0
    stall_timeout: float = 180.0
    watchdog_interval: float = 30.0
    broadcast_send_timeout: float = 2.0
    simulator_interval: float = 0.5
    stream_token: str = ""
    seed_default_instruments: bool = True
    host: str = "0.0.0.0"
    port: int = 3002
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RelaySettings:
        env = os.environ if env is None else env
        return cls(
            feed_source=_env_str(env, "FEED_SOURCE", cls.feed_source).lower(),
            tv_socket_url=_env_str(env, "TV_SOCKET_URL", cls.tv_socket_url),
            tv_auth_token=_env_str(env, "TV_AUTH_TOKEN", cls.tv_auth_token) or ANONYMOUS_TOKEN,
            tv_session_cookie=_env_str(env, "TV_SESSION_COOKIE", cls.tv_session_cookie),
            symbol_search_url=_env_str(env, "SYMBOL_SEARCH_URL", cls.symbol_search_url),
            symbol_search_timeout=_env_float(env, "SYMBOL_SEARCH_TIMEOUT_S", cls.symbol_search_timeout),
            db_path=_env_str(env, "RELAY_DB_PATH", cls.db_path),
            symbol_exceptions_path=_env_str(env, "SYMBOL_EXCEPTIONS_PATH", cls.symbol_exceptions_path),
            resolver_guess_fallback=_env_bool(env, "RESOLVER_GUESS_FALLBACK", cls.resolver_guess_fallback),
            subscribe_batch_size=_env_int(env, "SUBSCRIBE_BATCH_SIZE", cls.subscribe_batch_size),
            subscribe_batch_delay_ms=_env_int(env, "SUBSCRIBE_BATCH_DELAY_MS", cls.subscribe_batch_delay_ms),
            reconnect_interval=_env_float(env, "RECONNECT_INTERVAL_S", cls.reconnect_interval),
            stall_timeout=_env_float(env, "STALL_TIMEOUT_S", cls.stall_timeout),
            watchdog_interval=_env_float(env, "WATCHDOG_INTERVAL_S", cls.watchdog_interval),
            broadcast_send_timeout=_env_float(env, "BROADCAST_SEND_TIMEOUT_S", cls.broadcast_send_timeout),
            simulator_interval=_env_float(env, "SIMULATOR_INTERVAL_S", cls.simulator_interval),
            stream_token=_env_str(env, "STREAM_TOKEN", cls.stream_token),
            seed_default_instruments=_env_bool(env, "SEED_DEFAULT_INSTRUMENTS", cls.seed_default_instruments),
            host=_env_str(env, "RELAY_HOST", cls.host),
            port=_env_int(env, "RELAY_PORT", cls.port),
            log_level=_env_str(env, "LOG_LEVEL", cls.log_level).upper(),
        )
