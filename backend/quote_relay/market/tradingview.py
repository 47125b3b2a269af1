"""Feed Source client speaking the TradingView quote socket protocol."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Sequence

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import FeedSourceError
from .framing import decode_frames, encode_frame, encode_message, is_heartbeat, iter_messages
from .interface import FeedSource, FrameHandler

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_URL = "wss://data.tradingview.com/socket.io/websocket"
DEFAULT_ORIGIN = "https://www.tradingview.com"
ANONYMOUS_TOKEN = "unauthorized_user_token"

QUOTE_FIELDS: tuple[str, ...] = ("lp", "ch", "chp", "status", "currency_code", "original_name")

_FATAL_METHODS = frozenset({"critical_error", "protocol_error"})

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class TradingViewFeedSource(FeedSource):
    """One quote session over a direct WebSocket connection.

    Heartbeats (``~h~<n>``) are echoed at the transport level and are never
    passed to the frame handler, so a session that only exchanges heartbeats
    looks silent to the liveness watchdog.
    """

    def __init__(
        self,
        url: str = DEFAULT_SOCKET_URL,
        auth_token: str = ANONYMOUS_TOKEN,
        session_cookie: str = "",
        origin: str = DEFAULT_ORIGIN,
        keepalive_interval: float = 20.0,
        open_timeout: float = 30.0,
    ) -> None:
        self._url = url
        self._auth_token = auth_token or ANONYMOUS_TOKEN
        self._cookie = session_cookie
        self._origin = origin
        self._keepalive_interval = keepalive_interval
        self._open_timeout = open_timeout
        self._handler: FrameHandler | None = None
        self._ws = None
        self._session_id: str | None = None
        self._reader: asyncio.Task | None = None
        self._keepalive: asyncio.Task | None = None
        self._closed = asyncio.Event()

    def on_message(self, handler: FrameHandler) -> None:
        self._handler = handler

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed.is_set()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    async def connect(self) -> None:
        headers = {"User-Agent": _USER_AGENT}
        if self._cookie:
            headers["Cookie"] = self._cookie
        try:
            self._ws = await websockets.connect(
                self._url,
                additional_headers=headers,
                origin=self._origin,
                ping_interval=None,
                open_timeout=self._open_timeout,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._closed.set()
            raise FeedSourceError(f"cannot connect to {self._url}: {e}") from e

        self._session_id = "qs_" + secrets.token_hex(6)
        await self._send("set_auth_token", [self._auth_token])
        await self._send("quote_create_session", [self._session_id])
        await self._send("quote_set_fields", [self._session_id, *QUOTE_FIELDS])

        self._reader = asyncio.create_task(self._read_loop(), name="tradingview-reader")
        if self._keepalive_interval > 0:
            self._keepalive = asyncio.create_task(self._keepalive_loop(), name="tradingview-keepalive")
        logger.info("TradingView session %s opened", self._session_id)

    async def subscribe(self, tickers: Sequence[str]) -> None:
        if tickers:
            await self._send("quote_add_symbols", [self._session_id, *tickers])

    async def unsubscribe(self, tickers: Sequence[str]) -> None:
        if tickers:
            await self._send("quote_remove_symbols", [self._session_id, *tickers])

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        for task in (self._keepalive, self._reader):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._keepalive = None
        self._reader = None
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Error closing TradingView socket: %s", e)
        self._ws = None
        self._closed.set()

    # --- Internal ---

    async def _send(self, method: str, params: list) -> None:
        await self._send_raw(encode_message(method, params))

    async def _send_raw(self, frame: str) -> None:
        if not self.is_open:
            raise FeedSourceError("session is not open")
        try:
            await self._ws.send(frame)
        except (ConnectionClosed, OSError) as e:
            self._closed.set()
            raise FeedSourceError(f"send failed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", "replace")
                has_data = False
                for payload in decode_frames(raw):
                    if is_heartbeat(payload):
                        await self._ws.send(encode_frame(payload))
                    elif payload:
                        has_data = True
                if not has_data:
                    continue
                if any(m in raw for m in _FATAL_METHODS) and self._has_fatal_message(raw):
                    logger.error("TradingView session %s rejected: %.200s", self._session_id, raw)
                    break
                if self._handler is not None:
                    await self._handler(raw)
        except ConnectionClosed as e:
            logger.warning("TradingView socket closed: %s", e)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("TradingView reader failed")
        finally:
            self._closed.set()

    @staticmethod
    def _has_fatal_message(raw: str) -> bool:
        return any(msg.get("m") in _FATAL_METHODS for msg in iter_messages(raw))

    async def _keepalive_loop(self) -> None:
        while self.is_open:
            await asyncio.sleep(self._keepalive_interval)
            try:
                await self._send_raw(encode_frame(""))
            except FeedSourceError as e:
                logger.debug("Keep-alive failed: %s", e)
                return
